from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as ModelError

from ..db import Database, query
from ..models import Machine, Product
from ..utils import NotFound, StoreError, ValidationError
from ..utils import store_logger as logger


@contextmanager
def store_call(action: str):
    """Translate database failures into StoreError."""
    try:
        yield
    except (NotFound, ValidationError):
        raise
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Store failure while trying to {action}: {e}")
        raise StoreError(f"Failed to {action}: {e}") from e


def build_model(model, **fields):
    try:
        return model(**fields)
    except ModelError as e:
        raise ValidationError(_describe(e)) from e


def _describe(error: ModelError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


class Catalog:
    """Machine and product records the slot store resolves references against."""

    def __init__(self, database: Database):
        self.database = database

    async def add_machine(
        self, code: str, location: str = "", status: str = "active"
    ) -> Machine:
        machine = build_model(Machine, code=code, location=location, status=status)
        with store_call("add machine"):
            if self.database.Machines.get(query.code == machine.code):
                raise ValidationError(f"Machine code {machine.code} already exists")
            self.database.Machines.insert(machine.model_dump())
        logger.info(f"Machine {machine.code} added ({machine.id})")
        return machine

    async def get_machine(self, machine_id: str) -> Machine:
        with store_call("fetch machine"):
            row = self.database.Machines.get(query.id == machine_id)
        if not row:
            raise NotFound(f"Machine {machine_id} not found")
        return Machine(**row)

    async def list_machines(self, status: Optional[str] = None) -> List[Machine]:
        with store_call("list machines"):
            if status:
                rows = self.database.Machines.search(query.status == status)
            else:
                rows = self.database.Machines.all()
        machines = [Machine(**row) for row in rows]
        return sorted(machines, key=lambda machine: machine.code)

    async def add_product(
        self,
        name: str,
        price: float,
        image_url: Optional[str] = None,
        category: Optional[str] = None,
        nutrition: Optional[Dict] = None,
    ) -> Product:
        product = build_model(
            Product,
            name=name,
            price=price,
            image_url=image_url,
            category=category,
            nutrition=nutrition,
        )
        with store_call("add product"):
            self.database.Products.insert(product.model_dump())
        logger.info(f"Product {product.name} added ({product.id})")
        return product

    async def get_product(self, product_id: str) -> Product:
        with store_call("fetch product"):
            row = self.database.Products.get(query.id == product_id)
        if not row:
            raise NotFound(f"Product {product_id} not found")
        return Product(**row)

    async def list_products(self) -> List[Product]:
        with store_call("list products"):
            rows = self.database.Products.all()
        products = [Product(**row) for row in rows]
        return sorted(products, key=lambda product: product.name)

    def products_by_id(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        wanted = {product_id for product_id in product_ids if product_id}
        if not wanted:
            return {}
        rows = self.database.Products.search(query.id.one_of(list(wanted)))
        return {row["id"]: Product(**row) for row in rows}
