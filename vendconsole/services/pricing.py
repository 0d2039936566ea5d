from typing import List, Optional

from ..db import Database, query
from ..models import MachinePrice, MachinePriceView, Product
from ..utils import NotFound, ValidationError
from ..utils import store_logger as logger
from .catalog import Catalog, build_model, store_call


def parse_price(value) -> float:
    """Accept numbers or numeric strings, as typed into a price field."""
    if isinstance(value, bool):
        raise ValidationError("Enter a valid price")
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Enter a valid price")
    if price != price or price < 0:
        raise ValidationError("Enter a valid price")
    return price


class MachinePriceBook:
    """Per-machine price overrides for products."""

    def __init__(self, database: Database, catalog: Optional[Catalog] = None):
        self.database = database
        self.catalog = catalog or Catalog(database)

    def _row(self, price_id: str):
        row = self.database.MachinePrices.get(query.id == price_id)
        if not row:
            raise NotFound(f"Machine price {price_id} not found")
        return row

    async def list_prices(self, machine_id: str) -> List[MachinePriceView]:
        await self.catalog.get_machine(machine_id)
        with store_call("load machine prices"):
            rows = self.database.MachinePrices.search(query.machine_id == machine_id)
            rows = sorted(rows, key=lambda row: row["product_id"])
            products = self.catalog.products_by_id(row["product_id"] for row in rows)
        return [
            MachinePriceView(**row, product=products.get(row["product_id"]))
            for row in rows
        ]

    async def add_price(self, machine_id: str, product_id: str, price) -> MachinePrice:
        if not product_id:
            raise ValidationError("Choose a product and enter a valid price")
        price = parse_price(price)
        await self.catalog.get_machine(machine_id)
        await self.catalog.get_product(product_id)

        record = build_model(
            MachinePrice, machine_id=machine_id, product_id=product_id, price=price
        )
        with store_call("add price"):
            existing = self.database.MachinePrices.get(
                (query.machine_id == machine_id) & (query.product_id == product_id)
            )
            if existing:
                raise ValidationError("Product already has a price on this machine")
            self.database.MachinePrices.insert(record.model_dump())

        logger.info(f"Price {price:.3f} set for product {product_id} on {machine_id}")
        return record

    async def update_price(self, price_id: str, price) -> MachinePrice:
        price = parse_price(price)
        with store_call("update price"):
            row = self._row(price_id)
            self.database.MachinePrices.update({"price": price}, query.id == price_id)
            row["price"] = price
        return MachinePrice(**row)

    async def set_active(self, price_id: str, active: bool) -> MachinePrice:
        with store_call("update price"):
            row = self._row(price_id)
            self.database.MachinePrices.update(
                {"active": bool(active)}, query.id == price_id
            )
            row["active"] = bool(active)
        return MachinePrice(**row)

    async def remove_price(self, price_id: str):
        with store_call("remove price"):
            self._row(price_id)
            self.database.MachinePrices.remove(query.id == price_id)
        logger.info(f"Machine price {price_id} removed")

    async def unassigned_products(self, machine_id: str) -> List[Product]:
        assigned = {entry.product_id for entry in await self.list_prices(machine_id)}
        products = await self.catalog.list_products()
        return [product for product in products if product.id not in assigned]

    async def effective_price(self, machine_id: str, product_id: str) -> float:
        """Active override for the machine, else the product's base price."""
        product = await self.catalog.get_product(product_id)
        with store_call("look up machine price"):
            row = self.database.MachinePrices.get(
                (query.machine_id == machine_id)
                & (query.product_id == product_id)
                & (query.active == True)  # noqa: E712
            )
        if row:
            return float(row["price"])
        return product.price
