from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import ConsoleConfig
from .db import Database, open_database
from .models import Machine, MachinePrice, MachinePriceView, Product, SlotView
from .services import (
    Catalog,
    DispenseSession,
    MachinePriceBook,
    Reports,
    SlotInventoryStore,
    relay_factory,
)
from .utils import (
    ConsoleError,
    DispenseRejected,
    NotFound,
    StoreError,
    TransportError,
    ValidationError,
)
from .utils import api_logger as logger
from .utils.layout import grid_layout, occupied_count


class MachineCreate(BaseModel):
    code: str
    location: str = ""
    status: str = "active"


class ProductCreate(BaseModel):
    name: str
    price: float
    image_url: Optional[str] = None
    category: Optional[str] = None
    nutrition: Optional[Dict] = None


class SlotAssign(BaseModel):
    product_id: str
    quantity: int
    max_capacity: Optional[int] = None


class QuantityUpdate(BaseModel):
    quantity: int


class EnsureLayout(BaseModel):
    size: Optional[int] = None


class BulkAssignRequest(BaseModel):
    product_id: str
    machine_ids: List[str]


class BulkAssignResponse(BaseModel):
    product_id: str
    assigned: List[str]
    unassigned: List[str]
    unchanged: List[str]
    skipped: List[str]
    failed: Dict[str, str]
    message: str


class PriceCreate(BaseModel):
    product_id: str
    price: str


class PriceUpdate(BaseModel):
    price: Optional[str] = None
    active: Optional[bool] = None


class RemoteToggle(BaseModel):
    enabled: bool


class RemoteMachine(BaseModel):
    machine_id: Optional[str] = None


class DispenseCommand(BaseModel):
    slot_number: int


class GridResponse(BaseModel):
    machine_id: str
    total: int
    occupied: int
    rows: List[List[SlotView]]


class Console:
    """Services behind one running console."""

    def __init__(self, config: ConsoleConfig, database: Database, relay=None):
        self.config = config
        self.database = database
        self.catalog = Catalog(database)
        self.store = SlotInventoryStore(
            database,
            self.catalog,
            default_capacity=config.get("default_capacity"),
            layout_size=config.get("layout_size"),
            bulk_quantity=config.get("bulk_quantity"),
        )
        self.prices = MachinePriceBook(database, self.catalog)
        self.reports = Reports(database, self.catalog)
        self.session = DispenseSession(
            self.store,
            relay or relay_factory(config),
            legacy_alias=config.get("relay_legacy_alias"),
            auto_reconnect=config.get("auto_reconnect"),
        )


ERROR_STATUS = (
    (ValidationError, 400),
    (NotFound, 404),
    (DispenseRejected, 409),
    (TransportError, 502),
    (StoreError, 503),
)


def create_app(
    config: ConsoleConfig = None, database: Database = None, relay=None
) -> FastAPI:
    config = config or ConsoleConfig()
    if database is None:
        database = open_database(config.get("db_path"))
    console = Console(config, database, relay)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await console.session.close()
        logger.info("Dispense session closed")

    app = FastAPI(title="Vending Console", lifespan=lifespan)
    app.state.console = console

    @app.exception_handler(ConsoleError)
    async def console_error(request: Request, exc: ConsoleError):
        status = 500
        for error_type, code in ERROR_STATUS:
            if isinstance(exc, error_type):
                status = code
                break
        logger.warning(f"{request.method} {request.url.path} -> {status}: {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    # Registry

    @app.get("/machines", response_model=List[Machine])
    async def list_machines(status: Optional[str] = None):
        return await console.catalog.list_machines(status=status)

    @app.post("/machines", response_model=Machine, status_code=201)
    async def add_machine(req: MachineCreate):
        return await console.catalog.add_machine(req.code, req.location, req.status)

    @app.post("/products", response_model=Product, status_code=201)
    async def add_product(req: ProductCreate):
        return await console.catalog.add_product(
            req.name, req.price, req.image_url, req.category, req.nutrition
        )

    # Planogram

    @app.get("/machines/{machine_id}/slots", response_model=List[SlotView])
    async def fetch_layout(machine_id: str):
        return await console.store.fetch_layout(machine_id)

    @app.post("/machines/{machine_id}/slots/ensure")
    async def ensure_layout(machine_id: str, req: Optional[EnsureLayout] = None):
        created = await console.store.ensure_full_layout(
            machine_id, req.size if req else None
        )
        return {"machine_id": machine_id, "created": created}

    @app.get("/machines/{machine_id}/grid", response_model=GridResponse)
    async def machine_grid(machine_id: str):
        slots = await console.store.fetch_layout(machine_id)
        return GridResponse(
            machine_id=machine_id,
            total=len(slots),
            occupied=occupied_count(slots),
            rows=grid_layout(slots),
        )

    @app.post("/machines/{machine_id}/slots", response_model=SlotView, status_code=201)
    async def add_slot(machine_id: str, req: SlotAssign):
        return await console.store.add_slot(
            machine_id, req.product_id, req.quantity, req.max_capacity
        )

    @app.put("/machines/{machine_id}/slots/{slot_number}", response_model=SlotView)
    async def assign_slot(machine_id: str, slot_number: int, req: SlotAssign):
        return await console.store.assign(
            machine_id, slot_number, req.product_id, req.quantity, req.max_capacity
        )

    @app.patch("/machines/{machine_id}/slots/{slot_number}", response_model=SlotView)
    async def update_quantity(machine_id: str, slot_number: int, req: QuantityUpdate):
        return await console.store.set_quantity(machine_id, slot_number, req.quantity)

    @app.delete("/machines/{machine_id}/slots/{slot_number}", response_model=SlotView)
    async def clear_slot(machine_id: str, slot_number: int):
        return await console.store.clear(machine_id, slot_number)

    @app.post("/bulk-assign", response_model=BulkAssignResponse)
    async def bulk_assign(req: BulkAssignRequest):
        result = await console.store.bulk_assign(req.product_id, req.machine_ids)
        return BulkAssignResponse(**asdict(result), message=result.message)

    # Machine prices

    @app.get("/machines/{machine_id}/prices", response_model=List[MachinePriceView])
    async def list_prices(machine_id: str):
        return await console.prices.list_prices(machine_id)

    @app.get("/machines/{machine_id}/unpriced", response_model=List[Product])
    async def unpriced_products(machine_id: str):
        return await console.prices.unassigned_products(machine_id)

    @app.post("/machines/{machine_id}/prices", response_model=MachinePrice, status_code=201)
    async def add_price(machine_id: str, req: PriceCreate):
        return await console.prices.add_price(machine_id, req.product_id, req.price)

    @app.patch("/prices/{price_id}", response_model=MachinePrice)
    async def update_price(price_id: str, req: PriceUpdate):
        if req.price is None and req.active is None:
            raise ValidationError("Nothing to update")
        record = None
        if req.price is not None:
            record = await console.prices.update_price(price_id, req.price)
        if req.active is not None:
            record = await console.prices.set_active(price_id, req.active)
        return record

    @app.delete("/prices/{price_id}", status_code=204)
    async def remove_price(price_id: str):
        await console.prices.remove_price(price_id)

    # Reports

    @app.get("/stock")
    async def stock(machine_id: Optional[str] = None):
        return await console.reports.stock_overview(machine_id)

    @app.get("/sales/summary")
    async def sales_summary(
        machine_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ):
        return await console.reports.sales_summary(machine_id, since, until)

    # Remote dispense

    @app.get("/remote/status")
    async def remote_status():
        return console.session.status()

    @app.post("/remote/enable")
    async def remote_enable(req: RemoteToggle):
        await console.session.set_enabled(req.enabled)
        return console.session.status()

    @app.post("/remote/machine")
    async def remote_machine(req: RemoteMachine):
        machine = None
        if req.machine_id:
            machine = await console.catalog.get_machine(req.machine_id)
            if machine.status != "active":
                raise ValidationError(f"Machine {machine.code} is not active")
        await console.session.select_machine(machine)
        return console.session.status()

    @app.post("/remote/dispense", status_code=202)
    async def remote_dispense(req: DispenseCommand):
        request = await console.session.send_dispense(req.slot_number)
        return {
            "request_id": request.request_id,
            "machine_id": request.machine_id,
            "slot_number": request.slot_number,
        }

    @app.get("/remote/notifications")
    async def remote_notifications(limit: int = 20):
        items = list(console.session.notifications)[-limit:] if limit > 0 else []
        return [asdict(item) for item in reversed(items)]

    return app
