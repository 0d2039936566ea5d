from datetime import datetime

import pytest

from vendconsole.models import Sale
from vendconsole.services import Reports, stock_status

from .helpers import add_machine, add_slot


@pytest.fixture
def reports(database, catalog):
    return Reports(database, catalog)


def record_sale(database, machine, product, quantity, sold_at, slot_number=1):
    sale = Sale(
        machine_id=machine.id,
        product_id=product.id,
        slot_number=slot_number,
        quantity=quantity,
        sold_at=sold_at,
    )
    row = sale.model_dump()
    row["sold_at"] = sale.sold_at.isoformat()
    database.Sales.insert(row)


@pytest.mark.parametrize(
    "quantity,capacity,status",
    [(0, 10, "empty"), (1, 10, "low"), (2, 10, "low"), (3, 10, "medium"), (5, 10, "medium"), (6, 10, "good"), (10, 10, "good")],
)
def test_stock_status_thresholds(quantity, capacity, status):
    assert stock_status(quantity, capacity) == status


def test_stock_status_without_capacity():
    assert stock_status(0, 0) == "empty"


@pytest.mark.asyncio
async def test_stock_overview_totals(database, reports, machine, cola, chips):
    add_slot(database, machine, 1, cola, quantity=10)
    add_slot(database, machine, 2, chips, quantity=1)
    add_slot(database, machine, 3, chips, quantity=0)
    add_slot(database, machine, 4)

    overview = await reports.stock_overview(machine.id)

    assert overview["totals"] == {
        "total_slots": 4,
        "filled_slots": 3,
        "empty_slots": 1,
        "low_stock_slots": 1,
        "fill_rate": 75,
    }
    assert [item["status"] for item in overview["items"]] == ["good", "low", "empty", "empty"]
    assert overview["items"][0]["product_name"] == "Cola"
    assert overview["items"][3]["product_name"] is None


@pytest.mark.asyncio
async def test_stock_overview_active_machines_only(database, reports, machine, cola):
    parked = add_machine(database, "VM-000", status="maintenance")
    add_slot(database, machine, 1, cola, quantity=4)
    add_slot(database, parked, 1, cola, quantity=4)

    overview = await reports.stock_overview()

    assert {item["machine_code"] for item in overview["items"]} == {"VM-001"}


@pytest.mark.asyncio
async def test_stock_overview_empty(reports):
    overview = await reports.stock_overview()

    assert overview["items"] == []
    assert overview["totals"]["fill_rate"] == 0


@pytest.mark.asyncio
async def test_sales_summary(database, reports, machine, cola, chips):
    other = add_machine(database, "VM-002")
    record_sale(database, machine, cola, 2, datetime(2024, 3, 1, 9))
    record_sale(database, machine, chips, 1, datetime(2024, 3, 2, 9))
    record_sale(database, other, cola, 4, datetime(2024, 3, 3, 9))

    summary = await reports.sales_summary()

    assert summary["total_units"] == 7
    assert summary["total_revenue"] == 2.35
    assert summary["unique_products"] == 2
    assert summary["unique_machines"] == 2
    assert [entry["machine_id"] for entry in summary["machines"]] == [other.id, machine.id]
    assert summary["machines"][0]["revenue"] == 1.4


@pytest.mark.asyncio
async def test_sales_summary_filters(database, reports, machine, cola):
    other = add_machine(database, "VM-002")
    record_sale(database, machine, cola, 2, datetime(2024, 3, 1, 9))
    record_sale(database, machine, cola, 3, datetime(2024, 4, 1, 9))
    record_sale(database, other, cola, 5, datetime(2024, 4, 1, 9))

    summary = await reports.sales_summary(machine.id, since=datetime(2024, 3, 15))

    assert summary["total_units"] == 3
    assert summary["unique_machines"] == 1
