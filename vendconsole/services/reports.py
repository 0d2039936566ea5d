from datetime import datetime
from typing import Dict, List, Optional

from ..db import Database, query
from ..models import Sale
from .catalog import Catalog, store_call


def stock_status(quantity: int, max_capacity: int) -> str:
    percentage = (quantity / max_capacity) * 100 if max_capacity else 0
    if percentage == 0:
        return "empty"
    if percentage <= 20:
        return "low"
    if percentage <= 50:
        return "medium"
    return "good"


def _fill_percentage(row: Dict) -> float:
    if not row.get("max_capacity"):
        return 0.0
    return row["quantity"] / row["max_capacity"] * 100


class Reports:
    """Read-only stock and sales aggregation."""

    def __init__(self, database: Database, catalog: Optional[Catalog] = None):
        self.database = database
        self.catalog = catalog or Catalog(database)

    async def stock_overview(self, machine_id: Optional[str] = None) -> Dict:
        if machine_id:
            machines = [await self.catalog.get_machine(machine_id)]
        else:
            machines = await self.catalog.list_machines(status="active")
        by_id = {machine.id: machine for machine in machines}

        with store_call("load stock"):
            rows = self.database.Slots.search(query.machine_id.one_of(list(by_id)))
            products = self.catalog.products_by_id(row.get("product_id") for row in rows)

        rows = sorted(rows, key=lambda row: (by_id[row["machine_id"]].code, row["slot_number"]))
        items = []
        for row in rows:
            machine = by_id[row["machine_id"]]
            product = products.get(row.get("product_id"))
            items.append(
                {
                    "machine_id": machine.id,
                    "machine_code": machine.code,
                    "location": machine.location,
                    "slot_number": row["slot_number"],
                    "product_id": row.get("product_id"),
                    "product_name": product.name if product else None,
                    "product_price": product.price if product else None,
                    "quantity": row["quantity"],
                    "max_capacity": row["max_capacity"],
                    "status": stock_status(row["quantity"], row["max_capacity"]),
                }
            )

        assigned = [row for row in rows if row.get("product_id")]
        totals = {
            "total_slots": len(rows),
            "filled_slots": len(assigned),
            "empty_slots": sum(1 for row in assigned if row["quantity"] == 0),
            "low_stock_slots": sum(
                1 for row in assigned if 0 < _fill_percentage(row) <= 20
            ),
        }
        totals["fill_rate"] = (
            round(totals["filled_slots"] / totals["total_slots"] * 100)
            if totals["total_slots"]
            else 0
        )
        return {"items": items, "totals": totals}

    async def sales_summary(
        self,
        machine_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Dict:
        """Units, revenue at base product price, and a per-machine breakdown."""
        with store_call("load sales"):
            if machine_id:
                rows = self.database.Sales.search(query.machine_id == machine_id)
            else:
                rows = self.database.Sales.all()
            sales = [Sale(**row) for row in rows]
            sales = [
                sale
                for sale in sales
                if (since is None or sale.sold_at >= since)
                and (until is None or sale.sold_at <= until)
            ]
            products = self.catalog.products_by_id(sale.product_id for sale in sales)

        machines: Dict[str, Dict] = {}
        total_revenue = 0.0
        for sale in sales:
            product = products.get(sale.product_id)
            revenue = (product.price if product else 0.0) * sale.quantity
            total_revenue += revenue
            entry = machines.setdefault(
                sale.machine_id, {"machine_id": sale.machine_id, "units": 0, "revenue": 0.0}
            )
            entry["units"] += sale.quantity
            entry["revenue"] += revenue

        breakdown: List[Dict] = sorted(
            machines.values(), key=lambda entry: entry["revenue"], reverse=True
        )
        for entry in breakdown:
            entry["revenue"] = round(entry["revenue"], 3)

        return {
            "total_units": sum(sale.quantity for sale in sales),
            "total_revenue": round(total_revenue, 3),
            "unique_products": len({sale.product_id for sale in sales}),
            "unique_machines": len({sale.machine_id for sale in sales}),
            "machines": breakdown,
        }
