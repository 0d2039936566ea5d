from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..db import Database, query
from ..models import DEFAULT_CAPACITY, Slot, SlotView
from ..utils import NotFound, StoreError, ValidationError
from ..utils import store_logger as logger
from ..utils.layout import (
    LAYOUT_SIZE,
    empty_slot_data,
    missing_slot_numbers,
    next_slot_number,
)
from .catalog import Catalog, build_model, store_call

BULK_QUANTITY = 5


@dataclass
class BulkAssignResult:
    product_id: str
    assigned: List[str] = field(default_factory=list)
    unassigned: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def message(self) -> str:
        parts = []
        if self.assigned:
            parts.append(f"assigned to {len(self.assigned)} machine(s)")
        if self.unassigned:
            parts.append(f"unassigned from {len(self.unassigned)} machine(s)")
        if self.skipped:
            parts.append(f"skipped {len(self.skipped)} full machine(s)")
        if self.failed:
            parts.append(f"failed on {len(self.failed)} machine(s)")
        if not parts:
            return "No changes"
        return "Product " + " and ".join(parts)


def check_count(name: str, value, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return value


class SlotInventoryStore:
    """
    Authoritative record of which product sits in which slot of which machine.

    Every call re-reads the database. Slot rows are never removed once a
    machine has been laid out; clearing a slot empties its product and
    quantity instead.
    """

    def __init__(
        self,
        database: Database,
        catalog: Optional[Catalog] = None,
        default_capacity: int = DEFAULT_CAPACITY,
        layout_size: int = LAYOUT_SIZE,
        bulk_quantity: int = BULK_QUANTITY,
    ):
        self.database = database
        self.catalog = catalog or Catalog(database)
        self.default_capacity = default_capacity
        self.layout_size = layout_size
        self.bulk_quantity = bulk_quantity

    def _slot_rows(self, machine_id: str) -> List[Dict]:
        rows = self.database.Slots.search(query.machine_id == machine_id)
        return sorted(rows, key=lambda row: row["slot_number"])

    def _slot_row(self, machine_id: str, slot_number: int) -> Optional[Dict]:
        return self.database.Slots.get(
            (query.machine_id == machine_id) & (query.slot_number == slot_number)
        )

    def _views(self, rows: List[Dict]) -> List[SlotView]:
        products = self.catalog.products_by_id(row.get("product_id") for row in rows)
        return [
            SlotView(**row, product=products.get(row.get("product_id")))
            for row in rows
        ]

    async def fetch_layout(self, machine_id: str) -> List[SlotView]:
        """All slots of a machine ordered by slot number, joined with their product."""
        await self.catalog.get_machine(machine_id)
        with store_call("fetch slot layout"):
            rows = self._slot_rows(machine_id)
            return self._views(rows)

    async def get_slot(self, machine_id: str, slot_number: int) -> Optional[SlotView]:
        with store_call("fetch slot"):
            row = self._slot_row(machine_id, slot_number)
            if not row:
                return None
            return self._views([row])[0]

    async def ensure_full_layout(self, machine_id: str, size: Optional[int] = None) -> int:
        """
        Create the empty slots missing from 1..size without touching existing ones.

        The missing rows go in as a single batch write: either all of them
        land or the call fails with StoreError and none do.

        Returns:
            Number of slots created
        """
        size = check_count("size", size if size is not None else self.layout_size, 1)
        await self.catalog.get_machine(machine_id)

        with store_call("initialize machine slots"):
            existing = [row["slot_number"] for row in self._slot_rows(machine_id)]
            missing = missing_slot_numbers(existing, size)
            if not missing:
                return 0

            records = []
            for number in missing:
                slot = build_model(
                    Slot, **empty_slot_data(machine_id, number, self.default_capacity)
                )
                records.append(slot.model_dump())
            self.database.Slots.insert_multiple(records)

        logger.info(f"Created {len(missing)} empty slot(s) for machine {machine_id}")
        return len(missing)

    async def assign(
        self,
        machine_id: str,
        slot_number: int,
        product_id: str,
        quantity: int,
        max_capacity: Optional[int] = None,
    ) -> SlotView:
        """
        Put a product in a slot with the given counts.
        Creates the slot when the number is not laid out yet.
        """
        check_count("slot_number", slot_number, 1)
        check_count("quantity", quantity, 0)
        if max_capacity is not None:
            check_count("max_capacity", max_capacity, 1)
        if not product_id:
            raise ValidationError("product_id is required")

        await self.catalog.get_machine(machine_id)
        product = await self.catalog.get_product(product_id)

        with store_call("save slot"):
            row = self._slot_row(machine_id, slot_number)
            if max_capacity is None:
                max_capacity = row["max_capacity"] if row else self.default_capacity
            if quantity > max_capacity:
                raise ValidationError(
                    f"quantity {quantity} exceeds max capacity {max_capacity}"
                )

            fields = {
                "product_id": product.id,
                "quantity": quantity,
                "max_capacity": max_capacity,
            }
            if row:
                slot = build_model(Slot, **{**row, **fields})
                self.database.Slots.update(fields, query.id == row["id"])
            else:
                slot = build_model(
                    Slot, machine_id=machine_id, slot_number=slot_number, **fields
                )
                self.database.Slots.insert(slot.model_dump())

        logger.info(
            f"Slot {slot_number} of machine {machine_id} set to {product.name} "
            f"({quantity}/{max_capacity})"
        )
        return SlotView(**slot.model_dump(), product=product)

    async def add_slot(
        self,
        machine_id: str,
        product_id: str,
        quantity: int,
        max_capacity: Optional[int] = None,
    ) -> SlotView:
        """Assign a product to a new slot numbered after the highest existing one."""
        await self.catalog.get_machine(machine_id)
        with store_call("number new slot"):
            existing = [row["slot_number"] for row in self._slot_rows(machine_id)]
        return await self.assign(
            machine_id, next_slot_number(existing), product_id, quantity, max_capacity
        )

    async def set_quantity(self, machine_id: str, slot_number: int, quantity: int) -> SlotView:
        """Restock or correct the count of an assigned slot."""
        check_count("quantity", quantity, 0)
        with store_call("update slot quantity"):
            row = self._slot_row(machine_id, slot_number)
            if not row:
                raise NotFound(f"Slot {slot_number} not found on machine {machine_id}")
            if not row.get("product_id"):
                raise ValidationError(f"Slot {slot_number} has no product assigned")
            if quantity > row["max_capacity"]:
                raise ValidationError(
                    f"quantity {quantity} exceeds max capacity {row['max_capacity']}"
                )
            self.database.Slots.update({"quantity": quantity}, query.id == row["id"])
            row["quantity"] = quantity
            return self._views([row])[0]

    async def clear(self, machine_id: str, slot_number: int) -> SlotView:
        """Empty a slot. The row, its number and its capacity stay."""
        with store_call("clear slot"):
            row = self._slot_row(machine_id, slot_number)
            if not row:
                raise NotFound(f"Slot {slot_number} not found on machine {machine_id}")
            self.database.Slots.update(
                {"product_id": None, "quantity": 0}, query.id == row["id"]
            )
            row.update(product_id=None, quantity=0)

        logger.info(f"Slot {slot_number} of machine {machine_id} cleared")
        return SlotView(**row)

    async def machines_holding(self, product_id: str) -> Set[str]:
        with store_call("find product slots"):
            rows = self.database.Slots.search(query.product_id == product_id)
        return {row["machine_id"] for row in rows}

    def _first_empty_slot(self, machine_id: str) -> Optional[Dict]:
        for row in self._slot_rows(machine_id):
            if not row.get("product_id"):
                return row
        return None

    def _assign_first_empty(self, machine_id: str, product_id: str) -> Optional[int]:
        row = self._first_empty_slot(machine_id)
        if not row:
            return None
        quantity = min(self.bulk_quantity, row["max_capacity"])
        self.database.Slots.update(
            {"product_id": product_id, "quantity": quantity}, query.id == row["id"]
        )
        return row["slot_number"]

    def _unassign(self, machine_id: str, product_id: str) -> int:
        removed = self.database.Slots.update(
            {"product_id": None, "quantity": 0},
            (query.machine_id == machine_id) & (query.product_id == product_id),
        )
        return len(removed)

    async def bulk_assign(self, product_id: str, machine_ids: Iterable[str]) -> BulkAssignResult:
        """
        Make the selected machines the set of machines carrying a product.

        Selected machines without the product get it in their lowest-numbered
        empty slot; machines holding it outside the selection lose it. Writes
        go machine by machine in selection order and are not rolled back: a
        failing machine is recorded in the result and the rest carry on.
        """
        selected = list(dict.fromkeys(machine_ids))
        if not selected:
            raise ValidationError("Select at least one machine")
        await self.catalog.get_product(product_id)

        result = BulkAssignResult(product_id=product_id)
        holders = await self.machines_holding(product_id)

        for machine_id in selected:
            if machine_id in holders:
                result.unchanged.append(machine_id)
                continue
            try:
                with store_call(f"assign product to machine {machine_id}"):
                    slot_number = self._assign_first_empty(machine_id, product_id)
            except StoreError as e:
                result.failed[machine_id] = str(e)
                continue
            if slot_number is None:
                logger.warning(f"Machine {machine_id} has no empty slot, skipping")
                result.skipped.append(machine_id)
            else:
                logger.info(f"Product {product_id} placed in slot {slot_number} of {machine_id}")
                result.assigned.append(machine_id)

        for machine_id in sorted(holders - set(selected)):
            try:
                with store_call(f"unassign product from machine {machine_id}"):
                    self._unassign(machine_id, product_id)
            except StoreError as e:
                result.failed[machine_id] = str(e)
                continue
            logger.info(f"Product {product_id} removed from machine {machine_id}")
            result.unassigned.append(machine_id)

        logger.info(f"Bulk assignment of {product_id}: {result.message}")
        return result
