from typing import Dict, Iterable, List, Sequence

LAYOUT_SIZE = 60

# Physical cabinet rows of the 60-slot machine. Wide-product rows only use
# the odd positions.
ROW_PATTERNS = [
    [1, 3, 5, 7, 9],
    list(range(11, 21)),
    [21, 23, 25, 27, 29],
    list(range(31, 41)),
    list(range(41, 51)),
    list(range(51, 61)),
]


def empty_slot_data(
    machine_id: str, slot_number: int, max_capacity: int
) -> Dict:
    """
    Create the record for an unassigned slot
    Args:
        machine_id: Owning machine id
        slot_number: Slot number (1-based)
        max_capacity: Capacity given to the new slot

    Returns:
        Dictionary ready to be inserted in the slots table
    """
    if slot_number < 1:
        raise ValueError("Slot number must be >= 1")

    return {
        "machine_id": machine_id,
        "slot_number": slot_number,
        "product_id": None,
        "quantity": 0,
        "max_capacity": max_capacity,
    }


def missing_slot_numbers(existing: Iterable[int], size: int = LAYOUT_SIZE) -> List[int]:
    present = set(existing)
    return [number for number in range(1, size + 1) if number not in present]


def next_slot_number(existing: Iterable[int]) -> int:
    numbers = list(existing)
    if not numbers:
        return 1
    return max(numbers) + 1


def occupied_count(slots: Sequence) -> int:
    return sum(1 for slot in slots if slot.product_id)


def grid_layout(slots: Sequence, patterns: Sequence[Sequence[int]] = ROW_PATTERNS) -> List[List]:
    """
    Map fetched slots onto the cabinet rows.
    Numbers with no slot are dropped, then rows left empty are dropped.
    """
    by_number = {slot.slot_number: slot for slot in slots}
    rows = []
    for pattern in patterns:
        row = [by_number[number] for number in pattern if number in by_number]
        if row:
            rows.append(row)
    return rows
