import pytest

from vendconsole.services import MachinePriceBook
from vendconsole.services.pricing import parse_price
from vendconsole.utils import NotFound, StoreError, ValidationError

from .helpers import add_machine, add_product


@pytest.fixture
def prices(database, catalog):
    return MachinePriceBook(database, catalog)


@pytest.mark.parametrize("value,expected", [("0.450", 0.45), (1, 1.0), ("0", 0.0), (2.5, 2.5)])
def test_parse_price_accepts_numbers(value, expected):
    assert parse_price(value) == expected


@pytest.mark.parametrize("value", ["", "abc", "-1", None, True, float("nan")])
def test_parse_price_rejects_bad_input(value):
    with pytest.raises(ValidationError):
        parse_price(value)


@pytest.mark.asyncio
async def test_add_and_list_prices(prices, machine, cola, chips):
    await prices.add_price(machine.id, cola.id, "0.400")
    await prices.add_price(machine.id, chips.id, 0.3)

    listed = await prices.list_prices(machine.id)

    assert {entry.product.name: entry.price for entry in listed} == {"Cola": 0.4, "Chips": 0.3}
    assert all(entry.active for entry in listed)


@pytest.mark.asyncio
async def test_duplicate_price_rejected(prices, machine, cola):
    await prices.add_price(machine.id, cola.id, 0.4)

    with pytest.raises(ValidationError):
        await prices.add_price(machine.id, cola.id, 0.5)
    assert len(await prices.list_prices(machine.id)) == 1


@pytest.mark.asyncio
async def test_add_price_requires_product(prices, machine):
    with pytest.raises(ValidationError):
        await prices.add_price(machine.id, "", 0.4)
    with pytest.raises(NotFound):
        await prices.add_price(machine.id, "missing", 0.4)


@pytest.mark.asyncio
async def test_update_toggle_and_remove(prices, machine, cola):
    record = await prices.add_price(machine.id, cola.id, 0.4)

    assert (await prices.update_price(record.id, "0.55")).price == 0.55
    assert (await prices.set_active(record.id, False)).active is False

    await prices.remove_price(record.id)
    assert await prices.list_prices(machine.id) == []
    with pytest.raises(NotFound):
        await prices.remove_price(record.id)


@pytest.mark.asyncio
async def test_unassigned_products(prices, machine, cola, chips):
    await prices.add_price(machine.id, cola.id, 0.4)

    remaining = await prices.unassigned_products(machine.id)

    assert [product.id for product in remaining] == [chips.id]


@pytest.mark.asyncio
async def test_effective_price_uses_active_override(database, prices, machine, cola):
    other = add_machine(database, "VM-002")
    record = await prices.add_price(machine.id, cola.id, 0.5)

    assert await prices.effective_price(machine.id, cola.id) == 0.5
    assert await prices.effective_price(other.id, cola.id) == 0.35

    await prices.set_active(record.id, False)
    assert await prices.effective_price(machine.id, cola.id) == 0.35


@pytest.mark.asyncio
async def test_prices_for_unknown_machine(prices):
    with pytest.raises(NotFound):
        await prices.list_prices("missing")


@pytest.mark.asyncio
async def test_store_failures_name_the_price_record(database, prices, machine, cola, monkeypatch):
    record = await prices.add_price(machine.id, cola.id, 0.4)

    def broken(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(database.MachinePrices, "remove", broken)
    with pytest.raises(StoreError, match="remove price"):
        await prices.remove_price(record.id)

    other = add_product(database, "Water", 0.2)
    monkeypatch.setattr(database.MachinePrices, "insert", broken)
    with pytest.raises(StoreError, match="add price"):
        await prices.add_price(machine.id, other.id, 0.3)
