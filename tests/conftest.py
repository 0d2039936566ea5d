import pytest

from vendconsole.db import open_database
from vendconsole.services import Catalog, DispenseSession, SlotInventoryStore

from .helpers import RelayStub, add_machine, add_product


@pytest.fixture
def database():
    db = open_database()
    yield db
    db.close()


@pytest.fixture
def catalog(database):
    return Catalog(database)


@pytest.fixture
def store(database, catalog):
    return SlotInventoryStore(database, catalog)


@pytest.fixture
def machine(database):
    return add_machine(database, "VM-001", "Hall A")


@pytest.fixture
def cola(database):
    return add_product(database, "Cola", 0.35)


@pytest.fixture
def chips(database):
    return add_product(database, "Chips", 0.25)


@pytest.fixture
def relays():
    return RelayStub()


@pytest.fixture
def session(store, relays):
    return DispenseSession(store, relays)
