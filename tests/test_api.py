import pytest
from fastapi.testclient import TestClient

from vendconsole.api import create_app
from vendconsole.config import ConsoleConfig
from vendconsole.db import open_database

from .helpers import RelayStub


@pytest.fixture
def relays():
    return RelayStub()


@pytest.fixture
def client(tmp_path, relays):
    config = ConsoleConfig(str(tmp_path / "console_config.json"))
    app = create_app(config, open_database(), relay=relays)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def machine(client):
    response = client.post("/machines", json={"code": "VM-001", "location": "Hall A"})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def cola(client):
    response = client.post("/products", json={"name": "Cola", "price": 0.35})
    assert response.status_code == 201
    return response.json()


def test_ensure_layout_and_fetch(client, machine):
    response = client.post(f"/machines/{machine['id']}/slots/ensure")
    assert response.json()["created"] == 60

    slots = client.get(f"/machines/{machine['id']}/slots").json()
    assert [slot["slot_number"] for slot in slots] == list(range(1, 61))
    assert client.post(f"/machines/{machine['id']}/slots/ensure").json()["created"] == 0


def test_grid_groups_rows(client, machine):
    client.post(f"/machines/{machine['id']}/slots/ensure")

    grid = client.get(f"/machines/{machine['id']}/grid").json()

    assert grid["total"] == 60
    assert grid["occupied"] == 0
    assert [len(row) for row in grid["rows"]] == [5, 10, 5, 10, 10, 10]


def test_assign_update_and_clear(client, machine, cola):
    url = f"/machines/{machine['id']}/slots/4"

    slot = client.put(url, json={"product_id": cola["id"], "quantity": 6}).json()
    assert slot["product"]["name"] == "Cola"
    assert slot["quantity"] == 6

    assert client.patch(url, json={"quantity": 2}).json()["quantity"] == 2

    cleared = client.delete(url).json()
    assert cleared["product_id"] is None
    assert cleared["quantity"] == 0


def test_assign_over_capacity_is_bad_request(client, machine, cola):
    response = client.put(
        f"/machines/{machine['id']}/slots/4",
        json={"product_id": cola["id"], "quantity": 11},
    )

    assert response.status_code == 400
    assert "detail" in response.json()


def test_unknown_machine_is_not_found(client):
    assert client.get("/machines/missing/slots").status_code == 404


def test_duplicate_machine_code(client, machine):
    response = client.post("/machines", json={"code": "VM-001"})

    assert response.status_code == 400


def test_bulk_assign(client, machine, cola):
    client.post(f"/machines/{machine['id']}/slots/ensure", json={"size": 3})

    body = client.post(
        "/bulk-assign", json={"product_id": cola["id"], "machine_ids": [machine["id"]]}
    ).json()

    assert body["assigned"] == [machine["id"]]
    assert body["message"] == "Product assigned to 1 machine(s)"
    slot = client.get(f"/machines/{machine['id']}/slots").json()[0]
    assert (slot["product_id"], slot["quantity"]) == (cola["id"], 5)


def test_machine_prices(client, machine, cola):
    url = f"/machines/{machine['id']}/prices"

    created = client.post(url, json={"product_id": cola["id"], "price": "0.400"})
    assert created.status_code == 201
    price_id = created.json()["id"]

    assert client.get(f"/machines/{machine['id']}/unpriced").json() == []
    assert client.patch(f"/prices/{price_id}", json={"price": "0.5"}).json()["price"] == 0.5
    assert client.patch(f"/prices/{price_id}", json={}).status_code == 400
    assert client.post(url, json={"product_id": cola["id"], "price": "x"}).status_code == 400

    assert client.delete(f"/prices/{price_id}").status_code == 204
    assert client.get(url).json() == []


def test_stock_overview(client, machine, cola):
    client.put(f"/machines/{machine['id']}/slots/1", json={"product_id": cola["id"], "quantity": 1})

    body = client.get("/stock", params={"machine_id": machine["id"]}).json()

    assert body["totals"]["low_stock_slots"] == 1
    assert body["items"][0]["status"] == "low"


def test_sales_summary_empty(client):
    body = client.get("/sales/summary").json()

    assert body["total_units"] == 0
    assert body["machines"] == []


def test_dispense_rejected_when_disabled(client, machine):
    response = client.post("/remote/dispense", json={"slot_number": 1})

    assert response.status_code == 409
    assert "Feature disabled" in response.json()["detail"]
    notes = client.get("/remote/notifications").json()
    assert notes[0]["title"] == "Feature disabled"


def test_remote_machine_must_be_active(client):
    parked = client.post("/machines", json={"code": "VM-009", "status": "maintenance"}).json()

    response = client.post("/remote/machine", json={"machine_id": parked["id"]})

    assert response.status_code == 400


def test_remote_status_defaults(client):
    status = client.get("/remote/status").json()

    assert status["enabled"] is False
    assert status["state"] == "disconnected"
    assert status["in_flight"] == []


def test_add_slot_appends_after_last(client, machine, cola):
    client.post(f"/machines/{machine['id']}/slots/ensure", json={"size": 4})

    response = client.post(
        f"/machines/{machine['id']}/slots", json={"product_id": cola["id"], "quantity": 2}
    )

    assert response.status_code == 201
    assert response.json()["slot_number"] == 5


def test_bad_default_capacity_is_bad_request(tmp_path, relays, monkeypatch):
    monkeypatch.setenv("DEFAULT_CAPACITY", "0")
    config = ConsoleConfig(str(tmp_path / "console_config.json"))
    with TestClient(create_app(config, open_database(), relay=relays)) as client:
        machine = client.post("/machines", json={"code": "VM-001"}).json()

        response = client.post(f"/machines/{machine['id']}/slots/ensure")

    assert response.status_code == 400
