import asyncio

from vendconsole.models import Machine, Product, Slot
from vendconsole.services.relay import RelayTransport
from vendconsole.utils import TransportError


class FakeRelay(RelayTransport):
    """In-memory relay: records sent frames, replays pushed ones."""

    def __init__(self, fail_connect=False, fail_send=False):
        self.fail_connect = fail_connect
        self.fail_send = fail_send
        self.sent = []
        self.inbox = None
        self.connected = False
        self.closed = False

    async def connect(self):
        if self.fail_connect:
            raise TransportError("relay refused connection")
        self.inbox = asyncio.Queue()
        self.connected = True

    async def send(self, frame):
        if self.fail_send:
            raise TransportError("broken pipe")
        self.sent.append(frame)

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.connected = False
        self.closed = True

    def push(self, frame):
        self.inbox.put_nowait(frame)


class RelayStub:
    def __init__(self):
        self.created = []
        self.fail_connect = False
        self.fail_send = False

    def __call__(self, machine):
        relay = FakeRelay(self.fail_connect, self.fail_send)
        self.created.append(relay)
        return relay

    @property
    def last(self):
        return self.created[-1]


async def settle(rounds=5):
    for _ in range(rounds):
        await asyncio.sleep(0)


def add_machine(database, code, location="Lobby", status="active"):
    machine = Machine(code=code, location=location, status=status)
    database.Machines.insert(machine.model_dump())
    return machine


def add_product(database, name, price=0.25):
    product = Product(name=name, price=price)
    database.Products.insert(product.model_dump())
    return product


def add_slot(database, machine, number, product=None, quantity=0, max_capacity=10):
    slot = Slot(
        machine_id=machine.id,
        slot_number=number,
        product_id=product.id if product else None,
        quantity=quantity,
        max_capacity=max_capacity,
    )
    database.Slots.insert(slot.model_dump())
    return slot


async def wait_for_state(session, *states, timeout=5.0):
    async def _wait():
        while session.state not in states:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_wait(), timeout=timeout)
