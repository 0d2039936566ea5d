import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..models import Machine
from ..utils import DispenseRejected, TransportError
from ..utils import session_logger as logger
from ..utils.messages import DISPENSE_ACK, InboundMessage, build_dispense, parse_inbound
from .inventory import SlotInventoryStore
from .relay import RelayFactory, RelayTransport


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class Notification:
    title: str
    description: str
    variant: str = "default"
    created_at: float = field(default_factory=time.time)

    @property
    def is_failure(self) -> bool:
        return self.variant == "destructive"


@dataclass
class DispenseRequest:
    machine_id: str
    machine_code: str
    slot_number: int
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    sent_at: float = field(default_factory=time.time)


def should_be_open(enabled: bool, machine: Optional[Machine]) -> bool:
    """A relay session exists only while remote dispense is on and a machine is picked."""
    return bool(enabled) and machine is not None


class DispenseSession:
    """
    Toggle-controlled relay connection for one operator view.

    Every change of the (enabled, machine) pair tears the current connection
    down; a new one is opened when the pair still calls for it. Transport
    failures park the session in the error state until the operator toggles
    again, unless auto_reconnect is set.
    """

    RECONNECT_DELAY = 5  # seconds
    MAX_RECONNECT_DELAY = 60  # seconds

    def __init__(
        self,
        store: SlotInventoryStore,
        relay_factory: RelayFactory,
        legacy_alias: bool = True,
        auto_reconnect: bool = False,
        history: int = 50,
    ):
        self.store = store
        self.relay_factory = relay_factory
        self.legacy_alias = legacy_alias
        self.auto_reconnect = auto_reconnect

        self.enabled = False
        self.machine: Optional[Machine] = None
        self.state = SessionState.DISCONNECTED
        self.in_flight: Dict[str, DispenseRequest] = {}
        self.notifications = deque(maxlen=history)
        self.listeners: List[Callable[[Notification], None]] = []

        self._transport: Optional[RelayTransport] = None
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._reconnect_delay = self.RECONNECT_DELAY
        self._lifecycle_lock = asyncio.Lock()

    # Notifications

    def add_listener(self, callback: Callable[[Notification], None]):
        self.listeners.append(callback)

    def notify(self, title: str, description: str, variant: str = "default") -> Notification:
        notification = Notification(title, description, variant)
        self.notifications.append(notification)
        if notification.is_failure:
            logger.warning(f"{title}: {description}")
        else:
            logger.info(f"{title}: {description}")
        for callback in list(self.listeners):
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")
        return notification

    def _set_state(self, state: SessionState):
        if state != self.state:
            logger.debug(f"Session {self.state.value} -> {state.value}")
            self.state = state

    # Lifecycle

    async def set_enabled(self, enabled: bool):
        async with self._lifecycle_lock:
            enabled = bool(enabled)
            if enabled == self.enabled:
                return
            self.enabled = enabled
            await self._reconcile()

    async def select_machine(self, machine: Optional[Machine]):
        async with self._lifecycle_lock:
            current = self.machine.id if self.machine else None
            wanted = machine.id if machine else None
            if current == wanted:
                return
            self.machine = machine
            await self._reconcile()

    async def reconcile(self):
        """Drop the current connection and open a fresh one if the inputs allow it."""
        async with self._lifecycle_lock:
            await self._reconcile()

    async def close(self):
        """Tear down for good (view unmounted)."""
        async with self._lifecycle_lock:
            self.enabled = False
            self.machine = None
            await self._teardown()

    async def _reconcile(self):
        # Caller holds the lifecycle lock: teardown and reopen run as one step
        await self._teardown()
        if should_be_open(self.enabled, self.machine):
            generation = self._generation
            transport = self._start_transport()
            self._task = asyncio.create_task(self._run(generation, transport))

    def _start_transport(self) -> RelayTransport:
        self._set_state(SessionState.CONNECTING)
        self._transport = self.relay_factory(self.machine)
        logger.info(f"Opening relay session for machine {self.machine.code}")
        return self._transport

    async def _teardown(self):
        self._generation += 1
        task, self._task = self._task, None
        transport, self._transport = self._transport, None

        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if transport:
            try:
                await transport.close()
            except TransportError as e:
                logger.warning(f"Error closing relay session: {e}")

        # In-flight requests get no further acknowledgement
        if self.in_flight:
            logger.info(f"Dropping {len(self.in_flight)} unacknowledged dispense request(s)")
        self.in_flight.clear()
        self._set_state(SessionState.DISCONNECTED)

    async def _run(self, generation: int, transport: RelayTransport):
        try:
            await transport.connect()
        except TransportError as e:
            self._fail(generation, transport, e)
            return

        if generation != self._generation:
            await transport.close()
            return

        self._set_state(SessionState.CONNECTED)
        self._reconnect_delay = self.RECONNECT_DELAY
        logger.info("Relay session connected")

        try:
            while True:
                frame = await transport.recv()
                if frame is None:
                    break
                if generation != self._generation:
                    return
                self.handle_frame(frame)
        except TransportError as e:
            await transport.close()
            self._fail(generation, transport, e)
            return

        if generation == self._generation:
            logger.info("Relay closed the session")
            self._transport = None
            self.in_flight.clear()
            self._set_state(SessionState.DISCONNECTED)

    def _fail(self, generation: int, transport: RelayTransport, error: Exception):
        if generation != self._generation:
            return
        if self._transport is transport:
            self._transport = None
        self.in_flight.clear()
        self._set_state(SessionState.ERROR)
        self.notify("Connection error", str(error), "destructive")

        if self.auto_reconnect and should_be_open(self.enabled, self.machine):
            delay = self._reconnect_delay
            self._reconnect_delay = min(delay * 2, self.MAX_RECONNECT_DELAY)
            logger.info(f"Reconnecting to relay in {delay}s...")
            self._task = asyncio.create_task(self._retry(generation, delay))

    async def _retry(self, generation: int, delay: float):
        await asyncio.sleep(delay)
        if generation != self._generation or not should_be_open(self.enabled, self.machine):
            return
        await self._run(generation, self._start_transport())

    # Dispense

    def _reject(self, title: str, reason: str):
        self.notify(title, reason, "destructive")
        raise DispenseRejected(title, reason)

    def pending_for_slot(self, slot_number: int) -> Optional[DispenseRequest]:
        for request in self.in_flight.values():
            if request.slot_number == slot_number:
                return request
        return None

    async def send_dispense(self, slot_number: int) -> DispenseRequest:
        """
        Ask the relay to dispense from a slot of the selected machine.
        Returns once the frame is written; the acknowledgement arrives later
        through the receive loop.
        """
        if not self.enabled:
            self._reject("Feature disabled", "Enable remote dispense first")
        if self.state != SessionState.CONNECTED or not self._transport:
            self._reject("Not connected", "Relay session is not connected")

        machine = self.machine
        slot = await self.store.get_slot(machine.id, slot_number)
        if slot is None or not slot.product_id:
            self._reject("Empty slot", f"Slot {slot_number} has no product")
        if slot.quantity <= 0:
            self._reject("Out of Stock", f"Slot {slot_number} is out of stock")
        if self.pending_for_slot(slot_number):
            self._reject("Dispense pending", f"Slot {slot_number} is awaiting acknowledgement")

        transport = self._transport
        if self.state != SessionState.CONNECTED or transport is None or self.machine is not machine:
            self._reject("Not connected", "Relay session is not connected")

        request = DispenseRequest(machine.id, machine.code, slot_number)
        frame = build_dispense(
            machine.id,
            machine.code,
            slot_number,
            request_id=request.request_id,
            legacy_alias=self.legacy_alias,
        )
        try:
            await transport.send(frame)
        except TransportError as e:
            self.notify("Send failed", "Could not send dispense command", "destructive")
            task, self._task = self._task, None
            if task and not task.done():
                task.cancel()
            await transport.close()
            self._fail(self._generation, transport, e)
            raise

        self.in_flight[request.request_id] = request
        self.notify("Dispensing...", f"Requested slot {slot_number}")
        return request

    def _match(self, message: InboundMessage) -> Optional[DispenseRequest]:
        if message.request_id and message.request_id in self.in_flight:
            return self.in_flight.pop(message.request_id)
        if message.type == DISPENSE_ACK:
            if message.slot_number is None:
                return None
            request = self.pending_for_slot(message.slot_number)
        else:
            request = next(iter(self.in_flight.values()), None)
        if request:
            del self.in_flight[request.request_id]
        return request

    def handle_frame(self, frame) -> Optional[Notification]:
        """Surface one relay frame; unknown and malformed frames are ignored."""
        message = parse_inbound(frame)
        if message is None:
            return None

        request = self._match(message)
        if message.type == DISPENSE_ACK:
            slot_number = message.slot_number
            if slot_number is None and request:
                slot_number = request.slot_number
            if slot_number is None:
                return self.notify("Dispense sent", "Dispense acknowledged")
            return self.notify("Dispense sent", f"Slot {slot_number} acknowledged")

        return self.notify("Dispense failed", message.error or "Unknown error", "destructive")

    def status(self) -> Dict:
        return {
            "state": self.state.value,
            "enabled": self.enabled,
            "machine_id": self.machine.id if self.machine else None,
            "machine_code": self.machine.code if self.machine else None,
            "in_flight": [
                {"request_id": request.request_id, "slot_number": request.slot_number}
                for request in self.in_flight.values()
            ],
        }
