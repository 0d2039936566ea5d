from .catalog import Catalog
from .inventory import BulkAssignResult, SlotInventoryStore
from .pricing import MachinePriceBook
from .relay import MQTTRelay, RelayTransport, WebSocketRelay, relay_factory
from .reports import Reports, stock_status
from .session import (
    DispenseRequest,
    DispenseSession,
    Notification,
    SessionState,
    should_be_open,
)
