from .errors import (
    ConsoleError,
    DispenseRejected,
    NotFound,
    StoreError,
    TransportError,
    ValidationError,
)
from .layout import LAYOUT_SIZE, ROW_PATTERNS, grid_layout
from .logger import (
    Logger,
    api_logger,
    app_logger,
    configure_logging,
    relay_logger,
    session_logger,
    store_logger,
)
