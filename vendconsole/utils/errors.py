class ConsoleError(Exception):
    """Base class for every failure the console reports to an operator."""


class ValidationError(ConsoleError):
    """Input rejected before any write reached the store."""


class NotFound(ConsoleError):
    """A machine, product, slot or price record does not exist."""


class StoreError(ConsoleError):
    """The backing database failed to read or write."""


class TransportError(ConsoleError):
    """The relay connection could not be opened or broke while in use."""


class DispenseRejected(ConsoleError):
    """A dispense request failed a precondition and nothing was sent."""

    def __init__(self, title: str, reason: str):
        super().__init__(f"{title}: {reason}")
        self.title = title
        self.reason = reason
