class SessionNotFound(Exception):
    pass


class StorageUnavailable(Exception):
    """The record store could not be read or written."""


class InvalidTransition(Exception):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move from {current!r} to {requested!r}.")
        self.current = current
        self.requested = requested


class PhaseClosed(Exception):
    """Raised when an operation only allowed while planning is attempted later."""
