"""Exception hierarchy for the acquisition scheduler."""


class SchedulerError(Exception):
    """Base class for scheduler errors."""

    pass


class ValidationError(SchedulerError):
    """Raised when a request payload is malformed."""

    pass


class SourceValidationError(ValidationError):
    """Raised when a source reference or source type is not acceptable."""

    pass


class NotFoundError(SchedulerError):
    """Raised when an operation references an unknown entity."""

    pass


class SourceNotFoundError(NotFoundError):
    """Raised when a source id is not present in the scheduler state."""

    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source {source_id} not found")
        self.source_id = source_id


class StoreError(SchedulerError):
    """Raised when the backing store cannot be read or written."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class ExecutorError(SchedulerError):
    """Raised by executor internals when a source cannot be processed at all."""

    pass


class SchedulerBusyError(SchedulerError):
    """Raised when a run is requested while another run is in flight."""

    pass
