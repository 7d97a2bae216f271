"""Exception types raised by the fleet package."""


class FleetError(Exception):
    """Base class for all fleet errors."""


class ValidationError(FleetError):
    """A required field is missing or invalid. Nothing was persisted."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class NotFoundError(FleetError):
    """A car, alert, plan or shop does not exist."""


class StorageReadError(FleetError):
    """Stored data under a key could not be decoded."""

    def __init__(self, key: str, message: str):
        super().__init__(f"Corrupt data under '{key}': {message}")
        self.key = key


class StorageWriteError(FleetError):
    """Data could not be written (quota exceeded, IO failure)."""


class BackendError(FleetError):
    """The REST backend could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
