class ZenTradeError(Exception):
    """Base class for every error raised by the portfolio engine."""


class ValidationError(ZenTradeError):
    """A required field is missing or malformed. Nothing was mutated."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class ChecklistValidationError(ValidationError):
    pass


class PositionNotFoundError(ZenTradeError):
    def __init__(self, position_id: str):
        super().__init__(f"No position with id {position_id!r}")
        self.position_id = position_id


class StorageError(ZenTradeError):
    """A durable write failed. In-memory state is still authoritative."""


class MalformedBackupError(ZenTradeError):
    pass
