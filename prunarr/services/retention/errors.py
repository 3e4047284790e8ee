"""Exceptions raised by the retention services."""


class RetentionError(Exception):
    """Base class for retention errors."""

    pass


class ConfigurationError(RetentionError):
    """A required collaborator was not provided."""

    pass


class ItemNotFoundError(RetentionError):
    """Raised when an operation references a missing media item."""

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Media item {item_id} not found")


class ConflictError(RetentionError):
    """The requested transition is not allowed in the item's current state."""

    def __init__(self, item_id: int, message: str):
        self.item_id = item_id
        super().__init__(message)


class ItemProtectedError(ConflictError):
    def __init__(self, item_id: int, reason: str | None = None):
        message = f"Media item {item_id} is protected and cannot be marked for deletion"
        if reason:
            message += f" ({reason})"
        super().__init__(item_id, message)


class NotProtectedError(ConflictError):
    def __init__(self, item_id: int):
        super().__init__(item_id, f"Media item {item_id} is not protected")


class NotInQueueError(ConflictError):
    def __init__(self, item_id: int):
        super().__init__(item_id, f"Media item {item_id} is not in the deletion queue")


class AlreadyDeletedError(ConflictError):
    def __init__(self, item_id: int):
        super().__init__(item_id, f"Media item {item_id} is already deleted")


class ExecutionError(RetentionError):
    """The deletion executor failed for one item."""

    pass


class DeletionCancelledError(ExecutionError):
    """The consumer of a progress stream went away before the deletion finished."""

    pass
