"""Error taxonomy shared by the renumbering, audit and store services."""
from typing import List, Optional


class TagflowError(Exception):
    """Base class for every error raised by the tagflow services."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(TagflowError):
    """
    Malformed input (pattern, numbering parameters, empty batch).
    Raised before the store is touched; never retried automatically.
    """


class ConflictError(TagflowError):
    """
    Raised when a batch proposes the same tag more than once.
    This is a hard stop - there is no override.
    """

    def __init__(self, message: str, duplicates: Optional[List[str]] = None):
        self.duplicates = duplicates or []
        super().__init__(message)


class SoftConflictError(TagflowError):
    """
    Raised when proposed tags collide with active tags outside the batch.
    The operator may confirm and apply anyway.
    """

    def __init__(self, message: str, conflicts: Optional[List[str]] = None):
        self.conflicts = conflicts or []
        super().__init__(message)


class StorageError(TagflowError):
    """Any persistence failure. Inside a batch apply it triggers a full rollback."""


class ImmutableAuditError(ValueError):
    """Raised when something tries to update or delete a written audit entry."""
