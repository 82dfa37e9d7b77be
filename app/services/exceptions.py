"""Typed errors raised by the moderation services."""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_PARAMETERS = "invalid_parameters"
    ILLEGAL_TRANSITION = "illegal_transition"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    STORAGE_FAILURE = "storage_failure"


class ModerationError(Exception):
    """
    Base class for every refused or failed moderation action.

    No partial state exists when one of these is raised: validation errors
    fire before anything is touched, and commit errors are rolled back.
    """
    kind: ErrorKind

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class NotFoundError(ModerationError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, account_id):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class InvalidParametersError(ModerationError):
    kind = ErrorKind.INVALID_PARAMETERS

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class IllegalTransitionError(ModerationError):
    kind = ErrorKind.ILLEGAL_TRANSITION

    def __init__(self, current_status, action):
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {_value(action)} an account in status '{_value(current_status)}'"
        )


class ForbiddenError(ModerationError):
    kind = ErrorKind.FORBIDDEN


class ConflictError(ModerationError):
    """The account changed between load and commit. Reload and retry."""
    kind = ErrorKind.CONFLICT


class StorageFailureError(ModerationError):
    """Persistence was unavailable. Nothing was written; safe to retry."""
    kind = ErrorKind.STORAGE_FAILURE


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)
