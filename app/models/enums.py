"""Enums for account moderation - these define the valid values for states and actions."""
from enum import Enum


class AccountStatus(str, Enum):
    """The five administrative states an account can be in."""
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"
    DELETED = "deleted"


class ActionType(str, Enum):
    """Moderation actions; also the action_type of every audit log entry."""
    APPROVE = "approve"
    REJECT = "reject"
    SUSPEND = "suspend"
    UNSUSPEND = "unsuspend"
    DELETE = "delete"
    RESTORE = "restore"
    UPDATE = "update"
    PASSWORD_RESET = "password_reset"


class DurationMode(str, Enum):
    """How the end of a suspension is determined."""
    INDEFINITE = "indefinite"
    PERIOD = "period"
    UNTIL_DATE = "until_date"


class DeletionMode(str, Enum):
    SOFT = "soft"
    HARD = "hard"


class UserType(str, Enum):
    TEACHER = "teacher"
    STAFF = "staff"
    OPERATOR = "operator"
    SYSTEM_ADMIN = "system_admin"


class NotificationEvent(str, Enum):
    """Outbound notification kinds, one per user-visible moderation outcome."""
    APPROVAL_RESULT = "approval_result"
    REJECTION = "rejection"
    SUSPENSION = "suspension"
    UNSUSPENSION = "unsuspension"
    DELETION = "deletion"
    PASSWORD_RESET = "password_reset"
