"""
Transition engine for the account lifecycle.

This is the core enforcement mechanism - every status change MUST be computed here.
The engine is pure: it reads the account, the requested action and the current
time, and returns the column mutations plus the audit detail. It never touches
a session, a clock or the environment.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Optional, Union

from app.models.audit import (
    AccountLog,
    ApproveDetail,
    DeleteDetail,
    LogDetail,
    PasswordResetDetail,
    RejectDetail,
    RestoreDetail,
    SuspendDetail,
    UnsuspendDetail,
    UpdateDetail,
)
from app.models.domain import (
    APPROVAL_FIELDS,
    DELETION_FIELDS,
    PROFILE_FIELDS,
    REJECTION_FIELDS,
    SUSPENSION_FIELDS,
    Account,
)
from app.models.enums import (
    AccountStatus,
    ActionType,
    DeletionMode,
    DurationMode,
    UserType,
)
from app.services.exceptions import (
    ForbiddenError,
    IllegalTransitionError,
    InvalidParametersError,
)

DEFAULT_GRACE_PERIOD = timedelta(days=30)

ADMIN_ROLES = frozenset({UserType.OPERATOR.value, UserType.SYSTEM_ADMIN.value})
SYSTEM_ROLE = "system"

_ALL_STATUSES = frozenset(AccountStatus)
_NOT_DELETED = _ALL_STATUSES - {AccountStatus.DELETED}

# Statuses from which each action is legal.
LEGAL_TRANSITIONS: Dict[ActionType, FrozenSet[AccountStatus]] = {
    ActionType.APPROVE: frozenset({AccountStatus.PENDING}),
    ActionType.REJECT: frozenset({AccountStatus.PENDING}),
    ActionType.SUSPEND: frozenset({AccountStatus.ACTIVE}),
    ActionType.UNSUSPEND: frozenset({AccountStatus.SUSPENDED}),
    ActionType.DELETE: _NOT_DELETED,
    ActionType.RESTORE: frozenset({AccountStatus.DELETED}),
    ActionType.UPDATE: _ALL_STATUSES,
    ActionType.PASSWORD_RESET: _ALL_STATUSES,
}

_PROFILE_LIMITS = {
    "name": (2, 100),
    "organization": (0, 255),
    "position": (0, 100),
    "phone": (0, 30),
    "purpose": (0, 50),
}


@dataclass(frozen=True)
class Actor:
    """The identity performing an action: an administrator, or the system itself."""
    id: Union[int, str]
    role: str

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


SYSTEM_ACTOR = Actor(id="system", role=SYSTEM_ROLE)


@dataclass
class ActionParams:
    reason: Optional[str] = None
    duration_mode: Union[DurationMode, str, None] = DurationMode.INDEFINITE
    duration_days: Optional[int] = None
    until_date: Union[datetime, date, str, None] = None
    deletion_mode: Union[DeletionMode, str] = DeletionMode.SOFT
    send_email: bool = True
    profile: Dict[str, Any] = field(default_factory=dict)
    status: Union[AccountStatus, str, None] = None
    password_hash: Optional[str] = None
    bulk: bool = False


@dataclass
class ModerationAction:
    """A requested moderation command. Transient, never persisted."""
    type: ActionType
    target_account_id: int
    actor: Actor
    params: ActionParams = field(default_factory=ActionParams)


@dataclass
class Transition:
    """The outcome of a legal action: what to write and what to log."""
    action_type: ActionType
    from_status: AccountStatus
    to_status: Optional[AccountStatus]
    mutations: Dict[str, Any]
    detail: LogDetail
    reason: Optional[str] = None
    removes_record: bool = False

    def to_log_entry(self, account_id: int, actor_id, occurred_at: datetime) -> AccountLog:
        return AccountLog(
            account_id=account_id,
            action_type=self.action_type,
            actor_id=str(actor_id),
            reason=self.reason,
            from_status=self.from_status,
            to_status=self.to_status,
            detail=self.detail.model_dump(mode="json"),
            occurred_at=occurred_at
        )


def _cleared(*groups) -> Dict[str, Any]:
    return {name: None for group in groups for name in group}


def _required_reason(params: ActionParams) -> str:
    reason = (params.reason or "").strip()
    if not reason:
        raise InvalidParametersError("A reason is required for this action", field="reason")
    return reason


def _optional_reason(params: ActionParams) -> Optional[str]:
    reason = (params.reason or "").strip()
    return reason or None


def _coerce_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidParametersError(
            f"Invalid {field_name} '{value}'. Expected one of: {allowed}",
            field=field_name
        )


def parse_until_date(value) -> datetime:
    """Parse an until_date into a naive UTC datetime. Past dates are accepted as given."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise InvalidParametersError(f"Unparseable until_date '{value}'", field="until_date")
    else:
        raise InvalidParametersError("until_date is required for until_date suspensions", field="until_date")

    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        except (OverflowError, ValueError):
            raise InvalidParametersError(f"until_date '{value}' is out of range", field="until_date")
    return parsed


class TransitionEngine:
    """Validates moderation actions against the transition table and computes their effects."""

    def __init__(self, grace_period: timedelta = DEFAULT_GRACE_PERIOD):
        self.grace_period = grace_period

    def is_legal(self, status: AccountStatus, action_type: ActionType) -> bool:
        return status in LEGAL_TRANSITIONS.get(action_type, frozenset())

    def compute(self, account: Account, action: ModerationAction, now: datetime) -> Transition:
        """
        Compute the transition for `action` against `account` at time `now`.

        Raises:
        - ForbiddenError for self-deletion
        - InvalidParametersError for missing or malformed parameters
        - IllegalTransitionError when the action is not legal from the current status
        """
        action_type = _coerce_enum(ActionType, action.type, "action")
        handler = self._handlers.get(action_type)
        if handler is None:
            raise InvalidParametersError(f"Unsupported action '{action_type.value}'", field="action")

        if action_type == ActionType.DELETE and str(action.target_account_id) == str(action.actor.id):
            raise ForbiddenError("You cannot delete your own account")

        return handler(self, account, action, now)

    def _check_legal(self, account: Account, action_type: ActionType) -> AccountStatus:
        current = AccountStatus(account.status)
        if not self.is_legal(current, action_type):
            raise IllegalTransitionError(current, action_type)
        return current

    def _approve(self, account, action, now):
        params = action.params
        current = self._check_legal(account, ActionType.APPROVE)
        mutations = _cleared(REJECTION_FIELDS, SUSPENSION_FIELDS, DELETION_FIELDS)
        mutations.update(
            status=AccountStatus.ACTIVE,
            approved_at=now,
            approved_by=str(action.actor.id)
        )
        return Transition(
            action_type=ActionType.APPROVE,
            from_status=current,
            to_status=AccountStatus.ACTIVE,
            mutations=mutations,
            detail=ApproveDetail(send_email=params.send_email, bulk=params.bulk)
        )

    def _reject(self, account, action, now):
        params = action.params
        reason = _required_reason(params)
        current = self._check_legal(account, ActionType.REJECT)
        mutations = _cleared(APPROVAL_FIELDS, SUSPENSION_FIELDS, DELETION_FIELDS)
        mutations.update(
            status=AccountStatus.REJECTED,
            rejected_at=now,
            rejected_by=str(action.actor.id),
            rejection_reason=reason
        )
        return Transition(
            action_type=ActionType.REJECT,
            from_status=current,
            to_status=AccountStatus.REJECTED,
            mutations=mutations,
            detail=RejectDetail(send_email=params.send_email, bulk=params.bulk),
            reason=reason
        )

    def _suspend(self, account, action, now):
        params = action.params
        reason = _required_reason(params)
        if params.duration_mode is None:
            raise InvalidParametersError("duration_mode is required", field="duration_mode")
        mode = _coerce_enum(DurationMode, params.duration_mode, "duration_mode")

        duration_days = None
        until_date = None
        ends_at = None
        if mode == DurationMode.PERIOD:
            duration_days = params.duration_days
            if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days <= 0:
                raise InvalidParametersError(
                    "duration_days must be a positive integer for period suspensions",
                    field="duration_days"
                )
            try:
                ends_at = now + timedelta(days=duration_days)
            except (OverflowError, ValueError):
                raise InvalidParametersError(
                    f"duration_days {duration_days} is out of range",
                    field="duration_days"
                )
        elif mode == DurationMode.UNTIL_DATE:
            until_date = parse_until_date(params.until_date)
            ends_at = until_date

        current = self._check_legal(account, ActionType.SUSPEND)
        mutations = _cleared(DELETION_FIELDS)
        mutations.update(
            status=AccountStatus.SUSPENDED,
            suspension_reason=reason,
            suspension_started_at=now,
            suspension_ends_at=ends_at,
            suspension_mode=mode
        )
        return Transition(
            action_type=ActionType.SUSPEND,
            from_status=current,
            to_status=AccountStatus.SUSPENDED,
            mutations=mutations,
            detail=SuspendDetail(
                duration_mode=mode,
                duration_days=duration_days,
                until_date=until_date,
                ends_at=ends_at,
                send_email=params.send_email,
                bulk=params.bulk
            ),
            reason=reason
        )

    def _unsuspend(self, account, action, now):
        params = action.params
        current = self._check_legal(account, ActionType.UNSUSPEND)
        automatic = action.actor.is_system
        mutations = _cleared(SUSPENSION_FIELDS)
        mutations.update(status=AccountStatus.ACTIVE)
        return Transition(
            action_type=ActionType.UNSUSPEND,
            from_status=current,
            to_status=AccountStatus.ACTIVE,
            mutations=mutations,
            detail=UnsuspendDetail(
                automatic=automatic,
                expired_at=account.suspension_ends_at if automatic else None,
                send_email=params.send_email,
                bulk=params.bulk
            ),
            reason=_optional_reason(params)
        )

    def _delete(self, account, action, now):
        params = action.params
        reason = _required_reason(params)
        mode = _coerce_enum(DeletionMode, params.deletion_mode, "deletion_mode")
        current = self._check_legal(account, ActionType.DELETE)

        if mode == DeletionMode.HARD:
            # The log entry is written first; the row is then removed in the same transaction.
            return Transition(
                action_type=ActionType.DELETE,
                from_status=current,
                to_status=None,
                mutations={},
                detail=DeleteDetail(
                    deletion_mode=mode,
                    send_email=params.send_email,
                    bulk=params.bulk
                ),
                reason=reason,
                removes_record=True
            )

        purge_at = now + self.grace_period
        mutations = _cleared(REJECTION_FIELDS, SUSPENSION_FIELDS)
        mutations.update(
            status=AccountStatus.DELETED,
            deleted_at=now,
            deleted_by=str(action.actor.id),
            deletion_reason=reason,
            deletion_mode=mode,
            permanent_purge_at=purge_at
        )
        return Transition(
            action_type=ActionType.DELETE,
            from_status=current,
            to_status=AccountStatus.DELETED,
            mutations=mutations,
            detail=DeleteDetail(
                deletion_mode=mode,
                permanent_purge_at=purge_at,
                send_email=params.send_email,
                bulk=params.bulk
            ),
            reason=reason
        )

    def _restore(self, account, action, now):
        params = action.params
        current = self._check_legal(account, ActionType.RESTORE)
        if account.deletion_mode == DeletionMode.HARD:
            raise IllegalTransitionError(current, ActionType.RESTORE)
        mutations = _cleared(DELETION_FIELDS)
        mutations.update(status=AccountStatus.ACTIVE)
        return Transition(
            action_type=ActionType.RESTORE,
            from_status=current,
            to_status=AccountStatus.ACTIVE,
            mutations=mutations,
            detail=RestoreDetail(send_email=params.send_email, bulk=params.bulk),
            reason=_optional_reason(params)
        )

    def _update(self, account, action, now):
        """
        Administrative patch of profile fields and, optionally, a direct status override.

        The override bypasses the transition table on purpose and leaves
        sub-state fields as they are.
        """
        params = action.params
        changes: Dict[str, Any] = {}

        unknown = sorted(set(params.profile) - set(PROFILE_FIELDS))
        if unknown:
            raise InvalidParametersError(
                f"Unknown profile field(s): {', '.join(unknown)}",
                field=unknown[0]
            )
        for name, value in params.profile.items():
            if value is not None and not isinstance(value, str):
                raise InvalidParametersError(f"{name} must be a string", field=name)
            if value is not None:
                low, high = _PROFILE_LIMITS[name]
                if not low <= len(value) <= high:
                    raise InvalidParametersError(
                        f"{name} must be between {low} and {high} characters",
                        field=name
                    )
            if name == "name" and value is None:
                raise InvalidParametersError("name cannot be cleared", field=name)
            changes[name] = value

        new_status = None
        if params.status is not None:
            new_status = _coerce_enum(AccountStatus, params.status, "status")
            changes["status"] = new_status

        if not changes:
            raise InvalidParametersError("Nothing to update")

        current = self._check_legal(account, ActionType.UPDATE)
        return Transition(
            action_type=ActionType.UPDATE,
            from_status=current,
            to_status=new_status or current,
            mutations=dict(changes),
            detail=UpdateDetail(
                changes={k: getattr(v, "value", v) for k, v in changes.items()},
                status_override=new_status is not None,
                bulk=params.bulk
            )
        )

    def _password_reset(self, account, action, now):
        params = action.params
        if not params.password_hash:
            raise InvalidParametersError("A password hash is required", field="password_hash")
        current = self._check_legal(account, ActionType.PASSWORD_RESET)
        return Transition(
            action_type=ActionType.PASSWORD_RESET,
            from_status=current,
            to_status=current,
            mutations={"password_hash": params.password_hash},
            detail=PasswordResetDetail(bulk=params.bulk),
            reason="temporary_password"
        )

    _handlers = {
        ActionType.APPROVE: _approve,
        ActionType.REJECT: _reject,
        ActionType.SUSPEND: _suspend,
        ActionType.UNSUSPEND: _unsuspend,
        ActionType.DELETE: _delete,
        ActionType.RESTORE: _restore,
        ActionType.UPDATE: _update,
        ActionType.PASSWORD_RESET: _password_reset,
    }
