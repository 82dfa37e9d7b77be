"""
Moderation service - loads an account, runs the transition engine, persists
the result with its audit entry, and dispatches the notification.
"""
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.logging_utils import get_logger
from app.models.audit import AccountLog
from app.models.domain import Account
from app.models.enums import AccountStatus, ActionType, DeletionMode, NotificationEvent
from app.services.exceptions import ForbiddenError, InvalidParametersError
from app.services.notifier import Notifier
from app.services.reconciler import ExpiryReconciler
from app.services.repository import AccountRepository
from app.services.state_machine import (
    ActionParams,
    Actor,
    ModerationAction,
    Transition,
    TransitionEngine,
)

logger = get_logger(__name__)

_NOTIFICATION_EVENTS = {
    ActionType.APPROVE: NotificationEvent.APPROVAL_RESULT,
    ActionType.REJECT: NotificationEvent.REJECTION,
    ActionType.SUSPEND: NotificationEvent.SUSPENSION,
    ActionType.UNSUSPEND: NotificationEvent.UNSUSPENSION,
    ActionType.RESTORE: NotificationEvent.UNSUSPENSION,
    ActionType.DELETE: NotificationEvent.DELETION,
    ActionType.PASSWORD_RESET: NotificationEvent.PASSWORD_RESET,
}

# Messages for the access gate, per non-active status.
_ACCESS_DENIED = {
    AccountStatus.SUSPENDED: "This account is suspended. Contact an administrator.",
    AccountStatus.DELETED: "This account has been deleted.",
    AccountStatus.PENDING: "This account is awaiting administrator approval.",
    AccountStatus.REJECTED: "This registration was rejected. Contact an administrator.",
}

_TEMP_PASSWORD_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class ModerationResult:
    account_id: int
    action_type: ActionType
    status: Optional[AccountStatus]  # None once the record has been removed
    log_id: int


def generate_temporary_password() -> str:
    def chunk() -> str:
        return "".join(secrets.choice(_TEMP_PASSWORD_ALPHABET) for _ in range(4))
    return f"TMP-{chunk()}-{chunk()}!"


class ModerationService:
    """Entry point for every administrative change to an account."""

    def __init__(
        self,
        db: Session,
        notifier: Notifier,
        clock: Callable[[], datetime] = datetime.utcnow,
        engine: Optional[TransitionEngine] = None,
        password_hasher: Optional[Callable[[str], str]] = None,
        notifications_enabled: bool = True
    ):
        self.db = db
        self.repository = AccountRepository(db)
        self.engine = engine or TransitionEngine()
        self.reconciler = ExpiryReconciler(self.repository, self.engine)
        self.notifier = notifier
        self.clock = clock
        self.password_hasher = password_hasher
        self.notifications_enabled = notifications_enabled

    def apply(self, action: ModerationAction, notification_detail: Optional[Dict[str, Any]] = None) -> ModerationResult:
        """
        Apply one moderation action.

        Order matters:
        1. role re-check and self-deletion guard (no I/O)
        2. load, then reconcile an elapsed suspension before the status is used
        3. compute and commit the transition with its log entry atomically
        4. enqueue the notification (best-effort, after commit)
        """
        self._authorize(action)

        now = self.clock()
        account = self.repository.load(action.target_account_id)
        account = self.reconciler.reconcile(account, now)

        transition = self.engine.compute(account, action, now)

        # Captured before commit: a hard delete removes the row.
        recipient = (account.email, account.name)

        if transition.removes_record:
            entry = self.repository.hard_delete(account, transition, action.actor.id, now)
        else:
            entry = self.repository.commit_transition(account, transition, action.actor.id, now)

        logger.info(
            "Account %s: %s by %s (%s -> %s)",
            action.target_account_id,
            transition.action_type.value,
            action.actor.id,
            transition.from_status.value,
            transition.to_status.value if transition.to_status else "removed",
        )

        if action.params.send_email:
            self._notify(transition, recipient, now, notification_detail)

        return ModerationResult(
            account_id=action.target_account_id,
            action_type=transition.action_type,
            status=transition.to_status,
            log_id=entry.id
        )

    def _authorize(self, action: ModerationAction) -> None:
        actor = action.actor
        if not (actor.is_admin or actor.is_system):
            raise ForbiddenError("Administrator role required")
        if action.type == ActionType.DELETE and str(action.target_account_id) == str(actor.id):
            raise ForbiddenError("You cannot delete your own account")

    def _notify(
        self,
        transition: Transition,
        recipient: Tuple[str, str],
        now: datetime,
        extra: Optional[Dict[str, Any]]
    ) -> None:
        event = _NOTIFICATION_EVENTS.get(transition.action_type)
        if event is None or not self.notifications_enabled:
            return

        mutations = transition.mutations
        detail: Dict[str, Any] = {"reason": transition.reason}
        if transition.action_type == ActionType.SUSPEND:
            detail.update(started_at=now, ends_at=mutations.get("suspension_ends_at"))
        elif transition.action_type == ActionType.DELETE:
            detail.update(
                deletion_mode=transition.detail.deletion_mode.value,
                permanent_purge_at=mutations.get("permanent_purge_at")
            )
        if extra:
            detail.update(extra)

        email, name = recipient
        try:
            self.notifier.enqueue(event, email, name, detail)
        except Exception:
            # Delivery is best-effort; the transition is already committed.
            logger.exception("Failed to enqueue %s notification for %s", event.value, email)

    # Per-action operations

    def approve(self, account_id: int, actor: Actor, send_email: bool = True) -> ModerationResult:
        return self.apply(ModerationAction(
            ActionType.APPROVE, account_id, actor, ActionParams(send_email=send_email)
        ))

    def reject(self, account_id: int, actor: Actor, reason: str, send_email: bool = True) -> ModerationResult:
        return self.apply(ModerationAction(
            ActionType.REJECT, account_id, actor, ActionParams(reason=reason, send_email=send_email)
        ))

    def suspend(
        self,
        account_id: int,
        actor: Actor,
        reason: str,
        duration_mode="indefinite",
        duration_days: Optional[int] = None,
        until_date=None,
        send_email: bool = True
    ) -> ModerationResult:
        params = ActionParams(
            reason=reason,
            duration_mode=duration_mode,
            duration_days=duration_days,
            until_date=until_date,
            send_email=send_email
        )
        return self.apply(ModerationAction(ActionType.SUSPEND, account_id, actor, params))

    def unsuspend(
        self,
        account_id: int,
        actor: Actor,
        reason: Optional[str] = None,
        send_email: bool = True
    ) -> ModerationResult:
        return self.apply(ModerationAction(
            ActionType.UNSUSPEND, account_id, actor, ActionParams(reason=reason, send_email=send_email)
        ))

    def soft_delete(self, account_id: int, actor: Actor, reason: str, send_email: bool = True) -> ModerationResult:
        params = ActionParams(reason=reason, deletion_mode=DeletionMode.SOFT, send_email=send_email)
        return self.apply(ModerationAction(ActionType.DELETE, account_id, actor, params))

    def hard_delete(self, account_id: int, actor: Actor, reason: str, send_email: bool = True) -> ModerationResult:
        params = ActionParams(reason=reason, deletion_mode=DeletionMode.HARD, send_email=send_email)
        return self.apply(ModerationAction(ActionType.DELETE, account_id, actor, params))

    def restore(
        self,
        account_id: int,
        actor: Actor,
        reason: Optional[str] = None,
        send_email: bool = True
    ) -> ModerationResult:
        return self.apply(ModerationAction(
            ActionType.RESTORE, account_id, actor, ActionParams(reason=reason, send_email=send_email)
        ))

    def update(
        self,
        account_id: int,
        actor: Actor,
        profile: Optional[Dict[str, Any]] = None,
        status=None
    ) -> ModerationResult:
        params = ActionParams(profile=dict(profile or {}), status=status, send_email=False)
        return self.apply(ModerationAction(ActionType.UPDATE, account_id, actor, params))

    def reset_password(self, account_id: int, actor: Actor, method: str = "temporary") -> ModerationResult:
        """Issue a temporary password. The password goes out by mail only; it is never logged."""
        if method != "temporary":
            raise InvalidParametersError(f"Password reset method '{method}' is not supported", field="method")
        if self.password_hasher is None:
            raise InvalidParametersError("Password resets are not available: no password hasher configured")

        temporary_password = generate_temporary_password()
        params = ActionParams(password_hash=self.password_hasher(temporary_password), send_email=True)
        return self.apply(
            ModerationAction(ActionType.PASSWORD_RESET, account_id, actor, params),
            notification_detail={"temporary_password": temporary_password}
        )

    # Read path

    def get_account(self, account_id: int) -> Account:
        account = self.repository.load(account_id)
        return self.reconciler.reconcile(account, self.clock())

    def check_access(self, account_id: int) -> Account:
        """
        Authorization gate for the account holder.

        Reconciles first so an elapsed suspension never blocks access.
        Raises ForbiddenError unless the account is active.
        """
        account = self.get_account(account_id)
        status = AccountStatus(account.status)
        if status != AccountStatus.ACTIVE:
            raise ForbiddenError(_ACCESS_DENIED[status])
        return account

    def list_accounts(self, **filters) -> Tuple[List[Account], int]:
        self.reconciler.sweep(self.clock())
        return self.repository.list_accounts(**filters)

    def status_counts(self) -> Dict[str, int]:
        self.reconciler.sweep(self.clock())
        return self.repository.status_counts()

    def account_logs(self, account_id: int) -> List[AccountLog]:
        return self.repository.list_logs(account_id)
