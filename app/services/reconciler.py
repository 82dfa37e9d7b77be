"""
Automatic lifting of elapsed suspensions.

reconcile() must run before any decision that depends on an account's status
(see ModerationService.check_access and ModerationService.apply). sweep() is an
optional catch-up for list and stats views.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm.exc import ObjectDeletedError

from app.logging_utils import get_logger
from app.models.domain import Account
from app.models.enums import AccountStatus, ActionType
from app.services.exceptions import ModerationError
from app.services.repository import AccountRepository
from app.services.state_machine import (
    SYSTEM_ACTOR,
    ActionParams,
    ModerationAction,
    TransitionEngine,
)

logger = get_logger(__name__)


class ExpiryReconciler:
    """Applies the unsuspend transition, as the system actor, once a suspension window has passed."""

    def __init__(self, repository: AccountRepository, engine: Optional[TransitionEngine] = None):
        self.repository = repository
        self.engine = engine or TransitionEngine()

    @staticmethod
    def is_expired(account: Account, now: datetime) -> bool:
        return (
            account.status == AccountStatus.SUSPENDED
            and account.suspension_ends_at is not None
            and now > account.suspension_ends_at
        )

    def reconcile(self, account: Account, now: datetime) -> Account:
        """Return the account, unsuspended and logged if its suspension has elapsed."""
        if not self.is_expired(account, now):
            return account

        action = ModerationAction(
            type=ActionType.UNSUSPEND,
            target_account_id=account.id,
            actor=SYSTEM_ACTOR,
            params=ActionParams(reason="Suspension period elapsed", send_email=False)
        )
        ends_at = account.suspension_ends_at
        transition = self.engine.compute(account, action, now)
        self.repository.commit_transition(account, transition, SYSTEM_ACTOR.id, now)
        logger.info("Automatically unsuspended account %s (suspension ended %s)", account.id, ends_at)
        return account

    def sweep(self, now: datetime) -> List[int]:
        """Reconcile every expired suspension. Returns the ids that were unsuspended."""
        reconciled = []
        # Ids are read up front: each commit below expires every loaded account.
        candidates = [(account.id, account) for account in self.repository.expired_suspensions(now)]
        for account_id, account in candidates:
            try:
                self.reconcile(account, now)
            except ModerationError as exc:
                # Another writer got there first; the just-in-time check covers this account.
                logger.warning("Sweep skipped account %s: %s", account_id, exc.message)
                continue
            except ObjectDeletedError:
                logger.warning("Sweep skipped account %s: removed concurrently", account_id)
                continue
            reconciled.append(account_id)
        return reconciled
