"""
Persistence for accounts and their audit log.

Every write here commits the account change and its AccountLog row in one
transaction. On failure the session is rolled back, so neither is visible.
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.logging_utils import get_logger
from app.models.audit import AccountLog
from app.models.domain import Account
from app.models.enums import AccountStatus
from app.services.exceptions import ConflictError, NotFoundError, StorageFailureError
from app.services.state_machine import Transition

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20

_SORT_COLUMNS = {
    "created_at": Account.created_at,
    "last_login_at": Account.last_login_at,
    "name": Account.name,
    "email": Account.email,
}


class AccountRepository:
    """SQLAlchemy-backed account store. One instance per request session."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, account_id: int) -> Account:
        try:
            account = self.db.query(Account).filter(Account.id == account_id).first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to load account %s: %s", account_id, exc)
            raise StorageFailureError("Account storage is unavailable")
        if account is None:
            raise NotFoundError(account_id)
        return account

    def commit_transition(
        self,
        account: Account,
        transition: Transition,
        actor_id,
        occurred_at: datetime
    ) -> AccountLog:
        """Apply the transition's mutations and append its log entry atomically."""
        account_id = account.id
        entry = transition.to_log_entry(account_id, actor_id, occurred_at)
        try:
            for name, value in transition.mutations.items():
                setattr(account, name, value)
            account.updated_at = occurred_at
            self.db.add(entry)
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning(
                "Conflict committing %s on account %s: modified concurrently",
                transition.action_type.value, account_id
            )
            raise ConflictError(
                f"Account {account_id} was modified concurrently. Reload and retry."
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Storage failure committing %s on account %s: %s",
                transition.action_type.value, account_id, exc
            )
            raise StorageFailureError("Account storage is unavailable. Nothing was changed; retry later.")

        self.db.refresh(entry)
        return entry

    def hard_delete(
        self,
        account: Account,
        transition: Transition,
        actor_id,
        occurred_at: datetime
    ) -> AccountLog:
        """Write the delete log entry, then physically remove the account, in one transaction."""
        account_id = account.id
        entry = transition.to_log_entry(account_id, actor_id, occurred_at)
        try:
            self.db.add(entry)
            self.db.flush()
            self.db.delete(account)
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning("Conflict hard-deleting account %s: modified concurrently", account_id)
            raise ConflictError(
                f"Account {account_id} was modified concurrently. Reload and retry."
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Storage failure hard-deleting account %s: %s", account_id, exc)
            raise StorageFailureError("Account storage is unavailable. Nothing was changed; retry later.")

        self.db.refresh(entry)
        return entry

    def list_accounts(
        self,
        status: Optional[AccountStatus] = None,
        user_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sort: str = "created_at",
        order: str = "desc"
    ) -> Tuple[List[Account], int]:
        """Filtered, sorted, paginated account listing. Returns (rows, total_count)."""
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))

        query = self.db.query(Account)
        if status is not None:
            query = query.filter(Account.status == status)
        if user_type:
            query = query.filter(Account.user_type == user_type)
        if search:
            keyword = f"%{search}%"
            query = query.filter(
                or_(
                    Account.name.ilike(keyword),
                    Account.email.ilike(keyword),
                    Account.organization.ilike(keyword),
                )
            )

        total = query.count()

        column = _SORT_COLUMNS.get(sort, Account.created_at)
        ordering = column.asc() if order.lower() == "asc" else column.desc()
        rows = (
            query.order_by(ordering, Account.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def status_counts(self) -> Dict[str, int]:
        rows = (
            self.db.query(Account.status, func.count(Account.id))
            .group_by(Account.status)
            .all()
        )
        return {AccountStatus(status).value: count for status, count in rows}

    def list_logs(self, account_id: int) -> List[AccountLog]:
        """All log entries for an account, newest first. Works after a hard delete."""
        return (
            self.db.query(AccountLog)
            .filter(AccountLog.account_id == account_id)
            .order_by(AccountLog.occurred_at.desc(), AccountLog.id.desc())
            .all()
        )

    def expired_suspensions(self, now: datetime) -> List[Account]:
        return (
            self.db.query(Account)
            .filter(
                Account.status == AccountStatus.SUSPENDED,
                Account.suspension_ends_at.isnot(None),
                Account.suspension_ends_at < now,
            )
            .order_by(Account.id)
            .all()
        )
