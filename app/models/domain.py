"""Domain model - the account record and its administrative sub-states."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Integer, DateTime, Enum as SQLEnum, Text

from app.database import Base
from app.models.enums import AccountStatus, DeletionMode, DurationMode, UserType


@dataclass(frozen=True)
class Approval:
    approved_at: datetime
    approved_by: Optional[str]


@dataclass(frozen=True)
class Rejection:
    rejected_at: datetime
    rejected_by: Optional[str]
    reason: Optional[str]


@dataclass(frozen=True)
class Suspension:
    reason: Optional[str]
    started_at: Optional[datetime]
    ends_at: Optional[datetime]
    duration_mode: Optional[DurationMode]


@dataclass(frozen=True)
class Deletion:
    deleted_at: datetime
    deleted_by: Optional[str]
    reason: Optional[str]
    mode: Optional[DeletionMode]
    permanent_purge_at: Optional[datetime]


# Column groups per sub-state. A transition that leaves a sub-state clears its group.
APPROVAL_FIELDS = ("approved_at", "approved_by")
REJECTION_FIELDS = ("rejected_at", "rejected_by", "rejection_reason")
SUSPENSION_FIELDS = (
    "suspension_reason",
    "suspension_started_at",
    "suspension_ends_at",
    "suspension_mode",
)
DELETION_FIELDS = (
    "deleted_at",
    "deleted_by",
    "deletion_reason",
    "deletion_mode",
    "permanent_purge_at",
)

PROFILE_FIELDS = ("name", "phone", "organization", "position", "purpose")


class Account(Base):
    """
    A user account as seen by administrators.

    Moves between pending, active, suspended, rejected and deleted only through
    TransitionEngine-approved actions (registration creates it as pending).

    Invariants:
    - suspension_ends_at is set iff suspension_mode is period or until_date
    - permanent_purge_at is set only for soft deletes
    - version is bumped on every flush; stale writers get a conflict
    """
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=True)
    organization = Column(String(255), nullable=True)
    position = Column(String(100), nullable=True)
    purpose = Column(String(50), nullable=True)
    user_type = Column(SQLEnum(UserType), nullable=False, default=UserType.TEACHER)
    password_hash = Column(String(255), nullable=True)

    status = Column(SQLEnum(AccountStatus), nullable=False, default=AccountStatus.PENDING, index=True)

    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String, nullable=True)

    rejected_at = Column(DateTime, nullable=True)
    rejected_by = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    suspension_reason = Column(Text, nullable=True)
    suspension_started_at = Column(DateTime, nullable=True)
    suspension_ends_at = Column(DateTime, nullable=True)
    suspension_mode = Column(SQLEnum(DurationMode), nullable=True)

    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(String, nullable=True)
    deletion_reason = Column(Text, nullable=True)
    deletion_mode = Column(SQLEnum(DeletionMode), nullable=True)
    permanent_purge_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_login_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def approval(self) -> Optional[Approval]:
        if self.approved_at is None:
            return None
        return Approval(approved_at=self.approved_at, approved_by=self.approved_by)

    @property
    def rejection(self) -> Optional[Rejection]:
        if self.rejected_at is None:
            return None
        return Rejection(
            rejected_at=self.rejected_at,
            rejected_by=self.rejected_by,
            reason=self.rejection_reason
        )

    @property
    def suspension(self) -> Optional[Suspension]:
        if self.suspension_started_at is None and self.suspension_reason is None:
            return None
        return Suspension(
            reason=self.suspension_reason,
            started_at=self.suspension_started_at,
            ends_at=self.suspension_ends_at,
            duration_mode=self.suspension_mode
        )

    @property
    def deletion(self) -> Optional[Deletion]:
        if self.deleted_at is None:
            return None
        return Deletion(
            deleted_at=self.deleted_at,
            deleted_by=self.deleted_by,
            reason=self.deletion_reason,
            mode=self.deletion_mode,
            permanent_purge_at=self.permanent_purge_at
        )

    def __repr__(self) -> str:
        return f"<Account id={self.id} status={self.status}>"
