"""
Account management log - the append-only audit trail of moderation actions.

One row is written for every successful transition, in the same transaction
as the account change. Rows are never edited or deleted, and they outlive the
account itself (no foreign key), so a hard delete stays traceable.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy import Column, String, Integer, DateTime, Enum as SQLEnum, JSON, Text

from app.database import Base
from app.models.enums import AccountStatus, ActionType, DeletionMode, DurationMode


class AccountLog(Base):
    """
    Immutable audit entry.

    Invariants:
    - Once written, never edited or deleted
    - account_id survives removal of the account row
    - actor_id is "system" for automatic transitions
    """
    __tablename__ = "account_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    account_id = Column(Integer, nullable=False, index=True)
    action_type = Column(SQLEnum(ActionType), nullable=False, index=True)
    actor_id = Column(String, nullable=False)
    reason = Column(Text, nullable=True)
    from_status = Column(SQLEnum(AccountStatus), nullable=True)
    to_status = Column(SQLEnum(AccountStatus), nullable=True)  # None after a hard delete
    detail = Column(JSON, nullable=True)
    occurred_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


# Action-specific payloads stored in AccountLog.detail, discriminated by action_type.

class ApproveDetail(BaseModel):
    action_type: Literal["approve"] = "approve"
    send_email: bool = True
    bulk: bool = False


class RejectDetail(BaseModel):
    action_type: Literal["reject"] = "reject"
    send_email: bool = True
    bulk: bool = False


class SuspendDetail(BaseModel):
    action_type: Literal["suspend"] = "suspend"
    duration_mode: DurationMode
    duration_days: Optional[int] = None
    until_date: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    send_email: bool = True
    bulk: bool = False


class UnsuspendDetail(BaseModel):
    action_type: Literal["unsuspend"] = "unsuspend"
    automatic: bool = False
    expired_at: Optional[datetime] = None
    send_email: bool = True
    bulk: bool = False


class DeleteDetail(BaseModel):
    action_type: Literal["delete"] = "delete"
    deletion_mode: DeletionMode
    permanent_purge_at: Optional[datetime] = None
    send_email: bool = True
    bulk: bool = False


class RestoreDetail(BaseModel):
    action_type: Literal["restore"] = "restore"
    send_email: bool = True
    bulk: bool = False


class UpdateDetail(BaseModel):
    action_type: Literal["update"] = "update"
    changes: Dict[str, Any] = Field(default_factory=dict)
    status_override: bool = False
    bulk: bool = False


class PasswordResetDetail(BaseModel):
    action_type: Literal["password_reset"] = "password_reset"
    method: Literal["temporary"] = "temporary"
    bulk: bool = False


LogDetail = Annotated[
    Union[
        ApproveDetail,
        RejectDetail,
        SuspendDetail,
        UnsuspendDetail,
        DeleteDetail,
        RestoreDetail,
        UpdateDetail,
        PasswordResetDetail,
    ],
    Field(discriminator="action_type"),
]

_detail_adapter = TypeAdapter(LogDetail)


def parse_detail(entry: AccountLog) -> LogDetail:
    """Turn the stored JSON detail of a log row back into its typed variant."""
    payload = dict(entry.detail or {})
    payload.setdefault("action_type", ActionType(entry.action_type).value)
    return _detail_adapter.validate_python(payload)
