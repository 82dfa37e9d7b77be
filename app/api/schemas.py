"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import (
    AccountStatus,
    ActionType,
    DeletionMode,
    DurationMode,
    UserType,
)


# Account schemas
class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    phone: Optional[str]
    organization: Optional[str]
    position: Optional[str]
    purpose: Optional[str]
    user_type: UserType
    status: AccountStatus

    approved_at: Optional[datetime]
    approved_by: Optional[str]
    rejected_at: Optional[datetime]
    rejected_by: Optional[str]
    rejection_reason: Optional[str]
    suspension_reason: Optional[str]
    suspension_started_at: Optional[datetime]
    suspension_ends_at: Optional[datetime]
    suspension_mode: Optional[DurationMode]
    deleted_at: Optional[datetime]
    deleted_by: Optional[str]
    deletion_reason: Optional[str]
    deletion_mode: Optional[DeletionMode]
    permanent_purge_at: Optional[datetime]

    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime]


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_count: int
    limit: int


class AccountListResponse(BaseModel):
    accounts: List[AccountResponse]
    pagination: Pagination


class AccountLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    action_type: ActionType
    actor_id: str
    reason: Optional[str]
    from_status: Optional[AccountStatus]
    to_status: Optional[AccountStatus]
    detail: Optional[Dict[str, Any]]
    occurred_at: datetime


# Moderation requests
class ApproveRequest(BaseModel):
    send_email: bool = True


class BulkApproveRequest(BaseModel):
    account_ids: List[int]
    send_email: bool = True


class RejectRequest(BaseModel):
    reason: Optional[str] = None
    send_email: bool = True


class SuspendRequest(BaseModel):
    reason: Optional[str] = None
    duration_mode: DurationMode = DurationMode.INDEFINITE
    duration_days: Optional[int] = None
    until_date: Optional[str] = None
    send_email: bool = True


class UnsuspendRequest(BaseModel):
    reason: Optional[str] = None
    send_email: bool = True


class DeleteRequest(BaseModel):
    deletion_mode: DeletionMode = DeletionMode.SOFT
    reason: Optional[str] = None
    send_email: bool = True


class RestoreRequest(BaseModel):
    reason: Optional[str] = None
    send_email: bool = True


class UpdateRequest(BaseModel):
    """Admin patch. Only fields present in the request body are applied."""
    name: Optional[str] = None
    phone: Optional[str] = None
    organization: Optional[str] = None
    position: Optional[str] = None
    purpose: Optional[str] = None
    status: Optional[AccountStatus] = None


class PasswordResetRequest(BaseModel):
    method: str = "temporary"


# Results
class ModerationResultResponse(BaseModel):
    account_id: int
    action_type: ActionType
    status: Optional[AccountStatus]
    log_id: int
    message: str


class BulkFailure(BaseModel):
    kind: str
    message: str


class BulkResultResponse(BaseModel):
    succeeded: List[int]
    failed: Dict[int, BulkFailure] = Field(default_factory=dict)


class AccessResponse(BaseModel):
    account_id: int
    status: AccountStatus
    allowed: bool


# Error response
class ErrorResponse(BaseModel):
    """Response when an action is refused."""
    kind: str
    message: str
