"""API routes for account moderation."""
import math
from datetime import timedelta
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.schemas import (
    AccessResponse,
    AccountListResponse,
    AccountLogResponse,
    AccountResponse,
    ApproveRequest,
    BulkApproveRequest,
    BulkFailure,
    BulkResultResponse,
    DeleteRequest,
    ErrorResponse,
    ModerationResultResponse,
    Pagination,
    PasswordResetRequest,
    RejectRequest,
    RestoreRequest,
    SuspendRequest,
    UnsuspendRequest,
    UpdateRequest,
)
from app.config import load_settings
from app.database import get_db
from app.models.enums import AccountStatus, ActionType, DeletionMode
from app.services.bulk import BulkCoordinator
from app.services.exceptions import ErrorKind, ForbiddenError, ModerationError
from app.services.moderation import ModerationResult, ModerationService
from app.services.notifier import Notifier, get_notifier
from app.services.state_machine import ActionParams, Actor, TransitionEngine

router = APIRouter()

_STATUS_CODES = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_PARAMETERS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.ILLEGAL_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.STORAGE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

_ERROR_RESPONSES = {
    code: {"model": ErrorResponse}
    for code in (400, 403, 404, 409, 503)
}

_MESSAGES = {
    ActionType.APPROVE: "Account approved.",
    ActionType.REJECT: "Registration rejected.",
    ActionType.SUSPEND: "Account suspended.",
    ActionType.UNSUSPEND: "Suspension lifted.",
    ActionType.DELETE: "Account deleted.",
    ActionType.RESTORE: "Account restored.",
    ActionType.UPDATE: "Account updated.",
    ActionType.PASSWORD_RESET: "Temporary password issued.",
}


def _http_error(exc: ModerationError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_CODES[exc.kind],
        detail={"kind": exc.kind.value, "message": exc.message}
    )


def _result(result: ModerationResult) -> ModerationResultResponse:
    return ModerationResultResponse(
        account_id=result.account_id,
        action_type=result.action_type,
        status=result.status,
        log_id=result.log_id,
        message=_MESSAGES[result.action_type]
    )


# Dependencies
def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None)
) -> Actor:
    """The caller as established by the upstream authentication layer."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    actor_id = int(x_actor_id) if x_actor_id.isdigit() else x_actor_id
    return Actor(id=actor_id, role=x_actor_role)


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator role required")
    return actor


def get_password_hasher() -> Optional[Callable[[str], str]]:
    """Password hashing is provided by the deployment; override this dependency to enable resets."""
    return None


def get_service(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    password_hasher: Optional[Callable[[str], str]] = Depends(get_password_hasher)
) -> ModerationService:
    settings = load_settings()
    return ModerationService(
        db,
        notifier,
        engine=TransitionEngine(grace_period=timedelta(days=settings.soft_delete_grace_days)),
        password_hasher=password_hasher,
        notifications_enabled=settings.notifications_enabled
    )


# Read endpoints
@router.get("/accounts", response_model=AccountListResponse)
def list_accounts(
    status_filter: Optional[AccountStatus] = Query(None, alias="status"),
    user_type: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "created_at",
    order: str = "desc",
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    """List accounts with filtering, search, sorting and pagination."""
    try:
        rows, total = service.list_accounts(
            status=status_filter,
            user_type=user_type,
            search=search,
            page=page,
            limit=limit,
            sort=sort,
            order=order
        )
    except ModerationError as e:
        raise _http_error(e)

    page = max(1, page)
    limit = min(100, max(1, limit))
    return AccountListResponse(
        accounts=[AccountResponse.model_validate(row) for row in rows],
        pagination=Pagination(
            current_page=page,
            total_pages=math.ceil(total / limit),
            total_count=total,
            limit=limit
        )
    )


@router.get("/accounts/stats")
def account_stats(
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    """Account counts per status."""
    try:
        return service.status_counts()
    except ModerationError as e:
        raise _http_error(e)


@router.get("/accounts/{account_id}", response_model=AccountResponse, responses=_ERROR_RESPONSES)
def get_account(
    account_id: int,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    try:
        return service.get_account(account_id)
    except ModerationError as e:
        raise _http_error(e)


@router.get("/accounts/{account_id}/logs", response_model=List[AccountLogResponse])
def get_account_logs(
    account_id: int,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    """Audit trail for an account, newest first. Still available after a hard delete."""
    return service.account_logs(account_id)


@router.get("/accounts/{account_id}/access", response_model=AccessResponse, responses=_ERROR_RESPONSES)
def check_access(
    account_id: int,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    """Whether the account holder may use the service right now (lifts elapsed suspensions first)."""
    try:
        account = service.check_access(account_id)
        return AccessResponse(account_id=account.id, status=account.status, allowed=True)
    except ForbiddenError:
        account = service.get_account(account_id)
        return AccessResponse(account_id=account.id, status=account.status, allowed=False)
    except ModerationError as e:
        raise _http_error(e)


# Moderation endpoints
@router.post("/accounts/approve-bulk", response_model=BulkResultResponse, responses=_ERROR_RESPONSES)
def bulk_approve(
    data: BulkApproveRequest,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    """
    Approve many pending accounts at once.

    Accounts that cannot be approved are reported individually in `failed`;
    they do not stop the rest of the batch.
    """
    try:
        result = BulkCoordinator(service).apply_bulk(
            data.account_ids,
            ActionType.APPROVE,
            ActionParams(send_email=data.send_email),
            actor
        )
    except ModerationError as e:
        raise _http_error(e)

    return BulkResultResponse(
        succeeded=result.succeeded,
        failed={
            account_id: BulkFailure(kind=exc.kind.value, message=exc.message)
            for account_id, exc in result.failed.items()
        }
    )


@router.post("/accounts/{account_id}/approve", response_model=ModerationResultResponse, responses=_ERROR_RESPONSES)
def approve_account(
    account_id: int,
    data: Optional[ApproveRequest] = None,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    data = data or ApproveRequest()
    try:
        return _result(service.approve(account_id, actor, send_email=data.send_email))
    except ModerationError as e:
        raise _http_error(e)


@router.post("/accounts/{account_id}/reject", response_model=ModerationResultResponse, responses=_ERROR_RESPONSES)
def reject_account(
    account_id: int,
    data: RejectRequest,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    try:
        return _result(service.reject(account_id, actor, data.reason, send_email=data.send_email))
    except ModerationError as e:
        raise _http_error(e)


@router.post("/accounts/{account_id}/suspend", response_model=ModerationResultResponse, responses=_ERROR_RESPONSES)
def suspend_account(
    account_id: int,
    data: SuspendRequest,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    try:
        return _result(service.suspend(
            account_id,
            actor,
            data.reason,
            duration_mode=data.duration_mode,
            duration_days=data.duration_days,
            until_date=data.until_date,
            send_email=data.send_email
        ))
    except ModerationError as e:
        raise _http_error(e)


@router.post("/accounts/{account_id}/unsuspend", response_model=ModerationResultResponse, responses=_ERROR_RESPONSES)
def unsuspend_account(
    account_id: int,
    data: Optional[UnsuspendRequest] = None,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    data = data or UnsuspendRequest()
    try:
        return _result(service.unsuspend(account_id, actor, data.reason, send_email=data.send_email))
    except ModerationError as e:
        raise _http_error(e)


@router.delete("/accounts/{account_id}", response_model=ModerationResultResponse, responses=_ERROR_RESPONSES)
def delete_account(
    account_id: int,
    data: DeleteRequest,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    """
    Delete an account.

    Soft deletes keep the record (restorable until permanent_purge_at);
    hard deletes remove it immediately, leaving only the audit trail.
    """
    try:
        if data.deletion_mode == DeletionMode.HARD:
            result = service.hard_delete(account_id, actor, data.reason, send_email=data.send_email)
        else:
            result = service.soft_delete(account_id, actor, data.reason, send_email=data.send_email)
        return _result(result)
    except ModerationError as e:
        raise _http_error(e)


@router.post("/accounts/{account_id}/restore", response_model=ModerationResultResponse, responses=_ERROR_RESPONSES)
def restore_account(
    account_id: int,
    data: Optional[RestoreRequest] = None,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    data = data or RestoreRequest()
    try:
        return _result(service.restore(account_id, actor, data.reason, send_email=data.send_email))
    except ModerationError as e:
        raise _http_error(e)


@router.patch("/accounts/{account_id}", response_model=ModerationResultResponse, responses=_ERROR_RESPONSES)
def update_account(
    account_id: int,
    data: UpdateRequest,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    """Patch profile fields; `status` here is an administrative override."""
    patch = data.model_dump(exclude_unset=True)
    new_status = patch.pop("status", None)
    try:
        return _result(service.update(account_id, actor, profile=patch, status=new_status))
    except ModerationError as e:
        raise _http_error(e)


@router.post("/accounts/{account_id}/password-reset", response_model=ModerationResultResponse, responses=_ERROR_RESPONSES)
def reset_password(
    account_id: int,
    data: Optional[PasswordResetRequest] = None,
    actor: Actor = Depends(require_admin),
    service: ModerationService = Depends(get_service)
):
    data = data or PasswordResetRequest()
    try:
        return _result(service.reset_password(account_id, actor, method=data.method))
    except ModerationError as e:
        raise _http_error(e)
