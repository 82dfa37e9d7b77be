"""Apply one moderation action across many accounts, collecting per-account outcomes."""
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

from app.logging_utils import get_logger
from app.models.enums import ActionType
from app.services.exceptions import InvalidParametersError, ModerationError
from app.services.moderation import ModerationService
from app.services.state_machine import ActionParams, Actor, ModerationAction

logger = get_logger(__name__)


@dataclass
class BulkResult:
    succeeded: List[int] = field(default_factory=list)
    failed: Dict[int, ModerationError] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


class BulkCoordinator:
    """
    Runs the same action independently for each account id.

    One account's failure (e.g. it was already active) never stops the others;
    every success carries its own audit entry. Only a malformed batch (no ids)
    is refused as a whole.
    """

    def __init__(self, service: ModerationService):
        self.service = service

    def apply_bulk(
        self,
        account_ids: Iterable[int],
        action_type: ActionType,
        params: Optional[ActionParams],
        actor: Actor
    ) -> BulkResult:
        # Duplicates are applied once, in first-seen order.
        ids = list(dict.fromkeys(account_ids or []))
        if not ids:
            raise InvalidParametersError("At least one account id is required", field="account_ids")

        common = replace(params or ActionParams(), bulk=True)
        result = BulkResult()
        for account_id in ids:
            action = ModerationAction(
                type=action_type,
                target_account_id=account_id,
                actor=actor,
                params=replace(common, profile=dict(common.profile))
            )
            try:
                self.service.apply(action)
            except ModerationError as exc:
                result.failed[account_id] = exc
                continue
            result.succeeded.append(account_id)

        logger.info(
            "Bulk %s by %s: %d succeeded, %d failed",
            ActionType(action_type).value, actor.id, len(result.succeeded), len(result.failed)
        )
        return result
