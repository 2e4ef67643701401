"""Two-tier appeal state machine.

Stages::

    moderator_review --(moderator decision)--> awaiting_escalation
    moderator_review --(admin decision)------> closed
    awaiting_escalation --(appellant escalates)--> admin_review
    admin_review --(admin decision)----------> closed

``status`` carries the latest terminal decision and is never reset to
pending by escalation. An appeal in ``awaiting_escalation`` accepts no
further reviews; only its appellant may move it forward, once.

The administrator decision is authoritative: an overturn reverses the action
and lifts its suspensions, and an uphold after a moderator overturn reinstates
both.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import AsyncContextManager, Callable, Protocol
from uuid import uuid4

from tribunal.moderation.domain.actions import ActionLedger
from tribunal.moderation.domain.audit import AuditEvent, AuditSink, deliver
from tribunal.moderation.domain.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from tribunal.moderation.domain.locks import KeyedLocks
from tribunal.moderation.domain.pagination import Page, PageRequest, paginate
from tribunal.moderation.domain.policy import ModerationPolicy
from tribunal.moderation.domain.refs import Actor
from tribunal.moderation.domain.suspensions import SuspensionService
from tribunal.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class AppealType(str, Enum):
    CONTENT_REMOVAL = "content_removal"
    SUSPENSION = "suspension"
    POLICY_REVIEW_REQUEST = "policy_review_request"


class AppealStatus(str, Enum):
    PENDING = "pending"
    UPHELD = "upheld"
    OVERTURNED = "overturned"


class AppealStage(str, Enum):
    MODERATOR_REVIEW = "moderator_review"
    AWAITING_ESCALATION = "awaiting_escalation"
    ADMIN_REVIEW = "admin_review"
    CLOSED = "closed"


class AppealDecision(str, Enum):
    UPHOLD = "uphold"
    OVERTURN = "overturn"

    @property
    def status(self) -> AppealStatus:
        return AppealStatus.UPHELD if self is AppealDecision.UPHOLD else AppealStatus.OVERTURNED


@dataclass(slots=True)
class Appeal:
    appeal_id: str
    moderation_action_id: str
    appellant_id: str
    appeal_type: AppealType
    appeal_text: str
    status: AppealStatus
    stage: AppealStage
    created_at: datetime
    updated_at: datetime
    decision_explanation: str | None = None
    reviewer: Actor | None = None
    reviewed_at: datetime | None = None
    is_escalated: bool = False
    escalated_at: datetime | None = None
    moderator_decision: AppealDecision | None = None
    moderator_reviewer_id: str | None = None
    admin_decision: AppealDecision | None = None
    admin_reviewer_id: str | None = None

    @property
    def is_fully_resolved(self) -> bool:
        return self.stage in (AppealStage.AWAITING_ESCALATION, AppealStage.CLOSED)


@dataclass(frozen=True, slots=True)
class AppealFilter:
    status: AppealStatus | None = None
    appellant_id: str | None = None
    is_escalated: bool | None = None
    moderation_action_id: str | None = None

    def matches(self, appeal: Appeal) -> bool:
        if self.status is not None and appeal.status is not self.status:
            return False
        if self.appellant_id is not None and appeal.appellant_id != self.appellant_id:
            return False
        if self.is_escalated is not None and appeal.is_escalated != self.is_escalated:
            return False
        if self.moderation_action_id is not None and appeal.moderation_action_id != self.moderation_action_id:
            return False
        return True


class AppealRepository(Protocol):
    async def create(self, appeal: Appeal) -> Appeal:
        """Persist a new appeal; raise ConflictError if this appellant already appealed the action."""
        ...

    async def get(self, appeal_id: str) -> Appeal | None:
        ...

    async def transition(self, appeal: Appeal, *, expected_stage: AppealStage) -> bool:
        """Store ``appeal`` only if the stored stage still equals ``expected_stage``."""
        ...

    async def exists_for_action(self, action_id: str, appellant_id: str) -> bool:
        ...

    async def count_pending_for_member(self, member_id: str) -> int:
        ...

    async def list(self, filters: AppealFilter, page: PageRequest) -> Page[Appeal]:
        ...


class InMemoryAppealRepository(AppealRepository):
    def __init__(self) -> None:
        self._items: dict[str, Appeal] = {}

    async def create(self, appeal: Appeal) -> Appeal:
        if await self.exists_for_action(appeal.moderation_action_id, appeal.appellant_id):
            raise ConflictError("appeal_already_exists")
        self._items[appeal.appeal_id] = replace(appeal)
        return replace(appeal)

    async def get(self, appeal_id: str) -> Appeal | None:
        item = self._items.get(appeal_id)
        return replace(item) if item else None

    async def transition(self, appeal: Appeal, *, expected_stage: AppealStage) -> bool:
        current = self._items.get(appeal.appeal_id)
        if current is None or current.stage is not expected_stage:
            return False
        self._items[appeal.appeal_id] = replace(appeal)
        return True

    async def exists_for_action(self, action_id: str, appellant_id: str) -> bool:
        return any(
            item.moderation_action_id == action_id and item.appellant_id == appellant_id
            for item in self._items.values()
        )

    async def count_pending_for_member(self, member_id: str) -> int:
        return sum(
            1
            for item in self._items.values()
            if item.appellant_id == member_id and item.status is AppealStatus.PENDING
        )

    async def list(self, filters: AppealFilter, page: PageRequest) -> Page[Appeal]:
        matched = sorted(
            (replace(item) for item in self._items.values() if filters.matches(item)),
            key=lambda item: item.created_at,
            reverse=True,
        )
        return paginate(matched, page)


def _overturn_reason(appeal_id: str) -> str:
    return f"appeal {appeal_id} overturned"


def _parse(enum_type, value, detail: str):
    try:
        return enum_type(value)
    except ValueError:
        raise ValidationError(detail) from None


class AppealService:
    """Drives appeals and applies overturn side effects on the ledger, suspensions and karma."""

    def __init__(
        self,
        repository: AppealRepository,
        ledger: ActionLedger,
        suspensions: SuspensionService,
        *,
        policy: ModerationPolicy | None = None,
        audit: AuditSink | None = None,
        transaction: Callable[[], AsyncContextManager[object]] | None = None,
    ) -> None:
        self._repo = repository
        self._ledger = ledger
        self._suspensions = suspensions
        self._policy = policy or ModerationPolicy.default()
        self._audit = audit
        self._transaction = transaction or nullcontext
        self._locks = KeyedLocks()

    async def submit_appeal(
        self,
        *,
        appellant_id: str,
        moderation_action_id: str,
        appeal_type: AppealType | str,
        appeal_text: str,
    ) -> Appeal:
        parsed_type: AppealType = _parse(AppealType, appeal_type, "unknown_appeal_type")
        text = (appeal_text or "").strip()
        if len(text) < self._policy.appeal_text_min_length:
            raise ValidationError("appeal_text_too_short")
        if len(text) > self._policy.appeal_text_max_length:
            raise ValidationError("appeal_text_too_long")

        entry = await self._ledger.get_action(moderation_action_id)
        if entry.action.target_member_id != appellant_id:
            raise ForbiddenError("not_action_target")
        if entry.is_reversed:
            raise InvalidStateError("action_already_reversed")
        now = datetime.now(timezone.utc)
        if now - entry.action.created_at > timedelta(days=self._policy.appeal_window_days):
            raise InvalidStateError("appeal_window_closed")
        sanctions = await self._suspensions.find_by_action(moderation_action_id)
        if any(not item.is_appealable for item in sanctions):
            raise ForbiddenError("sanction_not_appealable")

        # member lock first, then action lock; no other path takes both
        async with self._locks.hold(f"member:{appellant_id}"), self._locks.hold(f"action:{moderation_action_id}"):
            # one appeal per member per action, whatever its outcome
            if await self._repo.exists_for_action(moderation_action_id, appellant_id):
                raise ConflictError("appeal_already_exists")
            pending = await self._repo.count_pending_for_member(appellant_id)
            if pending >= self._policy.max_pending_appeals_per_member:
                raise ConflictError("too_many_pending_appeals")
            appeal = await self._repo.create(
                Appeal(
                    appeal_id=str(uuid4()),
                    moderation_action_id=moderation_action_id,
                    appellant_id=appellant_id,
                    appeal_type=parsed_type,
                    appeal_text=text,
                    status=AppealStatus.PENDING,
                    stage=AppealStage.MODERATOR_REVIEW,
                    created_at=now,
                    updated_at=now,
                )
            )

        obs_metrics.MOD_APPEALS_TOTAL.labels(stage="submitted", outcome="pending").inc()
        logger.info(
            "appeal submitted",
            extra={"appeal_id": appeal.appeal_id, "action_id": moderation_action_id, "appeal_type": parsed_type.value},
        )
        return appeal

    async def review_appeal(
        self,
        *,
        reviewer: Actor,
        appeal_id: str,
        decision: AppealDecision | str,
        explanation: str,
    ) -> Appeal:
        parsed: AppealDecision = _parse(AppealDecision, decision, "unknown_appeal_decision")
        text = (explanation or "").strip()
        if not text:
            raise ValidationError("decision_explanation_required")

        async with self._locks.hold(appeal_id):
            current = await self._repo.get(appeal_id)
            if current is None:
                raise NotFoundError("appeal_not_found")
            next_stage = self._next_review_stage(current, reviewer)
            previous_status = current.status
            now = datetime.now(timezone.utc)
            updated = replace(
                current,
                status=parsed.status,
                stage=next_stage,
                decision_explanation=text,
                reviewer=reviewer,
                reviewed_at=now,
                updated_at=now,
            )
            if reviewer.is_admin:
                updated.admin_decision = parsed
                updated.admin_reviewer_id = reviewer.id
            else:
                updated.moderator_decision = parsed
                updated.moderator_reviewer_id = reviewer.id

            async with self._transaction():
                if not await self._repo.transition(updated, expected_stage=current.stage):
                    raise ConflictError("appeal_changed_concurrently")
                if parsed is AppealDecision.OVERTURN:
                    await self._overturn(updated, reviewer)
                elif current.moderator_decision is AppealDecision.OVERTURN:
                    # an administrator uphold supersedes the moderator overturn
                    await self._reinstate(updated, reviewer)

        review_stage = "admin" if reviewer.is_admin else "moderator"
        obs_metrics.MOD_APPEALS_TOTAL.labels(stage=review_stage, outcome=parsed.status.value).inc()
        logger.info(
            "appeal reviewed",
            extra={
                "appeal_id": appeal_id,
                "decision": parsed.value,
                "reviewer_role": reviewer.role.value,
                "previous_status": previous_status.value,
            },
        )
        await deliver(
            self._audit,
            AuditEvent(
                event=f"appeal.{parsed.status.value}",
                actor_id=reviewer.id,
                target_type="appeal",
                target_id=appeal_id,
                meta={"action_id": updated.moderation_action_id, "stage": updated.stage.value},
            ),
        )
        return updated

    async def escalate(self, *, appellant_id: str, appeal_id: str) -> Appeal:
        async with self._locks.hold(appeal_id):
            current = await self._repo.get(appeal_id)
            if current is None:
                raise NotFoundError("appeal_not_found")
            if current.appellant_id != appellant_id:
                raise ForbiddenError("not_appellant")
            if current.stage is AppealStage.MODERATOR_REVIEW:
                raise InvalidStateError("appeal_not_reviewed")
            if current.is_escalated:
                raise InvalidStateError("appeal_already_escalated")
            if current.stage is not AppealStage.AWAITING_ESCALATION:
                raise InvalidStateError("appeal_final")
            now = datetime.now(timezone.utc)
            updated = replace(
                current,
                stage=AppealStage.ADMIN_REVIEW,
                is_escalated=True,
                escalated_at=now,
                updated_at=now,
            )
            if not await self._repo.transition(updated, expected_stage=AppealStage.AWAITING_ESCALATION):
                raise ConflictError("appeal_changed_concurrently")

        obs_metrics.MOD_APPEALS_TOTAL.labels(stage="escalated", outcome=updated.status.value).inc()
        await deliver(
            self._audit,
            AuditEvent(
                event="appeal.escalated",
                actor_id=appellant_id,
                target_type="appeal",
                target_id=appeal_id,
                meta={"action_id": updated.moderation_action_id},
            ),
        )
        return updated

    async def get_appeal(self, appeal_id: str) -> Appeal:
        appeal = await self._repo.get(appeal_id)
        if appeal is None:
            raise NotFoundError("appeal_not_found")
        return appeal

    async def list_appeals(self, filters: AppealFilter | None = None, page: PageRequest | None = None) -> Page[Appeal]:
        return await self._repo.list(filters or AppealFilter(), page or PageRequest())

    @staticmethod
    def _next_review_stage(appeal: Appeal, reviewer: Actor) -> AppealStage:
        stage = appeal.stage
        if stage is AppealStage.MODERATOR_REVIEW:
            # an administrator reviewing first settles the appeal outright
            return AppealStage.CLOSED if reviewer.is_admin else AppealStage.AWAITING_ESCALATION
        if stage is AppealStage.ADMIN_REVIEW:
            if not reviewer.is_admin:
                raise ForbiddenError("escalated_appeal_requires_admin")
            return AppealStage.CLOSED
        raise InvalidStateError("appeal_already_resolved")

    async def _overturn(self, appeal: Appeal, reviewer: Actor) -> None:
        await self._ledger.reverse_action(appeal.moderation_action_id, appeal_id=appeal.appeal_id)
        await self._suspensions.lift_for_action(
            appeal.moderation_action_id,
            reason=_overturn_reason(appeal.appeal_id),
            lifted_by=reviewer.id,
        )

    async def _reinstate(self, appeal: Appeal, reviewer: Actor) -> None:
        await self._ledger.reinstate_action(appeal.moderation_action_id, appeal_id=appeal.appeal_id)
        await self._suspensions.reinstate_for_action(
            appeal.moderation_action_id,
            lifted_reason=_overturn_reason(appeal.appeal_id),
            reinstated_by=reviewer.id,
        )
