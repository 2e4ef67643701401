"""Moderation action ledger.

Actions are append-only records. The only mutable fact about an action is
its reversal, which lives in a separate index keyed by action id, so the
recorded decision itself can never be edited in place. An administrator
who upholds an appeal a moderator had overturned reinstates the action; the
reinstatement is stamped onto the reversal fact, which is never deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Protocol
from uuid import uuid4

from tribunal.moderation.domain.audit import AuditEvent, AuditSink, deliver
from tribunal.moderation.domain.content import ContentDirectory
from tribunal.moderation.domain.errors import NotFoundError, ValidationError
from tribunal.moderation.domain.locks import KeyedLocks
from tribunal.moderation.domain.pagination import Page, PageRequest, paginate
from tribunal.moderation.domain.policy import ModerationPolicy
from tribunal.moderation.domain.refs import Actor, ContentRef
from tribunal.moderation.domain.reports import ReportRepository, ViolationCategory, parse_category
from tribunal.obs import metrics as obs_metrics

if TYPE_CHECKING:  # pragma: no cover - type-only import
    from tribunal.moderation.domain.reputation import ReputationService

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    HIDE_CONTENT = "hide_content"
    DELETE_CONTENT = "delete_content"
    ISSUE_WARNING = "issue_warning"
    SUSPEND_USER = "suspend_user"
    BAN_USER = "ban_user"
    RESTORE_CONTENT = "restore_content"
    DISMISS_REPORT = "dismiss_report"
    REMOVE = "remove"

    @property
    def is_sanction(self) -> bool:
        return self in SANCTION_TYPES


SANCTION_TYPES = frozenset({ActionType.SUSPEND_USER, ActionType.BAN_USER})


@dataclass(frozen=True, slots=True)
class ModerationAction:
    action_id: str
    actor: Actor
    target_member_id: str
    action_type: ActionType
    reason: str
    category: ViolationCategory | None
    content_snapshot: str | None
    created_at: datetime
    related_report_id: str | None = None
    content_ref: ContentRef | None = None
    reputation_penalty: int = 0

    @property
    def moderator_id(self) -> str | None:
        return self.actor.moderator_id

    @property
    def administrator_id(self) -> str | None:
        return self.actor.administrator_id


@dataclass(frozen=True, slots=True)
class ActionReversal:
    action_id: str
    reversed_at: datetime
    appeal_id: str | None = None
    reinstated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """An action together with its reversal fact, if any."""

    action: ModerationAction
    reversal: ActionReversal | None = None

    @property
    def is_reversed(self) -> bool:
        return self.reversal is not None and self.reversal.reinstated_at is None

    @property
    def reversed_at(self) -> datetime | None:
        return self.reversal.reversed_at if self.is_reversed else None

    @property
    def reinstated_at(self) -> datetime | None:
        return self.reversal.reinstated_at if self.reversal else None


@dataclass(frozen=True, slots=True)
class ActionFilter:
    target_member_id: str | None = None
    actor_id: str | None = None
    action_type: ActionType | None = None
    include_reversed: bool = True

    def matches(self, entry: LedgerEntry) -> bool:
        action = entry.action
        if self.target_member_id is not None and action.target_member_id != self.target_member_id:
            return False
        if self.actor_id is not None and action.actor.id != self.actor_id:
            return False
        if self.action_type is not None and action.action_type is not self.action_type:
            return False
        if not self.include_reversed and entry.is_reversed:
            return False
        return True


class ActionRepository(Protocol):
    async def append(self, action: ModerationAction) -> ModerationAction:
        ...

    async def get(self, action_id: str) -> LedgerEntry | None:
        ...

    async def record_reversal(self, reversal: ActionReversal) -> tuple[ActionReversal, bool]:
        """Store ``reversal`` unless one exists; return the stored fact and whether it was new."""
        ...

    async def record_reinstatement(self, action_id: str, *, reinstated_at: datetime) -> ActionReversal | None:
        """Stamp the reversal as reinstated; None if there is no live reversal."""
        ...

    async def list(self, filters: ActionFilter, page: PageRequest) -> Page[LedgerEntry]:
        ...


class InMemoryActionRepository(ActionRepository):
    """Arena-style log plus a reversal index."""

    def __init__(self) -> None:
        self._log: list[ModerationAction] = []
        self._positions: dict[str, int] = {}
        self._reversals: dict[str, ActionReversal] = {}

    async def append(self, action: ModerationAction) -> ModerationAction:
        self._positions[action.action_id] = len(self._log)
        self._log.append(action)
        return action

    async def get(self, action_id: str) -> LedgerEntry | None:
        position = self._positions.get(action_id)
        if position is None:
            return None
        return LedgerEntry(self._log[position], self._reversals.get(action_id))

    async def record_reversal(self, reversal: ActionReversal) -> tuple[ActionReversal, bool]:
        existing = self._reversals.get(reversal.action_id)
        if existing is not None:
            return existing, False
        self._reversals[reversal.action_id] = reversal
        return reversal, True

    async def record_reinstatement(self, action_id: str, *, reinstated_at: datetime) -> ActionReversal | None:
        existing = self._reversals.get(action_id)
        if existing is None or existing.reinstated_at is not None:
            return None
        updated = replace(existing, reinstated_at=reinstated_at)
        self._reversals[action_id] = updated
        return updated

    async def list(self, filters: ActionFilter, page: PageRequest) -> Page[LedgerEntry]:
        entries = [LedgerEntry(action, self._reversals.get(action.action_id)) for action in reversed(self._log)]
        return paginate([entry for entry in entries if filters.matches(entry)], page)


def parse_action_type(value: ActionType | str) -> ActionType:
    try:
        return ActionType(value)
    except ValueError:
        raise ValidationError("unknown_action_type") from None


class ActionLedger:
    def __init__(
        self,
        repository: ActionRepository,
        reports: ReportRepository,
        content: ContentDirectory,
        *,
        policy: ModerationPolicy | None = None,
        audit: AuditSink | None = None,
        reputation: "ReputationService | None" = None,
    ) -> None:
        self._repo = repository
        self._reports = reports
        self._content = content
        self._policy = policy or ModerationPolicy.default()
        self._audit = audit
        self._reputation = reputation
        self._locks = KeyedLocks()

    async def create_action(
        self,
        *,
        actor: Actor,
        target_member_id: str,
        action_type: ActionType | str,
        reason: str,
        category: ViolationCategory | str | None = None,
        content_snapshot: str | None = None,
        related_report_id: str | None = None,
        content_ref: ContentRef | None = None,
        reputation_penalty: int = 0,
    ) -> LedgerEntry:
        if not target_member_id:
            raise ValidationError("target_member_id_required")
        parsed_type = parse_action_type(action_type)
        parsed_category = parse_category(category) if category is not None else None
        text = (reason or "").strip()
        if len(text) < self._policy.min_action_reason_length:
            raise ValidationError("reason_too_short")
        if reputation_penalty < 0:
            raise ValidationError("reputation_penalty_must_be_positive")
        if related_report_id is not None and await self._reports.get(related_report_id) is None:
            raise NotFoundError("report_not_found")

        snapshot = content_snapshot
        if content_ref is not None and snapshot is None:
            record = await self._content.resolve(content_ref)
            if record is None:
                raise NotFoundError("content_not_found")
            snapshot = record.body

        action = await self._repo.append(
            ModerationAction(
                action_id=str(uuid4()),
                actor=actor,
                target_member_id=target_member_id,
                action_type=parsed_type,
                reason=text,
                category=parsed_category,
                content_snapshot=snapshot,
                created_at=datetime.now(timezone.utc),
                related_report_id=related_report_id,
                content_ref=content_ref,
                reputation_penalty=reputation_penalty,
            )
        )
        if action.reputation_penalty and self._reputation is not None:
            await self._reputation.record_moderation_penalty(
                member_id=target_member_id,
                delta=-action.reputation_penalty,
                reason=f"{parsed_type.value} penalty",
                source_id=action.action_id,
            )

        obs_metrics.MOD_ACTIONS_TOTAL.labels(action_type=parsed_type.value, actor_role=actor.role.value).inc()
        logger.info(
            "moderation action recorded",
            extra={"action_id": action.action_id, "action_type": parsed_type.value, "actor_role": actor.role.value},
        )
        await deliver(
            self._audit,
            AuditEvent(
                event="action.created",
                actor_id=actor.id,
                target_type="member",
                target_id=target_member_id,
                meta={
                    "action_id": action.action_id,
                    "action_type": parsed_type.value,
                    "related_report_id": related_report_id,
                },
            ),
        )
        return LedgerEntry(action)

    async def reverse_action(self, action_id: str, *, appeal_id: str | None = None) -> LedgerEntry:
        """Mark ``action_id`` reversed. Reversing twice returns the first reversal."""

        async with self._locks.hold(action_id):
            entry = await self._repo.get(action_id)
            if entry is None:
                raise NotFoundError("action_not_found")
            if entry.is_reversed:
                return entry
            reversal, created = await self._repo.record_reversal(
                ActionReversal(action_id=action_id, reversed_at=datetime.now(timezone.utc), appeal_id=appeal_id)
            )
            if not created:
                return LedgerEntry(entry.action, reversal)
            action = entry.action
            if action.reputation_penalty and self._reputation is not None:
                await self._reputation.record_moderation_penalty(
                    member_id=action.target_member_id,
                    delta=action.reputation_penalty,
                    reason=f"{action.action_type.value} reversed",
                    source_id=appeal_id or action_id,
                )

        obs_metrics.MOD_ACTION_REVERSALS_TOTAL.labels(action_type=action.action_type.value).inc()
        await deliver(
            self._audit,
            AuditEvent(
                event="action.reversed",
                actor_id=None,
                target_type="action",
                target_id=action_id,
                meta={"appeal_id": appeal_id},
            ),
        )
        return LedgerEntry(action, reversal)

    async def reinstate_action(self, action_id: str, *, appeal_id: str | None = None) -> LedgerEntry:
        """Put a reversed action back in force and re-apply its penalty.

        Reinstating an action that is not currently reversed returns it unchanged.
        """

        async with self._locks.hold(action_id):
            entry = await self._repo.get(action_id)
            if entry is None:
                raise NotFoundError("action_not_found")
            if not entry.is_reversed:
                return entry
            reversal = await self._repo.record_reinstatement(action_id, reinstated_at=datetime.now(timezone.utc))
            if reversal is None:
                return await self.get_action(action_id)
            action = entry.action
            if action.reputation_penalty and self._reputation is not None:
                await self._reputation.record_moderation_penalty(
                    member_id=action.target_member_id,
                    delta=-action.reputation_penalty,
                    reason=f"{action.action_type.value} reinstated",
                    source_id=appeal_id or action_id,
                )

        obs_metrics.MOD_ACTION_REINSTATEMENTS_TOTAL.labels(action_type=action.action_type.value).inc()
        logger.info("moderation action reinstated", extra={"action_id": action_id, "appeal_id": appeal_id})
        await deliver(
            self._audit,
            AuditEvent(
                event="action.reinstated",
                actor_id=None,
                target_type="action",
                target_id=action_id,
                meta={"appeal_id": appeal_id},
            ),
        )
        return LedgerEntry(action, reversal)

    async def get_action(self, action_id: str) -> LedgerEntry:
        entry = await self._repo.get(action_id)
        if entry is None:
            raise NotFoundError("action_not_found")
        return entry

    async def list_actions(
        self,
        filters: ActionFilter | None = None,
        page: PageRequest | None = None,
    ) -> Page[LedgerEntry]:
        return await self._repo.list(filters or ActionFilter(), page or PageRequest())
