"""Suspension and ban lifecycle.

A suspension stops being active exactly once: either an explicit early lift
or natural expiry once ``end_date`` passes. Expiry is applied when the row is
read and persisted by the sweep job, so readers never observe a stale
``is_active`` flag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol, Sequence
from uuid import uuid4

from tribunal.moderation.domain.actions import ActionRepository
from tribunal.moderation.domain.audit import AuditEvent, AuditSink, deliver
from tribunal.moderation.domain.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from tribunal.moderation.domain.locks import KeyedLocks
from tribunal.moderation.domain.policy import ModerationPolicy
from tribunal.moderation.domain.refs import Actor
from tribunal.moderation.domain.reports import ViolationCategory, parse_category
from tribunal.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class SuspensionScope(str, Enum):
    COMMUNITY = "community"
    PLATFORM = "platform"


@dataclass(slots=True)
class Suspension:
    suspension_id: str
    member_id: str
    issuer: Actor
    scope: SuspensionScope
    reason_category: ViolationCategory
    reason: str
    duration_days: int | None
    start_date: datetime
    end_date: datetime | None
    is_active: bool
    is_permanent: bool
    created_at: datetime
    updated_at: datetime
    lifted_early: bool = False
    lifted_at: datetime | None = None
    lifted_reason: str | None = None
    notes: str | None = None
    moderation_action_id: str | None = None
    is_appealable: bool = True

    def is_expired(self, now: datetime) -> bool:
        return not self.is_permanent and self.end_date is not None and self.end_date <= now

    def observed(self, now: datetime | None = None) -> "Suspension":
        """Copy with natural expiry applied as of ``now``."""

        now = now or datetime.now(timezone.utc)
        if self.is_active and self.is_expired(now):
            return replace(self, is_active=False)
        return replace(self)


class SuspensionRepository(Protocol):
    async def create(self, suspension: Suspension) -> Suspension:
        ...

    async def get(self, suspension_id: str) -> Suspension | None:
        ...

    async def lift(self, suspension_id: str, *, lifted_at: datetime, reason: str) -> Suspension | None:
        """Lift an active, unexpired suspension; return None if it was not."""
        ...

    async def update_details(
        self, suspension_id: str, *, reason: str | None, notes: str | None, updated_at: datetime
    ) -> Suspension | None:
        """Replace the given descriptive fields; ``None`` leaves a field unchanged."""
        ...

    async def list_for_member(self, member_id: str) -> Sequence[Suspension]:
        ...

    async def find_by_action(self, action_id: str) -> Sequence[Suspension]:
        ...

    async def expire_due(self, now: datetime) -> Sequence[Suspension]:
        """Persist ``is_active=false`` for every suspension whose end date passed."""
        ...


class InMemorySuspensionRepository(SuspensionRepository):
    def __init__(self) -> None:
        self._items: dict[str, Suspension] = {}

    async def create(self, suspension: Suspension) -> Suspension:
        self._items[suspension.suspension_id] = replace(suspension)
        return replace(suspension)

    async def get(self, suspension_id: str) -> Suspension | None:
        item = self._items.get(suspension_id)
        return replace(item) if item else None

    async def lift(self, suspension_id: str, *, lifted_at: datetime, reason: str) -> Suspension | None:
        item = self._items.get(suspension_id)
        if item is None or not item.is_active or item.is_expired(lifted_at):
            return None
        item.is_active = False
        item.lifted_early = True
        item.lifted_at = lifted_at
        item.lifted_reason = reason
        item.updated_at = lifted_at
        return replace(item)

    async def update_details(
        self, suspension_id: str, *, reason: str | None, notes: str | None, updated_at: datetime
    ) -> Suspension | None:
        item = self._items.get(suspension_id)
        if item is None:
            return None
        if reason is not None:
            item.reason = reason
        if notes is not None:
            item.notes = notes
        item.updated_at = updated_at
        return replace(item)

    async def list_for_member(self, member_id: str) -> Sequence[Suspension]:
        items = [replace(item) for item in self._items.values() if item.member_id == member_id]
        return sorted(items, key=lambda item: item.start_date, reverse=True)

    async def find_by_action(self, action_id: str) -> Sequence[Suspension]:
        return [replace(item) for item in self._items.values() if item.moderation_action_id == action_id]

    async def expire_due(self, now: datetime) -> Sequence[Suspension]:
        expired: list[Suspension] = []
        for item in self._items.values():
            if item.is_active and item.is_expired(now):
                item.is_active = False
                item.updated_at = now
                expired.append(replace(item))
        return expired


def parse_scope(value: SuspensionScope | str) -> SuspensionScope:
    try:
        return SuspensionScope(value)
    except ValueError:
        raise ValidationError("unknown_suspension_scope") from None


class SuspensionService:
    def __init__(
        self,
        repository: SuspensionRepository,
        actions: ActionRepository,
        *,
        policy: ModerationPolicy | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._repo = repository
        self._actions = actions
        self._policy = policy or ModerationPolicy.default()
        self._audit = audit
        self._locks = KeyedLocks()

    async def create_suspension(
        self,
        *,
        member_id: str,
        issuer: Actor,
        scope: SuspensionScope | str,
        reason_category: ViolationCategory | str,
        reason: str,
        duration_days: int | None = None,
        permanent: bool = False,
        moderation_action_id: str | None = None,
        notes: str | None = None,
        is_appealable: bool = True,
    ) -> Suspension:
        if not member_id:
            raise ValidationError("member_id_required")
        parsed_scope = parse_scope(scope)
        category = parse_category(reason_category)
        text = (reason or "").strip()
        if not text:
            raise ValidationError("reason_required")
        if permanent and duration_days is not None:
            raise ValidationError("permanent_excludes_duration")
        if not permanent:
            if duration_days is None:
                raise ValidationError("duration_required")
            if duration_days < 1:
                raise ValidationError("duration_must_be_positive")

        rule = self._policy.duration_rule(issuer.role, parsed_scope)
        if rule is None:
            raise ForbiddenError("scope_not_permitted")
        if permanent and not rule.allow_permanent:
            raise ForbiddenError("permanent_not_permitted")
        if duration_days is not None and duration_days > rule.max_days:
            raise ForbiddenError("duration_exceeds_ceiling")

        if moderation_action_id is not None:
            entry = await self._actions.get(moderation_action_id)
            if entry is None:
                raise NotFoundError("action_not_found")
            if entry.action.target_member_id != member_id:
                raise ValidationError("action_target_mismatch")
            if not entry.action.action_type.is_sanction:
                raise ValidationError("action_not_a_sanction")

        now = datetime.now(timezone.utc)
        suspension = await self._repo.create(
            Suspension(
                suspension_id=str(uuid4()),
                member_id=member_id,
                issuer=issuer,
                scope=parsed_scope,
                reason_category=category,
                reason=text,
                duration_days=None if permanent else duration_days,
                start_date=now,
                end_date=None if permanent else now + timedelta(days=duration_days or 0),
                is_active=True,
                is_permanent=permanent,
                created_at=now,
                updated_at=now,
                notes=notes,
                moderation_action_id=moderation_action_id,
                is_appealable=is_appealable,
            )
        )
        obs_metrics.suspension_started(parsed_scope.value)
        logger.info(
            "suspension issued",
            extra={
                "suspension_id": suspension.suspension_id,
                "scope": parsed_scope.value,
                "permanent": permanent,
                "duration_days": duration_days,
            },
        )
        await deliver(
            self._audit,
            AuditEvent(
                event="suspension.created",
                actor_id=issuer.id,
                target_type="member",
                target_id=member_id,
                meta={"suspension_id": suspension.suspension_id, "scope": parsed_scope.value},
            ),
        )
        return suspension

    async def lift_early(self, suspension_id: str, *, reason: str, lifted_by: str | None = None) -> Suspension:
        text = (reason or "").strip()
        if not text:
            raise ValidationError("lift_reason_required")
        async with self._locks.hold(suspension_id):
            current = await self._repo.get(suspension_id)
            if current is None:
                raise NotFoundError("suspension_not_found")
            if current.lifted_early:
                return current
            now = datetime.now(timezone.utc)
            if not current.is_active or current.is_expired(now):
                raise InvalidStateError("suspension_not_active")
            lifted = await self._repo.lift(suspension_id, lifted_at=now, reason=text)
            if lifted is None:
                raise InvalidStateError("suspension_not_active")

        obs_metrics.suspension_ended(lifted.scope.value, "lifted")
        await deliver(
            self._audit,
            AuditEvent(
                event="suspension.lifted",
                actor_id=lifted_by,
                target_type="suspension",
                target_id=suspension_id,
                meta={"member_id": lifted.member_id, "scope": lifted.scope.value},
            ),
        )
        return lifted

    async def lift_for_action(self, action_id: str, *, reason: str, lifted_by: str | None = None) -> list[Suspension]:
        """Lift every still-active suspension derived from ``action_id``."""

        lifted: list[Suspension] = []
        now = datetime.now(timezone.utc)
        for suspension in await self._repo.find_by_action(action_id):
            if suspension.is_active and not suspension.is_expired(now):
                lifted.append(await self.lift_early(suspension.suspension_id, reason=reason, lifted_by=lifted_by))
        return lifted

    async def update_details(
        self,
        suspension_id: str,
        *,
        reason: str | None = None,
        notes: str | None = None,
        updated_by: str | None = None,
    ) -> Suspension:
        """Amend the reason or staff notes. Dates, scope and state never change here."""

        if reason is None and notes is None:
            raise ValidationError("nothing_to_update")
        text = reason.strip() if reason is not None else None
        if text is not None and not text:
            raise ValidationError("reason_required")
        async with self._locks.hold(suspension_id):
            updated = await self._repo.update_details(
                suspension_id,
                reason=text,
                notes=notes,
                updated_at=datetime.now(timezone.utc),
            )
            if updated is None:
                raise NotFoundError("suspension_not_found")

        await deliver(
            self._audit,
            AuditEvent(
                event="suspension.updated",
                actor_id=updated_by,
                target_type="suspension",
                target_id=suspension_id,
                meta={"fields": [name for name, value in (("reason", text), ("notes", notes)) if value is not None]},
            ),
        )
        return updated.observed()

    async def reinstate_for_action(
        self,
        action_id: str,
        *,
        lifted_reason: str,
        reinstated_by: str | None = None,
    ) -> list[Suspension]:
        """Reissue suspensions of ``action_id`` that were lifted with ``lifted_reason``.

        The lifted rows stay as history. Each replacement keeps the original end
        date, so time already served still counts; one whose end date has passed
        is not reissued.
        """

        reissued: list[Suspension] = []
        now = datetime.now(timezone.utc)
        for lifted in await self._repo.find_by_action(action_id):
            if not lifted.lifted_early or lifted.lifted_reason != lifted_reason or lifted.is_expired(now):
                continue
            suspension = await self._repo.create(
                replace(
                    lifted,
                    suspension_id=str(uuid4()),
                    start_date=now,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                    lifted_early=False,
                    lifted_at=None,
                    lifted_reason=None,
                    notes=f"reinstated from suspension {lifted.suspension_id}",
                )
            )
            reissued.append(suspension)
            obs_metrics.suspension_started(suspension.scope.value)
            await deliver(
                self._audit,
                AuditEvent(
                    event="suspension.reinstated",
                    actor_id=reinstated_by,
                    target_type="member",
                    target_id=suspension.member_id,
                    meta={"suspension_id": suspension.suspension_id, "replaces": lifted.suspension_id},
                ),
            )
        if reissued:
            logger.info("suspensions reinstated", extra={"action_id": action_id, "count": len(reissued)})
        return reissued

    async def get_suspension(self, suspension_id: str) -> Suspension:
        suspension = await self._repo.get(suspension_id)
        if suspension is None:
            raise NotFoundError("suspension_not_found")
        return suspension.observed()

    async def list_for_member(self, member_id: str, *, active_only: bool = False) -> list[Suspension]:
        now = datetime.now(timezone.utc)
        items = [item.observed(now) for item in await self._repo.list_for_member(member_id)]
        if active_only:
            items = [item for item in items if item.is_active]
        return items

    async def find_by_action(self, action_id: str) -> list[Suspension]:
        now = datetime.now(timezone.utc)
        return [item.observed(now) for item in await self._repo.find_by_action(action_id)]

    async def sweep_expired(self, *, now: datetime | None = None) -> int:
        expired = await self._repo.expire_due(now or datetime.now(timezone.utc))
        for item in expired:
            obs_metrics.suspension_ended(item.scope.value, "expired")
        if expired:
            logger.info("suspensions expired", extra={"count": len(expired)})
        return len(expired)
