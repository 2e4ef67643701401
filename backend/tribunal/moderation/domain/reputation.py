"""Vote-weighted karma with separately attributed moderation adjustments."""

from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncContextManager, Callable, Protocol, Sequence
from uuid import uuid4

from tribunal.moderation.domain.content import ContentDirectory
from tribunal.moderation.domain.errors import ForbiddenError, NotFoundError, ValidationError
from tribunal.moderation.domain.locks import KeyedLocks
from tribunal.moderation.domain.pagination import Page, PageRequest, paginate
from tribunal.moderation.domain.policy import ModerationPolicy, VoteWeights
from tribunal.moderation.domain.refs import ContentKind, ContentRef
from tribunal.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class VoteType(str, Enum):
    UP = "up"
    DOWN = "down"


class KarmaType(str, Enum):
    """Where a karma change came from."""

    TOPIC = "topic"
    REPLY = "reply"
    MODERATION = "moderation"


@dataclass(slots=True)
class Vote:
    voter_id: str
    target: ContentRef
    owner_id: str
    vote_type: VoteType
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class KarmaEvent:
    event_id: str
    member_id: str
    karma_type: KarmaType
    change_amount: int
    reason: str
    created_at: datetime
    source_id: str | None = None


@dataclass(slots=True)
class ReputationRecord:
    member_id: str
    topic_upvotes: int = 0
    topic_downvotes: int = 0
    reply_upvotes: int = 0
    reply_downvotes: int = 0
    topics_score: int = 0
    replies_score: int = 0
    moderation_adjustment: int = 0
    last_recomputed_at: datetime | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_score(self) -> int:
        return self.topics_score + self.replies_score

    @property
    def karma(self) -> int:
        return self.total_score + self.moderation_adjustment

    @property
    def upvotes_received(self) -> int:
        return self.topic_upvotes + self.reply_upvotes

    @property
    def downvotes_received(self) -> int:
        return self.topic_downvotes + self.reply_downvotes


@dataclass(frozen=True, slots=True)
class VoteResult:
    vote: Vote | None
    reputation: ReputationRecord
    changed: bool


def vote_contribution(weights: VoteWeights, kind: ContentKind, vote_type: VoteType) -> int:
    if kind is ContentKind.TOPIC:
        return weights.topic_up if vote_type is VoteType.UP else -weights.topic_down
    return weights.reply_up if vote_type is VoteType.UP else -weights.reply_down


def _count(record: ReputationRecord, kind: ContentKind, vote_type: VoteType, step: int) -> None:
    if kind is ContentKind.TOPIC:
        if vote_type is VoteType.UP:
            record.topic_upvotes += step
        else:
            record.topic_downvotes += step
    elif vote_type is VoteType.UP:
        record.reply_upvotes += step
    else:
        record.reply_downvotes += step


def _apply(record: ReputationRecord, weights: VoteWeights, kind: ContentKind, vote_type: VoteType, step: int) -> int:
    """Add (step=1) or remove (step=-1) one vote; return the score delta."""

    delta = vote_contribution(weights, kind, vote_type) * step
    _count(record, kind, vote_type, step)
    if kind is ContentKind.TOPIC:
        record.topics_score += delta
    else:
        record.replies_score += delta
    return delta


class ReputationRepository(Protocol):
    async def get_record(self, member_id: str) -> ReputationRecord | None:
        ...

    async def lock_record(self, member_id: str) -> ReputationRecord | None:
        """Read the record and hold it against other writers until the enclosing transaction ends."""
        ...

    async def save_record(self, record: ReputationRecord) -> ReputationRecord:
        ...

    async def get_vote(self, voter_id: str, target: ContentRef) -> Vote | None:
        ...

    async def list_votes_for_owner(self, owner_id: str) -> Sequence[Vote]:
        ...

    async def apply_vote(
        self,
        *,
        voter_id: str,
        target: ContentRef,
        vote: Vote | None,
        record: ReputationRecord,
        event: KarmaEvent,
    ) -> None:
        """Store or delete the vote, save the record and append the event together."""
        ...

    async def apply_adjustment(self, record: ReputationRecord, event: KarmaEvent) -> None:
        ...

    async def moderation_total(self, member_id: str) -> int:
        ...

    async def list_events(
        self, member_id: str, karma_type: KarmaType | None, page: PageRequest
    ) -> Page[KarmaEvent]:
        ...


class InMemoryReputationRepository(ReputationRepository):
    def __init__(self) -> None:
        self._records: dict[str, ReputationRecord] = {}
        self._votes: dict[tuple[str, ContentRef], Vote] = {}
        self._events: list[KarmaEvent] = []

    async def get_record(self, member_id: str) -> ReputationRecord | None:
        record = self._records.get(member_id)
        return replace(record) if record else None

    async def lock_record(self, member_id: str) -> ReputationRecord | None:
        return await self.get_record(member_id)

    async def save_record(self, record: ReputationRecord) -> ReputationRecord:
        self._records[record.member_id] = replace(record)
        return replace(record)

    async def get_vote(self, voter_id: str, target: ContentRef) -> Vote | None:
        vote = self._votes.get((voter_id, target))
        return replace(vote) if vote else None

    async def list_votes_for_owner(self, owner_id: str) -> Sequence[Vote]:
        return [replace(vote) for vote in self._votes.values() if vote.owner_id == owner_id]

    async def apply_vote(
        self,
        *,
        voter_id: str,
        target: ContentRef,
        vote: Vote | None,
        record: ReputationRecord,
        event: KarmaEvent,
    ) -> None:
        if vote is None:
            self._votes.pop((voter_id, target), None)
        else:
            self._votes[(voter_id, target)] = replace(vote)
        self._records[record.member_id] = replace(record)
        self._events.append(event)

    async def apply_adjustment(self, record: ReputationRecord, event: KarmaEvent) -> None:
        self._records[record.member_id] = replace(record)
        self._events.append(event)

    async def moderation_total(self, member_id: str) -> int:
        return sum(
            event.change_amount
            for event in self._events
            if event.member_id == member_id and event.karma_type is KarmaType.MODERATION
        )

    async def list_events(
        self, member_id: str, karma_type: KarmaType | None, page: PageRequest
    ) -> Page[KarmaEvent]:
        matched = [
            event
            for event in reversed(self._events)
            if event.member_id == member_id and (karma_type is None or event.karma_type is karma_type)
        ]
        return paginate(matched, page)


def parse_vote_type(value: VoteType | str) -> VoteType:
    try:
        return VoteType(value)
    except ValueError:
        raise ValidationError("unknown_vote_type") from None


class ReputationService:
    """Maintains reputation records incrementally, serialized per member.

    Writers hold the in-process member lock and, inside ``transaction``, the
    member's stored row, so workers sharing a database cannot lose updates.
    """

    def __init__(
        self,
        repository: ReputationRepository,
        content: ContentDirectory,
        *,
        policy: ModerationPolicy | None = None,
        transaction: Callable[[], AsyncContextManager[object]] | None = None,
    ) -> None:
        self._repo = repository
        self._content = content
        self._policy = policy or ModerationPolicy.default()
        self._transaction = transaction or nullcontext
        self._locks = KeyedLocks()

    @property
    def weights(self) -> VoteWeights:
        return self._policy.vote_weights

    async def get_reputation(self, member_id: str) -> ReputationRecord:
        record = await self._repo.get_record(member_id)
        return record or ReputationRecord(member_id=member_id)

    async def _locked_record(self, member_id: str) -> ReputationRecord:
        record = await self._repo.lock_record(member_id)
        return record or ReputationRecord(member_id=member_id)

    async def record_vote(self, *, voter_id: str, target: ContentRef, vote_type: VoteType | str) -> VoteResult:
        parsed = parse_vote_type(vote_type)
        content = await self._content.resolve(target)
        if content is None:
            raise NotFoundError("content_not_found")
        owner_id = content.owner_id
        if owner_id == voter_id:
            raise ForbiddenError("self_vote_forbidden")
        if parsed is VoteType.DOWN:
            voter = await self.get_reputation(voter_id)
            if voter.total_score < self._policy.downvote_min_score:
                obs_metrics.MOD_VOTES_TOTAL.labels(target=target.kind.value, vote_type=parsed.value, result="denied").inc()
                raise ForbiddenError("insufficient_reputation_to_downvote")

        async with self._locks.hold(owner_id), self._transaction():
            record = await self._locked_record(owner_id)
            previous = await self._repo.get_vote(voter_id, target)
            if previous is not None and previous.vote_type is parsed:
                return VoteResult(vote=previous, reputation=record, changed=False)

            delta = 0
            if previous is not None:
                delta += _apply(record, self.weights, target.kind, previous.vote_type, -1)
            delta += _apply(record, self.weights, target.kind, parsed, 1)
            now = datetime.now(timezone.utc)
            record.updated_at = now
            vote = Vote(
                voter_id=voter_id,
                target=target,
                owner_id=owner_id,
                vote_type=parsed,
                created_at=previous.created_at if previous else now,
                updated_at=now,
            )
            await self._repo.apply_vote(
                voter_id=voter_id,
                target=target,
                vote=vote,
                record=record,
                event=self._vote_event(owner_id, target, delta, "vote_changed" if previous else f"vote_{parsed.value}"),
            )

        result = "changed" if previous is not None else "created"
        obs_metrics.MOD_VOTES_TOTAL.labels(target=target.kind.value, vote_type=parsed.value, result=result).inc()
        return VoteResult(vote=vote, reputation=record, changed=True)

    async def retract_vote(self, *, voter_id: str, target: ContentRef) -> VoteResult:
        existing = await self._repo.get_vote(voter_id, target)
        if existing is None:
            raise NotFoundError("vote_not_found")
        owner_id = existing.owner_id
        async with self._locks.hold(owner_id), self._transaction():
            record = await self._locked_record(owner_id)
            previous = await self._repo.get_vote(voter_id, target)
            if previous is None:
                raise NotFoundError("vote_not_found")
            delta = _apply(record, self.weights, target.kind, previous.vote_type, -1)
            record.updated_at = datetime.now(timezone.utc)
            await self._repo.apply_vote(
                voter_id=voter_id,
                target=target,
                vote=None,
                record=record,
                event=self._vote_event(owner_id, target, delta, "vote_retracted"),
            )
        obs_metrics.MOD_VOTES_TOTAL.labels(
            target=target.kind.value, vote_type=previous.vote_type.value, result="retracted"
        ).inc()
        return VoteResult(vote=None, reputation=record, changed=True)

    async def record_moderation_penalty(
        self,
        *,
        member_id: str,
        delta: int,
        reason: str,
        source_id: str | None = None,
    ) -> ReputationRecord:
        """Adjust ``moderation_adjustment`` only; vote scores are untouched."""

        if not member_id:
            raise ValidationError("member_id_required")
        async with self._locks.hold(member_id), self._transaction():
            record = await self._locked_record(member_id)
            record.moderation_adjustment += delta
            now = datetime.now(timezone.utc)
            record.updated_at = now
            await self._repo.apply_adjustment(
                record,
                KarmaEvent(
                    event_id=str(uuid4()),
                    member_id=member_id,
                    karma_type=KarmaType.MODERATION,
                    change_amount=delta,
                    reason=reason,
                    created_at=now,
                    source_id=source_id,
                ),
            )
        logger.info("moderation karma adjusted", extra={"member_id": member_id, "delta": delta})
        return record

    async def recompute(self, member_id: str) -> ReputationRecord:
        """Rebuild the record from stored votes and the moderation history."""

        async with self._locks.hold(member_id), self._transaction():
            await self._repo.lock_record(member_id)
            now = datetime.now(timezone.utc)
            record = ReputationRecord(member_id=member_id, last_recomputed_at=now, updated_at=now)
            for vote in await self._repo.list_votes_for_owner(member_id):
                _apply(record, self.weights, vote.target.kind, vote.vote_type, 1)
            record.moderation_adjustment = await self._repo.moderation_total(member_id)
            return await self._repo.save_record(record)

    async def karma_history(
        self,
        member_id: str,
        *,
        karma_type: KarmaType | None = None,
        page: PageRequest | None = None,
    ) -> Page[KarmaEvent]:
        return await self._repo.list_events(member_id, karma_type, page or PageRequest())

    @staticmethod
    def _vote_event(owner_id: str, target: ContentRef, delta: int, reason: str) -> KarmaEvent:
        return KarmaEvent(
            event_id=str(uuid4()),
            member_id=owner_id,
            karma_type=KarmaType(target.kind.value),
            change_amount=delta,
            reason=reason,
            created_at=datetime.now(timezone.utc),
            source_id=f"{target.kind.value}:{target.id}",
        )
