"""PostgreSQL storage for votes, reputation records and karma history."""

from __future__ import annotations

from typing import Sequence

import asyncpg

from tribunal.infra.postgres import connection, transaction
from tribunal.moderation.domain.pagination import Page, PageRequest
from tribunal.moderation.domain.refs import ContentKind, ContentRef
from tribunal.moderation.domain.reputation import (
    KarmaEvent,
    KarmaType,
    ReputationRecord,
    ReputationRepository,
    Vote,
    VoteType,
)
from tribunal.moderation.infra.sql import Filters

_RECORD_COLUMNS = """
    member_id, topic_upvotes, topic_downvotes, reply_upvotes, reply_downvotes,
    topics_score, replies_score, moderation_adjustment, last_recomputed_at, updated_at
"""

_UPSERT_RECORD = f"""
INSERT INTO mod_reputation (
    member_id, topic_upvotes, topic_downvotes, reply_upvotes, reply_downvotes,
    topics_score, replies_score, moderation_adjustment, last_recomputed_at, updated_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
ON CONFLICT (member_id) DO UPDATE SET
    topic_upvotes = EXCLUDED.topic_upvotes,
    topic_downvotes = EXCLUDED.topic_downvotes,
    reply_upvotes = EXCLUDED.reply_upvotes,
    reply_downvotes = EXCLUDED.reply_downvotes,
    topics_score = EXCLUDED.topics_score,
    replies_score = EXCLUDED.replies_score,
    moderation_adjustment = EXCLUDED.moderation_adjustment,
    last_recomputed_at = COALESCE(EXCLUDED.last_recomputed_at, mod_reputation.last_recomputed_at),
    updated_at = EXCLUDED.updated_at
RETURNING {_RECORD_COLUMNS}
"""

_INSERT_EVENT = """
INSERT INTO mod_karma_event (id, member_id, karma_type, change_amount, reason, source_id, created_at)
VALUES ($1, $2, $3, $4, $5, $6, $7)
"""


def _row_to_record(row: asyncpg.Record) -> ReputationRecord:
    return ReputationRecord(
        member_id=str(row["member_id"]),
        topic_upvotes=int(row["topic_upvotes"]),
        topic_downvotes=int(row["topic_downvotes"]),
        reply_upvotes=int(row["reply_upvotes"]),
        reply_downvotes=int(row["reply_downvotes"]),
        topics_score=int(row["topics_score"]),
        replies_score=int(row["replies_score"]),
        moderation_adjustment=int(row["moderation_adjustment"]),
        last_recomputed_at=row["last_recomputed_at"],
        updated_at=row["updated_at"],
    )


def _row_to_vote(row: asyncpg.Record) -> Vote:
    return Vote(
        voter_id=str(row["voter_id"]),
        target=ContentRef(ContentKind(row["target_kind"]), str(row["target_id"])),
        owner_id=str(row["owner_id"]),
        vote_type=VoteType(row["vote_type"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_event(row: asyncpg.Record) -> KarmaEvent:
    return KarmaEvent(
        event_id=str(row["id"]),
        member_id=str(row["member_id"]),
        karma_type=KarmaType(row["karma_type"]),
        change_amount=int(row["change_amount"]),
        reason=str(row["reason"]),
        created_at=row["created_at"],
        source_id=row["source_id"],
    )


def _record_args(record: ReputationRecord) -> tuple[object, ...]:
    return (
        record.member_id,
        record.topic_upvotes,
        record.topic_downvotes,
        record.reply_upvotes,
        record.reply_downvotes,
        record.topics_score,
        record.replies_score,
        record.moderation_adjustment,
        record.last_recomputed_at,
        record.updated_at,
    )


def _event_args(event: KarmaEvent) -> tuple[object, ...]:
    return (
        event.event_id,
        event.member_id,
        event.karma_type.value,
        event.change_amount,
        event.reason,
        event.source_id,
        event.created_at,
    )


class PostgresReputationRepository(ReputationRepository):
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_record(self, member_id: str) -> ReputationRecord | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(f"SELECT {_RECORD_COLUMNS} FROM mod_reputation WHERE member_id = $1", member_id)
        return _row_to_record(row) if row else None

    async def lock_record(self, member_id: str) -> ReputationRecord | None:
        # the row must exist before FOR UPDATE can hold it; a zeroed row reads as no activity
        async with connection(self._pool) as conn:
            await conn.execute(
                "INSERT INTO mod_reputation (member_id) VALUES ($1) ON CONFLICT (member_id) DO NOTHING",
                member_id,
            )
            row = await conn.fetchrow(
                f"SELECT {_RECORD_COLUMNS} FROM mod_reputation WHERE member_id = $1 FOR UPDATE",
                member_id,
            )
        return _row_to_record(row) if row else None

    async def save_record(self, record: ReputationRecord) -> ReputationRecord:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(_UPSERT_RECORD, *_record_args(record))
        assert row is not None
        return _row_to_record(row)

    async def get_vote(self, voter_id: str, target: ContentRef) -> Vote | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT voter_id, target_kind, target_id, owner_id, vote_type, created_at, updated_at
                FROM mod_vote
                WHERE voter_id = $1 AND target_kind = $2 AND target_id = $3
                """,
                voter_id,
                target.kind.value,
                target.id,
            )
        return _row_to_vote(row) if row else None

    async def list_votes_for_owner(self, owner_id: str) -> Sequence[Vote]:
        async with connection(self._pool) as conn:
            rows = await conn.fetch(
                """
                SELECT voter_id, target_kind, target_id, owner_id, vote_type, created_at, updated_at
                FROM mod_vote
                WHERE owner_id = $1
                """,
                owner_id,
            )
        return [_row_to_vote(row) for row in rows]

    async def apply_vote(
        self,
        *,
        voter_id: str,
        target: ContentRef,
        vote: Vote | None,
        record: ReputationRecord,
        event: KarmaEvent,
    ) -> None:
        async with transaction(self._pool) as conn:
            if vote is None:
                await conn.execute(
                    "DELETE FROM mod_vote WHERE voter_id = $1 AND target_kind = $2 AND target_id = $3",
                    voter_id,
                    target.kind.value,
                    target.id,
                )
            else:
                await conn.execute(
                    """
                    INSERT INTO mod_vote (voter_id, target_kind, target_id, owner_id, vote_type, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    ON CONFLICT (voter_id, target_kind, target_id)
                    DO UPDATE SET vote_type = EXCLUDED.vote_type, updated_at = EXCLUDED.updated_at
                    """,
                    voter_id,
                    target.kind.value,
                    target.id,
                    vote.owner_id,
                    vote.vote_type.value,
                    vote.created_at,
                    vote.updated_at,
                )
            await conn.execute(_UPSERT_RECORD, *_record_args(record))
            await conn.execute(_INSERT_EVENT, *_event_args(event))

    async def apply_adjustment(self, record: ReputationRecord, event: KarmaEvent) -> None:
        async with transaction(self._pool) as conn:
            await conn.execute(_UPSERT_RECORD, *_record_args(record))
            await conn.execute(_INSERT_EVENT, *_event_args(event))

    async def moderation_total(self, member_id: str) -> int:
        async with connection(self._pool) as conn:
            total = await conn.fetchval(
                """
                SELECT COALESCE(SUM(change_amount), 0)
                FROM mod_karma_event
                WHERE member_id = $1 AND karma_type = 'moderation'
                """,
                member_id,
            )
        return int(total or 0)

    async def list_events(
        self, member_id: str, karma_type: KarmaType | None, page: PageRequest
    ) -> Page[KarmaEvent]:
        query = Filters().add("member_id = {}", member_id)
        if karma_type is not None:
            query.add("karma_type = {}", karma_type.value)
        limit_clause, args = query.page(page)
        async with connection(self._pool) as conn:
            total = await conn.fetchval(f"SELECT count(*) FROM mod_karma_event {query.where()}", *query.args)
            rows = await conn.fetch(
                f"""
                SELECT id, member_id, karma_type, change_amount, reason, source_id, created_at
                FROM mod_karma_event
                {query.where()}
                ORDER BY created_at DESC
                {limit_clause}
                """,
                *args,
            )
        return Page(items=[_row_to_event(row) for row in rows], page=page.page, limit=page.limit, total=int(total))
