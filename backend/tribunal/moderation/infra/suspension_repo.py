"""PostgreSQL persistence for suspensions and bans."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

import asyncpg

from tribunal.infra.postgres import connection
from tribunal.moderation.domain.refs import Actor, ActorRole
from tribunal.moderation.domain.reports import ViolationCategory
from tribunal.moderation.domain.suspensions import Suspension, SuspensionRepository, SuspensionScope

_COLUMNS = """
    id, member_id, issuer_role, issuer_id, scope, reason_category, reason, duration_days,
    start_date, end_date, is_active, is_permanent, lifted_early, lifted_at, lifted_reason, notes,
    moderation_action_id, is_appealable, created_at, updated_at
"""


def _row_to_suspension(row: asyncpg.Record) -> Suspension:
    return Suspension(
        suspension_id=str(row["id"]),
        member_id=str(row["member_id"]),
        issuer=Actor(ActorRole(row["issuer_role"]), str(row["issuer_id"])),
        scope=SuspensionScope(row["scope"]),
        reason_category=ViolationCategory(row["reason_category"]),
        reason=str(row["reason"]),
        duration_days=row["duration_days"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        is_active=bool(row["is_active"]),
        is_permanent=bool(row["is_permanent"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        lifted_early=bool(row["lifted_early"]),
        lifted_at=row["lifted_at"],
        lifted_reason=row["lifted_reason"],
        notes=row["notes"],
        moderation_action_id=str(row["moderation_action_id"]) if row["moderation_action_id"] else None,
        is_appealable=bool(row["is_appealable"]),
    )


class PostgresSuspensionRepository(SuspensionRepository):
    """Stores suspensions in mod_suspension; lifts and expiry are conditional updates."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def create(self, suspension: Suspension) -> Suspension:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO mod_suspension (
                    id, member_id, issuer_role, issuer_id, scope, reason_category, reason, duration_days,
                    start_date, end_date, is_active, is_permanent, notes, moderation_action_id,
                    is_appealable, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
                RETURNING {_COLUMNS}
                """,
                suspension.suspension_id,
                suspension.member_id,
                suspension.issuer.role.value,
                suspension.issuer.id,
                suspension.scope.value,
                suspension.reason_category.value,
                suspension.reason,
                suspension.duration_days,
                suspension.start_date,
                suspension.end_date,
                suspension.is_active,
                suspension.is_permanent,
                suspension.notes,
                suspension.moderation_action_id,
                suspension.is_appealable,
                suspension.created_at,
                suspension.updated_at,
            )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert suspension")
        return _row_to_suspension(row)

    async def get(self, suspension_id: str) -> Suspension | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM mod_suspension WHERE id = $1", suspension_id)
        return _row_to_suspension(row) if row else None

    async def lift(self, suspension_id: str, *, lifted_at: datetime, reason: str) -> Suspension | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE mod_suspension
                SET is_active = FALSE,
                    lifted_early = TRUE,
                    lifted_at = $2,
                    lifted_reason = $3,
                    updated_at = $2
                WHERE id = $1 AND is_active AND (is_permanent OR end_date > $2)
                RETURNING {_COLUMNS}
                """,
                suspension_id,
                lifted_at,
                reason,
            )
        return _row_to_suspension(row) if row else None

    async def update_details(
        self, suspension_id: str, *, reason: str | None, notes: str | None, updated_at: datetime
    ) -> Suspension | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE mod_suspension
                SET reason = COALESCE($2, reason),
                    notes = COALESCE($3, notes),
                    updated_at = $4
                WHERE id = $1
                RETURNING {_COLUMNS}
                """,
                suspension_id,
                reason,
                notes,
                updated_at,
            )
        return _row_to_suspension(row) if row else None

    async def list_for_member(self, member_id: str) -> Sequence[Suspension]:
        async with connection(self._pool) as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM mod_suspension WHERE member_id = $1 ORDER BY start_date DESC",
                member_id,
            )
        return [_row_to_suspension(row) for row in rows]

    async def find_by_action(self, action_id: str) -> Sequence[Suspension]:
        async with connection(self._pool) as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM mod_suspension WHERE moderation_action_id = $1",
                action_id,
            )
        return [_row_to_suspension(row) for row in rows]

    async def expire_due(self, now: datetime) -> Sequence[Suspension]:
        async with connection(self._pool) as conn:
            rows = await conn.fetch(
                f"""
                UPDATE mod_suspension
                SET is_active = FALSE, updated_at = $1
                WHERE is_active AND NOT is_permanent AND end_date <= $1
                RETURNING {_COLUMNS}
                """,
                now,
            )
        return [_row_to_suspension(row) for row in rows]
