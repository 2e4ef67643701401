"""PostgreSQL-backed repositories for reports, the action ledger and appeals."""

from __future__ import annotations

from datetime import datetime

import asyncpg

from tribunal.infra.postgres import connection
from tribunal.moderation.domain.actions import (
    ActionFilter,
    ActionRepository,
    ActionReversal,
    ActionType,
    LedgerEntry,
    ModerationAction,
)
from tribunal.moderation.domain.appeals import (
    Appeal,
    AppealDecision,
    AppealFilter,
    AppealRepository,
    AppealStage,
    AppealStatus,
    AppealType,
)
from tribunal.moderation.domain.errors import ConflictError
from tribunal.moderation.domain.pagination import Page, PageRequest
from tribunal.moderation.domain.refs import Actor, ActorRole, ContentKind, ContentRef
from tribunal.moderation.domain.reports import (
    Report,
    ReportFilter,
    ReportRepository,
    ReportStatus,
    ViolationCategory,
    categories_for,
)
from tribunal.moderation.infra.sql import Filters

_REPORT_COLUMNS = """
    id, reporter_id, target_kind, target_id, content_owner_id, category, explanation, status,
    assigned_moderator_id, resolution_notes, resolved_at, created_at, updated_at
"""

_ACTION_COLUMNS = """
    a.id, a.actor_role, a.moderator_id, a.administrator_id, a.target_member_id, a.action_type,
    a.reason, a.category, a.content_snapshot, a.related_report_id, a.content_kind, a.content_id,
    a.reputation_penalty, a.created_at, r.reversed_at, r.appeal_id, r.reinstated_at
"""

_APPEAL_COLUMNS = """
    id, moderation_action_id, appellant_id, appeal_type, appeal_text, status, stage,
    decision_explanation, reviewer_role, reviewer_id, reviewed_at, is_escalated, escalated_at,
    moderator_decision, moderator_reviewer_id, admin_decision, admin_reviewer_id, created_at, updated_at
"""


def _optional_str(value: object) -> str | None:
    return str(value) if value is not None else None


def _row_to_report(row: asyncpg.Record) -> Report:
    return Report(
        report_id=str(row["id"]),
        reporter_id=str(row["reporter_id"]),
        target=ContentRef(ContentKind(row["target_kind"]), str(row["target_id"])),
        content_owner_id=str(row["content_owner_id"]),
        category=ViolationCategory(row["category"]),
        explanation=str(row["explanation"]),
        status=ReportStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        assigned_moderator_id=_optional_str(row["assigned_moderator_id"]),
        resolution_notes=_optional_str(row["resolution_notes"]),
        resolved_at=row["resolved_at"],
    )


def _row_to_reversal(action_id: str, row: asyncpg.Record) -> ActionReversal:
    return ActionReversal(
        action_id=action_id,
        reversed_at=row["reversed_at"],
        appeal_id=_optional_str(row["appeal_id"]),
        reinstated_at=row["reinstated_at"],
    )


def _row_to_entry(row: asyncpg.Record) -> LedgerEntry:
    role = ActorRole(row["actor_role"])
    actor_id = row["administrator_id"] if role is ActorRole.ADMINISTRATOR else row["moderator_id"]
    content_ref = None
    if row["content_kind"] is not None:
        content_ref = ContentRef(ContentKind(row["content_kind"]), str(row["content_id"]))
    action = ModerationAction(
        action_id=str(row["id"]),
        actor=Actor(role, str(actor_id)),
        target_member_id=str(row["target_member_id"]),
        action_type=ActionType(row["action_type"]),
        reason=str(row["reason"]),
        category=ViolationCategory(row["category"]) if row["category"] is not None else None,
        content_snapshot=row["content_snapshot"],
        created_at=row["created_at"],
        related_report_id=_optional_str(row["related_report_id"]),
        content_ref=content_ref,
        reputation_penalty=int(row["reputation_penalty"]),
    )
    reversal = _row_to_reversal(action.action_id, row) if row["reversed_at"] is not None else None
    return LedgerEntry(action, reversal)


def _row_to_appeal(row: asyncpg.Record) -> Appeal:
    reviewer = None
    if row["reviewer_id"] is not None:
        reviewer = Actor(ActorRole(row["reviewer_role"]), str(row["reviewer_id"]))
    return Appeal(
        appeal_id=str(row["id"]),
        moderation_action_id=str(row["moderation_action_id"]),
        appellant_id=str(row["appellant_id"]),
        appeal_type=AppealType(row["appeal_type"]),
        appeal_text=str(row["appeal_text"]),
        status=AppealStatus(row["status"]),
        stage=AppealStage(row["stage"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        decision_explanation=row["decision_explanation"],
        reviewer=reviewer,
        reviewed_at=row["reviewed_at"],
        is_escalated=bool(row["is_escalated"]),
        escalated_at=row["escalated_at"],
        moderator_decision=AppealDecision(row["moderator_decision"]) if row["moderator_decision"] else None,
        moderator_reviewer_id=_optional_str(row["moderator_reviewer_id"]),
        admin_decision=AppealDecision(row["admin_decision"]) if row["admin_decision"] else None,
        admin_reviewer_id=_optional_str(row["admin_reviewer_id"]),
    )


class PostgresReportRepository(ReportRepository):
    """Stores reports in mod_report."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def create(self, report: Report) -> Report:
        try:
            async with connection(self._pool) as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO mod_report (
                        id, reporter_id, target_kind, target_id, content_owner_id, category,
                        explanation, status, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                    RETURNING {_REPORT_COLUMNS}
                    """,
                    report.report_id,
                    report.reporter_id,
                    report.target.kind.value,
                    report.target.id,
                    report.content_owner_id,
                    report.category.value,
                    report.explanation,
                    report.status.value,
                    report.created_at,
                    report.updated_at,
                )
        except asyncpg.UniqueViolationError:
            raise ConflictError("duplicate_report") from None
        assert row is not None
        return _row_to_report(row)

    async def get(self, report_id: str) -> Report | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(f"SELECT {_REPORT_COLUMNS} FROM mod_report WHERE id = $1", report_id)
        return _row_to_report(row) if row else None

    async def resolve(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        moderator_id: str,
        notes: str | None,
        resolved_at: datetime,
    ) -> Report | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE mod_report
                SET status = $2,
                    assigned_moderator_id = $3,
                    resolution_notes = $4,
                    resolved_at = $5,
                    updated_at = $5
                WHERE id = $1 AND status = 'pending'
                RETURNING {_REPORT_COLUMNS}
                """,
                report_id,
                status.value,
                moderator_id,
                notes,
                resolved_at,
            )
        return _row_to_report(row) if row else None

    async def open_report_exists(self, reporter_id: str, target: ContentRef) -> bool:
        async with connection(self._pool) as conn:
            found = await conn.fetchval(
                """
                SELECT 1 FROM mod_report
                WHERE reporter_id = $1 AND target_kind = $2 AND target_id = $3 AND status = 'pending'
                LIMIT 1
                """,
                reporter_id,
                target.kind.value,
                target.id,
            )
        return found is not None

    async def list(self, filters: ReportFilter, page: PageRequest) -> Page[Report]:
        query = Filters()
        if filters.status is not None:
            query.add("status = {}", filters.status.value)
        if filters.category is not None:
            query.add("category = {}", filters.category.value)
        if filters.reporter_id is not None:
            query.add("reporter_id = {}", filters.reporter_id)
        if filters.target is not None:
            query.add("target_kind = {} AND target_id = {}", filters.target.kind.value, filters.target.id)
        if filters.severity is not None:
            categories = [category.value for category in categories_for(filters.severity)]
            query.add("category = ANY({}::text[])", categories)
        if filters.assigned_moderator_id is not None:
            query.add("assigned_moderator_id = {}", filters.assigned_moderator_id)
        if filters.from_date is not None:
            query.add("created_at >= {}", filters.from_date)
        if filters.to_date is not None:
            query.add("created_at <= {}", filters.to_date)
        limit_clause, args = query.page(page)
        async with connection(self._pool) as conn:
            total = await conn.fetchval(f"SELECT count(*) FROM mod_report {query.where()}", *query.args)
            rows = await conn.fetch(
                f"SELECT {_REPORT_COLUMNS} FROM mod_report {query.where()} ORDER BY created_at DESC {limit_clause}",
                *args,
            )
        return Page(items=[_row_to_report(row) for row in rows], page=page.page, limit=page.limit, total=int(total))


class PostgresActionRepository(ActionRepository):
    """Append-only mod_action rows plus the mod_action_reversal index."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def append(self, action: ModerationAction) -> ModerationAction:
        ref = action.content_ref
        async with connection(self._pool) as conn:
            await conn.execute(
                """
                INSERT INTO mod_action (
                    id, actor_role, moderator_id, administrator_id, target_member_id, action_type,
                    reason, category, content_snapshot, related_report_id, content_kind, content_id,
                    reputation_penalty, created_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                """,
                action.action_id,
                action.actor.role.value,
                action.moderator_id,
                action.administrator_id,
                action.target_member_id,
                action.action_type.value,
                action.reason,
                action.category.value if action.category else None,
                action.content_snapshot,
                action.related_report_id,
                ref.kind.value if ref else None,
                ref.id if ref else None,
                action.reputation_penalty,
                action.created_at,
            )
        return action

    async def get(self, action_id: str) -> LedgerEntry | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_ACTION_COLUMNS}
                FROM mod_action a
                LEFT JOIN mod_action_reversal r ON r.action_id = a.id
                WHERE a.id = $1
                """,
                action_id,
            )
        return _row_to_entry(row) if row else None

    async def record_reversal(self, reversal: ActionReversal) -> tuple[ActionReversal, bool]:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO mod_action_reversal (action_id, reversed_at, appeal_id)
                VALUES ($1, $2, $3)
                ON CONFLICT (action_id) DO NOTHING
                RETURNING action_id
                """,
                reversal.action_id,
                reversal.reversed_at,
                reversal.appeal_id,
            )
            if row is not None:
                return reversal, True
            existing = await conn.fetchrow(
                "SELECT reversed_at, appeal_id, reinstated_at FROM mod_action_reversal WHERE action_id = $1",
                reversal.action_id,
            )
        assert existing is not None
        return _row_to_reversal(reversal.action_id, existing), False

    async def record_reinstatement(self, action_id: str, *, reinstated_at: datetime) -> ActionReversal | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                """
                UPDATE mod_action_reversal
                SET reinstated_at = $2
                WHERE action_id = $1 AND reinstated_at IS NULL
                RETURNING reversed_at, appeal_id, reinstated_at
                """,
                action_id,
                reinstated_at,
            )
        return _row_to_reversal(action_id, row) if row else None

    async def list(self, filters: ActionFilter, page: PageRequest) -> Page[LedgerEntry]:
        query = Filters()
        if filters.target_member_id is not None:
            query.add("a.target_member_id = {}", filters.target_member_id)
        if filters.actor_id is not None:
            query.add("(a.moderator_id = {0} OR a.administrator_id = {0})", filters.actor_id)
        if filters.action_type is not None:
            query.add("a.action_type = {}", filters.action_type.value)
        if not filters.include_reversed:
            query.add("(r.action_id IS NULL OR r.reinstated_at IS NOT NULL)")
        source = "mod_action a LEFT JOIN mod_action_reversal r ON r.action_id = a.id"
        limit_clause, args = query.page(page)
        async with connection(self._pool) as conn:
            total = await conn.fetchval(f"SELECT count(*) FROM {source} {query.where()}", *query.args)
            rows = await conn.fetch(
                f"SELECT {_ACTION_COLUMNS} FROM {source} {query.where()} ORDER BY a.created_at DESC {limit_clause}",
                *args,
            )
        return Page(items=[_row_to_entry(row) for row in rows], page=page.page, limit=page.limit, total=int(total))


class PostgresAppealRepository(AppealRepository):
    """Stores appeals in mod_appeal; one appeal per member per action is a unique index."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def create(self, appeal: Appeal) -> Appeal:
        try:
            async with connection(self._pool) as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO mod_appeal (
                        id, moderation_action_id, appellant_id, appeal_type, appeal_text,
                        status, stage, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    RETURNING {_APPEAL_COLUMNS}
                    """,
                    appeal.appeal_id,
                    appeal.moderation_action_id,
                    appeal.appellant_id,
                    appeal.appeal_type.value,
                    appeal.appeal_text,
                    appeal.status.value,
                    appeal.stage.value,
                    appeal.created_at,
                    appeal.updated_at,
                )
        except asyncpg.UniqueViolationError:
            raise ConflictError("appeal_already_exists") from None
        assert row is not None
        return _row_to_appeal(row)

    async def get(self, appeal_id: str) -> Appeal | None:
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(f"SELECT {_APPEAL_COLUMNS} FROM mod_appeal WHERE id = $1", appeal_id)
        return _row_to_appeal(row) if row else None

    async def transition(self, appeal: Appeal, *, expected_stage: AppealStage) -> bool:
        reviewer = appeal.reviewer
        async with connection(self._pool) as conn:
            result = await conn.execute(
                """
                UPDATE mod_appeal
                SET status = $3,
                    stage = $4,
                    decision_explanation = $5,
                    reviewer_role = $6,
                    reviewer_id = $7,
                    reviewed_at = $8,
                    is_escalated = $9,
                    escalated_at = $10,
                    moderator_decision = $11,
                    moderator_reviewer_id = $12,
                    admin_decision = $13,
                    admin_reviewer_id = $14,
                    updated_at = $15
                WHERE id = $1 AND stage = $2
                """,
                appeal.appeal_id,
                expected_stage.value,
                appeal.status.value,
                appeal.stage.value,
                appeal.decision_explanation,
                reviewer.role.value if reviewer else None,
                reviewer.id if reviewer else None,
                appeal.reviewed_at,
                appeal.is_escalated,
                appeal.escalated_at,
                appeal.moderator_decision.value if appeal.moderator_decision else None,
                appeal.moderator_reviewer_id,
                appeal.admin_decision.value if appeal.admin_decision else None,
                appeal.admin_reviewer_id,
                appeal.updated_at,
            )
        return result.endswith(" 1")

    async def exists_for_action(self, action_id: str, appellant_id: str) -> bool:
        async with connection(self._pool) as conn:
            found = await conn.fetchval(
                "SELECT 1 FROM mod_appeal WHERE moderation_action_id = $1 AND appellant_id = $2 LIMIT 1",
                action_id,
                appellant_id,
            )
        return found is not None

    async def count_pending_for_member(self, member_id: str) -> int:
        async with connection(self._pool) as conn:
            count = await conn.fetchval(
                "SELECT count(*) FROM mod_appeal WHERE appellant_id = $1 AND status = 'pending'",
                member_id,
            )
        return int(count or 0)

    async def list(self, filters: AppealFilter, page: PageRequest) -> Page[Appeal]:
        query = Filters()
        if filters.status is not None:
            query.add("status = {}", filters.status.value)
        if filters.appellant_id is not None:
            query.add("appellant_id = {}", filters.appellant_id)
        if filters.is_escalated is not None:
            query.add("is_escalated = {}", filters.is_escalated)
        if filters.moderation_action_id is not None:
            query.add("moderation_action_id = {}", filters.moderation_action_id)
        limit_clause, args = query.page(page)
        async with connection(self._pool) as conn:
            total = await conn.fetchval(f"SELECT count(*) FROM mod_appeal {query.where()}", *query.args)
            rows = await conn.fetch(
                f"SELECT {_APPEAL_COLUMNS} FROM mod_appeal {query.where()} ORDER BY created_at DESC {limit_clause}",
                *args,
            )
        return Page(items=[_row_to_appeal(row) for row in rows], page=page.page, limit=page.limit, total=int(total))
