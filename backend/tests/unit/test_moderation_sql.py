from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from tribunal.moderation.domain.appeals import AppealDecision, AppealStage, AppealStatus, AppealType
from tribunal.moderation.domain.pagination import PageRequest
from tribunal.moderation.domain.refs import ActorRole, ContentKind
from tribunal.moderation.domain.reports import ReportStatus, ViolationCategory
from tribunal.moderation.domain.reputation import KarmaType, VoteType
from tribunal.moderation.domain.suspensions import SuspensionScope
from tribunal.moderation.infra import postgres_repo, reputation_repo, suspension_repo
from tribunal.moderation.infra.sql import Filters

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FakeConnection:
	def __init__(self, row: dict | None = None) -> None:
		self.row = row
		self.statements: list[str] = []

	async def execute(self, query: str, *args: object) -> str:
		self.statements.append(query)
		return "INSERT 0 1"

	async def fetchrow(self, query: str, *args: object) -> dict | None:
		self.statements.append(query)
		return self.row


class _FakePool:
	def __init__(self, conn: _FakeConnection) -> None:
		self._conn = conn

	@asynccontextmanager
	async def acquire(self):
		yield self._conn


def _action_row(**overrides: object) -> dict:
	row = {
		"id": "act-1",
		"actor_role": "moderator",
		"moderator_id": "mod-1",
		"administrator_id": None,
		"target_member_id": "member-1",
		"action_type": "suspend_user",
		"reason": "Harassment in replies.",
		"category": "harassment",
		"content_snapshot": None,
		"related_report_id": None,
		"content_kind": None,
		"content_id": None,
		"reputation_penalty": 15,
		"created_at": NOW,
		"reversed_at": None,
		"appeal_id": None,
		"reinstated_at": None,
	}
	row.update(overrides)
	return row


def test_filters_number_placeholders_in_order() -> None:
	query = Filters().add("status = {}", "pending").add("created_at BETWEEN {} AND {}", NOW, NOW)

	assert query.where() == "WHERE status = $1 AND created_at BETWEEN $2 AND $3"
	assert query.args == ["pending", NOW, NOW]


def test_filters_reuse_a_single_placeholder() -> None:
	query = Filters().add("member_id = {}", "m-1").add("(a.moderator_id = {0} OR a.administrator_id = {0})", "mod-1")

	assert query.clauses[-1] == "(a.moderator_id = $2 OR a.administrator_id = $2)"
	assert query.args == ["m-1", "mod-1"]


def test_filters_without_clauses_render_nothing() -> None:
	query = Filters()

	assert query.where() == ""
	clause, args = query.page(PageRequest(page=1, limit=20))
	assert clause == "LIMIT $1 OFFSET $2"
	assert args == [20, 0]


def test_filters_page_appends_limit_and_offset() -> None:
	query = Filters().add("status = {}", "pending")

	clause, args = query.page(PageRequest(page=3, limit=10))

	assert clause == "LIMIT $2 OFFSET $3"
	assert args == ["pending", 10, 20]
	assert query.args == ["pending"]


def test_report_row_mapping() -> None:
	report = postgres_repo._row_to_report(
		{
			"id": "rep-1",
			"reporter_id": "reader",
			"target_kind": "reply",
			"target_id": "r-9",
			"content_owner_id": "author",
			"category": "doxxing",
			"explanation": "Posted a home address.",
			"status": "resolved",
			"assigned_moderator_id": "mod-1",
			"resolution_notes": None,
			"resolved_at": NOW,
			"created_at": NOW - timedelta(hours=1),
			"updated_at": NOW,
		}
	)

	assert report.target.kind is ContentKind.REPLY
	assert report.category is ViolationCategory.DOXXING
	assert report.status is ReportStatus.RESOLVED
	assert report.assigned_moderator_id == "mod-1"
	assert report.resolution_notes is None


def test_action_row_mapping_without_reversal() -> None:
	entry = postgres_repo._row_to_entry(_action_row())

	assert entry.action.actor.role is ActorRole.MODERATOR
	assert entry.action.moderator_id == "mod-1"
	assert entry.action.content_ref is None
	assert entry.reversal is None
	assert not entry.is_reversed


def test_action_row_mapping_with_reversal_and_reinstatement() -> None:
	reversed_entry = postgres_repo._row_to_entry(
		_action_row(
			actor_role="administrator",
			moderator_id=None,
			administrator_id="admin-1",
			content_kind="topic",
			content_id="t-1",
			reversed_at=NOW,
			appeal_id="appeal-1",
		)
	)
	assert reversed_entry.action.administrator_id == "admin-1"
	assert reversed_entry.action.content_ref is not None
	assert reversed_entry.action.content_ref.id == "t-1"
	assert reversed_entry.is_reversed
	assert reversed_entry.reversal is not None
	assert reversed_entry.reversal.appeal_id == "appeal-1"

	reinstated = postgres_repo._row_to_entry(
		_action_row(reversed_at=NOW, appeal_id="appeal-1", reinstated_at=NOW + timedelta(days=1))
	)
	assert not reinstated.is_reversed
	assert reinstated.reversed_at is None
	assert reinstated.reinstated_at == NOW + timedelta(days=1)


def test_appeal_row_mapping() -> None:
	appeal = postgres_repo._row_to_appeal(
		{
			"id": "appeal-1",
			"moderation_action_id": "act-1",
			"appellant_id": "member-1",
			"appeal_type": "suspension",
			"appeal_text": "I was quoting someone else.",
			"status": "overturned",
			"stage": "awaiting_escalation",
			"decision_explanation": "Context was missed.",
			"reviewer_role": "moderator",
			"reviewer_id": "mod-2",
			"reviewed_at": NOW,
			"is_escalated": False,
			"escalated_at": None,
			"moderator_decision": "overturn",
			"moderator_reviewer_id": "mod-2",
			"admin_decision": None,
			"admin_reviewer_id": None,
			"created_at": NOW - timedelta(days=1),
			"updated_at": NOW,
		}
	)

	assert appeal.appeal_type is AppealType.SUSPENSION
	assert appeal.status is AppealStatus.OVERTURNED
	assert appeal.stage is AppealStage.AWAITING_ESCALATION
	assert appeal.reviewer is not None
	assert appeal.reviewer.role is ActorRole.MODERATOR
	assert appeal.moderator_decision is AppealDecision.OVERTURN
	assert appeal.admin_decision is None


def test_suspension_row_mapping() -> None:
	suspension = suspension_repo._row_to_suspension(
		{
			"id": "susp-1",
			"member_id": "member-1",
			"issuer_role": "administrator",
			"issuer_id": "admin-1",
			"scope": "community",
			"reason_category": "threats",
			"reason": "Threatened another member.",
			"duration_days": None,
			"start_date": NOW,
			"end_date": None,
			"is_active": True,
			"is_permanent": True,
			"lifted_early": False,
			"lifted_at": None,
			"lifted_reason": None,
			"notes": None,
			"moderation_action_id": None,
			"is_appealable": True,
			"created_at": NOW,
			"updated_at": NOW,
		}
	)

	assert suspension.scope is SuspensionScope.COMMUNITY
	assert suspension.reason_category is ViolationCategory.THREATS
	assert suspension.is_permanent
	assert suspension.moderation_action_id is None


def test_reputation_row_mapping() -> None:
	record = reputation_repo._row_to_record(
		{
			"member_id": "member-1",
			"topic_upvotes": 4,
			"topic_downvotes": 1,
			"reply_upvotes": 2,
			"reply_downvotes": 0,
			"topics_score": 3,
			"replies_score": 2,
			"moderation_adjustment": -15,
			"last_recomputed_at": None,
			"updated_at": NOW,
		}
	)
	vote = reputation_repo._row_to_vote(
		{
			"voter_id": "voter-1",
			"target_kind": "topic",
			"target_id": "t-1",
			"owner_id": "member-1",
			"vote_type": "down",
			"created_at": NOW,
			"updated_at": NOW,
		}
	)
	event = reputation_repo._row_to_event(
		{
			"id": "ev-1",
			"member_id": "member-1",
			"karma_type": "moderation",
			"change_amount": -15,
			"reason": "suspend_user penalty",
			"created_at": NOW,
			"source_id": "act-1",
		}
	)

	assert record.moderation_adjustment == -15
	assert vote.vote_type is VoteType.DOWN
	assert vote.target.kind is ContentKind.TOPIC
	assert event.karma_type is KarmaType.MODERATION
	assert event.source_id == "act-1"


@pytest.mark.asyncio
async def test_lock_record_creates_the_row_then_locks_it() -> None:
	conn = _FakeConnection(
		{
			"member_id": "member-1",
			"topic_upvotes": 0,
			"topic_downvotes": 0,
			"reply_upvotes": 0,
			"reply_downvotes": 0,
			"topics_score": 0,
			"replies_score": 0,
			"moderation_adjustment": 0,
			"last_recomputed_at": None,
			"updated_at": NOW,
		}
	)
	repo = reputation_repo.PostgresReputationRepository(_FakePool(conn))

	record = await repo.lock_record("member-1")

	assert record is not None
	assert record.member_id == "member-1"
	assert "ON CONFLICT (member_id) DO NOTHING" in conn.statements[0]
	assert conn.statements[1].rstrip().endswith("FOR UPDATE")
