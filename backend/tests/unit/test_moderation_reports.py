from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tribunal.moderation.domain.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from tribunal.moderation.domain.pagination import PageRequest
from tribunal.moderation.domain.refs import ContentKind, ContentRef
from tribunal.moderation.domain.reports import ReportFilter, ReportStatus, SeverityLevel, ViolationCategory

EXPLANATION = "This post is advertising a scam site."


@pytest.mark.asyncio
async def test_create_report_starts_pending_and_round_trips(services) -> None:
	record = services.content.add("topic", "t-1", owner_id="author", body="buy now")

	report = await services.reports.create_report(
		reporter_id="reader",
		target=record.ref,
		category="spam",
		explanation=f"  {EXPLANATION}  ",
	)

	assert report.status is ReportStatus.PENDING
	assert report.content_owner_id == "author"
	assert report.explanation == EXPLANATION
	assert report.assigned_moderator_id is None
	fetched = await services.reports.get_report(report.report_id)
	assert fetched == report


@pytest.mark.asyncio
async def test_create_report_rejects_missing_content(services) -> None:
	with pytest.raises(NotFoundError):
		await services.reports.create_report(
			reporter_id="reader",
			target=ContentRef(ContentKind.REPLY, "ghost"),
			category=ViolationCategory.SPAM,
			explanation=EXPLANATION,
		)


@pytest.mark.asyncio
@pytest.mark.parametrize(
	("category", "explanation", "detail"),
	[
		("not-a-category", EXPLANATION, "unknown_violation_category"),
		("spam", "short", "explanation_too_short"),
		("spam", "x" * 1001, "explanation_too_long"),
	],
)
async def test_create_report_validation(services, category: str, explanation: str, detail: str) -> None:
	record = services.content.add("topic", "t-1", owner_id="author", body="body")
	with pytest.raises(ValidationError) as excinfo:
		await services.reports.create_report(
			reporter_id="reader", target=record.ref, category=category, explanation=explanation
		)
	assert excinfo.value.detail == detail


def test_content_ref_requires_exactly_one_target() -> None:
	with pytest.raises(ValidationError):
		ContentRef.from_fields(topic_id="t-1", reply_id="r-1")
	with pytest.raises(ValidationError):
		ContentRef.from_fields(topic_id=None, reply_id=None)
	assert ContentRef.from_fields(topic_id=None, reply_id="r-1").reply_id == "r-1"


@pytest.mark.asyncio
async def test_self_reporting_is_allowed(services) -> None:
	record = services.content.add("reply", "r-1", owner_id="author", body="oops")
	report = await services.reports.create_report(
		reporter_id="author", target=record.ref, category="other", explanation=EXPLANATION
	)
	assert report.reporter_id == report.content_owner_id


@pytest.mark.asyncio
async def test_duplicate_open_report_conflicts(services) -> None:
	record = services.content.add("topic", "t-1", owner_id="author", body="body")
	await services.reports.create_report(reporter_id="reader", target=record.ref, category="spam", explanation=EXPLANATION)
	with pytest.raises(ConflictError):
		await services.reports.create_report(
			reporter_id="reader", target=record.ref, category="harassment", explanation=EXPLANATION
		)


@pytest.mark.asyncio
async def test_resolve_report_is_final(services) -> None:
	record = services.content.add("topic", "t-1", owner_id="author", body="body")
	report = await services.reports.create_report(
		reporter_id="reader", target=record.ref, category="spam", explanation=EXPLANATION
	)

	resolved = await services.reports.resolve_report(
		report_id=report.report_id, moderator_id="mod-1", outcome="dismissed", notes="not spam"
	)

	assert resolved.status is ReportStatus.DISMISSED
	assert resolved.assigned_moderator_id == "mod-1"
	assert resolved.resolution_notes == "not spam"
	assert resolved.resolved_at is not None
	with pytest.raises(InvalidStateError):
		await services.reports.resolve_report(report_id=report.report_id, moderator_id="mod-2", outcome="resolved")
	assert services.audit.events[-1].event == "report.dismissed"


@pytest.mark.asyncio
async def test_resolve_report_rejects_pending_outcome_and_unknown_id(services) -> None:
	with pytest.raises(ValidationError):
		await services.reports.resolve_report(report_id="missing", moderator_id="mod-1", outcome="pending")
	with pytest.raises(NotFoundError):
		await services.reports.resolve_report(report_id="missing", moderator_id="mod-1", outcome="resolved")


@pytest.mark.asyncio
async def test_concurrent_resolution_has_one_winner(services) -> None:
	record = services.content.add("topic", "t-1", owner_id="author", body="body")
	report = await services.reports.create_report(
		reporter_id="reader", target=record.ref, category="spam", explanation=EXPLANATION
	)

	results = await asyncio.gather(
		services.reports.resolve_report(report_id=report.report_id, moderator_id="mod-1", outcome="resolved"),
		services.reports.resolve_report(report_id=report.report_id, moderator_id="mod-2", outcome="dismissed"),
		return_exceptions=True,
	)

	winners = [item for item in results if not isinstance(item, Exception)]
	losers = [item for item in results if isinstance(item, InvalidStateError)]
	assert len(winners) == 1
	assert len(losers) == 1


@pytest.mark.asyncio
async def test_list_reports_filters_and_pages(services) -> None:
	for index in range(3):
		record = services.content.add("topic", f"t-{index}", owner_id="author", body="body")
		await services.reports.create_report(
			reporter_id="reader", target=record.ref, category="spam", explanation=EXPLANATION
		)
	harassment = services.content.add("reply", "r-1", owner_id="author", body="body")
	await services.reports.create_report(
		reporter_id="other", target=harassment.ref, category="harassment", explanation=EXPLANATION
	)

	spam_page = await services.reports.list_reports(
		ReportFilter(category=ViolationCategory.SPAM), PageRequest(page=1, limit=2)
	)
	assert spam_page.total == 3
	assert len(spam_page.items) == 2
	assert spam_page.pages == 2

	by_target = await services.reports.list_reports(ReportFilter(target=harassment.ref))
	assert [item.reporter_id for item in by_target.items] == ["other"]


@pytest.mark.asyncio
async def test_queue_filters_by_severity_and_assignee(services) -> None:
	categories = ["hate_speech", "threats", "doxxing", "harassment", "misinformation", "spam", "other"]
	reports = []
	for index, category in enumerate(categories):
		record = services.content.add("topic", f"t-{index}", owner_id="author", body="body")
		reports.append(
			await services.reports.create_report(
				reporter_id="reader", target=record.ref, category=category, explanation=EXPLANATION
			)
		)
	await services.reports.resolve_report(report_id=reports[0].report_id, moderator_id="mod-1", outcome="resolved")

	critical = await services.reports.list_reports(ReportFilter(severity=SeverityLevel.CRITICAL))
	assert critical.total == 3
	assert {item.category for item in critical.items} == {
		ViolationCategory.HATE_SPEECH,
		ViolationCategory.THREATS,
		ViolationCategory.DOXXING,
	}
	assert all(item.severity is SeverityLevel.CRITICAL for item in critical.items)
	low = await services.reports.list_reports(ReportFilter(severity=SeverityLevel.LOW))
	assert low.total == 2

	assigned = await services.reports.list_reports(ReportFilter(assigned_moderator_id="mod-1"))
	assert [item.report_id for item in assigned.items] == [reports[0].report_id]


@pytest.mark.asyncio
async def test_queue_filters_by_date_range(services) -> None:
	record = services.content.add("topic", "t-1", owner_id="author", body="body")
	await services.reports.create_report(
		reporter_id="reader", target=record.ref, category="spam", explanation=EXPLANATION
	)
	now = datetime.now(timezone.utc)

	inside = await services.reports.list_reports(
		ReportFilter(from_date=now - timedelta(hours=1), to_date=now + timedelta(hours=1))
	)
	assert inside.total == 1
	later = await services.reports.list_reports(ReportFilter(from_date=now + timedelta(hours=1)))
	assert later.total == 0
	# naive bounds are read as UTC
	earlier = await services.reports.list_reports(ReportFilter(to_date=(now - timedelta(hours=1)).replace(tzinfo=None)))
	assert earlier.total == 0

	with pytest.raises(ValidationError) as excinfo:
		await services.reports.list_reports(ReportFilter(from_date=now, to_date=now - timedelta(days=1)))
	assert excinfo.value.detail == "invalid_date_range"
