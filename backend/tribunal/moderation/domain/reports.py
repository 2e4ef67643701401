"""Report intake: community reports against topics and replies."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol
from uuid import uuid4

from tribunal.moderation.domain.audit import AuditEvent, AuditSink, deliver
from tribunal.moderation.domain.content import ContentDirectory
from tribunal.moderation.domain.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from tribunal.moderation.domain.locks import KeyedLocks
from tribunal.moderation.domain.pagination import Page, PageRequest, paginate
from tribunal.moderation.domain.policy import ModerationPolicy
from tribunal.moderation.domain.refs import ContentRef
from tribunal.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class SeverityLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ViolationCategory(str, Enum):
    SPAM = "spam"
    HATE_SPEECH = "hate_speech"
    HARASSMENT = "harassment"
    MISINFORMATION = "misinformation"
    THREATS = "threats"
    DOXXING = "doxxing"
    OTHER = "other"

    @property
    def severity(self) -> SeverityLevel:
        return CATEGORY_SEVERITY[self]


CATEGORY_SEVERITY = {
    ViolationCategory.HATE_SPEECH: SeverityLevel.CRITICAL,
    ViolationCategory.THREATS: SeverityLevel.CRITICAL,
    ViolationCategory.DOXXING: SeverityLevel.CRITICAL,
    ViolationCategory.HARASSMENT: SeverityLevel.HIGH,
    ViolationCategory.MISINFORMATION: SeverityLevel.MEDIUM,
    ViolationCategory.SPAM: SeverityLevel.LOW,
    ViolationCategory.OTHER: SeverityLevel.LOW,
}


def categories_for(severity: SeverityLevel) -> list[ViolationCategory]:
    return [category for category, level in CATEGORY_SEVERITY.items() if level is severity]


class ReportStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self is not ReportStatus.PENDING


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_category(value: ViolationCategory | str) -> ViolationCategory:
    try:
        return ViolationCategory(value)
    except ValueError:
        raise ValidationError("unknown_violation_category") from None


@dataclass(slots=True)
class Report:
    report_id: str
    reporter_id: str
    target: ContentRef
    content_owner_id: str
    category: ViolationCategory
    explanation: str
    status: ReportStatus
    created_at: datetime
    updated_at: datetime
    assigned_moderator_id: str | None = None
    resolution_notes: str | None = None
    resolved_at: datetime | None = None

    @property
    def severity(self) -> SeverityLevel:
        return self.category.severity


@dataclass(frozen=True, slots=True)
class ReportFilter:
    status: ReportStatus | None = None
    category: ViolationCategory | None = None
    reporter_id: str | None = None
    target: ContentRef | None = None
    severity: SeverityLevel | None = None
    assigned_moderator_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None

    def matches(self, report: Report) -> bool:
        if self.status is not None and report.status is not self.status:
            return False
        if self.category is not None and report.category is not self.category:
            return False
        if self.reporter_id is not None and report.reporter_id != self.reporter_id:
            return False
        if self.target is not None and report.target != self.target:
            return False
        if self.severity is not None and report.severity is not self.severity:
            return False
        if self.assigned_moderator_id is not None and report.assigned_moderator_id != self.assigned_moderator_id:
            return False
        if self.from_date is not None and report.created_at < self.from_date:
            return False
        if self.to_date is not None and report.created_at > self.to_date:
            return False
        return True


class ReportRepository(Protocol):
    async def create(self, report: Report) -> Report:
        ...

    async def get(self, report_id: str) -> Report | None:
        ...

    async def resolve(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        moderator_id: str,
        notes: str | None,
        resolved_at: datetime,
    ) -> Report | None:
        """Move a pending report to ``status``; return None if it was not pending."""
        ...

    async def open_report_exists(self, reporter_id: str, target: ContentRef) -> bool:
        ...

    async def list(self, filters: ReportFilter, page: PageRequest) -> Page[Report]:
        ...


class InMemoryReportRepository(ReportRepository):
    def __init__(self) -> None:
        self._items: dict[str, Report] = {}

    async def create(self, report: Report) -> Report:
        self._items[report.report_id] = replace(report)
        return replace(report)

    async def get(self, report_id: str) -> Report | None:
        item = self._items.get(report_id)
        return replace(item) if item else None

    async def resolve(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        moderator_id: str,
        notes: str | None,
        resolved_at: datetime,
    ) -> Report | None:
        item = self._items.get(report_id)
        if item is None or item.status is not ReportStatus.PENDING:
            return None
        item.status = status
        item.assigned_moderator_id = moderator_id
        item.resolution_notes = notes
        item.resolved_at = resolved_at
        item.updated_at = resolved_at
        return replace(item)

    async def open_report_exists(self, reporter_id: str, target: ContentRef) -> bool:
        return any(
            item.reporter_id == reporter_id and item.target == target and item.status is ReportStatus.PENDING
            for item in self._items.values()
        )

    async def list(self, filters: ReportFilter, page: PageRequest) -> Page[Report]:
        matched = sorted(
            (item for item in self._items.values() if filters.matches(item)),
            key=lambda item: item.created_at,
            reverse=True,
        )
        return paginate([replace(item) for item in matched], page)


class ReportService:
    """Accepts reports and moves them to a terminal status exactly once."""

    def __init__(
        self,
        repository: ReportRepository,
        content: ContentDirectory,
        *,
        policy: ModerationPolicy | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._repo = repository
        self._content = content
        self._policy = policy or ModerationPolicy.default()
        self._audit = audit
        self._locks = KeyedLocks()

    async def create_report(
        self,
        *,
        reporter_id: str,
        target: ContentRef,
        category: ViolationCategory | str,
        explanation: str,
    ) -> Report:
        if not reporter_id:
            raise ValidationError("reporter_id_required")
        parsed_category = parse_category(category)
        text = (explanation or "").strip()
        if len(text) < self._policy.report_explanation_min_length:
            raise ValidationError("explanation_too_short")
        if len(text) > self._policy.report_explanation_max_length:
            raise ValidationError("explanation_too_long")
        content = await self._content.resolve(target)
        if content is None:
            raise NotFoundError("content_not_found")

        async with self._locks.hold(f"{reporter_id}:{target.kind.value}:{target.id}"):
            if await self._repo.open_report_exists(reporter_id, target):
                raise ConflictError("duplicate_report")
            now = datetime.now(timezone.utc)
            report = await self._repo.create(
                Report(
                    report_id=str(uuid4()),
                    reporter_id=reporter_id,
                    target=target,
                    content_owner_id=content.owner_id,
                    category=parsed_category,
                    explanation=text,
                    status=ReportStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                )
            )
        obs_metrics.MOD_REPORTS_TOTAL.labels(stage="submitted", category=parsed_category.value).inc()
        logger.info(
            "report submitted",
            extra={"report_id": report.report_id, "target_kind": target.kind.value, "category": parsed_category.value},
        )
        return report

    async def resolve_report(
        self,
        *,
        report_id: str,
        moderator_id: str,
        outcome: ReportStatus | str,
        notes: str | None = None,
    ) -> Report:
        try:
            status = ReportStatus(outcome)
        except ValueError:
            raise ValidationError("unknown_report_outcome") from None
        if not status.is_terminal:
            raise ValidationError("outcome_must_be_terminal")

        async with self._locks.hold(report_id):
            current = await self._repo.get(report_id)
            if current is None:
                raise NotFoundError("report_not_found")
            if current.status.is_terminal:
                raise InvalidStateError("report_already_terminal")
            updated = await self._repo.resolve(
                report_id,
                status=status,
                moderator_id=moderator_id,
                notes=notes,
                resolved_at=datetime.now(timezone.utc),
            )
            if updated is None:
                raise InvalidStateError("report_already_terminal")

        obs_metrics.MOD_REPORTS_TOTAL.labels(stage=status.value, category=updated.category.value).inc()
        await deliver(
            self._audit,
            AuditEvent(
                event=f"report.{status.value}",
                actor_id=moderator_id,
                target_type="report",
                target_id=report_id,
                meta={"category": updated.category.value},
            ),
        )
        return updated

    async def get_report(self, report_id: str) -> Report:
        report = await self._repo.get(report_id)
        if report is None:
            raise NotFoundError("report_not_found")
        return report

    async def list_reports(self, filters: ReportFilter | None = None, page: PageRequest | None = None) -> Page[Report]:
        filters = filters or ReportFilter()
        filters = replace(filters, from_date=_as_utc(filters.from_date), to_date=_as_utc(filters.to_date))
        if filters.from_date and filters.to_date and filters.from_date > filters.to_date:
            raise ValidationError("invalid_date_range")
        return await self._repo.list(filters, page or PageRequest())
