"""Report intake endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from tribunal.infra.auth import AuthenticatedUser, get_current_user, get_staff_user
from tribunal.moderation.api._deps import PageOut, page_params
from tribunal.moderation.api._errors import to_http_error
from tribunal.moderation.domain.container import get_report_service
from tribunal.moderation.domain.errors import ModerationError
from tribunal.moderation.domain.pagination import PageRequest
from tribunal.moderation.domain.refs import ContentRef
from tribunal.moderation.domain.reports import (
    Report,
    ReportFilter,
    ReportStatus,
    SeverityLevel,
    ViolationCategory,
)

router = APIRouter(prefix="/api/mod/v1/reports", tags=["moderation-reports"])


class ReportOut(BaseModel):
    id: str
    reporter_id: str
    topic_id: str | None
    reply_id: str | None
    content_owner_id: str
    category: ViolationCategory
    severity_level: SeverityLevel
    explanation: str
    status: ReportStatus
    assigned_moderator_id: str | None
    resolution_notes: str | None
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, report: Report) -> "ReportOut":
        return cls(
            id=report.report_id,
            reporter_id=report.reporter_id,
            topic_id=report.target.topic_id,
            reply_id=report.target.reply_id,
            content_owner_id=report.content_owner_id,
            category=report.category,
            severity_level=report.severity,
            explanation=report.explanation,
            status=report.status,
            assigned_moderator_id=report.assigned_moderator_id,
            resolution_notes=report.resolution_notes,
            resolved_at=report.resolved_at,
            created_at=report.created_at,
            updated_at=report.updated_at,
        )


class CreateReportIn(BaseModel):
    topic_id: str | None = None
    reply_id: str | None = None
    category: ViolationCategory
    explanation: str = Field(min_length=1, max_length=5000)


class ResolveReportIn(BaseModel):
    outcome: ReportStatus
    notes: str | None = Field(default=None, max_length=2000)


@router.post("", response_model=ReportOut, status_code=status.HTTP_201_CREATED)
async def create_report(
    payload: CreateReportIn,
    user: AuthenticatedUser = Depends(get_current_user),
) -> ReportOut:
    try:
        target = ContentRef.from_fields(topic_id=payload.topic_id, reply_id=payload.reply_id)
        report = await get_report_service().create_report(
            reporter_id=user.id,
            target=target,
            category=payload.category,
            explanation=payload.explanation,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return ReportOut.from_domain(report)


@router.get("", response_model=PageOut[ReportOut])
async def list_reports(
    *,
    status_filter: ReportStatus | None = Query(default=None, alias="status"),
    category: ViolationCategory | None = Query(default=None),
    reporter_id: str | None = Query(default=None),
    topic_id: str | None = Query(default=None),
    reply_id: str | None = Query(default=None),
    severity_level: SeverityLevel | None = Query(default=None),
    assigned_moderator_id: str | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    page: PageRequest = Depends(page_params),
    _: AuthenticatedUser = Depends(get_staff_user),
) -> PageOut[ReportOut]:
    try:
        target = ContentRef.optional_from_fields(topic_id=topic_id, reply_id=reply_id)
        result = await get_report_service().list_reports(
            ReportFilter(
                status=status_filter,
                category=category,
                reporter_id=reporter_id,
                target=target,
                severity=severity_level,
                assigned_moderator_id=assigned_moderator_id,
                from_date=from_date,
                to_date=to_date,
            ),
            page,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return PageOut[ReportOut](
        items=[ReportOut.from_domain(item) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
    )


@router.get("/{report_id}", response_model=ReportOut)
async def get_report(
    report_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> ReportOut:
    try:
        report = await get_report_service().get_report(report_id)
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    if report.reporter_id != user.id and not user.is_moderator:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="report_not_found")
    return ReportOut.from_domain(report)


@router.post("/{report_id}/resolve", response_model=ReportOut)
async def resolve_report(
    report_id: str,
    payload: ResolveReportIn,
    staff: AuthenticatedUser = Depends(get_staff_user),
) -> ReportOut:
    try:
        report = await get_report_service().resolve_report(
            report_id=report_id,
            moderator_id=staff.id,
            outcome=payload.outcome,
            notes=payload.notes,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return ReportOut.from_domain(report)
