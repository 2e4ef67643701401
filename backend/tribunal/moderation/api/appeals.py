"""Appeal submission, review and escalation endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from tribunal.infra.auth import AuthenticatedUser, get_current_user, get_staff_user
from tribunal.moderation.api._deps import PageOut, actor_for, page_params
from tribunal.moderation.api._errors import to_http_error
from tribunal.moderation.domain.appeals import (
    Appeal,
    AppealDecision,
    AppealFilter,
    AppealStage,
    AppealStatus,
    AppealType,
)
from tribunal.moderation.domain.container import get_appeal_service
from tribunal.moderation.domain.errors import ModerationError
from tribunal.moderation.domain.pagination import PageRequest

router = APIRouter(prefix="/api/mod/v1/appeals", tags=["moderation-appeals"])


class AppealOut(BaseModel):
    id: str
    moderation_action_id: str
    appellant_id: str
    appeal_type: AppealType
    appeal_text: str
    status: AppealStatus
    stage: AppealStage
    decision_explanation: str | None
    reviewer_id: str | None
    reviewer_role: str | None
    reviewed_at: datetime | None
    is_escalated: bool
    escalated_at: datetime | None
    moderator_decision: AppealDecision | None
    admin_decision: AppealDecision | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, appeal: Appeal) -> "AppealOut":
        reviewer = appeal.reviewer
        return cls(
            id=appeal.appeal_id,
            moderation_action_id=appeal.moderation_action_id,
            appellant_id=appeal.appellant_id,
            appeal_type=appeal.appeal_type,
            appeal_text=appeal.appeal_text,
            status=appeal.status,
            stage=appeal.stage,
            decision_explanation=appeal.decision_explanation,
            reviewer_id=reviewer.id if reviewer else None,
            reviewer_role=reviewer.role.value if reviewer else None,
            reviewed_at=appeal.reviewed_at,
            is_escalated=appeal.is_escalated,
            escalated_at=appeal.escalated_at,
            moderator_decision=appeal.moderator_decision,
            admin_decision=appeal.admin_decision,
            created_at=appeal.created_at,
            updated_at=appeal.updated_at,
        )


class SubmitAppealIn(BaseModel):
    moderation_action_id: str
    appeal_type: AppealType
    appeal_text: str = Field(max_length=10_000)


class ReviewAppealIn(BaseModel):
    decision: AppealDecision
    explanation: str = Field(min_length=1, max_length=5000)


@router.post("", response_model=AppealOut, status_code=status.HTTP_201_CREATED)
async def submit_appeal(
    payload: SubmitAppealIn,
    user: AuthenticatedUser = Depends(get_current_user),
) -> AppealOut:
    try:
        appeal = await get_appeal_service().submit_appeal(
            appellant_id=user.id,
            moderation_action_id=payload.moderation_action_id,
            appeal_type=payload.appeal_type,
            appeal_text=payload.appeal_text,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return AppealOut.from_domain(appeal)


@router.get("", response_model=PageOut[AppealOut])
async def list_appeals(
    *,
    status_filter: AppealStatus | None = Query(default=None, alias="status"),
    appellant_id: str | None = Query(default=None),
    is_escalated: bool | None = Query(default=None),
    moderation_action_id: str | None = Query(default=None),
    page: PageRequest = Depends(page_params),
    _: AuthenticatedUser = Depends(get_staff_user),
) -> PageOut[AppealOut]:
    result = await get_appeal_service().list_appeals(
        AppealFilter(
            status=status_filter,
            appellant_id=appellant_id,
            is_escalated=is_escalated,
            moderation_action_id=moderation_action_id,
        ),
        page,
    )
    return PageOut[AppealOut](
        items=[AppealOut.from_domain(item) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
    )


@router.get("/{appeal_id}", response_model=AppealOut)
async def get_appeal(
    appeal_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> AppealOut:
    try:
        appeal = await get_appeal_service().get_appeal(appeal_id)
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    if appeal.appellant_id != user.id and not user.is_moderator:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appeal_not_found")
    return AppealOut.from_domain(appeal)


@router.post("/{appeal_id}/review", response_model=AppealOut)
async def review_appeal(
    appeal_id: str,
    payload: ReviewAppealIn,
    staff: AuthenticatedUser = Depends(get_staff_user),
) -> AppealOut:
    try:
        appeal = await get_appeal_service().review_appeal(
            reviewer=actor_for(staff),
            appeal_id=appeal_id,
            decision=payload.decision,
            explanation=payload.explanation,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return AppealOut.from_domain(appeal)


@router.post("/{appeal_id}/escalate", response_model=AppealOut)
async def escalate_appeal(
    appeal_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> AppealOut:
    try:
        appeal = await get_appeal_service().escalate(appellant_id=user.id, appeal_id=appeal_id)
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return AppealOut.from_domain(appeal)
