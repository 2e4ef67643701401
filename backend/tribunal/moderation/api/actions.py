"""Moderation action ledger endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from tribunal.infra.auth import AuthenticatedUser, get_current_user, get_staff_user
from tribunal.moderation.api._deps import PageOut, actor_for, page_params
from tribunal.moderation.api._errors import to_http_error
from tribunal.moderation.domain.actions import ActionFilter, ActionType, LedgerEntry
from tribunal.moderation.domain.container import get_action_ledger
from tribunal.moderation.domain.errors import ModerationError
from tribunal.moderation.domain.pagination import PageRequest
from tribunal.moderation.domain.refs import ContentRef
from tribunal.moderation.domain.reports import ViolationCategory

router = APIRouter(prefix="/api/mod/v1/actions", tags=["moderation-actions"])


class ActionOut(BaseModel):
    id: str
    moderator_id: str | None
    administrator_id: str | None
    target_member_id: str
    action_type: ActionType
    reason: str
    category: ViolationCategory | None
    content_snapshot: str | None
    related_report_id: str | None
    topic_id: str | None
    reply_id: str | None
    reputation_penalty: int
    is_reversed: bool
    reversed_at: datetime | None
    reinstated_at: datetime | None
    created_at: datetime

    @classmethod
    def from_domain(cls, entry: LedgerEntry) -> "ActionOut":
        action = entry.action
        ref = action.content_ref
        return cls(
            id=action.action_id,
            moderator_id=action.moderator_id,
            administrator_id=action.administrator_id,
            target_member_id=action.target_member_id,
            action_type=action.action_type,
            reason=action.reason,
            category=action.category,
            content_snapshot=action.content_snapshot,
            related_report_id=action.related_report_id,
            topic_id=ref.topic_id if ref else None,
            reply_id=ref.reply_id if ref else None,
            reputation_penalty=action.reputation_penalty,
            is_reversed=entry.is_reversed,
            reversed_at=entry.reversed_at,
            reinstated_at=entry.reinstated_at,
            created_at=action.created_at,
        )


class CreateActionIn(BaseModel):
    target_member_id: str
    action_type: ActionType
    reason: str = Field(max_length=5000)
    category: ViolationCategory | None = None
    content_snapshot: str | None = None
    related_report_id: str | None = None
    topic_id: str | None = None
    reply_id: str | None = None
    reputation_penalty: int = Field(default=0, ge=0, le=10_000)


@router.post("", response_model=ActionOut, status_code=status.HTTP_201_CREATED)
async def create_action(
    payload: CreateActionIn,
    staff: AuthenticatedUser = Depends(get_staff_user),
) -> ActionOut:
    try:
        entry = await get_action_ledger().create_action(
            actor=actor_for(staff),
            target_member_id=payload.target_member_id,
            action_type=payload.action_type,
            reason=payload.reason,
            category=payload.category,
            content_snapshot=payload.content_snapshot,
            related_report_id=payload.related_report_id,
            content_ref=ContentRef.optional_from_fields(topic_id=payload.topic_id, reply_id=payload.reply_id),
            reputation_penalty=payload.reputation_penalty,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return ActionOut.from_domain(entry)


@router.get("", response_model=PageOut[ActionOut])
async def list_actions(
    *,
    target_member_id: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    action_type: ActionType | None = Query(default=None),
    include_reversed: bool = Query(default=True),
    page: PageRequest = Depends(page_params),
    _: AuthenticatedUser = Depends(get_staff_user),
) -> PageOut[ActionOut]:
    result = await get_action_ledger().list_actions(
        ActionFilter(
            target_member_id=target_member_id,
            actor_id=actor_id,
            action_type=action_type,
            include_reversed=include_reversed,
        ),
        page,
    )
    return PageOut[ActionOut](
        items=[ActionOut.from_domain(item) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
    )


@router.get("/{action_id}", response_model=ActionOut)
async def get_action(
    action_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> ActionOut:
    try:
        entry = await get_action_ledger().get_action(action_id)
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    # members may read actions taken against them, e.g. before appealing
    if entry.action.target_member_id != user.id and not user.is_moderator:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="action_not_found")
    return ActionOut.from_domain(entry)
