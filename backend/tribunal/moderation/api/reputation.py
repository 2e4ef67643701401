"""Reputation read surface and vote endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from tribunal.infra.auth import AuthenticatedUser, get_admin_user, get_current_user, get_staff_user
from tribunal.moderation.api._deps import PageOut, page_params
from tribunal.moderation.api._errors import to_http_error
from tribunal.moderation.domain.container import get_reputation_service
from tribunal.moderation.domain.errors import ModerationError
from tribunal.moderation.domain.pagination import PageRequest
from tribunal.moderation.domain.refs import ContentRef
from tribunal.moderation.domain.reputation import KarmaEvent, KarmaType, ReputationRecord, VoteResult, VoteType

router = APIRouter(prefix="/api/mod/v1", tags=["moderation-reputation"])


class ReputationOut(BaseModel):
    member_id: str
    topics_score: int
    replies_score: int
    total_score: int
    upvotes_received: int
    downvotes_received: int
    moderation_adjustment: int
    karma: int
    last_recomputed_at: datetime | None

    @classmethod
    def from_domain(cls, record: ReputationRecord) -> "ReputationOut":
        return cls(
            member_id=record.member_id,
            topics_score=record.topics_score,
            replies_score=record.replies_score,
            total_score=record.total_score,
            upvotes_received=record.upvotes_received,
            downvotes_received=record.downvotes_received,
            moderation_adjustment=record.moderation_adjustment,
            karma=record.karma,
            last_recomputed_at=record.last_recomputed_at,
        )


class KarmaEventOut(BaseModel):
    id: str
    karma_type: KarmaType
    change_amount: int
    reason: str
    source_id: str | None
    created_at: datetime

    @classmethod
    def from_domain(cls, event: KarmaEvent) -> "KarmaEventOut":
        return cls(
            id=event.event_id,
            karma_type=event.karma_type,
            change_amount=event.change_amount,
            reason=event.reason,
            source_id=event.source_id,
            created_at=event.created_at,
        )


class VoteIn(BaseModel):
    topic_id: str | None = None
    reply_id: str | None = None
    vote_type: VoteType


class VoteOut(BaseModel):
    topic_id: str | None
    reply_id: str | None
    vote_type: VoteType | None
    changed: bool
    owner: ReputationOut

    @classmethod
    def from_domain(cls, target: ContentRef, result: VoteResult) -> "VoteOut":
        return cls(
            topic_id=target.topic_id,
            reply_id=target.reply_id,
            vote_type=result.vote.vote_type if result.vote else None,
            changed=result.changed,
            owner=ReputationOut.from_domain(result.reputation),
        )


class PenaltyIn(BaseModel):
    delta: int = Field(ge=-10_000, le=10_000)
    reason: str = Field(min_length=1, max_length=500)
    source_id: str | None = None


@router.get("/reputation/{member_id}", response_model=ReputationOut)
async def get_reputation(
    member_id: str,
    _: AuthenticatedUser = Depends(get_current_user),
) -> ReputationOut:
    record = await get_reputation_service().get_reputation(member_id)
    return ReputationOut.from_domain(record)


@router.get("/reputation/{member_id}/history", response_model=PageOut[KarmaEventOut])
async def karma_history(
    member_id: str,
    *,
    karma_type: KarmaType | None = Query(default=None),
    page: PageRequest = Depends(page_params),
    _: AuthenticatedUser = Depends(get_current_user),
) -> PageOut[KarmaEventOut]:
    result = await get_reputation_service().karma_history(member_id, karma_type=karma_type, page=page)
    return PageOut[KarmaEventOut](
        items=[KarmaEventOut.from_domain(item) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
    )


@router.post("/reputation/{member_id}/recompute", response_model=ReputationOut)
async def recompute_reputation(
    member_id: str,
    _: AuthenticatedUser = Depends(get_admin_user),
) -> ReputationOut:
    record = await get_reputation_service().recompute(member_id)
    return ReputationOut.from_domain(record)


@router.post("/reputation/{member_id}/penalties", response_model=ReputationOut, status_code=status.HTTP_201_CREATED)
async def record_penalty(
    member_id: str,
    payload: PenaltyIn,
    _: AuthenticatedUser = Depends(get_staff_user),
) -> ReputationOut:
    try:
        record = await get_reputation_service().record_moderation_penalty(
            member_id=member_id,
            delta=payload.delta,
            reason=payload.reason,
            source_id=payload.source_id,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return ReputationOut.from_domain(record)


@router.put("/votes", response_model=VoteOut)
async def cast_vote(
    payload: VoteIn,
    user: AuthenticatedUser = Depends(get_current_user),
) -> VoteOut:
    try:
        target = ContentRef.from_fields(topic_id=payload.topic_id, reply_id=payload.reply_id)
        result = await get_reputation_service().record_vote(
            voter_id=user.id,
            target=target,
            vote_type=payload.vote_type,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return VoteOut.from_domain(target, result)


@router.delete("/votes", response_model=VoteOut)
async def retract_vote(
    *,
    topic_id: str | None = Query(default=None),
    reply_id: str | None = Query(default=None),
    user: AuthenticatedUser = Depends(get_current_user),
) -> VoteOut:
    try:
        target = ContentRef.from_fields(topic_id=topic_id, reply_id=reply_id)
        result = await get_reputation_service().retract_vote(voter_id=user.id, target=target)
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return VoteOut.from_domain(target, result)
