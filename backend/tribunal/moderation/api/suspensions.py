"""Suspension and ban endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from tribunal.infra.auth import AuthenticatedUser, get_admin_user, get_current_user, get_staff_user
from tribunal.moderation.api._deps import actor_for
from tribunal.moderation.api._errors import to_http_error
from tribunal.moderation.domain.container import get_suspension_service
from tribunal.moderation.domain.errors import ModerationError
from tribunal.moderation.domain.reports import ViolationCategory
from tribunal.moderation.domain.suspensions import Suspension, SuspensionScope

router = APIRouter(prefix="/api/mod/v1/suspensions", tags=["moderation-suspensions"])


class SuspensionOut(BaseModel):
    id: str
    member_id: str
    issuer_id: str
    issuer_role: str
    scope: SuspensionScope
    reason_category: ViolationCategory
    reason: str
    duration_days: int | None
    start_date: datetime
    end_date: datetime | None
    is_active: bool
    is_permanent: bool
    lifted_early: bool
    lifted_at: datetime | None
    lifted_reason: str | None
    notes: str | None
    moderation_action_id: str | None
    is_appealable: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, suspension: Suspension, *, include_notes: bool = True) -> "SuspensionOut":
        return cls(
            id=suspension.suspension_id,
            member_id=suspension.member_id,
            issuer_id=suspension.issuer.id,
            issuer_role=suspension.issuer.role.value,
            scope=suspension.scope,
            reason_category=suspension.reason_category,
            reason=suspension.reason,
            duration_days=suspension.duration_days,
            start_date=suspension.start_date,
            end_date=suspension.end_date,
            is_active=suspension.is_active,
            is_permanent=suspension.is_permanent,
            lifted_early=suspension.lifted_early,
            lifted_at=suspension.lifted_at,
            lifted_reason=suspension.lifted_reason,
            notes=suspension.notes if include_notes else None,
            moderation_action_id=suspension.moderation_action_id,
            is_appealable=suspension.is_appealable,
            created_at=suspension.created_at,
            updated_at=suspension.updated_at,
        )


class CreateSuspensionIn(BaseModel):
    member_id: str
    scope: SuspensionScope
    reason_category: ViolationCategory
    reason: str = Field(min_length=1, max_length=2000)
    duration_days: int | None = None
    permanent: bool = False
    moderation_action_id: str | None = None
    notes: str | None = Field(default=None, max_length=4000)
    is_appealable: bool = True


class LiftSuspensionIn(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class UpdateSuspensionIn(BaseModel):
    reason: str | None = Field(default=None, min_length=1, max_length=2000)
    notes: str | None = Field(default=None, max_length=4000)


@router.post("", response_model=SuspensionOut, status_code=status.HTTP_201_CREATED)
async def create_suspension(
    payload: CreateSuspensionIn,
    staff: AuthenticatedUser = Depends(get_staff_user),
) -> SuspensionOut:
    try:
        suspension = await get_suspension_service().create_suspension(
            member_id=payload.member_id,
            issuer=actor_for(staff),
            scope=payload.scope,
            reason_category=payload.reason_category,
            reason=payload.reason,
            duration_days=payload.duration_days,
            permanent=payload.permanent,
            moderation_action_id=payload.moderation_action_id,
            notes=payload.notes,
            is_appealable=payload.is_appealable,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return SuspensionOut.from_domain(suspension)


@router.get("", response_model=list[SuspensionOut])
async def list_suspensions(
    *,
    member_id: str = Query(..., description="Sanctioned member id"),
    active_only: bool = Query(default=False),
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[SuspensionOut]:
    if member_id != user.id and not user.is_moderator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="staff_role_required")
    items = await get_suspension_service().list_for_member(member_id, active_only=active_only)
    return [SuspensionOut.from_domain(item, include_notes=user.is_moderator) for item in items]


@router.get("/{suspension_id}", response_model=SuspensionOut)
async def get_suspension(
    suspension_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> SuspensionOut:
    try:
        suspension = await get_suspension_service().get_suspension(suspension_id)
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    if suspension.member_id != user.id and not user.is_moderator:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="suspension_not_found")
    return SuspensionOut.from_domain(suspension, include_notes=user.is_moderator)


@router.post("/{suspension_id}/lift", response_model=SuspensionOut)
async def lift_suspension(
    suspension_id: str,
    payload: LiftSuspensionIn,
    admin: AuthenticatedUser = Depends(get_admin_user),
) -> SuspensionOut:
    try:
        suspension = await get_suspension_service().lift_early(
            suspension_id,
            reason=payload.reason,
            lifted_by=admin.id,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return SuspensionOut.from_domain(suspension)


@router.patch("/{suspension_id}", response_model=SuspensionOut)
async def update_suspension(
    suspension_id: str,
    payload: UpdateSuspensionIn,
    staff: AuthenticatedUser = Depends(get_staff_user),
) -> SuspensionOut:
    try:
        suspension = await get_suspension_service().update_details(
            suspension_id,
            reason=payload.reason,
            notes=payload.notes,
            updated_by=staff.id,
        )
    except ModerationError as exc:
        raise to_http_error(exc) from exc
    return SuspensionOut.from_domain(suspension)
