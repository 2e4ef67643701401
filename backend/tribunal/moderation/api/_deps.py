"""Shared request helpers for moderation routers."""

from __future__ import annotations

from typing import Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel

from tribunal.infra.auth import AuthenticatedUser
from tribunal.moderation.domain.pagination import DEFAULT_LIMIT, MAX_LIMIT, PageRequest
from tribunal.moderation.domain.refs import Actor

T = TypeVar("T")


class PageOut(BaseModel, Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int


def page_params(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
) -> PageRequest:
    return PageRequest(page=page, limit=limit)


def actor_for(user: AuthenticatedUser) -> Actor:
    """Staff users act as administrators when they hold the admin role."""
    if user.is_admin:
        return Actor.administrator(user.id)
    return Actor.moderator(user.id)
