"""Boundary to the content store that owns topics and replies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from tribunal.moderation.domain.refs import ContentKind, ContentRef


@dataclass(frozen=True, slots=True)
class ContentRecord:
    ref: ContentRef
    owner_id: str
    body: str


class ContentDirectory(Protocol):
    async def resolve(self, ref: ContentRef) -> ContentRecord | None:
        ...


class InMemoryContentDirectory(ContentDirectory):
    """Content lookup for development and tests."""

    def __init__(self) -> None:
        self._items: dict[ContentRef, ContentRecord] = {}

    def add(self, kind: ContentKind | str, content_id: str, *, owner_id: str, body: str) -> ContentRecord:
        ref = ContentRef(ContentKind(kind), content_id)
        record = ContentRecord(ref=ref, owner_id=owner_id, body=body)
        self._items[ref] = record
        return record

    def edit(self, ref: ContentRef, body: str) -> None:
        current = self._items[ref]
        self._items[ref] = ContentRecord(ref=ref, owner_id=current.owner_id, body=body)

    def remove(self, ref: ContentRef) -> None:
        self._items.pop(ref, None)

    async def resolve(self, ref: ContentRef) -> ContentRecord | None:
        return self._items.get(ref)
