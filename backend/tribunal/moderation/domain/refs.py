"""Tagged references used where exactly one of several targets applies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from tribunal.moderation.domain.errors import ValidationError


class ContentKind(str, Enum):
    TOPIC = "topic"
    REPLY = "reply"


class ActorRole(str, Enum):
    MODERATOR = "moderator"
    ADMINISTRATOR = "administrator"


@dataclass(frozen=True, slots=True)
class ContentRef:
    """A topic/post or a reply/comment, never both."""

    kind: ContentKind
    id: str

    @property
    def topic_id(self) -> str | None:
        return self.id if self.kind is ContentKind.TOPIC else None

    @property
    def reply_id(self) -> str | None:
        return self.id if self.kind is ContentKind.REPLY else None

    @classmethod
    def from_fields(cls, *, topic_id: str | None, reply_id: str | None) -> "ContentRef":
        """Build a reference from the two nullable wire fields."""

        if topic_id and reply_id:
            raise ValidationError("ambiguous_content_reference")
        if topic_id:
            return cls(ContentKind.TOPIC, topic_id)
        if reply_id:
            return cls(ContentKind.REPLY, reply_id)
        raise ValidationError("content_reference_required")

    @classmethod
    def optional_from_fields(cls, *, topic_id: str | None, reply_id: str | None) -> "ContentRef | None":
        if not topic_id and not reply_id:
            return None
        return cls.from_fields(topic_id=topic_id, reply_id=reply_id)


@dataclass(frozen=True, slots=True)
class Actor:
    """The staff member behind an enforcement decision."""

    role: ActorRole
    id: str

    @property
    def moderator_id(self) -> str | None:
        return self.id if self.role is ActorRole.MODERATOR else None

    @property
    def administrator_id(self) -> str | None:
        return self.id if self.role is ActorRole.ADMINISTRATOR else None

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMINISTRATOR

    @classmethod
    def moderator(cls, actor_id: str) -> "Actor":
        return cls(ActorRole.MODERATOR, actor_id)

    @classmethod
    def administrator(cls, actor_id: str) -> "Actor":
        return cls(ActorRole.ADMINISTRATOR, actor_id)
