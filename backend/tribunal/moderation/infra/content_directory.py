"""Content lookups against the forum's topic and reply tables."""

from __future__ import annotations

import asyncpg

from tribunal.infra.postgres import connection
from tribunal.moderation.domain.content import ContentDirectory, ContentRecord
from tribunal.moderation.domain.refs import ContentKind, ContentRef


class PostgresContentDirectory(ContentDirectory):
    """Resolves content owners and bodies; table and column names come from deployment config."""

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        topics_table: str = "topics",
        replies_table: str = "replies",
        owner_column: str = "author_id",
        body_column: str = "body",
    ) -> None:
        self._pool = pool
        self._tables = {ContentKind.TOPIC: topics_table, ContentKind.REPLY: replies_table}
        self._owner_column = owner_column
        self._body_column = body_column

    async def resolve(self, ref: ContentRef) -> ContentRecord | None:
        table = self._tables[ref.kind]
        async with connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {self._owner_column} AS owner_id, {self._body_column} AS body FROM {table} WHERE id::text = $1",
                ref.id,
            )
        if row is None:
            return None
        return ContentRecord(ref=ref, owner_id=str(row["owner_id"]), body=str(row["body"] or ""))
