"""AsyncPG pool management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Optional

import asyncpg

from tribunal.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
		)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


_current_conn: ContextVar[Optional[asyncpg.Connection]] = ContextVar("tribunal_pg_conn", default=None)


@asynccontextmanager
async def transaction(pool: asyncpg.pool.Pool) -> AsyncIterator[asyncpg.Connection]:
	"""Open a transaction that repositories called inside it will join."""

	existing = _current_conn.get()
	if existing is not None:
		async with existing.transaction():
			yield existing
		return
	async with pool.acquire() as conn:
		async with conn.transaction():
			token = _current_conn.set(conn)
			try:
				yield conn
			finally:
				_current_conn.reset(token)


@asynccontextmanager
async def connection(pool: asyncpg.pool.Pool) -> AsyncIterator[asyncpg.Connection]:
	"""Yield the connection of the enclosing transaction, or a pooled one."""

	existing = _current_conn.get()
	if existing is not None:
		yield existing
		return
	async with pool.acquire() as conn:
		yield conn
