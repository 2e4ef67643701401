"""Persist natural expiry of suspensions whose end date has passed."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from tribunal.moderation.domain.suspensions import SuspensionService

logger = logging.getLogger(__name__)


async def run(service: SuspensionService, *, now: datetime | None = None) -> int:
    """Mark every overdue suspension inactive and return how many changed."""

    return await service.sweep_expired(now=now or datetime.now(timezone.utc))


async def run_forever(get_service: Callable[[], SuspensionService], *, interval_s: float = 300.0) -> None:
    interval = max(1.0, float(interval_s))
    while True:
        await asyncio.sleep(interval)
        try:
            expired = await run(get_service())
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 - next iteration retries
            logger.exception("suspension expiry sweep failed")
            continue
        if expired:
            logger.info("suspension expiry sweep finished", extra={"expired": expired})
