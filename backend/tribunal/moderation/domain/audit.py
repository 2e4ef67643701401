"""Audit/notification sink receiving a copy of every moderation decision."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

from tribunal.infra.redis import RedisProxy
from tribunal.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AuditEvent:
    event: str
    actor_id: str | None
    target_type: str
    target_id: str
    meta: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_fields(self) -> dict[str, str]:
        return {
            "event": self.event,
            "actor_id": self.actor_id or "",
            "target_type": self.target_type,
            "target_id": self.target_id,
            "meta": json.dumps(dict(self.meta), default=str, separators=(",", ":")),
            "created_at": self.created_at.isoformat(),
        }


class AuditSink(Protocol):
    async def publish(self, event: AuditEvent) -> None:
        ...


class RedisStreamAuditSink(AuditSink):
    """Appends audit events to a Redis stream for external consumers."""

    def __init__(self, redis: RedisProxy, *, stream: str = "mod:audit", maxlen: int = 100_000) -> None:
        self._redis = redis
        self._stream = stream
        self._maxlen = maxlen

    async def publish(self, event: AuditEvent) -> None:
        await self._redis.xadd(self._stream, event.as_fields(), maxlen=self._maxlen, approximate=True)


class InMemoryAuditSink(AuditSink):
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def publish(self, event: AuditEvent) -> None:
        self.events.append(event)


async def deliver(sink: AuditSink | None, event: AuditEvent) -> None:
    """Publish ``event``; failures are logged and never propagate."""

    if sink is None:
        return
    start = time.perf_counter()
    try:
        await sink.publish(event)
    except Exception:  # noqa: BLE001 - audit delivery must not block transitions
        obs_metrics.MOD_AUDIT_FAILURES_TOTAL.labels(event=event.event).inc()
        logger.exception(
            "audit delivery failed",
            extra={"event": event.event, "target_type": event.target_type, "target_id": event.target_id},
        )
        return
    obs_metrics.MOD_AUDIT_LATENCY_SECONDS.observe(time.perf_counter() - start)
