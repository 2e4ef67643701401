"""FastAPI application entry point for the moderation service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from tribunal.api import ops
from tribunal.api.errors import install_error_handlers
from tribunal.infra import postgres
from tribunal.infra.redis import redis_client
from tribunal.moderation import configure_memory, configure_postgres
from tribunal.moderation import router as moderation_router
from tribunal.moderation.domain.container import get_suspension_service
from tribunal.moderation.domain.policy import load_policy
from tribunal.moderation.jobs import suspension_expiry
from tribunal.obs import init as obs_init
from tribunal.settings import settings

logger = logging.getLogger(__name__)

_DEFAULT_POLICY_PATH = Path(__file__).resolve().parent.parent / "config" / "moderation_policy.yml"


def _policy_path() -> str | None:
	if settings.moderation_policy_path:
		return settings.moderation_policy_path
	return str(_DEFAULT_POLICY_PATH) if _DEFAULT_POLICY_PATH.exists() else None


@asynccontextmanager
async def lifespan(app: FastAPI):
	policy_path = _policy_path()
	use_postgres = settings.moderation_backend == "postgres"
	if use_postgres:
		pool = await postgres.init_pool()
		configure_postgres(pool, redis_client, policy_path=policy_path)
	else:
		configure_memory(policy=load_policy(policy_path) if policy_path else None)
	logger.info("moderation backend configured", extra={"backend": settings.moderation_backend})

	worker_tasks: list[asyncio.Task] = []
	if settings.moderation_sweep_enabled:
		worker_tasks.append(
			asyncio.create_task(
				suspension_expiry.run_forever(
					get_suspension_service,
					interval_s=settings.moderation_sweep_interval_seconds,
				),
				name="suspension-expiry-sweep",
			)
		)
	try:
		yield
	finally:
		for task in worker_tasks:
			task.cancel()
		if worker_tasks:
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		if use_postgres:
			await postgres.close_pool()


app = FastAPI(title="Tribunal Moderation Service", lifespan=lifespan)
install_error_handlers(app)
obs_init(app)

app.include_router(ops.router)
app.include_router(moderation_router, tags=["moderation"])
