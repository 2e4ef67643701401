import sys
from dataclasses import dataclass
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from tribunal.infra import postgres
from tribunal.infra.redis import redis_client, set_redis_client
from tribunal.main import app
from tribunal.moderation.domain import container
from tribunal.moderation.domain.actions import ActionLedger, InMemoryActionRepository
from tribunal.moderation.domain.appeals import AppealService, InMemoryAppealRepository
from tribunal.moderation.domain.audit import InMemoryAuditSink, RedisStreamAuditSink
from tribunal.moderation.domain.content import InMemoryContentDirectory
from tribunal.moderation.domain.policy import ModerationPolicy
from tribunal.moderation.domain.reports import InMemoryReportRepository, ReportService
from tribunal.moderation.domain.reputation import InMemoryReputationRepository, ReputationService
from tribunal.moderation.domain.suspensions import InMemorySuspensionRepository, SuspensionService
from tribunal.settings import settings


@dataclass
class Services:
	content: InMemoryContentDirectory
	audit: InMemoryAuditSink
	reports: ReportService
	ledger: ActionLedger
	suspensions: SuspensionService
	appeals: AppealService
	reputation: ReputationService
	action_repository: InMemoryActionRepository
	suspension_repository: InMemorySuspensionRepository
	appeal_repository: InMemoryAppealRepository
	reputation_repository: InMemoryReputationRepository


def build_services(policy: ModerationPolicy | None = None) -> Services:
	policy = policy or ModerationPolicy.default()
	content = InMemoryContentDirectory()
	audit = InMemoryAuditSink()
	report_repo = InMemoryReportRepository()
	action_repo = InMemoryActionRepository()
	suspension_repo = InMemorySuspensionRepository()
	appeal_repo = InMemoryAppealRepository()
	reputation_repo = InMemoryReputationRepository()
	reputation = ReputationService(reputation_repo, content, policy=policy)
	ledger = ActionLedger(action_repo, report_repo, content, policy=policy, audit=audit, reputation=reputation)
	suspensions = SuspensionService(suspension_repo, action_repo, policy=policy, audit=audit)
	return Services(
		content=content,
		audit=audit,
		reports=ReportService(report_repo, content, policy=policy, audit=audit),
		ledger=ledger,
		suspensions=suspensions,
		appeals=AppealService(appeal_repo, ledger, suspensions, policy=policy, audit=audit),
		reputation=reputation,
		action_repository=action_repo,
		suspension_repository=suspension_repo,
		appeal_repository=appeal_repo,
		reputation_repository=reputation_repo,
	)


@pytest.fixture
def services() -> Services:
	return build_services()


@pytest.fixture
def make_services():
	return build_services


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-Id/X-User-Roles, which only dev mode accepts."""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture(autouse=True)
def content_directory() -> InMemoryContentDirectory:
	"""Fresh in-memory wiring for the app container; audit goes to the fake Redis stream."""
	content = InMemoryContentDirectory()
	container.configure_memory(
		policy=ModerationPolicy.default(),
		content=content,
		audit=RedisStreamAuditSink(redis_client, stream="mod:audit"),
	)
	return content


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
