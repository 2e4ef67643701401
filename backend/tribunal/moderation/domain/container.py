"""Lightweight service container shared by moderation modules."""

from __future__ import annotations

from typing import AsyncContextManager, Callable, Optional

import asyncpg
from redis.asyncio import Redis

from tribunal.infra import postgres as pg
from tribunal.infra.redis import RedisProxy, redis_client
from tribunal.moderation.domain.actions import ActionLedger, ActionRepository, InMemoryActionRepository
from tribunal.moderation.domain.appeals import AppealRepository, AppealService, InMemoryAppealRepository
from tribunal.moderation.domain.audit import AuditSink, RedisStreamAuditSink
from tribunal.moderation.domain.content import ContentDirectory, InMemoryContentDirectory
from tribunal.moderation.domain.policy import ModerationPolicy, load_policy
from tribunal.moderation.domain.reports import InMemoryReportRepository, ReportRepository, ReportService
from tribunal.moderation.domain.reputation import (
	InMemoryReputationRepository,
	ReputationRepository,
	ReputationService,
)
from tribunal.moderation.domain.suspensions import (
	InMemorySuspensionRepository,
	SuspensionRepository,
	SuspensionService,
)
from tribunal.settings import settings

_policy: ModerationPolicy = ModerationPolicy.default()
_content: ContentDirectory = InMemoryContentDirectory()
_audit: AuditSink | None = RedisStreamAuditSink(redis_client, stream=settings.moderation_audit_stream)
_transaction: Optional[Callable[[], AsyncContextManager[object]]] = None
_report_repository: ReportRepository = InMemoryReportRepository()
_action_repository: ActionRepository = InMemoryActionRepository()
_suspension_repository: SuspensionRepository = InMemorySuspensionRepository()
_appeal_repository: AppealRepository = InMemoryAppealRepository()
_reputation_repository: ReputationRepository = InMemoryReputationRepository()

_report_service: ReportService
_reputation_service: ReputationService
_ledger: ActionLedger
_suspension_service: SuspensionService
_appeal_service: AppealService


def _rebuild() -> None:
	global _report_service, _reputation_service, _ledger, _suspension_service, _appeal_service
	_report_service = ReportService(_report_repository, _content, policy=_policy, audit=_audit)
	_reputation_service = ReputationService(
		_reputation_repository,
		_content,
		policy=_policy,
		transaction=_transaction,
	)
	_ledger = ActionLedger(
		_action_repository,
		_report_repository,
		_content,
		policy=_policy,
		audit=_audit,
		reputation=_reputation_service,
	)
	_suspension_service = SuspensionService(_suspension_repository, _action_repository, policy=_policy, audit=_audit)
	_appeal_service = AppealService(
		_appeal_repository,
		_ledger,
		_suspension_service,
		policy=_policy,
		audit=_audit,
		transaction=_transaction,
	)


_rebuild()


def configure(
	*,
	policy: Optional[ModerationPolicy] = None,
	content: Optional[ContentDirectory] = None,
	audit: Optional[AuditSink] = None,
	report_repository: Optional[ReportRepository] = None,
	action_repository: Optional[ActionRepository] = None,
	suspension_repository: Optional[SuspensionRepository] = None,
	appeal_repository: Optional[AppealRepository] = None,
	reputation_repository: Optional[ReputationRepository] = None,
	transaction: Optional[Callable[[], AsyncContextManager[object]]] = None,
) -> None:
	global _policy, _content, _audit, _transaction
	global _report_repository, _action_repository, _suspension_repository, _appeal_repository, _reputation_repository
	if policy is not None:
		_policy = policy
	if content is not None:
		_content = content
	if audit is not None:
		_audit = audit
	if report_repository is not None:
		_report_repository = report_repository
	if action_repository is not None:
		_action_repository = action_repository
	if suspension_repository is not None:
		_suspension_repository = suspension_repository
	if appeal_repository is not None:
		_appeal_repository = appeal_repository
	if reputation_repository is not None:
		_reputation_repository = reputation_repository
	_transaction = transaction
	_rebuild()


def configure_memory(
	*,
	policy: Optional[ModerationPolicy] = None,
	content: Optional[ContentDirectory] = None,
	audit: Optional[AuditSink] = None,
) -> None:
	"""Reset every repository to a fresh in-process instance."""

	configure(
		policy=policy,
		content=content or InMemoryContentDirectory(),
		audit=audit,
		report_repository=InMemoryReportRepository(),
		action_repository=InMemoryActionRepository(),
		suspension_repository=InMemorySuspensionRepository(),
		appeal_repository=InMemoryAppealRepository(),
		reputation_repository=InMemoryReputationRepository(),
	)


def configure_postgres(
	pool: asyncpg.Pool,
	redis_conn: Redis | RedisProxy,
	*,
	policy_path: Optional[str] = None,
	content: Optional[ContentDirectory] = None,
) -> None:
	from tribunal.moderation.infra.content_directory import PostgresContentDirectory
	from tribunal.moderation.infra.postgres_repo import (
		PostgresActionRepository,
		PostgresAppealRepository,
		PostgresReportRepository,
	)
	from tribunal.moderation.infra.reputation_repo import PostgresReputationRepository
	from tribunal.moderation.infra.suspension_repo import PostgresSuspensionRepository

	proxy = redis_conn if isinstance(redis_conn, RedisProxy) else RedisProxy(redis_conn)
	configure(
		policy=load_policy(policy_path) if policy_path else None,
		content=content or PostgresContentDirectory(pool),
		audit=RedisStreamAuditSink(proxy, stream=settings.moderation_audit_stream),
		report_repository=PostgresReportRepository(pool),
		action_repository=PostgresActionRepository(pool),
		suspension_repository=PostgresSuspensionRepository(pool),
		appeal_repository=PostgresAppealRepository(pool),
		reputation_repository=PostgresReputationRepository(pool),
		transaction=lambda: pg.transaction(pool),
	)


def get_report_service() -> ReportService:
	return _report_service


def get_action_ledger() -> ActionLedger:
	return _ledger


def get_suspension_service() -> SuspensionService:
	return _suspension_service


def get_appeal_service() -> AppealService:
	return _appeal_service


def get_reputation_service() -> ReputationService:
	return _reputation_service
