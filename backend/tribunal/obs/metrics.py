"""Central registry for Prometheus metrics used by the moderation service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"tribunal_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"tribunal_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

MOD_REPORTS_TOTAL = Counter(
	"mod_reports_total",
	"Moderation reports by lifecycle stage",
	["stage", "category"],
)

MOD_ACTIONS_TOTAL = Counter(
	"mod_actions_total",
	"Moderation actions recorded in the ledger",
	["action_type", "actor_role"],
)

MOD_ACTION_REVERSALS_TOTAL = Counter(
	"mod_action_reversals_total",
	"Moderation actions reversed",
	["action_type"],
)

MOD_ACTION_REINSTATEMENTS_TOTAL = Counter(
	"mod_action_reinstatements_total",
	"Reversed moderation actions put back in force by an administrator",
	["action_type"],
)

MOD_SUSPENSIONS_TOTAL = Counter(
	"mod_suspensions_total",
	"Suspension lifecycle transitions",
	["scope", "transition"],
)

MOD_SUSPENSIONS_ACTIVE = Gauge(
	"mod_suspensions_active",
	"Suspensions created minus suspensions ended in this process",
	["scope"],
)

MOD_APPEALS_TOTAL = Counter(
	"mod_appeals_total",
	"Moderation appeals processed",
	["stage", "outcome"],
)

MOD_VOTES_TOTAL = Counter(
	"mod_votes_total",
	"Votes applied to the reputation aggregator",
	["target", "vote_type", "result"],
)

MOD_AUDIT_LATENCY_SECONDS = Histogram(
	"mod_audit_write_latency_seconds",
	"Latency of audit sink deliveries",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

MOD_AUDIT_FAILURES_TOTAL = Counter(
	"mod_audit_failures_total",
	"Audit sink deliveries that failed",
	["event"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def suspension_started(scope: str) -> None:
	MOD_SUSPENSIONS_TOTAL.labels(scope=scope, transition="created").inc()
	MOD_SUSPENSIONS_ACTIVE.labels(scope=scope).inc()


def suspension_ended(scope: str, transition: str) -> None:
	MOD_SUSPENSIONS_TOTAL.labels(scope=scope, transition=transition).inc()
	MOD_SUSPENSIONS_ACTIVE.labels(scope=scope).dec()
