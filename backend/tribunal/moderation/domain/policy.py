"""Deployment-tunable moderation rules loaded from YAML.

Duration ceilings are keyed by ``(actor role, suspension scope)`` because the
observed limits differ between deployments (a community BBS caps moderators
at 30 days while administrators may go to a year or permanent).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Mapping

import yaml

from tribunal.moderation.domain.refs import ActorRole

if TYPE_CHECKING:  # pragma: no cover - type-only import
    from tribunal.moderation.domain.suspensions import SuspensionScope


@dataclass(frozen=True, slots=True)
class DurationRule:
    max_days: int
    allow_permanent: bool = False


@dataclass(frozen=True, slots=True)
class VoteWeights:
    topic_up: int = 5
    topic_down: int = 2
    reply_up: int = 2
    reply_down: int = 1


def _default_duration_rules() -> dict[tuple[str, str], DurationRule]:
    return {
        (ActorRole.MODERATOR.value, "community"): DurationRule(max_days=30),
        (ActorRole.MODERATOR.value, "platform"): DurationRule(max_days=30),
        (ActorRole.ADMINISTRATOR.value, "community"): DurationRule(max_days=365, allow_permanent=True),
        (ActorRole.ADMINISTRATOR.value, "platform"): DurationRule(max_days=365, allow_permanent=True),
    }


@dataclass(slots=True)
class ModerationPolicy:
    duration_rules: dict[tuple[str, str], DurationRule] = field(default_factory=_default_duration_rules)
    min_action_reason_length: int = 20
    report_explanation_min_length: int = 10
    report_explanation_max_length: int = 1000
    appeal_window_days: int = 30
    max_pending_appeals_per_member: int = 5
    appeal_text_min_length: int = 20
    appeal_text_max_length: int = 5000
    vote_weights: VoteWeights = field(default_factory=VoteWeights)
    downvote_min_score: int = 50

    @classmethod
    def default(cls) -> "ModerationPolicy":
        return cls()

    def duration_rule(self, role: ActorRole, scope: "SuspensionScope | str") -> DurationRule | None:
        scope_value = getattr(scope, "value", scope)
        return self.duration_rules.get((role.value, str(scope_value)))


def _int(spec: object, key: str, default: int) -> int:
    if isinstance(spec, dict) and key in spec:
        try:
            return int(spec[key])
        except (TypeError, ValueError):
            raise ValueError(f"moderation policy: {key} must be an integer") from None
    return default


def _parse_durations(spec: object) -> dict[tuple[str, str], DurationRule]:
    rules = _default_duration_rules()
    if not isinstance(spec, dict):
        return rules
    for role_name, scopes in spec.items():
        try:
            role = ActorRole(str(role_name))
        except ValueError:
            raise ValueError(f"moderation policy: unknown role {role_name!r}") from None
        if not isinstance(scopes, dict):
            continue
        for scope_name, raw in scopes.items():
            if not isinstance(raw, dict):
                continue
            max_days = _int(raw, "max_days", 0)
            if max_days < 1:
                raise ValueError(f"moderation policy: max_days for {role_name}/{scope_name} must be >= 1")
            rules[(role.value, str(scope_name))] = DurationRule(
                max_days=max_days,
                allow_permanent=bool(raw.get("permanent", False)),
            )
    return rules


def load_policy(path: str | Path) -> ModerationPolicy:
    data: Mapping[str, object]
    with open(path, "r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError("moderation policy must be a mapping")
        data = loaded

    defaults = ModerationPolicy.default()
    actions_spec = data.get("actions", {})
    reports_spec = data.get("reports", {})
    suspensions_spec = data.get("suspensions", {})
    appeals_spec = data.get("appeals", {})
    reputation_spec = data.get("reputation", {})
    weights_spec = reputation_spec.get("weights", {}) if isinstance(reputation_spec, dict) else {}

    weights = VoteWeights(
        topic_up=_int(weights_spec, "topic_up", defaults.vote_weights.topic_up),
        topic_down=_int(weights_spec, "topic_down", defaults.vote_weights.topic_down),
        reply_up=_int(weights_spec, "reply_up", defaults.vote_weights.reply_up),
        reply_down=_int(weights_spec, "reply_down", defaults.vote_weights.reply_down),
    )
    durations = suspensions_spec.get("durations") if isinstance(suspensions_spec, dict) else None

    return ModerationPolicy(
        duration_rules=_parse_durations(durations),
        min_action_reason_length=_int(actions_spec, "min_reason_length", defaults.min_action_reason_length),
        report_explanation_min_length=_int(
            reports_spec, "explanation_min_length", defaults.report_explanation_min_length
        ),
        report_explanation_max_length=_int(
            reports_spec, "explanation_max_length", defaults.report_explanation_max_length
        ),
        appeal_window_days=_int(appeals_spec, "window_days", defaults.appeal_window_days),
        max_pending_appeals_per_member=_int(
            appeals_spec, "max_pending_per_member", defaults.max_pending_appeals_per_member
        ),
        appeal_text_min_length=_int(appeals_spec, "text_min_length", defaults.appeal_text_min_length),
        appeal_text_max_length=_int(appeals_spec, "text_max_length", defaults.appeal_text_max_length),
        vote_weights=weights,
        downvote_min_score=_int(reputation_spec, "downvote_min_score", defaults.downvote_min_score),
    )
