import pytest

from tribunal.infra.jwt import encode_access
from tribunal.moderation.domain.container import get_reputation_service

MOD_ROLES = "moderator"
ADMIN_ROLES = "moderator,admin"
REASON = "Posting the same referral link in every thread."
APPEAL_TEXT = "The link is the official club signup form, not a referral."


def _headers(user_id: str, roles: str = "") -> dict[str, str]:
	headers = {"X-User-Id": user_id}
	if roles:
		headers["X-User-Roles"] = roles
	return headers


async def _report_and_hide(api_client, content_directory):
	content_directory.add("topic", "t-100", owner_id="alice", body="join via my link")
	report = await api_client.post(
		"/api/mod/v1/reports",
		json={"topic_id": "t-100", "category": "spam", "explanation": "Referral spam again."},
		headers=_headers("bob"),
	)
	assert report.status_code == 201
	action = await api_client.post(
		"/api/mod/v1/actions",
		json={
			"target_member_id": "alice",
			"action_type": "hide_content",
			"reason": REASON,
			"category": "spam",
			"related_report_id": report.json()["id"],
			"topic_id": "t-100",
		},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert action.status_code == 201
	return report.json(), action.json()


@pytest.mark.asyncio
async def test_report_lifecycle(api_client, content_directory):
	report, action = await _report_and_hide(api_client, content_directory)
	assert report["status"] == "pending"
	assert report["content_owner_id"] == "alice"
	assert action["content_snapshot"] == "join via my link"
	assert action["moderator_id"] == "mod-1"
	assert action["administrator_id"] is None

	forbidden = await api_client.get("/api/mod/v1/reports", headers=_headers("bob"))
	assert forbidden.status_code == 403

	listing = await api_client.get(
		"/api/mod/v1/reports", params={"status": "pending"}, headers=_headers("mod-1", MOD_ROLES)
	)
	assert listing.status_code == 200
	assert listing.json()["total"] == 1

	resolved = await api_client.post(
		f"/api/mod/v1/reports/{report['id']}/resolve",
		json={"outcome": "resolved", "notes": "hidden"},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert resolved.status_code == 200
	assert resolved.json()["assigned_moderator_id"] == "mod-1"

	again = await api_client.post(
		f"/api/mod/v1/reports/{report['id']}/resolve",
		json={"outcome": "dismissed"},
		headers=_headers("mod-2", MOD_ROLES),
	)
	assert again.status_code == 409
	assert again.json()["detail"] == "report_already_terminal"
	assert "request_id" in again.json()

	own = await api_client.get(f"/api/mod/v1/reports/{report['id']}", headers=_headers("bob"))
	assert own.status_code == 200
	other = await api_client.get(f"/api/mod/v1/reports/{report['id']}", headers=_headers("carol"))
	assert other.status_code == 404


@pytest.mark.asyncio
async def test_report_requires_exactly_one_target(api_client, content_directory):
	content_directory.add("topic", "t-1", owner_id="alice", body="x")
	content_directory.add("reply", "r-1", owner_id="alice", body="y")
	response = await api_client.post(
		"/api/mod/v1/reports",
		json={"topic_id": "t-1", "reply_id": "r-1", "category": "spam", "explanation": "Both targets set."},
		headers=_headers("bob"),
	)
	assert response.status_code == 422

	missing = await api_client.post(
		"/api/mod/v1/reports",
		json={"reply_id": "r-404", "category": "spam", "explanation": "Target does not exist."},
		headers=_headers("bob"),
	)
	assert missing.status_code == 404


@pytest.mark.asyncio
async def test_appeal_uphold_escalate_overturn(api_client, content_directory, fake_redis):
	_, action = await _report_and_hide(api_client, content_directory)

	submitted = await api_client.post(
		"/api/mod/v1/appeals",
		json={"moderation_action_id": action["id"], "appeal_type": "content_removal", "appeal_text": APPEAL_TEXT},
		headers=_headers("alice"),
	)
	assert submitted.status_code == 201
	appeal_id = submitted.json()["id"]

	duplicate = await api_client.post(
		"/api/mod/v1/appeals",
		json={"moderation_action_id": action["id"], "appeal_type": "content_removal", "appeal_text": APPEAL_TEXT},
		headers=_headers("alice"),
	)
	assert duplicate.status_code == 409

	upheld = await api_client.post(
		f"/api/mod/v1/appeals/{appeal_id}/review",
		json={"decision": "uphold", "explanation": "Still a referral link."},
		headers=_headers("mod-2", MOD_ROLES),
	)
	assert upheld.status_code == 200
	assert upheld.json()["status"] == "upheld"
	unchanged = await api_client.get(f"/api/mod/v1/actions/{action['id']}", headers=_headers("alice"))
	assert unchanged.json()["is_reversed"] is False

	escalated = await api_client.post(f"/api/mod/v1/appeals/{appeal_id}/escalate", headers=_headers("alice"))
	assert escalated.status_code == 200
	assert escalated.json()["stage"] == "admin_review"

	moderator_try = await api_client.post(
		f"/api/mod/v1/appeals/{appeal_id}/review",
		json={"decision": "overturn", "explanation": "Second look."},
		headers=_headers("mod-2", MOD_ROLES),
	)
	assert moderator_try.status_code == 403

	overturned = await api_client.post(
		f"/api/mod/v1/appeals/{appeal_id}/review",
		json={"decision": "overturn", "explanation": "The form is legitimate."},
		headers=_headers("admin-1", ADMIN_ROLES),
	)
	assert overturned.status_code == 200
	body = overturned.json()
	assert body["status"] == "overturned"
	assert body["is_escalated"] is True
	assert body["reviewer_role"] == "administrator"

	reversed_action = await api_client.get(f"/api/mod/v1/actions/{action['id']}", headers=_headers("mod-1", MOD_ROLES))
	assert reversed_action.json()["is_reversed"] is True
	assert reversed_action.json()["reversed_at"] is not None

	events = await fake_redis.xrange("mod:audit")
	names = [fields["event"] for _, fields in events]
	assert "appeal.upheld" in names
	assert "appeal.escalated" in names
	assert names[-2:] == ["action.reversed", "appeal.overturned"]


@pytest.mark.asyncio
async def test_other_members_cannot_appeal_or_read_actions(api_client, content_directory):
	_, action = await _report_and_hide(api_client, content_directory)

	hidden = await api_client.get(f"/api/mod/v1/actions/{action['id']}", headers=_headers("bob"))
	assert hidden.status_code == 404
	appeal = await api_client.post(
		"/api/mod/v1/appeals",
		json={"moderation_action_id": action["id"], "appeal_type": "content_removal", "appeal_text": APPEAL_TEXT},
		headers=_headers("bob"),
	)
	assert appeal.status_code == 403


@pytest.mark.asyncio
async def test_suspension_issue_and_admin_lift(api_client):
	created = await api_client.post(
		"/api/mod/v1/suspensions",
		json={
			"member_id": "alice",
			"scope": "community",
			"reason_category": "harassment",
			"reason": "Harassing other members in replies.",
			"duration_days": 7,
			"notes": "third strike",
		},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert created.status_code == 201
	suspension_id = created.json()["id"]

	too_long = await api_client.post(
		"/api/mod/v1/suspensions",
		json={
			"member_id": "alice",
			"scope": "community",
			"reason_category": "harassment",
			"reason": "Harassing other members in replies.",
			"duration_days": 90,
		},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert too_long.status_code == 403

	mine = await api_client.get("/api/mod/v1/suspensions", params={"member_id": "alice"}, headers=_headers("alice"))
	assert mine.status_code == 200
	assert mine.json()[0]["notes"] is None

	moderator_lift = await api_client.post(
		f"/api/mod/v1/suspensions/{suspension_id}/lift",
		json={"reason": "appeal approved"},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert moderator_lift.status_code == 403

	lifted = await api_client.post(
		f"/api/mod/v1/suspensions/{suspension_id}/lift",
		json={"reason": "appeal approved"},
		headers=_headers("admin-1", ADMIN_ROLES),
	)
	assert lifted.status_code == 200
	body = lifted.json()
	assert body["is_active"] is False
	assert body["lifted_early"] is True
	assert body["lifted_reason"] == "appeal approved"
	assert body["lifted_at"] is not None

	active = await api_client.get(
		"/api/mod/v1/suspensions",
		params={"member_id": "alice", "active_only": "true"},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert active.json() == []


@pytest.mark.asyncio
async def test_votes_and_reputation(api_client, content_directory):
	content_directory.add("topic", "t-9", owner_id="alice", body="hello")
	bob_topic = content_directory.add("topic", "t-bob", owner_id="bob", body="popular")
	for index in range(15):
		await get_reputation_service().record_vote(voter_id=f"fan-{index}", target=bob_topic.ref, vote_type="up")

	up = await api_client.put("/api/mod/v1/votes", json={"topic_id": "t-9", "vote_type": "up"}, headers=_headers("carol"))
	assert up.status_code == 200
	assert up.json()["owner"]["topics_score"] == 5

	down = await api_client.put("/api/mod/v1/votes", json={"topic_id": "t-9", "vote_type": "down"}, headers=_headers("bob"))
	assert down.status_code == 200
	assert down.json()["owner"]["total_score"] == 3

	denied = await api_client.put(
		"/api/mod/v1/votes", json={"topic_id": "t-9", "vote_type": "down"}, headers=_headers("newcomer")
	)
	assert denied.status_code == 403
	self_vote = await api_client.put(
		"/api/mod/v1/votes", json={"topic_id": "t-9", "vote_type": "up"}, headers=_headers("alice")
	)
	assert self_vote.status_code == 403

	retracted = await api_client.delete("/api/mod/v1/votes", params={"topic_id": "t-9"}, headers=_headers("carol"))
	assert retracted.status_code == 200
	assert retracted.json()["vote_type"] is None

	penalty = await api_client.post(
		"/api/mod/v1/reputation/alice/penalties",
		json={"delta": -10, "reason": "spam warning"},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert penalty.status_code == 201

	record = await api_client.get("/api/mod/v1/reputation/alice", headers=_headers("carol"))
	assert record.json()["total_score"] == -2
	assert record.json()["moderation_adjustment"] == -10
	assert record.json()["karma"] == -12

	history = await api_client.get(
		"/api/mod/v1/reputation/alice/history", params={"karma_type": "moderation"}, headers=_headers("alice")
	)
	assert [item["change_amount"] for item in history.json()["items"]] == [-10]

	recompute_denied = await api_client.post("/api/mod/v1/reputation/alice/recompute", headers=_headers("mod-1", MOD_ROLES))
	assert recompute_denied.status_code == 403
	recomputed = await api_client.post("/api/mod/v1/reputation/alice/recompute", headers=_headers("admin-1", ADMIN_ROLES))
	assert recomputed.json()["total_score"] == -2
	assert recomputed.json()["last_recomputed_at"] is not None


@pytest.mark.asyncio
async def test_unauthenticated_requests_are_rejected(api_client):
	response = await api_client.get("/api/mod/v1/reputation/alice")
	assert response.status_code == 401


@pytest.mark.asyncio
async def test_health_and_metrics(api_client):
	live = await api_client.get("/health")
	assert live.status_code == 200
	metrics = await api_client.get("/metrics")
	assert metrics.status_code == 200
	assert "mod_reports_total" in metrics.text


@pytest.mark.asyncio
async def test_bearer_token_roles_are_honoured(api_client):
	staff_token = encode_access({"sub": "mod-9", "roles": ["moderator"]})
	member_token = encode_access({"sub": "dana", "roles": []})

	staff = await api_client.get("/api/mod/v1/appeals", headers={"Authorization": f"Bearer {staff_token}"})
	assert staff.status_code == 200
	member = await api_client.get("/api/mod/v1/appeals", headers={"Authorization": f"Bearer {member_token}"})
	assert member.status_code == 403
	bad = await api_client.get("/api/mod/v1/appeals", headers={"Authorization": "Bearer not-a-token"})
	assert bad.status_code == 401


@pytest.mark.asyncio
async def test_report_queue_filters(api_client, content_directory):
	content_directory.add("topic", "t-1", owner_id="alice", body="you will regret this")
	content_directory.add("topic", "t-2", owner_id="alice", body="cheap pills")
	for topic_id, category in (("t-1", "threats"), ("t-2", "spam")):
		created = await api_client.post(
			"/api/mod/v1/reports",
			json={"topic_id": topic_id, "category": category, "explanation": "Please take a look at this."},
			headers=_headers("bob"),
		)
		assert created.status_code == 201
		assert created.json()["severity_level"] == ("critical" if category == "threats" else "low")

	critical = await api_client.get(
		"/api/mod/v1/reports", params={"severity_level": "critical"}, headers=_headers("mod-1", MOD_ROLES)
	)
	assert critical.status_code == 200
	assert critical.json()["total"] == 1
	assert critical.json()["items"][0]["category"] == "threats"

	unassigned = await api_client.get(
		"/api/mod/v1/reports", params={"assigned_moderator_id": "mod-1"}, headers=_headers("mod-1", MOD_ROLES)
	)
	assert unassigned.json()["total"] == 0

	window = await api_client.get(
		"/api/mod/v1/reports",
		params={"from_date": "2000-01-01T00:00:00Z", "to_date": "2100-01-01T00:00:00Z"},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert window.json()["total"] == 2

	backwards = await api_client.get(
		"/api/mod/v1/reports",
		params={"from_date": "2100-01-01T00:00:00Z", "to_date": "2000-01-01T00:00:00Z"},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert backwards.status_code == 422
	assert backwards.json()["detail"] == "invalid_date_range"


@pytest.mark.asyncio
async def test_decided_appeal_cannot_be_refiled_and_admin_uphold_reinstates(api_client, content_directory):
	_, action = await _report_and_hide(api_client, content_directory)
	submitted = await api_client.post(
		"/api/mod/v1/appeals",
		json={"moderation_action_id": action["id"], "appeal_type": "content_removal", "appeal_text": APPEAL_TEXT},
		headers=_headers("alice"),
	)
	appeal_id = submitted.json()["id"]
	overturned = await api_client.post(
		f"/api/mod/v1/appeals/{appeal_id}/review",
		json={"decision": "overturn", "explanation": "The form is legitimate."},
		headers=_headers("mod-2", MOD_ROLES),
	)
	assert overturned.status_code == 200

	refiled = await api_client.post(
		"/api/mod/v1/appeals",
		json={"moderation_action_id": action["id"], "appeal_type": "content_removal", "appeal_text": APPEAL_TEXT},
		headers=_headers("alice"),
	)
	assert refiled.status_code == 409
	assert refiled.json()["detail"] == "appeal_already_exists"

	escalated = await api_client.post(f"/api/mod/v1/appeals/{appeal_id}/escalate", headers=_headers("alice"))
	assert escalated.status_code == 200
	upheld = await api_client.post(
		f"/api/mod/v1/appeals/{appeal_id}/review",
		json={"decision": "uphold", "explanation": "It is a referral link after all."},
		headers=_headers("admin-1", ADMIN_ROLES),
	)
	assert upheld.status_code == 200
	assert upheld.json()["status"] == "upheld"

	reinstated = await api_client.get(f"/api/mod/v1/actions/{action['id']}", headers=_headers("mod-1", MOD_ROLES))
	body = reinstated.json()
	assert body["is_reversed"] is False
	assert body["reversed_at"] is None
	assert body["reinstated_at"] is not None


@pytest.mark.asyncio
async def test_staff_can_amend_suspension_details(api_client):
	created = await api_client.post(
		"/api/mod/v1/suspensions",
		json={
			"member_id": "alice",
			"scope": "community",
			"reason_category": "harassment",
			"reason": "Harassing other members in replies.",
			"duration_days": 7,
		},
		headers=_headers("mod-1", MOD_ROLES),
	)
	suspension_id = created.json()["id"]

	member = await api_client.patch(
		f"/api/mod/v1/suspensions/{suspension_id}", json={"notes": "mine"}, headers=_headers("alice")
	)
	assert member.status_code == 403

	amended = await api_client.patch(
		f"/api/mod/v1/suspensions/{suspension_id}",
		json={"reason": "Harassment and threats in replies.", "notes": "escalated by mod-2"},
		headers=_headers("mod-1", MOD_ROLES),
	)
	assert amended.status_code == 200
	assert amended.json()["reason"] == "Harassment and threats in replies."
	assert amended.json()["notes"] == "escalated by mod-2"
	assert amended.json()["is_active"] is True

	empty = await api_client.patch(
		f"/api/mod/v1/suspensions/{suspension_id}", json={}, headers=_headers("mod-1", MOD_ROLES)
	)
	assert empty.status_code == 422
	missing = await api_client.patch(
		"/api/mod/v1/suspensions/missing", json={"notes": "x"}, headers=_headers("mod-1", MOD_ROLES)
	)
	assert missing.status_code == 404
