import uuid

import pytest
from sqlalchemy import select

from checkin_svc.core import codec
from checkin_svc.core.ratelimit import MemoryRateLimiter
from checkin_svc.deps import get_limiter
from checkin_svc.main import app
from checkin_svc.models import CheckinAttempt


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["service"] == "qr-checkin-svc"


async def test_checkin_success_then_conflict(client, make_event, make_attendee):
    event = await make_event()
    attendee = await make_attendee(event, token="tok123")
    body = {"qr_data": f"{event.id}:{attendee.id}:tok123", "scanner_device_id": "ipad-2"}

    r = await client.post("/checkin", json=body)
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["outcome"] == "success"
    assert data["attendee"]["checked_in"] is True
    assert data["attendee"]["qr_used_by_device"] == "ipad-2"
    assert data["event"]["id"] == str(event.id)

    r = await client.post("/checkin", json=body)
    assert r.status_code == 409
    data = r.json()
    assert data["success"] is False
    assert data["already_checked_in"] is True
    assert data["attendee"]["id"] == str(attendee.id)


@pytest.mark.parametrize("body, status, outcome", [
    ({"qr_data": "not-a-valid-payload"}, 400, "invalid_format"),
    ({}, 400, "invalid_format"),
])
async def test_checkin_bad_input(client, body, status, outcome):
    r = await client.post("/checkin", json=body)
    assert r.status_code == status
    assert r.json()["outcome"] == outcome


async def test_checkin_wrong_token_is_401(client, make_event, make_attendee):
    event = await make_event()
    attendee = await make_attendee(event, token="right")
    r = await client.post("/checkin", json={"qr_data": f"{event.id}:{attendee.id}:wrong"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid or expired QR code"


async def test_checkin_by_attendee_id(client, make_event, make_attendee):
    event = await make_event()
    attendee = await make_attendee(event, token=None)
    r = await client.post("/checkin", json={"attendee_id": str(attendee.id)})
    assert r.status_code == 200
    r = await client.post("/checkin", json={"attendee_id": str(attendee.id)})
    assert r.status_code == 409
    r = await client.post("/checkin", json={"attendee_id": str(uuid.uuid4())})
    assert r.status_code == 404


async def test_rate_limited_regardless_of_payload(client, make_event, make_attendee):
    limiter = MemoryRateLimiter(max_reqs=3, window_seconds=60)
    app.dependency_overrides[get_limiter] = lambda: limiter

    event = await make_event()
    attendee = await make_attendee(event, token="good")
    headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
    for _ in range(3):
        await client.post("/checkin", json={"qr_data": "junk"}, headers=headers)

    r = await client.post("/checkin", json={"qr_data": f"{event.id}:{attendee.id}:good"}, headers=headers)
    assert r.status_code == 429
    assert r.json()["outcome"] == "rate_limited"
    assert int(r.headers["Retry-After"]) > 0

    r = await client.post(
        "/checkin", json={"qr_data": f"{event.id}:{attendee.id}:good"},
        headers={"X-Forwarded-For": "198.51.100.1"},
    )
    assert r.status_code == 200


async def test_non_staff_forbidden(client, claims):
    claims["role"] = "attendee"
    r = await client.post("/checkin", json={"qr_data": "x"})
    assert r.status_code == 403


async def test_missing_bearer_is_401(client):
    app.dependency_overrides.clear()
    r = await client.post("/checkin", json={"qr_data": "x"})
    assert r.status_code == 401


async def test_issue_qr(client, make_event, make_attendee):
    event = await make_event()
    attendee = await make_attendee(event, token=None)
    r = await client.post(f"/attendees/{attendee.id}/qr", json={})
    assert r.status_code == 200
    parsed = codec.parse_payload(r.json()["payload"])
    assert (parsed.event_id, parsed.entry_id) == (event.id, attendee.id)

    r = await client.post("/checkin", json={"qr_data": r.json()["payload"]})
    assert r.status_code == 200


async def test_issue_qr_unknown_attendee(client, make_event):
    await make_event()
    r = await client.post(f"/attendees/{uuid.uuid4()}/qr", json={})
    assert r.status_code == 404


async def test_issue_qr_png(client, make_event, make_attendee):
    event = await make_event()
    attendee = await make_attendee(event, token=None)
    r = await client.get(f"/attendees/{attendee.id}/qr.png")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content.startswith(b"\x89PNG")


async def test_bulk_refresh_requires_admin_and_confirm(client, claims, make_event, make_attendee):
    event = await make_event()
    await make_attendee(event)

    r = await client.post("/attendees/qr/refresh-bulk", json={"event_id": str(event.id), "confirm": True})
    assert r.status_code == 403

    claims["role"] = "admin"
    r = await client.post("/attendees/qr/refresh-bulk", json={"event_id": str(event.id)})
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "Confirmation required"

    r = await client.post("/attendees/qr/refresh-bulk", json={"event_id": str(event.id), "confirm": True})
    assert r.status_code == 200
    assert r.json()["refreshed"] == 1

    r = await client.post("/attendees/qr/refresh-bulk", json={"event_id": str(uuid.uuid4()), "confirm": True})
    assert r.status_code == 404


async def test_offline_cache(client, make_event, make_attendee):
    default = await make_event(name="Main", slug="default")
    other = await make_event(name="Side")
    a = await make_attendee(default, token="t1")
    await make_attendee(other, token="t2")

    r = await client.get("/attendees/offline-cache", params={"event_id": str(default.id)})
    assert r.status_code == 200
    data = r.json()
    assert data["default_event_id"] == str(default.id)
    assert {e["name"] for e in data["events"]} == {"Main", "Side"}
    assert [x["id"] for x in data["attendees"]] == [str(a.id)]
    assert data["attendees"][0]["qr_token"] == "t1"
    assert data["attendees"][0]["event_name"] == "Main"


async def test_malformed_bodies_still_count_against_the_budget(client, db):
    limiter = MemoryRateLimiter(max_reqs=1, window_seconds=60)
    app.dependency_overrides[get_limiter] = lambda: limiter

    statuses = []
    for body in ({"qr_data": "junk"}, {"qr_data": "x" * 600}, {"attendee_id": "not-a-uuid"}, {"qr_data": "junk"}):
        statuses.append((await client.post("/checkin", json=body)).status_code)
    assert statuses == [400, 429, 429, 429]

    outcomes = (await db.execute(select(CheckinAttempt.outcome).order_by(CheckinAttempt.attempted_at))).scalars().all()
    assert outcomes == ["invalid_format", "rate_limited", "rate_limited", "rate_limited"]


async def test_malformed_bodies_within_budget(client, db):
    r = await client.post("/checkin", json={"qr_data": "x" * 600})
    assert r.status_code == 400
    assert r.json()["outcome"] == "invalid_format"

    r = await client.post("/checkin", json={"attendee_id": "not-a-uuid", "scanner_device_id": "d" * 300})
    assert r.status_code == 404
    assert r.json()["outcome"] == "not_found"

    rows = (await db.execute(select(CheckinAttempt).order_by(CheckinAttempt.attempted_at))).scalars().all()
    assert [(row.outcome, row.method) for row in rows] == [("invalid_format", "qr"), ("not_found", "manual")]
    assert rows[1].attendee_id is None
    assert rows[1].device_id == "d" * 128


async def test_issue_qr_for_missing_event(client, make_attendee):
    attendee = await make_attendee(None, token=None)
    r = await client.post(f"/attendees/{attendee.id}/qr", json={"event_id": str(uuid.uuid4())})
    assert r.status_code == 404
