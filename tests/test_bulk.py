import uuid

import pytest
from sqlalchemy import select

from checkin_svc.db import async_session_maker
from checkin_svc.models import Attendee
from checkin_svc.services import bulk as bulk_module
from checkin_svc.services.bulk import ConfirmationRequired, NoAttendees, bulk_refresh


async def test_refuses_without_confirmation(db, resolver, make_event, make_attendee):
    event = await make_event()
    await make_attendee(event, token="keep")
    for confirm in (False, None):
        with pytest.raises(ConfirmationRequired):
            await bulk_refresh(async_session_maker, event_id=event.id, confirm=confirm, resolver=resolver)
    token = (await db.execute(select(Attendee.qr_token))).scalar_one()
    assert token == "keep"


async def test_rotates_every_attendee_in_event(db, resolver, make_event, make_attendee):
    event = await make_event()
    other = await make_event(name="Other")
    for i in range(7):
        await make_attendee(event, token=f"old{i}")
    untouched = await make_attendee(other, token="other-old")

    result = await bulk_refresh(
        async_session_maker, event_id=event.id, confirm=True, resolver=resolver,
        batch_size=3, pause_seconds=0,
    )
    assert (result.refreshed, result.failed, result.total, result.errors) == (7, 0, 7, [])

    rows = (await db.execute(
        select(Attendee).where(Attendee.event_id == event.id).execution_options(populate_existing=True)
    )).scalars().all()
    assert all(r.qr_token and not r.qr_token.startswith("old") for r in rows)
    await db.refresh(untouched)
    assert untouched.qr_token == "other-old"


async def test_all_attendees_scope(db, resolver, make_event, make_attendee):
    a = await make_event(name="A")
    b = await make_event(name="B")
    await make_attendee(a)
    await make_attendee(b)
    result = await bulk_refresh(async_session_maker, event_id=None, confirm=True, resolver=resolver, pause_seconds=0)
    assert result.refreshed == 2


async def test_partial_failures_are_sampled(db, resolver, make_event, make_attendee, monkeypatch):
    event = await make_event()
    attendees = [await make_attendee(event) for _ in range(4)]
    broken = {attendees[1].id, attendees[3].id}
    real_issue = bulk_module.issue_token

    async def flaky(session, attendee_id, event_id=None, **kwargs):
        if attendee_id in broken:
            raise RuntimeError("smtp quota")
        return await real_issue(session, attendee_id, event_id, **kwargs)

    monkeypatch.setattr(bulk_module, "issue_token", flaky)
    result = await bulk_refresh(
        async_session_maker, event_id=event.id, confirm=True, resolver=resolver,
        pause_seconds=0, error_sample=1,
    )
    assert result.refreshed == 2
    assert result.failed == 2
    assert result.total == 4
    assert len(result.errors) == 1
    assert "smtp quota" in result.errors[0]


async def test_empty_scope(db, resolver):
    with pytest.raises(NoAttendees):
        await bulk_refresh(async_session_maker, event_id=uuid.uuid4(), confirm=True, resolver=resolver)
