import os
import tempfile
import uuid
from datetime import timedelta

_TMP = tempfile.mkdtemp(prefix="checkin-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/checkin.db"
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.invalid/.well-known/jwks.json")
os.environ["NATS_ENABLED"] = "false"
os.environ["RL_BACKEND"] = "memory"

import httpx
import pytest

from checkin_svc.core.ratelimit import MemoryRateLimiter
from checkin_svc.core.tokens import utcnow
from checkin_svc.db import async_session_maker, drop_db, init_db
from checkin_svc.deps import get_claims, get_limiter, get_resolver
from checkin_svc.main import app
from checkin_svc.models import Attendee, Event
from checkin_svc.services.events import DefaultEventResolver


@pytest.fixture
async def db():
    await init_db()
    async with async_session_maker() as session:
        yield session
    await drop_db()


@pytest.fixture
def resolver():
    return DefaultEventResolver("default", 3600)


@pytest.fixture
def limiter():
    return MemoryRateLimiter(max_reqs=1000, window_seconds=60)


@pytest.fixture
def make_event(db):
    async def _make(name="Launch Party", slug=None):
        event = Event(name=name, slug=slug or f"evt-{uuid.uuid4().hex[:8]}")
        db.add(event)
        await db.commit()
        return event
    return _make


@pytest.fixture
def make_attendee(db):
    async def _make(event, *, token="a" * 32, expires_in=timedelta(hours=1), first="Ada", last="Lovelace", **extra):
        attendee = Attendee(
            event_id=event.id if event is not None else None,
            first_name=first,
            last_name=last,
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            qr_token=token,
            qr_expires_at=(utcnow() + expires_in) if token else None,
            **extra,
        )
        db.add(attendee)
        await db.commit()
        return attendee
    return _make


@pytest.fixture
def claims():
    return {"sub": str(uuid.uuid4()), "role": "staff"}


@pytest.fixture
async def client(db, claims, limiter, resolver):
    app.dependency_overrides[get_claims] = lambda: claims
    app.dependency_overrides[get_limiter] = lambda: limiter
    app.dependency_overrides[get_resolver] = lambda: resolver
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
