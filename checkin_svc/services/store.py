"""Persistence for attendee credentials.

Every state change here is one conditional UPDATE ... RETURNING statement, so
concurrent callers on different connections (or app instances) are serialized
by the database rather than by anything in this process.
"""
from __future__ import annotations
import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, or_

from ..models import Attendee, Event


async def get_event(db: AsyncSession, event_id: uuid.UUID) -> Event | None:
    return (await db.execute(select(Event).where(Event.id == event_id))).scalar_one_or_none()

async def get_event_by_slug(db: AsyncSession, slug: str) -> Event | None:
    return (await db.execute(select(Event).where(Event.slug == slug))).scalar_one_or_none()

async def list_events(db: AsyncSession) -> Sequence[Event]:
    return (await db.execute(select(Event).order_by(Event.created_at.desc()))).scalars().all()

async def get_attendee(db: AsyncSession, attendee_id: uuid.UUID) -> Attendee | None:
    q = select(Attendee).where(Attendee.id == attendee_id).execution_options(populate_existing=True)
    return (await db.execute(q)).scalar_one_or_none()

async def list_attendees(db: AsyncSession, event_id: uuid.UUID | None = None) -> Sequence[Attendee]:
    q = select(Attendee)
    if event_id is not None:
        q = q.where(Attendee.event_id == event_id)
    return (await db.execute(q.order_by(Attendee.created_at.desc()))).scalars().all()


async def set_token(
    db: AsyncSession,
    *,
    attendee_id: uuid.UUID,
    event_id: uuid.UUID,
    token: str,
    expires_at: datetime,
) -> Attendee | None:
    """Overwrite the attendee's outstanding token (rotation).

    Scoped to ``event_id``: a row that belongs to another event is left alone
    and None comes back. Rows with no event yet are adopted into ``event_id``.
    Check-in state is not touched.
    """
    stmt = (
        update(Attendee)
        .where(
            Attendee.id == attendee_id,
            or_(Attendee.event_id == event_id, Attendee.event_id.is_(None)),
        )
        .values(qr_token=token, qr_expires_at=expires_at, event_id=event_id)
        .returning(Attendee)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    row = (await db.execute(stmt)).scalar_one_or_none()
    await db.commit()
    return row


async def redeem(
    db: AsyncSession,
    *,
    event_id: uuid.UUID,
    entry_id: uuid.UUID,
    token: str,
    device_id: str | None,
    now: datetime,
) -> Attendee | None:
    """Consume the token and mark the attendee present in a single statement.

    Returns the updated row, or None when nothing matched (wrong token,
    expired, already used, other event). Two concurrent calls with the same
    token cannot both get a row back.
    """
    stmt = (
        update(Attendee)
        .where(
            Attendee.event_id == event_id,
            Attendee.id == entry_id,
            Attendee.qr_token == token,
            Attendee.qr_expires_at > now,
            Attendee.qr_used_at.is_(None),
            Attendee.checked_in.is_(False),
        )
        .values(
            qr_token=None,
            qr_expires_at=None,
            qr_used_at=now,
            qr_used_by_device=device_id,
            checked_in=True,
            checked_in_at=now,
        )
        .returning(Attendee)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    row = (await db.execute(stmt)).scalar_one_or_none()
    await db.commit()
    return row


async def mark_checked_in(db: AsyncSession, *, attendee_id: uuid.UUID, now: datetime) -> Attendee | None:
    """Manual override: flip ``checked_in`` without a token. None if already in (or missing)."""
    stmt = (
        update(Attendee)
        .where(Attendee.id == attendee_id, Attendee.checked_in.is_(False))
        .values(checked_in=True, checked_in_at=now)
        .returning(Attendee)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    row = (await db.execute(stmt)).scalar_one_or_none()
    await db.commit()
    return row
