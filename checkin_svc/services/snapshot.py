from __future__ import annotations
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..core.tokens import as_aware, utcnow
from ..models import Attendee, Event
from ..schemas import OfflineAttendee, OfflineEvent, OfflineSnapshot
from . import store
from .events import DefaultEventResolver


async def build_offline_snapshot(
    db: AsyncSession,
    event_id: uuid.UUID | None,
    *,
    resolver: DefaultEventResolver,
) -> OfflineSnapshot:
    """Guest list with outstanding tokens, for scanners that may lose connectivity.

    Contains live credentials: only ever hand this to authenticated staff.
    """
    events = await store.list_events(db)
    default_event_id = await resolver.resolve_or_none(db)
    if default_event_id is None and events:
        default_event_id = events[0].id

    q = (
        select(Attendee, Event.name)
        .outerjoin(Event, Event.id == Attendee.event_id)
        .order_by(Attendee.created_at.desc())
    )
    if event_id is not None:
        q = q.where(Attendee.event_id == event_id)
    rows = (await db.execute(q)).all()

    return OfflineSnapshot(
        cached_at=utcnow(),
        default_event_id=default_event_id,
        events=[OfflineEvent(id=e.id, name=e.name) for e in events],
        attendees=[
            OfflineAttendee(
                id=a.id,
                event_id=a.event_id,
                qr_token=a.qr_token,
                qr_expires_at=as_aware(a.qr_expires_at),
                checked_in=bool(a.checked_in),
                first_name=a.first_name,
                last_name=a.last_name,
                email=a.email,
                event_name=event_name,
            )
            for a, event_name in rows
        ],
    )
