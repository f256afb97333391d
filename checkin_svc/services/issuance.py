from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import codec
from ..core.tokens import expiry_from, generate_token, utcnow
from . import store
from .events import DefaultEventResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    attendee_id: uuid.UUID
    event_id: uuid.UUID
    payload: str
    expires_at: datetime


async def issue_token(
    db: AsyncSession,
    attendee_id: uuid.UUID,
    event_id: uuid.UUID | None = None,
    *,
    resolver: DefaultEventResolver,
    now: datetime | None = None,
    ttl_seconds: int | None = None,
) -> IssuedToken | None:
    """Mint a fresh token for the attendee and return its v2 payload.

    Any token issued earlier is overwritten and can no longer be redeemed.
    Returns None when the attendee does not exist or belongs to a different
    event than ``event_id``, or when ``event_id`` names no event.
    """
    attendee = await store.get_attendee(db, attendee_id)
    if attendee is None:
        return None

    if event_id is not None and await store.get_event(db, event_id) is None:
        logger.info("token not issued: event %s does not exist", event_id)
        return None
    effective_event = event_id or attendee.event_id or await resolver.resolve(db)
    now = now or utcnow()
    token = generate_token()
    expires_at = expiry_from(now, ttl_seconds)

    # validate before anything is written
    payload = codec.encode(effective_event, attendee_id, token)

    row = await store.set_token(
        db, attendee_id=attendee_id, event_id=effective_event, token=token, expires_at=expires_at
    )
    if row is None:
        logger.info("token not issued: attendee %s is not in event %s", attendee_id, effective_event)
        return None
    return IssuedToken(attendee_id=row.id, event_id=effective_event, payload=payload, expires_at=expires_at)
