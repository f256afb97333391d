from __future__ import annotations
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from . import store
from .events import DefaultEventResolver
from .issuance import issue_token

logger = logging.getLogger(__name__)
settings = get_settings()

CONFIRM_MESSAGE = (
    "This will invalidate all existing QR codes for the event. Attendees with "
    "screenshots or saved images will need new codes. Set confirm: true to proceed."
)


class ConfirmationRequired(Exception):
    def __init__(self, message: str = CONFIRM_MESSAGE):
        super().__init__(message)
        self.message = message

class NoAttendees(LookupError):
    pass


@dataclass
class BulkRefreshResult:
    refreshed: int = 0
    failed: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)


async def bulk_refresh(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    event_id: uuid.UUID | None,
    confirm: bool,
    resolver: DefaultEventResolver,
    batch_size: int | None = None,
    pause_seconds: float | None = None,
    error_sample: int | None = None,
) -> BulkRefreshResult:
    """Rotate every token in scope (one event, or all attendees).

    Tokens within a batch are issued concurrently, each on its own session;
    batches run one after another with a short pause between them. A failure
    for one attendee is counted and sampled, never raised.
    """
    if confirm is not True:
        raise ConfirmationRequired()

    batch_size = batch_size or settings.bulk_batch_size
    pause = settings.bulk_batch_pause_ms / 1000 if pause_seconds is None else pause_seconds
    error_sample = error_sample or settings.bulk_error_sample

    async with session_maker() as db:
        attendees = await store.list_attendees(db, event_id)
    if not attendees:
        raise NoAttendees("No attendees found")

    result = BulkRefreshResult(total=len(attendees))

    async def _one(attendee_id: uuid.UUID, scope: uuid.UUID | None) -> None:
        async with session_maker() as db:
            issued = await issue_token(db, attendee_id, scope, resolver=resolver)
        if issued is None:
            raise LookupError("attendee not found")

    for start in range(0, len(attendees), batch_size):
        batch = attendees[start:start + batch_size]
        outcomes = await asyncio.gather(
            *(_one(a.id, event_id or a.event_id) for a in batch),
            return_exceptions=True,
        )
        for attendee, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                result.failed += 1
                logger.warning("bulk refresh failed for %s: %s", attendee.id, outcome)
                if len(result.errors) < error_sample:
                    result.errors.append(f"Failed for {attendee.id}: {str(outcome) or type(outcome).__name__}")
            else:
                result.refreshed += 1
        if start + batch_size < len(attendees) and pause > 0:
            await asyncio.sleep(pause)

    logger.info(
        "bulk refresh event=%s refreshed=%d failed=%d total=%d",
        event_id, result.refreshed, result.failed, result.total,
    )
    return result
