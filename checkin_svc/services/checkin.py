"""Check-in protocol.

A redemption attempt moves RECEIVED -> RATE_CHECKED -> PARSED -> EVENT_RESOLVED
-> ATTENDEE_MATCHED -> REDEEMED and may stop at any step. Expected failures
(bad payload, unknown event, wrong or expired token, duplicate scan) come back
as ``CheckInResult`` values. Only storage or infrastructure errors raise; the
``handle_check_in`` boundary turns those into the generic ``error`` outcome.
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import codec
from ..core.audit import AuditEntry, record_attempt
from ..core.nats import publish_checkin
from ..core.outcomes import (
    Outcome, MSG_ATTENDEE_NOT_FOUND, MSG_ERROR, MSG_EVENT_NOT_FOUND, MSG_EXPIRED, MSG_INVALID,
    MSG_INVALID_FORMAT, MSG_MISSING_DATA, MSG_RATE_LIMITED, already_message, success_message,
)
from ..core.ratelimit import RateLimiter
from ..core.tokens import as_aware, utcnow
from ..models import Attendee, Event
from . import store
from .events import DefaultEventMissing, DefaultEventResolver

logger = logging.getLogger(__name__)


@dataclass
class CheckInResult:
    outcome: Outcome
    message: str
    attendee: Attendee | None = None
    event: Event | None = None
    retry_after: int | None = None
    # internal diagnosis for audit/logs only; never shown to the scanner
    reason: str | None = None
    payload_format: str | None = None
    event_id: uuid.UUID | None = None

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def already_checked_in(self) -> bool:
        return self.outcome is Outcome.ALREADY_CHECKED_IN

    @property
    def attendee_id(self) -> uuid.UUID | None:
        return self.attendee.id if self.attendee is not None else None


@dataclass(frozen=True)
class CheckInRequest:
    qr_data: str | None = None
    attendee_id: uuid.UUID | str | None = None  # raw from the client, parsed after the rate check
    scanner_device_id: str | None = None

    @property
    def method(self) -> str:
        return "manual" if self.attendee_id is not None else "qr"

    @property
    def parsed_attendee_id(self) -> uuid.UUID | None:
        if self.attendee_id is None or isinstance(self.attendee_id, uuid.UUID):
            return self.attendee_id
        try:
            return uuid.UUID(self.attendee_id)
        except ValueError:
            return None

    @property
    def device_id(self) -> str | None:
        return self.scanner_device_id[:128] if self.scanner_device_id else None


def _success(attendee: Attendee, event: Event | None) -> CheckInResult:
    return CheckInResult(
        Outcome.SUCCESS,
        success_message(attendee.full_name),
        attendee=attendee,
        event=event,
        event_id=attendee.event_id,
    )

def _already(attendee: Attendee, event: Event | None) -> CheckInResult:
    return CheckInResult(
        Outcome.ALREADY_CHECKED_IN,
        already_message(attendee.full_name),
        attendee=attendee,
        event=event,
        reason="duplicate",
        event_id=attendee.event_id,
    )


async def check_in_by_payload(
    db: AsyncSession,
    qr_data: str,
    *,
    resolver: DefaultEventResolver,
    scanner_device_id: str | None = None,
    now: datetime | None = None,
) -> CheckInResult:
    """Path A: redeem a scanned payload."""
    # PARSED
    try:
        payload = await codec.decode(qr_data, resolver.bind(db))
    except codec.PayloadError as exc:
        logger.debug("rejected payload: %s", exc)
        return CheckInResult(Outcome.INVALID_FORMAT, MSG_INVALID_FORMAT, reason="malformed")
    except DefaultEventMissing:
        return CheckInResult(Outcome.NOT_FOUND, MSG_EVENT_NOT_FOUND, reason="no_default_event",
                             payload_format=codec.QRFormat.V1_LEGACY.value)
    fmt = payload.format.value

    # EVENT_RESOLVED
    event = await store.get_event(db, payload.event_id)
    if event is None:
        return CheckInResult(Outcome.NOT_FOUND, MSG_EVENT_NOT_FOUND, reason="unknown_event",
                             payload_format=fmt, event_id=payload.event_id)

    # ATTENDEE_MATCHED + REDEEMED, atomically
    now = now or utcnow()
    redeemed = await store.redeem(
        db,
        event_id=payload.event_id,
        entry_id=payload.entry_id,
        token=payload.token,
        device_id=scanner_device_id,
        now=now,
    )
    if redeemed is not None:
        result = _success(redeemed, event)
        result.payload_format = fmt
        return result

    result = await _diagnose(db, payload, event, now)
    result.payload_format = fmt
    return result


async def _diagnose(db: AsyncSession, payload: codec.QRPayload, event: Event, now: datetime) -> CheckInResult:
    """Explain a redemption that matched no row, without the token constraints."""
    existing = await store.get_attendee(db, payload.entry_id)
    generic = CheckInResult(Outcome.INVALID_OR_EXPIRED, MSG_INVALID, event_id=payload.event_id)

    if existing is None:
        generic.reason = "unknown_entry"
        return generic
    if existing.event_id != payload.event_id:
        generic.reason = "event_mismatch"
        return generic
    if existing.checked_in or existing.qr_used_at is not None:
        return _already(existing, event)
    if not existing.qr_token:
        generic.reason = "no_token"
        return generic
    if existing.qr_token != payload.token:
        generic.reason = "token_mismatch"
        return generic
    expires_at = as_aware(existing.qr_expires_at)
    if expires_at is not None and expires_at <= now:
        return CheckInResult(Outcome.EXPIRED, MSG_EXPIRED, reason="expired", event_id=payload.event_id)
    # matched on re-read: lost a race with a concurrent rotation or redemption
    generic.reason = "race"
    return generic


async def check_in_by_attendee_id(
    db: AsyncSession,
    attendee_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> CheckInResult:
    """Path B: staff override without a token."""
    now = now or utcnow()
    updated = await store.mark_checked_in(db, attendee_id=attendee_id, now=now)
    if updated is not None:
        event = await store.get_event(db, updated.event_id) if updated.event_id else None
        return _success(updated, event)

    existing = await store.get_attendee(db, attendee_id)
    if existing is None:
        return CheckInResult(Outcome.NOT_FOUND, MSG_ATTENDEE_NOT_FOUND, reason="unknown_entry")
    event = await store.get_event(db, existing.event_id) if existing.event_id else None
    return _already(existing, event)


async def handle_check_in(
    db: AsyncSession,
    request: CheckInRequest,
    *,
    caller: str,
    limiter: RateLimiter,
    resolver: DefaultEventResolver,
    now: datetime | None = None,
) -> CheckInResult:
    """Rate limit, dispatch to path A or B, audit. Never raises."""
    try:
        # RATE_CHECKED, before any parsing or lookups
        decision = await limiter.hit(caller)
        if not decision.allowed:
            result = CheckInResult(Outcome.RATE_LIMITED, MSG_RATE_LIMITED, retry_after=decision.retry_after)
        elif request.attendee_id is not None:
            attendee_id = request.parsed_attendee_id
            if attendee_id is None:
                result = CheckInResult(Outcome.NOT_FOUND, MSG_ATTENDEE_NOT_FOUND, reason="malformed_id")
            else:
                result = await check_in_by_attendee_id(db, attendee_id, now=now)
        elif request.qr_data:
            result = await check_in_by_payload(
                db, request.qr_data, resolver=resolver,
                scanner_device_id=request.device_id, now=now,
            )
        else:
            result = CheckInResult(Outcome.INVALID_FORMAT, MSG_MISSING_DATA, reason="empty")
    except Exception:
        # outcome of a failed redeem is unknown: the UPDATE may have committed
        await db.rollback()
        logger.exception(
            "check-in failed caller=%s method=%s device=%s attendee=%s",
            caller, request.method, request.scanner_device_id, request.attendee_id,
        )
        result = CheckInResult(Outcome.ERROR, MSG_ERROR, reason="exception")

    await _audit(db, request, caller, result)
    if result.success:
        await _announce(result, request)
    return result


async def _audit(db: AsyncSession, request: CheckInRequest, caller: str, result: CheckInResult) -> None:
    await record_attempt(db, AuditEntry(
        caller=caller,
        outcome=result.outcome.value,
        method=request.method,
        reason=result.reason,
        payload_format=result.payload_format,
        attendee_id=result.attendee_id or request.parsed_attendee_id,
        event_id=result.event_id,
        device_id=request.device_id,
    ))


async def _announce(result: CheckInResult, request: CheckInRequest) -> None:
    attendee = result.attendee
    checked_at = as_aware(attendee.checked_in_at) or utcnow()
    try:
        await publish_checkin({
            "event_id": str(attendee.event_id) if attendee.event_id else None,
            "attendee_id": str(attendee.id),
            "checked_in_at": checked_at.isoformat().replace("+00:00", "Z"),
            "method": request.method,
            "device_id": request.device_id,
            "idempotency_key": f"{attendee.event_id}:{attendee.id}",
        })
    except Exception:
        # non-fatal for the check-in response
        logger.warning("could not publish check-in for %s", attendee.id, exc_info=True)
