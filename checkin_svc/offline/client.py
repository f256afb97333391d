"""Scanner-side check-in that keeps working without connectivity.

While the server is unreachable, scans are validated against the cached guest
list with the same rules the server applies, marked present locally, and
queued in the outbox. ``sync_queue`` replays the outbox one request at a time;
a 409 from the server means somebody else already checked the attendee in,
which is the state we wanted, so it counts as synced.
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

import httpx

from ..core import codec
from ..core.config import get_settings
from ..core.outcomes import (
    Outcome, MSG_ATTENDEE_NOT_FOUND, MSG_EVENT_NOT_FOUND, MSG_EXPIRED, MSG_INVALID,
    MSG_INVALID_FORMAT, MSG_NOT_CACHED, already_message, success_message,
)
from ..core.tokens import as_aware, utcnow
from ..schemas import OfflineAttendee, OfflineEvent, OfflineSnapshot
from .store import LocalStore

logger = logging.getLogger(__name__)

PostFn = Callable[[dict], Awaitable[httpx.Response]]


@dataclass
class OfflineCheckInResult:
    outcome: Outcome
    message: str
    attendee: OfflineAttendee | None = None
    event: OfflineEvent | None = None
    queued_id: uuid.UUID | None = None
    source: str = "local"  # local | server
    retry_after: int | None = None

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def already_checked_in(self) -> bool:
        return self.outcome is Outcome.ALREADY_CHECKED_IN


@dataclass
class SyncReport:
    synced: int = 0
    failed: int = 0


def _event_of(snapshot: OfflineSnapshot, event_id: uuid.UUID | None) -> OfflineEvent | None:
    return next((e for e in snapshot.events if e.id == event_id), None)


class OfflineCheckinClient:
    def __init__(self, store: LocalStore, http: httpx.AsyncClient, device_id: str | None = None):
        self.store = store
        self.http = http
        self.device_id = device_id

    @classmethod
    def from_settings(cls, bearer_token: str, device_id: str | None = None) -> "OfflineCheckinClient":
        settings = get_settings()
        http = httpx.AsyncClient(
            base_url=settings.offline_server_url,
            headers={"Authorization": f"Bearer {bearer_token}"},
            timeout=5.0,
        )
        return cls(LocalStore(settings.offline_db_url), http, device_id=device_id)

    async def close(self) -> None:
        await self.http.aclose()
        await self.store.close()

    # --- cache
    async def refresh_cache(self, event_id: uuid.UUID | None = None) -> OfflineSnapshot:
        params = {"event_id": str(event_id)} if event_id else None
        r = await self.http.get("/attendees/offline-cache", params=params)
        r.raise_for_status()
        snapshot = OfflineSnapshot.model_validate(r.json())
        await self.store.set_snapshot(snapshot)
        logger.info("cached %d attendees (%d events)", len(snapshot.attendees), len(snapshot.events))
        return snapshot

    # --- online first, local fallback
    async def check_in(self, qr_data: str | None = None, attendee_id: uuid.UUID | None = None) -> OfflineCheckInResult:
        body: dict = {"attendee_id": str(attendee_id)} if attendee_id else {"qr_data": qr_data}
        if self.device_id:
            body["scanner_device_id"] = self.device_id
        try:
            r = await self._post(body)
        except httpx.TransportError as exc:
            # includes timeouts: the server may have committed, a replay will answer 409
            logger.warning("server unreachable (%s), checking in offline", type(exc).__name__)
            if attendee_id:
                return await self.check_in_attendee_offline(attendee_id)
            return await self.check_in_offline(qr_data or "")
        return self._from_server(r)

    def _from_server(self, r: httpx.Response) -> OfflineCheckInResult:
        try:
            data = r.json()
        except ValueError:
            data = {}
        if "outcome" not in data:
            # auth or validation error, not a check-in answer
            return OfflineCheckInResult(Outcome.ERROR, str(data.get("detail") or f"HTTP {r.status_code}"), source="server")
        attendee = data.get("attendee")
        event = data.get("event")
        return OfflineCheckInResult(
            outcome=Outcome(data.get("outcome", Outcome.ERROR.value)),
            message=data.get("message", ""),
            attendee=OfflineAttendee.model_validate(attendee) if attendee else None,
            event=OfflineEvent.model_validate(event) if event else None,
            source="server",
            retry_after=data.get("retry_after"),
        )

    # --- local decisions, same rules as the server
    async def check_in_offline(self, qr_data: str, now: datetime | None = None) -> OfflineCheckInResult:
        snapshot = await self.store.get_snapshot()
        if snapshot is None:
            return OfflineCheckInResult(Outcome.ERROR, MSG_NOT_CACHED)

        try:
            payload = codec.parse_payload(qr_data)
        except codec.PayloadError:
            return OfflineCheckInResult(Outcome.INVALID_FORMAT, MSG_INVALID_FORMAT)
        if payload.is_legacy:
            if snapshot.default_event_id is None:
                return OfflineCheckInResult(Outcome.NOT_FOUND, MSG_EVENT_NOT_FOUND)
            payload = codec.with_event(payload, snapshot.default_event_id)

        event = _event_of(snapshot, payload.event_id)
        if event is None:
            return OfflineCheckInResult(Outcome.NOT_FOUND, MSG_EVENT_NOT_FOUND)

        existing = next((a for a in snapshot.attendees if a.id == payload.entry_id), None)
        if existing is None or existing.event_id != payload.event_id:
            return OfflineCheckInResult(Outcome.INVALID_OR_EXPIRED, MSG_INVALID)
        if existing.checked_in:
            return OfflineCheckInResult(Outcome.ALREADY_CHECKED_IN, already_message(existing.full_name),
                                        attendee=existing, event=event)
        if not existing.qr_token or existing.qr_token != payload.token:
            return OfflineCheckInResult(Outcome.INVALID_OR_EXPIRED, MSG_INVALID)
        expires_at = as_aware(existing.qr_expires_at)
        if expires_at is None:
            return OfflineCheckInResult(Outcome.INVALID_OR_EXPIRED, MSG_INVALID)
        if expires_at <= (now or utcnow()):
            return OfflineCheckInResult(Outcome.EXPIRED, MSG_EXPIRED)

        queued_id = await self.store.record_local_checkin(existing.id, qr_data=qr_data, device_id=self.device_id)
        existing.checked_in = True
        return OfflineCheckInResult(Outcome.SUCCESS, success_message(existing.full_name),
                                    attendee=existing, event=event, queued_id=queued_id)

    async def check_in_attendee_offline(self, attendee_id: uuid.UUID) -> OfflineCheckInResult:
        snapshot = await self.store.get_snapshot()
        if snapshot is None:
            return OfflineCheckInResult(Outcome.ERROR, MSG_NOT_CACHED)

        attendee = next((a for a in snapshot.attendees if a.id == attendee_id), None)
        if attendee is None:
            return OfflineCheckInResult(Outcome.NOT_FOUND, MSG_ATTENDEE_NOT_FOUND)
        event = _event_of(snapshot, attendee.event_id)
        if attendee.checked_in:
            return OfflineCheckInResult(Outcome.ALREADY_CHECKED_IN, already_message(attendee.full_name),
                                        attendee=attendee, event=event)

        queued_id = await self.store.record_local_checkin(attendee.id, device_id=self.device_id)
        attendee.checked_in = True
        return OfflineCheckInResult(Outcome.SUCCESS, success_message(attendee.full_name),
                                    attendee=attendee, event=event, queued_id=queued_id)

    # --- replay
    async def sync_queue(self, post: PostFn | None = None) -> SyncReport:
        """Drain the outbox sequentially. Entries leave only on 2xx or 409."""
        post = post or self._post
        report = SyncReport()
        for entry in await self.store.pending():
            try:
                r = await post(entry.as_request_body())
            except httpx.HTTPError as exc:
                report.failed += 1
                await self.store.note_attempt(entry.id, type(exc).__name__)
                continue
            if r.is_success or r.status_code == 409:
                await self.store.remove(entry.id)
                report.synced += 1
            else:
                report.failed += 1
                await self.store.note_attempt(entry.id, f"http {r.status_code}")
        if report.synced or report.failed:
            logger.info("outbox sync: synced=%d failed=%d", report.synced, report.failed)
        return report

    async def _post(self, body: dict) -> httpx.Response:
        return await self.http.post("/checkin", json=body)
