from __future__ import annotations
from pydantic import BaseModel, ConfigDict
from uuid import UUID
from datetime import datetime

class EventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    name: str
    slug: str

class AttendeeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    event_id: UUID | None = None
    first_name: str
    last_name: str
    email: str
    checked_in: bool
    checked_in_at: datetime | None = None
    qr_used_at: datetime | None = None
    qr_used_by_device: str | None = None

class CheckinCreate(BaseModel):
    # left unconstrained: malformed values must still be rate limited and audited
    qr_data: str | None = None
    attendee_id: str | None = None  # manual override, no token needed
    scanner_device_id: str | None = None

class CheckinResponse(BaseModel):
    success: bool
    already_checked_in: bool = False
    outcome: str
    message: str
    attendee: AttendeeRead | None = None
    event: EventRead | None = None
    retry_after: int | None = None

class QRIssueRequest(BaseModel):
    event_id: UUID | None = None

class QRIssueResponse(BaseModel):
    payload: str
    expires_at: datetime

class BulkRefreshRequest(BaseModel):
    event_id: UUID | None = None
    confirm: bool = False

class BulkRefreshResponse(BaseModel):
    success: bool = True
    refreshed: int
    failed: int
    total: int
    errors: list[str]

class OfflineEvent(BaseModel):
    id: UUID
    name: str

class OfflineAttendee(BaseModel):
    id: UUID
    event_id: UUID | None = None
    qr_token: str | None = None
    qr_expires_at: datetime | None = None
    checked_in: bool = False
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    event_name: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

class OfflineSnapshot(BaseModel):
    cached_at: datetime
    default_event_id: UUID | None = None
    events: list[OfflineEvent] = []
    attendees: list[OfflineAttendee] = []
