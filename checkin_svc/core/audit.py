from __future__ import annotations
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import CheckinAttempt
from .tokens import utcnow

audit_logger = logging.getLogger("checkin_svc.audit")
logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    caller: str
    outcome: str
    method: str = "qr"
    reason: str | None = None
    payload_format: str | None = None
    attendee_id: uuid.UUID | None = None
    event_id: uuid.UUID | None = None
    device_id: str | None = None
    attempted_at: datetime = field(default_factory=utcnow)

    def as_log_line(self) -> str:
        return json.dumps({
            "type": "check_in_attempt",
            "timestamp": self.attempted_at.isoformat().replace("+00:00", "Z"),
            "ip": self.caller,
            "outcome": self.outcome,
            "reason": self.reason,
            "method": self.method,
            "format": self.payload_format,
            "attendee_id": str(self.attendee_id) if self.attendee_id else None,
            "event_id": str(self.event_id) if self.event_id else None,
            "device_id": self.device_id,
        })


async def record_attempt(db: AsyncSession, entry: AuditEntry) -> None:
    """Log the attempt and store it. A failed insert never changes the check-in result."""
    audit_logger.info(entry.as_log_line())
    try:
        db.add(CheckinAttempt(
            attempted_at=entry.attempted_at,
            caller=entry.caller[:128],
            outcome=entry.outcome,
            reason=entry.reason,
            method=entry.method,
            payload_format=entry.payload_format,
            attendee_id=entry.attendee_id,
            event_id=entry.event_id,
            device_id=entry.device_id,
        ))
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("could not persist audit row for %s (%s)", entry.caller, entry.outcome)
