from __future__ import annotations
from enum import Enum

class Outcome(str, Enum):
    SUCCESS = "success"
    INVALID_FORMAT = "invalid_format"
    NOT_FOUND = "not_found"
    INVALID_OR_EXPIRED = "invalid_or_expired"
    EXPIRED = "expired"
    ALREADY_CHECKED_IN = "already_checked_in"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"

MSG_INVALID_FORMAT = "Invalid QR code format"
MSG_MISSING_DATA = "QR data is required"
MSG_EVENT_NOT_FOUND = "Event not found"
MSG_ATTENDEE_NOT_FOUND = "Attendee not found"
MSG_INVALID = "Invalid or expired QR code"
MSG_EXPIRED = "QR code expired"
MSG_RATE_LIMITED = "Too many check-in attempts. Please try again later."
MSG_ERROR = "Failed to process check-in"
MSG_NOT_CACHED = "Guest list not cached. Connect to sync, then try again."

def success_message(name: str) -> str:
    return f"{name} checked in successfully!"

def already_message(name: str) -> str:
    return f"Already checked in: {name}"
