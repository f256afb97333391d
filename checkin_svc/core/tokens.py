from __future__ import annotations
from datetime import datetime, timedelta, timezone
import secrets

from .config import get_settings

TOKEN_BYTES = 16  # 128 bits, hex encoded to 32 chars

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt

def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)

def expiry_from(now: datetime, ttl_seconds: int | None = None) -> datetime:
    return now + timedelta(seconds=ttl_seconds or get_settings().qr_token_ttl_seconds)
