from __future__ import annotations
import logging
import re
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
SEP = ":"
MAX_PAYLOAD_LENGTH = 512


class PayloadError(ValueError):
    pass

class InvalidFormat(PayloadError):
    pass

class InvalidIdentifier(PayloadError):
    pass


class QRFormat(str, Enum):
    V2 = "v2"
    V1_LEGACY = "v1-legacy"


@dataclass(frozen=True)
class QRPayload:
    """Decoded QR payload.

    ``event_id`` is None only for a v1-legacy payload that has not had its
    default event resolved yet (see ``parse_payload``).
    """
    event_id: uuid.UUID | None
    entry_id: uuid.UUID
    token: str
    format: QRFormat

    @property
    def is_legacy(self) -> bool:
        return self.format is QRFormat.V1_LEGACY


def _as_uuid(value: uuid.UUID | str, exc: type[PayloadError]) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        value = str(value)
    if not isinstance(value, str) or not UUID_RE.match(value):
        raise exc(f"not a valid UUID: {value!r}")
    return uuid.UUID(value)


def encode(event_id: uuid.UUID | str, entry_id: uuid.UUID | str, token: str) -> str:
    """Build the v2 payload ``eventId:entryId:token``."""
    e = _as_uuid(event_id, InvalidIdentifier)
    a = _as_uuid(entry_id, InvalidIdentifier)
    if not token or SEP in token:
        raise InvalidIdentifier("token must be non-empty and must not contain ':'")
    return f"{e}{SEP}{a}{SEP}{token}"


def parse_payload(raw: str) -> QRPayload:
    """Parse without resolving the default event for v1-legacy payloads."""
    if not isinstance(raw, str):
        raise InvalidFormat("payload must be a string")
    if len(raw) > MAX_PAYLOAD_LENGTH:
        raise InvalidFormat(f"payload longer than {MAX_PAYLOAD_LENGTH} characters")
    parts = raw.strip().split(SEP)
    if any(not p for p in parts):
        raise InvalidFormat("empty payload segment")

    if len(parts) == 3:
        event_id, entry_id, token = parts
        return QRPayload(
            event_id=_as_uuid(event_id, InvalidFormat),
            entry_id=_as_uuid(entry_id, InvalidFormat),
            token=token,
            format=QRFormat.V2,
        )
    if len(parts) == 2:
        entry_id, token = parts
        return QRPayload(
            event_id=None,
            entry_id=_as_uuid(entry_id, InvalidFormat),
            token=token,
            format=QRFormat.V1_LEGACY,
        )
    raise InvalidFormat(f"expected 2 or 3 segments, got {len(parts)}")


def with_event(payload: QRPayload, event_id: uuid.UUID | str) -> QRPayload:
    if payload.event_id is not None:
        return payload
    return replace(payload, event_id=_as_uuid(event_id, InvalidFormat))


async def decode(raw: str, resolve_default_event: Callable[[], Awaitable[uuid.UUID]]) -> QRPayload:
    """Decode a scanned payload into a fully scoped ``QRPayload``.

    v1-legacy payloads get their event from ``resolve_default_event``; whatever
    that resolver raises propagates to the caller.
    """
    payload = parse_payload(raw)
    if payload.is_legacy:
        logger.warning("legacy QR payload scanned for entry %s", payload.entry_id)
        payload = with_event(payload, await resolve_default_event())
    return payload
