from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)
_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, allow_reconnect=False, connect_timeout=2)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception:
        logger.debug("nats drain failed", exc_info=True)

async def publish_checkin(evt: dict):
    """
    evt = {
      "event_id": str,
      "attendee_id": str,
      "checked_in_at": iso8601,
      "method": "qr" | "manual",
      "device_id": str | None,
      "idempotency_key": "event_id:attendee_id"
    }
    """
    if not _settings.nats_enabled:
        return
    await nats_connect()
    await _nats.publish(_settings.nats_subject_checkin, json.dumps(evt).encode("utf-8"))
