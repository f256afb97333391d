from __future__ import annotations
import uuid
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import async_session_maker
from ..deps import get_db, get_staff_claims, get_admin_claims, get_resolver
from ..core.qrimage import render_png
from ..schemas import BulkRefreshRequest, BulkRefreshResponse, OfflineSnapshot, QRIssueRequest, QRIssueResponse
from ..services.bulk import ConfirmationRequired, NoAttendees, bulk_refresh
from ..services.events import DefaultEventMissing, DefaultEventResolver
from ..services.issuance import issue_token
from ..services.snapshot import build_offline_snapshot

router = APIRouter(prefix="/attendees", tags=["attendees"])

async def _issue_or_404(db: AsyncSession, attendee_id: uuid.UUID, event_id: uuid.UUID | None, resolver: DefaultEventResolver):
    try:
        issued = await issue_token(db, attendee_id, event_id, resolver=resolver)
    except DefaultEventMissing:
        raise HTTPException(status_code=404, detail="Default event not found")
    if issued is None:
        raise HTTPException(status_code=404, detail="Attendee not found")
    return issued

# --- 1) Issue (rotate) a token and return the payload to render/email
@router.post("/{attendee_id}/qr", response_model=QRIssueResponse)
async def issue_qr(
    attendee_id: uuid.UUID,
    body: QRIssueRequest | None = None,
    claims: dict = Depends(get_staff_claims),
    db: AsyncSession = Depends(get_db),
    resolver: DefaultEventResolver = Depends(get_resolver),
):
    issued = await _issue_or_404(db, attendee_id, body.event_id if body else None, resolver)
    return QRIssueResponse(payload=issued.payload, expires_at=issued.expires_at)

# --- 2) Same, rendered as PNG for kiosks / badge printing
@router.get("/{attendee_id}/qr.png")
async def issue_qr_png(
    attendee_id: uuid.UUID,
    event_id: uuid.UUID | None = None,
    claims: dict = Depends(get_staff_claims),
    db: AsyncSession = Depends(get_db),
    resolver: DefaultEventResolver = Depends(get_resolver),
):
    issued = await _issue_or_404(db, attendee_id, event_id, resolver)
    return Response(
        content=render_png(issued.payload),
        media_type="image/png",
        headers={"X-QR-Expires-At": issued.expires_at.isoformat()},
    )

# --- 3) Rotate every token for an event (or everyone); needs explicit confirm
@router.post("/qr/refresh-bulk", response_model=BulkRefreshResponse)
async def refresh_bulk(
    body: BulkRefreshRequest,
    claims: dict = Depends(get_admin_claims),
    resolver: DefaultEventResolver = Depends(get_resolver),
):
    try:
        result = await bulk_refresh(async_session_maker, event_id=body.event_id, confirm=body.confirm, resolver=resolver)
    except ConfirmationRequired as exc:
        raise HTTPException(status_code=400, detail={"error": "Confirmation required", "message": exc.message})
    except NoAttendees:
        raise HTTPException(status_code=404, detail="No attendees found")
    return BulkRefreshResponse(refreshed=result.refreshed, failed=result.failed, total=result.total, errors=result.errors)

# --- 4) Guest list snapshot for offline scanners
@router.get("/offline-cache", response_model=OfflineSnapshot)
async def offline_cache(
    event_id: uuid.UUID | None = None,
    claims: dict = Depends(get_staff_claims),
    db: AsyncSession = Depends(get_db),
    resolver: DefaultEventResolver = Depends(get_resolver),
):
    return await build_offline_snapshot(db, event_id, resolver=resolver)
