from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_staff_claims, get_client_ip, get_limiter, get_resolver
from ..core.ratelimit import RateLimiter
from ..schemas import AttendeeRead, CheckinCreate, CheckinResponse, EventRead
from ..core.outcomes import Outcome
from ..services.checkin import CheckInRequest, CheckInResult, handle_check_in
from ..services.events import DefaultEventResolver

router = APIRouter(prefix="/checkin", tags=["checkin"])

STATUS_BY_OUTCOME = {
    Outcome.SUCCESS: 200,
    Outcome.ALREADY_CHECKED_IN: 409,
    Outcome.INVALID_FORMAT: 400,
    Outcome.NOT_FOUND: 404,
    Outcome.INVALID_OR_EXPIRED: 401,
    Outcome.EXPIRED: 401,
    Outcome.RATE_LIMITED: 429,
    Outcome.ERROR: 500,
}

def to_response(result: CheckInResult) -> CheckinResponse:
    return CheckinResponse(
        success=result.success,
        already_checked_in=result.already_checked_in,
        outcome=result.outcome.value,
        message=result.message,
        attendee=AttendeeRead.model_validate(result.attendee) if result.attendee is not None else None,
        event=EventRead.model_validate(result.event) if result.event is not None else None,
        retry_after=result.retry_after,
    )

# --- Staff scans a QR (or overrides by attendee id): rate limit, redeem once, audit
@router.post("", response_model=CheckinResponse)
async def check_in(
    payload: CheckinCreate,
    request: Request,
    claims: dict = Depends(get_staff_claims),
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_limiter),
    resolver: DefaultEventResolver = Depends(get_resolver),
):
    result = await handle_check_in(
        db,
        CheckInRequest(
            qr_data=payload.qr_data,
            attendee_id=payload.attendee_id,
            scanner_device_id=payload.scanner_device_id,
        ),
        caller=get_client_ip(request),
        limiter=limiter,
        resolver=resolver,
    )
    headers = {}
    if result.outcome is Outcome.RATE_LIMITED and result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return JSONResponse(
        status_code=STATUS_BY_OUTCOME[result.outcome],
        content=to_response(result).model_dump(mode="json"),
        headers=headers,
    )
