# src/auth/otp_controller.py

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth import auth_service, otp_service, schemas
from src.auth.dependencies import require_admin
from src.auth.principals import Principal, normalize_email
from src.common.database.database import get_db_session
from src.common.utils.global_messages import GlobalMessages
from src.common.utils.request_context import RequestContext, get_request_context
from src.models.models import OTPCode, OTPPurpose, utcnow

router = APIRouter(prefix="/otp", tags=["otp"])


@router.get("/status", response_model=schemas.OTPStatusResponse)
async def get_otp_status(
    email: str = Query(..., min_length=1),
    purpose: OTPPurpose = Query(OTPPurpose.LOGIN),
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_admin),
):
    """Newest pending code for an email and purpose, without revealing the code."""
    email = normalize_email(email)
    otp = await otp_service.get_status(db, email, purpose)
    if otp is None:
        return schemas.OTPStatusResponse(email=email, purpose=purpose, has_active_otp=False)

    remaining = otp_service.time_remaining_minutes(otp, utcnow())
    return schemas.OTPStatusResponse(
        email=email,
        purpose=purpose,
        has_active_otp=True,
        expires_at=otp.expires_at,
        time_remaining=remaining,
        attempts=otp.attempts,
        max_attempts=otp.max_attempts,
        is_valid=remaining > 0 and otp.attempts < otp.max_attempts,
    )


@router.delete("/cancel", response_model=schemas.OTPCancelResponse)
async def cancel_otp(
    email: str = Query(..., min_length=1),
    purpose: Optional[OTPPurpose] = Query(None),
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_admin),
):
    """Expire pending codes for an email, optionally for one purpose only."""
    count = await otp_service.cancel_pending(db, normalize_email(email), purpose)
    return schemas.OTPCancelResponse(message=GlobalMessages.OTP_CANCELLED, cancelled_count=count)


@router.get("/stats", response_model=schemas.OTPStatsResponse)
async def get_otp_stats(
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_admin),
):
    return schemas.OTPStatsResponse(stats=await otp_service.get_stats(db))


def sent_to_response(otp: OTPCode, message: str) -> schemas.OTPSendResponse:
    return schemas.OTPSendResponse(
        message=message,
        data=schemas.OTPSent(
            email=otp.email,
            purpose=otp.purpose,
            expires_at=otp.expires_at,
            time_remaining=otp_service.time_remaining_minutes(otp),
        ),
    )


@router.post("/send", response_model=schemas.OTPSendResponse)
async def send_otp(
    request: schemas.OTPSendRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
):
    """
    Email a one-time code.

    - **email**: Recipient; for login codes it must belong to an account
    - **purpose**: login (default), registration or email_verification
    """
    otp = await auth_service.send_otp(db, request.email, request.purpose, context)
    return sent_to_response(otp, GlobalMessages.OTP_DELIVERED)


@router.post("/resend", response_model=schemas.OTPSendResponse)
async def resend_otp(
    request: schemas.OTPSendRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
):
    """Replace the current code with a new one, at most once every 30 seconds."""
    otp = await auth_service.send_otp(db, request.email, request.purpose, context, resend=True)
    return sent_to_response(otp, GlobalMessages.OTP_RESENT)


@router.post("/verify", response_model=schemas.OTPVerifyResponse)
async def verify_otp(
    request: schemas.OTPVerifyRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Check a code; login codes are consumed and return the account they belong to."""
    principal, otp = await auth_service.verify_otp(db, request.email, request.code, request.purpose)
    return schemas.OTPVerifyResponse(
        message=GlobalMessages.OTP_VERIFIED,
        data=schemas.OTPVerified(
            email=otp.email,
            purpose=otp.purpose,
            verified_at=otp.verified_at,
            user=schemas.UserResponse(**principal.profile()) if principal else None,
        ),
    )
