# src/auth/auth_service.py

import logging
import math
import time
import uuid
from typing import Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth import otp_service
from src.auth.otp_service import OTPRateLimitedError
from src.auth.principals import (
    Principal,
    PrincipalKind,
    email_in_use,
    find_record_by_id,
    hash_password,
    lookup_by_email,
    lookup_by_id,
    normalize_email,
    principal_from_record,
    verify_credentials,
)
from src.auth.token_manager import TokenError, TokenExpiredError, TokenManager, TokenPair
from src.common.config import settings
from src.common.utils import email_service
from src.common.utils.email_service import EmailDeliveryError
from src.common.utils.global_messages import GlobalMessages
from src.common.utils.request_context import RequestContext
from src.models.models import Clinic, Doctor, DoctorRole, OTPCode, OTPPurpose
from src.modules.activity_logs.activity_logger import ActivityLogger, Actor

logger = logging.getLogger(__name__)

# Purposes served by the generic /otp routes; reset codes only come from the reset flow
GENERIC_OTP_PURPOSES = (OTPPurpose.LOGIN, OTPPurpose.REGISTRATION, OTPPurpose.EMAIL_VERIFICATION)


def _forbidden_if_inactive(principal: Principal) -> None:
    if principal.kind == PrincipalKind.CLINIC_ADMIN and not principal.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=GlobalMessages.CLINIC_INACTIVE)
    if not principal.clinic_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=GlobalMessages.CLINIC_INACTIVE)
    if not principal.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=GlobalMessages.ACCOUNT_INACTIVE)


def _rate_limited(error: OTPRateLimitedError, message: str = GlobalMessages.OTP_COOLDOWN) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=message,
        headers={"Retry-After": str(error.retry_after_seconds)},
    )


def session_minutes(issued_at: Optional[int]) -> Optional[int]:
    """Minutes since a token's iat; an approximation of the session length."""
    if not issued_at:
        return None
    return max(0, math.floor((time.time() - issued_at) / 60))


async def _send_code(
    db: AsyncSession,
    email: str,
    display_name: str,
    purpose: OTPPurpose,
    context: RequestContext,
    user_id: Optional[str] = None,
    resend: bool = False,
) -> OTPCode:
    """Issue an OTP and email it; an undeliverable code is deleted."""
    # A resend is measured against the newest code of any status
    cooldown = settings.OTP_RESEND_COOLDOWN_SECONDS if resend else None
    try:
        otp = await otp_service.issue(
            db,
            email,
            purpose,
            user_id=user_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            cooldown_seconds=cooldown,
            pending_only=not resend,
        )
    except OTPRateLimitedError as e:
        raise _rate_limited(e, GlobalMessages.OTP_RESEND_COOLDOWN if resend else GlobalMessages.OTP_COOLDOWN)

    expires_minutes = otp_service.time_remaining_minutes(otp)
    try:
        if purpose == OTPPurpose.PASSWORD_RESET:
            await email_service.send_password_reset_otp(email, display_name, otp.code, expires_minutes)
        else:
            await email_service.send_otp_email(email, display_name, otp.code, purpose.value, expires_minutes)
    except EmailDeliveryError:
        await otp_service.discard(db, otp)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=GlobalMessages.OTP_SEND_FAILED)
    return otp


async def _issue_and_send(
    db: AsyncSession,
    principal: Principal,
    purpose: OTPPurpose,
    context: RequestContext,
) -> OTPCode:
    return await _send_code(db, principal.email, principal.display_name, purpose, context, user_id=principal.id)


async def register_clinician(
    db: AsyncSession,
    tokens: TokenManager,
    full_name: str,
    email: str,
    password: str,
    specialty: Optional[str] = None,
    phone: Optional[str] = None,
    clinic_id: Optional[str] = None,
) -> Tuple[Principal, TokenPair]:
    """Create a clinician account and sign it in."""
    if await email_in_use(db, email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=GlobalMessages.ACCOUNT_ALREADY_EXISTS)

    clinic_key = None
    if clinic_id:
        try:
            clinic_key = uuid.UUID(clinic_id)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid clinic id")
        if await db.get(Clinic, clinic_key) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clinic not found")

    doctor = Doctor(
        full_name=full_name.strip(),
        email=email,
        password_hash=hash_password(password),
        specialty=specialty,
        phone=phone,
        role=DoctorRole.DOCTOR,
        clinic_id=clinic_key,
    )
    db.add(doctor)
    await db.commit()
    await db.refresh(doctor, attribute_names=["clinic"])

    principal = principal_from_record(doctor)
    logger.info("Registered clinician %s", principal.id)
    return principal, tokens.generate_pair(principal)


async def login_step_one(
    db: AsyncSession,
    identifier: str,
    password: str,
    context: RequestContext,
) -> Tuple[Principal, OTPCode]:
    """Check the password, then send a login OTP to the principal's primary email."""
    principal = await lookup_by_email(db, identifier)
    if not verify_credentials(principal, password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=GlobalMessages.INVALID_CREDENTIALS,
        )
    _forbidden_if_inactive(principal)

    otp = await _issue_and_send(db, principal, OTPPurpose.LOGIN, context)
    return principal, otp


async def request_login_otp(db: AsyncSession, identifier: str, context: RequestContext) -> Tuple[Principal, OTPCode]:
    principal = await lookup_by_email(db, identifier)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=GlobalMessages.NO_ACCOUNT_FOR_EMAIL)
    _forbidden_if_inactive(principal)

    otp = await _issue_and_send(db, principal, OTPPurpose.LOGIN, context)
    return principal, otp


async def complete_otp_login(
    db: AsyncSession,
    tokens: TokenManager,
    activity_logger: ActivityLogger,
    identifier: str,
    code: str,
    context: RequestContext,
) -> Tuple[Principal, TokenPair]:
    """
    Consume a login OTP and mint a session. Shared by the second step of the
    two-step login and the single-step OTP login.
    """
    principal = await lookup_by_email(db, identifier)
    otp_email = principal.email if principal else normalize_email(identifier)

    verification = await otp_service.verify(db, otp_email, code, OTPPurpose.LOGIN)
    if not verification.ok:
        logger.info("Login OTP rejected: %s", verification.failure.value)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=GlobalMessages.OTP_INVALID)

    otp = verification.otp
    if principal is None and otp.user_id:
        principal = await lookup_by_id(db, otp.user_id)
    if principal is None:
        await otp_service.mark_used(db, otp)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=GlobalMessages.USER_NOT_FOUND)
    if not principal.can_sign_in:
        await otp_service.mark_used(db, otp)
        _forbidden_if_inactive(principal)

    await otp_service.mark_used(db, otp)
    pair = tokens.generate_pair(principal)

    await activity_logger.log_login(Actor.from_principal(principal), context, session_id=pair.session_id)
    logger.info("Principal %s logged in", principal.id)
    return principal, pair


def _require_generic_purpose(purpose: OTPPurpose) -> None:
    if purpose not in GENERIC_OTP_PURPOSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=GlobalMessages.OTP_PURPOSE_NOT_ALLOWED)


async def send_otp(
    db: AsyncSession,
    identifier: str,
    purpose: OTPPurpose,
    context: RequestContext,
    resend: bool = False,
) -> OTPCode:
    """
    Issue and email a code for the generic OTP routes.

    Login codes need an existing, active account and go to its primary
    email. Registration and email-verification codes go to the address as
    given. Resends use the shorter resend cooldown.
    """
    _require_generic_purpose(purpose)
    principal = await lookup_by_email(db, identifier)

    if purpose == OTPPurpose.LOGIN:
        if principal is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=GlobalMessages.NO_ACCOUNT_FOR_EMAIL)
        _forbidden_if_inactive(principal)
        return await _send_code(
            db, principal.email, principal.display_name, purpose, context, user_id=principal.id, resend=resend
        )

    email = normalize_email(identifier)
    display_name = principal.display_name if principal else email
    return await _send_code(db, email, display_name, purpose, context, resend=resend)


async def verify_otp(
    db: AsyncSession,
    identifier: str,
    code: str,
    purpose: OTPPurpose,
) -> Tuple[Optional[Principal], OTPCode]:
    """
    Check a code from the generic OTP routes. A login code is consumed and
    the matching principal returned; other purposes leave the code verified
    and return no principal. No session is minted here.
    """
    _require_generic_purpose(purpose)
    principal = await lookup_by_email(db, identifier) if purpose == OTPPurpose.LOGIN else None
    otp_email = principal.email if principal else normalize_email(identifier)

    verification = await otp_service.verify(db, otp_email, code, purpose)
    if not verification.ok:
        logger.info("%s OTP rejected: %s", purpose.value, verification.failure.value)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=GlobalMessages.OTP_INVALID)

    otp = verification.otp
    if purpose != OTPPurpose.LOGIN:
        return None, otp

    if principal is None and otp.user_id:
        principal = await lookup_by_id(db, otp.user_id)
    await otp_service.mark_used(db, otp)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=GlobalMessages.USER_NOT_FOUND)
    return principal, otp


async def forgot_password(db: AsyncSession, identifier: str, context: RequestContext) -> None:
    """Send a reset code when the account exists; silent otherwise."""
    principal = await lookup_by_email(db, identifier)
    if principal is None:
        return
    _forbidden_if_inactive(principal)
    await _issue_and_send(db, principal, OTPPurpose.PASSWORD_RESET, context)


async def reset_password(
    db: AsyncSession,
    tokens: TokenManager,
    activity_logger: ActivityLogger,
    identifier: str,
    code: str,
    new_password: str,
    context: RequestContext,
) -> Principal:
    principal = await lookup_by_email(db, identifier)
    invalid_code = HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=GlobalMessages.RESET_CODE_INVALID)
    if principal is None:
        raise invalid_code

    verification = await otp_service.verify(db, principal.email, code, OTPPurpose.PASSWORD_RESET)
    if not verification.ok:
        logger.info("Password reset OTP rejected: %s", verification.failure.value)
        raise invalid_code

    record = await find_record_by_id(db, principal.id)
    if record is None:
        await otp_service.mark_used(db, verification.otp)
        raise invalid_code

    # Clinic admins keep their hash in admin_password
    if isinstance(record, Clinic):
        record.admin_password = hash_password(new_password)
    else:
        record.password_hash = hash_password(new_password)
    await db.commit()

    await otp_service.mark_used(db, verification.otp)
    tokens.revoke_all_for_principal(principal.id)

    principal = principal_from_record(record)
    await activity_logger.log_password_reset(Actor.from_principal(principal), context)
    logger.info("Password reset for principal %s", principal.id)
    return principal


async def refresh_session(
    db: AsyncSession,
    tokens: TokenManager,
    activity_logger: ActivityLogger,
    refresh_token: str,
    context: RequestContext,
) -> TokenPair:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=GlobalMessages.INVALID_TOKEN,
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        claims = tokens.verify_refresh(refresh_token)
    except TokenExpiredError as e:
        # A genuine refresh token that ran out: the session ended on its own
        expired = await lookup_by_id(db, e.claims.get("sub"))
        if expired is not None:
            await activity_logger.log_session_expired(
                Actor.from_principal(expired),
                context,
                session_id=e.claims.get("sid"),
                duration_minutes=session_minutes(e.claims.get("iat")),
            )
        raise unauthorized
    except TokenError:
        raise unauthorized

    principal = await lookup_by_id(db, claims["sub"])
    if principal is None or not principal.can_sign_in:
        tokens.revoke(refresh_token)
        raise unauthorized

    try:
        return tokens.refresh(refresh_token, principal)
    except TokenError:
        raise unauthorized


async def logout(
    tokens: TokenManager,
    activity_logger: ActivityLogger,
    principal: Principal,
    access_token: str,
    access_claims: dict,
    refresh_token: Optional[str],
    context: RequestContext,
) -> None:
    """Revoke the presented access token and, when supplied, its refresh token."""
    tokens.revoke(access_token)
    if refresh_token:
        tokens.remove_refresh_token(principal.id, refresh_token)

    await activity_logger.log_logout(
        Actor.from_principal(principal),
        context,
        session_id=access_claims.get("sid"),
        duration_minutes=session_minutes(access_claims.get("iat")),
    )


async def logout_all(
    tokens: TokenManager,
    activity_logger: ActivityLogger,
    principal: Principal,
    access_claims: dict,
    context: RequestContext,
) -> int:
    revoked = tokens.revoke_all_for_principal(principal.id)
    await activity_logger.log_logout(
        Actor.from_principal(principal),
        context,
        session_id=access_claims.get("sid"),
        duration_minutes=session_minutes(access_claims.get("iat")),
    )
    return revoked


async def force_logout(
    db: AsyncSession,
    tokens: TokenManager,
    activity_logger: ActivityLogger,
    admin: Principal,
    target_id: str,
    reason: Optional[str],
    context: RequestContext,
) -> int:
    """Revoke every session of another principal on behalf of an admin."""
    target = await lookup_by_id(db, target_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=GlobalMessages.USER_NOT_FOUND)
    if admin.kind == PrincipalKind.CLINIC_ADMIN and target.clinic_id != admin.clinic_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=GlobalMessages.ACCESS_DENIED)

    revoked = tokens.revoke_all_for_principal(target.id)
    await activity_logger.log_forced_logout(
        Actor.from_principal(target),
        Actor.from_principal(admin),
        reason=reason,
        context=context,
    )
    logger.info("Principal %s forced logout of %s", admin.id, target.id)
    return revoked
