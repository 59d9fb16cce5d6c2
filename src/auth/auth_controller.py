# src/auth/auth_controller.py

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth import auth_service, otp_service, schemas
from src.auth.dependencies import AuthenticatedSession, get_current_session, get_current_user, require_admin
from src.auth.principals import Principal
from src.auth.token_manager import TokenManager, TokenPair, get_token_manager
from src.common.database.database import get_db_session
from src.common.utils.global_messages import GlobalMessages
from src.common.utils.request_context import RequestContext, get_request_context
from src.models.models import OTPCode
from src.modules.activity_logs.activity_logger import ActivityLogger, get_activity_logger

router = APIRouter(prefix="/auth", tags=["auth"])


def user_to_response(principal: Principal) -> schemas.UserResponse:
    """Convert a Principal to the public UserResponse schema."""
    return schemas.UserResponse(**principal.profile())


def otp_to_response(otp: OTPCode) -> schemas.OTPIssued:
    return schemas.OTPIssued(
        email=otp.email,
        expires_at=otp.expires_at,
        time_remaining=otp_service.time_remaining_minutes(otp),
    )


def pair_to_response(principal: Principal, pair: TokenPair, message: str) -> schemas.LoginResponse:
    return schemas.LoginResponse(
        message=message,
        token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        user=user_to_response(principal),
    )


@router.post("/register", response_model=schemas.RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: schemas.RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
    tokens: TokenManager = Depends(get_token_manager),
):
    """
    Register a clinician account.

    - **fullName**: Clinician's full name
    - **email**: Email address, unique across clinicians, nurses and clinic admins
    - **password**: Password (minimum 6 characters)
    - **specialty**, **phone**, **clinicId**: optional
    """
    principal, pair = await auth_service.register_clinician(
        db,
        tokens,
        full_name=request.full_name,
        email=request.email,
        password=request.password,
        specialty=request.specialty,
        phone=request.phone,
        clinic_id=request.clinic_id,
    )
    return pair_to_response(principal, pair, GlobalMessages.ACCOUNT_CREATED)


@router.post("/login-step1", response_model=schemas.LoginStepOneResponse)
async def login_step_one(
    credentials: schemas.LoginRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
):
    """
    First login step: check the password and email a one-time code.

    - **email**: Email address (clinic admins may use their username)
    - **password**: Account password
    """
    _, otp = await auth_service.login_step_one(db, credentials.email, credentials.password, context)
    return schemas.LoginStepOneResponse(message=GlobalMessages.OTP_SENT, data=otp_to_response(otp))


@router.post("/login-step2", response_model=schemas.LoginResponse)
async def login_step_two(
    request: schemas.OTPLoginRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    tokens: TokenManager = Depends(get_token_manager),
    activity_logger: ActivityLogger = Depends(get_activity_logger),
):
    """Second login step: exchange the emailed code for a session."""
    principal, pair = await auth_service.complete_otp_login(
        db, tokens, activity_logger, request.email, request.otp, context
    )
    return pair_to_response(principal, pair, GlobalMessages.LOGIN_SUCCESS)


@router.post("/request-otp", response_model=schemas.OTPRequestResponse)
async def request_otp(
    request: schemas.EmailRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
):
    """Email a login code without a password check."""
    _, otp = await auth_service.request_login_otp(db, request.email, context)
    return schemas.OTPRequestResponse(message=GlobalMessages.OTP_SENT, data=otp_to_response(otp))


@router.post("/login-otp", response_model=schemas.LoginResponse)
async def login_with_otp(
    request: schemas.OTPLoginRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    tokens: TokenManager = Depends(get_token_manager),
    activity_logger: ActivityLogger = Depends(get_activity_logger),
):
    """Single-step login with a code from /request-otp."""
    principal, pair = await auth_service.complete_otp_login(
        db, tokens, activity_logger, request.email, request.otp, context
    )
    return pair_to_response(principal, pair, GlobalMessages.LOGIN_SUCCESS)


@router.post("/forgot-password", response_model=schemas.MessageResponse)
async def forgot_password(
    request: schemas.EmailRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
):
    """Email a password reset code. The response never reveals whether the account exists."""
    await auth_service.forgot_password(db, request.email, context)
    return schemas.MessageResponse(message=GlobalMessages.RESET_CODE_SENT)


@router.post("/reset-password", response_model=schemas.MessageResponse)
async def reset_password(
    request: schemas.ResetPasswordRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    tokens: TokenManager = Depends(get_token_manager),
    activity_logger: ActivityLogger = Depends(get_activity_logger),
):
    """Set a new password with a reset code. Existing sessions are revoked."""
    await auth_service.reset_password(
        db, tokens, activity_logger, request.email, request.otp, request.new_password, context
    )
    return schemas.MessageResponse(message=GlobalMessages.PASSWORD_RESET_SUCCESS)


@router.post("/refresh", response_model=schemas.TokenPairResponse)
async def refresh(
    request: schemas.RefreshRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    tokens: TokenManager = Depends(get_token_manager),
    activity_logger: ActivityLogger = Depends(get_activity_logger),
):
    pair = await auth_service.refresh_session(db, tokens, activity_logger, request.refresh_token, context)
    return schemas.TokenPairResponse(
        message=GlobalMessages.TOKEN_REFRESHED,
        token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


@router.post("/logout", response_model=schemas.MessageResponse)
async def logout(
    payload: Optional[schemas.LogoutRequest] = Body(None),
    x_refresh_token: Optional[str] = Header(None),
    session: AuthenticatedSession = Depends(get_current_session),
    context: RequestContext = Depends(get_request_context),
    tokens: TokenManager = Depends(get_token_manager),
    activity_logger: ActivityLogger = Depends(get_activity_logger),
):
    """Revoke the current access token and, when given (body or X-Refresh-Token), its refresh token."""
    refresh_token = (payload.refresh_token if payload else None) or x_refresh_token
    await auth_service.logout(
        tokens, activity_logger, session.principal, session.token, session.claims, refresh_token, context
    )
    return schemas.MessageResponse(message=GlobalMessages.LOGOUT_SUCCESS)


@router.post("/logout-all", response_model=schemas.MessageResponse)
async def logout_all(
    session: AuthenticatedSession = Depends(get_current_session),
    context: RequestContext = Depends(get_request_context),
    tokens: TokenManager = Depends(get_token_manager),
    activity_logger: ActivityLogger = Depends(get_activity_logger),
):
    await auth_service.logout_all(tokens, activity_logger, session.principal, session.claims, context)
    return schemas.MessageResponse(message=GlobalMessages.LOGOUT_ALL_SUCCESS)


@router.post("/force-logout/{user_id}", response_model=schemas.ForceLogoutResponse)
async def force_logout(
    user_id: str,
    payload: Optional[schemas.ForceLogoutRequest] = Body(None),
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    tokens: TokenManager = Depends(get_token_manager),
    activity_logger: ActivityLogger = Depends(get_activity_logger),
    current_user: Principal = Depends(require_admin),
):
    """Admin action: end every session of another user."""
    revoked = await auth_service.force_logout(
        db, tokens, activity_logger, current_user, user_id, payload.reason if payload else None, context
    )
    return schemas.ForceLogoutResponse(message=GlobalMessages.FORCE_LOGOUT_SUCCESS, revoked_sessions=revoked)


@router.get("/me", response_model=schemas.MeResponse)
async def get_me(current_user: Principal = Depends(get_current_user)):
    """Profile of the signed-in principal, without credentials."""
    return schemas.MeResponse(user=user_to_response(current_user))


@router.get("/session-info", response_model=schemas.SessionInfoResponse)
async def get_session_info(
    session: AuthenticatedSession = Depends(get_current_session),
    tokens: TokenManager = Depends(get_token_manager),
):
    claims = session.claims
    return schemas.SessionInfoResponse(
        session_info=schemas.SessionInfo(
            user_id=session.principal.id,
            email=session.principal.email,
            role=session.principal.role,
            session_id=claims.get("sid"),
            issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            active_sessions=tokens.refresh_token_count(session.principal.id),
        )
    )


@router.get("/stats", response_model=schemas.TokenStatsResponse)
async def get_token_stats(
    current_user: Principal = Depends(require_admin),
    tokens: TokenManager = Depends(get_token_manager),
):
    """Token system counters (admin and clinic admin only)."""
    return schemas.TokenStatsResponse(stats=tokens.get_stats())
