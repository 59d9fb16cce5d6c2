# src/auth/schemas.py

from typing import Optional
from datetime import datetime

from pydantic import EmailStr, Field, field_validator

from src.common.schemas import CamelModel
from src.models.models import OTPPurpose


def _normalize_identifier(value: str) -> str:
    return value.strip().lower() if isinstance(value, str) else value


class RegisterRequest(CamelModel):
    full_name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=6)
    specialty: Optional[str] = None
    phone: Optional[str] = None
    clinic_id: Optional[str] = None

    @field_validator("email", mode="before")
    def normalize_email(cls, value):
        return _normalize_identifier(value)


class LoginRequest(CamelModel):
    # Email, or the clinic-admin username
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    def normalize_email(cls, value):
        return _normalize_identifier(value)


class OTPLoginRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=255)
    otp: str = Field(..., pattern=r"^[0-9]{6}$")

    @field_validator("email", mode="before")
    def normalize_email(cls, value):
        return _normalize_identifier(value)


class EmailRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=255)

    @field_validator("email", mode="before")
    def normalize_email(cls, value):
        return _normalize_identifier(value)


class ResetPasswordRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=255)
    otp: str = Field(..., pattern=r"^[0-9]{6}$")
    new_password: str = Field(..., min_length=6)

    @field_validator("email", mode="before")
    def normalize_email(cls, value):
        return _normalize_identifier(value)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: Optional[str] = None


class ForceLogoutRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=500)


class UserResponse(CamelModel):
    """Public principal profile."""
    id: str
    name: str
    email: str
    role: str
    kind: str
    clinic_id: Optional[str] = None
    clinic_name: Optional[str] = None
    specialty: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    username: Optional[str] = None


class OTPIssued(CamelModel):
    email: str
    expires_at: datetime
    time_remaining: int


class LoginStepOneResponse(CamelModel):
    success: bool = True
    requires_otp: bool = Field(True, alias="requiresOTP")
    message: str
    data: OTPIssued


class OTPRequestResponse(CamelModel):
    success: bool = True
    message: str
    data: OTPIssued


class TokenPairResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    token: str
    refresh_token: str
    expires_in: int


class LoginResponse(TokenPairResponse):
    user: UserResponse


class RegisterResponse(LoginResponse):
    pass


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class ForceLogoutResponse(MessageResponse):
    revoked_sessions: int


class MeResponse(CamelModel):
    success: bool = True
    user: UserResponse


class SessionInfo(CamelModel):
    user_id: str
    email: str
    role: str
    session_id: Optional[str] = None
    issued_at: datetime
    expires_at: datetime
    active_sessions: int


class SessionInfoResponse(CamelModel):
    success: bool = True
    session_info: SessionInfo


class TokenStats(CamelModel):
    blacklisted_tokens: int
    active_users: int
    total_refresh_tokens: int


class TokenStatsResponse(CamelModel):
    success: bool = True
    stats: TokenStats


# ---------------------------------------------------------------------------
# Generic OTP routes
# ---------------------------------------------------------------------------

class OTPSendRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=255)
    purpose: OTPPurpose = OTPPurpose.LOGIN

    @field_validator("email", mode="before")
    def normalize_email(cls, value):
        return _normalize_identifier(value)


class OTPVerifyRequest(OTPSendRequest):
    code: str = Field(..., pattern=r"^[0-9]{6}$")


class OTPSent(CamelModel):
    email: str
    purpose: OTPPurpose
    expires_at: datetime
    time_remaining: int


class OTPSendResponse(CamelModel):
    success: bool = True
    message: str
    data: OTPSent


class OTPVerified(CamelModel):
    email: str
    purpose: OTPPurpose
    verified_at: Optional[datetime] = None
    user: Optional[UserResponse] = None


class OTPVerifyResponse(CamelModel):
    success: bool = True
    message: str
    data: OTPVerified


# ---------------------------------------------------------------------------
# OTP administration
# ---------------------------------------------------------------------------

class OTPStatusResponse(CamelModel):
    success: bool = True
    email: str
    purpose: OTPPurpose
    has_active_otp: bool
    expires_at: Optional[datetime] = None
    time_remaining: int = 0
    attempts: int = 0
    max_attempts: Optional[int] = None
    is_valid: bool = False


class OTPCancelResponse(MessageResponse):
    cancelled_count: int


class OTPStatsResponse(CamelModel):
    success: bool = True
    stats: dict
