# src/auth/dependencies.py

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.principals import ADMIN_ROLES, CLINIC_ROLE, Principal, lookup_by_id
from src.auth.token_manager import TokenError, TokenManager, get_token_manager
from src.common.database.database import get_db_session
from src.common.utils.global_messages import GlobalMessages

bearer_scheme = HTTPBearer(auto_error=False)


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=GlobalMessages.INVALID_TOKEN,
        headers={"WWW-Authenticate": "Bearer"},
    )


@dataclass
class AuthenticatedSession:
    """The caller's principal together with its verified access token."""
    principal: Principal
    token: str
    claims: dict

    @property
    def session_id(self) -> str:
        return self.claims.get("sid")


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
    tokens: TokenManager = Depends(get_token_manager),
) -> AuthenticatedSession:
    """
    Dependency resolving the bearer access token to a live principal.
    Expired, malformed and revoked tokens are indistinguishable to the client.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise credentials_exception()

    try:
        claims = tokens.verify_access(credentials.credentials)
    except TokenError:
        raise credentials_exception()

    principal = await lookup_by_id(db, claims["sub"])
    if principal is None or not principal.can_sign_in:
        raise credentials_exception()
    return AuthenticatedSession(principal=principal, token=credentials.credentials, claims=claims)


async def get_current_user(session: AuthenticatedSession = Depends(get_current_session)) -> Principal:
    return session.principal


async def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    """Allow only admin clinicians and clinic-admins."""
    if principal.role not in ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin or clinic access required")
    return principal


async def require_clinic_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    if principal.role != CLINIC_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Clinic admin access required")
    return principal
