# src/auth/token_manager.py

import logging
import re
import secrets
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from src.auth.principals import Principal
from src.common.config import settings

logger = logging.getLogger(__name__)

ISSUER = "healthcare-system"
AUDIENCE = "healthcare-users"
ACCESS = "access"
REFRESH = "refresh"

DEFAULT_EXPIRY_SECONDS = 3600
_EXPIRY_PATTERN = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenExpiredError(TokenError):
    def __init__(self, claims: Optional[dict] = None):
        super().__init__("Token has expired")
        # Claims of a correctly signed token whose exp has passed
        self.claims = claims or {}


class TokenInvalidError(TokenError):
    def __init__(self, reason: str = "Token is invalid"):
        super().__init__(reason)


class TokenRevokedError(TokenError):
    def __init__(self):
        super().__init__("Token has been revoked")


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: str


def get_expiry_seconds(expiry: str) -> int:
    """Convert "15m" / "7d" style durations to seconds, 3600 when unparseable."""
    match = _EXPIRY_PATTERN.match((expiry or "").strip())
    if not match:
        return DEFAULT_EXPIRY_SECONDS
    value, unit = match.groups()
    return int(value) * _UNIT_SECONDS[unit]


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def generate_session_id() -> str:
    return secrets.token_hex(32)


class TokenManager:
    """
    Mints and verifies access/refresh pairs and keeps the process-local
    session state: a bounded refresh-token set per principal and the
    revocation set. All state is keyed by the token's jti and remembers the
    token's exp, so pruning never has to decode a token again.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_expiry: str = "15m",
        refresh_expiry: str = "7d",
        algorithm: str = "HS256",
        max_refresh_tokens: int = 5,
        rotation_enabled: bool = True,
        prune_threshold: int = 10000,
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("Access and refresh secrets are required")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh secrets must differ")

        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = get_expiry_seconds(access_expiry)
        self.refresh_ttl = get_expiry_seconds(refresh_expiry)
        self.max_refresh_tokens = max_refresh_tokens
        self.rotation_enabled = rotation_enabled
        self.prune_threshold = prune_threshold

        self._lock = threading.RLock()
        self._revoked: Dict[str, int] = {}
        self._refresh_tokens: Dict[str, "OrderedDict[str, int]"] = {}
        self._access_tokens: Dict[str, Dict[str, int]] = {}

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def _encode(self, claims: dict, secret: str) -> str:
        return jwt.encode(claims, secret, algorithm=self.algorithm)

    def _mint_access(self, principal: Principal, session_id: str, now: int) -> str:
        jti = uuid.uuid4().hex
        exp = now + self.access_ttl
        token = self._encode(
            {
                "sub": principal.id,
                "email": principal.email,
                "role": principal.role,
                "name": principal.display_name,
                "clinicId": principal.clinic_id,
                "kind": principal.kind.value,
                "sid": session_id,
                "type": ACCESS,
                "jti": jti,
                "iat": now,
                "exp": exp,
                "iss": ISSUER,
                "aud": AUDIENCE,
            },
            self._access_secret,
        )
        issued = self._access_tokens.setdefault(principal.id, {})
        for stale in [key for key, expiry in issued.items() if expiry <= now]:
            del issued[stale]
        issued[jti] = exp
        return token

    def _mint_refresh(self, principal: Principal, session_id: str, now: int) -> str:
        jti = uuid.uuid4().hex
        exp = now + self.refresh_ttl
        token = self._encode(
            {
                "sub": principal.id,
                "email": principal.email,
                "sid": session_id,
                "type": REFRESH,
                "jti": jti,
                "iat": now,
                "exp": exp,
                "iss": ISSUER,
                "aud": AUDIENCE,
            },
            self._refresh_secret,
        )
        self._store_refresh(principal.id, jti, exp)
        return token

    def _store_refresh(self, principal_id: str, jti: str, exp: int) -> None:
        tokens = self._refresh_tokens.setdefault(principal_id, OrderedDict())
        tokens[jti] = exp
        while len(tokens) > self.max_refresh_tokens:
            evicted, evicted_exp = tokens.popitem(last=False)
            self._revoke_handle(evicted, evicted_exp)
            logger.info("Evicted oldest refresh token for principal %s", principal_id)

    def generate_pair(self, principal: Principal, session_id: Optional[str] = None) -> TokenPair:
        """Mint a new access/refresh pair; session_id defaults to a fresh one."""
        session_id = session_id or generate_session_id()
        with self._lock:
            now = int(time.time())
            access = self._mint_access(principal, session_id, now)
            refresh = self._mint_refresh(principal, session_id, now)
        return TokenPair(access, refresh, self.access_ttl, session_id)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _decode(self, token: str, secret: str, expected_type: str) -> dict:
        options = {"require": ["exp", "iat", "jti", "sub", "type"]}
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=AUDIENCE,
                issuer=ISSUER,
                options=options,
            )
        except ExpiredSignatureError:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=AUDIENCE,
                issuer=ISSUER,
                options={**options, "verify_exp": False},
            )
            if claims.get("type") != expected_type:
                raise TokenInvalidError("Unexpected token type")
            raise TokenExpiredError(claims)
        except InvalidTokenError as e:
            raise TokenInvalidError(str(e)) from e

        if claims.get("type") != expected_type:
            raise TokenInvalidError("Unexpected token type")
        if self.is_revoked(claims["jti"]):
            raise TokenRevokedError()
        return claims

    def verify_access(self, token: str) -> dict:
        return self._decode(token, self._access_secret, ACCESS)

    def verify_refresh(self, token: str) -> dict:
        """Verify a refresh token and assert it is still in its principal's set."""
        claims = self._decode(token, self._refresh_secret, REFRESH)
        with self._lock:
            if claims["jti"] not in self._refresh_tokens.get(claims["sub"], {}):
                raise TokenRevokedError()
        return claims

    def is_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._revoked

    # ------------------------------------------------------------------
    # Rotation & revocation
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str, principal: Principal) -> TokenPair:
        """
        Exchange a refresh token for a new pair. With rotation enabled the
        presented refresh token is revoked; otherwise it is returned unchanged
        alongside a fresh access token.
        """
        claims = self.verify_refresh(refresh_token)
        if claims["sub"] != principal.id:
            raise TokenInvalidError("Token subject mismatch")

        session_id = claims.get("sid") or generate_session_id()
        with self._lock:
            tokens = self._refresh_tokens.get(principal.id, OrderedDict())
            # Re-checked under the lock: only one concurrent refresh may win
            if claims["jti"] not in tokens:
                raise TokenRevokedError()

            now = int(time.time())
            access = self._mint_access(principal, session_id, now)
            if not self.rotation_enabled:
                return TokenPair(access, refresh_token, self.access_ttl, session_id)

            del tokens[claims["jti"]]
            self._revoke_handle(claims["jti"], claims["exp"])
            refresh = self._mint_refresh(principal, session_id, now)
        return TokenPair(access, refresh, self.access_ttl, session_id)

    def _revoke_handle(self, jti: str, exp: int) -> None:
        self._revoked[jti] = exp
        if len(self._revoked) > self.prune_threshold:
            self.prune_revocations()

    def revoke(self, token: str) -> bool:
        """Revoke an access or refresh token. Returns False for unreadable tokens."""
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except InvalidTokenError:
            return False
        jti, exp = claims.get("jti"), claims.get("exp")
        if not jti or not exp:
            return False
        with self._lock:
            self._revoke_handle(jti, int(exp))
            if claims.get("type") == REFRESH and claims.get("sub"):
                self._refresh_tokens.get(claims["sub"], {}).pop(jti, None)
            elif claims.get("sub"):
                self._access_tokens.get(claims["sub"], {}).pop(jti, None)
        return True

    def remove_refresh_token(self, principal_id: str, refresh_token: str) -> bool:
        """Logout of one device: drop the refresh token from the set and revoke it."""
        try:
            claims = self.verify_refresh(refresh_token)
        except TokenError:
            return False
        if claims["sub"] != principal_id:
            return False
        return self.revoke(refresh_token)

    def revoke_all_for_principal(self, principal_id: str) -> int:
        """Revoke every refresh token and every outstanding access token of a principal."""
        with self._lock:
            refresh_tokens = self._refresh_tokens.pop(principal_id, OrderedDict())
            access_tokens = self._access_tokens.pop(principal_id, {})
            for jti, exp in list(refresh_tokens.items()) + list(access_tokens.items()):
                self._revoke_handle(jti, exp)
        logger.info("Revoked %s sessions for principal %s", len(refresh_tokens), principal_id)
        return len(refresh_tokens)

    def prune_revocations(self) -> int:
        """Drop revocation entries and issued-token handles whose token has expired anyway."""
        now = int(time.time())
        with self._lock:
            expired = [jti for jti, exp in self._revoked.items() if exp <= now]
            for jti in expired:
                del self._revoked[jti]
            for issued in (self._refresh_tokens, self._access_tokens):
                for principal_id, tokens in list(issued.items()):
                    for jti in [key for key, exp in tokens.items() if exp <= now]:
                        del tokens[jti]
                    if not tokens:
                        del issued[principal_id]
        if expired:
            logger.info("Pruned %s expired revocation entries", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def refresh_token_count(self, principal_id: str) -> int:
        with self._lock:
            return len(self._refresh_tokens.get(principal_id, {}))

    def token_info(self, token: str) -> Optional[dict]:
        """Unverified view of a token's identifying claims."""
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except InvalidTokenError:
            return None
        exp = claims.get("exp")
        return {
            "userId": claims.get("sub"),
            "email": claims.get("email"),
            "role": claims.get("role"),
            "type": claims.get("type"),
            "sessionId": claims.get("sid"),
            "issuedAt": claims.get("iat"),
            "expiresAt": exp,
            "isExpired": bool(exp) and exp <= time.time(),
            "isRevoked": self.is_revoked(claims.get("jti", "")),
        }

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "blacklistedTokens": len(self._revoked),
                "activeUsers": sum(1 for tokens in self._refresh_tokens.values() if tokens),
                "totalRefreshTokens": sum(len(tokens) for tokens in self._refresh_tokens.values()),
            }


token_manager = TokenManager(
    access_secret=settings.JWT_ACCESS_SECRET,
    refresh_secret=settings.JWT_REFRESH_SECRET,
    access_expiry=settings.JWT_ACCESS_EXPIRY,
    refresh_expiry=settings.JWT_REFRESH_EXPIRY,
    algorithm=settings.JWT_ALGORITHM,
    max_refresh_tokens=settings.MAX_REFRESH_TOKENS,
    rotation_enabled=settings.TOKEN_ROTATION_ENABLED,
    prune_threshold=settings.REVOCATION_PRUNE_THRESHOLD,
)


def get_token_manager() -> TokenManager:
    """FastAPI dependency returning the process-wide token manager."""
    return token_manager
