# tests/test_token_manager.py

import time

import jwt
import pytest

from src.auth.principals import Principal, PrincipalKind
from src.auth.token_manager import (
    AUDIENCE,
    ISSUER,
    TokenExpiredError,
    TokenInvalidError,
    TokenManager,
    TokenRevokedError,
    extract_bearer,
    get_expiry_seconds,
)


ACCESS_SECRET = "access-secret-for-token-manager-tests"
REFRESH_SECRET = "refresh-secret-for-token-manager-tests"


def make_principal(principal_id="p-1", role="doctor"):
    return Principal(
        id=principal_id,
        kind=PrincipalKind.CLINICIAN,
        email=f"{principal_id}@example.com",
        display_name="Test Clinician",
        role=role,
        password_hash="x",
        is_active=True,
        clinic_id="c-1",
        clinic_name="Clinic",
    )


@pytest.fixture
def manager():
    return TokenManager(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, max_refresh_tokens=3)


class TestExpiryParsing:
    @pytest.mark.parametrize(
        "value,expected",
        [("15m", 900), ("7d", 604800), ("30s", 30), ("2h", 7200), ("", 3600), ("soon", 3600), (None, 3600)],
    )
    def test_get_expiry_seconds(self, value, expected):
        assert get_expiry_seconds(value) == expected

    def test_extract_bearer(self):
        assert extract_bearer("Bearer abc") == "abc"
        assert extract_bearer("Basic abc") is None
        assert extract_bearer("Bearer ") is None
        assert extract_bearer(None) is None


class TestConstruction:
    def test_secrets_must_differ(self):
        with pytest.raises(ValueError):
            TokenManager(access_secret="same", refresh_secret="same")

    def test_secrets_are_required(self):
        with pytest.raises(ValueError):
            TokenManager(access_secret="", refresh_secret="refresh")


class TestGeneratePair:
    def test_claims(self, manager):
        principal = make_principal()
        pair = manager.generate_pair(principal)

        claims = manager.verify_access(pair.access_token)
        assert claims["sub"] == "p-1"
        assert claims["role"] == "doctor"
        assert claims["clinicId"] == "c-1"
        assert claims["type"] == "access"
        assert claims["iss"] == ISSUER
        assert claims["aud"] == AUDIENCE
        assert claims["sid"] == pair.session_id
        assert claims["exp"] - claims["iat"] == 900
        assert pair.expires_in == 900

        refresh_claims = manager.verify_refresh(pair.refresh_token)
        assert refresh_claims["type"] == "refresh"
        assert refresh_claims["sid"] == pair.session_id
        assert len(pair.session_id) == 64

    def test_each_token_has_its_own_jti(self, manager):
        principal = make_principal()
        first = manager.generate_pair(principal)
        second = manager.generate_pair(principal)

        jtis = {
            jwt.decode(token, options={"verify_signature": False})["jti"]
            for token in (first.access_token, first.refresh_token, second.access_token, second.refresh_token)
        }
        assert len(jtis) == 4

    def test_refresh_set_is_bounded_and_evicts_oldest(self, manager):
        principal = make_principal()
        pairs = [manager.generate_pair(principal) for _ in range(4)]

        assert manager.refresh_token_count("p-1") == 3
        with pytest.raises(TokenRevokedError):
            manager.verify_refresh(pairs[0].refresh_token)
        for pair in pairs[1:]:
            manager.verify_refresh(pair.refresh_token)


class TestVerification:
    def test_types_are_not_interchangeable(self, manager):
        pair = manager.generate_pair(make_principal())

        with pytest.raises(TokenInvalidError):
            manager.verify_access(pair.refresh_token)
        with pytest.raises(TokenInvalidError):
            manager.verify_refresh(pair.access_token)

    def test_tampered_token(self, manager):
        pair = manager.generate_pair(make_principal())
        with pytest.raises(TokenInvalidError):
            manager.verify_access(pair.access_token[:-2] + "xx")

    def test_expired_token_carries_claims(self, manager):
        now = int(time.time())
        token = jwt.encode(
            {
                "sub": "p-1",
                "type": "access",
                "jti": "old",
                "sid": "s-1",
                "iat": now - 120,
                "exp": now - 60,
                "iss": ISSUER,
                "aud": AUDIENCE,
            },
            ACCESS_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(TokenExpiredError) as exc_info:
            manager.verify_access(token)
        assert exc_info.value.claims["sid"] == "s-1"

    def test_revoked_token_fails(self, manager):
        pair = manager.generate_pair(make_principal())
        assert manager.revoke(pair.access_token) is True

        with pytest.raises(TokenRevokedError):
            manager.verify_access(pair.access_token)

    def test_revoke_unreadable_token(self, manager):
        assert manager.revoke("not-a-token") is False


class TestRefresh:
    def test_rotation(self, manager):
        principal = make_principal()
        pair = manager.generate_pair(principal)

        rotated = manager.refresh(pair.refresh_token, principal)

        assert rotated.refresh_token != pair.refresh_token
        assert rotated.session_id == pair.session_id
        with pytest.raises(TokenRevokedError):
            manager.refresh(pair.refresh_token, principal)
        assert manager.refresh_token_count("p-1") == 1

    def test_without_rotation_the_refresh_token_is_reused(self):
        manager = TokenManager(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, rotation_enabled=False)
        principal = make_principal()
        pair = manager.generate_pair(principal)

        refreshed = manager.refresh(pair.refresh_token, principal)

        assert refreshed.refresh_token == pair.refresh_token
        assert refreshed.access_token != pair.access_token
        manager.verify_refresh(pair.refresh_token)

    def test_subject_mismatch(self, manager):
        pair = manager.generate_pair(make_principal("p-1"))
        with pytest.raises(TokenInvalidError):
            manager.refresh(pair.refresh_token, make_principal("p-2"))


class TestRevocation:
    def test_revoke_all_covers_access_and_refresh(self, manager):
        principal = make_principal()
        pairs = [manager.generate_pair(principal) for _ in range(2)]

        assert manager.revoke_all_for_principal("p-1") == 2

        for pair in pairs:
            with pytest.raises(TokenRevokedError):
                manager.verify_access(pair.access_token)
            with pytest.raises(TokenRevokedError):
                manager.verify_refresh(pair.refresh_token)
        assert manager.refresh_token_count("p-1") == 0

    def test_remove_refresh_token_for_another_principal(self, manager):
        pair = manager.generate_pair(make_principal("p-1"))
        assert manager.remove_refresh_token("p-2", pair.refresh_token) is False
        manager.verify_refresh(pair.refresh_token)

    def test_prune_drops_only_expired_entries(self, manager):
        now = int(time.time())
        manager._revoked.update({"gone": now - 10, "live": now + 600})

        assert manager.prune_revocations() == 1
        assert manager.is_revoked("live")
        assert not manager.is_revoked("gone")

    def test_prune_forgets_expired_handles_of_idle_principals(self, manager):
        manager.generate_pair(make_principal("idle"))
        live = manager.generate_pair(make_principal("busy"))
        for issued in (manager._access_tokens, manager._refresh_tokens):
            for jti in issued["idle"]:
                issued["idle"][jti] = int(time.time()) - 10

        manager.prune_revocations()

        assert "idle" not in manager._access_tokens
        assert "idle" not in manager._refresh_tokens
        assert len(manager._access_tokens["busy"]) == 1
        manager.verify_refresh(live.refresh_token)

    def test_threshold_triggers_pruning(self):
        manager = TokenManager(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, prune_threshold=2)
        now = int(time.time())
        manager._revoked.update({"x": now - 5, "y": now - 5})

        pair = manager.generate_pair(make_principal())
        manager.revoke(pair.access_token)

        assert manager.get_stats()["blacklistedTokens"] == 1


class TestIntrospection:
    def test_token_info(self, manager):
        pair = manager.generate_pair(make_principal())
        info = manager.token_info(pair.access_token)

        assert info["userId"] == "p-1"
        assert info["type"] == "access"
        assert info["sessionId"] == pair.session_id
        assert info["isExpired"] is False
        assert info["isRevoked"] is False
        assert manager.token_info("garbage") is None

    def test_stats(self, manager):
        manager.generate_pair(make_principal("p-1"))
        manager.generate_pair(make_principal("p-1"))
        manager.generate_pair(make_principal("p-2"))

        assert manager.get_stats() == {"blacklistedTokens": 0, "activeUsers": 2, "totalRefreshTokens": 3}
