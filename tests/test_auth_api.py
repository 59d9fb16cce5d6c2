# tests/test_auth_api.py

import time
import uuid
from datetime import timedelta

import jwt
from sqlalchemy import func, select, update

from src.auth import auth_service, otp_service
from src.auth.token_manager import AUDIENCE, ISSUER
from src.common.utils.email_service import EmailDeliveryError
from src.common.utils.global_messages import GlobalMessages
from src.common.utils.request_context import RequestContext
from src.models.models import ActivityLog, ActivityType, Clinic, OTPCode, OTPPurpose, OTPStatus, utcnow
from src.modules.activity_logs.activity_logger import ActivityLogger

PASSWORD = "Passw0rd!"


def auth(token):
    return {"Authorization": f"Bearer {token}"}


async def otp_rows(session_factory, email, purpose=OTPPurpose.LOGIN):
    async with session_factory() as session:
        result = await session.execute(
            select(OTPCode).where(OTPCode.email == email, OTPCode.purpose == purpose).order_by(OTPCode.created_at)
        )
        return list(result.scalars().all())


async def activity_logs(session_factory, user_id, activity_type):
    async with session_factory() as session:
        result = await session.execute(
            select(ActivityLog).where(
                ActivityLog.user_id == str(user_id),
                ActivityLog.activity_type == activity_type,
            )
        )
        return list(result.scalars().all())


def wrong_code(code):
    return "000000" if code != "000000" else "111111"


class TestTwoStepLogin:
    async def test_login_issues_otp_then_session(self, client, mailer, session_factory, alice):
        response = await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": PASSWORD})

        assert response.status_code == 200
        body = response.json()
        assert body["requiresOTP"] is True
        assert body["data"]["email"] == "alice@example.com"
        assert body["data"]["timeRemaining"] == 10

        rows = await otp_rows(session_factory, "alice@example.com")
        assert len(rows) == 1
        code = mailer["otp"].call_args.args[2]
        assert rows[0].code == code
        assert mailer["otp"].call_args.args[0] == "alice@example.com"

        response = await client.post("/auth/login-step2", json={"email": "alice@example.com", "otp": code})

        assert response.status_code == 200
        body = response.json()
        assert body["token"]
        assert body["refreshToken"]
        assert body["expiresIn"] == 900
        assert body["user"]["email"] == "alice@example.com"
        assert body["user"]["kind"] == "clinician"
        assert "passwordHash" not in body["user"]

        rows = await otp_rows(session_factory, "alice@example.com")
        assert rows[0].status == OTPStatus.USED
        assert len(await activity_logs(session_factory, alice.id, ActivityType.LOGIN)) == 1

    async def test_email_lookup_ignores_case_and_whitespace(self, client, mailer, alice):
        response = await client.post(
            "/auth/login-step1", json={"email": "  Alice@Example.COM ", "password": PASSWORD}
        )
        assert response.status_code == 200
        assert mailer["otp"].call_args.args[0] == "alice@example.com"

    async def test_wrong_password_is_unauthorized(self, client, mailer, alice):
        response = await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": "nope-nope"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": GlobalMessages.INVALID_CREDENTIALS}
        mailer["otp"].assert_not_called()

    async def test_unknown_email_is_unauthorized(self, client, alice):
        response = await client.post("/auth/login-step1", json={"email": "ghost@example.com", "password": PASSWORD})
        assert response.status_code == 401

    async def test_inactive_clinic_is_forbidden(self, client, db, clinic, alice):
        clinic.is_active = False
        await db.commit()

        response = await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": PASSWORD})

        assert response.status_code == 403
        assert response.json()["error"] == GlobalMessages.CLINIC_INACTIVE

    async def test_second_code_within_cooldown_is_rate_limited(self, client, mailer, session_factory, alice):
        await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": PASSWORD})
        before = await otp_rows(session_factory, "alice@example.com")

        response = await client.post("/auth/request-otp", json={"email": "alice@example.com"})

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0
        after = await otp_rows(session_factory, "alice@example.com")
        assert len(after) == 1
        assert after[0].code == before[0].code
        assert after[0].status == OTPStatus.PENDING

    async def test_wrong_code_counts_an_attempt(self, client, mailer, session_factory, alice):
        await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": PASSWORD})
        code = mailer["otp"].call_args.args[2]

        response = await client.post("/auth/login-step2", json={"email": "alice@example.com", "otp": wrong_code(code)})

        assert response.status_code == 400
        assert response.json()["error"] == GlobalMessages.OTP_INVALID
        rows = await otp_rows(session_factory, "alice@example.com")
        assert rows[0].attempts == 1
        assert rows[0].status == OTPStatus.PENDING

    async def test_code_cannot_be_used_twice(self, client, mailer, alice):
        await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": PASSWORD})
        code = mailer["otp"].call_args.args[2]
        first = await client.post("/auth/login-step2", json={"email": "alice@example.com", "otp": code})
        second = await client.post("/auth/login-step2", json={"email": "alice@example.com", "otp": code})

        assert first.status_code == 200
        assert second.status_code == 400

    async def test_malformed_code_fails_validation(self, client, alice):
        response = await client.post("/auth/login-step2", json={"email": "alice@example.com", "otp": "12ab"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == GlobalMessages.VALIDATION_FAILED
        assert body["details"][0]["field"] == "otp"

    async def test_clinic_admin_signs_in_with_username(self, client, mailer, clinic):
        response = await client.post("/auth/login-step1", json={"email": "harbor-admin", "password": PASSWORD})
        assert response.status_code == 200
        assert mailer["otp"].call_args.args[0] == "amara@harbor.test"

        code = mailer["otp"].call_args.args[2]
        response = await client.post("/auth/login-step2", json={"email": "harbor-admin", "otp": code})

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["role"] == "clinic"
        assert user["kind"] == "clinic_admin"
        assert user["clinicId"] == str(clinic.id)

    async def test_undeliverable_code_is_discarded(self, client, mailer, session_factory, alice):
        mailer["otp"].side_effect = EmailDeliveryError("smtp down")

        response = await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": PASSWORD})

        assert response.status_code == 500
        assert response.json()["error"] == GlobalMessages.OTP_SEND_FAILED
        assert await otp_rows(session_factory, "alice@example.com") == []


class TestOTPLogin:
    async def test_request_otp_for_unknown_email(self, client):
        response = await client.post("/auth/request-otp", json={"email": "nobody@example.com"})
        assert response.status_code == 404

    async def test_single_step_login(self, client, mailer, session_factory, nurse):
        response = await client.post("/auth/request-otp", json={"email": "ifeoma@example.com"})
        assert response.status_code == 200
        code = mailer["otp"].call_args.args[2]

        response = await client.post("/auth/login-otp", json={"email": "ifeoma@example.com", "otp": code})

        assert response.status_code == 200
        assert response.json()["user"]["kind"] == "nurse"
        assert len(await activity_logs(session_factory, nurse.id, ActivityType.LOGIN)) == 1

    async def test_code_issued_to_a_former_address_still_signs_in(self, session_factory, tokens, alice):
        async with session_factory() as db:
            otp = await otp_service.issue(db, "moved@example.com", OTPPurpose.LOGIN, user_id=str(alice.id))
            principal, pair = await auth_service.complete_otp_login(
                db, tokens, ActivityLogger(session_factory), "  Moved@Example.com ", otp.code, RequestContext()
            )

        assert principal.id == str(alice.id)
        assert tokens.verify_access(pair.access_token)["sub"] == str(alice.id)
        assert (await otp_rows(session_factory, "moved@example.com"))[0].status == OTPStatus.USED


class TestRefresh:
    async def test_refresh_rotates_and_revokes_the_old_token(self, client, tokens, login, alice):
        session = await login("alice@example.com")
        original = session["refreshToken"]

        response = await client.post("/auth/refresh", json={"refreshToken": original})
        assert response.status_code == 200
        rotated = response.json()
        assert rotated["refreshToken"] != original
        assert tokens.is_revoked(jwt.decode(original, options={"verify_signature": False})["jti"])

        replay = await client.post("/auth/refresh", json={"refreshToken": original})
        assert replay.status_code == 401

        me = await client.get("/auth/me", headers=auth(rotated["token"]))
        assert me.status_code == 200

    async def test_rotation_keeps_the_session_id(self, client, login, alice):
        session = await login("alice@example.com")
        response = await client.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})

        def sid(token):
            return jwt.decode(token, options={"verify_signature": False})["sid"]

        assert sid(response.json()["token"]) == sid(session["token"])

    async def test_access_token_is_not_a_refresh_token(self, client, login, alice):
        session = await login("alice@example.com")

        response = await client.post("/auth/refresh", json={"refreshToken": session["token"]})
        assert response.status_code == 401

        response = await client.get("/auth/me", headers=auth(session["refreshToken"]))
        assert response.status_code == 401

    async def test_expired_refresh_records_session_expiry(self, client, session_factory, alice):
        now = int(time.time())
        expired = jwt.encode(
            {
                "sub": str(alice.id),
                "email": alice.email,
                "sid": "sess-1",
                "type": "refresh",
                "jti": uuid.uuid4().hex,
                "iat": now - 3600,
                "exp": now - 60,
                "iss": ISSUER,
                "aud": AUDIENCE,
            },
            "unit-refresh-secret-0123456789abcdef",
            algorithm="HS256",
        )

        response = await client.post("/auth/refresh", json={"refreshToken": expired})

        assert response.status_code == 401
        logs = await activity_logs(session_factory, alice.id, ActivityType.SESSION_EXPIRED)
        assert len(logs) == 1
        assert logs[0].session_id == "sess-1"
        assert logs[0].duration_minutes == 60

    async def test_missing_bearer_is_unauthorized(self, client):
        response = await client.get("/auth/me")
        assert response.status_code == 401
        assert response.json()["error"] == GlobalMessages.INVALID_TOKEN

    async def test_deactivated_clinic_ends_access(self, client, session_factory, login, alice, clinic):
        session = await login("alice@example.com")
        async with session_factory() as db:
            await db.execute(update(Clinic).where(Clinic.id == clinic.id).values(is_active=False))
            await db.commit()

        response = await client.get("/auth/me", headers=auth(session["token"]))

        assert response.status_code == 401


class TestLogout:
    async def test_logout_revokes_access_and_refresh(self, client, session_factory, login, alice):
        session = await login("alice@example.com")
        assert (await client.get("/auth/me", headers=auth(session["token"]))).status_code == 200

        response = await client.post(
            "/auth/logout",
            json={"refreshToken": session["refreshToken"]},
            headers=auth(session["token"]),
        )

        assert response.status_code == 200
        assert (await client.get("/auth/me", headers=auth(session["token"]))).status_code == 401
        refresh = await client.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert refresh.status_code == 401
        assert len(await activity_logs(session_factory, alice.id, ActivityType.LOGOUT)) == 1

    async def test_logout_accepts_refresh_token_header(self, client, login, alice):
        session = await login("alice@example.com")

        response = await client.post(
            "/auth/logout",
            headers={**auth(session["token"]), "X-Refresh-Token": session["refreshToken"]},
        )

        assert response.status_code == 200
        refresh = await client.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert refresh.status_code == 401

    async def test_logout_all_ends_every_device(self, client, tokens, login, alice):
        first = await login("alice@example.com")
        second = await login("alice@example.com")
        assert tokens.refresh_token_count(str(alice.id)) == 2

        response = await client.post("/auth/logout-all", headers=auth(second["token"]))
        assert response.status_code == 200

        for session in (first, second):
            refresh = await client.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
            assert refresh.status_code == 401
            me = await client.get("/auth/me", headers=auth(session["token"]))
            assert me.status_code == 401


class TestPasswordReset:
    async def test_unknown_email_gets_the_same_answer(self, client, mailer):
        response = await client.post("/auth/forgot-password", json={"email": "nobody@example.com"})

        assert response.status_code == 200
        assert response.json()["message"] == GlobalMessages.RESET_CODE_SENT
        mailer["reset"].assert_not_called()

    async def test_reset_changes_password_and_ends_sessions(self, client, mailer, session_factory, login, alice):
        session = await login("alice@example.com")

        response = await client.post("/auth/forgot-password", json={"email": "alice@example.com"})
        assert response.status_code == 200
        code = mailer["reset"].call_args.args[2]
        assert mailer["reset"].call_args.args[3] == 5

        response = await client.post(
            "/auth/reset-password",
            json={"email": "alice@example.com", "otp": code, "newPassword": "N3w-secret"},
        )

        assert response.status_code == 200
        assert (await client.get("/auth/me", headers=auth(session["token"]))).status_code == 401

        old = await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": PASSWORD})
        assert old.status_code == 401
        new = await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": "N3w-secret"})
        assert new.status_code == 200

        assert len(await activity_logs(session_factory, alice.id, ActivityType.PASSWORD_RESET)) == 1
        rows = await otp_rows(session_factory, "alice@example.com", OTPPurpose.PASSWORD_RESET)
        assert rows[0].status == OTPStatus.USED

    async def test_reset_with_wrong_code(self, client, mailer, alice):
        await client.post("/auth/forgot-password", json={"email": "alice@example.com"})
        code = mailer["reset"].call_args.args[2]

        response = await client.post(
            "/auth/reset-password",
            json={"email": "alice@example.com", "otp": wrong_code(code), "newPassword": "N3w-secret"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == GlobalMessages.RESET_CODE_INVALID

    async def test_clinic_admin_reset_updates_admin_password(self, client, mailer, clinic):
        await client.post("/auth/forgot-password", json={"email": "amara@harbor.test"})
        code = mailer["reset"].call_args.args[2]

        response = await client.post(
            "/auth/reset-password",
            json={"email": "amara@harbor.test", "otp": code, "newPassword": "Clinic-2026"},
        )

        assert response.status_code == 200
        login = await client.post("/auth/login-step1", json={"email": "harbor-admin", "password": "Clinic-2026"})
        assert login.status_code == 200

    async def test_expired_code_is_rejected(self, client, mailer, session_factory, alice):
        await client.post("/auth/forgot-password", json={"email": "alice@example.com"})
        code = mailer["reset"].call_args.args[2]
        async with session_factory() as session:
            await session.execute(
                update(OTPCode)
                .where(OTPCode.email == "alice@example.com")
                .values(expires_at=utcnow() - timedelta(seconds=1))
            )
            await session.commit()

        response = await client.post(
            "/auth/reset-password",
            json={"email": "alice@example.com", "otp": code, "newPassword": "N3w-secret"},
        )

        assert response.status_code == 400
        rows = await otp_rows(session_factory, "alice@example.com", OTPPurpose.PASSWORD_RESET)
        assert rows[0].status == OTPStatus.EXPIRED


class TestRegister:
    async def test_register_creates_a_signed_in_clinician(self, client):
        response = await client.post(
            "/auth/register",
            json={"fullName": "Kemi Adisa", "email": "Kemi@Example.com", "password": "secret1", "specialty": "Dermatology"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["token"]
        assert body["user"]["email"] == "kemi@example.com"
        assert body["user"]["role"] == "doctor"
        assert body["user"]["clinicId"] is None

        me = await client.get("/auth/me", headers=auth(body["token"]))
        assert me.status_code == 200
        assert me.json()["user"]["specialty"] == "Dermatology"

    async def test_email_must_be_unique_across_stores(self, client, nurse):
        response = await client.post(
            "/auth/register",
            json={"fullName": "Copy Cat", "email": "ifeoma@example.com", "password": "secret1"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == GlobalMessages.ACCOUNT_ALREADY_EXISTS

    async def test_short_password_fails_validation(self, client):
        response = await client.post(
            "/auth/register",
            json={"fullName": "Kemi Adisa", "email": "kemi@example.com", "password": "123"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == GlobalMessages.VALIDATION_FAILED
        assert body["details"][0]["field"] == "password"


class TestAdministration:
    async def test_force_logout(self, client, session_factory, login, alice, bob):
        admin = await login("bob@example.com")
        target = await login("alice@example.com")

        response = await client.post(
            f"/auth/force-logout/{alice.id}",
            json={"reason": "Lost device"},
            headers=auth(admin["token"]),
        )

        assert response.status_code == 200
        assert response.json()["revokedSessions"] == 1
        assert (await client.get("/auth/me", headers=auth(target["token"]))).status_code == 401

        logs = await activity_logs(session_factory, bob.id, ActivityType.FORCED_LOGOUT)
        assert len(logs) == 1
        assert logs[0].target_entity_id == str(alice.id)
        assert "Lost device" in logs[0].notes

    async def test_force_logout_requires_admin(self, client, login, alice, bob):
        session = await login("alice@example.com")

        response = await client.post(f"/auth/force-logout/{bob.id}", headers=auth(session["token"]))

        assert response.status_code == 403

    async def test_session_info(self, client, login, alice):
        session = await login("alice@example.com")

        response = await client.get("/auth/session-info", headers=auth(session["token"]))

        assert response.status_code == 200
        info = response.json()["sessionInfo"]
        claims = jwt.decode(session["token"], options={"verify_signature": False})
        assert info["sessionId"] == claims["sid"]
        assert info["activeSessions"] == 1
        assert info["userId"] == str(alice.id)

    async def test_token_stats(self, client, login, bob):
        session = await login("bob@example.com")

        response = await client.get("/auth/stats", headers=auth(session["token"]))

        assert response.status_code == 200
        assert response.json()["stats"] == {"blacklistedTokens": 0, "activeUsers": 1, "totalRefreshTokens": 1}

    async def test_otp_status_cancel_and_stats(self, client, mailer, login, alice, bob):
        admin = await login("bob@example.com")
        await client.post("/auth/login-step1", json={"email": "alice@example.com", "password": PASSWORD})

        status_response = await client.get(
            "/otp/status", params={"email": "alice@example.com", "purpose": "login"}, headers=auth(admin["token"])
        )
        body = status_response.json()
        assert body["hasActiveOtp"] is True
        assert body["attempts"] == 0
        assert body["maxAttempts"] == 5
        assert body["isValid"] is True
        assert "code" not in body

        cancel = await client.delete("/otp/cancel", params={"email": "alice@example.com"}, headers=auth(admin["token"]))
        assert cancel.json()["cancelledCount"] == 1

        status_response = await client.get(
            "/otp/status", params={"email": "alice@example.com"}, headers=auth(admin["token"])
        )
        assert status_response.json()["hasActiveOtp"] is False

        stats = (await client.get("/otp/stats", headers=auth(admin["token"]))).json()["stats"]
        assert stats["total"] == 2
        assert stats["byStatus"]["used"] == 1
        assert stats["byStatus"]["expired"] == 1
        assert stats["byPurpose"]["login"] == 2


class TestGenericOTP:
    async def test_login_code_requires_an_account(self, client):
        response = await client.post("/otp/send", json={"email": "ghost@example.com"})

        assert response.status_code == 404
        assert response.json()["error"] == GlobalMessages.NO_ACCOUNT_FOR_EMAIL

    async def test_login_code_is_consumed_on_verify(self, client, mailer, session_factory, alice):
        response = await client.post("/otp/send", json={"email": "Alice@Example.com", "purpose": "login"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == "alice@example.com"
        assert data["purpose"] == "login"
        assert data["timeRemaining"] == 10
        code = mailer["otp"].call_args.args[2]
        assert mailer["otp"].call_args.args[3] == "login"

        response = await client.post("/otp/verify", json={"email": "alice@example.com", "code": code})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == GlobalMessages.OTP_VERIFIED
        assert body["data"]["user"]["id"] == str(alice.id)
        assert "token" not in body
        assert (await otp_rows(session_factory, "alice@example.com"))[0].status == OTPStatus.USED

    async def test_registration_code_for_a_new_address(self, client, mailer, session_factory):
        response = await client.post("/otp/send", json={"email": "new@example.com", "purpose": "registration"})
        assert response.status_code == 200
        recipient, display_name, code = mailer["otp"].call_args.args[:3]
        assert recipient == display_name == "new@example.com"

        wrong = await client.post(
            "/otp/verify", json={"email": "new@example.com", "code": wrong_code(code), "purpose": "registration"}
        )
        assert wrong.status_code == 400
        assert wrong.json()["error"] == GlobalMessages.OTP_INVALID

        response = await client.post(
            "/otp/verify", json={"email": "new@example.com", "code": code, "purpose": "registration"}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["purpose"] == "registration"
        assert data["user"] is None
        assert data["verifiedAt"]
        rows = await otp_rows(session_factory, "new@example.com", OTPPurpose.REGISTRATION)
        assert rows[0].status == OTPStatus.VERIFIED
        assert rows[0].attempts == 2

    async def test_reset_codes_are_not_served(self, client, mailer, alice):
        response = await client.post("/otp/send", json={"email": "alice@example.com", "purpose": "password_reset"})

        assert response.status_code == 400
        assert response.json()["error"] == GlobalMessages.OTP_PURPOSE_NOT_ALLOWED
        mailer["reset"].assert_not_called()

    async def test_send_respects_the_issue_cooldown(self, client, mailer):
        body = {"email": "verify-me@example.com", "purpose": "email_verification"}
        assert (await client.post("/otp/send", json=body)).status_code == 200

        response = await client.post("/otp/send", json=body)

        assert response.status_code == 429
        assert response.json()["error"] == GlobalMessages.OTP_COOLDOWN

    async def test_resend_has_a_shorter_cooldown(self, client, mailer, session_factory):
        body = {"email": "verify-me@example.com", "purpose": "email_verification"}
        assert (await client.post("/otp/send", json=body)).status_code == 200

        too_soon = await client.post("/otp/resend", json=body)
        assert too_soon.status_code == 429
        assert too_soon.json()["error"] == GlobalMessages.OTP_RESEND_COOLDOWN
        assert int(too_soon.headers["Retry-After"]) <= 30

        first = (await otp_rows(session_factory, "verify-me@example.com", OTPPurpose.EMAIL_VERIFICATION))[0]
        async with session_factory() as session:
            await session.execute(
                update(OTPCode)
                .where(OTPCode.id == first.id)
                .values(created_at=first.created_at - timedelta(seconds=40))
            )
            await session.commit()

        response = await client.post("/otp/resend", json=body)

        assert response.status_code == 200
        assert response.json()["message"] == GlobalMessages.OTP_RESENT
        rows = await otp_rows(session_factory, "verify-me@example.com", OTPPurpose.EMAIL_VERIFICATION)
        assert [row.status for row in rows] == [OTPStatus.EXPIRED, OTPStatus.PENDING]
