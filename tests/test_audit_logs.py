# tests/test_audit_logs.py

import jwt
from sqlalchemy import select, update

from src.models.models import AuditEventType, AuditLog


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def record(event_type="PATIENT_SEARCH", risk_level="MEDIUM", sensitivity_level="CONFIDENTIAL", **fields):
    body = {"eventType": event_type, "riskLevel": risk_level, "sensitivityLevel": sensitivity_level}
    body.update(fields)
    return body


async def stored_logs(session_factory, event_type=None):
    async with session_factory() as session:
        query = select(AuditLog).order_by(AuditLog.timestamp)
        if event_type is not None:
            query = query.where(AuditLog.event_type == event_type)
        return list((await session.execute(query)).scalars().all())


class TestBatchIngestion:
    async def test_batch_is_stored_with_a_bulk_operation_record(self, client, login, session_factory, alice):
        session = await login("alice@example.com")

        response = await client.post(
            "/audit-logs",
            json={"logs": [record(details={"patientId": "p-1"}), record("APPOINTMENT_VIEW", "LOW", "INTERNAL")]},
            headers=auth(session["token"]),
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Successfully saved 2 audit logs", "count": 2}

        logs = await stored_logs(session_factory)
        assert len(logs) == 3
        searches = [log for log in logs if log.event_type == AuditEventType.PATIENT_SEARCH]
        assert searches[0].patient_id == "p-1"
        assert searches[0].user_id == str(alice.id)
        assert searches[0].session_id == jwt.decode(session["token"], options={"verify_signature": False})["sid"]

        bulk = await stored_logs(session_factory, AuditEventType.BULK_OPERATION)
        assert len(bulk) == 1
        assert bulk[0].details["recordCount"] == 2
        assert bulk[0].details["operation"] == "AUDIT_LOG_BATCH_CREATE"

    async def test_one_invalid_record_rejects_the_whole_batch(self, client, login, session_factory, alice):
        session = await login("alice@example.com")
        logs = [record(), record(risk_level=None), record()]
        del logs[1]["riskLevel"]

        response = await client.post("/audit-logs", json={"logs": logs}, headers=auth(session["token"]))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["errors"] == ["Log 1: riskLevel is required"]
        assert await stored_logs(session_factory) == []

    async def test_unknown_enum_values_are_reported(self, client, login, alice):
        session = await login("alice@example.com")

        response = await client.post(
            "/audit-logs",
            json={"logs": [record(event_type="COFFEE_BREAK")]},
            headers=auth(session["token"]),
        )

        assert response.status_code == 400
        assert response.json()["errors"][0].startswith("Log 0: eventType must be one of")

    async def test_empty_and_oversized_batches(self, client, login, alice):
        session = await login("alice@example.com")

        empty = await client.post("/audit-logs", json={"logs": []}, headers=auth(session["token"]))
        oversized = await client.post(
            "/audit-logs", json={"logs": [record() for _ in range(51)]}, headers=auth(session["token"])
        )

        assert empty.status_code == 400
        assert oversized.status_code == 400
        assert "Maximum 50" in oversized.json()["error"]

    async def test_requires_authentication(self, client):
        response = await client.post("/audit-logs", json={"logs": [record()]})
        assert response.status_code == 401


class TestEncryptionAtRest:
    async def test_immediate_record_is_encrypted_and_served_decrypted(self, client, login, session_factory, bob):
        session = await login("bob@example.com")

        response = await client.post(
            "/audit-logs/immediate",
            json={"eventType": "PATIENT_SEARCH", "riskLevel": "MEDIUM", "details": {"searchQuery": "smith"}},
            headers=auth(session["token"]),
        )

        assert response.status_code == 200
        assert response.json()["logId"]

        stored = (await stored_logs(session_factory, AuditEventType.PATIENT_SEARCH))[0]
        assert stored.encrypted is True
        assert stored.user_email != "bob@example.com"
        assert stored.user_name != "Bob Adeyemi"
        assert stored.details["searchQuery"] != "smith"
        assert stored.sensitivity_level.value == "INTERNAL"

        response = await client.get(
            "/audit-logs", params={"eventType": "PATIENT_SEARCH"}, headers=auth(session["token"])
        )

        assert response.status_code == 200
        served = response.json()["logs"][0]
        assert served["userEmail"] == "bob@example.com"
        assert served["userName"] == "Bob Adeyemi"
        assert served["details"]["searchQuery"] == "smith"
        assert not any(key.startswith("_encrypted") for key in served)

    async def test_long_search_queries_are_truncated(self, client, login, bob):
        session = await login("bob@example.com")

        await client.post(
            "/audit-logs/immediate",
            json=record(details={"searchQuery": "x" * 150}),
            headers=auth(session["token"]),
        )
        response = await client.get("/audit-logs", headers=auth(session["token"]))

        assert response.json()["logs"][0]["details"]["searchQuery"] == "x" * 100 + "..."

    async def test_immediate_record_requires_event_type(self, client, login, alice):
        session = await login("alice@example.com")

        response = await client.post(
            "/audit-logs/immediate", json={"riskLevel": "HIGH"}, headers=auth(session["token"])
        )

        assert response.status_code == 400
        assert response.json()["error"] == "eventType is required"


class TestIntegrity:
    async def test_hash_detects_tampering(self, client, login, session_factory, bob):
        session = await login("bob@example.com")
        created = await client.post(
            "/audit-logs/immediate", json=record("EXPORT_DATA", "HIGH"), headers=auth(session["token"])
        )
        log_id = created.json()["logId"]

        response = await client.get(f"/audit-logs/{log_id}/integrity", headers=auth(session["token"]))
        assert response.status_code == 200
        assert response.json()["valid"] is True

        stored = (await stored_logs(session_factory, AuditEventType.EXPORT_DATA))[0]
        async with session_factory() as db:
            await db.execute(update(AuditLog).where(AuditLog.id == stored.id).values(user_role="clinic"))
            await db.commit()

        response = await client.get(f"/audit-logs/{log_id}/integrity", headers=auth(session["token"]))
        assert response.json()["valid"] is False

    async def test_unknown_log(self, client, login, bob):
        session = await login("bob@example.com")
        response = await client.get("/audit-logs/not-a-uuid/integrity", headers=auth(session["token"]))
        assert response.status_code == 404


class TestQueries:
    async def test_listing_requires_an_admin(self, client, login, alice):
        session = await login("alice@example.com")
        response = await client.get("/audit-logs", headers=auth(session["token"]))
        assert response.status_code == 403

    async def test_patient_filter_records_a_patient_view(self, client, login, session_factory, bob):
        session = await login("bob@example.com")
        await client.post(
            "/audit-logs",
            json={"logs": [record(details={"patientId": "p-9"}), record(details={"patientId": "p-1"})]},
            headers=auth(session["token"]),
        )

        response = await client.get("/audit-logs", params={"patientId": "p-9"}, headers=auth(session["token"]))

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["total"] == 1
        assert body["logs"][0]["details"]["patientId"] == "p-9"

        views = await stored_logs(session_factory, AuditEventType.PATIENT_VIEW)
        assert len(views) == 1
        assert views[0].patient_id == "p-9"
        assert views[0].user_id == str(bob.id)

    async def test_patient_trail(self, client, login, session_factory, bob):
        session = await login("bob@example.com")
        await client.post(
            "/audit-logs/immediate",
            json=record("MEDICAL_RECORD_VIEW", details={"patientId": "p-3"}),
            headers=auth(session["token"]),
        )

        response = await client.get("/audit-logs/patient/p-3", headers=auth(session["token"]))

        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert len(await stored_logs(session_factory, AuditEventType.PATIENT_VIEW)) == 1

    async def test_security_events(self, client, login, bob):
        session = await login("bob@example.com")
        for body in (record("LOGIN_FAILURE", "HIGH"), record("PERMISSION_DENIED", "HIGH"), record()):
            await client.post("/audit-logs/immediate", json=body, headers=auth(session["token"]))

        response = await client.get("/audit-logs/security", headers=auth(session["token"]))

        assert response.status_code == 200
        event_types = {log["eventType"] for log in response.json()["logs"]}
        assert event_types == {"LOGIN_FAILURE", "PERMISSION_DENIED"}

    async def test_user_trail_is_limited_to_self_for_non_admins(self, client, login, alice, bob):
        session = await login("alice@example.com")
        await client.post("/audit-logs/immediate", json=record(), headers=auth(session["token"]))

        own = await client.get(f"/audit-logs/user/{alice.id}", headers=auth(session["token"]))
        other = await client.get(f"/audit-logs/user/{bob.id}", headers=auth(session["token"]))

        assert own.status_code == 200
        assert own.json()["pagination"]["total"] == 1
        assert other.status_code == 403

    async def test_invalid_filter_value(self, client, login, bob):
        session = await login("bob@example.com")
        response = await client.get(
            "/audit-logs", params={"riskLevel": "EXTREME"}, headers=auth(session["token"])
        )
        assert response.status_code == 400
