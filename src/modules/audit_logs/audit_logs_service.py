# Audit Logs Service

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, HTTPException, status
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from src.auth.principals import Principal
from src.common.database.database import get_session_factory
from src.common.utils.encryption import FieldEncryptor, generate_hash, get_field_encryptor, verify_hash
from src.common.utils.request_context import UNKNOWN, RequestContext
from src.models.models import AuditEventType, AuditLog, RiskLevel, SensitivityLevel, as_utc, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
SEARCH_QUERY_MAX_LENGTH = 100

SECURITY_EVENT_TYPES = (
    AuditEventType.UNAUTHORIZED_ACCESS,
    AuditEventType.PERMISSION_DENIED,
    AuditEventType.SUSPICIOUS_ACTIVITY,
    AuditEventType.LOGIN_FAILURE,
)

REQUIRED_ENUM_FIELDS = (
    ("eventType", AuditEventType),
    ("riskLevel", RiskLevel),
    ("sensitivityLevel", SensitivityLevel),
)


@dataclass
class AuditActor:
    """Server-side identity stamped onto every ingested record."""
    principal: Principal
    context: RequestContext
    session_id: Optional[str] = None

    def stamp(self, document: Dict[str, Any]) -> Dict[str, Any]:
        stamped = dict(document)
        stamped.update(
            userId=self.principal.id,
            userEmail=self.principal.email,
            userRole=self.principal.role,
            userName=self.principal.display_name,
            ipAddress=self.context.ip_address,
            timestamp=utcnow().isoformat(),
        )
        stamped["sessionId"] = document.get("sessionId") or self.context.session_id or self.session_id or UNKNOWN
        stamped["userAgent"] = document.get("userAgent") or self.context.user_agent
        stamped["url"] = document.get("url") or self.context.url
        return stamped


def validate_record(index: int, record: Any, require_sensitivity: bool = True) -> Optional[str]:
    """First validation failure of one submitted record, prefixed with its batch index."""
    prefix = f"Log {index}: " if index is not None else ""
    if not isinstance(record, dict):
        return f"{prefix}must be an object"
    for field, enum_type in REQUIRED_ENUM_FIELDS:
        value = record.get(field)
        if not value:
            if field == "sensitivityLevel" and not require_sensitivity:
                continue
            return f"{prefix}{field} is required"
        try:
            enum_type(value)
        except ValueError:
            return f"{prefix}{field} must be one of {', '.join(member.value for member in enum_type)}"
    details = record.get("details")
    if details is not None and not isinstance(details, dict):
        return f"{prefix}details must be an object"
    return None


def _prepare_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    details = dict(details or {})
    query = details.get("searchQuery")
    if isinstance(query, str) and len(query) > SEARCH_QUERY_MAX_LENGTH:
        details["searchQuery"] = query[:SEARCH_QUERY_MAX_LENGTH] + "..."
    return details


def build_model(document: Dict[str, Any], encryptor: FieldEncryptor) -> AuditLog:
    """Encrypt a stamped document and map it onto an AuditLog row with its integrity hash."""
    document = dict(document)
    document["details"] = _prepare_details(document.get("details"))
    encrypted = encryptor.encrypt_document(document)

    details = encrypted["details"]
    log = AuditLog(
        id=uuid.uuid4(),
        event_type=AuditEventType(encrypted["eventType"]),
        risk_level=RiskLevel(encrypted["riskLevel"]),
        sensitivity_level=SensitivityLevel(encrypted.get("sensitivityLevel") or SensitivityLevel.INTERNAL.value),
        timestamp=datetime.fromisoformat(encrypted["timestamp"]),
        user_id=encrypted["userId"],
        user_role=encrypted["userRole"],
        user_email=encrypted["userEmail"],
        user_name=encrypted["userName"],
        session_id=encrypted["sessionId"],
        ip_address=encrypted["ipAddress"],
        user_agent=encrypted["userAgent"],
        url=encrypted["url"],
        patient_id=str(details["patientId"]) if details.get("patientId") else None,
        details=details,
        encrypted=encrypted["_encrypted"],
        encryption_version=encrypted["_encryptionVersion"],
        encrypted_at=encrypted["_encryptedAt"],
    )
    log.integrity_hash = generate_hash(stored_document(log))
    return log


def stored_document(log: AuditLog) -> Dict[str, Any]:
    """The record as persisted, ciphertext and encryption markers included."""
    document = {
        "id": str(log.id),
        "eventType": log.event_type.value,
        "riskLevel": log.risk_level.value,
        "sensitivityLevel": log.sensitivity_level.value,
        "timestamp": as_utc(log.timestamp).isoformat(),
        "userId": log.user_id,
        "userRole": log.user_role,
        "userEmail": log.user_email,
        "userName": log.user_name,
        "sessionId": log.session_id,
        "ipAddress": log.ip_address,
        "userAgent": log.user_agent,
        "url": log.url,
        "details": log.details or {},
    }
    if log.encrypted:
        document.update(
            _encrypted=True,
            _encryptionVersion=log.encryption_version,
            _encryptedAt=log.encrypted_at,
        )
    return document


def decrypt_log(log: AuditLog, encryptor: FieldEncryptor) -> Dict[str, Any]:
    return encryptor.decrypt_document(stored_document(log))


async def store_batch(
    db: AsyncSession,
    records: List[Any],
    actor: AuditActor,
    encryptor: FieldEncryptor,
) -> Tuple[int, List[str]]:
    """
    Validate every record first; any failure rejects the whole batch.
    Returns (stored count, errors).
    """
    errors = [error for error in (validate_record(i, record) for i, record in enumerate(records)) if error]
    if errors:
        return 0, errors

    logs = [build_model(actor.stamp(record), encryptor) for record in records]
    try:
        db.add_all(logs)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Stored %s audit logs for user %s", len(logs), actor.principal.id)
    return len(logs), []


async def store_immediate(
    db: AsyncSession,
    record: Dict[str, Any],
    actor: AuditActor,
    encryptor: FieldEncryptor,
) -> AuditLog:
    error = validate_record(None, record, require_sensitivity=False)
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)

    log = build_model(actor.stamp(record), encryptor)
    try:
        db.add(log)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if log.risk_level == RiskLevel.CRITICAL:
        logger.warning("CRITICAL audit event %s by user %s", log.event_type.value, log.user_id)
    return log


def _parse_enum(enum_type, value: Optional[str], field: str):
    if not value:
        return None
    try:
        return enum_type(value)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {field}: {value}")


async def query_logs(
    db: AsyncSession,
    page: int = 1,
    limit: int = 50,
    event_type: Optional[str] = None,
    user_id: Optional[str] = None,
    risk_level: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    patient_id: Optional[str] = None,
    event_types: Optional[Tuple[AuditEventType, ...]] = None,
) -> Tuple[List[AuditLog], int]:
    """Newest-first page of audit rows matching the filters, with the total count."""
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    conditions = []
    parsed_event_type = _parse_enum(AuditEventType, event_type, "eventType")
    if parsed_event_type is not None:
        conditions.append(AuditLog.event_type == parsed_event_type)
    if event_types:
        conditions.append(AuditLog.event_type.in_(event_types))
    parsed_risk = _parse_enum(RiskLevel, risk_level, "riskLevel")
    if parsed_risk is not None:
        conditions.append(AuditLog.risk_level == parsed_risk)
    if user_id:
        conditions.append(AuditLog.user_id == user_id)
    if patient_id:
        conditions.append(AuditLog.patient_id == patient_id)
    if start_date:
        conditions.append(AuditLog.timestamp >= start_date)
    if end_date:
        conditions.append(AuditLog.timestamp <= end_date)

    result = await db.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(desc(AuditLog.timestamp))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    logs = list(result.scalars().all())
    total = (await db.execute(select(func.count(AuditLog.id)).where(*conditions))).scalar() or 0
    return logs, total


async def check_integrity(db: AsyncSession, log_id: str) -> Dict[str, Any]:
    try:
        key = uuid.UUID(log_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit log not found")
    log = await db.get(AuditLog, key)
    if log is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit log not found")
    return {
        "log_id": str(log.id),
        "valid": verify_hash(stored_document(log), log.integrity_hash),
        "integrity_hash": log.integrity_hash,
    }


class AuditLogger:
    """
    Best-effort writer for server-generated meta records (bulk operations,
    patient views). Writes use their own session and never raise.
    """

    def __init__(self, session_factory: sessionmaker, encryptor: FieldEncryptor):
        self.session_factory = session_factory
        self.encryptor = encryptor

    async def write(self, actor: AuditActor, record: Dict[str, Any]) -> Optional[AuditLog]:
        try:
            log = build_model(actor.stamp(record), self.encryptor)
            async with self.session_factory() as session:
                session.add(log)
                await session.commit()
        except Exception:
            logger.exception("Failed to write %s audit log for user %s", record.get("eventType"), actor.principal.id)
            return None
        return log

    async def log_bulk_operation(self, actor: AuditActor, record_count: int) -> Optional[AuditLog]:
        return await self.write(
            actor,
            {
                "eventType": AuditEventType.BULK_OPERATION.value,
                "riskLevel": RiskLevel.LOW.value,
                "sensitivityLevel": SensitivityLevel.INTERNAL.value,
                "userAgent": actor.context.user_agent,
                "url": actor.context.url,
                "details": {
                    "operation": "AUDIT_LOG_BATCH_CREATE",
                    "recordCount": record_count,
                    "bulkOperationId": f"audit_batch_{int(time.time() * 1000)}",
                },
            },
        )

    async def log_patient_view(self, actor: AuditActor, patient_id: str) -> Optional[AuditLog]:
        return await self.write(
            actor,
            {
                "eventType": AuditEventType.PATIENT_VIEW.value,
                "riskLevel": RiskLevel.MEDIUM.value,
                "sensitivityLevel": SensitivityLevel.CONFIDENTIAL.value,
                "userAgent": actor.context.user_agent,
                "url": actor.context.url,
                "details": {
                    "patientId": patient_id,
                    "action": "AUDIT_LOG_ACCESS",
                    "dataAccessed": ["audit_logs"],
                },
            },
        )


def get_audit_logger(
    session_factory: sessionmaker = Depends(get_session_factory),
    encryptor: FieldEncryptor = Depends(get_field_encryptor),
) -> AuditLogger:
    """FastAPI dependency."""
    return AuditLogger(session_factory, encryptor)