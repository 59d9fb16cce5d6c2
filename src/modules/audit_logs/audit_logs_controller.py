# Audit Logs Controller

import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import AuthenticatedSession, get_current_session, require_admin
from src.auth.principals import Principal
from src.common.config import settings
from src.common.database.database import get_db_session
from src.common.utils.encryption import FieldEncryptor, get_field_encryptor
from src.common.utils.global_messages import GlobalMessages
from src.common.utils.request_context import RequestContext, get_request_context
from src.models.models import AuditLog

from . import audit_logs_service as service
from .schemas import (
    AuditLogBatchRequest,
    AuditLogBatchResponse,
    AuditLogCollectionResponse,
    AuditLogImmediateResponse,
    AuditLogListResponse,
    IntegrityResponse,
)


router = APIRouter(prefix="/audit-logs", tags=["Audit Logs"])


def _decrypted(logs: List[AuditLog], encryptor: FieldEncryptor) -> List[Dict[str, Any]]:
    return [service.decrypt_log(log, encryptor) for log in logs]


def _page(logs, total: int, page: int, limit: int, encryptor: FieldEncryptor) -> dict:
    return {
        "logs": _decrypted(logs, encryptor),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


@router.post("", response_model=AuditLogBatchResponse)
async def create_audit_logs(
    request: AuditLogBatchRequest,
    session: AuthenticatedSession = Depends(get_current_session),
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    encryptor: FieldEncryptor = Depends(get_field_encryptor),
    audit_logger: service.AuditLogger = Depends(service.get_audit_logger),
):
    """Batch submission of up to AUDIT_BATCH_MAX records; any invalid record rejects the batch."""
    if not request.logs:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=GlobalMessages.AUDIT_LOGS_REQUIRED)
    if len(request.logs) > settings.AUDIT_BATCH_MAX:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many logs in batch. Maximum {settings.AUDIT_BATCH_MAX} logs per request.",
        )

    actor = service.AuditActor(session.principal, context, session.session_id)
    count, errors = await service.store_batch(db, request.logs, actor, encryptor)
    if errors:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "Validation errors in log entries", "errors": errors},
        )

    await audit_logger.log_bulk_operation(actor, count)
    return AuditLogBatchResponse(message=f"Successfully saved {count} audit logs", count=count)


@router.post("/immediate", response_model=AuditLogImmediateResponse)
async def create_immediate_audit_log(
    record: Dict[str, Any] = Body(...),
    session: AuthenticatedSession = Depends(get_current_session),
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    encryptor: FieldEncryptor = Depends(get_field_encryptor),
):
    """Single high-priority record, written before the response is sent."""
    actor = service.AuditActor(session.principal, context, session.session_id)
    log = await service.store_immediate(db, record, actor, encryptor)
    return AuditLogImmediateResponse(message=GlobalMessages.AUDIT_LOG_STORED, log_id=str(log.id))


@router.get("", response_model=AuditLogListResponse)
async def get_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=service.MAX_PAGE_SIZE),
    event_type: Optional[str] = Query(None, alias="eventType"),
    user_id: Optional[str] = Query(None, alias="userId"),
    risk_level: Optional[str] = Query(None, alias="riskLevel"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    patient_id: Optional[str] = Query(None, alias="patientId"),
    session: AuthenticatedSession = Depends(get_current_session),
    current_user: Principal = Depends(require_admin),
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    encryptor: FieldEncryptor = Depends(get_field_encryptor),
    audit_logger: service.AuditLogger = Depends(service.get_audit_logger),
):
    """Filtered audit trail, newest first, decrypted for the response."""
    logs, total = await service.query_logs(
        db,
        page=page,
        limit=limit,
        event_type=event_type,
        user_id=user_id,
        risk_level=risk_level,
        start_date=start_date,
        end_date=end_date,
        patient_id=patient_id,
    )
    if patient_id:
        actor = service.AuditActor(current_user, context, session.session_id)
        await audit_logger.log_patient_view(actor, patient_id)
    return _page(logs, total, page, limit, encryptor)


@router.get("/patient/{patient_id}", response_model=AuditLogCollectionResponse)
async def get_patient_audit_logs(
    patient_id: str,
    limit: int = Query(100, ge=1, le=service.MAX_PAGE_SIZE),
    session: AuthenticatedSession = Depends(get_current_session),
    current_user: Principal = Depends(require_admin),
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db_session),
    encryptor: FieldEncryptor = Depends(get_field_encryptor),
    audit_logger: service.AuditLogger = Depends(service.get_audit_logger),
):
    """Audit trail of one patient. Viewing it is itself recorded as PATIENT_VIEW."""
    logs, _ = await service.query_logs(db, limit=limit, patient_id=patient_id)
    actor = service.AuditActor(current_user, context, session.session_id)
    await audit_logger.log_patient_view(actor, patient_id)
    return AuditLogCollectionResponse(logs=_decrypted(logs, encryptor), count=len(logs))


@router.get("/user/{user_id}", response_model=AuditLogListResponse)
async def get_user_audit_logs(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=service.MAX_PAGE_SIZE),
    session: AuthenticatedSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    encryptor: FieldEncryptor = Depends(get_field_encryptor),
):
    if not session.principal.is_admin and session.principal.id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=GlobalMessages.ACCESS_DENIED)
    logs, total = await service.query_logs(db, page=page, limit=limit, user_id=user_id)
    return _page(logs, total, page, limit, encryptor)


@router.get("/security", response_model=AuditLogListResponse)
async def get_security_events(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=service.MAX_PAGE_SIZE),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    current_user: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
    encryptor: FieldEncryptor = Depends(get_field_encryptor),
):
    """Unauthorized access, permission denials, suspicious activity and failed logins."""
    logs, total = await service.query_logs(
        db,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
        event_types=service.SECURITY_EVENT_TYPES,
    )
    return _page(logs, total, page, limit, encryptor)


@router.get("/{log_id}/integrity", response_model=IntegrityResponse)
async def check_audit_log_integrity(
    log_id: str,
    current_user: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    return await service.check_integrity(db, log_id)
