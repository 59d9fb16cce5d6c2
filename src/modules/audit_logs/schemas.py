# Audit Logs Schemas

from typing import Any, Dict, List, Optional
from datetime import datetime

from pydantic import Field

from src.common.schemas import CamelModel


class AuditLogBatchRequest(CamelModel):
    # Records stay loosely typed so validation can report per-index errors
    logs: List[Dict[str, Any]] = Field(default_factory=list)


class AuditLogBatchResponse(CamelModel):
    success: bool = True
    message: str
    count: int


class AuditLogImmediateResponse(CamelModel):
    success: bool = True
    message: str
    log_id: str


class AuditLogResponse(CamelModel):
    id: str
    event_type: str
    risk_level: str
    sensitivity_level: str
    timestamp: datetime
    user_id: str
    user_email: str
    user_role: str
    user_name: str
    session_id: str
    ip_address: str
    user_agent: str
    url: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AuditPagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class AuditLogListResponse(CamelModel):
    success: bool = True
    logs: List[AuditLogResponse]
    pagination: AuditPagination


class AuditLogCollectionResponse(CamelModel):
    success: bool = True
    logs: List[AuditLogResponse]
    count: int


class IntegrityResponse(CamelModel):
    success: bool = True
    log_id: str
    valid: bool
    integrity_hash: Optional[str] = None
