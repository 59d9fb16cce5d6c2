# Activity Logs Schemas

from typing import Dict, List, Optional
from datetime import datetime

from pydantic import Field, field_validator

from src.common.schemas import CamelModel
from src.models.models import ActivityType, ReferralType


class ActivityLogResponse(CamelModel):
    id: str
    user_id: str
    user_name: str
    user_email: str
    user_role: str
    clinic_id: str
    clinic_name: str
    activity_type: str
    timestamp: datetime
    ip_address: str
    user_agent: str
    device_info: Dict[str, str]
    session_id: Optional[str] = None
    duration_minutes: Optional[int] = None
    target_entity_id: Optional[str] = None
    target_entity_name: Optional[str] = None
    patient_id: Optional[str] = None
    doctor_id: Optional[str] = None
    prescription_id: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_amount: Optional[float] = None
    referral_id: Optional[str] = None
    referral_type: Optional[str] = None
    appointment_id: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    appointment_type: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("id", mode="before")
    def stringify_id(cls, value):
        return str(value)

    @field_validator("activity_type", "referral_type", mode="before")
    def enum_value(cls, value):
        return value.value if hasattr(value, "value") else value


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_logs: int
    limit: int
    has_next_page: bool
    has_prev_page: bool


class ActivityLogListResponse(CamelModel):
    success: bool = True
    logs: List[ActivityLogResponse]
    pagination: Pagination


class RecentActivityResponse(CamelModel):
    success: bool = True
    logs: List[ActivityLogResponse]
    count: int


class ActivityTypeSummary(CamelModel):
    activity_type: str
    count: int
    unique_user_count: int


class DailyActivity(CamelModel):
    date: str
    activity_type: str
    count: int


class ActivityStats(CamelModel):
    summary: List[ActivityTypeSummary]
    daily_activity: List[DailyActivity]
    start_date: datetime
    end_date: datetime


class ActivityStatsResponse(CamelModel):
    success: bool = True
    stats: ActivityStats


class ActivityLogCreateRequest(CamelModel):
    """Client-reported activity, attributed to the authenticated caller."""
    activity_type: ActivityType
    session_id: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, ge=0)
    target_entity_id: Optional[str] = None
    target_entity_name: Optional[str] = None
    patient_id: Optional[str] = None
    doctor_id: Optional[str] = None
    prescription_id: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_amount: Optional[float] = None
    referral_id: Optional[str] = None
    referral_type: Optional[ReferralType] = None
    appointment_id: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    appointment_type: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)


class ActivityLogCreateResponse(CamelModel):
    success: bool
    message: str
    log_id: Optional[str] = None


class ActivityUserSummary(CamelModel):
    user_id: str
    user_name: str
    user_email: str
    user_role: str
    last_activity: datetime
    activity_count: int


class ActivityUsersResponse(CamelModel):
    success: bool = True
    users: List[ActivityUserSummary]


class ActivityExportResponse(CamelModel):
    success: bool = True
    logs: List[ActivityLogResponse]
    count: int


class ActivityCleanupResponse(CamelModel):
    success: bool = True
    message: str
    deleted_count: int
    cutoff_date: datetime
