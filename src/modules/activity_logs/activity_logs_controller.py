# Activity Logs Controller

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import get_current_user, require_clinic_admin
from src.auth.principals import Principal
from src.common.database.database import get_db_session
from src.common.utils.request_context import RequestContext, get_request_context
from src.models.models import utcnow

from . import activity_logs_service as service
from .activity_logger import ActivityEntry, ActivityLogger, Actor, get_activity_logger
from .schemas import (
    ActivityCleanupResponse,
    ActivityExportResponse,
    ActivityLogCreateRequest,
    ActivityLogCreateResponse,
    ActivityLogListResponse,
    ActivityStatsResponse,
    ActivityUsersResponse,
    RecentActivityResponse,
)


router = APIRouter(prefix="/activity-logs", tags=["Activity Logs"])


@router.get("", response_model=ActivityLogListResponse)
async def get_activity_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=service.MAX_PAGE_SIZE),
    activity_type: Optional[str] = Query(None, alias="activityType"),
    user_id: Optional[str] = Query(None, alias="userId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    sort_by: str = Query("timestamp", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_clinic_admin),
):
    """Activity log of the caller's clinic, paginated and filterable."""
    return await service.get_clinic_logs(
        db,
        current_user.clinic_id,
        page=page,
        limit=limit,
        activity_type=service.parse_activity_type(activity_type),
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/recent", response_model=RecentActivityResponse)
async def get_recent_activity(
    limit: int = Query(10, ge=1, le=service.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_clinic_admin),
):
    logs = await service.get_recent(db, current_user.clinic_id, limit)
    return RecentActivityResponse(logs=logs, count=len(logs))


@router.get("/stats", response_model=ActivityStatsResponse)
async def get_activity_stats(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_clinic_admin),
):
    """Per-type counts and daily breakdown for the caller's clinic (last 14 days by default)."""
    stats = await service.get_stats(db, current_user.clinic_id, start_date, end_date)
    return ActivityStatsResponse(stats=stats)


@router.get("/users", response_model=ActivityUsersResponse)
async def get_activity_users(
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_clinic_admin),
):
    """Principals with activity in the caller's clinic, for filter pickers."""
    return ActivityUsersResponse(users=await service.get_user_summaries(db, current_user.clinic_id))


@router.get(
    "/export",
    response_model=ActivityExportResponse,
    responses={200: {"content": {"text/csv": {}}}},
)
async def export_activity_logs(
    activity_type: Optional[str] = Query(None, alias="activityType"),
    user_id: Optional[str] = Query(None, alias="userId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    export_format: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_clinic_admin),
):
    """
    Export the caller's clinic log, newest first and at most 10000 rows.

    - **format**: csv (default, served as an attachment) or json
    """
    logs = await service.export_logs(
        db,
        current_user.clinic_id,
        activity_type=service.parse_activity_type(activity_type),
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )
    if export_format == "json":
        return ActivityExportResponse(logs=logs, count=len(logs))

    filename = f"activity-logs-{int(utcnow().timestamp() * 1000)}.csv"
    return Response(
        content=service.logs_to_csv(logs),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/cleanup", response_model=ActivityCleanupResponse)
async def cleanup_activity_logs(
    days: int = Query(service.DEFAULT_RETENTION_DAYS, ge=1),
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_clinic_admin),
):
    """Delete the caller's clinic activity older than `days` (90 by default)."""
    result = await service.cleanup_old_logs(db, current_user.clinic_id, days)
    return ActivityCleanupResponse(message=f"Cleaned up activity logs older than {days} days", **result)


@router.get("/user/{user_id}", response_model=ActivityLogListResponse)
async def get_user_activity(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=service.MAX_PAGE_SIZE),
    activity_type: Optional[str] = Query(None, alias="activityType"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db_session),
    current_user: Principal = Depends(require_clinic_admin),
):
    return await service.get_user_logs(
        db,
        user_id,
        clinic_id=current_user.clinic_id,
        page=page,
        limit=limit,
        activity_type=service.parse_activity_type(activity_type),
        start_date=start_date,
        end_date=end_date,
    )


@router.post("", response_model=ActivityLogCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_activity_log(
    request: ActivityLogCreateRequest,
    context: RequestContext = Depends(get_request_context),
    current_user: Principal = Depends(get_current_user),
    activity_logger: ActivityLogger = Depends(get_activity_logger),
):
    """Record a client-side activity for the authenticated caller."""
    entry = ActivityEntry.for_actor(
        Actor.from_principal(current_user),
        request.activity_type,
        **request.model_dump(exclude={"activity_type"}),
    )
    record = await activity_logger.log(entry, context)
    if record is None:
        return ActivityLogCreateResponse(success=False, message="Activity could not be recorded")
    return ActivityLogCreateResponse(success=True, message="Activity recorded", log_id=str(record.id))
