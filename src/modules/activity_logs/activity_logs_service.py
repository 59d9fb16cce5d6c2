# Activity Logs Service

import csv
import io
import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import asc, delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.models import ActivityLog, ActivityType, as_utc, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_EXPORT_ROWS = 10000
DEFAULT_STATS_DAYS = 14
DEFAULT_RETENTION_DAYS = 90

CSV_HEADERS = [
    "Timestamp",
    "User Name",
    "User Email",
    "User Role",
    "Activity Type",
    "IP Address",
    "Browser",
    "OS",
    "Duration (minutes)",
    "Notes",
]

SORTABLE_COLUMNS = {
    "timestamp": ActivityLog.timestamp,
    "activityType": ActivityLog.activity_type,
    "userName": ActivityLog.user_name,
    "userRole": ActivityLog.user_role,
}


def parse_activity_type(value: Optional[str]) -> Optional[ActivityType]:
    if not value:
        return None
    try:
        return ActivityType(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown activity type: {value}",
        )


def _filtered(
    query,
    activity_type: Optional[ActivityType] = None,
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    if activity_type is not None:
        query = query.where(ActivityLog.activity_type == activity_type)
    if user_id:
        query = query.where(ActivityLog.user_id == user_id)
    if start_date:
        query = query.where(ActivityLog.timestamp >= start_date)
    if end_date:
        query = query.where(ActivityLog.timestamp <= end_date)
    return query


async def get_recent(db: AsyncSession, clinic_id: str, limit: int = 10) -> List[ActivityLog]:
    """Newest activities for a clinic."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    result = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.clinic_id == clinic_id)
        .order_by(desc(ActivityLog.timestamp))
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_clinic_logs(
    db: AsyncSession,
    clinic_id: Optional[str],
    page: int = 1,
    limit: int = 20,
    activity_type: Optional[ActivityType] = None,
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = "timestamp",
    sort_order: str = "desc",
) -> dict:
    """
    Paginated, filterable activity listing. clinic_id None lists across
    clinics (used for per-user slices); clinic-admin callers always pass
    their own clinic.
    """
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    base = select(ActivityLog)
    count_query = select(func.count(ActivityLog.id))
    if clinic_id is not None:
        base = base.where(ActivityLog.clinic_id == clinic_id)
        count_query = count_query.where(ActivityLog.clinic_id == clinic_id)
    base = _filtered(base, activity_type, user_id, start_date, end_date)
    count_query = _filtered(count_query, activity_type, user_id, start_date, end_date)

    column = SORTABLE_COLUMNS.get(sort_by, ActivityLog.timestamp)
    ordering = asc(column) if sort_order == "asc" else desc(column)

    result = await db.execute(base.order_by(ordering).offset((page - 1) * limit).limit(limit))
    logs = list(result.scalars().all())

    total = (await db.execute(count_query)).scalar() or 0
    total_pages = math.ceil(total / limit) if total else 0

    return {
        "logs": logs,
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_logs": total,
            "limit": limit,
            "has_next_page": page < total_pages,
            "has_prev_page": page > 1,
        },
    }


async def get_user_logs(
    db: AsyncSession,
    user_id: str,
    clinic_id: Optional[str] = None,
    **filters,
) -> dict:
    """Per-user slice of the activity log; clinic_id narrows it to one clinic."""
    return await get_clinic_logs(db, clinic_id, user_id=user_id, **filters)


async def get_stats(
    db: AsyncSession,
    clinic_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """
    Per-type counts with distinct users, plus a day-by-type breakdown.
    The window defaults to the last 14 days.
    """
    end_date = end_date or utcnow()
    start_date = start_date or end_date - timedelta(days=DEFAULT_STATS_DAYS)

    window = (
        ActivityLog.clinic_id == clinic_id,
        ActivityLog.timestamp >= start_date,
        ActivityLog.timestamp <= end_date,
    )

    summary_result = await db.execute(
        select(
            ActivityLog.activity_type,
            func.count(ActivityLog.id),
            func.count(func.distinct(ActivityLog.user_id)),
        )
        .where(*window)
        .group_by(ActivityLog.activity_type)
        .order_by(desc(func.count(ActivityLog.id)))
    )
    summary = [
        {"activity_type": activity_type.value, "count": count, "unique_user_count": unique_users}
        for activity_type, count, unique_users in summary_result.all()
    ]

    day = func.date(ActivityLog.timestamp)
    daily_result = await db.execute(
        select(day.label("day"), ActivityLog.activity_type, func.count(ActivityLog.id))
        .where(*window)
        .group_by(day, ActivityLog.activity_type)
        .order_by(day)
    )
    daily = [
        {"date": str(bucket), "activity_type": activity_type.value, "count": count}
        for bucket, activity_type, count in daily_result.all()
    ]

    return {
        "summary": summary,
        "daily_activity": daily,
        "start_date": start_date,
        "end_date": end_date,
    }


async def get_user_summaries(db: AsyncSession, clinic_id: str) -> List[dict]:
    """Everyone with activity in the clinic, most recently active first."""
    last_activity = func.max(ActivityLog.timestamp)
    result = await db.execute(
        select(
            ActivityLog.user_id,
            func.max(ActivityLog.user_name),
            func.max(ActivityLog.user_email),
            func.max(ActivityLog.user_role),
            last_activity,
            func.count(ActivityLog.id),
        )
        .where(ActivityLog.clinic_id == clinic_id)
        .group_by(ActivityLog.user_id)
        .order_by(desc(last_activity))
    )
    return [
        {
            "user_id": user_id,
            "user_name": user_name,
            "user_email": user_email,
            "user_role": user_role,
            "last_activity": last_seen,
            "activity_count": count,
        }
        for user_id, user_name, user_email, user_role, last_seen, count in result.all()
    ]


async def export_logs(
    db: AsyncSession,
    clinic_id: str,
    activity_type: Optional[ActivityType] = None,
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> List[ActivityLog]:
    """Newest-first export of a clinic's log, capped at MAX_EXPORT_ROWS."""
    query = _filtered(
        select(ActivityLog).where(ActivityLog.clinic_id == clinic_id),
        activity_type,
        user_id,
        start_date,
        end_date,
    )
    result = await db.execute(query.order_by(desc(ActivityLog.timestamp)).limit(MAX_EXPORT_ROWS))
    return list(result.scalars().all())


def logs_to_csv(logs: List[ActivityLog]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for log in logs:
        device = log.device_info or {}
        writer.writerow([
            as_utc(log.timestamp).isoformat(),
            log.user_name,
            log.user_email,
            log.user_role,
            log.activity_type.value,
            log.ip_address or "",
            device.get("browser", ""),
            device.get("os", ""),
            "" if log.duration_minutes is None else log.duration_minutes,
            log.notes or "",
        ])
    return buffer.getvalue()


async def cleanup_old_logs(db: AsyncSession, clinic_id: str, days: int = DEFAULT_RETENTION_DAYS) -> dict:
    """Delete a clinic's activity older than the given number of days."""
    cutoff = utcnow() - timedelta(days=days)
    result = await db.execute(
        delete(ActivityLog)
        .where(ActivityLog.clinic_id == clinic_id, ActivityLog.timestamp < cutoff)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    deleted = result.rowcount or 0
    logger.info("Deleted %s activity logs older than %s days for clinic %s", deleted, days, clinic_id)
    return {"deleted_count": deleted, "cutoff_date": cutoff}
