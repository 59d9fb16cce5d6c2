# src/auth/otp_service.py

import asyncio
import enum
import logging
import math
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, desc, func, update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.config import settings
from src.common.utils.otp import codes_match, generate_otp
from src.models.models import OTPCode, OTPPurpose, OTPStatus, as_utc, utcnow

logger = logging.getLogger(__name__)

PURPOSE_TTL_MINUTES = {
    OTPPurpose.LOGIN: settings.OTP_LOGIN_TTL_MINUTES,
    OTPPurpose.REGISTRATION: settings.OTP_LOGIN_TTL_MINUTES,
    OTPPurpose.EMAIL_VERIFICATION: settings.OTP_LOGIN_TTL_MINUTES,
    OTPPurpose.PASSWORD_RESET: settings.OTP_PASSWORD_RESET_TTL_MINUTES,
}

# Serializes state transitions per (email, purpose) within this process.
# Entries vanish once no coroutine holds or awaits the lock.
_key_locks = weakref.WeakValueDictionary()


class OTPRateLimitedError(Exception):
    def __init__(self, retry_after_seconds: int):
        super().__init__("OTP requested too recently")
        self.retry_after_seconds = retry_after_seconds


class OTPFailure(str, enum.Enum):
    NO_ACTIVE_CODE = "no_active_code"
    EXPIRED = "expired"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    MISMATCH = "mismatch"


@dataclass
class OTPVerification:
    otp: Optional[OTPCode] = None
    failure: Optional[OTPFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.otp is not None


def _lock_for(email: str, purpose: OTPPurpose) -> asyncio.Lock:
    key = (email, purpose)
    lock = _key_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _key_locks[key] = lock
    return lock


def ttl_for(purpose: OTPPurpose) -> timedelta:
    return timedelta(minutes=PURPOSE_TTL_MINUTES[purpose])


def time_remaining_minutes(otp: OTPCode, now: Optional[datetime] = None) -> int:
    """Whole minutes left before the code expires, rounded up."""
    now = now or utcnow()
    seconds = (as_utc(otp.expires_at) - now).total_seconds()
    return max(0, math.ceil(seconds / 60))


async def _newest(db: AsyncSession, email: str, purpose: OTPPurpose, pending_only: bool = True) -> Optional[OTPCode]:
    query = select(OTPCode).where(OTPCode.email == email, OTPCode.purpose == purpose)
    if pending_only:
        query = query.where(OTPCode.status == OTPStatus.PENDING)
    result = await db.execute(
        query
        .order_by(desc(OTPCode.created_at))
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _expire(db: AsyncSession, otp: OTPCode) -> None:
    await db.execute(
        update(OTPCode)
        .where(OTPCode.id == otp.id, OTPCode.status == OTPStatus.PENDING)
        .values(status=OTPStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def issue(
    db: AsyncSession,
    email: str,
    purpose: OTPPurpose,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    cooldown_seconds: Optional[int] = None,
    pending_only: bool = True,
) -> OTPCode:
    """
    Create a fresh pending code for (email, purpose).

    Raises OTPRateLimitedError when the newest pending code (or, with
    pending_only=False, the newest code of any status) is younger than the
    cooldown. Any older pending code for the key is expired in the same
    transaction as the insert.
    """
    if cooldown_seconds is None:
        cooldown_seconds = settings.OTP_ISSUE_COOLDOWN_SECONDS

    async with _lock_for(email, purpose):
        now = utcnow()
        cooldown = timedelta(seconds=cooldown_seconds)

        current = await _newest(db, email, purpose, pending_only)
        if current is not None:
            age = now - as_utc(current.created_at)
            if age < cooldown:
                raise OTPRateLimitedError(math.ceil((cooldown - age).total_seconds()))

        try:
            await db.execute(
                update(OTPCode)
                .where(
                    OTPCode.email == email,
                    OTPCode.purpose == purpose,
                    OTPCode.status == OTPStatus.PENDING,
                )
                .values(status=OTPStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            otp = OTPCode(
                email=email,
                purpose=purpose,
                code=generate_otp(settings.OTP_LENGTH),
                status=OTPStatus.PENDING,
                attempts=0,
                max_attempts=settings.OTP_MAX_ATTEMPTS,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=now,
                expires_at=now + ttl_for(purpose),
            )
            db.add(otp)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("Issued %s OTP for user %s", purpose.value, user_id or "unknown")
    return otp


async def verify(db: AsyncSession, email: str, code: str, purpose: OTPPurpose) -> OTPVerification:
    """Check a presented code against the newest pending record for (email, purpose)."""
    async with _lock_for(email, purpose):
        otp = await _newest(db, email, purpose)
        if otp is None:
            return OTPVerification(failure=OTPFailure.NO_ACTIVE_CODE)

        now = utcnow()
        if as_utc(otp.expires_at) <= now:
            await _expire(db, otp)
            return OTPVerification(failure=OTPFailure.EXPIRED)

        if otp.attempts >= otp.max_attempts:
            await _expire(db, otp)
            return OTPVerification(failure=OTPFailure.ATTEMPTS_EXHAUSTED)

        matched = codes_match(otp.code, code or "")
        values = {"attempts": OTPCode.attempts + 1}
        if matched:
            values.update(status=OTPStatus.VERIFIED, verified_at=now)

        # The status precondition keeps two verifiers from both winning the same record
        result = await db.execute(
            update(OTPCode)
            .where(OTPCode.id == otp.id, OTPCode.status == OTPStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(otp)

        if result.rowcount != 1:
            return OTPVerification(failure=OTPFailure.NO_ACTIVE_CODE)
        if not matched:
            return OTPVerification(failure=OTPFailure.MISMATCH)
        return OTPVerification(otp=otp)


async def mark_used(db: AsyncSession, otp: OTPCode) -> None:
    """Terminal transition verified -> used."""
    await db.execute(
        update(OTPCode)
        .where(OTPCode.id == otp.id, OTPCode.status == OTPStatus.VERIFIED)
        .values(status=OTPStatus.USED, used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(otp)


async def discard(db: AsyncSession, otp: OTPCode) -> None:
    """Delete a code that never reached its recipient."""
    await db.execute(delete(OTPCode).where(OTPCode.id == otp.id))
    await db.commit()


async def cancel_pending(db: AsyncSession, email: str, purpose: Optional[OTPPurpose] = None) -> int:
    """Expire every pending code for the email (optionally one purpose). Returns the count."""
    stmt = update(OTPCode).where(OTPCode.email == email, OTPCode.status == OTPStatus.PENDING)
    if purpose is not None:
        stmt = stmt.where(OTPCode.purpose == purpose)
    result = await db.execute(stmt.values(status=OTPStatus.EXPIRED).execution_options(synchronize_session=False))
    await db.commit()
    return result.rowcount or 0


async def get_status(db: AsyncSession, email: str, purpose: OTPPurpose) -> Optional[OTPCode]:
    return await _newest(db, email, purpose)


async def get_stats(db: AsyncSession) -> dict:
    by_status = await db.execute(select(OTPCode.status, func.count(OTPCode.id)).group_by(OTPCode.status))
    by_purpose = await db.execute(select(OTPCode.purpose, func.count(OTPCode.id)).group_by(OTPCode.purpose))

    status_counts = {status.value: 0 for status in OTPStatus}
    for status, count in by_status.all():
        status_counts[status.value] = count
    purpose_counts = {purpose.value: 0 for purpose in OTPPurpose}
    for purpose, count in by_purpose.all():
        purpose_counts[purpose.value] = count

    return {
        "total": sum(status_counts.values()),
        "byStatus": status_counts,
        "byPurpose": purpose_counts,
    }


async def expire_overdue(db: AsyncSession) -> int:
    """Mark pending codes past their TTL as expired."""
    result = await db.execute(
        update(OTPCode)
        .where(OTPCode.status == OTPStatus.PENDING, OTPCode.expires_at <= utcnow())
        .values(status=OTPStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


async def purge_stale(db: AsyncSession, retention: Optional[timedelta] = None) -> int:
    """Delete expired/used codes older than the retention window."""
    retention = retention or timedelta(hours=settings.OTP_RETENTION_HOURS)
    result = await db.execute(
        delete(OTPCode)
        .where(
            OTPCode.status.in_([OTPStatus.EXPIRED, OTPStatus.USED]),
            OTPCode.created_at < utcnow() - retention,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0
