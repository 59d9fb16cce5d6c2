# src/modules/activity_logs/activity_logger.py

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from src.auth.principals import Principal
from src.common.database.database import get_session_factory
from src.common.utils.request_context import RequestContext, parse_user_agent
from src.models.models import ActivityLog, ActivityType, ReferralType

logger = logging.getLogger(__name__)

INDEPENDENT_CLINIC_ID = "independent"
INDEPENDENT_CLINIC_NAME = "Independent Practice"

REQUIRED_FIELDS = (
    "user_id",
    "user_name",
    "user_email",
    "user_role",
    "clinic_id",
    "clinic_name",
    "activity_type",
)


@dataclass
class Actor:
    """Who performed an activity."""
    user_id: str
    user_name: str
    user_email: str
    user_role: str
    clinic_id: str
    clinic_name: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "Actor":
        return cls(
            user_id=principal.id,
            user_name=principal.display_name,
            user_email=principal.email,
            user_role=principal.role,
            clinic_id=principal.clinic_id or INDEPENDENT_CLINIC_ID,
            clinic_name=principal.clinic_name or INDEPENDENT_CLINIC_NAME,
        )


@dataclass
class ActivityEntry:
    activity_type: Optional[ActivityType] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    clinic_id: Optional[str] = None
    clinic_name: Optional[str] = None
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
    referral_type: Optional[ReferralType] = None
    appointment_id: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    appointment_type: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def for_actor(cls, actor: Actor, activity_type: ActivityType, **fields) -> "ActivityEntry":
        return cls(activity_type=activity_type, **asdict(actor), **fields)

    def missing_fields(self):
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]


class ActivityLogger:
    """
    Best-effort writer for activity records.

    Each write uses its own session, so a failing write never disturbs the
    caller's transaction, and every failure is logged rather than raised.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def log(self, entry: ActivityEntry, context: Optional[RequestContext] = None) -> Optional[ActivityLog]:
        missing = entry.missing_fields()
        if missing:
            logger.warning("Skipping activity log, missing fields: %s", ", ".join(missing))
            return None

        context = context or RequestContext()
        values = asdict(entry)
        record = ActivityLog(
            **values,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            device_info=parse_user_agent(context.user_agent),
        )
        if record.session_id is None:
            record.session_id = context.session_id

        try:
            async with self.session_factory() as session:
                session.add(record)
                await session.commit()
        except Exception:
            logger.exception("Failed to write %s activity log for user %s", entry.activity_type.value, entry.user_id)
            return None
        return record

    # ------------------------------------------------------------------
    # Session activities
    # ------------------------------------------------------------------

    async def log_login(self, actor: Actor, context: RequestContext = None, session_id: str = None):
        return await self.log(
            ActivityEntry.for_actor(actor, ActivityType.LOGIN, session_id=session_id, notes="User logged in"),
            context,
        )

    async def log_logout(
        self,
        actor: Actor,
        context: RequestContext = None,
        session_id: str = None,
        duration_minutes: int = None,
    ):
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                ActivityType.LOGOUT,
                session_id=session_id,
                duration_minutes=duration_minutes,
                notes="User logged out",
            ),
            context,
        )

    async def log_session_expired(
        self,
        actor: Actor,
        context: RequestContext = None,
        session_id: str = None,
        duration_minutes: int = None,
    ):
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                ActivityType.SESSION_EXPIRED,
                session_id=session_id,
                duration_minutes=duration_minutes,
                notes="Session expired",
            ),
            context,
        )

    async def log_forced_logout(
        self,
        actor: Actor,
        admin: Actor,
        reason: str = None,
        context: RequestContext = None,
    ):
        """Recorded against the admin who forced the logout; the target is the affected user."""
        return await self.log(
            ActivityEntry.for_actor(
                admin,
                ActivityType.FORCED_LOGOUT,
                target_entity_id=actor.user_id,
                target_entity_name=actor.user_name,
                notes=f"Forced logout: {reason or 'No reason provided'}",
            ),
            context,
        )

    async def log_password_reset(self, actor: Actor, context: RequestContext = None):
        return await self.log(
            ActivityEntry.for_actor(actor, ActivityType.PASSWORD_RESET, notes="Password reset via OTP"),
            context,
        )

    # ------------------------------------------------------------------
    # Clinical and administrative activities
    # ------------------------------------------------------------------

    async def log_appointment_created(
        self,
        actor: Actor,
        appointment_id: str,
        patient_id: str = None,
        doctor_id: str = None,
        appointment_date: str = None,
        appointment_time: str = None,
        appointment_type: str = None,
        patient_name: str = None,
        context: RequestContext = None,
    ):
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                ActivityType.APPOINTMENT_CREATED,
                target_entity_id=appointment_id,
                target_entity_name=patient_name,
                appointment_id=appointment_id,
                patient_id=patient_id,
                doctor_id=doctor_id,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
                appointment_type=appointment_type,
                notes=f"Appointment created for {patient_name}" if patient_name else "Appointment created",
            ),
            context,
        )

    async def log_appointment_status_changed(
        self,
        actor: Actor,
        appointment_id: str,
        old_status: str,
        new_status: str,
        patient_id: str = None,
        patient_name: str = None,
        context: RequestContext = None,
    ):
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                ActivityType.APPOINTMENT_STATUS_CHANGED,
                target_entity_id=appointment_id,
                target_entity_name=patient_name,
                appointment_id=appointment_id,
                patient_id=patient_id,
                old_status=old_status,
                new_status=new_status,
                notes=f"Appointment status changed from {old_status} to {new_status}",
            ),
            context,
        )

    async def log_prescription(
        self,
        actor: Actor,
        activity_type: ActivityType,
        prescription_id: str,
        patient_id: str = None,
        patient_name: str = None,
        context: RequestContext = None,
    ):
        """activity_type is PRESCRIPTION_CREATED or PRESCRIPTION_UPDATED."""
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                activity_type,
                target_entity_id=prescription_id,
                target_entity_name=patient_name,
                prescription_id=prescription_id,
                patient_id=patient_id,
            ),
            context,
        )

    async def log_staff(
        self,
        actor: Actor,
        activity_type: ActivityType,
        staff_id: str,
        staff_name: str,
        context: RequestContext = None,
    ):
        """Doctor, nurse and pharmacist create/activate/deactivate events."""
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                activity_type,
                target_entity_id=staff_id,
                target_entity_name=staff_name,
                doctor_id=staff_id if activity_type.value.startswith("doctor_") else None,
                notes=f"{activity_type.value.replace('_', ' ').capitalize()}: {staff_name}",
            ),
            context,
        )

    async def log_teleconsultation(
        self,
        actor: Actor,
        activity_type: ActivityType,
        teleconsultation_id: str,
        patient_id: str = None,
        patient_name: str = None,
        doctor_id: str = None,
        context: RequestContext = None,
    ):
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                activity_type,
                target_entity_id=teleconsultation_id,
                target_entity_name=patient_name,
                patient_id=patient_id,
                doctor_id=doctor_id,
            ),
            context,
        )

    async def log_invoice(
        self,
        actor: Actor,
        activity_type: ActivityType,
        invoice_id: str,
        amount: float = None,
        patient_id: str = None,
        patient_name: str = None,
        context: RequestContext = None,
    ):
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                activity_type,
                target_entity_id=invoice_id,
                target_entity_name=patient_name,
                invoice_id=invoice_id,
                invoice_amount=amount,
                patient_id=patient_id,
            ),
            context,
        )

    async def log_referral(
        self,
        actor: Actor,
        activity_type: ActivityType,
        referral_id: str,
        referral_type: ReferralType,
        patient_id: str = None,
        patient_name: str = None,
        context: RequestContext = None,
    ):
        return await self.log(
            ActivityEntry.for_actor(
                actor,
                activity_type,
                target_entity_id=referral_id,
                target_entity_name=patient_name,
                referral_id=referral_id,
                referral_type=referral_type,
                patient_id=patient_id,
                notes=f"{referral_type.value.capitalize()} referral",
            ),
            context,
        )


def get_activity_logger(session_factory: sessionmaker = Depends(get_session_factory)) -> ActivityLogger:
    """FastAPI dependency."""
    return ActivityLogger(session_factory)
