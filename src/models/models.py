# src/models/models.py

from datetime import datetime, timezone
import uuid
import enum

from sqlalchemy import (
    JSON, Boolean, Column, Float, ForeignKey, Index, Integer, String, Text, DateTime,
    Uuid, Enum as SAEnum, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a stored timestamp to an aware UTC datetime (SQLite returns naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class DoctorRole(enum.Enum):
    DOCTOR = "doctor"
    ADMIN = "admin"


class NurseRole(enum.Enum):
    NURSE = "nurse"
    HEAD_NURSE = "head_nurse"
    SUPERVISOR = "supervisor"


class OTPPurpose(enum.Enum):
    LOGIN = "login"
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


class OTPStatus(enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    USED = "used"
    EXPIRED = "expired"


class ActivityType(enum.Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    SESSION_EXPIRED = "session_expired"
    FORCED_LOGOUT = "forced_logout"
    PASSWORD_RESET = "password_reset"
    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_STATUS_CHANGED = "appointment_status_changed"
    PRESCRIPTION_CREATED = "prescription_created"
    PRESCRIPTION_UPDATED = "prescription_updated"
    DOCTOR_CREATED = "doctor_created"
    DOCTOR_ACTIVATED = "doctor_activated"
    DOCTOR_DEACTIVATED = "doctor_deactivated"
    NURSE_CREATED = "nurse_created"
    NURSE_ACTIVATED = "nurse_activated"
    NURSE_DEACTIVATED = "nurse_deactivated"
    PHARMACIST_CREATED = "pharmacist_created"
    PHARMACIST_ACTIVATED = "pharmacist_activated"
    PHARMACIST_DEACTIVATED = "pharmacist_deactivated"
    TELECONSULTATION_CREATED = "teleconsultation_created"
    TELECONSULTATION_COMPLETED = "teleconsultation_completed"
    INVOICE_CREATED = "invoice_created"
    INVOICE_UPDATED = "invoice_updated"
    REFERRAL_CREATED = "referral_created"
    REFERRAL_COMPLETED = "referral_completed"


class ReferralType(enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class AuditEventType(enum.Enum):
    # Data access
    PATIENT_VIEW = "PATIENT_VIEW"
    PATIENT_SEARCH = "PATIENT_SEARCH"
    PATIENT_LIST_ACCESS = "PATIENT_LIST_ACCESS"
    MEDICAL_RECORD_VIEW = "MEDICAL_RECORD_VIEW"
    PRESCRIPTION_VIEW = "PRESCRIPTION_VIEW"
    APPOINTMENT_VIEW = "APPOINTMENT_VIEW"
    TELECONSULTATION_VIEW = "TELECONSULTATION_VIEW"
    REFERRAL_VIEW = "REFERRAL_VIEW"
    BILLING_VIEW = "BILLING_VIEW"
    # Data modification
    PATIENT_CREATE = "PATIENT_CREATE"
    PATIENT_UPDATE = "PATIENT_UPDATE"
    PATIENT_DELETE = "PATIENT_DELETE"
    PRESCRIPTION_CREATE = "PRESCRIPTION_CREATE"
    PRESCRIPTION_UPDATE = "PRESCRIPTION_UPDATE"
    PRESCRIPTION_DELETE = "PRESCRIPTION_DELETE"
    APPOINTMENT_CREATE = "APPOINTMENT_CREATE"
    APPOINTMENT_UPDATE = "APPOINTMENT_UPDATE"
    APPOINTMENT_DELETE = "APPOINTMENT_DELETE"
    TELECONSULTATION_CREATE = "TELECONSULTATION_CREATE"
    TELECONSULTATION_UPDATE = "TELECONSULTATION_UPDATE"
    REFERRAL_CREATE = "REFERRAL_CREATE"
    REFERRAL_UPDATE = "REFERRAL_UPDATE"
    BILLING_CREATE = "BILLING_CREATE"
    BILLING_UPDATE = "BILLING_UPDATE"
    # Authentication
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    # System
    EXPORT_DATA = "EXPORT_DATA"
    PRINT_RECORD = "PRINT_RECORD"
    DOWNLOAD_DOCUMENT = "DOWNLOAD_DOCUMENT"
    BULK_OPERATION = "BULK_OPERATION"
    # Security
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


class RiskLevel(enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class SensitivityLevel(enum.Enum):
    PUBLIC = "PUBLIC"
    INTERNAL = "INTERNAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    RESTRICTED = "RESTRICTED"


# ============================================================================
# PRINCIPAL STORES
# ============================================================================

class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    name = Column(String(200), nullable=False)
    admin_name = Column(String(200), nullable=False)
    admin_email = Column(String(255), unique=True, nullable=False, index=True)
    admin_username = Column(String(100), unique=True, nullable=True, index=True)
    admin_password = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def __repr__(self):
        return f"<Clinic(id={self.id}, name={self.name})>"


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    specialty = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    role = Column(SAEnum(DoctorRole), nullable=False, default=DoctorRole.DOCTOR)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    clinic = relationship("Clinic", lazy="joined")

    def __repr__(self):
        return f"<Doctor(id={self.id}, email={self.email}, role={self.role.value})>"


class Nurse(Base):
    __tablename__ = "nurses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    department = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    role = Column(SAEnum(NurseRole), nullable=False, default=NurseRole.NURSE)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    clinic = relationship("Clinic", lazy="joined")

    def __repr__(self):
        return f"<Nurse(id={self.id}, email={self.email}, role={self.role.value})>"


# ============================================================================
# OTP
# ============================================================================

class OTPCode(Base):
    __tablename__ = "otp_codes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    email = Column(String(255), nullable=False)
    purpose = Column(SAEnum(OTPPurpose), nullable=False)
    code = Column(String(12), nullable=False)
    status = Column(SAEnum(OTPStatus), nullable=False, default=OTPStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    user_id = Column(String(64), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_otp_codes_lookup", "email", "purpose", "status"),
        Index("idx_otp_codes_expires", "expires_at"),
    )

    def __repr__(self):
        return f"<OTPCode(id={self.id}, email={self.email}, purpose={self.purpose.value}, status={self.status.value})>"


# ============================================================================
# ACTIVITY & AUDIT LOGS
# ============================================================================

class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    user_id = Column(String(64), nullable=False)
    user_name = Column(String(200), nullable=False)
    user_email = Column(String(255), nullable=False)
    user_role = Column(String(50), nullable=False)
    clinic_id = Column(String(64), nullable=False)
    clinic_name = Column(String(200), nullable=False)
    activity_type = Column(SAEnum(ActivityType), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    ip_address = Column(String(64), nullable=False, default="Unknown")
    user_agent = Column(Text, nullable=False, default="Unknown")
    device_info = Column(JSONType, nullable=False, default=dict)

    session_id = Column(String(128), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    target_entity_id = Column(String(64), nullable=True)
    target_entity_name = Column(String(200), nullable=True)
    patient_id = Column(String(64), nullable=True)
    doctor_id = Column(String(64), nullable=True)
    prescription_id = Column(String(64), nullable=True)
    invoice_id = Column(String(64), nullable=True)
    invoice_amount = Column(Float, nullable=True)
    referral_id = Column(String(64), nullable=True)
    referral_type = Column(SAEnum(ReferralType), nullable=True)
    appointment_id = Column(String(64), nullable=True)
    appointment_date = Column(String(32), nullable=True)
    appointment_time = Column(String(32), nullable=True)
    appointment_type = Column(String(50), nullable=True)
    old_status = Column(String(50), nullable=True)
    new_status = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_activity_logs_clinic_time", "clinic_id", "timestamp"),
        Index("idx_activity_logs_user_time", "user_id", "timestamp"),
        Index("idx_activity_logs_type_time", "activity_type", "timestamp"),
    )

    def __repr__(self):
        return f"<ActivityLog(id={self.id}, type={self.activity_type.value}, user_id={self.user_id})>"


class AuditLog(Base):
    """
    Audit trail entry. user_email, user_name, ip_address, user_agent and the
    sensitive keys of details hold AES-GCM ciphertext when encrypted is set.
    """
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    event_type = Column(SAEnum(AuditEventType), nullable=False)
    risk_level = Column(SAEnum(RiskLevel), nullable=False)
    sensitivity_level = Column(SAEnum(SensitivityLevel), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    user_id = Column(String(64), nullable=False)
    user_role = Column(String(50), nullable=False)
    user_email = Column(Text, nullable=False)
    user_name = Column(Text, nullable=False)
    session_id = Column(String(128), nullable=False)
    ip_address = Column(Text, nullable=False)
    user_agent = Column(Text, nullable=False)
    url = Column(Text, nullable=False)
    patient_id = Column(String(64), nullable=True)
    details = Column(JSONType, nullable=False, default=dict)
    encrypted = Column(Boolean, nullable=False, default=False)
    encryption_version = Column(String(10), nullable=True)
    encrypted_at = Column(String(40), nullable=True)
    integrity_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("idx_audit_logs_time", "timestamp"),
        Index("idx_audit_logs_user_time", "user_id", "timestamp"),
        Index("idx_audit_logs_event_time", "event_type", "timestamp"),
        Index("idx_audit_logs_risk_time", "risk_level", "timestamp"),
        Index("idx_audit_logs_patient_time", "patient_id", "timestamp"),
    )

    def __repr__(self):
        return f"<AuditLog(id={self.id}, event={self.event_type.value}, risk={self.risk_level.value})>"
