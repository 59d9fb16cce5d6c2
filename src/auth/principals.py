# src/auth/principals.py

import enum
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from passlib.context import CryptContext
from sqlalchemy import func, or_
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.config import settings
from src.models.models import Clinic, Doctor, Nurse

# Initialize the password context (bcrypt)
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


class PrincipalKind(str, enum.Enum):
    CLINICIAN = "clinician"
    NURSE = "nurse"
    CLINIC_ADMIN = "clinic_admin"


CLINIC_ROLE = "clinic"
ADMIN_ROLES = ("admin", CLINIC_ROLE)

PrincipalRecord = Union[Doctor, Nurse, Clinic]


@dataclass(frozen=True)
class Principal:
    """Normalized view over a Doctor, Nurse or Clinic row."""
    id: str
    kind: PrincipalKind
    email: str
    display_name: str
    role: str
    password_hash: str
    is_active: bool
    clinic_id: Optional[str]
    clinic_name: Optional[str]
    clinic_active: bool = True
    login_name: Optional[str] = None
    specialty: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def can_sign_in(self) -> bool:
        return self.is_active and self.clinic_active

    def profile(self) -> dict:
        """Public profile, never carrying the password hash."""
        profile = {
            "id": self.id,
            "name": self.display_name,
            "email": self.email,
            "role": self.role,
            "kind": self.kind.value,
            "clinicId": self.clinic_id,
            "clinicName": self.clinic_name,
        }
        if self.kind == PrincipalKind.CLINICIAN:
            profile["specialty"] = self.specialty
            profile["phone"] = self.phone
        elif self.kind == PrincipalKind.NURSE:
            profile["department"] = self.department
            profile["phone"] = self.phone
        else:
            profile["username"] = self.login_name
        return profile


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def principal_from_record(record: PrincipalRecord) -> Principal:
    """Map a row from any of the three stores onto a Principal."""
    if isinstance(record, Doctor):
        clinic = record.clinic
        return Principal(
            id=str(record.id),
            kind=PrincipalKind.CLINICIAN,
            email=record.email,
            display_name=record.full_name,
            role=record.role.value,
            password_hash=record.password_hash,
            is_active=record.is_active,
            clinic_id=str(record.clinic_id) if record.clinic_id else None,
            clinic_name=clinic.name if clinic else None,
            clinic_active=clinic.is_active if clinic else True,
            specialty=record.specialty,
            phone=record.phone,
        )
    if isinstance(record, Nurse):
        clinic = record.clinic
        return Principal(
            id=str(record.id),
            kind=PrincipalKind.NURSE,
            email=record.email,
            display_name=record.full_name,
            role=record.role.value,
            password_hash=record.password_hash,
            is_active=record.is_active,
            clinic_id=str(record.clinic_id),
            clinic_name=clinic.name if clinic else None,
            clinic_active=clinic.is_active if clinic else True,
            department=record.department,
            phone=record.phone,
        )
    return Principal(
        id=str(record.id),
        kind=PrincipalKind.CLINIC_ADMIN,
        email=record.admin_email,
        display_name=record.admin_name,
        role=CLINIC_ROLE,
        password_hash=record.admin_password,
        is_active=record.is_active,
        clinic_id=str(record.id),
        clinic_name=record.name,
        login_name=record.admin_username,
    )


async def find_record_by_email(db: AsyncSession, identifier: str) -> Optional[PrincipalRecord]:
    """Search clinician, then nurse, then clinic-admin (email or username)."""
    identifier = normalize_email(identifier)
    if not identifier:
        return None

    result = await db.execute(select(Doctor).where(func.lower(Doctor.email) == identifier))
    doctor = result.scalars().first()
    if doctor:
        return doctor

    result = await db.execute(select(Nurse).where(func.lower(Nurse.email) == identifier))
    nurse = result.scalars().first()
    if nurse:
        return nurse

    result = await db.execute(
        select(Clinic).where(
            or_(
                func.lower(Clinic.admin_email) == identifier,
                func.lower(Clinic.admin_username) == identifier,
            )
        )
    )
    return result.scalars().first()


async def find_record_by_id(db: AsyncSession, principal_id: str) -> Optional[PrincipalRecord]:
    try:
        key = uuid.UUID(str(principal_id))
    except ValueError:
        return None

    for model in (Doctor, Nurse, Clinic):
        record = await db.get(model, key)
        if record:
            return record
    return None


async def lookup_by_email(db: AsyncSession, identifier: str) -> Optional[Principal]:
    """Resolve an email (or clinic-admin username) to a Principal; None when absent."""
    record = await find_record_by_email(db, identifier)
    return principal_from_record(record) if record else None


async def lookup_by_id(db: AsyncSession, principal_id: str) -> Optional[Principal]:
    record = await find_record_by_id(db, principal_id)
    return principal_from_record(record) if record else None


async def email_in_use(db: AsyncSession, email: str) -> bool:
    return await find_record_by_email(db, email) is not None


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify that the provided password matches the hashed password."""
    if not plain_password or not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Unrecognized or corrupt hash
        return False


def verify_credentials(principal: Optional[Principal], password: str) -> bool:
    """Constant-time password check; a missing principal still pays for one hash."""
    if principal is None:
        pwd_context.dummy_verify()
        return False
    return verify_password(password, principal.password_hash)
