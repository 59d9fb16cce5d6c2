# scripts/seed_test_data.py
"""
Seed script for local testing of the auth and audit flows.
Creates one clinic (with its admin), one doctor, one nurse and an independent clinician.

Accounts:
- CLINIC ADMIN: Amara Okafor, runs Harbor Family Clinic (username: harbor-admin)
- DOCTOR: Dr. Tunde Bakare, general practitioner and clinic admin-role doctor
- NURSE: Ifeoma Nwosu, triage nurse at Harbor Family Clinic
- INDEPENDENT: Dr. Kemi Adisa, clinician without a clinic

Run: python -m scripts.seed_test_data
"""

import asyncio

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.database.database import async_session
from src.auth.principals import hash_password
from src.models.models import (
    ActivityLog, AuditLog, OTPCode, Nurse, Doctor, Clinic,
    DoctorRole, NurseRole,
)


# =============================================================================
# CONSTANTS - Test Credentials
# =============================================================================

TEST_PASSWORD = "Test1234!"  # Same password for all test accounts
HASHED_PASSWORD = None  # Will be set in seed_all_data()


async def clear_existing_data(db: AsyncSession):
    """Clear all test data (if needed for re-seeding)."""
    print("🧹 Clearing existing data...")

    # Delete in reverse order of dependencies
    tables_to_clear = [AuditLog, ActivityLog, OTPCode, Nurse, Doctor, Clinic]
    for table in tables_to_clear:
        await db.execute(delete(table))
    await db.commit()
    print("✅ Data cleared")


async def seed_all_data(db: AsyncSession):
    """Main seeding function."""
    global HASHED_PASSWORD
    HASHED_PASSWORD = hash_password(TEST_PASSWORD)

    print("\n🌱 Starting Test Data Seed")
    print("=" * 50)

    clinic = await create_clinic(db)
    await create_doctor(db, clinic)
    await create_nurse(db, clinic)
    await create_independent_clinician(db)

    await db.commit()

    print("\n" + "=" * 50)
    print("✅ Seed complete! Test credentials:")
    print(f"   Clinic admin: amara@harborclinic.test (or harbor-admin) / {TEST_PASSWORD}")
    print(f"   Doctor:       tunde@harborclinic.test / {TEST_PASSWORD}")
    print(f"   Nurse:        ifeoma@harborclinic.test / {TEST_PASSWORD}")
    print(f"   Independent:  kemi@test.com / {TEST_PASSWORD}")
    print("   Login is two-step: the OTP is emailed (check SMTP settings)")
    print("=" * 50 + "\n")


async def create_clinic(db: AsyncSession) -> Clinic:
    print("🏥 Creating clinic: Harbor Family Clinic...")
    clinic = Clinic(
        name="Harbor Family Clinic",
        admin_name="Amara Okafor",
        admin_email="amara@harborclinic.test",
        admin_username="harbor-admin",
        admin_password=HASHED_PASSWORD,
        address="12 Marina Road, Lagos Island",
        phone="+234 801 222 3344",
        is_active=True,
    )
    db.add(clinic)
    await db.flush()
    return clinic


async def create_doctor(db: AsyncSession, clinic: Clinic) -> Doctor:
    print("🩺 Creating doctor: Dr. Tunde Bakare...")
    doctor = Doctor(
        clinic_id=clinic.id,
        full_name="Dr. Tunde Bakare",
        email="tunde@harborclinic.test",
        password_hash=HASHED_PASSWORD,
        specialty="General Practice",
        phone="+234 802 555 0101",
        role=DoctorRole.ADMIN,
        is_active=True,
    )
    db.add(doctor)
    await db.flush()
    return doctor


async def create_nurse(db: AsyncSession, clinic: Clinic) -> Nurse:
    print("💉 Creating nurse: Ifeoma Nwosu...")
    nurse = Nurse(
        clinic_id=clinic.id,
        full_name="Ifeoma Nwosu",
        email="ifeoma@harborclinic.test",
        password_hash=HASHED_PASSWORD,
        department="Triage",
        phone="+234 803 555 0202",
        role=NurseRole.HEAD_NURSE,
        is_active=True,
    )
    db.add(nurse)
    await db.flush()
    return nurse


async def create_independent_clinician(db: AsyncSession) -> Doctor:
    """A clinician with no clinic; activity is logged under the independent practice bucket."""
    print("🩺 Creating independent clinician: Dr. Kemi Adisa...")
    doctor = Doctor(
        full_name="Dr. Kemi Adisa",
        email="kemi@test.com",
        password_hash=HASHED_PASSWORD,
        specialty="Dermatology",
        role=DoctorRole.DOCTOR,
        is_active=True,
    )
    db.add(doctor)
    await db.flush()
    return doctor


# =============================================================================
# MAIN
# =============================================================================

async def main():
    """Run the seed script."""
    async with async_session() as db:
        try:
            await clear_existing_data(db)
            await seed_all_data(db)
        except Exception as e:
            await db.rollback()
            print(f"\n❌ Error during seeding: {e}")
            raise


if __name__ == "__main__":
    asyncio.run(main())
