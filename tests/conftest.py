# tests/conftest.py

import os

# Settings are read at import time, so the environment is fixed before src is imported
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./.pytest-unused.db"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret-0123456789"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-9876543210"
os.environ["ENCRYPTION_KEY"] = "ab" * 32
os.environ["BCRYPT_ROUNDS"] = "10"
os.environ["EMAIL_USER"] = "noreply@clinic.test"

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from src.auth.principals import hash_password
from src.auth.token_manager import TokenManager, get_token_manager
from src.common.database.database import get_session_factory
from src.common.utils import email_service
from src.main import app
from src.models.models import Base, Clinic, Doctor, DoctorRole, Nurse, NurseRole

PASSWORD = "Passw0rd!"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def tokens():
    return TokenManager(
        access_secret="unit-access-secret-0123456789abcdef",
        refresh_secret="unit-refresh-secret-0123456789abcdef",
        access_expiry="15m",
        refresh_expiry="7d",
    )


@pytest.fixture
def mailer(monkeypatch):
    """Captures outgoing OTP emails; the code is the third positional argument of both senders."""
    otp_mail = AsyncMock()
    reset_mail = AsyncMock()
    monkeypatch.setattr(email_service, "send_otp_email", otp_mail)
    monkeypatch.setattr(email_service, "send_password_reset_otp", reset_mail)
    return {"otp": otp_mail, "reset": reset_mail}


@pytest.fixture
async def client(session_factory, tokens, mailer):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_token_manager] = lambda: tokens
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def clinic(db):
    clinic = Clinic(
        name="Harbor Family Clinic",
        admin_name="Amara Okafor",
        admin_email="amara@harbor.test",
        admin_username="harbor-admin",
        admin_password=hash_password(PASSWORD),
    )
    db.add(clinic)
    await db.commit()
    return clinic


@pytest.fixture
async def alice(db, clinic):
    """Clinician at the clinic."""
    doctor = Doctor(
        clinic_id=clinic.id,
        full_name="Alice Mensah",
        email="alice@example.com",
        password_hash=hash_password(PASSWORD),
        specialty="Cardiology",
        role=DoctorRole.DOCTOR,
    )
    db.add(doctor)
    await db.commit()
    return doctor


@pytest.fixture
async def bob(db, clinic):
    """Admin clinician."""
    doctor = Doctor(
        clinic_id=clinic.id,
        full_name="Bob Adeyemi",
        email="bob@example.com",
        password_hash=hash_password(PASSWORD),
        role=DoctorRole.ADMIN,
    )
    db.add(doctor)
    await db.commit()
    return doctor


@pytest.fixture
async def nurse(db, clinic):
    nurse = Nurse(
        clinic_id=clinic.id,
        full_name="Ifeoma Nwosu",
        email="ifeoma@example.com",
        password_hash=hash_password(PASSWORD),
        department="Triage",
        role=NurseRole.NURSE,
    )
    db.add(nurse)
    await db.commit()
    return nurse


@pytest.fixture
def login(client, mailer):
    """Run both login steps for an email and return the login response body."""
    async def _login(email, password=PASSWORD):
        response = await client.post("/auth/login-step1", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        code = mailer["otp"].call_args.args[2]
        response = await client.post("/auth/login-step2", json={"email": email, "otp": code})
        assert response.status_code == 200, response.text
        return response.json()
    return _login
