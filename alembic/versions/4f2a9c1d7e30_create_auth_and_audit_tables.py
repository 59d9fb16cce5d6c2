"""create auth, otp, activity and audit tables

Revision ID: 4f2a9c1d7e30
Revises: 
Create Date: 2026-10-16 09:12:07.418302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVITY_TYPES = (
    'LOGIN', 'LOGOUT', 'SESSION_EXPIRED', 'FORCED_LOGOUT', 'PASSWORD_RESET',
    'APPOINTMENT_CREATED', 'APPOINTMENT_STATUS_CHANGED',
    'PRESCRIPTION_CREATED', 'PRESCRIPTION_UPDATED',
    'DOCTOR_CREATED', 'DOCTOR_ACTIVATED', 'DOCTOR_DEACTIVATED',
    'NURSE_CREATED', 'NURSE_ACTIVATED', 'NURSE_DEACTIVATED',
    'PHARMACIST_CREATED', 'PHARMACIST_ACTIVATED', 'PHARMACIST_DEACTIVATED',
    'TELECONSULTATION_CREATED', 'TELECONSULTATION_COMPLETED',
    'INVOICE_CREATED', 'INVOICE_UPDATED',
    'REFERRAL_CREATED', 'REFERRAL_COMPLETED',
)

AUDIT_EVENT_TYPES = (
    'PATIENT_VIEW', 'PATIENT_SEARCH', 'PATIENT_LIST_ACCESS', 'MEDICAL_RECORD_VIEW',
    'PRESCRIPTION_VIEW', 'APPOINTMENT_VIEW', 'TELECONSULTATION_VIEW', 'REFERRAL_VIEW', 'BILLING_VIEW',
    'PATIENT_CREATE', 'PATIENT_UPDATE', 'PATIENT_DELETE',
    'PRESCRIPTION_CREATE', 'PRESCRIPTION_UPDATE', 'PRESCRIPTION_DELETE',
    'APPOINTMENT_CREATE', 'APPOINTMENT_UPDATE', 'APPOINTMENT_DELETE',
    'TELECONSULTATION_CREATE', 'TELECONSULTATION_UPDATE',
    'REFERRAL_CREATE', 'REFERRAL_UPDATE', 'BILLING_CREATE', 'BILLING_UPDATE',
    'LOGIN_SUCCESS', 'LOGIN_FAILURE', 'LOGOUT', 'PASSWORD_CHANGE',
    'EXPORT_DATA', 'PRINT_RECORD', 'DOWNLOAD_DOCUMENT', 'BULK_OPERATION',
    'UNAUTHORIZED_ACCESS', 'PERMISSION_DENIED', 'SUSPICIOUS_ACTIVITY',
)

JSONB = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'clinics',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('admin_name', sa.String(length=200), nullable=False),
        sa.Column('admin_email', sa.String(length=255), nullable=False),
        sa.Column('admin_username', sa.String(length=100), nullable=True),
        sa.Column('admin_password', sa.String(length=255), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_clinics_admin_email'), 'clinics', ['admin_email'], unique=True)
    op.create_index(op.f('ix_clinics_admin_username'), 'clinics', ['admin_username'], unique=True)

    op.create_table(
        'doctors',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=True),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('specialty', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('role', sa.Enum('DOCTOR', 'ADMIN', name='doctorrole'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_doctors_email'), 'doctors', ['email'], unique=True)

    op.create_table(
        'nurses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('department', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('role', sa.Enum('NURSE', 'HEAD_NURSE', 'SUPERVISOR', name='nurserole'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_nurses_email'), 'nurses', ['email'], unique=True)

    op.create_table(
        'otp_codes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('purpose', sa.Enum('LOGIN', 'REGISTRATION', 'PASSWORD_RESET', 'EMAIL_VERIFICATION', name='otppurpose'), nullable=False),
        sa.Column('code', sa.String(length=12), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'VERIFIED', 'USED', 'EXPIRED', name='otpstatus'), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_otp_codes_lookup', 'otp_codes', ['email', 'purpose', 'status'])
    op.create_index('idx_otp_codes_expires', 'otp_codes', ['expires_at'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('user_name', sa.String(length=200), nullable=False),
        sa.Column('user_email', sa.String(length=255), nullable=False),
        sa.Column('user_role', sa.String(length=50), nullable=False),
        sa.Column('clinic_id', sa.String(length=64), nullable=False),
        sa.Column('clinic_name', sa.String(length=200), nullable=False),
        sa.Column('activity_type', sa.Enum(*ACTIVITY_TYPES, name='activitytype'), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=False),
        sa.Column('user_agent', sa.Text(), nullable=False),
        sa.Column('device_info', JSONB, nullable=False),
        sa.Column('session_id', sa.String(length=128), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('target_entity_id', sa.String(length=64), nullable=True),
        sa.Column('target_entity_name', sa.String(length=200), nullable=True),
        sa.Column('patient_id', sa.String(length=64), nullable=True),
        sa.Column('doctor_id', sa.String(length=64), nullable=True),
        sa.Column('prescription_id', sa.String(length=64), nullable=True),
        sa.Column('invoice_id', sa.String(length=64), nullable=True),
        sa.Column('invoice_amount', sa.Float(), nullable=True),
        sa.Column('referral_id', sa.String(length=64), nullable=True),
        sa.Column('referral_type', sa.Enum('INBOUND', 'OUTBOUND', name='referraltype'), nullable=True),
        sa.Column('appointment_id', sa.String(length=64), nullable=True),
        sa.Column('appointment_date', sa.String(length=32), nullable=True),
        sa.Column('appointment_time', sa.String(length=32), nullable=True),
        sa.Column('appointment_type', sa.String(length=50), nullable=True),
        sa.Column('old_status', sa.String(length=50), nullable=True),
        sa.Column('new_status', sa.String(length=50), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_activity_logs_clinic_time', 'activity_logs', ['clinic_id', 'timestamp'])
    op.create_index('idx_activity_logs_user_time', 'activity_logs', ['user_id', 'timestamp'])
    op.create_index('idx_activity_logs_type_time', 'activity_logs', ['activity_type', 'timestamp'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event_type', sa.Enum(*AUDIT_EVENT_TYPES, name='auditeventtype'), nullable=False),
        sa.Column('risk_level', sa.Enum('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='risklevel'), nullable=False),
        sa.Column('sensitivity_level', sa.Enum('PUBLIC', 'INTERNAL', 'CONFIDENTIAL', 'RESTRICTED', name='sensitivitylevel'), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('user_role', sa.String(length=50), nullable=False),
        sa.Column('user_email', sa.Text(), nullable=False),
        sa.Column('user_name', sa.Text(), nullable=False),
        sa.Column('session_id', sa.String(length=128), nullable=False),
        sa.Column('ip_address', sa.Text(), nullable=False),
        sa.Column('user_agent', sa.Text(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('patient_id', sa.String(length=64), nullable=True),
        sa.Column('details', JSONB, nullable=False),
        sa.Column('encrypted', sa.Boolean(), nullable=False),
        sa.Column('encryption_version', sa.String(length=10), nullable=True),
        sa.Column('encrypted_at', sa.String(length=40), nullable=True),
        sa.Column('integrity_hash', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_audit_logs_time', 'audit_logs', ['timestamp'])
    op.create_index('idx_audit_logs_user_time', 'audit_logs', ['user_id', 'timestamp'])
    op.create_index('idx_audit_logs_event_time', 'audit_logs', ['event_type', 'timestamp'])
    op.create_index('idx_audit_logs_risk_time', 'audit_logs', ['risk_level', 'timestamp'])
    op.create_index('idx_audit_logs_patient_time', 'audit_logs', ['patient_id', 'timestamp'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('activity_logs')
    op.drop_table('otp_codes')
    op.drop_table('nurses')
    op.drop_table('doctors')
    op.drop_table('clinics')

    # Drop the enum types
    for name in (
        'sensitivitylevel', 'risklevel', 'auditeventtype', 'referraltype', 'activitytype',
        'otpstatus', 'otppurpose', 'nurserole', 'doctorrole',
    ):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
