"""initial scheduling schema: configuration, staff, resources, availability, reservations, appointments

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'business_configurations',
        sa.Column('org_id', sa.String(64), primary_key=True),
        sa.Column('industry_type', sa.String(32), nullable=False, server_default='custom'),
        sa.Column('appointment_model', sa.String(32), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'staff',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('org_id', sa.String(64), nullable=False),
        sa.Column('first_name', sa.String(120), nullable=False),
        sa.Column('last_name', sa.String(120), nullable=False, server_default=''),
        sa.Column('email', sa.String(255)),
        sa.Column('role', sa.String(64), nullable=False),
        sa.Column('specialties', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('schedule', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_staff_org_id', 'staff', ['org_id'])
    op.create_index('ix_staff_org_role', 'staff', ['org_id', 'role'])

    op.create_table(
        'resources',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('org_id', sa.String(64), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('schedule', sa.JSON(), nullable=False),
        sa.Column('staff_requirements', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_resources_org_id', 'resources', ['org_id'])

    # one row per entity per date; version drives compare-and-swap writes
    op.create_table(
        'availability',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('org_id', sa.String(64), nullable=False),
        sa.Column('entity_type', sa.String(16), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('time_slots', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('override', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('org_id', 'entity_type', 'entity_id', 'date', name='uq_availability_entity_date'),
    )
    op.create_index('ix_availability_entity_date', 'availability', ['entity_type', 'entity_id', 'date'])
    op.create_index('ix_availability_org_date', 'availability', ['org_id', 'date'])

    op.create_table(
        'slot_reservations',
        sa.Column('token', sa.String(64), primary_key=True),
        sa.Column('org_id', sa.String(64), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('end_time', sa.String(5), nullable=False),
        sa.Column('entities', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('appointment_id', sa.String(36)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_slot_reservations_status_created', 'slot_reservations', ['status', 'created_at'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('org_id', sa.String(64), nullable=False),
        sa.Column('staff_id', sa.String(64)),
        sa.Column('resource_id', sa.String(64)),
        sa.Column('client_info', sa.JSON(), nullable=False),
        sa.Column('service_info', sa.JSON(), nullable=False),
        sa.Column('starts_at', sa.String(40), nullable=False),
        sa.Column('appointment_date', sa.Date(), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('assignment_type', sa.String(32), nullable=False),
        sa.Column('notes', sa.Text()),
        sa.Column('custom_fields', sa.JSON()),
        sa.Column('cancellation_info', sa.JSON()),
        sa.Column('rescheduling_history', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('staff_id IS NOT NULL OR resource_id IS NOT NULL', name='ck_appointments_has_assignment'),
    )
    op.create_index('ix_appointments_org_date', 'appointments', ['org_id', 'appointment_date'])
    op.create_index('ix_appointments_staff_date', 'appointments', ['staff_id', 'appointment_date'])
    op.create_index('ix_appointments_resource_date', 'appointments', ['resource_id', 'appointment_date'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('appointments')
    op.drop_table('slot_reservations')
    op.drop_table('availability')
    op.drop_table('resources')
    op.drop_table('staff')
    op.drop_table('business_configurations')
