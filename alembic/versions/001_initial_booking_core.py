"""Initial booking core: users, technicians, catalog, bookings, OTPs, bulk bookings

Revision ID: 001_initial_booking_core
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001_initial_booking_core'
down_revision = None
branch_labels = None
depends_on = None

# SQLAlchemy Enum columns store member names
user_role = sa.Enum('USER', 'TECHNICIAN', 'PARTNER', 'DEALER', 'MANAGER', 'ADMIN', name='userrole')
technician_status = sa.Enum(
    'PENDING_VERIFICATION', 'ACTIVE', 'ON_LEAVE', 'SUSPENDED', 'INACTIVE', name='technicianstatus'
)
BOOKING_STATUSES = (
    'PENDING', 'CONFIRMED', 'ASSIGNED', 'REACHED', 'OTP_PENDING', 'IN_PROGRESS',
    'COMPLETED', 'CANCELLED', 'RESCHEDULED', 'REJECTED'
)
booking_status = sa.Enum(*BOOKING_STATUSES, name='bookingstatus')
# Second use of the same type; it already exists once bookings is created
booking_status_existing = postgresql.ENUM(*BOOKING_STATUSES, name='bookingstatus', create_type=False)
payment_method = sa.Enum('ONLINE', 'WALLET', 'CASH', 'CARD', 'UPI', name='paymentmethod')
bulk_booking_status = sa.Enum(
    'PENDING', 'ASSIGNED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'PARTIALLY_COMPLETED',
    name='bulkbookingstatus'
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_online', sa.Boolean(), nullable=False),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        *_timestamps()
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'technician_profiles',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('skills', sa.JSON(), nullable=False),
        sa.Column('services', sa.JSON(), nullable=False),
        sa.Column('experience_years', sa.Integer(), nullable=True),
        sa.Column('working_hours', sa.JSON(), nullable=False),
        sa.Column('is_on_break', sa.Boolean(), nullable=False),
        sa.Column('break_start', sa.DateTime(), nullable=True),
        sa.Column('break_end', sa.DateTime(), nullable=True),
        sa.Column('max_workload', sa.Integer(), nullable=False),
        sa.Column('current_workload', sa.Integer(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('total_jobs_completed', sa.Integer(), nullable=False),
        sa.Column('average_rating', sa.Float(), nullable=False),
        sa.Column('total_ratings', sa.Integer(), nullable=False),
        sa.Column('status', technician_status, nullable=False),
        *_timestamps(),
        sa.CheckConstraint('current_workload >= 0', name='ck_technician_workload_non_negative'),
        sa.CheckConstraint('max_workload >= 1', name='ck_technician_max_workload_positive')
    )

    op.create_table(
        'services',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('estimated_duration', sa.Integer(), nullable=False),
        sa.Column('skills_required', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        *_timestamps()
    )
    op.create_index('ix_services_id', 'services', ['id'])
    op.create_index('ix_services_category', 'services', ['category'])

    op.create_table(
        'parts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('sku', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity_in_stock', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        *_timestamps()
    )
    op.create_index('ix_parts_id', 'parts', ['id'])
    op.create_index('ix_parts_sku', 'parts', ['sku'], unique=True)

    op.create_table(
        'bulk_bookings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('bulk_booking_number', sa.String(50), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('location', sa.JSON(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('booking_count', sa.Integer(), nullable=False),
        sa.Column('service_types', sa.JSON(), nullable=False),
        sa.Column('scheduled_date', sa.DateTime(), nullable=False),
        sa.Column('preferred_time_slot', sa.JSON(), nullable=False),
        sa.Column('estimated_duration', sa.Integer(), nullable=False),
        sa.Column('status', bulk_booking_status, nullable=False),
        sa.Column('completion_percentage', sa.Integer(), nullable=False),
        sa.Column('assigned_technicians', sa.JSON(), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('priority', sa.String(10), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('status_history', sa.JSON(), nullable=False),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('updated_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('deleted', sa.Boolean(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps()
    )
    op.create_index('ix_bulk_bookings_id', 'bulk_bookings', ['id'])
    op.create_index('ix_bulk_bookings_bulk_booking_number', 'bulk_bookings', ['bulk_booking_number'], unique=True)
    op.create_index('ix_bulk_bookings_client_id', 'bulk_bookings', ['client_id'])
    op.create_index('ix_bulk_bookings_scheduled_date', 'bulk_bookings', ['scheduled_date'])
    op.create_index('ix_bulk_bookings_status', 'bulk_bookings', ['status'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('booking_number', sa.String(50), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_technician_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('bulk_booking_id', sa.Integer(), sa.ForeignKey('bulk_bookings.id'), nullable=True),
        sa.Column('services', sa.JSON(), nullable=False),
        sa.Column('parts', sa.JSON(), nullable=False),
        sa.Column('address', sa.JSON(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('schedule_date', sa.DateTime(), nullable=False),
        sa.Column('preferred_time_slot', sa.JSON(), nullable=False),
        sa.Column('status', booking_status, nullable=False),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('declined_by', sa.JSON(), nullable=False),
        sa.Column('payment_method', payment_method, nullable=False),
        sa.Column('payment_status', sa.String(50), nullable=False),
        sa.Column('advance_payment', sa.JSON(), nullable=True),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('parts_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('discount_coupon', sa.String(50), nullable=True),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('final_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('selfie_url', sa.String(500), nullable=True),
        sa.Column('selfie_uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('before_image_url', sa.String(500), nullable=True),
        sa.Column('before_image_uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('after_image_url', sa.String(500), nullable=True),
        sa.Column('after_image_uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('rating', sa.Integer(), nullable=True),
        sa.Column('review', sa.Text(), nullable=True),
        sa.Column('review_date', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('final_amount >= 0', name='ck_booking_final_amount_non_negative')
    )
    op.create_index('ix_bookings_id', 'bookings', ['id'])
    op.create_index('ix_bookings_booking_number', 'bookings', ['booking_number'], unique=True)
    op.create_index('ix_bookings_user_id', 'bookings', ['user_id'])
    op.create_index('ix_bookings_assigned_technician_id', 'bookings', ['assigned_technician_id'])
    op.create_index('ix_bookings_bulk_booking_id', 'bookings', ['bulk_booking_id'])
    op.create_index('ix_bookings_schedule_date', 'bookings', ['schedule_date'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])

    op.create_table(
        'booking_status_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', booking_status_existing, nullable=False),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('changed_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.UniqueConstraint('booking_id', 'sequence', name='uq_booking_history_sequence')
    )
    op.create_index('ix_booking_status_history_booking_id', 'booking_status_history', ['booking_id'])

    op.create_table(
        'booking_otps',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('technician_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('code', sa.String(10), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_used', sa.Boolean(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True)
    )
    op.create_index('ix_booking_otps_pair', 'booking_otps', ['booking_id', 'technician_id', 'is_used'])
    op.create_index('ix_booking_otps_expires_at', 'booking_otps', ['expires_at'])


def downgrade():
    op.drop_table('booking_otps')
    op.drop_table('booking_status_history')
    op.drop_table('bookings')
    op.drop_table('bulk_bookings')
    op.drop_table('parts')
    op.drop_table('services')
    op.drop_table('technician_profiles')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (bulk_booking_status, payment_method, booking_status, technician_status, user_role):
        enum_type.drop(bind, checkfirst=True)
