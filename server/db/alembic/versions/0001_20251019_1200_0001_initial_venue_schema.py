"""Initial venue schema

Revision ID: 0001
Revises:
Create Date: 2025-10-19 12:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Needed for the room stay exclusion constraint
    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')

    # Create resources table
    op.create_table('resources',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('room_type', sa.String(length=64), nullable=True),
        sa.Column('min_guests', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('max_guests', sa.Integer(), nullable=True),
        sa.Column('member_price', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('guest_price', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='PKR'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_out_of_service', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('is_reserved', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint("kind IN ('ROOM', 'HALL', 'LAWN', 'PHOTOSHOOT')", name='ck_resource_kind'),
        sa.CheckConstraint('min_guests >= 0', name='ck_resource_min_guests_non_negative'),
        sa.CheckConstraint('max_guests IS NULL OR max_guests >= min_guests', name='ck_resource_guest_bounds'),
        sa.CheckConstraint('member_price >= 0', name='ck_resource_member_price_non_negative'),
        sa.CheckConstraint('guest_price >= 0', name='ck_resource_guest_price_non_negative'),
        sa.CheckConstraint('length(currency) = 3', name='ck_resource_currency_length'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_resources_kind'), 'resources', ['kind'], unique=False)
    op.create_index(op.f('ix_resources_room_type'), 'resources', ['room_type'], unique=False)
    op.create_index(op.f('ix_resources_is_active'), 'resources', ['is_active'], unique=False)
    op.create_index(op.f('ix_resources_is_out_of_service'), 'resources', ['is_out_of_service'], unique=False)

    # Create maintenance_windows table
    op.create_table('maintenance_windows',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('end_date >= start_date', name='ck_maintenance_window_dates'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_maintenance_windows_resource_id'), 'maintenance_windows', ['resource_id'], unique=False)
    op.create_index(op.f('ix_maintenance_windows_start_date'), 'maintenance_windows', ['start_date'], unique=False)
    op.create_index(op.f('ix_maintenance_windows_end_date'), 'maintenance_windows', ['end_date'], unique=False)

    # Create reservations table
    op.create_table('reservations',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('reserved_from', sa.Date(), nullable=False),
        sa.Column('reserved_to', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(length=20), nullable=True),
        sa.Column('reserved_by', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('reserved_to > reserved_from', name='ck_reservation_dates'),
        sa.CheckConstraint('length(reserved_by) > 0', name='ck_reservation_reserved_by_not_empty'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_reservations_resource_id'), 'reservations', ['resource_id'], unique=False)
    op.create_index(op.f('ix_reservations_reserved_from'), 'reservations', ['reserved_from'], unique=False)
    op.create_index(op.f('ix_reservations_reserved_to'), 'reservations', ['reserved_to'], unique=False)

    # Create holds table
    op.create_table('holds',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('on_hold', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('hold_expiry', sa.DateTime(), nullable=True),
        sa.Column('hold_by', sa.String(length=128), nullable=True),
        sa.Column('acquired_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            'on_hold = false OR (hold_expiry IS NOT NULL AND hold_by IS NOT NULL)',
            name='ck_hold_active_fields'
        ),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('resource_id')
    )
    op.create_index(op.f('ix_holds_on_hold'), 'holds', ['on_hold'], unique=False)
    op.create_index(op.f('ix_holds_hold_expiry'), 'holds', ['hold_expiry'], unique=False)

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(length=20), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('member_ref', sa.String(length=128), nullable=False),
        sa.Column('guest_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('end_date >= start_date', name='ck_booking_dates'),
        sa.CheckConstraint('guest_count >= 0', name='ck_booking_guest_count_non_negative'),
        sa.CheckConstraint('total_amount >= 0', name='ck_booking_total_non_negative'),
        sa.CheckConstraint("status IN ('CONFIRMED', 'CANCELED')", name='ck_booking_status'),
        sa.CheckConstraint(
            'start_time IS NULL OR end_time IS NULL OR end_time > start_time',
            name='ck_booking_times'
        ),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id', 'resource_id', name='uq_booking_invoice_resource')
    )
    op.create_index(op.f('ix_bookings_resource_id'), 'bookings', ['resource_id'], unique=False)
    op.create_index(op.f('ix_bookings_start_date'), 'bookings', ['start_date'], unique=False)
    op.create_index(op.f('ix_bookings_end_date'), 'bookings', ['end_date'], unique=False)
    op.create_index(op.f('ix_bookings_member_ref'), 'bookings', ['member_ref'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)
    op.create_index(op.f('ix_bookings_invoice_id'), 'bookings', ['invoice_id'], unique=False)

    # One confirmed booking per resource, day and slot
    op.create_index(
        'uq_booking_resource_day_slot',
        'bookings',
        ['resource_id', 'start_date', 'time_slot'],
        unique=True,
        postgresql_where=sa.text("status = 'CONFIRMED' AND time_slot IS NOT NULL"),
    )

    # Confirmed room stays of one room never share a night; [) matches check-out semantics
    op.execute(
        """
        ALTER TABLE bookings ADD CONSTRAINT ex_booking_room_stay_overlap
        EXCLUDE USING gist (
            resource_id WITH =,
            daterange(start_date, end_date, '[)') WITH &&
        )
        WHERE (status = 'CONFIRMED' AND time_slot IS NULL AND start_time IS NULL)
        """
    )

    # Create invoices table
    op.create_table('invoices',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('resource_kind', sa.String(length=20), nullable=False),
        sa.Column('member_ref', sa.String(length=128), nullable=False),
        sa.Column('room_type', sa.String(length=64), nullable=True),
        sa.Column('room_count', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(length=20), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('guest_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('pricing_type', sa.String(length=10), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('due_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('consumer_number', sa.String(length=64), nullable=True),
        sa.Column('transaction_id', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_invoice_amount_non_negative'),
        sa.CheckConstraint("status IN ('PENDING', 'PAID', 'FAILED')", name='ck_invoice_status'),
        sa.CheckConstraint("pricing_type IN ('member', 'guest')", name='ck_invoice_pricing_type'),
        sa.CheckConstraint('room_count >= 1', name='ck_invoice_room_count_positive'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number')
    )
    op.create_index(op.f('ix_invoices_resource_id'), 'invoices', ['resource_id'], unique=False)
    op.create_index(op.f('ix_invoices_member_ref'), 'invoices', ['member_ref'], unique=False)
    op.create_index(op.f('ix_invoices_status'), 'invoices', ['status'], unique=False)

    # Create invoice_items table
    op.create_table('invoice_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('guest_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.CheckConstraint('amount >= 0', name='ck_invoice_item_amount_non_negative'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id', 'resource_id', name='uq_invoice_item_resource')
    )
    op.create_index(op.f('ix_invoice_items_invoice_id'), 'invoice_items', ['invoice_id'], unique=False)
    op.create_index(op.f('ix_invoice_items_resource_id'), 'invoice_items', ['resource_id'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.execute('ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_booking_room_stay_overlap')
    op.drop_table('bookings')
    op.drop_table('holds')
    op.drop_table('reservations')
    op.drop_table('maintenance_windows')
    op.drop_table('resources')
