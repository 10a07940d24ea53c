"""Baseline migration - tenants, staff, appointment series and calendar sync tables

Revision ID: 0001_baseline
Revises: 
Create Date: 2026-10-17

Creates the scheduling core: series, materialized appointments, per-occurrence
exceptions, staff calendar connections, watch channels, busy blocks and the
outbound sync log.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create scheduling and calendar sync tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Tenants + staff
    # ==========================================================================
    op.execute('''
        CREATE TABLE tenants (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            timezone VARCHAR(50) NOT NULL DEFAULT 'America/New_York',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE staff (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            display_name VARCHAR(255) NOT NULL,
            email VARCHAR(255) UNIQUE NOT NULL,
            role VARCHAR(30) NOT NULL DEFAULT 'clinician',
            timezone VARCHAR(50),
            token_version INTEGER NOT NULL DEFAULT 1,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_staff_tenant ON staff(tenant_id, is_active)')

    # ==========================================================================
    # Appointment series (recurring templates)
    # ==========================================================================
    op.execute('''
        CREATE TABLE appointment_series (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            rrule TEXT NOT NULL,
            start_date DATE NOT NULL,
            local_start_time TIME NOT NULL,
            duration_minutes INTEGER NOT NULL DEFAULT 60,
            timezone VARCHAR(50) NOT NULL,
            until_date DATE,
            generation_cap_days INTEGER,
            last_generated_until TIMESTAMPTZ,
            active BOOLEAN NOT NULL DEFAULT true,
            title VARCHAR(255) NOT NULL,
            customer_id UUID,
            customer_name VARCHAR(255) NOT NULL DEFAULT '',
            staff_id UUID REFERENCES staff(id) ON DELETE SET NULL,
            service_type VARCHAR(100),
            priority VARCHAR(20) NOT NULL DEFAULT 'medium',
            estimated_cost NUMERIC(10, 2),
            description TEXT,
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_appointment_series_duration CHECK (duration_minutes > 0),
            CONSTRAINT ck_appointment_series_cap CHECK (
                generation_cap_days IS NULL OR generation_cap_days > 0
            )
        )
    ''')
    op.execute('CREATE INDEX idx_appointment_series_tenant_active ON appointment_series(tenant_id, active)')
    op.execute('CREATE INDEX idx_appointment_series_watermark ON appointment_series(active, last_generated_until)')

    # ==========================================================================
    # Materialized appointments
    # ==========================================================================
    op.execute('''
        CREATE TABLE appointments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            series_id UUID REFERENCES appointment_series(id) ON DELETE SET NULL,
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
            title VARCHAR(255) NOT NULL,
            customer_id UUID,
            customer_name VARCHAR(255) NOT NULL DEFAULT '',
            staff_id UUID REFERENCES staff(id) ON DELETE SET NULL,
            service_type VARCHAR(100),
            priority VARCHAR(20) NOT NULL DEFAULT 'medium',
            estimated_cost NUMERIC(10, 2),
            actual_cost NUMERIC(10, 2),
            description TEXT,
            notes TEXT,
            completion_notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_appointments_series_start UNIQUE (series_id, start_at)
        )
    ''')
    op.execute('CREATE INDEX idx_appointments_tenant_start ON appointments(tenant_id, start_at)')
    op.execute('CREATE INDEX idx_appointments_series ON appointments(series_id)')
    op.execute('CREATE INDEX idx_appointments_staff_start ON appointments(staff_id, start_at)')

    op.execute('''
        CREATE TABLE appointment_exceptions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            series_id UUID NOT NULL REFERENCES appointment_series(id) ON DELETE CASCADE,
            original_start_at TIMESTAMPTZ NOT NULL,
            change_type VARCHAR(20) NOT NULL,
            replacement_appointment_id UUID REFERENCES appointments(id) ON DELETE SET NULL,
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_appointment_exceptions_series ON appointment_exceptions(series_id, original_start_at)')

    # ==========================================================================
    # External calendar sync
    # ==========================================================================
    op.execute('''
        CREATE TABLE staff_calendar_connections (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            staff_id UUID NOT NULL REFERENCES staff(id) ON DELETE CASCADE,
            provider VARCHAR(20) NOT NULL DEFAULT 'google',
            access_token_encrypted TEXT,
            refresh_token_encrypted TEXT,
            token_expires_at TIMESTAMPTZ,
            selected_calendar_id VARCHAR(255),
            connection_status VARCHAR(30) NOT NULL DEFAULT 'disconnected',
            last_sync_at TIMESTAMPTZ,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_staff_calendar_connection UNIQUE (staff_id, provider)
        )
    ''')

    op.execute('''
        CREATE TABLE calendar_watch_channels (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            staff_id UUID NOT NULL REFERENCES staff(id) ON DELETE CASCADE,
            channel_id VARCHAR(255) NOT NULL,
            resource_id VARCHAR(255) NOT NULL,
            calendar_id VARCHAR(255) NOT NULL,
            expiration TIMESTAMPTZ NOT NULL,
            sync_token TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE UNIQUE INDEX idx_calendar_watch_channels_channel ON calendar_watch_channels(channel_id)')
    op.execute('CREATE INDEX idx_calendar_watch_channels_expiration ON calendar_watch_channels(expiration)')
    op.execute('CREATE INDEX idx_calendar_watch_channels_staff ON calendar_watch_channels(staff_id)')

    op.execute('''
        CREATE TABLE staff_calendar_blocks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            staff_id UUID NOT NULL REFERENCES staff(id) ON DELETE CASCADE,
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            source VARCHAR(20) NOT NULL DEFAULT 'google',
            external_event_id VARCHAR(1024) NOT NULL,
            summary VARCHAR(50) NOT NULL DEFAULT 'Busy',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_staff_calendar_blocks_dedup UNIQUE (staff_id, source, external_event_id)
        )
    ''')
    op.execute('CREATE INDEX idx_staff_calendar_blocks_availability ON staff_calendar_blocks(staff_id, start_at, end_at)')
    op.execute('CREATE INDEX idx_staff_calendar_blocks_tenant ON staff_calendar_blocks(tenant_id)')

    op.execute('''
        CREATE TABLE calendar_sync_log (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            appointment_id UUID NOT NULL,
            staff_id UUID NOT NULL REFERENCES staff(id) ON DELETE CASCADE,
            google_event_id VARCHAR(1024),
            google_calendar_id VARCHAR(255),
            sync_status VARCHAR(20) NOT NULL DEFAULT 'pending',
            last_synced_at TIMESTAMPTZ,
            error_message TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_calendar_sync_log_appointment UNIQUE (appointment_id, staff_id)
        )
    ''')
    op.execute('CREATE INDEX idx_calendar_sync_log_staff ON calendar_sync_log(staff_id)')


def downgrade() -> None:
    """Drop all tables created by this migration."""
    op.execute('DROP TABLE IF EXISTS calendar_sync_log CASCADE')
    op.execute('DROP TABLE IF EXISTS staff_calendar_blocks CASCADE')
    op.execute('DROP TABLE IF EXISTS calendar_watch_channels CASCADE')
    op.execute('DROP TABLE IF EXISTS staff_calendar_connections CASCADE')
    op.execute('DROP TABLE IF EXISTS appointment_exceptions CASCADE')
    op.execute('DROP TABLE IF EXISTS appointments CASCADE')
    op.execute('DROP TABLE IF EXISTS appointment_series CASCADE')
    op.execute('DROP TABLE IF EXISTS staff CASCADE')
    op.execute('DROP TABLE IF EXISTS tenants CASCADE')
