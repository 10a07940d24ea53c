"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Uuid, func, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, utcnow
from app.db.enums import Role

if TYPE_CHECKING:
    from app.db.models import AppointmentSeries


class Tenant(Base):
    """
    A practice in the multi-tenant system.

    All domain entities belong to a tenant
    and must be scoped by tenant_id in all queries.
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(50), default="America/New_York", server_default="America/New_York", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    # Relationships
    staff: Mapped[list["Staff"]] = relationship(
        back_populates="tenant", cascade="all, delete-orphan"
    )
    series: Mapped[list["AppointmentSeries"]] = relationship(
        back_populates="tenant", cascade="all, delete-orphan"
    )


class Staff(Base):
    """
    Practice staff member (clinician, front desk, admin).

    The authenticated session subject; calendar connections and busy
    blocks hang off staff rows.
    """

    __tablename__ = "staff"
    __table_args__ = (Index("idx_staff_tenant", "tenant_id", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(
        String(30), default=Role.CLINICIAN.value, server_default=Role.CLINICIAN.value, nullable=False
    )
    timezone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    token_version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    tenant: Mapped["Tenant"] = relationship(back_populates="staff")
