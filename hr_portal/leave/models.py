"""Leave ORM models: LeaveType, Request, OvertimeUsage."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_portal.common.constants import RequestKind, RequestStatus
from hr_portal.database import Base


class LeaveType(Base):
    """Configured absence category, keyed by an opaque slug."""

    __tablename__ = "leave_types"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    label: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    subtracts_days: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    # Both set or both null: a fixed range forces the dates of every request.
    fixed_start: Mapped[Optional[date]] = mapped_column(sa.Date)
    fixed_end: Mapped[Optional[date]] = mapped_column(sa.Date)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    @property
    def has_fixed_range(self) -> bool:
        return self.fixed_start is not None and self.fixed_end is not None

    def __repr__(self) -> str:
        return f"<LeaveType {self.id!r} subtracts_days={self.subtracts_days}>"


class Request(Base):
    """Leave, overtime or adjustment request owned by one employee."""

    __tablename__ = "requests"
    __table_args__ = (
        sa.Index("ix_requests_employee_status", "employee_id", "status"),
        sa.Index("ix_requests_dates", "start_date", "end_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    # No foreign key: a request outlives a removed employee and the engine
    # then skips the balance mutation.
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    type_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    label: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    hours: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(8, 2))
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[RequestStatus] = mapped_column(
        sa.Enum(RequestStatus, name="request_status"),
        nullable=False,
        default=RequestStatus.pending,
    )
    admin_comment: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_by_admin: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    consumed_hours: Mapped[Decimal] = mapped_column(
        sa.Numeric(8, 2), nullable=False, default=Decimal("0")
    )
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()
    )
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id, "eager_defaults": True}

    # Relationships
    overtime_usage: Mapped[list[OvertimeUsage]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="selectin",
        foreign_keys="OvertimeUsage.request_id",
    )

    @property
    def kind(self) -> RequestKind:
        return RequestKind.from_type_id(self.type_id)

    @property
    def remaining_hours(self) -> Decimal:
        return (self.hours or Decimal("0")) - (self.consumed_hours or Decimal("0"))

    def __repr__(self) -> str:
        return f"<Request {self.id} {self.type_id} {self.status.value}>"


class OvertimeUsage(Base):
    """Hours a consuming request draws from one earn-type source request."""

    __tablename__ = "overtime_usages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    hours_used: Mapped[Decimal] = mapped_column(sa.Numeric(8, 2), nullable=False)

    # Relationships
    request: Mapped[Request] = relationship(
        back_populates="overtime_usage", foreign_keys=[request_id]
    )
