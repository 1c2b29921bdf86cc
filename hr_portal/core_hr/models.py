"""Core HR ORM models: Department, Employee.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
``Employee`` carries the day and overtime-hour balances that only the
request lifecycle engine mutates; ``version_id`` turns interleaved writers
into a StaleDataError instead of a lost update.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_portal.common.constants import UserRole
from hr_portal.database import Base


# ═════════════════════════════════════════════════════════════════════
# Department ⇄ supervisors association
# ═════════════════════════════════════════════════════════════════════

department_supervisors = sa.Table(
    "department_supervisors",
    Base.metadata,
    sa.Column(
        "department_id",
        UUID(as_uuid=True),
        sa.ForeignKey("departments.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    sa.Column(
        "employee_id",
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class Department(Base):
    """Organisational department; conflicts are grouped per department."""

    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    employees: Mapped[list[Employee]] = relationship(
        back_populates="department", foreign_keys="Employee.department_id",
    )
    supervisors: Mapped[list[Employee]] = relationship(
        secondary=department_supervisors,
        back_populates="supervised_departments",
    )

    def __repr__(self) -> str:
        return f"<Department {self.name!r}>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Employee record with its leave-day and overtime-hour balances."""

    __tablename__ = "employees"

    # ── Primary key ─────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Identity ────────────────────────────────────────────────────
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.worker,
    )

    # ── Org ─────────────────────────────────────────────────────────
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id", ondelete="SET NULL"),
    )

    # ── Balances ────────────────────────────────────────────────────
    days_available: Mapped[Decimal] = mapped_column(
        sa.Numeric(8, 2), nullable=False, default=Decimal("0"),
    )
    overtime_hours: Mapped[Decimal] = mapped_column(
        sa.Numeric(8, 2), nullable=False, default=Decimal("0"),
    )

    # ── Status / Timestamps ─────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        onupdate=sa.func.now(),
    )
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id, "eager_defaults": True}

    # ── Relationships ───────────────────────────────────────────────
    department: Mapped[Optional[Department]] = relationship(
        back_populates="employees", foreign_keys=[department_id],
    )
    supervised_departments: Mapped[list[Department]] = relationship(
        secondary=department_supervisors,
        back_populates="supervisors",
    )

    def __repr__(self) -> str:
        return f"<Employee {self.email} ({self.role.value})>"
