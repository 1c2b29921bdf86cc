"""Core HR Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Out / *Summary    → response bodies (read)
"""


import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from hr_portal.common.constants import UserRole


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    supervisor_ids: list[uuid.UUID] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank.")
        return v


class SupervisorsUpdate(BaseModel):
    """Replace the full supervisor list of a department."""

    supervisor_ids: list[uuid.UUID]


class DepartmentOut(BaseModel):
    """Full department representation."""

    id: uuid.UUID
    name: str
    supervisor_ids: list[uuid.UUID] = Field(default_factory=list)
    employee_count: int = 0


# ═════════════════════════════════════════════════════════════════════
# Employee — write schemas
# ═════════════════════════════════════════════════════════════════════


class EmployeeCreate(BaseModel):
    """Payload for onboarding a new employee with opening balances."""

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    role: UserRole = UserRole.worker
    department_id: Optional[uuid.UUID] = None
    days_available: Decimal = Field(Decimal("0"), max_digits=8, decimal_places=2)
    overtime_hours: Decimal = Field(Decimal("0"), max_digits=8, decimal_places=2)


class RoleUpdate(BaseModel):
    role: UserRole


# ═════════════════════════════════════════════════════════════════════
# Employee — read schemas
# ═════════════════════════════════════════════════════════════════════


class EmployeeSummary(BaseModel):
    """Minimal employee reference, visible to every authenticated user."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    department_id: Optional[uuid.UUID] = None


class EmployeeOut(BaseModel):
    """Employee with balances; shown to the employee, supervisors and admins."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    department_id: Optional[uuid.UUID] = None
    days_available: Decimal
    overtime_hours: Decimal
    is_active: bool = True
    created_at: datetime
