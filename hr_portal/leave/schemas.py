"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Draft  → request bodies (write)
  - *Out                        → response bodies (read)
"""

from __future__ import annotations

import datetime as dt
import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hr_portal.common.constants import RESERVED_TYPE_IDS, RequestStatus

_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9_\-]{0,63}$")


# ═════════════════════════════════════════════════════════════════════
# Leave Type catalog
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeConfig(BaseModel):
    """Leave type as served by the catalog (stored or built-in default)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    label: str
    subtracts_days: bool = True
    fixed_start: Optional[date] = None
    fixed_end: Optional[date] = None

    @property
    def has_fixed_range(self) -> bool:
        return self.fixed_start is not None and self.fixed_end is not None


class _FixedRangeMixin(BaseModel):
    fixed_start: Optional[date] = None
    fixed_end: Optional[date] = None

    @model_validator(mode="after")
    def validate_fixed_range(self):
        if (self.fixed_start is None) != (self.fixed_end is None):
            raise ValueError("fixed_start and fixed_end must be set together.")
        if self.fixed_start and self.fixed_end and self.fixed_start > self.fixed_end:
            raise ValueError("fixed_start must be on or before fixed_end.")
        return self


class LeaveTypeCreate(_FixedRangeMixin):
    """Payload for configuring a new leave type."""

    id: str = Field(..., description="Slug identifier, e.g. 'vacation'")
    label: str = Field(..., min_length=1, max_length=100)
    subtracts_days: bool = True

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip().lower()
        if not _SLUG_RE.match(v):
            raise ValueError("id must be a lowercase slug (letters, digits, '_' or '-').")
        if v in RESERVED_TYPE_IDS:
            raise ValueError(f"'{v}' is reserved for a built-in request kind.")
        return v


class LeaveTypeUpdate(_FixedRangeMixin):
    """Payload for updating a leave type; the id is immutable."""

    label: str = Field(..., min_length=1, max_length=100)
    subtracts_days: bool = True


# ═════════════════════════════════════════════════════════════════════
# Requests — write
# ═════════════════════════════════════════════════════════════════════


class OvertimeUsageIn(BaseModel):
    """One source record and the hours drawn from it."""

    source_request_id: uuid.UUID
    hours_used: Decimal = Field(..., gt=0, max_digits=8, decimal_places=2)


class RequestDraft(BaseModel):
    """Editable fields of a request, as collected by the request form."""

    type_id: str = Field(..., min_length=1, max_length=64)
    start_date: date
    end_date: Optional[date] = None
    hours: Optional[Decimal] = Field(None, max_digits=8, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=1000)
    overtime_usage: list[OvertimeUsageIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_dates(self) -> "RequestDraft":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date.")
        return self


class RequestCreate(RequestDraft):
    """Create payload: admins may target another employee and pre-approve."""

    employee_id: Optional[uuid.UUID] = Field(
        None, description="Owner of the request; defaults to the caller"
    )
    status: RequestStatus = RequestStatus.pending


class RequestStatusUpdate(BaseModel):
    """Payload for approving, rejecting or reopening a request."""

    status: RequestStatus
    comment: Optional[str] = Field(None, max_length=500)


class BalanceAdjustRequest(BaseModel):
    """Admin balance correction, recorded as an adjustment request."""

    days: Optional[Decimal] = Field(
        None, max_digits=8, decimal_places=2, description="Signed day correction"
    )
    hours: Optional[Decimal] = Field(
        None, max_digits=8, decimal_places=2, description="Signed overtime-hour correction"
    )
    reason: str = Field(..., min_length=3, max_length=500)
    effective_date: date = Field(default_factory=date.today)

    @model_validator(mode="after")
    def validate_amount(self) -> "BalanceAdjustRequest":
        if not self.days and not self.hours:
            raise ValueError("Provide a non-zero days or hours correction.")
        return self


# ═════════════════════════════════════════════════════════════════════
# Requests — read
# ═════════════════════════════════════════════════════════════════════


class OvertimeUsageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source_request_id: uuid.UUID
    hours_used: Decimal


class RequestOut(BaseModel):
    """Full request representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    type_id: str
    label: str
    start_date: date
    end_date: Optional[date] = None
    hours: Optional[Decimal] = None
    reason: Optional[str] = None
    status: RequestStatus
    admin_comment: Optional[str] = None
    created_by_admin: bool = False
    consumed_hours: Decimal = Decimal("0")
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    overtime_usage: list[OvertimeUsageOut] = Field(default_factory=list)

    # Enriched by service
    employee_name: Optional[str] = None


class OvertimeSourceOut(RequestOut):
    """Earn-type record with capacity left to draw from."""

    remaining_hours: Decimal


class BalanceImpact(BaseModel):
    """Signed effect of a request on the owner's balances while active."""

    delta_days: Decimal = Decimal("0")
    delta_hours: Decimal = Decimal("0")

    def __neg__(self) -> "BalanceImpact":
        return BalanceImpact(delta_days=-self.delta_days, delta_hours=-self.delta_hours)

    @property
    def is_zero(self) -> bool:
        return not self.delta_days and not self.delta_hours


class ImpactPreview(BaseModel):
    """Impact of a draft plus the caller's balances after applying it."""

    impact: BalanceImpact
    label: str
    days_available_after: Decimal
    overtime_hours_after: Decimal


class LifecycleResult(BaseModel):
    """Outcome of a lifecycle operation.

    ``balance_applied`` is False when the owning employee could not be
    resolved; the request mutation still happened and ``warnings`` says why.
    """

    request: Optional[RequestOut] = None
    balance_applied: bool = True
    impact: BalanceImpact = Field(default_factory=BalanceImpact)
    warnings: list[str] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Calendar / Conflicts
# ═════════════════════════════════════════════════════════════════════


class ConflictRecord(BaseModel):
    """Two or more employees of one department absent on the same day."""

    date: dt.date
    department_id: uuid.UUID
    department_name: str
    employee_names: list[str]


class CalendarEntry(BaseModel):
    request_id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: str
    department_id: Optional[uuid.UUID] = None
    type_id: str
    label: str
    start_date: date
    end_date: date
    status: RequestStatus


class CalendarOut(BaseModel):
    """Absence calendar for a given month."""

    month: int
    year: int
    entries: list[CalendarEntry]
    total_entries: int = 0
