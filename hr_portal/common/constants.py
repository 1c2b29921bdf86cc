"""Enums and constants for the HR portal — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    worker = "worker"
    supervisor = "supervisor"
    admin = "admin"


# ── Requests ────────────────────────────────────────────────────────

class RequestStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class RequestKind(str, enum.Enum):
    """Closed set of request kinds driving the ledger sign rules.

    ``leave`` covers every configured leave type id; the other members are
    matched against the literal type id stored on the request.
    """

    leave = "leave"
    overtime_earn = "overtime_earn"
    overtime_spend_days = "overtime_spend_days"
    overtime_pay = "overtime_pay"
    adjustment_days = "adjustment_days"
    adjustment_overtime = "adjustment_overtime"
    worked_holiday = "worked_holiday"

    @classmethod
    def from_type_id(cls, type_id: str) -> RequestKind:
        if type_id in RESERVED_TYPE_IDS:
            return cls(type_id)
        return cls.leave

    @property
    def is_adjustment(self) -> bool:
        return self in (RequestKind.adjustment_days, RequestKind.adjustment_overtime)

    @property
    def is_consumption(self) -> bool:
        return self in (RequestKind.overtime_spend_days, RequestKind.overtime_pay)

    @property
    def is_overtime_source(self) -> bool:
        return self in (RequestKind.overtime_earn, RequestKind.worked_holiday)


# Type ids reserved for built-in kinds; configured leave types may not use them.
RESERVED_TYPE_IDS = frozenset(k.value for k in RequestKind if k is not RequestKind.leave)

BUILTIN_LABELS: dict[RequestKind, str] = {
    RequestKind.overtime_earn: "Overtime Earned",
    RequestKind.overtime_spend_days: "Overtime Exchanged for Days",
    RequestKind.overtime_pay: "Overtime Payout",
    RequestKind.adjustment_days: "Manual Day Adjustment",
    RequestKind.adjustment_overtime: "Manual Overtime Adjustment",
    RequestKind.worked_holiday: "Worked Holiday",
}


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    alert = "alert"


# ── Misc constants ──────────────────────────────────────────────────

ZERO = Decimal("0")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
