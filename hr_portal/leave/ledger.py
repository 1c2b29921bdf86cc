"""Balance ledger — pure computation of a request's balance impact.

Nothing in here touches the database. The lifecycle engine resolves the
leave type and calls :func:`compute_impact`; applying the result exactly
once per state change is the engine's job.

Rules, in order:

1. A leave type with ``subtracts_days`` yields
   ``delta_days = -inclusive_day_count(start, end or start)``.
2. The request kind overlays its own effect on top of (1):

   ====================  ==============================
   overtime_earn         ``delta_hours = +hours``
   overtime_spend_days   ``delta_hours = -hours``
   overtime_pay          ``delta_hours = -hours``
   adjustment_days       ``delta_days  = +hours``
   adjustment_overtime   ``delta_hours = +hours``
   worked_holiday        ``delta_days  = +1``
   leave                 step (1) only
   ====================  ==============================
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Union

from hr_portal.common.constants import ZERO, RequestKind
from hr_portal.leave.schemas import BalanceImpact, LeaveTypeConfig

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]

_SECONDS_PER_DAY = 86400


# ── Date helpers ────────────────────────────────────────────────────

def _to_datetime(value: Optional[DateLike]) -> Optional[datetime]:
    """Coerce a date, datetime or ISO-8601 string to a naive UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return datetime.combine(value, time.min)
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def inclusive_day_count(start: DateLike, end: Optional[DateLike] = None) -> Optional[int]:
    """Number of calendar days covered, counting both boundary days.

    Symmetric in argument order; a same-day range counts as 1. Returns
    None when either date cannot be parsed.
    """
    start_dt = _to_datetime(start)
    end_dt = _to_datetime(end if end is not None else start)
    if start_dt is None or end_dt is None:
        return None
    seconds = abs((end_dt - start_dt).total_seconds())
    return math.ceil(seconds / _SECONDS_PER_DAY) + 1


def _to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return ZERO


# ── Kind overlays ───────────────────────────────────────────────────
# Each overlay receives the day delta from step (1) and the request hours
# and returns the final (delta_days, delta_hours).

Overlay = Callable[[Decimal, Decimal], tuple[Decimal, Decimal]]

_OVERLAYS: dict[RequestKind, Overlay] = {
    RequestKind.leave: lambda days, hours: (days, ZERO),
    RequestKind.overtime_earn: lambda days, hours: (days, hours),
    RequestKind.overtime_spend_days: lambda days, hours: (days, -hours),
    RequestKind.overtime_pay: lambda days, hours: (days, -hours),
    RequestKind.adjustment_days: lambda days, hours: (hours, ZERO),
    RequestKind.adjustment_overtime: lambda days, hours: (days, hours),
    RequestKind.worked_holiday: lambda days, hours: (Decimal("1"), ZERO),
}

_missing = set(RequestKind) - set(_OVERLAYS)
if _missing:
    raise RuntimeError(
        f"Ledger overlay missing for request kinds: {sorted(k.value for k in _missing)}"
    )


# ── Public API ──────────────────────────────────────────────────────

def compute_impact(
    type_id: str,
    start_date: Optional[DateLike],
    end_date: Optional[DateLike] = None,
    hours=None,
    *,
    leave_type: Optional[LeaveTypeConfig] = None,
) -> BalanceImpact:
    """Signed ``(delta_days, delta_hours)`` the request causes while active.

    *leave_type* is the catalog entry for *type_id*, or None when the id
    is a built-in kind or unknown to the catalog.
    """
    delta_days = ZERO
    if leave_type is not None and leave_type.subtracts_days:
        days = inclusive_day_count(start_date, end_date or start_date)
        if days is None:
            logger.warning(
                "Unparseable dates for type %s (%r..%r); day impact is zero",
                type_id, start_date, end_date,
            )
        else:
            delta_days = -Decimal(days)

    kind = RequestKind.from_type_id(type_id)
    delta_days, delta_hours = _OVERLAYS[kind](delta_days, _to_decimal(hours))
    return BalanceImpact(delta_days=delta_days, delta_hours=delta_hours)
