"""Overtime consumption tracker.

Earn-type records (``overtime_earn``, ``worked_holiday``) carry a running
``consumed_hours``. Consuming requests (``overtime_spend_days``,
``overtime_pay``) name the sources they draw from in ``overtime_usage``.

Policy: sources are drawn when a consumer becomes approved and released
when it leaves approved or is deleted while approved. A pending consumer
holds nothing, so editing or deleting it needs no bookkeeping. Capacity is
re-validated at approval time because other consumers may have drawn from
the same source in the meantime.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.common.audit import create_audit_entry
from hr_portal.common.constants import ZERO, RequestKind, RequestStatus
from hr_portal.common.exceptions import ValidationException
from hr_portal.config import settings
from hr_portal.leave.models import Request
from hr_portal.leave.schemas import OvertimeUsageIn

logger = logging.getLogger(__name__)

SOURCE_TYPE_IDS = (RequestKind.overtime_earn.value, RequestKind.worked_holiday.value)


async def _lock_requests(
    db: AsyncSession, request_ids: Sequence[uuid.UUID]
) -> dict[uuid.UUID, Request]:
    if not request_ids:
        return {}
    result = await db.execute(
        select(Request)
        .where(Request.id.in_(list(request_ids)))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {r.id: r for r in result.scalars().all()}


def _is_qualifying_source(source: Request) -> bool:
    return (
        source.status == RequestStatus.approved
        and source.kind.is_overtime_source
        and source.remaining_hours > settings.OVERTIME_EPSILON
    )


# ── Queries ─────────────────────────────────────────────────────────

async def list_available_sources(db: AsyncSession, employee_id: uuid.UUID) -> list[Request]:
    """Approved earn-type records of *employee_id* with hours left, oldest first."""
    result = await db.execute(
        select(Request)
        .where(
            Request.employee_id == employee_id,
            Request.status == RequestStatus.approved,
            Request.type_id.in_(SOURCE_TYPE_IDS),
        )
        .order_by(Request.start_date, Request.created_at)
    )
    return [r for r in result.scalars().all() if _is_qualifying_source(r)]


# ── Validation ──────────────────────────────────────────────────────

async def validate_usage(
    db: AsyncSession,
    employee_id: uuid.UUID,
    usage: Sequence[OvertimeUsageIn],
    hours: Optional[Decimal],
) -> Decimal:
    """Check a consuming request's usage list and return its hours.

    Every entry must name a distinct, qualifying source owned by
    *employee_id* and draw no more than that source's remaining hours.
    When *hours* is given it must equal the usage total; otherwise the
    total is returned as the derived hours. Without usage entries the
    request is a plain draw on the balance and needs positive *hours*.

    Raises:
        ValidationException: naming each offending source.
    """
    eps = settings.OVERTIME_EPSILON

    if not usage:
        if hours is None or hours <= ZERO:
            raise ValidationException(
                {"hours": ["Positive hours are required when no overtime sources are selected."]}
            )
        return hours

    errors: list[str] = []
    seen: set[uuid.UUID] = set()
    for entry in usage:
        if entry.source_request_id in seen:
            errors.append(f"Source {entry.source_request_id} is referenced more than once.")
        seen.add(entry.source_request_id)

    sources = await _lock_requests(db, list(seen))
    for entry in usage:
        source = sources.get(entry.source_request_id)
        if source is None:
            errors.append(f"Source {entry.source_request_id} does not exist.")
            continue
        if source.employee_id != employee_id:
            errors.append(f"Source {source.id} belongs to another employee.")
            continue
        if not _is_qualifying_source(source):
            errors.append(f"Source {source.id} is not an approved overtime record with hours left.")
            continue
        if entry.hours_used - source.remaining_hours > eps:
            errors.append(
                f"Source {source.id}: requested {entry.hours_used} h exceeds "
                f"remaining {source.remaining_hours} h."
            )

    total = sum((entry.hours_used for entry in usage), ZERO)
    if hours is not None and abs(total - hours) > eps:
        errors.append(f"Selected hours total {total} h but the request is for {hours} h.")

    if errors:
        raise ValidationException({"overtime_usage": errors})
    return total


# ── Draw / release ──────────────────────────────────────────────────

async def draw(
    db: AsyncSession,
    request: Request,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> None:
    """Charge each source with the hours *request* uses from it."""
    if not request.overtime_usage:
        return

    usage = [
        OvertimeUsageIn(source_request_id=u.source_request_id, hours_used=u.hours_used)
        for u in request.overtime_usage
    ]
    await validate_usage(db, request.employee_id, usage, request.hours)

    sources = await _lock_requests(db, [u.source_request_id for u in usage])
    for entry in usage:
        source = sources[entry.source_request_id]
        source.consumed_hours = (source.consumed_hours or ZERO) + entry.hours_used
    await db.flush()

    await create_audit_entry(
        db,
        action="draw",
        entity_type="request",
        entity_id=request.id,
        actor_id=actor_id,
        new_values={str(e.source_request_id): str(e.hours_used) for e in usage},
    )
    logger.info("Request %s drew %s h from %d source(s)", request.id, request.hours, len(usage))


async def release(
    db: AsyncSession,
    request: Request,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> None:
    """Give back the hours *request* drew from its sources."""
    if not request.overtime_usage:
        return

    sources = await _lock_requests(db, [u.source_request_id for u in request.overtime_usage])
    released: dict[str, str] = {}
    for entry in request.overtime_usage:
        source = sources.get(entry.source_request_id)
        if source is None:
            logger.warning(
                "Source %s of request %s no longer exists; nothing to release",
                entry.source_request_id, request.id,
            )
            continue
        source.consumed_hours = max(ZERO, (source.consumed_hours or ZERO) - entry.hours_used)
        released[str(source.id)] = str(entry.hours_used)
    await db.flush()

    await create_audit_entry(
        db,
        action="release",
        entity_type="request",
        entity_id=request.id,
        actor_id=actor_id,
        old_values=released,
    )
    logger.info("Request %s released %d source(s)", request.id, len(released))
