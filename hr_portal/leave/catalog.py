"""Request type catalog — configured leave types plus built-in kinds.

Lookups are read-only. While the ``leave_types`` table is empty the
catalog serves :func:`default_leave_types`, whose Christmas closure
tracks the current year at lookup time. The first administrative write
materialises those defaults so they do not disappear once a custom type
is added; from then on the stored fixed range is plain configuration and
admins move it forward with `update_leave_type`.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.common.audit import create_audit_entry
from hr_portal.common.constants import BUILTIN_LABELS, RequestKind, RequestStatus
from hr_portal.common.exceptions import AppException, ConflictError, NotFoundException
from hr_portal.leave.models import LeaveType, Request
from hr_portal.leave.schemas import LeaveTypeConfig, LeaveTypeCreate, LeaveTypeUpdate

logger = logging.getLogger(__name__)


def default_leave_types(year: Optional[int] = None) -> list[LeaveTypeConfig]:
    year = year or date.today().year
    return [
        LeaveTypeConfig(id="vacation", label="Vacation", subtracts_days=True),
        LeaveTypeConfig(id="sick", label="Sick Leave", subtracts_days=False),
        LeaveTypeConfig(id="personal", label="Personal Days", subtracts_days=True),
        LeaveTypeConfig(
            id="christmas",
            label="Christmas Closure",
            subtracts_days=True,
            fixed_start=date(year, 12, 24),
            fixed_end=date(year, 12, 31),
        ),
    ]


# ── Lookups ─────────────────────────────────────────────────────────

async def _is_empty(db: AsyncSession) -> bool:
    count = (await db.execute(select(func.count()).select_from(LeaveType))).scalar_one()
    return count == 0


async def list_leave_types(db: AsyncSession) -> list[LeaveTypeConfig]:
    """All configured leave types, or the built-in defaults if none are stored."""
    rows = (await db.execute(select(LeaveType).order_by(LeaveType.label))).scalars().all()
    if not rows:
        return default_leave_types()
    return [LeaveTypeConfig.model_validate(r) for r in rows]


async def resolve_type(db: AsyncSession, type_id: str) -> Optional[LeaveTypeConfig]:
    """Return the leave type configured for *type_id*.

    Built-in kinds have no catalog entry and resolve to None. An unknown
    id also resolves to None and is logged: callers treat it as a type
    with no day-subtraction effect.
    """
    if RequestKind.from_type_id(type_id) is not RequestKind.leave:
        return None

    row = await db.get(LeaveType, type_id)
    if row is not None:
        return LeaveTypeConfig.model_validate(row)

    if await _is_empty(db):
        for default in default_leave_types():
            if default.id == type_id:
                return default

    logger.warning("Unknown leave type %r; treating as zero-effect", type_id)
    return None


def label_for(type_id: str, leave_type: Optional[LeaveTypeConfig]) -> str:
    """Display label for a request: catalog label, built-in label or raw id."""
    if leave_type is not None:
        return leave_type.label
    kind = RequestKind.from_type_id(type_id)
    return BUILTIN_LABELS.get(kind, type_id)


# ── Administrative configuration ────────────────────────────────────

async def _ensure_not_backing_approved(db: AsyncSession, type_id: str) -> None:
    # Approved requests were charged with the current day rule; changing or
    # removing it would make their reversal drift.
    count = (
        await db.execute(
            select(func.count())
            .select_from(Request)
            .where(Request.type_id == type_id, Request.status == RequestStatus.approved)
        )
    ).scalar_one()
    if count:
        raise AppException(
            status_code=409,
            error_type="leave-type-in-use",
            title="Leave Type In Use",
            detail=f"Leave type '{type_id}' backs {count} approved request(s).",
        )


async def _materialise_defaults(db: AsyncSession) -> None:
    if not await _is_empty(db):
        return
    defaults = default_leave_types()
    for default in defaults:
        db.add(LeaveType(**default.model_dump()))
    await db.flush()
    logger.info("Seeded %d default leave types", len(defaults))


async def create_leave_type(
    db: AsyncSession,
    data: LeaveTypeCreate,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveTypeConfig:
    await _materialise_defaults(db)
    if await db.get(LeaveType, data.id) is not None:
        raise ConflictError("id", data.id)

    row = LeaveType(**data.model_dump())
    db.add(row)
    await db.flush()

    await create_audit_entry(
        db,
        action="create",
        entity_type="leave_type",
        entity_id=row.id,
        actor_id=actor_id,
        new_values=data.model_dump(mode="json"),
    )
    logger.info("Leave type %s created", row.id)
    return LeaveTypeConfig.model_validate(row)


async def update_leave_type(
    db: AsyncSession,
    type_id: str,
    data: LeaveTypeUpdate,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> LeaveTypeConfig:
    """Update a leave type. Existing requests keep their stored label."""
    await _materialise_defaults(db)
    row = await db.get(LeaveType, type_id)
    if row is None:
        raise NotFoundException("LeaveType", type_id)

    if data.subtracts_days != row.subtracts_days:
        await _ensure_not_backing_approved(db, type_id)

    old_values = LeaveTypeConfig.model_validate(row).model_dump(mode="json")
    for field, value in data.model_dump().items():
        setattr(row, field, value)
    await db.flush()

    await create_audit_entry(
        db,
        action="update",
        entity_type="leave_type",
        entity_id=row.id,
        actor_id=actor_id,
        old_values=old_values,
        new_values=data.model_dump(mode="json"),
    )
    return LeaveTypeConfig.model_validate(row)


async def delete_leave_type(
    db: AsyncSession,
    type_id: str,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> None:
    """Remove a leave type.

    Pending or rejected requests of a removed type stay; from then on they
    resolve as unknown and carry no day effect.
    """
    await _materialise_defaults(db)
    row = await db.get(LeaveType, type_id)
    if row is None:
        raise NotFoundException("LeaveType", type_id)
    await _ensure_not_backing_approved(db, type_id)

    old_values = LeaveTypeConfig.model_validate(row).model_dump(mode="json")
    await db.delete(row)
    await db.flush()

    await create_audit_entry(
        db,
        action="delete",
        entity_type="leave_type",
        entity_id=type_id,
        actor_id=actor_id,
        old_values=old_values,
    )
    logger.info("Leave type %s deleted", type_id)
