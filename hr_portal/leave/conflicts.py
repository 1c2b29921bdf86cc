"""Conflict detector and absence calendar.

Both views are re-derived from the stored requests on every call. Only
leave-kind requests count as absences; overtime and adjustment records
never block a day.
"""

from __future__ import annotations

import calendar
import uuid
from collections import defaultdict
from datetime import date, timedelta
from typing import Collection, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.common.constants import RESERVED_TYPE_IDS, RequestStatus, UserRole
from hr_portal.common.exceptions import ValidationException
from hr_portal.core_hr.models import Department, Employee
from hr_portal.core_hr.service import DepartmentService
from hr_portal.leave.models import Request
from hr_portal.leave.schemas import CalendarEntry, CalendarOut, ConflictRecord


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationException({"month": ["Month must be between 1 and 12."]})
    if not 1900 <= year <= 9999:
        raise ValidationException({"year": ["Year is out of range."]})
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def _absence_query(first: date, last: date, statuses: Collection[RequestStatus]):
    return (
        select(Request, Employee)
        .join(Employee, Employee.id == Request.employee_id)
        .where(
            Request.status.in_(list(statuses)),
            Request.type_id.not_in(sorted(RESERVED_TYPE_IDS)),
            Request.start_date <= last,
            or_(
                Request.end_date >= first,
                and_(Request.end_date.is_(None), Request.start_date >= first),
            ),
        )
        .order_by(Request.start_date)
    )


async def list_conflicts(
    db: AsyncSession,
    year: int,
    month: int,
    department_id: Optional[uuid.UUID] = None,
    *,
    department_scope: Optional[Collection[uuid.UUID]] = None,
) -> list[ConflictRecord]:
    """Department/day pairs with two or more approved absences in the month.

    *department_scope*, when given, restricts the scan to those departments
    (a supervisor's view). Employees without a department never conflict.
    """
    first, last = _month_bounds(year, month)

    query = _absence_query(first, last, [RequestStatus.approved])
    query = query.where(Employee.department_id.is_not(None))
    if department_id is not None:
        query = query.where(Employee.department_id == department_id)
    if department_scope is not None:
        query = query.where(Employee.department_id.in_(list(department_scope)))

    rows = (await db.execute(query)).all()

    # (day, department) -> {employee_id: name}
    absent: dict[tuple[date, uuid.UUID], dict[uuid.UUID, str]] = defaultdict(dict)
    for request, employee in rows:
        start = max(request.start_date, first)
        end = min(request.end_date or request.start_date, last)
        day = start
        while day <= end:
            absent[(day, employee.department_id)][employee.id] = employee.name
            day += timedelta(days=1)

    clashes = {key: names for key, names in absent.items() if len(names) > 1}
    if not clashes:
        return []

    dept_ids = {dept_id for _, dept_id in clashes}
    dept_rows = await db.execute(
        select(Department.id, Department.name).where(Department.id.in_(list(dept_ids)))
    )
    dept_names = {row.id: row.name for row in dept_rows.all()}

    return [
        ConflictRecord(
            date=day,
            department_id=dept_id,
            department_name=dept_names.get(dept_id, str(dept_id)),
            employee_names=sorted(names.values()),
        )
        for (day, dept_id), names in sorted(clashes.items(), key=lambda kv: (kv[0][0], str(kv[0][1])))
    ]


async def get_calendar(
    db: AsyncSession,
    year: int,
    month: int,
    viewer: Employee,
    department_id: Optional[uuid.UUID] = None,
) -> CalendarOut:
    """Pending and approved absences in the month that *viewer* may see.

    Admins see everyone, supervisors themselves plus the departments they
    supervise, workers only themselves.
    """
    first, last = _month_bounds(year, month)
    query = _absence_query(first, last, [RequestStatus.pending, RequestStatus.approved])

    if department_id is not None:
        query = query.where(Employee.department_id == department_id)
    if viewer.role == UserRole.supervisor:
        supervised = await DepartmentService.supervised_department_ids(db, viewer.id)
        query = query.where(
            or_(
                Employee.id == viewer.id,
                Employee.department_id.in_(list(supervised)),
            )
        )
    elif viewer.role != UserRole.admin:
        query = query.where(Employee.id == viewer.id)

    rows = (await db.execute(query)).all()
    entries = [
        CalendarEntry(
            request_id=request.id,
            employee_id=employee.id,
            employee_name=employee.name,
            department_id=employee.department_id,
            type_id=request.type_id,
            label=request.label,
            start_date=request.start_date,
            end_date=request.end_date or request.start_date,
            status=request.status,
        )
        for request, employee in rows
    ]
    return CalendarOut(month=month, year=year, entries=entries, total_entries=len(entries))
