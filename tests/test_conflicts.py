"""Tests for the conflict detector and the absence calendar."""

from __future__ import annotations

from datetime import date

import pytest

from hr_portal.common.constants import RequestStatus
from hr_portal.common.exceptions import ValidationException
from hr_portal.leave.conflicts import get_calendar, list_conflicts

from tests.conftest import make_department, make_employee, make_request


class TestListConflicts:

    async def test_two_approved_absences_same_day_conflict(self, db, department):
        ana = await make_employee(db, name="Ana", department_id=department.id)
        ben = await make_employee(db, name="Ben", department_id=department.id)
        await make_request(
            db, ana, start=date(2024, 6, 28), end=date(2024, 7, 1), status=RequestStatus.approved,
        )
        await make_request(
            db, ben, start=date(2024, 7, 1), end=date(2024, 7, 1), status=RequestStatus.approved,
        )

        records = await list_conflicts(db, 2024, 7)

        assert len(records) == 1
        record = records[0]
        assert record.date == date(2024, 7, 1)
        assert record.department_id == department.id
        assert record.department_name == "Engineering"
        assert record.employee_names == ["Ana", "Ben"]

    async def test_pending_absences_do_not_conflict(self, db, department):
        ana = await make_employee(db, name="Ana", department_id=department.id)
        ben = await make_employee(db, name="Ben", department_id=department.id)
        await make_request(db, ana, start=date(2024, 7, 1), status=RequestStatus.approved)
        await make_request(db, ben, start=date(2024, 7, 1), status=RequestStatus.pending)

        assert await list_conflicts(db, 2024, 7) == []

    async def test_different_departments_do_not_conflict(self, db, department):
        sales = await make_department(db, name="Sales")
        ana = await make_employee(db, name="Ana", department_id=department.id)
        sol = await make_employee(db, name="Sol", department_id=sales.id)
        await make_request(db, ana, start=date(2024, 7, 1), status=RequestStatus.approved)
        await make_request(db, sol, start=date(2024, 7, 1), status=RequestStatus.approved)

        assert await list_conflicts(db, 2024, 7) == []

    async def test_overtime_records_are_not_absences(self, db, department):
        ana = await make_employee(db, name="Ana", department_id=department.id)
        ben = await make_employee(db, name="Ben", department_id=department.id)
        await make_request(db, ana, start=date(2024, 7, 1), status=RequestStatus.approved)
        await make_request(
            db, ben, type_id="overtime_earn", hours="4", start=date(2024, 7, 1),
            status=RequestStatus.approved,
        )

        assert await list_conflicts(db, 2024, 7) == []

    async def test_same_employee_twice_is_not_a_conflict(self, db, department):
        ana = await make_employee(db, name="Ana", department_id=department.id)
        await make_request(db, ana, start=date(2024, 7, 1), status=RequestStatus.approved)
        await make_request(
            db, ana, type_id="personal", start=date(2024, 7, 1), status=RequestStatus.approved,
        )

        assert await list_conflicts(db, 2024, 7) == []

    async def test_range_is_clipped_to_month(self, db, department):
        ana = await make_employee(db, name="Ana", department_id=department.id)
        ben = await make_employee(db, name="Ben", department_id=department.id)
        await make_request(
            db, ana, start=date(2024, 6, 25), end=date(2024, 7, 2), status=RequestStatus.approved,
        )
        await make_request(
            db, ben, start=date(2024, 6, 25), end=date(2024, 7, 2), status=RequestStatus.approved,
        )

        records = await list_conflicts(db, 2024, 7)

        assert [r.date for r in records] == [date(2024, 7, 1), date(2024, 7, 2)]

    async def test_department_scope_filters(self, db, department):
        ana = await make_employee(db, name="Ana", department_id=department.id)
        ben = await make_employee(db, name="Ben", department_id=department.id)
        await make_request(db, ana, start=date(2024, 7, 1), status=RequestStatus.approved)
        await make_request(db, ben, start=date(2024, 7, 1), status=RequestStatus.approved)

        assert await list_conflicts(db, 2024, 7, department_scope=set()) == []

    async def test_invalid_month_is_rejected(self, db):
        with pytest.raises(ValidationException):
            await list_conflicts(db, 2024, 13)


class TestCalendar:

    async def test_worker_sees_only_own_absences(self, db, worker, department):
        colleague = await make_employee(db, name="Carl", department_id=department.id)
        await make_request(db, worker, start=date(2024, 7, 3))
        await make_request(db, colleague, start=date(2024, 7, 3), status=RequestStatus.approved)

        calendar = await get_calendar(db, 2024, 7, worker)

        assert [e.employee_id for e in calendar.entries] == [worker.id]
        assert calendar.total_entries == 1

    async def test_supervisor_sees_supervised_department(self, db, worker, supervisor):
        sales = await make_department(db, name="Sales")
        outsider = await make_employee(db, name="Olga", department_id=sales.id)
        await make_request(db, worker, start=date(2024, 7, 3))
        await make_request(db, outsider, start=date(2024, 7, 3))

        calendar = await get_calendar(db, 2024, 7, supervisor)

        assert [e.employee_id for e in calendar.entries] == [worker.id]

    async def test_admin_sees_everyone_but_not_rejected(self, db, worker, admin, department):
        colleague = await make_employee(db, name="Carl", department_id=department.id)
        await make_request(db, worker, start=date(2024, 7, 3))
        await make_request(db, colleague, start=date(2024, 7, 4), status=RequestStatus.rejected)

        calendar = await get_calendar(db, 2024, 7, admin)

        assert calendar.total_entries == 1
        assert calendar.entries[0].end_date == date(2024, 7, 3)
