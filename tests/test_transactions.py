"""Tests for transaction boundaries — optimistic versioning and store failures."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from hr_portal.common.constants import RequestStatus
from hr_portal.core_hr.models import Employee
from hr_portal.leave.models import Request
from hr_portal.leave.service import RequestService

from tests.conftest import auth_headers, make_request


async def _employee(db, employee_id) -> Employee:
    return await db.get(Employee, employee_id, populate_existing=True)


# ═════════════════════════════════════════════════════════════════════
# Optimistic versioning
# ═════════════════════════════════════════════════════════════════════


class TestConcurrentModification:

    async def test_second_writer_gets_stale_data(self, session_factory, db, worker):
        async with session_factory() as first, session_factory() as second:
            mine = await first.get(Employee, worker.id)
            theirs = await second.get(Employee, worker.id)

            theirs.days_available = Decimal("7")
            await second.commit()

            mine.days_available = Decimal("4")
            with pytest.raises(StaleDataError):
                await first.flush()
            await first.rollback()

        assert (await _employee(db, worker.id)).days_available == Decimal("7")

    async def test_interleaved_approval_is_409(
        self, client, session_factory, db, worker, admin, monkeypatch,
    ):
        pending = await make_request(db, worker)
        original_lock = RequestService._lock_employee

        async def _lock_then_interleave(session, employee_id):
            employee = await original_lock(session, employee_id)
            async with session_factory() as other:
                row = await other.get(Employee, employee_id)
                row.overtime_hours = Decimal("3")
                await other.commit()
            return employee

        monkeypatch.setattr(RequestService, "_lock_employee", staticmethod(_lock_then_interleave))

        resp = await client.put(
            f"/api/v1/requests/{pending.id}/status",
            json={"status": "approved"},
            headers=auth_headers(admin),
        )

        assert resp.status_code == 409
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["type"].endswith("concurrent-modification")

        employee = await _employee(db, worker.id)
        assert employee.days_available == Decimal("10")
        assert employee.overtime_hours == Decimal("3")
        request = await db.get(Request, pending.id, populate_existing=True)
        assert request.status == RequestStatus.pending


# ═════════════════════════════════════════════════════════════════════
# Store failures
# ═════════════════════════════════════════════════════════════════════


class TestStoreFailure:

    async def test_failure_after_balance_write_is_503_and_rolled_back(
        self, client, db, worker, admin, monkeypatch,
    ):
        async def _store_down(session, request):
            raise OperationalError("INSERT INTO notifications", {}, Exception("connection lost"))

        monkeypatch.setattr("hr_portal.leave.service.notify_request_created", _store_down)

        resp = await client.post(
            "/api/v1/requests",
            json={
                "type_id": "vacation",
                "start_date": "2024-06-10",
                "end_date": "2024-06-12",
                "employee_id": str(worker.id),
                "status": "approved",
            },
            headers=auth_headers(admin),
        )

        assert resp.status_code == 503
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["type"].endswith("store-unavailable")

        assert (await _employee(db, worker.id)).days_available == Decimal("10")
        count = (await db.execute(
            select(func.count()).select_from(Request).where(Request.employee_id == worker.id)
        )).scalar_one()
        assert count == 0
