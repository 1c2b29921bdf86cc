"""Tests for the overtime consumption tracker and consuming requests."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from hr_portal.common.constants import RequestStatus
from hr_portal.common.exceptions import ValidationException
from hr_portal.core_hr.models import Employee
from hr_portal.leave import overtime
from hr_portal.leave.models import Request
from hr_portal.leave.schemas import BalanceAdjustRequest, OvertimeUsageIn, RequestDraft
from hr_portal.leave.service import RequestService

from tests.conftest import make_employee, make_request


async def _source(db, employee, hours="8", consumed="3", status=RequestStatus.approved, **kw):
    return await make_request(
        db, employee, type_id="overtime_earn", hours=hours, consumed=consumed, status=status, **kw,
    )


async def _consumed(db, request_id) -> Decimal:
    request = await db.get(Request, request_id, populate_existing=True)
    return request.consumed_hours


def _pay(source_id, hours_used: str, hours=None) -> RequestDraft:
    return RequestDraft(
        type_id="overtime_pay",
        start_date=date(2024, 6, 20),
        hours=Decimal(hours) if hours is not None else None,
        overtime_usage=[OvertimeUsageIn(source_request_id=source_id, hours_used=Decimal(hours_used))],
    )


# ═════════════════════════════════════════════════════════════════════
# list_available_sources
# ═════════════════════════════════════════════════════════════════════


class TestListAvailableSources:

    async def test_source_with_capacity_is_listed(self, db, worker):
        source = await _source(db, worker)

        sources = await overtime.list_available_sources(db, worker.id)

        assert [s.id for s in sources] == [source.id]
        assert sources[0].remaining_hours == Decimal("5")

    async def test_exhausted_pending_and_foreign_sources_are_excluded(self, db, worker):
        await _source(db, worker, consumed="8")
        await _source(db, worker, status=RequestStatus.pending)
        await _source(db, worker, consumed="7.995")
        stranger = await make_employee(db, name="Stan Stranger")
        await _source(db, stranger)

        assert await overtime.list_available_sources(db, worker.id) == []

    async def test_sources_are_oldest_first(self, db, worker):
        late = await _source(db, worker, start=date(2024, 5, 1))
        early = await _source(db, worker, start=date(2024, 1, 1))

        sources = await overtime.list_available_sources(db, worker.id)

        assert [s.id for s in sources] == [early.id, late.id]

    async def test_worked_holiday_counts_as_source(self, db, worker):
        holiday = await make_request(
            db, worker, type_id="worked_holiday", hours="8", status=RequestStatus.approved,
        )
        sources = await overtime.list_available_sources(db, worker.id)
        assert [s.id for s in sources] == [holiday.id]


# ═════════════════════════════════════════════════════════════════════
# validate_usage
# ═════════════════════════════════════════════════════════════════════


class TestValidateUsage:

    async def test_draw_up_to_remaining_is_valid(self, db, worker):
        source = await _source(db, worker)
        usage = [OvertimeUsageIn(source_request_id=source.id, hours_used=Decimal("5"))]

        assert await overtime.validate_usage(db, worker.id, usage, None) == Decimal("5")

    async def test_over_allocation_is_rejected(self, db, worker):
        source = await _source(db, worker)
        usage = [OvertimeUsageIn(source_request_id=source.id, hours_used=Decimal("6"))]

        with pytest.raises(ValidationException) as exc_info:
            await overtime.validate_usage(db, worker.id, usage, None)
        assert "exceeds" in exc_info.value.errors["overtime_usage"][0]

    async def test_unknown_source_is_rejected(self, db, worker):
        usage = [OvertimeUsageIn(source_request_id=uuid.uuid4(), hours_used=Decimal("1"))]
        with pytest.raises(ValidationException):
            await overtime.validate_usage(db, worker.id, usage, None)

    async def test_foreign_source_is_rejected(self, db, worker):
        stranger = await make_employee(db, name="Stan Stranger")
        source = await _source(db, stranger)
        usage = [OvertimeUsageIn(source_request_id=source.id, hours_used=Decimal("1"))]

        with pytest.raises(ValidationException) as exc_info:
            await overtime.validate_usage(db, worker.id, usage, None)
        assert "another employee" in exc_info.value.errors["overtime_usage"][0]

    async def test_duplicate_source_is_rejected(self, db, worker):
        source = await _source(db, worker)
        usage = [
            OvertimeUsageIn(source_request_id=source.id, hours_used=Decimal("1")),
            OvertimeUsageIn(source_request_id=source.id, hours_used=Decimal("1")),
        ]
        with pytest.raises(ValidationException):
            await overtime.validate_usage(db, worker.id, usage, None)

    async def test_total_must_match_hours(self, db, worker):
        source = await _source(db, worker)
        usage = [OvertimeUsageIn(source_request_id=source.id, hours_used=Decimal("2"))]
        with pytest.raises(ValidationException):
            await overtime.validate_usage(db, worker.id, usage, Decimal("3"))

    async def test_no_usage_needs_positive_hours(self, db, worker):
        with pytest.raises(ValidationException):
            await overtime.validate_usage(db, worker.id, [], None)
        assert await overtime.validate_usage(db, worker.id, [], Decimal("2")) == Decimal("2")


# ═════════════════════════════════════════════════════════════════════
# Draw on approval, release on leaving approved
# ═════════════════════════════════════════════════════════════════════


class TestConsumptionLifecycle:

    async def test_pending_consumer_holds_nothing(self, db, worker):
        source = await _source(db, worker)
        result = await RequestService.create_request(db, _pay(source.id, "5"), worker.id)

        assert result.request.hours == Decimal("5")
        assert await _consumed(db, source.id) == Decimal("3")

    async def test_approval_draws_and_rejection_releases(self, db, admin):
        worker = await make_employee(db, name="Olivia Overtime", overtime_hours="5")
        source = await _source(db, worker)
        created = await RequestService.create_request(db, _pay(source.id, "4"), worker.id)

        await RequestService.set_request_status(db, created.request.id, RequestStatus.approved, admin.id)
        assert await _consumed(db, source.id) == Decimal("7")
        employee = await db.get(Employee, worker.id, populate_existing=True)
        assert employee.overtime_hours == Decimal("1")

        await RequestService.set_request_status(db, created.request.id, RequestStatus.rejected, admin.id)
        assert await _consumed(db, source.id) == Decimal("3")
        employee = await db.get(Employee, worker.id, populate_existing=True)
        assert employee.overtime_hours == Decimal("5")

    async def test_approval_revalidates_capacity(self, db, worker, admin):
        source = await _source(db, worker)
        first = await RequestService.create_request(db, _pay(source.id, "4"), worker.id)
        second = await RequestService.create_request(db, _pay(source.id, "4"), worker.id)

        await RequestService.set_request_status(db, first.request.id, RequestStatus.approved, admin.id)
        with pytest.raises(ValidationException):
            await RequestService.set_request_status(
                db, second.request.id, RequestStatus.approved, admin.id,
            )

    async def test_created_approved_draws_immediately(self, db, worker):
        source = await _source(db, worker)
        await RequestService.create_request(
            db, _pay(source.id, "5"), worker.id, initial_status=RequestStatus.approved,
        )
        assert await _consumed(db, source.id) == Decimal("8")
        assert await overtime.list_available_sources(db, worker.id) == []

    async def test_deleting_approved_consumer_releases(self, db, worker):
        source = await _source(db, worker)
        created = await RequestService.create_request(
            db, _pay(source.id, "2"), worker.id, initial_status=RequestStatus.approved,
        )
        assert await _consumed(db, source.id) == Decimal("5")

        await RequestService.delete_request(db, created.request.id)
        assert await _consumed(db, source.id) == Decimal("3")

    async def test_usage_on_non_consuming_request_is_refused(self, db, worker):
        source = await _source(db, worker)
        draft = RequestDraft(
            type_id="vacation",
            start_date=date(2024, 6, 20),
            overtime_usage=[OvertimeUsageIn(source_request_id=source.id, hours_used=Decimal("1"))],
        )
        with pytest.raises(ValidationException):
            await RequestService.create_request(db, draft, worker.id)

    async def test_editing_pending_consumer_replaces_usage(self, db, worker):
        first = await _source(db, worker, start=date(2024, 1, 1))
        second = await _source(db, worker, start=date(2024, 2, 1))
        created = await RequestService.create_request(db, _pay(first.id, "2"), worker.id)

        result = await RequestService.update_request(
            db, created.request.id, _pay(second.id, "3"), actor=worker,
        )

        assert [u.source_request_id for u in result.request.overtime_usage] == [second.id]
        assert result.request.hours == Decimal("3")


# ═════════════════════════════════════════════════════════════════════
# Quantity precision
# ═════════════════════════════════════════════════════════════════════


class TestQuantityPrecision:

    def test_hours_beyond_two_places_are_rejected(self):
        with pytest.raises(ValidationError):
            RequestDraft(type_id="overtime_earn", start_date=date(2024, 6, 1), hours=Decimal("0.005"))

    def test_usage_beyond_two_places_is_rejected(self):
        with pytest.raises(ValidationError):
            OvertimeUsageIn(source_request_id=uuid.uuid4(), hours_used=Decimal("1.125"))

    def test_adjustment_beyond_two_places_is_rejected(self):
        with pytest.raises(ValidationError):
            BalanceAdjustRequest(days=Decimal("0.333"), reason="Rounding")

    async def test_two_place_hours_are_credited_exactly(self, db, worker, admin):
        for _ in range(2):
            draft = RequestDraft(
                type_id="overtime_earn", start_date=date(2024, 6, 1), hours=Decimal("0.25"),
            )
            created = await RequestService.create_request(db, draft, worker.id)
            await RequestService.set_request_status(
                db, created.request.id, RequestStatus.approved, admin.id,
            )

        employee = await db.get(Employee, worker.id, populate_existing=True)
        assert employee.overtime_hours == Decimal("0.50")
