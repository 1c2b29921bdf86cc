"""Request lifecycle engine — create, edit, review and delete requests.

Business logic:
  - The balance effect of a request is active iff it is approved, except
    adjustment kinds whose effect is active from creation until deletion
  - Every state change applies or reverses the ledger impact exactly once,
    computed from the request's current fields
  - Consuming requests draw from overtime sources on approval and release
    them when leaving approved or being deleted
  - A request whose owner no longer resolves is still mutated; the balance
    write is skipped and reported in ``LifecycleResult.warnings``

Each operation runs inside the caller's transaction. The request and
employee rows are locked with SELECT ... FOR UPDATE and both tables carry a
version counter, so an interleaved writer fails with StaleDataError.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.common.audit import create_audit_entry
from hr_portal.common.constants import ZERO, RequestKind, RequestStatus, UserRole
from hr_portal.common.exceptions import (
    AppException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from hr_portal.common.pagination import PaginatedResponse, PaginationParams, paginate
from hr_portal.config import settings
from hr_portal.core_hr.models import Employee
from hr_portal.core_hr.service import DepartmentService
from hr_portal.leave import catalog, overtime
from hr_portal.leave.ledger import compute_impact
from hr_portal.leave.models import OvertimeUsage, Request
from hr_portal.leave.schemas import (
    BalanceImpact,
    ImpactPreview,
    LeaveTypeConfig,
    LifecycleResult,
    RequestDraft,
    RequestOut,
)
from hr_portal.notifications.email import email_dispatcher
from hr_portal.notifications.service import (
    notify_request_created,
    notify_request_deleted,
    notify_request_status,
    notify_request_updated,
)

logger = logging.getLogger(__name__)


def _impact_json(impact: BalanceImpact) -> dict[str, str]:
    return {"delta_days": str(impact.delta_days), "delta_hours": str(impact.delta_hours)}


def _request_snapshot(request: Request) -> dict:
    return {
        "type_id": request.type_id,
        "start_date": str(request.start_date),
        "end_date": str(request.end_date) if request.end_date else None,
        "hours": str(request.hours) if request.hours is not None else None,
        "reason": request.reason,
        "status": request.status.value,
        "overtime_usage": {
            str(u.source_request_id): str(u.hours_used) for u in request.overtime_usage
        },
    }


# ═════════════════════════════════════════════════════════════════════
# RequestService
# ═════════════════════════════════════════════════════════════════════


class RequestService:
    """Async lifecycle operations for leave, overtime and adjustment requests."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        lock: bool = False,
    ) -> Request:
        query = select(Request).where(Request.id == request_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        request = (await db.execute(query)).scalars().first()
        if request is None:
            raise NotFoundException("Request", str(request_id))
        return request

    @staticmethod
    async def _lock_employee(db: AsyncSession, employee_id: uuid.UUID) -> Optional[Employee]:
        result = await db.execute(
            select(Employee)
            .where(Employee.id == employee_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def _impact_of(db: AsyncSession, request: Request) -> BalanceImpact:
        leave_type = await catalog.resolve_type(db, request.type_id)
        return compute_impact(
            request.type_id,
            request.start_date,
            request.end_date,
            request.hours,
            leave_type=leave_type,
        )

    @staticmethod
    async def _apply_impact(
        db: AsyncSession,
        request: Request,
        impact: BalanceImpact,
        result: LifecycleResult,
    ) -> Optional[Employee]:
        """Add *impact* to the owner's balances in one write.

        Pass a negated impact to reverse. A missing owner degrades the
        result instead of raising.
        """
        employee = await RequestService._lock_employee(db, request.employee_id)
        if employee is None:
            logger.warning(
                "Employee %s of request %s not found; balance mutation skipped",
                request.employee_id, request.id,
            )
            result.balance_applied = False
            result.warnings.append(
                f"Employee {request.employee_id} not found; balances were not changed."
            )
            return None

        result.impact = impact
        if impact.is_zero:
            return employee

        employee.days_available = (employee.days_available or ZERO) + impact.delta_days
        employee.overtime_hours = (employee.overtime_hours or ZERO) + impact.delta_hours
        await db.flush()
        logger.info(
            "Request %s: employee %s balance change %s days, %s hours",
            request.id, employee.id, impact.delta_days, impact.delta_hours,
        )
        return employee

    @staticmethod
    def _to_out(request: Request, employee_name: Optional[str] = None) -> RequestOut:
        out = RequestOut.model_validate(request)
        out.employee_name = employee_name
        return out

    @staticmethod
    async def _prepare_fields(
        db: AsyncSession,
        draft: RequestDraft,
        employee_id: uuid.UUID,
    ) -> tuple[RequestKind, Optional[LeaveTypeConfig], dict]:
        """Validate *draft* and return the column values it maps to."""
        kind = RequestKind.from_type_id(draft.type_id)
        leave_type = await catalog.resolve_type(db, draft.type_id)

        start_date, end_date = draft.start_date, draft.end_date
        if leave_type is not None and leave_type.has_fixed_range:
            start_date, end_date = leave_type.fixed_start, leave_type.fixed_end

        hours = draft.hours
        if kind.is_consumption:
            hours = await overtime.validate_usage(db, employee_id, draft.overtime_usage, draft.hours)
        elif draft.overtime_usage:
            raise ValidationException(
                {"overtime_usage": ["Only overtime payout or exchange requests draw from sources."]}
            )
        elif kind is RequestKind.overtime_earn and (hours is None or hours <= ZERO):
            raise ValidationException({"hours": ["Overtime hours must be positive."]})
        elif kind.is_adjustment and not hours:
            raise ValidationException({"hours": ["An adjustment needs a non-zero amount."]})
        elif hours is not None and hours < ZERO and not kind.is_adjustment:
            raise ValidationException({"hours": ["Hours cannot be negative."]})

        fields = {
            "type_id": draft.type_id,
            "label": catalog.label_for(draft.type_id, leave_type),
            "start_date": start_date,
            "end_date": end_date,
            "hours": hours,
            "reason": draft.reason,
        }
        return kind, leave_type, fields

    @staticmethod
    def _build_usage(draft: RequestDraft) -> list[OvertimeUsage]:
        return [
            OvertimeUsage(source_request_id=u.source_request_id, hours_used=u.hours_used)
            for u in draft.overtime_usage
        ]

    @staticmethod
    def _ensure_source_untouched(request: Request) -> None:
        if request.kind.is_overtime_source and (request.consumed_hours or ZERO) > settings.OVERTIME_EPSILON:
            raise AppException(
                status_code=409,
                error_type="source-in-use",
                title="Overtime Source In Use",
                detail=(
                    f"{request.consumed_hours} h of this record back approved "
                    "consumption requests; reject or delete those first."
                ),
            )

    # ── Authorization ───────────────────────────────────────────────

    @staticmethod
    def _is_admin(actor: Optional[Employee]) -> bool:
        return actor is None or actor.role == UserRole.admin

    @staticmethod
    def _ensure_may_edit(actor: Optional[Employee], request: Request) -> None:
        """Owners manage their own pending requests; admins manage any."""
        if RequestService._is_admin(actor):
            return
        if request.employee_id != actor.id:
            raise ForbiddenException("You can only manage your own requests.")
        if request.status != RequestStatus.pending:
            raise ForbiddenException("Only pending requests can be changed by their owner.")
        if request.kind.is_adjustment:
            raise ForbiddenException("Balance adjustments are managed by administrators.")

    @staticmethod
    async def _ensure_may_review(
        db: AsyncSession,
        actor: Optional[Employee],
        request: Request,
    ) -> None:
        if RequestService._is_admin(actor):
            return
        if actor.role != UserRole.supervisor:
            raise ForbiddenException("Only supervisors and administrators review requests.")
        if request.employee_id == actor.id:
            raise ForbiddenException("You cannot review your own request.")
        owner = await db.get(Employee, request.employee_id)
        supervised = await DepartmentService.supervised_department_ids(db, actor.id)
        if owner is None or owner.department_id not in supervised:
            raise ForbiddenException("This request belongs to a department you do not supervise.")

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        draft: RequestDraft,
        employee_id: uuid.UUID,
        initial_status: RequestStatus = RequestStatus.pending,
        actor: Optional[Employee] = None,
    ) -> LifecycleResult:
        """Persist a new request.

        The ledger impact is applied at once when the request is created
        approved or is an adjustment. An approved consumer draws its
        sources immediately.
        """
        if initial_status == RequestStatus.rejected:
            raise ValidationException({"status": ["A request cannot be created rejected."]})

        kind = RequestKind.from_type_id(draft.type_id)
        is_admin = RequestService._is_admin(actor)
        if not is_admin:
            if employee_id != actor.id:
                raise ForbiddenException("You can only create requests for yourself.")
            if initial_status != RequestStatus.pending:
                raise ForbiddenException("Only administrators can create approved requests.")
            if kind.is_adjustment:
                raise ForbiddenException("Balance adjustments are managed by administrators.")

        owner = await db.get(Employee, employee_id)
        if owner is None:
            raise NotFoundException("Employee", str(employee_id))

        kind, _, fields = await RequestService._prepare_fields(db, draft, employee_id)

        now = datetime.now(timezone.utc)
        request = Request(
            employee_id=employee_id,
            status=initial_status,
            created_by_admin=actor is not None and is_admin,
            consumed_hours=ZERO,
            overtime_usage=RequestService._build_usage(draft),
            **fields,
        )
        if initial_status == RequestStatus.approved:
            request.reviewed_by = actor.id if actor else None
            request.reviewed_at = now
        db.add(request)
        await db.flush()

        result = LifecycleResult()
        actor_id = actor.id if actor else None
        if initial_status == RequestStatus.approved or kind.is_adjustment:
            if initial_status == RequestStatus.approved and kind.is_consumption:
                await overtime.draw(db, request, actor_id=actor_id)
            impact = await RequestService._impact_of(db, request)
            await RequestService._apply_impact(db, request, impact, result)

        await create_audit_entry(
            db,
            action="create",
            entity_type="request",
            entity_id=request.id,
            actor_id=actor_id,
            new_values={**_request_snapshot(request), "impact": _impact_json(result.impact)},
        )
        await notify_request_created(db, request)
        await email_dispatcher.dispatch(db, "created", request, owner)

        logger.info(
            "Request %s (%s) created for %s as %s",
            request.id, request.type_id, employee_id, initial_status.value,
        )
        result.request = RequestService._to_out(request, owner.name)
        return result

    # ─────────────────────────────────────────────────────────────────
    # Update
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        draft: RequestDraft,
        actor: Optional[Employee] = None,
    ) -> LifecycleResult:
        """Replace the editable fields of a pending request.

        Non-adjustment requests carry no balance effect while pending. A
        pending adjustment's effect is live, so its old impact is reversed
        and the new one applied in the same balance write.
        """
        request = await RequestService._get_request(db, request_id, lock=True)
        RequestService._ensure_may_edit(actor, request)
        if request.status != RequestStatus.pending:
            raise ValidationException(
                {"status": [f"Only pending requests can be edited; this one is {request.status.value}."]}
            )

        new_kind = RequestKind.from_type_id(draft.type_id)
        if new_kind.is_adjustment and not RequestService._is_admin(actor):
            raise ForbiddenException("Balance adjustments are managed by administrators.")

        old_kind = request.kind
        old_values = _request_snapshot(request)
        old_impact = (
            await RequestService._impact_of(db, request) if old_kind.is_adjustment else BalanceImpact()
        )

        new_kind, _, fields = await RequestService._prepare_fields(db, draft, request.employee_id)
        for name, value in fields.items():
            setattr(request, name, value)
        request.overtime_usage = RequestService._build_usage(draft)
        await db.flush()

        result = LifecycleResult()
        if old_kind.is_adjustment or new_kind.is_adjustment:
            new_impact = (
                await RequestService._impact_of(db, request) if new_kind.is_adjustment else BalanceImpact()
            )
            net = BalanceImpact(
                delta_days=new_impact.delta_days - old_impact.delta_days,
                delta_hours=new_impact.delta_hours - old_impact.delta_hours,
            )
            await RequestService._apply_impact(db, request, net, result)

        await create_audit_entry(
            db,
            action="update",
            entity_type="request",
            entity_id=request.id,
            actor_id=actor.id if actor else None,
            old_values=old_values,
            new_values={**_request_snapshot(request), "impact": _impact_json(result.impact)},
        )

        owner = await db.get(Employee, request.employee_id)
        if owner is not None:
            await notify_request_updated(db, request)
        result.request = RequestService._to_out(request, owner.name if owner else None)
        return result

    # ─────────────────────────────────────────────────────────────────
    # Set status (approve / reject / reopen)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def set_request_status(
        db: AsyncSession,
        request_id: uuid.UUID,
        status: RequestStatus,
        reviewer_id: Optional[uuid.UUID],
        comment: Optional[str] = None,
        *,
        actor: Optional[Employee] = None,
    ) -> LifecycleResult:
        """Move a request between pending, approved and rejected.

        Entering approved adds the impact and draws overtime sources;
        leaving approved subtracts it and releases them. Moves between
        non-approved states, same-status updates and any move of an
        adjustment leave balances untouched.
        """
        request = await RequestService._get_request(db, request_id, lock=True)
        await RequestService._ensure_may_review(db, actor, request)

        old_status = request.status
        kind = request.kind
        result = LifecycleResult()

        entering = status == RequestStatus.approved and old_status != RequestStatus.approved
        leaving = old_status == RequestStatus.approved and status != RequestStatus.approved
        if leaving:
            RequestService._ensure_source_untouched(request)

        if (entering or leaving) and not kind.is_adjustment:
            if kind.is_consumption:
                if entering:
                    await overtime.draw(db, request, actor_id=reviewer_id)
                else:
                    await overtime.release(db, request, actor_id=reviewer_id)
            impact = await RequestService._impact_of(db, request)
            await RequestService._apply_impact(db, request, impact if entering else -impact, result)

        request.status = status
        request.admin_comment = comment
        request.reviewed_by = reviewer_id
        request.reviewed_at = datetime.now(timezone.utc)
        await db.flush()

        if old_status == status:
            logger.info("Request %s re-entered %s; no balance effect", request.id, status.value)
            owner = await db.get(Employee, request.employee_id)
            result.request = RequestService._to_out(request, owner.name if owner else None)
            return result

        action = {
            RequestStatus.approved: "approve",
            RequestStatus.rejected: "reject",
            RequestStatus.pending: "reopen",
        }[status]
        await create_audit_entry(
            db,
            action=action,
            entity_type="request",
            entity_id=request.id,
            actor_id=reviewer_id,
            old_values={"status": old_status.value},
            new_values={
                "status": status.value,
                "comment": comment,
                "impact": _impact_json(result.impact),
            },
        )

        owner = await db.get(Employee, request.employee_id)
        if owner is not None:
            await notify_request_status(db, request, comment)
            if status != RequestStatus.pending:
                await email_dispatcher.dispatch(db, status.value, request, owner)

        logger.info("Request %s %s -> %s", request.id, old_status.value, status.value)
        result.request = RequestService._to_out(request, owner.name if owner else None)
        return result

    # ─────────────────────────────────────────────────────────────────
    # Delete
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def delete_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Optional[Employee] = None,
    ) -> LifecycleResult:
        """Remove a request, reversing its effect first if it is active."""
        request = await RequestService._get_request(db, request_id, lock=True)
        RequestService._ensure_may_edit(actor, request)
        RequestService._ensure_source_untouched(request)

        actor_id = actor.id if actor else None
        kind = request.kind
        result = LifecycleResult()
        if request.status == RequestStatus.approved or kind.is_adjustment:
            if request.status == RequestStatus.approved and kind.is_consumption:
                await overtime.release(db, request, actor_id=actor_id)
            impact = await RequestService._impact_of(db, request)
            await RequestService._apply_impact(db, request, -impact, result)

        owner = await db.get(Employee, request.employee_id)
        result.request = RequestService._to_out(request, owner.name if owner else None)

        await create_audit_entry(
            db,
            action="delete",
            entity_type="request",
            entity_id=request.id,
            actor_id=actor_id,
            old_values=_request_snapshot(request),
            new_values={"impact": _impact_json(result.impact)},
        )
        if owner is not None:
            await notify_request_deleted(db, request)
            await email_dispatcher.dispatch(db, "cancelled", request, owner)

        await db.delete(request)
        await db.flush()
        logger.info("Request %s deleted", request_id)
        return result

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def preview_impact(
        db: AsyncSession,
        draft: RequestDraft,
        employee: Employee,
    ) -> ImpactPreview:
        """Impact *draft* would have once active, without persisting anything."""
        leave_type = await catalog.resolve_type(db, draft.type_id)
        start_date, end_date = draft.start_date, draft.end_date
        if leave_type is not None and leave_type.has_fixed_range:
            start_date, end_date = leave_type.fixed_start, leave_type.fixed_end

        hours = draft.hours
        if draft.overtime_usage and hours is None:
            hours = sum((u.hours_used for u in draft.overtime_usage), ZERO)

        impact = compute_impact(draft.type_id, start_date, end_date, hours, leave_type=leave_type)
        return ImpactPreview(
            impact=impact,
            label=catalog.label_for(draft.type_id, leave_type),
            days_available_after=employee.days_available + impact.delta_days,
            overtime_hours_after=employee.overtime_hours + impact.delta_hours,
        )

    @staticmethod
    async def get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Optional[Employee] = None,
    ) -> RequestOut:
        request = await RequestService._get_request(db, request_id)
        if actor is not None and request.employee_id != actor.id:
            await RequestService._ensure_may_review(db, actor, request)
        owner = await db.get(Employee, request.employee_id)
        return RequestService._to_out(request, owner.name if owner else None)

    @staticmethod
    async def list_my_requests(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        status: Optional[RequestStatus] = None,
        type_id: Optional[str] = None,
    ) -> PaginatedResponse:
        """Own requests, newest first."""
        query = (
            select(Request)
            .where(Request.employee_id == employee_id)
            .order_by(Request.created_at.desc(), Request.start_date.desc())
        )
        if status is not None:
            query = query.where(Request.status == status)
        if type_id:
            query = query.where(Request.type_id == type_id)

        page = await paginate(db, query, pagination)
        return PaginatedResponse(
            data=[RequestService._to_out(r) for r in page.data],
            meta=page.meta,
        )

    @staticmethod
    async def list_pending_approvals(
        db: AsyncSession,
        actor: Employee,
        pagination: PaginationParams,
    ) -> PaginatedResponse:
        """Pending requests the actor may review, oldest first.

        Admins see every pending request; supervisors see those of the
        departments they supervise, excluding their own.
        """
        query = (
            select(Request)
            .join(Employee, Employee.id == Request.employee_id)
            .where(Request.status == RequestStatus.pending)
            .order_by(Request.created_at.asc())
        )
        if actor.role != UserRole.admin:
            supervised = await DepartmentService.supervised_department_ids(db, actor.id)
            query = query.where(
                Employee.department_id.in_(list(supervised)),
                Request.employee_id != actor.id,
            )

        page = await paginate(db, query, pagination)
        names = await RequestService._employee_names(db, {r.employee_id for r in page.data})
        return PaginatedResponse(
            data=[RequestService._to_out(r, names.get(r.employee_id)) for r in page.data],
            meta=page.meta,
        )

    @staticmethod
    async def _employee_names(
        db: AsyncSession,
        employee_ids: set[uuid.UUID],
    ) -> dict[uuid.UUID, str]:
        if not employee_ids:
            return {}
        rows = await db.execute(
            select(Employee.id, Employee.name).where(Employee.id.in_(list(employee_ids)))
        )
        return {row.id: row.name for row in rows.all()}
