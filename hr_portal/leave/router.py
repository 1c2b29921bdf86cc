"""Leave router — leave types, requests, overtime sources and calendar.

All endpoints require authentication. Supervisor/admin-specific endpoints
enforce role checks; row-level rules live in the services.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.auth.dependencies import get_current_user, require_role
from hr_portal.common.constants import RequestStatus, UserRole
from hr_portal.common.exceptions import ForbiddenException
from hr_portal.common.pagination import PaginatedResponse, PaginationParams
from hr_portal.core_hr.models import Employee
from hr_portal.core_hr.service import DepartmentService
from hr_portal.database import get_db
from hr_portal.leave import catalog, conflicts, overtime
from hr_portal.leave.schemas import (
    CalendarOut,
    ConflictRecord,
    ImpactPreview,
    LeaveTypeConfig,
    LeaveTypeCreate,
    LeaveTypeUpdate,
    LifecycleResult,
    OvertimeSourceOut,
    RequestCreate,
    RequestDraft,
    RequestOut,
    RequestStatusUpdate,
)
from hr_portal.leave.service import RequestService

leave_types_router = APIRouter(prefix="", tags=["leave-types"])
requests_router = APIRouter(prefix="", tags=["requests"])
overtime_router = APIRouter(prefix="", tags=["overtime"])
calendar_router = APIRouter(prefix="", tags=["calendar"])


# ═════════════════════════════════════════════════════════════════════
# Leave types
# ═════════════════════════════════════════════════════════════════════


@leave_types_router.get("", response_model=list[LeaveTypeConfig])
async def list_leave_types(
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Configured leave types; the built-in defaults while none are stored."""
    return await catalog.list_leave_types(db)


@leave_types_router.post("", response_model=LeaveTypeConfig, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    employee: Employee = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await catalog.create_leave_type(db, body, actor_id=employee.id)


@leave_types_router.put("/{type_id}", response_model=LeaveTypeConfig)
async def update_leave_type(
    type_id: str,
    body: LeaveTypeUpdate,
    employee: Employee = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await catalog.update_leave_type(db, type_id, body, actor_id=employee.id)


@leave_types_router.delete("/{type_id}", status_code=204)
async def delete_leave_type(
    type_id: str,
    employee: Employee = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Refused while approved requests still use the type."""
    await catalog.delete_leave_type(db, type_id, actor_id=employee.id)


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


# ── POST /requests ──────────────────────────────────────────────────

@requests_router.post("", response_model=LifecycleResult, status_code=201)
async def create_request(
    body: RequestCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Submit a request. Admins may file for others and pre-approve."""
    draft = RequestDraft.model_validate(body.model_dump(exclude={"employee_id", "status"}))
    return await RequestService.create_request(
        db,
        draft,
        body.employee_id or employee.id,
        initial_status=body.status,
        actor=employee,
    )


# ── GET /requests/mine ──────────────────────────────────────────────

@requests_router.get("/mine", response_model=PaginatedResponse[RequestOut])
async def my_requests(
    status: Optional[RequestStatus] = Query(None),
    type_id: Optional[str] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The authenticated user's requests, newest first."""
    return await RequestService.list_my_requests(
        db, employee.id, pagination, status=status, type_id=type_id,
    )


# ── GET /requests/pending-approvals ─────────────────────────────────

@requests_router.get("/pending-approvals", response_model=PaginatedResponse[RequestOut])
async def pending_approvals(
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(require_role(UserRole.supervisor)),
    db: AsyncSession = Depends(get_db),
):
    """Pending requests the caller may approve or reject."""
    return await RequestService.list_pending_approvals(db, employee, pagination)


# ── POST /requests/impact ───────────────────────────────────────────

@requests_router.post("/impact", response_model=ImpactPreview)
async def preview_impact(
    body: RequestDraft,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Balance effect of a draft once approved. Nothing is saved."""
    return await RequestService.preview_impact(db, body, employee)


# ── GET /requests/{id} ──────────────────────────────────────────────

@requests_router.get("/{request_id}", response_model=RequestOut)
async def get_request(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await RequestService.get_request(db, request_id, employee)


# ── PUT /requests/{id} ──────────────────────────────────────────────

@requests_router.put("/{request_id}", response_model=LifecycleResult)
async def update_request(
    request_id: uuid.UUID,
    body: RequestDraft,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Edit a pending request."""
    return await RequestService.update_request(db, request_id, body, actor=employee)


# ── PUT /requests/{id}/status ───────────────────────────────────────

@requests_router.put("/{request_id}/status", response_model=LifecycleResult)
async def set_request_status(
    request_id: uuid.UUID,
    body: RequestStatusUpdate,
    employee: Employee = Depends(require_role(UserRole.supervisor)),
    db: AsyncSession = Depends(get_db),
):
    """Approve, reject or reopen a request."""
    return await RequestService.set_request_status(
        db, request_id, body.status, employee.id, body.comment, actor=employee,
    )


# ── DELETE /requests/{id} ───────────────────────────────────────────

@requests_router.delete("/{request_id}", response_model=LifecycleResult)
async def delete_request(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a request, reversing its balance effect if it was active."""
    return await RequestService.delete_request(db, request_id, actor=employee)


# ═════════════════════════════════════════════════════════════════════
# Overtime
# ═════════════════════════════════════════════════════════════════════


@overtime_router.get("/sources", response_model=list[OvertimeSourceOut])
async def available_sources(
    employee_id: Optional[uuid.UUID] = Query(None, description="Admin only: another employee"),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Approved overtime records that still have hours to draw, oldest first."""
    target = employee_id or employee.id
    if target != employee.id and employee.role != UserRole.admin:
        raise ForbiddenException("You can only list your own overtime sources.")
    sources = await overtime.list_available_sources(db, target)
    return [OvertimeSourceOut.model_validate(s) for s in sources]


# ═════════════════════════════════════════════════════════════════════
# Calendar
# ═════════════════════════════════════════════════════════════════════


@calendar_router.get("", response_model=CalendarOut)
async def get_calendar(
    year: int = Query(...),
    month: int = Query(..., ge=1, le=12),
    department_id: Optional[uuid.UUID] = Query(None),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Pending and approved absences in the month, scoped by role."""
    return await conflicts.get_calendar(db, year, month, employee, department_id)


@calendar_router.get("/conflicts", response_model=list[ConflictRecord])
async def get_conflicts(
    year: int = Query(...),
    month: int = Query(..., ge=1, le=12),
    department_id: Optional[uuid.UUID] = Query(None),
    employee: Employee = Depends(require_role(UserRole.supervisor)),
    db: AsyncSession = Depends(get_db),
):
    """Days on which two or more employees of one department are absent."""
    scope = None
    if employee.role != UserRole.admin:
        scope = await DepartmentService.supervised_department_ids(db, employee.id)
    return await conflicts.list_conflicts(
        db, year, month, department_id, department_scope=scope,
    )
