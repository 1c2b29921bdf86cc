"""Core HR router — Employee and Department API endpoints.

Routes:
    /employees                      — List, create employees
    /employees/me                   — Caller's profile and balances
    /employees/{id}                 — Employee detail
    /employees/{id}/role            — Change role (admin)
    /employees/{id}/adjust-balance  — Record a balance adjustment (admin)
    /departments                    — List, create departments
    /departments/{id}/supervisors   — Replace supervisors (admin)
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.auth.dependencies import get_current_user, require_role
from hr_portal.common.constants import RequestKind, RequestStatus, UserRole
from hr_portal.common.exceptions import ForbiddenException
from hr_portal.common.pagination import PaginationParams
from hr_portal.core_hr.models import Employee
from hr_portal.core_hr.schemas import (
    DepartmentCreate,
    DepartmentOut,
    EmployeeCreate,
    EmployeeOut,
    EmployeeSummary,
    RoleUpdate,
    SupervisorsUpdate,
)
from hr_portal.core_hr.service import DepartmentService, EmployeeService
from hr_portal.database import get_db
from hr_portal.leave.schemas import BalanceAdjustRequest, LifecycleResult, RequestDraft
from hr_portal.leave.service import RequestService


# ═════════════════════════════════════════════════════════════════════
# Routers
# ═════════════════════════════════════════════════════════════════════

employees_router = APIRouter(prefix="", tags=["employees"])
departments_router = APIRouter(prefix="", tags=["departments"])


async def _may_see_balances(db: AsyncSession, viewer: Employee, target: Employee) -> bool:
    if viewer.role == UserRole.admin or viewer.id == target.id:
        return True
    if viewer.role != UserRole.supervisor or target.department_id is None:
        return False
    supervised = await DepartmentService.supervised_department_ids(db, viewer.id)
    return target.department_id in supervised


# ═════════════════════════════════════════════════════════════════════
# Employee Endpoints
# ═════════════════════════════════════════════════════════════════════


# ── GET /employees — List employees ─────────────────────────────────

@employees_router.get("")
async def list_employees(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(None, description="Search by name or email"),
    department_id: Optional[uuid.UUID] = Query(None, description="Filter by department"),
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
):
    """List employees with pagination, search, and filtering.

    - **admin**: sees balances
    - **everyone else**: sees summaries
    """
    result = await EmployeeService.list_employees(
        db,
        pagination,
        search=search,
        department_id=department_id,
        is_active=is_active,
    )

    if request.state.user_role == UserRole.admin:
        items = [EmployeeOut.model_validate(emp) for emp in result.data]
    else:
        items = [EmployeeSummary.model_validate(emp) for emp in result.data]

    return {
        "data": [item.model_dump(mode="json") for item in items],
        "meta": result.meta.model_dump(),
    }


# ── POST /employees — Create employee ───────────────────────────────

@employees_router.post("", response_model=EmployeeOut, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_role(UserRole.admin)),
):
    """Onboard an employee with opening balances. Admin only."""
    return await EmployeeService.create_employee(db, body, actor_id=current_user.id)


# ── GET /employees/me — Own profile ─────────────────────────────────
# Registered before /{employee_id} so "me" is not parsed as a UUID.

@employees_router.get("/me", response_model=EmployeeOut)
async def get_me(current_user: Employee = Depends(get_current_user)):
    return current_user


# ── GET /employees/{id} — Employee detail ───────────────────────────

@employees_router.get("/{employee_id}")
async def get_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """Balances are visible to the employee, their supervisors and admins."""
    employee = await EmployeeService.get_employee(db, employee_id)
    if await _may_see_balances(db, current_user, employee):
        return EmployeeOut.model_validate(employee).model_dump(mode="json")
    return EmployeeSummary.model_validate(employee).model_dump(mode="json")


# ── PUT /employees/{id}/role — Change role ──────────────────────────

@employees_router.put("/{employee_id}/role", response_model=EmployeeOut)
async def update_role(
    employee_id: uuid.UUID,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_role(UserRole.admin)),
):
    if employee_id == current_user.id:
        raise ForbiddenException("You cannot change your own role.")
    return await EmployeeService.update_role(db, employee_id, body.role, actor_id=current_user.id)


# ── POST /employees/{id}/adjust-balance — Manual correction ─────────

@employees_router.post("/{employee_id}/adjust-balance", response_model=list[LifecycleResult])
async def adjust_balance(
    employee_id: uuid.UUID,
    body: BalanceAdjustRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_role(UserRole.admin)),
):
    """Record day and/or overtime-hour corrections as adjustment requests.

    Each non-zero amount becomes one adjustment record whose effect is
    applied immediately and reversed if the record is deleted.
    """
    await EmployeeService.get_employee(db, employee_id)

    results: list[LifecycleResult] = []
    corrections = (
        (RequestKind.adjustment_days, body.days),
        (RequestKind.adjustment_overtime, body.hours),
    )
    for kind, amount in corrections:
        if not amount:
            continue
        draft = RequestDraft(
            type_id=kind.value,
            start_date=body.effective_date,
            hours=amount,
            reason=body.reason,
        )
        results.append(
            await RequestService.create_request(
                db,
                draft,
                employee_id,
                initial_status=RequestStatus.approved,
                actor=current_user,
            )
        )
    return results


# ═════════════════════════════════════════════════════════════════════
# Department Endpoints
# ═════════════════════════════════════════════════════════════════════


@departments_router.get("", response_model=list[DepartmentOut])
async def list_departments(
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    return await DepartmentService.list_departments(db)


@departments_router.post("", response_model=DepartmentOut, status_code=201)
async def create_department(
    body: DepartmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_role(UserRole.admin)),
):
    return await DepartmentService.create_department(db, body, actor_id=current_user.id)


@departments_router.put("/{department_id}/supervisors", response_model=DepartmentOut)
async def set_supervisors(
    department_id: uuid.UUID,
    body: SupervisorsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_role(UserRole.admin)),
):
    """Replace the department's supervisor list. Workers cannot supervise."""
    return await DepartmentService.set_supervisors(
        db, department_id, body.supervisor_ids, actor_id=current_user.id,
    )
