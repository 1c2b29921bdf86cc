"""Core HR service layer — async CRUD for employees and departments.

Balances are set once at onboarding; afterwards only the request lifecycle
engine changes them (see ``hr_portal.leave.service``).
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.common.audit import create_audit_entry
from hr_portal.common.constants import UserRole
from hr_portal.common.exceptions import ConflictError, NotFoundException, ValidationException
from hr_portal.common.pagination import PaginatedResponse, PaginationParams, paginate
from hr_portal.core_hr.models import Department, Employee, department_supervisors
from hr_portal.core_hr.schemas import DepartmentCreate, DepartmentOut, EmployeeCreate


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async CRUD operations for employees."""

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        search: Optional[str] = None,
        department_id: Optional[uuid.UUID] = None,
        is_active: Optional[bool] = None,
    ) -> PaginatedResponse:
        """Return a paginated, filtered employee list ordered by name."""
        query = select(Employee).order_by(Employee.name)
        if department_id is not None:
            query = query.where(Employee.department_id == department_id)
        if is_active is not None:
            query = query.where(Employee.is_active.is_(is_active))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(Employee.name.ilike(pattern) | Employee.email.ilike(pattern))
        return await paginate(db, query, pagination)

    @staticmethod
    async def get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        data: EmployeeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Employee:
        """Create a new employee with opening balances."""
        email = data.email.lower()
        existing = await db.execute(select(Employee.id).where(func.lower(Employee.email) == email))
        if existing.first() is not None:
            raise ConflictError("email", email)
        if data.department_id is not None and await db.get(Department, data.department_id) is None:
            raise NotFoundException("Department", str(data.department_id))

        employee = Employee(**{**data.model_dump(), "email": email})
        db.add(employee)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        return employee

    @staticmethod
    async def update_role(
        db: AsyncSession,
        employee_id: uuid.UUID,
        role: UserRole,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Employee:
        """Change an employee's role.

        Demoting a supervisor to worker also removes them from every
        department they supervised.
        """
        employee = await EmployeeService.get_employee(db, employee_id)
        old_role = employee.role
        if old_role == role:
            return employee

        employee.role = role
        if role == UserRole.worker:
            await db.execute(
                department_supervisors.delete().where(
                    department_supervisors.c.employee_id == employee.id
                )
            )
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            old_values={"role": old_role.value},
            new_values={"role": role.value},
        )
        return employee


# ═════════════════════════════════════════════════════════════════════
# DepartmentService
# ═════════════════════════════════════════════════════════════════════


class DepartmentService:
    """Async operations for departments and their supervisors."""

    @staticmethod
    async def supervised_department_ids(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> set[uuid.UUID]:
        """Departments *employee_id* supervises."""
        result = await db.execute(
            select(department_supervisors.c.department_id).where(
                department_supervisors.c.employee_id == employee_id
            )
        )
        return set(result.scalars().all())

    @staticmethod
    async def _to_out(db: AsyncSession, department: Department) -> DepartmentOut:
        supervisors = await db.execute(
            select(department_supervisors.c.employee_id).where(
                department_supervisors.c.department_id == department.id
            )
        )
        count = await db.execute(
            select(func.count())
            .select_from(Employee)
            .where(Employee.department_id == department.id, Employee.is_active.is_(True))
        )
        return DepartmentOut(
            id=department.id,
            name=department.name,
            supervisor_ids=sorted(supervisors.scalars().all(), key=str),
            employee_count=count.scalar_one(),
        )

    @staticmethod
    async def list_departments(db: AsyncSession) -> list[DepartmentOut]:
        result = await db.execute(select(Department).order_by(Department.name))
        return [await DepartmentService._to_out(db, d) for d in result.scalars().all()]

    @staticmethod
    async def _validate_supervisors(
        db: AsyncSession,
        supervisor_ids: list[uuid.UUID],
    ) -> list[uuid.UUID]:
        unique_ids = list(dict.fromkeys(supervisor_ids))
        if not unique_ids:
            return []
        rows = await db.execute(
            select(Employee.id, Employee.role).where(Employee.id.in_(unique_ids))
        )
        roles = {row.id: row.role for row in rows.all()}
        errors: list[str] = []
        for sid in unique_ids:
            if sid not in roles:
                errors.append(f"Employee {sid} does not exist.")
            elif roles[sid] == UserRole.worker:
                errors.append(f"Employee {sid} is a worker; promote them to supervisor first.")
        if errors:
            raise ValidationException({"supervisor_ids": errors})
        return unique_ids

    @staticmethod
    async def create_department(
        db: AsyncSession,
        data: DepartmentCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> DepartmentOut:
        existing = await db.execute(select(Department.id).where(Department.name == data.name))
        if existing.first() is not None:
            raise ConflictError("name", data.name)
        supervisor_ids = await DepartmentService._validate_supervisors(db, data.supervisor_ids)

        department = Department(name=data.name)
        db.add(department)
        await db.flush()
        if supervisor_ids:
            await db.execute(
                department_supervisors.insert(),
                [{"department_id": department.id, "employee_id": sid} for sid in supervisor_ids],
            )

        await create_audit_entry(
            db,
            action="create",
            entity_type="department",
            entity_id=department.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        return await DepartmentService._to_out(db, department)

    @staticmethod
    async def set_supervisors(
        db: AsyncSession,
        department_id: uuid.UUID,
        supervisor_ids: list[uuid.UUID],
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> DepartmentOut:
        department = await db.get(Department, department_id)
        if department is None:
            raise NotFoundException("Department", str(department_id))
        supervisor_ids = await DepartmentService._validate_supervisors(db, supervisor_ids)

        before = (await DepartmentService._to_out(db, department)).supervisor_ids
        await db.execute(
            department_supervisors.delete().where(
                department_supervisors.c.department_id == department.id
            )
        )
        if supervisor_ids:
            await db.execute(
                department_supervisors.insert(),
                [{"department_id": department.id, "employee_id": sid} for sid in supervisor_ids],
            )

        await create_audit_entry(
            db,
            action="update",
            entity_type="department",
            entity_id=department.id,
            actor_id=actor_id,
            old_values={"supervisor_ids": [str(s) for s in before]},
            new_values={"supervisor_ids": [str(s) for s in supervisor_ids]},
        )
        return await DepartmentService._to_out(db, department)
