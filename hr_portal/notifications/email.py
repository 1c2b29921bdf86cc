"""E-mail dispatcher for request lifecycle events.

Renders a template per event and hands it to the outbound transport. The
transport here only logs the rendered message; delivery is best effort
and a failure never reaches the ledger transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.common.constants import RequestKind, UserRole
from hr_portal.config import settings
from hr_portal.core_hr.models import Department, Employee

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailTemplate:
    id: str
    subject: str
    body: str
    to_worker: bool = True
    to_supervisor: bool = True
    to_admin: bool = False


@dataclass(frozen=True)
class RenderedEmail:
    template_id: str
    recipients: tuple[str, ...]
    subject: str
    body: str


EMAIL_TEMPLATES: dict[str, EmailTemplate] = {
    t.id: t
    for t in (
        EmailTemplate(
            "request_created",
            "New {type} request - {employee}",
            "Hello,\n\nA new {type} request was registered for {employee}.\n"
            "Dates: {dates}\n\nPlease open the portal to review it.",
            to_admin=True,
        ),
        EmailTemplate(
            "request_approved",
            "Request approved: {type}",
            "Hello {employee},\n\nYour {type} request for {dates} has been APPROVED.",
        ),
        EmailTemplate(
            "request_rejected",
            "Request rejected: {type}",
            "Hello {employee},\n\nYour {type} request for {dates} has been REJECTED.\n\n"
            "Please contact your supervisor for details.",
        ),
        EmailTemplate(
            "overtime_earn_created",
            "Overtime logged: {employee}",
            "{employee} logged {hours} overtime hours on {date}.\nReason: {reason}",
            to_admin=True,
        ),
        EmailTemplate(
            "overtime_earn_approved",
            "Overtime approved",
            "Hello {employee},\n\nYour {hours} overtime hours of {date} were approved "
            "and added to your balance.",
            to_supervisor=False,
        ),
        EmailTemplate(
            "overtime_earn_rejected",
            "Overtime rejected",
            "Hello {employee},\n\nYour overtime record of {date} was rejected.",
            to_supervisor=False,
        ),
        EmailTemplate(
            "overtime_use_created",
            "Overtime use request ({type}): {employee}",
            "{employee} requests {type} for a total of {hours} hours.\n"
            "Dates: {dates}\nReason: {reason}",
            to_admin=True,
        ),
        EmailTemplate(
            "overtime_use_approved",
            "Overtime use approved",
            "Hello {employee},\n\nYour {type} request of {hours} hours has been APPROVED.\n"
            "The hours were deducted from your balance and source records.",
            to_supervisor=False,
        ),
        EmailTemplate(
            "overtime_use_rejected",
            "Overtime use rejected",
            "Hello {employee},\n\nYour {type} request has been REJECTED.",
            to_supervisor=False,
        ),
        EmailTemplate(
            "request_cancelled",
            "Request cancelled: {type}",
            "The {type} request of {employee} was cancelled or removed.",
            to_admin=True,
        ),
    )
}


def template_id_for(kind: RequestKind, event: str) -> Optional[str]:
    """Template for a lifecycle *event* (created/approved/rejected/cancelled)."""
    if event == "cancelled":
        return "request_cancelled"
    if kind.is_adjustment:
        return None
    if kind.is_overtime_source:
        return f"overtime_earn_{event}"
    if kind.is_consumption:
        return f"overtime_use_{event}"
    return f"request_{event}"


def _context(request, employee_name: str) -> dict[str, str]:
    if request.end_date and request.end_date != request.start_date:
        dates = f"{request.start_date} - {request.end_date}"
    else:
        dates = str(request.start_date)
    return {
        "type": request.label,
        "employee": employee_name,
        "dates": dates,
        "date": str(request.start_date),
        "hours": str(request.hours or 0),
        "reason": request.reason or "-",
    }


def render(template: EmailTemplate, request, employee_name: str, recipients: Sequence[str]) -> RenderedEmail:
    ctx = _context(request, employee_name)
    return RenderedEmail(
        template_id=template.id,
        recipients=tuple(recipients),
        subject=template.subject.format_map(ctx),
        body=template.body.format_map(ctx),
    )


class EmailDispatcher:
    """Fire-and-forget e-mail collaborator for the lifecycle engine."""

    def __init__(self, templates: Optional[dict[str, EmailTemplate]] = None) -> None:
        self.templates = templates if templates is not None else EMAIL_TEMPLATES

    async def _recipients(
        self,
        db: AsyncSession,
        template: EmailTemplate,
        employee: Employee,
    ) -> list[str]:
        emails: list[str] = []
        if template.to_worker:
            emails.append(employee.email)
        if template.to_supervisor and employee.department_id is not None:
            dept = await db.get(Department, employee.department_id)
            if dept is not None:
                await db.refresh(dept, ["supervisors"])
                emails.extend(s.email for s in dept.supervisors)
        if template.to_admin:
            admins = await db.execute(
                select(Employee.email).where(
                    Employee.role == UserRole.admin, Employee.is_active.is_(True)
                )
            )
            emails.extend(admins.scalars().all())
        # de-duplicate, keep order
        return list(dict.fromkeys(emails))

    async def dispatch(
        self,
        db: AsyncSession,
        event: str,
        request,
        employee: Optional[Employee],
    ) -> Optional[RenderedEmail]:
        """Render and send the template for *event*; never raises."""
        if not settings.EMAIL_ENABLED or employee is None:
            return None
        template_id = template_id_for(request.kind, event)
        template = self.templates.get(template_id) if template_id else None
        if template is None:
            return None
        try:
            recipients = await self._recipients(db, template, employee)
            email = render(template, request, employee.name, recipients)
            self._send(email)
            return email
        except Exception:
            logger.exception("E-mail %s for request %s could not be sent", template_id, request.id)
            return None

    def _send(self, email: RenderedEmail) -> None:
        logger.info(
            "[EMAIL] from=%s to=%s subject=%r",
            settings.EMAIL_SENDER, ", ".join(email.recipients), email.subject,
        )
        logger.debug("[EMAIL] body:\n%s", email.body)


email_dispatcher = EmailDispatcher()
