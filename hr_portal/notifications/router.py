"""Notification endpoints — list, mark read, delete, broadcast."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.auth.dependencies import get_current_user, require_role
from hr_portal.common.constants import NotificationType, UserRole
from hr_portal.common.pagination import PaginationParams
from hr_portal.common.rate_limit import limiter
from hr_portal.core_hr.models import Employee
from hr_portal.database import get_db
from hr_portal.notifications.schemas import (
    BroadcastCreate,
    NotificationListResponse,
    NotificationResponse,
)
from hr_portal.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / — list current user's notifications ───────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    type: Optional[NotificationType] = Query(
        default=None, alias="type", description="Filter by notification type"
    ),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List notifications for the authenticated user (paginated)."""
    return await NotificationService.get_notifications(
        db,
        employee_id=employee.id,
        pagination=pagination,
        is_read=is_read,
        notification_type=type,
    )


# ── PUT /read-all — bulk mark all as read ───────────────────────────
# NOTE: This route MUST be registered before /{notification_id}/read.

@router.put("/read-all")
async def mark_all_read(
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark all unread notifications as read for the authenticated user."""
    count = await NotificationService.mark_all_read(db, employee.id)
    return {"message": "All notifications marked as read", "data": {"count": count}}


# ── POST /broadcast — admin announcement ────────────────────────────

@router.post("/broadcast", status_code=201)
@limiter.limit("10/minute")
async def broadcast(
    request: Request,
    body: BroadcastCreate,
    employee: Employee = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Send a notification to the given employees, or to everyone active."""
    count = await NotificationService.broadcast(
        db,
        title=body.title,
        message=body.message,
        type=body.type,
        recipient_ids=body.recipient_ids,
    )
    return {"message": "Broadcast sent", "data": {"count": count}}


# ── PUT /{notification_id}/read — mark single as read ───────────────

@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark a single notification as read."""
    notification = await NotificationService.mark_read(db, notification_id, employee.id)
    return {
        "message": "Notification marked as read",
        "data": NotificationResponse.model_validate(notification),
    }


# ── DELETE /{notification_id} ───────────────────────────────────────

@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await NotificationService.delete_notification(db, notification_id, employee.id)
