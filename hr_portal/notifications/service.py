"""Notification service — CRUD operations and request lifecycle dispatchers."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_portal.common.constants import NotificationType, RequestStatus
from hr_portal.common.exceptions import ForbiddenException, NotFoundException
from hr_portal.common.pagination import PaginationParams
from hr_portal.core_hr.models import Employee
from hr_portal.notifications.models import Notification
from hr_portal.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for an employee, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == employee_id)
            .order_by(Notification.created_at.desc())
        )

        if is_read is not None:
            query = query.where(Notification.is_read == is_read)
        if notification_type is not None:
            query = query.where(Notification.type == notification_type)

        # Total count (with filters applied)
        count_q = query.with_only_columns(func.count()).order_by(None)
        total: int = (await db.execute(count_q)).scalar_one()

        rows = (
            await db.execute(
                query.offset(pagination.offset).limit(pagination.page_size)
            )
        ).scalars().all()

        total_pages = math.ceil(total / pagination.page_size) if total else 0

        # Unread count (always unfiltered — for the badge)
        unread = await NotificationService.get_unread_count(db, employee_id)

        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(
                page=pagination.page,
                page_size=pagination.page_size,
                total=total,
                total_pages=total_pages,
                has_next=pagination.page < total_pages,
                has_prev=pagination.page > 1,
                unread=unread,
            ),
        )

    @staticmethod
    async def _get_owned(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        notification = await db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundException("Notification", notification_id)
        if notification.recipient_id != employee_id:
            raise ForbiddenException("You can only manage your own notifications.")
        return notification

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        notification = await NotificationService._get_owned(db, notification_id, employee_id)
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=now)
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def delete_notification(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> None:
        notification = await NotificationService._get_owned(db, notification_id, employee_id)
        await db.delete(notification)
        await db.flush()

    @staticmethod
    async def get_unread_count(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> int:
        """Return the number of unread notifications for an employee."""
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    @staticmethod
    async def broadcast(
        db: AsyncSession,
        *,
        title: str,
        message: str,
        type: NotificationType = NotificationType.info,
        recipient_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> int:
        """Send one notification to each recipient; defaults to every active employee.

        Unknown or inactive recipient ids are skipped. Returns the number sent.
        """
        query = select(Employee.id).where(Employee.is_active.is_(True))
        if recipient_ids is not None:
            if not recipient_ids:
                return 0
            query = query.where(Employee.id.in_(list(recipient_ids)))
        targets = (await db.execute(query)).scalars().all()

        for recipient_id in targets:
            db.add(
                Notification(
                    recipient_id=recipient_id,
                    type=type,
                    title=title,
                    message=message,
                )
            )
        await db.flush()
        logger.info("Broadcast %r sent to %d employee(s)", title, len(targets))
        return len(targets)


# ── Request lifecycle dispatchers ───────────────────────────────────
# Imported by the leave service. They accept the ORM object directly to
# avoid tight schema coupling.


async def notify_request_created(db: AsyncSession, request) -> Notification:
    """Tell the owner a request was registered on their behalf or by them."""
    return await NotificationService.create_notification(
        db,
        recipient_id=request.employee_id,
        type=NotificationType.info,
        title="Request Created",
        message=f"New request created: {request.label} ({request.start_date}).",
        entity_type="request",
        entity_id=request.id,
    )


async def notify_request_updated(db: AsyncSession, request) -> Notification:
    return await NotificationService.create_notification(
        db,
        recipient_id=request.employee_id,
        type=NotificationType.info,
        title="Request Updated",
        message=f"Your request {request.label} ({request.start_date}) was updated.",
        entity_type="request",
        entity_id=request.id,
    )


async def notify_request_status(
    db: AsyncSession,
    request,
    comment: Optional[str] = None,
) -> Notification:
    """Tell the owner their request was approved, rejected or reopened."""
    status: RequestStatus = request.status
    type_ = {
        RequestStatus.approved: NotificationType.approval,
        RequestStatus.rejected: NotificationType.alert,
    }.get(status, NotificationType.info)
    message = f"Your request {request.label} has been {status.value}."
    if comment:
        message += f" Comment: {comment}"
    return await NotificationService.create_notification(
        db,
        recipient_id=request.employee_id,
        type=type_,
        title=f"Request {status.value.capitalize()}",
        message=message,
        entity_type="request",
        entity_id=request.id,
    )


async def notify_request_deleted(db: AsyncSession, request) -> Notification:
    return await NotificationService.create_notification(
        db,
        recipient_id=request.employee_id,
        type=NotificationType.alert,
        title="Request Cancelled",
        message=f"Your request {request.label} ({request.start_date}) was cancelled or deleted.",
        entity_type="request",
        entity_id=request.id,
    )
