"""Tests for in-app notifications and the e-mail dispatcher."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from hr_portal.common.constants import NotificationType, RequestKind, RequestStatus
from hr_portal.common.exceptions import ForbiddenException, NotFoundException
from hr_portal.common.pagination import PaginationParams
from hr_portal.config import settings
from hr_portal.leave.schemas import RequestDraft
from hr_portal.leave.service import RequestService
from hr_portal.notifications.email import (
    EMAIL_TEMPLATES,
    EmailDispatcher,
    render,
    template_id_for,
)
from hr_portal.notifications.service import NotificationService

from tests.conftest import auth_headers, make_employee


def _params() -> PaginationParams:
    return PaginationParams(page=1, page_size=50)


# ═════════════════════════════════════════════════════════════════════
# NotificationService
# ═════════════════════════════════════════════════════════════════════


class TestNotificationService:

    async def test_status_change_notifies_owner(self, db, worker, admin):
        created = await RequestService.create_request(
            db,
            RequestDraft(type_id="vacation", start_date=date(2024, 6, 10)),
            worker.id,
        )
        await RequestService.set_request_status(
            db, created.request.id, RequestStatus.rejected, admin.id, "Busy week",
        )

        listing = await NotificationService.get_notifications(db, worker.id, _params())

        assert listing.meta.total == 2
        assert listing.meta.unread == 2
        newest_types = {n.type for n in listing.data}
        assert NotificationType.alert in newest_types
        assert any("Busy week" in n.message for n in listing.data)

    async def test_mark_read_and_unread_count(self, db, worker):
        note = await NotificationService.create_notification(
            db, recipient_id=worker.id, title="Hi", message="Hello",
        )
        assert await NotificationService.get_unread_count(db, worker.id) == 1

        await NotificationService.mark_read(db, note.id, worker.id)

        assert await NotificationService.get_unread_count(db, worker.id) == 0

    async def test_mark_all_read(self, db, worker):
        for i in range(3):
            await NotificationService.create_notification(
                db, recipient_id=worker.id, title=f"N{i}", message="m",
            )
        assert await NotificationService.mark_all_read(db, worker.id) == 3
        assert await NotificationService.get_unread_count(db, worker.id) == 0

    async def test_cannot_touch_someone_elses_notification(self, db, worker, admin):
        note = await NotificationService.create_notification(
            db, recipient_id=admin.id, title="Private", message="m",
        )
        with pytest.raises(ForbiddenException):
            await NotificationService.mark_read(db, note.id, worker.id)
        with pytest.raises(ForbiddenException):
            await NotificationService.delete_notification(db, note.id, worker.id)

    async def test_delete_unknown_notification(self, db, worker):
        with pytest.raises(NotFoundException):
            await NotificationService.delete_notification(db, uuid.uuid4(), worker.id)

    async def test_broadcast_defaults_to_all_active(self, db, worker, supervisor, admin):
        sent = await NotificationService.broadcast(db, title="Office closed", message="Friday")
        assert sent == 3
        assert await NotificationService.get_unread_count(db, worker.id) == 1

    async def test_broadcast_skips_unknown_recipients(self, db, worker):
        sent = await NotificationService.broadcast(
            db, title="Hi", message="m", recipient_ids=[worker.id, uuid.uuid4()],
        )
        assert sent == 1


# ═════════════════════════════════════════════════════════════════════
# E-mail templates and dispatcher
# ═════════════════════════════════════════════════════════════════════


def _fake_request(type_id="vacation", label="Vacation", **kw):
    values = dict(
        id=uuid.uuid4(),
        type_id=type_id,
        label=label,
        start_date=date(2024, 6, 10),
        end_date=date(2024, 6, 12),
        hours=None,
        reason=None,
        kind=RequestKind.from_type_id(type_id),
    )
    values.update(kw)
    return SimpleNamespace(**values)


class TestEmailTemplates:

    @pytest.mark.parametrize(
        "kind, event, expected",
        [
            (RequestKind.leave, "created", "request_created"),
            (RequestKind.leave, "approved", "request_approved"),
            (RequestKind.overtime_earn, "rejected", "overtime_earn_rejected"),
            (RequestKind.worked_holiday, "created", "overtime_earn_created"),
            (RequestKind.overtime_pay, "approved", "overtime_use_approved"),
            (RequestKind.adjustment_days, "created", None),
            (RequestKind.adjustment_days, "cancelled", "request_cancelled"),
        ],
    )
    def test_template_selection(self, kind, event, expected):
        assert template_id_for(kind, event) == expected

    def test_every_selected_template_exists(self):
        for kind in RequestKind:
            for event in ("created", "approved", "rejected", "cancelled"):
                template_id = template_id_for(kind, event)
                assert template_id is None or template_id in EMAIL_TEMPLATES

    def test_render_fills_placeholders(self):
        email = render(
            EMAIL_TEMPLATES["request_approved"], _fake_request(), "Ana Worker", ["ana@example.com"],
        )
        assert email.subject == "Request approved: Vacation"
        assert "Ana Worker" in email.body
        assert "2024-06-10 - 2024-06-12" in email.body
        assert email.recipients == ("ana@example.com",)

    def test_render_overtime_hours(self):
        request = _fake_request(
            type_id="overtime_earn", label="Overtime Earned", end_date=None,
            hours=Decimal("5"), reason="Release night",
        )
        email = render(EMAIL_TEMPLATES["overtime_earn_created"], request, "Ana", [])
        assert "5 overtime hours on 2024-06-10" in email.body
        assert "Release night" in email.body


class TestEmailDispatcher:

    async def test_disabled_dispatch_sends_nothing(self, db, worker, monkeypatch):
        monkeypatch.setattr(settings, "EMAIL_ENABLED", False)
        result = await EmailDispatcher().dispatch(db, "approved", _fake_request(), worker)
        assert result is None

    async def test_recipients_follow_template_flags(self, db, worker, supervisor, admin, monkeypatch):
        monkeypatch.setattr(settings, "EMAIL_ENABLED", True)

        created = await EmailDispatcher().dispatch(db, "created", _fake_request(), worker)
        assert set(created.recipients) == {worker.email, supervisor.email, admin.email}

        earned = await EmailDispatcher().dispatch(
            db, "approved", _fake_request(type_id="overtime_earn", label="Overtime"), worker,
        )
        assert earned.recipients == (worker.email,)

    async def test_delivery_failure_is_swallowed(self, db, worker, monkeypatch, caplog):
        monkeypatch.setattr(settings, "EMAIL_ENABLED", True)
        dispatcher = EmailDispatcher()

        def _boom(email):
            raise RuntimeError("smtp down")

        monkeypatch.setattr(dispatcher, "_send", _boom)
        assert await dispatcher.dispatch(db, "approved", _fake_request(), worker) is None
        assert "could not be sent" in caplog.text

    async def test_missing_employee_skips_email(self, db, monkeypatch):
        monkeypatch.setattr(settings, "EMAIL_ENABLED", True)
        assert await EmailDispatcher().dispatch(db, "approved", _fake_request(), None) is None


# ═════════════════════════════════════════════════════════════════════
# HTTP
# ═════════════════════════════════════════════════════════════════════


class TestNotificationEndpoints:

    async def test_list_and_read_all(self, client, db, worker):
        await NotificationService.create_notification(
            db, recipient_id=worker.id, title="Hi", message="Hello",
        )
        await db.commit()

        resp = await client.get("/api/v1/notifications", headers=auth_headers(worker))
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["unread"] == 1
        assert body["data"][0]["title"] == "Hi"

        resp = await client.put("/api/v1/notifications/read-all", headers=auth_headers(worker))
        assert resp.status_code == 200
        assert resp.json()["data"]["count"] == 1

    async def test_broadcast_requires_admin(self, client, worker):
        resp = await client.post(
            "/api/v1/notifications/broadcast",
            json={"message": "Party"},
            headers=auth_headers(worker),
        )
        assert resp.status_code == 403

    async def test_admin_broadcast(self, client, worker, admin):
        resp = await client.post(
            "/api/v1/notifications/broadcast",
            json={"title": "Party", "message": "Friday 5pm"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 201
        assert resp.json()["data"]["count"] == 2

    async def test_delete_own_notification(self, client, db, worker):
        note = await NotificationService.create_notification(
            db, recipient_id=worker.id, title="Bye", message="m",
        )
        await db.commit()

        resp = await client.delete(f"/api/v1/notifications/{note.id}", headers=auth_headers(worker))
        assert resp.status_code == 204
