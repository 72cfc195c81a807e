"""
בדיקות API - קליטת שיחות, תצוגת התור, ניהול תבניות ו-health.

ה-routes קוראים מה-store בזיכרון (dependency override); משימות Celery ממוקקות.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.domain.models.messaging import MessagePlatform, MessagePriority
from app.domain.services.alert_service import AlertType, publish_alert


def _task_mock(task_id: str = "task-123") -> MagicMock:
    task = MagicMock()
    task.delay.return_value = MagicMock(id=task_id)
    return task


# ============================================================================
# Call events
# ============================================================================


class TestCallEvents:

    @pytest.mark.unit
    async def test_call_event_accepted_and_dispatched(self, test_client: httpx.AsyncClient) -> None:
        task = _task_mock()
        with patch("app.api.routes.call_events.handle_call_event", task):
            response = await test_client.post(
                "/api/call-events",
                json={
                    "id": "call_abc",
                    "phone_number": "0888 123 456",
                    "message_text": "  Спешно!\x00  ",
                    "contact": {"name": "Иван", "priority": "vip"},
                },
                headers={"X-Correlation-ID": "corr0001"},
            )

        assert response.status_code == 202
        assert response.json() == {"call_id": "call_abc", "task_id": "task-123", "status": "accepted"}
        assert response.headers["X-Correlation-ID"] == "corr0001"

        payload = task.delay.call_args.args[0]
        assert payload["phone_number"] == "+359888123456"
        assert payload["message_text"] == "Спешно!"
        assert payload["contact"]["priority"] == "vip"
        assert "occurred_at" not in payload
        assert task.delay.call_args.kwargs["correlation_id"] == "corr0001"

    @pytest.mark.unit
    async def test_call_id_generated_when_missing(self, test_client: httpx.AsyncClient) -> None:
        task = _task_mock()
        with patch("app.api.routes.call_events.handle_call_event", task):
            response = await test_client.post("/api/call-events", json={"phone_number": "+359888123456"})

        assert response.status_code == 202
        assert response.json()["call_id"].startswith("call_")

    @pytest.mark.unit
    @pytest.mark.parametrize("phone", ["abc", "123", ""])
    async def test_invalid_phone_rejected(self, test_client: httpx.AsyncClient, phone: str) -> None:
        task = _task_mock()
        with patch("app.api.routes.call_events.handle_call_event", task):
            response = await test_client.post("/api/call-events", json={"phone_number": phone})

        assert response.status_code == 422
        task.delay.assert_not_called()


# ============================================================================
# Queue views and admin actions
# ============================================================================


class TestQueueRoutes:

    @pytest.fixture
    async def populated(self, make_queue, make_request, fake_adapters):
        """Snapshot with one completed, one failed, one pending message"""
        from app.domain.models.messaging import DeliveryStatus

        fake_adapters[MessagePlatform.VIBER].outcomes = [DeliveryStatus.FAILED]
        queue = make_queue()
        completed = make_request()
        failed = make_request(platform=MessagePlatform.VIBER, max_retries=1)
        await queue.enqueue(completed)
        await queue.enqueue(failed)
        await queue.process_batch()
        pending = make_request(MessagePriority.LOW)
        await queue.enqueue(pending)
        return {"completed": completed, "failed": failed, "pending": pending}

    @pytest.mark.unit
    async def test_stats_from_empty_store(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/queue/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["queue"] == {
            "pending": 0, "processing": 0, "completed": 0, "failed": 0, "total_processed": 0,
        }
        assert data["platforms"]["whatsapp"] == {"sent": 0, "failed": 0}

    @pytest.mark.unit
    async def test_stats_from_snapshot(self, test_client: httpx.AsyncClient, populated) -> None:
        data = (await test_client.get("/api/queue/stats")).json()

        assert data["queue"]["pending"] == 1
        assert data["queue"]["completed"] == 1
        assert data["queue"]["failed"] == 1
        assert data["queue"]["total_processed"] == 2
        assert data["platforms"]["whatsapp"]["sent"] == 1
        assert data["platforms"]["viber"]["failed"] == 1

    @pytest.mark.unit
    async def test_messages_by_state(self, test_client: httpx.AsyncClient, populated) -> None:
        response = await test_client.get("/api/queue/messages", params={"state": "failed"})

        data = response.json()
        assert data["state"] == "failed"
        assert data["count"] == 1
        assert data["messages"][0]["id"] == populated["failed"].id
        assert data["messages"][0]["last_error"] == "scripted failure"

    @pytest.mark.unit
    async def test_messages_default_to_pending(self, test_client: httpx.AsyncClient, populated) -> None:
        data = (await test_client.get("/api/queue/messages")).json()
        assert [m["id"] for m in data["messages"]] == [populated["pending"].id]

    @pytest.mark.unit
    async def test_messages_limit_validated(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/queue/messages", params={"limit": 1000})
        assert response.status_code == 422

    @pytest.mark.unit
    async def test_get_single_message(self, test_client: httpx.AsyncClient, populated) -> None:
        response = await test_client.get(f"/api/queue/messages/{populated['completed'].id}")

        assert response.status_code == 200
        assert response.json()["state"] == "completed"

    @pytest.mark.unit
    async def test_unknown_message_404(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/queue/messages/msg_missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_2001"

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "path, task_name, args",
        [
            ("/api/queue/messages/msg_1/cancel", "cancel_message", ("msg_1",)),
            ("/api/queue/messages/msg_1/retry", "retry_message", ("msg_1",)),
            ("/api/queue/clear", "clear_all_queues", ()),
        ],
    )
    async def test_admin_actions_go_to_worker(
        self, test_client: httpx.AsyncClient, path: str, task_name: str, args: tuple
    ) -> None:
        task = _task_mock("task-admin")
        with patch(f"app.api.routes.queue.{task_name}", task):
            response = await test_client.post(path)

        assert response.status_code == 202
        assert response.json() == {"task_id": "task-admin", "status": "accepted"}
        assert task.delay.call_args.args == args

    @pytest.mark.unit
    async def test_alert_history(self, test_client: httpx.AsyncClient) -> None:
        await publish_alert(AlertType.PERMANENT_FAILURE, {"message_id": "msg_1"})
        await publish_alert(AlertType.PERMANENT_FAILURE, {"message_id": "msg_2"})

        data = (await test_client.get("/api/queue/alerts")).json()

        assert data["count"] == 2
        assert [a["data"]["message_id"] for a in data["alerts"]] == ["msg_2", "msg_1"]


# ============================================================================
# Templates and app state
# ============================================================================


class TestTemplateRoutes:

    @pytest.mark.unit
    async def test_list_seeds_defaults(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/templates")

        assert response.status_code == 200
        ids = {t["id"] for t in response.json()}
        assert {"business_hours_missed", "emergency_response", "vacation_mode"} <= ids

    @pytest.mark.unit
    async def test_filter_by_category(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/templates", params={"category": "emergency"})
        assert [t["id"] for t in response.json()] == ["emergency_response"]

    @pytest.mark.unit
    async def test_create_update_delete(self, test_client: httpx.AsyncClient) -> None:
        body = {
            "id": "",
            "name": "Празници",
            "category": "after_hours",
            "content": "Почиваме до {date}.",
            "variables": [{"key": "date"}],
        }
        created = await test_client.post("/api/templates", json=body)
        assert created.status_code == 201
        template_id = created.json()["id"]
        assert template_id.startswith("template_")

        body["content"] = "Затворено до {date}."
        updated = await test_client.put(f"/api/templates/{template_id}", json=body)
        assert updated.status_code == 200
        assert updated.json()["id"] == template_id

        fetched = await test_client.get(f"/api/templates/{template_id}")
        assert fetched.json()["content"] == "Затворено до {date}."

        assert (await test_client.delete(f"/api/templates/{template_id}")).status_code == 204
        assert (await test_client.delete(f"/api/templates/{template_id}")).status_code == 404

    @pytest.mark.unit
    async def test_invalid_template_400(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.post(
            "/api/templates",
            json={"id": "bad", "name": "Bad", "category": "new_customer", "content": "Hi {who}"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_3002"

    @pytest.mark.unit
    async def test_unknown_template_404(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/templates/nope")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_3001"

    @pytest.mark.unit
    async def test_duplicate(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.post(
            "/api/templates/new_customer/duplicate", json={"name": "Нов клиент 2"}
        )

        assert response.status_code == 201
        assert response.json()["name"] == "Нов клиент 2"
        assert response.json()["category"] == "new_customer"

    @pytest.mark.unit
    async def test_app_state_updates(self, test_client: httpx.AsyncClient) -> None:
        assert (await test_client.get("/api/app-state")).json()["mode"] == "normal"

        response = await test_client.put("/api/app-state/mode", json={"mode": "job_site"})
        assert response.json()["mode"] == "job_site"

        response = await test_client.put(
            "/api/app-state/business-hours",
            json={"enabled": True, "schedule": {"monday": {"start": "07:30", "end": "16:00"}}},
        )
        state = response.json()
        assert state["mode"] == "job_site"
        assert state["business_hours"]["schedule"] == {"monday": {"start": "07:30", "end": "16:00"}}

    @pytest.mark.unit
    async def test_bad_business_hours_rejected(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.put(
            "/api/app-state/business-hours",
            json={"schedule": {"monday": {"start": "7:30", "end": "25:00"}}},
        )
        assert response.status_code == 422

    @pytest.mark.unit
    async def test_unknown_timezone_rejected(self, test_client: httpx.AsyncClient, memory_store) -> None:
        response = await test_client.put(
            "/api/app-state/business-hours",
            json={"schedule": {"monday": {"start": "08:00", "end": "18:00"}}, "timezone": "Mars/Olympus"},
        )

        assert response.status_code == 422
        assert "app_state" not in memory_store.data

    @pytest.mark.unit
    @pytest.mark.parametrize("day", ["Monday", "mon", "понеделник"])
    async def test_unknown_weekday_key_rejected(self, test_client: httpx.AsyncClient, day: str) -> None:
        response = await test_client.put(
            "/api/app-state/business-hours",
            json={"schedule": {day: {"start": "08:00", "end": "18:00"}}, "timezone": "UTC"},
        )

        assert response.status_code == 422


# ============================================================================
# Health
# ============================================================================


class TestHealth:

    @pytest.mark.unit
    async def test_liveness(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.unit
    async def test_readiness_all_healthy(self, test_client: httpx.AsyncClient, memory_store) -> None:
        from app.domain.services.platforms import get_platform_adapters

        get_platform_adapters(memory_store)
        with patch(
            "app.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value="ok",
        ), patch(
            "app.domain.services.health_service._check_celery",
            new_callable=AsyncMock,
            return_value="ok",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["redis"] == "ok"
        assert set(data["platforms"]) == {"whatsapp", "viber", "telegram"}
        assert data["platforms"]["viber"]["circuit"]["state"] == "closed"

    @pytest.mark.unit
    async def test_readiness_degraded_when_db_down(self, test_client: httpx.AsyncClient, memory_store) -> None:
        from app.domain.services.platforms import get_platform_adapters

        get_platform_adapters(memory_store)
        with patch(
            "app.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value="error: db_unavailable",
        ), patch(
            "app.domain.services.health_service._check_celery",
            new_callable=AsyncMock,
            return_value="ok",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
