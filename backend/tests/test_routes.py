"""
Rememberly Backend — API Integration Tests
============================================

What:  HTTP-level tests through the full middleware and exception-handler
       stack, using httpx AsyncClient over ASGITransport.
How:   The app wraps the `controller` fixture (real GuestStore, fake remote
       store) and the mocked analyzer from conftest.

What we test:
    ✅ Mode and usage endpoints in guest mode
    ✅ Note and reminder CRUD, X-Total-Count
    ✅ Guest quota → 403 quota_exceeded with a request id
    ✅ Analyze flow, refused before the analyzer at the limit
    ✅ Analyze with no analyzer configured → 503 llm_service_error
    ✅ signed_in event migrates and reports the outcome
    ✅ Busy controller → 503 with Retry-After
    ✅ Health, request id echo, mode header
"""

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from rememberly.exceptions import BusyError
from rememberly.main import create_app
from rememberly.middleware.request_id import MODE_HEADER

SIGN_IN = {"event": "signed_in", "identity": {"id": "user-42", "email": "ada@example.com"}}


async def _create_note(client, title="Groceries"):
    return await client.post("/api/notes", json={"title": title, "original_content": "milk"})


class TestModeEndpoints:

    @pytest.mark.asyncio
    async def test_mode_in_guest(self, test_client):
        response = await test_client.get("/api/mode")

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "guest"
        assert data["identity"] is None
        assert data["guest_profile"]["id"].startswith("guest_")
        assert response.headers[MODE_HEADER] == "guest"

    @pytest.mark.asyncio
    async def test_usage_counts_against_limits(self, test_client):
        await _create_note(test_client)

        data = (await test_client.get("/api/usage")).json()
        assert data["limited"] is True
        assert data["notes"] == 1
        assert data["notes_remaining"] == 2
        assert data["reminders_remaining"] == 2

    @pytest.mark.asyncio
    async def test_migration_not_found_before_sign_in(self, test_client):
        response = await test_client.get("/api/migration")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestNoteEndpoints:

    @pytest.mark.asyncio
    async def test_note_crud(self, test_client):
        created = await _create_note(test_client, "Draft")
        assert created.status_code == 201
        note_id = created.json()["id"]
        assert created.json()["origin"] == "guest"

        patched = await test_client.patch(f"/api/notes/{note_id}", json={"title": "Final"})
        assert patched.status_code == 200
        assert patched.json()["title"] == "Final"

        listed = await test_client.get("/api/notes")
        assert listed.headers["X-Total-Count"] == "1"
        assert listed.headers["Cache-Control"] == "no-store"

        deleted = await test_client.delete(f"/api/notes/{note_id}")
        assert deleted.status_code == 204
        assert (await test_client.get("/api/notes")).json() == []

    @pytest.mark.asyncio
    async def test_update_unknown_note_is_404(self, test_client):
        response = await test_client.patch("/api/notes/missing", json={"title": "x"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_body_is_422(self, test_client):
        response = await test_client.post("/api/notes", json={"title": ""})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_fourth_note_is_quota_exceeded(self, test_client):
        for i in range(3):
            assert (await _create_note(test_client, f"Note {i}")).status_code == 201

        response = await _create_note(test_client, "One too many")

        assert response.status_code == 403
        data = response.json()
        assert data["error"] == "quota_exceeded"
        assert data["details"] == {"resource": "note", "limit": 3}
        assert data["request_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_analyze_saves_titled_note(self, test_client, mock_analyzer):
        response = await test_client.post(
            "/api/notes/analyze", json={"content": "milk, eggs, bread"}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "Weekly groceries"
        assert data["original_content"] == "milk, eggs, bread"
        assert data["tags"] == ["shopping", "food"]
        mock_analyzer.analyze.assert_awaited_once_with("milk, eggs, bread", "text")

    @pytest.mark.asyncio
    async def test_analyze_at_limit_skips_analyzer(self, test_client, mock_analyzer):
        for i in range(3):
            await _create_note(test_client, f"Note {i}")

        response = await test_client.post("/api/notes/analyze", json={"content": "more"})

        assert response.status_code == 403
        mock_analyzer.analyze.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_analyze_without_analyzer_is_unavailable(self, controller):
        app = create_app(controller=controller, analyzer=None)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/api/notes/analyze", json={"content": "milk"})
            assert response.status_code == 503
            assert response.json()["error"] == "llm_service_error"
            assert (await client.get("/api/notes")).json() == []
        assert controller.usage().notes == 0


class TestReminderEndpoints:

    @pytest.mark.asyncio
    async def test_reminder_lifecycle(self, test_client):
        created = await test_client.post(
            "/api/reminders",
            json={"title": "Call mom", "remind_at": "2030-01-01T09:00:00Z"},
        )
        assert created.status_code == 201
        reminder_id = created.json()["id"]

        listed = await test_client.get("/api/reminders")
        assert listed.headers["X-Total-Count"] == "1"

        completed = await test_client.post(f"/api/reminders/{reminder_id}/complete")
        assert completed.json()["is_completed"] is True
        assert (await test_client.get("/api/reminders")).json() == []

        assert (await test_client.delete(f"/api/reminders/{reminder_id}")).status_code == 204


class TestAuthEvents:

    @pytest.mark.asyncio
    async def test_sign_in_migrates_guest_data(self, test_client):
        await _create_note(test_client, "Before sign-in")

        response = await test_client.post("/api/auth/events", json=SIGN_IN)

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "authenticated"
        assert data["migration"]["result"]["notes_migrated"] == 1
        assert response.headers[MODE_HEADER] == "authenticated"

        notes = (await test_client.get("/api/notes")).json()
        assert [n["title"] for n in notes] == ["Before sign-in"]
        assert notes[0]["origin"] == "remote"

        last = await test_client.get("/api/migration")
        assert last.status_code == 200
        assert last.json()["identity_id"] == "user-42"

        usage = (await test_client.get("/api/usage")).json()
        assert usage["limited"] is False

    @pytest.mark.asyncio
    async def test_sign_in_without_identity_is_422(self, test_client):
        response = await test_client.post("/api/auth/events", json={"event": "signed_in"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_sign_out_returns_fresh_guest(self, test_client):
        await test_client.post("/api/auth/events", json=SIGN_IN)

        response = await test_client.post("/api/auth/events", json={"event": "signed_out"})

        assert response.json() == {"mode": "guest", "migration": None}
        usage = (await test_client.get("/api/usage")).json()
        assert usage["notes"] == 0

    @pytest.mark.asyncio
    async def test_guest_reset(self, test_client):
        await _create_note(test_client)
        old_profile = (await test_client.get("/api/mode")).json()["guest_profile"]["id"]

        response = await test_client.post("/api/guest/reset")

        assert response.status_code == 200
        assert response.json()["guest_profile"]["id"] != old_profile
        assert response.json()["has_guest_data"] is True
        assert (await test_client.get("/api/notes")).json() == []

    @pytest.mark.asyncio
    async def test_guest_reset_when_signed_in_is_409(self, test_client):
        await test_client.post("/api/auth/events", json=SIGN_IN)
        response = await test_client.post("/api/guest/reset")
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"


class TestInfrastructure:

    @pytest.mark.asyncio
    async def test_busy_controller_is_503_with_retry_after(self, test_client, controller):
        controller.list_notes = AsyncMock(side_effect=BusyError(retry_after=2))

        response = await test_client.get("/api/notes")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "2"
        assert response.json()["error"] == "busy"

    @pytest.mark.asyncio
    async def test_health_in_guest_mode(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["mode"] == "guest"
        assert data["database"] == "not_checked"
        assert data["gemini"] == "available"

    @pytest.mark.asyncio
    async def test_health_degraded_when_analysis_unavailable(self, test_client, mock_analyzer):
        mock_analyzer.health_check.return_value = False
        data = (await test_client.get("/health")).json()
        assert data["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, test_client):
        response = await test_client.get("/api/mode", headers={"X-Request-ID": "abc12345"})
        assert response.headers["X-Request-ID"] == "abc12345"
