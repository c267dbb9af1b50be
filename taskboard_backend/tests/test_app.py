import json
import logging
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from fakes import FlakyDataService, auth_headers, seed_profile, seed_task
from src.api.generate_openapi import generate_openapi
from src.api.logging_setup import setup_logging
from src.api.main import create_app, openapi_tags
from src.api.models import utcnow
from src.api.settings import Settings, get_settings


class TestProfiles:
    def test_sign_up_and_act(self, client):
        res = client.post("/api/v1/profiles", json={"email": "ada@example.com", "name": "Ada"})
        assert res.status_code == 201
        profile = res.json()
        assert profile["id"]
        assert profile["role"] == "user"

        me = client.get("/api/v1/profiles/me", headers={"X-User-Id": profile["id"]})
        assert me.status_code == 200
        assert me.json()["email"] == "ada@example.com"

    def test_sign_up_validation(self, client):
        res = client.post("/api/v1/profiles", json={"email": "not-an-address"})
        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"

    def test_sign_up_with_taken_id(self, client, alice):
        res = client.post("/api/v1/profiles", json={"id": "alice", "email": "other@example.com"})
        assert res.status_code == 409
        assert res.json()["detail"] == "Profile id already exists"

    def test_list_profiles_by_name(self, client, alice, bob):
        client.post("/api/v1/profiles", json={"id": "carol", "email": "carol@example.com", "name": "Carol"})
        res = client.get("/api/v1/profiles", headers=auth_headers(bob))
        assert res.status_code == 200
        assert [p["name"] for p in res.json()] == ["Alice", "Bob", "Carol"]

    def test_end_session_closes_views(self, client, service, alice):
        h = auth_headers(alice)
        client.get("/api/v1/tasks/", headers=h)
        client.get("/api/v1/notifications/", headers=h)
        # Repeat requests reuse the user's views and subscriptions
        assert len(service.subscriptions()) == 2

        res = client.delete("/api/v1/session", headers=h)

        assert res.status_code == 204
        assert service.subscriptions() == []
        assert "alice" not in client.app.state.views


class TestDashboard:
    def test_dashboard_summary(self, client, service, alice, bob):
        now = utcnow()
        seed_task(service, "alice", minutes=1, due_date=now + timedelta(days=2))
        seed_task(service, "bob", minutes=2, assigned_to="alice", due_date=now - timedelta(days=1))
        seed_task(service, "alice", minutes=3, status="completed")

        res = client.get("/api/v1/dashboard/", headers=auth_headers(alice))

        assert res.status_code == 200
        data = res.json()
        assert data["counts"]["total"] == 3
        assert data["counts"]["created"] == 2
        assert data["counts"]["assigned"] == 2
        assert data["counts"]["overdue"] == 1
        assert data["counts"]["upcoming"] == 1
        assert [p["name"] for p in data["chart"]] == ["Assigned", "Created", "Completed", "Overdue", "Upcoming"]
        assert len(data["upcoming"]) == 1

    def test_changes_by_other_users_are_counted(self, client, alice, bob):
        created = client.post(
            "/api/v1/tasks/", json={"title": "Hand off", "assigned_to": "bob"}, headers=auth_headers(alice)
        ).json()
        before = client.get("/api/v1/dashboard/", headers=auth_headers(alice)).json()
        assert before["counts"]["completed"] == 0

        res = client.put(
            f"/api/v1/tasks/{created['id']}/status", json={"status": "completed"}, headers=auth_headers(bob)
        )
        assert res.status_code == 200

        after = client.get("/api/v1/dashboard/", headers=auth_headers(alice)).json()
        assert after["counts"]["completed"] == 1
        tasks = client.get("/api/v1/tasks/", headers=auth_headers(alice)).json()
        assert [t["status"] for t in tasks["items"]] == ["completed"]

    def test_cached_board_without_refresh(self, client, alice, bob):
        created = client.post(
            "/api/v1/tasks/", json={"title": "Hand off", "assigned_to": "bob"}, headers=auth_headers(alice)
        ).json()
        client.put(
            f"/api/v1/tasks/{created['id']}/status", json={"status": "completed"}, headers=auth_headers(bob)
        )
        cached = client.get("/api/v1/dashboard/?refresh=false", headers=auth_headers(alice)).json()
        assert cached["counts"]["completed"] == 0

    def test_dashboard_requires_session(self, client):
        assert client.get("/api/v1/dashboard/").status_code == 401


class TestBasicAuthGate:
    @pytest.fixture()
    def gated(self, service):
        settings = Settings(enable_basic_auth=True, basic_auth_username="admin", basic_auth_password="secret")
        with TestClient(create_app(settings=settings, data_service=service)) as c:
            yield c

    def test_missing_credentials(self, gated, alice):
        res = gated.get("/api/v1/tasks/", headers=auth_headers(alice))
        assert res.status_code == 401
        assert res.headers.get("www-authenticate") == "Basic"

    def test_wrong_credentials(self, gated, alice):
        res = gated.get("/api/v1/tasks/", headers=auth_headers(alice), auth=("admin", "nope"))
        assert res.status_code == 401

    def test_valid_credentials(self, gated, alice):
        res = gated.get("/api/v1/tasks/", headers=auth_headers(alice), auth=("admin", "secret"))
        assert res.status_code == 200

    def test_health_is_open(self, gated):
        assert gated.get("/").status_code == 200


class TestLifespan:
    def test_shutdown_closes_every_view(self):
        service = FlakyDataService()
        alice = seed_profile(service, "alice", "Alice")
        bob = seed_profile(service, "bob", "Bob")
        with TestClient(create_app(settings=Settings(), data_service=service)) as c:
            c.get("/api/v1/notifications/", headers=auth_headers(alice))
            c.get("/api/v1/notifications/", headers=auth_headers(bob))
            assert len(service.subscriptions()) == 4
        assert service.subscriptions() == []

    def test_first_load_failure_is_a_502(self, client, service, alice):
        service.fail_on = {"query"}
        service.fail_tables = {"tasks"}
        res = client.get("/api/v1/tasks/", headers=auth_headers(alice))
        assert res.status_code == 502
        assert service.subscriptions() == []
        assert "alice" not in client.app.state.views


class TestSettings:
    def test_env_parsing(self, monkeypatch):
        monkeypatch.setenv("PERSISTENCE_BACKEND", "SQLite")
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("NOTIFICATION_PAGE_SIZE", "50")
        monkeypatch.setenv("TASK_PAGE_SIZE", "oops")
        monkeypatch.setenv("OPTIMISTIC_ROLLBACK", "yes")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        s = get_settings()

        assert s.persistence_backend == "sqlite"
        assert s.cors_allow_origins == ["http://a.test", "http://b.test"]
        assert s.notification_page_size == 50
        assert s.task_page_size is None
        assert s.optimistic_rollback is True
        assert s.log_level == "DEBUG"

    def test_unknown_backend_falls_back_to_memory(self, monkeypatch):
        monkeypatch.setenv("PERSISTENCE_BACKEND", "postgres")
        assert get_settings().persistence_backend == "memory"

    def test_basic_auth_credentials_only_read_when_enabled(self, monkeypatch):
        monkeypatch.delenv("ENABLE_BASIC_AUTH", raising=False)
        monkeypatch.setenv("BASIC_AUTH_USERNAME", "admin")
        assert get_settings().basic_auth_username is None


class TestLogging:
    def test_setup_is_idempotent_and_keeps_foreign_handlers(self, tmp_path):
        root = logging.getLogger()
        foreign = logging.NullHandler()
        root.addHandler(foreign)
        try:
            setup_logging(level="INFO", log_dir=tmp_path)
            setup_logging(level="INFO", log_dir=tmp_path)
            ours = [h for h in root.handlers if getattr(h, "_taskboard_handler", False)]
            assert len(ours) == 2
            assert foreign in root.handlers

            logging.getLogger("src.api.test").info("written to file")
            for h in ours:
                h.flush()
            assert "written to file" in (tmp_path / "taskboard.log").read_text(encoding="utf-8")
        finally:
            root.removeHandler(foreign)
            setup_logging(level="INFO")


class TestOpenAPI:
    def test_generate_writes_schema_with_tags(self, tmp_path):
        out = generate_openapi(str(tmp_path / "interfaces" / "openapi.json"))
        with open(out, encoding="utf-8") as f:
            schema = json.load(f)
        names = [t["name"] for t in schema["tags"]]
        assert names == [t["name"] for t in openapi_tags]
        assert "/api/v1/tasks/{task_id}/status" in schema["paths"]
