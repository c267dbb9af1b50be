from datetime import datetime

from fakes import auth_headers, seed_profile


def create_task_payload(
    title="Test Task",
    description="Do something",
    status=None,
    priority=None,
    due_date=None,
    assigned_to=None,
):
    payload = {"title": title, "description": description}
    if status is not None:
        payload["status"] = status
    if priority is not None:
        payload["priority"] = priority
    if due_date is not None:
        payload["due_date"] = due_date
    if assigned_to is not None:
        payload["assigned_to"] = assigned_to
    return payload


def parse_ts(value: str) -> datetime:
    # Aware timestamps serialize with a trailing Z
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def assert_task_shape(task: dict):
    # Basic structure validation
    for key in ["id", "title", "status", "priority", "created_at", "created_by"]:
        assert key in task
    # Optional fields
    for key in ["description", "due_date", "updated_at", "assigned_to", "creator_name", "assignee_name"]:
        assert key in task
    assert isinstance(task["id"], str)
    assert task["status"] in ("todo", "in_progress", "completed")
    assert task["priority"] in ("low", "medium", "high")
    parse_ts(task["created_at"])
    if task["due_date"] is not None:
        parse_ts(task["due_date"])


def create(client, session, **kwargs):
    res = client.post("/api/v1/tasks/", json=create_task_payload(**kwargs), headers=auth_headers(session))
    assert res.status_code == 201, res.text
    return res.json()


class TestHealth:
    def test_health_check(self, client):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["backend"] == "memory"


class TestSessionRequired:
    def test_missing_user_header(self, client):
        res = client.get("/api/v1/tasks/")
        assert res.status_code == 401
        body = res.json()
        assert body["error"] == "NotAuthenticated"
        assert body["message"] == "Not authenticated"

    def test_unknown_user(self, client):
        res = client.get("/api/v1/tasks/", headers={"X-User-Id": "ghost"})
        assert res.status_code == 401
        assert res.json()["message"] == "Unknown user"


class TestTasksCRUD:
    def test_create_task_minimal(self, client, alice):
        task = create(client, alice, title="Buy milk", description=None)
        assert_task_shape(task)
        assert task["title"] == "Buy milk"
        assert task["description"] is None
        assert task["status"] == "todo"
        assert task["priority"] == "medium"
        assert task["created_by"] == "alice"
        assert task["assigned_to"] == "alice"
        assert task["creator_name"] == "Alice"

    def test_create_task_with_due_date_date_string(self, client, alice):
        task = create(client, alice, title="Pay bills", due_date="2099-12-25")
        # Due date should be promoted to midnight
        assert task["due_date"].startswith("2099-12-25T00:00:00")

    def test_create_and_assign_notifies_assignee(self, client, alice, bob):
        task = create(client, alice, title="Review PR", assigned_to="bob", priority="high")
        assert task["assignee_name"] == "Bob"

        res = client.get("/api/v1/notifications/", headers=auth_headers(bob))
        assert res.status_code == 200
        feed = res.json()
        assert feed["unread_count"] == 1
        note = feed["items"][0]
        assert note["type"] == "task_assigned"
        assert note["task_id"] == task["id"]
        assert note["message"] == 'Alice assigned you a new task: "Review PR"'

    def test_get_task_and_not_found(self, client, alice):
        task = create(client, alice, title="Read book")

        res_get = client.get(f"/api/v1/tasks/{task['id']}", headers=auth_headers(alice))
        assert res_get.status_code == 200
        assert res_get.json()["title"] == "Read book"

        res_404 = client.get("/api/v1/tasks/missing", headers=auth_headers(alice))
        assert res_404.status_code == 404
        body = res_404.json()
        assert body["error"] == "NotFound"
        assert body["message"] == "Task not found"

    def test_other_users_tasks_are_invisible(self, client, alice, bob):
        task = create(client, alice, title="Private")
        res = client.get(f"/api/v1/tasks/{task['id']}", headers=auth_headers(bob))
        assert res.status_code == 404

    def test_patch_partial_update(self, client, alice, bob):
        task = create(client, alice, title="Partial", description="X")

        res_patch = client.patch(
            f"/api/v1/tasks/{task['id']}",
            json={"title": "Partial Updated", "assigned_to": "bob"},
            headers=auth_headers(alice),
        )
        assert res_patch.status_code == 200
        patched = res_patch.json()
        assert patched["title"] == "Partial Updated"
        assert patched["assigned_to"] == "bob"
        assert patched["assignee_name"] == "Bob"
        # description should remain unchanged
        assert patched["description"] == "X"
        assert patched["updated_at"] is not None

        res_patch_nf = client.patch("/api/v1/tasks/missing", json={"title": "Nope"}, headers=auth_headers(alice))
        assert res_patch_nf.status_code == 404
        assert res_patch_nf.json()["message"] == "Task not found"

    def test_patch_clears_due_date(self, client, alice):
        task = create(client, alice, title="Dated", due_date="2099-01-01")
        res = client.patch(f"/api/v1/tasks/{task['id']}", json={"due_date": None}, headers=auth_headers(alice))
        assert res.status_code == 200
        assert res.json()["due_date"] is None

    def test_status_change_notifies_creator(self, client, alice, bob):
        task = create(client, bob, title="Write docs", assigned_to="alice")

        res = client.put(
            f"/api/v1/tasks/{task['id']}/status", json={"status": "completed"}, headers=auth_headers(alice)
        )
        assert res.status_code == 200
        assert res.json()["status"] == "completed"

        feed = client.get("/api/v1/notifications/", headers=auth_headers(bob)).json()
        assert [n["type"] for n in feed["items"]] == ["task_completed"]
        assert feed["items"][0]["message"] == 'Alice completed the task "Write docs"'

    def test_status_change_invalid_value(self, client, alice):
        task = create(client, alice)
        res = client.put(f"/api/v1/tasks/{task['id']}/status", json={"status": "done"}, headers=auth_headers(alice))
        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"

    def test_status_change_remote_failure(self, client, service, alice):
        task = create(client, alice)
        service.fail_on = {"update"}
        res = client.put(
            f"/api/v1/tasks/{task['id']}/status", json={"status": "in_progress"}, headers=auth_headers(alice)
        )
        assert res.status_code == 502
        assert res.json()["error"] == "DataServiceError"

    def test_delete_task(self, client, alice):
        task = create(client, alice, title="ToDelete")

        res_del = client.delete(f"/api/v1/tasks/{task['id']}", headers=auth_headers(alice))
        assert res_del.status_code == 204
        assert res_del.text == ""

        # Subsequent get is 404
        res_get = client.get(f"/api/v1/tasks/{task['id']}", headers=auth_headers(alice))
        assert res_get.status_code == 404

    def test_delete_by_assignee_is_forbidden(self, client, alice, bob):
        task = create(client, alice, title="Mine", assigned_to="bob")
        res = client.delete(f"/api/v1/tasks/{task['id']}", headers=auth_headers(bob))
        assert res.status_code == 403
        assert res.json()["error"] == "PermissionDenied"

    def test_delete_by_outsider_is_forbidden(self, client, service, alice):
        carol = seed_profile(service, "carol", "Carol")
        task = create(client, alice, title="Not yours")

        res = client.delete(f"/api/v1/tasks/{task['id']}", headers=auth_headers(carol))

        assert res.status_code == 403
        assert service.get("tasks", task["id"])["title"] == "Not yours"

    def test_delete_unknown_task(self, client, alice):
        res = client.delete("/api/v1/tasks/missing", headers=auth_headers(alice))
        assert res.status_code == 404
        assert res.json()["message"] == "Task not found"


class TestListFiltering:
    def seed_tasks(self, client, alice, bob):
        create(client, alice, title="Alpha report", description="quarterly numbers", priority="high")
        create(client, alice, title="Beta", description="cleanup", status="in_progress", assigned_to="bob")
        create(client, bob, title="Gamma", description="for alice", assigned_to="alice", priority="low")
        create(client, bob, title="Delta", description="bob only")

    def test_list_scope_and_counts(self, client, alice, bob):
        self.seed_tasks(client, alice, bob)
        res = client.get("/api/v1/tasks/", headers=auth_headers(alice))
        assert res.status_code == 200
        data = res.json()
        assert data["total"] == 3
        assert [t["title"] for t in data["items"]] == ["Gamma", "Beta", "Alpha report"]
        assert data["counts"] == {"todo": 2, "in_progress": 1, "completed": 0}

    def test_list_filters(self, client, alice, bob):
        self.seed_tasks(client, alice, bob)
        h = auth_headers(alice)

        assigned = client.get("/api/v1/tasks/?scope=assigned", headers=h).json()
        assert {t["title"] for t in assigned["items"]} == {"Alpha report", "Gamma"}

        created = client.get("/api/v1/tasks/?scope=created", headers=h).json()
        assert {t["title"] for t in created["items"]} == {"Alpha report", "Beta"}

        by_status = client.get("/api/v1/tasks/?status=in_progress", headers=h).json()
        assert [t["title"] for t in by_status["items"]] == ["Beta"]

        by_priority = client.get("/api/v1/tasks/?priority=low", headers=h).json()
        assert [t["title"] for t in by_priority["items"]] == ["Gamma"]

        search = client.get("/api/v1/tasks/?q=QUARTERLY", headers=h).json()
        assert [t["title"] for t in search["items"]] == ["Alpha report"]
        assert search["counts"] == {"todo": 1, "in_progress": 0, "completed": 0}

    def test_list_refresh_reloads(self, client, service, alice):
        create(client, alice, title="One")
        res = client.get("/api/v1/tasks/?refresh=true", headers=auth_headers(alice))
        assert res.status_code == 200
        assert [t["title"] for t in res.json()["items"]] == ["One"]

    def test_list_invalid_scope_param(self, client, alice):
        res = client.get("/api/v1/tasks/?scope=everyone", headers=auth_headers(alice))
        assert res.status_code == 400
        # FastAPI raises HTTPException with detail string
        assert res.json()["detail"] == "scope must be 'all', 'assigned' or 'created'"


class TestValidationErrors:
    def test_create_validation_error_title_empty(self, client, alice):
        # Empty title should trigger 422 with our error format handler
        res = client.post("/api/v1/tasks/", json={"title": "  ", "description": "x"}, headers=auth_headers(alice))
        assert res.status_code == 422
        body = res.json()
        assert body.get("error") == "ValidationError"
        assert body.get("message") == "Request validation failed"
        assert isinstance(body.get("detail"), list)

    def test_patch_validation_error_bad_due_date(self, client, alice):
        task = create(client, alice, title="Due date bad")
        res_patch = client.patch(
            f"/api/v1/tasks/{task['id']}", json={"due_date": "not-a-date"}, headers=auth_headers(alice)
        )
        assert res_patch.status_code == 422
        body = res_patch.json()
        assert body.get("error") == "ValidationError"
        assert isinstance(body.get("detail"), list)

    def test_create_unknown_priority(self, client, alice):
        res = client.post(
            "/api/v1/tasks/", json=create_task_payload(priority="urgent"), headers=auth_headers(alice)
        )
        assert res.status_code == 422
