"""
Groups + tasks API tests.

Covers:
  - Groups: list/create/delete, validation, manager-only management
  - Group tasks: listing with search/status/shift, clearing
  - Tasks: detail with history, PATCH status rules, delete
  - Live stream: snapshot first, then change events
"""

import json

from ompro.models import db
from ompro.models.maintenance import STATUS_DONE, STATUS_NOT_DONE, Group, Task, TaskHistory
from ompro.services import task_service
from ompro.services.change_feed import group_topic


# ═══════════════════════════════════════════════════════════════
# Groups
# ═══════════════════════════════════════════════════════════════

def test_create_group(client, manager_headers):
    res = client.post("/api/v1/groups", json={"name": "Parada Turbina"}, headers=manager_headers)
    assert res.status_code == 201
    data = res.get_json()
    assert data["name"] == "Parada Turbina"
    assert data["task_count"] == 0


def test_create_group_missing_name(client, manager_headers):
    res = client.post("/api/v1/groups", json={}, headers=manager_headers)
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


def test_create_group_blank_name(client, manager_headers):
    res = client.post("/api/v1/groups", json={"name": "  "}, headers=manager_headers)
    assert res.status_code == 422
    assert res.get_json()["details"] == {"name": "required"}


def test_executor_cannot_create_group(client, executor_headers):
    res = client.post("/api/v1/groups", json={"name": "X"}, headers=executor_headers)
    assert res.status_code == 403
    assert res.get_json()["details"] == {"required": "groups.manage"}


def test_list_groups_with_counts(client, group, make_task, executor_headers):
    make_task()
    res = client.get("/api/v1/groups?counts=1", headers=executor_headers)
    assert res.status_code == 200
    data = res.get_json()
    assert data["total"] == 1
    assert data["items"][0]["task_count"] == 1


def test_delete_group_cascades(client, group, make_task, executor, manager_headers):
    task = make_task()
    task_service.update_status(task.id, STATUS_DONE, "A", None, executor)

    res = client.delete(f"/api/v1/groups/{group.id}", headers=manager_headers)
    assert res.status_code == 200
    assert res.get_json()["tasks_deleted"] == 1
    assert Group.query.count() == 0
    assert Task.query.count() == 0
    assert TaskHistory.query.count() == 0


def test_delete_unknown_group(client, manager_headers):
    res = client.delete("/api/v1/groups/9999", headers=manager_headers)
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════
# Group tasks
# ═══════════════════════════════════════════════════════════════

def test_list_group_tasks_filters(client, group, make_task, executor_headers):
    make_task(om_number="1", description="Trocar rolamento", min_date="10/01/2024")
    make_task(om_number="2", status=STATUS_DONE, shift="C", min_date="02/01/2024")

    res = client.get(f"/api/v1/groups/{group.id}/tasks", headers=executor_headers)
    assert [t["om_number"] for t in res.get_json()["items"]] == ["2", "1"]

    res = client.get(f"/api/v1/groups/{group.id}/tasks?search=rolamento", headers=executor_headers)
    assert [t["om_number"] for t in res.get_json()["items"]] == ["1"]

    res = client.get(
        f"/api/v1/groups/{group.id}/tasks?status=Done&shift=C", headers=executor_headers,
    )
    assert res.get_json()["total"] == 1


def test_list_tasks_unknown_group(client, executor_headers):
    res = client.get("/api/v1/groups/9999/tasks", headers=executor_headers)
    assert res.status_code == 404


def test_clear_group_tasks(client, group, make_task, manager_headers, executor_headers):
    for i in range(3):
        make_task(om_number=str(i))

    res = client.delete(f"/api/v1/groups/{group.id}/tasks", headers=executor_headers)
    assert res.status_code == 403

    res = client.delete(f"/api/v1/groups/{group.id}/tasks", headers=manager_headers)
    assert res.status_code == 200
    assert res.get_json()["tasks_deleted"] == 3
    assert Task.query.count() == 0
    assert db.session.get(Group, group.id) is not None


# ═══════════════════════════════════════════════════════════════
# Tasks
# ═══════════════════════════════════════════════════════════════

class TestTaskStatus:
    def test_executor_marks_done(self, client, make_task, executor, executor_headers):
        task = make_task()
        res = client.patch(
            f"/api/v1/tasks/{task.id}/status",
            json={"status": "Done", "shift": "B"},
            headers=executor_headers,
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "Done"
        assert data["shift"] == "B"
        assert data["updated_by_email"] == executor.email
        assert len(data["history"]) == 1
        assert data["history"][0]["user"] == executor.email

    def test_not_done_without_reason(self, client, make_task, executor_headers):
        task = make_task()
        res = client.patch(
            f"/api/v1/tasks/{task.id}/status",
            json={"status": STATUS_NOT_DONE, "shift": "A"},
            headers=executor_headers,
        )
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_RULE"
        assert "reason" in body["details"]
        assert TaskHistory.query.count() == 0

    def test_non_text_status_and_reason(self, client, make_task, executor_headers):
        task = make_task()
        res = client.patch(f"/api/v1/tasks/{task.id}/status",
                           json={"status": ["Done"], "shift": "A"}, headers=executor_headers)
        assert res.status_code == 422
        assert "status" in res.get_json()["details"]

        res = client.patch(f"/api/v1/tasks/{task.id}/status",
                           json={"status": STATUS_NOT_DONE, "shift": "A", "reason": 5},
                           headers=executor_headers)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"reason": "must be text"}
        assert TaskHistory.query.count() == 0

    def test_missing_status(self, client, make_task, executor_headers):
        task = make_task()
        res = client.patch(f"/api/v1/tasks/{task.id}/status", json={"shift": "A"},
                           headers=executor_headers)
        assert res.status_code == 400

    def test_unknown_task(self, client, executor_headers):
        res = client.patch("/api/v1/tasks/9999/status", json={"status": "Done", "shift": "A"},
                           headers=executor_headers)
        assert res.status_code == 404

    def test_requires_auth(self, client, make_task):
        task = make_task()
        res = client.patch(f"/api/v1/tasks/{task.id}/status", json={"status": "Done", "shift": "A"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_AUTH_REQUIRED"


def test_get_task_with_history(client, make_task, executor, executor_headers):
    task = make_task(excel_data={"OM": 1000, "Obs": "andaime"})
    task_service.update_status(task.id, STATUS_NOT_DONE, "D", "chuva", executor)

    res = client.get(f"/api/v1/tasks/{task.id}", headers=executor_headers)
    assert res.status_code == 200
    data = res.get_json()
    assert data["excel_data"]["Obs"] == "andaime"
    assert [(h["status"], h["reason"]) for h in data["history"]] == [(STATUS_NOT_DONE, "chuva")]


def test_delete_task_manager_only(client, make_task, executor_headers, manager_headers):
    task = make_task()
    assert client.delete(f"/api/v1/tasks/{task.id}", headers=executor_headers).status_code == 403
    assert client.delete(f"/api/v1/tasks/{task.id}", headers=manager_headers).status_code == 200
    assert Task.query.count() == 0


# ═══════════════════════════════════════════════════════════════
# Live stream
# ═══════════════════════════════════════════════════════════════

def _parse_sse(chunk):
    text = chunk.decode() if isinstance(chunk, bytes) else chunk
    event_line, data_line = text.strip().split("\n")
    return event_line[len("event: "):], json.loads(data_line[len("data: "):])


def test_stream_sends_snapshot_then_changes(client, group, make_task, executor, executor_headers):
    task = make_task()
    res = client.get(f"/api/v1/groups/{group.id}/tasks/stream", headers=executor_headers)
    try:
        assert res.status_code == 200
        assert res.mimetype == "text/event-stream"
        assert res.headers["Cache-Control"] == "no-cache"
        assert res.headers["X-Accel-Buffering"] == "no"

        chunks = iter(res.response)
        kind, data = _parse_sse(next(chunks))
        assert kind == "snapshot"
        assert [t["id"] for t in data["tasks"]] == [task.id]

        task_service.update_status(task.id, STATUS_DONE, "A", None, executor)
        kind, data = _parse_sse(next(chunks))
        assert kind == "modified"
        assert data["id"] == task.id
        assert data["data"]["status"] == STATUS_DONE
    finally:
        res.close()


def test_stream_unknown_group(client, executor_headers):
    res = client.get("/api/v1/groups/9999/tasks/stream", headers=executor_headers)
    assert res.status_code == 404


def test_stream_head_request_leaves_no_subscriber(client, group, feed, executor_headers):
    res = client.head(f"/api/v1/groups/{group.id}/tasks/stream", headers=executor_headers)
    assert res.status_code == 200
    res.close()
    assert feed.subscriber_count(group_topic(group.id)) == 0


def test_unread_stream_unsubscribes_on_close(client, group, feed, executor_headers):
    res = client.get(f"/api/v1/groups/{group.id}/tasks/stream", headers=executor_headers)
    assert feed.subscriber_count(group_topic(group.id)) == 1
    res.close()
    assert feed.subscriber_count(group_topic(group.id)) == 0
