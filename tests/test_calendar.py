from datetime import date, datetime, timedelta

import pytest

from app.bdgenai.db import session_scope
from app.bdgenai.modules.calendar import api as calendar_api
from app.bdgenai.modules.calendar.models import Activity, Task
from app.bdgenai.modules.calendar.service import activity_heatmap, clamp_progress
from app.bdgenai.modules.posts.models import Post


def _event(c, **fields):
    body = {"title": "Standup", "start_date": "2026-03-02T09:00:00Z", "end_date": "2026-03-02T09:15:00Z", **fields}
    return c.post("/api/calendar/events", json=body)


def _task(c, **fields):
    body = {"title": "Ship it", "category": "work", "priority": "high", "due_date": "2026-03-05", **fields}
    return c.post("/api/tasks", json=body)


def test_events_require_matching_user_id(alice, user_id):
    assert alice.get("/api/calendar/events").json["error"] == "User ID is required"
    other = user_id("bob@example.com")
    assert alice.get(f"/api/calendar/events?user_id={other}").status_code == 403


def test_event_crud(alice, bob, user_id):
    uid = user_id("alice@example.com")
    r = _event(alice, color="#ff0000", is_all_day=False, category="ignored")
    assert r.status_code == 201
    event = r.json["data"]
    assert event["start_date"] == "2026-03-02T09:00:00"
    assert event["color"] == "#ff0000"

    listed = alice.get(f"/api/calendar/events?user_id={uid}").json
    assert listed["success"] is True
    assert [e["id"] for e in listed["data"]] == [event["id"]]

    window = alice.get(f"/api/calendar/events?user_id={uid}&start=2026-04-01&end=2026-04-30").json
    assert window["data"] == []

    r = alice.put(f"/api/calendar/events/{event['id']}", json={"title": "Retro"})
    assert r.json["data"]["title"] == "Retro"
    r = alice.put(f"/api/calendar/events/{event['id']}", json={"end_date": "2026-03-01T00:00:00Z"})
    assert r.status_code == 400

    assert bob.delete(f"/api/calendar/events/{event['id']}").status_code == 404
    assert alice.delete(f"/api/calendar/events/{event['id']}").json == {"success": True}


def test_event_end_before_start(alice):
    r = _event(alice, end_date="2026-03-01T09:00:00Z")
    assert r.status_code == 400
    assert r.json["error"] == "End date must be after start date"
    assert _event(alice, start_date="not a date").status_code == 400


def test_task_validation(alice):
    r = alice.post("/api/tasks", json={})
    assert r.status_code == 400
    assert set(r.json["errors"]) >= {"Title is required", "Category is required", "Due date is required"}

    assert _task(alice, priority="urgent").status_code == 400
    r = _task(alice, has_reminder=True)
    assert r.status_code == 400
    assert "Reminder date is required when a reminder is set" in r.json["errors"]
    assert _task(alice, has_reminder=True, reminder_date="2026-03-04T08:00:00Z", reminder_type="sms").status_code == 400


@pytest.mark.parametrize(
    "path,body",
    [
        ("/api/calendar/events", {"title": 5, "start_date": "2026-03-02T09:00:00Z", "end_date": "2026-03-02T10:00:00Z"}),
        ("/api/calendar/events", {"title": "Standup", "start_date": ["2026-03-02"], "end_date": "2026-03-02"}),
        ("/api/tasks", {"title": ["Ship it"], "category": "work", "priority": "high", "due_date": "2026-03-05"}),
        ("/api/tasks", {"title": "Ship it", "category": 7, "priority": ["high"], "due_date": "2026-03-05"}),
        ("/api/activities", {"title": {"t": 1}, "type": "idea"}),
    ],
)
def test_non_string_fields_are_rejected(alice, path, body):
    r = alice.post(path, json=body)
    assert r.status_code == 400
    assert r.json["errors"]


def test_task_crud(alice, bob):
    r = _task(alice, has_reminder=True, reminder_date="2026-03-04T08:00:00Z", reminder_type="email")
    assert r.status_code == 201
    task = r.json
    assert task["reminder_sent"] is False

    r = alice.patch("/api/tasks", json={"id": task["id"], "completed": True})
    assert r.json["completed"] is True
    assert alice.patch("/api/tasks", json={"completed": True}).status_code == 400
    assert bob.patch("/api/tasks", json={"id": task["id"], "completed": False}).status_code == 404

    assert [t["id"] for t in alice.get("/api/tasks").json] == [task["id"]]
    assert alice.delete("/api/tasks").status_code == 400
    assert alice.delete(f"/api/tasks?task_id={task['id']}").status_code == 204
    assert alice.get("/api/tasks").json == []


def test_cron_requires_bearer_secret(app, client):
    assert client.get("/api/cron/task-reminders").status_code == 401
    app.config["CRON_SECRET"] = "cron-secret"
    r = client.get("/api/cron/task-reminders", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


def test_cron_sends_due_reminders_once(app, client, alice, monkeypatch):
    app.config["CRON_SECRET"] = "cron-secret"
    sent = []

    def fake_send(email, **kwargs):
        sent.append((email, kwargs["title"]))
        return True

    monkeypatch.setattr(calendar_api, "send_task_reminder_email", fake_send)

    past = (datetime.utcnow() - timedelta(hours=1)).isoformat()
    future = (datetime.utcnow() + timedelta(days=2)).isoformat()
    _task(alice, title="Due", has_reminder=True, reminder_date=past, reminder_type="email")
    _task(alice, title="Later", has_reminder=True, reminder_date=future, reminder_type="email")
    _task(alice, title="Push", has_reminder=True, reminder_date=past, reminder_type="push")

    headers = {"Authorization": "Bearer cron-secret"}
    r = client.get("/api/cron/task-reminders", headers=headers)
    assert r.status_code == 200
    assert r.json["processed"] == 2
    assert all(row["status"] == "sent" for row in r.json["results"])
    assert sent == [("alice@example.com", "Due")]

    assert client.get("/api/cron/task-reminders", headers=headers).json["processed"] == 0
    with session_scope(app) as s:
        assert s.query(Task).filter(Task.reminder_sent.is_(True)).count() == 2


def test_cron_reports_send_failures(app, client, alice, monkeypatch):
    app.config["CRON_SECRET"] = "cron-secret"

    def failing_send(email, **kwargs):
        raise RuntimeError("mail down")

    monkeypatch.setattr(calendar_api, "send_task_reminder_email", failing_send)
    past = (datetime.utcnow() - timedelta(minutes=5)).isoformat()
    _task(alice, has_reminder=True, reminder_date=past, reminder_type="email")

    r = client.get("/api/cron/task-reminders", headers={"Authorization": "Bearer cron-secret"})
    assert r.json["results"][0]["status"] == "error"
    assert r.json["results"][0]["error"] == "mail down"


def test_activities_fall_back_to_derived_feed(alice):
    post_id = alice.post("/api/posts", json={"title": "Launch"}).json["id"]
    alice.post("/api/ideas", json={"title": "Podcast", "status": "done"})

    feed = alice.get("/api/activities").json
    ids = {a["id"] for a in feed}
    assert f"post-{post_id}" in ids
    idea = next(a for a in feed if a["id"].startswith("idea-"))
    assert idea["status"] == "completed"
    assert idea["progress"] == 100


def test_activity_crud(alice, bob):
    r = alice.post("/api/activities", json={"title": "Record video", "type": "video", "progress": 250})
    assert r.status_code == 201
    activity = r.json
    assert activity["status"] == "planned"
    assert activity["progress"] == 100

    assert alice.post("/api/activities", json={"title": "x", "type": "video", "status": "someday"}).status_code == 400

    r = alice.patch(f"/api/activities/{activity['id']}", json={"status": "in-progress", "progress": 40})
    assert (r.json["status"], r.json["progress"], r.json["completed_at"]) == ("in-progress", 40, None)
    r = alice.patch(f"/api/activities/{activity['id']}", json={"status": "completed"})
    assert r.json["progress"] == 100
    assert r.json["completed_at"] is not None

    assert [a["id"] for a in alice.get("/api/activities").json] == [activity["id"]]
    assert bob.delete(f"/api/activities/{activity['id']}").status_code == 404
    assert alice.delete(f"/api/activities/{activity['id']}").json == {"success": True}


def test_heatmap_endpoint_zero_fills(alice):
    alice.post("/api/activities", json={"title": "Write", "type": "script"})
    heatmap = alice.get("/api/activities/heatmap?days=7").json
    assert len(heatmap) == 7
    assert heatmap[datetime.utcnow().date().isoformat()] == 1
    assert sum(heatmap.values()) == 1


def test_activity_heatmap_counts_by_day(app, user_id):
    uid = user_id("alice@example.com")
    today = date(2026, 3, 10)
    with session_scope(app) as s:
        s.add(Activity(user_id=uid, type="idea", title="a", status="planned", progress=0, created_at=datetime(2026, 3, 10, 8)))
        s.add(Activity(user_id=uid, type="idea", title="b", status="planned", progress=0, created_at=datetime(2026, 3, 9, 23)))
        s.add(Post(user_id=uid, title="p", created_at=datetime(2026, 3, 9, 1), updated_at=datetime(2026, 3, 9, 1)))
        s.add(Post(user_id=uid, title="old", created_at=datetime(2026, 1, 1), updated_at=datetime(2026, 1, 1)))

    with session_scope(app) as s:
        heatmap = activity_heatmap(s, uid, 3, today=today)
    assert heatmap == {"2026-03-08": 0, "2026-03-09": 2, "2026-03-10": 1}

    with session_scope(app) as s:
        assert len(activity_heatmap(s, uid, 5000, today=today)) == 366


@pytest.mark.parametrize("raw,expected", [(50, 50), ("70", 70), (-5, 0), (101, 100), ("x", 0), (None, 0)])
def test_clamp_progress(raw, expected):
    assert clamp_progress(raw) == expected
