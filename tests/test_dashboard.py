from datetime import datetime, timedelta

from app.bdgenai.db import session_scope
from app.bdgenai.models import User
from app.bdgenai.modules.dashboard.service import growth_rate, last_months


def test_user_dashboard(alice, bob):
    course_id = bob.post("/api/courses", json={"title": "Free course"}).json["id"]
    bob.patch(f"/api/courses/{course_id}", json={"description": "d", "price": 0})
    bob.patch(f"/api/courses/{course_id}/publish")
    alice.post(f"/api/courses/{course_id}/enroll")

    soon = (datetime.utcnow() + timedelta(days=1)).isoformat()
    later = (datetime.utcnow() + timedelta(days=30)).isoformat()
    alice.post("/api/calendar/events", json={"title": "Soon", "start_date": soon, "end_date": soon})
    alice.post("/api/calendar/events", json={"title": "Later", "start_date": later, "end_date": later})
    alice.post("/api/tasks", json={"title": "Late", "category": "c", "priority": "low", "due_date": "2020-01-01"})
    alice.post("/api/tasks", json={"title": "Done", "category": "c", "priority": "low", "due_date": "2020-01-01", "completed": True})
    alice.post("/api/posts", json={"title": "Hello"})

    data = alice.get("/api/dashboard").json
    assert data["stats"] == {
        "enrolled_courses": 1,
        "created_courses": 0,
        "posts": 1,
        "completed_tasks": 1,
        "pending_tasks": 1,
    }
    assert [e["title"] for e in data["upcoming_events"]] == ["Soon"]
    assert [t["title"] for t in data["overdue_tasks"]] == ["Late"]
    assert [c["id"] for c in data["enrolled_courses"]] == [course_id]
    assert data["recent_activities"][0]["id"].startswith("post-")


def test_admin_dashboard_requires_permission(alice, admin, client):
    assert client.get("/api/admin/dashboard").status_code == 401
    assert alice.get("/api/admin/dashboard").status_code == 403

    r = admin.get("/api/admin/dashboard")
    assert r.status_code == 200
    assert r.json["total_users"] == 3
    assert r.json["auth_providers"]["credentials"] == 3
    assert len(r.json["user_growth"]) == 6
    assert r.json["user_growth"][-1]["count"] == 3


def test_admin_dashboard_growth(app, admin):
    with session_scope(app) as s:
        old = datetime.utcnow() - timedelta(days=400)
        for u in s.query(User).all():
            u.created_at = old
        s.add(User(email="new@example.com", name="New", created_at=datetime.utcnow(), updated_at=datetime.utcnow()))

    data = admin.get("/api/admin/dashboard").json
    assert data["users_last_30_days"] == 1
    assert data["monthly_growth_rate"] == 33.3
    assert data["recent_users"][0]["email"] == "new@example.com"


def test_growth_rate():
    assert growth_rate(5, 0) == 0.0
    assert growth_rate(1, 4) == 25.0
    assert growth_rate(2, 3) == 66.7


def test_last_months_wraps_year():
    assert last_months(datetime(2026, 2, 15), 4) == ["2025-11", "2025-12", "2026-01", "2026-02"]
    assert last_months(datetime(2026, 7, 1), 1) == ["2026-07"]
