def test_debug_user(alice, client):
    assert client.get("/api/debug/user").status_code == 401
    data = alice.get("/api/debug/user").json
    assert data["email"] == "alice@example.com"
    assert data["roles"] == ["user"]
    assert data["providers"] == []


def test_debug_enrollment(alice, bob):
    course_id = alice.post("/api/courses", json={"title": "Free"}).json["id"]
    alice.patch(f"/api/courses/{course_id}", json={"description": "d", "price": 0})
    alice.patch(f"/api/courses/{course_id}/publish")

    data = bob.get(f"/api/debug/enrollment/{course_id}").json
    assert data["course_exists"] is True
    assert data["enrollment_exists"] is False

    bob.post(f"/api/courses/{course_id}/enroll")
    data = bob.get(f"/api/debug/enrollment/{course_id}").json
    assert data["enrollment_exists"] is True
    assert [e["course_id"] for e in data["recent_enrollments"]] == [course_id]

    assert bob.get("/api/debug/enrollment/999").json["course_exists"] is False


def test_debug_deployment_is_admin_only(alice, admin):
    assert alice.get("/api/debug/deployment").status_code == 403

    data = admin.get("/api/debug/deployment").json
    assert data["db_connected"] is True
    assert data["database_backend"] == "sqlite"
    assert data["kv_backend"] == "memory"
    assert data["stripe_configured"] is False
    # presence flags only
    assert "STRIPE_SECRET_KEY" not in data
