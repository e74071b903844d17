from datetime import datetime, timedelta

from app.bdgenai import auth as auth_module
from app.bdgenai.db import session_scope
from app.bdgenai.models import AuditEvent, AuthToken, User


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").data == b"ok"


def test_register_creates_user_and_verification_token(app, client):
    r = client.post("/auth/register", json={"email": "New@Example.com", "password": "secret1", "name": "New"})
    assert r.status_code == 201
    assert r.json["user"]["email"] == "new@example.com"
    assert r.json["user"]["roles"] == ["user"]
    assert r.json["message"] == "Confirmation email sent!"

    with session_scope(app) as s:
        tok = s.query(AuthToken).filter(AuthToken.email == "new@example.com").one()
        assert tok.purpose == "email_verification"
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.register").count() == 1


def test_register_validation(client):
    assert client.post("/auth/register", json={"email": "x", "password": "secret1"}).status_code == 400
    r = client.post("/auth/register", json={"email": "y@example.com", "password": "123"})
    assert r.status_code == 400
    assert "Minimum 6" in r.json["error"]
    r = client.post("/auth/register", json={"email": "alice@example.com", "password": "secret1"})
    assert r.status_code == 409
    assert r.json["error"] == "Email already in use!"


def test_login_success_and_me(client):
    r = client.post("/auth/login", json={"email": "alice@example.com", "password": "password123"})
    assert r.status_code == 200
    assert r.json["redirect"] == "/dashboard"
    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "alice@example.com"


def test_admin_login_lands_on_admin_dashboard(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "password123"})
    assert r.json["redirect"] == "/dashboard/admin"


def test_login_bad_password(client):
    r = client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials!"
    assert client.get("/auth/me").status_code == 401


def test_login_rate_limited_after_five_attempts(client):
    for _ in range(5):
        client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong"})
    r = client.post("/auth/login", json={"email": "alice@example.com", "password": "password123"})
    assert r.status_code == 429


def test_stale_login_attempts_are_forgotten():
    auth_module._login_attempts["10.0.0.9"] = [datetime.utcnow() - timedelta(minutes=10)]
    assert auth_module._check_rate_limit("10.0.0.9") is False
    assert "10.0.0.9" not in auth_module._login_attempts
    assert auth_module._check_rate_limit("10.0.0.10") is False
    assert "10.0.0.10" not in auth_module._login_attempts


def test_successful_login_clears_attempts(client):
    client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong"})
    assert auth_module._login_attempts
    client.post("/auth/login", json={"email": "alice@example.com", "password": "password123"})
    assert not auth_module._login_attempts


def test_login_requires_verification_when_enabled(app, client):
    app.config["REQUIRE_EMAIL_VERIFICATION"] = True
    r = client.post("/auth/login", json={"email": "alice@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json["error"] == "Confirmation email sent!"


def test_new_verification_marks_email_verified(app, client):
    client.post("/auth/register", json={"email": "v@example.com", "password": "secret1"})
    with session_scope(app) as s:
        token = s.query(AuthToken).filter(AuthToken.email == "v@example.com").one().token

    r = client.post("/auth/new-verification", json={"token": token})
    assert r.status_code == 200
    assert r.json["success"] == "Email verified!"
    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "v@example.com").one().email_verified is not None
        assert s.query(AuthToken).count() == 0

    r = client.post("/auth/new-verification", json={"token": token})
    assert r.status_code == 400


def test_expired_token_is_rejected(app, client):
    with session_scope(app) as s:
        s.add(
            AuthToken(
                email="alice@example.com",
                token="old-token",
                purpose="password_reset",
                expires_at=datetime.utcnow() - timedelta(minutes=1),
            )
        )
    r = client.post("/auth/new-password", json={"token": "old-token", "password": "another1"})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid token!"


def test_password_reset_flow(app, client):
    r = client.post("/auth/reset", json={"email": "alice@example.com"})
    assert r.status_code == 200
    # unknown emails get the same answer
    assert client.post("/auth/reset", json={"email": "nobody@example.com"}).json == r.json

    with session_scope(app) as s:
        token = s.query(AuthToken).filter(AuthToken.purpose == "password_reset").one().token

    r = client.post("/auth/new-password", json={"token": token, "password": "brand-new"})
    assert r.status_code == 200

    assert client.post("/auth/login", json={"email": "alice@example.com", "password": "password123"}).status_code == 401
    assert client.post("/auth/login", json={"email": "alice@example.com", "password": "brand-new"}).status_code == 200


def test_logout_clears_session(alice):
    assert alice.get("/auth/me").status_code == 200
    assert alice.post("/auth/logout").json == {"success": True}
    assert alice.get("/auth/me").status_code == 401


def test_oauth_unknown_provider_and_unconfigured(client):
    assert client.get("/auth/oauth/facebook/login").status_code == 404
    r = client.get("/auth/oauth/google/login")
    assert r.status_code == 503


def test_mutations_require_csrf_token(app, alice):
    del alice.environ_base["HTTP_X_CSRF_TOKEN"]
    r = alice.post("/api/posts", json={"title": "No token"})
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."


def test_unauthenticated_api_returns_401_json(client):
    r = client.get("/api/profile")
    assert r.status_code == 401
    assert r.json["error"] == "Unauthorized"


def test_non_string_credentials_are_rejected(client):
    assert client.post("/auth/register", json={"email": 5, "password": "password123"}).status_code == 400
    assert client.post("/auth/login", json={"email": ["alice@example.com"], "password": "password123"}).status_code == 401
    assert client.post("/auth/reset", json={"email": {"a": 1}}).status_code == 400
