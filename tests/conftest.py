import pytest
from werkzeug.security import generate_password_hash

from app.bdgenai import auth as auth_module
from app.bdgenai import create_app
from app.bdgenai.config import SOCIAL_PLATFORMS
from app.bdgenai.db import session_scope
from app.bdgenai.models import Base, Permission, Role, User

PASSWORD = "password123"

_UNSET_ENV = (
    "S3_ENDPOINT",
    "S3_REGION",
    "S3_BUCKET",
    "S3_ACCESS_KEY_ID",
    "S3_SECRET_ACCESS_KEY",
    "CLOUDINARY_CLOUD_NAME",
    "CLOUDINARY_API_KEY",
    "CLOUDINARY_API_SECRET",
    "REDIS_URL",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "RESEND_API_KEY",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "CRON_SECRET",
    "REQUIRE_EMAIL_VERIFICATION",
)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("KV_BACKEND", "memory")
    monkeypatch.setenv("APP_URL", "http://app.test")
    for k in _UNSET_ENV:
        monkeypatch.delenv(k, raising=False)
    for platform in SOCIAL_PLATFORMS:
        monkeypatch.delenv(f"{platform.upper()}_CLIENT_ID", raising=False)
        monkeypatch.delenv(f"{platform.upper()}_CLIENT_SECRET", raising=False)

    app = create_app()
    app.config["TESTING"] = True
    app.config["LOCAL_STORAGE_ROOT"] = str(tmp_path / "storage")

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        p_view = Permission(key="admin.view", name="Admin: view dashboard")
        p_debug = Permission(key="admin.debug", name="Admin: deployment diagnostics")
        r_user = Role(key="user", name="User")
        r_admin = Role(key="admin", name="Administrator")
        r_admin.permissions.extend([p_view, p_debug])
        s.add_all([p_view, p_debug, r_user, r_admin])
        for email, name, roles in (
            ("alice@example.com", "Alice", [r_user]),
            ("bob@example.com", "Bob", [r_user]),
            ("admin@example.com", "Admin", [r_user, r_admin]),
        ):
            u = User(email=email, name=name, password_hash=generate_password_hash(PASSWORD), is_active=True)
            u.roles.extend(roles)
            s.add(u)

    auth_module._login_attempts.clear()
    yield app
    auth_module._login_attempts.clear()


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(app, email: str, password: str = PASSWORD):
    c = app.test_client()
    r = c.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    token = c.get("/auth/csrf").json["csrf_token"]
    c.environ_base["HTTP_X_CSRF_TOKEN"] = token
    return c


@pytest.fixture()
def login(app):
    """login(email) -> test client with a session and the CSRF header set."""

    def _do(email: str, password: str = PASSWORD):
        return _login(app, email, password)

    return _do


@pytest.fixture()
def alice(login):
    return login("alice@example.com")


@pytest.fixture()
def bob(login):
    return login("bob@example.com")


@pytest.fixture()
def admin(login):
    return login("admin@example.com")


@pytest.fixture()
def user_id(app):
    def _get(email: str) -> int:
        with session_scope(app) as s:
            return s.query(User).filter(User.email == email).one().id

    return _get
