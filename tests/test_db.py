import pytest
from flask import g
from sqlalchemy import text

from app.bdgenai.db import db_session, session_scope, teardown_db_session
from app.bdgenai.models import User


def test_request_session_is_reused_and_released(app):
    with app.app_context():
        s = db_session()
        assert db_session() is s
        teardown_db_session(None)
        assert g.get("db_session") is None
        assert db_session() is not s


def test_session_scope_rolls_back_on_error(app):
    with pytest.raises(RuntimeError):
        with session_scope(app) as s:
            s.add(User(email="ghost@example.com", is_active=True))
            s.flush()
            raise RuntimeError("boom")
    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "ghost@example.com").count() == 0


def test_sqlite_foreign_keys_enabled(app):
    with session_scope(app) as s:
        assert s.execute(text("PRAGMA foreign_keys")).scalar() == 1
