from __future__ import annotations

from flask import Blueprint, jsonify

from app.bdgenai.db import db_session
from app.bdgenai.modules.dashboard.service import admin_overview, user_overview
from app.bdgenai.rbac import current_user, require_login, require_permission

bp = Blueprint("dashboard_api", __name__)


@bp.get("/dashboard")
@require_login
def dashboard():
    return jsonify(user_overview(db_session(), current_user()))


@bp.get("/admin/dashboard")
@require_permission("admin.view")
def admin_dashboard():
    return jsonify(admin_overview(db_session()))
