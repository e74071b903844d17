from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy import text

from app.bdgenai.db import db_session
from app.bdgenai.kv import RedisKV, get_kv
from app.bdgenai.modules.checkout.models import Enrollment, StripeCustomer
from app.bdgenai.modules.courses.models import Course
from app.bdgenai.rbac import current_user, require_login, require_permission

bp = Blueprint("debug_api", __name__)


@bp.get("/user")
@require_login
def debug_user():
    user = current_user()
    return jsonify(
        {
            "user_id": user.id,
            "email": user.email,
            "name": user.name,
            "roles": sorted(r.key for r in user.roles),
            "providers": sorted(a.provider for a in user.accounts),
            "email_verified": user.email_verified.isoformat() if user.email_verified else None,
            "request_id": getattr(g, "request_id", None),
        }
    )


@bp.get("/enrollment/<int:course_id>")
@require_login
def debug_enrollment(course_id: int):
    s = db_session()
    user = current_user()
    course = s.get(Course, course_id)
    enrollment = (
        s.query(Enrollment)
        .filter(Enrollment.user_id == user.id, Enrollment.course_id == course_id)
        .one_or_none()
    )
    customer = s.query(StripeCustomer).filter(StripeCustomer.user_id == user.id).one_or_none()
    recent = (
        s.query(Enrollment)
        .filter(Enrollment.user_id == user.id)
        .order_by(Enrollment.created_at.desc(), Enrollment.id.desc())
        .limit(5)
        .all()
    )
    return jsonify(
        {
            "user": {"id": user.id, "email": user.email, "name": user.name},
            "course_exists": course is not None,
            "course": (
                {
                    "id": course.id,
                    "title": course.title,
                    "price": float(course.price) if course.price is not None else None,
                    "is_published": course.is_published,
                }
                if course
                else None
            ),
            "enrollment_exists": enrollment is not None,
            "enrollment": enrollment.to_dict() if enrollment else None,
            "stripe_customer": customer.to_dict() if customer else None,
            "recent_enrollments": [
                {"course_id": e.course_id, "course_title": e.course.title, "created_at": e.created_at.isoformat()}
                for e in recent
            ],
            "timestamp": datetime.utcnow().isoformat(),
        }
    )


@bp.get("/deployment")
@require_permission("admin.debug")
def debug_deployment():
    """Presence checks only; never echo secret values."""
    s = db_session()
    cfg = current_app.config
    status = {
        "env": cfg.get("ENV"),
        "database_backend": s.get_bind().dialect.name,
        "db_connected": False,
        "storage_backend": (cfg.get("STORAGE_BACKEND") or "local").strip().lower(),
        "kv_backend": "redis" if isinstance(get_kv(), RedisKV) else "memory",
        "stripe_configured": bool(cfg.get("STRIPE_SECRET_KEY")),
        "stripe_webhook_configured": bool(cfg.get("STRIPE_WEBHOOK_SECRET")),
        "resend_configured": bool(cfg.get("RESEND_API_KEY")),
        "google_configured": bool(cfg.get("GOOGLE_CLIENT_ID") and cfg.get("GOOGLE_CLIENT_SECRET")),
        "github_configured": bool(cfg.get("GITHUB_CLIENT_ID") and cfg.get("GITHUB_CLIENT_SECRET")),
        "cloudinary_configured": bool(
            cfg.get("CLOUDINARY_CLOUD_NAME") and cfg.get("CLOUDINARY_API_KEY") and cfg.get("CLOUDINARY_API_SECRET")
        ),
        "app_url_set": bool(cfg.get("APP_URL")),
        "timestamp": datetime.utcnow().isoformat(),
    }
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except Exception:
        current_app.logger.exception("Deployment check: database unreachable")
    return jsonify(status)
