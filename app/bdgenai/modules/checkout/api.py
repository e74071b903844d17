from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.bdgenai.db import db_session
from app.bdgenai.errors import error_response
from app.bdgenai.modules.checkout.models import Enrollment
from app.bdgenai.modules.checkout.service import (
    create_checkout_url,
    ensure_enrollment,
    handle_checkout_completed,
    is_enrolled,
)
from app.bdgenai.modules.checkout.stripe_client import StripeError, StripeSignatureError, construct_event, stripe_client_from_config
from app.bdgenai.modules.courses.models import Chapter, Course, Section
from app.bdgenai.modules.courses.service import course_to_dict
from app.bdgenai.rbac import current_user, require_login

bp = Blueprint("checkout_api", __name__)


def _published_course(course_id: int) -> Course | None:
    course = db_session().get(Course, course_id)
    if not course or not course.is_published:
        return None
    return course


@bp.post("/courses/<int:course_id>/enroll")
@require_login
def enroll(course_id: int):
    s = db_session()
    course = _published_course(course_id)
    if not course:
        return error_response(404, "Course not found")
    if not course.is_free:
        return error_response(400, "Course requires payment")
    enrollment, created = ensure_enrollment(s, current_user(), course, source="free")
    s.commit()
    return jsonify(enrollment.to_dict()), 201 if created else 200


@bp.post("/courses/<int:course_id>/checkout")
@require_login
def checkout(course_id: int):
    s = db_session()
    user = current_user()
    course = _published_course(course_id)
    if not course:
        return error_response(404, "Course not found")
    if is_enrolled(s, user.id, course.id):
        return error_response(400, "Already enrolled")
    if course.is_free:
        return error_response(400, "Course is free; enroll directly")

    client = stripe_client_from_config(current_app.config)
    if client is None:
        current_app.logger.error("Checkout requested but STRIPE_SECRET_KEY is not set")
        return error_response(500, "Payments are not configured")
    try:
        url = create_checkout_url(s, client, course, user, current_app.config["APP_URL"])
    except StripeError as e:
        s.rollback()
        current_app.logger.error("Stripe checkout failed (course_id=%s request_id=%s): %s", course.id, getattr(g, "request_id", None), e)
        return error_response(502, "Payment provider error")
    s.commit()
    return jsonify({"url": url})


@bp.post("/webhooks/stripe")
def stripe_webhook():
    payload = request.get_data()
    try:
        event = construct_event(payload, request.headers.get("Stripe-Signature"), current_app.config.get("STRIPE_WEBHOOK_SECRET") or "")
    except StripeSignatureError as e:
        current_app.logger.warning("Stripe webhook rejected: %s", e)
        return error_response(400, f"Webhook Error: {e}")

    event_type = event.get("type")
    if event_type == "checkout.session.completed":
        s = db_session()
        session_obj = (event.get("data") or {}).get("object") or {}
        enrollment = handle_checkout_completed(s, session_obj)
        s.commit()
        current_app.logger.info("Stripe checkout completed (session=%s enrollment=%s)", session_obj.get("id"), enrollment.id if enrollment else None)
    else:
        current_app.logger.info("Stripe webhook ignored (type=%s)", event_type)
    return jsonify({"received": True})


@bp.get("/me/courses")
@require_login
def my_courses():
    s = db_session()
    user = current_user()
    enrollments = (
        s.query(Enrollment)
        .filter(Enrollment.user_id == user.id)
        .order_by(Enrollment.created_at.desc())
        .all()
    )
    enrolled = []
    for e in enrollments:
        published_sections = (
            s.query(Section.id)
            .join(Chapter, Section.chapter_id == Chapter.id)
            .filter(Chapter.course_id == e.course_id, Chapter.is_published.is_(True), Section.is_published.is_(True))
            .count()
        )
        enrolled.append(
            {
                **course_to_dict(e.course, published_only=True),
                "enrolled_at": e.created_at.isoformat(),
                "published_sections": published_sections,
            }
        )
    created = s.query(Course).filter(Course.user_id == user.id).order_by(Course.created_at.desc()).all()
    return jsonify({"enrolled": enrolled, "created": [course_to_dict(c) for c in created]})
