from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.bdgenai.audit import record_event
from app.bdgenai.db import db_session
from app.bdgenai.errors import error_response
from app.bdgenai.modules.checkout.service import is_enrolled
from app.bdgenai.modules.courses.models import Attachment, Category, Chapter, Course, Section
from app.bdgenai.modules.courses.service import (
    NotFound,
    add_attachment,
    add_objective,
    chapter_missing_fields,
    chapter_to_dict,
    course_readiness,
    course_to_dict,
    create_chapter,
    create_course,
    create_section,
    delete_chapter,
    delete_course,
    delete_objective,
    delete_section,
    get_or_create_category,
    get_owned_chapter,
    get_owned_course,
    get_owned_section,
    reorder_chapters,
    reorder_objectives,
    reorder_sections,
    section_missing_fields,
    section_to_dict,
    set_chapter_published,
    set_course_published,
    set_section_published,
    update_chapter,
    update_course,
    update_objective,
    update_section,
    upsert_review,
    validate_course_update,
    validate_reorder_list,
)
from app.bdgenai.rbac import current_user, require_login
from app.bdgenai.utils import json_payload, page_args, pagination_dict, text_value

bp = Blueprint("courses_api", __name__)


def _course_or_404(course_id: int) -> Course:
    try:
        return get_owned_course(db_session(), course_id, current_user())
    except NotFound:
        abort(404, description="Course not found")


def _chapter_or_404(course: Course, chapter_id: int) -> Chapter:
    try:
        return get_owned_chapter(db_session(), course, chapter_id)
    except NotFound:
        abort(404, description="Chapter not found")


def _section_or_404(chapter: Chapter, section_id: int) -> Section:
    try:
        return get_owned_section(db_session(), chapter, section_id)
    except NotFound:
        abort(404, description="Section not found")


# ---------- Courses ----------
@bp.get("/courses")
def courses_list():
    s = db_session()
    page, per_page = page_args(default_per_page=12)
    search = (request.args.get("q") or "").strip()
    category_id = request.args.get("category_id", type=int)

    q = s.query(Course).filter(Course.is_published.is_(True))
    if search:
        q = q.filter(Course.title.ilike(f"%{search}%"))
    if category_id:
        q = q.filter(Course.category_id == category_id)

    total = q.count()
    courses = q.order_by(Course.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return jsonify(
        {
            "data": [course_to_dict(c, published_only=True) for c in courses],
            "pagination": pagination_dict(page, per_page, total),
        }
    )


@bp.post("/courses")
@require_login
def courses_create():
    s = db_session()
    payload = json_payload()
    if not text_value(payload.get("title")):
        return error_response(400, "Title is required")
    course = create_course(s, payload, current_user())
    s.commit()
    return jsonify(course_to_dict(course)), 201


@bp.get("/courses/<int:course_id>")
def course_detail(course_id: int):
    s = db_session()
    course = s.get(Course, course_id)
    user = getattr(g, "current_user", None)
    is_owner = bool(course and user and course.user_id == user.id)
    if not course or (not course.is_published and not is_owner):
        return error_response(404, "Course not found")
    return jsonify(course_to_dict(course, detail=True, published_only=not is_owner))


@bp.patch("/courses/<int:course_id>")
@require_login
def course_update(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    payload = json_payload()
    errors = validate_course_update(payload)
    if errors:
        return error_response(400, errors[0])
    update_course(s, course, payload, current_user())
    s.commit()
    return jsonify(course_to_dict(course, detail=True))


@bp.delete("/courses/<int:course_id>")
@require_login
def course_delete(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    delete_course(s, course, current_user())
    s.commit()
    return jsonify({"success": True})


@bp.get("/courses/<int:course_id>/readiness")
@require_login
def course_readiness_get(course_id: int):
    return jsonify(course_readiness(_course_or_404(course_id)))


@bp.patch("/courses/<int:course_id>/publish")
@require_login
def course_publish(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    readiness = course_readiness(course)
    if not readiness["is_publishable"]:
        return error_response(400, "Course is not ready to publish", readiness=readiness)
    set_course_published(s, course, True, current_user())
    s.commit()
    return jsonify(course_to_dict(course))


@bp.patch("/courses/<int:course_id>/unpublish")
@require_login
def course_unpublish(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    set_course_published(s, course, False, current_user())
    s.commit()
    return jsonify(course_to_dict(course))


# ---------- Learning objectives ----------
def _objective_value(payload: dict) -> str | None:
    value = payload.get("value")
    if not isinstance(value, str) or not value.strip():
        return None
    return value


@bp.post("/courses/<int:course_id>/objectives")
@require_login
def objective_create(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    value = _objective_value(json_payload())
    if value is None:
        return error_response(400, "Objective is required")
    items = add_objective(s, course, value, current_user())
    s.commit()
    return jsonify({"what_you_will_learn": items}), 201


@bp.patch("/courses/<int:course_id>/objectives/reorder")
@require_login
def objective_reorder(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    payload = json_payload()
    try:
        from_index = int(payload.get("from_index"))
        to_index = int(payload.get("to_index"))
    except (TypeError, ValueError):
        return error_response(400, "from_index and to_index are required")
    try:
        items = reorder_objectives(s, course, from_index, to_index, current_user())
    except IndexError:
        return error_response(400, "Index out of range")
    s.commit()
    return jsonify({"what_you_will_learn": items})


@bp.patch("/courses/<int:course_id>/objectives/<objective_id>")
@require_login
def objective_update(course_id: int, objective_id: str):
    s = db_session()
    course = _course_or_404(course_id)
    value = _objective_value(json_payload())
    if value is None:
        return error_response(400, "Objective is required")
    try:
        items = update_objective(s, course, objective_id, value, current_user())
    except NotFound:
        return error_response(404, "Objective not found")
    s.commit()
    return jsonify({"what_you_will_learn": items})


@bp.delete("/courses/<int:course_id>/objectives/<objective_id>")
@require_login
def objective_delete(course_id: int, objective_id: str):
    s = db_session()
    course = _course_or_404(course_id)
    try:
        items = delete_objective(s, course, objective_id, current_user())
    except NotFound:
        return error_response(404, "Objective not found")
    s.commit()
    return jsonify({"what_you_will_learn": items})


# ---------- Chapters ----------
@bp.post("/courses/<int:course_id>/chapters")
@require_login
def chapter_create(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    title = text_value(json_payload().get("title"))
    if not title:
        return error_response(400, "Title is required")
    chapter = create_chapter(s, course, title, current_user())
    s.commit()
    return jsonify(chapter_to_dict(chapter)), 201


@bp.put("/courses/<int:course_id>/chapters/reorder")
@require_login
def chapter_reorder(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    items = json_payload().get("list")
    errors = validate_reorder_list(items)
    if errors:
        return error_response(400, errors[0])
    reorder_chapters(s, course, items, current_user())
    s.commit()
    return jsonify({"success": True})


@bp.patch("/courses/<int:course_id>/chapters/<int:chapter_id>")
@require_login
def chapter_update(course_id: int, chapter_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    chapter = _chapter_or_404(course, chapter_id)
    payload = json_payload()
    if "title" in payload and not text_value(payload.get("title")):
        return error_response(400, "Title is required")
    update_chapter(s, chapter, payload, current_user())
    s.commit()
    return jsonify(chapter_to_dict(chapter))


@bp.delete("/courses/<int:course_id>/chapters/<int:chapter_id>")
@require_login
def chapter_delete(course_id: int, chapter_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    chapter = _chapter_or_404(course, chapter_id)
    delete_chapter(s, course, chapter, current_user())
    s.commit()
    return jsonify({"success": True, "course_is_published": course.is_published})


@bp.patch("/courses/<int:course_id>/chapters/<int:chapter_id>/publish")
@require_login
def chapter_publish(course_id: int, chapter_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    chapter = _chapter_or_404(course, chapter_id)
    missing = chapter_missing_fields(chapter)
    if missing:
        return error_response(400, "Missing required fields", missing=missing)
    set_chapter_published(s, course, chapter, True, current_user())
    s.commit()
    return jsonify(chapter_to_dict(chapter))


@bp.patch("/courses/<int:course_id>/chapters/<int:chapter_id>/unpublish")
@require_login
def chapter_unpublish(course_id: int, chapter_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    chapter = _chapter_or_404(course, chapter_id)
    set_chapter_published(s, course, chapter, False, current_user())
    s.commit()
    return jsonify({**chapter_to_dict(chapter), "course_is_published": course.is_published})


# ---------- Sections ----------
@bp.post("/courses/<int:course_id>/chapters/<int:chapter_id>/sections")
@require_login
def section_create(course_id: int, chapter_id: int):
    s = db_session()
    chapter = _chapter_or_404(_course_or_404(course_id), chapter_id)
    title = text_value(json_payload().get("title"))
    if not title:
        return error_response(400, "Title is required")
    section = create_section(s, chapter, title, current_user())
    s.commit()
    return jsonify(section_to_dict(section)), 201


@bp.put("/courses/<int:course_id>/chapters/<int:chapter_id>/sections/reorder")
@require_login
def section_reorder(course_id: int, chapter_id: int):
    s = db_session()
    chapter = _chapter_or_404(_course_or_404(course_id), chapter_id)
    items = json_payload().get("list")
    errors = validate_reorder_list(items)
    if errors:
        return error_response(400, errors[0])
    reorder_sections(s, chapter, items, current_user())
    s.commit()
    return jsonify({"success": True})


@bp.patch("/courses/<int:course_id>/chapters/<int:chapter_id>/sections/<int:section_id>")
@require_login
def section_update(course_id: int, chapter_id: int, section_id: int):
    s = db_session()
    chapter = _chapter_or_404(_course_or_404(course_id), chapter_id)
    section = _section_or_404(chapter, section_id)
    payload = json_payload()
    if "title" in payload and not text_value(payload.get("title")):
        return error_response(400, "Title is required")
    update_section(s, section, payload, current_user())
    s.commit()
    return jsonify(section_to_dict(section))


@bp.delete("/courses/<int:course_id>/chapters/<int:chapter_id>/sections/<int:section_id>")
@require_login
def section_delete(course_id: int, chapter_id: int, section_id: int):
    s = db_session()
    chapter = _chapter_or_404(_course_or_404(course_id), chapter_id)
    section = _section_or_404(chapter, section_id)
    delete_section(s, chapter, section, current_user())
    s.commit()
    return jsonify({"success": True})


@bp.patch("/courses/<int:course_id>/chapters/<int:chapter_id>/sections/<int:section_id>/publish")
@require_login
def section_publish(course_id: int, chapter_id: int, section_id: int):
    s = db_session()
    chapter = _chapter_or_404(_course_or_404(course_id), chapter_id)
    section = _section_or_404(chapter, section_id)
    missing = section_missing_fields(section)
    if missing:
        return error_response(400, "Missing required fields", missing=missing)
    set_section_published(s, section, True, current_user())
    s.commit()
    return jsonify(section_to_dict(section))


@bp.patch("/courses/<int:course_id>/chapters/<int:chapter_id>/sections/<int:section_id>/unpublish")
@require_login
def section_unpublish(course_id: int, chapter_id: int, section_id: int):
    s = db_session()
    chapter = _chapter_or_404(_course_or_404(course_id), chapter_id)
    section = _section_or_404(chapter, section_id)
    set_section_published(s, section, False, current_user())
    s.commit()
    return jsonify(section_to_dict(section))


# ---------- Attachments ----------
@bp.post("/courses/<int:course_id>/attachments")
@require_login
def attachment_create(course_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    payload = json_payload()
    url = text_value(payload.get("url"))
    if not url:
        return error_response(400, "URL is required")
    attachment = add_attachment(s, course, url, text_value(payload.get("name")) or None, current_user())
    s.commit()
    return jsonify(attachment.to_dict()), 201


@bp.delete("/courses/<int:course_id>/attachments/<int:attachment_id>")
@require_login
def attachment_delete(course_id: int, attachment_id: int):
    s = db_session()
    course = _course_or_404(course_id)
    attachment = (
        s.query(Attachment)
        .filter(Attachment.id == attachment_id, Attachment.course_id == course.id)
        .one_or_none()
    )
    if not attachment:
        return error_response(404, "Attachment not found")
    record_event(s, actor=current_user(), action="attachment.delete", entity_type="Attachment", entity_id=attachment.id)
    s.delete(attachment)
    s.commit()
    return jsonify({"success": True})


# ---------- Reviews ----------
@bp.post("/courses/<int:course_id>/reviews")
@require_login
def review_upsert(course_id: int):
    s = db_session()
    user = current_user()
    course = s.get(Course, course_id)
    if not course or not course.is_published:
        return error_response(404, "Course not found")
    if not is_enrolled(s, user.id, course.id):
        return error_response(403, "Only enrolled students can review this course")
    payload = json_payload()
    try:
        rating = int(payload.get("rating"))
    except (TypeError, ValueError):
        rating = 0
    if not 1 <= rating <= 5:
        return error_response(400, "Rating must be between 1 and 5")
    review = upsert_review(s, course, rating, payload.get("comment"), user)
    s.commit()
    return jsonify(review.to_dict())


# ---------- Categories ----------
@bp.get("/categories")
def categories_list():
    s = db_session()
    categories = s.query(Category).order_by(Category.name.asc()).all()
    return jsonify([c.to_dict() for c in categories])


@bp.post("/categories")
@require_login
def categories_create():
    s = db_session()
    name = text_value(json_payload().get("name"))
    if not name:
        return error_response(400, "Name is required")
    category, created = get_or_create_category(s, name)
    if created:
        record_event(s, actor=current_user(), action="category.create", entity_type="Category", entity_id=category.id, metadata={"name": name})
    s.commit()
    return jsonify(category.to_dict()), 201 if created else 200
