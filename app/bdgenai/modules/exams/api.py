from __future__ import annotations

from flask import Blueprint, jsonify

from app.bdgenai.db import db_session
from app.bdgenai.errors import error_response
from app.bdgenai.modules.courses.models import Section
from app.bdgenai.modules.exams.models import Exam, ExamAttempt
from app.bdgenai.modules.exams.service import (
    ExamError,
    attempt_summary,
    attempt_to_dict,
    create_exam,
    exam_analytics,
    exam_to_dict,
    finished_attempts,
    list_section_exams,
    section_course,
    start_attempt,
    submit_attempt,
    user_attempts,
    validate_exam_payload,
)
from app.bdgenai.rbac import current_user, require_login
from app.bdgenai.utils import json_payload

bp = Blueprint("exams_api", __name__)


def _section_exam(section_id: int, exam_id: int) -> Exam | None:
    return db_session().query(Exam).filter(Exam.id == exam_id, Exam.section_id == section_id).one_or_none()


@bp.get("/sections/<int:section_id>/exams")
@require_login
def exams_list(section_id: int):
    s = db_session()
    user = current_user()
    section = s.get(Section, section_id)
    if not section:
        return error_response(404, "Section not found")
    is_owner = section_course(section).user_id == user.id
    exams = list_section_exams(s, section, include_unpublished=is_owner)
    out = []
    for exam in exams:
        row = exam_to_dict(exam, include_answers=is_owner)
        row["user_attempts"] = [attempt_to_dict(a) for a in user_attempts(s, exam.id, user.id)]
        out.append(row)
    return jsonify(out)


@bp.post("/sections/<int:section_id>/exams")
@require_login
def exams_create(section_id: int):
    s = db_session()
    user = current_user()
    section = s.get(Section, section_id)
    if not section:
        return error_response(404, "Section not found")
    if section_course(section).user_id != user.id:
        return error_response(403, "Forbidden")
    payload = json_payload()
    errors = validate_exam_payload(payload)
    if errors:
        return error_response(400, errors[0], errors=errors)
    exam = create_exam(s, section, payload, user)
    s.commit()
    return jsonify(exam_to_dict(exam, include_answers=True)), 201


@bp.post("/sections/<int:section_id>/exams/<int:exam_id>/attempts")
@require_login
def attempts_start(section_id: int, exam_id: int):
    s = db_session()
    exam = _section_exam(section_id, exam_id)
    if not exam:
        return error_response(404, "Exam not found")
    try:
        attempt, created = start_attempt(s, exam, current_user())
    except ExamError as e:
        return error_response(400, str(e))
    s.commit()
    return jsonify({"attempt": attempt_to_dict(attempt), "exam": exam_to_dict(exam)}), 201 if created else 200


@bp.post("/sections/<int:section_id>/exams/<int:exam_id>/attempts/<int:attempt_id>/submit")
@require_login
def attempt_submit(section_id: int, exam_id: int, attempt_id: int):
    s = db_session()
    user = current_user()
    exam = _section_exam(section_id, exam_id)
    if not exam:
        return error_response(404, "Exam not found")
    attempt = (
        s.query(ExamAttempt)
        .filter(ExamAttempt.id == attempt_id, ExamAttempt.exam_id == exam.id, ExamAttempt.user_id == user.id)
        .one_or_none()
    )
    if not attempt:
        return error_response(404, "Attempt not found")
    answers = json_payload().get("answers") or []
    if not isinstance(answers, list):
        return error_response(400, "answers must be a list")
    try:
        submit_attempt(s, attempt, [a for a in answers if isinstance(a, dict)], user)
    except ExamError as e:
        return error_response(400, str(e))
    s.commit()
    return jsonify(
        {
            "attempt": attempt_to_dict(attempt, include_answers=exam.show_results),
            "summary": attempt_summary(attempt),
        }
    )


@bp.get("/sections/<int:section_id>/exams/<int:exam_id>/analytics")
@require_login
def exam_analytics_get(section_id: int, exam_id: int):
    s = db_session()
    exam = _section_exam(section_id, exam_id)
    if not exam:
        return error_response(404, "Exam not found")
    return jsonify(exam_analytics(finished_attempts(s, exam.id, current_user().id)))
