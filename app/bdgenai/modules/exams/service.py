from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.bdgenai.audit import record_event
from app.bdgenai.modules.exams.models import QUESTION_TYPES, Exam, ExamAnswer, ExamAttempt, ExamQuestion
from app.bdgenai.utils import as_bool, clean_str, iso, parse_datetime, text_value

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.bdgenai.models import User
    from app.bdgenai.modules.courses.models import Section

FINISHED_STATUSES = ("SUBMITTED", "GRADED")


class ExamError(ValueError):
    pass


# ---------- Serialization ----------
def question_to_dict(q: ExamQuestion, *, include_answer: bool = False) -> dict:
    out = {
        "id": q.id,
        "question": q.question,
        "question_type": q.question_type,
        "options": q.options,
        "points": q.points,
        "order": q.order,
    }
    if include_answer:
        out["correct_answer"] = q.correct_answer
        out["explanation"] = q.explanation
    return out


def exam_to_dict(exam: Exam, *, include_answers: bool = False) -> dict:
    return {
        "id": exam.id,
        "section_id": exam.section_id,
        "title": exam.title,
        "description": exam.description,
        "instructions": exam.instructions,
        "time_limit": exam.time_limit,
        "attempts": exam.attempts,
        "passing_score": exam.passing_score,
        "shuffle_questions": exam.shuffle_questions,
        "show_results": exam.show_results,
        "start_date": iso(exam.start_date),
        "end_date": iso(exam.end_date),
        "is_published": exam.is_published,
        "is_active": exam.is_active,
        "questions": [question_to_dict(q, include_answer=include_answers) for q in exam.questions],
    }


def answer_to_dict(a: ExamAnswer, *, show_correct: bool) -> dict:
    out = {
        "question_id": a.question_id,
        "answer": a.answer,
        "is_correct": a.is_correct,
        "points_earned": a.points_earned,
        "time_spent": a.time_spent,
    }
    if show_correct and a.question is not None:
        out["correct_answer"] = a.question.correct_answer
        out["explanation"] = a.question.explanation
    return out


def attempt_to_dict(attempt: ExamAttempt, *, include_answers: bool = False) -> dict:
    out = {
        "id": attempt.id,
        "exam_id": attempt.exam_id,
        "user_id": attempt.user_id,
        "attempt_number": attempt.attempt_number,
        "status": attempt.status,
        "started_at": iso(attempt.started_at),
        "submitted_at": iso(attempt.submitted_at),
        "time_spent": attempt.time_spent,
        "total_questions": attempt.total_questions,
        "correct_answers": attempt.correct_answers,
        "total_points": attempt.total_points,
        "earned_points": attempt.earned_points,
        "score_percentage": attempt.score_percentage,
        "is_passed": attempt.is_passed,
    }
    if include_answers:
        out["answers"] = [answer_to_dict(a, show_correct=True) for a in attempt.answers]
    return out


# ---------- Authoring ----------
def section_course(section: "Section"):
    return section.chapter.course


def validate_exam_payload(payload: dict) -> list[str]:
    errors = []
    if not text_value(payload.get("title")):
        errors.append("Title is required")
    for field in ("start_date", "end_date"):
        try:
            parse_datetime(payload.get(field))
        except ValueError:
            errors.append(f"Invalid {field}")
    for field in ("attempts", "time_limit", "passing_score"):
        value = payload.get(field)
        if value is None:
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{field} must be a number")
            continue
        if number < 0:
            errors.append(f"{field} must not be negative")
    questions = payload.get("questions")
    if questions is None:
        return errors
    if not isinstance(questions, list):
        errors.append("questions must be a list")
        return errors
    for i, q in enumerate(questions):
        if not isinstance(q, dict):
            errors.append(f"questions[{i}] must be an object")
            continue
        if not text_value(q.get("question")):
            errors.append(f"questions[{i}].question is required")
        if q.get("question_type") not in QUESTION_TYPES:
            errors.append(f"questions[{i}].question_type must be one of: {', '.join(QUESTION_TYPES)}")
    return errors


def create_exam(s: "Session", section: "Section", payload: dict, user: "User") -> Exam:
    now = datetime.utcnow()
    exam = Exam(
        section_id=section.id,
        title=payload["title"].strip(),
        description=clean_str(payload.get("description")),
        instructions=clean_str(payload.get("instructions")),
        time_limit=int(payload["time_limit"]) if payload.get("time_limit") is not None else None,
        attempts=int(payload.get("attempts") or 1),
        passing_score=float(payload["passing_score"]) if payload.get("passing_score") is not None else 70.0,
        shuffle_questions=as_bool(payload.get("shuffle_questions", False)),
        show_results=as_bool(payload.get("show_results", True)),
        start_date=parse_datetime(payload.get("start_date")),
        end_date=parse_datetime(payload.get("end_date")),
        is_published=as_bool(payload.get("is_published", False)),
        is_active=as_bool(payload.get("is_active", True)),
        created_at=now,
        updated_at=now,
    )
    for i, q in enumerate(payload.get("questions") or []):
        exam.questions.append(
            ExamQuestion(
                question=q["question"].strip(),
                question_type=q["question_type"],
                options=q.get("options"),
                correct_answer=q.get("correct_answer"),
                points=int(q.get("points") or 1),
                order=int(q["order"]) if q.get("order") is not None else i,
                explanation=clean_str(q.get("explanation")),
            )
        )
    s.add(exam)
    s.flush()
    record_event(
        s,
        actor=user,
        action="exam.create",
        entity_type="Exam",
        entity_id=exam.id,
        metadata={"section_id": section.id, "questions": len(exam.questions)},
    )
    return exam


def list_section_exams(s: "Session", section: "Section", *, include_unpublished: bool) -> list[Exam]:
    q = s.query(Exam).filter(Exam.section_id == section.id)
    if not include_unpublished:
        q = q.filter(Exam.is_published.is_(True), Exam.is_active.is_(True))
    return q.order_by(Exam.created_at.asc(), Exam.id.asc()).all()


def user_attempts(s: "Session", exam_id: int, user_id: int) -> list[ExamAttempt]:
    return (
        s.query(ExamAttempt)
        .filter(ExamAttempt.exam_id == exam_id, ExamAttempt.user_id == user_id)
        .order_by(ExamAttempt.attempt_number.asc())
        .all()
    )


# ---------- Attempts ----------
def start_attempt(s: "Session", exam: Exam, user: "User", now: datetime | None = None) -> tuple[ExamAttempt, bool]:
    """Return (attempt, created). An IN_PROGRESS attempt is resumed rather than duplicated."""
    now = now or datetime.utcnow()
    if not exam.is_published or not exam.is_active:
        raise ExamError("Exam is not available")
    if exam.start_date and now < exam.start_date:
        raise ExamError("Exam has not started yet")
    if exam.end_date and now > exam.end_date:
        raise ExamError("Exam has ended")

    attempts = user_attempts(s, exam.id, user.id)
    finished = [a for a in attempts if a.status in FINISHED_STATUSES]
    if len(finished) >= exam.attempts:
        raise ExamError("Maximum number of attempts exceeded")
    in_progress = next((a for a in attempts if a.status == "IN_PROGRESS"), None)
    if in_progress:
        return in_progress, False

    attempt = ExamAttempt(
        exam_id=exam.id,
        user_id=user.id,
        attempt_number=len(attempts) + 1,
        status="IN_PROGRESS",
        started_at=now,
        total_questions=len(exam.questions),
        total_points=sum(q.points for q in exam.questions),
    )
    s.add(attempt)
    s.flush()
    record_event(
        s,
        actor=user,
        action="exam_attempt.start",
        entity_type="ExamAttempt",
        entity_id=attempt.id,
        metadata={"exam_id": exam.id, "attempt_number": attempt.attempt_number},
    )
    return attempt, True


def _norm_text(value: Any) -> str:
    return str(value if value is not None else "").strip().lower()


def grade_answer(question: ExamQuestion, answer: Any) -> tuple[bool | None, int]:
    """(is_correct, points_earned). Essays are left ungraded (None, 0)."""
    qtype = question.question_type
    expected = question.correct_answer
    if qtype == "ESSAY":
        return None, 0
    if qtype in ("MULTIPLE_CHOICE", "TRUE_FALSE"):
        correct = answer is not None and str(answer) == str(expected)
    elif qtype in ("SHORT_ANSWER", "FILL_IN_BLANK"):
        correct = answer is not None and _norm_text(answer) == _norm_text(expected)
    elif qtype in ("MATCHING", "ORDERING"):
        correct = isinstance(answer, (list, dict)) and answer == expected
    else:
        correct = False
    return correct, question.points if correct else 0


def submit_attempt(s: "Session", attempt: ExamAttempt, answers: list[dict], user: "User", now: datetime | None = None) -> ExamAttempt:
    if attempt.status != "IN_PROGRESS":
        raise ExamError("Attempt already submitted")
    now = now or datetime.utcnow()
    questions = {q.id: q for q in attempt.exam.questions}

    submitted: dict[int, dict] = {}
    for item in answers:
        try:
            qid = int(item.get("question_id"))
        except (TypeError, ValueError):
            continue
        if qid in questions:
            submitted[qid] = item

    correct_count = 0
    earned = 0
    for qid, item in submitted.items():
        is_correct, points = grade_answer(questions[qid], item.get("answer"))
        if is_correct:
            correct_count += 1
        earned += points
        attempt.answers.append(
            ExamAnswer(
                question_id=qid,
                answer=item.get("answer"),
                is_correct=is_correct,
                points_earned=points,
                time_spent=item.get("time_spent"),
            )
        )

    total_points = sum(q.points for q in questions.values())
    score = earned / total_points * 100 if total_points else 0.0
    attempt.total_questions = len(questions)
    attempt.correct_answers = correct_count
    attempt.total_points = total_points
    attempt.earned_points = earned
    attempt.score_percentage = score
    attempt.is_passed = score >= attempt.exam.passing_score
    attempt.status = "SUBMITTED"
    attempt.submitted_at = now
    attempt.time_spent = max(0, int((now - attempt.started_at).total_seconds()))
    s.flush()

    record_event(
        s,
        actor=user,
        action="exam_attempt.submit",
        entity_type="ExamAttempt",
        entity_id=attempt.id,
        metadata={"exam_id": attempt.exam_id, "score": round(score, 2), "is_passed": attempt.is_passed},
    )
    return attempt


def attempt_summary(attempt: ExamAttempt) -> dict:
    return {
        "score": round(attempt.score_percentage or 0, 2),
        "is_passed": attempt.is_passed,
        "correct_answers": attempt.correct_answers,
        "total_questions": attempt.total_questions,
        "earned_points": attempt.earned_points,
        "total_points": attempt.total_points,
        "time_spent": attempt.time_spent,
        "passing_score": attempt.exam.passing_score,
    }


# ---------- Analytics ----------
def exam_analytics(attempts: list[ExamAttempt]) -> dict:
    """Summary, per-attempt trend and per-question success rates over finished attempts."""
    if not attempts:
        return {"attempts": [], "summary": None, "trends": None, "question_analysis": None}

    scores = [a.score_percentage or 0 for a in attempts]
    latest = attempts[-1]
    trends = []
    for i, a in enumerate(attempts):
        trends.append(
            {
                "attempt_number": a.attempt_number,
                "score": scores[i],
                "is_passed": a.is_passed,
                "time_spent": a.time_spent or 0,
                "correct_answers": a.correct_answers,
                "total_questions": a.total_questions,
                "date": iso(a.submitted_at),
                "improvement": scores[i] - scores[i - 1] if i > 0 else 0,
            }
        )

    per_question: dict[int, dict] = {}
    for a in attempts:
        for ans in a.answers:
            row = per_question.setdefault(
                ans.question_id,
                {
                    "question_id": ans.question_id,
                    "question": ans.question.question if ans.question else None,
                    "question_type": ans.question.question_type if ans.question else None,
                    "correct_count": 0,
                    "total_attempts": 0,
                },
            )
            row["total_attempts"] += 1
            if ans.is_correct:
                row["correct_count"] += 1
    question_analysis = []
    for row in per_question.values():
        row["success_rate"] = row["correct_count"] / row["total_attempts"] * 100 if row["total_attempts"] else 0
        question_analysis.append(row)

    return {
        "attempts": [attempt_to_dict(a) for a in attempts],
        "summary": {
            "total_attempts": len(attempts),
            "latest_score": scores[-1],
            "best_score": max(scores),
            "average_score": sum(scores) / len(scores),
            "is_passed": latest.is_passed,
            "has_improved": len(attempts) > 1 and scores[-1] > scores[0],
            "passing_score": latest.exam.passing_score,
        },
        "trends": trends,
        "question_analysis": question_analysis,
    }


def finished_attempts(s: "Session", exam_id: int, user_id: int) -> list[ExamAttempt]:
    return (
        s.query(ExamAttempt)
        .filter(
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.user_id == user_id,
            ExamAttempt.status.in_(FINISHED_STATUSES),
        )
        .order_by(ExamAttempt.attempt_number.asc())
        .all()
    )
