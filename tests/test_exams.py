import pytest

from app.bdgenai.modules.exams.models import ExamQuestion
from app.bdgenai.modules.exams.service import exam_analytics, grade_answer

QUESTIONS = [
    {"question": "Pick b", "question_type": "MULTIPLE_CHOICE", "options": ["a", "b", "c"], "correct_answer": "b", "points": 2},
    {"question": "Capital of France?", "question_type": "SHORT_ANSWER", "correct_answer": "Paris"},
    {"question": "Explain WSGI", "question_type": "ESSAY"},
]


@pytest.fixture()
def section_id(alice):
    course_id = alice.post("/api/courses", json={"title": "Python"}).json["id"]
    chapter_id = alice.post(f"/api/courses/{course_id}/chapters", json={"title": "Basics"}).json["id"]
    r = alice.post(f"/api/courses/{course_id}/chapters/{chapter_id}/sections", json={"title": "Quiz"})
    return r.json["id"]


def _exam(alice, section_id, **fields):
    body = {"title": "Checkpoint", "questions": QUESTIONS, "is_published": True, "attempts": 2, "passing_score": 50, **fields}
    r = alice.post(f"/api/sections/{section_id}/exams", json=body)
    assert r.status_code == 201
    return r.json


def _answers(exam, mc, short, essay="It is an interface"):
    ids = [q["id"] for q in exam["questions"]]
    return {"answers": [{"question_id": ids[0], "answer": mc}, {"question_id": ids[1], "answer": short}, {"question_id": ids[2], "answer": essay}]}


def test_only_course_owner_creates_exams(alice, bob, section_id):
    assert bob.post(f"/api/sections/{section_id}/exams", json={"title": "Mine"}).status_code == 403
    assert alice.post(f"/api/sections/{section_id}/exams", json={"title": ""}).status_code == 400
    r = alice.post(
        f"/api/sections/{section_id}/exams",
        json={"title": "Bad", "questions": [{"question": "?", "question_type": "POLL"}]},
    )
    assert r.status_code == 400

    exam = _exam(alice, section_id)
    assert exam["questions"][0]["correct_answer"] == "b"
    assert [q["order"] for q in exam["questions"]] == [0, 1, 2]


def test_students_see_published_exams_without_answers(alice, bob, section_id):
    _exam(alice, section_id)
    _exam(alice, section_id, title="Draft", is_published=False)

    assert [e["title"] for e in alice.get(f"/api/sections/{section_id}/exams").json] == ["Checkpoint", "Draft"]
    listed = bob.get(f"/api/sections/{section_id}/exams").json
    assert [e["title"] for e in listed] == ["Checkpoint"]
    assert "correct_answer" not in listed[0]["questions"][0]
    assert listed[0]["user_attempts"] == []


def test_unpublished_exam_cannot_be_started(alice, bob, section_id):
    exam = _exam(alice, section_id, is_published=False)
    r = bob.post(f"/api/sections/{section_id}/exams/{exam['id']}/attempts")
    assert r.status_code == 400
    assert r.json["error"] == "Exam is not available"


def test_in_progress_attempt_is_resumed(alice, bob, section_id):
    exam = _exam(alice, section_id)
    url = f"/api/sections/{section_id}/exams/{exam['id']}/attempts"
    first = bob.post(url)
    assert first.status_code == 201
    assert first.json["attempt"]["total_points"] == 4
    assert "correct_answer" not in first.json["exam"]["questions"][0]

    again = bob.post(url)
    assert again.status_code == 200
    assert again.json["attempt"]["id"] == first.json["attempt"]["id"]


def test_submit_grades_and_limits_attempts(alice, bob, section_id):
    exam = _exam(alice, section_id)
    base = f"/api/sections/{section_id}/exams/{exam['id']}/attempts"

    attempt_id = bob.post(base).json["attempt"]["id"]
    r = bob.post(f"{base}/{attempt_id}/submit", json=_answers(exam, "b", "  paris "))
    assert r.status_code == 200
    summary = r.json["summary"]
    assert summary["earned_points"] == 3
    assert summary["total_points"] == 4
    assert summary["score"] == 75.0
    assert summary["correct_answers"] == 2
    assert summary["is_passed"] is True
    essay = r.json["attempt"]["answers"][2]
    assert essay["is_correct"] is None
    assert r.json["attempt"]["answers"][0]["correct_answer"] == "b"

    assert bob.post(f"{base}/{attempt_id}/submit", json=_answers(exam, "b", "Paris")).json["error"] == "Attempt already submitted"

    second = bob.post(base)
    assert second.json["attempt"]["attempt_number"] == 2
    r = bob.post(f"{base}/{second.json['attempt']['id']}/submit", json=_answers(exam, "a", "Rome"))
    assert r.json["summary"]["is_passed"] is False

    r = bob.post(base)
    assert r.status_code == 400
    assert r.json["error"] == "Maximum number of attempts exceeded"

    analytics = bob.get(f"/api/sections/{section_id}/exams/{exam['id']}/analytics").json
    assert analytics["summary"]["total_attempts"] == 2
    assert analytics["summary"]["best_score"] == 75.0
    assert analytics["summary"]["latest_score"] == 0
    assert analytics["summary"]["has_improved"] is False
    assert analytics["trends"][1]["improvement"] == -75.0
    by_question = {row["question_type"]: row for row in analytics["question_analysis"]}
    assert by_question["MULTIPLE_CHOICE"]["success_rate"] == 50.0
    assert by_question["ESSAY"]["correct_count"] == 0


def test_attempts_belong_to_their_user(alice, bob, section_id):
    exam = _exam(alice, section_id)
    base = f"/api/sections/{section_id}/exams/{exam['id']}/attempts"
    attempt_id = bob.post(base).json["attempt"]["id"]
    assert alice.post(f"{base}/{attempt_id}/submit", json={"answers": []}).status_code == 404


def test_analytics_without_attempts():
    assert exam_analytics([]) == {"attempts": [], "summary": None, "trends": None, "question_analysis": None}


@pytest.mark.parametrize(
    "qtype,expected,answer,result",
    [
        ("MULTIPLE_CHOICE", "1", 1, (True, 2)),
        ("TRUE_FALSE", "true", "false", (False, 0)),
        ("FILL_IN_BLANK", "Flask", " flask ", (True, 2)),
        ("ORDERING", ["a", "b"], ["a", "b"], (True, 2)),
        ("MATCHING", {"a": "1"}, "a1", (False, 0)),
        ("ESSAY", None, "words", (None, 0)),
    ],
)
def test_grade_answer(qtype, expected, answer, result):
    question = ExamQuestion(question="q", question_type=qtype, correct_answer=expected, points=2)
    assert grade_answer(question, answer) == result
