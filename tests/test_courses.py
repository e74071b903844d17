import pytest

from app.bdgenai.db import session_scope
from app.bdgenai.modules.courses.models import Category, Chapter
from app.bdgenai.modules.courses.service import category_name_from_slug, objective_index
from app.bdgenai.utils import splice_move


def _course(c, title="Intro to Flask"):
    r = c.post("/api/courses", json={"title": title})
    assert r.status_code == 201
    return r.json["id"]


def _chapter(c, course_id, title):
    r = c.post(f"/api/courses/{course_id}/chapters", json={"title": title})
    assert r.status_code == 201
    return r.json


def test_create_course_requires_title(alice):
    r = alice.post("/api/courses", json={"title": "  "})
    assert r.status_code == 400
    assert r.json["error"] == "Title is required"


@pytest.mark.parametrize(
    "method,path,body",
    [
        ("post", "/api/courses", {"title": 5}),
        ("patch", "/api/courses/{course_id}", {"title": ["Flask"]}),
        ("patch", "/api/courses/{course_id}", {"category_id": [1]}),
        ("post", "/api/courses/{course_id}/chapters", {"title": {"en": "Basics"}}),
        ("post", "/api/courses/{course_id}/objectives", {"value": 3}),
        ("post", "/api/courses/{course_id}/attachments", {"url": 42}),
        ("post", "/api/categories", {"name": True}),
    ],
)
def test_non_string_fields_are_rejected(alice, method, path, body):
    course_id = _course(alice)
    r = getattr(alice, method)(path.format(course_id=course_id), json=body)
    assert r.status_code == 400


def test_create_and_update_course(alice):
    course_id = _course(alice)
    r = alice.patch(
        f"/api/courses/{course_id}",
        json={"description": "Learn it", "price": "19.99", "category_id": "web-development"},
    )
    assert r.status_code == 200
    assert r.json["price"] == 19.99
    assert r.json["is_free"] is False
    assert r.json["category"]["name"] == "Web Development"

    r = alice.patch(f"/api/courses/{course_id}", json={"price": -1})
    assert r.status_code == 400
    r = alice.patch(f"/api/courses/{course_id}", json={"nothing": 1})
    assert r.json["error"] == "No fields to update"


def test_category_slug_reuses_existing_category(app, alice):
    with session_scope(app) as s:
        s.add(Category(name="Data Science"))
    course_id = _course(alice)
    alice.patch(f"/api/courses/{course_id}", json={"category_id": "data-science"})
    with session_scope(app) as s:
        assert s.query(Category).count() == 1


def test_other_user_cannot_edit_course(alice, bob):
    course_id = _course(alice)
    assert bob.patch(f"/api/courses/{course_id}", json={"title": "Mine"}).status_code == 404
    assert bob.delete(f"/api/courses/{course_id}").status_code == 404


def test_unpublished_course_hidden_from_others(alice, bob, client):
    course_id = _course(alice)
    assert alice.get(f"/api/courses/{course_id}").status_code == 200
    assert bob.get(f"/api/courses/{course_id}").status_code == 404
    assert client.get("/api/courses").json["data"] == []


def test_readiness_and_publish(alice, client):
    course_id = _course(alice)
    r = alice.get(f"/api/courses/{course_id}/readiness")
    assert r.json["completed"] == 0
    assert r.json["total"] == 7
    assert r.json["completion_text"] == "(0/7)"
    assert r.json["is_publishable"] is False

    r = alice.patch(f"/api/courses/{course_id}/publish")
    assert r.status_code == 400
    assert "readiness" in r.json

    alice.patch(f"/api/courses/{course_id}", json={"description": "Desc", "price": 0})
    r = alice.get(f"/api/courses/{course_id}/readiness")
    assert r.json["sections"]["title_desc"] is True
    assert r.json["sections"]["pricing"] is True
    assert r.json["percentage"] == 29
    assert r.json["is_publishable"] is True

    assert alice.patch(f"/api/courses/{course_id}/publish").status_code == 200
    listed = client.get("/api/courses").json
    assert [c["id"] for c in listed["data"]] == [course_id]
    assert listed["pagination"]["total_count"] == 1


def test_objectives_crud_and_reorder(alice):
    course_id = _course(alice)
    for value in ("one", "two", "three"):
        assert alice.post(f"/api/courses/{course_id}/objectives", json={"value": value}).status_code == 201

    r = alice.patch(f"/api/courses/{course_id}/objectives/reorder", json={"from_index": 0, "to_index": 2})
    assert r.json["what_you_will_learn"] == ["two", "three", "one"]

    r = alice.patch(f"/api/courses/{course_id}/objectives/objective-1", json={"value": "THREE"})
    assert r.json["what_you_will_learn"] == ["two", "THREE", "one"]

    r = alice.delete(f"/api/courses/{course_id}/objectives/objective-0")
    assert r.json["what_you_will_learn"] == ["THREE", "one"]

    assert alice.delete(f"/api/courses/{course_id}/objectives/objective-9").status_code == 404
    r = alice.patch(f"/api/courses/{course_id}/objectives/reorder", json={"from_index": 0, "to_index": 5})
    assert r.status_code == 400


def test_chapter_positions_and_delete_closes_gap(app, alice):
    course_id = _course(alice)
    first = _chapter(alice, course_id, "One")
    second = _chapter(alice, course_id, "Two")
    third = _chapter(alice, course_id, "Three")
    assert [first["position"], second["position"], third["position"]] == [1, 2, 3]

    assert alice.delete(f"/api/courses/{course_id}/chapters/{first['id']}").status_code == 200
    with session_scope(app) as s:
        rows = s.query(Chapter).filter(Chapter.course_id == course_id).order_by(Chapter.position).all()
        assert [(c.title, c.position) for c in rows] == [("Two", 1), ("Three", 2)]


def test_chapter_reorder(app, alice):
    course_id = _course(alice)
    a = _chapter(alice, course_id, "A")
    b = _chapter(alice, course_id, "B")
    r = alice.put(
        f"/api/courses/{course_id}/chapters/reorder",
        json={"list": [{"id": a["id"], "position": 2}, {"id": b["id"], "position": 1}]},
    )
    assert r.status_code == 200
    detail = alice.get(f"/api/courses/{course_id}").json
    assert [c["title"] for c in detail["chapters"]] == ["B", "A"]

    assert alice.put(f"/api/courses/{course_id}/chapters/reorder", json={"list": []}).status_code == 400


def test_chapter_publish_requires_fields(alice):
    course_id = _course(alice)
    chapter = _chapter(alice, course_id, "One")
    r = alice.patch(f"/api/courses/{course_id}/chapters/{chapter['id']}/publish")
    assert r.status_code == 400
    assert r.json["missing"] == ["description", "learning_outcomes"]

    alice.patch(
        f"/api/courses/{course_id}/chapters/{chapter['id']}",
        json={"description": "D", "learning_outcomes": "L"},
    )
    r = alice.patch(f"/api/courses/{course_id}/chapters/{chapter['id']}/publish")
    assert r.status_code == 200
    assert r.json["is_published"] is True


def test_unpublishing_last_chapter_unpublishes_course(alice):
    course_id = _course(alice)
    alice.patch(f"/api/courses/{course_id}", json={"description": "Desc", "price": 5})
    chapter = _chapter(alice, course_id, "One")
    alice.patch(f"/api/courses/{course_id}/chapters/{chapter['id']}", json={"description": "D", "learning_outcomes": "L"})
    alice.patch(f"/api/courses/{course_id}/chapters/{chapter['id']}/publish")
    alice.patch(f"/api/courses/{course_id}/publish")

    r = alice.patch(f"/api/courses/{course_id}/chapters/{chapter['id']}/unpublish")
    assert r.status_code == 200
    assert r.json["course_is_published"] is False


def test_sections_lifecycle(alice):
    course_id = _course(alice)
    chapter = _chapter(alice, course_id, "One")
    base = f"/api/courses/{course_id}/chapters/{chapter['id']}/sections"
    s1 = alice.post(base, json={"title": "S1"}).json
    s2 = alice.post(base, json={"title": "S2"}).json
    assert (s1["position"], s2["position"]) == (1, 2)

    r = alice.patch(f"{base}/{s1['id']}/publish")
    assert r.status_code == 400
    assert r.json["missing"] == ["video_url"]

    alice.patch(f"{base}/{s1['id']}", json={"video_url": "https://video.example/1"})
    assert alice.patch(f"{base}/{s1['id']}/publish").json["is_published"] is True

    assert alice.delete(f"{base}/{s1['id']}").status_code == 200
    detail = alice.get(f"/api/courses/{course_id}").json
    assert [(x["title"], x["position"]) for x in detail["chapters"][0]["sections"]] == [("S2", 1)]


def test_attachments(alice):
    course_id = _course(alice)
    r = alice.post(f"/api/courses/{course_id}/attachments", json={"url": "https://cdn.example/files/syllabus.pdf?x=1"})
    assert r.status_code == 201
    assert r.json["name"] == "syllabus.pdf"
    assert alice.delete(f"/api/courses/{course_id}/attachments/{r.json['id']}").status_code == 200
    assert alice.delete(f"/api/courses/{course_id}/attachments/{r.json['id']}").status_code == 404


def test_reviews_require_enrollment(alice, bob):
    course_id = _course(alice)
    alice.patch(f"/api/courses/{course_id}", json={"description": "Desc", "price": 0})
    alice.patch(f"/api/courses/{course_id}/publish")

    assert bob.post(f"/api/courses/{course_id}/reviews", json={"rating": 5}).status_code == 403
    assert bob.post(f"/api/courses/{course_id}/enroll").status_code == 201
    assert bob.post(f"/api/courses/{course_id}/reviews", json={"rating": 9}).status_code == 400

    assert bob.post(f"/api/courses/{course_id}/reviews", json={"rating": 4, "comment": "Good"}).status_code == 200
    assert bob.post(f"/api/courses/{course_id}/reviews", json={"rating": 2}).status_code == 200
    detail = bob.get(f"/api/courses/{course_id}").json
    assert detail["average_rating"] == 2
    assert detail["review_count"] == 1


def test_categories(alice, client):
    r = alice.post("/api/categories", json={"name": "Design"})
    assert r.status_code == 201
    assert alice.post("/api/categories", json={"name": "design"}).status_code == 200
    assert [c["name"] for c in client.get("/api/categories").json] == ["Design"]


@pytest.mark.parametrize(
    "objective_id,expected",
    [("objective-0", 0), ("objective-12", 12), ("objective-x", None), ("", None)],
)
def test_objective_index(objective_id, expected):
    assert objective_index(objective_id) == expected


def test_category_name_from_slug():
    assert category_name_from_slug("web-development") == "Web Development"
    assert category_name_from_slug("ai") == "Ai"


def test_splice_move():
    assert splice_move(["a", "b", "c"], 2, 0) == ["c", "a", "b"]
    with pytest.raises(IndexError):
        splice_move(["a"], 0, 1)
