from datetime import datetime, timedelta

import pytest

from app.bdgenai.db import session_scope
from app.bdgenai.modules.posts.models import Comment, Reaction, Reply
from app.bdgenai.modules.posts.service import build_reply_tree


def _post(c, **fields):
    r = c.post("/api/posts", json={"title": "Hello", "body": "<p>Hi</p>", "published": True, **fields})
    assert r.status_code == 201
    return r.json["id"]


def _comment(c, post_id, content="First!"):
    r = c.post(f"/api/posts/{post_id}/comments", json={"content": content})
    assert r.status_code == 201
    return r.json["id"]


def _reply(c, post_id, comment_id, parent_reply_id=None, content="Reply"):
    return c.post(
        f"/api/posts/{post_id}/comments/{comment_id}/replies",
        json={"content": content, "parent_reply_id": parent_reply_id},
    )


def _bulk_comments(app, post_id, user_id, n):
    base = datetime.utcnow() - timedelta(hours=1)
    with session_scope(app) as s:
        for i in range(n):
            at = base + timedelta(seconds=i)
            s.add(Comment(post_id=post_id, user_id=user_id, content=f"c{i}", created_at=at, updated_at=at))


def test_post_crud_and_ownership(alice, bob):
    post_id = _post(alice, category="news")
    r = alice.patch(f"/api/posts/{post_id}", json={"title": "Edited"})
    assert r.status_code == 200
    assert r.json["title"] == "Edited"

    assert bob.patch(f"/api/posts/{post_id}", json={"title": "Mine"}).status_code == 403
    assert bob.delete(f"/api/posts/{post_id}").status_code == 403
    assert alice.patch(f"/api/posts/{post_id}", json={"title": ""}).status_code == 400

    assert alice.delete(f"/api/posts/{post_id}").json == {"success": True}
    assert alice.get(f"/api/posts/{post_id}").status_code == 404


def test_post_detail_counts_views(alice, client):
    post_id = _post(alice)
    assert client.get(f"/api/posts/{post_id}").json["views"] == 1
    assert client.get(f"/api/posts/{post_id}").json["views"] == 2


def test_draft_posts_visible_to_author_only(alice, client):
    post_id = _post(alice, published=False)
    assert client.get(f"/api/posts/{post_id}").status_code == 404
    assert alice.get(f"/api/posts/{post_id}").status_code == 200
    assert client.get("/api/posts").json["data"] == []


def test_draft_post_discussion_hidden_from_others(alice, bob):
    post_id = _post(alice, published=False)
    comment_id = _comment(alice, post_id)
    assert alice.get(f"/api/posts/{post_id}/comments").status_code == 200

    assert bob.get(f"/api/posts/{post_id}/comments").status_code == 404
    assert bob.post(f"/api/posts/{post_id}/comments", json={"content": "Hi"}).status_code == 404
    r = bob.post("/api/reactions", json={"type": "LIKE", "post_id": post_id, "comment_id": comment_id})
    assert r.status_code == 404
    assert bob.get(f"/api/posts/{post_id}/comments/{comment_id}/replies").status_code == 404
    assert _reply(bob, post_id, comment_id).status_code == 404


@pytest.mark.parametrize(
    "path,body",
    [
        ("/api/posts", {"title": 5}),
        ("/api/posts", {"title": ["Hello"]}),
        ("/api/posts/{post_id}/comments", {"content": {"text": "hi"}}),
        ("/api/reactions", {"type": 1, "post_id": "{post_id}", "comment_id": 1}),
    ],
)
def test_non_string_fields_are_rejected(alice, path, body):
    post_id = _post(alice)
    body = {k: post_id if v == "{post_id}" else v for k, v in body.items()}
    assert alice.post(path.format(post_id=post_id), json=body).status_code == 400


def test_post_create_is_rate_limited(alice):
    for _ in range(5):
        _post(alice)
    r = alice.post("/api/posts", json={"title": "One too many"})
    assert r.status_code == 429
    assert r.json["rate_limit_info"]["limit"] == 5
    assert r.headers["X-RateLimit-Remaining"] == "0"


def test_comment_listing_sorts_and_paginates(app, alice, user_id):
    post_id = _post(alice)
    _bulk_comments(app, post_id, user_id("alice@example.com"), 3)

    newest = alice.get(f"/api/posts/{post_id}/comments").json
    assert [c["content"] for c in newest["data"]] == ["c2", "c1", "c0"]
    assert newest["pagination"]["total_count"] == 3

    oldest = alice.get(f"/api/posts/{post_id}/comments?sort_by=oldest").json
    assert [c["content"] for c in oldest["data"]] == ["c0", "c1", "c2"]


def test_comments_popular_sort(app, alice, bob, user_id):
    post_id = _post(alice)
    _bulk_comments(app, post_id, user_id("alice@example.com"), 2)
    with session_scope(app) as s:
        first = s.query(Comment).filter(Comment.content == "c0").one().id
    bob.post("/api/reactions", json={"type": "like", "post_id": post_id, "comment_id": first})

    popular = alice.get(f"/api/posts/{post_id}/comments?sort_by=popular").json
    assert popular["data"][0]["id"] == first
    assert popular["data"][0]["reaction_counts"] == {"LIKE": 1}


def test_small_threads_are_not_cached(alice):
    post_id = _post(alice)
    _comment(alice, post_id)
    assert alice.get(f"/api/posts/{post_id}/comments").headers["X-Cache"] == "MISS"
    assert alice.get(f"/api/posts/{post_id}/comments").headers["X-Cache"] == "MISS"


def test_busy_threads_are_cached_and_invalidated(app, alice, user_id):
    post_id = _post(alice)
    _bulk_comments(app, post_id, user_id("alice@example.com"), 25)

    first = alice.get(f"/api/posts/{post_id}/comments")
    assert first.headers["X-Cache"] == "MISS"
    assert len(first.json["data"]) == 20
    assert first.json["pagination"]["has_more"] is True

    second = alice.get(f"/api/posts/{post_id}/comments")
    assert second.headers["X-Cache"] == "HIT"
    assert second.json == first.json

    _comment(alice, post_id, "fresh")
    third = alice.get(f"/api/posts/{post_id}/comments")
    assert third.headers["X-Cache"] == "MISS"
    assert third.json["data"][0]["content"] == "fresh"


def test_comment_edit_and_delete(alice, bob):
    post_id = _post(alice)
    comment_id = _comment(bob, post_id)
    assert alice.patch(f"/api/posts/{post_id}/comments/{comment_id}", json={"content": "x"}).status_code == 403
    assert bob.patch(f"/api/posts/{post_id}/comments/{comment_id}", json={"content": "Edited"}).json["content"] == "Edited"

    _reply(alice, post_id, comment_id)
    r = bob.delete(f"/api/posts/{post_id}/comments/{comment_id}")
    assert r.json == {"success": True, "message": "Comment deleted successfully"}
    assert bob.get(f"/api/posts/{post_id}/comments").json["data"] == []


def test_reply_thread_nests_children(alice, bob):
    post_id = _post(alice)
    comment_id = _comment(alice, post_id)
    top = _reply(bob, post_id, comment_id).json
    assert top["depth"] == 0
    child = _reply(alice, post_id, comment_id, parent_reply_id=top["id"]).json
    assert child["depth"] == 1
    assert child["path"] == f"{comment_id}/{top['id']}"

    thread = alice.get(f"/api/posts/{post_id}/comments/{comment_id}/thread").json
    assert thread["comment"]["id"] == comment_id
    assert [r["id"] for r in thread["replies"]] == [top["id"]]
    assert [r["id"] for r in thread["replies"][0]["children"]] == [child["id"]]


def test_reply_depth_is_capped(alice):
    post_id = _post(alice)
    comment_id = _comment(alice, post_id)
    parent = None
    for _ in range(11):
        r = _reply(alice, post_id, comment_id, parent_reply_id=parent)
        assert r.status_code == 201
        parent = r.json["id"]
    assert r.json["depth"] == 10

    r = _reply(alice, post_id, comment_id, parent_reply_id=parent)
    assert r.status_code == 400
    assert r.json["error"] == "Maximum reply nesting depth exceeded"


def test_reply_parent_must_belong_to_comment(alice):
    post_id = _post(alice)
    c1 = _comment(alice, post_id)
    c2 = _comment(alice, post_id)
    foreign = _reply(alice, post_id, c1).json["id"]
    r = _reply(alice, post_id, c2, parent_reply_id=foreign)
    assert r.status_code == 400


def test_reply_delete_removes_descendants(app, alice, bob):
    post_id = _post(alice)
    comment_id = _comment(alice, post_id)
    top = _reply(alice, post_id, comment_id).json["id"]
    mid = _reply(alice, post_id, comment_id, parent_reply_id=top).json["id"]
    _reply(alice, post_id, comment_id, parent_reply_id=mid)
    sibling = _reply(alice, post_id, comment_id).json["id"]
    bob.post("/api/reactions", json={"type": "LOVE", "post_id": post_id, "reply_id": mid})

    assert bob.delete(f"/api/posts/{post_id}/comments/{comment_id}/replies/{top}").status_code == 403
    r = alice.delete(f"/api/posts/{post_id}/comments/{comment_id}/replies/{top}")
    assert r.json["deleted"] == 3

    with session_scope(app) as s:
        assert [r.id for r in s.query(Reply).all()] == [sibling]
        assert s.query(Reaction).count() == 0


def test_reaction_toggle_and_replace(alice, bob):
    post_id = _post(alice)
    comment_id = _comment(alice, post_id)
    body = {"post_id": post_id, "comment_id": comment_id}

    r = bob.post("/api/reactions", json={"type": "LIKE", **body})
    assert r.json["target_type"] == "comment"
    assert r.json["reaction_counts"] == {"LIKE": 1}

    r = bob.post("/api/reactions", json={"type": "WOW", **body})
    assert r.json["reaction_counts"] == {"WOW": 1}

    alice.post("/api/reactions", json={"type": "WOW", **body})
    r = bob.post("/api/reactions", json={"type": "WOW", **body})
    assert r.json["reaction_counts"] == {"WOW": 1}
    assert [x["user_id"] for x in r.json["reactions"]] == [alice.get("/auth/me").json["user"]["id"]]


def test_reaction_validation(alice):
    post_id = _post(alice)
    comment_id = _comment(alice, post_id)
    assert alice.post("/api/reactions", json={"type": "MEH", "post_id": post_id, "comment_id": comment_id}).status_code == 400
    assert alice.post("/api/reactions", json={"type": "LIKE", "post_id": post_id}).status_code == 400
    assert alice.post("/api/reactions", json={"type": "LIKE", "post_id": post_id, "comment_id": 999}).status_code == 404


def test_build_reply_tree_orphans_become_roots():
    flat = [
        {"id": 3, "parent_reply_id": 1, "created_at": "2024-01-01T00:00:03"},
        {"id": 1, "parent_reply_id": None, "created_at": "2024-01-01T00:00:01"},
        {"id": 2, "parent_reply_id": 99, "created_at": "2024-01-01T00:00:02"},
    ]
    tree = build_reply_tree(flat)
    assert [n["id"] for n in tree] == [1, 2]
    assert [n["id"] for n in tree[0]["children"]] == [3]
    assert tree[1]["children"] == []
