import io
from decimal import Decimal
from pathlib import Path

import pytest

from app.bdgenai.db import session_scope
from app.bdgenai.modules.profile.models import SocialMediaAccount, Subscription
from app.bdgenai.modules.profile.service import monthly_spending


def test_profile_get_includes_stats(alice):
    alice.post("/api/posts", json={"title": "P"})
    alice.post("/api/ideas", json={"title": "Idea"})
    alice.post("/api/subscriptions", json={"name": "Music", "cost": "10", "billing_cycle": "MONTHLY"})
    alice.post("/api/subscriptions", json={"name": "Cloud", "cost": "120", "billing_cycle": "YEARLY"})

    r = alice.get("/api/profile")
    assert r.status_code == 200
    assert r.json["email"] == "alice@example.com"
    stats = r.json["stats"]
    assert stats["posts"] == 1
    assert stats["ideas"] == 1
    assert stats["subscriptions"] == 2
    assert stats["monthly_spending"] == 20.0
    assert stats["followers"] == 0


def test_profile_followers_come_from_active_accounts(app, alice, user_id):
    uid = user_id("alice@example.com")
    with session_scope(app) as s:
        s.add(SocialMediaAccount(user_id=uid, platform="github", platform_user_id="1", followers=7, following=3, is_active=True))
        s.add(SocialMediaAccount(user_id=uid, platform="twitch", platform_user_id="2", followers=100, following=1, is_active=False))
    stats = alice.get("/api/profile").json["stats"]
    assert (stats["followers"], stats["following"]) == (7, 3)


def test_profile_patch(alice):
    r = alice.patch("/api/profile", json={"name": "Alice B", "phone": "555"})
    assert r.status_code == 200
    assert r.json["name"] == "Alice B"
    assert alice.patch("/api/profile", json={"name": "  "}).status_code == 400
    assert alice.patch("/api/profile", json={"email": "x@example.com"}).json["error"] == "No fields to update"


def test_profile_links_sync(alice, bob, admin, user_id):
    uid = user_id("alice@example.com")
    r = alice.post(
        f"/api/users/{uid}/profile-links",
        json={"links": [{"id": "temp-1", "platform": "github", "url": "https://github.com/a"}, {"platform": "x", "url": "https://x.com/a"}]},
    )
    assert r.status_code == 200
    assert [(link["platform"], link["position"]) for link in r.json] == [("github", 0), ("x", 1)]
    github_id = r.json[0]["id"]

    # drop x, edit github, move it after a new link
    r = alice.post(
        f"/api/users/{uid}/profile-links",
        json={
            "links": [
                {"id": "temp-2", "platform": "site", "url": "https://a.dev"},
                {"id": github_id, "platform": "github", "url": "https://github.com/alice"},
            ]
        },
    )
    assert [(link["platform"], link["position"]) for link in r.json] == [("site", 0), ("github", 1)]
    assert r.json[1]["id"] == github_id
    assert r.json[1]["url"] == "https://github.com/alice"

    assert bob.post(f"/api/users/{uid}/profile-links", json={"links": []}).status_code == 403
    assert admin.post(f"/api/users/{uid}/profile-links", json={"links": [{"platform": "", "url": "u"}]}).status_code == 400

    assert [link["platform"] for link in alice.get("/api/profile/links").json] == ["site", "github"]


def test_profile_link_delete(alice, bob, user_id):
    uid = user_id("alice@example.com")
    links = alice.post(f"/api/users/{uid}/profile-links", json={"links": [{"platform": "github", "url": "https://g"}]}).json
    link_id = links[0]["id"]

    assert bob.delete(f"/api/profile/links?link_id={link_id}").status_code == 404
    assert alice.delete("/api/profile/links").status_code == 400
    r = alice.delete(f"/api/profile/links?link_id={link_id}")
    assert r.status_code == 204
    assert alice.get("/api/profile/links").json == []


def test_ideas_crud(alice, bob):
    r = alice.post("/api/ideas", json={"title": "Write a book"})
    assert r.status_code == 201
    assert r.json["status"] == "draft"
    idea_id = r.json["id"]

    assert alice.post("/api/ideas", json={"title": ""}).status_code == 400
    assert alice.patch(f"/api/ideas/{idea_id}", json={"status": "someday"}).status_code == 400
    assert alice.patch(f"/api/ideas/{idea_id}", json={"status": "in_progress"}).json["status"] == "in_progress"
    assert bob.patch(f"/api/ideas/{idea_id}", json={"status": "done"}).status_code == 404

    assert [i["id"] for i in alice.get("/api/ideas").json] == [idea_id]
    assert bob.get("/api/ideas").json == []
    assert alice.delete(f"/api/ideas/{idea_id}").json == {"success": True}
    assert alice.get("/api/ideas").json == []


def test_subscriptions(alice, bob):
    r = alice.post("/api/subscriptions", json={"name": "Video", "cost": 12.5, "billing_cycle": "monthly", "renewal_date": "2026-01-01"})
    assert r.status_code == 201
    assert r.json["billing_cycle"] == "MONTHLY"
    assert r.json["cost"] == 12.5
    sub_id = r.json["id"]

    assert alice.post("/api/subscriptions", json={"name": "X", "cost": -1}).status_code == 400
    assert alice.post("/api/subscriptions", json={"name": "X", "cost": 1, "billing_cycle": "WEEKLY"}).status_code == 400
    assert alice.post("/api/subscriptions", json={"cost": 1}).json["error"] == "Name is required"

    assert bob.delete(f"/api/subscriptions/{sub_id}").status_code == 404
    assert alice.delete(f"/api/subscriptions/{sub_id}").status_code == 200
    assert alice.get("/api/subscriptions").json == []


@pytest.mark.parametrize(
    "method,path,body",
    [
        ("patch", "/api/profile", {"name": 3}),
        ("post", "/api/users/{uid}/profile-links", {"links": [{"platform": [], "url": "https://x.com/a"}]}),
        ("post", "/api/users/{uid}/profile-links", {"links": [{"platform": "x", "url": {"href": "a"}}]}),
        ("post", "/api/ideas", {"title": 5}),
        ("post", "/api/subscriptions", {"name": 1, "cost": 5}),
        ("post", "/api/subscriptions", {"name": "Music", "cost": 5, "billing_cycle": ["MONTHLY"]}),
    ],
)
def test_non_string_fields_are_rejected(alice, user_id, method, path, body):
    uid = user_id("alice@example.com")
    r = getattr(alice, method)(path.format(uid=uid), json=body)
    assert r.status_code == 400


def test_monthly_spending_mixes_cycles():
    subs = [
        Subscription(name="a", cost=Decimal("9.99"), billing_cycle="MONTHLY"),
        Subscription(name="b", cost=Decimal("100"), billing_cycle="YEARLY"),
    ]
    assert monthly_spending(subs) == 18.32
    assert monthly_spending([]) == 0.0


def test_upload_to_local_storage(alice, client):
    r = alice.post(
        "/api/upload",
        data={"file": [(io.BytesIO(b"hello"), "notes.txt"), (io.BytesIO(b"world"), "more notes.txt")]},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    files = r.json["uploaded_files"]
    assert len(files) == 2
    assert files[0]["url"].startswith("/storage/uploads/")
    assert files[1]["url"].endswith("-more_notes.txt")
    assert client.get(files[0]["url"]).data == b"hello"


def test_upload_requires_a_file(alice):
    assert alice.post("/api/upload", data={}, content_type="multipart/form-data").status_code == 400


def test_upload_rejects_large_files(alice):
    big = io.BytesIO(b"x" * (10 * 1024 * 1024 + 1))
    r = alice.post("/api/upload", data={"file": (big, "big.bin")}, content_type="multipart/form-data")
    assert r.status_code == 413
    assert "10MB" in r.json["error"]


def test_oversized_file_in_batch_stores_nothing(app, alice):
    big = io.BytesIO(b"x" * (10 * 1024 * 1024 + 1))
    r = alice.post(
        "/api/upload",
        data={"file": [(io.BytesIO(b"small"), "small.txt"), (big, "big.bin")]},
        content_type="multipart/form-data",
    )
    assert r.status_code == 413
    root = Path(app.config["LOCAL_STORAGE_ROOT"])
    assert not root.exists() or not any(p.is_file() for p in root.rglob("*"))


def test_avatar_upload(alice):
    r = alice.post(
        "/api/profile/avatar",
        data={"file": (io.BytesIO(b"not really a pdf"), "doc.pdf", "application/pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400

    r = alice.post(
        "/api/profile/avatar",
        data={"file": (io.BytesIO(b"\x89PNG"), "me.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["image"].startswith("/storage/uploads/")
    assert alice.get("/api/profile").json["image"] == r.json["image"]


def test_social_connect_errors(alice):
    r = alice.get("/api/social/myspace/connect")
    assert r.status_code == 400
    assert r.json["error"] == "Platform not supported"
    r = alice.get("/api/social/twitter/connect")
    assert r.status_code == 500
    assert r.json["error"] == "Platform not configured"


def test_social_accounts_list_and_disconnect(app, alice, bob, user_id):
    with session_scope(app) as s:
        account = SocialMediaAccount(
            user_id=user_id("alice@example.com"),
            platform="github",
            platform_user_id="42",
            username="alice",
            access_token="secret-token",
        )
        s.add(account)
        s.flush()
        account_id = account.id

    listed = alice.get("/api/social/accounts").json
    assert [a["username"] for a in listed] == ["alice"]
    assert "access_token" not in listed[0]

    assert bob.delete(f"/api/social/accounts/{account_id}").status_code == 404
    assert alice.delete(f"/api/social/accounts/{account_id}").json == {"success": True}
    assert alice.get("/api/social/accounts").json == []
