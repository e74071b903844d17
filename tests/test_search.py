from app.bdgenai.modules.search.service import make_snippet, relevance, search_terms


def _published_course(c, title, description):
    course_id = c.post("/api/courses", json={"title": title}).json["id"]
    c.patch(f"/api/courses/{course_id}", json={"description": description, "price": 0})
    c.patch(f"/api/courses/{course_id}/publish")
    return course_id


def test_query_too_short(client):
    r = client.get("/api/search?q=a")
    assert r.status_code == 400
    assert r.json["error"] == "Query must be at least 2 characters"
    assert client.get("/api/search").status_code == 400


def test_search_finds_published_courses_and_posts(alice, client):
    course_id = _published_course(alice, "Flask basics", "Build web apps")
    alice.post("/api/courses", json={"title": "Flask drafts"})
    post_id = alice.post(
        "/api/posts",
        json={"title": "Deploying", "body": "<p>Running <b>Flask</b> behind gunicorn</p>", "published": True},
    ).json["id"]
    alice.post("/api/posts", json={"title": "Flask secrets", "published": False})

    r = client.get("/api/search?q=flask")
    assert r.status_code == 200
    results = r.json["results"]
    assert r.json["total_results"] == 2
    assert [(x["type"], x["url"]) for x in results] == [("course", f"/courses/{course_id}"), ("post", f"/blog/{post_id}")]
    assert "<b>" not in results[1]["snippet"]
    assert "Flask behind gunicorn" in results[1]["snippet"]


def test_search_no_matches(client):
    assert client.get("/api/search?q=zzz").json == {"results": [], "total_results": 0}


class TestSearchHelpers:
    def test_search_terms_drop_short_words(self):
        assert search_terms("a Flask  UI x") == ["flask", "ui"]

    def test_make_snippet_centres_on_match(self):
        text = "x" * 200 + " needle " + "y" * 200
        snippet = make_snippet(text, "needle", length=20)
        assert snippet.startswith("...")
        assert snippet.endswith("...")
        assert "needle" in snippet

    def test_make_snippet_without_match_truncates(self):
        assert make_snippet("short text", "absent") == "short text"
        assert make_snippet("z" * 200, "absent", length=10) == "z" * 10 + "..."

    def test_make_snippet_falls_back_to_terms(self):
        """A multi-word query with no exact hit centres on its first matching term"""
        snippet = make_snippet("Learn about python packaging today", "python wheels")
        assert snippet == "Learn about python packaging today"

    def test_relevance_prefers_title_matches(self):
        terms = ["flask"]
        title_hit = relevance("Flask", "", "post", "flask", terms)
        body_hit = relevance("Deploying apps", "flask in production", "post", "flask", terms)
        assert title_hit > body_hit
        assert relevance("Flask", "", "course", "flask", terms) > title_hit
