from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.bdgenai.utils import strip_html

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

MIN_QUERY_LENGTH = 2
MAX_RESULTS_PER_TYPE = 15
SNIPPET_LENGTH = 150


def search_terms(query: str) -> list[str]:
    return [t for t in query.lower().split() if len(t) >= MIN_QUERY_LENGTH]


def make_snippet(text: str, query: str, length: int = SNIPPET_LENGTH) -> str:
    """
    Window of roughly `length` chars centred on the first match of the query
    (or of any term longer than 2 chars), with "..." where text was cut.
    """
    lower_text = text.lower()
    lower_query = query.lower()
    index = lower_text.find(lower_query)
    if index == -1:
        for term in (t for t in lower_query.split() if len(t) > 2):
            index = lower_text.find(term)
            if index != -1:
                break
    if index == -1:
        return text[:length] + "..." if len(text) > length else text

    half = length // 2
    start = max(0, index - half)
    end = min(len(text), index + len(query) + half)
    snippet = text[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


def relevance(title: str, snippet: str, result_type: str, query: str, terms: list[str]) -> float:
    title = title.lower()
    snippet = snippet.lower()
    query = query.lower()
    score = 0.0
    if query in title:
        score += 100
    if title.startswith(query):
        score += 50
    for term in terms:
        if term in title:
            score += 30
            if title.startswith(term + " "):
                score += 15
        if term in snippet:
            score += 10
    if result_type == "course":
        score += 5
    # short matching titles rank higher
    score *= max(1, 20 - len(title)) / 10
    return score


def _result(id_: int, type_: str, title: str, text: str, url: str, thumbnail: str | None, query: str, terms: list[str]) -> dict:
    snippet = make_snippet(strip_html(text), query)
    return {
        "id": id_,
        "type": type_,
        "title": title,
        "snippet": snippet,
        "url": url,
        "thumbnail": thumbnail,
        "relevance": relevance(title, snippet, type_, query, terms),
    }


def search(s: "Session", query: str) -> list[dict]:
    from app.bdgenai.modules.courses.models import Course
    from app.bdgenai.modules.posts.models import Post

    query = query.strip().lower()
    terms = search_terms(query)
    if not terms:
        return []
    pattern = f"%{query}%"
    results: list[dict] = []

    courses = (
        s.query(Course)
        .filter(Course.is_published.is_(True), or_(Course.title.ilike(pattern), Course.description.ilike(pattern)))
        .order_by(Course.created_at.desc())
        .limit(MAX_RESULTS_PER_TYPE)
        .all()
    )
    for course in courses:
        parts = [course.description or ""]
        parts.extend(f"{ch.title} {ch.description or ''}" for ch in course.chapters if ch.is_published)
        results.append(
            _result(course.id, "course", course.title, " ".join(parts), f"/courses/{course.id}", course.image_url, query, terms)
        )

    posts = (
        s.query(Post)
        .filter(
            Post.published.is_(True),
            or_(Post.title.ilike(pattern), Post.description.ilike(pattern), Post.body.ilike(pattern)),
        )
        .order_by(Post.created_at.desc())
        .limit(MAX_RESULTS_PER_TYPE)
        .all()
    )
    for post in posts:
        text = f"{post.title} {post.description or ''} {post.body or ''}"
        results.append(_result(post.id, "post", post.title, text, f"/blog/{post.id}", post.image_url, query, terms))

    # stable sort keeps courses ahead of posts on ties
    results.sort(key=lambda r: r["relevance"], reverse=True)
    return results
