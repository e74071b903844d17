from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.bdgenai.db import db_session
from app.bdgenai.errors import error_response
from app.bdgenai.kv import (
    COMMENTS_CACHE_TTL,
    cache_get_json,
    cache_set_json,
    check_rate_limit,
    comments_cache_key,
    get_kv,
    invalidate_pattern,
    should_cache_post,
)
from app.bdgenai.modules.posts.models import Comment, Post, Reply
from app.bdgenai.modules.posts.service import (
    SORT_OPTIONS,
    ReplyError,
    build_reply_tree,
    comment_to_dict,
    create_comment,
    create_post,
    create_reply,
    delete_comment,
    delete_post,
    delete_reply,
    list_comments,
    list_replies,
    post_to_dict,
    reply_to_dict,
    toggle_reaction,
    update_comment,
    update_post,
    update_reply,
    validate_reaction_payload,
)
from app.bdgenai.rbac import current_user, require_login
from app.bdgenai.utils import json_payload, page_args, pagination_dict, text_value

bp = Blueprint("posts_api", __name__)


def _rate_limited(action: str):
    """429 response when the current user is over the bucket for action, else None."""
    result = check_rate_limit(get_kv(), action, current_user().id)
    if not result.limited:
        return None
    resp, status = error_response(429, "Too many requests. Please try again later.", rate_limit_info=result.to_dict())
    resp.headers["X-RateLimit-Limit"] = str(result.limit)
    resp.headers["X-RateLimit-Remaining"] = str(result.remaining)
    resp.headers["X-RateLimit-Reset"] = str(result.reset)
    return resp, status


def _invalidate_comments(post_id: int) -> None:
    removed = invalidate_pattern(get_kv(), f"comments:{post_id}:*")
    current_app.logger.debug("Invalidated %s cached comment pages for post %s", removed, post_id)


def _visible_post(post_id: int) -> Post | None:
    post = db_session().get(Post, post_id)
    if not post:
        return None
    user = getattr(g, "current_user", None)
    if not post.published and not (user and user.id == post.user_id):
        return None
    return post


def _comment_in_post(post_id: int, comment_id: int) -> Comment | None:
    return (
        db_session()
        .query(Comment)
        .filter(Comment.id == comment_id, Comment.post_id == post_id)
        .one_or_none()
    )


def _visible_comment(post_id: int, comment_id: int) -> Comment | None:
    if not _visible_post(post_id):
        return None
    return _comment_in_post(post_id, comment_id)


# ---------- Posts ----------
@bp.get("/posts")
def posts_list():
    s = db_session()
    page, per_page = page_args(default_per_page=10)
    q = s.query(Post).filter(Post.published.is_(True))
    category = (request.args.get("category") or "").strip()
    if category:
        q = q.filter(Post.category == category)
    total = q.count()
    posts = q.order_by(Post.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return jsonify({"data": [post_to_dict(p) for p in posts], "pagination": pagination_dict(page, per_page, total)})


@bp.post("/posts")
@require_login
def posts_create():
    s = db_session()
    limited = _rate_limited("post")
    if limited:
        return limited
    payload = json_payload()
    if not text_value(payload.get("title")):
        return error_response(400, "Title is required")
    post = create_post(s, payload, current_user())
    s.commit()
    return jsonify(post_to_dict(post, detail=True)), 201


@bp.get("/posts/<int:post_id>")
def post_detail(post_id: int):
    s = db_session()
    post = _visible_post(post_id)
    if not post:
        return error_response(404, "Post not found")
    s.query(Post).filter(Post.id == post.id).update({Post.views: Post.views + 1}, synchronize_session=False)
    s.commit()
    s.refresh(post)
    return jsonify(post_to_dict(post, detail=True))


@bp.patch("/posts/<int:post_id>")
@require_login
def post_update(post_id: int):
    s = db_session()
    post = s.get(Post, post_id)
    if not post:
        return error_response(404, "Post not found")
    if post.user_id != current_user().id:
        return error_response(403, "Forbidden")
    payload = json_payload()
    if "title" in payload and not text_value(payload.get("title")):
        return error_response(400, "Title is required")
    update_post(s, post, payload, current_user())
    s.commit()
    return jsonify(post_to_dict(post, detail=True))


@bp.delete("/posts/<int:post_id>")
@require_login
def post_delete(post_id: int):
    s = db_session()
    post = s.get(Post, post_id)
    if not post:
        return error_response(404, "Post not found")
    if post.user_id != current_user().id:
        return error_response(403, "Forbidden")
    delete_post(s, post, current_user())
    _invalidate_comments(post_id)
    return jsonify({"success": True})


# ---------- Comments ----------
@bp.get("/posts/<int:post_id>/comments")
def comments_list(post_id: int):
    s = db_session()
    if not _visible_post(post_id):
        return error_response(404, "Post not found")
    page = max(1, request.args.get("page", 1, type=int) or 1)
    sort_by = (request.args.get("sort_by") or "newest").strip().lower()
    if sort_by not in SORT_OPTIONS:
        sort_by = "newest"

    kv = get_kv()
    key = comments_cache_key(post_id, page, sort_by)
    cached = cache_get_json(kv, key)
    if cached is not None:
        resp = jsonify(cached)
        resp.headers["X-Cache"] = "HIT"
        return resp

    result = list_comments(s, post_id, page, sort_by)
    if should_cache_post(result["pagination"]["total_count"]):
        cache_set_json(kv, key, result, COMMENTS_CACHE_TTL)
    resp = jsonify(result)
    resp.headers["X-Cache"] = "MISS"
    return resp


@bp.post("/posts/<int:post_id>/comments")
@require_login
def comments_create(post_id: int):
    s = db_session()
    limited = _rate_limited("comment")
    if limited:
        return limited
    content = text_value(json_payload().get("content"))
    if not content:
        return error_response(400, "Content is required")
    post = _visible_post(post_id)
    if not post:
        return error_response(404, "Post not found")
    comment = create_comment(s, post, content, current_user())
    s.commit()
    _invalidate_comments(post_id)
    return jsonify(comment_to_dict(comment)), 201


@bp.patch("/posts/<int:post_id>/comments/<int:comment_id>")
@require_login
def comment_update(post_id: int, comment_id: int):
    s = db_session()
    comment = _comment_in_post(post_id, comment_id)
    if not comment:
        return error_response(404, "Comment not found")
    if comment.user_id != current_user().id:
        return error_response(403, "Forbidden")
    content = text_value(json_payload().get("content"))
    if not content:
        return error_response(400, "Content is required")
    update_comment(s, comment, content, current_user())
    s.commit()
    _invalidate_comments(post_id)
    return jsonify(comment_to_dict(comment))


@bp.delete("/posts/<int:post_id>/comments/<int:comment_id>")
@require_login
def comment_delete(post_id: int, comment_id: int):
    s = db_session()
    comment = _comment_in_post(post_id, comment_id)
    if not comment:
        return error_response(404, "Comment not found")
    if comment.user_id != current_user().id:
        return error_response(403, "Forbidden")
    delete_comment(s, comment, current_user())
    _invalidate_comments(post_id)
    return jsonify({"success": True, "message": "Comment deleted successfully"})


# ---------- Replies ----------
@bp.get("/posts/<int:post_id>/comments/<int:comment_id>/replies")
def replies_list(post_id: int, comment_id: int):
    s = db_session()
    comment = _visible_comment(post_id, comment_id)
    if not comment:
        return error_response(404, "Comment not found")
    return jsonify(list_replies(s, comment))


@bp.get("/posts/<int:post_id>/comments/<int:comment_id>/thread")
def replies_thread(post_id: int, comment_id: int):
    s = db_session()
    comment = _visible_comment(post_id, comment_id)
    if not comment:
        return error_response(404, "Comment not found")
    return jsonify({"comment": comment_to_dict(comment), "replies": build_reply_tree(list_replies(s, comment))})


@bp.post("/posts/<int:post_id>/comments/<int:comment_id>/replies")
@require_login
def replies_create(post_id: int, comment_id: int):
    s = db_session()
    limited = _rate_limited("reply")
    if limited:
        return limited
    payload = json_payload()
    content = text_value(payload.get("content"))
    if not content:
        return error_response(400, "Content is required")
    comment = _visible_comment(post_id, comment_id)
    if not comment:
        return error_response(404, "Comment not found")
    try:
        reply = create_reply(s, comment, content, payload.get("parent_reply_id"), current_user())
    except ReplyError as e:
        return error_response(400, str(e))
    s.commit()
    _invalidate_comments(post_id)
    return jsonify(reply_to_dict(reply)), 201


def _reply_in_comment(post_id: int, comment_id: int, reply_id: int) -> Reply | None:
    return (
        db_session()
        .query(Reply)
        .filter(Reply.id == reply_id, Reply.comment_id == comment_id, Reply.post_id == post_id)
        .one_or_none()
    )


@bp.patch("/posts/<int:post_id>/comments/<int:comment_id>/replies/<int:reply_id>")
@require_login
def reply_update(post_id: int, comment_id: int, reply_id: int):
    s = db_session()
    reply = _reply_in_comment(post_id, comment_id, reply_id)
    if not reply:
        return error_response(404, "Reply not found")
    if reply.user_id != current_user().id:
        return error_response(403, "You don't have permission to edit this reply")
    content = text_value(json_payload().get("content"))
    if not content:
        return error_response(400, "Content is required")
    update_reply(s, reply, content, current_user())
    s.commit()
    return jsonify(reply_to_dict(reply))


@bp.delete("/posts/<int:post_id>/comments/<int:comment_id>/replies/<int:reply_id>")
@require_login
def reply_delete(post_id: int, comment_id: int, reply_id: int):
    s = db_session()
    reply = _reply_in_comment(post_id, comment_id, reply_id)
    if not reply:
        return error_response(404, "Reply not found")
    if reply.user_id != current_user().id:
        return error_response(403, "You don't have permission to delete this reply")
    removed = delete_reply(s, reply, current_user())
    _invalidate_comments(post_id)
    return jsonify({"success": True, "message": "Reply deleted successfully", "deleted": removed})


# ---------- Reactions ----------
@bp.post("/reactions")
@require_login
def reactions_toggle():
    s = db_session()
    payload = json_payload()
    errors = validate_reaction_payload(payload)
    if errors:
        return error_response(400, errors[0])
    limited = _rate_limited("reaction")
    if limited:
        return limited

    try:
        post_id = int(payload["post_id"])
        comment_id = int(payload["comment_id"]) if payload.get("comment_id") not in (None, "") else None
        reply_id = int(payload["reply_id"]) if payload.get("reply_id") not in (None, "") else None
    except (TypeError, ValueError):
        return error_response(400, "Invalid id")

    if not _visible_post(post_id):
        return error_response(404, "Post not found")
    if comment_id is not None:
        target = s.get(Comment, comment_id)
    else:
        target = s.get(Reply, reply_id)
    if not target or target.post_id != post_id:
        return error_response(404, "Comment not found" if comment_id is not None else "Reply not found")

    result = toggle_reaction(
        s,
        user=current_user(),
        post_id=post_id,
        rtype=payload["type"].strip().upper(),
        comment_id=comment_id,
        reply_id=reply_id,
    )
    _invalidate_comments(post_id)
    return jsonify(result)
