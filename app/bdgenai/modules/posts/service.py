from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.bdgenai.audit import record_event
from app.bdgenai.modules.posts.models import MAX_REPLY_DEPTH, REACTION_TYPES, Comment, Post, Reaction, Reply
from app.bdgenai.utils import clean_str, iso, text_value

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.bdgenai.models import User

COMMENTS_PAGE_SIZE = 20
SORT_OPTIONS = ("newest", "oldest", "popular")
POST_FIELDS = ("title", "description", "body", "image_url", "category", "published")


class ReplyError(ValueError):
    pass


# ---------- Serialization ----------
def post_to_dict(post: Post, *, detail: bool = False) -> dict:
    out = {
        "id": post.id,
        "user_id": post.user_id,
        "title": post.title,
        "description": post.description,
        "image_url": post.image_url,
        "category": post.category,
        "published": post.published,
        "views": post.views,
        "author": post.user.summary() if post.user else None,
        "created_at": iso(post.created_at),
        "updated_at": iso(post.updated_at),
    }
    if detail:
        out["body"] = post.body
    return out


def comment_to_dict(comment: Comment, *, reaction_counts: dict[str, int] | None = None, reply_count: int = 0) -> dict:
    return {
        "id": comment.id,
        "post_id": comment.post_id,
        "user_id": comment.user_id,
        "content": comment.content,
        "user": comment.user.summary() if comment.user else None,
        "reaction_counts": reaction_counts or {},
        "reply_count": reply_count,
        "created_at": iso(comment.created_at),
        "updated_at": iso(comment.updated_at),
    }


def reply_to_dict(reply: Reply, *, reaction_counts: dict[str, int] | None = None) -> dict:
    return {
        "id": reply.id,
        "comment_id": reply.comment_id,
        "post_id": reply.post_id,
        "user_id": reply.user_id,
        "parent_reply_id": reply.parent_reply_id,
        "content": reply.content,
        "depth": reply.depth,
        "path": reply.path,
        "user": reply.user.summary() if reply.user else None,
        "reaction_counts": reaction_counts or {},
        "created_at": iso(reply.created_at),
        "updated_at": iso(reply.updated_at),
    }


def build_reply_tree(replies: list[dict]) -> list[dict]:
    """
    Nest flat reply dicts under their parents (children oldest first).
    Replies whose parent is missing from the list are treated as top level.
    """
    ordered = sorted(replies, key=lambda r: (r.get("created_at") or "", r["id"]))
    nodes = {r["id"]: {**r, "children": []} for r in ordered}
    roots: list[dict] = []
    for r in ordered:
        node = nodes[r["id"]]
        parent_id = r.get("parent_reply_id")
        if parent_id is not None and parent_id in nodes:
            nodes[parent_id]["children"].append(node)
        else:
            roots.append(node)
    return roots


# ---------- Posts ----------
def create_post(s: "Session", payload: dict, user: "User") -> Post:
    now = datetime.utcnow()
    post = Post(
        user_id=user.id,
        title=text_value(payload.get("title")),
        description=clean_str(payload.get("description")),
        body=payload.get("body") or None,
        image_url=clean_str(payload.get("image_url")),
        category=clean_str(payload.get("category")),
        published=bool(payload.get("published", False)),
        created_at=now,
        updated_at=now,
    )
    s.add(post)
    s.flush()
    record_event(s, actor=user, action="post.create", entity_type="Post", entity_id=post.id, metadata={"title": post.title})
    return post


def update_post(s: "Session", post: Post, payload: dict, user: "User") -> Post:
    if "title" in payload:
        post.title = text_value(payload.get("title"))
    if "description" in payload:
        post.description = clean_str(payload.get("description"))
    if "body" in payload:
        post.body = payload.get("body") or None
    if "image_url" in payload:
        post.image_url = clean_str(payload.get("image_url"))
    if "category" in payload:
        post.category = clean_str(payload.get("category"))
    if "published" in payload:
        post.published = bool(payload.get("published"))
    post.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="post.edit",
        entity_type="Post",
        entity_id=post.id,
        metadata={"fields": sorted(k for k in payload if k in POST_FIELDS)},
    )
    return post


def delete_post(s: "Session", post: Post, user: "User") -> None:
    """Remove the post with its reactions, replies and comments in one transaction."""
    try:
        s.query(Reaction).filter(Reaction.post_id == post.id).delete(synchronize_session=False)
        # children before parents so self-referencing replies never dangle
        replies = s.query(Reply).filter(Reply.post_id == post.id).order_by(Reply.depth.desc()).all()
        for r in replies:
            s.delete(r)
            s.flush()
        s.query(Comment).filter(Comment.post_id == post.id).delete(synchronize_session=False)
        record_event(s, actor=user, action="post.delete", entity_type="Post", entity_id=post.id, metadata={"title": post.title})
        s.delete(post)
        s.commit()
    except Exception:
        s.rollback()
        raise


# ---------- Reaction aggregates ----------
def _counts_by(s: "Session", column, ids: list[int]) -> dict[int, dict[str, int]]:
    if not ids:
        return {}
    rows = (
        s.query(column, Reaction.type, func.count(Reaction.id))
        .filter(column.in_(ids))
        .group_by(column, Reaction.type)
        .all()
    )
    out: dict[int, dict[str, int]] = defaultdict(dict)
    for target_id, rtype, n in rows:
        out[target_id][rtype] = n
    return out


def comment_reaction_counts(s: "Session", comment_ids: list[int]) -> dict[int, dict[str, int]]:
    return _counts_by(s, Reaction.comment_id, comment_ids)


def reply_reaction_counts(s: "Session", reply_ids: list[int]) -> dict[int, dict[str, int]]:
    return _counts_by(s, Reaction.reply_id, reply_ids)


# ---------- Comments ----------
def list_comments(s: "Session", post_id: int, page: int, sort_by: str) -> dict:
    base = s.query(Comment).filter(Comment.post_id == post_id)
    total = base.count()

    if sort_by == "popular":
        reaction_count = (
            s.query(Reaction.comment_id.label("comment_id"), func.count(Reaction.id).label("n"))
            .filter(Reaction.comment_id.isnot(None))
            .group_by(Reaction.comment_id)
            .subquery()
        )
        q = (
            base.outerjoin(reaction_count, reaction_count.c.comment_id == Comment.id)
            .order_by(func.coalesce(reaction_count.c.n, 0).desc(), Comment.created_at.desc(), Comment.id.desc())
        )
    elif sort_by == "oldest":
        q = base.order_by(Comment.created_at.asc(), Comment.id.asc())
    else:
        q = base.order_by(Comment.created_at.desc(), Comment.id.desc())

    comments = q.offset((page - 1) * COMMENTS_PAGE_SIZE).limit(COMMENTS_PAGE_SIZE).all()
    ids = [c.id for c in comments]
    counts = comment_reaction_counts(s, ids)
    reply_counts: dict[int, int] = {}
    if ids:
        reply_counts = dict(
            s.query(Reply.comment_id, func.count(Reply.id))
            .filter(Reply.comment_id.in_(ids))
            .group_by(Reply.comment_id)
            .all()
        )
    total_pages = (total + COMMENTS_PAGE_SIZE - 1) // COMMENTS_PAGE_SIZE if total else 0
    return {
        "data": [comment_to_dict(c, reaction_counts=counts.get(c.id), reply_count=reply_counts.get(c.id, 0)) for c in comments],
        "pagination": {
            "page": page,
            "page_size": COMMENTS_PAGE_SIZE,
            "total_count": total,
            "total_pages": total_pages,
            "has_more": page < total_pages,
        },
    }


def create_comment(s: "Session", post: Post, content: str, user: "User") -> Comment:
    now = datetime.utcnow()
    comment = Comment(post_id=post.id, user_id=user.id, content=content.strip(), created_at=now, updated_at=now)
    s.add(comment)
    s.flush()
    record_event(s, actor=user, action="comment.create", entity_type="Comment", entity_id=comment.id, metadata={"post_id": post.id})
    return comment


def update_comment(s: "Session", comment: Comment, content: str, user: "User") -> Comment:
    comment.content = content.strip()
    comment.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="comment.edit", entity_type="Comment", entity_id=comment.id)
    return comment


def delete_comment(s: "Session", comment: Comment, user: "User") -> None:
    """Reactions on replies, replies, reactions on the comment, then the comment; one transaction."""
    try:
        reply_ids = [rid for (rid,) in s.query(Reply.id).filter(Reply.comment_id == comment.id).all()]
        if reply_ids:
            s.query(Reaction).filter(Reaction.reply_id.in_(reply_ids)).delete(synchronize_session=False)
            for r in s.query(Reply).filter(Reply.id.in_(reply_ids)).order_by(Reply.depth.desc()).all():
                s.delete(r)
                s.flush()
        s.query(Reaction).filter(Reaction.comment_id == comment.id).delete(synchronize_session=False)
        record_event(
            s,
            actor=user,
            action="comment.delete",
            entity_type="Comment",
            entity_id=comment.id,
            metadata={"post_id": comment.post_id, "replies_deleted": len(reply_ids)},
        )
        s.delete(comment)
        s.commit()
    except Exception:
        s.rollback()
        raise


# ---------- Replies ----------
def list_replies(s: "Session", comment: Comment) -> list[dict]:
    replies = (
        s.query(Reply)
        .filter(Reply.comment_id == comment.id)
        .order_by(Reply.created_at.desc(), Reply.id.desc())
        .all()
    )
    counts = reply_reaction_counts(s, [r.id for r in replies])
    return [reply_to_dict(r, reaction_counts=counts.get(r.id)) for r in replies]


def create_reply(s: "Session", comment: Comment, content: str, parent_reply_id: Any, user: "User") -> Reply:
    parent: Reply | None = None
    if parent_reply_id not in (None, ""):
        try:
            parent_id = int(parent_reply_id)
        except (TypeError, ValueError):
            raise ReplyError("Invalid parent reply") from None
        parent = s.get(Reply, parent_id)
        if not parent or parent.comment_id != comment.id:
            raise ReplyError("Parent reply does not belong to this comment")

    depth = parent.depth + 1 if parent else 0
    if depth > MAX_REPLY_DEPTH:
        raise ReplyError("Maximum reply nesting depth exceeded")
    path = f"{parent.path}/{parent.id}" if parent else str(comment.id)

    now = datetime.utcnow()
    reply = Reply(
        comment_id=comment.id,
        post_id=comment.post_id,
        user_id=user.id,
        parent_reply_id=parent.id if parent else None,
        content=content.strip(),
        depth=depth,
        path=path,
        created_at=now,
        updated_at=now,
    )
    s.add(reply)
    s.flush()
    record_event(
        s,
        actor=user,
        action="reply.create",
        entity_type="Reply",
        entity_id=reply.id,
        metadata={"comment_id": comment.id, "depth": depth},
    )
    return reply


def update_reply(s: "Session", reply: Reply, content: str, user: "User") -> Reply:
    reply.content = content.strip()
    reply.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="reply.edit", entity_type="Reply", entity_id=reply.id)
    return reply


def descendant_ids(s: "Session", reply: Reply) -> list[int]:
    prefix = f"{reply.path}/{reply.id}"
    rows = (
        s.query(Reply.id)
        .filter(Reply.comment_id == reply.comment_id, or_(Reply.path == prefix, Reply.path.like(prefix + "/%")))
        .all()
    )
    return [rid for (rid,) in rows]


def delete_reply(s: "Session", reply: Reply, user: "User") -> int:
    """Delete a reply and all nested replies (deepest first) with their reactions. Returns rows removed."""
    try:
        child_ids = descendant_ids(s, reply)
        all_ids = [reply.id, *child_ids]
        s.query(Reaction).filter(Reaction.reply_id.in_(all_ids)).delete(synchronize_session=False)
        if child_ids:
            for r in s.query(Reply).filter(Reply.id.in_(child_ids)).order_by(Reply.depth.desc()).all():
                s.delete(r)
                s.flush()
        record_event(
            s,
            actor=user,
            action="reply.delete",
            entity_type="Reply",
            entity_id=reply.id,
            metadata={"comment_id": reply.comment_id, "children_deleted": len(child_ids)},
        )
        s.delete(reply)
        s.commit()
    except Exception:
        s.rollback()
        raise
    return len(all_ids)


# ---------- Reactions ----------
def validate_reaction_payload(payload: dict) -> list[str]:
    errors = []
    rtype = text_value(payload.get("type")).upper()
    if rtype not in REACTION_TYPES:
        errors.append(f"Invalid reaction type. Must be one of: {', '.join(REACTION_TYPES)}")
    if not payload.get("post_id"):
        errors.append("post_id is required")
    has_comment = payload.get("comment_id") not in (None, "")
    has_reply = payload.get("reply_id") not in (None, "")
    if has_comment == has_reply:
        errors.append("Exactly one of comment_id or reply_id is required")
    return errors


def toggle_reaction(s: "Session", *, user: "User", post_id: int, rtype: str, comment_id: int | None, reply_id: int | None) -> dict:
    """
    Same type again removes it; a different type replaces every reaction this user
    has on the target. Runs in one transaction.
    """
    target_col = Reaction.comment_id if comment_id is not None else Reaction.reply_id
    target_id = comment_id if comment_id is not None else reply_id
    try:
        mine = s.query(Reaction).filter(target_col == target_id, Reaction.user_id == user.id).all()
        action = "reaction.add"
        if any(r.type == rtype for r in mine):
            for r in mine:
                if r.type == rtype:
                    s.delete(r)
            action = "reaction.remove"
        else:
            for r in mine:
                s.delete(r)
            if mine:
                action = "reaction.replace"
            s.add(
                Reaction(
                    user_id=user.id,
                    post_id=post_id,
                    comment_id=comment_id,
                    reply_id=reply_id,
                    type=rtype,
                )
            )
        s.flush()
        record_event(
            s,
            actor=user,
            action=action,
            entity_type="Comment" if comment_id is not None else "Reply",
            entity_id=target_id,
            metadata={"type": rtype},
        )
        s.commit()
    except Exception:
        s.rollback()
        raise

    reactions = s.query(Reaction).filter(target_col == target_id).order_by(Reaction.created_at.asc(), Reaction.id.asc()).all()
    counts: dict[str, int] = defaultdict(int)
    for r in reactions:
        counts[r.type] += 1
    return {
        "target_type": "comment" if comment_id is not None else "reply",
        "target_id": target_id,
        "reactions": [r.to_dict() for r in reactions],
        "reaction_counts": dict(counts),
    }
