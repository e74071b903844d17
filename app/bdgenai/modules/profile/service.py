from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.bdgenai.audit import record_event
from app.bdgenai.modules.profile.models import BILLING_CYCLES, IDEA_STATUSES, Idea, ProfileLink, SocialMediaAccount, Subscription
from app.bdgenai.utils import clean_str, parse_datetime, parse_decimal, text_value

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.bdgenai.models import User

PROFILE_FIELDS = ("name", "image", "phone")
TEMP_ID_PREFIX = "temp-"


# ---------- Profile ----------
def monthly_spending(subscriptions: list[Subscription]) -> float:
    """MONTHLY cost plus YEARLY cost / 12, rounded to cents."""
    total = Decimal("0")
    for sub in subscriptions:
        cost = Decimal(sub.cost or 0)
        if sub.billing_cycle == "YEARLY":
            total += cost / 12
        else:
            total += cost
    return float(total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def profile_stats(s: "Session", user: "User") -> dict:
    from app.bdgenai.modules.checkout.models import Enrollment
    from app.bdgenai.modules.courses.models import Course
    from app.bdgenai.modules.posts.models import Comment, Post, Reaction

    def count(model) -> int:
        return s.query(func.count(model.id)).filter(model.user_id == user.id).scalar() or 0

    followers, following = (
        s.query(
            func.coalesce(func.sum(SocialMediaAccount.followers), 0),
            func.coalesce(func.sum(SocialMediaAccount.following), 0),
        )
        .filter(SocialMediaAccount.user_id == user.id, SocialMediaAccount.is_active.is_(True))
        .one()
    )
    subs = s.query(Subscription).filter(Subscription.user_id == user.id).all()
    return {
        "likes": count(Reaction),
        "posts": count(Post),
        "comments": count(Comment),
        "ideas": count(Idea),
        "courses": count(Course),
        "enrollments": count(Enrollment),
        "followers": int(followers or 0),
        "following": int(following or 0),
        "subscriptions": len(subs),
        "monthly_spending": monthly_spending(subs),
    }


def validate_profile_update(payload: dict) -> list[str]:
    errors = []
    if not any(k in payload for k in PROFILE_FIELDS):
        errors.append("No fields to update")
        return errors
    if "name" in payload and not text_value(payload.get("name")):
        errors.append("Name must not be blank")
    return errors


def update_profile(s: "Session", user: "User", payload: dict) -> "User":
    changed = []
    for field in PROFILE_FIELDS:
        if field in payload:
            setattr(user, field, clean_str(payload.get(field)))
            changed.append(field)
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="profile.update", entity_type="User", entity_id=user.id, metadata={"fields": changed})
    return user


def set_avatar(s: "Session", user: "User", url: str) -> "User":
    user.image = url
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="profile.avatar", entity_type="User", entity_id=user.id)
    return user


# ---------- Profile links ----------
def list_links(s: "Session", user_id: int) -> list[ProfileLink]:
    return (
        s.query(ProfileLink)
        .filter(ProfileLink.user_id == user_id)
        .order_by(ProfileLink.position.asc(), ProfileLink.id.asc())
        .all()
    )


def _is_new_link_id(raw: Any) -> bool:
    return raw in (None, "") or (isinstance(raw, str) and raw.startswith(TEMP_ID_PREFIX))


def validate_links_payload(links: Any) -> list[str]:
    if not isinstance(links, list):
        return ["links must be a list"]
    errors = []
    for i, link in enumerate(links):
        if not isinstance(link, dict):
            errors.append(f"links[{i}] must be an object")
            continue
        if not text_value(link.get("platform")):
            errors.append(f"links[{i}].platform is required")
        if not text_value(link.get("url")):
            errors.append(f"links[{i}].url is required")
        if not _is_new_link_id(link.get("id")):
            try:
                int(link["id"])
            except (TypeError, ValueError):
                errors.append(f"links[{i}].id is invalid")
    return errors


def sync_links(s: "Session", user_id: int, links: list[dict], actor: "User") -> list[ProfileLink]:
    """
    Make the stored links match the payload: temp-/missing ids are created, stored ids
    absent from the payload are deleted, the rest updated. Positions follow list order.
    """
    existing = {link.id: link for link in s.query(ProfileLink).filter(ProfileLink.user_id == user_id).all()}
    keep_ids = {int(link["id"]) for link in links if not _is_new_link_id(link.get("id"))}

    removed = [lid for lid in existing if lid not in keep_ids]
    for lid in removed:
        s.delete(existing[lid])

    now = datetime.utcnow()
    created = 0
    for position, link in enumerate(links):
        platform = link["platform"].strip()
        url = link["url"].strip()
        if _is_new_link_id(link.get("id")):
            s.add(ProfileLink(user_id=user_id, platform=platform, url=url, position=position, created_at=now, updated_at=now))
            created += 1
            continue
        row = existing.get(int(link["id"]))
        if row is None:
            # id from another user or already gone; treat as new
            s.add(ProfileLink(user_id=user_id, platform=platform, url=url, position=position, created_at=now, updated_at=now))
            created += 1
            continue
        row.platform = platform
        row.url = url
        row.position = position
        row.updated_at = now
    s.flush()

    record_event(
        s,
        actor=actor,
        action="profile_links.sync",
        entity_type="User",
        entity_id=user_id,
        metadata={"created": created, "deleted": len(removed), "total": len(links)},
    )
    return list_links(s, user_id)


def delete_link(s: "Session", user: "User", link_id: int) -> bool:
    link = s.query(ProfileLink).filter(ProfileLink.id == link_id, ProfileLink.user_id == user.id).one_or_none()
    if not link:
        return False
    s.delete(link)
    record_event(s, actor=user, action="profile_link.delete", entity_type="ProfileLink", entity_id=link_id)
    return True


# ---------- Ideas ----------
def validate_idea(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if (not partial or "title" in payload) and not text_value(payload.get("title")):
        errors.append("Title is required")
    if "status" in payload and payload.get("status") not in IDEA_STATUSES:
        errors.append(f"Status must be one of: {', '.join(IDEA_STATUSES)}")
    return errors


def create_idea(s: "Session", payload: dict, user: "User") -> Idea:
    now = datetime.utcnow()
    idea = Idea(
        user_id=user.id,
        title=payload["title"].strip(),
        description=clean_str(payload.get("description")),
        status=payload.get("status") or "draft",
        created_at=now,
        updated_at=now,
    )
    s.add(idea)
    s.flush()
    record_event(s, actor=user, action="idea.create", entity_type="Idea", entity_id=idea.id)
    return idea


def update_idea(s: "Session", idea: Idea, payload: dict, user: "User") -> Idea:
    if "title" in payload:
        idea.title = payload["title"].strip()
    if "description" in payload:
        idea.description = clean_str(payload.get("description"))
    if "status" in payload:
        idea.status = payload["status"]
    idea.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="idea.edit", entity_type="Idea", entity_id=idea.id)
    return idea


# ---------- Subscriptions ----------
def validate_subscription(payload: dict) -> list[str]:
    errors = []
    if not text_value(payload.get("name")):
        errors.append("Name is required")
    try:
        cost = parse_decimal(payload.get("cost"))
    except ValueError:
        errors.append("Cost must be a number")
    else:
        if cost is None:
            errors.append("Cost is required")
        elif cost < 0:
            errors.append("Cost must not be negative")
    cycle = text_value(payload.get("billing_cycle") or "MONTHLY").upper()
    if cycle not in BILLING_CYCLES:
        errors.append("billing_cycle must be MONTHLY or YEARLY")
    return errors


def create_subscription(s: "Session", payload: dict, user: "User") -> Subscription:
    sub = Subscription(
        user_id=user.id,
        name=payload["name"].strip(),
        cost=parse_decimal(payload.get("cost")),
        billing_cycle=text_value(payload.get("billing_cycle") or "MONTHLY").upper(),
        renewal_date=parse_datetime(payload.get("renewal_date")),
    )
    s.add(sub)
    s.flush()
    record_event(s, actor=user, action="subscription.create", entity_type="Subscription", entity_id=sub.id)
    return sub


# ---------- Social accounts ----------
def upsert_social_account(s: "Session", user: "User", platform: str, profile: dict, token: dict) -> SocialMediaAccount:
    account = (
        s.query(SocialMediaAccount)
        .filter(SocialMediaAccount.user_id == user.id, SocialMediaAccount.platform == platform)
        .one_or_none()
    )
    now = datetime.utcnow()
    created = account is None
    if created:
        account = SocialMediaAccount(user_id=user.id, platform=platform, created_at=now)
        s.add(account)

    expires_in = token.get("expires_in")
    account.platform_user_id = profile.get("platform_user_id") or account.platform_user_id
    account.username = profile.get("username")
    account.display_name = profile.get("display_name")
    account.profile_image_url = profile.get("profile_image_url")
    account.followers = profile.get("followers") or 0
    account.following = profile.get("following") or 0
    account.access_token = token.get("access_token")
    account.refresh_token = token.get("refresh_token") or account.refresh_token
    account.expires_at = now + timedelta(seconds=int(expires_in)) if expires_in else None
    account.is_active = True
    account.last_sync_at = now
    account.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="social_account.connect" if created else "social_account.refresh",
        entity_type="SocialMediaAccount",
        entity_id=account.id,
        metadata={"platform": platform, "username": account.username},
    )
    return account
