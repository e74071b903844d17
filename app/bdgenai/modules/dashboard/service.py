from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.bdgenai.models import User

GROWTH_MONTHS = 6
RECENT_USERS = 10
RECENT_ACTIVITIES = 5
UPCOMING_DAYS = 7


def growth_rate(new_in_window: int, before_window: int) -> float:
    """New users in the window relative to the users that existed before it, as a percentage."""
    if not before_window:
        return 0.0
    return round(new_in_window / before_window * 100, 1)


def last_months(now: datetime, n: int = GROWTH_MONTHS) -> list[str]:
    """The n most recent months as YYYY-MM, oldest first (current month last)."""
    year, month = now.year, now.month
    out = []
    for _ in range(n):
        out.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return list(reversed(out))


def _month_start(ym: str) -> datetime:
    year, month = ym.split("-")
    return datetime(int(year), int(month), 1)


def user_growth(s: "Session", now: datetime) -> list[dict]:
    from app.bdgenai.models import User

    months = last_months(now)
    since = _month_start(months[0])
    counts = {m: 0 for m in months}
    for (created_at,) in s.query(User.created_at).filter(User.created_at >= since).all():
        key = created_at.strftime("%Y-%m")
        if key in counts:
            counts[key] += 1
    return [{"month": m, "count": counts[m]} for m in months]


def auth_provider_counts(s: "Session") -> dict[str, int]:
    from app.bdgenai.models import Account, User

    out = {provider: n for provider, n in s.query(Account.provider, func.count(Account.id)).group_by(Account.provider).all()}
    out["credentials"] = s.query(func.count(User.id)).filter(User.password_hash.isnot(None)).scalar() or 0
    return out


def admin_overview(s: "Session", now: datetime | None = None) -> dict:
    from app.bdgenai.models import User
    from app.bdgenai.modules.checkout.models import Enrollment
    from app.bdgenai.modules.courses.models import Course
    from app.bdgenai.modules.posts.models import Post

    now = now or datetime.utcnow()
    month_ago = now - timedelta(days=30)
    week_ago = now - timedelta(days=7)

    def users_since(when: datetime) -> int:
        return s.query(func.count(User.id)).filter(User.created_at >= when).scalar() or 0

    total_users = s.query(func.count(User.id)).scalar() or 0
    last_30 = users_since(month_ago)
    last_7 = users_since(week_ago)
    verified = s.query(func.count(User.id)).filter(User.email_verified.isnot(None)).scalar() or 0
    recent = s.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(RECENT_USERS).all()

    return {
        "total_users": total_users,
        "users_last_30_days": last_30,
        "users_last_7_days": last_7,
        "verified_users": verified,
        "verification_rate": round(verified / total_users * 100, 1) if total_users else 0.0,
        "monthly_growth_rate": growth_rate(last_30, total_users - last_30),
        "weekly_growth_rate": growth_rate(last_7, total_users - last_7),
        "auth_providers": auth_provider_counts(s),
        "user_growth": user_growth(s, now),
        "recent_users": [u.to_dict() for u in recent],
        "total_courses": s.query(func.count(Course.id)).scalar() or 0,
        "published_courses": s.query(func.count(Course.id)).filter(Course.is_published.is_(True)).scalar() or 0,
        "total_enrollments": s.query(func.count(Enrollment.id)).scalar() or 0,
        "total_posts": s.query(func.count(Post.id)).scalar() or 0,
    }


def user_overview(s: "Session", user: "User", now: datetime | None = None) -> dict:
    from app.bdgenai.modules.calendar.models import Activity, CalendarEvent, Task
    from app.bdgenai.modules.calendar.service import derived_activities, task_counts
    from app.bdgenai.modules.checkout.models import Enrollment
    from app.bdgenai.modules.courses.models import Course
    from app.bdgenai.modules.posts.models import Post

    now = now or datetime.utcnow()
    completed, pending = task_counts(s, user.id)

    enrollments = (
        s.query(Enrollment)
        .filter(Enrollment.user_id == user.id)
        .order_by(Enrollment.created_at.desc())
        .all()
    )
    upcoming = (
        s.query(CalendarEvent)
        .filter(
            CalendarEvent.user_id == user.id,
            CalendarEvent.start_date >= now,
            CalendarEvent.start_date <= now + timedelta(days=UPCOMING_DAYS),
        )
        .order_by(CalendarEvent.start_date.asc())
        .all()
    )
    overdue = (
        s.query(Task)
        .filter(Task.user_id == user.id, Task.completed.is_(False), Task.due_date < now)
        .order_by(Task.due_date.asc())
        .all()
    )
    activity_rows = (
        s.query(Activity)
        .filter(Activity.user_id == user.id)
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .limit(RECENT_ACTIVITIES)
        .all()
    )
    recent_activities = [a.to_dict() for a in activity_rows] or derived_activities(s, user.id)[:RECENT_ACTIVITIES]

    return {
        "stats": {
            "enrolled_courses": len(enrollments),
            "created_courses": s.query(func.count(Course.id)).filter(Course.user_id == user.id).scalar() or 0,
            "posts": s.query(func.count(Post.id)).filter(Post.user_id == user.id).scalar() or 0,
            "completed_tasks": completed,
            "pending_tasks": pending,
        },
        "upcoming_events": [e.to_dict() for e in upcoming],
        "overdue_tasks": [t.to_dict() for t in overdue],
        "recent_activities": recent_activities,
        "enrolled_courses": [
            {
                "id": e.course.id,
                "title": e.course.title,
                "image_url": e.course.image_url,
                "chapter_count": len(e.course.chapters),
                "enrolled_at": e.created_at.isoformat(),
            }
            for e in enrollments
        ],
    }
