from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.bdgenai.audit import record_event
from app.bdgenai.modules.calendar.models import ACTIVITY_STATUSES, REMINDER_TYPES, TASK_PRIORITIES, Activity, CalendarEvent, Task
from app.bdgenai.utils import as_bool, clean_str, iso, parse_datetime, text_value

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.bdgenai.models import User

logger = logging.getLogger(__name__)

HEATMAP_MAX_DAYS = 366


# ---------- Calendar events ----------
def _all_day(payload: dict) -> bool | None:
    for key in ("is_all_day", "all_day"):
        if key in payload:
            return as_bool(payload.get(key))
    return None


def validate_event(payload: dict, *, partial: bool = False) -> tuple[list[str], dict[str, Any]]:
    """Return (errors, parsed) where parsed holds the datetime fields that were present."""
    errors: list[str] = []
    parsed: dict[str, Any] = {}
    if (not partial or "title" in payload) and not text_value(payload.get("title")):
        errors.append("Title is required")
    for field in ("start_date", "end_date"):
        if field not in payload and partial:
            continue
        try:
            value = parse_datetime(payload.get(field))
        except ValueError:
            errors.append(f"Invalid {field}")
            continue
        if value is None:
            errors.append(f"{field} is required")
        else:
            parsed[field] = value
    if "notifications" in payload and payload.get("notifications") is not None and not isinstance(payload.get("notifications"), list):
        errors.append("notifications must be a list")
    return errors, parsed


def check_event_range(start: datetime, end: datetime) -> list[str]:
    if end < start:
        return ["End date must be after start date"]
    return []


def list_events(s: "Session", user_id: int, start: datetime | None = None, end: datetime | None = None) -> list[CalendarEvent]:
    q = s.query(CalendarEvent).filter(CalendarEvent.user_id == user_id)
    # overlap: event ends after window start and starts before window end
    if start is not None:
        q = q.filter(CalendarEvent.end_date >= start)
    if end is not None:
        q = q.filter(CalendarEvent.start_date <= end)
    return q.order_by(CalendarEvent.start_date.asc(), CalendarEvent.id.asc()).all()


def create_event(s: "Session", payload: dict, parsed: dict[str, Any], user: "User") -> CalendarEvent:
    now = datetime.utcnow()
    event = CalendarEvent(
        user_id=user.id,
        title=payload["title"].strip(),
        description=clean_str(payload.get("description")),
        start_date=parsed["start_date"],
        end_date=parsed["end_date"],
        location=clean_str(payload.get("location")),
        is_all_day=bool(_all_day(payload)),
        color=clean_str(payload.get("color")),
        notifications=payload.get("notifications") or [],
        created_at=now,
        updated_at=now,
    )
    s.add(event)
    s.flush()
    record_event(s, actor=user, action="calendar_event.create", entity_type="CalendarEvent", entity_id=event.id)
    return event


def update_event(s: "Session", event: CalendarEvent, payload: dict, parsed: dict[str, Any], user: "User") -> CalendarEvent:
    if "title" in payload:
        event.title = payload["title"].strip()
    for field in ("description", "location", "color"):
        if field in payload:
            setattr(event, field, clean_str(payload.get(field)))
    if "start_date" in parsed:
        event.start_date = parsed["start_date"]
    if "end_date" in parsed:
        event.end_date = parsed["end_date"]
    all_day = _all_day(payload)
    if all_day is not None:
        event.is_all_day = all_day
    if "notifications" in payload:
        event.notifications = payload.get("notifications") or []
    event.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="calendar_event.edit", entity_type="CalendarEvent", entity_id=event.id)
    return event


# ---------- Tasks ----------
def validate_task(payload: dict, *, partial: bool = False) -> tuple[list[str], dict[str, Any]]:
    errors: list[str] = []
    parsed: dict[str, Any] = {}
    for field in ("title", "category"):
        if (not partial or field in payload) and not text_value(payload.get(field)):
            errors.append(f"{field.capitalize()} is required")
    if not partial or "priority" in payload:
        if payload.get("priority") not in TASK_PRIORITIES:
            errors.append(f"Priority must be one of: {', '.join(TASK_PRIORITIES)}")
    for field in ("due_date", "reminder_date"):
        if field not in payload:
            continue
        try:
            parsed[field] = parse_datetime(payload.get(field))
        except ValueError:
            errors.append(f"Invalid {field}")
    if not partial and parsed.get("due_date") is None and "Invalid due_date" not in errors:
        errors.append("Due date is required")

    if as_bool(payload.get("has_reminder")):
        if not partial or "reminder_date" in payload:
            if parsed.get("reminder_date") is None and "Invalid reminder_date" not in errors:
                errors.append("Reminder date is required when a reminder is set")
        if not partial or "reminder_type" in payload:
            if payload.get("reminder_type") not in REMINDER_TYPES:
                errors.append("Reminder type must be email or push")
    elif "reminder_type" in payload and payload.get("reminder_type") not in (None, *REMINDER_TYPES):
        errors.append("Reminder type must be email or push")
    return errors, parsed


def create_task(s: "Session", payload: dict, parsed: dict[str, Any], user: "User") -> Task:
    now = datetime.utcnow()
    has_reminder = as_bool(payload.get("has_reminder"))
    task = Task(
        user_id=user.id,
        title=payload["title"].strip(),
        description=clean_str(payload.get("description")),
        due_date=parsed["due_date"],
        priority=payload["priority"],
        category=payload["category"].strip(),
        completed=as_bool(payload.get("completed")),
        has_reminder=has_reminder,
        reminder_date=parsed.get("reminder_date") if has_reminder else None,
        reminder_type=payload.get("reminder_type") if has_reminder else None,
        reminder_sent=False,
        created_at=now,
        updated_at=now,
    )
    s.add(task)
    s.flush()
    record_event(s, actor=user, action="task.create", entity_type="Task", entity_id=task.id)
    return task


def update_task(s: "Session", task: Task, payload: dict, parsed: dict[str, Any], user: "User") -> Task:
    for field in ("title", "category"):
        if field in payload:
            setattr(task, field, payload[field].strip())
    if "description" in payload:
        task.description = clean_str(payload.get("description"))
    if "priority" in payload:
        task.priority = payload["priority"]
    if "due_date" in parsed and parsed["due_date"] is not None:
        task.due_date = parsed["due_date"]
    if "completed" in payload:
        task.completed = as_bool(payload.get("completed"))
    if "has_reminder" in payload:
        task.has_reminder = as_bool(payload.get("has_reminder"))
    if "reminder_type" in payload:
        task.reminder_type = payload.get("reminder_type")
    if "reminder_date" in parsed and parsed["reminder_date"] != task.reminder_date:
        task.reminder_date = parsed["reminder_date"]
        task.reminder_sent = False
    task.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="task.edit",
        entity_type="Task",
        entity_id=task.id,
        metadata={"fields": sorted(k for k in payload if k != "id")},
    )
    return task


def due_reminders(s: "Session", now: datetime) -> list[Task]:
    return (
        s.query(Task)
        .filter(
            Task.has_reminder.is_(True),
            Task.reminder_sent.is_(False),
            Task.completed.is_(False),
            Task.reminder_date.isnot(None),
            Task.reminder_date <= now,
        )
        .order_by(Task.reminder_date.asc(), Task.id.asc())
        .all()
    )


def process_reminders(s: "Session", now: datetime, send: Callable[..., bool]) -> list[dict]:
    """
    Send each due reminder and mark it sent. A failure on one task is reported
    in its result row and does not stop the others.
    """
    results = []
    for task in due_reminders(s, now):
        row = {"task_id": task.id, "user_id": task.user_id, "reminder_type": task.reminder_type}
        try:
            if task.reminder_type == "email" and task.user and task.user.email:
                send(
                    task.user.email,
                    title=task.title,
                    due=task.due_date.strftime("%Y-%m-%d"),
                    description=task.description,
                    priority=task.priority,
                    category=task.category,
                )
            task.reminder_sent = True
            task.updated_at = now
            s.flush()
            row["status"] = "sent"
        except Exception as e:
            logger.exception("Reminder failed (task_id=%s)", task.id)
            row["status"] = "error"
            row["error"] = str(e)
        results.append(row)
    return results


# ---------- Activities ----------
def clamp_progress(raw: Any) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, value))


def validate_activity(payload: dict, *, partial: bool = False) -> tuple[list[str], dict[str, Any]]:
    errors: list[str] = []
    parsed: dict[str, Any] = {}
    for field in ("title", "type"):
        if (not partial or field in payload) and not text_value(payload.get(field)):
            errors.append(f"{field.capitalize()} is required")
    if "status" in payload and payload.get("status") not in ACTIVITY_STATUSES:
        errors.append(f"Status must be one of: {', '.join(ACTIVITY_STATUSES)}")
    if "due_date" in payload:
        try:
            parsed["due_date"] = parse_datetime(payload.get("due_date"))
        except ValueError:
            errors.append("Invalid due_date")
    return errors, parsed


def _apply_completion(activity: Activity) -> None:
    if activity.status == "completed":
        activity.completed_at = activity.completed_at or datetime.utcnow()
        activity.progress = 100
    else:
        activity.completed_at = None


def create_activity(s: "Session", payload: dict, parsed: dict[str, Any], user: "User") -> Activity:
    now = datetime.utcnow()
    activity = Activity(
        user_id=user.id,
        type=payload["type"].strip(),
        title=payload["title"].strip(),
        description=clean_str(payload.get("description")),
        status=payload.get("status") or "planned",
        priority=clean_str(payload.get("priority")),
        due_date=parsed.get("due_date"),
        progress=clamp_progress(payload.get("progress", 0)),
        created_at=now,
        updated_at=now,
    )
    _apply_completion(activity)
    s.add(activity)
    s.flush()
    record_event(s, actor=user, action="activity.create", entity_type="Activity", entity_id=activity.id)
    return activity


def update_activity(s: "Session", activity: Activity, payload: dict, parsed: dict[str, Any], user: "User") -> Activity:
    for field in ("title", "type"):
        if field in payload:
            setattr(activity, field, payload[field].strip())
    if "description" in payload:
        activity.description = clean_str(payload.get("description"))
    if "priority" in payload:
        activity.priority = clean_str(payload.get("priority"))
    if "due_date" in parsed:
        activity.due_date = parsed["due_date"]
    if "progress" in payload:
        activity.progress = clamp_progress(payload.get("progress"))
    if "status" in payload:
        activity.status = payload["status"]
        _apply_completion(activity)
    activity.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="activity.edit", entity_type="Activity", entity_id=activity.id)
    return activity


def _derived(id_: str, type_: str, title: str, description: str | None, status: str, progress: int, created_at, completed_at=None) -> dict:
    return {
        "id": id_,
        "type": type_,
        "title": title,
        "description": description,
        "status": status,
        "priority": None,
        "due_date": None,
        "completed_at": iso(completed_at),
        "progress": progress,
        "created_at": iso(created_at),
        "updated_at": iso(created_at),
    }


def derived_activities(s: "Session", user_id: int) -> list[dict]:
    """Activity feed built from the user's posts, ideas, courses, links and social accounts."""
    from app.bdgenai.modules.courses.models import Course
    from app.bdgenai.modules.posts.models import Post
    from app.bdgenai.modules.profile.models import Idea, ProfileLink, SocialMediaAccount

    out: list[dict] = []
    for post in s.query(Post).filter(Post.user_id == user_id).all():
        out.append(_derived(f"post-{post.id}", "script", f"Blog Post: {post.title}", post.description, "completed", 100, post.created_at, post.created_at))
    for idea in s.query(Idea).filter(Idea.user_id == user_id).all():
        done = idea.status == "done"
        out.append(
            _derived(
                f"idea-{idea.id}",
                "idea",
                f"Idea: {idea.title}",
                idea.description,
                "completed" if done else "in-progress",
                100 if done else 30,
                idea.created_at,
                idea.updated_at if done else None,
            )
        )
    for course in s.query(Course).filter(Course.user_id == user_id).all():
        out.append(
            _derived(
                f"course-{course.id}",
                "plan",
                f"Course: {course.title}",
                course.description,
                "completed" if course.is_published else "in-progress",
                100 if course.is_published else 60,
                course.created_at,
            )
        )
    for link in s.query(ProfileLink).filter(ProfileLink.user_id == user_id).all():
        out.append(_derived(f"link-{link.id}", "subscription", f"Connected: {link.platform}", link.url, "completed", 100, link.created_at))
    for account in s.query(SocialMediaAccount).filter(SocialMediaAccount.user_id == user_id).all():
        out.append(
            _derived(
                f"social-{account.id}",
                "subscription",
                f"Connected: {account.platform}",
                account.username,
                "completed" if account.is_active else "in-progress",
                100 if account.is_active else 50,
                account.created_at,
            )
        )
    out.sort(key=lambda a: a["created_at"] or "", reverse=True)
    return out


def activity_heatmap(s: "Session", user_id: int, days: int, today: date | None = None) -> dict[str, int]:
    """
    {YYYY-MM-DD: count} for each of the last `days` days (today included), counting
    activities, posts and comments the user created.
    """
    from app.bdgenai.modules.posts.models import Comment, Post

    days = max(1, min(days, HEATMAP_MAX_DAYS))
    today = today or datetime.utcnow().date()
    first = today - timedelta(days=days - 1)
    since = datetime.combine(first, datetime.min.time())

    counts = {(first + timedelta(days=i)).isoformat(): 0 for i in range(days)}
    for model in (Activity, Post, Comment):
        rows = (
            s.query(model.created_at)
            .filter(model.user_id == user_id, model.created_at >= since)
            .all()
        )
        for (created_at,) in rows:
            key = created_at.date().isoformat()
            if key in counts:
                counts[key] += 1
    return counts


def task_counts(s: "Session", user_id: int) -> tuple[int, int]:
    """(completed, pending)"""
    rows = dict(
        s.query(Task.completed, func.count(Task.id))
        .filter(Task.user_id == user_id)
        .group_by(Task.completed)
        .all()
    )
    return int(rows.get(True, 0)), int(rows.get(False, 0))
