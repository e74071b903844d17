from __future__ import annotations

import hmac
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from app.bdgenai.audit import record_event
from app.bdgenai.db import db_session
from app.bdgenai.errors import error_response
from app.bdgenai.mail import send_task_reminder_email
from app.bdgenai.modules.calendar.models import Activity, CalendarEvent, Task
from app.bdgenai.modules.calendar.service import (
    activity_heatmap,
    check_event_range,
    create_activity,
    create_event,
    create_task,
    derived_activities,
    list_events,
    process_reminders,
    update_activity,
    update_event,
    update_task,
    validate_activity,
    validate_event,
    validate_task,
)
from app.bdgenai.rbac import current_user, require_login
from app.bdgenai.utils import json_payload, parse_datetime

bp = Blueprint("calendar_api", __name__)


# ---------- Calendar events ----------
@bp.get("/calendar/events")
@require_login
def events_list():
    s = db_session()
    user = current_user()
    raw_user_id = (request.args.get("user_id") or "").strip()
    if not raw_user_id:
        return error_response(400, "User ID is required")
    if raw_user_id != str(user.id):
        return error_response(403, "Forbidden")
    try:
        start = parse_datetime(request.args.get("start"))
        end = parse_datetime(request.args.get("end"))
    except ValueError:
        return error_response(400, "Invalid date range")
    events = list_events(s, user.id, start, end)
    return jsonify({"success": True, "data": [e.to_dict() for e in events]})


@bp.post("/calendar/events")
@require_login
def events_create():
    s = db_session()
    payload = json_payload()
    payload.pop("category", None)
    errors, parsed = validate_event(payload)
    if not errors:
        errors = check_event_range(parsed["start_date"], parsed["end_date"])
    if errors:
        return error_response(400, errors[0], errors=errors)
    event = create_event(s, payload, parsed, current_user())
    s.commit()
    return jsonify({"success": True, "data": event.to_dict()}), 201


def _owned_event(event_id: int) -> CalendarEvent | None:
    return (
        db_session()
        .query(CalendarEvent)
        .filter(CalendarEvent.id == event_id, CalendarEvent.user_id == current_user().id)
        .one_or_none()
    )


@bp.put("/calendar/events/<int:event_id>")
@require_login
def event_update(event_id: int):
    s = db_session()
    event = _owned_event(event_id)
    if not event:
        return error_response(404, "Event not found")
    payload = json_payload()
    payload.pop("category", None)
    errors, parsed = validate_event(payload, partial=True)
    if not errors:
        errors = check_event_range(parsed.get("start_date", event.start_date), parsed.get("end_date", event.end_date))
    if errors:
        return error_response(400, errors[0], errors=errors)
    update_event(s, event, payload, parsed, current_user())
    s.commit()
    return jsonify({"success": True, "data": event.to_dict()})


@bp.delete("/calendar/events/<int:event_id>")
@require_login
def event_delete(event_id: int):
    s = db_session()
    event = _owned_event(event_id)
    if not event:
        return error_response(404, "Event not found")
    record_event(s, actor=current_user(), action="calendar_event.delete", entity_type="CalendarEvent", entity_id=event.id)
    s.delete(event)
    s.commit()
    return jsonify({"success": True})


# ---------- Tasks ----------
@bp.get("/tasks")
@require_login
def tasks_list():
    s = db_session()
    tasks = s.query(Task).filter(Task.user_id == current_user().id).order_by(Task.due_date.asc(), Task.id.asc()).all()
    return jsonify([t.to_dict() for t in tasks])


@bp.post("/tasks")
@require_login
def tasks_create():
    s = db_session()
    payload = json_payload()
    errors, parsed = validate_task(payload)
    if errors:
        return error_response(400, errors[0], errors=errors)
    task = create_task(s, payload, parsed, current_user())
    s.commit()
    return jsonify(task.to_dict()), 201


@bp.patch("/tasks")
@require_login
def tasks_update():
    s = db_session()
    payload = json_payload()
    try:
        task_id = int(payload.get("id"))
    except (TypeError, ValueError):
        return error_response(400, "Task ID is required")
    task = s.query(Task).filter(Task.id == task_id, Task.user_id == current_user().id).one_or_none()
    if not task:
        return error_response(404, "Task not found")
    errors, parsed = validate_task(payload, partial=True)
    if errors:
        return error_response(400, errors[0], errors=errors)
    update_task(s, task, payload, parsed, current_user())
    s.commit()
    return jsonify(task.to_dict())


@bp.delete("/tasks")
@require_login
def tasks_delete():
    s = db_session()
    task_id = request.args.get("task_id", type=int)
    if task_id is None:
        return error_response(400, "Task ID is required")
    task = s.query(Task).filter(Task.id == task_id, Task.user_id == current_user().id).one_or_none()
    if not task:
        return error_response(404, "Task not found")
    record_event(s, actor=current_user(), action="task.delete", entity_type="Task", entity_id=task.id)
    s.delete(task)
    s.commit()
    return "", 204


@bp.get("/cron/task-reminders")
def task_reminders_cron():
    secret = current_app.config.get("CRON_SECRET") or ""
    header = request.headers.get("Authorization") or ""
    if not secret or not hmac.compare_digest(header, f"Bearer {secret}"):
        return error_response(401, "Unauthorized")

    s = db_session()
    results = process_reminders(s, datetime.utcnow(), send_task_reminder_email)
    s.commit()
    current_app.logger.info(
        "Task reminders processed: %s (errors=%s)", len(results), sum(1 for r in results if r["status"] == "error")
    )
    return jsonify({"processed": len(results), "results": results})


# ---------- Activities ----------
@bp.get("/activities")
@require_login
def activities_list():
    s = db_session()
    user = current_user()
    rows = s.query(Activity).filter(Activity.user_id == user.id).order_by(Activity.created_at.desc(), Activity.id.desc()).all()
    if rows:
        return jsonify([a.to_dict() for a in rows])
    return jsonify(derived_activities(s, user.id))


@bp.post("/activities")
@require_login
def activities_create():
    s = db_session()
    payload = json_payload()
    errors, parsed = validate_activity(payload)
    if errors:
        return error_response(400, errors[0], errors=errors)
    activity = create_activity(s, payload, parsed, current_user())
    s.commit()
    return jsonify(activity.to_dict()), 201


@bp.get("/activities/heatmap")
@require_login
def activities_heatmap():
    days = request.args.get("days", 365, type=int) or 365
    return jsonify(activity_heatmap(db_session(), current_user().id, days))


def _owned_activity(activity_id: int) -> Activity | None:
    return (
        db_session()
        .query(Activity)
        .filter(Activity.id == activity_id, Activity.user_id == current_user().id)
        .one_or_none()
    )


@bp.patch("/activities/<int:activity_id>")
@require_login
def activity_update(activity_id: int):
    s = db_session()
    activity = _owned_activity(activity_id)
    if not activity:
        return error_response(404, "Activity not found")
    payload = json_payload()
    errors, parsed = validate_activity(payload, partial=True)
    if errors:
        return error_response(400, errors[0], errors=errors)
    update_activity(s, activity, payload, parsed, current_user())
    s.commit()
    return jsonify(activity.to_dict())


@bp.delete("/activities/<int:activity_id>")
@require_login
def activity_delete(activity_id: int):
    s = db_session()
    activity = _owned_activity(activity_id)
    if not activity:
        return error_response(404, "Activity not found")
    record_event(s, actor=current_user(), action="activity.delete", entity_type="Activity", entity_id=activity.id)
    s.delete(activity)
    s.commit()
    return jsonify({"success": True})
