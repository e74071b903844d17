import hmac
import secrets

from flask import Request, session

# Endpoints authenticated by something other than the session cookie.
CSRF_EXEMPT_ENDPOINTS = frozenset({"checkout_api.stripe_webhook", "calendar_api.task_reminders_cron"})


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header, form, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")

    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")

    expected = session.get("csrf_token")
    return bool(token and expected and hmac.compare_digest(str(token), str(expected)))


def is_csrf_exempt(endpoint: str | None) -> bool:
    endpoint = endpoint or ""
    return endpoint.startswith("auth.") or endpoint in CSRF_EXEMPT_ENDPOINTS
