from __future__ import annotations

import secrets
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, abort, current_app, g, jsonify, redirect, request, session, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from app.bdgenai.audit import record_event
from app.bdgenai.db import db_session
from app.bdgenai.errors import error_response
from app.bdgenai.mail import MailError, send_password_reset_email, send_verification_email
from app.bdgenai.models import Account, AuthToken, Role, User
from app.bdgenai.oauth import SIGN_IN_PROVIDERS, require_oauth_client
from app.bdgenai.rbac import USER_ROLE, is_admin, require_login
from app.bdgenai.security import ensure_csrf_token
from app.bdgenai.utils import json_payload, text_value

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
TOKEN_TTL = timedelta(hours=1)
MIN_PASSWORD_LENGTH = 6


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    recent = [t for t in _login_attempts.get(ip, ()) if t > cutoff]
    if not recent:
        _login_attempts.pop(ip, None)
        return False
    _login_attempts[ip] = recent
    return len(recent) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _landing_path(user: User) -> str:
    return "/dashboard/admin" if is_admin(user) else "/dashboard"


def _default_role(s) -> Role:
    role = s.query(Role).filter(Role.key == USER_ROLE).one_or_none()
    if not role:
        role = Role(key=USER_ROLE, name="User")
        s.add(role)
    return role


def issue_token(s, email: str, purpose: str) -> AuthToken:
    """Replace any outstanding token of this purpose for the email with a fresh one."""
    s.query(AuthToken).filter(AuthToken.email == email, AuthToken.purpose == purpose).delete()
    tok = AuthToken(
        email=email,
        token=secrets.token_urlsafe(32),
        purpose=purpose,
        expires_at=datetime.utcnow() + TOKEN_TTL,
    )
    s.add(tok)
    s.flush()
    return tok


def _consume_token(s, token: str, purpose: str) -> AuthToken | None:
    tok = s.query(AuthToken).filter(AuthToken.token == token, AuthToken.purpose == purpose).one_or_none()
    if not tok:
        return None
    if tok.expires_at < datetime.utcnow():
        s.delete(tok)
        return None
    return tok


def _send_verification(s, email: str) -> None:
    tok = issue_token(s, email, "email_verification")
    try:
        send_verification_email(email, tok.token)
    except MailError as e:
        current_app.logger.error("Verification email failed (email=%s): %s", email, e)


@bp.get("/csrf")
def csrf_get():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.post("/register")
def register_post():
    payload = json_payload()
    email = text_value(payload.get("email")).lower()
    password = str(payload.get("password") or "")
    name = text_value(payload.get("name")) or None

    if not email or "@" not in email:
        return error_response(400, "Email is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        return error_response(400, f"Minimum {MIN_PASSWORD_LENGTH} characters required")

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        return error_response(409, "Email already in use!")

    user = User(email=email, name=name, password_hash=generate_password_hash(password), is_active=True)
    user.roles.append(_default_role(s))
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=user.id)
    _send_verification(s, email)
    s.commit()
    current_app.logger.info("User registered: id=%s", user.id)
    return jsonify({"user": user.to_dict(), "message": "Confirmation email sent!"}), 201


@bp.post("/login")
def login_post():
    payload = json_payload() or request.form.to_dict()
    email = text_value(payload.get("email")).lower()
    password = str(payload.get("password") or "")
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return error_response(429, "Too many login attempts. Please wait 5 minutes.")

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if (
            not user
            or not user.is_active
            or not user.password_hash
            or not check_password_hash(user.password_hash, password)
        ):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return error_response(401, "Invalid credentials!")

        if current_app.config.get("REQUIRE_EMAIL_VERIFICATION") and not user.email_verified:
            _send_verification(s, user.email)
            s.commit()
            return error_response(403, "Confirmation email sent!")

        session["user_id"] = user.id
        _login_attempts.pop(ip, None)
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id)
        s.commit()
        return jsonify({"user": user.to_dict(), "redirect": _landing_path(user)})
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
        s.commit()
    session.pop("user_id", None)
    return jsonify({"success": True})


@bp.get("/me")
@require_login
def me():
    return jsonify({"user": g.current_user.to_dict()})


@bp.post("/new-verification")
def new_verification_post():
    token = text_value(json_payload().get("token"))
    if not token:
        return error_response(400, "Missing token!")
    s = db_session()
    tok = _consume_token(s, token, "email_verification")
    if not tok:
        s.commit()
        return error_response(400, "Token does not exist or has expired!")
    user = s.query(User).filter(User.email == tok.email).one_or_none()
    if not user:
        return error_response(400, "Email does not exist!")
    user.email_verified = datetime.utcnow()
    s.delete(tok)
    record_event(s, actor=user, action="auth.email_verified", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"success": "Email verified!"})


@bp.post("/reset")
def reset_post():
    email = text_value(json_payload().get("email")).lower()
    if not email:
        return error_response(400, "Email is required")
    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if user:
        tok = issue_token(s, email, "password_reset")
        record_event(s, actor=user, action="auth.password_reset_requested", entity_type="User", entity_id=user.id)
        s.commit()
        try:
            send_password_reset_email(email, tok.token)
        except MailError as e:
            current_app.logger.error("Password reset email failed (email=%s): %s", email, e)
    # Same response either way; do not leak which emails exist.
    return jsonify({"success": "Reset email sent!"})


@bp.post("/new-password")
def new_password_post():
    payload = json_payload()
    token = text_value(payload.get("token"))
    password = str(payload.get("password") or "")
    if not token:
        return error_response(400, "Missing token!")
    if len(password) < MIN_PASSWORD_LENGTH:
        return error_response(400, f"Minimum {MIN_PASSWORD_LENGTH} characters required")
    s = db_session()
    tok = _consume_token(s, token, "password_reset")
    if not tok:
        s.commit()
        return error_response(400, "Invalid token!")
    user = s.query(User).filter(User.email == tok.email).one_or_none()
    if not user:
        return error_response(400, "Email does not exist!")
    user.password_hash = generate_password_hash(password)
    user.updated_at = datetime.utcnow()
    s.delete(tok)
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"success": "Password updated!"})


# ---------- OAuth sign-in ----------
def _check_provider(provider: str) -> None:
    if provider not in SIGN_IN_PROVIDERS:
        abort(404, description="Unknown provider")


def _oauth_profile(provider: str, client, token: dict) -> tuple[str, str, str | None, str | None]:
    """Return (provider_account_id, email, name, image) for the signed-in account."""
    if provider == "google":
        # authorize_access_token() already validated the id_token (nonce included)
        info = token.get("userinfo") or client.userinfo(token=token)
        return str(info["sub"]), (info.get("email") or "").lower(), info.get("name"), info.get("picture")

    # github
    profile = client.get("user", token=token).json()
    email = profile.get("email")
    if not email:
        emails = client.get("user/emails", token=token).json() or []
        primary = next((e for e in emails if e.get("primary") and e.get("verified")), None)
        email = primary.get("email") if primary else None
    return str(profile["id"]), (email or "").lower(), profile.get("name") or profile.get("login"), profile.get("avatar_url")


@bp.get("/oauth/<provider>/login")
def oauth_login(provider: str):
    _check_provider(provider)
    client = require_oauth_client(provider)
    callback = url_for("auth.oauth_callback", provider=provider, _external=True)
    return client.authorize_redirect(callback)


@bp.get("/oauth/<provider>/callback")
def oauth_callback(provider: str):
    _check_provider(provider)
    client = require_oauth_client(provider)
    try:
        token = client.authorize_access_token()
        account_id, email, name, image = _oauth_profile(provider, client, token)
    except Exception:
        current_app.logger.exception("OAuth callback failed (provider=%s request_id=%s)", provider, getattr(g, "request_id", None))
        return redirect("/auth/error?error=OAuthCallbackError")
    if not email:
        return redirect("/auth/error?error=OAuthAccountNotLinked")

    s = db_session()
    account = (
        s.query(Account)
        .filter(Account.provider == provider, Account.provider_account_id == account_id)
        .one_or_none()
    )
    if account:
        user = account.user
    else:
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user:
            user = User(email=email, name=name, image=image, is_active=True)
            user.roles.append(_default_role(s))
            s.add(user)
            s.flush()
            record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=user.id, metadata={"provider": provider})
        s.add(Account(user_id=user.id, provider=provider, provider_account_id=account_id))
    # OAuth providers vouch for the address
    if not user.email_verified:
        user.email_verified = datetime.utcnow()
    session["user_id"] = user.id
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id, metadata={"provider": provider})
    s.commit()
    return redirect(_landing_path(user))
