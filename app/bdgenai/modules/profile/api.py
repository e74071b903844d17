from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, redirect, request, url_for

from app.bdgenai.audit import record_event
from app.bdgenai.db import db_session
from app.bdgenai.errors import error_response
from app.bdgenai.kv import check_rate_limit, get_kv
from app.bdgenai.modules.profile.models import Idea, SocialMediaAccount, Subscription
from app.bdgenai.modules.profile.service import (
    create_idea,
    create_subscription,
    delete_link,
    list_links,
    profile_stats,
    set_avatar,
    sync_links,
    update_idea,
    update_profile,
    upsert_social_account,
    validate_idea,
    validate_links_payload,
    validate_profile_update,
    validate_subscription,
)
from app.bdgenai.modules.profile.social import PLATFORM_CONFIGS, normalize_profile, profile_headers, social_client_name
from app.bdgenai.oauth import oauth_client
from app.bdgenai.rbac import current_user, is_admin, require_login
from app.bdgenai.storage import StorageError, build_upload_key, storage_from_config
from app.bdgenai.utils import json_payload

bp = Blueprint("profile_api", __name__)

MAX_FILE_SIZE = 10 * 1024 * 1024


# ---------- Profile ----------
@bp.get("/profile")
@require_login
def profile_get():
    s = db_session()
    user = current_user()
    return jsonify({**user.to_dict(), "stats": profile_stats(s, user)})


@bp.patch("/profile")
@require_login
def profile_patch():
    s = db_session()
    payload = json_payload()
    errors = validate_profile_update(payload)
    if errors:
        return error_response(400, errors[0], errors=errors)
    user = update_profile(s, current_user(), payload)
    s.commit()
    return jsonify(user.to_dict())


# ---------- Profile links ----------
@bp.get("/profile/links")
@require_login
def profile_links_get():
    links = list_links(db_session(), current_user().id)
    return jsonify([link.to_dict() for link in links])


@bp.post("/users/<int:user_id>/profile-links")
@require_login
def profile_links_sync(user_id: int):
    s = db_session()
    user = current_user()
    if user.id != user_id and not is_admin(user):
        return error_response(403, "Forbidden")
    links = json_payload().get("links")
    errors = validate_links_payload(links)
    if errors:
        return error_response(400, errors[0], errors=errors)
    result = sync_links(s, user_id, links, user)
    s.commit()
    return jsonify([link.to_dict() for link in result])


@bp.delete("/profile/links")
@require_login
def profile_link_delete():
    s = db_session()
    link_id = request.args.get("link_id", type=int)
    if link_id is None:
        return error_response(400, "Link ID is required")
    if not delete_link(s, current_user(), link_id):
        return error_response(404, "Link not found")
    s.commit()
    return "", 204


# ---------- Ideas ----------
@bp.get("/ideas")
@require_login
def ideas_list():
    s = db_session()
    ideas = s.query(Idea).filter(Idea.user_id == current_user().id).order_by(Idea.created_at.desc()).all()
    return jsonify([i.to_dict() for i in ideas])


@bp.post("/ideas")
@require_login
def ideas_create():
    s = db_session()
    payload = json_payload()
    errors = validate_idea(payload)
    if errors:
        return error_response(400, errors[0], errors=errors)
    idea = create_idea(s, payload, current_user())
    s.commit()
    return jsonify(idea.to_dict()), 201


def _owned_idea(idea_id: int) -> Idea | None:
    return db_session().query(Idea).filter(Idea.id == idea_id, Idea.user_id == current_user().id).one_or_none()


@bp.patch("/ideas/<int:idea_id>")
@require_login
def idea_update(idea_id: int):
    s = db_session()
    idea = _owned_idea(idea_id)
    if not idea:
        return error_response(404, "Idea not found")
    payload = json_payload()
    errors = validate_idea(payload, partial=True)
    if errors:
        return error_response(400, errors[0], errors=errors)
    update_idea(s, idea, payload, current_user())
    s.commit()
    return jsonify(idea.to_dict())


@bp.delete("/ideas/<int:idea_id>")
@require_login
def idea_delete(idea_id: int):
    s = db_session()
    idea = _owned_idea(idea_id)
    if not idea:
        return error_response(404, "Idea not found")
    record_event(s, actor=current_user(), action="idea.delete", entity_type="Idea", entity_id=idea.id)
    s.delete(idea)
    s.commit()
    return jsonify({"success": True})


# ---------- Subscriptions ----------
@bp.get("/subscriptions")
@require_login
def subscriptions_list():
    s = db_session()
    subs = (
        s.query(Subscription)
        .filter(Subscription.user_id == current_user().id)
        .order_by(Subscription.created_at.desc())
        .all()
    )
    return jsonify([sub.to_dict() for sub in subs])


@bp.post("/subscriptions")
@require_login
def subscriptions_create():
    s = db_session()
    payload = json_payload()
    errors = validate_subscription(payload)
    if errors:
        return error_response(400, errors[0], errors=errors)
    try:
        sub = create_subscription(s, payload, current_user())
    except ValueError:
        return error_response(400, "Invalid renewal_date")
    s.commit()
    return jsonify(sub.to_dict()), 201


@bp.delete("/subscriptions/<int:subscription_id>")
@require_login
def subscription_delete(subscription_id: int):
    s = db_session()
    sub = (
        s.query(Subscription)
        .filter(Subscription.id == subscription_id, Subscription.user_id == current_user().id)
        .one_or_none()
    )
    if not sub:
        return error_response(404, "Subscription not found")
    record_event(s, actor=current_user(), action="subscription.delete", entity_type="Subscription", entity_id=sub.id)
    s.delete(sub)
    s.commit()
    return jsonify({"success": True})


# ---------- Uploads ----------
def _read_upload(f) -> bytes | None:
    """File bytes, or None when the file is over MAX_FILE_SIZE."""
    data = f.read(MAX_FILE_SIZE + 1)
    if len(data) > MAX_FILE_SIZE:
        return None
    return data


@bp.post("/upload")
@require_login
def upload():
    user = current_user()
    files = [f for f in request.files.getlist("file") if f and f.filename]
    if not files:
        return error_response(400, "No files uploaded")

    limit = check_rate_limit(get_kv(), "upload", user.id)
    if limit.limited:
        return error_response(429, "Too many uploads. Please try again later.", rate_limit_info=limit.to_dict())

    # Size-check the whole batch before anything reaches storage.
    contents = []
    for f in files:
        data = _read_upload(f)
        if data is None:
            return error_response(413, f"File too large. Maximum size is {MAX_FILE_SIZE // (1024 * 1024)}MB")
        contents.append((f, data))

    storage = storage_from_config(current_app.config)
    uploaded = []
    for f, data in contents:
        try:
            stored = storage.put_bytes(build_upload_key(user.id, f.filename), data, content_type=f.mimetype)
        except StorageError as e:
            current_app.logger.error("Upload failed (user_id=%s request_id=%s): %s", user.id, getattr(g, "request_id", None), e)
            return error_response(500, "Failed to upload file. Please try again.")
        uploaded.append({"public_id": stored.public_id, "url": stored.url})

    return jsonify({"message": "Files uploaded successfully", "uploaded_files": uploaded})


@bp.post("/profile/avatar")
@require_login
def avatar_upload():
    s = db_session()
    user = current_user()
    f = request.files.get("file")
    if not f or not f.filename:
        return error_response(400, "No file uploaded")
    if not (f.mimetype or "").startswith("image/"):
        return error_response(400, "Avatar must be an image")
    data = _read_upload(f)
    if data is None:
        return error_response(413, f"File too large. Maximum size is {MAX_FILE_SIZE // (1024 * 1024)}MB")
    try:
        stored = storage_from_config(current_app.config).put_bytes(
            build_upload_key(user.id, f.filename), data, content_type=f.mimetype
        )
    except StorageError as e:
        current_app.logger.error("Avatar upload failed (user_id=%s): %s", user.id, e)
        return error_response(500, "Failed to upload file. Please try again.")
    set_avatar(s, user, stored.url)
    s.commit()
    return jsonify({"image": user.image})


# ---------- Social accounts ----------
def _platform_client(platform: str):
    """(client, error_response) for a social platform."""
    if platform not in PLATFORM_CONFIGS:
        return None, error_response(400, "Platform not supported")
    client = oauth_client(social_client_name(platform))
    if client is None:
        return None, error_response(500, "Platform not configured")
    return client, None


@bp.get("/social/<platform>/connect")
@require_login
def social_connect(platform: str):
    platform = platform.lower()
    client, err = _platform_client(platform)
    if err:
        return err
    callback = url_for("profile_api.social_callback", platform=platform, _external=True)
    return client.authorize_redirect(callback)


@bp.get("/social/<platform>/callback")
@require_login
def social_callback(platform: str):
    platform = platform.lower()
    client, err = _platform_client(platform)
    if err:
        return err
    app_url = current_app.config["APP_URL"]
    if request.args.get("error"):
        return redirect(f"{app_url}/profile?error={platform}_auth_failed")

    user = current_user()
    try:
        token = client.authorize_access_token()
        resp = client.get(
            PLATFORM_CONFIGS[platform]["profile_url"],
            token=token,
            headers=profile_headers(platform, current_app.config.get(f"{platform.upper()}_CLIENT_ID")),
        )
        resp.raise_for_status()
        profile = normalize_profile(platform, resp.json())
    except Exception:
        current_app.logger.exception(
            "Social connect failed (platform=%s user_id=%s request_id=%s)", platform, user.id, getattr(g, "request_id", None)
        )
        return redirect(f"{app_url}/profile?error={platform}_connection_failed")

    s = db_session()
    upsert_social_account(s, user, platform, profile, dict(token))
    s.commit()
    current_app.logger.info("Social account connected (platform=%s user_id=%s)", platform, user.id)
    return redirect(f"{app_url}/profile?success={platform}_connected")


@bp.get("/social/accounts")
@require_login
def social_accounts():
    s = db_session()
    accounts = (
        s.query(SocialMediaAccount)
        .filter(SocialMediaAccount.user_id == current_user().id)
        .order_by(SocialMediaAccount.created_at.asc())
        .all()
    )
    return jsonify([a.to_dict() for a in accounts])


@bp.delete("/social/accounts/<int:account_id>")
@require_login
def social_account_delete(account_id: int):
    s = db_session()
    user = current_user()
    account = (
        s.query(SocialMediaAccount)
        .filter(SocialMediaAccount.id == account_id, SocialMediaAccount.user_id == user.id)
        .one_or_none()
    )
    if not account:
        return error_response(404, "Account not found")
    record_event(
        s,
        actor=user,
        action="social_account.disconnect",
        entity_type="SocialMediaAccount",
        entity_id=account.id,
        metadata={"platform": account.platform},
    )
    s.delete(account)
    s.commit()
    return jsonify({"success": True})
