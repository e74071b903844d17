from __future__ import annotations

import logging

from authlib.integrations.flask_client import OAuth
from flask import Flask, abort, current_app

logger = logging.getLogger(__name__)

_EXTENSION_KEY = "authlib.integrations.flask_client"

# Sign-in providers (NextAuth-style "accounts")
SIGN_IN_PROVIDERS = ("google", "github")


def init_oauth(app: Flask) -> OAuth:
    """
    One Authlib registry per app; clients are only registered when their credentials are set.
    """
    from app.bdgenai.modules.profile.social import PLATFORM_CONFIGS, social_client_name

    oauth = OAuth(app)

    if app.config.get("GOOGLE_CLIENT_ID") and app.config.get("GOOGLE_CLIENT_SECRET"):
        oauth.register(
            "google",
            client_id=app.config["GOOGLE_CLIENT_ID"],
            client_secret=app.config["GOOGLE_CLIENT_SECRET"],
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
    if app.config.get("GITHUB_CLIENT_ID") and app.config.get("GITHUB_CLIENT_SECRET"):
        oauth.register(
            "github",
            client_id=app.config["GITHUB_CLIENT_ID"],
            client_secret=app.config["GITHUB_CLIENT_SECRET"],
            access_token_url="https://github.com/login/oauth/access_token",
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )

    for platform, cfg in PLATFORM_CONFIGS.items():
        prefix = platform.upper()
        client_id = app.config.get(f"{prefix}_CLIENT_ID")
        client_secret = app.config.get(f"{prefix}_CLIENT_SECRET")
        if not client_id or not client_secret:
            continue
        client_kwargs: dict[str, str] = {"scope": cfg["scope"]}
        if cfg.get("pkce"):
            client_kwargs["code_challenge_method"] = "S256"
        oauth.register(
            social_client_name(platform),
            client_id=client_id,
            client_secret=client_secret,
            authorize_url=cfg["auth_url"],
            access_token_url=cfg["token_url"],
            client_kwargs=client_kwargs,
        )

    configured = [name for name in SIGN_IN_PROVIDERS if oauth.create_client(name) is not None]
    logger.info("OAuth sign-in providers configured: %s", ", ".join(configured) or "(none)")
    return oauth


def get_oauth() -> OAuth:
    return current_app.extensions[_EXTENSION_KEY]


def oauth_client(name: str):
    """Registered Authlib client or None."""
    return get_oauth().create_client(name)


def require_oauth_client(name: str):
    client = oauth_client(name)
    if client is None:
        abort(503, description=f"OAuth provider '{name}' is not configured")
    return client
