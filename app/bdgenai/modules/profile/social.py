"""
Social platform connect: OAuth2 endpoints per platform and profile normalization.

Clients are registered on the shared Authlib registry (see app.bdgenai.oauth) under
social_client_name(platform) so they never collide with the sign-in providers.
"""

from __future__ import annotations

from typing import Any

PLATFORM_CONFIGS: dict[str, dict[str, Any]] = {
    "twitter": {
        "auth_url": "https://twitter.com/i/oauth2/authorize",
        "token_url": "https://api.twitter.com/2/oauth2/token",
        "profile_url": "https://api.twitter.com/2/users/me?user.fields=public_metrics,profile_image_url",
        "scope": "tweet.read users.read follows.read like.read offline.access",
        "pkce": True,
    },
    "instagram": {
        "auth_url": "https://api.instagram.com/oauth/authorize",
        "token_url": "https://api.instagram.com/oauth/access_token",
        "profile_url": "https://graph.instagram.com/me?fields=id,username,account_type,media_count",
        "scope": "user_profile,user_media",
    },
    "linkedin": {
        "auth_url": "https://www.linkedin.com/oauth/v2/authorization",
        "token_url": "https://www.linkedin.com/oauth/v2/accessToken",
        "profile_url": "https://api.linkedin.com/v2/me",
        "scope": "r_liteprofile r_emailaddress",
    },
    "youtube": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "profile_url": "https://www.googleapis.com/youtube/v3/channels?part=snippet,statistics&mine=true",
        "scope": "https://www.googleapis.com/auth/youtube.readonly",
    },
    "tiktok": {
        "auth_url": "https://www.tiktok.com/auth/authorize/",
        "token_url": "https://open-api.tiktok.com/oauth/access_token/",
        "profile_url": "https://open-api.tiktok.com/user/info/",
        "scope": "user.info.basic,video.list",
    },
    "facebook": {
        "auth_url": "https://www.facebook.com/v18.0/dialog/oauth",
        "token_url": "https://graph.facebook.com/v18.0/oauth/access_token",
        "profile_url": "https://graph.facebook.com/me?fields=id,name,picture",
        "scope": "email,public_profile",
    },
    "github": {
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "profile_url": "https://api.github.com/user",
        "scope": "user:email read:user",
    },
    "discord": {
        "auth_url": "https://discord.com/api/oauth2/authorize",
        "token_url": "https://discord.com/api/oauth2/token",
        "profile_url": "https://discord.com/api/users/@me",
        "scope": "identify guilds",
    },
    "twitch": {
        "auth_url": "https://id.twitch.tv/oauth2/authorize",
        "token_url": "https://id.twitch.tv/oauth2/token",
        "profile_url": "https://api.twitch.tv/helix/users",
        "scope": "user:read:email",
    },
}


def social_client_name(platform: str) -> str:
    return f"social_{platform}"


def profile_headers(platform: str, client_id: str | None) -> dict[str, str]:
    headers = {"Accept": "application/json"}
    if platform == "twitch" and client_id:
        headers["Client-ID"] = client_id
    return headers


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _first(items: Any) -> dict:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def normalize_profile(platform: str, data: dict) -> dict:
    """
    Map a platform profile response to
    {platform_user_id, username, display_name, profile_image_url, followers, following}.
    """
    data = data or {}
    if platform == "twitter":
        d = data.get("data") or {}
        metrics = d.get("public_metrics") or {}
        return {
            "platform_user_id": d.get("id"),
            "username": d.get("username"),
            "display_name": d.get("name"),
            "profile_image_url": d.get("profile_image_url"),
            "followers": _as_int(metrics.get("followers_count")),
            "following": _as_int(metrics.get("following_count")),
        }
    if platform == "github":
        return {
            "platform_user_id": str(data["id"]) if data.get("id") is not None else None,
            "username": data.get("login"),
            "display_name": data.get("name") or data.get("login"),
            "profile_image_url": data.get("avatar_url"),
            "followers": _as_int(data.get("followers")),
            "following": _as_int(data.get("following")),
        }
    if platform == "youtube":
        channel = _first(data.get("items"))
        snippet = channel.get("snippet") or {}
        stats = channel.get("statistics") or {}
        return {
            "platform_user_id": channel.get("id"),
            "username": snippet.get("customUrl") or snippet.get("title"),
            "display_name": snippet.get("title"),
            "profile_image_url": ((snippet.get("thumbnails") or {}).get("default") or {}).get("url"),
            "followers": _as_int(stats.get("subscriberCount")),
            "following": 0,
        }
    if platform == "twitch":
        d = _first(data.get("data"))
        return {
            "platform_user_id": d.get("id"),
            "username": d.get("login"),
            "display_name": d.get("display_name"),
            "profile_image_url": d.get("profile_image_url"),
            "followers": 0,
            "following": 0,
        }
    if platform == "facebook":
        picture = ((data.get("picture") or {}).get("data") or {}).get("url")
        return {
            "platform_user_id": str(data["id"]) if data.get("id") is not None else None,
            "username": data.get("name"),
            "display_name": data.get("name"),
            "profile_image_url": picture,
            "followers": 0,
            "following": 0,
        }
    # instagram, discord, linkedin, tiktok and anything else
    return {
        "platform_user_id": str(data["id"]) if data.get("id") is not None else None,
        "username": data.get("username") or data.get("login") or data.get("name"),
        "display_name": data.get("display_name") or data.get("global_name") or data.get("name") or data.get("username"),
        "profile_image_url": data.get("profile_image_url") or data.get("avatar_url"),
        "followers": 0,
        "following": 0,
    }
