import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    app_url: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    cloudinary_cloud_name: str
    cloudinary_api_key: str
    cloudinary_api_secret: str

    kv_backend: str
    redis_url: str

    stripe_secret_key: str
    stripe_webhook_secret: str

    resend_api_key: str
    mail_from: str

    google_client_id: str
    google_client_secret: str
    github_client_id: str
    github_client_secret: str

    cron_secret: str
    require_email_verification: bool


# Social platforms that can be linked from the profile page.
SOCIAL_PLATFORMS = ("twitter", "instagram", "linkedin", "youtube", "tiktok", "facebook", "github", "discord", "twitch")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getflag(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///bdgenai.db"),
        app_url=_getenv("APP_URL", "http://localhost:5000").rstrip("/"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        cloudinary_cloud_name=_getenv("CLOUDINARY_CLOUD_NAME", ""),
        cloudinary_api_key=_getenv("CLOUDINARY_API_KEY", ""),
        cloudinary_api_secret=_getenv("CLOUDINARY_API_SECRET", ""),
        kv_backend=_getenv("KV_BACKEND", "memory"),
        redis_url=_getenv("REDIS_URL", ""),
        stripe_secret_key=_getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET", ""),
        resend_api_key=_getenv("RESEND_API_KEY", ""),
        mail_from=_getenv("MAIL_FROM", "mail@bdgenai.com"),
        google_client_id=_getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=_getenv("GOOGLE_CLIENT_SECRET", ""),
        github_client_id=_getenv("GITHUB_CLIENT_ID", ""),
        github_client_secret=_getenv("GITHUB_CLIENT_SECRET", ""),
        cron_secret=_getenv("CRON_SECRET", ""),
        require_email_verification=_getflag("REQUIRE_EMAIL_VERIFICATION", False),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    config = {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "APP_URL": s.app_url,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "CLOUDINARY_CLOUD_NAME": s.cloudinary_cloud_name,
        "CLOUDINARY_API_KEY": s.cloudinary_api_key,
        "CLOUDINARY_API_SECRET": s.cloudinary_api_secret,
        "KV_BACKEND": s.kv_backend,
        "REDIS_URL": s.redis_url,
        "STRIPE_SECRET_KEY": s.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": s.stripe_webhook_secret,
        "RESEND_API_KEY": s.resend_api_key,
        "MAIL_FROM": s.mail_from,
        "GOOGLE_CLIENT_ID": s.google_client_id,
        "GOOGLE_CLIENT_SECRET": s.google_client_secret,
        "GITHUB_CLIENT_ID": s.github_client_id,
        "GITHUB_CLIENT_SECRET": s.github_client_secret,
        "CRON_SECRET": s.cron_secret,
        "REQUIRE_EMAIL_VERIFICATION": s.require_email_verification,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # request body limit; per-file limits (10MB) enforced in the upload handler
        "MAX_CONTENT_LENGTH": 50 * 1024 * 1024,
    }
    # Social connect credentials (<PLATFORM>_CLIENT_ID / <PLATFORM>_CLIENT_SECRET)
    for platform in SOCIAL_PLATFORMS:
        prefix = platform.upper()
        config.setdefault(f"{prefix}_CLIENT_ID", _getenv(f"{prefix}_CLIENT_ID", ""))
        config.setdefault(f"{prefix}_CLIENT_SECRET", _getenv(f"{prefix}_CLIENT_SECRET", ""))
    return config
