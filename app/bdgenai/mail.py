from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass
from typing import Any

import requests
from flask import current_app

logger = logging.getLogger(__name__)


class MailError(RuntimeError):
    pass


class MailRateLimited(MailError):
    pass


@dataclass(frozen=True)
class ResendClient:
    api_key: str
    sender: str
    base_url: str = "https://api.resend.com"
    timeout_seconds: int = 30

    def send(self, *, to: str, subject: str, html_body: str, retries: int = 2) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + "/emails"
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html_body}
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                resp = requests.post(url, json=payload, headers=headers, timeout=self.timeout_seconds)
            except requests.RequestException as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
            if resp.status_code == 429:
                # rate limit; brief backoff
                time.sleep(min(2 * (attempt + 1), 10))
                last_err = MailRateLimited("Rate limited (429)")
                continue
            if resp.status_code >= 400:
                raise MailError(f"HTTP {resp.status_code} from Resend: {resp.text[:300]}")
            try:
                return resp.json()
            except ValueError as e:
                raise MailError("Invalid JSON from Resend") from e
        raise MailError(f"Resend request failed after retries: {last_err}")


def mail_client_from_config(config: dict) -> ResendClient | None:
    api_key = (config.get("RESEND_API_KEY") or "").strip()
    if not api_key:
        return None
    return ResendClient(api_key=api_key, sender=(config.get("MAIL_FROM") or "mail@bdgenai.com").strip())


def send_email(*, to: str, subject: str, html_body: str) -> bool:
    """
    Send via Resend when configured; otherwise log the message (development).
    Returns True when the message was handed to the provider.
    """
    client = mail_client_from_config(current_app.config)
    if client is None:
        logger.info("RESEND_API_KEY not set; email not sent (to=%s subject=%s)", to, subject)
        return False
    client.send(to=to, subject=subject, html_body=html_body)
    logger.info("Email sent (to=%s subject=%s)", to, subject)
    return True


def _app_url() -> str:
    return (current_app.config.get("APP_URL") or "").rstrip("/")


def send_verification_email(email: str, token: str) -> bool:
    link = f"{_app_url()}/auth/new-verification?token={token}"
    return send_email(
        to=email,
        subject="Confirm your email",
        html_body=f'<p>Click <a href="{html.escape(link)}">here</a> to confirm email.</p>',
    )


def send_password_reset_email(email: str, token: str) -> bool:
    link = f"{_app_url()}/auth/new-password?token={token}"
    return send_email(
        to=email,
        subject="Reset your password",
        html_body=f'<p>Click <a href="{html.escape(link)}">here</a> to reset password.</p>',
    )


def send_task_reminder_email(email: str, *, title: str, due: str, description: str | None, priority: str, category: str) -> bool:
    desc_html = f"<p>{html.escape(description)}</p>" if description else ""
    return send_email(
        to=email,
        subject=f"Reminder: {title}",
        html_body=(
            "<h2>Task Reminder</h2>"
            f"<p>You have a task due on <strong>{html.escape(due)}</strong>:</p>"
            f"<h3>{html.escape(title)}</h3>"
            f"{desc_html}"
            f"<p>Priority: {html.escape(priority)}</p>"
            f"<p>Category: {html.escape(category)}</p>"
            f'<p><a href="{html.escape(_app_url())}/profile">View in your dashboard</a></p>'
        ),
    )
