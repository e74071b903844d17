from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any

import requests


class StripeError(RuntimeError):
    pass


class StripeRateLimited(StripeError):
    pass


class StripeSignatureError(StripeError):
    pass


WEBHOOK_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class StripeClient:
    secret_key: str
    base_url: str = "https://api.stripe.com/v1"
    timeout_seconds: int = 30

    def request_json(self, method: str, path: str, *, data: dict[str, Any] | None = None, retries: int = 2) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                resp = requests.request(
                    method,
                    url,
                    data=_flatten_form(data or {}),
                    auth=(self.secret_key, ""),
                    timeout=self.timeout_seconds,
                )
            except requests.RequestException as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
            if resp.status_code == 429:
                # rate limit; brief backoff
                time.sleep(min(2 * (attempt + 1), 10))
                last_err = StripeRateLimited("Rate limited (429)")
                continue
            try:
                body = resp.json()
            except ValueError as e:
                raise StripeError(f"Invalid JSON from Stripe ({path})") from e
            if resp.status_code >= 400:
                message = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
                raise StripeError(f"HTTP {resp.status_code} from Stripe: {message or resp.text[:300]}")
            return body
        raise StripeError(f"Stripe request failed after retries: {last_err}")

    def create_customer(self, *, email: str, name: str | None = None) -> dict[str, Any]:
        data: dict[str, Any] = {"email": email}
        if name:
            data["name"] = name
        return self.request_json("POST", "/customers", data=data)

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        product_name: str,
        product_description: str | None,
        unit_amount_cents: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        product_data: dict[str, Any] = {"name": product_name}
        if product_description:
            product_data["description"] = product_description[:500]
        return self.request_json(
            "POST",
            "/checkout/sessions",
            data={
                "customer": customer_id,
                "mode": "payment",
                "success_url": success_url,
                "cancel_url": cancel_url,
                "line_items": [
                    {
                        "quantity": 1,
                        "price_data": {
                            "currency": currency,
                            "unit_amount": unit_amount_cents,
                            "product_data": product_data,
                        },
                    }
                ],
                "metadata": metadata,
            },
        )


def _flatten_form(data: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Stripe takes nested params in bracket form: line_items[0][price_data][currency]=usd."""
    out: dict[str, str] = {}
    for key, value in data.items():
        full = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            out.update(_flatten_form(value, full))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if isinstance(item, dict):
                    out.update(_flatten_form(item, f"{full}[{i}]"))
                else:
                    out[f"{full}[{i}]"] = str(item)
        elif value is None:
            continue
        elif isinstance(value, bool):
            out[full] = "true" if value else "false"
        else:
            out[full] = str(value)
    return out


def construct_event(payload: bytes, sig_header: str | None, secret: str, *, now: int | None = None) -> dict[str, Any]:
    """
    Verify a webhook body against its Stripe-Signature header and return the parsed event.
    Header format: t=<unix ts>,v1=<hex hmac>[,v1=...]
    """
    if not secret:
        raise StripeSignatureError("Webhook secret not configured")
    if not sig_header:
        raise StripeSignatureError("Missing Stripe-Signature header")

    timestamp: int | None = None
    signatures: list[str] = []
    for part in sig_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise StripeSignatureError("Invalid timestamp in signature header") from None
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise StripeSignatureError("Malformed Stripe-Signature header")

    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise StripeSignatureError("Signature mismatch")
    current = int(time.time()) if now is None else now
    if abs(current - timestamp) > WEBHOOK_TOLERANCE_SECONDS:
        raise StripeSignatureError("Timestamp outside tolerance")

    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StripeSignatureError("Invalid webhook payload") from e
    if not isinstance(event, dict):
        raise StripeSignatureError("Invalid webhook payload")
    return event


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    """Build a Stripe-Signature header value (used by tests and local webhook replays)."""
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def stripe_client_from_config(config: dict) -> StripeClient | None:
    key = (config.get("STRIPE_SECRET_KEY") or "").strip()
    if not key:
        return None
    return StripeClient(secret_key=key)
