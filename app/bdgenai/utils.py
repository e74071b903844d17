from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

from flask import request

T = TypeVar("T")

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_HTML_ENTITIES = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)


def json_payload() -> dict:
    """Request JSON body as a dict ({} when missing or not an object)."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_datetime(raw: Any) -> datetime | None:
    """
    Parse an ISO 8601 string into a naive UTC datetime.
    Accepts a trailing 'Z' and date-only values. Raises ValueError on bad input.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        dt = raw
    else:
        s = str(raw).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_decimal(raw: Any) -> Decimal | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    if isinstance(raw, bool):
        raise ValueError("Invalid number")
    try:
        return Decimal(str(raw))
    except InvalidOperation as e:
        raise ValueError("Invalid number") from e


def as_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return bool(raw)


def clean_str(raw: Any) -> str | None:
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def text_value(raw: Any) -> str:
    """Stripped string from a JSON value; anything that is not a string reads as empty."""
    return raw.strip() if isinstance(raw, str) else ""


def strip_html(text: str | None) -> str:
    """Replace common entities, drop tags and collapse whitespace."""
    if not text:
        return ""
    out = text
    for entity, repl in _HTML_ENTITIES:
        out = out.replace(entity, repl)
    out = _TAG_RE.sub("", out)
    return _WS_RE.sub(" ", out).strip()


def splice_move(items: list[T], from_index: int, to_index: int) -> list[T]:
    """Return a copy of items with the element at from_index moved to to_index."""
    n = len(items)
    if not (0 <= from_index < n) or not (0 <= to_index < n):
        raise IndexError("Index out of range")
    out = list(items)
    moved = out.pop(from_index)
    out.insert(to_index, moved)
    return out


def page_args(default_per_page: int = 20, max_per_page: int = 100) -> tuple[int, int]:
    page = max(1, request.args.get("page", 1, type=int) or 1)
    per_page = request.args.get("per_page", default_per_page, type=int) or default_per_page
    per_page = max(1, min(per_page, max_per_page))
    return page, per_page


def pagination_dict(page: int, per_page: int, total: int) -> dict:
    total_pages = (total + per_page - 1) // per_page if total else 0
    return {
        "page": page,
        "page_size": per_page,
        "total_count": total,
        "total_pages": total_pages,
        "has_more": page < total_pages,
    }
