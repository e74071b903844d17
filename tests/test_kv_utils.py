"""
Unit tests for the KV store, rate limiter and request-independent helpers.

Tests cover:
- MemoryKV get/set/expiry and pattern invalidation
- Fixed-window rate limiting per bucket and user
- Comment cache threshold
- HTML stripping, datetime/decimal parsing, pagination
"""

from datetime import datetime

import pytest

from app.bdgenai.kv import (
    COMMENTS_CACHE_MIN_TOTAL,
    MemoryKV,
    cache_get_json,
    cache_set_json,
    check_rate_limit,
    invalidate_pattern,
    rate_limit_key,
    should_cache_post,
)
from app.bdgenai.utils import pagination_dict, parse_datetime, parse_decimal, strip_html


@pytest.fixture()
def clock(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr("app.bdgenai.kv.time.time", lambda: now[0])
    return now


class TestMemoryKV:
    def test_set_get_delete(self):
        kv = MemoryKV()
        kv.setex("a", 60, "1")
        assert kv.get("a") == "1"
        assert kv.delete("a", "missing") == 1
        assert kv.get("a") is None

    def test_expiry(self, clock):
        kv = MemoryKV()
        kv.setex("a", 10, "1")
        clock[0] += 11
        assert kv.get("a") is None

    def test_pattern_invalidation(self):
        """Only keys for the given post are dropped"""
        kv = MemoryKV()
        cache_set_json(kv, "comments:1:1:newest", {"data": []}, 60)
        cache_set_json(kv, "comments:1:2:oldest", {"data": []}, 60)
        cache_set_json(kv, "comments:2:1:newest", {"data": [1]}, 60)
        assert invalidate_pattern(kv, "comments:1:*") == 2
        assert cache_get_json(kv, "comments:1:1:newest") is None
        assert cache_get_json(kv, "comments:2:1:newest") == {"data": [1]}

    def test_corrupt_cache_values_are_dropped(self):
        kv = MemoryKV()
        kv.setex("bad", 60, "{not json")
        assert cache_get_json(kv, "bad") is None
        assert kv.get("bad") is None


class TestRateLimit:
    def test_fixed_window(self, clock):
        kv = MemoryKV()
        results = [check_rate_limit(kv, "post", 7) for _ in range(6)]
        assert [r.limited for r in results] == [False] * 5 + [True]
        assert results[0].remaining == 4
        assert results[-1].remaining == 0
        assert results[-1].reset == 1060

    def test_buckets_are_per_user(self, clock):
        kv = MemoryKV()
        for _ in range(6):
            check_rate_limit(kv, "post", 7)
        assert check_rate_limit(kv, "post", 8).limited is False

    def test_window_resets(self, clock):
        kv = MemoryKV()
        for _ in range(6):
            check_rate_limit(kv, "post", 7)
        clock[0] += 61
        assert check_rate_limit(kv, "post", 7).limited is False

    def test_unknown_actions_share_default_bucket(self):
        assert rate_limit_key("export", 1) == "ratelimit:default:1"
        assert check_rate_limit(MemoryKV(), "export", 1).limit == 30


def test_should_cache_post_threshold():
    assert should_cache_post(COMMENTS_CACHE_MIN_TOTAL) is True
    assert should_cache_post(COMMENTS_CACHE_MIN_TOTAL - 1) is False


class TestStripHtml:
    def test_tags_entities_and_whitespace(self):
        assert strip_html("<p>Tom &amp; Jerry</p>\n<br/>  rock&nbsp;on") == "Tom & Jerry rock on"

    def test_empty(self):
        assert strip_html(None) == ""
        assert strip_html("") == ""


class TestParsing:
    def test_parse_datetime_normalizes_to_naive_utc(self):
        assert parse_datetime("2026-03-02T10:00:00Z") == datetime(2026, 3, 2, 10, 0)
        assert parse_datetime("2026-03-02T12:00:00+02:00") == datetime(2026, 3, 2, 10, 0)
        assert parse_datetime("2026-03-02") == datetime(2026, 3, 2)

    def test_parse_datetime_blank_and_invalid(self):
        assert parse_datetime("") is None
        assert parse_datetime(None) is None
        with pytest.raises(ValueError):
            parse_datetime("yesterday")

    def test_parse_decimal(self):
        assert str(parse_decimal("19.99")) == "19.99"
        assert parse_decimal(None) is None
        with pytest.raises(ValueError):
            parse_decimal("abc")
        with pytest.raises(ValueError):
            parse_decimal(True)


def test_pagination_dict():
    assert pagination_dict(1, 20, 45) == {"page": 1, "page_size": 20, "total_count": 45, "total_pages": 3, "has_more": True}
    assert pagination_dict(1, 20, 0)["total_pages"] == 0
    assert pagination_dict(3, 20, 45)["has_more"] is False
