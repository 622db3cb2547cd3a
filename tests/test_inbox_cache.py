"""Tests for the identity cache helpers."""

from datetime import timedelta

from app.services.crm.inbox import cache as inbox_cache


def test_cache_set_get():
    inbox_cache.set("test:key", "value", 60)
    assert inbox_cache.get("test:key") == "value"


def test_cache_non_positive_ttl_is_not_stored():
    inbox_cache.set("test:key", "value", 0)
    assert inbox_cache.get("test:key") is None


def test_cache_entry_expires(monkeypatch):
    inbox_cache.set("test:key", "value", 60)
    later = inbox_cache._now() + timedelta(seconds=61)
    monkeypatch.setattr(inbox_cache, "_now", lambda: later)
    assert inbox_cache.get("test:key") is None


def test_invalidate_page_identities_only_touches_that_page():
    inbox_cache.set(inbox_cache.build_identity_key("P1", "U1"), "a", 60)
    inbox_cache.set(inbox_cache.build_identity_key("P1", "U2"), "b", 60)
    inbox_cache.set(inbox_cache.build_identity_key("P2", "U1"), "c", 60)
    inbox_cache.invalidate_page_identities("P1")
    assert inbox_cache.get("identity:P1:U1") is None
    assert inbox_cache.get("identity:P1:U2") is None
    assert inbox_cache.get("identity:P2:U1") == "c"
