"""Lightweight in-memory cache for Page inbox lookups.

NOTE: This is a per-process cache. Only successfully resolved customer
identities are stored, with a short TTL, so stale names age out on their own
and a degraded lookup is retried on the next event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any


@dataclass
class _CacheEntry:
    value: Any
    expires_at: datetime


_cache: dict[str, _CacheEntry] = {}


def _now() -> datetime:
    return datetime.now(UTC)


def _expired(entry: _CacheEntry) -> bool:
    return entry.expires_at <= _now()


def get(key: str) -> Any | None:
    entry = _cache.get(key)
    if not entry:
        return None
    if _expired(entry):
        _cache.pop(key, None)
        return None
    return entry.value


def set(key: str, value: Any, ttl_seconds: int) -> None:
    if ttl_seconds <= 0:
        return
    _cache[key] = _CacheEntry(
        value=value,
        expires_at=_now() + timedelta(seconds=ttl_seconds),
    )


def invalidate_prefix(prefix: str) -> None:
    keys = [key for key in _cache if key.startswith(prefix)]
    for key in keys:
        _cache.pop(key, None)


def clear() -> None:
    _cache.clear()


def build_identity_key(page_id: str, customer_id: str) -> str:
    return f"identity:{page_id}:{customer_id}"


def invalidate_page_identities(page_id: str) -> None:
    invalidate_prefix(f"identity:{page_id}:")
