"""
tests/test_rate_limit.py
"""
from __future__ import annotations

import pytest

from folio.blog import (
    MemoryRateLimitStore,
    RateLimitStoreError,
    app,
    check_rate_limit,
)


class _BrokenStore:
    def hit(self, key, *, max_requests, window, now):
        raise RateLimitStoreError("backend down")


def test_fixed_window_counts_down_then_blocks():
    store = MemoryRateLimitStore()
    results = [store.hit("k", max_requests=3, window=60, now=1000.0) for _ in range(4)]
    assert [r.success for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert {r.reset_time for r in results} == {1060.0}


def test_window_resets_after_expiry():
    store = MemoryRateLimitStore()
    for _ in range(3):
        store.hit("k", max_requests=3, window=60, now=0.0)
    assert not store.hit("k", max_requests=3, window=60, now=59.9).success
    fresh = store.hit("k", max_requests=3, window=60, now=60.0)
    assert fresh.success
    assert fresh.remaining == 2
    assert fresh.reset_time == 120.0


def test_keys_are_independent():
    store = MemoryRateLimitStore()
    assert store.hit("a", max_requests=1, window=60, now=0).success
    assert not store.hit("a", max_requests=1, window=60, now=1).success
    assert store.hit("b", max_requests=1, window=60, now=1).success


def test_sweep_drops_only_expired_windows():
    store = MemoryRateLimitStore(sweep_interval=10_000)
    store.hit("old", max_requests=5, window=10, now=0)
    store.hit("new", max_requests=5, window=100, now=0)
    assert len(store) == 2
    assert store.sweep(50) == 1
    assert len(store) == 1


def test_hit_sweeps_periodically():
    store = MemoryRateLimitStore(sweep_interval=30)
    store.hit("old", max_requests=5, window=10, now=0)
    store.hit("other", max_requests=5, window=10, now=40)
    assert len(store) == 1  # "old" was purged during the second hit


def test_reset_single_key_and_all():
    store = MemoryRateLimitStore()
    store.hit("a", max_requests=1, window=60, now=0)
    store.hit("b", max_requests=1, window=60, now=0)
    store.reset("a")
    assert store.hit("a", max_requests=1, window=60, now=1).success
    store.reset()
    assert len(store) == 0


def test_check_rate_limit_uses_given_store():
    store = MemoryRateLimitStore()
    res = check_rate_limit("x", max_requests=2, window=60, store=store, now=5.0)
    assert res.success and res.remaining == 1


@pytest.mark.parametrize("policy,allowed", [("permissive", True), ("conservative", False)])
def test_store_failure_applies_fallback_policy(monkeypatch, policy, allowed):
    monkeypatch.setitem(app.config, "RATE_LIMIT_FALLBACK_POLICY", policy)
    res = check_rate_limit("x", max_requests=5, window=60, store=_BrokenStore(), now=100.0)
    assert res.success is allowed
    assert res.reset_time == 160.0


def test_decorated_route_sets_remaining_header(client):
    rv = client.post("/api/analytics/visit", json={"visitorId": "v1", "path": "/"})
    assert rv.status_code == 201
    assert rv.headers["X-RateLimit-Remaining"] == "119"


def test_broken_store_conservative_blocks_route(client, monkeypatch):
    monkeypatch.setitem(app.extensions, "rate_limit_store", _BrokenStore())
    monkeypatch.setitem(app.config, "RATE_LIMIT_FALLBACK_POLICY", "conservative")
    rv = client.post("/api/analytics/visit", json={"visitorId": "v1", "path": "/"})
    assert rv.status_code == 429


def test_rate_limit_can_be_disabled(client, monkeypatch):
    monkeypatch.setitem(app.config, "RATE_LIMIT_ENABLED", False)
    for _ in range(8):
        rv = client.post("/api/admin/login", json={"username": "x", "password": "y"})
        assert rv.status_code == 401
