from __future__ import annotations

import asyncio

from agency_workflow.app.services.cache import (
    INTERVIEW_RESCHEDULED_EVENT,
    STAGE_TRANSITION_EVENT,
    CachePolicy,
    ResultCache,
    build_cache_policies,
)
from agency_workflow.app.settings import Settings


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def counting(value):
    calls = {"count": 0}

    def compute():
        calls["count"] += 1
        return value

    return compute, calls


def test_value_is_reused_until_ttl_expires() -> None:
    clock = FakeClock()
    cache = ResultCache(clock=clock)
    compute, calls = counting({"applied": 3})

    assert cache.get_or_compute("k", compute, "analytics") == {"applied": 3}
    clock.now += 29
    cache.get_or_compute("k", compute, "analytics")
    assert calls["count"] == 1

    clock.now += 1
    cache.get_or_compute("k", compute, "analytics")
    assert calls["count"] == 2


def test_unknown_ttl_class_uses_default_policy() -> None:
    clock = FakeClock()
    cache = ResultCache(clock=clock)
    compute, calls = counting("x")
    cache.get_or_compute("k", compute, "nonexistent")
    clock.now += 299
    cache.get_or_compute("k", compute, "nonexistent")
    assert calls["count"] == 1
    assert cache.policy("nonexistent").ttl_seconds == 300


def test_transition_event_drops_only_matching_tagged_entries() -> None:
    cache = ResultCache(clock=FakeClock())
    cache.get_or_compute("applied", lambda: 1, "analytics", tags=["applied"])
    cache.get_or_compute("passed", lambda: 2, "analytics", tags=["interview_passed"])
    cache.get_or_compute("untagged", lambda: 3, "analytics")
    cache.get_or_compute("stages", lambda: 4, "catalog")

    dropped = cache.notify(STAGE_TRANSITION_EVENT, tags={"applied", "shortlisted"})

    assert dropped == 2
    assert "applied" not in cache
    assert "untagged" not in cache
    assert "passed" in cache
    assert "stages" in cache


def test_reschedule_event_without_tags_drops_every_subscribed_entry() -> None:
    cache = ResultCache(clock=FakeClock())
    cache.get_or_compute("a", lambda: 1, "analytics", tags=["applied"])
    cache.get_or_compute("s", lambda: 2, "search", tags=["shortlisted"])
    cache.get_or_compute("d", lambda: 3, "default")

    assert cache.notify(INTERVIEW_RESCHEDULED_EVENT) == 2
    assert len(cache) == 1


def test_invalidate_single_key_and_everything() -> None:
    clock = FakeClock()
    cache = ResultCache(clock=clock)
    compute, calls = counting("a")
    cache.get_or_compute("a", compute)
    cache.get_or_compute("b", lambda: 2)
    clock.now += 10
    cache.get_or_compute("a", compute)
    assert calls["count"] == 1

    cache.invalidate("a")
    assert "a" not in cache
    assert "b" in cache
    cache.get_or_compute("a", compute)
    assert calls["count"] == 2

    cache.invalidate()
    assert len(cache) == 0
    cache.get_or_compute("a", compute)
    assert calls["count"] == 3


def test_entry_keeps_the_ttl_it_was_stored_with() -> None:
    clock = FakeClock()
    cache = ResultCache(clock=clock)
    compute, calls = counting("labels")
    cache.get_or_compute("stages", compute, "catalog")

    clock.now += 60
    cache.get_or_compute("stages", compute, "analytics")
    assert calls["count"] == 1

    clock.now = 1000.0 + 3600
    cache.get_or_compute("stages", compute, "catalog")
    assert calls["count"] == 2


def test_async_compute_is_awaited_and_cached() -> None:
    cache = ResultCache(clock=FakeClock())
    calls = {"count": 0}

    async def fetch() -> list[str]:
        calls["count"] += 1
        return ["applied", "shortlisted"]

    async def scenario() -> None:
        first = await cache.get_or_compute_async("stages", fetch, "catalog")
        second = await cache.get_or_compute_async("stages", fetch, "catalog")
        assert first == second == ["applied", "shortlisted"]

    asyncio.run(scenario())
    assert calls["count"] == 1


def test_custom_policies_and_settings_driven_ttls() -> None:
    cache = ResultCache({"fast": CachePolicy(ttl_seconds=1)}, clock=FakeClock())
    assert cache.policy("fast").ttl_seconds == 1
    assert cache.policy("other").ttl_seconds == 300

    settings = Settings(
        app_env="test",
        persistence_enabled=False,
        persistence_db_path="data/test.sqlite3",
        database_url="sqlite:///data/test.sqlite3",
        workflow_api_base_url="http://localhost:8000",
        workflow_request_timeout_seconds=0,
        workflow_page_limit=15,
        analytics_cache_ttl_seconds=5,
        catalog_cache_ttl_seconds=60,
    )
    policies = build_cache_policies(settings)
    assert policies["analytics"].ttl_seconds == 5
    assert STAGE_TRANSITION_EVENT in policies["analytics"].invalidate_on
    assert policies["catalog"].ttl_seconds == 60
    assert policies["search"].ttl_seconds == 120
