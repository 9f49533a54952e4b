from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Hashable, Iterable, Optional

from agency_workflow.app.settings import Settings

logger = logging.getLogger("agency_workflow.cache")

STAGE_TRANSITION_EVENT = "stage_transition"
INTERVIEW_RESCHEDULED_EVENT = "interview_rescheduled"


@dataclass(frozen=True)
class CachePolicy:
    ttl_seconds: float
    invalidate_on: frozenset[str] = frozenset()


DEFAULT_POLICIES: dict[str, CachePolicy] = {
    "analytics": CachePolicy(
        ttl_seconds=30,
        invalidate_on=frozenset({STAGE_TRANSITION_EVENT, INTERVIEW_RESCHEDULED_EVENT}),
    ),
    "catalog": CachePolicy(ttl_seconds=3600),
    "search": CachePolicy(
        ttl_seconds=120,
        invalidate_on=frozenset({STAGE_TRANSITION_EVENT, INTERVIEW_RESCHEDULED_EVENT}),
    ),
    "default": CachePolicy(ttl_seconds=300),
}


def build_cache_policies(settings: Settings) -> dict[str, CachePolicy]:
    policies = dict(DEFAULT_POLICIES)
    policies["analytics"] = replace(
        policies["analytics"], ttl_seconds=settings.analytics_cache_ttl_seconds
    )
    policies["catalog"] = replace(
        policies["catalog"], ttl_seconds=settings.catalog_cache_ttl_seconds
    )
    return policies


@dataclass(frozen=True)
class _Entry:
    value: Any
    stored_at: float
    ttl_class: str
    tags: frozenset[str]


class ResultCache:
    """Memoizes computed values per key, expiring them by TTL class.

    Entries are never mutated: a recompute or invalidation swaps the whole entry,
    so a reader holding a value keeps a consistent snapshot.
    """

    def __init__(
        self,
        policies: Optional[dict[str, CachePolicy]] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policies = dict(DEFAULT_POLICIES if policies is None else policies)
        self._policies.setdefault("default", DEFAULT_POLICIES["default"])
        self._clock = clock
        self._entries: dict[Hashable, _Entry] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def policy(self, ttl_class: str) -> CachePolicy:
        return self._policies.get(ttl_class, self._policies["default"])

    def get_or_compute(
        self,
        key: Hashable,
        compute: Callable[[], Any],
        ttl_class: str = "default",
        *,
        tags: Iterable[str] = (),
    ) -> Any:
        entry = self._fresh_entry(key)
        if entry is not None:
            return entry.value
        value = compute()
        self._store(key, value, ttl_class, tags)
        return value

    async def get_or_compute_async(
        self,
        key: Hashable,
        compute: Callable[[], Any],
        ttl_class: str = "default",
        *,
        tags: Iterable[str] = (),
    ) -> Any:
        entry = self._fresh_entry(key)
        if entry is not None:
            return entry.value
        value = compute()
        if inspect.isawaitable(value):
            value = await value
        self._store(key, value, ttl_class, tags)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        if key is None:
            self._entries = {}
            return
        self._entries.pop(key, None)

    def notify(self, event: str, tags: Iterable[str] = ()) -> int:
        """Drops entries whose TTL class subscribes to ``event``.

        Tagged entries only drop when they share a tag with ``tags``; untagged
        entries drop on any subscribed event.
        """
        wanted = frozenset(tags)
        stale = [
            key
            for key, entry in self._entries.items()
            if event in self.policy(entry.ttl_class).invalidate_on
            and (not entry.tags or not wanted or entry.tags & wanted)
        ]
        for key in stale:
            self._entries.pop(key, None)
        if stale:
            logger.debug("cache_invalidated event=%s keys=%s", event, len(stale))
        return len(stale)

    def _fresh_entry(self, key: Hashable) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        age = self._clock() - entry.stored_at
        if age >= self.policy(entry.ttl_class).ttl_seconds:
            return None
        return entry

    def _store(self, key: Hashable, value: Any, ttl_class: str, tags: Iterable[str]) -> None:
        logger.debug("cache_recomputed key=%s ttl_class=%s", key, ttl_class)
        self._entries[key] = _Entry(
            value=value,
            stored_at=self._clock(),
            ttl_class=ttl_class,
            tags=frozenset(tags),
        )
