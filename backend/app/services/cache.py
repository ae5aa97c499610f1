"""Single-entry TTL cache slots fronting the upstream-backed computations."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from app.core.config import Settings

T = TypeVar("T")

Clock = Callable[[], float]

CHART = "chart"
HUMAN_BELIEF = "human_belief"
HISTORICAL_ANALYSIS = "historical_analysis"
LIVE_MARKET = "live_market"


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    value: T
    market_id: str | None
    stored_at: float


@dataclass(frozen=True, slots=True)
class SlotPolicy:
    ttl: float
    bound_to_market: bool = False


class CacheService:
    """Named cache slots, each holding only its most recent entry.

    A read hits when the entry is younger than the slot TTL and, for
    market-bound slots, was computed for the market id being asked about.
    A market mismatch drops the entry immediately regardless of age.
    """

    def __init__(self, policies: dict[str, SlotPolicy], *, clock: Clock = time.monotonic) -> None:
        self._policies = dict(policies)
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Clock = time.monotonic) -> "CacheService":
        return cls(
            {
                CHART: SlotPolicy(settings.chart_cache_ttl_seconds, bound_to_market=True),
                HUMAN_BELIEF: SlotPolicy(
                    settings.human_belief_cache_ttl_seconds, bound_to_market=True
                ),
                HISTORICAL_ANALYSIS: SlotPolicy(settings.historical_cache_ttl_seconds),
                LIVE_MARKET: SlotPolicy(settings.live_market_cache_ttl_seconds),
            },
            clock=clock,
        )

    def _policy(self, key: str) -> SlotPolicy:
        try:
            return self._policies[key]
        except KeyError:
            raise KeyError(f"Unknown cache slot: {key}") from None

    def get(self, key: str, market_id: str | None = None) -> CacheEntry[Any] | None:
        policy = self._policy(key)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if policy.bound_to_market and entry.market_id != market_id:
            logger.info(
                "Cache slot {} invalidated: market changed {} -> {}", key, entry.market_id, market_id
            )
            self._entries.pop(key, None)
            return None
        if self._clock() - entry.stored_at >= policy.ttl:
            return None
        return entry

    def set(self, key: str, value: T, market_id: str | None = None) -> CacheEntry[T]:
        self._policy(key)
        entry = CacheEntry(value=value, market_id=market_id, stored_at=self._clock())
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        market_id: str | None = None,
    ) -> T:
        entry = self.get(key, market_id)
        if entry is not None:
            return entry.value

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # another request may have filled the slot while we waited
            entry = self.get(key, market_id)
            if entry is not None:
                return entry.value
            logger.info("Cache miss for {} (market={}); recomputing", key, market_id)
            value = await compute()
            self.set(key, value, market_id)
            return value


__all__ = [
    "CHART",
    "HISTORICAL_ANALYSIS",
    "HUMAN_BELIEF",
    "LIVE_MARKET",
    "CacheEntry",
    "CacheService",
    "SlotPolicy",
]
