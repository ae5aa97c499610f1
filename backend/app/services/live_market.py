"""Work out which Delphi market is currently live.

Upstream happily reports markets as ``ongoing`` that never received any
evaluations. Candidates are therefore validated by probing model index 0;
hollow ones are recorded as ghosts in the registry and skipped from then on.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

from loguru import logger

from app.domain import LiveMarket, MarketStatus, placeholder_entry_name
from app.registry import MarketRegistry
from delphi.client import DelphiClient
from delphi.normalize import extract_evals, extract_market_items


class NoMarketAvailableError(RuntimeError):
    """Raised when neither a live nor a settled market can be offered."""


class LiveMarketDetector:
    def __init__(
        self,
        client: DelphiClient,
        registry: MarketRegistry,
        *,
        ongoing_limit: int = 10,
        probe_ceiling: int = 10,
    ) -> None:
        self._client = client
        self._registry = registry
        self._ongoing_limit = ongoing_limit
        self._probe_ceiling = probe_ceiling
        self._discovered: dict[str, dict[int, str]] = {}

    async def detect(self) -> LiveMarket:
        """Return the newest ongoing market whose index-0 probe has records.

        Only a successful probe with an empty series marks a candidate as a
        ghost. A failed probe (transport error, timeout, error status) skips
        the candidate for this cycle and leaves it eligible for the next one.
        """
        candidates = await self._ongoing_candidates()
        for candidate in candidates:
            market_id = str(candidate["market_id"])
            if self._registry.is_ghost(market_id):
                continue
            has_data = await self._probe(market_id)
            if has_data is None:
                logger.warning("Probe for market {} failed; skipping this cycle", market_id)
                continue
            if not has_data:
                self._registry.mark_ghost(market_id)
                continue
            return await self._accept(market_id, candidate)
        return self._settled_fallback()

    async def _ongoing_candidates(self) -> list[dict[str, Any]]:
        result = await self._client.list_markets(status="ongoing", limit=self._ongoing_limit)
        if not result.ok:
            logger.warning(
                "Ongoing market listing unavailable (status={}); using settled fallback",
                result.status,
            )
            return []
        return extract_market_items(result.json)

    async def _probe(self, market_id: str, model_idx: int = 0) -> bool | None:
        """True when records exist, False on an empty series, None on fetch failure."""
        result = await self._client.fetch_evals(market_id, model_idx)
        if not result.ok:
            return None
        return bool(extract_evals(result.json))

    async def _accept(self, market_id: str, candidate: Mapping[str, Any]) -> LiveMarket:
        config = self._registry.get(market_id)
        if config is not None:
            logger.info("Live market {} ({}) matches registry", market_id, config.name)
            return LiveMarket(
                market_id=market_id,
                market_name=config.name,
                status=MarketStatus.ONGOING,
                entry_map=dict(config.entry_map),
                is_known=True,
            )

        entry_map = await self.discover_entry_map(market_id)
        name = candidate.get("market_name") or f"Market #{market_id}"
        logger.info(
            "Live market {} is not in the registry; discovered {} entries", market_id, len(entry_map)
        )
        return LiveMarket(
            market_id=market_id,
            market_name=str(name),
            status=MarketStatus.ONGOING,
            entry_map=entry_map,
            is_known=False,
        )

    async def discover_entry_map(self, market_id: str) -> dict[int, str]:
        """Probe model indices up to the ceiling; discovered maps are kept for reuse."""
        market_id = str(market_id)
        cached = self._discovered.get(market_id)
        if cached is not None:
            return dict(cached)

        indices = range(self._probe_ceiling)
        results = await asyncio.gather(
            *(self._probe(market_id, index) for index in indices),
            return_exceptions=True,
        )
        entry_map = {
            index: placeholder_entry_name(index)
            for index, has_data in zip(indices, results)
            if has_data is True
        }
        if entry_map:
            self._discovered[market_id] = entry_map
        return dict(entry_map)

    def _settled_fallback(self) -> LiveMarket:
        config = self._registry.latest_settled()
        if config is None:
            raise NoMarketAvailableError("No live market validated and no settled market is registered")
        logger.info("No live market validated; falling back to settled market {}", config.market_id)
        return LiveMarket(
            market_id=config.market_id,
            market_name=config.name,
            status=MarketStatus.CLOSED,
            entry_map=dict(config.entry_map),
            is_known=True,
        )


__all__ = ["LiveMarketDetector", "NoMarketAvailableError"]
