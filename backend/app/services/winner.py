"""Resolve the actual outcome of a market through ordered fallback strategies."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from loguru import logger

from app.domain import (
    UNDETERMINED_WINNER,
    MarketConfig,
    WinnerResolution,
    WinnerSource,
    placeholder_entry_name,
)
from delphi.client import DelphiClient
from delphi.normalize import extract_market_chart, latest_prices, parse_index

WINNER_NAME_FIELDS: tuple[str, ...] = ("winner_name", "winning_model", "winner")
WINNER_INDEX_FIELDS: tuple[str, ...] = (
    "winning_entry_idx",
    "winner_entry_idx",
    "winning_idx",
    "winner_idx",
    "winning_index",
)
NESTED_RESOLUTION_FIELDS: tuple[str, ...] = ("resolution", "settlement", "outcome")
NESTED_INDEX_FIELDS: tuple[str, ...] = ("entry_idx", "winning_entry_idx", "index")

_WHITESPACE = re.compile(r"\s+")


def normalize_model_name(name: str) -> str:
    return _WHITESPACE.sub(" ", name.strip().lower())


def names_match(predicted: str | None, actual: str | None) -> bool:
    """Exact equality after trimming, lowercasing and collapsing whitespace."""
    if not predicted or not actual:
        return False
    return normalize_model_name(predicted) == normalize_model_name(actual)


def translate_index(entry_map: Mapping[int, str], index: int) -> str:
    return entry_map.get(index) or placeholder_entry_name(index)


@dataclass(frozen=True, slots=True)
class ResolutionContext:
    market_id: str
    entry_map: Mapping[int, str]
    config: MarketConfig | None = None


class WinnerStrategy(Protocol):
    async def attempt(self, context: ResolutionContext) -> WinnerResolution | None:
        """Return a resolution, or None when this strategy has no opinion."""


class ConfirmedWinnerStrategy:
    """Trust the winner recorded for settled markets in the registry."""

    async def attempt(self, context: ResolutionContext) -> WinnerResolution | None:
        if context.config is None or not context.config.confirmed_winner:
            return None
        return WinnerResolution(context.config.confirmed_winner, WinnerSource.CONFIRMED)


def winner_from_market_object(
    market: Mapping[str, Any], entry_map: Mapping[int, str]
) -> str | None:
    for field in WINNER_NAME_FIELDS:
        value = market.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()

    for field in WINNER_INDEX_FIELDS:
        index = parse_index(market.get(field))
        if index is not None:
            return translate_index(entry_map, index)

    for container in NESTED_RESOLUTION_FIELDS:
        nested = market.get(container)
        if not isinstance(nested, Mapping):
            continue
        for field in NESTED_INDEX_FIELDS:
            index = parse_index(nested.get(field))
            if index is not None:
                return translate_index(entry_map, index)
    return None


class MarketFieldStrategy:
    """Read winner fields off the upstream market object."""

    def __init__(self, client: DelphiClient) -> None:
        self._client = client

    async def attempt(self, context: ResolutionContext) -> WinnerResolution | None:
        result = await self._client.fetch_market(context.market_id)
        if not result.ok or not isinstance(result.json, Mapping):
            return None
        market = result.json
        # some deployments wrap the object as {"market": {...}}
        if isinstance(market.get("market"), Mapping):
            market = market["market"]
        winner = winner_from_market_object(market, context.entry_map)
        if winner is None:
            return None
        return WinnerResolution(winner, WinnerSource.MARKET_FIELD)


class ChartTopPriceStrategy:
    """Pick the highest-priced entry of the most recent chart snapshot."""

    def __init__(self, client: DelphiClient, *, timeframe: str = "auto") -> None:
        self._client = client
        self._timeframe = timeframe

    async def attempt(self, context: ResolutionContext) -> WinnerResolution | None:
        result = await self._client.fetch_chart(context.market_id, self._timeframe)
        if not result.ok:
            return None
        market_chart = extract_market_chart(result.json)
        if market_chart is None:
            return None
        prices = latest_prices(market_chart)
        if not prices:
            return None
        top_index = None
        top_price = float("-inf")
        for index in sorted(prices):
            if prices[index] > top_price:
                top_price = prices[index]
                top_index = index
        return WinnerResolution(
            translate_index(context.entry_map, top_index), WinnerSource.CHART_TOP_PRICE
        )


class WinnerResolver:
    def __init__(self, strategies: Sequence[WinnerStrategy]) -> None:
        self._strategies = tuple(strategies)

    @classmethod
    def default(cls, client: DelphiClient, *, timeframe: str = "auto") -> "WinnerResolver":
        return cls(
            (
                ConfirmedWinnerStrategy(),
                MarketFieldStrategy(client),
                ChartTopPriceStrategy(client, timeframe=timeframe),
            )
        )

    async def resolve(self, context: ResolutionContext) -> WinnerResolution:
        for strategy in self._strategies:
            resolution = await strategy.attempt(context)
            if resolution is not None:
                logger.info(
                    "Market {} winner {} resolved via {}",
                    context.market_id,
                    resolution.winner,
                    resolution.source.value,
                )
                return resolution
        logger.info("Market {} winner undetermined", context.market_id)
        return WinnerResolution(UNDETERMINED_WINNER, WinnerSource.UNAVAILABLE)


__all__ = [
    "ChartTopPriceStrategy",
    "ConfirmedWinnerStrategy",
    "MarketFieldStrategy",
    "ResolutionContext",
    "WinnerResolver",
    "WinnerStrategy",
    "names_match",
    "normalize_model_name",
    "winner_from_market_object",
]
