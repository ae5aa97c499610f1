"""Typed domain representations shared by detection, prediction, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

UNDETERMINED_WINNER = "TBD"


class MarketStatus(str, Enum):
    ONGOING = "ongoing"
    CLOSED = "closed"


class WinnerSource(str, Enum):
    CONFIRMED = "confirmed"
    MARKET_FIELD = "market_field"
    CHART_TOP_PRICE = "chart_top_price"
    UNAVAILABLE = "unavailable"


def placeholder_entry_name(index: int) -> str:
    return f"Entry #{index}"


@dataclass(frozen=True, slots=True)
class MarketConfig:
    """Static description of a market known ahead of time."""

    market_id: str
    display_order: int
    name: str
    close_date: str | None
    confirmed_winner: str | None
    entry_map: Mapping[int, str]

    @property
    def is_settled(self) -> bool:
        return self.confirmed_winner is not None


@dataclass(frozen=True, slots=True)
class LiveMarket:
    """Outcome of a live-market detection cycle."""

    market_id: str
    market_name: str
    status: MarketStatus
    entry_map: Mapping[int, str]
    is_known: bool

    @property
    def is_live(self) -> bool:
        return self.status is MarketStatus.ONGOING


@dataclass(slots=True)
class ModelStats:
    index: int
    model: str
    average: float
    eval_count: int
    scores: list[float] = field(default_factory=list)


@dataclass(slots=True)
class RankingEntry:
    rank: int
    model: str
    average: float
    belief: float | None
    scores: list[float] = field(default_factory=list)


@dataclass(slots=True)
class Prediction:
    """Belief pipeline output for a single market."""

    market_id: str
    per_model_stats: list[ModelStats]
    beliefs: dict[str, float]
    predicted_winner: str | None
    top_belief: float
    max_eval_count: int
    rankings: list[RankingEntry]
    raw: list[Any] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class WinnerResolution:
    winner: str
    source: WinnerSource

    @property
    def is_determined(self) -> bool:
        return self.source is not WinnerSource.UNAVAILABLE
