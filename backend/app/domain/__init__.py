"""Domain models representing markets, beliefs, and resolutions."""

from .models import (
    UNDETERMINED_WINNER,
    LiveMarket,
    MarketConfig,
    MarketStatus,
    ModelStats,
    Prediction,
    RankingEntry,
    WinnerResolution,
    WinnerSource,
    placeholder_entry_name,
)

__all__ = [
    "UNDETERMINED_WINNER",
    "LiveMarket",
    "MarketConfig",
    "MarketStatus",
    "ModelStats",
    "Prediction",
    "RankingEntry",
    "WinnerResolution",
    "WinnerSource",
    "placeholder_entry_name",
]
