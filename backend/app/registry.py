"""Declarative registry of known Delphi markets and hollow "ghost" market ids.

The registry is loaded once at startup from ``app/data/markets.json`` (or the
file named by ``MARKET_REGISTRY_PATH``). Market entries are immutable; the
ghost set only ever grows while the process runs.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from app.core.config import Settings, get_settings
from app.domain import MarketConfig

DEFAULT_REGISTRY_PATH = Path(__file__).parent / "data" / "markets.json"


class MarketRecord(BaseModel):
    market_id: str
    display_order: int
    name: str
    close_date: str | None = None
    confirmed_winner: str | None = None
    entry_map: dict[int, str] = Field(default_factory=dict)

    @field_validator("market_id", mode="before")
    @classmethod
    def _coerce_market_id(cls, value: object) -> str:
        return str(value)

    @field_validator("entry_map")
    @classmethod
    def _require_dense_indices(cls, value: dict[int, str]) -> dict[int, str]:
        indices = sorted(value)
        if indices != list(range(len(indices))):
            raise ValueError("entry_map indices must be dense and start at 0")
        return dict(sorted(value.items()))

    def to_config(self) -> MarketConfig:
        return MarketConfig(
            market_id=self.market_id,
            display_order=self.display_order,
            name=self.name,
            close_date=self.close_date,
            confirmed_winner=self.confirmed_winner,
            entry_map=dict(self.entry_map),
        )


class RegistryFile(BaseModel):
    version: int
    ghost_market_ids: list[str] = Field(default_factory=list)
    markets: list[MarketRecord]

    @field_validator("ghost_market_ids", mode="before")
    @classmethod
    def _coerce_ghost_ids(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            raise ValueError("ghost_market_ids must be a list")
        return [str(item) for item in value]


class MarketRegistry:
    """Lookup facade over static market configs plus the runtime ghost set."""

    def __init__(
        self,
        markets: Iterable[MarketConfig],
        *,
        ghost_market_ids: Iterable[str] = (),
        version: int = 0,
    ) -> None:
        self.version = version
        self._markets: dict[str, MarketConfig] = {}
        for market in markets:
            if market.market_id in self._markets:
                raise ValueError(f"Duplicate market id in registry: {market.market_id}")
            self._markets[market.market_id] = market
        self._ghosts: set[str] = {str(market_id) for market_id in ghost_market_ids}

    @classmethod
    def from_file(
        cls, path: Path, *, extra_ghost_ids: Iterable[str] = ()
    ) -> "MarketRegistry":
        document = RegistryFile.model_validate_json(path.read_text(encoding="utf-8"))
        registry = cls(
            (record.to_config() for record in document.markets),
            ghost_market_ids=[*document.ghost_market_ids, *extra_ghost_ids],
            version=document.version,
        )
        logger.info(
            "Loaded market registry v{} from {}: {} markets, {} ghost ids",
            registry.version,
            path,
            len(registry._markets),
            len(registry._ghosts),
        )
        return registry

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MarketRegistry":
        settings = settings or get_settings()
        path = (
            Path(settings.market_registry_path)
            if settings.market_registry_path
            else DEFAULT_REGISTRY_PATH
        )
        return cls.from_file(path, extra_ghost_ids=settings.ghost_market_ids)

    def get(self, market_id: str | int | None) -> MarketConfig | None:
        if market_id is None:
            return None
        return self._markets.get(str(market_id))

    def markets(self) -> list[MarketConfig]:
        """All markets ordered oldest to newest."""
        return sorted(self._markets.values(), key=lambda market: market.display_order)

    def settled_markets(self) -> list[MarketConfig]:
        return [market for market in self.markets() if market.is_settled]

    def latest_settled(self) -> MarketConfig | None:
        settled = self.settled_markets()
        return settled[-1] if settled else None

    def is_ghost(self, market_id: str | int) -> bool:
        return str(market_id) in self._ghosts

    def mark_ghost(self, market_id: str | int) -> None:
        market_id = str(market_id)
        if market_id not in self._ghosts:
            self._ghosts.add(market_id)
            logger.warning("Market {} classified as ghost; it will not be probed again", market_id)

    @property
    def ghost_ids(self) -> frozenset[str]:
        return frozenset(self._ghosts)


__all__ = ["DEFAULT_REGISTRY_PATH", "MarketRegistry", "MarketRecord", "RegistryFile"]
