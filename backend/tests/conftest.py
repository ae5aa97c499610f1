from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.domain import MarketConfig
from app.registry import MarketRegistry
from delphi.client import FetchResult


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDelphiClient:
    """In-memory stand-in for DelphiClient that records every upstream call.

    ``evals`` maps ``(market_id, model_idx)`` to a list of aggregate scores or
    to a ready-made FetchResult; unknown pairs answer with an empty series.
    """

    base_url = "https://delphi.test/api"

    def __init__(self) -> None:
        self.ongoing: list[dict[str, Any]] = []
        self.listing: FetchResult | None = None
        self.evals: dict[tuple[str, int], Any] = {}
        self.charts: dict[str, Any] = {}
        self.markets: dict[str, Any] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.closed = False

    def calls_of(self, kind: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == kind]

    async def list_markets(self, *, status: str, limit: int) -> FetchResult:
        self.calls.append(("list", status, limit))
        if self.listing is not None:
            return self.listing
        return FetchResult(ok=True, status=200, json={"items": list(self.ongoing)}, text="")

    async def fetch_evals(
        self, market_id: str, model_idx: int, *, deadline: float | None = None
    ) -> FetchResult:
        self.calls.append(("evals", str(market_id), model_idx, deadline))
        value = self.evals.get((str(market_id), model_idx), [])
        if isinstance(value, FetchResult):
            return value
        payload = {"evals": [{"aggregate": score, "benchmark": "mmlu"} for score in value]}
        return FetchResult(ok=True, status=200, json=payload, text="")

    def chart_url(self, market_id: str, timeframe: str) -> str:
        return f"{self.base_url}/markets/{market_id}/chart?timeframe={timeframe}"

    async def fetch_json(self, url: str) -> FetchResult:
        self.calls.append(("chart", url))
        market_id = url.split("/markets/", 1)[1].split("/", 1)[0]
        value = self.charts.get(market_id)
        if isinstance(value, FetchResult):
            return value
        if value is None:
            return FetchResult(ok=False, status=404, json=None, text="not found")
        return FetchResult(ok=True, status=200, json=value, text="")

    async def fetch_chart(self, market_id: str, timeframe: str = "auto") -> FetchResult:
        return await self.fetch_json(self.chart_url(market_id, timeframe))

    async def fetch_market(self, market_id: str) -> FetchResult:
        self.calls.append(("market", str(market_id)))
        value = self.markets.get(str(market_id))
        if value is None:
            return FetchResult(ok=False, status=404, json={"detail": "Not Found"}, text="")
        return FetchResult(ok=True, status=200, json=value, text="")

    async def aclose(self) -> None:
        self.closed = True


def chart_payload(prices: dict[int, Any]) -> dict[str, Any]:
    return {
        "market_chart": {
            "data_points": [
                {"ts": 1, "entries": [{"entry_idx": 0, "price": "0.5"}]},
                {
                    "ts": 2,
                    "entries": [
                        {"entry_idx": index, "price": price} for index, price in prices.items()
                    ],
                },
            ]
        }
    }


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        delphi_base_url="https://delphi.test/api",
        ghost_market_ids=[],
        market_registry_path=None,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def registry() -> MarketRegistry:
    return MarketRegistry(
        [
            MarketConfig(
                market_id="0",
                display_order=1,
                name="Middleweight General Reasoning",
                close_date="2025-11-14",
                confirmed_winner="Qwen/Qwen3-30B-A3B-Instruct-2507",
                entry_map={0: "Qwen/Qwen3-30B-A3B-Instruct-2507", 1: "google/gemma-3-27b-it"},
            ),
            MarketConfig(
                market_id="3",
                display_order=3,
                name="Lightweight General Reasoning",
                close_date="2026-01-09",
                confirmed_winner="Qwen/Qwen3-8B",
                entry_map={0: "meta-llama/Llama-3.1-8B-Instruct", 1: "Qwen/Qwen3-8B"},
            ),
            MarketConfig(
                market_id="4",
                display_order=4,
                name="Frontier Fast Models",
                close_date=None,
                confirmed_winner=None,
                entry_map={0: "claude-haiku-4-5", 1: "gpt-5-mini"},
            ),
        ],
        ghost_market_ids=["2"],
        version=1,
    )


@pytest.fixture
def fake_client() -> FakeDelphiClient:
    return FakeDelphiClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
