from __future__ import annotations

import asyncio

import pytest

from conftest import chart_payload

from app.errors import UpstreamPayloadError
from app.services.cache import CacheService
from app.services.dashboard_service import DashboardService
from delphi.client import FetchResult


@pytest.fixture
def service(fake_client, registry, test_settings, clock) -> DashboardService:
    return DashboardService(
        fake_client,
        registry,
        settings=test_settings,
        cache=CacheService.from_settings(test_settings, clock=clock),
    )


def _go_live(fake_client, market_id: str = "4") -> None:
    fake_client.ongoing = [{"market_id": market_id, "market_name": "Live", "created_ts": 1}]
    fake_client.evals[(market_id, 0)] = [80.0]


@pytest.mark.asyncio
async def test_live_market_detection_is_cached(service, fake_client, clock):
    _go_live(fake_client)

    first = await service.live_market_payload()
    clock.advance(59)
    second = await service.live_market_payload()

    assert first.market_id == second.market_id == "4"
    assert first.is_live and first.is_known_market
    assert first.entry_count == 2
    assert first.entry_map == {"0": "claude-haiku-4-5", "1": "gpt-5-mini"}
    assert len(fake_client.calls_of("list")) == 1

    clock.advance(1)
    await service.live_market_payload()
    assert len(fake_client.calls_of("list")) == 2


@pytest.mark.asyncio
async def test_chart_served_from_cache_within_ttl(service, fake_client, clock):
    _go_live(fake_client)
    fake_client.charts["4"] = chart_payload({0: "0.6", 1: "0.4"})

    first = await service.chart_payload()
    clock.advance(4)
    second = await service.chart_payload()

    assert first.model_dump_json() == second.model_dump_json()
    assert len(fake_client.calls_of("chart")) == 1
    assert first.entry_map == {"0": "claude-haiku-4-5", "1": "gpt-5-mini"}
    assert first.timeframe == "auto"

    clock.advance(1)
    await service.chart_payload()
    assert len(fake_client.calls_of("chart")) == 2


@pytest.mark.asyncio
async def test_chart_cache_dropped_when_market_changes(service, fake_client):
    fake_client.charts["4"] = chart_payload({0: "0.6"})
    fake_client.charts["0"] = chart_payload({0: "0.3"})

    first = await service.chart_payload(market_id="4")
    second = await service.chart_payload(market_id="0")

    assert first.market_id == "4"
    assert second.market_id == "0"
    assert second.market_chart != first.market_chart
    assert len(fake_client.calls_of("chart")) == 2


@pytest.mark.asyncio
async def test_chart_timeframe_change_refetches(service, fake_client):
    fake_client.charts["4"] = chart_payload({0: "0.6"})

    await service.chart_payload(market_id="4", timeframe="auto")
    other = await service.chart_payload(market_id="4", timeframe="1d")

    assert other.timeframe == "1d"
    assert len(fake_client.calls_of("chart")) == 2


@pytest.mark.asyncio
async def test_concurrent_chart_requests_keep_their_own_timeframe(service, fake_client):
    fake_client.charts["4"] = chart_payload({0: "0.6"})
    fetch = fake_client.fetch_json

    async def slow_fetch(url: str):
        await asyncio.sleep(0.01)
        return await fetch(url)

    fake_client.fetch_json = slow_fetch

    daily, automatic = await asyncio.gather(
        service.chart_payload(market_id="4", timeframe="1d"),
        service.chart_payload(market_id="4", timeframe="auto"),
    )

    assert daily.timeframe == "1d"
    assert automatic.timeframe == "auto"
    assert automatic.chart_source.endswith("timeframe=auto")
    assert len(fake_client.calls_of("chart")) == 2


@pytest.mark.asyncio
async def test_chart_bad_json_raises_with_diagnostics(service, fake_client):
    fake_client.charts["4"] = FetchResult(ok=False, status=503, json=None, text="x" * 500)

    with pytest.raises(UpstreamPayloadError) as excinfo:
        await service.chart_payload(market_id="4")

    payload = excinfo.value.to_payload()
    assert payload["error"] == "bad_upstream_json"
    assert payload["status"] == 503
    assert len(payload["body_preview"]) == 200


@pytest.mark.asyncio
async def test_chart_unexpected_shape_is_not_cached(service, fake_client):
    fake_client.charts["4"] = {"points": []}

    with pytest.raises(UpstreamPayloadError) as excinfo:
        await service.chart_payload(market_id="4")
    assert excinfo.value.to_payload()["keys"] == ["points"]

    fake_client.charts["4"] = chart_payload({0: "0.6"})
    recovered = await service.chart_payload(market_id="4")
    assert recovered.market_id == "4"


@pytest.mark.asyncio
async def test_human_belief_uses_deadline_and_caches(service, fake_client, clock):
    _go_live(fake_client)
    fake_client.evals[("4", 1)] = [20.0]

    first = await service.human_belief_payload()
    clock.advance(7)
    second = await service.human_belief_payload()

    assert first is second
    assert first.model_names == ["claude-haiku-4-5", "gpt-5-mini"]
    assert first.beliefs == pytest.approx({"claude-haiku-4-5": 80.0, "gpt-5-mini": 20.0})
    assert first.predicted_winner == "claude-haiku-4-5"
    assert first.raw[1] == {"evals": [{"aggregate": 20.0, "benchmark": "mmlu"}]}
    belief_calls = [call for call in fake_client.calls_of("evals") if call[3] is not None]
    assert {call[3] for call in belief_calls} == {9.0}
    assert len(belief_calls) == 2


@pytest.mark.asyncio
async def test_human_belief_recomputed_after_market_changes(service, fake_client, clock):
    _go_live(fake_client, "4")
    before = await service.human_belief_payload()

    # the live-market slot expires and detection now lands on the settled fallback
    fake_client.ongoing = []
    clock.advance(60)
    after = await service.human_belief_payload()

    assert before.market_id == "4"
    assert after.market_id == "3"
    assert after.status == "closed"


@pytest.mark.asyncio
async def test_entry_map_sources(service, fake_client):
    fake_client.ongoing = [{"market_id": 8, "market_name": "Mystery", "created_ts": 1}]
    fake_client.evals[("8", 0)] = [1.0]
    fake_client.evals[("9", 0)] = [1.0]
    fake_client.evals[("9", 1)] = [1.0]

    registry_map = await service.entry_map_payload("0")
    live_map = await service.entry_map_payload()
    discovered = await service.entry_map_payload("9")

    assert registry_map.map_source == "registry"
    assert registry_map.entry_count == 2
    assert live_map.market_id == "8"
    assert live_map.map_source == "live_detection"
    assert live_map.map == {"0": "Entry #0"}
    assert discovered.map_source == "discovered"
    assert discovered.map == {"0": "Entry #0", "1": "Entry #1"}


@pytest.mark.asyncio
async def test_historical_analysis_scores_settled_markets(service, fake_client, clock):
    # market 0: Qwen wins on evals and is the confirmed winner
    fake_client.evals[("0", 0)] = [90.0, 80.0]
    fake_client.evals[("0", 1)] = [40.0]
    # market 3: Llama leads the evals but Qwen3-8B is the confirmed winner
    fake_client.evals[("3", 0)] = [70.0]
    fake_client.evals[("3", 1)] = [30.0]
    fake_client.charts["3"] = chart_payload({0: "0.99"})

    report = await service.historical_analysis()

    by_id = {market.marketId: market for market in report.markets}
    assert by_id["0"].correct is True
    assert by_id["0"].predictedWinner == "Qwen/Qwen3-30B-A3B-Instruct-2507"
    assert by_id["0"].evalCount == 2
    assert by_id["0"].rankings[0].scores == [90.0, 80.0]
    assert by_id["3"].correct is False
    assert by_id["3"].actualWinner == "Qwen/Qwen3-8B"
    assert by_id["3"].winnerSource == "confirmed"
    assert report.totalMarkets == 2
    assert report.correctPredictions == 1
    assert report.winRate == pytest.approx(50.0)
    assert "4" not in by_id

    calls_before = len(fake_client.calls)
    clock.advance(29)
    assert await service.historical_analysis() is report
    assert len(fake_client.calls) == calls_before


@pytest.mark.asyncio
async def test_historical_analysis_isolates_market_errors(service, fake_client, monkeypatch):
    fake_client.evals[("0", 0)] = [50.0]
    original = service.analyze_market

    async def flaky(config):
        if config.market_id == "3":
            raise RuntimeError("boom")
        return await original(config)

    monkeypatch.setattr(service, "analyze_market", flaky)

    report = await service.historical_analysis()

    errors = [market for market in report.markets if market.error]
    assert [market.marketId for market in errors] == ["3"]
    assert errors[0].error == "boom"
    assert report.totalMarkets == 1
    assert report.winRate == pytest.approx(100.0)


@pytest.mark.asyncio
async def test_no_evals_means_no_prediction(service):
    report = await service.historical_analysis()

    for market in report.markets:
        assert market.predictedWinner == "No prediction"
        assert market.correct is False
        assert market.allBeliefs == {}
    assert report.winRate == 0.0
