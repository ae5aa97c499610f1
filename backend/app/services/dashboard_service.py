"""Request-level orchestration behind the dashboard API endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping

from loguru import logger

from app.core.config import Settings, get_settings
from app.domain import LiveMarket, MarketConfig
from app.errors import UpstreamPayloadError
from app.registry import MarketRegistry
from app.schemas import (
    DelphiChartResponse,
    EntryMapResponse,
    HistoricalAnalysisResponse,
    HistoricalMarket,
    HumanBeliefResponse,
    LiveMarketResponse,
    RankingItem,
)
from delphi.client import DelphiClient
from delphi.normalize import extract_market_chart

from .cache import CHART, HISTORICAL_ANALYSIS, HUMAN_BELIEF, LIVE_MARKET, CacheService
from .live_market import LiveMarketDetector
from .prediction import PredictionEngine
from .winner import ResolutionContext, WinnerResolver, names_match

DEFAULT_MARKET_NAME = "AI Model Performance"
NO_PREDICTION = "No prediction"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_map(entry_map: Mapping[int, str]) -> dict[str, str]:
    return {str(index): name for index, name in sorted(entry_map.items())}


class DashboardService:
    """Serve live-market, chart, belief and historical payloads through the cache slots."""

    def __init__(
        self,
        client: DelphiClient,
        registry: MarketRegistry,
        *,
        settings: Settings | None = None,
        cache: CacheService | None = None,
        detector: LiveMarketDetector | None = None,
        engine: PredictionEngine | None = None,
        resolver: WinnerResolver | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client
        self.registry = registry
        self.cache = cache or CacheService.from_settings(self.settings)
        self.detector = detector or LiveMarketDetector(
            client,
            registry,
            ongoing_limit=self.settings.ongoing_market_limit,
            probe_ceiling=self.settings.entry_probe_ceiling,
        )
        self.engine = engine or PredictionEngine(client)
        self.resolver = resolver or WinnerResolver.default(
            client, timeframe=self.settings.default_timeframe
        )

    async def live_market(self) -> LiveMarket:
        return await self.cache.get_or_compute(LIVE_MARKET, self.detector.detect)

    async def live_market_payload(self) -> LiveMarketResponse:
        live = await self.live_market()
        return LiveMarketResponse(
            market_id=live.market_id,
            market_name=live.market_name,
            status=live.status.value,
            is_live=live.is_live,
            entry_map=_json_map(live.entry_map),
            entry_count=len(live.entry_map),
            is_known_market=live.is_known,
            fetched_at=_utcnow(),
        )

    # ------------------------------------------------------------------
    # Entry maps

    async def resolve_entry_map(self, market_id: str) -> tuple[dict[int, str], str]:
        config = self.registry.get(market_id)
        if config is not None:
            return dict(config.entry_map), "registry"

        live = await self.live_market()
        if live.market_id == market_id:
            return dict(live.entry_map), "live_detection"

        return await self.detector.discover_entry_map(market_id), "discovered"

    async def entry_map_payload(self, market_id: str | None = None) -> EntryMapResponse:
        if market_id is None:
            market_id = (await self.live_market()).market_id
        entry_map, source = await self.resolve_entry_map(market_id)
        return EntryMapResponse(
            market_id=market_id,
            entry_count=len(entry_map),
            map=_json_map(entry_map),
            map_source=source,
            fetched_at=_utcnow(),
        )

    # ------------------------------------------------------------------
    # Chart

    async def chart_payload(
        self, *, timeframe: str | None = None, market_id: str | None = None
    ) -> DelphiChartResponse:
        timeframe = timeframe or self.settings.default_timeframe
        if market_id is None:
            market_id = (await self.live_market()).market_id

        async def compute() -> DelphiChartResponse:
            return await self._build_chart(market_id, timeframe)

        # the slot is bound to market and timeframe together
        return await self.cache.get_or_compute(CHART, compute, f"{market_id}|{timeframe}")

    async def _build_chart(self, market_id: str, timeframe: str) -> DelphiChartResponse:
        url = self.client.chart_url(market_id, timeframe)
        logger.info("Fetching fresh Delphi chart from {}", url)
        result = await self.client.fetch_json(url)
        if result.json is None:
            raise UpstreamPayloadError(
                "bad_upstream_json",
                chart_source=url,
                status=result.status,
                body_preview=(result.text or "")[:200],
            )

        market_chart = extract_market_chart(result.json)
        if market_chart is None:
            keys = sorted(result.json) if isinstance(result.json, Mapping) else []
            raise UpstreamPayloadError("unexpected_upstream_shape", chart_source=url, keys=keys)

        entry_map, _ = await self.resolve_entry_map(market_id)
        return DelphiChartResponse(
            market_id=market_id,
            timeframe=timeframe,
            chart_source=url,
            market_chart=market_chart,
            entry_map=_json_map(entry_map),
            fetched_at=_utcnow(),
        )

    # ------------------------------------------------------------------
    # Human belief

    async def human_belief_payload(self) -> HumanBeliefResponse:
        live = await self.live_market()

        async def compute() -> HumanBeliefResponse:
            return await self._build_human_belief(live)

        return await self.cache.get_or_compute(HUMAN_BELIEF, compute, live.market_id)

    async def _build_human_belief(self, live: LiveMarket) -> HumanBeliefResponse:
        prediction = await self.engine.predict(
            live.market_id,
            live.entry_map,
            deadline=self.settings.belief_deadline_seconds,
        )
        return HumanBeliefResponse(
            market_id=live.market_id,
            market_name=live.market_name or DEFAULT_MARKET_NAME,
            status=live.status.value,
            model_names=[live.entry_map[index] for index in sorted(live.entry_map)],
            raw=prediction.raw,
            beliefs=prediction.beliefs,
            predicted_winner=prediction.predicted_winner,
            fetched_at=_utcnow(),
        )

    # ------------------------------------------------------------------
    # Historical analysis

    async def historical_analysis(self) -> HistoricalAnalysisResponse:
        return await self.cache.get_or_compute(HISTORICAL_ANALYSIS, self.build_historical)

    async def build_historical(
        self, market_ids: Iterable[str] | None = None
    ) -> HistoricalAnalysisResponse:
        """Analyze settled markets, optionally only those in ``market_ids``; bypasses the cache."""
        configs = self.registry.settled_markets()
        if market_ids is not None:
            wanted = {str(market_id) for market_id in market_ids}
            configs = [config for config in configs if config.market_id in wanted]

        results: list[HistoricalMarket] = []
        for config in configs:
            try:
                results.append(await self.analyze_market(config))
            except Exception as exc:
                logger.exception("Error processing market {}", config.market_id)
                results.append(
                    HistoricalMarket(
                        marketId=config.market_id,
                        marketName=config.name,
                        error=str(exc) or "Failed to fetch data",
                    )
                )

        successful = [market for market in results if market.error is None]
        correct = sum(1 for market in successful if market.correct)
        win_rate = (correct / len(successful)) * 100 if successful else 0.0
        logger.info(
            "Historical analysis: markets={}, correct={}, win_rate={:.0f}%",
            len(successful),
            correct,
            win_rate,
        )
        return HistoricalAnalysisResponse(
            markets=results,
            winRate=win_rate,
            totalMarkets=len(successful),
            correctPredictions=correct,
            fetched_at=_utcnow(),
        )

    async def analyze_market(self, config: MarketConfig) -> HistoricalMarket:
        logger.info("Analyzing market {}: {}", config.market_id, config.name)
        prediction = await self.engine.predict(config.market_id, config.entry_map)
        resolution = await self.resolver.resolve(
            ResolutionContext(
                market_id=config.market_id, entry_map=config.entry_map, config=config
            )
        )
        correct = resolution.is_determined and names_match(
            prediction.predicted_winner, resolution.winner
        )
        return HistoricalMarket(
            marketId=config.market_id,
            marketName=config.name,
            actualWinner=resolution.winner,
            winnerSource=resolution.source.value,
            predictedWinner=prediction.predicted_winner or NO_PREDICTION,
            beliefScore=prediction.top_belief,
            correct=correct,
            evalCount=prediction.max_eval_count,
            allBeliefs=prediction.beliefs,
            rankings=[
                RankingItem(
                    rank=ranking.rank,
                    model=ranking.model,
                    average=ranking.average,
                    belief=ranking.belief,
                    scores=ranking.scores,
                )
                for ranking in prediction.rankings
            ],
        )

    async def aclose(self) -> None:
        await self.client.aclose()


__all__ = ["DashboardService"]
