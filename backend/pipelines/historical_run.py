"""Standalone job that scores belief predictions against settled market winners."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from loguru import logger

from app.core.config import Settings, get_settings
from app.registry import MarketRegistry
from app.schemas import HistoricalAnalysisResponse
from app.services.dashboard_service import DashboardService
from delphi.client import DelphiClient


class HistoricalAnalysisPipeline:
    """Run the historical accuracy analysis once, outside the API process."""

    def __init__(self, settings: Settings | None = None, *, client: DelphiClient | None = None) -> None:
        self.settings = settings or get_settings()
        self._service = DashboardService(
            client or DelphiClient(),
            MarketRegistry.from_settings(self.settings),
            settings=self.settings,
        )

    async def run(self, *, market_ids: list[str] | None = None) -> HistoricalAnalysisResponse:
        summary = await self._service.build_historical(market_ids or None)
        logger.info(
            "Historical run finished: markets={}, correct={}, win_rate={:.1f}%",
            summary.totalMarkets,
            summary.correctPredictions,
            summary.winRate,
        )
        return summary

    async def close(self) -> None:
        await self._service.aclose()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compare evaluation-derived beliefs with the winners of settled markets",
    )
    parser.add_argument(
        "--market-id",
        dest="market_ids",
        action="append",
        help="Restrict the report to specific settled market ids (can be provided multiple times)",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def _write_summary(summary: HistoricalAnalysisResponse, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.model_dump(mode="json", exclude_none=True), indent=2))
    logger.info("Historical summary written to {}", path)


async def _run(args: argparse.Namespace) -> HistoricalAnalysisResponse:
    pipeline = HistoricalAnalysisPipeline(get_settings())
    try:
        return await pipeline.run(market_ids=args.market_ids)
    finally:
        await pipeline.close()


def main() -> HistoricalAnalysisResponse:
    args = _parse_args()
    summary = asyncio.run(_run(args))
    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
