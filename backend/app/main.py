from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from loguru import logger

from delphi.client import DelphiClient

from . import schemas
from .core.config import settings
from .errors import DelphiUpstreamError
from .registry import MarketRegistry
from .services.dashboard_service import DashboardService

NO_CACHE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}

app = FastAPI(title="Delphi Beliefs API", version="0.1.0", debug=settings.debug)


@lru_cache
def get_dashboard_service() -> DashboardService:
    """Process-wide service; its cache slots and ghost set live as long as the app."""

    return DashboardService(
        DelphiClient(),
        MarketRegistry.from_settings(settings),
        settings=settings,
    )


def _dashboard_service() -> DashboardService:
    return get_dashboard_service()


@app.on_event("startup")
def on_startup() -> None:
    """Load the market registry before the first request arrives."""

    get_dashboard_service()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if get_dashboard_service.cache_info().currsize:
        await get_dashboard_service().aclose()
        get_dashboard_service.cache_clear()


@app.exception_handler(DelphiUpstreamError)
async def upstream_error_handler(request: Request, exc: DelphiUpstreamError) -> JSONResponse:
    logger.warning("Upstream error on {}: {} {}", request.url.path, exc.error, exc.details)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Unhandled error on {}", request.url.path)
    return JSONResponse(status_code=500, content={"error": "internal_error"})


@app.get("/api/health", response_model=schemas.HealthResponse, tags=["system"])
def healthcheck() -> schemas.HealthResponse:
    """Basic readiness probe consumed by infrastructure monitors."""

    return schemas.HealthResponse(
        ok=True, version=app.version, fetched_at=datetime.now(timezone.utc)
    )


@app.get("/api/live-market", response_model=schemas.LiveMarketResponse, tags=["markets"])
async def live_market(
    response: Response,
    service: DashboardService = Depends(_dashboard_service),
):
    """Return the market currently considered live, or the latest settled fallback."""

    response.headers.update(NO_CACHE_HEADERS)
    return await service.live_market_payload()


@app.get("/api/entry-map", response_model=schemas.EntryMapResponse, tags=["markets"])
async def entry_map(
    response: Response,
    market_id: Annotated[
        str | None, Query(description="Market id; defaults to the live market")
    ] = None,
    service: DashboardService = Depends(_dashboard_service),
):
    """Map model indices to model names for a market."""

    response.headers.update(NO_CACHE_HEADERS)
    return await service.entry_map_payload(market_id)


@app.get("/api/delphi-chart", response_model=schemas.DelphiChartResponse, tags=["markets"])
async def delphi_chart(
    response: Response,
    timeframe: Annotated[str | None, Query(description="Upstream chart timeframe")] = None,
    market_id: Annotated[
        str | None, Query(description="Market id; defaults to the live market")
    ] = None,
    service: DashboardService = Depends(_dashboard_service),
):
    """Proxy the upstream price chart together with the market's entry map."""

    response.headers.update(NO_CACHE_HEADERS)
    return await service.chart_payload(timeframe=timeframe, market_id=market_id)


@app.get("/api/human-belief", response_model=schemas.HumanBeliefResponse, tags=["beliefs"])
async def human_belief(
    response: Response,
    service: DashboardService = Depends(_dashboard_service),
):
    """Raw evaluation payloads and derived beliefs for the live market."""

    response.headers.update(NO_CACHE_HEADERS)
    return await service.human_belief_payload()


@app.get(
    "/api/historical-analysis",
    response_model=schemas.HistoricalAnalysisResponse,
    response_model_exclude_none=True,
    tags=["beliefs"],
)
async def historical_analysis(
    response: Response,
    service: DashboardService = Depends(_dashboard_service),
):
    """Prediction accuracy across settled markets."""

    response.headers.update(NO_CACHE_HEADERS)
    return await service.historical_analysis()
