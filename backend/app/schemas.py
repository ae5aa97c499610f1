from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class LiveMarketResponse(BaseModel):
    market_id: str
    market_name: str
    status: str
    is_live: bool
    entry_map: dict[str, str]
    entry_count: int
    is_known_market: bool
    fetched_at: datetime


class EntryMapResponse(BaseModel):
    market_id: str
    entry_count: int
    map: dict[str, str]
    map_source: str
    fetched_at: datetime


class DelphiChartResponse(BaseModel):
    market_id: str
    timeframe: str
    chart_source: str
    market_chart: dict[str, Any]
    entry_map: dict[str, str]
    fetched_at: datetime


class HumanBeliefResponse(BaseModel):
    market_id: str
    market_name: str
    status: str
    model_names: list[str]
    raw: list[Any]
    beliefs: dict[str, float] = Field(default_factory=dict)
    predicted_winner: str | None = None
    fetched_at: datetime


class RankingItem(BaseModel):
    rank: int
    model: str
    average: float
    belief: float | None = None
    scores: list[float] = Field(default_factory=list)


class HistoricalMarket(BaseModel):
    marketId: str
    marketName: str
    actualWinner: str | None = None
    winnerSource: str | None = None
    predictedWinner: str | None = None
    beliefScore: float | None = None
    correct: bool | None = None
    evalCount: int | None = None
    allBeliefs: dict[str, float] | None = None
    rankings: list[RankingItem] | None = None
    error: str | None = None


class HistoricalAnalysisResponse(BaseModel):
    markets: list[HistoricalMarket]
    winRate: float
    totalMarkets: int
    correctPredictions: int
    fetched_at: datetime


class HealthResponse(BaseModel):
    ok: bool = True
    version: str
    fetched_at: datetime
