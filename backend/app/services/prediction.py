"""Turn per-model evaluation series into normalized belief percentages."""

from __future__ import annotations

import asyncio
from typing import Any, Hashable, Mapping, TypeVar

from loguru import logger

from app.domain import ModelStats, Prediction, RankingEntry
from delphi.client import DelphiClient
from delphi.normalize import aggregate_score, extract_evals

K = TypeVar("K", bound=Hashable)


def compute_beliefs(scores: Mapping[K, float]) -> dict[K, float]:
    """Normalize raw scores into percentages summing to 100.

    Returns an empty mapping when the total is not positive, since no model
    carries any signal in that case.
    """
    total = sum(scores.values())
    if total <= 0:
        return {}
    return {key: (score / total) * 100 for key, score in scores.items()}


def pick_winner(beliefs: Mapping[str, float]) -> tuple[str | None, float]:
    """Return the model with strictly the highest belief.

    Iteration follows entry-map index order and the comparison is strict, so
    on a tie the earliest index keeps the win.
    """
    winner: str | None = None
    top = 0.0
    for model, belief in beliefs.items():
        if belief > top:
            top = belief
            winner = model
    return winner, top


def _average(scores: list[float]) -> float:
    return sum(scores) / len(scores) if scores else 0.0


class PredictionEngine:
    def __init__(self, client: DelphiClient) -> None:
        self._client = client

    async def _fetch_series(
        self, market_id: str, indices: list[int], deadline: float | None
    ) -> list[Any]:
        results = await asyncio.gather(
            *(
                self._client.fetch_evals(market_id, index, deadline=deadline)
                for index in indices
            ),
            return_exceptions=True,
        )
        payloads: list[Any] = []
        for index, result in zip(indices, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Eval fetch for market {} model {} raised: {}", market_id, index, result
                )
                payloads.append(None)
            elif not result.ok:
                payloads.append(None)
            else:
                payloads.append(result.json)
        return payloads

    async def predict(
        self,
        market_id: str,
        entry_map: Mapping[int, str],
        *,
        deadline: float | None = None,
    ) -> Prediction:
        indices = sorted(entry_map)
        payloads = await self._fetch_series(market_id, indices, deadline)
        return build_prediction(market_id, entry_map, payloads)


def build_prediction(
    market_id: str, entry_map: Mapping[int, str], payloads: list[Any]
) -> Prediction:
    """Compute a prediction from eval payloads listed in entry-map index order.

    Shares are normalized per index. Entries that repeat a model name are
    merged in ``beliefs`` by summing their shares, while each ranking row
    keeps the share of its own index.
    """
    stats: list[ModelStats] = []
    for index, payload in zip(sorted(entry_map), payloads):
        scores = [aggregate_score(record) for record in extract_evals(payload)]
        stats.append(
            ModelStats(
                index=index,
                model=entry_map[index],
                average=_average(scores),
                eval_count=len(scores),
                scores=scores,
            )
        )

    shares = compute_beliefs({stat.index: stat.average for stat in stats})
    beliefs: dict[str, float] = {}
    for stat in stats:
        if stat.index in shares:
            beliefs[stat.model] = beliefs.get(stat.model, 0.0) + shares[stat.index]
    winner, top_belief = pick_winner(beliefs)

    ordered = sorted(stats, key=lambda stat: stat.average, reverse=True)
    rankings = [
        RankingEntry(
            rank=position,
            model=stat.model,
            average=stat.average,
            belief=shares.get(stat.index),
            scores=list(stat.scores),
        )
        for position, stat in enumerate(ordered, start=1)
    ]

    max_eval_count = max((stat.eval_count for stat in stats), default=0)
    logger.info(
        "Market {} prediction: winner={} ({:.2f}%), models={}, max_evals={}",
        market_id,
        winner,
        top_belief,
        len(stats),
        max_eval_count,
    )
    return Prediction(
        market_id=market_id,
        per_model_stats=stats,
        beliefs=beliefs,
        predicted_winner=winner,
        top_belief=top_belief,
        max_eval_count=max_eval_count,
        rankings=rankings,
        raw=list(payloads),
    )


__all__ = ["PredictionEngine", "build_prediction", "compute_beliefs", "pick_winner"]
