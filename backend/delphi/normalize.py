from __future__ import annotations

import math
from typing import Any, Mapping, Sequence

from dateutil import parser as date_parser


def _parse_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def parse_index(value: Any) -> int | None:
    """Return a non-negative integer index, accepting integral floats and numeric strings."""
    parsed = _parse_float(value)
    if parsed is None or parsed < 0 or not parsed.is_integer():
        return None
    return int(parsed)


def extract_evals(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, Mapping):
        return []
    evals = payload.get("evals")
    if not isinstance(evals, list):
        return []
    return [record for record in evals if isinstance(record, Mapping)]


def aggregate_score(record: Mapping[str, Any]) -> float:
    """Aggregate score of a single evaluation; missing or non-finite values count as 0."""
    value = _parse_float(record.get("aggregate"))
    return value if value is not None else 0.0


def extract_market_chart(payload: Any) -> dict[str, Any] | None:
    """Locate the chart object under any of the known upstream nestings."""
    if not isinstance(payload, Mapping):
        return None
    market_chart = payload.get("market_chart")
    if isinstance(market_chart, Mapping) and "data_points" in market_chart:
        return dict(market_chart)
    if "data_points" in payload:
        return dict(payload)
    data = payload.get("data")
    if isinstance(data, Mapping):
        nested = data.get("market_chart")
        if isinstance(nested, Mapping) and "data_points" in nested:
            return dict(nested)
    return None


def latest_prices(market_chart: Mapping[str, Any]) -> dict[int, float]:
    """Map entry index to numeric price for the most recent chart data point."""
    data_points = market_chart.get("data_points")
    if not isinstance(data_points, Sequence) or isinstance(data_points, (str, bytes)):
        return {}
    if not data_points:
        return {}
    latest = data_points[-1]
    if not isinstance(latest, Mapping):
        return {}
    entries = latest.get("entries")
    if not isinstance(entries, list):
        return {}

    prices: dict[int, float] = {}
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        index = parse_index(entry.get("entry_idx"))
        price = _parse_float(entry.get("price"))
        if index is None or price is None:
            continue
        prices[index] = price
    return prices


def _created_sort_key(item: Mapping[str, Any]) -> float:
    value = item.get("created_ts")
    numeric = _parse_float(value)
    if numeric is not None:
        return numeric
    if isinstance(value, str) and value:
        try:
            return date_parser.isoparse(value).timestamp()
        except (ValueError, OverflowError):
            return 0.0
    return 0.0


def extract_market_items(payload: Any) -> list[dict[str, Any]]:
    """Return listing items that carry a market id, newest ``created_ts`` first."""
    if not isinstance(payload, Mapping):
        return []
    items = payload.get("items")
    if not isinstance(items, list):
        return []
    markets = [
        dict(item)
        for item in items
        if isinstance(item, Mapping) and item.get("market_id") not in (None, "")
    ]
    markets.sort(key=_created_sort_key, reverse=True)
    return markets
