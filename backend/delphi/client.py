from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from app.core.config import settings

NO_STORE_HEADERS = {
    "accept": "application/json",
    "cache-control": "no-store",
    "pragma": "no-cache",
}


@dataclass(slots=True)
class FetchResult:
    """Uniform outcome of an upstream request; ``json`` is None whenever ``ok`` is False."""

    ok: bool
    status: int
    json: Any
    text: str


class DelphiClient:
    """Async wrapper around the public Gensyn Delphi market endpoints.

    Requests never raise to the caller: transport failures, timeouts and
    non-JSON bodies all come back as ``FetchResult(ok=False, json=None)``.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.delphi_api_root).rstrip("/")
        self.timeout = timeout or settings.delphi_request_timeout_seconds
        headers = dict(NO_STORE_HEADERS)
        headers["user-agent"] = user_agent or settings.delphi_user_agent
        self.client = httpx.AsyncClient(
            headers=headers,
            timeout=self.timeout,
            transport=transport,
        )

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def fetch_json(self, url: str) -> FetchResult:
        try:
            response = await self.client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Delphi GET {} failed: {}", url, exc)
            return FetchResult(ok=False, status=0, json=None, text=str(exc))

        text = response.text
        try:
            payload = json.loads(text)
        except ValueError:
            logger.warning(
                "Delphi GET {} returned non-JSON body (status={})", url, response.status_code
            )
            return FetchResult(ok=False, status=response.status_code, json=None, text=text)
        return FetchResult(
            ok=response.is_success, status=response.status_code, json=payload, text=text
        )

    async def fetch_json_with_timeout(self, url: str, deadline: float) -> FetchResult:
        try:
            return await asyncio.wait_for(self.fetch_json(url), timeout=deadline)
        except asyncio.TimeoutError:
            logger.warning("Delphi GET {} abandoned after {}s deadline", url, deadline)
            return FetchResult(ok=False, status=0, json=None, text="deadline exceeded")

    async def _get(self, path: str, *, deadline: float | None = None) -> FetchResult:
        url = self.url_for(path)
        if deadline is None:
            return await self.fetch_json(url)
        return await self.fetch_json_with_timeout(url, deadline)

    async def list_markets(self, *, status: str, limit: int) -> FetchResult:
        return await self._get(f"/markets?limit={int(limit)}&status={quote(status)}")

    async def fetch_evals(
        self, market_id: str, model_idx: int, *, deadline: float | None = None
    ) -> FetchResult:
        return await self._get(
            f"/markets/{quote(str(market_id))}/evals?modelIdx={int(model_idx)}",
            deadline=deadline,
        )

    def chart_url(self, market_id: str, timeframe: str) -> str:
        return self.url_for(
            f"/markets/{quote(str(market_id))}/chart?timeframe={quote(timeframe)}"
        )

    async def fetch_chart(self, market_id: str, timeframe: str = "auto") -> FetchResult:
        return await self.fetch_json(self.chart_url(market_id, timeframe))

    async def fetch_market(self, market_id: str) -> FetchResult:
        return await self._get(f"/markets/{quote(str(market_id))}")

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "DelphiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
