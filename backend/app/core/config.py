from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    delphi_base_url: AnyUrl = Field(
        default="https://delphi.gensyn.ai/api",
        description="Base URL for the Gensyn Delphi market API",
    )
    delphi_user_agent: str = Field(
        default="Mozilla/5.0 (compatible; delphi-beliefs)",
        description="User-Agent header sent with every upstream request",
    )
    delphi_request_timeout_seconds: float = Field(
        default=30.0,
        description="HTTP-layer timeout applied to upstream requests without an explicit deadline",
    )
    belief_deadline_seconds: float = Field(
        default=9.0,
        description="Deadline after which belief pipeline requests are abandoned",
    )
    ongoing_market_limit: int = Field(
        default=10,
        description="Maximum number of ongoing markets inspected per detection cycle",
        ge=1,
    )
    entry_probe_ceiling: int = Field(
        default=10,
        description="Number of model indices probed when discovering an unknown market's entry map",
        ge=1,
    )
    chart_cache_ttl_seconds: float = Field(default=5.0, description="Chart cache lifetime")
    human_belief_cache_ttl_seconds: float = Field(
        default=8.0, description="Human-belief cache lifetime"
    )
    historical_cache_ttl_seconds: float = Field(
        default=30.0, description="Historical analysis cache lifetime"
    )
    live_market_cache_ttl_seconds: float = Field(
        default=60.0, description="Live-market detection cache lifetime"
    )
    default_timeframe: str = Field(
        default="auto",
        description="Chart timeframe requested when the caller does not provide one",
    )
    ghost_market_ids: list[str] | str = Field(
        default_factory=list,
        description=(
            "Market ids known to report ongoing status without evaluation data; "
            "merged into the registry's ghost set at startup."
        ),
    )
    market_registry_path: str | None = Field(
        default=None,
        description="Optional path to a market registry JSON file replacing the bundled one",
    )

    @field_validator(
        "delphi_request_timeout_seconds",
        "belief_deadline_seconds",
        "chart_cache_ttl_seconds",
        "human_belief_cache_ttl_seconds",
        "historical_cache_ttl_seconds",
        "live_market_cache_ttl_seconds",
    )
    @classmethod
    def _require_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be positive")
        return value

    @field_validator("ghost_market_ids", mode="before")
    @classmethod
    def _parse_ghost_market_ids(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            candidate = value.strip()
            if not candidate:
                return []
            return [
                item for item in (part.strip() for part in candidate.split(",")) if item
            ]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise ValueError(
            "GHOST_MARKET_IDS must be provided as a list or comma-separated string"
        )

    @property
    def delphi_api_root(self) -> str:
        return str(self.delphi_base_url).rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
