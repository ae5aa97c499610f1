from __future__ import annotations

from typing import Any


class DelphiUpstreamError(Exception):
    """Upstream data could not be turned into a usable response."""

    status_code = 502

    def __init__(self, error: str, **details: Any) -> None:
        super().__init__(error)
        self.error = error
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.error, **self.details}


class UpstreamPayloadError(DelphiUpstreamError):
    """Upstream answered, but with a body that is not JSON or not the expected shape."""


__all__ = ["DelphiUpstreamError", "UpstreamPayloadError"]
