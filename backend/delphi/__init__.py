"""Client and payload helpers for the Gensyn Delphi market API."""

from .client import DelphiClient, FetchResult

__all__ = ["DelphiClient", "FetchResult"]
