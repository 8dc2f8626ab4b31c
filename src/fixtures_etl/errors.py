"""Exception taxonomy for the ingestion pipeline.

Transport and upstream failures abort the current invocation, identity
resolution failures abort it as well, while match write failures are
collected per row and reported in the run summary.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class FixturesEtlError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(FixturesEtlError):
    pass


class UnknownLeagueError(FixturesEtlError):
    def __init__(self, selector: Any) -> None:
        super().__init__(f"Unknown league selector: {selector!r}")
        self.selector = selector


class TransportError(FixturesEtlError):
    """The upstream HTTP call failed or returned a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "", url: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.url = url


class UpstreamError(FixturesEtlError):
    """The envelope decoded fine but carries a provider error map."""

    def __init__(self, api_errors: Any, last_url: str = "") -> None:
        super().__init__(f"Upstream returned errors: {api_errors}")
        self.api_errors = api_errors
        self.last_url = last_url


class IdentityResolutionError(FixturesEtlError):
    def __init__(self, kind: str, external_id: Any, cause: Optional[BaseException] = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Could not resolve {kind} {external_id!r}{detail}")
        self.kind = kind
        self.external_id = external_id
        self.cause = cause


class MatchWriteError(FixturesEtlError):
    def __init__(self, external_id: str, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation} failed for match {external_id}: {cause}")
        self.external_id = external_id
        self.operation = operation
        self.cause = cause

    def as_dict(self) -> Dict[str, Any]:
        return {"external_id": self.external_id, "operation": self.operation, "error": str(self.cause)}
