"""Paginated retrieval of API-Football fixtures for one league window."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from .api_client import ApiClient
from .logging_utils import log_json


@dataclass(frozen=True)
class DateWindow:
    start: date
    end: date

    @property
    def is_single_day(self) -> bool:
        return self.start == self.end

    def query_params(self) -> Dict[str, str]:
        if self.is_single_day:
            return {"date": self.start.isoformat()}
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}


@dataclass
class FetchResult:
    fixtures: List[Dict[str, Any]] = field(default_factory=list)
    errors: Any = None
    pages: List[Dict[str, Any]] = field(default_factory=list)
    requests: List[Dict[str, Any]] = field(default_factory=list)
    last_url: str = ""

    @property
    def has_errors(self) -> bool:
        return has_envelope_errors(self.errors)


def has_envelope_errors(errors: Any) -> bool:
    # API-Football sends [] when clean and an object keyed by field otherwise
    if not errors:
        return False
    if isinstance(errors, (dict, list)):
        return len(errors) > 0
    return True


def _paging(envelope: Dict[str, Any]) -> tuple[int, int]:
    paging = envelope.get("paging") or {}
    try:
        current = int(paging.get("current") or 1)
        total = int(paging.get("total") or 1)
    except (TypeError, ValueError):
        return 1, 1
    return current, total


def _records(envelope: Dict[str, Any]) -> List[Dict[str, Any]]:
    records = envelope.get("response")
    if not isinstance(records, list):
        return []
    return [r for r in records if isinstance(r, dict)]


class FixtureFetcher:
    def __init__(self, api: ApiClient, logger=None, path: Optional[str] = None) -> None:
        self.api = api
        self.logger = logger
        self.path = path or api.cfg.fixtures_path

    def build_params(self, league_id: int, season: int, window: DateWindow, timezone: str, page: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {"league": league_id, "season": season}
        params.update(window.query_params())
        params["timezone"] = timezone
        # the first request goes out without a page, like a plain one-page query
        if page > 1:
            params["page"] = page
        return params

    async def fetch_fixtures(self, league_id: int, season: int, window: DateWindow, timezone: str) -> FetchResult:
        """Collect every page of fixtures for the window.

        Transport failures raise TransportError. Provider errors inside the
        envelope are returned on the result and stop paging.
        """
        result = FetchResult()
        page = 1
        while True:
            params = self.build_params(league_id, season, window, timezone, page)
            result.last_url = self.api.build_url(self.path, params)
            result.requests.append(params)
            envelope = await self.api.get_page(self.path, params)
            result.pages.append(envelope)
            if has_envelope_errors(envelope.get("errors")):
                result.errors = envelope.get("errors")
                if self.logger:
                    log_json(self.logger, "fetch_upstream_errors", page=page, errors=result.errors)
                return result
            records = _records(envelope)
            current, total = _paging(envelope)
            if self.logger:
                log_json(self.logger, "fetch_page", page=page, current=current, total=total, results=len(records))
            if page == 1 and not records:
                return result
            result.fixtures.extend(records)
            if max(current, page) >= total:
                return result
            page += 1
