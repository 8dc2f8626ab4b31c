from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .api_client import ApiClient
from .config import Config, LeagueConfig, get_api_key
from .errors import MatchWriteError, UnknownLeagueError, UpstreamError
from .fetcher import DateWindow, FixtureFetcher
from .logging_utils import log_json
from .normalize import get_zone
from .reconcile import ReconciliationEngine
from .resolver import IdentityResolver
from .s3_io import RawArchive, new_run_id
from .store import FixtureStore
from .utils import parse_date, utcnow


@dataclass
class RunSummary:
    run_id: str
    league: str
    provider_league_id: int
    season: int
    timezone: str
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    requests: List[Dict[str, Any]] = field(default_factory=list)
    last_url: str = ""
    started_at: str = field(default_factory=lambda: utcnow().isoformat())
    finished_at: Optional[str] = None

    def as_response(self, debug: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "ok": True,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
        }
        if self.errors:
            body["errors"] = self.errors
        if debug:
            body["debug"] = {
                "run_id": self.run_id,
                "query": {
                    "league": self.provider_league_id,
                    "season": self.season,
                    "from": self.window_start,
                    "to": self.window_end,
                    "timezone": self.timezone,
                },
                "count_api": self.fetched,
                "pages": len(self.requests),
                "last_url": self.last_url,
            }
        return body


def resolve_league(
    selector: Any, leagues: Mapping[str, LeagueConfig], default: Optional[str] = None
) -> LeagueConfig:
    """Find the league config for a provider id or a configured slug."""
    if selector is None or str(selector).strip() == "":
        if default is None:
            raise UnknownLeagueError(selector)
        return resolve_league(default, leagues, None)
    key = str(selector).strip()
    if key.isdigit():
        provider_id = int(key)
        for cfg in leagues.values():
            if cfg.provider_id == provider_id:
                return cfg
        return LeagueConfig(slug="", provider_id=provider_id)
    if key in leagues:
        return leagues[key]
    raise UnknownLeagueError(selector)


def today_in(tz: str) -> date:
    return datetime.now(get_zone(tz)).date()


def build_window(
    day: Any = None, day_to: Any = None, days_ahead: int = 0, tz: str = "UTC"
) -> DateWindow:
    start = parse_date(day) or today_in(tz)
    end = parse_date(day_to) or start + timedelta(days=max(0, int(days_ahead or 0)))
    if end < start:
        raise ValueError(f"window end {end} is before start {start}")
    return DateWindow(start, end)


def clamp_window(window: DateWindow, league: LeagueConfig) -> Optional[DateWindow]:
    """Restrict a window to the league's season bounds.

    A window that lies wholly before the season start slides forward to the
    opening day, keeping its length. Returns None when nothing of the window
    falls inside the season.
    """
    start, end = window.start, window.end
    if league.season_start and start < league.season_start:
        if end < league.season_start:
            end = league.season_start + (end - start)
        start = league.season_start
    if league.season_end and end > league.season_end:
        end = league.season_end
    if start > end:
        return None
    return DateWindow(start, end)


class Orchestrator:
    def __init__(
        self,
        config: Config,
        logger: Optional[logging.Logger] = None,
        api: Optional[ApiClient] = None,
        store: Optional[FixtureStore] = None,
        archive: Optional[RawArchive] = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("fixtures_etl")
        self.api = api or ApiClient.from_config(get_api_key(), config.api)
        self.api.set_logger(self.logger)
        self.store = store or FixtureStore.from_url(config.database_url)
        self.archive = archive if archive is not None else RawArchive.from_config(config.archive)
        self.fetcher = FixtureFetcher(self.api, self.logger)

    async def close(self) -> None:
        await self.api.close()

    async def run(
        self,
        league: Any = None,
        date: Any = None,
        date_to: Any = None,
        days_ahead: int = 0,
        season: Optional[int] = None,
        timezone: Optional[str] = None,
    ) -> RunSummary:
        coro = self._run(league, date, date_to, days_ahead, season, timezone)
        timeout = self.config.run_timeout_seconds
        if timeout:
            return await asyncio.wait_for(coro, timeout=timeout)
        return await coro

    async def _run(
        self,
        selector: Any,
        day: Any,
        day_to: Any,
        days_ahead: int,
        season: Optional[int],
        timezone: Optional[str],
    ) -> RunSummary:
        tz = timezone or self.config.timezone
        league = resolve_league(selector, self.config.leagues, self.config.default_league)
        requested = build_window(day, day_to, days_ahead, tz)
        window = clamp_window(requested, league)
        season = int(season or league.season or requested.start.year)
        summary = RunSummary(
            run_id=new_run_id(),
            league=league.slug or str(league.provider_id),
            provider_league_id=league.provider_id,
            season=season,
            timezone=tz,
        )
        log_json(
            self.logger,
            "run_start",
            run_id=summary.run_id,
            league=summary.league,
            season=season,
            requested_from=requested.start.isoformat(),
            requested_to=requested.end.isoformat(),
        )

        resolver = IdentityResolver(self.store, self.config.provider)
        league_obj = {"id": league.provider_id, "name": league.name, "country": league.country}
        if league.slug:
            resolver.pin_league_slug(league.provider_id, league.slug)
        await asyncio.to_thread(resolver.ensure_league, league_obj)

        if window is None:
            log_json(self.logger, "window_outside_season", run_id=summary.run_id, league=summary.league)
            return await self._finish(summary)
        summary.window_start = window.start.isoformat()
        summary.window_end = window.end.isoformat()

        result = await self.fetcher.fetch_fixtures(league.provider_id, season, window, tz)
        summary.requests = result.requests
        summary.last_url = result.last_url
        summary.fetched = len(result.fixtures)
        await asyncio.to_thread(self._archive_pages, summary, result.pages)
        if result.has_errors:
            log_json(self.logger, "upstream_error", level=logging.ERROR, run_id=summary.run_id, errors=result.errors)
            raise UpstreamError(result.errors, result.last_url)

        engine = ReconciliationEngine(
            self.store,
            resolver,
            self.logger,
            write_mode=self.config.write_mode,
            provider=self.config.provider,
            on_row_error=lambda err, row: self._deadletter(summary.run_id, err, row),
        )
        outcome = await engine.reconcile(result.fixtures, season, tz, default_league=league_obj)
        summary.created = outcome.created
        summary.updated = outcome.updated
        summary.skipped = outcome.skipped
        summary.errors = outcome.errors
        return await self._finish(summary)

    async def _finish(self, summary: RunSummary) -> RunSummary:
        summary.finished_at = utcnow().isoformat()
        if self.archive:
            try:
                await asyncio.to_thread(self.archive.put_summary, summary.run_id, asdict(summary))
            except (BotoCoreError, ClientError) as exc:
                log_json(self.logger, "archive_failed", level=logging.WARNING, what="summary", error=str(exc))
        log_json(
            self.logger,
            "run_done",
            run_id=summary.run_id,
            league=summary.league,
            fetched=summary.fetched,
            created=summary.created,
            updated=summary.updated,
            skipped=summary.skipped,
            failed=len(summary.errors),
        )
        return summary

    def _archive_pages(self, summary: RunSummary, pages: List[Dict[str, Any]]) -> None:
        if not self.archive or not pages:
            return
        try:
            self.archive.put_pages(summary.run_id, summary.provider_league_id, summary.window_start, pages)
        except (BotoCoreError, ClientError) as exc:
            log_json(self.logger, "archive_failed", level=logging.WARNING, what="pages", error=str(exc))

    def _deadletter(self, run_id: str, err: MatchWriteError, row: Dict[str, Any]) -> None:
        if not self.archive:
            return
        try:
            self.archive.put_deadletter(run_id, str(err), row)
        except (BotoCoreError, ClientError) as exc:
            log_json(self.logger, "archive_failed", level=logging.WARNING, what="deadletter", error=str(exc))
