"""Turn fixture records into match rows and write them idempotently.

Writes go through one of two strategies. ``batch`` pre-reads which external
ids already exist, attempts a single bulk upsert and, if that fails, falls
back to inserting and updating row by row so one bad row cannot sink the
rest. ``row`` upserts each match on its own and lets the store report
whether it inserted or updated.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .errors import MatchWriteError
from .logging_utils import log_json
from .normalize import local_kickoff_date, normalize_status, to_utc_datetime
from .resolver import IdentityResolver
from .store import FixtureStore
from .utils import utcnow

WRITE_MODES = ("batch", "row")


@dataclass
class ReconcileSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


def fixture_external_id(fixture: Dict[str, Any]) -> Optional[str]:
    inner = fixture.get("fixture") or {}
    value = inner.get("id") if isinstance(inner, dict) else None
    if value is None or isinstance(value, bool) or str(value).strip() == "":
        return None
    return str(value).strip()


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ReconciliationEngine:
    def __init__(
        self,
        store: FixtureStore,
        resolver: IdentityResolver,
        logger: Optional[logging.Logger] = None,
        write_mode: str = "batch",
        provider: str = "api-football",
        on_row_error: Optional[Callable[[MatchWriteError, Dict[str, Any]], None]] = None,
    ) -> None:
        if write_mode not in WRITE_MODES:
            raise ValueError(f"Unknown write mode: {write_mode}")
        self.store = store
        self.resolver = resolver
        self.logger = logger or logging.getLogger(__name__)
        self.write_mode = write_mode
        self.provider = provider
        self.on_row_error = on_row_error

    def build_match(
        self,
        fixture: Dict[str, Any],
        requested_season: int,
        timezone: str,
        default_league: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Resolve league and teams, then build the candidate row.

        Returns None for fixtures without a usable external id; nothing is
        written for those. ``default_league`` stands in when the fixture
        carries no league id.
        """
        external_id = fixture_external_id(fixture)
        if external_id is None:
            return None
        inner = fixture.get("fixture") or {}
        league = fixture.get("league") or {}
        teams = fixture.get("teams") or {}
        goals = fixture.get("goals") or {}

        league_id = self.resolver.ensure_league(league if league.get("id") is not None else default_league)
        home_id = self.resolver.ensure_team(teams.get("home"))
        away_id = self.resolver.ensure_team(teams.get("away"))

        kickoff_raw = inner.get("timestamp")
        if kickoff_raw is None:
            kickoff_raw = inner.get("date")
        venue = inner.get("venue") or {}
        status = inner.get("status") or {}
        season = league.get("season")
        return {
            "external_id": external_id,
            "league_id": league_id,
            "home_team_id": home_id,
            "away_team_id": away_id,
            "venue": venue.get("name") if isinstance(venue, dict) else None,
            "kickoff_utc": to_utc_datetime(kickoff_raw, timezone),
            "kickoff_date": local_kickoff_date(kickoff_raw, timezone),
            "status": normalize_status(status.get("short") if isinstance(status, dict) else None).value,
            "round": league.get("round"),
            "season": str(season if season is not None else requested_season),
            "home_goals": _to_int(goals.get("home")),
            "away_goals": _to_int(goals.get("away")),
            "payload": fixture,
            "provider": self.provider,
            "updated_at": utcnow(),
        }

    async def reconcile(
        self,
        fixtures: List[Dict[str, Any]],
        requested_season: int,
        timezone: str,
        default_league: Optional[Dict[str, Any]] = None,
    ) -> ReconcileSummary:
        """Write every fixture, yielding to the event loop around each store call.

        Store work runs in a worker thread so a caller's deadline can interrupt
        the run between fixtures; rows committed before that stay committed.
        """
        summary = ReconcileSummary()
        rows: Dict[str, Dict[str, Any]] = {}
        written: Dict[str, bool] = {}
        for fixture in fixtures:
            row = await asyncio.to_thread(self.build_match, fixture, requested_season, timezone, default_league)
            if row is None:
                summary.skipped += 1
                log_json(self.logger, "fixture_skipped", reason="missing_external_id")
                continue
            if self.write_mode == "row":
                await asyncio.to_thread(self._write_row, row, summary, written)
                continue
            # later pages win when the same fixture is listed twice
            rows.pop(row["external_id"], None)
            rows[row["external_id"]] = row
        if self.write_mode == "batch":
            await asyncio.to_thread(self._write_batch, list(rows.values()), summary)
        return summary

    def _write_row(self, row: Dict[str, Any], summary: ReconcileSummary, written: Dict[str, bool]) -> None:
        external_id = row["external_id"]
        try:
            inserted = self.store.upsert_match(row)
        except SQLAlchemyError as exc:
            self._row_failed(MatchWriteError(external_id, "upsert", exc), row, summary)
            return
        if external_id in written:
            return
        written[external_id] = inserted
        if inserted:
            summary.created += 1
        else:
            summary.updated += 1

    def _write_batch(self, rows: List[Dict[str, Any]], summary: ReconcileSummary) -> None:
        if not rows:
            return
        existing = self.store.existing_match_ids(r["external_id"] for r in rows)
        to_insert = [r for r in rows if r["external_id"] not in existing]
        to_update = [r for r in rows if r["external_id"] in existing]
        try:
            self.store.bulk_upsert_matches(rows)
        except SQLAlchemyError as exc:
            log_json(self.logger, "bulk_upsert_failed", level=logging.WARNING, rows=len(rows), error=str(exc))
        else:
            summary.created += len(to_insert)
            summary.updated += len(to_update)
            return

        for row in to_insert:
            try:
                self.store.insert_match(row)
            except SQLAlchemyError as exc:
                self._row_failed(MatchWriteError(row["external_id"], "insert", exc), row, summary)
                continue
            summary.created += 1
        for row in to_update:
            try:
                self.store.update_match(row)
            except SQLAlchemyError as exc:
                self._row_failed(MatchWriteError(row["external_id"], "update", exc), row, summary)
                continue
            summary.updated += 1

    def _row_failed(self, err: MatchWriteError, row: Dict[str, Any], summary: ReconcileSummary) -> None:
        summary.errors.append(err.as_dict())
        log_json(self.logger, "reconcile_row_failed", level=logging.ERROR, **err.as_dict())
        if self.on_row_error:
            self.on_row_error(err, row)
