"""End-to-end pipeline tests: fake upstream, real SQLite store."""

from __future__ import annotations

import asyncio
import time
from datetime import date

import httpx
import pytest

from fixtures_etl.config import Config, LeagueConfig
from fixtures_etl.errors import TransportError, UnknownLeagueError, UpstreamError
from fixtures_etl.fetcher import DateWindow
from fixtures_etl.orchestrate import Orchestrator, build_window, clamp_window, resolve_league

from conftest import make_api_client, make_envelope, make_fixture

SERIE_A = LeagueConfig(
    slug="br-serie-a",
    provider_id=71,
    name="Serie A",
    season=2025,
    season_start=date(2025, 3, 29),
    season_end=date(2025, 12, 21),
)


def _orchestrator(sample_config, store, handler) -> Orchestrator:
    return Orchestrator(sample_config, api=make_api_client(handler), store=store)


class TestEndToEnd:
    async def test_single_fixture_scenario(self, sample_config, store):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            fixture = make_fixture(
                999,
                status="FT",
                home={"id": "10", "name": "Team A", "logo": None},
                away={"id": "20", "name": "Team B", "logo": None},
            )
            return httpx.Response(200, json=make_envelope([fixture]))

        orch = _orchestrator(sample_config, store, handler)
        try:
            summary = await orch.run(league="br-serie-a", date="2025-05-10")
        finally:
            await orch.close()

        assert (summary.created, summary.updated, summary.skipped) == (1, 0, 0)
        assert seen == [{
            "league": "71",
            "season": "2025",
            "date": "2025-05-10",
            "timezone": "America/Sao_Paulo",
        }]
        league = store.get_league("71")
        assert league["slug"] == "br-serie-a"
        home, away = store.get_team("10"), store.get_team("20")
        assert home["name"] == "Team A" and away["name"] == "Team B"
        match = store.get_match("999")
        assert match["status"] == "finished"
        assert match["league_id"] == league["id"]
        assert match["home_team_id"] == home["id"]
        assert match["away_team_id"] == away["id"]
        assert summary.as_response() == {"ok": True, "created": 1, "updated": 0, "skipped": 0}

    async def test_second_run_only_updates(self, sample_config, store):
        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params.get("page", 1))
            fixtures = [make_fixture(page * 10 + i) for i in range(3)]
            return httpx.Response(200, json=make_envelope(fixtures, current=page, total=2))

        for expected in ((6, 0), (0, 6)):
            orch = _orchestrator(sample_config, store, handler)
            try:
                summary = await orch.run(league="71", date="2025-05-10")
            finally:
                await orch.close()
            assert (summary.created, summary.updated) == expected
            assert summary.fetched == 6
        assert store.count("matches") == 6
        assert store.count("teams") == 2
        assert store.count("leagues") == 1

    async def test_date_before_season_is_clamped(self, sample_config, store):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            return httpx.Response(200, json=make_envelope([]))

        orch = _orchestrator(sample_config, store, handler)
        try:
            summary = await orch.run(league="br-serie-a", date="2025-01-01")
        finally:
            await orch.close()
        assert seen[0]["date"] == "2025-03-29"
        assert summary.window_start == "2025-03-29"
        assert (summary.created, summary.updated, summary.skipped) == (0, 0, 0)
        # the configured league is ensured up front even when nothing is fetched
        assert store.get_league("71")["slug"] == "br-serie-a"

    async def test_window_after_season_makes_no_requests(self, sample_config, store):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        orch = _orchestrator(sample_config, store, handler)
        try:
            summary = await orch.run(league="br-serie-a", date="2026-01-10")
        finally:
            await orch.close()
        assert summary.window_start is None
        assert summary.requests == []

    async def test_upstream_errors_raise(self, sample_config, store):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=make_envelope([], errors={"plan": "Free plans do not have access to this season."}))

        orch = _orchestrator(sample_config, store, handler)
        try:
            with pytest.raises(UpstreamError) as info:
                await orch.run(league="br-serie-a", date="2025-05-10")
        finally:
            await orch.close()
        assert info.value.api_errors == {"plan": "Free plans do not have access to this season."}
        assert "league=71" in info.value.last_url
        assert store.count("matches") == 0

    async def test_transport_errors_propagate(self, sample_config, store):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, text="forbidden")

        orch = _orchestrator(sample_config, store, handler)
        try:
            with pytest.raises(TransportError):
                await orch.run(league="br-serie-a", date="2025-05-10")
        finally:
            await orch.close()

    async def test_unconfigured_league_row_exists_without_fixtures(self, sample_config, store):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=make_envelope([]))

        orch = _orchestrator(sample_config, store, handler)
        try:
            summary = await orch.run(league="39", date="2025-05-10")
        finally:
            await orch.close()
        assert summary.fetched == 0
        assert store.get_league("39")["slug"] == "league-39"

    async def test_slow_store_hits_run_deadline(self, sample_config, store, monkeypatch):
        raw = {**sample_config.raw, "ingest": {"write_mode": "batch", "run_timeout_seconds": 0.2}}

        def slow_bulk(rows):
            time.sleep(1.0)

        monkeypatch.setattr(store, "bulk_upsert_matches", slow_bulk)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=make_envelope([make_fixture(999)]))

        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.02)
                ticks += 1

        side = asyncio.create_task(ticker())
        orch = Orchestrator(Config(raw), api=make_api_client(handler), store=store)
        started = time.monotonic()
        try:
            with pytest.raises(asyncio.TimeoutError):
                await orch.run(league="br-serie-a", date="2025-05-10")
        finally:
            side.cancel()
            await orch.close()
        assert time.monotonic() - started < 0.9
        # the event loop kept serving other work while the store was busy
        assert ticks >= 3
        # identity rows committed before the deadline stay committed
        assert store.get_league("71") is not None
        assert store.get_match("999") is None

    async def test_default_league_and_season_override(self, sample_config, store):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            return httpx.Response(200, json=make_envelope([make_fixture(1, season=None)]))

        orch = _orchestrator(sample_config, store, handler)
        try:
            summary = await orch.run(date="2025-06-01", days_ahead=3, season=2024, timezone="UTC")
        finally:
            await orch.close()
        assert seen[0]["league"] == "71"
        assert seen[0]["season"] == "2024"
        assert (seen[0]["from"], seen[0]["to"]) == ("2025-06-01", "2025-06-04")
        assert seen[0]["timezone"] == "UTC"
        assert store.get_match("1")["season"] == "2024"
        assert summary.as_response(debug=True)["debug"]["query"]["to"] == "2025-06-04"


class TestResolveLeague:
    def test_by_slug_and_provider_id(self, sample_config):
        leagues = sample_config.leagues
        assert resolve_league("br-serie-a", leagues).provider_id == 71
        assert resolve_league("72", leagues).slug == "br-serie-b"
        assert resolve_league(71, leagues).slug == "br-serie-a"

    def test_unconfigured_provider_id(self, sample_config):
        league = resolve_league("39", sample_config.leagues)
        assert league.provider_id == 39
        assert league.slug == ""

    def test_default_and_unknown(self, sample_config):
        assert resolve_league(None, sample_config.leagues, "br-serie-b").provider_id == 72
        with pytest.raises(UnknownLeagueError):
            resolve_league("premier-league", sample_config.leagues)
        with pytest.raises(UnknownLeagueError):
            resolve_league("", sample_config.leagues)


class TestWindows:
    def test_clamp_start_to_season_start(self):
        window = clamp_window(DateWindow(date(2025, 1, 1), date(2025, 1, 1)), SERIE_A)
        assert window == DateWindow(date(2025, 3, 29), date(2025, 3, 29))

    def test_clamp_keeps_overlap(self):
        window = clamp_window(DateWindow(date(2025, 3, 20), date(2025, 4, 5)), SERIE_A)
        assert window == DateWindow(date(2025, 3, 29), date(2025, 4, 5))

    def test_clamp_end_to_season_end(self):
        window = clamp_window(DateWindow(date(2025, 12, 15), date(2025, 12, 31)), SERIE_A)
        assert window == DateWindow(date(2025, 12, 15), date(2025, 12, 21))

    def test_no_bounds_leaves_window(self):
        league = LeagueConfig(slug="x", provider_id=1)
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 2))
        assert clamp_window(window, league) == window

    def test_build_window(self):
        assert build_window("2025-05-10") == DateWindow(date(2025, 5, 10), date(2025, 5, 10))
        assert build_window("2025-05-10", days_ahead=2).end == date(2025, 5, 12)
        assert build_window("2025-05-10", "2025-05-20").end == date(2025, 5, 20)
        with pytest.raises(ValueError):
            build_window("2025-05-10", "2025-05-01")
        with pytest.raises(ValueError):
            build_window("10/05/2025")
