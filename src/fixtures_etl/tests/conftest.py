"""Shared test fixtures for the fixtures_etl test suite.

Provides an in-memory SQLite store, a realistic Config, moto-safe AWS
credentials and builders for API-Football fixture objects and envelopes.
"""

from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from fixtures_etl.api_client import ApiClient, ApiConfig
from fixtures_etl.config import Config
from fixtures_etl.store import FixtureStore


# ---------------------------------------------------------------------------
# AWS credential safety — prevent accidental real AWS calls
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True, scope="session")
def aws_credentials():
    """Set fake AWS credentials for the entire test session."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    yield
    for key in (
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SECURITY_TOKEN",
        "AWS_SESSION_TOKEN",
        "AWS_DEFAULT_REGION",
    ):
        os.environ.pop(key, None)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep ambient overrides out of the tests."""
    for key in ("DEFAULT_TZ", "DEFAULT_LEAGUE", "DATABASE_URL", "INGEST_SECRET"):
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Store & configuration
# ---------------------------------------------------------------------------

@pytest.fixture()
def store() -> FixtureStore:
    """Fresh in-memory SQLite store with the schema created."""
    s = FixtureStore.from_url("sqlite://")
    s.create_schema()
    yield s
    s.dispose()


@pytest.fixture()
def sample_config() -> Config:
    """Return a Config object with realistic test values."""
    return Config({
        "api": {
            "base_url": "https://api.test.com",
            "timeout_seconds": 5,
            "rate_limit_per_sec": 1000,
        },
        "database": {"url": "sqlite://"},
        "defaults": {"league": "br-serie-a", "timezone": "America/Sao_Paulo"},
        "ingest": {"write_mode": "batch", "run_timeout_seconds": 10},
        "leagues": {
            "br-serie-a": {
                "provider_id": 71,
                "name": "Serie A",
                "country": "Brazil",
                "season": 2025,
                "season_start": "2025-03-29",
                "season_end": "2025-12-21",
            },
            "br-serie-b": {"provider_id": 72, "name": "Serie B", "country": "Brazil"},
        },
    })


def make_api_client(handler: Callable[[httpx.Request], httpx.Response], **overrides) -> ApiClient:
    """ApiClient whose requests are answered by ``handler``."""
    fields = {"base_url": "https://api.test.com", "timeout_seconds": 5, "rate_limit_per_sec": 1000}
    fields.update(overrides)
    return ApiClient("test-key", ApiConfig(**fields), transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# API-Football shapes
# ---------------------------------------------------------------------------

def make_fixture(
    fixture_id: Optional[int] = 999,
    status: str = "FT",
    home: Optional[Dict[str, Any]] = None,
    away: Optional[Dict[str, Any]] = None,
    timestamp: int = 1746910800,
    league_id: int = 71,
    season: Optional[int] = 2025,
    round_name: Optional[str] = "Regular Season - 8",
) -> Dict[str, Any]:
    return {
        "fixture": {
            "id": fixture_id,
            "referee": None,
            "timezone": "America/Sao_Paulo",
            "date": "2025-05-10T18:00:00-03:00",
            "timestamp": timestamp,
            "periods": {"first": None, "second": None},
            "venue": {"id": 204, "name": "Estádio do Morumbi", "city": "São Paulo"},
            "status": {"long": "Match Finished", "short": status, "elapsed": 90},
        },
        "league": {
            "id": league_id,
            "name": "Serie A",
            "country": "Brazil",
            "logo": "https://media.api-sports.io/football/leagues/71.png",
            "flag": "https://media.api-sports.io/flags/br.svg",
            "season": season,
            "round": round_name,
        },
        "teams": {
            "home": home if home is not None else {"id": 10, "name": "Team A", "logo": "https://img/10.png", "winner": True},
            "away": away if away is not None else {"id": 20, "name": "Team B", "logo": "https://img/20.png", "winner": False},
        },
        "goals": {"home": 2, "away": 1},
        "score": {},
    }


def make_envelope(
    fixtures: List[Dict[str, Any]],
    current: int = 1,
    total: int = 1,
    errors: Any = None,
) -> Dict[str, Any]:
    return {
        "get": "fixtures",
        "parameters": {},
        "errors": errors if errors is not None else [],
        "results": len(fixtures),
        "paging": {"current": current, "total": total},
        "response": fixtures,
    }
