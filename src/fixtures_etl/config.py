from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError
from .utils import parse_date

DEFAULT_TIMEZONE = "America/Sao_Paulo"
REQUIRED_SECTIONS = ("api", "leagues")


@dataclass
class LeagueConfig:
    slug: str
    provider_id: int
    name: Optional[str] = None
    country: Optional[str] = None
    season: Optional[int] = None
    season_start: Optional[date] = None
    season_end: Optional[date] = None

    @classmethod
    def from_raw(cls, slug: str, raw: Dict[str, Any]) -> "LeagueConfig":
        if raw.get("provider_id") is None:
            raise ConfigError(f"league {slug!r} is missing provider_id")
        season = raw.get("season")
        return cls(
            slug=slug,
            provider_id=int(raw["provider_id"]),
            name=raw.get("name"),
            country=raw.get("country"),
            season=int(season) if season is not None else None,
            season_start=parse_date(raw.get("season_start")),
            season_end=parse_date(raw.get("season_end")),
        )


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def api(self) -> Dict[str, Any]:
        return self.raw["api"]

    @property
    def database_url(self) -> str:
        url = os.getenv("DATABASE_URL") or self.raw.get("database", {}).get("url")
        if not url:
            raise ConfigError("Missing database url; set DATABASE_URL or database.url")
        return url

    @property
    def defaults(self) -> Dict[str, Any]:
        return self.raw.get("defaults", {})

    @property
    def default_league(self) -> Optional[str]:
        league = os.getenv("DEFAULT_LEAGUE") or self.defaults.get("league")
        return str(league) if league is not None else None

    @property
    def timezone(self) -> str:
        return os.getenv("DEFAULT_TZ") or self.defaults.get("timezone", DEFAULT_TIMEZONE)

    @property
    def ingest(self) -> Dict[str, Any]:
        return self.raw.get("ingest", {})

    @property
    def provider(self) -> str:
        return self.ingest.get("provider", "api-football")

    @property
    def write_mode(self) -> str:
        return self.ingest.get("write_mode", "batch")

    @property
    def run_timeout_seconds(self) -> Optional[float]:
        value = self.ingest.get("run_timeout_seconds")
        return float(value) if value else None

    @property
    def archive(self) -> Optional[Dict[str, Any]]:
        return self.raw.get("archive")

    @property
    def leagues(self) -> Dict[str, LeagueConfig]:
        return {slug: LeagueConfig.from_raw(slug, spec or {}) for slug, spec in self.raw["leagues"].items()}


def load_config(path: Optional[str] = None) -> Config:
    load_dotenv()
    path = path or os.getenv("FIXTURES_ETL_CONFIG", "config.yaml")
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    missing = [name for name in REQUIRED_SECTIONS if name not in raw]
    if missing:
        raise ConfigError(f"config is missing sections: {', '.join(missing)}")
    if not raw["api"].get("base_url"):
        raise ConfigError("api.base_url is required")
    if not isinstance(raw["leagues"], dict):
        raise ConfigError("leagues must be a mapping of slug to league settings")
    for slug, spec in raw["leagues"].items():
        LeagueConfig.from_raw(slug, spec or {})
    cfg = Config(raw)
    if cfg.write_mode not in ("batch", "row"):
        raise ConfigError(f"ingest.write_mode must be 'batch' or 'row', got {cfg.write_mode!r}")
    return cfg


def get_api_key() -> str:
    key = os.getenv("API_FOOTBALL_KEY") or os.getenv("APISPORTS_KEY")
    if not key:
        raise ConfigError("Missing API key; set API_FOOTBALL_KEY or APISPORTS_KEY")
    return key.strip()


def get_ingest_secret(cfg: Optional[Config] = None) -> Optional[str]:
    secret = os.getenv("INGEST_SECRET")
    if not secret and cfg is not None:
        secret = cfg.ingest.get("secret")
    return secret or None
