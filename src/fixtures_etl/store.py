"""Relational store for leagues, teams and matches.

Every mutation is an upsert keyed on the provider's external id, so the
unique constraints below are what keep concurrent runs from duplicating rows.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from .errors import ConfigError

metadata = MetaData()

leagues = Table(
    "leagues",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("external_id", String(64), nullable=False, unique=True),
    Column("name", String(255)),
    Column("slug", String(255), nullable=False, unique=True),
    Column("country", String(128)),
    Column("provider", String(64)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

teams = Table(
    "teams",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("external_id", String(64), nullable=False, unique=True),
    Column("name", String(255)),
    Column("slug", String(255), nullable=False),
    Column("logo_url", String(512)),
    Column("provider", String(64)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

matches = Table(
    "matches",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("external_id", String(64), nullable=False, unique=True),
    Column("league_id", String(36), ForeignKey("leagues.id"), nullable=False),
    Column("home_team_id", String(36), ForeignKey("teams.id")),
    Column("away_team_id", String(36), ForeignKey("teams.id")),
    Column("venue", String(255)),
    Column("kickoff_utc", DateTime(timezone=True)),
    Column("kickoff_date", Date),
    Column("status", String(32), nullable=False),
    Column("round", String(128)),
    Column("season", String(16)),
    Column("home_goals", Integer),
    Column("away_goals", Integer),
    Column("payload", JSON().with_variant(JSONB(), "postgresql")),
    Column("provider", String(64)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

LEAGUE_MUTABLE = ("name", "slug", "country", "provider", "updated_at")
TEAM_MUTABLE = ("name", "slug", "logo_url", "provider", "updated_at")
MATCH_MUTABLE = tuple(c.name for c in matches.columns if c.name not in ("id", "external_id", "created_at"))

IN_CHUNK = 500


def make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, future=True, **kwargs)
        event.listen(engine, "connect", _sqlite_foreign_keys)
        return engine
    return create_engine(url, future=True, pool_pre_ping=True)


def _sqlite_foreign_keys(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def new_id() -> str:
    return str(uuid.uuid4())


class FixtureStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        dialect = engine.dialect.name
        if dialect == "postgresql":
            self._insert = pg_insert
        elif dialect == "sqlite":
            self._insert = sqlite_insert
        else:
            raise ConfigError(f"Unsupported database dialect: {dialect}")

    @classmethod
    def from_url(cls, url: str) -> "FixtureStore":
        return cls(make_engine(url))

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    # -------------------------
    # Leagues & teams
    # -------------------------

    def _upsert_identity(self, table: Table, row: Dict[str, Any], mutable: Sequence[str]) -> str:
        stmt = self._insert(table).values(id=new_id(), created_at=row["updated_at"], **row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_id],
            set_={col: stmt.excluded[col] for col in mutable},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            return conn.execute(select(table.c.id).where(table.c.external_id == row["external_id"])).scalar_one()

    def upsert_league(self, row: Dict[str, Any]) -> str:
        """row = {external_id, name, slug, country, provider, updated_at}; returns the internal id."""
        return self._upsert_identity(leagues, row, LEAGUE_MUTABLE)

    def upsert_team(self, row: Dict[str, Any]) -> str:
        """row = {external_id, name, slug, logo_url, provider, updated_at}; returns the internal id."""
        return self._upsert_identity(teams, row, TEAM_MUTABLE)

    # -------------------------
    # Matches
    # -------------------------

    def existing_match_ids(self, external_ids: Iterable[str]) -> Set[str]:
        ids = list(dict.fromkeys(external_ids))
        found: Set[str] = set()
        with self.engine.connect() as conn:
            for i in range(0, len(ids), IN_CHUNK):
                chunk = ids[i : i + IN_CHUNK]
                rows = conn.execute(select(matches.c.external_id).where(matches.c.external_id.in_(chunk)))
                found.update(r[0] for r in rows)
        return found

    def bulk_upsert_matches(self, rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return
        stmt = self._insert(matches)
        stmt = stmt.on_conflict_do_update(
            index_elements=[matches.c.external_id],
            set_={col: stmt.excluded[col] for col in MATCH_MUTABLE},
        )
        params = [{"id": new_id(), "created_at": r["updated_at"], **r} for r in rows]
        with self.engine.begin() as conn:
            conn.execute(stmt, params)

    def insert_match(self, row: Dict[str, Any]) -> None:
        with self.engine.begin() as conn:
            conn.execute(self._insert(matches).values(id=new_id(), created_at=row["updated_at"], **row))

    def update_match(self, row: Dict[str, Any]) -> int:
        values = {col: row[col] for col in MATCH_MUTABLE if col in row}
        with self.engine.begin() as conn:
            result = conn.execute(update(matches).where(matches.c.external_id == row["external_id"]).values(**values))
            return result.rowcount

    def upsert_match(self, row: Dict[str, Any]) -> bool:
        """Insert or update one match; returns True when a new row was inserted.

        The insert is attempted with DO NOTHING on conflict so the affected
        row count tells the two cases apart inside one transaction.
        """
        stmt = (
            self._insert(matches)
            .values(id=new_id(), created_at=row["updated_at"], **row)
            .on_conflict_do_nothing(index_elements=[matches.c.external_id])
        )
        values = {col: row[col] for col in MATCH_MUTABLE if col in row}
        with self.engine.begin() as conn:
            inserted = conn.execute(stmt).rowcount == 1
            if not inserted:
                conn.execute(update(matches).where(matches.c.external_id == row["external_id"]).values(**values))
        return inserted

    # -------------------------
    # Point lookups
    # -------------------------

    def _get_by_external_id(self, table: Table, external_id: Any) -> Optional[Dict[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(select(table).where(table.c.external_id == str(external_id))).mappings().first()
        return dict(row) if row else None

    def get_league(self, external_id: Any) -> Optional[Dict[str, Any]]:
        return self._get_by_external_id(leagues, external_id)

    def get_team(self, external_id: Any) -> Optional[Dict[str, Any]]:
        return self._get_by_external_id(teams, external_id)

    def get_match(self, external_id: Any) -> Optional[Dict[str, Any]]:
        return self._get_by_external_id(matches, external_id)

    def count(self, table_name: str) -> int:
        table = metadata.tables[table_name]
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar_one()
