from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import IdentityResolutionError
from .normalize import slugify
from .store import FixtureStore
from .utils import utcnow


def _external_id(obj: Optional[Dict[str, Any]]) -> Optional[str]:
    if not obj:
        return None
    value = obj.get("id")
    if value is None or value == "":
        return None
    return str(value)


class IdentityResolver:
    """Map provider league/team objects to internal ids, creating rows on first sight.

    Resolved ids are memoized for the lifetime of the resolver (one run). A
    cached entry is written again only when the incoming attributes differ
    from the ones last written.
    """

    def __init__(self, store: FixtureStore, provider: str = "api-football") -> None:
        self.store = store
        self.provider = provider
        self._leagues: Dict[str, Tuple[tuple, str]] = {}
        self._teams: Dict[str, Tuple[tuple, str]] = {}
        self._league_slugs: Dict[str, str] = {}

    def pin_league_slug(self, external_id: Any, slug: str) -> None:
        """Keep a configured slug for this league instead of deriving it from the name."""
        self._league_slugs[str(external_id)] = slug

    def ensure_league(self, league: Optional[Dict[str, Any]]) -> str:
        external_id = _external_id(league)
        if external_id is None:
            raise IdentityResolutionError("league", None)
        name = league.get("name")
        # league slugs are unique, so a nameless league is keyed by its provider id
        slug = self._league_slugs.get(external_id) or slugify(name) or f"league-{external_id}"
        signature = (name, slug, league.get("country"))
        cached = self._leagues.get(external_id)
        if cached and (cached[0] == signature or not name):
            return cached[1]
        row = {
            "external_id": external_id,
            "name": name,
            "slug": slug,
            "country": league.get("country"),
            "provider": self.provider,
            "updated_at": utcnow(),
        }
        try:
            internal_id = self._upsert_league(row)
        except SQLAlchemyError as exc:
            raise IdentityResolutionError("league", external_id, exc) from exc
        self._leagues[external_id] = (signature, internal_id)
        return internal_id

    def _upsert_league(self, row: Dict[str, Any]) -> str:
        try:
            return self.store.upsert_league(row)
        except IntegrityError:
            # another league already owns this slug (API-Football reuses names
            # like "Serie A" across countries); suffix the provider id once
            suffix = f"-{row['external_id']}"
            if row["slug"].endswith(suffix):
                raise
            return self.store.upsert_league({**row, "slug": row["slug"] + suffix})

    def ensure_team(self, team: Optional[Dict[str, Any]]) -> Optional[str]:
        external_id = _external_id(team)
        if external_id is None:
            return None
        name = team.get("name")
        signature = (name, team.get("logo"))
        cached = self._teams.get(external_id)
        if cached and cached[0] == signature:
            return cached[1]
        row = {
            "external_id": external_id,
            "name": name,
            "slug": slugify(name),
            "logo_url": team.get("logo"),
            "provider": self.provider,
            "updated_at": utcnow(),
        }
        try:
            internal_id = self.store.upsert_team(row)
        except SQLAlchemyError as exc:
            raise IdentityResolutionError("team", external_id, exc) from exc
        self._teams[external_id] = (signature, internal_id)
        return internal_id
