"""Pure normalization helpers for provider status codes, timestamps and names.

None of these functions raise on malformed input; they fall back to a
well-defined value instead.
"""
from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    LIVE = "in_progress"
    FINISHED = "finished"
    CANCELED = "canceled"
    POSTPONED = "postponed"


STATUS_CODES: Dict[str, MatchStatus] = {
    "NS": MatchStatus.SCHEDULED,
    "1H": MatchStatus.IN_PROGRESS,
    "2H": MatchStatus.IN_PROGRESS,
    "HT": MatchStatus.IN_PROGRESS,
    "ET": MatchStatus.IN_PROGRESS,
    "BT": MatchStatus.IN_PROGRESS,
    "P": MatchStatus.IN_PROGRESS,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "PEN": MatchStatus.FINISHED,
    "CANC": MatchStatus.CANCELED,
    "ABD": MatchStatus.CANCELED,
    "PST": MatchStatus.POSTPONED,
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_status(code: Any) -> MatchStatus:
    if not isinstance(code, str):
        return MatchStatus.SCHEDULED
    return STATUS_CODES.get(code.strip(), MatchStatus.SCHEDULED)


def get_zone(tz: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz) if tz else ZoneInfo("UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def _parse_instant(value: Any, zone: ZoneInfo) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=zone)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    if re.fullmatch(r"-?\d+(\.\d+)?", text):
        return _parse_instant(float(text), zone)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=zone)


def to_canonical_instant(value: Any, tz: Optional[str] = None) -> Optional[str]:
    """Render a unix timestamp or ISO string as ISO-8601 with an explicit offset.

    The offset shown is the one of ``tz`` at that instant; the instant itself
    is unchanged. Naive ISO strings are read as wall-clock time in ``tz``.
    """
    zone = get_zone(tz)
    parsed = _parse_instant(value, zone)
    if parsed is None:
        return None
    return parsed.astimezone(zone).replace(microsecond=0).isoformat()


def to_utc_datetime(value: Any, tz: Optional[str] = None) -> Optional[datetime]:
    parsed = _parse_instant(value, get_zone(tz))
    return parsed.astimezone(timezone.utc) if parsed is not None else None


def local_kickoff_date(value: Any, tz: Optional[str] = None) -> Optional[date]:
    zone = get_zone(tz)
    parsed = _parse_instant(value, zone)
    return parsed.astimezone(zone).date() if parsed is not None else None


def slugify(name: Optional[str]) -> str:
    base = unicodedata.normalize("NFD", name or "")
    base = "".join(ch for ch in base if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("-", base.lower()).strip("-")
