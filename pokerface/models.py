"""Session record helpers shared by the JSON and PostgreSQL stores.

Sessions travel as plain dicts shaped like the API payloads::

    {"id": ..., "createdAt": ..., "updatedAt": ...,
     "settings": {...}, "players": [{"id", "name", "buyins", "final"}, ...]}
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .ids import generate_id

CURRENCIES = ("USD", "EUR", "ILS")
DEFAULT_CURRENCY = "USD"
SESSION_STATUSES = ("open", "closed")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "hostName": "",
    "location": "",
    "datetime": "",
    "expenses": "",
    "reportedFinal": "",
    "currency": DEFAULT_CURRENCY,
    "sessionStatus": "open",
}


def sanitize_currency(code: Any) -> str:
    return code if code in CURRENCIES else DEFAULT_CURRENCY


def to_number(value: Any) -> float:
    """Coerce ``value`` to a finite number, falling back to 0."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
    if value is None:
        return 0
    try:
        num = float(str(value).strip())
    except ValueError:
        return 0
    if not math.isfinite(num):
        return 0
    return int(num) if num.is_integer() else num


def format_timestamp(value: Any) -> Optional[str]:
    """Render a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (strings pass through)."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed); ``None`` when unparsable."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))  # type: ignore[return-value]


def _latest(*values: Any) -> str:
    """Return the latest of the given timestamps, formatted."""
    best: Optional[datetime] = None
    for value in values:
        parsed = parse_timestamp(value)
        if parsed is not None and (best is None or parsed > best):
            best = parsed
    return format_timestamp(best) if best is not None else now_iso()  # type: ignore[return-value]


def normalize_settings(settings: Any) -> Dict[str, Any]:
    """Coerce the enumerated settings keys that are present."""
    if not isinstance(settings, dict):
        return {}
    out = dict(settings)
    if "currency" in out:
        out["currency"] = sanitize_currency(out["currency"])
    if "sessionStatus" in out:
        out["sessionStatus"] = "closed" if out["sessionStatus"] == "closed" else "open"
    return out


def normalize_player(player: Dict[str, Any]) -> Dict[str, Any]:
    name = player.get("name")
    return {
        **player,
        "id": str(player.get("id") or generate_id("player")),
        "name": "" if name is None else str(name),
        "buyins": to_number(player.get("buyins")),
        "final": to_number(player.get("final")),
    }


def normalize_players(players: Any) -> List[Dict[str, Any]]:
    if not isinstance(players, list):
        return []
    return [normalize_player(p) for p in players if isinstance(p, dict)]


def build_session(payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return a complete session record from a (possibly empty) payload.

    Payload timestamps are honoured so imports can keep their history;
    otherwise both are set to now.
    """
    payload = payload or {}
    timestamp = now_iso()
    created = format_timestamp(parse_timestamp(payload.get("createdAt"))) or timestamp
    updated = _latest(created, payload.get("updatedAt") or created)
    settings = payload.get("settings") if isinstance(payload.get("settings"), dict) else {}
    return {
        "id": str(payload.get("id") or generate_id("session")),
        "createdAt": created,
        "updatedAt": updated,
        "settings": normalize_settings({**DEFAULT_SETTINGS, **settings}),
        "players": normalize_players(payload.get("players")),
    }


def merge_session(existing: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """Apply an update payload to ``existing``.

    ``settings`` merge key by key; ``players`` replace the roster only when a
    list is given. ``id`` and ``createdAt`` never change and ``updatedAt``
    never moves backwards.
    """
    patch = payload.get("settings") if isinstance(payload.get("settings"), dict) else {}
    players = payload.get("players")
    return {
        "id": existing["id"],
        "createdAt": existing.get("createdAt"),
        "updatedAt": _latest(now_iso(), existing.get("updatedAt"), existing.get("createdAt")),
        "settings": {**(existing.get("settings") or {}), **normalize_settings(patch)},
        "players": normalize_players(players) if isinstance(players, list) else list(existing.get("players") or []),
    }


__all__ = [
    "CURRENCIES",
    "DEFAULT_SETTINGS",
    "build_session",
    "format_timestamp",
    "merge_session",
    "normalize_players",
    "normalize_settings",
    "now_iso",
    "parse_timestamp",
    "sanitize_currency",
    "to_number",
]
