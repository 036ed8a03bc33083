"""Session summaries and the cross-session scoreboard."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import DEFAULT_CURRENCY, parse_timestamp, sanitize_currency, to_number

# Nets within this distance of zero count as break-even.
EPSILON = 0.0001

UNNAMED_PLAYER = "Unnamed player"
UNKNOWN_YEAR = "Unknown"

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "ILS": "₪",
}

SCOPES = ("all", "session", "year")


def currency_symbol(code: Any = DEFAULT_CURRENCY) -> str:
    return CURRENCY_SYMBOLS[sanitize_currency(code)]


def format_currency(value: Any, code: Any = DEFAULT_CURRENCY) -> str:
    """Format ``value`` as ``-$1,234.50`` style text in the given currency."""
    number = round(float(to_number(value)), 2)
    sign = "-" if number < 0 else ""
    return f"{sign}{currency_symbol(code)}{abs(number):,.2f}"


def format_mixed(value: Any) -> str:
    return f"{float(to_number(value)):.2f} (mixed)"


def name_sort_key(name: str) -> Tuple[str, str]:
    """Case-insensitive order with lowercase first on ties (``amy``, ``Amy``, ``Zed``)."""
    return name.casefold(), name.swapcase()


def classify_net(net: float, name: str = "") -> str:
    """Return ``Win``, ``Loss``, ``Break even`` or a dash for unnamed rows."""
    if net > EPSILON:
        return "Win"
    if net < -EPSILON:
        return "Loss"
    if (name or "").strip():
        return "Break even"
    return "–"


def player_result(player: Dict[str, Any]) -> Dict[str, Any]:
    """Derived display values for one player row of a session."""
    buyins = to_number(player.get("buyins"))
    final = to_number(player.get("final"))
    net = final - buyins
    name = (player.get("name") or "").strip()
    return {
        "id": player.get("id"),
        "name": name,
        "buyins": buyins,
        "final": final,
        "net": net,
        "outcome": classify_net(net, name),
    }


def session_summary(session: Dict[str, Any]) -> Dict[str, Any]:
    """Totals for a single session.

    ``delta_alert`` is set when the finals do not balance the buy-ins; in a
    real game the table delta is zero.
    """
    settings = session.get("settings") or {}
    rows = [player_result(p) for p in session.get("players") or []]
    total_buyins = sum(r["buyins"] for r in rows)
    total_final = sum(r["final"] for r in rows)
    expenses = to_number(settings.get("expenses"))
    table_delta = total_final - total_buyins
    return {
        "total_buyins": total_buyins,
        "total_final": total_final,
        "table_delta": table_delta,
        "delta_alert": abs(table_delta) > EPSILON,
        "expenses": expenses,
        "amount_left": total_final - expenses,
        "wins": sum(1 for r in rows if r["net"] > 0),
        "losses": sum(1 for r in rows if r["net"] < 0),
        "currency": sanitize_currency(settings.get("currency")),
    }


def session_date(session: Dict[str, Any]) -> Optional[datetime]:
    """Event date from ``settings.datetime``, else ``createdAt``."""
    settings = (session or {}).get("settings") or {}
    value = settings.get("datetime") or (session or {}).get("createdAt")
    return parse_timestamp(value)


def session_year(session: Dict[str, Any]) -> str:
    date = session_date(session)
    return str(date.year) if date else UNKNOWN_YEAR


def available_years(sessions: Iterable[Dict[str, Any]]) -> List[str]:
    """Distinct years, newest first, with ``Unknown`` last."""
    years = {session_year(s) for s in sessions}
    known = sorted((y for y in years if y != UNKNOWN_YEAR), key=int, reverse=True)
    if UNKNOWN_YEAR in years:
        known.append(UNKNOWN_YEAR)
    return known


def sort_sessions_by_date(sessions: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Most recent first; undated sessions sort as the epoch (last)."""
    def _key(s: Dict[str, Any]) -> float:
        date = session_date(s)
        return date.timestamp() if date else 0.0
    return sorted(sessions, key=_key, reverse=True)


def session_label(session: Dict[str, Any]) -> str:
    date = session_date(session)
    host = ((session.get("settings") or {}).get("hostName") or "").strip()
    date_label = f"{date:%b} {date.day}, {date.year} {date:%H:%M}" if date else "No date"
    return f"{date_label} · {host}" if host else date_label


def determine_currency(sessions: Iterable[Dict[str, Any]]) -> Optional[str]:
    """The shared currency code of ``sessions``, or ``None`` when they differ."""
    codes = {sanitize_currency((s.get("settings") or {}).get("currency")) for s in sessions}
    if len(codes) == 1:
        return codes.pop()
    return None


def compute_player_stats(sessions: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Group player rows across ``sessions`` by trimmed name.

    Grouping is case-sensitive: ``"Alex "`` joins ``"Alex"`` but ``"alex"``
    is a separate player.
    """
    stats: Dict[str, Dict[str, Any]] = {}
    for session in sessions:
        session_id = session.get("id")
        for player in session.get("players") or []:
            name = (player.get("name") or "").strip() or UNNAMED_PLAYER
            buyins = to_number(player.get("buyins"))
            final = to_number(player.get("final"))
            net = final - buyins
            entry = stats.setdefault(
                name,
                {
                    "name": name,
                    "total_buyins": 0,
                    "total_final": 0,
                    "total_net": 0,
                    "wins": 0,
                    "losses": 0,
                    "session_ids": set(),
                },
            )
            entry["total_buyins"] += buyins
            entry["total_final"] += final
            entry["total_net"] += net
            entry["session_ids"].add(session_id)
            if net > EPSILON:
                entry["wins"] += 1
            elif net < -EPSILON:
                entry["losses"] += 1

    out = []
    for entry in stats.values():
        session_ids = entry.pop("session_ids")
        out.append({**entry, "sessions_played": len(session_ids)})
    return out


def select_sessions(
    sessions: List[Dict[str, Any]],
    scope: str = "all",
    session_id: Optional[str] = None,
    year: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], str]:
    """Return ``(selected_sessions, context_label)`` for a scoreboard scope."""
    if scope == "session":
        for session in sessions:
            if session_id and session.get("id") == session_id:
                return [session], session_label(session)
        return [], ""
    if scope == "year":
        if not year:
            return [], ""
        year = str(year)
        label = "Sessions without a set date" if year == UNKNOWN_YEAR else f"Year {year}"
        return [s for s in sessions if session_year(s) == year], label
    return list(sessions), "All sessions"


def _wins_leader(rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    best: Optional[Dict[str, Any]] = None
    for candidate in rows:
        if best is None or candidate["wins"] > best["wins"]:
            best = candidate
        elif candidate["wins"] == best["wins"]:
            if candidate["total_net"] > best["total_net"]:
                best = candidate
            elif candidate["total_net"] == best["total_net"] and name_sort_key(candidate["name"]) < name_sort_key(best["name"]):
                best = candidate
    return best


def _empty_scoreboard(scope: str, note: str, message: str) -> Dict[str, Any]:
    return {
        "scope": scope,
        "session_count": 0,
        "currency": None,
        "mixed": False,
        "rows": [],
        "profit_leader": None,
        "wins_leader": None,
        "empty_message": message,
        "note": note,
    }


def build_scoreboard(
    sessions: List[Dict[str, Any]],
    scope: str = "all",
    session_id: Optional[str] = None,
    year: Optional[str] = None,
) -> Dict[str, Any]:
    """Aggregate player results for the sessions in ``scope``.

    Args:
        sessions: Every known session; the scope selects from these.
        scope: ``"all"``, ``"session"`` (uses ``session_id``) or ``"year"``
            (uses ``year``, which may be ``"Unknown"``).

    Returns:
        Dictionary with ranked ``rows`` (total net descending, then name),
        ``profit_leader``, ``wins_leader``, the shared ``currency`` (``None``
        when mixed) and a human readable ``note``.
    """
    selected, label = select_sessions(sessions, scope, session_id=session_id, year=year)
    if not selected:
        note = "No sessions recorded yet." if not sessions else "No sessions available for the selected view."
        return _empty_scoreboard(scope, note, "No results yet")

    rows = compute_player_stats(selected)
    if not rows:
        board = _empty_scoreboard(scope, f"{label or 'Selected view'} has no player data yet.", "No player results yet")
        board["session_count"] = len(selected)
        return board

    rows.sort(key=lambda r: (-r["total_net"], name_sort_key(r["name"])))
    currency = determine_currency(selected)
    for row in rows:
        row["total_net_display"] = format_currency(row["total_net"], currency) if currency else format_mixed(row["total_net"])

    profit = rows[0]
    wins = _wins_leader(rows)
    count = len(selected)
    currency_note = f"Values shown in {currency}." if currency else "Results span multiple currencies."
    return {
        "scope": scope,
        "session_count": count,
        "currency": currency,
        "mixed": currency is None,
        "rows": rows,
        "profit_leader": {
            "name": profit["name"],
            "total_net": profit["total_net"],
            "display": profit["total_net_display"],
        },
        "wins_leader": {
            "name": wins["name"],
            "wins": wins["wins"],
            "display": f"{wins['wins']} win{'' if wins['wins'] == 1 else 's'}",
        } if wins else None,
        "empty_message": None,
        "note": f"{label or 'Selected view'} · {count} {'session' if count == 1 else 'sessions'}. {currency_note}",
    }


__all__ = [
    "EPSILON",
    "UNKNOWN_YEAR",
    "UNNAMED_PLAYER",
    "available_years",
    "build_scoreboard",
    "classify_net",
    "compute_player_stats",
    "determine_currency",
    "format_currency",
    "name_sort_key",
    "player_result",
    "select_sessions",
    "session_date",
    "session_label",
    "session_summary",
    "session_year",
    "sort_sessions_by_date",
]
