#!/usr/bin/env python3
"""Import historical sessions from a CSV file into the configured store.

One row per player result; rows sharing ``sessionId`` (or ``id``) make up a
session. Session-level columns are taken from the first row of each session.
"""
import argparse
import csv
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pokerface import datastore, datastore_json  # noqa: E402
from pokerface.ids import generate_id  # noqa: E402
from pokerface.models import format_timestamp, now_iso, parse_timestamp, to_number  # noqa: E402

logger = logging.getLogger("pokerface.import")

DEFAULT_FILE = REPO_ROOT / "data" / "historicalSessions.csv"


def _status(value: Any) -> str:
    lowered = str(value or "").strip().lower()
    return lowered if lowered in ("open", "closed") else "closed"


def _datetime(value: Any) -> str:
    return format_timestamp(parse_timestamp(value)) or ""


def read_rows(path: Path) -> List[Dict[str, str]]:
    """Read CSV rows as dicts with trimmed headers and values; blank rows dropped."""
    with path.open(newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        rows = []
        for raw in reader:
            row = {(k or "").strip(): (v or "").strip() for k, v in raw.items() if k is not None}
            if any(row.values()):
                rows.append(row)
        return rows


def group_sessions(rows: Iterable[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Turn player rows into session payloads, preserving first-seen order."""
    sessions: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        session_id = row.get("sessionId") or row.get("id") or generate_id("session")
        session = sessions.get(session_id)
        if session is None:
            event = _datetime(row.get("datetime"))
            session = {
                "id": session_id,
                "settings": {
                    "hostName": row.get("hostName", ""),
                    "location": row.get("location", ""),
                    "datetime": event,
                    "expenses": to_number(row.get("expenses")),
                    "reportedFinal": to_number(row.get("reportedFinal")),
                    "currency": row.get("currency") or "USD",
                    "sessionStatus": _status(row.get("status")),
                },
                "players": [],
                "createdAt": _datetime(row.get("createdAt")) or event or now_iso(),
                "updatedAt": _datetime(row.get("updatedAt")) or event or now_iso(),
            }
            sessions[session_id] = session

        name = row.get("playerName") or row.get("player") or ""
        if name:
            player_id = row.get("playerId") or f"{session_id}-{'-'.join(name.split()).lower()}"
            session["players"].append(
                {
                    "id": player_id,
                    "name": name,
                    "buyins": to_number(row.get("buyins")),
                    "final": to_number(row.get("final")),
                }
            )
    return list(sessions.values())


def import_csv(path: Path) -> int:
    sessions = group_sessions(read_rows(path))
    for session in sessions:
        datastore.create_session(session)
    logger.info("Imported %d sessions from %s", len(sessions), path)
    return len(sessions)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("csv_file", nargs="?", default=str(DEFAULT_FILE), help="CSV file to import")
    parser.add_argument("--backend", default=None, help="json or postgres (default: from environment)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    load_dotenv(Path.cwd() / ".env", override=False)
    backend = args.backend or os.environ.get("STORE_BACKEND") or ("postgres" if os.environ.get("DATABASE_URL") else "json")
    datastore.configure(backend)
    datastore_json.configure(os.environ.get("DATA_DIR") or REPO_ROOT / "data")
    try:
        import_csv(Path(args.csv_file).resolve())
    except Exception:
        logger.exception("Failed to import historical sessions")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
