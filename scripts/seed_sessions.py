#!/usr/bin/env python3
"""Seed the JSON store with three representative sessions."""
import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pokerface import datastore_json  # noqa: E402
from pokerface.models import build_session, format_timestamp  # noqa: E402

logger = logging.getLogger("pokerface.seed")


def _player(player_id: str, name: str, buyins: float, final: float) -> Dict[str, Any]:
    return {"id": player_id, "name": name, "buyins": buyins, "final": final}


def _session(session_id, created, updated, host, location, when, expenses, reported, currency, status, players):
    return build_session(
        {
            "id": session_id,
            "createdAt": created,
            "updatedAt": updated,
            "settings": {
                "hostName": host,
                "location": location,
                "datetime": when,
                "expenses": expenses,
                "reportedFinal": reported,
                "currency": currency,
                "sessionStatus": status,
            },
            "players": players,
        }
    )


def seed_sessions(now: datetime) -> List[Dict[str, Any]]:
    iso_now = format_timestamp(now)
    tonight = format_timestamp(now.replace(hour=20, minute=0, second=0, microsecond=0))
    return [
        _session(
            "session-2025-main", iso_now, iso_now, "Jamie Rivera", "Skyline Loft", tonight, 150, 2800, "USD", "open",
            [
                _player("player-alex", "Alex Morgan", 400, 525),
                _player("player-bree", "Bree Chen", 300, 180),
                _player("player-cam", "Cam Patel", 250, 420),
                _player("player-dev", "Devon Price", 500, 760),
                _player("player-eden", "Eden Solis", 350, 290),
            ],
        ),
        _session(
            "session-2024-holiday", "2024-12-20T02:15:00.000Z", "2024-12-20T06:15:00.000Z", "Jamie Rivera",
            "Mountain Retreat", "2024-12-19T20:30:00.000Z", 120, 2400, "EUR", "closed",
            [
                _player("player-alex-2024", "Alex Morgan", 450, 610),
                _player("player-bree-2024", "Bree Chen", 300, 250),
                _player("player-fern-2024", "Fernando Ortiz", 280, 360),
                _player("player-ida-2024", "Ida Novak", 320, 260),
            ],
        ),
        _session(
            "session-2023-spring", "2023-04-10T01:00:00.000Z", "2023-04-10T04:45:00.000Z", "Jamie Rivera",
            "Riverfront Condo", "2023-04-09T19:45:00.000Z", 95, 2100, "USD", "closed",
            [
                _player("player-cam-2023", "Cam Patel", 260, 480),
                _player("player-dev-2023", "Devon Price", 420, 340),
                _player("player-fern-2023", "Fernando Ortiz", 200, 260),
                _player("player-gia-2023", "Gia Walters", 280, 320),
            ],
        ),
    ]


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--data-dir", default=os.environ.get("DATA_DIR") or str(REPO_ROOT / "data"))
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    datastore_json.configure(args.data_dir)
    sessions = seed_sessions(datetime.now(timezone.utc))
    try:
        datastore_json.write_sessions(sessions)
    except OSError:
        logger.exception("Failed to seed sessions file")
        return 1
    logger.info("Seeded %d sessions with %d active players.", len(sessions), len(sessions[0]["players"]))
    return 0


if __name__ == "__main__":
    sys.exit(main())
