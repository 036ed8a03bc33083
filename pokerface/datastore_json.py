"""Flat-file session store.

Sessions live as one JSON array in ``<DATA_DIR>/sessions.json``. Every
mutation rewrites the whole file through a temp file and ``os.replace``.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import build_session, merge_session

logger = logging.getLogger(__name__)

SESSIONS_FILENAME = "sessions.json"

_DATA_DIR: Path = Path(os.environ.get("DATA_DIR") or Path.cwd() / "data")
# Serializes read-modify-write within this process; other processes can still race.
_WRITE_LOCK = threading.RLock()


def configure(data_dir) -> None:
    """Point the store at ``data_dir`` (created lazily on first access)."""
    global _DATA_DIR
    _DATA_DIR = Path(data_dir)


def sessions_file() -> Path:
    return _DATA_DIR / SESSIONS_FILENAME


def _ensure_file() -> Path:
    path = sessions_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        write_sessions([])
    return path


def read_sessions() -> List[Dict[str, Any]]:
    """Return the stored collection, resetting the file if it is corrupt."""
    path = _ensure_file()
    try:
        parsed = json.loads(path.read_bytes())
    except ValueError:
        # also covers UnicodeDecodeError
        logger.error("Failed to parse %s; resetting to an empty list", path)
        write_sessions([])
        return []
    if not isinstance(parsed, list):
        logger.error("Unexpected content in %s; resetting to an empty list", path)
        write_sessions([])
        return []
    return parsed


def write_sessions(sessions: List[Dict[str, Any]]) -> None:
    path = sessions_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".sessions-", suffix=".json", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(sessions, fh, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def list_sessions() -> List[Dict[str, Any]]:
    return read_sessions()


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    for session in read_sessions():
        if session.get("id") == session_id:
            return session
    return None


def create_session(payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    session = build_session(payload)
    with _WRITE_LOCK:
        sessions = read_sessions()
        for idx, existing in enumerate(sessions):
            if existing.get("id") == session["id"]:
                # Same id: keep the original creation time, replace the rest
                session["createdAt"] = existing.get("createdAt") or session["createdAt"]
                sessions[idx] = session
                break
        else:
            sessions.append(session)
        write_sessions(sessions)
    return session


def update_session(session_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with _WRITE_LOCK:
        sessions = read_sessions()
        for idx, existing in enumerate(sessions):
            if existing.get("id") == session_id:
                updated = merge_session(existing, payload or {})
                sessions[idx] = updated
                write_sessions(sessions)
                return updated
    return None


def ping() -> bool:
    _ensure_file()
    return True


__all__ = [
    "configure",
    "create_session",
    "get_session",
    "list_sessions",
    "ping",
    "read_sessions",
    "sessions_file",
    "update_session",
    "write_sessions",
]
