"""Client-side session state.

``SessionBoard`` holds the session list and the current session for one
view. Edits update the in-memory copy right away and are persisted through
a pluggable strategy: ``LocalPersistence`` calls the configured datastore
in-process, ``RemotePersistence`` talks to the HTTP API.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from . import datastore
from .ids import generate_id
from .models import DEFAULT_SETTINGS, normalize_player, normalize_settings
from .scoring import (
    available_years,
    build_scoreboard,
    player_result,
    session_label,
    session_summary,
    sort_sessions_by_date,
)

logger = logging.getLogger(__name__)

SAVE_DEBOUNCE_SECONDS = 0.5


class PersistenceError(RuntimeError):
    """A load or save could not be completed."""


class SessionClosedError(RuntimeError):
    """The current session is closed and can no longer be edited."""


class SessionStillOpenError(RuntimeError):
    """A new session was requested while the current one is still open."""


class LocalPersistence:
    """Persist through :mod:`pokerface.datastore` in the same process."""

    def list_sessions(self) -> List[Dict[str, Any]]:
        return datastore.list_sessions()

    def create_session(self, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return datastore.create_session(payload or {})

    def update_session(self, session_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        updated = datastore.update_session(session_id, payload)
        if updated is None:
            raise PersistenceError(f"Session {session_id} not found")
        return updated


class RemotePersistence:
    """Persist through the JSON API served by :mod:`pokerface.routes`."""

    def __init__(self, base_url: str, timeout: float = 15):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        body = None
        headers = {"Accept": "application/json"}
        if payload is not None:
            body = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib_request.Request(url, data=body, headers=headers, method=method)
        try:
            with urllib_request.urlopen(req, timeout=self.timeout) as response:
                raw = response.read()
        except urllib_error.HTTPError as exc:
            details = exc.read().decode("utf-8", errors="replace")
            raise PersistenceError(f"{method} {path} failed ({exc.code}): {details}") from exc
        except urllib_error.URLError as exc:
            raise PersistenceError(f"{method} {path} failed: {exc.reason}") from exc
        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise PersistenceError(f"{method} {path} returned invalid JSON") from exc

    def list_sessions(self) -> List[Dict[str, Any]]:
        data = self._request("GET", "/api/sessions") or {}
        sessions = data.get("sessions")
        return list(sessions) if isinstance(sessions, list) else []

    def create_session(self, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request("POST", "/api/sessions", payload or {})

    def update_session(self, session_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        quoted = urllib_parse.quote(session_id, safe="")
        return self._request("PUT", f"/api/sessions/{quoted}", payload)


class SessionBoard:
    """In-memory sessions plus the one session being edited.

    Field edits are debounced (one timer per board, restarted by every edit);
    structural edits such as adding or removing a player, closing or resetting
    the session are saved immediately.
    """

    def __init__(self, persistence, debounce: float = SAVE_DEBOUNCE_SECONDS):
        self.persistence = persistence
        self.debounce = debounce
        self.sessions: List[Dict[str, Any]] = []
        self.current_session: Optional[Dict[str, Any]] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.RLock()

    # -- loading -----------------------------------------------------------

    def load(self) -> Dict[str, Any]:
        """Fetch all sessions and pick the current one.

        The first open session wins; otherwise the most recent by date; with
        no sessions at all a new one is created.
        """
        sessions = list(self.persistence.list_sessions())
        current = next(
            (s for s in sessions if (s.get("settings") or {}).get("sessionStatus") == "open"),
            None,
        )
        if current is None and sessions:
            current = sort_sessions_by_date(sessions)[0]
        if current is None:
            current = self.persistence.create_session({})
            sessions.append(current)
        with self._lock:
            self.sessions = sessions
            self.current_session = current
        return current

    @property
    def is_closed(self) -> bool:
        settings = (self.current_session or {}).get("settings") or {}
        return settings.get("sessionStatus") == "closed"

    @property
    def has_pending_save(self) -> bool:
        return self._timer is not None

    # -- edits -------------------------------------------------------------

    def _require_editable(self) -> Dict[str, Any]:
        if self.current_session is None:
            raise RuntimeError("No current session; call load() first")
        if self.is_closed:
            raise SessionClosedError(f"Session {self.current_session.get('id')} is closed")
        return self.current_session

    def _replace_current(self, session: Dict[str, Any]) -> None:
        self.current_session = session
        for idx, existing in enumerate(self.sessions):
            if existing.get("id") == session.get("id"):
                self.sessions[idx] = session
                break
        else:
            self.sessions.append(session)

    def _replace_players(self, players: List[Dict[str, Any]]) -> None:
        self._replace_current({**self.current_session, "players": players})

    def update_settings(self, **fields: Any) -> Dict[str, Any]:
        """Edit settings fields; closing through here saves immediately."""
        with self._lock:
            session = self._require_editable()
            settings = {**(session.get("settings") or {}), **normalize_settings(fields)}
            self._replace_current({**session, "settings": settings})
        self.schedule_save(immediate=settings.get("sessionStatus") == "closed")
        return settings

    def add_player(self, name: str = "", buyins: Any = 0, final: Any = 0) -> Dict[str, Any]:
        with self._lock:
            session = self._require_editable()
            player = normalize_player(
                {"id": generate_id("player"), "name": (name or "").strip(), "buyins": buyins, "final": final}
            )
            self._replace_players(list(session.get("players") or []) + [player])
        self.schedule_save(immediate=True)
        return player

    def update_player(self, player_id: str, **fields: Any) -> Dict[str, Any]:
        with self._lock:
            session = self._require_editable()
            players = list(session.get("players") or [])
            for idx, player in enumerate(players):
                if player.get("id") == player_id:
                    if "name" in fields:
                        fields["name"] = (fields["name"] or "").strip()
                    players[idx] = normalize_player({**player, **fields, "id": player_id})
                    updated = players[idx]
                    break
            else:
                raise KeyError(player_id)
            self._replace_players(players)
        self.schedule_save()
        return updated

    def remove_player(self, player_id: str) -> None:
        with self._lock:
            session = self._require_editable()
            players = [p for p in session.get("players") or [] if p.get("id") != player_id]
            if len(players) == len(session.get("players") or []):
                raise KeyError(player_id)
            self._replace_players(players)
        self.schedule_save(immediate=True)

    def close_session(self) -> None:
        """Close the current session. There is no way back to open."""
        self.update_settings(sessionStatus="closed")

    def reset_session(self) -> None:
        """Clear host settings and the roster, leaving one blank player row."""
        with self._lock:
            session = self._require_editable()
            blank = normalize_player({"id": generate_id("player"), "name": ""})
            self._replace_current({**session, "settings": dict(DEFAULT_SETTINGS), "players": [blank]})
        self.schedule_save(immediate=True)

    def start_new_session(self) -> Dict[str, Any]:
        if self.current_session is not None and not self.is_closed:
            raise SessionStillOpenError("Close the current session before starting a new one.")
        session = self.persistence.create_session({})
        with self._lock:
            self.cancel_pending()
            self.sessions.append(session)
            self.current_session = session
        return session

    # -- persistence -------------------------------------------------------

    def cancel_pending(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def schedule_save(self, immediate: bool = False) -> None:
        """Restart the debounce timer, or flush now when ``immediate``."""
        with self._lock:
            if self.current_session is None:
                return
            self.cancel_pending()
            if immediate:
                self.flush()
                return
            self._timer = threading.Timer(self.debounce, self._flush_from_timer)
            self._timer.daemon = True
            self._timer.start()

    def _flush_from_timer(self) -> None:
        with self._lock:
            if self._timer is not threading.current_thread():
                # Superseded by a newer edit while waiting for the lock
                return
            self._timer = None
            try:
                self.flush()
            except Exception:
                logger.exception("Debounced save failed")

    def flush(self) -> Optional[Dict[str, Any]]:
        """Send the current session to the persistence layer now."""
        with self._lock:
            session = self.current_session
            if session is None:
                return None
            payload = {"settings": session.get("settings") or {}, "players": session.get("players") or []}
            updated = self.persistence.update_session(session["id"], payload)
            self._replace_current(updated)
            return updated

    def shutdown(self) -> None:
        """Flush a pending debounced save, if any."""
        with self._lock:
            pending = self._timer is not None
            self.cancel_pending()
            if pending:
                self.flush()

    # -- derived views -----------------------------------------------------

    def player_rows(self) -> List[Dict[str, Any]]:
        return [player_result(p) for p in (self.current_session or {}).get("players") or []]

    def summary(self) -> Dict[str, Any]:
        return session_summary(self.current_session or {})

    def scoreboard(self, scope: str = "all", session_id: Optional[str] = None, year: Optional[str] = None) -> Dict[str, Any]:
        return build_scoreboard(self.sessions, scope, session_id=session_id, year=year)

    def years(self) -> List[str]:
        return available_years(self.sessions)

    def session_choices(self) -> List[Tuple[str, str]]:
        return [(s.get("id"), session_label(s)) for s in sort_sessions_by_date(self.sessions)]


__all__ = [
    "LocalPersistence",
    "PersistenceError",
    "RemotePersistence",
    "SessionBoard",
    "SessionClosedError",
    "SessionStillOpenError",
]
