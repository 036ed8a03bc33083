import io
import json
import time
from urllib import error as urllib_error

import pytest

import pokerface.board as board_mod
import pokerface.datastore as ds
from pokerface.board import (
    LocalPersistence,
    PersistenceError,
    RemotePersistence,
    SessionBoard,
    SessionClosedError,
    SessionStillOpenError,
)
from pokerface.models import build_session, merge_session


class FakePersistence:
    def __init__(self, sessions=()):
        self.sessions = {s["id"]: s for s in sessions}
        self.created = []
        self.updates = []

    def list_sessions(self):
        return list(self.sessions.values())

    def create_session(self, payload=None):
        session = build_session(payload or {})
        self.sessions[session["id"]] = session
        self.created.append(session)
        return session

    def update_session(self, session_id, payload):
        self.updates.append((session_id, payload))
        updated = merge_session(self.sessions[session_id], payload)
        self.sessions[session_id] = updated
        return updated


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _loaded(*sessions, debounce=60):
    persistence = FakePersistence(sessions)
    board = SessionBoard(persistence, debounce=debounce)
    board.load()
    return board, persistence


def test_load_prefers_first_open_session(make_session):
    closed_recent = make_session("recent", when="2025-05-01T00:00:00.000Z")
    open_old = make_session("open-old", when="2020-01-01T00:00:00.000Z", status="open")
    board, persistence = _loaded(closed_recent, open_old)
    assert board.current_session["id"] == "open-old"
    assert persistence.created == []


def test_load_falls_back_to_most_recent(make_session):
    older = make_session("older", when="2023-04-09T19:45:00.000Z")
    newer = make_session("newer", when="2024-12-19T20:30:00.000Z")
    board, _ = _loaded(older, newer)
    assert board.current_session["id"] == "newer"
    assert board.is_closed


def test_load_creates_when_empty():
    persistence = FakePersistence()
    board = SessionBoard(persistence)
    session = board.load()
    assert persistence.created == [session]
    assert board.sessions == [session]
    assert session["settings"]["sessionStatus"] == "open"


def test_field_edits_are_debounced(make_session):
    board, persistence = _loaded(make_session("s1", [("Tom", 100, 100)], status="open"))
    player_id = board.current_session["players"][0]["id"]

    board.update_player(player_id, final=150)
    board.update_settings(hostName="Jamie")
    assert board.has_pending_save
    assert persistence.updates == []
    # in-memory view updates right away
    assert board.player_rows()[0]["net"] == 50

    board.shutdown()
    assert not board.has_pending_save
    assert len(persistence.updates) == 1
    _, payload = persistence.updates[0]
    assert payload["settings"]["hostName"] == "Jamie"
    assert payload["players"][0]["final"] == 150


def test_debounce_timer_flushes_once(make_session):
    board, persistence = _loaded(
        make_session("s1", [("Tom", 100, 100)], status="open"), debounce=0.05
    )
    player_id = board.current_session["players"][0]["id"]
    for final in (110, 120, 130):
        board.update_player(player_id, final=final)

    assert _wait_for(lambda: persistence.sessions["s1"]["players"][0]["final"] == 130)
    assert not board.has_pending_save
    assert len(persistence.updates) == 1
    assert persistence.sessions["s1"]["players"][0]["final"] == 130


def test_structural_edits_save_immediately(make_session):
    board, persistence = _loaded(make_session("s1", status="open"))
    player = board.add_player("  Ana  ", 50, 0)
    assert player["name"] == "Ana"
    assert player["id"].startswith("player-")
    assert len(persistence.updates) == 1

    board.remove_player(player["id"])
    assert len(persistence.updates) == 2
    assert persistence.sessions["s1"]["players"] == []

    with pytest.raises(KeyError):
        board.remove_player("nope")
    with pytest.raises(KeyError):
        board.update_player("nope", final=1)


def test_immediate_save_cancels_pending_debounce(make_session):
    board, persistence = _loaded(make_session("s1", [("Tom", 100, 100)], status="open"))
    player_id = board.current_session["players"][0]["id"]
    board.update_player(player_id, final=175)
    board.add_player("Ana")
    assert not board.has_pending_save
    assert len(persistence.updates) == 1
    _, payload = persistence.updates[0]
    assert payload["players"][0]["final"] == 175


def test_closed_session_is_read_only(make_session):
    board, persistence = _loaded(make_session("s1", [("Tom", 100, 100)], status="open"))
    board.close_session()
    assert board.is_closed
    assert persistence.sessions["s1"]["settings"]["sessionStatus"] == "closed"

    player_id = board.current_session["players"][0]["id"]
    with pytest.raises(SessionClosedError):
        board.update_settings(sessionStatus="open")
    with pytest.raises(SessionClosedError):
        board.update_player(player_id, final=1)
    with pytest.raises(SessionClosedError):
        board.add_player("Ana")
    with pytest.raises(SessionClosedError):
        board.reset_session()


def test_new_session_requires_closed_current(make_session):
    board, persistence = _loaded(make_session("s1", status="open"))
    with pytest.raises(SessionStillOpenError):
        board.start_new_session()
    assert persistence.created == []

    board.close_session()
    session = board.start_new_session()
    assert board.current_session is session
    assert session["settings"]["sessionStatus"] == "open"
    assert [s["id"] for s in board.sessions] == ["s1", session["id"]]


def test_reset_session_leaves_one_blank_player(make_session):
    board, persistence = _loaded(make_session("s1", [("Tom", 100, 20)], status="open"))
    board.update_settings(hostName="Jamie", currency="EUR")
    board.reset_session()
    saved = persistence.sessions["s1"]
    assert saved["settings"]["hostName"] == ""
    assert saved["settings"]["currency"] == "USD"
    assert saved["settings"]["sessionStatus"] == "open"
    assert len(saved["players"]) == 1
    assert saved["players"][0]["name"] == ""
    assert not board.has_pending_save


def test_derived_views(make_session):
    board, _ = _loaded(
        make_session("a", [("Alex", 100, 200)], when="2024-12-19T20:30:00.000Z"),
        make_session("b", [("Alex", 100, 60)], when="2023-04-09T19:45:00.000Z"),
    )
    assert board.years() == ["2024", "2023"]
    assert [sid for sid, _ in board.session_choices()] == ["a", "b"]
    assert board.scoreboard()["rows"][0]["total_net"] == 60
    assert board.scoreboard("year", year="2023")["rows"][0]["total_net"] == -40
    assert board.summary()["table_delta"] == 100


def test_local_persistence_round_trip(data_dir):
    board = SessionBoard(LocalPersistence(), debounce=60)
    session = board.load()
    board.add_player("Ana", 100, 140)
    board.update_settings(hostName="Jamie")
    board.shutdown()

    stored = ds.get_session(session["id"])
    assert stored["settings"]["hostName"] == "Jamie"
    assert stored["players"][0]["name"] == "Ana"


def test_local_persistence_missing_session(data_dir):
    with pytest.raises(PersistenceError):
        LocalPersistence().update_session("missing", {"settings": {}})


class _FakeResponse:
    def __init__(self, body):
        self._body = body

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_remote_persistence_sends_json(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout=None):
        seen["url"] = req.full_url
        seen["method"] = req.get_method()
        seen["body"] = json.loads(req.data.decode("utf-8"))
        return _FakeResponse(json.dumps({"id": "a b", "players": []}).encode("utf-8"))

    monkeypatch.setattr(board_mod.urllib_request, "urlopen", fake_urlopen)
    remote = RemotePersistence("http://localhost:3000/")
    result = remote.update_session("a b", {"players": []})
    assert result["id"] == "a b"
    assert seen == {
        "url": "http://localhost:3000/api/sessions/a%20b",
        "method": "PUT",
        "body": {"players": []},
    }


def test_remote_persistence_wraps_http_errors(monkeypatch):
    def fake_urlopen(req, timeout=None):
        raise urllib_error.HTTPError(
            req.full_url, 404, "Not Found", {}, io.BytesIO(b'{"message": "Session not found"}')
        )

    monkeypatch.setattr(board_mod.urllib_request, "urlopen", fake_urlopen)
    with pytest.raises(PersistenceError, match="404"):
        RemotePersistence("http://localhost:3000").update_session("x", {})


def test_remote_persistence_wraps_connection_errors(monkeypatch):
    def fake_urlopen(req, timeout=None):
        raise urllib_error.URLError("connection refused")

    monkeypatch.setattr(board_mod.urllib_request, "urlopen", fake_urlopen)
    with pytest.raises(PersistenceError, match="connection refused"):
        RemotePersistence("http://localhost:3000").list_sessions()


def test_debounced_save_failure_is_logged(make_session, caplog):
    class BrokenStore(FakePersistence):
        def update_session(self, session_id, payload):
            raise RuntimeError("DATABASE_URL not set")

    persistence = BrokenStore([make_session("s1", [("Tom", 100, 100)], status="open")])
    board = SessionBoard(persistence, debounce=0.05)
    board.load()
    caplog.set_level("ERROR", logger="pokerface.board")

    board.update_player(board.current_session["players"][0]["id"], final=150)

    assert _wait_for(lambda: any("Debounced save failed" in r.getMessage() for r in caplog.records))
    assert not board.has_pending_save
    # the in-memory edit survives the failed save
    assert board.player_rows()[0]["net"] == 50
