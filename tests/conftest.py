import pathlib
import sys

import pytest

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # Keep the developer's environment out of store selection
    for name in ("DATABASE_URL", "STORE_BACKEND", "STATIC_ROOT", "PORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    yield


@pytest.fixture()
def data_dir(tmp_path):
    import pokerface.datastore as ds
    import pokerface.datastore_json as store

    path = tmp_path / "data"
    store.configure(path)
    ds.configure("json")
    return path


@pytest.fixture()
def app(data_dir):
    from pokerface import create_app

    app = create_app({"STORE_BACKEND": "json", "DATA_DIR": str(data_dir)})
    app.config.update({"TESTING": True})
    return app


@pytest.fixture()
def client(app):
    with app.test_client() as c:
        yield c


@pytest.fixture()
def make_session():
    def _make(session_id, players=(), currency="USD", when="", created="2025-01-01T00:00:00.000Z", status="closed"):
        return {
            "id": session_id,
            "createdAt": created,
            "updatedAt": created,
            "settings": {
                "hostName": "",
                "location": "",
                "datetime": when,
                "expenses": "",
                "reportedFinal": "",
                "currency": currency,
                "sessionStatus": status,
            },
            "players": [
                {"id": f"{session_id}-p{i}", "name": name, "buyins": buyins, "final": final}
                for i, (name, buyins, final) in enumerate(players)
            ],
        }

    return _make
