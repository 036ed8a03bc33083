from typing import Any, Dict, List, Optional

# Backend-selecting proxy. Route handlers and the client board call these
# functions; ``configure`` decides whether they hit the JSON file or PostgreSQL.

from . import datastore_json as _json
from . import datastore_pg as _pg

BACKENDS = {
    "json": _json,
    "postgres": _pg,
}

_ACTIVE = "json"


def configure(backend: str) -> None:
    global _ACTIVE
    name = (backend or "").strip().lower()
    if name in ("pg", "postgresql", "sql"):
        name = "postgres"
    if name not in BACKENDS:
        raise ValueError(f"Unknown store backend '{backend}'; expected one of: {', '.join(BACKENDS)}")
    _ACTIVE = name


def backend_name() -> str:
    return _ACTIVE


def _backend():
    return BACKENDS[_ACTIVE]


def list_sessions() -> List[Dict[str, Any]]:
    return _backend().list_sessions()


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    return _backend().get_session(session_id)


def create_session(payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return _backend().create_session(payload or {})


def update_session(session_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return _backend().update_session(session_id, payload or {})


def ping() -> bool:
    return _backend().ping()
