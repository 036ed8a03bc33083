import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask

# Bodies above this size are refused before they are parsed.
MAX_BODY_BYTES = 1_000_000

DEFAULT_STATIC_ROOT = Path(__file__).resolve().parent / "static"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


def _default_backend() -> str:
    explicit = os.environ.get("STORE_BACKEND")
    if explicit:
        return explicit
    return "postgres" if os.environ.get("DATABASE_URL") else "json"


def _load_env() -> None:
    # Values already in the environment win over .env entries
    load_dotenv(Path.cwd() / ".env", override=False)


def create_app(config=None):
    _load_env()

    app = Flask(__name__, static_folder=None)
    app.config.update(
        {
            "STORE_BACKEND": _default_backend(),
            "DATA_DIR": os.environ.get("DATA_DIR") or str(Path.cwd() / "data"),
            "STATIC_ROOT": os.environ.get("STATIC_ROOT") or str(DEFAULT_STATIC_ROOT),
            "MAX_CONTENT_LENGTH": MAX_BODY_BYTES,
        }
    )
    if config:
        app.config.update(config)
    app.json.sort_keys = False
    app.logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

    from . import datastore
    from . import datastore_json

    datastore.configure(app.config["STORE_BACKEND"])
    datastore_json.configure(app.config["DATA_DIR"])

    if datastore.backend_name() == "postgres":
        if not os.environ.get("DATABASE_URL"):
            # Store calls will fail with a descriptive error until this is set
            app.logger.warning("DATABASE_URL is not defined; database operations will fail until it is configured")
        else:
            # Optional pool; direct connections are used when it cannot start
            try:
                from . import datastore_pg as _pg
                _pg.init_pool(minconn=_env_int("DB_POOL_MIN", 1), maxconn=_env_int("DB_POOL_MAX", 10))
            except Exception:  # pragma: no cover
                app.logger.exception("PostgreSQL pool initialization failed; continuing without pool")

    from . import routes  # type: ignore
    app.register_blueprint(routes.bp)

    app.logger.info("Session store backend: %s", datastore.backend_name())
    return app


def main():
    _load_env()
    port = _env_int("PORT", 3000)
    host = os.environ.get("HOST", "0.0.0.0")
    app = create_app()
    app.logger.info("Poker Face Tracker server running on http://localhost:%d", port)
    app.run(host=host, port=port, threaded=True)


if __name__ == '__main__':
    main()
