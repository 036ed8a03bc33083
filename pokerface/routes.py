from flask import Blueprint, abort, current_app, jsonify, request, send_file
import json
import os

from werkzeug.exceptions import HTTPException
from werkzeug.security import safe_join

from .datastore import (
    backend_name as ds_backend_name,
    create_session as ds_create_session,
    get_session as ds_get_session,
    list_sessions as ds_list_sessions,
    ping as ds_ping,
    update_session as ds_update_session,
)


bp = Blueprint('main', __name__)

API_PREFIX = '/api/'
ALL_METHODS = ['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']


def _json(payload, status=200):
    res = jsonify(payload)
    res.status_code = status
    res.headers['Cache-Control'] = 'no-store'
    return res


def _message(message, status):
    return _json({'message': message}, status)


def _read_payload() -> dict:
    """Parse the request body as a JSON object; an empty body means ``{}``."""
    raw = request.get_data(cache=True)
    if not raw or not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        abort(400, description='Invalid JSON payload')
    if not isinstance(payload, dict):
        abort(400, description='Invalid JSON payload')
    return payload


#<api>
@bp.route('/api/sessions', methods=['GET'], provide_automatic_options=False)
def list_sessions():
    return _json({'sessions': ds_list_sessions()})


@bp.route('/api/sessions', methods=['POST'], provide_automatic_options=False)
def create_session():
    payload = _read_payload()
    session = ds_create_session(payload)
    current_app.logger.info("Created session %s", session.get('id'))
    return _json(session, 201)


@bp.route('/api/sessions/<session_id>', methods=['GET'], provide_automatic_options=False)
def get_session(session_id):
    session = ds_get_session(session_id)
    if session is None:
        return _message('Session not found', 404)
    return _json(session)


@bp.route('/api/sessions/<session_id>', methods=['PUT'], provide_automatic_options=False)
def update_session(session_id):
    payload = _read_payload()
    updated = ds_update_session(session_id, payload)
    if updated is None:
        return _message('Session not found', 404)
    return _json(updated)


@bp.route('/api/', methods=ALL_METHODS)
@bp.route('/api/<path:_rest>', methods=ALL_METHODS)
def api_fallback(_rest=''):
    return _message('Method not allowed', 405)
#</api>


@bp.route('/health')
def health():
    """Report the active store backend and whether it answers.

    Always HTTP 200; the body carries the status.
    """
    backend = ds_backend_name()
    try:
        ds_ping()
    except Exception as e:  # pragma: no cover - best-effort health output
        return {'backend': backend, 'connected': False, 'status': 'error', 'error': str(e)}
    return {'backend': backend, 'connected': True, 'status': 'ok'}


#<static>
def _resolve_static_path(root: str, requested: str) -> str:
    """Map a request path onto the static root; raises 403 when it escapes."""
    requested = (requested or '').lstrip('/') or 'index.html'
    path = safe_join(root, requested)
    if path is None:
        abort(403)
    return path


@bp.route('/', defaults={'path': ''}, methods=['GET', 'HEAD'])
@bp.route('/<path:path>', methods=['GET', 'HEAD'])
def static_files(path):
    root = current_app.config['STATIC_ROOT']
    file_path = _resolve_static_path(root, path)
    if not os.path.isfile(file_path):
        abort(404)
    res = send_file(file_path, conditional=True)
    if file_path.lower().endswith('.html'):
        res.headers['Cache-Control'] = 'no-cache'
    else:
        res.headers['Cache-Control'] = 'public, max-age=3600'
    return res
#</static>


#<errors>
@bp.app_errorhandler(HTTPException)
def handle_http_error(e):
    if request.path.startswith(API_PREFIX):
        if e.code == 405:
            return _message('Method not allowed', 405)
        if e.code == 413:
            return _message('Payload too large', 413)
        return _message(e.description or e.name, e.code or 500)
    return e


@bp.app_errorhandler(Exception)
def handle_unexpected_error(e):
    current_app.logger.exception("Unexpected server error on %s %s", request.method, request.path)
    return _message('Internal server error', 500)
#</errors>
