from flask import Blueprint, abort, current_app, send_file

from app.bdgenai.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"name": "bdgenai", "ok": True}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/storage/<path:key>")
def storage_file(key: str):
    """Serve files written by the local storage backend (development only)."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    try:
        if not storage.exists(key):
            abort(404)
        return send_file(storage.open(key), download_name=key.rsplit("/", 1)[-1])
    except StorageError:
        abort(404)
