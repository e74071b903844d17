from __future__ import annotations

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException

_DEFAULT_MESSAGES = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    405: "Method not allowed",
    409: "Conflict",
    413: "File too large",
    429: "Too many requests",
    502: "Upstream service error",
    503: "Service unavailable",
}


def error_response(status: int, message: str | None = None, **extra):
    body = {"error": message or _DEFAULT_MESSAGES.get(status, "Error")}
    body.update(extra)
    return jsonify(body), status


def _description(e: HTTPException) -> str | None:
    # werkzeug fills in its own long-form text when abort() got no description
    desc = e.description
    if not desc or desc == type(e).description:
        return None
    return str(desc)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        status = e.code or 500
        if status >= 500:
            app.logger.error("HTTP %s (request_id=%s): %s", status, getattr(g, "request_id", None), e)
        return error_response(status, _description(e))

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return error_response(403, _description(e))

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return error_response(413, "File too large")

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return error_response(500, "Internal Error")

    @app.errorhandler(Exception)
    def _err_unhandled(e: Exception):  # type: ignore[no-redef]
        if isinstance(e, HTTPException):
            return _err_http(e)
        app.logger.exception("Unhandled exception (request_id=%s)", getattr(g, "request_id", None))
        return error_response(500, "Internal Error")
