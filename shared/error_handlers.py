"""Centralized JSON error handlers."""

from __future__ import annotations

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from .exceptions import AppError

_HTTP_CODES = {
    400: "bad_request",
    401: "authentication_required",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
    429: "rate_limited",
}


def _json_error(code: str, detail: str, status: int):
    payload = {"error": code, "detail": detail}
    return jsonify(payload), status


def register_error_handlers(app) -> None:
    """Register error handlers on the Flask app."""

    @app.errorhandler(AppError)
    def app_error(err: AppError):  # type: ignore[no-redef]
        if err.status_code >= 500:
            current_app.logger.error("%s: %s", err.error_code, err.message)
        return _json_error(err.error_code, err.message, err.status_code)

    @app.errorhandler(HTTPException)
    def http_error(err: HTTPException):  # type: ignore[no-redef]
        status = err.code or 500
        if status >= 500:
            return internal(err)
        code = _HTTP_CODES.get(status, "http_error")
        return _json_error(code, err.description or code, status)

    @app.errorhandler(500)
    def internal(err):  # type: ignore[no-redef]
        from extensions import db

        db.session.rollback()
        current_app.logger.error("Unhandled server error: %s", err)
        return _json_error("server_error", "A server error occurred.", 500)
