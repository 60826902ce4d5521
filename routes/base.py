"""Shared blueprint and helper utilities for the JSON API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from flask import Blueprint, current_app, request
from flask_limiter.util import get_remote_address
from flask_login import current_user

from shared.exceptions import ValidationError

api = Blueprint("api", __name__, url_prefix="/api")


def limiter_key_user_or_ip() -> str:
    """Use the authenticated user id when present; otherwise fall back to IP."""
    user_id = current_user.get_id() if current_user else None
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address() or request.remote_addr or 'unknown'}"


def ai_rate_limit() -> str:
    return current_app.config.get("RATELIMIT_AI", "20 per minute")


def json_body() -> Dict[str, Any]:
    """The request body as a dict; anything else is a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Request body must be JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def require_field(payload: Dict[str, Any], name: str, message: Optional[str] = None) -> Any:
    value = payload.get(name)
    if value is None or value == "" or value == [] or value == {}:
        raise ValidationError(message or f"{name} is required")
    return value


def int_arg(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc


def csv_arg(name: str) -> List[str]:
    raw = request.args.get(name) or ""
    return [part.strip() for part in raw.split(",") if part.strip()]


def bool_arg(name: str, default: bool = False) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}
