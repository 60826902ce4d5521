"""Audit trail for account and token events (logins, API tokens, manual grants)."""
from __future__ import annotations

from typing import Any, Dict, Optional

from flask import current_app, has_request_context, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import AuditLog


def _current_user_id() -> Optional[int]:
    if not has_request_context():
        return None
    if current_user and getattr(current_user, "is_authenticated", False):
        try:
            return int(current_user.get_id())
        except (TypeError, ValueError):
            return None
    return None


def record_audit_event(
    action: str,
    details: Optional[Dict[str, Any]] = None,
    *,
    user_id: Optional[int] = None,
) -> Optional[AuditLog]:
    """Add an audit entry to the current transaction; the caller commits."""
    try:
        entry = AuditLog(
            user_id=user_id if user_id is not None else _current_user_id(),
            action=action,
            details=details or {},
        )
        if has_request_context():
            entry.ip_address = request.headers.get("X-Forwarded-For", request.remote_addr)
            entry.user_agent = (request.headers.get("User-Agent") or "")[:255]
        db.session.add(entry)
        db.session.flush()
        return entry
    except SQLAlchemyError:
        current_app.logger.exception("Failed to record audit event: action=%s", action)
        return None
