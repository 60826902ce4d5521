"""Authentication and account routes (JSON session login plus API tokens)."""

from __future__ import annotations

from datetime import datetime

from flask import jsonify, session
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy import func

from extensions import db, limiter
from models import Transaction, User
from models.user import NEW_USER_WELCOME_BONUS
from services.audit import record_audit_event
from services.tokens import record_transaction
from shared.exceptions import AuthenticationRequiredError, ValidationError

from .base import api, json_body, limiter_key_user_or_ip

MIN_PASSWORD_LENGTH = 8
MAX_USERNAME_LENGTH = 80


@api.route("/auth/register", methods=["POST"])
@limiter.limit("10 per hour", key_func=limiter_key_user_or_ip)
def register():
    payload = json_body()
    email = (payload.get("email") or "").strip().lower()
    username = (payload.get("username") or "").strip().lower()
    password = (payload.get("password") or "").strip()

    if not email or not username or not password:
        raise ValidationError("Email, username, and password are required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if len(username) > MAX_USERNAME_LENGTH:
        raise ValidationError(f"Username must be {MAX_USERNAME_LENGTH} characters or fewer.")
    if User.query.filter(func.lower(User.email) == email).first():
        raise ValidationError("That email is already registered.")
    if User.query.filter(func.lower(User.username) == username).first():
        raise ValidationError("That username is already taken.")

    user = User(
        email=email,
        username=username,
        display_name=(payload.get("display_name") or "").strip() or None,
        is_admin=False,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    record_audit_event("user_registered", {"email": email, "username": username}, user_id=user.id)
    db.session.commit()
    record_transaction(user.id, NEW_USER_WELCOME_BONUS, "Welcome bonus", type=Transaction.TYPE_GRANT)
    return jsonify({"success": True, "user": user.to_dict()}), 201


@api.route("/auth/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    payload = json_body()
    identifier = (payload.get("identifier") or payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    user = None
    if identifier:
        user = User.query.filter(func.lower(User.email) == identifier).first()
        if not user:
            user = User.query.filter(func.lower(User.username) == identifier).first()
    if not user or not user.check_password(password):
        raise AuthenticationRequiredError("Invalid email/username or password.")

    login_user(user, remember=False, fresh=True)
    user.last_login_at = datetime.utcnow()
    record_audit_event("login", {"email": user.email}, user_id=user.id)
    db.session.commit()
    return jsonify({"success": True, "user": user.to_dict()})


@api.route("/auth/logout", methods=["POST"])
@login_required
def logout():
    record_audit_event("logout", {"email": current_user.email})
    db.session.commit()
    logout_user()
    session.clear()
    return jsonify({"success": True})


@api.route("/auth/me", methods=["GET"])
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})


@api.route("/auth/api-token", methods=["POST"])
@login_required
def issue_api_token():
    token = current_user.issue_api_token()
    record_audit_event("api_token_issued", {"hint": token[-8:]})
    db.session.commit()
    return jsonify({"token": token, "hint": current_user.api_token_hint}), 201


@api.route("/auth/api-token", methods=["DELETE"])
@login_required
def revoke_api_token():
    current_user.clear_api_token()
    record_audit_event("api_token_revoked", {})
    db.session.commit()
    return jsonify({"success": True})
