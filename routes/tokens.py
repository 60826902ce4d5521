"""Token balance, history, and Lemon Squeezy purchase endpoints."""

from __future__ import annotations

from flask import Response, abort, current_app, jsonify, request
from flask_login import current_user, login_required

from extensions import cache, db
from models import Transaction
from services import payments
from services.audit import record_audit_event
from services.tokens import (
    add_tokens,
    format_token_balance,
    get_balance,
    list_transactions,
    record_transaction,
)
from shared.exceptions import ValidationError

from .base import api, int_arg, json_body

DEV_ADD_MAX = 100_000


@api.route("/tokens/balance", methods=["GET"])
@login_required
def balance():
    tokens = get_balance(current_user.id)
    return jsonify({"balance": tokens, "formatted": format_token_balance(tokens)})


@api.route("/tokens/transactions", methods=["GET"])
@login_required
def transactions():
    rows = list_transactions(current_user.id, limit=int_arg("limit", 50))
    return jsonify({"transactions": [row.to_dict() for row in rows]})


@api.route("/tokens/tiers", methods=["GET"])
@cache.cached(timeout=3600)
def tiers():
    return jsonify({"tiers": [tier.to_public_dict() for tier in payments.token_tiers()]})


@api.route("/tokens/purchase", methods=["POST"])
@login_required
def purchase():
    payload = json_body()
    return jsonify(payments.start_purchase(current_user, payload.get("packs")))


@api.route("/tokens/webhook", methods=["POST"])
def webhook():
    outcome = payments.handle_webhook(request.get_data(), request.headers.get("X-Signature"))
    return Response(outcome.message, status=outcome.status, mimetype="text/plain")


@api.route("/tokens/dev-add", methods=["POST"])
@login_required
def dev_add():
    if not current_app.config.get("DEV_TOOLS_ENABLED"):
        abort(404)
    payload = json_body()
    try:
        amount = int(payload.get("amount", 1000))
    except (TypeError, ValueError) as exc:
        raise ValidationError("amount must be an integer") from exc
    if not 0 < amount <= DEV_ADD_MAX:
        raise ValidationError(f"amount must be between 1 and {DEV_ADD_MAX}")
    add_tokens(current_user.id, amount)
    record_audit_event("dev_tokens_added", {"amount": amount})
    db.session.commit()
    record_transaction(current_user.id, amount, "Developer token grant", type=Transaction.TYPE_GRANT)
    return jsonify({"success": True, "balance": get_balance(current_user.id)})
