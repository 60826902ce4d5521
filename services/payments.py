"""Token pack purchases through Lemon Squeezy.

Checkout sessions are created over the JSON:API endpoint with ``requests``;
tokens are only credited once the signed ``order_created`` webhook arrives.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import requests
from flask import current_app
from sqlalchemy import case, update
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Transaction, User
from shared.exceptions import PaymentProviderError, ValidationError

__all__ = [
    "API_BASE_URL",
    "TOKENS_PER_PACK",
    "TokenTier",
    "WebhookData",
    "WebhookOutcome",
    "token_tiers",
    "tier_for_packs",
    "is_valid_pack_count",
    "calculate_tokens",
    "expected_total_price",
    "create_checkout",
    "verify_webhook_signature",
    "parse_webhook_payload",
    "handle_webhook",
    "start_purchase",
]

API_BASE_URL = "https://api.lemonsqueezy.com/v1"
REQUEST_TIMEOUT = 20
TOKENS_PER_PACK = 5000
BASE_FEE = Decimal("0.50")
FEE_PERCENTAGE = Decimal("0.05")


@dataclass(frozen=True)
class TokenTier:
    key: str
    name: str
    packs: int
    tokens: int
    price: Decimal
    discount: Decimal
    variant_id: str

    def to_public_dict(self) -> Dict[str, Any]:
        """Client-facing view; variant ids stay server side."""
        return {
            "name": self.name,
            "packs": self.packs,
            "tokens": self.tokens,
            "price": float(self.price),
            "discount": float(self.discount),
        }


def token_tiers() -> List[TokenTier]:
    cfg = current_app.config
    return [
        TokenTier("STARTER", "Starter", 1, 5000, Decimal("4.78"), Decimal("0"), str(cfg["LEMON_SQUEEZY_VARIANT_STARTER"])),
        TokenTier("POPULAR", "Popular", 3, 15000, Decimal("14.34"), Decimal("0.08"), str(cfg["LEMON_SQUEEZY_VARIANT_POPULAR"])),
        TokenTier("POWER", "Power User", 5, 25000, Decimal("23.90"), Decimal("0.16"), str(cfg["LEMON_SQUEEZY_VARIANT_POWER"])),
    ]


def is_valid_pack_count(packs: Any) -> bool:
    if isinstance(packs, bool) or not isinstance(packs, int):
        return False
    return any(t.packs == packs for t in token_tiers())


def tier_for_packs(packs: int) -> Optional[TokenTier]:
    for tier in token_tiers():
        if tier.packs == packs:
            return tier
    return None


def calculate_tokens(packs: int) -> int:
    return packs * TOKENS_PER_PACK


def expected_total_price(tier: TokenTier) -> Decimal:
    """Discounted price plus the processor fee (0.50 + 5%), rounded to cents."""
    discounted = tier.price * (Decimal("1") - tier.discount)
    total = discounted + BASE_FEE + discounted * FEE_PERCENTAGE
    return total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Lemon Squeezy API
# ---------------------------------------------------------------------------

def _headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {current_app.config.get('LEMON_SQUEEZY_API_KEY') or ''}",
        "Accept": "application/vnd.api+json",
        "Content-Type": "application/vnd.api+json",
    }


def create_checkout(variant_id: str, custom_data: Dict[str, Any]) -> Dict[str, str]:
    """Create a hosted checkout and return ``{"url", "checkout_id"}``."""
    if not current_app.config.get("LEMON_SQUEEZY_API_KEY"):
        raise PaymentProviderError("Payment provider is not configured")
    body = {
        "data": {
            "type": "checkouts",
            "attributes": {
                # Lemon Squeezy only accepts string values in custom data
                "checkout_data": {"custom": {k: str(v) for k, v in custom_data.items()}},
                "test_mode": bool(current_app.config.get("LEMON_SQUEEZY_TEST_MODE")),
            },
            "relationships": {
                "store": {"data": {"type": "stores", "id": str(current_app.config.get("LEMON_SQUEEZY_STORE_ID") or "")}},
                "variant": {"data": {"type": "variants", "id": str(variant_id)}},
            },
        }
    }
    try:
        resp = requests.post(f"{API_BASE_URL}/checkouts", json=body, headers=_headers(), timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        current_app.logger.error("Lemon Squeezy checkout creation failed: %s", exc)
        raise PaymentProviderError("Failed to create checkout session") from exc

    data = payload.get("data") or {}
    url = (data.get("attributes") or {}).get("url")
    if not url:
        raise PaymentProviderError("No checkout URL returned from Lemon Squeezy")
    return {"url": url, "checkout_id": str(data.get("id") or "")}


def verify_webhook_signature(raw_body: bytes | str, signature: Optional[str], secret: Optional[str]) -> bool:
    """HMAC-SHA256 hex digest of the raw body, compared in constant time."""
    if not signature or not secret:
        return False
    try:
        body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(digest, signature.strip())
    except (TypeError, ValueError):
        return False


@dataclass
class WebhookData:
    event_name: Optional[str]
    order_id: Optional[str]
    order_number: Optional[int]
    custom_data: Dict[str, Any] = field(default_factory=dict)
    status: Optional[str] = None
    total: Optional[int] = None
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_cents(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_webhook_payload(payload: Dict[str, Any]) -> WebhookData:
    """Pull the fields we use out of a webhook body. Wrongly shaped parts read as missing."""
    meta = _as_dict(payload.get("meta"))
    data = _as_dict(payload.get("data"))
    attributes = _as_dict(data.get("attributes"))
    first_item = _as_dict(attributes.get("first_order_item"))
    variant_id = first_item.get("variant_id")
    return WebhookData(
        event_name=meta.get("event_name"),
        order_id=str(data["id"]) if data.get("id") is not None else None,
        order_number=attributes.get("order_number"),
        custom_data=_as_dict(meta.get("custom_data")),
        status=attributes.get("status"),
        total=_as_cents(attributes.get("total")),
        variant_id=str(variant_id) if variant_id is not None else None,
        variant_name=first_item.get("variant_name"),
    )


@dataclass(frozen=True)
class WebhookOutcome:
    status: int
    message: str


def _order_created(user_id: int, packs: int, hook: WebhookData, payload: Dict[str, Any]) -> None:
    tokens = calculate_tokens(packs)
    existing = Transaction.query.filter_by(order_id=hook.order_id).first()
    if existing is not None and existing.status == Transaction.STATUS_COMPLETED:
        current_app.logger.info("Webhook order %s already processed", hook.order_id)
        return

    row = existing or Transaction(order_id=hook.order_id, type=Transaction.TYPE_PURCHASE)
    row.user_id = user_id
    row.type = Transaction.TYPE_PURCHASE
    row.credits_delta = tokens
    row.description = f"Token purchase: {hook.variant_name or f'{packs} pack(s)'}"[:255]
    row.variant_id = hook.variant_id
    row.variant_name = hook.variant_name
    row.amount_usd = (Decimal(hook.total) / 100) if hook.total is not None else None
    row.tokens_purchased = tokens
    row.status = Transaction.STATUS_COMPLETED
    row.webhook_payload = payload
    db.session.add(row)
    db.session.execute(update(User).where(User.id == user_id).values(credits=User.credits + tokens))
    db.session.commit()
    current_app.logger.info("Credited %s tokens to user %s for order %s", tokens, user_id, hook.order_id)


def _order_refunded(user_id: int, packs: int, hook: WebhookData, payload: Dict[str, Any]) -> None:
    tokens = calculate_tokens(packs)
    row = Transaction.query.filter_by(order_id=hook.order_id).first()
    if row is not None:
        if row.status == Transaction.STATUS_REFUNDED:
            current_app.logger.info("Webhook refund for order %s already processed", hook.order_id)
            return
        row.status = Transaction.STATUS_REFUNDED
        row.webhook_payload = payload
    elif hook.order_id is not None:
        # One refunded row per order_id
        db.session.add(
            Transaction(
                user_id=user_id,
                type=Transaction.TYPE_PURCHASE,
                credits_delta=-tokens,
                description=f"Refund: {hook.variant_name or f'{packs} pack(s)'}"[:255],
                status=Transaction.STATUS_REFUNDED,
                order_id=hook.order_id,
                variant_id=hook.variant_id,
                variant_name=hook.variant_name,
                webhook_payload=payload,
            )
        )
    db.session.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits=case((User.credits > tokens, User.credits - tokens), else_=0))
    )
    db.session.commit()
    current_app.logger.info("Debited %s tokens from user %s for refunded order %s", tokens, user_id, hook.order_id)


def handle_webhook(raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
    """Verify and apply a webhook. Anything after verification is acknowledged with 200."""
    if not signature:
        current_app.logger.warning("Webhook rejected: no signature header")
        return WebhookOutcome(401, "No signature")
    if not verify_webhook_signature(raw_body, signature, current_app.config.get("LEMON_SQUEEZY_WEBHOOK_SECRET")):
        current_app.logger.warning("Webhook rejected: invalid signature")
        return WebhookOutcome(401, "Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        current_app.logger.error("Webhook body is not valid JSON")
        return WebhookOutcome(200, "Error logged")
    hook = parse_webhook_payload(payload if isinstance(payload, dict) else {})

    try:
        user_id = int(str(hook.custom_data.get("user_id") or "").strip())
    except ValueError:
        current_app.logger.error("Webhook missing user_id in custom data")
        return WebhookOutcome(400, "Missing user_id")
    try:
        packs = int(str(hook.custom_data.get("packs")).strip())
    except ValueError:
        current_app.logger.error("Webhook has invalid packs value in custom data")
        return WebhookOutcome(400, "Invalid packs value")

    try:
        if db.session.get(User, user_id) is None:
            current_app.logger.error("Webhook for unknown user_id=%s order=%s", user_id, hook.order_id)
        elif hook.event_name == "order_created":
            _order_created(user_id, packs, hook, payload)
        elif hook.event_name == "order_refunded":
            _order_refunded(user_id, packs, hook, payload)
        else:
            current_app.logger.info("Ignoring webhook event %s", hook.event_name)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error processing webhook order=%s", hook.order_id)
        return WebhookOutcome(200, "Error logged")
    return WebhookOutcome(200, "OK")


def start_purchase(user: User, packs: Any) -> Dict[str, Any]:
    """Open a checkout for ``packs`` token packs and remember it as a pending transaction."""
    if not is_valid_pack_count(packs):
        raise ValidationError("Invalid pack count. Must be 1, 3, or 5.")
    tier = tier_for_packs(packs)
    checkout = create_checkout(tier.variant_id, {"user_id": user.id, "packs": packs, "tier": tier.name})

    try:
        db.session.add(
            Transaction(
                user_id=user.id,
                type=Transaction.TYPE_PURCHASE,
                credits_delta=0,
                description=f"Pending purchase: {tier.name}",
                status=Transaction.STATUS_PENDING,
                order_id=f"pending-{checkout['checkout_id']}",
                checkout_id=checkout["checkout_id"],
                variant_id=tier.variant_id,
                variant_name=tier.name,
                amount_usd=expected_total_price(tier),
                tokens_purchased=tier.tokens,
            )
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Failed to store pending transaction for checkout %s", checkout["checkout_id"], exc_info=True)

    return {"success": True, "checkoutUrl": checkout["url"]}
