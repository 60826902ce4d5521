from __future__ import annotations

from datetime import datetime

from extensions import db


class Transaction(db.Model):
    """Ledger row for token movements (purchases, usage, likes, grants)."""

    __tablename__ = "transactions"

    TYPE_PURCHASE = "purchase"
    TYPE_USAGE = "usage"
    TYPE_LIKE = "like"
    TYPE_GRANT = "grant"
    TYPES = (TYPE_PURCHASE, TYPE_USAGE, TYPE_LIKE, TYPE_GRANT)

    STATUS_PENDING = "pending"
    STATUS_COMPLETED = "completed"
    STATUS_REFUNDED = "refunded"
    STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_REFUNDED)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False, default=TYPE_USAGE, index=True)
    credits_delta = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.String(255), nullable=True)
    status = db.Column(
        db.String(20),
        nullable=False,
        default=STATUS_COMPLETED,
        server_default=db.text(f"'{STATUS_COMPLETED}'"),
        index=True,
    )
    order_id = db.Column(db.String(120), unique=True, nullable=True)
    checkout_id = db.Column(db.String(120), nullable=True, index=True)
    variant_id = db.Column(db.String(40), nullable=True)
    variant_name = db.Column(db.String(120), nullable=True)
    amount_usd = db.Column(db.Numeric(10, 2), nullable=True)
    tokens_purchased = db.Column(db.Integer, nullable=True)
    webhook_payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "credits_delta": int(self.credits_delta or 0),
            "description": self.description,
            "status": self.status,
            "order_id": self.order_id,
            "variant_name": self.variant_name,
            "amount_usd": float(self.amount_usd) if self.amount_usd is not None else None,
            "tokens_purchased": self.tokens_purchased,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
