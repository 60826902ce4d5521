from __future__ import annotations

import uuid
from datetime import datetime

from extensions import db


class CommunityImage(db.Model):
    """Generated artwork shared in the community library.

    ``source_image_id`` always points at the family root (the original
    generation), so every style variant of one artwork is one hop away.
    Only originals carry an embedding.
    """

    __tablename__ = "community_images"
    __table_args__ = (
        db.Index("ix_community_images_family_style", "source_image_id", "style"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    url = db.Column(db.String(1024), nullable=False)
    storage_key = db.Column(db.String(512), nullable=True)
    style = db.Column(db.String(40), nullable=False, index=True)
    source_image_id = db.Column(
        db.String(36),
        db.ForeignKey("community_images.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    embedding = db.Column(db.JSON, nullable=True)
    card_title = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)
    cost_tokens = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    @property
    def family_root_id(self) -> str:
        return self.source_image_id or self.id

    @property
    def is_original(self) -> bool:
        return self.source_image_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "style": self.style,
            "source_image_id": self.source_image_id,
            "card_title": self.card_title,
            "description": self.description,
            "cost_tokens": int(self.cost_tokens or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
