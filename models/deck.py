from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from extensions import db


def _uuid() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if isinstance(value, datetime) else None


class UserDeck(db.Model):
    """A user's private working copy, synced from the client's offline store.

    The id is supplied by the client so the server row and the local copy
    share an identity across devices.
    """

    __tablename__ = "user_decks"
    __table_args__ = (
        db.Index("ix_user_decks_owner_last_edited", "user_id", "last_edited"),
    )

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    theme = db.Column(db.String(40), nullable=False, default="classic")
    image_style = db.Column(db.String(40), nullable=False, default="classic")
    layout = db.Column(db.String(20), nullable=False, default="poker")
    cards = db.Column(db.JSON, nullable=False, default=list)
    tags = db.Column(db.JSON, nullable=False, default=list)
    is_synced = db.Column(db.Boolean, nullable=False, default=True)
    published_deck_id = db.Column(
        db.String(36),
        db.ForeignKey("published_decks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    last_edited = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    owner = db.relationship("User", back_populates="user_decks")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "theme": self.theme,
            "image_style": self.image_style,
            "layout": self.layout,
            "cards": list(self.cards or []),
            "tags": list(self.tags or []),
            "is_synced": bool(self.is_synced),
            "published_deck_id": self.published_deck_id,
            "created_at": _iso(self.created_at),
            "last_edited": _iso(self.last_edited),
        }


class PublishedDeck(db.Model):
    """Public snapshot of a deck. Publishing copies cards; edits do not flow back."""

    __tablename__ = "published_decks"

    VISIBILITY_PUBLIC = "public"
    VISIBILITY_UNLISTED = "unlisted"
    VISIBILITIES = (VISIBILITY_PUBLIC, VISIBILITY_UNLISTED)

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    slug = db.Column(db.String(255), unique=True, nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    visibility = db.Column(
        db.String(20),
        nullable=False,
        default=VISIBILITY_PUBLIC,
        server_default=db.text(f"'{VISIBILITY_PUBLIC}'"),
        index=True,
    )
    theme = db.Column(db.String(40), nullable=False, default="classic")
    image_style = db.Column(db.String(40), nullable=False, default="classic")
    layout = db.Column(db.String(20), nullable=False, default="tarot")
    cards = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(db.Integer, nullable=False, default=1)
    is_curated = db.Column(db.Boolean, nullable=False, default=False)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    remix_of = db.Column(
        db.String(36),
        db.ForeignKey("published_decks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    creator_name = db.Column(db.String(120), nullable=True)
    view_count = db.Column(db.Integer, nullable=False, default=0)
    import_count = db.Column(db.Integer, nullable=False, default=0)
    like_count = db.Column(db.Integer, nullable=False, default=0, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = db.relationship("User", back_populates="published_decks")
    parent = db.relationship("PublishedDeck", remote_side=[id])
    likes = db.relationship("DeckLike", back_populates="deck", lazy="dynamic", cascade="all, delete-orphan")

    @property
    def card_count(self) -> int:
        return len(self.cards) if isinstance(self.cards, list) else 0

    @property
    def first_card_image(self) -> str | None:
        for card in self.cards or []:
            if isinstance(card, dict) and card.get("image"):
                return card["image"]
        return None

    def to_dict(self, *, include_cards: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags or []),
            "visibility": self.visibility,
            "theme": self.theme,
            "imageStyle": self.image_style,
            "layout": self.layout,
            "version": self.version,
            "cardCount": self.card_count,
            "is_curated": bool(self.is_curated),
            "is_featured": bool(self.is_featured),
            "remix_of": self.remix_of,
            "creator_name": self.creator_name,
            "view_count": int(self.view_count or 0),
            "import_count": int(self.import_count or 0),
            "like_count": int(self.like_count or 0),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_cards:
            data["cards"] = list(self.cards or [])
        return data


class DeckLike(db.Model):
    __tablename__ = "deck_likes"
    __table_args__ = (
        db.UniqueConstraint("user_id", "deck_id", name="uq_deck_likes_user_deck"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    deck_id = db.Column(
        db.String(36),
        db.ForeignKey("published_decks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tokens_spent = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    deck = db.relationship("PublishedDeck", back_populates="likes")
