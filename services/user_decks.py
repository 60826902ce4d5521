"""Cloud sync of the user's private working copies (``user_decks``)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from flask import current_app

from extensions import db
from models import User, UserDeck
from services.deck_schema import published_to_deck
from shared.exceptions import NotFoundError, PermissionDeniedError, ValidationError

__all__ = [
    "list_user_decks",
    "upsert_user_deck",
    "update_user_deck",
    "delete_user_deck",
    "deck_from_user_deck",
]

SYNC_DEFAULT_THEME = "classic"
SYNC_DEFAULT_IMAGE_STYLE = "classic"
SYNC_DEFAULT_LAYOUT = "poker"

UPDATABLE_FIELDS = (
    "title",
    "description",
    "theme",
    "image_style",
    "layout",
    "cards",
    "tags",
    "is_synced",
    "published_deck_id",
)


def _clean_description(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def list_user_decks(user: User, include_published: bool = True) -> List[UserDeck]:
    query = UserDeck.query.filter_by(user_id=user.id)
    if not include_published:
        query = query.filter(UserDeck.published_deck_id.is_(None))
    return query.order_by(UserDeck.last_edited.desc(), UserDeck.id).all()


def _owned(user: User, deck_id: str) -> UserDeck:
    row = db.session.get(UserDeck, deck_id)
    if row is None:
        raise NotFoundError("Deck not found")
    if row.user_id != user.id:
        raise PermissionDeniedError("You do not own this deck")
    return row


def upsert_user_deck(user: User, payload: Dict[str, Any]) -> tuple[UserDeck, bool]:
    """Insert or overwrite the synced copy with the client's id. Returns (row, created)."""
    deck_id = payload.get("id")
    if not isinstance(deck_id, str) or not deck_id.strip():
        raise ValidationError("Deck ID is required")
    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required")
    cards = payload.get("cards")
    if not isinstance(cards, list):
        raise ValidationError("Cards array is required")

    row = db.session.get(UserDeck, deck_id)
    created = row is None
    if row is not None and row.user_id != user.id:
        raise PermissionDeniedError("Cannot sync deck owned by another user")
    if row is None:
        row = UserDeck(id=deck_id, user_id=user.id)
        db.session.add(row)

    is_synced = payload.get("is_synced")
    row.title = title.strip()
    row.description = _clean_description(payload.get("description"))
    row.theme = payload.get("theme") or SYNC_DEFAULT_THEME
    row.image_style = payload.get("image_style") or SYNC_DEFAULT_IMAGE_STYLE
    row.layout = payload.get("layout") or SYNC_DEFAULT_LAYOUT
    row.cards = cards
    row.tags = payload.get("tags") if isinstance(payload.get("tags"), list) else []
    row.is_synced = True if is_synced is None else bool(is_synced)
    row.published_deck_id = payload.get("published_deck_id") or None
    row.last_edited = datetime.utcnow()
    db.session.commit()
    current_app.logger.info("Synced user deck id=%s user_id=%s created=%s", row.id, user.id, created)
    return row, created


def update_user_deck(user: User, deck_id: str, fields: Dict[str, Any]) -> UserDeck:
    row = _owned(user, deck_id)
    for key in UPDATABLE_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if key == "title" and (not isinstance(value, str) or not value.strip()):
            raise ValidationError("Title is required")
        if key in ("cards", "tags") and not isinstance(value, list):
            raise ValidationError(f"{key} must be an array")
        if key == "title":
            value = value.strip()
        elif key == "description":
            value = _clean_description(value)
        setattr(row, key, value)
    row.last_edited = datetime.utcnow()
    db.session.commit()
    return row


def delete_user_deck(user: User, deck_id: str) -> None:
    row = _owned(user, deck_id)
    db.session.delete(row)
    db.session.commit()
    current_app.logger.info("Deleted user deck id=%s user_id=%s", deck_id, user.id)


def deck_from_user_deck(row: UserDeck) -> Dict[str, Any]:
    """The synced copy as a deck document."""
    record = row.to_dict()
    record["updated_at"] = record.pop("last_edited")
    return published_to_deck(record)
