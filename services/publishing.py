# services/publishing.py
"""Publishing decks to the public gallery.

A published deck is a snapshot: cards are copied at publish time and later
edits to the user's working copy only reach the gallery when the deck is
published again (which bumps ``version``).
"""
from __future__ import annotations

import json
import time
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError

from extensions import cache, db
from models import PublishedDeck, User, UserDeck
from services.deck_schema import DEFAULT_IMAGE_STYLE, DEFAULT_LAYOUT
from services.slugs import publish_slug, user_slug_key
from shared.exceptions import NotFoundError, PermissionDeniedError, ValidationError

__all__ = [
    "GALLERY_SORTS",
    "publish_deck",
    "unpublish_deck",
    "get_published_deck",
    "list_gallery",
    "list_featured",
    "increment_import_count",
]

GALLERY_SORTS = {
    "recent": PublishedDeck.created_at.desc(),
    "popular": PublishedDeck.view_count.desc(),
    "imported": PublishedDeck.import_count.desc(),
}
GALLERY_DEFAULT_LIMIT = 20
GALLERY_MAX_LIMIT = 100
FEATURED_MAX_LIMIT = 20
GALLERY_CACHE_SECONDS = 30


def _clean_tags(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    return [str(t).strip() for t in raw if str(t).strip()]


def _validated_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required")
    cards = payload.get("cards")
    if not isinstance(cards, list) or not cards:
        raise ValidationError("Deck must have at least one card")
    theme = payload.get("theme")
    if not isinstance(theme, str) or not theme.strip():
        raise ValidationError("Theme is required")
    visibility = payload.get("visibility") or PublishedDeck.VISIBILITY_PUBLIC
    if visibility not in PublishedDeck.VISIBILITIES:
        raise ValidationError('Visibility must be "public" or "unlisted"')
    description = payload.get("description")
    return {
        "title": title.strip(),
        "description": description.strip() or None if isinstance(description, str) else None,
        "tags": _clean_tags(payload.get("tags")),
        "visibility": visibility,
        "cards": cards,
        "theme": theme.strip(),
        "image_style": payload.get("imageStyle") or payload.get("image_style") or DEFAULT_IMAGE_STYLE,
        "layout": payload.get("layout") or DEFAULT_LAYOUT,
    }


def _fill_from_user_deck(user: User, payload: Dict[str, Any]) -> Optional[UserDeck]:
    """Use the synced working copy as the source when ``user_deck_id`` is given."""
    user_deck_id = payload.get("user_deck_id") or payload.get("userDeckId")
    if not user_deck_id:
        return None
    row = db.session.get(UserDeck, str(user_deck_id))
    if row is None:
        raise NotFoundError("Synced deck not found")
    if row.user_id != user.id:
        raise PermissionDeniedError("You do not own this deck")
    payload.setdefault("title", row.title)
    payload.setdefault("description", row.description)
    payload.setdefault("cards", list(row.cards or []))
    payload.setdefault("theme", row.theme)
    payload.setdefault("imageStyle", row.image_style)
    payload.setdefault("layout", row.layout)
    payload.setdefault("tags", list(row.tags or []))
    return row


def _unique_slug(title: str, user: User) -> str:
    slug = publish_slug(title, user_slug_key(user.id))
    if PublishedDeck.query.filter_by(slug=slug).first() is not None:
        slug = f"{slug}-{int(time.time() * 1000)}"
    return slug


def publish_deck(user: User, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Publish a new deck, or republish an owned one when ``deckId`` is given."""
    payload = dict(payload or {})
    user_deck = _fill_from_user_deck(user, payload)
    fields = _validated_payload(payload)

    deck_id = payload.get("deckId")
    if deck_id:
        deck = db.session.get(PublishedDeck, str(deck_id))
        if deck is None:
            raise NotFoundError("Published deck not found")
        if deck.user_id != user.id:
            raise PermissionDeniedError("You do not own this deck")
        for key, value in fields.items():
            setattr(deck, key, value)
        deck.version = int(deck.version or 1) + 1
        message = "Deck updated successfully"
    else:
        remix_of = payload.get("remix_of") or payload.get("remixOf")
        if remix_of and db.session.get(PublishedDeck, str(remix_of)) is None:
            raise ValidationError("Remixed deck does not exist")
        deck = PublishedDeck(
            user_id=user.id,
            slug=_unique_slug(fields["title"], user),
            creator_name=user.public_name,
            remix_of=str(remix_of) if remix_of else None,
            is_curated=False,
            is_featured=False,
            **fields,
        )
        db.session.add(deck)
        message = "Deck published successfully"

    db.session.flush()
    if user_deck is not None:
        user_deck.published_deck_id = deck.id
    db.session.commit()
    cache.delete_memoized(_gallery_page_cached)
    current_app.logger.info("Published deck id=%s slug=%s version=%s user_id=%s", deck.id, deck.slug, deck.version, user.id)
    return {"success": True, "deck": deck.to_dict(include_cards=False), "message": message}


def unpublish_deck(user: User, deck_id: str) -> None:
    deck = db.session.get(PublishedDeck, deck_id)
    if deck is None:
        raise NotFoundError("Published deck not found")
    if deck.user_id != user.id:
        raise PermissionDeniedError("You do not own this deck")
    UserDeck.query.filter_by(published_deck_id=deck_id).update({"published_deck_id": None})
    PublishedDeck.query.filter_by(remix_of=deck_id).update({"remix_of": None})
    db.session.delete(deck)
    db.session.commit()
    cache.delete_memoized(_gallery_page_cached)
    current_app.logger.info("Unpublished deck id=%s user_id=%s", deck_id, user.id)


def get_published_deck(ref: str) -> PublishedDeck:
    """Look up by id or slug and count the view."""
    deck = db.session.get(PublishedDeck, ref) or PublishedDeck.query.filter_by(slug=ref).first()
    if deck is None:
        raise NotFoundError("Deck not found")
    db.session.execute(
        update(PublishedDeck)
        .where(PublishedDeck.id == deck.id)
        .values(view_count=PublishedDeck.view_count + 1)
    )
    db.session.commit()
    db.session.refresh(deck)
    return deck


def _gallery_row(deck: PublishedDeck) -> Dict[str, Any]:
    return {
        "id": deck.id,
        "slug": deck.slug,
        "title": deck.title,
        "description": deck.description,
        "theme": deck.theme,
        "tags": list(deck.tags or []),
        "cardCount": deck.card_count,
        "is_featured": bool(deck.is_featured),
        "is_curated": bool(deck.is_curated),
        "view_count": int(deck.view_count or 0),
        "import_count": int(deck.import_count or 0),
        "like_count": int(deck.like_count or 0),
        "created_at": deck.created_at.isoformat() if deck.created_at else None,
        "updated_at": deck.updated_at.isoformat() if deck.updated_at else None,
    }


def _filters_to_key(filters: Dict[str, Any]) -> str:
    """Stable cache key; tag order does not matter."""
    f = dict(filters)
    f["tags"] = sorted(f.get("tags") or [])
    return json.dumps(f, sort_keys=True, separators=(",", ":"))


@cache.memoize(timeout=GALLERY_CACHE_SECONDS)
def _gallery_page_cached(filters_key: str) -> Dict[str, Any]:
    filters = json.loads(filters_key)
    query = PublishedDeck.query.filter(PublishedDeck.visibility == PublishedDeck.VISIBILITY_PUBLIC)

    search = filters.get("search")
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(
            or_(
                func.lower(PublishedDeck.title).like(pattern),
                func.lower(func.coalesce(PublishedDeck.description, "")).like(pattern),
            )
        )
    if filters.get("theme"):
        query = query.filter(PublishedDeck.theme == filters["theme"])

    query = query.order_by(GALLERY_SORTS.get(filters.get("sort"), GALLERY_SORTS["recent"]), PublishedDeck.id)
    limit, offset = filters["limit"], filters["offset"]
    tags = set(filters.get("tags") or [])

    if tags:
        # Tags are a JSON list; any-overlap is checked in Python
        matching = [d for d in query.all() if tags.intersection(d.tags or [])]
        total = len(matching)
        page = matching[offset:offset + limit]
    else:
        total = query.count()
        page = query.offset(offset).limit(limit).all()

    return {
        "decks": [_gallery_row(d) for d in page],
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": total > offset + limit},
    }


def list_gallery(
    search: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    theme: Optional[str] = None,
    sort: str = "recent",
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> Dict[str, Any]:
    limit = GALLERY_DEFAULT_LIMIT if limit is None else max(1, min(int(limit), GALLERY_MAX_LIMIT))
    offset = max(0, int(offset or 0))
    filters = {
        "search": (search or "").strip() or None,
        "tags": [t.strip() for t in (tags or []) if t and t.strip()],
        "theme": theme or None,
        "sort": sort if sort in GALLERY_SORTS else "recent",
        "limit": limit,
        "offset": offset,
    }
    page = _gallery_page_cached(_filters_to_key(filters))
    return {"success": True, **page}


def list_featured(limit: Optional[int] = 1, exclude: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
    """Most liked public decks, newest first among equals, with full cards for the hero view."""
    limit = max(1, min(int(limit or 1), FEATURED_MAX_LIMIT))
    query = PublishedDeck.query.filter(PublishedDeck.visibility == PublishedDeck.VISIBILITY_PUBLIC)
    excluded = [e for e in (exclude or []) if e]
    if excluded:
        query = query.filter(PublishedDeck.id.notin_(excluded))
    decks = query.order_by(PublishedDeck.like_count.desc(), PublishedDeck.created_at.desc()).limit(limit).all()

    featured = []
    for deck in decks:
        data = deck.to_dict(include_cards=True)
        data["firstCardImage"] = deck.first_card_image
        featured.append(data)
    return featured


def increment_import_count(deck_id: str) -> None:
    """Count an import. Never fails the caller."""
    try:
        db.session.execute(
            update(PublishedDeck)
            .where(PublishedDeck.id == deck_id)
            .values(import_count=PublishedDeck.import_count + 1)
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Failed to increment import count for deck %s", deck_id, exc_info=True)
