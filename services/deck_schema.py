"""Canonical deck/card document shapes and the helpers that coerce loose JSON into them.

Decks travel as JSON documents::

    {"id": ..., "meta": {"title", "description", "theme", "layout",
                         "imageStyle", "tags", "createdAt", "lastEdited"},
     "cards": [Card, ...]}

Timestamps are integer milliseconds since the epoch.
"""

from __future__ import annotations

import copy
import json
import random
import string
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

__all__ = [
    "DEFAULT_THEME",
    "DEFAULT_LAYOUT",
    "DEFAULT_IMAGE_STYLE",
    "LAYOUTS",
    "THEMES",
    "now_ms",
    "generate_id",
    "generate_key",
    "canonical_json",
    "normalize_trait",
    "normalize_stat",
    "normalize_card",
    "normalize_deck",
    "new_card_template",
    "published_to_deck",
    "card_to_form_data",
    "form_data_to_card_update",
    "has_card_changes",
    "decks_equal_content",
]

DEFAULT_THEME = "classic"
DEFAULT_LAYOUT = "tarot"
DEFAULT_IMAGE_STYLE = "classic"

THEMES = ("classic", "cordial", "scriptorum", "cyberdeck")
LAYOUTS = ("tarot", "poker")

_KEY_ALPHABET = string.digits + string.ascii_lowercase


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id() -> str:
    """Full UUID for globally unique entities (decks)."""
    return str(uuid.uuid4())


def generate_key() -> str:
    """Short 6-char base36 key for entities scoped to a deck (cards)."""
    return "".join(random.choice(_KEY_ALPHABET) for _ in range(6))


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def _timestamp(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.isdigit():
            return int(raw)
        try:
            return int(datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            return fallback
    return fallback


def normalize_trait(raw: Any) -> Dict[str, Any]:
    raw = raw if isinstance(raw, dict) else {}
    return {
        "title": _text(raw.get("title")),
        "description": _text(raw.get("description")),
        "isPublic": bool(raw.get("isPublic", False)),
    }


def normalize_stat(raw: Any) -> Dict[str, Any]:
    raw = raw if isinstance(raw, dict) else {}
    value = raw.get("value", 0)
    if isinstance(value, str):
        try:
            value = float(value) if "." in value else int(value)
        except ValueError:
            value = 0
    elif not isinstance(value, (int, float)) or isinstance(value, bool):
        value = 0
    return {
        "title": _text(raw.get("title")),
        "value": value,
        "isPublic": bool(raw.get("isPublic", False)),
        "tracked": bool(raw.get("tracked", False)),
        "description": _text(raw.get("description")),
    }


def normalize_card(raw: Any) -> Dict[str, Any]:
    """Coerce a card-ish dict into the canonical card shape. ``imageBlob`` is dropped."""
    raw = raw if isinstance(raw, dict) else {}
    metadata = raw.get("imageMetadata")
    card = {
        "id": _text(raw.get("id")) or generate_key(),
        "title": _text(raw.get("title")),
        "subtitle": _text(raw.get("subtitle")),
        "description": _text(raw.get("description")),
        "image": raw.get("image") or None,
        "imageMetadata": dict(metadata) if isinstance(metadata, dict) else None,
        "traits": [normalize_trait(t) for t in raw.get("traits") or [] if isinstance(t, dict)],
        "stats": [normalize_stat(s) for s in raw.get("stats") or [] if isinstance(s, dict)],
    }
    return card


def normalize_deck(raw: Any, *, now: Optional[int] = None) -> Dict[str, Any]:
    """Coerce a deck-ish dict into the canonical deck shape with defaults filled."""
    raw = raw if isinstance(raw, dict) else {}
    meta = raw.get("meta") if isinstance(raw.get("meta"), dict) else {}
    stamp = now if now is not None else now_ms()
    created = _timestamp(meta.get("createdAt"), stamp)
    tags = meta.get("tags")
    return {
        "id": _text(raw.get("id")) or generate_id(),
        "meta": {
            "title": _text(meta.get("title")),
            "description": _text(meta.get("description")),
            "theme": _text(meta.get("theme")) or DEFAULT_THEME,
            "layout": _text(meta.get("layout")) or DEFAULT_LAYOUT,
            "imageStyle": _text(meta.get("imageStyle")) or DEFAULT_IMAGE_STYLE,
            "tags": [str(t) for t in tags] if isinstance(tags, list) else [],
            "createdAt": created,
            "lastEdited": _timestamp(meta.get("lastEdited"), created),
        },
        "cards": [normalize_card(c) for c in raw.get("cards") or [] if isinstance(c, dict)],
    }


def new_card_template() -> Dict[str, Any]:
    """Default content for a freshly added card."""
    return {
        "id": generate_key(),
        "title": "New Card",
        "subtitle": "Add your own content",
        "description": (
            "Click the Edit button to open the editor. Customize the title, description, "
            "traits, and stats to make this card your own!"
        ),
        "image": None,
        "imageMetadata": None,
        "traits": [
            {
                "title": "Flexible",
                "description": "Cards can represent characters, items, locations, or anything you imagine",
                "isPublic": True,
            },
            {
                "title": "Printable",
                "description": "Designed for double-sided A4 printing",
                "isPublic": True,
            },
        ],
        "stats": [
            {
                "title": "Value",
                "value": 1,
                "isPublic": True,
                "tracked": False,
                "description": "Stats track numeric properties",
            }
        ],
    }


def published_to_deck(record: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a flat published-deck record (``title``, ``created_at``...) into a deck document."""
    stamp = now_ms()
    created = _timestamp(record.get("created_at") or record.get("createdAt"), stamp)
    updated = _timestamp(record.get("updated_at") or record.get("updatedAt"), created)
    return {
        "id": _text(record.get("id")),
        "meta": {
            "title": _text(record.get("title")),
            "description": _text(record.get("description")),
            "theme": record.get("theme") or DEFAULT_THEME,
            "layout": record.get("layout") or DEFAULT_LAYOUT,
            "imageStyle": record.get("image_style") or record.get("imageStyle") or DEFAULT_IMAGE_STYLE,
            "tags": list(record.get("tags") or []),
            "createdAt": created,
            "lastEdited": updated,
        },
        "cards": [normalize_card(c) for c in record.get("cards") or []],
    }


# Canon Update helpers --------------------------------------------------------

def card_to_form_data(card: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "title": card.get("title", ""),
        "subtitle": card.get("subtitle", ""),
        "description": card.get("description", ""),
        "stats": copy.deepcopy(card.get("stats") or []),
        "traits": copy.deepcopy(card.get("traits") or []),
        "imageUrl": card.get("image") or None,
        "imageMetadata": copy.deepcopy(card.get("imageMetadata")) or None,
    }


def form_data_to_card_update(form: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "title": form.get("title", ""),
        "subtitle": form.get("subtitle", ""),
        "description": form.get("description", ""),
        "stats": form.get("stats") or [],
        "traits": form.get("traits") or [],
        "image": form.get("imageUrl") or None,
        "imageMetadata": form.get("imageMetadata") or None,
    }


def has_card_changes(form: Dict[str, Any], card: Optional[Dict[str, Any]]) -> bool:
    """True when the edit form differs from the persisted card."""
    if not card:
        return False
    for field in ("title", "subtitle", "description"):
        if form.get(field, "") != card.get(field, ""):
            return True
    if (form.get("imageUrl") or None) != (card.get("image") or None):
        return True
    for field in ("stats", "traits"):
        if canonical_json(form.get(field) or []) != canonical_json(card.get(field) or []):
            return True
    return canonical_json(form.get("imageMetadata") or None) != canonical_json(card.get("imageMetadata") or None)


def decks_equal_content(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    """Compare two decks ignoring timestamps."""

    def _strip(deck: Dict[str, Any]) -> Dict[str, Any]:
        meta = {k: v for k, v in (deck.get("meta") or {}).items() if k not in ("createdAt", "lastEdited")}
        return {"id": deck.get("id"), "meta": meta, "cards": deck.get("cards") or []}

    return canonical_json(_strip(a)) == canonical_json(_strip(b))
