"""JSON export and import of whole decks.

Export files wrap the deck with an ``exportMeta`` header. Images embedded by
the client may be moved into a top-level ``blobs`` table and referenced from
cards as ``@blob:<id>``; on import those references are resolved back into
data URLs.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app

from services.deck_schema import generate_id, generate_key, now_ms
from services.slugs import create_deck_filename

__all__ = [
    "EXPORT_VERSION",
    "ImportResult",
    "export_deck",
    "export_filename",
    "validate_export_structure",
    "import_deck_from_json",
    "generate_unique_deck_id",
    "estimate_import_size",
]

EXPORT_VERSION = "1.0.0"
BLOB_PREFIX = "@blob:"


@dataclass
class ImportResult:
    success: bool
    deck: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "warnings": list(self.warnings)}
        if self.deck is not None:
            data["deck"] = self.deck
        if self.error:
            data["error"] = self.error
        return data


def _clean_card(card: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {
        "id": card.get("id"),
        "title": card.get("title", ""),
        "subtitle": card.get("subtitle", ""),
        "description": card.get("description", ""),
        "traits": [
            {"title": t.get("title", ""), "description": t.get("description", ""), "isPublic": bool(t.get("isPublic"))}
            for t in card.get("traits") or []
            if isinstance(t, dict)
        ],
        "stats": [
            {
                "title": s.get("title", ""),
                "value": s.get("value"),
                "isPublic": bool(s.get("isPublic")),
                "tracked": bool(s.get("tracked")),
                "description": s.get("description") or "",
            }
            for s in card.get("stats") or []
            if isinstance(s, dict)
        ],
    }
    if card.get("image"):
        cleaned["image"] = card["image"]
    return cleaned


def export_deck(deck: Dict[str, Any], source: Optional[str] = None) -> Dict[str, Any]:
    """Light export: image URLs only, client-side blobs are not carried."""
    meta = deck.get("meta") or {}
    return {
        "deck": {
            "id": deck.get("id"),
            "meta": {
                "title": meta.get("title", ""),
                "description": meta.get("description") or "",
                "theme": meta.get("theme"),
                "layout": meta.get("layout"),
                "imageStyle": meta.get("imageStyle"),
                "lastEdited": meta.get("lastEdited"),
                "createdAt": meta.get("createdAt"),
            },
            "cards": [_clean_card(c) for c in deck.get("cards") or [] if isinstance(c, dict)],
        },
        "exportMeta": {
            "exportedAt": now_ms(),
            "exportVersion": EXPORT_VERSION,
            "source": source or current_app.config.get("EXPORT_SOURCE", "cardsmith"),
        },
    }


def export_filename(deck: Dict[str, Any]) -> str:
    return create_deck_filename((deck.get("meta") or {}).get("title") or "", "json", include_date=True)


def _is_blob_ref(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(BLOB_PREFIX)


def validate_export_structure(parsed: Any) -> Tuple[bool, Optional[str], List[str]]:
    warnings: List[str] = []
    if not isinstance(parsed, dict):
        return False, "Invalid JSON: expected object", warnings
    deck = parsed.get("deck")
    if not deck or not isinstance(deck, dict):
        return False, "Missing deck data", warnings
    if "id" in deck and deck["id"] is not None and not isinstance(deck["id"], str):
        return False, "Deck ID must be a string if provided", warnings
    meta = deck.get("meta")
    if not isinstance(meta, dict):
        return False, "Deck missing metadata", warnings
    if not meta.get("title") or not isinstance(meta.get("title"), str):
        return False, "Deck missing title", warnings
    if not isinstance(deck.get("cards"), list):
        return False, "Deck missing cards array", warnings

    export_meta = parsed.get("exportMeta")
    expected_source = current_app.config.get("EXPORT_SOURCE", "cardsmith")
    if isinstance(export_meta, dict) and export_meta.get("source"):
        if expected_source not in str(export_meta["source"]):
            warnings.append(f"Deck not exported from {expected_source} - compatibility not guaranteed")

    has_refs = any(isinstance(c, dict) and _is_blob_ref(c.get("image")) for c in deck["cards"])
    if has_refs and not parsed.get("blobs"):
        return False, "Deck contains blob references but no blob data provided", warnings
    return True, None, warnings


def _resolve_card_blob(card: Dict[str, Any], blobs: Dict[str, Any], warnings: List[str]) -> Dict[str, Any]:
    image = card.get("image")
    if not _is_blob_ref(image):
        return card
    blob_id = image[len(BLOB_PREFIX):]
    blob = blobs.get(blob_id)
    if not isinstance(blob, dict) or not isinstance(blob.get("data"), str):
        warnings.append(f"Blob reference {blob_id} not found, keeping reference")
        return card
    resolved = dict(card, image=blob["data"])
    metadata = blob.get("metadata")
    if isinstance(metadata, dict):
        resolved["imageMetadata"] = {
            "filename": metadata.get("filename") or "imported-image",
            "size": metadata.get("size"),
            "type": metadata.get("type") or _data_url_mime(blob["data"]),
            "lastModified": metadata.get("lastModified") or now_ms(),
        }
    return resolved


def _data_url_mime(data_url: str) -> str:
    header = data_url.split(",", 1)[0]
    if header.startswith("data:"):
        return header[5:].split(";", 1)[0] or "application/octet-stream"
    return "application/octet-stream"


def import_deck_from_json(text: str) -> ImportResult:
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        return ImportResult(False, error=f"Invalid JSON format: {exc}")

    ok, error, warnings = validate_export_structure(parsed)
    if not ok:
        return ImportResult(False, error=error, warnings=warnings)

    deck = parsed["deck"]
    blobs = parsed.get("blobs") if isinstance(parsed.get("blobs"), dict) else {}
    cards = []
    for card in deck["cards"]:
        if not isinstance(card, dict):
            continue
        card = _resolve_card_blob(card, blobs, warnings)
        cards.append(dict(card, id=card.get("id") or generate_key()))

    resolved = dict(deck, id=deck.get("id") or generate_id(), cards=cards)
    return ImportResult(True, deck=resolved, warnings=warnings)


def generate_unique_deck_id(original_id: str, existing_ids: Iterable[str]) -> str:
    """``original_id`` or the first free ``<id>-<n>``."""
    taken = set(existing_ids)
    if original_id not in taken:
        return original_id
    counter = 1
    while f"{original_id}-{counter}" in taken:
        counter += 1
    return f"{original_id}-{counter}"


def estimate_import_size(export: Dict[str, Any]) -> Dict[str, Any]:
    deck = export.get("deck") or {}
    blobs = export.get("blobs") if isinstance(export.get("blobs"), dict) else {}
    size = len(json.dumps(deck, separators=(",", ":")))
    size += sum(len(b.get("data") or "") for b in blobs.values() if isinstance(b, dict))
    return {
        "cardCount": len(deck.get("cards") or []),
        "blobCount": len(blobs),
        "estimatedSize": size,
        "hasBlobs": bool(blobs),
    }
