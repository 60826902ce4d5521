"""Compact deck encoding for share links.

Deck-level keys stay readable; card, trait and stat keys are shortened and
boolean flags appear only when true, which keeps typical links around half
the size of the plain JSON. Links look like::

    <base>/<title-slug>#data=<base64 json>
    <base>?data=<url-encoded base64 json>
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, quote, unquote, urlsplit

from services.deck_schema import DEFAULT_LAYOUT, DEFAULT_THEME, now_ms
from services.slugs import create_slug

logger = logging.getLogger(__name__)

SHARE_URL_PARAM = "data"
SHARE_URL_HASH_PREFIX = "data="
DEFAULT_BASE_URL = "https://example.com"
MAX_SAFE_URL_LENGTH = 2000


# ---------------------------------------------------------------------------
# Deck <-> shareable
# ---------------------------------------------------------------------------

def _trait_to_shareable(trait: Dict[str, Any]) -> Dict[str, Any]:
    out = {"t": trait.get("title", ""), "d": trait.get("description", "")}
    if trait.get("isPublic"):
        out["p"] = True
    return out


def _stat_to_shareable(stat: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {"t": stat.get("title", ""), "v": stat.get("value", 0)}
    if stat.get("isPublic"):
        out["p"] = True
    if stat.get("tracked"):
        out["tr"] = True
    if stat.get("description"):
        out["d"] = stat["description"]
    return out


def _card_to_shareable(card: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "i": card.get("id"),
        "t": card.get("title", ""),
        "s": card.get("subtitle", ""),
        "d": card.get("description", ""),
    }
    if card.get("image"):
        out["img"] = card["image"]
    if card.get("traits"):
        out["tr"] = [_trait_to_shareable(t) for t in card["traits"]]
    if card.get("stats"):
        out["st"] = [_stat_to_shareable(s) for s in card["stats"]]
    return out


def to_shareable(deck: Dict[str, Any]) -> Dict[str, Any]:
    meta = deck.get("meta") or {}
    shareable: Dict[str, Any] = {"title": meta.get("title", ""), "id": deck.get("id")}
    if meta.get("description"):
        shareable["description"] = meta["description"]
    if meta.get("theme") and meta["theme"] != DEFAULT_THEME:
        shareable["theme"] = meta["theme"]
    if meta.get("layout") and meta["layout"] != DEFAULT_LAYOUT:
        shareable["layout"] = meta["layout"]
    shareable["cards"] = [_card_to_shareable(c) for c in deck.get("cards") or []]
    return shareable


def _dict_items(value: Any) -> List[Dict[str, Any]]:
    """Dict entries of a list; anything else in a shared link is dropped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _card_from_shareable(raw: Dict[str, Any], now: int) -> Dict[str, Any]:
    image = raw.get("img") or None
    return {
        "id": raw.get("i"),
        "title": raw.get("t", ""),
        "subtitle": raw.get("s", ""),
        "description": raw.get("d", ""),
        "image": image,
        "imageMetadata": {"source": "url", "addedAt": now} if image else None,
        "traits": [
            {"title": t.get("t", ""), "description": t.get("d", ""), "isPublic": t.get("p") is True}
            for t in _dict_items(raw.get("tr"))
        ],
        "stats": [
            {
                "title": s.get("t", ""),
                "value": s.get("v", 0),
                "isPublic": s.get("p") is True,
                "tracked": s.get("tr") is True,
                "description": s.get("d") or "",
            }
            for s in _dict_items(raw.get("st"))
        ],
    }


def from_shareable(data: Dict[str, Any], now: Optional[int] = None) -> Dict[str, Any]:
    """Rebuild a full deck. Ids are preserved so later merges can match cards."""
    stamp = now if now is not None else now_ms()
    return {
        "id": data.get("id"),
        "meta": {
            "title": data.get("title", ""),
            "description": data.get("description") or "",
            "theme": data.get("theme") or DEFAULT_THEME,
            "layout": data.get("layout") or DEFAULT_LAYOUT,
            "createdAt": stamp,
            "lastEdited": stamp,
        },
        "cards": [_card_from_shareable(c, stamp) for c in data.get("cards") or [] if isinstance(c, dict)],
    }


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_share_data(deck: Dict[str, Any]) -> str:
    payload = json.dumps(to_shareable(deck), ensure_ascii=False, separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_share_data(text: str) -> Optional[Dict[str, Any]]:
    """Decode base64 share data; None when malformed or not deck-shaped."""
    if not text:
        return None
    try:
        raw = base64.b64decode(text.strip(), validate=False)
        parsed = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        logger.warning("Failed to decode share data: %s", exc)
        return None
    if isinstance(parsed, dict) and parsed.get("id") and parsed.get("title") and isinstance(parsed.get("cards"), list):
        return parsed
    return None


def generate_share_url(deck: Dict[str, Any], base_url: Optional[str] = None) -> str:
    base = (base_url or DEFAULT_BASE_URL).rstrip("/")
    slug = create_slug((deck.get("meta") or {}).get("title", ""))
    return f"{base}/{slug}#{SHARE_URL_HASH_PREFIX}{encode_share_data(deck)}"


def generate_share_url_query(deck: Dict[str, Any], base_url: Optional[str] = None) -> str:
    base = (base_url or DEFAULT_BASE_URL).rstrip("/")
    return f"{base}?{SHARE_URL_PARAM}={quote(encode_share_data(deck), safe='')}"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _split(url: str):
    try:
        parts = urlsplit(url)
    except (TypeError, ValueError):
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts


def _hash_payload(parts) -> Optional[str]:
    fragment = parts.fragment or ""
    if fragment.startswith(SHARE_URL_HASH_PREFIX):
        return fragment[len(SHARE_URL_HASH_PREFIX):]
    return None


def _query_payload(parts) -> Optional[str]:
    values = parse_qs(parts.query, keep_blank_values=True).get(SHARE_URL_PARAM)
    return values[0] if values else None


def extract_share_data_from_url(url: str) -> Optional[Dict[str, Any]]:
    parts = _split(url)
    if parts is None:
        return None
    payload = _hash_payload(parts)
    if payload is not None:
        return decode_share_data(unquote(payload))
    payload = _query_payload(parts)
    if payload:
        return decode_share_data(payload)
    return None


def import_from_url(url: str, now: Optional[int] = None) -> Optional[Dict[str, Any]]:
    data = extract_share_data_from_url(url)
    if data is None:
        return None
    return from_shareable(data, now=now)


def is_share_url(url: str) -> bool:
    parts = _split(url)
    if parts is None:
        return False
    payload = _hash_payload(parts)
    if payload is not None:
        return len(payload) > 0
    return bool(_query_payload(parts))


def get_share_url_type(url: str) -> Optional[str]:
    parts = _split(url)
    if parts is None:
        return None
    if _hash_payload(parts) is not None:
        return "hash"
    if SHARE_URL_PARAM in parse_qs(parts.query, keep_blank_values=True):
        return "query"
    return None


def extract_slug_from_url(url: str) -> Optional[str]:
    parts = _split(url)
    if parts is None:
        return None
    segments = [p for p in parts.path.split("/") if p]
    return unquote(segments[-1]) if segments else None


# ---------------------------------------------------------------------------
# Size estimates
# ---------------------------------------------------------------------------

def estimate_share_url_length(deck: Dict[str, Any], base_url: Optional[str] = None) -> int:
    return len(generate_share_url(deck, base_url or DEFAULT_BASE_URL))


def is_share_url_too_long(deck: Dict[str, Any], max_length: int = MAX_SAFE_URL_LENGTH) -> bool:
    return estimate_share_url_length(deck) > max_length


def estimate_shareable_size(deck: Dict[str, Any]) -> Dict[str, int]:
    original = len(json.dumps(deck, ensure_ascii=False, separators=(",", ":")))
    shareable = len(json.dumps(to_shareable(deck), ensure_ascii=False, separators=(",", ":")))
    savings = round((1 - shareable / original) * 100) if original else 0
    return {"original": original, "shareable": shareable, "savings": savings}
