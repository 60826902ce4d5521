"""Remix-aware lookup of already generated image variants.

Every community image belongs to a shallow family: the original plus any
restyled remixes, each remix pointing straight at the original through
``source_image_id``. Before paying for a new generation in some style we
look for a family member that already has it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_

from extensions import db
from models import CommunityImage

__all__ = [
    "CachedImage",
    "family_root_id",
    "find_cached_variant",
    "check_variants",
    "partition_cards_for_generation",
    "card_image_id",
]


@dataclass(frozen=True)
class CachedImage:
    image_id: str
    url: str


def family_root_id(image: CommunityImage) -> str:
    return image.source_image_id or image.id


def card_image_id(card: Dict[str, Any]) -> Optional[str]:
    metadata = card.get("imageMetadata") if isinstance(card, dict) else None
    if isinstance(metadata, dict):
        image_id = metadata.get("imageId")
        if image_id:
            return str(image_id)
    return None


def find_cached_variant(source_image_id: Optional[str], style: Optional[str]) -> Optional[CachedImage]:
    """Return an existing image in ``style`` from the family of ``source_image_id``."""
    if not source_image_id or not style:
        return None

    source = db.session.get(CommunityImage, source_image_id)
    if source is None:
        return None
    if source.style == style:
        return CachedImage(source.id, source.url)

    root = family_root_id(source)
    match = (
        CommunityImage.query.filter(
            or_(CommunityImage.id == root, CommunityImage.source_image_id == root),
            CommunityImage.style == style,
        )
        .order_by(CommunityImage.created_at.asc(), CommunityImage.id.asc())
        .first()
    )
    if match is None:
        return None
    return CachedImage(match.id, match.url)


def check_variants(cards: List[Dict[str, Any]], style: str) -> Dict[str, Any]:
    """Report, per card, whether a variant in ``style`` is already available."""
    variants: Dict[str, Dict[str, Any]] = {}
    existing = 0
    for card in cards:
        card_id = str(card.get("id") or card.get("cardId") or "")
        cached = find_cached_variant(card_image_id(card), style)
        if cached is not None:
            existing += 1
            variants[card_id] = {"exists": True, "url": cached.url, "imageId": cached.image_id}
        else:
            variants[card_id] = {"exists": False, "url": None}
    return {
        "variants": variants,
        "summary": {
            "total": len(cards),
            "existing": existing,
            "needsGeneration": len(cards) - existing,
        },
    }


def partition_cards_for_generation(
    cards: List[Dict[str, Any]], style: str
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Split cards into (needs generation, cached results)."""
    to_generate: List[Dict[str, Any]] = []
    cached_results: List[Dict[str, Any]] = []
    for card in cards:
        cached = find_cached_variant(card_image_id(card), style)
        if cached is None:
            to_generate.append(card)
            continue
        cached_results.append(
            {
                "cardId": card.get("id"),
                "success": True,
                "url": cached.url,
                "imageId": cached.image_id,
                "cached": True,
                "cost": 0,
            }
        )
    return to_generate, cached_results
