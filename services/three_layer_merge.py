"""Resolve which version of a deck to show when several sources are present.

Layers, lowest to highest priority:

1. curated  - a published deck record from the gallery
2. hash     - a deck decoded from a share URL
3. local    - the user's own copy (client store or synced ``user_decks`` row)

The local copy always wins, but differences against the merged lower
layers are surfaced as a :class:`DeckConflict` instead of being dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, quote, urlsplit

from services.deck_merging import DeckConflict, detect_deck_conflict
from services.deck_schema import published_to_deck
from shared.exceptions import MergeInputError

__all__ = [
    "ThreeLayerMergeResult",
    "perform_three_layer_merge",
    "build_curated_share_url",
    "get_curated_id",
]


@dataclass
class ThreeLayerMergeResult:
    deck: Dict[str, Any]
    has_conflict: bool = False
    conflict: Optional[DeckConflict] = None
    layers: Dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deck": self.deck,
            "hasConflict": self.has_conflict,
            "conflict": self.conflict.to_dict() if self.conflict is not None and self.has_conflict else None,
            "layers": dict(self.layers),
        }


def perform_three_layer_merge(
    curated: Optional[Dict[str, Any]],
    hash_deck: Optional[Dict[str, Any]],
    local: Optional[Dict[str, Any]],
) -> ThreeLayerMergeResult:
    layers = {"curated": bool(curated), "hash": bool(hash_deck), "local": bool(local)}

    if curated:
        base = published_to_deck(curated)
    elif hash_deck:
        base = hash_deck
    else:
        raise MergeInputError("No deck data provided for merge")

    if curated and hash_deck:
        # Shallow override: hash fields replace curated ones wholesale.
        base = {**base, **hash_deck, "id": hash_deck.get("id") or base.get("id")}

    if local:
        conflict = detect_deck_conflict(local, base)
        if conflict.is_empty:
            return ThreeLayerMergeResult(deck=local, has_conflict=False, conflict=None, layers=layers)
        return ThreeLayerMergeResult(deck=local, has_conflict=True, conflict=conflict, layers=layers)

    return ThreeLayerMergeResult(deck=base, has_conflict=False, conflict=None, layers=layers)


def build_curated_share_url(curated_id: str, base_url: str, hash_data: Optional[str] = None) -> str:
    """``<base>/deck-viewer?curated=<id>`` with the share payload as the fragment."""
    url = f"{base_url.rstrip('/')}/deck-viewer?curated={quote(str(curated_id), safe='')}"
    if hash_data:
        url = f"{url}#{hash_data.lstrip('#')}"
    return url


def get_curated_id(url: str) -> Optional[str]:
    try:
        query = parse_qs(urlsplit(url).query)
    except ValueError:
        return None
    values = query.get("curated")
    return values[0] if values else None
