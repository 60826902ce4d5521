"""Diff and merge two versions of the same deck.

Used by URL/JSON imports and by the three-layer resolver whenever an
incoming deck shares an id with one the user already has. Nothing here
touches the database; all inputs and outputs are deck documents.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from services.deck_schema import canonical_json, now_ms

__all__ = [
    "META_KEEP_EXISTING",
    "META_USE_IMPORTED",
    "META_CUSTOM",
    "META_UNRESOLVED",
    "CARD_ADD",
    "CARD_SKIP",
    "CARD_KEEP_EXISTING",
    "CARD_USE_IMPORTED",
    "CARD_REMOVE",
    "CARD_UNRESOLVED",
    "FIELD_KEEP_EXISTING",
    "FIELD_USE_IMPORTED",
    "CONFLICT_ADDED",
    "CONFLICT_MODIFIED",
    "CONFLICT_REMOVED",
    "ACTION_ADD",
    "ACTION_UPDATE",
    "ACTION_REMOVE",
    "MetaConflict",
    "FieldConflict",
    "CardConflict",
    "DeckConflict",
    "CardUpdate",
    "MergeResolution",
    "detect_deck_conflict",
    "apply_smart_defaults",
    "create_merge_resolution",
    "apply_merge_resolution",
    "has_unresolved_conflicts",
    "conflict_summary",
    "apply_resolution_choices",
]

# Metadata resolutions
META_KEEP_EXISTING = "keep_existing"
META_USE_IMPORTED = "use_imported"
META_CUSTOM = "custom"
META_UNRESOLVED = "unresolved"
META_RESOLUTIONS = (META_KEEP_EXISTING, META_USE_IMPORTED, META_CUSTOM, META_UNRESOLVED)

# Card resolutions
CARD_ADD = "add"
CARD_SKIP = "skip"
CARD_KEEP_EXISTING = "keep_existing"
CARD_USE_IMPORTED = "use_imported"
CARD_REMOVE = "remove"
CARD_UNRESOLVED = "unresolved"
CARD_RESOLUTIONS = (CARD_ADD, CARD_SKIP, CARD_KEEP_EXISTING, CARD_USE_IMPORTED, CARD_REMOVE, CARD_UNRESOLVED)

# Field resolutions
FIELD_KEEP_EXISTING = "keep_existing"
FIELD_USE_IMPORTED = "use_imported"
FIELD_RESOLUTIONS = (FIELD_KEEP_EXISTING, FIELD_USE_IMPORTED)

CONFLICT_DECK_EXISTS = "deck_exists"
CONFLICT_ADDED = "added"
CONFLICT_MODIFIED = "modified"
CONFLICT_REMOVED = "removed"

ACTION_ADD = "add"
ACTION_UPDATE = "update"
ACTION_REMOVE = "remove"

META_FIELDS = ("title", "description", "theme", "layout")
CARD_SCALAR_FIELDS = ("title", "subtitle", "description", "image")
CARD_LIST_FIELDS = ("traits", "stats")


@dataclass
class MetaConflict:
    field: str
    existing_value: Any
    imported_value: Any
    resolution: Optional[str] = META_UNRESOLVED
    custom_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "existingValue": self.existing_value,
            "importedValue": self.imported_value,
            "resolution": self.resolution,
            "customValue": self.custom_value,
        }


@dataclass
class FieldConflict:
    field: str
    existing: Any
    imported: Any
    resolution: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "existing": self.existing,
            "imported": self.imported,
            "resolution": self.resolution,
        }


@dataclass
class CardConflict:
    type: str
    card_id: str
    existing_card: Optional[Dict[str, Any]] = None
    imported_card: Optional[Dict[str, Any]] = None
    field_conflicts: List[FieldConflict] = field(default_factory=list)
    resolution: Optional[str] = CARD_UNRESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "cardId": self.card_id,
            "existingCard": self.existing_card,
            "importedCard": self.imported_card,
            "fieldConflicts": [fc.to_dict() for fc in self.field_conflicts],
            "resolution": self.resolution,
        }


@dataclass
class DeckConflict:
    existing_deck: Dict[str, Any]
    imported_deck: Dict[str, Any]
    meta_conflicts: List[MetaConflict] = field(default_factory=list)
    card_conflicts: List[CardConflict] = field(default_factory=list)
    type: str = CONFLICT_DECK_EXISTS

    @property
    def is_empty(self) -> bool:
        return not self.meta_conflicts and not self.card_conflicts

    def to_dict(self, *, include_decks: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "metaConflicts": [mc.to_dict() for mc in self.meta_conflicts],
            "cardConflicts": [cc.to_dict() for cc in self.card_conflicts],
            "summary": conflict_summary(self),
        }
        if include_decks:
            data["existingDeck"] = self.existing_deck
            data["importedDeck"] = self.imported_deck
        return data


@dataclass
class CardUpdate:
    action: str
    card_id: str
    card_data: Optional[Dict[str, Any]] = None


@dataclass
class MergeResolution:
    existing_deck: Dict[str, Any]
    deck_meta: Dict[str, Any]
    card_updates: List[CardUpdate] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def _meta(deck: Dict[str, Any]) -> Dict[str, Any]:
    meta = deck.get("meta")
    return meta if isinstance(meta, dict) else {}


def _cards(deck: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [c for c in deck.get("cards") or [] if isinstance(c, dict)]


def _detect_meta_conflicts(existing: Dict[str, Any], imported: Dict[str, Any]) -> List[MetaConflict]:
    conflicts = []
    for name in META_FIELDS:
        if existing.get(name) != imported.get(name):
            conflicts.append(MetaConflict(name, existing.get(name), imported.get(name)))
    return conflicts


def _detect_field_conflicts(existing: Dict[str, Any], imported: Dict[str, Any]) -> List[FieldConflict]:
    conflicts = []
    for name in CARD_SCALAR_FIELDS:
        if existing.get(name) != imported.get(name):
            conflicts.append(FieldConflict(name, existing.get(name), imported.get(name)))
    for name in CARD_LIST_FIELDS:
        if canonical_json(existing.get(name) or []) != canonical_json(imported.get(name) or []):
            conflicts.append(FieldConflict(name, existing.get(name), imported.get(name)))
    return conflicts


def _detect_card_conflicts(existing_cards: List[Dict[str, Any]], imported_cards: List[Dict[str, Any]]) -> List[CardConflict]:
    existing_by_id = {c.get("id"): c for c in existing_cards}
    imported_by_id = {c.get("id"): c for c in imported_cards}
    conflicts: List[CardConflict] = []

    for card_id, existing in existing_by_id.items():
        imported = imported_by_id.get(card_id)
        if imported is None:
            conflicts.append(CardConflict(CONFLICT_REMOVED, card_id, existing_card=existing))
            continue
        field_conflicts = _detect_field_conflicts(existing, imported)
        if field_conflicts:
            conflicts.append(
                CardConflict(
                    CONFLICT_MODIFIED,
                    card_id,
                    existing_card=existing,
                    imported_card=imported,
                    field_conflicts=field_conflicts,
                )
            )

    for card_id, imported in imported_by_id.items():
        if card_id not in existing_by_id:
            conflicts.append(CardConflict(CONFLICT_ADDED, card_id, imported_card=imported))

    return conflicts


def detect_deck_conflict(existing: Dict[str, Any], imported: Dict[str, Any]) -> DeckConflict:
    """Compare ``existing`` against ``imported`` and collect every difference."""
    return DeckConflict(
        existing_deck=existing,
        imported_deck=imported,
        meta_conflicts=_detect_meta_conflicts(_meta(existing), _meta(imported)),
        card_conflicts=_detect_card_conflicts(_cards(existing), _cards(imported)),
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _imported_is_newer(conflict: DeckConflict) -> bool:
    imported = _meta(conflict.imported_deck).get("lastEdited") or 0
    existing = _meta(conflict.existing_deck).get("lastEdited") or 0
    try:
        return imported > existing
    except TypeError:
        return False


def apply_smart_defaults(conflict: DeckConflict) -> DeckConflict:
    """Return a copy with defaults that favour the newer side, add new cards and keep removed ones."""
    newer = _imported_is_newer(conflict)
    meta_choice = META_USE_IMPORTED if newer else META_KEEP_EXISTING

    meta_conflicts = [replace(mc, resolution=meta_choice) for mc in conflict.meta_conflicts]
    card_conflicts = []
    for cc in conflict.card_conflicts:
        if cc.type == CONFLICT_ADDED:
            card_conflicts.append(replace(cc, resolution=CARD_ADD))
        elif cc.type == CONFLICT_REMOVED:
            card_conflicts.append(replace(cc, resolution=CARD_KEEP_EXISTING))
        else:
            card_choice = CARD_USE_IMPORTED if newer else CARD_KEEP_EXISTING
            field_choice = FIELD_USE_IMPORTED if newer else FIELD_KEEP_EXISTING
            card_conflicts.append(
                replace(
                    cc,
                    resolution=card_choice,
                    field_conflicts=[replace(fc, resolution=field_choice) for fc in cc.field_conflicts],
                )
            )
    return replace(conflict, meta_conflicts=meta_conflicts, card_conflicts=card_conflicts)


def create_merge_resolution(conflict: DeckConflict, now: Optional[int] = None) -> MergeResolution:
    """Turn a resolved conflict into concrete metadata changes and card operations."""
    deck_meta: Dict[str, Any] = {}
    for mc in conflict.meta_conflicts:
        if mc.resolution == META_USE_IMPORTED:
            deck_meta[mc.field] = mc.imported_value
        elif mc.resolution == META_CUSTOM:
            deck_meta[mc.field] = mc.custom_value
    deck_meta["lastEdited"] = now if now is not None else now_ms()

    updates: List[CardUpdate] = []
    for cc in conflict.card_conflicts:
        if cc.type == CONFLICT_ADDED:
            if cc.resolution == CARD_ADD and cc.imported_card:
                updates.append(CardUpdate(ACTION_ADD, cc.card_id, copy.deepcopy(cc.imported_card)))
        elif cc.type == CONFLICT_REMOVED:
            if cc.resolution == CARD_REMOVE:
                updates.append(CardUpdate(ACTION_REMOVE, cc.card_id))
        elif cc.type == CONFLICT_MODIFIED:
            if cc.resolution == CARD_USE_IMPORTED and cc.imported_card:
                updates.append(CardUpdate(ACTION_UPDATE, cc.card_id, copy.deepcopy(cc.imported_card)))
            elif cc.field_conflicts and cc.existing_card:
                patched = copy.deepcopy(cc.existing_card)
                changed = False
                for fc in cc.field_conflicts:
                    if fc.resolution == FIELD_USE_IMPORTED:
                        patched[fc.field] = copy.deepcopy(fc.imported)
                        changed = True
                if changed:
                    updates.append(CardUpdate(ACTION_UPDATE, cc.card_id, patched))

    return MergeResolution(existing_deck=conflict.existing_deck, deck_meta=deck_meta, card_updates=updates)


def apply_merge_resolution(resolution: MergeResolution, now: Optional[int] = None) -> Dict[str, Any]:
    """Build the merged deck from the existing deck plus the resolution."""
    existing = copy.deepcopy(resolution.existing_deck)
    meta = dict(_meta(existing))
    meta.update(resolution.deck_meta)
    meta["lastEdited"] = now if now is not None else now_ms()

    cards = _cards(existing)
    for update in resolution.card_updates:
        if update.action == ACTION_ADD and update.card_data:
            cards.append(update.card_data)
        elif update.action == ACTION_UPDATE and update.card_data:
            for index, card in enumerate(cards):
                if card.get("id") == update.card_id:
                    cards[index] = {**card, **update.card_data}
                    break
        elif update.action == ACTION_REMOVE:
            cards = [c for c in cards if c.get("id") != update.card_id]

    existing["meta"] = meta
    existing["cards"] = cards
    return existing


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------

def has_unresolved_conflicts(conflict: DeckConflict) -> bool:
    if any(not mc.resolution or mc.resolution == META_UNRESOLVED for mc in conflict.meta_conflicts):
        return True
    if any(not cc.resolution or cc.resolution == CARD_UNRESOLVED for cc in conflict.card_conflicts):
        return True
    return any(not fc.resolution for cc in conflict.card_conflicts for fc in cc.field_conflicts)


def conflict_summary(conflict: DeckConflict) -> Dict[str, Any]:
    by_type = {CONFLICT_ADDED: 0, CONFLICT_MODIFIED: 0, CONFLICT_REMOVED: 0}
    for cc in conflict.card_conflicts:
        by_type[cc.type] = by_type.get(cc.type, 0) + 1
    return {
        "metaChanges": len(conflict.meta_conflicts),
        "cardsAdded": by_type[CONFLICT_ADDED],
        "cardsModified": by_type[CONFLICT_MODIFIED],
        "cardsRemoved": by_type[CONFLICT_REMOVED],
        "hasUnresolved": has_unresolved_conflicts(conflict),
    }


def apply_resolution_choices(conflict: DeckConflict, choices: Dict[str, Any]) -> DeckConflict:
    """Overlay client-supplied choices onto a detected conflict.

    ``choices`` looks like::

        {"meta": {"title": "use_imported", "description": {"custom": "..."}},
         "cards": {"abc123": "remove", "def456": {"fields": {"title": "use_imported"}}}}

    Unknown resolution values raise ``ValueError``.
    """
    choices = choices if isinstance(choices, dict) else {}
    meta_choices = choices.get("meta") if isinstance(choices.get("meta"), dict) else {}
    card_choices = choices.get("cards") if isinstance(choices.get("cards"), dict) else {}

    meta_conflicts = []
    for mc in conflict.meta_conflicts:
        choice = meta_choices.get(mc.field)
        if choice is None:
            meta_conflicts.append(mc)
        elif isinstance(choice, dict) and "custom" in choice:
            meta_conflicts.append(replace(mc, resolution=META_CUSTOM, custom_value=choice["custom"]))
        elif choice in META_RESOLUTIONS:
            meta_conflicts.append(replace(mc, resolution=choice))
        else:
            raise ValueError(f"Unknown metadata resolution for {mc.field!r}: {choice!r}")

    card_conflicts = []
    for cc in conflict.card_conflicts:
        choice = card_choices.get(cc.card_id)
        if choice is None:
            card_conflicts.append(cc)
        elif isinstance(choice, dict):
            field_choices = choice.get("fields") if isinstance(choice.get("fields"), dict) else {}
            fields = []
            for fc in cc.field_conflicts:
                picked = field_choices.get(fc.field)
                if picked is None:
                    fields.append(replace(fc, resolution=fc.resolution or FIELD_KEEP_EXISTING))
                elif picked in FIELD_RESOLUTIONS:
                    fields.append(replace(fc, resolution=picked))
                else:
                    raise ValueError(f"Unknown field resolution for {fc.field!r}: {picked!r}")
            resolution = choice.get("resolution") or CARD_KEEP_EXISTING
            if resolution not in CARD_RESOLUTIONS:
                raise ValueError(f"Unknown card resolution for {cc.card_id!r}: {resolution!r}")
            card_conflicts.append(replace(cc, resolution=resolution, field_conflicts=fields))
        elif choice in CARD_RESOLUTIONS:
            field_choice = FIELD_USE_IMPORTED if choice == CARD_USE_IMPORTED else FIELD_KEEP_EXISTING
            fields = [replace(fc, resolution=field_choice) for fc in cc.field_conflicts]
            card_conflicts.append(replace(cc, resolution=choice, field_conflicts=fields))
        else:
            raise ValueError(f"Unknown card resolution for {cc.card_id!r}: {choice!r}")

    return replace(conflict, meta_conflicts=meta_conflicts, card_conflicts=card_conflicts)
