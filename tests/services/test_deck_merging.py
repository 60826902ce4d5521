import pytest

from services.deck_merging import (
    CARD_ADD,
    CARD_KEEP_EXISTING,
    CARD_REMOVE,
    CARD_USE_IMPORTED,
    CONFLICT_ADDED,
    CONFLICT_MODIFIED,
    CONFLICT_REMOVED,
    META_KEEP_EXISTING,
    META_USE_IMPORTED,
    apply_merge_resolution,
    apply_resolution_choices,
    apply_smart_defaults,
    conflict_summary,
    create_merge_resolution,
    detect_deck_conflict,
    has_unresolved_conflicts,
)
from tests.factories import make_card, make_deck


def _pair():
    shared = make_card(card_id="c1", title="Knight")
    removed = make_card(card_id="c2", title="Rook")
    existing = make_deck(title="Old Title", cards=[shared, removed], last_edited=1000)

    changed = dict(shared, title="Dark Knight")
    added = make_card(card_id="c3", title="Bishop")
    imported = make_deck(title="New Title", cards=[changed, added], last_edited=2000)
    return existing, imported


def test_identical_decks_have_no_conflicts():
    deck = make_deck(cards=[make_card(card_id="c1")])
    conflict = detect_deck_conflict(deck, deck)

    assert conflict.is_empty
    assert not has_unresolved_conflicts(conflict)


def test_detect_collects_meta_and_card_conflicts():
    existing, imported = _pair()
    conflict = detect_deck_conflict(existing, imported)

    assert [mc.field for mc in conflict.meta_conflicts] == ["title"]
    by_id = {cc.card_id: cc for cc in conflict.card_conflicts}
    assert by_id["c1"].type == CONFLICT_MODIFIED
    assert [fc.field for fc in by_id["c1"].field_conflicts] == ["title"]
    assert by_id["c2"].type == CONFLICT_REMOVED
    assert by_id["c3"].type == CONFLICT_ADDED

    summary = conflict_summary(conflict)
    assert summary == {
        "metaChanges": 1,
        "cardsAdded": 1,
        "cardsModified": 1,
        "cardsRemoved": 1,
        "hasUnresolved": True,
    }


def test_list_fields_compare_by_content_not_key_order():
    existing = make_deck(cards=[make_card(card_id="c1", title="Gate", stats=[{"id": "s", "type": "number", "value": 1}])])
    imported = make_deck(cards=[make_card(card_id="c1", title="Gate", stats=[{"value": 1, "type": "number", "id": "s"}])])
    imported["cards"][0]["description"] = existing["cards"][0]["description"]

    conflict = detect_deck_conflict(existing, imported)

    assert conflict.card_conflicts == []


def test_smart_defaults_prefer_newer_import():
    existing, imported = _pair()
    resolved = apply_smart_defaults(detect_deck_conflict(existing, imported))

    assert resolved.meta_conflicts[0].resolution == META_USE_IMPORTED
    by_id = {cc.card_id: cc for cc in resolved.card_conflicts}
    assert by_id["c1"].resolution == CARD_USE_IMPORTED
    assert by_id["c2"].resolution == CARD_KEEP_EXISTING
    assert by_id["c3"].resolution == CARD_ADD
    assert not has_unresolved_conflicts(resolved)


def test_smart_defaults_keep_existing_when_import_is_older():
    existing, imported = _pair()
    existing["meta"]["lastEdited"] = 5000
    resolved = apply_smart_defaults(detect_deck_conflict(existing, imported))

    assert resolved.meta_conflicts[0].resolution == META_KEEP_EXISTING
    by_id = {cc.card_id: cc for cc in resolved.card_conflicts}
    assert by_id["c1"].resolution == CARD_KEEP_EXISTING


def test_smart_defaults_do_not_mutate_input():
    existing, imported = _pair()
    conflict = detect_deck_conflict(existing, imported)
    apply_smart_defaults(conflict)

    assert has_unresolved_conflicts(conflict)


def test_merge_applies_resolution_and_stamps_last_edited():
    existing, imported = _pair()
    resolved = apply_smart_defaults(detect_deck_conflict(existing, imported))

    merged = apply_merge_resolution(create_merge_resolution(resolved, now=9000), now=9000)

    assert merged["meta"]["title"] == "New Title"
    assert merged["meta"]["lastEdited"] == 9000
    titles = {card["id"]: card["title"] for card in merged["cards"]}
    assert titles == {"c1": "Dark Knight", "c2": "Rook", "c3": "Bishop"}
    # original untouched
    assert existing["meta"]["title"] == "Old Title"


def test_choices_override_and_remove_cards():
    existing, imported = _pair()
    conflict = apply_smart_defaults(detect_deck_conflict(existing, imported))

    chosen = apply_resolution_choices(
        conflict,
        {
            "meta": {"title": {"custom": "Hand Picked"}},
            "cards": {"c2": CARD_REMOVE, "c3": "skip", "c1": {"fields": {"title": "keep_existing"}}},
        },
    )
    merged = apply_merge_resolution(create_merge_resolution(chosen, now=1), now=1)

    assert merged["meta"]["title"] == "Hand Picked"
    assert [card["id"] for card in merged["cards"]] == ["c1"]
    assert merged["cards"][0]["title"] == "Knight"


def test_choices_pick_individual_fields():
    existing, imported = _pair()
    imported["cards"][0]["subtitle"] = "Sworn"
    conflict = detect_deck_conflict(existing, imported)

    chosen = apply_resolution_choices(
        conflict,
        {"cards": {"c1": {"fields": {"subtitle": "use_imported"}}}},
    )
    merged = apply_merge_resolution(create_merge_resolution(chosen, now=1), now=1)

    c1 = next(card for card in merged["cards"] if card["id"] == "c1")
    assert c1["subtitle"] == "Sworn"
    assert c1["title"] == "Knight"


def test_unknown_choice_is_rejected():
    existing, imported = _pair()
    conflict = detect_deck_conflict(existing, imported)

    with pytest.raises(ValueError):
        apply_resolution_choices(conflict, {"meta": {"title": "flip-a-coin"}})
