import json

from services.deck_io import (
    EXPORT_VERSION,
    estimate_import_size,
    export_deck,
    export_filename,
    generate_unique_deck_id,
    import_deck_from_json,
    validate_export_structure,
)
from tests.factories import make_card, make_deck


def _export(**extra):
    data = {
        "deck": {"id": "d1", "meta": {"title": "Runes"}, "cards": [make_card(card_id="c1")]},
        "exportMeta": {"exportedAt": 1, "exportVersion": EXPORT_VERSION, "source": "cardsmith"},
    }
    data.update(extra)
    return data


def test_export_wraps_deck_and_cleans_cards(app):
    card = make_card(card_id="c1", imageMetadata={"imageId": "x"}, imageBlob="blob")
    with app.app_context():
        exported = export_deck(make_deck(title="Runes", cards=[card]))

    assert exported["exportMeta"]["exportVersion"] == EXPORT_VERSION
    assert exported["exportMeta"]["source"] == "cardsmith"
    cleaned = exported["deck"]["cards"][0]
    assert "imageBlob" not in cleaned
    assert "imageMetadata" not in cleaned
    assert "image" not in cleaned
    assert export_filename(make_deck(title="Runes & Rites")).startswith("runes-rites-")


def test_validate_structure_errors(app):
    cases = [
        ([], "Invalid JSON: expected object"),
        ({}, "Missing deck data"),
        ({"deck": {"id": 5, "meta": {"title": "t"}, "cards": []}}, "Deck ID must be a string if provided"),
        ({"deck": {"cards": []}}, "Deck missing metadata"),
        ({"deck": {"meta": {}, "cards": []}}, "Deck missing title"),
        ({"deck": {"meta": {"title": "t"}}}, "Deck missing cards array"),
        (
            {"deck": {"meta": {"title": "t"}, "cards": [{"image": "@blob:b1"}]}},
            "Deck contains blob references but no blob data provided",
        ),
    ]
    with app.app_context():
        for parsed, message in cases:
            ok, error, _ = validate_export_structure(parsed)
            assert not ok
            assert error == message


def test_foreign_source_only_warns(app):
    with app.app_context():
        ok, error, warnings = validate_export_structure(_export(exportMeta={"source": "someone-else"}))
    assert ok and error is None
    assert warnings and "compatibility" in warnings[0]


def test_import_resolves_blobs_and_fills_ids(app):
    data = _export(
        deck={
            "meta": {"title": "Runes"},
            "cards": [
                {"title": "Blob card", "image": "@blob:b1"},
                {"id": "c2", "title": "Dangling", "image": "@blob:missing"},
            ],
        },
        blobs={"b1": {"data": "data:image/webp;base64,AAAA", "metadata": {"size": 4}}},
    )
    with app.app_context():
        result = import_deck_from_json(json.dumps(data))

    assert result.success
    deck = result.deck
    assert deck["id"]
    first, second = deck["cards"]
    assert len(first["id"]) == 6
    assert first["image"] == "data:image/webp;base64,AAAA"
    assert first["imageMetadata"]["type"] == "image/webp"
    assert first["imageMetadata"]["filename"] == "imported-image"
    assert second["image"] == "@blob:missing"
    assert any("missing" in w for w in result.warnings)


def test_import_reports_bad_json(app):
    with app.app_context():
        result = import_deck_from_json("{oops")
    assert not result.success
    assert result.error.startswith("Invalid JSON format")
    assert result.to_dict()["success"] is False


def test_unique_id_and_size_estimate():
    assert generate_unique_deck_id("deck", []) == "deck"
    assert generate_unique_deck_id("deck", ["deck", "deck-1"]) == "deck-2"

    size = estimate_import_size(_export(blobs={"b1": {"data": "x" * 100}}))
    assert size["cardCount"] == 1
    assert size["blobCount"] == 1
    assert size["hasBlobs"] is True
    assert size["estimatedSize"] > 100
