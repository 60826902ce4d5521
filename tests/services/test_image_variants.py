from services.image_variants import (
    card_image_id,
    check_variants,
    find_cached_variant,
    partition_cards_for_generation,
)
from tests.factories import create_community_image, make_card


def _card_with_image(card_id, image):
    return make_card(card_id=card_id, image=image.url, imageMetadata={"source": "ai", "imageId": image.id})


def test_card_image_id_reads_metadata():
    assert card_image_id(make_card(imageMetadata={"imageId": "abc"})) == "abc"
    assert card_image_id(make_card()) is None


def test_find_variant_walks_the_family(db_session):
    original = create_community_image(style="classic")
    remix = create_community_image(style="modern", source=original)

    assert find_cached_variant(original.id, "classic").image_id == original.id
    assert find_cached_variant(original.id, "modern").image_id == remix.id
    assert find_cached_variant(remix.id, "classic").image_id == original.id
    assert find_cached_variant(remix.id, "inked") is None


def test_remix_of_remix_still_points_at_root(db_session):
    original = create_community_image(style="classic")
    first = create_community_image(style="modern", source=original)
    second = create_community_image(style="inked", source=first)

    assert second.source_image_id == original.id
    assert find_cached_variant(first.id, "inked").image_id == second.id


def test_oldest_variant_wins(db_session):
    original = create_community_image(style="classic")
    older = create_community_image(style="modern", source=original, age_minutes=10)
    create_community_image(style="modern", source=original, age_minutes=1)

    assert find_cached_variant(original.id, "modern").image_id == older.id


def test_missing_inputs_return_none(db_session):
    assert find_cached_variant(None, "classic") is None
    assert find_cached_variant("does-not-exist", "classic") is None
    assert find_cached_variant("anything", None) is None


def test_check_variants_summarises(db_session):
    original = create_community_image(style="classic")
    remix = create_community_image(style="modern", source=original)
    cards = [_card_with_image("c1", original), make_card(card_id="c2")]

    report = check_variants(cards, "modern")

    assert report["summary"] == {"total": 2, "existing": 1, "needsGeneration": 1}
    assert report["variants"]["c1"] == {"exists": True, "url": remix.url, "imageId": remix.id}
    assert report["variants"]["c2"] == {"exists": False, "url": None}


def test_partition_marks_cached_cards_free(db_session):
    original = create_community_image(style="classic")
    cards = [_card_with_image("c1", original), make_card(card_id="c2")]

    to_generate, cached = partition_cards_for_generation(cards, "classic")

    assert [c["id"] for c in to_generate] == ["c2"]
    assert cached == [
        {"cardId": "c1", "success": True, "url": original.url, "imageId": original.id, "cached": True, "cost": 0}
    ]
