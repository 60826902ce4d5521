import pytest

from extensions import db
from models import PublishedDeck, UserDeck
from services.publishing import (
    get_published_deck,
    increment_import_count,
    list_featured,
    list_gallery,
    publish_deck,
    unpublish_deck,
)
from services.slugs import user_slug_key
from shared.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from tests.factories import create_published_deck, make_card


def _payload(**overrides):
    payload = {
        "title": "Star Atlas",
        "description": "Constellations",
        "cards": [make_card(card_id="c1", image="https://img.example.test/first.png")],
        "theme": "classic",
        "tags": ["space", " ", "myth"],
    }
    payload.update(overrides)
    return payload


def test_publish_creates_snapshot_with_user_scoped_slug(create_user):
    user, _ = create_user(display_name="Astra")

    result = publish_deck(user, _payload())

    assert result["success"] is True
    assert result["message"] == "Deck published successfully"
    deck = result["deck"]
    assert deck["slug"] == f"star-atlas-{user_slug_key(user.id)[:8]}"
    assert deck["version"] == 1
    assert deck["tags"] == ["space", "myth"]
    assert deck["creator_name"] == "Astra"
    assert "cards" not in deck


def test_publish_validation_messages(create_user):
    user, _ = create_user()
    cases = [
        ({"title": " "}, "Title is required"),
        ({"cards": []}, "Deck must have at least one card"),
        ({"theme": ""}, "Theme is required"),
        ({"visibility": "secret"}, 'Visibility must be "public" or "unlisted"'),
    ]
    for override, message in cases:
        with pytest.raises(ValidationError, match=message):
            publish_deck(user, _payload(**override))


def test_second_publish_of_same_title_gets_unique_slug(create_user):
    user, _ = create_user()
    first = publish_deck(user, _payload())["deck"]
    second = publish_deck(user, _payload())["deck"]

    assert first["slug"] != second["slug"]
    assert second["slug"].startswith(first["slug"] + "-")


def test_republish_bumps_version_and_checks_owner(create_user):
    owner, _ = create_user(email="owner@example.com", username="owner")
    other, _ = create_user(email="other@example.com", username="other")
    deck_id = publish_deck(owner, _payload())["deck"]["id"]

    updated = publish_deck(owner, _payload(deckId=deck_id, title="Star Atlas II"))
    assert updated["message"] == "Deck updated successfully"
    assert updated["deck"]["version"] == 2
    assert updated["deck"]["title"] == "Star Atlas II"

    with pytest.raises(PermissionDeniedError):
        publish_deck(other, _payload(deckId=deck_id))
    with pytest.raises(NotFoundError):
        publish_deck(owner, _payload(deckId="missing"))


def test_publish_from_synced_copy_links_it(create_user):
    user, _ = create_user()
    row = UserDeck(id="local-1", user_id=user.id, title="Synced", cards=[make_card(card_id="s1")], tags=["x"])
    db.session.add(row)
    db.session.commit()

    result = publish_deck(user, {"userDeckId": "local-1"})

    assert result["deck"]["title"] == "Synced"
    assert db.session.get(UserDeck, "local-1").published_deck_id == result["deck"]["id"]


def test_remix_must_reference_existing_deck(create_user):
    user, _ = create_user()
    with pytest.raises(ValidationError):
        publish_deck(user, _payload(remixOf="ghost"))

    parent = create_published_deck(None)
    remix = publish_deck(user, _payload(remixOf=parent.id))["deck"]
    assert remix["remix_of"] == parent.id


def test_unpublish_detaches_references(create_user):
    owner, _ = create_user(email="owner@example.com", username="owner")
    other, _ = create_user(email="other@example.com", username="other")
    parent = create_published_deck(owner)
    child = create_published_deck(other, remix_of=parent.id)
    db.session.add(UserDeck(id="local-1", user_id=owner.id, title="Mine", cards=[], tags=[], published_deck_id=parent.id))
    db.session.commit()

    with pytest.raises(PermissionDeniedError):
        unpublish_deck(other, parent.id)
    unpublish_deck(owner, parent.id)

    assert db.session.get(PublishedDeck, parent.id) is None
    db.session.expire_all()
    assert db.session.get(PublishedDeck, child.id).remix_of is None
    assert db.session.get(UserDeck, "local-1").published_deck_id is None


def test_get_published_deck_by_id_or_slug_counts_views(db_session):
    deck = create_published_deck(None, visibility=PublishedDeck.VISIBILITY_UNLISTED)

    assert get_published_deck(deck.id).view_count == 1
    assert get_published_deck(deck.slug).view_count == 2
    with pytest.raises(NotFoundError):
        get_published_deck("nope")


def test_gallery_filters_and_paginates(db_session):
    create_published_deck(None, title="Ocean Tales", tags=["sea"], age_minutes=3)
    create_published_deck(None, title="Desert Winds", tags=["sand"], theme="cyberdeck", age_minutes=2)
    create_published_deck(None, title="Deep Ocean", tags=["sea", "dark"], age_minutes=1)
    create_published_deck(None, title="Hidden Ocean", visibility=PublishedDeck.VISIBILITY_UNLISTED)

    everything = list_gallery()
    assert [d["title"] for d in everything["decks"]] == ["Deep Ocean", "Desert Winds", "Ocean Tales"]
    assert everything["pagination"] == {"total": 3, "limit": 20, "offset": 0, "hasMore": False}

    assert [d["title"] for d in list_gallery(search="ocean")["decks"]] == ["Deep Ocean", "Ocean Tales"]
    assert [d["title"] for d in list_gallery(tags=["dark", "sand"])["decks"]] == ["Deep Ocean", "Desert Winds"]
    assert [d["title"] for d in list_gallery(theme="cyberdeck")["decks"]] == ["Desert Winds"]

    page = list_gallery(limit=1, offset=1)
    assert [d["title"] for d in page["decks"]] == ["Desert Winds"]
    assert page["pagination"]["hasMore"] is True


def test_gallery_sorts(db_session):
    create_published_deck(None, title="Viewed", view_count=9)
    create_published_deck(None, title="Imported", import_count=4)

    assert list_gallery(sort="popular")["decks"][0]["title"] == "Viewed"
    assert list_gallery(sort="imported")["decks"][0]["title"] == "Imported"


def test_featured_prefers_likes_and_honours_exclude(db_session):
    loved = create_published_deck(None, title="Loved", like_count=5, cards=[make_card(image="https://img/1.png")])
    newer = create_published_deck(None, title="Newer", like_count=1)
    create_published_deck(None, title="Older", like_count=1, age_minutes=60)

    top = list_featured()
    assert [d["id"] for d in top] == [loved.id]
    assert top[0]["firstCardImage"] == "https://img/1.png"
    assert "cards" in top[0]

    rest = list_featured(limit=5, exclude=[loved.id])
    assert [d["title"] for d in rest] == ["Newer", "Older"]
    assert rest[0]["id"] == newer.id


def test_increment_import_count(db_session):
    deck = create_published_deck(None)
    increment_import_count(deck.id)
    increment_import_count("missing")

    db.session.expire_all()
    assert db.session.get(PublishedDeck, deck.id).import_count == 1
