import time

import pytest

from extensions import db
from models import CommunityImage, Transaction
from services import gemini as services_gemini
from services.image_generation import batch_generate_images, generate_card_image
from services.tokens import IMAGE_GENERATION_COMMUNITY, get_balance
from shared.exceptions import AIGenerationError, InsufficientTokensError
from tests.factories import create_community_image, make_card


@pytest.fixture
def fake_ai(monkeypatch):
    calls = {"optimize": [], "render": [], "embed": [], "upload": []}

    def _optimize(card, style):
        calls["optimize"].append(card.get("id"))
        if card.get("title") == "explode":
            raise AIGenerationError("model refused")
        return f"prompt for {card.get('title')}"

    def _render(prompt, style, reference_image_url=None):
        calls["render"].append((prompt, style, reference_image_url))
        return b"\x89PNG", "image/png"

    def _embed(text):
        calls["embed"].append(text)
        return [0.1, 0.2, 0.3]

    def _upload(data, file_name, content_type):
        calls["upload"].append(file_name)
        return f"dev/cards/{file_name}"

    monkeypatch.setattr("services.gemini.optimize_prompt", _optimize)
    monkeypatch.setattr("services.gemini.generate_image", _render)
    monkeypatch.setattr("services.gemini.generate_embedding", _embed)
    monkeypatch.setattr("services.image_storage.upload_image", _upload)
    return calls


def test_single_generation_charges_and_records(create_user, fake_ai):
    user, _ = create_user(credits=500)

    result = generate_card_image(user, make_card(card_id="c1", title="Dragon"), "classic")

    assert result["success"] is True
    assert result["cached"] is False
    assert result["cost"] == IMAGE_GENERATION_COMMUNITY
    assert result["url"].startswith("https://img.example.test/dev/cards/c1-")
    assert get_balance(user.id) == 500 - IMAGE_GENERATION_COMMUNITY

    image = db.session.get(CommunityImage, result["imageId"])
    assert image.source_image_id is None
    assert image.embedding == [0.1, 0.2, 0.3]
    ledger = Transaction.query.filter_by(user_id=user.id).one()
    assert ledger.credits_delta == -IMAGE_GENERATION_COMMUNITY


def test_restyle_reuses_cached_variant_for_free(create_user, fake_ai):
    user, _ = create_user(credits=500)
    original = create_community_image(style="classic")
    remix = create_community_image(style="modern", source=original)
    card = make_card(card_id="c1", image=original.url, imageMetadata={"imageId": original.id})

    result = generate_card_image(user, card, "modern")

    assert result == {
        "cardId": "c1",
        "success": True,
        "url": remix.url,
        "imageId": remix.id,
        "cached": True,
        "cost": 0,
    }
    assert get_balance(user.id) == 500
    assert fake_ai["render"] == []


def test_restyle_creates_remix_without_embedding(create_user, fake_ai):
    user, _ = create_user(credits=500)
    original = create_community_image(style="classic")
    card = make_card(card_id="c1", image=original.url, imageMetadata={"imageId": original.id})

    result = generate_card_image(user, card, "inked")

    remix = db.session.get(CommunityImage, result["imageId"])
    assert remix.source_image_id == original.id
    assert remix.embedding is None
    assert fake_ai["embed"] == []
    assert fake_ai["render"][0][2] == original.url


def test_single_generation_requires_balance(create_user, fake_ai):
    user, _ = create_user(credits=10)

    with pytest.raises(InsufficientTokensError):
        generate_card_image(user, make_card(card_id="c1"), "classic")
    assert get_balance(user.id) == 10


def test_batch_charges_only_uncached_cards(create_user, fake_ai):
    user, _ = create_user(credits=1000)
    original = create_community_image(style="classic")
    cards = [
        make_card(card_id="cached", image=original.url, imageMetadata={"imageId": original.id}),
        make_card(card_id="n1", title="Wolf"),
        make_card(card_id="n2", title="Owl"),
    ]

    result = batch_generate_images(user, cards, "classic")

    assert result["summary"] == {"total": 3, "generated": 2, "cached": 1, "failed": 0}
    assert result["totalCost"] == 2 * IMAGE_GENERATION_COMMUNITY
    assert [r["cardId"] for r in result["results"]] == ["cached", "n1", "n2"]
    assert get_balance(user.id) == 1000 - 2 * IMAGE_GENERATION_COMMUNITY


def test_batch_reports_failures_without_refund(create_user, fake_ai):
    user, _ = create_user(credits=1000)
    cards = [make_card(card_id="ok", title="Fox"), make_card(card_id="bad", title="explode")]

    result = batch_generate_images(user, cards, "classic")

    assert result["summary"]["failed"] == 1
    failed = next(r for r in result["results"] if r["cardId"] == "bad")
    assert failed == {"cardId": "bad", "success": False, "error": "model refused"}
    assert get_balance(user.id) == 1000 - 2 * IMAGE_GENERATION_COMMUNITY


def test_batch_all_cached_costs_nothing(create_user, fake_ai):
    user, _ = create_user(credits=0)
    original = create_community_image(style="classic")
    cards = [make_card(card_id="c1", imageMetadata={"imageId": original.id})]

    result = batch_generate_images(user, cards, "classic")

    assert result["totalCost"] == 0
    assert result["summary"]["cached"] == 1


def test_batch_rejects_short_balance_upfront(create_user, fake_ai):
    user, _ = create_user(credits=150)
    cards = [make_card(card_id="a"), make_card(card_id="b")]

    with pytest.raises(InsufficientTokensError):
        batch_generate_images(user, cards, "classic")
    assert get_balance(user.id) == 150
    assert fake_ai["optimize"] == []


def test_batch_stagger_is_measured_from_batch_start(app, create_user, fake_ai, monkeypatch):
    monkeypatch.setitem(app.config, "IMAGE_BATCH_STAGGER_SECONDS", 0.1)
    monkeypatch.setitem(app.config, "IMAGE_BATCH_MAX_WORKERS", 4)
    starts = []
    real_optimize = services_gemini.optimize_prompt

    def _timed_optimize(card, style):
        starts.append(time.monotonic())
        return real_optimize(card, style)

    monkeypatch.setattr("services.gemini.optimize_prompt", _timed_optimize)
    user, _ = create_user(credits=12 * IMAGE_GENERATION_COMMUNITY)
    cards = [make_card(card_id=f"s{i}") for i in range(12)]

    began = time.monotonic()
    result = batch_generate_images(user, cards, "classic")

    assert result["summary"]["generated"] == 12
    last_start = max(starts) - began
    assert 1.0 <= last_start < 1.5
