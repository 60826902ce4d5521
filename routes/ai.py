"""AI generation endpoints (Gemini) and the community image library search."""

from __future__ import annotations

from flask import jsonify
from flask_login import current_user, login_required

from extensions import limiter
from services import gemini
from services.image_generation import batch_generate_images, generate_card_image
from services.image_search import embedding_for_search, search_similar_images
from services.image_styles import DEFAULT_STYLE, is_known_style, list_image_styles
from services.image_variants import check_variants
from services.tokens import get_balance
from shared.exceptions import ValidationError

from .base import ai_rate_limit, api, json_body, limiter_key_user_or_ip, require_field

MAX_DECK_CARDS = 30
MAX_BATCH_CARDS = 50


def _style_from(payload) -> str:
    style = payload.get("style") or DEFAULT_STYLE
    if not is_known_style(style):
        raise ValidationError(f"Unknown image style: {style}")
    return style


def _cards_from(payload, limit: int):
    cards = payload.get("cards")
    if not isinstance(cards, list) or not cards:
        raise ValidationError("cards must be a non-empty array")
    if len(cards) > limit:
        raise ValidationError(f"At most {limit} cards per request")
    if not all(isinstance(c, dict) for c in cards):
        raise ValidationError("cards must be objects")
    return cards


@api.route("/ai/generate-deck", methods=["POST"])
@limiter.limit(ai_rate_limit, key_func=limiter_key_user_or_ip)
@login_required
def generate_deck():
    payload = json_body()
    theme = str(require_field(payload, "theme", "Theme is required")).strip()
    try:
        card_count = int(payload.get("cardCount", 10))
    except (TypeError, ValueError) as exc:
        raise ValidationError("cardCount must be an integer") from exc
    if not 1 <= card_count <= MAX_DECK_CARDS:
        raise ValidationError(f"cardCount must be between 1 and {MAX_DECK_CARDS}")
    deck = gemini.generate_deck(theme, card_count)
    return jsonify({"success": True, "deck": deck})


@api.route("/ai/generate-image", methods=["POST"])
@limiter.limit(ai_rate_limit, key_func=limiter_key_user_or_ip)
@login_required
def generate_image():
    payload = json_body()
    card = require_field(payload, "card", "Card is required")
    if not isinstance(card, dict):
        raise ValidationError("card must be an object")
    result = generate_card_image(current_user, card, _style_from(payload))
    return jsonify({**result, "balance": get_balance(current_user.id)})


@api.route("/ai/batch-generate-images", methods=["POST"])
@limiter.limit(ai_rate_limit, key_func=limiter_key_user_or_ip)
@login_required
def batch_generate():
    payload = json_body()
    result = batch_generate_images(current_user, _cards_from(payload, MAX_BATCH_CARDS), _style_from(payload))
    return jsonify({**result, "balance": get_balance(current_user.id)})


@api.route("/ai/check-image-variants", methods=["POST"])
def check_image_variants():
    payload = json_body()
    return jsonify(check_variants(_cards_from(payload, MAX_BATCH_CARDS), _style_from(payload)))


@api.route("/ai/generate-embedding", methods=["POST"])
@limiter.limit(ai_rate_limit, key_func=limiter_key_user_or_ip)
@login_required
def generate_embedding():
    payload = json_body()
    text = str(require_field(payload, "text", "Text is required")).strip()
    embedding = gemini.generate_embedding(text)
    return jsonify({"embedding": embedding, "dimensions": len(embedding)})


@api.route("/ai/search-similar-images", methods=["POST"])
@limiter.limit(ai_rate_limit, key_func=limiter_key_user_or_ip)
def search_images():
    payload = json_body()
    card = payload.get("card")
    if card is not None and not isinstance(card, dict):
        raise ValidationError("card must be an object")
    query = embedding_for_search(
        card=card,
        deck_description=payload.get("deckDescription"),
        embedding=payload.get("embedding"),
    )
    preferred = payload.get("preferredStyle")
    if preferred and not is_known_style(preferred):
        raise ValidationError(f"Unknown image style: {preferred}")
    try:
        limit = int(payload.get("limit") or 10)
    except (TypeError, ValueError) as exc:
        raise ValidationError("limit must be an integer") from exc
    images = search_similar_images(query, preferred_style=preferred, limit=limit)
    return jsonify({"success": True, "images": images, "count": len(images)})


@api.route("/ai/image-styles", methods=["GET"])
def image_styles():
    return jsonify({"styles": list_image_styles(), "default": DEFAULT_STYLE})
