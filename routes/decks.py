"""Published decks, the gallery, likes, and deck utilities (merge, share links, JSON files)."""

from __future__ import annotations

from flask import current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import select

from extensions import db
from models import PublishedDeck, UserDeck
from services import deck_io, publishing, share_url
from services.deck_merging import (
    apply_merge_resolution,
    apply_resolution_choices,
    apply_smart_defaults,
    create_merge_resolution,
    detect_deck_conflict,
    has_unresolved_conflicts,
)
from services.deck_schema import normalize_deck
from services.three_layer_merge import perform_three_layer_merge
from services.tokens import has_user_liked_deck, process_deck_like, process_deck_unlike
from services.user_decks import deck_from_user_deck
from shared.exceptions import NotFoundError, PermissionDeniedError, ValidationError

from .base import api, csv_arg, int_arg, json_body, require_field

_LIKE_ERROR_STATUS = {
    "Deck not found": 404,
    "Insufficient tokens": 402,
}


# ---------------------------------------------------------------------------
# Publishing and the gallery
# ---------------------------------------------------------------------------

@api.route("/decks/gallery", methods=["GET"])
def gallery():
    result = publishing.list_gallery(
        search=request.args.get("search"),
        tags=csv_arg("tags"),
        theme=request.args.get("theme"),
        sort=request.args.get("sort") or "recent",
        limit=int_arg("limit"),
        offset=int_arg("offset", 0),
    )
    return jsonify(result)


@api.route("/decks/featured", methods=["GET"])
def featured():
    decks = publishing.list_featured(limit=int_arg("limit", 1), exclude=csv_arg("exclude"))
    payload = {"success": True, "decks": decks}
    if not decks:
        payload["message"] = "No decks found"
    return jsonify(payload)


@api.route("/decks/publish", methods=["POST"])
@login_required
def publish():
    return jsonify(publishing.publish_deck(current_user, json_body()))


@api.route("/decks/<deck_id>/unpublish", methods=["DELETE"])
@login_required
def unpublish(deck_id: str):
    publishing.unpublish_deck(current_user, deck_id)
    return jsonify({"success": True, "message": "Deck unpublished"})


@api.route("/decks/<deck_id>/import", methods=["POST"])
def track_import(deck_id: str):
    publishing.increment_import_count(deck_id)
    return jsonify({"success": True})


@api.route("/decks/<ref>", methods=["GET"])
def get_deck(ref: str):
    deck = publishing.get_published_deck(ref)
    return jsonify({"success": True, "deck": deck.to_dict(include_cards=True)})


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------

def _like_count(deck_id: str) -> int:
    count = db.session.scalar(select(PublishedDeck.like_count).where(PublishedDeck.id == deck_id))
    if count is None:
        raise NotFoundError("Deck not found")
    return int(count)


@api.route("/decks/<deck_id>/like", methods=["GET"])
@login_required
def like_status(deck_id: str):
    count = _like_count(deck_id)
    return jsonify({"liked": has_user_liked_deck(current_user.id, deck_id), "likeCount": count})


@api.route("/decks/<deck_id>/like", methods=["POST"])
@login_required
def like(deck_id: str):
    result = process_deck_like(current_user.id, deck_id)
    if not result.success:
        return jsonify({"error": "like_failed", "detail": result.error}), _LIKE_ERROR_STATUS.get(result.error, 400)
    return jsonify({**result.to_dict(), "likeCount": _like_count(deck_id)})


@api.route("/decks/<deck_id>/like", methods=["DELETE"])
@login_required
def unlike(deck_id: str):
    result = process_deck_unlike(current_user.id, deck_id)
    if not result.success:
        return jsonify({"error": "unlike_failed", "detail": result.error}), 400
    return jsonify({"success": True, "likeCount": _like_count(deck_id)})


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------

def _curated_layer(payload):
    curated = payload.get("curated")
    if isinstance(curated, dict):
        return curated
    curated_id = payload.get("curatedId")
    if not curated_id:
        return None
    deck = db.session.get(PublishedDeck, curated_id) or PublishedDeck.query.filter_by(slug=curated_id).first()
    if deck is None:
        raise NotFoundError("Curated deck not found")
    record = deck.to_dict(include_cards=True)
    record["image_style"] = deck.image_style
    return record


def _hash_layer(payload):
    if isinstance(payload.get("hashDeck"), dict):
        return normalize_deck(payload["hashDeck"])
    if payload.get("shareUrl"):
        return share_url.import_from_url(str(payload["shareUrl"]))
    if payload.get("hashData"):
        data = share_url.decode_share_data(str(payload["hashData"]))
        return share_url.from_shareable(data) if data else None
    return None


def _local_layer(payload):
    if isinstance(payload.get("local"), dict):
        return normalize_deck(payload["local"])
    user_deck_id = payload.get("userDeckId")
    if not user_deck_id or not current_user.is_authenticated:
        return None
    row = db.session.get(UserDeck, str(user_deck_id))
    if row is None:
        return None
    if row.user_id != current_user.id:
        raise PermissionDeniedError("You do not own this deck")
    return deck_from_user_deck(row)


@api.route("/decks/resolve", methods=["POST"])
def resolve_layers():
    """Curated < shared link < local copy; conflicts are reported, not merged away."""
    payload = json_body()
    result = perform_three_layer_merge(_curated_layer(payload), _hash_layer(payload), _local_layer(payload))
    return jsonify(result.to_dict())


@api.route("/decks/merge", methods=["POST"])
def merge():
    payload = json_body()
    existing = require_field(payload, "existing", "existing deck is required")
    imported = require_field(payload, "imported", "imported deck is required")
    if not isinstance(existing, dict) or not isinstance(imported, dict):
        raise ValidationError("existing and imported must be deck objects")

    conflict = detect_deck_conflict(normalize_deck(existing), normalize_deck(imported))
    if payload.get("smartDefaults"):
        conflict = apply_smart_defaults(conflict)
    if payload.get("choices"):
        try:
            conflict = apply_resolution_choices(conflict, payload["choices"])
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    unresolved = has_unresolved_conflicts(conflict)
    merged = None if unresolved else apply_merge_resolution(create_merge_resolution(conflict))
    return jsonify(
        {
            "deck": merged,
            "hasConflict": not conflict.is_empty,
            "hasUnresolved": unresolved,
            "conflict": conflict.to_dict(include_decks=False),
        }
    )


# ---------------------------------------------------------------------------
# Share links and JSON files
# ---------------------------------------------------------------------------

def _deck_from_body(payload):
    deck = require_field(payload, "deck", "deck is required")
    if not isinstance(deck, dict):
        raise ValidationError("deck must be an object")
    return normalize_deck(deck)


@api.route("/decks/share-url", methods=["POST"])
def make_share_url():
    payload = json_body()
    deck = _deck_from_body(payload)
    base_url = payload.get("baseUrl") or current_app.config.get("PUBLIC_BASE_URL")
    url = share_url.generate_share_url(deck, base_url)
    return jsonify(
        {
            "url": url,
            "length": len(url),
            "tooLong": len(url) > share_url.MAX_SAFE_URL_LENGTH,
            "size": share_url.estimate_shareable_size(deck),
        }
    )


@api.route("/decks/import-url", methods=["POST"])
def import_share_url():
    payload = json_body()
    url = str(require_field(payload, "url", "url is required"))
    if not share_url.is_share_url(url):
        raise ValidationError("Not a deck share link")
    deck = share_url.import_from_url(url)
    if deck is None:
        raise ValidationError("Share link data could not be decoded")
    return jsonify({"success": True, "deck": deck, "type": share_url.get_share_url_type(url)})


@api.route("/decks/export", methods=["POST"])
def export_json():
    deck = _deck_from_body(json_body())
    return jsonify({"filename": deck_io.export_filename(deck), "export": deck_io.export_deck(deck)})


@api.route("/decks/import-json", methods=["POST"])
def import_json():
    if request.is_json:
        payload = json_body()
        text = payload.get("json")
        if not isinstance(text, str):
            text = request.get_data(as_text=True)
    else:
        text = request.get_data(as_text=True)
    result = deck_io.import_deck_from_json(text or "")
    return jsonify(result.to_dict()), 200 if result.success else 400

