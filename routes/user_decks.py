"""Cloud sync endpoints for the user's working copies."""

from __future__ import annotations

from flask import jsonify
from flask_login import current_user, login_required

from services import user_decks as user_deck_service

from .base import api, bool_arg, json_body


@api.route("/user-decks", methods=["GET"])
@login_required
def list_user_decks():
    rows = user_deck_service.list_user_decks(current_user, include_published=bool_arg("includePublished", True))
    return jsonify({"decks": [row.to_dict() for row in rows]})


@api.route("/user-decks", methods=["POST"])
@login_required
def sync_user_deck():
    row, created = user_deck_service.upsert_user_deck(current_user, json_body())
    message = "Deck created successfully" if created else "Deck synced successfully"
    return jsonify({"success": True, "deck": row.to_dict(), "message": message}), 201 if created else 200


@api.route("/user-decks/<deck_id>", methods=["PATCH"])
@login_required
def update_user_deck(deck_id: str):
    row = user_deck_service.update_user_deck(current_user, deck_id, json_body())
    return jsonify({"success": True, "deck": row.to_dict(), "message": "Deck updated successfully"})


@api.route("/user-decks/<deck_id>", methods=["DELETE"])
@login_required
def delete_user_deck(deck_id: str):
    user_deck_service.delete_user_deck(current_user, deck_id)
    return jsonify({"success": True, "message": "Deck deleted successfully"})
