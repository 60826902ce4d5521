"""Card artwork generation: charge tokens, call Gemini, store in R2, record the image.

Before any generation the remix cache in :mod:`services.image_variants` is
consulted, so restyling a card whose image family already has the target
style costs nothing.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import CommunityImage, User
from services import gemini, image_storage
from services.image_variants import card_image_id, find_cached_variant, partition_cards_for_generation
from services.tokens import IMAGE_GENERATION_COMMUNITY, deduct_tokens, get_balance, record_transaction
from shared.exceptions import AIConfigurationError, AIGenerationError, InsufficientTokensError, StorageError

__all__ = [
    "upload_and_save_image",
    "generate_card_image",
    "batch_generate_images",
]


def _extension_for(mime_type: str) -> str:
    subtype = (mime_type or "image/png").split("/", 1)[-1].split(";")[0].strip()
    return "jpg" if subtype == "jpeg" else (subtype or "png")


def upload_and_save_image(
    user: User,
    image_bytes: bytes,
    mime_type: str,
    card: Dict[str, Any],
    style: str,
    prompt: str,
    source_image_id: Optional[str] = None,
) -> CommunityImage:
    """Upload generated bytes and insert the community image row.

    Originals get an embedding for similarity search; remixes point at the
    family root instead and carry none.
    """
    embedding = None
    if not source_image_id:
        try:
            embedding = gemini.generate_embedding(prompt)
        except (AIConfigurationError, AIGenerationError) as exc:
            current_app.logger.warning("Embedding generation failed, saving without it: %s", exc)

    key = image_storage.upload_image(
        image_bytes,
        image_storage.image_file_name(str(card.get("id") or "card"), _extension_for(mime_type)),
        mime_type,
    )

    root_id = None
    if source_image_id:
        source = db.session.get(CommunityImage, source_image_id)
        if source is not None:
            root_id = source.source_image_id or source.id

    image = CommunityImage(
        user_id=user.id,
        url=image_storage.public_url(key),
        storage_key=key,
        style=style,
        source_image_id=root_id,
        embedding=embedding if root_id is None else None,
        card_title=(card.get("title") or "")[:200] or None,
        description=prompt,
        cost_tokens=IMAGE_GENERATION_COMMUNITY,
    )
    db.session.add(image)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Saving image row failed, removing uploaded object key=%s", key)
        try:
            image_storage.delete_image(key)
        except StorageError:
            current_app.logger.warning("Orphaned R2 object left behind key=%s", key)
        raise StorageError("Failed to save generated image") from exc
    return image


def _cached_payload(card: Dict[str, Any], image_id: str, url: str) -> Dict[str, Any]:
    return {"cardId": card.get("id"), "success": True, "url": url, "imageId": image_id, "cached": True, "cost": 0}


def generate_card_image(user: User, card: Dict[str, Any], style: str) -> Dict[str, Any]:
    """Generate (or reuse) artwork for one card in ``style``."""
    source_id = card_image_id(card)
    cached = find_cached_variant(source_id, style)
    if cached is not None:
        current_app.logger.info("Reusing cached variant image_id=%s style=%s", cached.image_id, style)
        return _cached_payload(card, cached.image_id, cached.url)

    cost = IMAGE_GENERATION_COMMUNITY
    if not deduct_tokens(user.id, cost):
        raise InsufficientTokensError(f"Image generation costs {cost} tokens")
    record_transaction(user.id, -cost, f"Image generation: {card.get('title') or 'Untitled'}")

    prompt = gemini.optimize_prompt(card, style)
    image_bytes, mime_type = gemini.generate_image(prompt, style, reference_image_url=card.get("image") or None)
    image = upload_and_save_image(user, image_bytes, mime_type, card, style, prompt, source_id)
    return {
        "cardId": card.get("id"),
        "success": True,
        "url": image.url,
        "imageId": image.id,
        "cached": False,
        "cost": cost,
        "optimizedPrompt": prompt,
    }


def _render_card(app, card: Dict[str, Any], style: str, start_at: float) -> Tuple[Optional[str], Optional[bytes], Optional[str], Optional[str]]:
    """Worker: optimize + render one card. Returns (prompt, bytes, mime, error).

    ``start_at`` is a ``time.monotonic()`` deadline fixed when the batch starts.
    """
    wait = start_at - time.monotonic()
    if wait > 0:
        time.sleep(wait)
    with app.app_context():
        try:
            prompt = gemini.optimize_prompt(card, style)
            image_bytes, mime_type = gemini.generate_image(prompt, style, reference_image_url=card.get("image") or None)
        except (AIConfigurationError, AIGenerationError) as exc:
            app.logger.warning("Batch generation failed for card %s: %s", card.get("id"), exc)
            return None, None, None, exc.message
    return prompt, image_bytes, mime_type, None


def batch_generate_images(user: User, cards: List[Dict[str, Any]], style: str) -> Dict[str, Any]:
    """Generate artwork for many cards with one upfront charge.

    Cached family variants are free. The remaining cards are charged in one
    atomic deduction, rendered in a thread pool with staggered starts, and
    written back in submission order. Failed cards are reported and not
    refunded.
    """
    to_generate, cached_results = partition_cards_for_generation(cards, style)

    if not to_generate:
        return {
            "success": True,
            "results": cached_results,
            "summary": {"total": len(cards), "generated": 0, "cached": len(cached_results), "failed": 0},
            "totalCost": 0,
        }

    total_cost = len(to_generate) * IMAGE_GENERATION_COMMUNITY
    balance = get_balance(user.id)
    if balance < total_cost:
        raise InsufficientTokensError(
            f"Generating {len(to_generate)} images costs {total_cost} tokens; balance is {balance}"
        )
    if not deduct_tokens(user.id, total_cost):
        raise InsufficientTokensError(f"Generating {len(to_generate)} images costs {total_cost} tokens")

    app = current_app._get_current_object()
    stagger = float(app.config.get("IMAGE_BATCH_STAGGER_SECONDS", 2))
    workers = max(1, min(int(app.config.get("IMAGE_BATCH_MAX_WORKERS", 4)), len(to_generate)))

    started = time.monotonic()
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(_render_card, app, card, style, started + index * stagger)
            for index, card in enumerate(to_generate)
        ]
        rendered = [future.result() for future in futures]

    generated_results: List[Dict[str, Any]] = []
    failed = 0
    for card, (prompt, image_bytes, mime_type, error) in zip(to_generate, rendered):
        if error is None:
            try:
                image = upload_and_save_image(user, image_bytes, mime_type, card, style, prompt, card_image_id(card))
            except StorageError as exc:
                db.session.rollback()
                error = exc.message
            else:
                generated_results.append(
                    {
                        "cardId": card.get("id"),
                        "success": True,
                        "url": image.url,
                        "imageId": image.id,
                        "cached": False,
                        "cost": IMAGE_GENERATION_COMMUNITY,
                    }
                )
                continue
        failed += 1
        generated_results.append({"cardId": card.get("id"), "success": False, "error": error})

    generated = len(to_generate) - failed
    record_transaction(
        user.id,
        -total_cost,
        f"Batch image generation: {generated} of {len(to_generate)} images ({style})",
    )
    current_app.logger.info(
        "Batch generation user_id=%s generated=%s cached=%s failed=%s cost=%s",
        user.id,
        generated,
        len(cached_results),
        failed,
        total_cost,
    )
    return {
        "success": True,
        "results": cached_results + generated_results,
        "summary": {
            "total": len(cards),
            "generated": generated,
            "cached": len(cached_results),
            "failed": failed,
        },
        "totalCost": total_cost,
    }
