"""Semantic search over the community image library.

Embeddings are stored as JSON float lists on original images only, so the
whole candidate matrix is loaded and ranked with numpy cosine similarity.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
from flask import current_app

from models import CommunityImage
from services import gemini
from services.image_variants import find_cached_variant
from shared.exceptions import ValidationError

__all__ = ["embedding_for_search", "search_similar_images", "validate_embedding"]

DEFAULT_LIMIT = 10
MAX_LIMIT = 50


def _card_has_content(card: Dict[str, Any]) -> bool:
    return bool(card.get("title") or card.get("description") or card.get("subtitle") or card.get("traits"))


def validate_embedding(embedding: Any) -> List[float]:
    expected = int(current_app.config.get("EMBEDDING_DIMENSIONS", 3072))
    if not isinstance(embedding, list) or len(embedding) != expected:
        raise ValidationError(f"Invalid embedding (must be {expected}-dimensional vector)")
    try:
        return [float(v) for v in embedding]
    except (TypeError, ValueError) as exc:
        raise ValidationError("Embedding values must be numbers") from exc


def embedding_for_search(
    card: Optional[Dict[str, Any]] = None,
    deck_description: Optional[str] = None,
    embedding: Optional[List[float]] = None,
) -> Optional[List[float]]:
    """Pick the query vector: explicit embedding, then deck description, then card content.

    An empty card yields None, which makes the search return recent images.
    """
    if isinstance(embedding, list) and embedding:
        return validate_embedding(embedding)
    if deck_description and deck_description.strip():
        return validate_embedding(gemini.generate_embedding(deck_description))
    if card is None:
        raise ValidationError("Card or deck description must be provided")
    if not _card_has_content(card):
        return None
    return validate_embedding(gemini.generate_embedding(gemini.card_prompt_source(card)))


def _result(image: CommunityImage, similarity: Optional[float]) -> Dict[str, Any]:
    data = image.to_dict()
    data["similarity"] = similarity
    return data


def _with_preferred_style(image: CommunityImage, similarity: Optional[float], style: Optional[str]) -> Dict[str, Any]:
    data = _result(image, similarity)
    if style and image.style != style:
        variant = find_cached_variant(image.id, style)
        if variant is not None:
            data.update({"id": variant.image_id, "url": variant.url, "style": style, "source_image_id": image.id})
    return data


def search_similar_images(
    query_embedding: Optional[List[float]],
    preferred_style: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
) -> List[Dict[str, Any]]:
    """Rank original images by cosine similarity to ``query_embedding``."""
    limit = max(1, min(int(limit or DEFAULT_LIMIT), MAX_LIMIT))
    originals = CommunityImage.query.filter(CommunityImage.source_image_id.is_(None))

    if query_embedding is None:
        recent = originals.order_by(CommunityImage.created_at.desc()).limit(limit).all()
        return [_with_preferred_style(img, None, preferred_style) for img in recent]

    expected = len(query_embedding)
    candidates = [
        img
        for img in originals.filter(CommunityImage.embedding.isnot(None)).all()
        if isinstance(img.embedding, list) and len(img.embedding) == expected
    ]
    if not candidates:
        return []

    matrix = np.asarray([img.embedding for img in candidates], dtype=np.float32)
    query = np.asarray(query_embedding, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    norms[norms == 0] = 1.0
    scores = (matrix @ query) / norms

    order = np.argsort(-scores, kind="stable")[:limit]
    return [_with_preferred_style(candidates[i], float(scores[i]), preferred_style) for i in order]
