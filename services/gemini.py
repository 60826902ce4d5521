"""Thin wrapper around the google-genai SDK.

All model names come from app config (``GEMINI_*_MODEL``) so they can be
swapped per environment. Callers get plain Python values back and
``AIGenerationError`` on any upstream failure.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import requests
from flask import current_app
from google import genai
from google.genai import types

from services.deck_schema import normalize_deck
from services.image_styles import style_prompt
from shared.exceptions import AIConfigurationError, AIGenerationError

__all__ = [
    "get_client",
    "optimize_prompt",
    "generate_image",
    "generate_embedding",
    "generate_deck",
    "card_prompt_source",
]

PROMPT_OPTIMIZATION_CONTEXT = (
    "Transform the card content into a focused visual description for portrait "
    "orientation artwork. Describe appearance, setting, mood and atmosphere. Drop game "
    "mechanics, numbers and any mention of cards. Reframe wording that could trip "
    "content filters. No text, numbers or writing visible in the image. Return only "
    "the prompt text."
)

IMAGE_GENERATION_CONTEXT = (
    "Generate artwork that uses the full canvas edge to edge with no borders, keeps the "
    "main subject centred in the upper two thirds, and contains no text, numbers or "
    "writing. Follow the art style exactly."
)

DECK_GENERATION_CONTEXT = (
    "You create decks of cards for any topic. Return JSON shaped as "
    '{"deck": {"meta": {"title", "description"}, "cards": [{"title", "subtitle", '
    '"description", "traits": [{"title", "description", "isPublic"}], "stats": '
    '[{"title", "value", "tracked", "isPublic", "description"}]}]}}. '
    "Use 1-4 terse traits per card with exactly one public, 0-4 stats that suit the "
    "theme, and never real people or brand names."
)

TEXT_TEMPERATURE = 0.3
IMAGE_TEMPERATURE = 0.7
DECK_TEMPERATURE = 0.1
REFERENCE_FETCH_TIMEOUT = 15


def get_client() -> genai.Client:
    api_key = current_app.config.get("GEMINI_API_KEY")
    if not api_key:
        raise AIConfigurationError("Server AI configuration missing")
    return genai.Client(api_key=api_key)


def _response_text(response: Any) -> str:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return ""
    content = getattr(candidates[0], "content", None)
    parts = (content.parts if content and content.parts else [])
    return "".join(part.text for part in parts if getattr(part, "text", None)).strip()


def card_prompt_source(card: Dict[str, Any]) -> str:
    """Flatten a card into plain text for prompting and embedding."""
    lines: List[str] = []
    for key in ("title", "subtitle", "description"):
        value = (card.get(key) or "").strip() if isinstance(card.get(key), str) else ""
        if value:
            lines.append(value)
    for trait in card.get("traits") or []:
        if isinstance(trait, dict) and trait.get("title"):
            lines.append(f"{trait.get('title')}: {trait.get('description', '')}".strip())
    return "\n".join(lines)


def optimize_prompt(card: Dict[str, Any], style: str, *, client: Optional[genai.Client] = None) -> str:
    client = client or get_client()
    request_text = f"Art style: {style}\n\n{card_prompt_source(card) or 'Untitled'}"
    try:
        response = client.models.generate_content(
            model=current_app.config["GEMINI_TEXT_MODEL"],
            contents=request_text,
            config=types.GenerateContentConfig(
                system_instruction=PROMPT_OPTIMIZATION_CONTEXT,
                temperature=TEXT_TEMPERATURE,
            ),
        )
    except Exception as exc:
        current_app.logger.exception("Prompt optimization failed")
        raise AIGenerationError(f"Prompt optimization failed: {exc}") from exc

    prompt = _response_text(response)
    if not prompt:
        raise AIGenerationError("Failed to optimize prompt - no response from Gemini")
    return prompt


def _reference_part(url: str) -> Optional[types.Part]:
    try:
        resp = requests.get(url, timeout=REFERENCE_FETCH_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        current_app.logger.warning("Failed to fetch reference image %s: %s", url, exc)
        return None
    mime = (resp.headers.get("content-type") or "image/png").split(";")[0]
    return types.Part.from_bytes(data=resp.content, mime_type=mime)


def generate_image(
    prompt: str,
    style: str,
    reference_image_url: Optional[str] = None,
    *,
    client: Optional[genai.Client] = None,
) -> Tuple[bytes, str]:
    """Render ``prompt`` in ``style``. Returns ``(image bytes, mime type)``."""
    client = client or get_client()
    instructions = f"{IMAGE_GENERATION_CONTEXT}\n\nArt style: {style_prompt(style)}\n\nVisual prompt: {prompt}"
    contents: List[Any] = [types.Part.from_text(text=instructions)]
    if reference_image_url:
        part = _reference_part(reference_image_url)
        if part is not None:
            contents.append(part)

    try:
        response = client.models.generate_content(
            model=current_app.config["GEMINI_IMAGE_MODEL"],
            contents=contents,
            config=types.GenerateContentConfig(temperature=IMAGE_TEMPERATURE),
        )
    except Exception as exc:
        current_app.logger.exception("Image generation request failed")
        raise AIGenerationError(f"Image generation failed: {exc}") from exc

    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    parts = (content.parts if content and content.parts else [])
    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            return inline.data, inline.mime_type or "image/png"

    if candidates and content is None:
        raise AIGenerationError(
            "Content filtered - try adjusting the prompt to avoid copyrighted characters or sensitive content"
        )
    if candidates:
        raise AIGenerationError("Generation completed but no image data returned - possibly content filtered")
    raise AIGenerationError("No image data received from Gemini - generation failed")


def generate_embedding(text: str, *, client: Optional[genai.Client] = None) -> List[float]:
    if not text or not text.strip():
        raise AIGenerationError("Cannot embed empty text")
    client = client or get_client()
    expected = int(current_app.config.get("EMBEDDING_DIMENSIONS", 3072))
    try:
        result = client.models.embed_content(
            model=current_app.config["GEMINI_EMBEDDING_MODEL"],
            contents=text,
            config=types.EmbedContentConfig(output_dimensionality=expected),
        )
    except Exception as exc:
        current_app.logger.exception("Embedding request failed")
        raise AIGenerationError(f"Failed to generate embedding: {exc}") from exc

    embeddings = getattr(result, "embeddings", None) or []
    values = list(embeddings[0].values or []) if embeddings else []
    if not values:
        raise AIGenerationError("No embedding values returned from Gemini")
    if len(values) != expected:
        current_app.logger.warning("Unexpected embedding dimension: %s (expected %s)", len(values), expected)
    return [float(v) for v in values]


def generate_deck(theme: str, card_count: int, *, client: Optional[genai.Client] = None) -> Dict[str, Any]:
    """Ask the text model for a whole deck and normalize the JSON it returns."""
    client = client or get_client()
    try:
        response = client.models.generate_content(
            model=current_app.config["GEMINI_TEXT_MODEL"],
            contents=f'Create a deck about "{theme}" with exactly {card_count} cards.',
            config=types.GenerateContentConfig(
                system_instruction=DECK_GENERATION_CONTEXT,
                temperature=DECK_TEMPERATURE,
                response_mime_type="application/json",
            ),
        )
    except Exception as exc:
        current_app.logger.exception("Deck generation request failed")
        raise AIGenerationError(f"Failed to generate deck: {exc}") from exc

    text = _response_text(response)
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        raise AIGenerationError("Deck generation returned invalid JSON") from exc

    raw_deck = parsed.get("deck", parsed) if isinstance(parsed, dict) else {}
    deck = normalize_deck(raw_deck)
    if not deck["cards"]:
        raise AIGenerationError("Deck generation returned no cards")
    if not deck["meta"]["title"]:
        deck["meta"]["title"] = theme
    return deck
