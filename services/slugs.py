"""Slug helpers for share URLs, published deck routes and export filenames."""

from __future__ import annotations

import hashlib
import re
from datetime import date
from typing import Optional

# Separators; ampersand and plus are dropped before this runs.
_PUNCTUATION_RE = re.compile(r"[\s_.,:;!?()\[\]{}\"'`~@#$%^*=|\\/<>]")
_DASHES_RE = re.compile("[\u2013\u2014\u2015\u2212]")
_CURLY_QUOTES_RE = re.compile("[\u201C\u201D\u2018\u2019]")
_EMOJI_MODIFIERS_RE = re.compile("[\uFE0F\u200D]")
_EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F64F"
    "\U0001F300-\U0001F5FF"
    "\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF]"
)
_MULTI_HYPHEN_RE = re.compile(r"-+")
_FILENAME_UNSAFE_RE = re.compile(r"[<>:\"/\\|?*]")
_ASCII_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def create_slug(text: str) -> str:
    """URL slug that keeps international letters.

    >>> create_slug("Heroes & Dragons 🐉")
    'heroes-dragons'
    >>> create_slug("Café München")
    'café-münchen'
    """
    slug = (text or "").lower().strip()
    slug = slug.replace("&", "").replace("+", "")
    slug = _PUNCTUATION_RE.sub("-", slug)
    slug = _DASHES_RE.sub("-", slug)
    slug = _CURLY_QUOTES_RE.sub("", slug)
    slug = slug.replace("\u2026", "")
    slug = _EMOJI_MODIFIERS_RE.sub("", slug)
    slug = _EMOJI_RE.sub("", slug)
    slug = _MULTI_HYPHEN_RE.sub("-", slug)
    return slug.strip("-")


def create_filename_slug(text: str, max_length: int = 50) -> str:
    slug = _FILENAME_UNSAFE_RE.sub("-", create_slug(text))[:max_length]
    if slug.endswith("."):
        slug = slug[:-1]
    return slug or "unnamed"


def create_deck_filename(
    title: str,
    extension: str,
    include_date: bool = True,
    today: Optional[date] = None,
) -> str:
    base = create_filename_slug(title)
    stamp = f"-{(today or date.today()).isoformat()}" if include_date else ""
    ext = extension if extension.startswith(".") else f".{extension}"
    return f"{base}{stamp}{ext}"


def user_slug_key(user_id: int | str) -> str:
    """Stable hex key per user, used to keep published slugs apart."""
    return hashlib.sha256(f"user:{user_id}".encode("utf-8")).hexdigest()


def publish_slug(title: str, user_key: str) -> str:
    """ASCII-only slug for published decks: ``<title>-<first 8 chars of user key>``."""
    base = _ASCII_NON_ALNUM_RE.sub("-", (title or "").lower()).strip("-")
    return f"{base}-{str(user_key)[:8]}"
