"""HTTP routes. Everything hangs off the JSON ``api`` blueprint."""

from .base import api
from . import ai, auth, decks, tokens, user_decks  # noqa: F401  (register routes)

__all__ = ["api"]
