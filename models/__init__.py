"""SQLAlchemy models package for Cardsmith.
Re-exports the shared `db` instance to avoid import loops and provides
convenient names for the model classes.

Usage:
    from models import db, User, UserDeck, PublishedDeck
"""
from __future__ import annotations

from extensions import db  # shared SQLAlchemy() instance

# Import models only after db exists to avoid circular imports
from .user import User, AuditLog  # type: ignore F401
from .deck import UserDeck, PublishedDeck, DeckLike  # type: ignore F401
from .community_image import CommunityImage  # type: ignore F401
from .transaction import Transaction  # type: ignore F401

__all__ = [
    "db",
    "User",
    "AuditLog",
    "UserDeck",
    "PublishedDeck",
    "DeckLike",
    "CommunityImage",
    "Transaction",
]
