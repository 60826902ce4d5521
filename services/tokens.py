"""Token (credit) economy: balances, atomic deductions, ledger rows and deck likes.

100 tokens = 1 NOK. A user's balance lives on ``users.credits``; every
movement also writes a ``transactions`` row so the history can be audited.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import DeckLike, PublishedDeck, Transaction, User
from models.user import NEW_USER_WELCOME_BONUS

__all__ = [
    "IMAGE_GENERATION_COMMUNITY",
    "DECK_GENERATION",
    "IMAGE_GENERATION_PRIVATE",
    "CLOUD_STORAGE_MONTHLY",
    "LIKE_COST",
    "NEW_USER_WELCOME_BONUS",
    "LikeResult",
    "format_token_cost",
    "format_token_balance",
    "get_balance",
    "deduct_tokens",
    "add_tokens",
    "record_transaction",
    "list_transactions",
    "process_deck_like",
    "process_deck_unlike",
    "has_user_liked_deck",
]

IMAGE_GENERATION_COMMUNITY = 100
DECK_GENERATION = 0
IMAGE_GENERATION_PRIVATE = 240
CLOUD_STORAGE_MONTHLY = 50

LIKE_COST = 10
LIKE_REMIX_SHARE = 5


@dataclass
class LikeResult:
    success: bool
    error: Optional[str] = None
    tokens_to_creator: int = 0
    tokens_to_parent: int = 0
    is_remix: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def format_token_cost(tokens: int) -> str:
    nok = f"{tokens * 0.01:.2f}"
    if nok.endswith(".00"):
        nok = nok[:-3]
    return f"{tokens} tokens ({nok} NOK)"


def format_token_balance(balance: int) -> str:
    return f"{balance:,} tokens"


def get_balance(user_id: int) -> int:
    credits = db.session.query(User.credits).filter(User.id == user_id).scalar()
    return int(credits or 0)


def _deduct(user_id: int, amount: int) -> bool:
    result = db.session.execute(
        update(User)
        .where(User.id == user_id, User.credits >= amount)
        .values(credits=User.credits - amount)
    )
    return result.rowcount == 1


def _credit(user_id: int, amount: int) -> None:
    db.session.execute(update(User).where(User.id == user_id).values(credits=User.credits + amount))


def deduct_tokens(user_id: int, amount: int) -> bool:
    """Atomically take ``amount`` tokens; False (and no change) when the balance is short."""
    if amount <= 0:
        return True
    if not _deduct(user_id, amount):
        db.session.rollback()
        return False
    db.session.commit()
    return True


def add_tokens(user_id: int, amount: int) -> None:
    if amount <= 0:
        return
    _credit(user_id, amount)
    db.session.commit()


def record_transaction(
    user_id: int,
    credits_delta: int,
    description: str,
    *,
    type: str = Transaction.TYPE_USAGE,
    status: str = Transaction.STATUS_COMPLETED,
    commit: bool = True,
    **extra: Any,
) -> Optional[Transaction]:
    """Write a ledger row. Failures are logged and swallowed; balances are already settled."""
    try:
        row = Transaction(
            user_id=user_id,
            type=type,
            credits_delta=credits_delta,
            description=description[:255] if description else None,
            status=status,
            **extra,
        )
        db.session.add(row)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return row
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to record transaction user_id=%s delta=%s", user_id, credits_delta, exc_info=True
        )
        return None


def list_transactions(user_id: int, limit: int = 50) -> List[Transaction]:
    limit = max(1, min(int(limit or 50), 200))
    return (
        Transaction.query.filter_by(user_id=user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------

def has_user_liked_deck(user_id: int, deck_id: str) -> bool:
    return DeckLike.query.filter_by(user_id=user_id, deck_id=deck_id).first() is not None


def process_deck_like(user_id: int, deck_id: str) -> LikeResult:
    """Spend ``LIKE_COST`` tokens to like a deck and pay its creator(s).

    Original decks send the whole amount to their creator. Remixes split it
    between the remixer and the creator of the deck they were remixed from.
    """
    deck = db.session.get(PublishedDeck, deck_id)
    if deck is None:
        return LikeResult(False, "Deck not found")
    if deck.user_id == user_id:
        return LikeResult(False, "You cannot like your own deck")
    if has_user_liked_deck(user_id, deck_id):
        return LikeResult(False, "You have already liked this deck")
    if get_balance(user_id) < LIKE_COST:
        return LikeResult(False, "Insufficient tokens")

    parent = db.session.get(PublishedDeck, deck.remix_of) if deck.remix_of else None
    is_remix = deck.remix_of is not None
    if parent is not None and parent.user_id is not None:
        to_creator, to_parent = LIKE_REMIX_SHARE, LIKE_COST - LIKE_REMIX_SHARE
    else:
        to_creator, to_parent = LIKE_COST, 0

    try:
        if not _deduct(user_id, LIKE_COST):
            db.session.rollback()
            return LikeResult(False, "Insufficient tokens")
        if deck.user_id is not None:
            _credit(deck.user_id, to_creator)
        if to_parent:
            _credit(parent.user_id, to_parent)

        db.session.add(DeckLike(user_id=user_id, deck_id=deck_id, tokens_spent=LIKE_COST))
        db.session.execute(
            update(PublishedDeck)
            .where(PublishedDeck.id == deck_id)
            .values(like_count=PublishedDeck.like_count + 1)
        )
        db.session.add(
            Transaction(
                user_id=user_id,
                type=Transaction.TYPE_LIKE,
                credits_delta=-LIKE_COST,
                description=f"Liked deck: {deck.title}"[:255],
            )
        )
        if deck.user_id is not None:
            db.session.add(
                Transaction(
                    user_id=deck.user_id,
                    type=Transaction.TYPE_LIKE,
                    credits_delta=to_creator,
                    description=f"Like received: {deck.title}"[:255],
                )
            )
        if to_parent:
            db.session.add(
                Transaction(
                    user_id=parent.user_id,
                    type=Transaction.TYPE_LIKE,
                    credits_delta=to_parent,
                    description=f"Remix like received: {deck.title}"[:255],
                )
            )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return LikeResult(False, "You have already liked this deck")

    return LikeResult(
        True,
        tokens_to_creator=to_creator if deck.user_id is not None else 0,
        tokens_to_parent=to_parent,
        is_remix=is_remix,
    )


def process_deck_unlike(user_id: int, deck_id: str) -> LikeResult:
    """Remove a like. Tokens are not refunded."""
    like = DeckLike.query.filter_by(user_id=user_id, deck_id=deck_id).first()
    if like is None:
        return LikeResult(False, "You have not liked this deck")
    db.session.delete(like)
    db.session.execute(
        update(PublishedDeck)
        .where(PublishedDeck.id == deck_id, PublishedDeck.like_count > 0)
        .values(like_count=PublishedDeck.like_count - 1)
    )
    db.session.commit()
    return LikeResult(True)
