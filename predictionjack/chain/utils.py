"""Shared utilities: card ids, base-unit formatting, address helpers."""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

SUITS = ("Hearts", "Diamonds", "Clubs", "Spades")
RANKS = ("", "A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K")


# ── Cards ────────────────────────────────────────────────────────────

def card_rank_number(card_id: int) -> int:
    """Rank 1-13 for a card id (13 cards per suit, 0 maps to King)."""
    return card_id % 13 or 13


def card_value(card_id: int) -> int:
    """Blackjack value: ace 11, face cards 10."""
    rank = card_rank_number(card_id)
    if rank == 1:
        return 11
    return 10 if rank > 10 else rank


def card_label(card_id: int) -> tuple[str, str]:
    """Return ``(rank, suit)`` labels for a card id."""
    suit_idx = card_id // 13
    suit = SUITS[suit_idx] if 0 <= suit_idx < len(SUITS) else "Spades"
    return RANKS[card_rank_number(card_id)], suit


def card_id_from_display(rank: str, suit: str) -> int:
    """Inverse of ``card_label``. Raises ValueError on unknown labels."""
    try:
        rank_num = RANKS.index(rank, 1)
        suit_idx = SUITS.index(suit)
    except ValueError:
        raise ValueError(f"Unknown card {rank!r} of {suit!r}") from None
    return suit_idx * 13 + rank_num % 13


# ── Units ────────────────────────────────────────────────────────────

def format_units(amount: int, decimals: int = 18, places: Optional[int] = None) -> str:
    """
    Format a base-unit integer as a decimal string.

    With ``places`` set the value is truncated (never rounded up) to that
    many fractional digits.
    """
    value = Decimal(amount).scaleb(-decimals)
    if places is not None:
        value = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
        return f"{value:.{places}f}"
    return format(value.normalize(), "f")


def parse_units(text: str | int | Decimal, decimals: int = 18) -> int:
    """Parse a decimal amount into base units. Extra precision is truncated."""
    try:
        value = Decimal(str(text))
    except InvalidOperation:
        raise ValueError(f"Not a decimal amount: {text!r}") from None
    scaled = value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def format_ether(amount: int, places: Optional[int] = None) -> str:
    return format_units(amount, 18, places)


# ── Misc ─────────────────────────────────────────────────────────────

def short_address(address: str) -> str:
    if not address or len(address) < 10:
        return address or ""
    return f"{address[:6]}...{address[-4:]}"


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def as_int(val: Any) -> Optional[int]:
    """Coerce a view result to int; ``None`` stays unknown."""
    if val is None:
        return None
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, int):
        return val
    if isinstance(val, (bytes, bytearray)):
        return int.from_bytes(val, "big")
    return int(val)


def explorer_tx_url(tx_hash: str, chain_id: int = 8453) -> str:
    """Block explorer link for a transaction hash."""
    if chain_id == 8453:
        return f"https://basescan.org/tx/{tx_hash}"
    return f"https://sepolia.basescan.org/tx/{tx_hash}"
