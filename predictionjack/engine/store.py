"""
Snapshot store: one authoritative value per key plus optimistic overlays.

Only polls (scheduled or forced) call ``commit``. The transaction
orchestrator gets an ``OverlayLayer`` handle, which can add and remove
overlays but cannot touch the authoritative copy.

An overlay patch is always applied to the authoritative value, never to a
previous view, so re-applying a patch cannot double-count. An overlay is
dropped once a committed value reflects it, or comes from a block at or
after the confirming block.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Hashable, Optional, Protocol

from ..chain.models import ClaimableListing, MarketSnapshot, OwnedNfts

logger = logging.getLogger(__name__)


# ── Keys ─────────────────────────────────────────────────────────────

def game_key(account_or_id: str | int) -> tuple:
    """Game slot: the account's current game, or a game viewed by id."""
    return ("game", account_or_id)


def market_key(game_id: int) -> tuple:
    return ("market", game_id)


def claimables_key(account: str) -> tuple:
    return ("claimables", account)


def balances_key(account: str) -> tuple:
    return ("balances", account)


def nfts_key(account: str) -> tuple:
    return ("nfts", account)


FEES_KEY = ("fees",)


class Freshness(str, Enum):
    LOADING = "loading"
    FRESH = "fresh"
    STALE = "stale"
    DISCONNECTED = "disconnected"


# ── Patches ──────────────────────────────────────────────────────────

class Patch(Protocol):
    def apply(self, value: Any) -> Any: ...
    def is_reflected_in(self, value: Any) -> bool: ...


@dataclass(frozen=True)
class RemoveOwnedTokens:
    """Token ids that left the wallet (wrapped, sold, burned)."""
    token_ids: frozenset[int]

    def apply(self, value: OwnedNfts) -> OwnedNfts:
        return value.model_copy(update={"token_ids": value.token_ids - self.token_ids})

    def is_reflected_in(self, value: OwnedNfts) -> bool:
        return not (value.token_ids & self.token_ids)


@dataclass(frozen=True)
class SwapOwnedTokens:
    given: int
    received: int

    def apply(self, value: OwnedNfts) -> OwnedNfts:
        ids = (value.token_ids - {self.given}) | {self.received}
        return value.model_copy(update={"token_ids": ids})

    def is_reflected_in(self, value: OwnedNfts) -> bool:
        return self.given not in value.token_ids and self.received in value.token_ids


@dataclass(frozen=True)
class ClearClaimable:
    """A claim went through: nothing left to claim on ``game_id``."""
    game_id: int

    def apply(self, value: Any) -> Any:
        if isinstance(value, ClaimableListing):
            kept = tuple(m for m in value.markets if m.game_id != self.game_id)
            removed = sum(m.claimable_amount for m in value.markets if m.game_id == self.game_id)
            return value.model_copy(update={
                "markets": kept,
                "total_claimable": max(0, value.total_claimable - removed),
            })
        if isinstance(value, MarketSnapshot) and value.game_id == self.game_id:
            return value.model_copy(update={"user_claimable": 0})
        return value

    def is_reflected_in(self, value: Any) -> bool:
        if isinstance(value, ClaimableListing):
            return all(m.game_id != self.game_id for m in value.markets)
        if isinstance(value, MarketSnapshot):
            return value.game_id != self.game_id or value.user_claimable == 0
        return True


# ── Entries ──────────────────────────────────────────────────────────

@dataclass
class Overlay:
    intent_id: str
    patch: Patch
    min_block: Optional[int] = None


@dataclass
class Entry:
    value: Any = None
    block_number: Optional[int] = None
    updated_at: Optional[float] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    overlays: list[Overlay] = field(default_factory=list)


Listener = Callable[[Hashable, Entry], None]


class SnapshotStore:

    def __init__(self, stale_after: int = 1, disconnect_after: int = 5):
        if disconnect_after < stale_after:
            raise ValueError("disconnect_after must be >= stale_after")
        self.stale_after = stale_after
        self.disconnect_after = disconnect_after
        self._entries: dict[Hashable, Entry] = {}
        self._listeners: list[Listener] = []
        self.overlays = OverlayLayer(self)

    def _entry(self, key: Hashable) -> Entry:
        return self._entries.setdefault(key, Entry())

    def keys(self) -> list[Hashable]:
        return list(self._entries)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self, key: Hashable) -> None:
        entry = self._entries[key]
        for listener in list(self._listeners):
            try:
                listener(key, entry)
            except Exception as e:
                logger.error("Store listener failed for %s: %s", key, e)

    # ── Writes (pollers only) ────────────────────────────────────────

    def commit(self, key: Hashable, value: Any, block_number: Optional[int] = None) -> bool:
        """
        Replace the authoritative value for ``key``.

        Returns False (and keeps the current value) when ``value`` was read
        at an older block than the one already held.
        """
        entry = self._entry(key)
        if block_number is None:
            block_number = getattr(value, "block_number", None)
        if (
            block_number is not None
            and entry.block_number is not None
            and block_number < entry.block_number
        ):
            logger.debug("Ignoring %s from block %d (have %d)", key, block_number, entry.block_number)
            return False

        entry.value = value
        entry.block_number = block_number
        entry.updated_at = time.time()
        entry.consecutive_failures = 0
        entry.last_error = None

        kept = []
        for overlay in entry.overlays:
            superseded = (
                overlay.min_block is not None
                and block_number is not None
                and block_number >= overlay.min_block
            )
            if superseded or overlay.patch.is_reflected_in(value):
                logger.debug("Overlay %s on %s superseded", overlay.intent_id, key)
                continue
            kept.append(overlay)
        entry.overlays = kept

        self._notify(key)
        return True

    def record_failure(self, key: Hashable, error: BaseException | str) -> Freshness:
        entry = self._entry(key)
        entry.consecutive_failures += 1
        entry.last_error = str(error)
        freshness = self.freshness(key)
        if entry.consecutive_failures == self.disconnect_after:
            logger.warning("%s disconnected after %d failed reads: %s", key, entry.consecutive_failures, error)
        self._notify(key)
        return freshness

    # ── Reads ────────────────────────────────────────────────────────

    def freshness(self, key: Hashable) -> Freshness:
        entry = self._entries.get(key)
        if entry is None:
            return Freshness.LOADING
        if entry.consecutive_failures >= self.disconnect_after:
            return Freshness.DISCONNECTED
        if entry.consecutive_failures >= self.stale_after:
            return Freshness.STALE
        if entry.value is None:
            return Freshness.LOADING
        return Freshness.FRESH

    def authoritative(self, key: Hashable) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def view(self, key: Hashable) -> Any:
        """Authoritative value with every live overlay applied in order."""
        entry = self._entries.get(key)
        if entry is None or entry.value is None:
            return None
        value = entry.value
        for overlay in entry.overlays:
            value = overlay.patch.apply(value)
        return value

    def entry(self, key: Hashable) -> Optional[Entry]:
        return self._entries.get(key)

    def drop(self, key: Hashable) -> bool:
        """Forget ``key`` and its overlays once nothing polls it any more."""
        return self._entries.pop(key, None) is not None


class OverlayLayer:
    """The only store surface the transaction orchestrator may use."""

    def __init__(self, store: SnapshotStore):
        self._store = store

    def apply(self, key: Hashable, intent_id: str, patch: Patch, min_block: Optional[int] = None) -> bool:
        """
        Add (or replace) the overlay for ``intent_id`` on ``key``.

        Returns False when the authoritative value already reflects it or
        was read at or after ``min_block``.
        """
        entry = self._store._entry(key)
        if entry.value is not None and patch.is_reflected_in(entry.value):
            return False
        if min_block is not None and entry.block_number is not None and entry.block_number >= min_block:
            return False
        entry.overlays = [o for o in entry.overlays if o.intent_id != intent_id]
        entry.overlays.append(Overlay(intent_id, patch, min_block))
        self._store._notify(key)
        return True

    def discard(self, key: Hashable, intent_id: str) -> bool:
        entry = self._store.entry(key)
        if entry is None:
            return False
        before = len(entry.overlays)
        entry.overlays = [o for o in entry.overlays if o.intent_id != intent_id]
        if len(entry.overlays) != before:
            self._store._notify(key)
            return True
        return False

    def active(self, key: Hashable) -> list[Overlay]:
        entry = self._store.entry(key)
        return list(entry.overlays) if entry else []
