"""
Pydantic models for contract read views.

Every snapshot is frozen: a poll replaces it wholesale, and local
adjustments go through optimistic overlays, never mutation. All financial
quantities are base-unit ``int`` (arbitrary precision); ``None`` means the
value is unknown, never zero.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .utils import ZERO_ADDRESS, card_label, card_value


class GameState(IntEnum):
    """Hand state enum, in contract order."""
    INACTIVE = 0
    DEALING = 1
    ACTIVE = 2
    HITTING = 3
    STANDING = 4
    BUSTED = 5
    FINISHED = 6

    @property
    def label(self) -> str:
        return self.name.capitalize()


class MarketResult(IntEnum):
    PENDING = 0
    WIN = 1
    LOSE = 2
    PUSH = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)


class CardDisplay(_Snapshot):
    """A decoded card, as the display view reports it."""
    rank: str
    suit: str
    value: int

    @classmethod
    def from_id(cls, card_id: int) -> "CardDisplay":
        rank, suit = card_label(card_id)
        return cls(rank=rank, suit=suit, value=card_value(card_id))


class GameSnapshot(_Snapshot):
    """
    Point-in-time view of one game.

    The ``can_*`` flags, ``status`` and ``trading_period_ends`` only arrive
    through the per-account display view; a snapshot built from the
    per-game info view leaves them ``None``.
    """
    game_id: int = 0
    player: str = ZERO_ADDRESS
    state: GameState = GameState.INACTIVE
    status: str = ""
    started_at: int = 0
    last_action_at: int = 0
    trading_period_ends: Optional[int] = None
    player_total: int = Field(default=0, ge=0, le=31)
    dealer_total: int = Field(default=0, ge=0, le=31)
    player_cards: tuple[int, ...] = ()
    dealer_cards: tuple[int, ...] = ()
    market_created: bool = False
    can_hit: Optional[bool] = None
    can_stand: Optional[bool] = None
    can_start_new: Optional[bool] = None
    can_cancel_stuck: Optional[bool] = None
    block_number: Optional[int] = None

    @property
    def has_game(self) -> bool:
        return self.game_id > 0

    @property
    def player_hand(self) -> list[CardDisplay]:
        return [CardDisplay.from_id(c) for c in self.player_cards]

    @property
    def dealer_hand(self) -> list[CardDisplay]:
        return [CardDisplay.from_id(c) for c in self.dealer_cards]


class MarketSnapshot(_Snapshot):
    """Prediction market for one game, scoped to a viewer for the user_* fields."""
    game_id: int
    yes_shares_total: int = 0
    no_shares_total: int = 0
    yes_deposits: int = 0
    no_deposits: int = 0
    total_deposits: int = 0
    yes_price: int = 0  # basis points
    no_price: int = 0  # basis points
    trading_active: bool = False
    resolved: bool = False
    result: MarketResult = MarketResult.PENDING
    user_yes_shares: int = 0
    user_no_shares: int = 0
    user_claimable: int = 0
    volume: int = 0
    status: int = 0
    block_number: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _resolved_closes_trading(cls, data: Any) -> Any:
        # A resolved market never trades, whatever the view reports.
        if isinstance(data, dict) and data.get("resolved"):
            data = {**data, "trading_active": False}
        return data

    @property
    def exists(self) -> bool:
        return self.yes_price + self.no_price > 0


class ClaimableMarket(_Snapshot):
    game_id: int
    claimable_amount: int
    user_yes_shares: int = 0
    user_no_shares: int = 0
    result: MarketResult = MarketResult.PENDING
    yes_price: int = 0
    no_price: int = 0


class ClaimableListing(_Snapshot):
    markets: tuple[ClaimableMarket, ...] = ()
    total_claimable: int = 0
    block_number: Optional[int] = None


class ActiveGamesPage(_Snapshot):
    game_ids: tuple[int, ...] = ()
    total: int = 0
    has_more: bool = False
    block_number: Optional[int] = None


class PlayerStats(_Snapshot):
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    pushes: int = 0
    busts: int = 0
    win_rate: int = 0


class FeeSchedule(_Snapshot):
    """Fee constants in wei; each is ``None`` when its read failed."""
    start_game_fee: Optional[int] = None
    wrap_fee: Optional[int] = None
    swap_fee: Optional[int] = None
    breed_fee: Optional[int] = None
    unhatch_fee: Optional[int] = None


class AccountBalances(_Snapshot):
    """Native + token balances and token allowances for one account."""
    owner: str
    native_balance: Optional[int] = None
    token_balance: Optional[int] = None
    token_decimals: Optional[int] = None
    allowances: dict[str, Optional[int]] = Field(default_factory=dict)
    block_number: Optional[int] = None

    def allowance_for(self, spender: str) -> Optional[int]:
        for key, value in self.allowances.items():
            if key.lower() == spender.lower():
                return value
        return None


class OwnedNfts(_Snapshot):
    owner: str
    token_ids: frozenset[int] = frozenset()
    block_number: Optional[int] = None


class PoolKey(_Snapshot):
    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: str

    def as_tuple(self) -> tuple:
        return (self.currency0, self.currency1, self.fee, self.tick_spacing, self.hooks)


class Receipt(_Snapshot):
    tx_hash: str
    status: int
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class CallsStatus(_Snapshot):
    """EIP-5792 batch status, normalised to pending / success / failure."""
    batch_id: str
    status: str
    receipts: tuple[Receipt, ...] = ()
