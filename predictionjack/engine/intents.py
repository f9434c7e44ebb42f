"""
User intents: what the player asked for, as calls plus bookkeeping.

An ``Intent`` is immutable and hashable; two identical intents dedupe in the
orchestrator while the first is still in flight.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Optional

from ..chain import calls
from ..chain.calls import ContractCall
from .store import (
    ClearClaimable,
    Patch,
    RemoveOwnedTokens,
    SwapOwnedTokens,
    balances_key,
    claimables_key,
    game_key,
    market_key,
    nfts_key,
)


class IntentKind(str, Enum):
    APPROVE = "approve"
    BUY = "buy"
    SELL = "sell"
    START_GAME = "start_game"
    HIT = "hit"
    STAND = "stand"
    CANCEL_STUCK = "cancel_stuck"
    CLAIM = "claim"
    WRAP_OP = "wrap_op"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    calls: tuple[ContractCall, ...]
    description: str = ""
    refresh_keys: tuple[Hashable, ...] = ()
    patch: Optional[Patch] = None
    patch_key: Optional[Hashable] = None

    @property
    def dedupe_key(self) -> tuple:
        return (self.kind, self.calls)

    @property
    def call(self) -> ContractCall:
        if len(self.calls) != 1:
            raise ValueError(f"{self.kind.value} intent has {len(self.calls)} calls")
        return self.calls[0]


# ── Game ─────────────────────────────────────────────────────────────

def start_game(account: str, fee: int) -> Intent:
    return Intent(
        IntentKind.START_GAME, (calls.start_game(fee),), "Start game",
        refresh_keys=(game_key(account), balances_key(account)),
    )


def start_game_with_tokens(account: str, amount: int) -> Intent:
    return Intent(
        IntentKind.START_GAME, (calls.start_game_with_tokens(amount),), "Start game (tokens)",
        refresh_keys=(game_key(account), balances_key(account)),
    )


def hit(account: str) -> Intent:
    return Intent(IntentKind.HIT, (calls.hit(),), "Hit", refresh_keys=(game_key(account),))


def stand(account: str) -> Intent:
    return Intent(IntentKind.STAND, (calls.stand(),), "Stand", refresh_keys=(game_key(account),))


def cancel_stuck(account: str) -> Intent:
    return Intent(
        IntentKind.CANCEL_STUCK, (calls.cancel_stuck_game(),), "Cancel stuck game",
        refresh_keys=(game_key(account), balances_key(account)),
    )


# ── Market ───────────────────────────────────────────────────────────

def buy_shares(account: str, game_id: int, tokens_in: int, is_yes: bool) -> Intent:
    side = "YES" if is_yes else "NO"
    return Intent(
        IntentKind.BUY, (calls.buy_shares(game_id, tokens_in, is_yes),), f"Buy {side} #{game_id}",
        refresh_keys=(market_key(game_id), balances_key(account)),
    )


def sell_shares(account: str, game_id: int, shares_in: int, is_yes: bool) -> Intent:
    side = "YES" if is_yes else "NO"
    return Intent(
        IntentKind.SELL, (calls.sell_shares(game_id, shares_in, is_yes),), f"Sell {side} #{game_id}",
        refresh_keys=(market_key(game_id), balances_key(account)),
    )


def buy_with_eth(account: str, game_id: int, is_yes: bool, value: int) -> Intent:
    side = "YES" if is_yes else "NO"
    return Intent(
        IntentKind.BUY, (calls.buy_with_eth(game_id, is_yes, value),), f"Buy {side} #{game_id} with ETH",
        refresh_keys=(market_key(game_id), balances_key(account)),
    )


def claim(account: str, game_id: int) -> Intent:
    return Intent(
        IntentKind.CLAIM, (calls.claim_winnings(game_id),), f"Claim #{game_id}",
        refresh_keys=(claimables_key(account), market_key(game_id), balances_key(account)),
        patch=ClearClaimable(game_id),
        patch_key=claimables_key(account),
    )


def approve(account: str, spender: str, amount: int) -> Intent:
    return Intent(
        IntentKind.APPROVE, (calls.approve(spender, amount),), "Approve tokens",
        refresh_keys=(balances_key(account),),
    )


# ── NFTs ─────────────────────────────────────────────────────────────

def wrap_nfts(account: str, nft: str, token_ids: list[int], fee: int) -> Intent:
    ids = tuple(sorted(token_ids))
    return Intent(
        IntentKind.WRAP_OP, (calls.wrap_nfts(nft, ids, fee),), f"Wrap {len(ids)} NFT(s)",
        refresh_keys=(nfts_key(account), balances_key(account)),
        patch=RemoveOwnedTokens(frozenset(ids)),
        patch_key=nfts_key(account),
    )


def unwrap_nfts(account: str, nft: str, count: int, fee: int) -> Intent:
    return Intent(
        IntentKind.WRAP_OP, (calls.unwrap_nfts(nft, count, fee),), f"Unwrap {count} NFT(s)",
        refresh_keys=(nfts_key(account), balances_key(account)),
    )


def swap_nft(account: str, nft: str, user_token_id: int, pool_token_id: int, fee: int) -> Intent:
    return Intent(
        IntentKind.WRAP_OP, (calls.swap_nft(nft, user_token_id, pool_token_id, fee),),
        f"Swap NFT #{user_token_id} for #{pool_token_id}",
        refresh_keys=(nfts_key(account), balances_key(account)),
        patch=SwapOwnedTokens(user_token_id, pool_token_id),
        patch_key=nfts_key(account),
    )


def approve_nfts(account: str, operator: str) -> Intent:
    return Intent(
        IntentKind.APPROVE, (calls.set_approval_for_all(operator),), "Approve NFTs",
        refresh_keys=(nfts_key(account),),
    )


def buy_nft(account: str, call: ContractCall, count: int) -> Intent:
    """``call`` comes from ``NftPurchaseQuote.to_call()``."""
    return Intent(
        IntentKind.WRAP_OP, (call,), f"Buy {count} NFT(s)",
        refresh_keys=(nfts_key(account), balances_key(account)),
    )
