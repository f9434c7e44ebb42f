"""
Write-call descriptors.

A ``ContractCall`` names a logical contract (a key of ``chain.contracts`` in
the config), a function and its arguments. The reader resolves the address
and encodes calldata; the wallet only ever sees ``{to, data, value}``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ContractCall:
    contract: str
    function: str
    args: tuple[Any, ...] = ()
    value: int = 0  # wei

    @property
    def label(self) -> str:
        return f"{self.contract}.{self.function}"


# ── Blackjack ────────────────────────────────────────────────────────

def start_game(fee: int) -> ContractCall:
    return ContractCall("blackjack", "startGame", value=fee)


def start_game_with_tokens(amount: int) -> ContractCall:
    return ContractCall("blackjack", "startGameWithTokens", (amount,))


def hit() -> ContractCall:
    return ContractCall("blackjack", "hit")


def stand() -> ContractCall:
    return ContractCall("blackjack", "stand")


def cancel_stuck_game() -> ContractCall:
    return ContractCall("blackjack", "cancelStuckGame")


# ── Prediction market ────────────────────────────────────────────────

def buy_shares(game_id: int, tokens_in: int, is_yes: bool) -> ContractCall:
    return ContractCall("prediction_hub", "buyShares", (game_id, tokens_in, is_yes))


def sell_shares(game_id: int, shares_in: int, is_yes: bool) -> ContractCall:
    return ContractCall("prediction_hub", "sellShares", (game_id, shares_in, is_yes))


def buy_with_eth(game_id: int, is_yes: bool, value: int) -> ContractCall:
    fn = "buyYesWithETH" if is_yes else "buyNoWithETH"
    return ContractCall("prediction_hub", fn, (game_id,), value=value)


def claim_winnings(game_id: int) -> ContractCall:
    return ContractCall("prediction_hub", "claimWinnings", (game_id,))


# ── Tokens / NFTs ────────────────────────────────────────────────────

def approve(spender: str, amount: int) -> ContractCall:
    return ContractCall("token", "approve", (spender, amount))


def set_approval_for_all(operator: str, approved: bool = True) -> ContractCall:
    return ContractCall("nft", "setApprovalForAll", (operator, approved))


def wrap_nfts(nft: str, token_ids: list[int] | tuple[int, ...], fee: int) -> ContractCall:
    return ContractCall("wrapper", "wrapNFTs", (nft, tuple(token_ids)), value=fee)


def unwrap_nfts(nft: str, count: int, fee: int) -> ContractCall:
    return ContractCall("wrapper", "unwrapNFTs", (nft, count), value=fee)


def swap_nft(nft: str, user_token_id: int, pool_token_id: int, fee: int) -> ContractCall:
    return ContractCall("wrapper", "swapNFT", (nft, user_token_id, pool_token_id), value=fee)


def buy_nft(count: int, min_tokens_out: int, value: int) -> ContractCall:
    return ContractCall("otc", "buyNFT", (count, min_tokens_out), value=value)
