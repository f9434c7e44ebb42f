"""
Contract ABI fragments: only the functions the client calls.

Built with small helpers so each entry reads like its Solidity signature.
"""

from __future__ import annotations

from typing import Any

ABI = list[dict[str, Any]]


def _p(name: str, typ: str, components: list[dict] | None = None) -> dict:
    param: dict[str, Any] = {"name": name, "type": typ}
    if components is not None:
        param["components"] = components
    return param


def _fn(
    name: str,
    inputs: list[dict] | None = None,
    outputs: list[dict] | None = None,
    mutability: str = "view",
) -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs or [],
        "outputs": outputs or [],
        "stateMutability": mutability,
    }


def _uint(name: str = "") -> dict:
    return _p(name, "uint256")


_CARD = [_p("rank", "string"), _p("suit", "string"), _p("value", "uint8")]

_POOL_KEY = [
    _p("currency0", "address"),
    _p("currency1", "address"),
    _p("fee", "uint24"),
    _p("tickSpacing", "int24"),
    _p("hooks", "address"),
]

_QUOTE_PARAMS = [
    _p("poolKey", "tuple", _POOL_KEY),
    _p("zeroForOne", "bool"),
    _p("exactAmount", "uint128"),
    _p("hookData", "bytes"),
]


# ── Blackjack game ───────────────────────────────────────────────────

BLACKJACK_ABI: ABI = [
    _fn("startGame", mutability="payable"),
    _fn("startGameWithTokens", [_uint("tokenAmount")], mutability="nonpayable"),
    _fn("hit", mutability="nonpayable"),
    _fn("stand", mutability="nonpayable"),
    _fn("cancelStuckGame", mutability="nonpayable"),
    _fn("getGameDisplay", [_p("player", "address")], [_p("", "tuple", [
        _p("status", "string"),
        _p("playerCards", "tuple[]", _CARD),
        _p("playerTotal", "uint8"),
        _p("dealerCards", "tuple[]", _CARD),
        _p("dealerTotal", "uint8"),
        _p("canHit", "bool"),
        _p("canStand", "bool"),
        _p("canStartNew", "bool"),
        _p("canCancelStuck", "bool"),
        _p("canAdminResolve", "bool"),
        _uint("startedAt"),
        _uint("lastActionAt"),
        _uint("tradingPeriodEnds"),
        _uint("secondsUntilCanAct"),
        _uint("gameId"),
    ])]),
    _fn("getGameInfo", [_uint("gameId")], [_p("", "tuple", [
        _uint("gameId"),
        _p("player", "address"),
        _p("state", "uint8"),
        _uint("startedAt"),
        _uint("lastActionAt"),
        _p("playerTotal", "uint8"),
        _p("dealerTotal", "uint8"),
        _p("marketCreated", "bool"),
    ])]),
    _fn("getActiveGames", [_uint("startIndex"), _uint("count")],
        [_p("gameIds", "uint256[]"), _uint("totalActive"), _p("hasMore", "bool")]),
    _fn("getGameCounts", outputs=[_uint("activeCount"), _uint("inactiveCount")]),
    _fn("getStats", [_p("player", "address")], [
        _uint("gamesPlayed"), _uint("wins"), _uint("losses"),
        _uint("pushes"), _uint("busts"), _uint("winRate"),
    ]),
    _fn("getPlayerHand", [_p("player", "address")], [_p("", "uint8[]")]),
    _fn("getDealerHand", [_p("player", "address")], [_p("", "uint8[]")]),
    _fn("startGameFee", outputs=[_uint()]),
]


# ── Prediction market hub ────────────────────────────────────────────

PREDICTION_HUB_ABI: ABI = [
    _fn("buyShares", [_uint("gameId"), _uint("tokensIn"), _p("isYes", "bool")],
        mutability="nonpayable"),
    _fn("sellShares", [_uint("gameId"), _uint("sharesIn"), _p("isYes", "bool")],
        mutability="nonpayable"),
    _fn("buyYesWithETH", [_uint("gameId")], mutability="payable"),
    _fn("buyNoWithETH", [_uint("gameId")], mutability="payable"),
    _fn("claimWinnings", [_uint("gameId")], mutability="nonpayable"),
    _fn("getMarketDisplay", [_uint("gameId"), _p("user", "address")], [_p("", "tuple", [
        _uint("gameId"),
        _uint("yesSharesTotal"),
        _uint("noSharesTotal"),
        _uint("yesDeposits"),
        _uint("noDeposits"),
        _uint("totalDeposits"),
        _uint("yesPrice"),
        _uint("noPrice"),
        _p("tradingActive", "bool"),
        _p("resolved", "bool"),
        _p("result", "uint8"),
        _uint("userYesShares"),
        _uint("userNoShares"),
        _uint("userClaimable"),
        _uint("volume"),
        _p("status", "uint8"),
    ])]),
    _fn("getClaimableAmount", [_uint("gameId"), _p("user", "address")], [_uint()]),
    _fn("getUserClaimableMarkets", [_p("user", "address"), _uint("maxCount")], [
        _p("markets", "tuple[]", [
            _uint("gameId"),
            _uint("claimableAmount"),
            _uint("userYesShares"),
            _uint("userNoShares"),
            _p("result", "uint8"),
            _uint("yesPrice"),
            _uint("noPrice"),
        ]),
        _uint("totalClaimable"),
    ]),
]


# ── Tokens ───────────────────────────────────────────────────────────

ERC20_ABI: ABI = [
    _fn("balanceOf", [_p("owner", "address")], [_uint()]),
    _fn("allowance", [_p("owner", "address"), _p("spender", "address")], [_uint()]),
    _fn("decimals", outputs=[_p("", "uint8")]),
    _fn("approve", [_p("spender", "address"), _uint("amount")], [_p("", "bool")],
        mutability="nonpayable"),
]

NFT_ABI: ABI = [
    _fn("balanceOf", [_p("owner", "address")], [_uint()]),
    _fn("tokenOfOwnerByIndex", [_p("owner", "address"), _uint("index")], [_uint()]),
    _fn("isApprovedForAll", [_p("owner", "address"), _p("operator", "address")],
        [_p("", "bool")]),
    _fn("setApprovalForAll", [_p("operator", "address"), _p("approved", "bool")],
        mutability="nonpayable"),
    _fn("poolIdRaw", outputs=[_p("", "bytes32")]),
    _fn("hook", outputs=[_p("", "address")]),
    _fn("breedFee", outputs=[_uint()]),
    _fn("unhatchFee", outputs=[_uint()]),
]

WRAPPER_ABI: ABI = [
    _fn("getWrapFee", outputs=[_uint()]),
    _fn("getSwapFee", outputs=[_uint()]),
    _fn("wrapNFTs", [_p("nftContract", "address"), _p("tokenIds", "uint256[]")],
        mutability="payable"),
    _fn("unwrapNFTs", [_p("nftContract", "address"), _uint("count")],
        mutability="payable"),
    _fn("swapNFT", [_p("nftContract", "address"), _uint("userTokenId"), _uint("poolTokenId")],
        mutability="payable"),
]

OTC_ABI: ABI = [
    _fn("quoteBuyNFT", [_uint("count")], [_uint("unwrapFee"), _uint("tokensNeeded")]),
    _fn("buyNFT", [_uint("count"), _uint("minTokensOut")], mutability="payable"),
]


# ── Uniswap v4 pool plumbing ─────────────────────────────────────────

HOOK_ABI: ABI = [
    _fn("getPoolKey", [_p("id", "bytes32")], [_p("", "tuple", _POOL_KEY)]),
]

QUOTER_ABI: ABI = [
    _fn("quoteExactInputSingle", [_p("params", "tuple", _QUOTE_PARAMS)],
        [_uint("amountOut"), _uint("gasEstimate")], mutability="nonpayable"),
    _fn("quoteExactOutputSingle", [_p("params", "tuple", _QUOTE_PARAMS)],
        [_uint("amountIn"), _uint("gasEstimate")], mutability="nonpayable"),
]


ABIS: dict[str, ABI] = {
    "blackjack": BLACKJACK_ABI,
    "prediction_hub": PREDICTION_HUB_ABI,
    "token": ERC20_ABI,
    "nft": NFT_ABI,
    "wrapper": WRAPPER_ABI,
    "otc": OTC_ABI,
    "quoter": QUOTER_ABI,
}
