"""
Pure pricing helpers: no I/O, no clocks.

Contract numbers come in as base-unit ints or basis points; everything here
stays in ``int`` / ``Fraction`` / ``Decimal`` until a value is formatted for
display.
"""

from __future__ import annotations

import math
from bisect import bisect_left, bisect_right
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import Optional

from ..chain.errors import QuoteError
from ..chain.models import MarketSnapshot

BASIS_POINTS = 10_000
PRICE_TOLERANCE_BP = 2
WEI_PER_ETH = 10**18

_CENT = Decimal("0.01")


# ── Share prices ─────────────────────────────────────────────────────

def share_price(bp: int) -> Decimal:
    """Basis points -> percentage with two decimals (6000 -> 60.00)."""
    return (Decimal(bp) / 100).quantize(_CENT)


def format_percent(bp: int) -> str:
    return f"{share_price(bp)}%"


def check_price_invariant(market: MarketSnapshot, tolerance: int = PRICE_TOLERANCE_BP) -> bool:
    """
    True when yes + no prices sum to 10000 bp within ``tolerance``.

    A market that does not exist yet (both prices zero) passes trivially.
    """
    if not market.exists:
        return True
    return abs(market.yes_price + market.no_price - BASIS_POINTS) <= tolerance


# ── Win odds (display heuristic) ─────────────────────────────────────

# Lead (player total minus dealer total) -> player win percentage, for a
# lead of at least the given size. Deficits mirror through 100 - x.
# Display-only: these thresholds do not come from any probability model and
# must never be shown as, or mixed with, a market price.
WIN_ODDS_STEPS: tuple[tuple[int, int], ...] = (
    (0, 50),
    (1, 55),
    (3, 62),
    (5, 70),
    (8, 80),
    (11, 90),
)
HOLDING_21_ODDS = 95
ODDS_FLOOR, ODDS_CEILING = 10, 90

_STEP_LEADS = [lead for lead, _ in WIN_ODDS_STEPS]


def _lead_odds(lead: int) -> int:
    idx = bisect_right(_STEP_LEADS, lead) - 1
    return WIN_ODDS_STEPS[idx][1]


def implied_win_odds(player_total: int, dealer_total: int, resolved: bool = False) -> int:
    """
    Player win percentage in [0, 100] for a probability bar.

    Resolved games collapse to 100 / 0, or 50 for a push. Unresolved games
    use ``WIN_ODDS_STEPS``: a bust decides outright, holding 21 against
    anything else shows 95, otherwise the lead is looked up and clamped to
    [10, 90]. ``odds(p, d) + odds(d, p) == 100`` for any pair without a bust
    on both sides.
    """
    if player_total > 21:
        return 0
    if dealer_total > 21:
        return 100

    if resolved:
        if player_total == dealer_total:
            return 50
        return 100 if player_total > dealer_total else 0

    if player_total == 21 and dealer_total != 21:
        return HOLDING_21_ODDS
    if dealer_total == 21 and player_total != 21:
        return 100 - HOLDING_21_ODDS

    lead = player_total - dealer_total
    odds = _lead_odds(lead) if lead >= 0 else 100 - _lead_odds(-lead)
    return max(ODDS_FLOOR, min(ODDS_CEILING, odds))


# ── Quotes ───────────────────────────────────────────────────────────

def quote_for_target_count(
    probe_amount_in: int,
    probe_amount_out: int,
    target_count: int,
    buffer_ratio: Fraction | Decimal | str | float = Fraction(105, 100),
) -> int:
    """
    Extrapolate one probe quote to ``target_count`` output units.

    ``target_count`` is in the same base units as ``probe_amount_out``.
    The result is rounded up so the buffer is never eroded by truncation.
    """
    if probe_amount_out <= 0:
        raise QuoteError("Probe quote returned zero output")
    if probe_amount_in <= 0:
        raise QuoteError("Probe quote returned zero input")
    if target_count < 0:
        raise ValueError("target_count must be non-negative")

    buffer = Fraction(str(buffer_ratio)) if not isinstance(buffer_ratio, Fraction) else buffer_ratio
    if buffer < 1:
        raise ValueError("buffer_ratio below 1 would under-quote")
    return math.ceil(Fraction(probe_amount_in, probe_amount_out) * target_count * buffer)


def apply_buffer(amount: int, buffer_ratio: Fraction | Decimal | str | float) -> int:
    return math.ceil(amount * Fraction(str(buffer_ratio)))


def apply_slippage(amount: int, tolerance_bp: int) -> int:
    """Minimum acceptable output after ``tolerance_bp`` of slippage."""
    return amount * (BASIS_POINTS - tolerance_bp) // BASIS_POINTS


# ── Pool size ────────────────────────────────────────────────────────

class PoolSizeTier(Enum):
    THIN = ("Thin", "High slippage; trade small")
    MEDIUM = ("Medium", "Moderate slippage")
    DEEP = ("Deep", "Good liquidity")
    BEST = ("Best", "Optimal liquidity")

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def description(self) -> str:
        return self.value[1]


# Upper bound (inclusive, ETH-equivalent in wei) of each tier, ascending.
POOL_SIZE_TIERS: tuple[tuple[int, PoolSizeTier], ...] = (
    (WEI_PER_ETH // 100, PoolSizeTier.THIN),        # 0.01
    (3 * WEI_PER_ETH // 100, PoolSizeTier.MEDIUM),  # 0.03
    (7 * WEI_PER_ETH // 100, PoolSizeTier.DEEP),    # 0.07
)
_TIER_BOUNDS = [bound for bound, _ in POOL_SIZE_TIERS]


def pool_size_tier(value_wei: int) -> PoolSizeTier:
    idx = bisect_left(_TIER_BOUNDS, value_wei)
    if idx == len(POOL_SIZE_TIERS):
        return PoolSizeTier.BEST
    return POOL_SIZE_TIERS[idx][1]


# ── Conversions ──────────────────────────────────────────────────────

def eth_equivalent(
    token_amount: int,
    token_usd: Optional[Decimal],
    eth_usd: Optional[Decimal],
) -> Optional[int]:
    """
    Wei worth the same USD as ``token_amount`` (18-decimal token).

    ``None`` when either price is unknown.
    """
    if not token_usd or not eth_usd:
        return None
    ratio = Fraction(str(token_usd)) / Fraction(str(eth_usd))
    return int(token_amount * ratio)


def usd_value(amount: int, usd_price: Optional[Decimal], decimals: int = 18) -> Optional[Decimal]:
    if usd_price is None:
        return None
    return (Decimal(amount).scaleb(-decimals) * usd_price).quantize(_CENT)
