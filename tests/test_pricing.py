from decimal import Decimal
from fractions import Fraction

import pytest

from predictionjack.chain.errors import QuoteError
from predictionjack.chain.models import MarketSnapshot
from predictionjack.pricing.model import (
    HOLDING_21_ODDS,
    WEI_PER_ETH,
    PoolSizeTier,
    apply_slippage,
    check_price_invariant,
    eth_equivalent,
    format_percent,
    implied_win_odds,
    pool_size_tier,
    quote_for_target_count,
    share_price,
    usd_value,
)


def test_share_prices_from_basis_points():
    assert share_price(6000) == Decimal("60.00")
    assert format_percent(6000) == "60.00%"
    assert format_percent(4000) == "40.00%"
    assert format_percent(1) == "0.01%"


def test_price_invariant_with_tolerance():
    assert check_price_invariant(MarketSnapshot(game_id=1, yes_price=6000, no_price=4000))
    assert check_price_invariant(MarketSnapshot(game_id=1, yes_price=6001, no_price=4001))
    assert not check_price_invariant(MarketSnapshot(game_id=1, yes_price=6000, no_price=4100))


def test_price_invariant_skips_missing_market():
    assert check_price_invariant(MarketSnapshot(game_id=1))


def test_win_odds_bounded_and_symmetric():
    for p in range(2, 22):
        for d in range(2, 22):
            odds = implied_win_odds(p, d)
            assert 0 <= odds <= 100
            assert odds + implied_win_odds(d, p) == 100


def test_win_odds_monotonic_in_player_total():
    for d in range(2, 21):
        values = [implied_win_odds(p, d) for p in range(2, 21)]
        assert values == sorted(values)


def test_win_odds_busts_and_21():
    assert implied_win_odds(22, 18) == 0
    assert implied_win_odds(18, 23) == 100
    assert implied_win_odds(21, 20) == HOLDING_21_ODDS
    assert implied_win_odds(20, 21) == 100 - HOLDING_21_ODDS
    assert implied_win_odds(21, 21) == 50


def test_win_odds_resolved_collapses():
    assert implied_win_odds(19, 18, resolved=True) == 100
    assert implied_win_odds(17, 18, resolved=True) == 0
    assert implied_win_odds(18, 18, resolved=True) == 50


def test_quote_scales_linearly():
    probe_in = 2 * 10**14  # 0.0002 ETH for one token
    one = quote_for_target_count(probe_in, WEI_PER_ETH, WEI_PER_ETH, Fraction(1))
    ten = quote_for_target_count(probe_in, WEI_PER_ETH, 10 * WEI_PER_ETH, Fraction(1))
    assert one == probe_in
    assert ten == 10 * probe_in


def test_quote_applies_buffer_and_rounds_up():
    assert quote_for_target_count(100, 3, 1, "1.05") == 35
    assert quote_for_target_count(100, 3, 1, Fraction(1)) == 34
    assert quote_for_target_count(100, 3, 2, Fraction(1)) == 67


def test_quote_rejects_degenerate_probe():
    with pytest.raises(QuoteError):
        quote_for_target_count(100, 0, 10)
    with pytest.raises(QuoteError):
        quote_for_target_count(0, 100, 10)
    with pytest.raises(ValueError):
        quote_for_target_count(100, 100, 10, "0.9")


def test_slippage_floor():
    assert apply_slippage(10 * WEI_PER_ETH, 1500) == 85 * WEI_PER_ETH // 10


@pytest.mark.parametrize("eth,tier", [
    ("0", PoolSizeTier.THIN),
    ("0.01", PoolSizeTier.THIN),
    ("0.010000000000000001", PoolSizeTier.MEDIUM),
    ("0.03", PoolSizeTier.MEDIUM),
    ("0.05", PoolSizeTier.DEEP),
    ("0.07", PoolSizeTier.DEEP),
    ("0.0700001", PoolSizeTier.BEST),
    ("3", PoolSizeTier.BEST),
])
def test_pool_size_tiers(eth, tier):
    value = int(Decimal(eth) * WEI_PER_ETH)
    assert pool_size_tier(value) == tier


def test_eth_equivalent_needs_both_prices():
    assert eth_equivalent(WEI_PER_ETH, Decimal("0.5"), None) is None
    assert eth_equivalent(WEI_PER_ETH, Decimal("300"), Decimal("3000")) == WEI_PER_ETH // 10


def test_usd_value():
    assert usd_value(WEI_PER_ETH // 2, Decimal("3000")) == Decimal("1500.00")
    assert usd_value(WEI_PER_ETH, None) is None
