import copy

import pytest

from predictionjack.chain.errors import ChainError, IllegalAction, InsufficientFunds
from predictionjack.chain.models import AccountBalances, ClaimableListing, ClaimableMarket, FeeSchedule, GameState
from predictionjack.engine.config import DEFAULT_CONFIG
from predictionjack.engine.orchestrator import BatchMode, IntentStatus
from predictionjack.engine.session import GameSession
from predictionjack.engine.state_machine import LegalAction, Phase
from predictionjack.engine.store import FEES_KEY, balances_key, claimables_key, market_key
from predictionjack.pricing.prices import PriceProvider

from conftest import ACCOUNT, HUB, NOW, FakeReader


@pytest.fixture
def make_session():
    def _factory(account=ACCOUNT, game_id=None, reader=None):
        return GameSession(
            copy.deepcopy(DEFAULT_CONFIG),
            reader or FakeReader(),
            account=account,
            game_id=game_id,
            prices=PriceProvider(),
            clock=lambda: NOW,
        )
    return _factory


def test_needs_account_or_game():
    with pytest.raises(ValueError):
        GameSession(copy.deepcopy(DEFAULT_CONFIG), FakeReader())


def test_committed_game_reaches_state_machine(make_session, make_game, make_market):
    session = make_session()
    session.store.commit(session.slot_key, make_game())
    session.store.commit(market_key(7), make_market())

    view = session.tick()

    assert view.phase == Phase.ACTIVE_TURN
    assert view.market.yes_price == 6000
    assert market_key(7) in session.scheduler.jobs()
    assert "YES 60.00% / NO 40.00%" in session.describe(view)


@pytest.mark.asyncio
async def test_hit_refused_during_trading_window(make_session, make_game):
    session = make_session()
    session.store.commit(session.slot_key, make_game(last_action_at=NOW - 5))
    with pytest.raises(IllegalAction):
        await session.hit()
    assert session.reader.log == []


@pytest.mark.asyncio
async def test_hit_when_allowed(make_session, make_game):
    session = make_session()
    session.store.commit(session.slot_key, make_game())
    pending = await session.hit()
    assert pending.status == IntentStatus.CONFIRMED
    assert session.reader.log[0] == ("write", "blackjack.hit")


@pytest.mark.asyncio
async def test_start_game_blocked_by_claimable(make_session, make_game):
    session = make_session()
    session.store.commit(session.slot_key, make_game(state=GameState.FINISHED))
    session.store.commit(claimables_key(ACCOUNT), ClaimableListing(
        markets=(ClaimableMarket(game_id=6, claimable_amount=3),), total_claimable=3,
    ))
    session.store.commit(FEES_KEY, FeeSchedule(start_game_fee=10))
    with pytest.raises(IllegalAction):
        await session.start_game()


@pytest.mark.asyncio
async def test_start_game_then_awaiting_deal(make_session, make_game):
    session = make_session()
    session.store.commit(session.slot_key, make_game(state=GameState.FINISHED))
    session.store.commit(FEES_KEY, FeeSchedule(start_game_fee=10))
    session.store.commit(balances_key(ACCOUNT), AccountBalances(owner=ACCOUNT, native_balance=100))

    pending = await session.start_game()

    assert pending.status == IntentStatus.CONFIRMED
    assert pending.intent.call.value == 10
    assert session.tick().phase == Phase.AWAITING_DEAL


@pytest.mark.asyncio
async def test_start_game_checks_funds(make_session, make_game):
    session = make_session()
    session.store.commit(FEES_KEY, FeeSchedule(start_game_fee=10))
    session.store.commit(balances_key(ACCOUNT), AccountBalances(owner=ACCOUNT, native_balance=9))
    with pytest.raises(InsufficientFunds):
        await session.start_game()


@pytest.mark.asyncio
async def test_buy_with_tokens_approves_first(make_session, make_game, make_market):
    session = make_session()
    session.store.commit(session.slot_key, make_game())
    session.store.commit(market_key(7), make_market())
    session.store.commit(balances_key(ACCOUNT), AccountBalances(
        owner=ACCOUNT, token_balance=1000, allowances={HUB: 0},
    ))

    execution = await session.buy(500, is_yes=True)

    assert execution.mode == BatchMode.SEQUENTIAL
    assert execution.succeeded
    writes = [label for kind, label in session.reader.log if kind == "write"]
    assert writes == ["token.approve", "prediction_hub.buyShares"]


@pytest.mark.asyncio
async def test_spectator_cannot_act(make_session, make_game):
    session = make_session(account=None, game_id=7)
    session.store.commit(session.slot_key, make_game())
    assert not session.tick().can(LegalAction.HIT)
    with pytest.raises(ChainError):
        await session.hit()


def test_disconnected_slot_clears_actions(make_session, make_game):
    session = make_session()
    session.store.commit(session.slot_key, make_game())
    for _ in range(5):
        session.store.record_failure(session.slot_key, "rpc down")
    view = session.tick()
    assert view.disconnected
    assert view.legal_actions == frozenset()
    assert "[DISCONNECTED]" in session.describe(view)


def test_next_game_drops_previous_market(make_session, make_game, make_market):
    session = make_session()
    session.store.commit(session.slot_key, make_game())
    session.store.commit(market_key(7), make_market())

    session.store.commit(session.slot_key, make_game(game_id=8, block_number=110))

    jobs = session.scheduler.jobs()
    assert market_key(8) in jobs
    assert market_key(7) not in jobs
    assert market_key(7) not in session.store.keys()
    assert session.store.view(market_key(7)) is None
