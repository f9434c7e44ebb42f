from collections import deque
from typing import Any, Callable

import pytest

from predictionjack.chain.calls import ContractCall
from predictionjack.chain.models import CallsStatus, GameSnapshot, GameState, MarketSnapshot, Receipt

ACCOUNT = "0x1111111111111111111111111111111111111111"
HUB = "0x2222222222222222222222222222222222222222"
BLACKJACK = "0x3333333333333333333333333333333333333333"

NOW = 1_700_000_000


class FakeReader:
    """
    Scripted stand-in for ChainReader's write side.

    ``log`` records ("write", label) / ("receipt", hash) in the order they
    happen so tests can assert sequencing.
    """

    def __init__(self, atomic: bool = False):
        self.atomic = atomic
        self.addresses = {"prediction_hub": HUB, "blackjack": BLACKJACK}
        self.log: list[tuple[str, Any]] = []
        self.submit_errors: deque[Exception] = deque()
        self.receipts: dict[str, Any] = {}
        self.calls_statuses: deque[CallsStatus] = deque()
        self.batches: list[list[ContractCall]] = []
        self._n = 0

    async def write(self, call: ContractCall) -> str:
        self.log.append(("write", call.label))
        if self.submit_errors:
            raise self.submit_errors.popleft()
        self._n += 1
        return f"0x{self._n:064x}"

    async def write_batch(self, calls: list[ContractCall]) -> str:
        self.log.append(("batch", [c.label for c in calls]))
        if self.submit_errors:
            raise self.submit_errors.popleft()
        self.batches.append(calls)
        return "batch-1"

    async def supports_atomic_batch(self) -> bool:
        return self.atomic

    async def get_calls_status(self, batch_id: str) -> CallsStatus:
        if self.calls_statuses:
            return self.calls_statuses.popleft()
        return CallsStatus(
            batch_id=batch_id, status="success",
            receipts=(Receipt(tx_hash="0xabc", status=1, block_number=120),),
        )

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120, poll_interval: float = 1.0) -> Receipt:
        outcome = self.receipts.get(tx_hash)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = await outcome()
        self.log.append(("receipt", tx_hash))
        if outcome is None:
            outcome = Receipt(tx_hash=tx_hash, status=1, block_number=100 + int(tx_hash, 16))
        return outcome


@pytest.fixture
def fake_reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def make_game() -> Callable[..., GameSnapshot]:
    """Factory for GameSnapshot with sensible active-game defaults."""

    def _factory(**overrides) -> GameSnapshot:
        fields = dict(
            game_id=7,
            player=ACCOUNT,
            state=GameState.ACTIVE,
            started_at=NOW - 60,
            last_action_at=NOW - 60,
            player_total=15,
            dealer_total=10,
            player_cards=(5, 9),
            dealer_cards=(22,),
            market_created=True,
            block_number=100,
        )
        fields.update(overrides)
        return GameSnapshot(**fields)

    return _factory


@pytest.fixture
def make_market() -> Callable[..., MarketSnapshot]:
    def _factory(**overrides) -> MarketSnapshot:
        fields = dict(
            game_id=7,
            yes_price=6000,
            no_price=4000,
            trading_active=True,
            resolved=False,
            block_number=100,
        )
        fields.update(overrides)
        return MarketSnapshot(**fields)

    return _factory
