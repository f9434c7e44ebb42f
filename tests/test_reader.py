import pytest

from predictionjack.chain import calls
from predictionjack.chain.errors import ReadError, SubmitError
from predictionjack.chain.models import GameState, MarketResult, PoolKey
from predictionjack.chain.reader import ChainReader
from predictionjack.chain.utils import ZERO_ADDRESS
from predictionjack.pricing.quotes import NftQuoter

from conftest import ACCOUNT, HUB, NOW

BLOCK = 500


class ScriptedReader(ChainReader):
    """ChainReader whose contract views come from a dict instead of a node."""

    def __init__(self, responses: dict):
        super().__init__(None, {"blackjack": "0x3", "prediction_hub": HUB})
        self.responses = responses
        self.reads: list[tuple] = []

    async def block_number(self) -> int:
        return BLOCK

    async def read(self, contract, view, *args, block_identifier=None):
        self.reads.append((f"{contract}.{view}", args, block_identifier))
        outcome = self.responses.get(f"{contract}.{view}")
        if callable(outcome):
            outcome = outcome(*args)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            raise ReadError(f"{contract}.{view}", "not scripted")
        return outcome

    async def _read_at(self, address, abi, view, *args, block=None):
        return await self.read(address, view, *args, block_identifier=block)

    async def get_native_balance(self, owner, block=None):
        return await self.read("eth", "getBalance", owner, block_identifier=block)


def display(game_id=7, player_total=15, status="Your turn"):
    return (
        status,
        (("5", "Hearts"), ("9", "Hearts")),
        player_total,
        (("10", "Diamonds"),),
        10,
        True, True, False, False, False,
        NOW - 60, NOW - 40, 0, 0,
        game_id,
    )


def info(game_id=7, player=ACCOUNT, state=2):
    return (game_id, player, state, NOW - 60, NOW - 40, 15, 10, True)


@pytest.mark.asyncio
async def test_game_display_pins_block_and_decodes_cards():
    reader = ScriptedReader({
        "blackjack.getGameDisplay": display(),
        "blackjack.getGameInfo": info(),
    })

    game = await reader.get_game_display(ACCOUNT)

    assert game.game_id == 7
    assert game.state == GameState.ACTIVE
    assert game.player == ACCOUNT
    assert game.player_cards == (5, 9)
    assert game.dealer_cards == (23,)
    assert game.market_created
    assert game.can_hit and not game.can_start_new
    assert game.trading_period_ends is None
    assert game.block_number == BLOCK
    assert all(block == BLOCK for _, _, block in reader.reads)


@pytest.mark.asyncio
async def test_game_display_without_game():
    reader = ScriptedReader({"blackjack.getGameDisplay": display(game_id=0, player_total=0)})
    game = await reader.get_game_display(ACCOUNT)
    assert not game.has_game
    assert game.player == ZERO_ADDRESS
    assert [r[0] for r in reader.reads] == ["blackjack.getGameDisplay"]


@pytest.mark.asyncio
async def test_malformed_payload_is_read_error():
    reader = ScriptedReader({
        "blackjack.getGameDisplay": display(player_total=40),
        "blackjack.getGameInfo": info(),
    })
    with pytest.raises(ReadError):
        await reader.get_game_display(ACCOUNT)


@pytest.mark.asyncio
async def test_game_by_id_reads_info_before_hands():
    reader = ScriptedReader({
        "blackjack.getGameInfo": info(),
        "blackjack.getPlayerHand": [5, 9],
        "blackjack.getDealerHand": [23],
    })

    game = await reader.get_game(7)

    assert game.player_cards == (5, 9)
    assert game.dealer_cards == (23,)
    assert reader.reads[0][0] == "blackjack.getGameInfo"
    assert {r[0] for r in reader.reads[1:]} == {"blackjack.getPlayerHand", "blackjack.getDealerHand"}
    assert all(r[1] == (ACCOUNT, ) for r in reader.reads[1:])


@pytest.mark.asyncio
async def test_game_by_id_without_player_skips_hands():
    reader = ScriptedReader({"blackjack.getGameInfo": info(player=ZERO_ADDRESS, state=0)})
    game = await reader.get_game(7)
    assert game.player_cards == ()
    assert len(reader.reads) == 1


@pytest.mark.asyncio
async def test_market_display():
    reader = ScriptedReader({
        "prediction_hub.getMarketDisplay": (
            7, 10, 20, 100, 200, 300, 6000, 4000, True, False, 0, 1, 2, 0, 999, 1,
        ),
    })
    market = await reader.get_market_display(7, ACCOUNT)
    assert market.yes_price == 6000
    assert market.no_price == 4000
    assert market.result == MarketResult.PENDING
    assert market.user_no_shares == 2
    assert reader.reads[0][1] == (7, ACCOUNT)


@pytest.mark.asyncio
async def test_claimable_markets_capped():
    reader = ScriptedReader({
        "prediction_hub.getUserClaimableMarkets": (
            [(3, 50, 1, 0, 1, 10000, 0)], 50,
        ),
    })
    listing = await reader.get_claimable_markets(ACCOUNT)
    assert listing.total_claimable == 50
    assert listing.markets[0].result == MarketResult.WIN
    assert reader.reads[0][1] == (ACCOUNT, 50)


@pytest.mark.asyncio
async def test_partial_balance_read_is_unknown_not_zero():
    reader = ScriptedReader({
        "eth.getBalance": 10**18,
        "token.balanceOf": 5,
        "token.decimals": 18,
        "token.allowance": lambda owner, spender: 7 if spender == HUB else ReadError("allowance", "boom"),
    })
    balances = await reader.get_balances(ACCOUNT, [HUB, "0x4"])
    assert balances.native_balance == 10**18
    assert balances.allowance_for(HUB) == 7
    assert balances.allowance_for("0x4") is None


@pytest.mark.asyncio
async def test_balance_read_fails_when_nothing_reads():
    reader = ScriptedReader({})
    with pytest.raises(ReadError):
        await reader.get_balances(ACCOUNT, [HUB])


@pytest.mark.asyncio
async def test_fees_degrade_individually():
    reader = ScriptedReader({
        "blackjack.startGameFee": 10**15,
        "wrapper.getWrapFee": 2 * 10**15,
    })
    fees = await reader.get_fees()
    assert fees.start_game_fee == 10**15
    assert fees.wrap_fee == 2 * 10**15
    assert fees.swap_fee is None
    assert fees.unhatch_fee is None


@pytest.mark.asyncio
async def test_pool_key_is_sequenced():
    hook = "0x5555555555555555555555555555555555555555"
    reader = ScriptedReader({
        "nft.poolIdRaw": b"\x01" * 32,
        "nft.hook": hook,
        f"{hook}.getPoolKey": (ZERO_ADDRESS, "0x6", 0, 60, hook),
    })
    key = await reader.get_pool_key()
    assert key.tick_spacing == 60
    assert [r[0] for r in reader.reads] == ["nft.poolIdRaw", "nft.hook", f"{hook}.getPoolKey"]


@pytest.mark.asyncio
async def test_nft_quote_adds_unwrap_fee_once():
    pool_key = (ZERO_ADDRESS, "0x6", 0, 60, "0x7")
    reader = ScriptedReader({
        "otc.quoteBuyNFT": (10**15, 3 * 10**18),
        "nft.poolIdRaw": b"\x01" * 32,
        "nft.hook": "0x7",
        "0x7.getPoolKey": pool_key,
        "quoter.quoteExactOutputSingle": (2 * 10**14, 50_000),
    })
    quoter = NftQuoter(reader)

    quote = await quoter.quote(3)

    # 0.0002 ETH per token x 3 tokens x 1.05
    assert quote.eth_for_tokens == 630_000_000_000_000
    assert quote.total_eth == 630_000_000_000_000 + 10**15
    quote_params = [r[1] for r in reader.reads if r[0] == "quoter.quoteExactOutputSingle"][0][0]
    assert quote_params[1] is True

    call = quote.to_call()
    assert call.args == (3, 3 * 85 * 10**16)
    assert call.value == -(-quote.total_eth * 105 // 100)

    reads = len(reader.reads)
    assert await quoter.quote(3) is quote
    assert len(reader.reads) == reads


@pytest.mark.asyncio
async def test_read_failure_becomes_read_error():
    reader = ChainReader(None, {})
    with pytest.raises(ReadError):
        await reader.read("blackjack", "getGameCounts")


def test_encode_unknown_contract_is_submit_error():
    reader = ChainReader(None, {})
    with pytest.raises(SubmitError):
        reader.encode(calls.hit())


@pytest.mark.asyncio
async def test_write_without_wallet():
    reader = ChainReader(None, {"blackjack": "0x3"})
    with pytest.raises(SubmitError):
        await reader.write(calls.hit())
    assert await reader.supports_atomic_batch() is False


def test_pool_key_tuple():
    key = PoolKey(currency0=ZERO_ADDRESS, currency1="0x6", fee=0, tick_spacing=60, hooks="0x7")
    assert key.as_tuple() == (ZERO_ADDRESS, "0x6", 0, 60, "0x7")
