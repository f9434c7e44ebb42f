"""
ChainReader: typed access to the Prediction Jack contract views.

Every read is side-effect free. A failed or malformed read raises
``ReadError``; callers above the scheduler never see web3 exceptions.
Snapshot reads that need more than one view pin all of them to the same
block so the parts of a snapshot agree with each other.

Writes go through the injected ``Wallet``; this class only encodes calldata
and waits for receipts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from pydantic import ValidationError
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TimeExhausted

from .abis import ABIS, HOOK_ABI
from .calls import ContractCall
from .errors import ReadError, SubmitError
from .models import (
    AccountBalances,
    ActiveGamesPage,
    CallsStatus,
    ClaimableListing,
    ClaimableMarket,
    FeeSchedule,
    GameSnapshot,
    MarketSnapshot,
    OwnedNfts,
    PlayerStats,
    PoolKey,
    Receipt,
)
from .utils import ZERO_ADDRESS, card_id_from_display
from .wallet import Wallet

logger = logging.getLogger(__name__)

CLAIMABLE_CAP = 50
BlockId = Optional[int]


class ChainReader:

    def __init__(
        self,
        w3: AsyncWeb3,
        contracts: dict[str, str],
        wallet: Optional[Wallet] = None,
        chain_id: int = 8453,
    ):
        self.w3 = w3
        self.addresses = {k: v for k, v in contracts.items() if v}
        self.wallet = wallet
        self.chain_id = chain_id
        self._contracts: dict[str, Any] = {}

    @classmethod
    def from_config(cls, config: dict, wallet: Optional[Wallet] = None) -> "ChainReader":
        chain_cfg = config["chain"]
        w3 = AsyncWeb3(AsyncHTTPProvider(chain_cfg["rpc_url"]))
        return cls(
            w3,
            chain_cfg.get("contracts", {}),
            wallet=wallet,
            chain_id=chain_cfg.get("chain_id", 8453),
        )

    # ── Plumbing ─────────────────────────────────────────────────────

    def _contract(self, name: str) -> Any:
        """Contract instance for a logical name, created on first use."""
        if name not in self._contracts:
            address = self.addresses.get(name)
            if not address:
                raise KeyError(f"No address configured for contract {name!r}")
            self._contracts[name] = self.w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(address), abi=ABIS[name]
            )
        return self._contracts[name]

    async def block_number(self) -> int:
        try:
            return await self.w3.eth.block_number
        except Exception as e:
            raise ReadError("eth_blockNumber", str(e)) from e

    async def read(
        self,
        contract: str,
        view: str,
        *args: Any,
        block_identifier: BlockId = None,
    ) -> Any:
        """Call one view. Any failure becomes ``ReadError``."""
        label = f"{contract}.{view}"
        try:
            fn = getattr(self._contract(contract).functions, view)(*args)
            if block_identifier is None:
                result = await fn.call()
            else:
                result = await fn.call(block_identifier=block_identifier)
        except Exception as e:
            raise ReadError(label, str(e) or type(e).__name__) from e
        if result is None:
            raise ReadError(label, "empty result")
        return result

    async def _read_at(self, address: str, abi: list, view: str, *args: Any, block: BlockId = None) -> Any:
        """Call a view on a contract whose address was itself read from chain."""
        try:
            contract = self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)
            fn = getattr(contract.functions, view)(*args)
            if block is None:
                return await fn.call()
            return await fn.call(block_identifier=block)
        except Exception as e:
            raise ReadError(view, str(e) or type(e).__name__) from e

    @staticmethod
    def _build(model: type, view: str, **fields: Any) -> Any:
        try:
            return model(**fields)
        except ValidationError as e:
            raise ReadError(view, f"malformed payload: {e}") from e

    # ── Game views ───────────────────────────────────────────────────

    async def get_game_display(self, account: str) -> GameSnapshot:
        """
        Current game for ``account`` via ``getGameDisplay``.

        The display view carries the action flags but not the numeric state
        or market flag, so ``getGameInfo`` is read second at the same block.
        """
        block = await self.block_number()
        (
            status, player_cards, player_total, dealer_cards, dealer_total,
            can_hit, can_stand, can_start_new, can_cancel_stuck, _can_admin_resolve,
            started_at, last_action_at, trading_period_ends, _seconds_until_can_act,
            game_id,
        ) = await self.read("blackjack", "getGameDisplay", account, block_identifier=block)

        state, market_created = 0, False
        if game_id:
            info = await self.read("blackjack", "getGameInfo", game_id, block_identifier=block)
            state, market_created = info[2], info[7]

        try:
            player_ids = tuple(card_id_from_display(c[0], c[1]) for c in player_cards)
            dealer_ids = tuple(card_id_from_display(c[0], c[1]) for c in dealer_cards)
        except ValueError as e:
            raise ReadError("blackjack.getGameDisplay", str(e)) from e

        return self._build(
            GameSnapshot, "blackjack.getGameDisplay",
            game_id=game_id,
            player=account if game_id else ZERO_ADDRESS,
            state=state,
            status=status,
            started_at=started_at,
            last_action_at=last_action_at,
            trading_period_ends=trading_period_ends or None,
            player_total=player_total,
            dealer_total=dealer_total,
            player_cards=player_ids,
            dealer_cards=dealer_ids,
            market_created=market_created,
            can_hit=can_hit,
            can_stand=can_stand,
            can_start_new=can_start_new,
            can_cancel_stuck=can_cancel_stuck,
            block_number=block,
        )

    async def get_game_info(self, game_id: int, block: BlockId = None) -> GameSnapshot:
        info = await self.read("blackjack", "getGameInfo", game_id, block_identifier=block)
        gid, player, state, started_at, last_action_at, player_total, dealer_total, market_created = info
        return self._build(
            GameSnapshot, "blackjack.getGameInfo",
            game_id=gid,
            player=player,
            state=state,
            started_at=started_at,
            last_action_at=last_action_at,
            player_total=player_total,
            dealer_total=dealer_total,
            market_created=market_created,
            block_number=block,
        )

    async def get_game(self, game_id: int) -> GameSnapshot:
        """
        A game viewed by id: info first, then both hands of its player.

        Sequenced because the hand views are keyed by the player address the
        info view returns.
        """
        block = await self.block_number()
        info = await self.get_game_info(game_id, block)
        if info.player == ZERO_ADDRESS:
            return info
        player_cards, dealer_cards = await asyncio.gather(
            self.get_player_hand(info.player, block),
            self.get_dealer_hand(info.player, block),
        )
        return info.model_copy(update={
            "player_cards": player_cards,
            "dealer_cards": dealer_cards,
        })

    async def get_player_hand(self, player: str, block: BlockId = None) -> tuple[int, ...]:
        return tuple(await self.read("blackjack", "getPlayerHand", player, block_identifier=block))

    async def get_dealer_hand(self, player: str, block: BlockId = None) -> tuple[int, ...]:
        return tuple(await self.read("blackjack", "getDealerHand", player, block_identifier=block))

    async def get_active_games(self, offset: int = 0, limit: int = 20) -> ActiveGamesPage:
        block = await self.block_number()
        ids, total, has_more = await self.read(
            "blackjack", "getActiveGames", offset, limit, block_identifier=block
        )
        return ActiveGamesPage(game_ids=tuple(ids), total=total, has_more=has_more, block_number=block)

    async def get_game_counts(self) -> tuple[int, int]:
        """``(active, inactive)`` game counts."""
        active, inactive = await self.read("blackjack", "getGameCounts")
        return active, inactive

    async def get_player_stats(self, player: str) -> PlayerStats:
        games, wins, losses, pushes, busts, win_rate = await self.read("blackjack", "getStats", player)
        return PlayerStats(
            games_played=games, wins=wins, losses=losses,
            pushes=pushes, busts=busts, win_rate=win_rate,
        )

    # ── Market views ─────────────────────────────────────────────────

    async def get_market_display(self, game_id: int, viewer: Optional[str] = None) -> MarketSnapshot:
        block = await self.block_number()
        raw = await self.read(
            "prediction_hub", "getMarketDisplay", game_id, viewer or ZERO_ADDRESS,
            block_identifier=block,
        )
        (
            gid, yes_total, no_total, yes_dep, no_dep, total_dep, yes_price, no_price,
            trading_active, resolved, result, user_yes, user_no, user_claimable,
            volume, status,
        ) = raw
        return self._build(
            MarketSnapshot, "prediction_hub.getMarketDisplay",
            game_id=gid or game_id,
            yes_shares_total=yes_total,
            no_shares_total=no_total,
            yes_deposits=yes_dep,
            no_deposits=no_dep,
            total_deposits=total_dep,
            yes_price=yes_price,
            no_price=no_price,
            trading_active=trading_active,
            resolved=resolved,
            result=result,
            user_yes_shares=user_yes,
            user_no_shares=user_no,
            user_claimable=user_claimable,
            volume=volume,
            status=status,
            block_number=block,
        )

    async def get_claimable_markets(self, account: str, cap: int = CLAIMABLE_CAP) -> ClaimableListing:
        block = await self.block_number()
        markets, total = await self.read(
            "prediction_hub", "getUserClaimableMarkets", account, cap, block_identifier=block
        )
        items = tuple(
            ClaimableMarket(
                game_id=m[0], claimable_amount=m[1], user_yes_shares=m[2],
                user_no_shares=m[3], result=m[4], yes_price=m[5], no_price=m[6],
            )
            for m in markets
        )
        return ClaimableListing(markets=items, total_claimable=total, block_number=block)

    async def get_claimable_amount(self, game_id: int, account: str) -> int:
        return await self.read("prediction_hub", "getClaimableAmount", game_id, account)

    # ── Balances / allowances ────────────────────────────────────────

    async def get_native_balance(self, owner: str, block: BlockId = None) -> int:
        try:
            return await self.w3.eth.get_balance(
                AsyncWeb3.to_checksum_address(owner), block_identifier=block or "latest"
            )
        except Exception as e:
            raise ReadError("eth_getBalance", str(e)) from e

    async def get_token_balance(self, owner: str, block: BlockId = None) -> int:
        return await self.read("token", "balanceOf", owner, block_identifier=block)

    async def get_allowance(self, owner: str, spender: str, block: BlockId = None) -> int:
        return await self.read("token", "allowance", owner, spender, block_identifier=block)

    async def get_decimals(self) -> int:
        return await self.read("token", "decimals")

    async def get_balances(self, owner: str, spenders: list[str]) -> AccountBalances:
        """
        Native and token balances plus allowances for each spender.

        Individual failures become ``None`` (unknown). If nothing at all
        could be read the whole snapshot fails.
        """
        block = await self.block_number()
        results = await asyncio.gather(
            self.get_native_balance(owner, block),
            self.get_token_balance(owner, block),
            self.get_decimals(),
            *(self.get_allowance(owner, s, block) for s in spenders),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if len(errors) == len(results):
            raise ReadError("balances", str(errors[0]))
        for err in errors:
            logger.debug("Partial balance read for %s: %s", owner, err)

        values = [None if isinstance(r, BaseException) else r for r in results]
        native, token, decimals, *allowances = values
        return AccountBalances(
            owner=owner,
            native_balance=native,
            token_balance=token,
            token_decimals=decimals,
            allowances=dict(zip(spenders, allowances)),
            block_number=block,
        )

    async def get_fees(self) -> FeeSchedule:
        names = ("start_game_fee", "wrap_fee", "swap_fee", "breed_fee", "unhatch_fee")
        results = await asyncio.gather(
            self.read("blackjack", "startGameFee"),
            self.read("wrapper", "getWrapFee"),
            self.read("wrapper", "getSwapFee"),
            self.read("nft", "breedFee"),
            self.read("nft", "unhatchFee"),
            return_exceptions=True,
        )
        fees: dict[str, Optional[int]] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning("Fee %s unavailable: %s", name, result)
                fees[name] = None
            else:
                fees[name] = result
        return FeeSchedule(**fees)

    async def get_owned_nfts(self, owner: str) -> OwnedNfts:
        """Enumerate owned token ids; balance first, then each index."""
        block = await self.block_number()
        count = await self.read("nft", "balanceOf", owner, block_identifier=block)
        ids = await asyncio.gather(*(
            self.read("nft", "tokenOfOwnerByIndex", owner, i, block_identifier=block)
            for i in range(count)
        ))
        return OwnedNfts(owner=owner, token_ids=frozenset(ids), block_number=block)

    # ── Pool / quotes ────────────────────────────────────────────────

    async def get_pool_key(self) -> PoolKey:
        """``poolIdRaw`` -> ``hook`` -> ``getPoolKey(poolId)``, strictly in order."""
        pool_id = await self.read("nft", "poolIdRaw")
        hook = await self.read("nft", "hook")
        raw = await self._read_at(hook, HOOK_ABI, "getPoolKey", pool_id)
        currency0, currency1, fee, tick_spacing, hooks = raw
        return PoolKey(
            currency0=currency0, currency1=currency1, fee=fee,
            tick_spacing=tick_spacing, hooks=hooks,
        )

    async def _quote(self, fn: str, pool_key: PoolKey, zero_for_one: bool, amount: int) -> int:
        params = (pool_key.as_tuple(), zero_for_one, amount, b"")
        amount_out, _gas = await self.read("quoter", fn, params)
        return amount_out

    async def quote_exact_input(self, pool_key: PoolKey, zero_for_one: bool, amount_in: int) -> int:
        return await self._quote("quoteExactInputSingle", pool_key, zero_for_one, amount_in)

    async def quote_exact_output(self, pool_key: PoolKey, zero_for_one: bool, amount_out: int) -> int:
        return await self._quote("quoteExactOutputSingle", pool_key, zero_for_one, amount_out)

    async def quote_buy_nft(self, count: int) -> tuple[int, int]:
        """``(unwrap_fee, tokens_needed)`` from the OTC desk."""
        unwrap_fee, tokens_needed = await self.read("otc", "quoteBuyNFT", count)
        return unwrap_fee, tokens_needed

    # ── Writes ───────────────────────────────────────────────────────

    def encode(self, call: ContractCall) -> dict[str, Any]:
        try:
            contract = self._contract(call.contract)
            data = contract.encode_abi(call.function, args=list(call.args))
        except Exception as e:
            raise SubmitError(f"Cannot encode {call.label}: {e}") from e
        return {"to": contract.address, "data": data, "value": call.value}

    def _require_wallet(self) -> Wallet:
        if self.wallet is None:
            raise SubmitError("No wallet connected")
        return self.wallet

    async def write(self, call: ContractCall) -> str:
        wallet = self._require_wallet()
        tx = self.encode(call)
        logger.info("Submitting %s value=%d", call.label, call.value)
        return await wallet.send_transaction(tx)

    async def write_batch(self, calls: list[ContractCall]) -> str:
        wallet = self._require_wallet()
        txs = [self.encode(c) for c in calls]
        logger.info("Submitting atomic batch: %s", ", ".join(c.label for c in calls))
        return await wallet.send_calls(txs)

    async def supports_atomic_batch(self) -> bool:
        if self.wallet is None:
            return False
        return await self.wallet.supports_atomic_batch()

    async def get_calls_status(self, batch_id: str) -> CallsStatus:
        return await self._require_wallet().get_calls_status(batch_id)

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120, poll_interval: float = 1.0) -> Receipt:
        """Block until mined. Raises ``TimeoutError`` if not mined in time."""
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=poll_interval
            )
        except TimeExhausted as e:
            raise TimeoutError(f"No receipt for {tx_hash} after {timeout}s") from e
        except Exception as e:
            raise ReadError("eth_getTransactionReceipt", str(e)) from e
        return Receipt(
            tx_hash=tx_hash,
            status=receipt["status"],
            block_number=receipt["blockNumber"],
        )
