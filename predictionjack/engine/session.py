"""
Game session runner.

Wires reader, store, scheduler, state machine, orchestrator, prices and the
ledger for one watched game slot, then runs the loop:
  poll (background) -> evaluate every second -> report -> act on request

Watch either the connected account's current game or any game by id
(read-only).
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Hashable, Optional

from ..chain.errors import ChainError, IllegalAction
from ..chain.models import AccountBalances, ClaimableListing, FeeSchedule, OwnedNfts
from ..chain.reader import ChainReader
from ..chain.utils import format_ether, format_units, short_address
from ..chain.wallet import LocalAccountWallet, RpcWallet, Wallet
from ..pricing.model import format_percent, implied_win_odds
from ..pricing.prices import PriceProvider
from ..pricing.quotes import NftQuoter
from . import intents
from .database import Database
from .intents import IntentKind
from .orchestrator import BatchExecution, IntentStatus, PendingIntent, TransactionOrchestrator
from .scheduler import PollingScheduler
from .state_machine import GameMarketStateMachine, GameView, LegalAction, Phase
from .store import (
    FEES_KEY,
    Entry,
    Freshness,
    SnapshotStore,
    balances_key,
    claimables_key,
    game_key,
    market_key,
    nfts_key,
)

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0

_FRESHNESS_ORDER = [Freshness.FRESH, Freshness.LOADING, Freshness.STALE, Freshness.DISCONNECTED]


def _worst(*values: Freshness) -> Freshness:
    return max(values, key=_FRESHNESS_ORDER.index)


class GameSession:

    def __init__(
        self,
        config: dict,
        reader: ChainReader,
        account: Optional[str] = None,
        game_id: Optional[int] = None,
        db: Optional[Database] = None,
        prices: Optional[PriceProvider] = None,
        clock: Callable[[], float] = time.time,
    ):
        if account is None and game_id is None:
            raise ValueError("Need an account or a game id to watch")
        self.config = config
        self.reader = reader
        self.account = account
        self.viewed_game_id = game_id if account is None else None
        self.db = db
        self.clock = clock

        polling = config.get("polling", {})
        self.store = SnapshotStore(
            stale_after=polling.get("stale_after", 1),
            disconnect_after=polling.get("disconnect_after", 5),
        )
        self.scheduler = PollingScheduler(self.store)
        self.machine = GameMarketStateMachine.from_config(config, account=account)
        self.orchestrator = TransactionOrchestrator.from_config(
            config, reader, self.store.overlays, refresher=self.scheduler.refresh
        )
        self.prices = prices or PriceProvider(
            reader,
            alchemy_api_key=config.get("prices", {}).get("alchemy_api_key"),
            refresh_interval=config.get("prices", {}).get("refresh_interval", 10.0),
        )
        self.nft_quoter = NftQuoter(reader)

        self.slot_key: Hashable = game_key(account if account is not None else game_id)
        self._market_game_id: Optional[int] = None
        self._background: set[asyncio.Task] = set()
        self._last_line: Optional[str] = None

        self.store.subscribe(self._on_store_change)
        self.orchestrator.add_listener(self._on_intent)

    @classmethod
    def from_config(
        cls,
        config: dict,
        game_id: Optional[int] = None,
        db: Optional[Database] = None,
    ) -> "GameSession":
        """Build reader and wallet from config; no wallet means spectating ``game_id``."""
        reader = ChainReader.from_config(config)
        wallet_cfg = config.get("wallet", {})
        wallet: Optional[Wallet] = None
        if wallet_cfg.get("private_key"):
            wallet = LocalAccountWallet(reader.w3, wallet_cfg["private_key"])
        elif wallet_cfg.get("rpc_url") and wallet_cfg.get("address"):
            wallet = RpcWallet(wallet_cfg["rpc_url"], wallet_cfg["address"], reader.chain_id)
        reader.wallet = wallet
        account = wallet.address if wallet is not None else None
        return cls(config, reader, account=account if game_id is None else None, game_id=game_id, db=db)

    # ── Addresses ────────────────────────────────────────────────────

    def _address(self, name: str) -> str:
        address = self.reader.addresses.get(name)
        if not address:
            raise ChainError(f"No address configured for {name}")
        return address

    # ── Poll jobs ────────────────────────────────────────────────────

    def watch(self) -> None:
        """Register every poll job for the watched slot."""
        polling = self.config.get("polling", {})
        if self.account is not None:
            account = self.account
            self.scheduler.register(
                self.slot_key, lambda: self.reader.get_game_display(account),
                polling.get("game_interval", 1.0),
            )
            self.scheduler.register(
                claimables_key(account), lambda: self.reader.get_claimable_markets(account),
                polling.get("claimables_interval", 5.0),
            )
            spenders = [a for a in (self.reader.addresses.get("prediction_hub"),
                                    self.reader.addresses.get("blackjack")) if a]
            self.scheduler.register(
                balances_key(account), lambda: self.reader.get_balances(account, spenders),
                polling.get("balances_interval", 5.0),
            )
            if self.reader.addresses.get("nft"):
                self.scheduler.register(
                    nfts_key(account), lambda: self.reader.get_owned_nfts(account),
                    polling.get("balances_interval", 5.0),
                )
        else:
            game_id = self.viewed_game_id
            self.scheduler.register(
                self.slot_key, lambda: self.reader.get_game(game_id),
                polling.get("game_interval", 1.0),
            )
            self._track_market(game_id)

        self.scheduler.register(FEES_KEY, self.reader.get_fees, polling.get("fees_interval", 60.0))

    def _track_market(self, game_id: int) -> None:
        """Point the market job at ``game_id``, dropping the previous one."""
        if game_id == self._market_game_id or not game_id:
            return
        if self._market_game_id is not None:
            previous = market_key(self._market_game_id)
            self.scheduler.cancel(previous)
            self.store.drop(previous)
        self._market_game_id = game_id
        viewer = self.account
        self.scheduler.register(
            market_key(game_id),
            lambda: self.reader.get_market_display(game_id, viewer),
            self.config.get("polling", {}).get("market_interval", 1.0),
        )

    # ── Store -> state machine ───────────────────────────────────────

    def _freshness(self) -> Freshness:
        states = [self.store.freshness(self.slot_key)]
        if self._market_game_id is not None:
            market_state = self.store.freshness(market_key(self._market_game_id))
            if market_state != Freshness.LOADING:
                states.append(market_state)
        return _worst(*states)

    def _on_store_change(self, key: Hashable, entry: Entry) -> None:
        if entry.consecutive_failures and entry.last_error and self.db is not None:
            self._spawn(self.db.record_failure(key, entry.consecutive_failures, entry.last_error))

        if key == self.slot_key:
            game = self.store.view(key)
            self.machine.observe(game, freshness=self._freshness())
            if game is not None and game.has_game and game.market_created:
                self._track_market(game.game_id)
        elif self._market_game_id is not None and key == market_key(self._market_game_id):
            self.machine.observe(None, self.store.view(key), freshness=self._freshness())
        elif self.account is not None and key == claimables_key(self.account):
            listing: Optional[ClaimableListing] = self.store.view(key)
            if listing is not None:
                self.machine.set_claimable_total(listing.total_claimable)

    async def _on_intent(self, pending: PendingIntent) -> None:
        if self.db is not None:
            await self.db.record_intent(pending)
        if pending.kind == IntentKind.START_GAME and pending.status == IntentStatus.CONFIRMED:
            self.machine.expect_deal()
        print(f"    [TX] {pending.intent.description}: {pending.status.value}"
              + (f" ({pending.error})" if pending.error else ""))

    def _spawn(self, coro: Any) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ── Views ────────────────────────────────────────────────────────

    def tick(self) -> GameView:
        return self.machine.evaluate(self.clock())

    def balances(self) -> Optional[AccountBalances]:
        return self.store.view(balances_key(self.account)) if self.account else None

    def fees(self) -> FeeSchedule:
        return self.store.view(FEES_KEY) or FeeSchedule()

    def owned_nfts(self) -> Optional[OwnedNfts]:
        return self.store.view(nfts_key(self.account)) if self.account else None

    def _require(self, action: LegalAction) -> GameView:
        view = self.tick()
        if action not in view.legal_actions:
            raise IllegalAction(action.value, view.phase.value)
        return view

    def _require_account(self) -> str:
        if self.account is None:
            raise ChainError("Spectating: connect a wallet to act")
        return self.account

    # ── Game actions ─────────────────────────────────────────────────

    async def start_game(self, token_amount: Optional[int] = None) -> BatchExecution | PendingIntent:
        """Start a game paying the ETH fee, or ``token_amount`` tokens."""
        account = self._require_account()
        self._require(LegalAction.START_GAME)
        balances = self.balances()

        if token_amount is not None:
            self.orchestrator.check_funds(
                token_amount, balances.token_balance if balances else None, "tokens"
            )
            spender = self._address("blackjack")
            plan = self.orchestrator.plan_with_approval(
                intents.start_game_with_tokens(account, token_amount), account, spender,
                token_amount, balances.allowance_for(spender) if balances else None,
            )
            return await self.orchestrator.submit_batch(plan, on_step=self._print_step)

        fee = self.fees().start_game_fee
        if fee is None:
            raise ChainError("Start-game fee unknown; waiting for fee read")
        self.orchestrator.check_funds(fee, balances.native_balance if balances else None)
        return await self.orchestrator.run(intents.start_game(account, fee))

    async def hit(self) -> PendingIntent:
        self._require(LegalAction.HIT)
        return await self.orchestrator.run(intents.hit(self._require_account()))

    async def stand(self) -> PendingIntent:
        self._require(LegalAction.STAND)
        return await self.orchestrator.run(intents.stand(self._require_account()))

    async def cancel_stuck(self) -> PendingIntent:
        self._require(LegalAction.CANCEL_STUCK)
        return await self.orchestrator.run(intents.cancel_stuck(self._require_account()))

    # ── Market actions ───────────────────────────────────────────────

    async def buy(self, amount: int, is_yes: bool, with_eth: bool = False) -> BatchExecution | PendingIntent:
        account = self._require_account()
        view = self._require(LegalAction.BUY_YES if is_yes else LegalAction.BUY_NO)
        balances = self.balances()

        if with_eth:
            self.orchestrator.check_funds(amount, balances.native_balance if balances else None)
            return await self.orchestrator.run(intents.buy_with_eth(account, view.game_id, is_yes, amount))

        self.orchestrator.check_funds(amount, balances.token_balance if balances else None, "tokens")
        spender = self._address("prediction_hub")
        plan = self.orchestrator.plan_with_approval(
            intents.buy_shares(account, view.game_id, amount, is_yes), account, spender,
            amount, balances.allowance_for(spender) if balances else None,
        )
        return await self.orchestrator.submit_batch(plan, on_step=self._print_step)

    async def sell(self, shares: int, is_yes: bool) -> PendingIntent:
        account = self._require_account()
        view = self._require(LegalAction.SELL_YES if is_yes else LegalAction.SELL_NO)
        held = view.market.user_yes_shares if is_yes else view.market.user_no_shares
        self.orchestrator.check_funds(shares, held, "YES shares" if is_yes else "NO shares")
        return await self.orchestrator.run(intents.sell_shares(account, view.game_id, shares, is_yes))

    async def claim(self, game_id: Optional[int] = None) -> PendingIntent:
        """Claim the watched market, or any claimable ``game_id``."""
        account = self._require_account()
        if game_id is None:
            game_id = self._require(LegalAction.CLAIM).game_id
        else:
            listing: Optional[ClaimableListing] = self.store.view(claimables_key(account))
            if listing is not None and all(m.game_id != game_id for m in listing.markets):
                raise IllegalAction("claim", f"nothing to claim on #{game_id}")
        return await self.orchestrator.run(intents.claim(account, game_id))

    # ── NFT actions ──────────────────────────────────────────────────

    async def _nft_plan(self, account: str, action: intents.Intent) -> list[intents.Intent]:
        wrapper = self._address("wrapper")
        approved = await self.reader.read("nft", "isApprovedForAll", account, wrapper)
        if approved:
            return [action]
        return [intents.approve_nfts(account, wrapper), action]

    async def wrap_nfts(self, token_ids: list[int]) -> BatchExecution:
        account = self._require_account()
        owned = self.owned_nfts()
        if owned is not None:
            missing = set(token_ids) - owned.token_ids
            if missing:
                raise IllegalAction("wrap", f"not owning {sorted(missing)}")
        fee = self.fees().wrap_fee
        if fee is None:
            raise ChainError("Wrap fee unknown")
        total = fee * len(token_ids)
        balances = self.balances()
        self.orchestrator.check_funds(total, balances.native_balance if balances else None)
        action = intents.wrap_nfts(account, self._address("nft"), token_ids, total)
        return await self.orchestrator.submit_batch(await self._nft_plan(account, action), on_step=self._print_step)

    async def unwrap_nfts(self, count: int) -> PendingIntent:
        account = self._require_account()
        fee = self.fees().wrap_fee
        if fee is None:
            raise ChainError("Wrap fee unknown")
        total = fee * count
        balances = self.balances()
        self.orchestrator.check_funds(total, balances.native_balance if balances else None)
        return await self.orchestrator.run(intents.unwrap_nfts(account, self._address("nft"), count, total))

    async def swap_nft(self, user_token_id: int, pool_token_id: int) -> BatchExecution:
        account = self._require_account()
        fee = self.fees().swap_fee
        if fee is None:
            raise ChainError("Swap fee unknown")
        balances = self.balances()
        self.orchestrator.check_funds(fee, balances.native_balance if balances else None)
        action = intents.swap_nft(account, self._address("nft"), user_token_id, pool_token_id, fee)
        return await self.orchestrator.submit_batch(await self._nft_plan(account, action), on_step=self._print_step)

    async def buy_nft(self, count: int) -> PendingIntent:
        account = self._require_account()
        quote = await self.nft_quoter.quote(count)
        call = quote.to_call()
        balances = self.balances()
        self.orchestrator.check_funds(call.value, balances.native_balance if balances else None)
        pending = await self.orchestrator.run(intents.buy_nft(account, call, count))
        self.nft_quoter.clear()
        return pending

    # ── Main loop ────────────────────────────────────────────────────

    async def run(self, duration_minutes: float = 10) -> None:
        """Watch the slot for ``duration_minutes``, printing each change."""
        if self.db is not None:
            await self.db.init_schema()
            print(f"  Database ready: {self.db.db_path}\n")

        target = short_address(self.account) if self.account else f"game #{self.viewed_game_id}"
        print(f"  Watching: {target}")
        print(f"  Duration: {duration_minutes} minutes\n")
        print("=" * 60)

        self.watch()
        self.scheduler.start()
        self.prices.start()

        end_time = datetime.now() + timedelta(minutes=duration_minutes)
        try:
            while datetime.now() < end_time:
                self.report(self.tick())
                await asyncio.sleep(TICK_SECONDS)
        finally:
            await self.scheduler.stop()
            await self.prices.stop()
            for task in list(self._background):
                await task
        print(f"\n{'=' * 60}")
        print("Session ended")

    def report(self, view: GameView) -> None:
        """Print one status line, only when it changed."""
        line = self.describe(view)
        if line != self._last_line:
            print(f"[{datetime.now():%H:%M:%S}] {line}")
            self._last_line = line

    def describe(self, view: GameView) -> str:
        parts = [view.phase.value.upper()]
        if view.game_id:
            parts.append(f"#{view.game_id}")
        game = view.game
        if game is not None and game.has_game:
            player = " ".join(f"{c.rank}{c.suit[0]}" for c in game.player_hand)
            dealer = " ".join(f"{c.rank}{c.suit[0]}" for c in game.dealer_hand)
            parts.append(f"you {game.player_total} [{player}] vs dealer {game.dealer_total} [{dealer}]")
            parts.append(f"odds {implied_win_odds(game.player_total, game.dealer_total, view.resolved)}%")
        if view.trading_window_open:
            parts.append(f"trading {view.seconds_until_can_act}s")
        if view.phase in (Phase.AWAITING_DEAL, Phase.DEALER_RESOLVING) and view.seconds_until_stuck is not None:
            parts.append(f"stuck in {view.seconds_until_stuck}s")
        market = view.market
        if market is not None and market.exists:
            parts.append(f"YES {format_percent(market.yes_price)} / NO {format_percent(market.no_price)}")
            if market.resolved:
                parts.append(f"result {market.result.label}")
            if market.user_claimable:
                parts.append(f"claimable {format_units(market.user_claimable, 18, 4)}")
        balances = self.balances()
        if balances is not None and balances.native_balance is not None:
            parts.append(f"{format_ether(balances.native_balance, 4)} ETH")
        if view.legal_actions:
            parts.append("can: " + ",".join(sorted(a.value for a in view.legal_actions)))
        if view.stale:
            parts.append(f"[{view.freshness.value.upper()}]")
        return " | ".join(parts)

    def _print_step(self, execution: BatchExecution) -> None:
        if execution.two_step:
            print(f"    [TX] Step {len(execution.steps) + 1}/{execution.total_steps}: {execution.status_label}")
