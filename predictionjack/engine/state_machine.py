"""
Game/market state machine.

``observe`` is fed every committed snapshot and detects edges (cards
arriving, a hand resolving, a market resolving). ``evaluate(now)`` is a pure
function of the last observation and the wall clock, so the countdown and
stuck-game judgement can be recomputed every second without re-reading the
chain.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..chain.models import GameSnapshot, GameState, MarketSnapshot
from ..chain.utils import same_address
from .store import Freshness

logger = logging.getLogger(__name__)

DEFAULT_VRF_TIMEOUT = 300
DEFAULT_TRADING_DELAY = 30

RESOLUTION_KEYWORDS = ("win", "won", "lose", "lost", "push", "bust", "blackjack", "finished", "complete")

# States in which the contract is waiting on a VRF callback.
VRF_PENDING_STATES = frozenset({GameState.DEALING, GameState.HITTING, GameState.STANDING})


class Phase(str, Enum):
    NO_GAME = "no_game"
    AWAITING_DEAL = "awaiting_deal"
    ACTIVE_TURN = "active_turn"
    DEALER_RESOLVING = "dealer_resolving"
    BUSTED = "busted"
    FINISHED = "finished"
    STUCK_CANDIDATE = "stuck_candidate"


class LegalAction(str, Enum):
    START_GAME = "start_game"
    HIT = "hit"
    STAND = "stand"
    CANCEL_STUCK = "cancel_stuck"
    BUY_YES = "buy_yes"
    BUY_NO = "buy_no"
    SELL_YES = "sell_yes"
    SELL_NO = "sell_no"
    CLAIM = "claim"


class EventKind(str, Enum):
    GAME_STARTED = "game_started"
    CARDS_DEALT = "cards_dealt"
    RESOLVED = "resolved"
    MARKET_RESOLVED = "market_resolved"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    game_id: int


@dataclass(frozen=True)
class GameView:
    """Everything the presentation layer needs for one tick."""
    phase: Phase
    game_id: int
    freshness: Freshness
    trading_window_open: bool
    seconds_until_can_act: int
    seconds_until_stuck: Optional[int]
    resolved: bool
    legal_actions: frozenset[LegalAction]
    game: Optional[GameSnapshot] = None
    market: Optional[MarketSnapshot] = None

    @property
    def stale(self) -> bool:
        return self.freshness in (Freshness.STALE, Freshness.DISCONNECTED)

    @property
    def disconnected(self) -> bool:
        return self.freshness == Freshness.DISCONNECTED

    @property
    def stuck(self) -> bool:
        return self.phase == Phase.STUCK_CANDIDATE

    def can(self, action: LegalAction) -> bool:
        return action in self.legal_actions


def is_resolution_status(status: str) -> bool:
    text = status.lower()
    return any(word in text for word in RESOLUTION_KEYWORDS)


@dataclass
class _Observation:
    game: Optional[GameSnapshot] = None
    market: Optional[MarketSnapshot] = None
    freshness: Freshness = Freshness.LOADING
    claimable_total: int = 0


class GameMarketStateMachine:
    """
    Tracks one game slot: the connected account's current game, or a game
    viewed by id (``account=None``; no player actions are ever legal then).
    """

    def __init__(
        self,
        account: Optional[str] = None,
        vrf_timeout: int = DEFAULT_VRF_TIMEOUT,
        trading_delay: int = DEFAULT_TRADING_DELAY,
    ):
        self.account = account
        self.vrf_timeout = vrf_timeout
        self.trading_delay = trading_delay
        self._obs = _Observation()
        self._dealt: set[int] = set()
        self._resolved_games: set[int] = set()
        self._resolved_markets: set[int] = set()
        self._expecting_deal = False

    @classmethod
    def from_config(cls, config: dict, account: Optional[str] = None) -> "GameMarketStateMachine":
        game_cfg = config.get("game", {})
        return cls(
            account=account,
            vrf_timeout=game_cfg.get("vrf_timeout", DEFAULT_VRF_TIMEOUT),
            trading_delay=game_cfg.get("trading_delay", DEFAULT_TRADING_DELAY),
        )

    # ── Observation ──────────────────────────────────────────────────

    def expect_deal(self) -> None:
        """A start-game transaction confirmed; show AwaitingDeal until the new game appears."""
        self._expecting_deal = True

    def observe(
        self,
        game: Optional[GameSnapshot],
        market: Optional[MarketSnapshot] = None,
        freshness: Freshness = Freshness.FRESH,
        claimable_total: Optional[int] = None,
    ) -> list[Event]:
        """Record the latest snapshots and return the edges they cross."""
        events: list[Event] = []
        prev = self._obs.game

        if game is not None and game.has_game:
            gid = game.game_id
            new_game = prev is None or prev.game_id != gid
            started_here = False
            if new_game:
                events.append(Event(EventKind.GAME_STARTED, gid))
                started_here = self._expecting_deal
                self._expecting_deal = False

            # Edge only: a hand seen without cards, or a game we just started.
            # Attaching to a game already holding cards is not a deal.
            dealt_edge = started_here if new_game else not prev.player_cards
            if game.player_cards and gid not in self._dealt:
                self._dealt.add(gid)
                if dealt_edge:
                    events.append(Event(EventKind.CARDS_DEALT, gid))

            if gid not in self._resolved_games and self._is_resolved(game):
                self._resolved_games.add(gid)
                events.append(Event(EventKind.RESOLVED, gid))

        if market is not None:
            if market.resolved and market.game_id not in self._resolved_markets:
                self._resolved_markets.add(market.game_id)
                events.append(Event(EventKind.MARKET_RESOLVED, market.game_id))
            elif not market.resolved and market.game_id in self._resolved_markets:
                logger.warning("Market %d reported unresolved after resolving; keeping resolved", market.game_id)
                market = market.model_copy(update={
                    "resolved": True,
                    "trading_active": False,
                    "result": self._obs.market.result
                    if self._obs.market and self._obs.market.game_id == market.game_id
                    else market.result,
                })

        if game is not None:
            self._obs.game = game
        if market is not None:
            self._obs.market = market
        self._obs.freshness = freshness
        if claimable_total is not None:
            self._obs.claimable_total = claimable_total

        for event in events:
            logger.info("Game %d: %s", event.game_id, event.kind.value)
        return events

    def set_freshness(self, freshness: Freshness) -> None:
        self._obs.freshness = freshness

    def set_claimable_total(self, total: int) -> None:
        self._obs.claimable_total = total

    @staticmethod
    def _is_resolved(game: GameSnapshot) -> bool:
        if game.state in (GameState.BUSTED, GameState.FINISHED):
            return True
        if game.state == GameState.INACTIVE:
            return False
        return bool(game.can_start_new) or is_resolution_status(game.status)

    # ── Evaluation ───────────────────────────────────────────────────

    def trading_window_end(self, game: GameSnapshot) -> int:
        if game.trading_period_ends:
            return game.trading_period_ends
        return game.last_action_at + self.trading_delay

    def classify(self, game: Optional[GameSnapshot], now: float) -> Phase:
        if game is None or not game.has_game:
            return Phase.AWAITING_DEAL if self._expecting_deal else Phase.NO_GAME

        gid = game.game_id
        if gid in self._resolved_games or self._is_resolved(game):
            if self._expecting_deal:
                return Phase.AWAITING_DEAL
            if game.state == GameState.BUSTED or game.player_total > 21:
                return Phase.BUSTED
            return Phase.FINISHED

        if game.state == GameState.INACTIVE:
            return Phase.AWAITING_DEAL if self._expecting_deal else Phase.NO_GAME

        if game.state in VRF_PENDING_STATES and self._is_stuck(game, now):
            return Phase.STUCK_CANDIDATE

        dealt = gid in self._dealt or bool(game.player_cards)
        if game.state == GameState.DEALING:
            return Phase.ACTIVE_TURN if dealt else Phase.AWAITING_DEAL
        if game.state == GameState.STANDING:
            return Phase.DEALER_RESOLVING
        return Phase.ACTIVE_TURN

    def _is_stuck(self, game: GameSnapshot, now: float) -> bool:
        if game.can_cancel_stuck:
            return True
        return now - game.last_action_at >= self.vrf_timeout

    def evaluate(self, now: float) -> GameView:
        """Derive the view for wall-clock ``now``. Does not change any state."""
        obs = self._obs
        game, market = obs.game, obs.market
        if market is not None and game is not None and market.game_id != game.game_id:
            market = None

        phase = self.classify(game, now)
        game_id = game.game_id if game is not None else 0

        window_open, countdown, until_stuck = False, 0, None
        if game is not None and game.has_game:
            if phase == Phase.ACTIVE_TURN:
                end = self.trading_window_end(game)
                window_open = now < end
                countdown = max(0, math.ceil(end - now))
            if game.state in VRF_PENDING_STATES and phase in (
                Phase.AWAITING_DEAL, Phase.ACTIVE_TURN, Phase.DEALER_RESOLVING, Phase.STUCK_CANDIDATE,
            ):
                until_stuck = max(0, math.ceil(game.last_action_at + self.vrf_timeout - now))

        resolved = phase in (Phase.BUSTED, Phase.FINISHED) or (market is not None and market.resolved)

        return GameView(
            phase=phase,
            game_id=game_id,
            freshness=obs.freshness,
            trading_window_open=window_open,
            seconds_until_can_act=countdown,
            seconds_until_stuck=until_stuck,
            resolved=resolved,
            legal_actions=self._legal_actions(phase, game, market, window_open, obs),
            game=game,
            market=market,
        )

    def _legal_actions(
        self,
        phase: Phase,
        game: Optional[GameSnapshot],
        market: Optional[MarketSnapshot],
        window_open: bool,
        obs: _Observation,
    ) -> frozenset[LegalAction]:
        if obs.freshness == Freshness.DISCONNECTED:
            return frozenset()

        actions: set[LegalAction] = set()
        own = self.account is not None and (
            game is None or not game.has_game or same_address(game.player, self.account)
        )

        if own:
            if phase in (Phase.NO_GAME, Phase.BUSTED, Phase.FINISHED):
                if obs.claimable_total == 0 and (game is None or game.can_start_new is not False):
                    actions.add(LegalAction.START_GAME)
            elif phase == Phase.ACTIVE_TURN and game.state == GameState.ACTIVE and not window_open:
                if game.can_hit is not False and game.player_total < 21:
                    actions.add(LegalAction.HIT)
                if game.can_stand is not False:
                    actions.add(LegalAction.STAND)
            elif phase == Phase.STUCK_CANDIDATE:
                actions.add(LegalAction.CANCEL_STUCK)

        if market is not None and market.exists:
            if market.trading_active and not market.resolved:
                actions.update((LegalAction.BUY_YES, LegalAction.BUY_NO))
                if market.user_yes_shares > 0:
                    actions.add(LegalAction.SELL_YES)
                if market.user_no_shares > 0:
                    actions.add(LegalAction.SELL_NO)
            if market.resolved and market.user_claimable > 0 and self.account is not None:
                actions.add(LegalAction.CLAIM)

        return frozenset(actions)
