"""Read-only MCP server over the Prediction Jack contracts."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from ..chain.models import GameSnapshot, MarketSnapshot
from ..chain.reader import ChainReader
from ..chain.utils import format_ether, format_units, parse_units
from ..engine.state_machine import GameMarketStateMachine
from ..pricing.model import (
    check_price_invariant,
    format_percent,
    implied_win_odds,
    pool_size_tier,
    quote_for_target_count,
)

logger = logging.getLogger(__name__)


def _tool(name: str, description: str, properties: dict, required: list[str]) -> types.Tool:
    return types.Tool(
        name=name,
        description=description,
        inputSchema={"type": "object", "properties": properties, "required": required},
    )


_GAME_ID = {"type": "integer", "description": "Game id (from list_active_games)."}


class PredictionJackMCPServer:

    def __init__(self, reader: ChainReader, config: Optional[dict] = None, name: str = "predictionjack"):
        self.reader = reader
        self.config = config or {}
        self.server = Server(name)
        self._register_handlers()

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def list_tools() -> list[types.Tool]:
            return self._tools()

        @self.server.call_tool()
        async def call_tool(
            name: str, arguments: dict[str, Any]
        ) -> list[types.TextContent]:
            try:
                result = await self._dispatch(name, arguments)
                text = json.dumps(result, indent=2, default=str)
            except Exception as e:
                logger.error("Tool %s failed: %s", name, e)
                text = json.dumps({"error": str(e), "tool": name}, indent=2)
            return [types.TextContent(type="text", text=text)]

    @staticmethod
    def _tools() -> list[types.Tool]:
        return [
            _tool(
                "get_game_view",
                "Current phase, hands, countdowns and market for a game. "
                "Includes whether the game looks stuck waiting for randomness.",
                {"game_id": _GAME_ID},
                ["game_id"],
            ),
            _tool(
                "get_market",
                "Prediction market for a game: YES/NO prices as percentages, "
                "deposits, volume, resolution and result.",
                {"game_id": _GAME_ID},
                ["game_id"],
            ),
            _tool(
                "list_active_games",
                "Page through active game ids.",
                {
                    "offset": {"type": "integer", "default": 0},
                    "limit": {"type": "integer", "default": 20},
                },
                [],
            ),
            _tool(
                "get_player_stats",
                "Lifetime games, wins, losses, pushes and busts for a player address.",
                {"address": {"type": "string"}},
                ["address"],
            ),
            _tool(
                "get_fees",
                "Current start-game, wrap, swap, breed and unhatch fees in ETH.",
                {},
                [],
            ),
            _tool(
                "implied_win_odds",
                "Display heuristic for the player's chance from the two totals. "
                "Not a market price.",
                {
                    "player_total": {"type": "integer"},
                    "dealer_total": {"type": "integer"},
                    "resolved": {"type": "boolean", "default": False},
                },
                ["player_total", "dealer_total"],
            ),
            _tool(
                "share_prices",
                "Convert YES/NO basis-point prices to percentages and check they sum to 100%.",
                {"yes_bp": {"type": "integer"}, "no_bp": {"type": "integer"}},
                ["yes_bp", "no_bp"],
            ),
            _tool(
                "pool_size_tier",
                "Classify a pool depth given in ETH (THIN / MEDIUM / DEEP / BEST).",
                {"value_eth": {"type": "string", "description": "Decimal ETH amount, e.g. '0.05'."}},
                ["value_eth"],
            ),
            _tool(
                "quote_target_count",
                "Scale one probe quote (amount_in for amount_out) to a target output "
                "amount with a safety buffer. All amounts in base units.",
                {
                    "probe_in": {"type": "string"},
                    "probe_out": {"type": "string"},
                    "target": {"type": "string"},
                    "buffer": {"type": "string", "default": "1.05"},
                },
                ["probe_in", "probe_out", "target"],
            ),
        ]

    async def _dispatch(self, name: str, args: dict[str, Any]) -> Any:
        if name == "get_game_view":
            return await self._game_view(int(args["game_id"]))

        if name == "get_market":
            market = await self.reader.get_market_display(int(args["game_id"]))
            return format_market(market)

        if name == "list_active_games":
            page = await self.reader.get_active_games(args.get("offset", 0), args.get("limit", 20))
            return {"game_ids": list(page.game_ids), "total": page.total, "has_more": page.has_more}

        if name == "get_player_stats":
            return (await self.reader.get_player_stats(args["address"])).model_dump()

        if name == "get_fees":
            fees = await self.reader.get_fees()
            return {k: format_ether(v) if v is not None else None for k, v in fees.model_dump().items()}

        if name == "implied_win_odds":
            odds = implied_win_odds(args["player_total"], args["dealer_total"], args.get("resolved", False))
            return {"player_win_pct": odds, "note": "display heuristic, not a market price"}

        if name == "share_prices":
            yes_bp, no_bp = int(args["yes_bp"]), int(args["no_bp"])
            return {
                "yes": format_percent(yes_bp),
                "no": format_percent(no_bp),
                "sums_to_100": check_price_invariant(
                    MarketSnapshot(game_id=0, yes_price=yes_bp, no_price=no_bp)
                ),
            }

        if name == "pool_size_tier":
            tier = pool_size_tier(parse_units(args["value_eth"]))
            return {"tier": tier.name, "label": tier.label, "description": tier.description}

        if name == "quote_target_count":
            amount = quote_for_target_count(
                int(args["probe_in"]), int(args["probe_out"]), int(args["target"]),
                args.get("buffer", "1.05"),
            )
            return {"amount_in": str(amount), "amount_in_eth": format_ether(amount)}

        return {"error": f"Unknown tool: {name}"}

    async def _game_view(self, game_id: int) -> dict:
        game = await self.reader.get_game(game_id)
        market = None
        if game.market_created:
            market = await self.reader.get_market_display(game_id)
        machine = GameMarketStateMachine.from_config(self.config)
        machine.observe(game, market)
        view = machine.evaluate(time.time())
        return {
            "phase": view.phase.value,
            "game": format_game(game),
            "trading_window_open": view.trading_window_open,
            "seconds_until_can_act": view.seconds_until_can_act,
            "seconds_until_stuck": view.seconds_until_stuck,
            "resolved": view.resolved,
            "implied_win_pct": implied_win_odds(game.player_total, game.dealer_total, view.resolved),
            "market": format_market(market) if market is not None else None,
        }

    async def run(self) -> None:
        logger.info("Starting MCP server '%s' ...", self.server.name)
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )


def format_game(game: GameSnapshot) -> dict:
    return {
        "game_id": game.game_id,
        "player": game.player,
        "state": game.state.label,
        "player_total": game.player_total,
        "dealer_total": game.dealer_total,
        "player_cards": [f"{c.rank} of {c.suit}" for c in game.player_hand],
        "dealer_cards": [f"{c.rank} of {c.suit}" for c in game.dealer_hand],
        "market_created": game.market_created,
        "last_action_at": game.last_action_at,
    }


def format_market(market: MarketSnapshot) -> dict:
    return {
        "game_id": market.game_id,
        "yes": format_percent(market.yes_price),
        "no": format_percent(market.no_price),
        "yes_deposits": format_units(market.yes_deposits, 18, 4),
        "no_deposits": format_units(market.no_deposits, 18, 4),
        "volume": format_units(market.volume, 18, 4),
        "trading_active": market.trading_active,
        "resolved": market.resolved,
        "result": market.result.label,
    }
