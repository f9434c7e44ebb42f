"""
Command-line entry point.

  predictionjack watch [--game-id N] [--duration MIN]   -- follow a game
  predictionjack mcp                                     -- serve MCP tools on stdio
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from .chain.reader import ChainReader
from .engine.config import load_config
from .engine.database import Database
from .engine.session import GameSession
from .mcp.server import PredictionJackMCPServer


async def run(
    duration_minutes: float = 10,
    game_id: Optional[int] = None,
    config_path: str = "config.yaml",
) -> None:
    """High-level entry: load config, build session, run loop."""
    config = load_config(config_path)
    db = Database(config.get("database", {}).get("path", "data/predictionjack.db"))
    session = GameSession.from_config(config, game_id=game_id, db=db)

    print("Initializing Prediction Jack session...\n")
    await session.run(duration_minutes=duration_minutes)


async def serve(config_path: str = "config.yaml") -> None:
    config = load_config(config_path)
    server = PredictionJackMCPServer(ChainReader.from_config(config), config)
    await server.run()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Prediction Jack client")
    parser.add_argument(
        "--config", default="config.yaml", help="Config file path"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Follow your current game, or any game by id")
    watch.add_argument(
        "--game-id", type=int, default=None, help="Spectate this game instead of your own"
    )
    watch.add_argument(
        "--duration", type=float, default=10, help="Duration in minutes (default: 10)"
    )

    sub.add_parser("mcp", help="Serve read-only MCP tools over stdio")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "mcp":
        asyncio.run(serve(args.config))
    else:
        asyncio.run(
            run(
                duration_minutes=args.duration,
                game_id=args.game_id,
                config_path=args.config,
            )
        )


if __name__ == "__main__":
    main()
