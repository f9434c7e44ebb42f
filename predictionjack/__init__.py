"""
Prediction Jack client — game/market sync + transaction orchestration engine.

Layers:
  chain/     — Pure contract clients (views, writes, wallets, ABIs)
  pricing/   — Pure pricing helpers + injectable USD price service
  engine/    — Snapshot store, state machine, polling, transaction orchestration
  mcp/       — Read-only MCP server for agent workflows
  cli        — Script entry point (watch a game, serve MCP)
"""

__version__ = "0.1.0"
