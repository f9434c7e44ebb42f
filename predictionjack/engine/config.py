"""
Configuration loader.

Reads a YAML config over built-in defaults and injects secrets from
environment variables (``.env`` is loaded on import).
"""

import copy
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG: dict = {
    "chain": {
        "rpc_url": None,
        "chain_id": 8453,
        "contracts": {
            "blackjack": None,
            "prediction_hub": None,
            "token": None,
            "nft": None,
            "wrapper": None,
            "otc": None,
            "quoter": None,
        },
    },
    "polling": {
        "game_interval": 1.0,
        "market_interval": 1.0,
        "claimables_interval": 5.0,
        "balances_interval": 5.0,
        "fees_interval": 60.0,
        "stale_after": 1,
        "disconnect_after": 5,
    },
    "game": {
        "vrf_timeout": 300,
        "trading_delay": 30,
    },
    "transactions": {
        "confirmation_timeout": 120.0,
        "poll_interval": 1.0,
        "approve_amount": None,  # None -> approve exactly what is needed
        "quote_buffer": "1.05",
    },
    "prices": {
        "refresh_interval": 10.0,
        "alchemy_api_key": None,
    },
    "database": {
        "path": "data/predictionjack.db",
    },
    "wallet": {
        "private_key": None,
        "rpc_url": None,
        "address": None,
    },
}

# env var -> (section, key)
ENV_OVERRIDES = {
    "PJ_RPC_URL": ("chain", "rpc_url"),
    "PJ_PRIVATE_KEY": ("wallet", "private_key"),
    "PJ_WALLET_RPC_URL": ("wallet", "rpc_url"),
    "ALCHEMY_API_KEY": ("prices", "alchemy_api_key"),
}


def _merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(config_path: str = "config.yaml") -> dict:
    """
    Load configuration from YAML file.

    A missing file means defaults only. Environment variables win over the
    file. Raises ValueError when no RPC URL is configured anywhere.
    """
    file_config: dict = {}
    if Path(config_path).exists():
        with open(config_path, "r") as f:
            file_config = yaml.safe_load(f) or {}

    config = _merge(DEFAULT_CONFIG, file_config)

    for env_var, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            config[section][key] = value

    if not config["chain"].get("rpc_url"):
        raise ValueError("PJ_RPC_URL not found in environment or chain.rpc_url in config")

    return config
