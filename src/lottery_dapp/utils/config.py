"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from lottery_dapp.blockchain.contracts import (
    DEFAULT_CONTRACT_ADDRESS,
    DEFAULT_ENTRY_FEE_WEI,
    DEFAULT_FALLBACK_RPC_URL,
)
from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)

CONFIG_ENV_VAR = "LOTTERY_DAPP_CONFIG"
DEFAULT_CONFIG_FILE = Path("config") / "lottery.conf"

# Environment prefixes mapped to config sections, e.g. SYNC_POLL_INTERVAL_SEC -> sync.poll_interval_sec
ENV_SECTIONS = {
    "BLOCKCHAIN_": "blockchain",
    "WALLET_": "wallet",
    "SYNC_": "sync",
    "SERVER_": "server",
    "APP_": "app",
}

# Keys whose values must never reach the logs
SECRET_KEYS = {"private_keys", "private_key"}


def load_config(config_file: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from a JSON file and environment variables"""
    config: Dict[str, Any] = {}

    if config_file is None:
        config_file = os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE
    config_file = Path(config_file)

    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                file_config = json.load(f)
            config.update(file_config)
            logger.info("Loaded configuration from %s", config_file)
        except (OSError, ValueError) as e:
            logger.error("Error loading config file %s: %s", config_file, e)
    else:
        logger.warning("Config file %s not found. Will only use environment variables.", config_file)

    config = _apply_env_overrides(config)

    logger.debug("Configuration after applying environment overrides: %s", json.dumps(redact(config), indent=2))

    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def redact(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the config with secret values masked."""
    cleaned: Dict[str, Any] = {}
    for section, values in config.items():
        if isinstance(values, dict):
            cleaned[section] = {
                key: ("***" if key in SECRET_KEYS and value else value) for key, value in values.items()
            }
        else:
            cleaned[section] = values
    return cleaned


def save_config(config: Dict[str, Any], config_file: Optional[Union[str, Path]] = None) -> None:
    """Save configuration to file"""
    config_file = Path(config_file) if config_file else DEFAULT_CONFIG_FILE

    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        logger.info("Configuration saved to %s", config_file)
    except OSError as e:
        logger.error("Error saving configuration: %s", e)


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split(".")
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def default_config() -> Dict[str, Any]:
    """Baseline configuration written by ``lottery-dapp init-config``."""
    return {
        "blockchain": {
            "contract_address": DEFAULT_CONTRACT_ADDRESS,
            "fallback_rpc_url": DEFAULT_FALLBACK_RPC_URL,
            "entry_fee_wei": DEFAULT_ENTRY_FEE_WEI,
            "rpc_timeout": 10,
            "tx_timeout_seconds": 180,
        },
        "wallet": {
            "private_keys": [],
            "rpc_url": DEFAULT_FALLBACK_RPC_URL,
            "chain_id": 31337,
            "auto_approve": True,
            "preauthorized": False,
            "gas_multiplier": 1.15,
        },
        "sync": {
            "poll_interval_sec": 5,
            "event_driven": False,
            "event_poll_interval_sec": 2,
        },
        "server": {
            "host": "0.0.0.0",
            "port": 6080,
            "cors_origins": ["*"],
        },
        "app": {
            "reload_on_network_change": True,
        },
    }
