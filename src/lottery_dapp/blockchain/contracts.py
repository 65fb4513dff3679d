"""
Lottery contract constants and ABI artifacts
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_utils import event_abi_to_log_topic

from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONTRACT_ADDRESS = "0x9E8C9d5d8C27A0D3b9Ad96889E64d0eb0722Bd64"
DEFAULT_ENTRY_FEE_WEI = 10_000_000_000_000_000  # 0.01 ETH
DEFAULT_FALLBACK_RPC_URL = "http://127.0.0.1:8545"

ABI_DIR = Path(__file__).parent / "abi"

LOTTERY_EVENTS = ("LotteryStarted", "PlayerEntered", "WinnerPicked")


def load_lottery_abi(abi_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Load the Lottery ABI shipped with the package (or from ``abi_path``)."""
    path = Path(abi_path) if abi_path else ABI_DIR / "Lottery.abi"
    if not path.is_file():
        raise FileNotFoundError(f"Lottery ABI file not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        abi = json.load(handle)
    logger.debug("Loaded Lottery ABI with %d items from %s", len(abi), path)
    return abi


def event_abis_by_topic(abi: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Map ``0x``-prefixed topic0 hashes to their event ABI entries."""
    topics: Dict[str, Dict[str, Any]] = {}
    for item in abi:
        if item.get("type") != "event":
            continue
        topic = "0x" + bytes(event_abi_to_log_topic(item)).hex()
        topics[topic.lower()] = item
    return topics
