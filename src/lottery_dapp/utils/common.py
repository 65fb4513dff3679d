"""Common utility functions for the lottery client engine."""

from typing import Any, Optional

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def shorten_eth_address(address: str) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.
    Returns the first 6 and last 4 characters, separated by '...'.
    Handles addresses with or without '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"


def same_address(left: Optional[str], right: Optional[str]) -> bool:
    """Case-insensitive address comparison; an absent side never matches."""
    if not left or not right:
        return False
    return left.lower() == right.lower()


def is_zero_address(address: Optional[str]) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


def format_ether(wei: int) -> str:
    """Render a wei amount as a plain ETH string, e.g. 10**16 -> '0.01'."""
    value = Web3.from_wei(int(wei), "ether")
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def as_bool(value: Any, default: bool = False) -> bool:
    """Coerce config values (often strings from the environment) to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def as_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        if isinstance(value, str) and value.startswith("0x"):
            return int(value, 16)
        return int(value)
    except (TypeError, ValueError):
        return default


def as_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
