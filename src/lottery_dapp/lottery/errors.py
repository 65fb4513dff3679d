"""Error taxonomy shared by the wallet, gateway and orchestration layers."""

from __future__ import annotations

from typing import Any, Optional


class LotteryDappError(Exception):
    """Base class for all engine errors."""


class WalletUnavailable(LotteryDappError):
    """No wallet provider is present."""

    def __init__(self, message: str = "No wallet provider available") -> None:
        super().__init__(message)


class UserRejected(LotteryDappError):
    """The user declined an access or signature request (EIP-1193 code 4001)."""

    code = 4001

    def __init__(self, message: str = "User rejected the request") -> None:
        super().__init__(message)
        self.reason = message


class RpcFailure(LotteryDappError):
    """A read, a submission or the confirmation wait could not reach the node."""

    def __init__(self, message: str, *, method: Optional[str] = None) -> None:
        super().__init__(message)
        self.method = method


class TransactionReverted(LotteryDappError):
    """Contract logic rejected the call, either at estimation or on chain."""

    def __init__(self, reason: str, *, tx_hash: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.tx_hash = tx_hash


def failure_reason(exc: BaseException) -> str:
    """Pick the most specific human-readable reason carried by ``exc``.

    Order: explicit revert reason, node error payload message, exception
    message, exception type name.
    """
    reason = getattr(exc, "reason", None)
    if isinstance(reason, str) and reason:
        return reason

    data: Any = getattr(exc, "data", None)
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])

    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message

    if exc.args:
        first = exc.args[0]
        if isinstance(first, dict) and first.get("message"):
            return str(first["message"])
        text = str(exc)
        if text:
            return text

    return type(exc).__name__
