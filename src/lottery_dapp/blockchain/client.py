"""Contract handle for the lottery: an async-friendly wrapper around web3.py."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, TimeExhausted

from lottery_dapp.blockchain.contracts import event_abis_by_topic
from lottery_dapp.lottery.errors import (
    LotteryDappError,
    RpcFailure,
    TransactionReverted,
    failure_reason,
)
from lottery_dapp.lottery.models import RoundState
from lottery_dapp.utils.common import is_zero_address
from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)

REVERT_PREFIX = "execution reverted: "


@dataclass
class BlockchainEvent:
    """Lightweight representation of an on-chain event."""

    name: str
    args: Dict[str, Any]
    block_number: int
    transaction_hash: str


def to_hex(value: Any) -> str:
    """Normalise bytes/HexBytes/str hashes to a lowercase ``0x`` string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return (text if text.startswith("0x") else "0x" + text).lower()


def translate_error(exc: BaseException, method: str) -> LotteryDappError:
    """Map web3/transport exceptions onto the engine's error taxonomy."""
    if isinstance(exc, LotteryDappError):
        return exc
    if isinstance(exc, ContractLogicError):
        reason = failure_reason(exc)
        if reason.startswith(REVERT_PREFIX):
            reason = reason[len(REVERT_PREFIX):]
        return TransactionReverted(reason)
    if isinstance(exc, TimeExhausted):
        return RpcFailure(f"Timed out waiting for {method}", method=method)
    return RpcFailure(f"{method} failed: {failure_reason(exc)}", method=method)


class LotteryContractClient:
    """One binding of the lottery contract to a connection.

    A handle built without a signer is read-only; the gateway builds a
    separate handle bound to the session signer for writes.
    """

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        abi: List[Dict[str, Any]],
        *,
        signer: Any = None,
        label: str = "read",
    ) -> None:
        self._w3 = w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self._contract: Contract = w3.eth.contract(address=self.contract_address, abi=abi)
        self._signer = signer
        self.label = label
        self._event_abi_by_topic = event_abis_by_topic(abi)

    def __repr__(self) -> str:
        return f"LotteryContractClient({self.label}, {self.contract_address})"

    @property
    def web3(self) -> Web3:
        return self._w3

    @property
    def can_write(self) -> bool:
        return self._signer is not None

    @property
    def signer_address(self) -> Optional[str]:
        return self._signer.address if self._signer is not None else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def _call_view(self, function_name: str, *args) -> Any:
        contract = self._contract

        def _call():
            return getattr(contract.functions, function_name)(*args).call()

        try:
            return await asyncio.to_thread(_call)
        except Exception as exc:
            raise RpcFailure(f"{function_name}() failed: {failure_reason(exc)}", method=function_name) from exc

    async def current_round(self) -> int:
        return int(await self._call_view("currentRound"))

    async def get_players_count(self) -> int:
        return int(await self._call_view("getPlayersCount"))

    async def owner(self) -> str:
        return str(await self._call_view("owner"))

    async def lottery_state(self) -> RoundState:
        raw = await self._call_view("lotteryState")
        try:
            return RoundState(int(raw))
        except (TypeError, ValueError) as exc:
            raise RpcFailure(f"Unexpected lotteryState value {raw!r}", method="lotteryState") from exc

    async def recent_winner(self) -> Optional[str]:
        winner = await self._call_view("recentWinner")
        return None if is_zero_address(winner) else str(winner)

    async def has_entered(self, address: str) -> bool:
        return bool(await self._call_view("hasEntered", Web3.to_checksum_address(address)))

    async def get_players(self) -> List[str]:
        return [str(player) for player in await self._call_view("getPlayers")]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def send(self, function_name: str, *args, value: int = 0) -> str:
        if self._signer is None:
            raise RuntimeError("Contract handle is read-only")

        contract_function = getattr(self._contract.functions, function_name)(*args)
        tx_hash = await self._signer.send_transaction(contract_function, value=value)
        logger.info("Sent transaction %s for %s", tx_hash, function_name)
        return tx_hash

    async def enter(self, value: int) -> str:
        return await self.send("enter", value=value)

    async def start_lottery(self) -> str:
        return await self.send("startLottery")

    async def end_lottery(self) -> str:
        return await self.send("endLottery")

    async def wait_for_transaction(self, tx_hash: str, timeout: int = 180) -> Dict[str, Any]:
        """Block (in a worker thread) until the receipt is available.

        Raises TransactionReverted when the receipt reports a failed status.
        """
        w3 = self._w3

        def _wait():
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
            return {
                "status": int(receipt["status"]),
                "blockNumber": int(receipt["blockNumber"]),
                "transactionHash": to_hex(receipt["transactionHash"]),
                "gasUsed": int(receipt["gasUsed"]),
            }

        try:
            receipt = await asyncio.to_thread(_wait)
        except Exception as exc:
            raise translate_error(exc, "wait_for_transaction_receipt") from exc

        if receipt["status"] != 1:
            reason = await self._revert_reason(tx_hash, receipt["blockNumber"])
            raise TransactionReverted(reason, tx_hash=receipt["transactionHash"])
        return receipt

    async def _revert_reason(self, tx_hash: str, block_number: int) -> str:
        """Replay a reverted transaction against its parent block to recover the reason."""
        w3 = self._w3

        def _replay() -> str:
            tx = w3.eth.get_transaction(tx_hash)
            call = {"from": tx["from"], "to": tx["to"], "data": tx["input"], "value": tx.get("value", 0)}
            try:
                w3.eth.call(call, block_identifier=max(0, block_number - 1))
            except ContractLogicError as exc:
                reason = failure_reason(exc)
                return reason[len(REVERT_PREFIX):] if reason.startswith(REVERT_PREFIX) else reason
            return "execution reverted"

        try:
            return await asyncio.to_thread(_replay)
        except Exception as exc:
            logger.debug("Could not recover revert reason for %s: %s", tx_hash, exc)
            return "execution reverted"

    # ------------------------------------------------------------------
    # Blocks and events
    # ------------------------------------------------------------------
    async def get_latest_block(self) -> int:
        w3 = self._w3

        def _fetch() -> int:
            return int(w3.eth.block_number)

        try:
            return await asyncio.to_thread(_fetch)
        except Exception as exc:
            raise RpcFailure(f"eth_blockNumber failed: {failure_reason(exc)}", method="eth_blockNumber") from exc

    async def get_events(self, from_block: int) -> Tuple[List[BlockchainEvent], int]:
        """Fetch and decode lottery events from ``from_block`` to the chain head.

        Returns the decoded events and the last block covered by the scan.
        """
        w3 = self._w3

        def _fetch() -> Tuple[List[BlockchainEvent], int]:
            from web3._utils.events import get_event_data  # type: ignore

            latest = int(w3.eth.block_number)
            if from_block > latest:
                return [], from_block - 1

            raw_logs = w3.eth.get_logs(
                {"fromBlock": from_block, "toBlock": latest, "address": self.contract_address}
            )
            collected: List[BlockchainEvent] = []
            for raw in raw_logs:
                topics = raw.get("topics") or []
                if not topics:
                    continue
                abi = self._event_abi_by_topic.get(to_hex(topics[0]))
                if not abi:
                    logger.debug("Unknown event topic %s", to_hex(topics[0]))
                    continue
                try:
                    decoded = get_event_data(w3.codec, abi, raw)
                except Exception as exc:  # pragma: no cover - decode failures
                    logger.info("Failed to decode log %s: %s", raw, exc)
                    continue
                collected.append(
                    BlockchainEvent(
                        name=abi.get("name", "Unknown"),
                        args=dict(decoded["args"]),
                        block_number=int(decoded["blockNumber"]),
                        transaction_hash=to_hex(decoded["transactionHash"]),
                    )
                )

            collected.sort(key=lambda evt: (evt.block_number, evt.transaction_hash))
            return collected, latest

        try:
            return await asyncio.to_thread(_fetch)
        except Exception as exc:
            raise RpcFailure(f"eth_getLogs failed: {failure_reason(exc)}", method="eth_getLogs") from exc

    async def health_check(self) -> Dict[str, Any]:
        try:
            latest_block = await self.get_latest_block()
            return {"status": "healthy", "latestBlock": latest_block}
        except RpcFailure as exc:
            logger.warning("Blockchain health check failed: %s", exc)
            return {"status": "error", "detail": str(exc)}
