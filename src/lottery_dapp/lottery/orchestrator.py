"""
Transaction orchestrator.

Serializes user-submitted contract writes through
IDLE -> DISPATCHING -> AWAITING_CONFIRMATION -> settled -> IDLE and triggers
exactly one snapshot refresh after every settled write. A second dispatch
while one is in flight is rejected without touching the chain.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from lottery_dapp.blockchain.contracts import DEFAULT_ENTRY_FEE_WEI
from lottery_dapp.blockchain.gateway import ContractGateway
from lottery_dapp.lottery.errors import LotteryDappError, failure_reason
from lottery_dapp.lottery.models import (
    ActionName,
    OrchestratorState,
    OutcomeStatus,
    PendingAction,
    TransactionOutcome,
)
from lottery_dapp.lottery.state_store import StateStore
from lottery_dapp.utils.common import as_int
from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)


class TransactionOrchestrator:
    """Runs at most one contract write at a time."""

    def __init__(
        self,
        gateway: ContractGateway,
        store: StateStore,
        config: Optional[Dict[str, Any]] = None,
        *,
        on_settled: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._on_settled = on_settled

        blockchain_cfg = (config or {}).get("blockchain", {})
        self.entry_fee = as_int(blockchain_cfg.get("entry_fee_wei"), DEFAULT_ENTRY_FEE_WEI)
        self._tx_timeout = as_int(blockchain_cfg.get("tx_timeout_seconds"), 180)

        self._state = OrchestratorState.IDLE
        self._pending: Optional[PendingAction] = None
        self._wait_task: Optional[asyncio.Future] = None
        self._abandon_reason: Optional[str] = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._state != OrchestratorState.IDLE

    @property
    def pending(self) -> Optional[PendingAction]:
        return self._pending

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    async def dispatch(self, name: Union[str, ActionName], value: Optional[int] = None) -> TransactionOutcome:
        try:
            action = name if isinstance(name, ActionName) else ActionName.parse(name)
        except ValueError as exc:
            return self._reject(str(name), str(exc))

        if self._state != OrchestratorState.IDLE:
            return self._reject(action.value, "transaction already in flight")

        handle = self._gateway.write_handle()
        if handle is None:
            return self._reject(action.value, "wallet required")

        try:
            value = self._attached_value(action, value)
        except ValueError as exc:
            return self._reject(action.value, str(exc))

        pending = PendingAction(name=action, value=value)
        self._pending = pending
        self._abandon_reason = None
        self._transition(OrchestratorState.DISPATCHING)
        logger.info("Dispatching %s (value=%s)", action.value, value)

        outcome: Optional[TransactionOutcome] = None
        try:
            tx_hash = await handle.send(action.contract_function, value=value or 0)
            pending.tx_hash = tx_hash
            if self._abandon_reason:
                raise LotteryDappError(self._abandon_reason)

            self._transition(OrchestratorState.AWAITING_CONFIRMATION)
            logger.info("Transaction sent! Hash: %s", tx_hash)

            receipt = await self._await_confirmation(handle, tx_hash)
            outcome = TransactionOutcome(
                action=action.value,
                status=OutcomeStatus.SUCCESS,
                tx_hash=tx_hash,
                block_number=receipt.get("blockNumber"),
            )
            logger.info("%s successful in block %s", action.value, outcome.block_number)
        except Exception as exc:
            reason = failure_reason(exc)
            logger.error("Failed to execute %s: %s", action.value, reason)
            outcome = TransactionOutcome(
                action=action.value,
                status=OutcomeStatus.FAILURE,
                tx_hash=pending.tx_hash,
                reason=reason,
            )
        finally:
            if outcome is None:
                outcome = TransactionOutcome(
                    action=action.value,
                    status=OutcomeStatus.FAILURE,
                    tx_hash=pending.tx_hash,
                    reason="dispatch cancelled",
                )
            self._settle(outcome)

        await self._refresh_after_settle()
        return outcome

    def abandon(self, reason: str) -> bool:
        """Give up on the in-flight write; it settles as a failure, never as success."""
        if self._state == OrchestratorState.IDLE:
            return False
        self._abandon_reason = reason
        if self._wait_task is not None and not self._wait_task.done():
            self._wait_task.cancel()
        logger.warning("Abandoning in-flight %s: %s", self._pending.name.value if self._pending else "?", reason)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _attached_value(self, action: ActionName, value: Optional[int]) -> Optional[int]:
        if action == ActionName.ENTER:
            if value is None:
                return self.entry_fee
            if int(value) != self.entry_fee:
                raise ValueError(f"enter requires exactly {self.entry_fee} wei")
            return self.entry_fee
        if value:
            raise ValueError(f"{action.value} does not accept a value")
        return None

    async def _await_confirmation(self, handle: Any, tx_hash: str) -> Dict[str, Any]:
        self._wait_task = asyncio.ensure_future(handle.wait_for_transaction(tx_hash, timeout=self._tx_timeout))
        task = self._wait_task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._wait_task = None

        if task.cancelled():
            raise LotteryDappError(self._abandon_reason or "confirmation wait cancelled")
        return task.result()

    def _transition(self, state: OrchestratorState) -> None:
        self._state = state
        self._store.set_transaction(state, self._pending)

    def _settle(self, outcome: TransactionOutcome) -> None:
        self._pending = None
        self._abandon_reason = None
        self._transition(OrchestratorState.IDLE)
        self._store.set_last_outcome(outcome)

    def _reject(self, action: str, reason: str) -> TransactionOutcome:
        logger.warning("Rejected %s: %s", action, reason)
        return TransactionOutcome(action=action, status=OutcomeStatus.REJECTED, reason=reason)

    async def _refresh_after_settle(self) -> None:
        if self._on_settled is None:
            return
        try:
            await self._on_settled()
        except Exception as exc:
            logger.error("Refresh after settlement failed: %s", exc)
