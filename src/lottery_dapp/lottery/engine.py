"""
Lottery client engine.

Owns one wallet session, contract gateway, synchronizer, orchestrator and
state store for its whole lifetime. The presentation layer reads
``get_view()`` and calls the ``request_*`` intents; it never touches the
components directly.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from typing import Any, Callable, Coroutine, Dict, Optional, Set

from lottery_dapp.blockchain.gateway import ContractGateway
from lottery_dapp.lottery.errors import LotteryDappError
from lottery_dapp.lottery.models import Session, TransactionOutcome
from lottery_dapp.lottery.orchestrator import TransactionOrchestrator
from lottery_dapp.lottery.resolver import resolve_view
from lottery_dapp.lottery.state_store import StateStore
from lottery_dapp.lottery.synchronizer import StateSynchronizer
from lottery_dapp.utils.common import format_ether, same_address
from lottery_dapp.utils.logger import get_logger
from lottery_dapp.wallet.provider import WalletProvider
from lottery_dapp.wallet.session import ProviderSession

logger = get_logger(__name__)


class EngineUnavailable(LotteryDappError):
    """The engine is closed or waiting to be rebuilt after a network change."""


class LotteryEngine:
    """Wallet/contract synchronization and transaction orchestration."""

    def __init__(
        self,
        config: Dict[str, Any],
        provider: Optional[WalletProvider],
        *,
        gateway: Optional[ContractGateway] = None,
        store: Optional[StateStore] = None,
        reload_callback: Optional[Callable[[Any], None]] = None,
    ) -> None:
        self.config = config
        self.store = store or StateStore()
        self.gateway = gateway or ContractGateway(config)
        self.session = ProviderSession(provider, on_reload=self._on_network_changed)
        self.synchronizer = StateSynchronizer(
            self.gateway,
            self.store,
            config,
            current_address=lambda: self.session.address,
        )
        self.orchestrator = TransactionOrchestrator(
            self.gateway,
            self.store,
            config,
            on_settled=self.synchronizer.refresh,
        )

        self._reload_callback = reload_callback
        self._reloading = False
        self._closed = False
        self._started = False
        self._tasks: Set[asyncio.Task] = set()

        self.session.add_listener(self._on_session_changed)

    @property
    def reloading(self) -> bool:
        return self._reloading

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Silent reconnect, then make sure the display has data."""
        if self._started:
            return
        self._started = True
        logger.info("Starting lottery engine for contract %s", self.gateway.contract_address)

        session = await self.session.silent_reconnect()
        await self._drain()
        if session is None:
            await self.synchronizer.refresh()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.info("Closing lottery engine")

        self.session.close()
        self.orchestrator.abandon("engine closed")
        await self.synchronizer.close()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if not self.gateway.closed:
            self.gateway.close()
        self.store.clear_all_data()

    # ------------------------------------------------------------------
    # Presentation boundary
    # ------------------------------------------------------------------
    async def request_connect(self) -> Session:
        self._ensure_usable()
        session = await self.session.connect()
        await self._drain()
        return session

    async def request_disconnect(self) -> None:
        self._ensure_usable()
        self.session.disconnect()
        await self._drain()

    async def request_action(self, name: str, value: Optional[int] = None) -> TransactionOutcome:
        self._ensure_usable()
        return await self.orchestrator.dispatch(name, value)

    async def request_refresh(self) -> bool:
        self._ensure_usable()
        return await self.synchronizer.refresh()

    def get_view(self) -> Dict[str, Any]:
        snapshot = self.store.get_snapshot()
        session = self.session.session
        view = resolve_view(
            session.address if session else None,
            snapshot,
            in_flight=self.orchestrator.in_flight,
            entry_fee_wei=self.orchestrator.entry_fee,
        )
        return {
            "view": asdict(view),
            "snapshot": self.store.serialize_snapshot(snapshot),
            "loading": self.store.is_loading,
            "inFlight": self.orchestrator.in_flight,
            "transaction": self.store.get_transaction(),
            "session": self.store.serialize_session(session),
            "lastOutcome": self.store.serialize_outcome(self.store.get_last_outcome()),
            "contract": self.contract_info(),
            "reloading": self._reloading,
        }

    def contract_info(self) -> Dict[str, Any]:
        return {
            "address": self.gateway.contract_address,
            "entryFeeWei": self.orchestrator.entry_fee,
            "entryFeeEth": format_ether(self.orchestrator.entry_fee),
            "chainId": self.session.session.chain_id if self.session.session else None,
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "reloading" if self._reloading else ("closed" if self._closed else "running"),
            "walletPresent": self.session.has_provider,
            "connected": self.session.is_active,
            "polling": self.synchronizer.polling,
            "orchestrator": self.orchestrator.state.value,
            "gateway": self.gateway.get_status(),
        }

    # ------------------------------------------------------------------
    # Session wiring
    # ------------------------------------------------------------------
    def _on_session_changed(self, session: Optional[Session]) -> None:
        if self._closed or self._reloading:
            return

        previous = self.gateway.bound_address
        self.gateway.bind(session)
        self.store.set_session(session)

        if self.orchestrator.in_flight:
            if session is None:
                self.orchestrator.abandon("wallet disconnected before confirmation")
            elif not same_address(previous, session.address):
                self.orchestrator.abandon("wallet account changed before confirmation")

        if session is not None:
            self._spawn(self._session_active())
        else:
            self._spawn(self.synchronizer.stop_polling())

    async def _session_active(self) -> None:
        await self.synchronizer.refresh()
        self.synchronizer.start_polling()

    def _on_network_changed(self, chain_id: Any) -> None:
        if self._reloading or self._closed:
            return
        self._reloading = True
        logger.warning("Network changed to %s; tearing down for reload", chain_id)

        self.synchronizer.halt()
        self.orchestrator.abandon("network changed")
        self.gateway.close()
        self._spawn(self.synchronizer.stop_polling())
        self.store.mark_reload(chain_id)
        if self._reload_callback is not None:
            self._reload_callback(chain_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _ensure_usable(self) -> None:
        if self._closed:
            raise EngineUnavailable("Lottery engine is closed")
        if self._reloading:
            raise EngineUnavailable("Network changed; reload in progress")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; session follow-up skipped")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Engine task failed: %s", task.exception())

    async def _drain(self) -> None:
        """Wait for session follow-up work (first refresh, timer arm/disarm)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
