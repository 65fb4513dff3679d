"""Keeps the published contract snapshot in step with the chain."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

from lottery_dapp.blockchain.gateway import ContractGateway
from lottery_dapp.lottery.errors import failure_reason
from lottery_dapp.lottery.models import ContractSnapshot
from lottery_dapp.lottery.state_store import StateStore
from lottery_dapp.utils.common import as_bool, as_float, same_address
from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)


async def _not_entered() -> bool:
    return False


class StateSynchronizer:
    """Fetches the six-field snapshot and keeps it fresh while a wallet is connected.

    - ``refresh()`` reads every field concurrently and publishes all of them
      or none of them.
    - The polling loop (and, when enabled, the contract event loop) only runs
      between ``start_polling()`` and ``stop_polling()``; the engine ties both
      to the wallet session.
    """

    def __init__(
        self,
        gateway: ContractGateway,
        store: StateStore,
        config: Optional[Dict[str, Any]] = None,
        *,
        current_address: Callable[[], Optional[str]] = lambda: None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._current_address = current_address

        sync_cfg = (config or {}).get("sync", {})
        self.poll_interval = as_float(sync_cfg.get("poll_interval_sec"), 5.0)
        self.event_driven = as_bool(sync_cfg.get("event_driven"), False)
        self.event_poll_interval = as_float(sync_cfg.get("event_poll_interval_sec"), 2.0)

        self._generation = 0
        self._outstanding = 0
        self._refresh_count = 0
        self._closed = False
        self._from_block: Optional[int] = None
        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def polling(self) -> bool:
        return bool(self._tasks)

    @property
    def refresh_count(self) -> int:
        """Number of refresh attempts started so far."""
        return self._refresh_count

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------
    async def refresh(self) -> bool:
        """Fetch a complete snapshot; returns True when it was published."""
        if self._closed:
            logger.debug("Synchronizer closed; refresh skipped")
            return False

        self._refresh_count += 1
        self._generation += 1
        generation = self._generation
        address = self._current_address()
        handle = self._gateway.read_handle()

        self._begin_fetch()
        try:
            results = await asyncio.gather(
                handle.current_round(),
                handle.get_players_count(),
                handle.owner(),
                handle.lottery_state(),
                handle.recent_winner(),
                handle.has_entered(address) if address else _not_entered(),
                return_exceptions=True,
            )

            failures = [item for item in results if isinstance(item, BaseException)]
            if failures:
                logger.error(
                    "Failed to fetch contract data (%d of %d calls failed): %s",
                    len(failures),
                    len(results),
                    failure_reason(failures[0]),
                )
                return False

            if self._closed:
                return False
            current = self._current_address()
            if (address or current) and not same_address(address, current):
                logger.debug("Wallet changed during refresh %s; result discarded", generation)
                return False

            round_id, player_count, owner, round_state, last_winner, has_entered = results
            snapshot = ContractSnapshot(
                round_id=round_id,
                player_count=player_count,
                owner=owner,
                round_state=round_state,
                last_winner=last_winner,
                caller_has_entered=has_entered,
                caller_address=address,
                generation=generation,
            )
            return self._store.publish_snapshot(snapshot)
        finally:
            self._end_fetch()

    def _begin_fetch(self) -> None:
        self._outstanding += 1
        self._store.set_loading(True)

    def _end_fetch(self) -> None:
        self._outstanding = max(0, self._outstanding - 1)
        if self._outstanding == 0:
            self._store.set_loading(False)

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------
    def start_polling(self) -> None:
        """Arm the refresh timer (idempotent)."""
        if self._closed or self._tasks:
            return
        self._stop_event = asyncio.Event()
        self._from_block = None
        loop = asyncio.get_running_loop()
        self._tasks = [loop.create_task(self._poll_loop(), name="lottery-sync-poll")]
        if self.event_driven:
            self._tasks.append(loop.create_task(self._events_loop(), name="lottery-sync-events"))
        logger.info("Snapshot polling started (every %ss, event-driven=%s)", self.poll_interval, self.event_driven)

    async def stop_polling(self) -> None:
        """Cancel the refresh timer and wait for the loops to finish."""
        if not self._tasks:
            return
        tasks, self._tasks = self._tasks, []
        if self._stop_event is not None:
            self._stop_event.set()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.error("Polling task ended with error: %s", exc)
        logger.info("Snapshot polling stopped")

    def halt(self) -> None:
        """Refuse all further refreshes immediately; loops wind down on their own."""
        self._closed = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def close(self) -> None:
        self.halt()
        await self.stop_polling()

    async def _wait_stop(self, timeout: float) -> bool:
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            if await self._wait_stop(self.poll_interval):
                break
            try:
                await self.refresh()
            except Exception as exc:
                logger.error("Snapshot poll error: %s", exc)

    async def _events_loop(self) -> None:
        """Refresh as soon as the contract emits a lottery event."""
        while not self._stop_event.is_set():
            try:
                handle = self._gateway.read_handle()
                if self._from_block is None:
                    self._from_block = await handle.get_latest_block() + 1
                else:
                    events, last_block = await handle.get_events(self._from_block)
                    self._from_block = last_block + 1
                    if events:
                        logger.info(
                            "Contract events %s up to block %s; refreshing",
                            sorted({evt.name for evt in events}),
                            last_block,
                        )
                        await self.refresh()
            except Exception as exc:
                logger.error("Contract event poll error: %s", exc)

            if await self._wait_stop(self.event_poll_interval):
                break
