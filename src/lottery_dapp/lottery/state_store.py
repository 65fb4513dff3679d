"""In-memory state published to the presentation layer."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from lottery_dapp.lottery.models import (
    ContractSnapshot,
    OrchestratorState,
    PendingAction,
    Session,
    TransactionOutcome,
)
from lottery_dapp.utils.common import shorten_eth_address
from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)

SNAPSHOT_UPDATE = "snapshot_update"
LOADING_UPDATE = "loading_update"
SESSION_UPDATE = "session_update"
TRANSACTION_UPDATE = "transaction_update"
TRANSACTION_OUTCOME = "transaction_outcome"
RELOAD_REQUESTED = "reload_requested"

STORE_EVENTS = (
    SNAPSHOT_UPDATE,
    LOADING_UPDATE,
    SESSION_UPDATE,
    TRANSACTION_UPDATE,
    TRANSACTION_OUTCOME,
    RELOAD_REQUESTED,
)


class StateStore:
    """Volatile storage for the snapshot, flags and the last transaction outcome."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Callable[[dict | None], None]]] = defaultdict(list)
        self._snapshot: Optional[ContractSnapshot] = None
        self._loading = False
        self._session: Optional[Session] = None
        self._tx_state = OrchestratorState.IDLE
        self._pending: Optional[PendingAction] = None
        self._last_outcome: Optional[TransactionOutcome] = None

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Callable[[dict | None], None]) -> None:
        with self._lock:
            self._listeners[event_type].append(callback)

    def remove_listener(self, event_type: str, callback: Callable[[dict | None], None]) -> None:
        with self._lock:
            listeners = self._listeners.get(event_type, [])
            if callback in listeners:
                listeners.remove(callback)

    def _emit(self, event_type: str, payload: dict | None) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:  # pragma: no cover
                logger.error("Listener for %s failed: %s", event_type, exc)

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------
    def publish_snapshot(self, snapshot: ContractSnapshot) -> bool:
        """Replace the snapshot unless a newer generation is already published."""
        with self._lock:
            current = self._snapshot
            if current is not None and snapshot.generation < current.generation:
                logger.debug(
                    "Discarding stale snapshot generation %s (published %s)",
                    snapshot.generation,
                    current.generation,
                )
                return False
            self._snapshot = snapshot

        self._emit(SNAPSHOT_UPDATE, self.serialize_snapshot(snapshot))
        logger.debug("Published snapshot generation %s: %s", snapshot.generation, snapshot)
        return True

    def set_loading(self, loading: bool) -> None:
        with self._lock:
            if self._loading == loading:
                return
            self._loading = loading
        self._emit(LOADING_UPDATE, {"loading": loading})

    def set_session(self, session: Optional[Session]) -> None:
        with self._lock:
            self._session = session
        self._emit(SESSION_UPDATE, self.serialize_session(session))

    def set_transaction(self, state: OrchestratorState, pending: Optional[PendingAction]) -> None:
        with self._lock:
            self._tx_state = state
            self._pending = pending
        self._emit(TRANSACTION_UPDATE, self.serialize_transaction(state, pending))

    def set_last_outcome(self, outcome: TransactionOutcome) -> None:
        with self._lock:
            self._last_outcome = outcome
        self._emit(TRANSACTION_OUTCOME, self.serialize_outcome(outcome))

    def mark_reload(self, chain_id: Any) -> None:
        self._emit(RELOAD_REQUESTED, {"chainId": str(chain_id)})

    def clear_all_data(self) -> None:
        with self._lock:
            self._snapshot = None
            self._loading = False
            self._session = None
            self._tx_state = OrchestratorState.IDLE
            self._pending = None
            self._last_outcome = None
        self._emit(SNAPSHOT_UPDATE, None)
        self._emit(SESSION_UPDATE, self.serialize_session(None))
        logger.debug("State store cleared")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_snapshot(self) -> Optional[ContractSnapshot]:
        with self._lock:
            return self._snapshot

    @property
    def is_loading(self) -> bool:
        with self._lock:
            return self._loading

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._tx_state != OrchestratorState.IDLE

    def get_transaction(self) -> Dict[str, Any]:
        with self._lock:
            return self.serialize_transaction(self._tx_state, self._pending)

    def get_last_outcome(self) -> Optional[TransactionOutcome]:
        with self._lock:
            return self._last_outcome

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------
    @staticmethod
    def serialize_snapshot(snapshot: Optional[ContractSnapshot]) -> Optional[dict]:
        if snapshot is None:
            return None
        return {
            "roundId": snapshot.round_id,
            "playerCount": snapshot.player_count,
            "owner": snapshot.owner,
            "roundState": snapshot.round_state.value,
            "roundStateLabel": snapshot.round_state.name,
            "lastWinner": snapshot.last_winner,
            "lastWinnerShort": shorten_eth_address(snapshot.last_winner) if snapshot.last_winner else "N/A",
            "callerHasEntered": snapshot.caller_has_entered,
            "callerAddress": snapshot.caller_address,
            "generation": snapshot.generation,
            "fetchedAt": snapshot.fetched_at.isoformat(),
        }

    @staticmethod
    def serialize_session(session: Optional[Session]) -> dict:
        if session is None:
            return {"connected": False, "address": None, "chainId": None}
        return {"connected": True, "address": session.address, "chainId": session.chain_id}

    @staticmethod
    def serialize_transaction(state: OrchestratorState, pending: Optional[PendingAction]) -> dict:
        return {
            "state": state.value,
            "inFlight": state != OrchestratorState.IDLE,
            "action": pending.name.value if pending else None,
            "valueWei": pending.value if pending else None,
            "txHash": pending.tx_hash if pending else None,
        }

    @staticmethod
    def serialize_outcome(outcome: Optional[TransactionOutcome]) -> Optional[dict]:
        if outcome is None:
            return None
        return {
            "action": outcome.action,
            "status": outcome.status.value,
            "txHash": outcome.tx_hash,
            "reason": outcome.reason,
            "blockNumber": outcome.block_number,
            "message": outcome.message,
            "finishedAt": outcome.finished_at.isoformat(),
        }
