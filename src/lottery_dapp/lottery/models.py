"""Core data models for the lottery client engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional


class RoundState(IntEnum):
    """Lottery states as defined by the contract's LOTTERY_STATE enum."""

    OPEN = 0
    CLOSED = 1


class ActionName(str, Enum):
    """User-triggerable contract writes."""

    ENTER = "enter"
    START_ROUND = "startRound"
    END_ROUND = "endRound"

    @property
    def contract_function(self) -> str:
        return _CONTRACT_FUNCTIONS[self]

    @classmethod
    def parse(cls, name: str) -> "ActionName":
        """Accept either the intent name or the contract function name."""
        for action in cls:
            if name in (action.value, action.contract_function):
                return action
        raise ValueError(f"Unknown action '{name}'")


_CONTRACT_FUNCTIONS = {
    ActionName.ENTER: "enter",
    ActionName.START_ROUND: "startLottery",
    ActionName.END_ROUND: "endLottery",
}


class OrchestratorState(str, Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Session:
    """Authenticated binding to a wallet account.

    ``signer`` is the signing authority handed out by the wallet provider and
    ``web3`` the provider's own connection, used for reads while connected.
    """

    address: str
    chain_id: int
    signer: Any = field(repr=False, compare=False)
    web3: Any = field(repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        return bool(self.address)


@dataclass(frozen=True)
class ContractSnapshot:
    """One complete read of the six contract fields.

    ``caller_has_entered`` only describes ``caller_address``; it says nothing
    about any other account.
    """

    round_id: int
    player_count: int
    owner: str
    round_state: RoundState
    last_winner: Optional[str]
    caller_has_entered: bool
    caller_address: Optional[str] = None
    generation: int = 0
    fetched_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class PendingAction:
    """The single write currently between dispatch and settlement."""

    name: ActionName
    value: Optional[int] = None
    tx_hash: Optional[str] = None
    submitted_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class TransactionOutcome:
    """Terminal result of one dispatch."""

    action: str
    status: OutcomeStatus
    tx_hash: Optional[str] = None
    reason: Optional[str] = None
    block_number: Optional[int] = None
    finished_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def message(self) -> str:
        if self.status == OutcomeStatus.SUCCESS:
            return f"{self.action} successful!"
        if self.status == OutcomeStatus.REJECTED:
            return f"{self.action} not sent: {self.reason}"
        return f"Transaction failed: {self.reason}"


@dataclass(frozen=True)
class DerivedView:
    is_owner: bool
    is_round_open: bool
    is_round_closed: bool
    entry_allowed: bool
    primary_action_label: str
    can_start_round: bool = False
    can_end_round: bool = False
    start_round_label: str = ""
    end_round_label: str = ""
    round_state_label: str = "LOADING"
    wallet_label: str = "Connect Wallet"
