"""Derived view: every UI decision the presentation layer must not make itself."""

from __future__ import annotations

from typing import Optional

from lottery_dapp.blockchain.contracts import DEFAULT_ENTRY_FEE_WEI
from lottery_dapp.lottery.models import ContractSnapshot, DerivedView, RoundState
from lottery_dapp.utils.common import format_ether, same_address

LABEL_CONNECT = "Connect Wallet to Enter"
LABEL_ALREADY_ENTERED = "Ticket Purchased (Max 1 Per Round)"
LABEL_ENTER = "Enter Lottery ({fee} ETH)"
LABEL_CLOSED = "Lottery is CLOSED"
LABEL_OPEN = "Lottery is OPEN"
LABEL_START = "Start New Lottery"
LABEL_END = "End Lottery & Pick Winner"
LABEL_PENDING = "Pending Tx..."
LABEL_WALLET = "Wallet: {short}..."
LABEL_CONNECT_WALLET = "Connect Wallet"


def primary_action_label(connected: bool, has_entered: bool, is_round_open: bool, entry_fee_wei: int) -> str:
    """Entry button label; the order of these checks is the precedence."""
    if not connected:
        return LABEL_CONNECT
    if has_entered:
        return LABEL_ALREADY_ENTERED
    if is_round_open:
        return LABEL_ENTER.format(fee=format_ether(entry_fee_wei))
    return LABEL_CLOSED


def wallet_label(address: Optional[str], in_flight: bool) -> str:
    if in_flight:
        return LABEL_PENDING
    if address:
        return LABEL_WALLET.format(short=address[:6])
    return LABEL_CONNECT_WALLET


def resolve_view(
    session_address: Optional[str],
    snapshot: Optional[ContractSnapshot],
    *,
    in_flight: bool = False,
    entry_fee_wei: int = DEFAULT_ENTRY_FEE_WEI,
) -> DerivedView:
    """Compute the derived view from the session address and latest snapshot.

    Entrant data is only trusted when the snapshot was fetched for the same
    address that is connected now; until the next refresh after an account
    switch, entry stays disabled.
    """
    connected = bool(session_address)
    is_round_open = snapshot is not None and snapshot.round_state == RoundState.OPEN
    is_round_closed = snapshot is not None and snapshot.round_state == RoundState.CLOSED
    is_owner = connected and snapshot is not None and same_address(snapshot.owner, session_address)

    entrant_known = connected and snapshot is not None and same_address(snapshot.caller_address, session_address)
    has_entered = entrant_known and snapshot.caller_has_entered

    entry_allowed = connected and is_round_open and entrant_known and not has_entered and not in_flight

    if snapshot is None:
        round_state_label = "LOADING"
    else:
        round_state_label = snapshot.round_state.name

    return DerivedView(
        is_owner=is_owner,
        is_round_open=is_round_open,
        is_round_closed=is_round_closed,
        entry_allowed=entry_allowed,
        primary_action_label=primary_action_label(connected, has_entered, is_round_open, entry_fee_wei),
        can_start_round=is_owner and is_round_closed and not in_flight,
        can_end_round=is_owner and is_round_open and not in_flight,
        start_round_label=LABEL_START if is_round_closed else LABEL_OPEN,
        end_round_label=LABEL_END if is_round_open else LABEL_CLOSED,
        round_state_label=round_state_label,
        wallet_label=wallet_label(session_address, in_flight),
    )
