"""In-memory stand-ins for the wallet provider and contract handles."""

import asyncio
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from lottery_dapp.blockchain.client import BlockchainEvent
from lottery_dapp.lottery.errors import RpcFailure, TransactionReverted, UserRejected
from lottery_dapp.lottery.models import RoundState, Session
from lottery_dapp.wallet.provider import ACCOUNTS_CHANGED, CHAIN_CHANGED, WalletProvider

OWNER = "0x" + "0b" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CONTRACT = "0x9E8C9d5d8C27A0D3b9Ad96889E64d0eb0722Bd64"

FAST_CONFIG = {"sync": {"poll_interval_sec": 60}}


class FakeChain:
    """Contract state shared by every handle the fake gateway hands out."""

    def __init__(self, *, owner: str = OWNER, state: RoundState = RoundState.OPEN, round_id: int = 1) -> None:
        self.owner = owner
        self.state = state
        self.round_id = round_id
        self.players: List[str] = []
        self.winner: Optional[str] = None
        self.block = 100
        self.events: List[BlockchainEvent] = []

        self.fail: Set[str] = set()
        self.calls: Counter = Counter()
        self.sent: List[Dict[str, Any]] = []
        self.send_error: Optional[Exception] = None
        self.revert_reason: Optional[str] = None
        self.receipt_gate: Optional[asyncio.Event] = None
        self.read_gate: Optional[asyncio.Event] = None

    def entered(self, address: str) -> bool:
        return address.lower() in {player.lower() for player in self.players}

    def apply(self, function_name: str, sender: str) -> None:
        if function_name == "enter":
            self.players.append(sender)
        elif function_name == "startLottery":
            self.state = RoundState.OPEN
            self.round_id += 1
            self.players = []
        elif function_name == "endLottery":
            self.state = RoundState.CLOSED
            self.winner = self.players[0] if self.players else None


class FakeHandle:
    def __init__(self, chain: FakeChain, signer_address: Optional[str] = None) -> None:
        self.chain = chain
        self.signer_address = signer_address

    @property
    def can_write(self) -> bool:
        return self.signer_address is not None

    async def _read(self, name: str, value: Any) -> Any:
        self.chain.calls[name] += 1
        gate = self.chain.read_gate
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if name in self.chain.fail:
            raise RpcFailure(f"{name}() failed: node unreachable", method=name)
        return value

    async def current_round(self) -> int:
        return await self._read("currentRound", self.chain.round_id)

    async def get_players_count(self) -> int:
        return await self._read("getPlayersCount", len(self.chain.players))

    async def owner(self) -> str:
        return await self._read("owner", self.chain.owner)

    async def lottery_state(self) -> RoundState:
        return await self._read("lotteryState", self.chain.state)

    async def recent_winner(self) -> Optional[str]:
        return await self._read("recentWinner", self.chain.winner)

    async def has_entered(self, address: str) -> bool:
        return await self._read("hasEntered", self.chain.entered(address))

    async def get_players(self) -> List[str]:
        return await self._read("getPlayers", list(self.chain.players))

    async def send(self, function_name: str, *args, value: int = 0) -> str:
        if self.chain.send_error is not None:
            raise self.chain.send_error
        self.chain.sent.append({"function": function_name, "value": value, "from": self.signer_address})
        return "0x%064x" % len(self.chain.sent)

    async def wait_for_transaction(self, tx_hash: str, timeout: int = 180) -> Dict[str, Any]:
        if self.chain.receipt_gate is not None:
            await self.chain.receipt_gate.wait()
        self.chain.block += 1
        if self.chain.revert_reason:
            raise TransactionReverted(self.chain.revert_reason, tx_hash=tx_hash)
        self.chain.apply(self.chain.sent[-1]["function"], self.signer_address)
        return {"status": 1, "blockNumber": self.chain.block, "transactionHash": tx_hash, "gasUsed": 21000}

    async def get_latest_block(self) -> int:
        return self.chain.block

    async def get_events(self, from_block: int):
        events, self.chain.events = self.chain.events, []
        return events, self.chain.block

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "latestBlock": self.chain.block}


class FakeGateway:
    def __init__(self, chain: Optional[FakeChain] = None) -> None:
        self.chain = chain or FakeChain()
        self.contract_address = CONTRACT
        self.bind_calls = 0
        self._session: Optional[Session] = None
        self._read: Optional[FakeHandle] = None
        self._write: Optional[FakeHandle] = None
        self._closed = False
        self.bind(None)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def bound_address(self) -> Optional[str]:
        return self._session.address if self._session else None

    def bind(self, session: Optional[Session]) -> None:
        if self._closed:
            raise RuntimeError("Contract gateway is closed")
        self.bind_calls += 1
        self._session = session
        self._read = FakeHandle(self.chain)
        self._write = FakeHandle(self.chain, session.address) if session else None

    def read_handle(self) -> FakeHandle:
        if self._closed or self._read is None:
            raise RuntimeError("Contract gateway is closed")
        return self._read

    def write_handle(self) -> Optional[FakeHandle]:
        return None if self._closed else self._write

    def close(self) -> None:
        self._closed = True
        self._read = self._write = None
        self._session = None

    def get_status(self) -> Dict[str, Any]:
        return {"contract": self.contract_address, "boundTo": self.bound_address or "fallback", "closed": self._closed}


@dataclass
class FakeSigner:
    address: str


class FakeProvider(WalletProvider):
    def __init__(self, accounts=(ALICE,), chain_id: int = 1, *, authorized: bool = False, approve: bool = True) -> None:
        super().__init__()
        self.accounts = list(accounts)
        self.chain_id = chain_id
        self.authorized = authorized
        self.approve = approve
        self.requests: List[str] = []
        self.prompt_gate: Optional[asyncio.Event] = None

    async def request(self, method: str, params=None) -> Any:
        self.requests.append(method)
        if method == "eth_requestAccounts":
            if self.prompt_gate is not None:
                await self.prompt_gate.wait()
            if not self.authorized:
                if not self.approve:
                    raise UserRejected("User rejected the request")
                self.authorized = True
            return list(self.accounts)
        if method == "eth_accounts":
            return list(self.accounts) if self.authorized else []
        if method == "eth_chainId":
            return hex(self.chain_id)
        raise ValueError(method)

    def get_signer(self, address: str) -> FakeSigner:
        return FakeSigner(address)

    @property
    def web3(self):
        return None

    def change_accounts(self, accounts) -> None:
        self.accounts = list(accounts)
        self._emit(ACCOUNTS_CHANGED, list(accounts))

    def change_chain(self, chain_id: int) -> None:
        self.chain_id = chain_id
        self._emit(CHAIN_CHANGED, hex(chain_id))


def make_session(address: str = ALICE, chain_id: int = 1) -> Session:
    return Session(address=address, chain_id=chain_id, signer=FakeSigner(address), web3=None)


async def settle(engine) -> None:
    """Let session follow-up tasks (refresh, timer arm/disarm) finish."""
    await engine._drain()
