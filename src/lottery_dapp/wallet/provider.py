"""Wallet providers exposing an EIP-1193 style surface to the session.

``LocalWalletProvider`` is the process-side counterpart of a browser-injected
wallet: it owns a set of accounts, answers account/chain requests, signs
transactions after approval and emits ``accountsChanged`` / ``chainChanged``
notifications when its user switches account, locks it or changes network.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from decimal import Decimal
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from lottery_dapp.blockchain.client import translate_error
from lottery_dapp.lottery.errors import LotteryDappError, UserRejected
from lottery_dapp.utils.common import as_bool, as_float, as_int
from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)

ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"

# (kind, details) -> approved?  kind is "accounts" or "transaction"
ApprovalCallback = Callable[[str, Dict[str, Any]], bool]


class WalletProvider:
    """Base provider: listener bookkeeping plus the request surface."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def on(self, event: str, callback: Callable[[Any], None]) -> None:
        with self._lock:
            self._listeners[event].append(callback)
        logger.debug("Wallet listener added for %s", event)

    def remove_listener(self, event: str, callback: Callable[[Any], None]) -> bool:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)
                return True
        return False

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, []))

    def _emit(self, event: str, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:  # pragma: no cover
                logger.error("Wallet listener for %s failed: %s", event, exc)

    # ------------------------------------------------------------------
    # Provider surface
    # ------------------------------------------------------------------
    async def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        raise NotImplementedError

    def get_signer(self, address: str) -> Any:
        raise NotImplementedError

    @property
    def web3(self) -> Web3:
        raise NotImplementedError


class LocalSigner:
    """Signing authority for one local account."""

    def __init__(
        self,
        account: LocalAccount,
        w3: Web3,
        chain_id: int,
        *,
        approve: ApprovalCallback,
        gas_multiplier: float = 1.15,
        gas_price: Optional[int] = None,
    ) -> None:
        self._account = account
        self._w3 = w3
        self.chain_id = chain_id
        self._approve = approve
        self._gas_multiplier = gas_multiplier
        self._gas_price = gas_price

    @property
    def address(self) -> str:
        return self._account.address

    async def send_transaction(self, contract_function: Any, *, value: int = 0) -> str:
        """Estimate, sign and broadcast ``contract_function``; returns the tx hash."""
        function_name = getattr(contract_function, "fn_name", "transaction")
        details = {"from": self.address, "function": function_name, "value": value}
        if not self._approve("transaction", details):
            raise UserRejected("User denied transaction signature")

        w3 = self._w3

        def _send() -> str:
            gas_estimate = contract_function.estimate_gas({"from": self.address, "value": value})
            gas_price = self._gas_price or w3.eth.gas_price
            txn = contract_function.build_transaction(
                {
                    "from": self.address,
                    "value": value,
                    "gas": int(gas_estimate * self._gas_multiplier),
                    "gasPrice": gas_price,
                    "nonce": w3.eth.get_transaction_count(self.address),
                    "chainId": self.chain_id,
                }
            )
            signed = self._account.sign_transaction(txn)
            # eth-account renamed rawTransaction to raw_transaction
            raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
            tx_hash = w3.eth.send_raw_transaction(raw)
            return "0x" + bytes(tx_hash).hex()

        try:
            return await asyncio.to_thread(_send)
        except LotteryDappError:
            raise
        except Exception as exc:
            raise translate_error(exc, function_name) from exc


class LocalWalletProvider(WalletProvider):
    """Wallet backed by private keys held in configuration."""

    def __init__(
        self,
        private_keys: Sequence[str],
        rpc_url: str,
        chain_id: int,
        *,
        rpc_timeout: float = 10.0,
        approve: Optional[ApprovalCallback] = None,
        preauthorized: bool = False,
        gas_multiplier: float = 1.15,
        gas_price: Optional[int] = None,
        w3: Optional[Web3] = None,
    ) -> None:
        super().__init__()
        if not private_keys:
            raise ValueError("LocalWalletProvider needs at least one private key")

        self._accounts: List[LocalAccount] = [Account.from_key(key) for key in private_keys]
        self._selected = 0
        self._authorized = preauthorized
        self._approve: ApprovalCallback = approve or (lambda kind, details: True)
        self._chain_id = chain_id
        self.rpc_url = rpc_url
        self._rpc_timeout = rpc_timeout
        self._gas_multiplier = gas_multiplier
        self._gas_price = gas_price
        self._w3 = w3 or self._build_web3(rpc_url)
        logger.info("Local wallet loaded with %d account(s), chain %s", len(self._accounts), chain_id)

    def _build_web3(self, rpc_url: str) -> Web3:
        return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": self._rpc_timeout}))

    @property
    def web3(self) -> Web3:
        return self._w3

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def accounts(self) -> List[str]:
        return [account.address for account in self._accounts]

    @property
    def selected_address(self) -> str:
        return self._accounts[self._selected].address

    @property
    def authorized(self) -> bool:
        return self._authorized

    async def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        if method == "eth_requestAccounts":
            if not self._authorized:
                if not self._approve("accounts", {"accounts": self.accounts}):
                    raise UserRejected("User rejected the request")
                self._authorized = True
                logger.info("Wallet access granted for %s", self.selected_address)
            return [self.selected_address]
        if method == "eth_accounts":
            return [self.selected_address] if self._authorized else []
        if method == "eth_chainId":
            return hex(self._chain_id)
        raise ValueError(f"Unsupported wallet method {method}")

    def get_signer(self, address: str) -> LocalSigner:
        for account in self._accounts:
            if account.address.lower() == address.lower():
                return LocalSigner(
                    account,
                    self._w3,
                    self._chain_id,
                    approve=self._approve,
                    gas_multiplier=self._gas_multiplier,
                    gas_price=self._gas_price,
                )
        raise UserRejected(f"Account {address} is not managed by this wallet")

    # ------------------------------------------------------------------
    # Wallet-side user actions
    # ------------------------------------------------------------------
    def select_account(self, account: Union[int, str]) -> str:
        """Switch the active account and notify subscribers."""
        if isinstance(account, int):
            index = account
        else:
            index = next(
                (i for i, item in enumerate(self._accounts) if item.address.lower() == account.lower()),
                -1,
            )
        if not 0 <= index < len(self._accounts):
            raise ValueError(f"Unknown wallet account {account!r}")

        self._selected = index
        if self._authorized:
            self._emit(ACCOUNTS_CHANGED, [self.selected_address])
        return self.selected_address

    def revoke(self) -> None:
        """Lock the wallet / revoke site access; subscribers see an empty list."""
        self._authorized = False
        self._emit(ACCOUNTS_CHANGED, [])

    def switch_chain(self, chain_id: int, rpc_url: Optional[str] = None) -> None:
        """Move the wallet to another network and notify subscribers."""
        self._chain_id = int(chain_id)
        if rpc_url and rpc_url != self.rpc_url:
            self.rpc_url = rpc_url
            self._w3 = self._build_web3(rpc_url)
        logger.info("Wallet switched to chain %s", self._chain_id)
        self._emit(CHAIN_CHANGED, hex(self._chain_id))


def _parse_keys(raw: Any) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        return [key.strip() for key in raw.split(",") if key.strip()]
    return [str(key) for key in raw]


def discover_wallet_provider(config: Dict[str, Any]) -> Optional[WalletProvider]:
    """Build the configured wallet, or ``None`` when no wallet is present."""
    wallet_cfg = config.get("wallet", {})
    keys = _parse_keys(wallet_cfg.get("private_keys"))
    if not keys:
        logger.warning("No wallet keys configured; running read-only")
        return None

    auto_approve = as_bool(wallet_cfg.get("auto_approve"), True)
    gas_price_gwei = wallet_cfg.get("gas_price")
    gas_price = Web3.to_wei(Decimal(str(gas_price_gwei)), "gwei") if gas_price_gwei else None

    blockchain_cfg = config.get("blockchain", {})
    return LocalWalletProvider(
        keys,
        wallet_cfg.get("rpc_url") or blockchain_cfg.get("fallback_rpc_url") or "http://127.0.0.1:8545",
        as_int(wallet_cfg.get("chain_id"), 31337),
        rpc_timeout=as_float(wallet_cfg.get("rpc_timeout"), 10.0),
        approve=lambda kind, details: auto_approve,
        preauthorized=as_bool(wallet_cfg.get("preauthorized"), False),
        gas_multiplier=as_float(wallet_cfg.get("gas_multiplier"), 1.15),
        gas_price=gas_price,
    )
