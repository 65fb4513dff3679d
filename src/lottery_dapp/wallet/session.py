"""Provider session: owns the wallet connection and its subscriptions."""

from __future__ import annotations

from typing import Any, Callable, List, Optional

from web3 import Web3

from lottery_dapp.lottery.errors import LotteryDappError, UserRejected, WalletUnavailable
from lottery_dapp.lottery.models import Session
from lottery_dapp.utils.common import as_int, same_address
from lottery_dapp.utils.logger import get_logger
from lottery_dapp.wallet.provider import ACCOUNTS_CHANGED, CHAIN_CHANGED, WalletProvider

logger = get_logger(__name__)

SessionListener = Callable[[Optional[Session]], None]


class ProviderSession:
    """Connects to a wallet provider and tracks the active account.

    Listeners are called synchronously with the new ``Session`` (or ``None``)
    whenever the identity changes. A network change is not an identity
    change: it clears the session silently and hands control to
    ``on_reload`` exactly once.
    """

    def __init__(
        self,
        provider: Optional[WalletProvider],
        *,
        on_reload: Optional[Callable[[Any], None]] = None,
    ) -> None:
        self._provider = provider
        self._on_reload = on_reload
        self._session: Optional[Session] = None
        self._listeners: List[SessionListener] = []
        self._subscribed = False
        self._reload_requested = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def address(self) -> Optional[str]:
        return self._session.address if self._session else None

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def has_provider(self) -> bool:
        return self._provider is not None

    @property
    def reload_requested(self) -> bool:
        return self._reload_requested

    def add_listener(self, callback: SessionListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: SessionListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _set_session(self, session: Optional[Session]) -> None:
        self._session = session
        for callback in list(self._listeners):
            try:
                callback(session)
            except Exception as exc:  # pragma: no cover
                logger.error("Session listener failed: %s", exc)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------
    async def connect(self) -> Session:
        """Request account access; the prior session survives any failure."""
        self._check_not_reloading()
        if self._provider is None:
            raise WalletUnavailable("MetaMask or a similar wallet is not installed.")

        accounts = await self._provider.request("eth_requestAccounts")
        self._check_not_reloading()
        if not accounts:
            raise UserRejected("Wallet returned no accounts")

        chain_id = as_int(await self._provider.request("eth_chainId"))
        # The network may have changed while the wallet prompt was open
        self._check_not_reloading()
        session = self._build_session(accounts[0], chain_id)

        self._subscribe()
        if self._session is not None and same_address(self._session.address, session.address):
            return self._session

        logger.info("Wallet connected: %s (chain %s)", session.address, chain_id)
        self._set_session(session)
        return session

    async def silent_reconnect(self) -> Optional[Session]:
        """Reconnect without prompting if the wallet already authorized us."""
        if self._provider is None:
            logger.debug("No wallet provider; skipping silent reconnect")
            return None
        try:
            accounts = await self._provider.request("eth_accounts")
        except LotteryDappError as exc:
            logger.warning("Silent reconnect failed: %s", exc)
            return None
        if not accounts:
            return None
        try:
            return await self.connect()
        except LotteryDappError as exc:
            logger.warning("Silent reconnect failed: %s", exc)
            return None

    def disconnect(self) -> None:
        """Drop the session and the signing authority; idempotent."""
        self._unsubscribe()
        if self._session is not None:
            logger.info("Wallet disconnected: %s", self._session.address)
            self._set_session(None)

    def close(self) -> None:
        self.disconnect()
        self._listeners.clear()

    def _check_not_reloading(self) -> None:
        if self._reload_requested:
            raise WalletUnavailable("Network changed; waiting for reload")

    def _build_session(self, address: str, chain_id: int) -> Session:
        assert self._provider is not None
        signer = self._provider.get_signer(address)
        return Session(
            address=Web3.to_checksum_address(address),
            chain_id=chain_id,
            signer=signer,
            web3=self._provider.web3,
        )

    # ------------------------------------------------------------------
    # Provider notifications
    # ------------------------------------------------------------------
    def _subscribe(self) -> None:
        if self._subscribed or self._provider is None:
            return
        self._provider.on(ACCOUNTS_CHANGED, self._on_accounts_changed)
        self._provider.on(CHAIN_CHANGED, self._on_chain_changed)
        self._subscribed = True

    def _unsubscribe(self) -> None:
        if not self._subscribed or self._provider is None:
            return
        self._provider.remove_listener(ACCOUNTS_CHANGED, self._on_accounts_changed)
        self._provider.remove_listener(CHAIN_CHANGED, self._on_chain_changed)
        self._subscribed = False

    def _on_accounts_changed(self, accounts: List[str]) -> None:
        if not accounts:
            logger.info("Wallet reported no accounts; disconnecting")
            self.disconnect()
            return

        current = self._session
        if current is None or same_address(current.address, accounts[0]):
            return

        try:
            session = self._build_session(accounts[0], current.chain_id)
        except LotteryDappError as exc:
            logger.error("Cannot switch to account %s: %s", accounts[0], exc)
            self.disconnect()
            return
        logger.info("Wallet account changed: %s -> %s", current.address, session.address)
        self._set_session(session)

    def _on_chain_changed(self, chain_id: Any) -> None:
        if self._reload_requested:
            return
        self._reload_requested = True
        logger.warning("Wallet network changed to %s; reload required", chain_id)

        self._unsubscribe()
        # Listeners are not told: they must not rebuild handles for the old chain
        self._session = None
        if self._on_reload is not None:
            self._on_reload(chain_id)
