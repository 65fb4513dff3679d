"""Read/write handle pair for the fixed lottery contract."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from web3 import Web3

from lottery_dapp.blockchain.client import LotteryContractClient
from lottery_dapp.blockchain.contracts import (
    DEFAULT_CONTRACT_ADDRESS,
    DEFAULT_FALLBACK_RPC_URL,
    load_lottery_abi,
)
from lottery_dapp.lottery.models import Session
from lottery_dapp.utils.common import as_float
from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)


class ContractGateway:
    """Hands out contract handles for the current session.

    Handles are rebuilt on every ``bind()`` and never mutated, so a caller
    holding an old handle keeps talking to the connection it was built for.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        *,
        abi: Optional[List[Dict[str, Any]]] = None,
        fallback_web3: Optional[Web3] = None,
    ) -> None:
        blockchain_cfg = config.get("blockchain", {})
        self.contract_address: str = blockchain_cfg.get("contract_address") or DEFAULT_CONTRACT_ADDRESS
        self.fallback_rpc_url: str = blockchain_cfg.get("fallback_rpc_url") or DEFAULT_FALLBACK_RPC_URL
        self.rpc_timeout: float = as_float(blockchain_cfg.get("rpc_timeout"), 10.0)

        self._abi = abi if abi is not None else load_lottery_abi()
        self._fallback_web3 = fallback_web3
        self._session: Optional[Session] = None
        self._read: Optional[LotteryContractClient] = None
        self._write: Optional[LotteryContractClient] = None
        self._closed = False

        self.bind(None)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def bound_address(self) -> Optional[str]:
        return self._session.address if self._session else None

    def _fallback(self) -> Web3:
        if self._fallback_web3 is None:
            # HTTPProvider does not connect until the first request
            self._fallback_web3 = Web3(
                Web3.HTTPProvider(self.fallback_rpc_url, request_kwargs={"timeout": self.rpc_timeout})
            )
        return self._fallback_web3

    def bind(self, session: Optional[Session]) -> None:
        """Rebuild both handles for ``session`` (``None`` means no wallet)."""
        if self._closed:
            raise RuntimeError("Contract gateway is closed")

        self._session = session
        if session is not None:
            self._read = LotteryContractClient(session.web3, self.contract_address, self._abi, label="wallet-read")
            self._write = LotteryContractClient(
                session.web3, self.contract_address, self._abi, signer=session.signer, label="wallet-write"
            )
            logger.info("Contract handles bound to wallet %s (chain %s)", session.address, session.chain_id)
        else:
            self._read = LotteryContractClient(self._fallback(), self.contract_address, self._abi, label="fallback-read")
            self._write = None
            logger.info("Contract handles bound to fallback node %s", self.fallback_rpc_url)

    def read_handle(self) -> LotteryContractClient:
        if self._closed or self._read is None:
            raise RuntimeError("Contract gateway is closed")
        return self._read

    def write_handle(self) -> Optional[LotteryContractClient]:
        if self._closed:
            return None
        return self._write

    def close(self) -> None:
        self._closed = True
        self._read = None
        self._write = None
        self._session = None
        logger.info("Contract gateway closed")

    def get_status(self) -> Dict[str, Any]:
        return {
            "contract": self.contract_address,
            "fallbackRpcUrl": self.fallback_rpc_url,
            "boundTo": self.bound_address or "fallback",
            "closed": self._closed,
        }
