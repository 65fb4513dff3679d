#!/usr/bin/env python3
"""
Lottery DApp Client Application

Entry point that wires the wallet provider, the lottery engine and the web
gateway together. A network change tears the engine down and the
application rebuilds it from scratch, the same way a page reload would.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from lottery_dapp.lottery.engine import LotteryEngine
from lottery_dapp.utils.common import as_bool, as_int, format_ether
from lottery_dapp.utils.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_FILE,
    default_config,
    load_config,
    redact,
    save_config,
)
from lottery_dapp.utils.logger import get_logger
from lottery_dapp.wallet.provider import WalletProvider, discover_wallet_provider
from lottery_dapp.web_server import LotteryWebServer

logger = get_logger(__name__)


class LotteryDappApp:
    """Lottery client application.

    Responsible for discovering the wallet, building the engine and the
    FastAPI gateway, and rebuilding both after a network change. Handles
    graceful shutdown on SIGINT/SIGTERM.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else load_config()
        self.provider: Optional[WalletProvider] = None
        self.engine: Optional[LotteryEngine] = None
        self.web_server: Optional[LotteryWebServer] = None
        self.running = True
        self.reload_count = 0
        self._reload_pending = False

        logger.info("Lottery DApp application initialized")

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
            except (NotImplementedError, RuntimeError):  # pragma: no cover
                signal.signal(signum, lambda s, f: self._handle_signal(s))

    def _handle_signal(self, signum) -> None:
        logger.info("Received signal %s, initiating graceful shutdown...", signum)
        self.running = False
        if self.web_server is not None:
            self.web_server.request_exit()

    def _display_config_summary(self) -> None:
        """Display key configuration options for diagnostics."""
        blockchain_config = self.config.get("blockchain", {})
        wallet_config = self.config.get("wallet", {})
        sync_config = self.config.get("sync", {})
        server_config = self.config.get("server", {})

        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info("Contract: %s", blockchain_config.get("contract_address", "default"))
        logger.info("Fallback RPC: %s", blockchain_config.get("fallback_rpc_url", "default"))
        logger.info("Wallet RPC: %s (chain %s)", wallet_config.get("rpc_url", "fallback"), wallet_config.get("chain_id", 31337))
        logger.info("Wallet keys: %s", "configured" if wallet_config.get("private_keys") else "none (read-only)")
        logger.info("Poll interval: %ss (event-driven=%s)", sync_config.get("poll_interval_sec", 5), sync_config.get("event_driven", False))
        logger.info("Server: %s:%s", server_config.get("host", "0.0.0.0"), server_config.get("port", 6080))
        logger.info("=" * 60)
        logger.debug("Effective configuration: %s", json.dumps(redact(self.config), default=str))

    def _build(self) -> None:
        """Create a fresh engine and gateway; the wallet provider survives reloads."""
        if self.provider is None:
            self.provider = discover_wallet_provider(self.config)
        self.engine = LotteryEngine(self.config, self.provider, reload_callback=self._on_reload)
        self.web_server = LotteryWebServer(self.config, self.engine)

    def _on_reload(self, chain_id: Any) -> None:
        if not as_bool(self.config.get("app", {}).get("reload_on_network_change"), True):
            logger.warning("Network changed to %s; reload disabled, shutting down", chain_id)
            self.running = False
        else:
            logger.info("Network changed to %s; scheduling reload", chain_id)
            self._reload_pending = True
        if self.web_server is not None:
            self.web_server.request_exit()

    async def start(self) -> None:
        """Serve until a shutdown signal; rebuild after every network change."""
        self._setup_signal_handlers()
        self._display_config_summary()

        server_config = self.config.get("server", {})
        host = server_config.get("host", "0.0.0.0")
        port = as_int(server_config.get("port"), 6080)

        while self.running:
            self._reload_pending = False
            self._build()
            self._display_startup_summary(host, port)
            await self.web_server.start(host=host, port=port)
            if not (self.running and self._reload_pending):
                break
            self.reload_count += 1
            logger.info("Reloading lottery engine (reload #%s)", self.reload_count)

        logger.info("Lottery DApp application stopped")

    def _display_startup_summary(self, host: str, port: int) -> None:
        logger.info("=" * 60)
        logger.info("LOTTERY DAPP STARTED")
        logger.info("=" * 60)
        if self.engine is not None:
            info = self.engine.contract_info()
            logger.info("Contract Address: %s", info["address"])
            logger.info("Entry Fee: %s ETH", format_ether(info["entryFeeWei"]))
        logger.info("Wallet: %s", "present" if self.provider is not None else "not installed")
        logger.info("Main API: http://%s:%s/api/", host, port)
        logger.info("WebSocket API: ws://%s:%s/ws/lottery", host, port)
        logger.info("=" * 60)


async def read_status(config: Dict[str, Any]) -> Dict[str, Any]:
    """One-shot snapshot read without starting the gateway."""
    engine = LotteryEngine(config, discover_wallet_provider(config))
    try:
        await engine.start()
        return engine.get_view()
    finally:
        await engine.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lottery-dapp", description="Lottery DApp client engine")
    parser.add_argument(
        "--config",
        help=f"Path to the JSON config file (default: ${CONFIG_ENV_VAR} or {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument("--env-file", default=".env", help="dotenv file loaded before configuration")

    sub = parser.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Run the HTTP/WebSocket gateway (default)")
    serve.add_argument("--host", help="Override server.host")
    serve.add_argument("--port", type=int, help="Override server.port")
    sub.add_parser("status", help="Print one contract snapshot as JSON and exit")
    init = sub.add_parser("init-config", help="Write a default config file")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    return parser


def cli(argv=None) -> int:
    """Console entry point for ``lottery-dapp``."""
    args = build_parser().parse_args(argv)
    command = args.command or "serve"

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    if command == "init-config":
        target = Path(args.config) if args.config else DEFAULT_CONFIG_FILE
        if target.exists() and not args.force:
            logger.error("Config file %s already exists (use --force to overwrite)", target)
            return 1
        save_config(default_config(), target)
        return 0

    config = load_config(args.config)

    if command == "status":
        try:
            view = asyncio.run(read_status(config))
        except Exception as e:
            logger.error("Status read failed: %s", e)
            return 1
        print(json.dumps(view, indent=2, default=str))
        return 0 if view.get("snapshot") else 1

    server_config = config.setdefault("server", {})
    if getattr(args, "host", None):
        server_config["host"] = args.host
    if getattr(args, "port", None):
        server_config["port"] = args.port

    app = LotteryDappApp(config)
    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.exception("Application failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(cli())
