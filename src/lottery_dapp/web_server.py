"""FastAPI gateway exposing the lottery engine to a browser frontend."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from lottery_dapp.lottery.engine import EngineUnavailable, LotteryEngine
from lottery_dapp.lottery.errors import LotteryDappError, UserRejected, WalletUnavailable, failure_reason
from lottery_dapp.lottery.models import ActionName, OutcomeStatus
from lottery_dapp.lottery.state_store import STORE_EVENTS
from lottery_dapp.utils.logger import get_logger

logger = get_logger(__name__)


class ActionRequest(BaseModel):
    value_wei: Optional[int] = None


class LotteryWebServer:
    """HTTP and WebSocket gateway for one ``LotteryEngine``."""

    def __init__(self, config: Dict[str, Any], engine: LotteryEngine) -> None:
        self.config = config
        self.engine = engine

        self.app = FastAPI(
            title="Lottery DApp API",
            description="Wallet session, contract snapshot and transaction intents for the lottery contract",
            version="1.0.0",
            lifespan=self._lifespan,
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Dict[str, Any] | None]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._listeners_registered = False
        self._websockets: Set[WebSocket] = set()
        self._server = None

        self._setup_middleware()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.startup()
        try:
            yield
        finally:
            await self.shutdown()

    def _setup_middleware(self) -> None:
        origins = self.config.get("server", {}).get("cors_origins") or ["*"]
        if isinstance(origins, str):
            origins = [item.strip() for item in origins.split(",") if item.strip()]
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self) -> None:  # noqa: C901
        # ------------------------------------------------------------------
        # Health & state
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            node_health: Dict[str, Any]
            try:
                node_health = await self.engine.gateway.read_handle().health_check()
            except Exception as exc:
                logger.warning("Node health probe failed: %s", exc)
                node_health = {"status": "error", "detail": failure_reason(exc)}

            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "engine": self.engine.get_status(),
                    "node": node_health,
                    "websocket_connections": len(self._websockets),
                },
            }

        @self.app.get("/api/state")
        async def get_state() -> Dict[str, Any]:
            return self.engine.get_view()

        @self.app.get("/api/contract")
        async def get_contract() -> Dict[str, Any]:
            return self.engine.contract_info()

        @self.app.get("/api/players")
        async def get_players() -> Dict[str, Any]:
            try:
                players: List[str] = await self.engine.gateway.read_handle().get_players()
            except LotteryDappError as exc:
                raise HTTPException(status_code=502, detail=failure_reason(exc))
            except RuntimeError as exc:
                raise HTTPException(status_code=503, detail=str(exc))
            return {"players": players, "count": len(players)}

        # ------------------------------------------------------------------
        # Wallet
        # ------------------------------------------------------------------
        @self.app.post("/api/wallet/connect")
        async def connect_wallet() -> Dict[str, Any]:
            try:
                await self.engine.request_connect()
            except (WalletUnavailable, EngineUnavailable) as exc:
                raise HTTPException(status_code=503, detail=str(exc))
            except UserRejected as exc:
                raise HTTPException(status_code=403, detail=exc.reason)
            except LotteryDappError as exc:
                logger.error("Wallet connection failed: %s", exc)
                raise HTTPException(status_code=502, detail=failure_reason(exc))
            return self.engine.get_view()

        @self.app.post("/api/wallet/disconnect")
        async def disconnect_wallet() -> Dict[str, Any]:
            try:
                await self.engine.request_disconnect()
            except EngineUnavailable as exc:
                raise HTTPException(status_code=503, detail=str(exc))
            return self.engine.get_view()

        # ------------------------------------------------------------------
        # Transactions
        # ------------------------------------------------------------------
        @self.app.post("/api/actions/{name}")
        async def run_action(name: str, request: Optional[ActionRequest] = None) -> Dict[str, Any]:
            try:
                action = ActionName.parse(name)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc))

            try:
                outcome = await self.engine.request_action(action, request.value_wei if request else None)
            except EngineUnavailable as exc:
                raise HTTPException(status_code=503, detail=str(exc))

            payload = self.engine.store.serialize_outcome(outcome)
            if outcome.status == OutcomeStatus.REJECTED:
                raise HTTPException(status_code=409, detail=payload)
            return payload

        @self.app.post("/api/refresh")
        async def refresh() -> Dict[str, Any]:
            try:
                published = await self.engine.request_refresh()
            except EngineUnavailable as exc:
                raise HTTPException(status_code=503, detail=str(exc))
            return {"published": published, "state": self.engine.get_view()}

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/lottery")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            if self._ws_lock is None:
                self._ws_lock = asyncio.Lock()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                await websocket.send_json({"type": "state", "payload": self.engine.get_view()})
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
                    except Exception as exc:  # pragma: no cover
                        logger.debug("WebSocket receive error: %s", exc)
                        break
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def startup(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._broadcast_queue is None:
            self._broadcast_queue = asyncio.Queue()
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        self._register_store_listeners()
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="lottery-web-broadcast")
        await self.engine.start()

    async def shutdown(self) -> None:
        logger.info("Stopping lottery web gateway")
        # Flush queued events (such as a reload notice) before closing the sockets
        if self._broadcast_queue is not None and self._broadcast_task is not None:
            try:
                await asyncio.wait_for(self._broadcast_queue.join(), timeout=1.0)
            except asyncio.TimeoutError:
                logger.debug("Broadcast queue not drained before shutdown")

        await self.engine.close()

        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except Exception as exc:  # pragma: no cover
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()
        self._unregister_store_listeners()

    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting lottery web gateway on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            self._server = None
            logger.info("Lottery web gateway stopped")

    def request_exit(self) -> None:
        """Ask a running uvicorn server to shut down gracefully."""
        if self._server is not None:
            self._server.should_exit = True

    # ------------------------------------------------------------------
    # Store listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_store_listeners(self) -> None:
        if self._listeners_registered:
            return
        self._store_callbacks = {event: self._make_forwarder(event) for event in STORE_EVENTS}
        for event, callback in self._store_callbacks.items():
            self.engine.store.add_listener(event, callback)
        self._listeners_registered = True

    def _unregister_store_listeners(self) -> None:
        if not self._listeners_registered:
            return
        for event, callback in self._store_callbacks.items():
            self.engine.store.remove_listener(event, callback)
        self._listeners_registered = False

    def _make_forwarder(self, event_type: str):
        def _forward(payload: Dict[str, Any] | None) -> None:
            self._enqueue_broadcast(event_type, payload)

        return _forward

    def _enqueue_broadcast(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
            logger.debug("Enqueued broadcast for %s", event_type)
        except RuntimeError:  # pragma: no cover
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
            except asyncio.CancelledError:
                break
            try:
                await self._broadcast_to_clients(event_type, payload)
            except asyncio.CancelledError:
                self._broadcast_queue.task_done()
                break
            except Exception as exc:  # pragma: no cover
                logger.exception("Broadcast loop error: %s", exc)
            self._broadcast_queue.task_done()

    async def _broadcast_to_clients(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        message = {"type": event_type, "payload": payload, "timestamp": datetime.utcnow().isoformat()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except Exception as exc:  # pragma: no cover
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)
