"""
mindlens/ui/web_app.py — FastAPI bridge for the MindLens session.

Holds one :class:`SessionOrchestrator` created on the server's event loop and
streams every session event to browsers over a WebSocket at /ws.

REST endpoints
--------------
GET  /health       JSON health check
GET  /state        Current session snapshot
POST /start        Begin scanning options
POST /confirm      Confirm the highlighted item     {}
POST /cancel       Return to IDLE                   {}
POST /focus        Dwell focus on an item           {"item_id": "CUP_SLOT_0"}
POST /release      Dwell focus lost                 {}
POST /detections   Detector report                  {"labels": ["cup", "book"]}

WebSocket
---------
ws://<host>:<port>/ws

Messages pushed by server (JSON):
  {"type": "snapshot",            "state": {...}}      ← once, on connect
  {"type": "phase_change",        "payload": {"from": "IDLE", "to": "SCANNING_OPTIONS", ...}}
  {"type": "items_changed",       "payload": [...]}
  {"type": "highlight",           "payload": {"index": 2, "id": "PAIN"}}
  {"type": "selection_confirmed", "payload": {"id": "HELP", ...}}
  {"type": "speaking",            "payload": "HELP"}
  {"type": "phrases_ready",       "payload": {"keyword": "HELP", "phrases": [...]}}
  {"type": "tick",                "timestamp_ms": ..., "phase": "IDLE"}   ← heartbeat

Clients may send {"action": "start" | "confirm" | "cancel" | "release"} or
{"action": "focus", "item_id": "..."}.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from typing import Any, AsyncIterator, Dict, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from mindlens.core.config import MindLensConfig, load_config
from mindlens.core.logger import get_logger
from mindlens.core.session import SessionEvent, SessionOrchestrator
from mindlens.llm.phrases import PhraseGenerator, build_phrase_generator
from mindlens.output.speech import SpeechOutput, TTSEngine

_HEARTBEAT_S = 1.0


class FocusRequest(BaseModel):
    item_id: str


class DetectionsRequest(BaseModel):
    labels: list[str]


class _Bridge:
    """Connected WebSocket clients plus the session they observe."""

    def __init__(self) -> None:
        self.session: Optional[SessionOrchestrator] = None
        self.clients: Set[WebSocket] = set()
        self._outbox: Optional[asyncio.Queue] = None
        self._log = get_logger()

    def open(self) -> None:
        """Create the outbox on the running loop."""
        self._outbox = asyncio.Queue()

    def on_event(self, event: SessionEvent) -> None:
        """Session observer: queue the event for the sender task."""
        self.push(event.to_dict())

    def push(self, msg: Dict[str, Any]) -> None:
        if self._outbox is not None:
            self._outbox.put_nowait(msg)

    async def sender(self) -> None:
        """Drain the outbox in order, one broadcast at a time."""
        if self._outbox is None:
            raise RuntimeError("Outbox not open; call open() on the running loop first")
        while True:
            msg = await self._outbox.get()
            await self.broadcast(msg)

    async def broadcast(self, msg: Dict[str, Any]) -> None:
        text = json.dumps(msg)
        dead = []
        for ws in list(self.clients):
            try:
                await ws.send_text(text)
            except Exception:  # noqa: BLE001
                dead.append(ws)
        for ws in dead:
            self.clients.discard(ws)

    async def heartbeat(self) -> None:
        """Push a tick message every second so clients can detect disconnects."""
        while True:
            await asyncio.sleep(_HEARTBEAT_S)
            phase = self.session.phase.value if self.session else "IDLE"
            self.push({
                "type": "tick",
                "timestamp_ms": round(time.time() * 1000),
                "phase": phase,
            })

    async def handle_client_msg(self, data: Dict[str, Any]) -> None:
        """Apply an action sent by a browser over the WebSocket."""
        session = self.session
        if session is None:
            return
        action = data.get("action")
        if action == "start":
            session.start()
        elif action == "confirm":
            session.confirm()
        elif action == "cancel":
            session.cancel()
        elif action == "focus":
            session.focus(str(data.get("item_id", "")))
        elif action == "release":
            session.release()
        else:
            self._log.warn("web_app", "unknown_ws_action", {"action": action})


def create_app(
    config: Optional[MindLensConfig] = None,
    phrase_generator: Optional[PhraseGenerator] = None,
    speech: Optional[SpeechOutput] = None,
) -> FastAPI:
    """
    Build the web bridge.

    Collaborators not supplied are created from *config* (loaded with
    :func:`load_config` when omitted). The orchestrator itself is created in
    the lifespan handler so its timers bind to uvicorn's loop.
    """
    cfg = config or load_config()
    bridge = _Bridge()
    log = get_logger()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_speech: Optional[TTSEngine] = None
        out = speech
        if out is None:
            owned_speech = TTSEngine(cfg.speech)
            out = owned_speech
        generator = phrase_generator or build_phrase_generator(cfg.phrases)

        bridge.open()
        bridge.session = SessionOrchestrator(
            cfg, generator, out, on_event=bridge.on_event
        )
        background = [
            asyncio.create_task(bridge.sender()),
            asyncio.create_task(bridge.heartbeat()),
        ]
        log.info("web_app", "startup", {"provider": cfg.phrases.provider})
        try:
            yield
        finally:
            for task in background:
                task.cancel()
            bridge.session.close()
            if owned_speech is not None:
                owned_speech.shutdown()
            log.info("web_app", "shutdown", {})

    app = FastAPI(title="MindLens", version="1.0", lifespan=lifespan)
    app.state.bridge = bridge

    def _session() -> SessionOrchestrator:
        if bridge.session is None:
            raise RuntimeError("Session not started; the app lifespan has not run")
        return bridge.session

    def _reply(ok: bool) -> JSONResponse:
        return JSONResponse({"ok": ok, "state": _session().snapshot()})

    # ── Routes ────────────────────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        ready = bridge.session is not None
        return JSONResponse({
            "status": "ok" if ready else "session_not_ready",
            "phase": bridge.session.phase.value if ready else None,
            "clients": len(bridge.clients),
        })

    @app.get("/state")
    async def state() -> JSONResponse:
        return JSONResponse(_session().snapshot())

    @app.post("/start")
    async def start() -> JSONResponse:
        return _reply(_session().start())

    @app.post("/confirm")
    async def confirm() -> JSONResponse:
        return _reply(_session().confirm())

    @app.post("/cancel")
    async def cancel() -> JSONResponse:
        _session().cancel()
        return _reply(True)

    @app.post("/focus")
    async def focus(body: FocusRequest) -> JSONResponse:
        return _reply(_session().focus(body.item_id))

    @app.post("/release")
    async def release() -> JSONResponse:
        _session().release()
        return _reply(True)

    @app.post("/detections")
    async def detections(body: DetectionsRequest) -> JSONResponse:
        _session().update_detections(body.labels)
        return _reply(True)

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        bridge.clients.add(ws)
        await ws.send_text(json.dumps({"type": "snapshot", "state": _session().snapshot()}))
        log.info("web_app", "ws_connected", {"total": len(bridge.clients)})

        try:
            while True:
                msg = await ws.receive_text()
                try:
                    data = json.loads(msg)
                except json.JSONDecodeError:
                    log.warn("web_app", "bad_ws_message", {"message": msg[:80]})
                    continue
                if isinstance(data, dict):
                    await bridge.handle_client_msg(data)
        except WebSocketDisconnect:
            pass
        finally:
            bridge.clients.discard(ws)
            log.info("web_app", "ws_disconnected", {"total": len(bridge.clients)})

    return app


def start_web_server(config: MindLensConfig) -> None:
    """
    Build the app from *config* and serve it with uvicorn.

    Blocking; returns when the server shuts down.
    """
    import uvicorn  # type: ignore

    app = create_app(config)
    server_config = uvicorn.Config(
        app,
        host=config.web.host,
        port=config.web.port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(server_config)
    get_logger().info("web_app", "server_start", {"host": config.web.host, "port": config.web.port})
    server.run()
