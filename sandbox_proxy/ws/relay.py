"""
WebSocket endpoints.

``/ws-proxy`` tunnels a client socket to a third-party WebSocket server.
``/ws`` is a small monitoring socket that answers pings, echoes messages
and emits periodic heartbeats.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional

import websockets
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosed

from sandbox_proxy.errors import InvalidUrl
from sandbox_proxy.proxy.headers import random_user_agent
from sandbox_proxy.proxy.validation import WS_SCHEMES, validate_target_url
from sandbox_proxy.utils import short_url
from sandbox_proxy.utils.exception_logging import log_exception_with_details
from sandbox_proxy.vars import PROXY_DEFAULT_ORIGIN, WS_HEARTBEAT_INTERVAL

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011
NORMAL_CLOSURE = 1000
# Reserved codes that may be reported but never sent in a close frame
_UNSENDABLE = {1004, 1005, 1006, 1015}

ConnectFn = Callable[..., Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _sendable(code: Optional[int], fallback: int) -> int:
    if code is None or code in _UNSENDABLE or not (1000 <= code <= 4999):
        return fallback
    return code


async def _close_client(websocket: WebSocket, code: int, reason: str = "") -> None:
    if websocket.application_state == WebSocketState.DISCONNECTED:
        return
    if websocket.client_state == WebSocketState.DISCONNECTED:
        return
    try:
        await websocket.close(code=code, reason=reason[:120])
    except RuntimeError as e:
        logger.debug(f"[Relay] Client already closed: {e}")


def _parse_json(data: str) -> Optional[dict]:
    try:
        message = json.loads(data)
    except ValueError:
        return None
    return message if isinstance(message, dict) else None


class RelaySession:
    """One client socket tunnelled to one target socket."""

    def __init__(self, client: WebSocket, target: Any, target_url: str):
        self.client = client
        self.target = target
        self.target_url = target_url

    async def client_to_target(self) -> None:
        while True:
            message = await self.client.receive()
            if message["type"] == "websocket.disconnect":
                code = _sendable(message.get("code"), NORMAL_CLOSURE)
                logger.info(f"[Relay] Client closed ({message.get('code')}), closing target {short_url(self.target_url)}")
                await self.target.close(code=code, reason=message.get("reason") or "")
                return
            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            if data is None:
                continue
            if await self.answer_ping(data):
                continue
            await self.target.send(data)

    async def answer_ping(self, data) -> bool:
        """Reply to a JSON ping from the client; binary frames count if they decode as UTF-8."""
        if isinstance(data, bytes):
            try:
                data = data.decode("utf-8")
            except UnicodeDecodeError:
                return False
        parsed = _parse_json(data)
        if parsed is None or parsed.get("type") != "ping":
            return False
        await self.client.send_text(json.dumps({"type": "pong", "timestamp": parsed.get("timestamp")}))
        return True

    async def target_to_client(self) -> None:
        try:
            async for message in self.target:
                if isinstance(message, (bytes, bytearray)):
                    await self.client.send_bytes(bytes(message))
                else:
                    await self.client.send_text(message)
        except ConnectionClosed as e:
            await self.mirror_target_close(e)
            return
        code = getattr(self.target, "close_code", None)
        reason = getattr(self.target, "close_reason", None) or ""
        logger.info(f"[Relay] Target {short_url(self.target_url)} closed ({code})")
        await _close_client(self.client, _sendable(code, NORMAL_CLOSURE), reason)

    async def mirror_target_close(self, closed: ConnectionClosed) -> None:
        received = closed.rcvd
        if received is None:
            await _close_client(self.client, INTERNAL_ERROR, "Target connection error")
        else:
            await _close_client(self.client, _sendable(received.code, NORMAL_CLOSURE), received.reason)

    async def run(self) -> None:
        pumps = [
            asyncio.create_task(self.client_to_target(), name="relay-client-to-target"),
            asyncio.create_task(self.target_to_client(), name="relay-target-to-client"),
        ]
        try:
            done, pending = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                error = task.exception()
                if isinstance(error, ConnectionClosed):
                    await self.mirror_target_close(error)
                elif error is not None and not isinstance(error, WebSocketDisconnect):
                    log_exception_with_details(logger, "[Relay] Relay pump failed", error)
                    await _close_client(self.client, INTERNAL_ERROR, "Target connection error")
        finally:
            for task in pumps:
                task.cancel()
            await self.target.close()


@router.websocket("/ws-proxy")
async def websocket_proxy(websocket: WebSocket):
    await websocket.accept()
    raw_target = websocket.query_params.get("target")
    try:
        target_url = validate_target_url(raw_target, schemes=WS_SCHEMES)
    except InvalidUrl as e:
        reason = "Target WebSocket URL required" if not raw_target else e.details
        logger.info(f"[Relay] Rejecting relay request: {reason}")
        await _close_client(websocket, POLICY_VIOLATION, reason)
        return

    connect: ConnectFn = getattr(websocket.app.state, "ws_connect", None) or websockets.connect
    origin = websocket.headers.get("origin") or PROXY_DEFAULT_ORIGIN
    try:
        target = await connect(
            target_url,
            origin=origin,
            user_agent_header=random_user_agent(),
            open_timeout=10,
        )
    except Exception as e:
        log_exception_with_details(logger, f"[Relay] Could not open {short_url(target_url)}", e)
        await _close_client(websocket, INTERNAL_ERROR, "Proxy setup failed")
        return

    logger.info(f"[Relay] Relay established to {short_url(target_url)}")
    await RelaySession(websocket, target, target_url).run()


async def _heartbeat(websocket: WebSocket, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        if websocket.application_state != WebSocketState.CONNECTED:
            return
        await websocket.send_json({"type": "heartbeat", "timestamp": _now_ms()})


def _reply_to(raw: str) -> dict:
    try:
        message = json.loads(raw)
    except ValueError:
        return {"type": "error", "message": "Invalid message format", "timestamp": _now_ms()}
    kind = message.get("type") if isinstance(message, dict) else None
    if kind == "ping":
        return {"type": "pong", "timestamp": message.get("timestamp"), "serverTime": _now_ms()}
    if kind == "test":
        return {"type": "test-response", "status": "success", "timestamp": _now_ms()}
    return {"type": "echo", "originalMessage": message, "timestamp": _now_ms()}


@router.websocket("/ws")
async def websocket_direct(websocket: WebSocket):
    await websocket.accept()
    logger.info("[Relay] Direct WebSocket connection established")
    await websocket.send_json({"type": "connection", "status": "connected", "timestamp": _now_ms()})
    interval = getattr(websocket.app.state, "ws_heartbeat_interval", None) or WS_HEARTBEAT_INTERVAL
    heartbeat = asyncio.create_task(_heartbeat(websocket, interval), name="ws-heartbeat")
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"[Relay] Direct WebSocket closed ({message.get('code')})")
                return
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is None:
                continue
            await websocket.send_json(_reply_to(raw))
    finally:
        heartbeat.cancel()
        await asyncio.gather(heartbeat, return_exceptions=True)
