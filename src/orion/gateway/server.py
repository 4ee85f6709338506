"""
gateway/server.py — WebSocket Gateway Server

Accepts WebSocket connections, authenticates them, binds each to one
session the caller owns, and routes inbound frames to the dispatcher.
Also implements the dispatcher's Transport: emissions go to one
connection id (or every connection of a session for broadcasts), and
ids that are unknown or already closed are silently skipped.

Connection lifecycle:
  1. first frame must be `auth` {token, sessionId?} within auth_timeout
  2. token → principal (Authenticator); failure → error auth_failed, close
  3. session must exist and belong to the principal (a new session is
     created when sessionId is omitted); failure → error invalid_session
  4. registry attach → `connected`; first connection → status_change event
  5. frames: text_input | get_status | ping
  6. close → registry detach; last connection → status_change event

Usage:
    server = GatewayServer(store, registry, StaticTokenAuthenticator(tokens))
    server.bind_dispatcher(dispatcher)
    await server.start()
    await server.wait_closed()
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Protocol

import websockets
from websockets.asyncio.server import ServerConnection, serve

from orion.agent.utils import fire_and_forget
from orion.exceptions import StoreError
from orion.gateway.protocol import (
    ErrorCode,
    GatewayMessage,
    MessageType,
    make_connected,
    make_error,
    make_event,
    make_pong,
    make_status,
    make_text_chunk,
    make_text_complete,
)
from orion.gateway.registry import ConnectionRegistry
from orion.observability.logger import get_logger
from orion.store.base import Store
from orion.store.models import EventType, Session, SessionEvent

if TYPE_CHECKING:
    from orion.agent.dispatcher import SessionDispatcher

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Authentication
# ─────────────────────────────────────────────────────────────────────────────

class Authenticator(Protocol):
    async def authenticate(self, token: str) -> Optional[str]:
        """Return the principal (user id) for a valid token, else None."""
        ...


class StaticTokenAuthenticator:
    """Bearer token → principal table loaded from configuration."""

    def __init__(self, tokens: dict[str, str]):
        self._tokens = dict(tokens)

    async def authenticate(self, token: str) -> Optional[str]:
        if not token:
            return None
        return self._tokens.get(token)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ─────────────────────────────────────────────────────────────────────────────
# Server
# ─────────────────────────────────────────────────────────────────────────────

class GatewayServer:

    def __init__(
        self,
        store: Store,
        registry: ConnectionRegistry,
        authenticator: Authenticator,
        *,
        host: str = "127.0.0.1",
        port: int = 9090,
        max_connections: int = 100,
        max_message_bytes: int = 2**20,
        auth_timeout_seconds: float = 10.0,
    ):
        self._store = store
        self._registry = registry
        self._auth = authenticator
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_message_bytes = max_message_bytes
        self._auth_timeout = auth_timeout_seconds
        self._dispatcher: Optional["SessionDispatcher"] = None
        self._server = None

        # connection id → live socket
        self._sockets: dict[str, ServerConnection] = {}

    def bind_dispatcher(self, dispatcher: "SessionDispatcher") -> None:
        self._dispatcher = dispatcher

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._dispatcher is None:
            raise RuntimeError("GatewayServer.start() called before bind_dispatcher()")
        self._server = await serve(
            self._handler,
            self._host,
            self._port,
            max_size=self._max_message_bytes,
        )
        log.info(
            "gateway.started",
            host=self._host,
            port=self._port,
            max_connections=self._max_connections,
        )

    async def wait_closed(self) -> None:
        if self._server:
            await self._server.wait_closed()

    async def shutdown(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
        log.info("gateway.stopped")

    # ─────────────────────────────────────────────────────────────────────────
    # Connection handler
    # ─────────────────────────────────────────────────────────────────────────

    async def _handler(self, websocket: ServerConnection) -> None:
        if len(self._sockets) >= self._max_connections:
            await self._send(websocket, make_error("max_connections", "Server at connection limit."))
            await websocket.close()
            return

        bound = await self._authenticate(websocket)
        if bound is None:
            await websocket.close()
            return
        session, user_id = bound

        connection_id = str(uuid.uuid4())
        self._sockets[connection_id] = websocket
        first = await self._registry.attach(session.id, connection_id)
        log.info("gateway.client_connected", session_id=session.id, connection_id=connection_id)

        await self._send(websocket, make_connected(session.id, user_id, _now_iso()))
        if first:
            await self._record_status_change(session.id, "connected", connection_id)

        try:
            async for raw in websocket:
                try:
                    msg = GatewayMessage.from_json(raw)
                except ValueError as e:
                    await self._send(websocket, make_error(ErrorCode.BAD_MESSAGE.value, str(e)))
                    continue
                await self._route(connection_id, session.id, user_id, msg)
        except websockets.ConnectionClosed:
            pass
        finally:
            self._sockets.pop(connection_id, None)
            last = await self._registry.detach(session.id, connection_id)
            log.info("gateway.client_disconnected", session_id=session.id, connection_id=connection_id)
            if last:
                await self._record_status_change(session.id, "disconnected", connection_id)

    async def _authenticate(self, websocket: ServerConnection) -> Optional[tuple[Session, str]]:
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=self._auth_timeout)
            msg = GatewayMessage.from_json(raw)
        except (asyncio.TimeoutError, ValueError, websockets.ConnectionClosed) as e:
            log.warning("gateway.auth_failed", reason=type(e).__name__)
            await self._send(websocket, make_error(ErrorCode.AUTH_FAILED.value, "Authentication required."))
            return None

        if msg.type != MessageType.AUTH.value:
            await self._send(websocket, make_error(ErrorCode.AUTH_FAILED.value, "Authentication required."))
            return None

        user_id = await self._auth.authenticate(str(msg.data.get("token", "")))
        if user_id is None:
            log.warning("gateway.auth_failed", reason="invalid_token")
            await self._send(websocket, make_error(ErrorCode.AUTH_FAILED.value, "Invalid auth token."))
            return None

        session_id = msg.data.get("sessionId") or msg.session_id
        try:
            if session_id:
                session = await self._store.get_session(str(session_id))
            else:
                session = await self._store.create_session(Session(user_id=user_id))
                log.info("gateway.session_created", session_id=session.id, user_id=user_id)
        except StoreError as e:
            log.error("gateway.session_lookup_failed", error=str(e))
            session = None

        if session is None or session.user_id != user_id:
            log.warning("gateway.invalid_session", session_id=session_id, user_id=user_id)
            await self._send(websocket, make_error(ErrorCode.INVALID_SESSION.value, "Invalid session."))
            return None

        return session, user_id

    # ─────────────────────────────────────────────────────────────────────────
    # Message router
    # ─────────────────────────────────────────────────────────────────────────

    async def _route(
        self,
        connection_id: str,
        session_id: str,
        user_id: str,
        msg: GatewayMessage,
    ) -> None:
        mtype = msg.type

        if mtype == MessageType.PING.value:
            await self._send_to(connection_id, make_pong(reply_to=msg.id))

        elif mtype == MessageType.TEXT_INPUT.value:
            text = msg.data.get("text")
            if not isinstance(text, str) or not text.strip():
                await self._send_to(connection_id, make_error(
                    ErrorCode.BAD_MESSAGE.value, "text_input requires non-empty 'text'.",
                    reply_to=msg.id,
                ))
                return
            # Turns run off the read loop so a second frame can be answered
            # (busy status) while the first turn is in flight.
            fire_and_forget(
                self._run_turn(session_id, user_id, connection_id, text),
                label="text_input",
                session_id=session_id,
            )

        elif mtype == MessageType.GET_STATUS.value:
            status = await self._dispatcher.status(session_id)
            if not status:
                await self.emit_error(connection_id, "No session")
                return
            await self.emit_status(connection_id, status)

        else:
            await self._send_to(connection_id, make_error(
                ErrorCode.UNKNOWN_TYPE.value, f"Unknown message type: {mtype}",
                reply_to=msg.id,
            ))

    async def _run_turn(self, session_id: str, user_id: str, connection_id: str, text: str) -> None:
        try:
            await self._dispatcher.handle_text_input(session_id, user_id, connection_id, text)
        except Exception as e:
            log.error("gateway.turn_crashed", session_id=session_id, error=str(e), error_type=type(e).__name__)
            await self.emit_complete(connection_id, "⚠️ An error occurred while processing your message")
            await self.emit_error(connection_id, str(e))

    # ─────────────────────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────────────────────

    async def emit_chunk(self, connection_id: str, text: str) -> None:
        await self._send_to(connection_id, make_text_chunk(text))

    async def emit_complete(self, connection_id: str, full_text: str) -> None:
        await self._send_to(connection_id, make_text_complete(full_text))

    async def emit_error(self, connection_id: str, message: str) -> None:
        await self._send_to(connection_id, make_error(ErrorCode.TURN_FAILED.value, message))

    async def emit_status(self, connection_id: str, data: dict[str, Any]) -> None:
        await self._send_to(connection_id, make_status(data))

    async def broadcast(self, session_id: str, event: str, data: dict[str, Any]) -> None:
        msg = make_event(event, data, session_id=session_id)
        for connection_id in await self._registry.connections(session_id):
            await self._send_to(connection_id, msg)

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _send_to(self, connection_id: str, msg: GatewayMessage) -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return
        await self._send(websocket, msg)

    @staticmethod
    async def _send(websocket: ServerConnection, msg: GatewayMessage) -> None:
        try:
            await websocket.send(msg.to_json())
        except websockets.ConnectionClosed:
            pass

    async def _record_status_change(self, session_id: str, status: str, connection_id: str) -> None:
        try:
            await self._store.add_event(SessionEvent(
                session_id=session_id,
                type=EventType.STATUS_CHANGE,
                data={"status": status, "connectionId": connection_id, "timestamp": _now_iso()},
            ))
        except StoreError as e:
            log.warning("gateway.event_failed", session_id=session_id, error=str(e))
