"""
PeerLink relay server.
Accepts WebSocket connections, admits them into rooms and forwards
session-setup messages between room members.
"""
import asyncio
from typing import Any, Optional

from aiohttp import web, WSMsgType

from peerlink.core.config import ServerConfig
from peerlink.core.exceptions import InvalidRoomError, MessageError, RoomFullError
from peerlink.core.logging import LoggerMixin, setup_logging, debug_log
from peerlink.core.messages import MessageType, SignalingMessageFactory, parse_message
from peerlink.relay.connection import Connection
from peerlink.relay.credentials import CredentialCache
from peerlink.relay.rate_limiter import RateLimiter
from peerlink.relay.room_registry import RoomRegistry


class RelayServer(LoggerMixin):
    """Owns one room registry, one rate limiter and one credential cache."""

    def __init__(self, config: Optional[ServerConfig] = None,
                 credential_cache: Optional[CredentialCache] = None):
        super().__init__()
        self.config = config or ServerConfig()

        self.registry = RoomRegistry(
            capacity=self.config.room_capacity,
            room_id_max_length=self.config.room_id_max_length
        )
        self.rate_limiter = RateLimiter(
            window_seconds=self.config.rate_limit_window_seconds,
            max_messages=self.config.rate_limit_max_messages
        )
        self.credential_cache = credential_cache or CredentialCache(
            self.config.credentials_url,
            refresh_interval=self.config.credential_refresh_seconds,
            fetch_timeout=self.config.credential_fetch_timeout
        )

        self.open_connections = 0
        self.app = self._build_app()

        debug_log(f"🚀 [Relay] Relay server initialized", {"config": str(self.config)})

    def _build_app(self) -> web.Application:
        app = web.Application()
        app['relay'] = self
        app.router.add_get('/', self.websocket_handler)
        app.router.add_get('/status', self.handle_status)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application):
        await self.credential_cache.start()

    async def _on_cleanup(self, app: web.Application):
        await self.credential_cache.stop()

    async def websocket_handler(self, request: web.Request) -> web.StreamResponse:
        """Serve one signaling connection for its whole lifetime."""
        ws = web.WebSocketResponse(max_msg_size=self.config.max_message_size)
        if not ws.can_prepare(request).ok:
            return web.Response(text="PeerLink relay is running")

        await ws.prepare(request)
        connection = Connection(ws, send_timeout=self.config.send_timeout_seconds)
        self.open_connections += 1
        self.log_debug(f"🔌 [Relay] Connection accepted", {"remote": request.remote})

        try:
            async for msg in ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self.handle_message(connection, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    self.log_warning(f"🔌 [Relay] Connection error", {
                        "peer_id": connection.peer_id,
                        "error": str(ws.exception())
                    })
        finally:
            self.open_connections -= 1
            await self.registry.leave(connection)
            self.log_debug(f"🔌 [Relay] Connection closed", {"peer_id": connection.peer_id})

        return ws

    async def handle_message(self, connection: Connection, raw: Any):
        """Admit, parse and dispatch one inbound message."""
        if not self.rate_limiter.allow(connection):
            self.log_debug(f"🚦 [Relay] Rate limit exceeded, dropping message", {
                "peer_id": connection.peer_id,
                "count": connection.message_count
            })
            return

        try:
            message = parse_message(raw)
        except MessageError as e:
            self.log_debug(f"🔇 [Relay] Dropping malformed message", {
                "peer_id": connection.peer_id,
                "error": str(e)
            })
            return

        msg_type = message['type']
        if msg_type == MessageType.JOIN_ROOM:
            await self._handle_join(connection, message)
        elif msg_type in MessageType.RELAYED:
            await self.registry.relay(connection, message)
        else:
            self.log_debug(f"🔇 [Relay] Dropping message not accepted from clients", {"type": msg_type})

    async def _handle_join(self, connection: Connection, message: dict):
        # Re-joining the current room must not announce the peer twice
        rejoin = connection.room_id == self.registry.sanitize(message['roomId'])
        try:
            peer_id = await self.registry.join(connection, message['roomId'])
        except RoomFullError as e:
            self.log_info(f"🚫 [Relay] Join rejected: room full", e.details)
            await connection.send(SignalingMessageFactory.room_full())
            return
        except InvalidRoomError as e:
            self.log_debug(f"🔇 [Relay] Dropping join with invalid room id", e.details)
            return

        ice_servers = self.credential_cache.current().to_wire()
        await connection.send(SignalingMessageFactory.assigned_peer_id(peer_id, ice_servers))
        if not rejoin:
            await self.registry.notify_peer_joined(connection)

    async def handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_status())

    def get_status(self) -> dict:
        """Get relay status."""
        return {
            'connections': self.open_connections,
            'rooms': self.registry.get_status(),
            'credentials': self.credential_cache.get_status()
        }


async def main():
    """Main relay function."""
    config = ServerConfig()
    setup_logging(level=config.log_level)
    debug_log(f"🚀 [Main] Starting PeerLink relay")

    relay = RelayServer(config)
    runner = web.AppRunner(relay.app)
    await runner.setup()

    try:
        site = web.TCPSite(runner, config.host, config.port)
        await site.start()
        debug_log(f"✅ [Main] Relay listening", {"host": config.host, "port": config.port})

        # Run forever
        await asyncio.Future()
    finally:
        await runner.cleanup()
