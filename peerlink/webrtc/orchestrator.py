"""
Client-side connection orchestration.
Owns the signaling WebSocket and the map of peer sessions, and drives each
remote peer from room join to an open data channel.
"""
import asyncio
import json
from typing import Any, Callable, Dict, Optional, Set

from aiortc.exceptions import InvalidAccessError, InvalidStateError
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from peerlink.core.config import ClientConfig, DEFAULT_ICE_SERVERS, ROLES
from peerlink.core.exceptions import MessageError, SignalingError
from peerlink.core.logging import LoggerMixin
from peerlink.core.messages import MessageType, SignalingMessageFactory, encode_message, parse_message
from peerlink.webrtc.peer_session import PeerSession, ROLE_ANSWERING, ROLE_OFFERING
from peerlink.webrtc.transport import create_peer_connection

# Failures a single negotiation step may raise; they abandon that peer only
NEGOTIATION_ERRORS = (ValueError, InvalidStateError, InvalidAccessError)


class ConnectionOrchestrator(LoggerMixin):
    """Drives host (offering) and client (answering) peers through negotiation."""

    def __init__(self, peer_factory: Callable = create_peer_connection, connector: Callable = connect):
        super().__init__()
        self._peer_factory = peer_factory
        self._connector = connector

        self.config: Optional[ClientConfig] = None
        self.sessions: Dict[str, PeerSession] = {}
        self.my_peer_id: Optional[str] = None
        self.ice_servers = [dict(server) for server in DEFAULT_ICE_SERVERS]

        self._signaling = None
        self._receive_task: Optional[asyncio.Task] = None
        self._callback_tasks: Set[asyncio.Task] = set()

    @property
    def signaling(self):
        return self._signaling

    # -- lifecycle -----------------------------------------------------------

    async def connect(self, config: ClientConfig):
        """Reset any previous connection, open the signaling socket and join the room."""
        if config.role not in ROLES:
            raise SignalingError("Unknown role", {"role": config.role})

        # Never hold two connections' resources at once
        await self.reset()

        self.config = config
        self.ice_servers = [dict(server) for server in config.fallback_ice_servers]
        self._signaling = await self._connector(config.signaling_url)
        self._receive_task = asyncio.create_task(self._receive_loop(self._signaling))

        await self._send_signal(SignalingMessageFactory.join_room(
            config.room_id, config.role, config.name, config.password_hash
        ))
        self.log_info(f"🔗 [Orchestrator] Joining room", {
            "room_id": config.room_id,
            "role": config.role,
            "url": config.signaling_url
        })

    async def reset(self):
        """Close every session, then the signaling socket. Safe when idle."""
        # Detach first so no signal can create a session while we tear down
        self.config = None
        signaling, self._signaling = self._signaling, None
        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        while self.sessions:
            await self._close_session(next(iter(self.sessions)))

        if signaling is not None:
            await signaling.close()

        self.my_peer_id = None
        self.ice_servers = [dict(server) for server in DEFAULT_ICE_SERVERS]
        self.log_debug(f"🧹 [Orchestrator] Reset - all connections closed")

    # -- application API -----------------------------------------------------

    def broadcast(self, payload: Any) -> int:
        """Send to every open channel; returns how many received it."""
        return sum(1 for session in list(self.sessions.values()) if session.send(payload))

    def send_to(self, peer_id: str, payload: Any) -> bool:
        session = self.sessions.get(peer_id)
        return session is not None and session.send(payload)

    def send_to_host(self, payload: Any) -> bool:
        """Send on the first open channel (client to host)."""
        for session in self.sessions.values():
            if session.is_open:
                return session.send(payload)
        self.log_warning(f"📤 [Orchestrator] No open channel to host - message dropped")
        return False

    def has_open_channel(self) -> bool:
        return any(session.is_open for session in self.sessions.values())

    # -- signaling -----------------------------------------------------------

    async def _send_signal(self, message: Dict[str, Any]) -> bool:
        signaling = self._signaling
        if signaling is None:
            self.log_debug(f"🔇 [Orchestrator] No signaling connection, dropping", {"type": message.get('type')})
            return False
        try:
            await signaling.send(encode_message(message))
        except ConnectionClosed:
            self.log_debug(f"🔇 [Orchestrator] Signaling closed, dropping", {"type": message.get('type')})
            return False
        return True

    async def _receive_loop(self, signaling):
        try:
            async for raw in signaling:
                if signaling is not self._signaling:
                    break
                await self.handle_signal(raw)
        except ConnectionClosed as e:
            self.log_warning(f"🔌 [Orchestrator] Signaling connection lost", {"reason": str(e)})
        self.log_debug(f"🔌 [Orchestrator] Signaling receive loop finished")

    async def handle_signal(self, raw: Any):
        """Dispatch one message received from the relay."""
        config = self.config
        if config is None:
            return

        try:
            message = parse_message(raw)
        except MessageError as e:
            self.log_debug(f"🔇 [Orchestrator] Dropping malformed signal", {"error": str(e)})
            return

        msg_type = message['type']
        peer_id = message.get('peerId')

        if msg_type == MessageType.ASSIGNED_PEER_ID:
            self._handle_assigned(message)
        elif msg_type == MessageType.ROOM_FULL:
            self.log_warning(f"🚫 [Orchestrator] Room is full", {"room_id": config.room_id})
            await self._invoke(config.on_room_full)
        elif peer_id is None or peer_id == self.my_peer_id:
            self.log_debug(f"🔇 [Orchestrator] Dropping signal without a usable peer id", {"type": msg_type})
        elif msg_type == MessageType.PEER_JOINED:
            if config.is_host and peer_id in self.sessions:
                self.log_debug(f"🔇 [Orchestrator] Duplicate PEER_JOINED ignored", {"peer_id": peer_id})
            elif config.is_host:
                await self._negotiate(peer_id, self._start_offering, peer_id, config)
                await self._invoke(config.on_host_peer_joined, peer_id)
        elif msg_type == MessageType.OFFER:
            if not config.is_host:
                await self._negotiate(peer_id, self._start_answering, peer_id, message['sdp'], config)
        elif msg_type == MessageType.ANSWER:
            session = self.sessions.get(peer_id)
            if session is None:
                self.log_debug(f"🔇 [Orchestrator] Answer for unknown peer", {"peer_id": peer_id})
            else:
                await self._negotiate(peer_id, session.apply_answer, message['sdp'])
        elif msg_type == MessageType.ICE_CANDIDATE:
            session = self.sessions.get(peer_id)
            if session is None:
                self.log_debug(f"🔇 [Orchestrator] Candidate for unknown peer", {"peer_id": peer_id})
            else:
                await self._negotiate(peer_id, session.add_remote_candidate, message['candidate'])

    def _handle_assigned(self, message: Dict[str, Any]):
        self.my_peer_id = message['peerId']
        ice_servers = message.get('iceServers')
        if isinstance(ice_servers, list) and ice_servers:
            self.ice_servers = ice_servers
            self.log_info(f"🧊 [Orchestrator] Received {len(ice_servers)} ICE servers from relay")
        else:
            self.log_warning(f"🧊 [Orchestrator] No ICE servers in ASSIGNED_PEER_ID - using fallback STUN only")

    async def _negotiate(self, peer_id: str, step: Callable, *args):
        """Run one negotiation step; a failure abandons that peer's session."""
        try:
            await step(*args)
        except NEGOTIATION_ERRORS as e:
            self.log_warning(f"❌ [Orchestrator] Negotiation failed, abandoning peer", {
                "peer_id": peer_id,
                "error": str(e),
                "error_type": type(e).__name__
            })
            await self._close_session(peer_id)

    async def _start_offering(self, peer_id: str, config: ClientConfig):
        if self._signaling is None:
            return
        if peer_id in self.sessions:
            self.log_debug(f"🔇 [Orchestrator] Session already exists", {"peer_id": peer_id})
            return
        session = self._new_session(peer_id, ROLE_OFFERING)
        await session.start_offer(config.channel_label)

    async def _start_answering(self, peer_id: str, sdp: str, config: ClientConfig):
        if self._signaling is None:
            return
        if peer_id in self.sessions:
            self.log_debug(f"🔇 [Orchestrator] Duplicate offer ignored", {"peer_id": peer_id})
            return
        hello = SignalingMessageFactory.client_hello(config.name, config.password_hash)
        session = self._new_session(peer_id, ROLE_ANSWERING, hello=hello)
        await session.accept_offer(sdp)

    def _new_session(self, peer_id: str, role: str, hello: Optional[Dict[str, Any]] = None) -> PeerSession:
        session = PeerSession(
            peer_id, role, self._peer_factory(self.ice_servers),
            signal=self._send_signal,
            on_open=self._session_opened,
            on_message=self._session_message,
            on_closed=self._session_closed,
            hello=hello
        )
        self.sessions[peer_id] = session
        return session

    async def _close_session(self, peer_id: str):
        session = self.sessions.get(peer_id)
        if session is None:
            return
        await session.close()
        self.sessions.pop(peer_id, None)

    # -- session hooks -------------------------------------------------------

    def _session_opened(self, session: PeerSession):
        config = self.config
        if config is None:
            return
        if session.is_host_side:
            self._schedule(config.on_host_channel_open, session.peer_id, session.channel)
        else:
            self._schedule(config.on_client_channel_open, session.channel)

    def _session_message(self, session: PeerSession, data: Any):
        config = self.config
        if config is None:
            return
        try:
            message = json.loads(data)
        except (TypeError, ValueError):
            self.log_debug(f"🔇 [Orchestrator] Dropping non-JSON channel message", {"peer_id": session.peer_id})
            return
        self._schedule(config.on_message, session.peer_id, message, session.is_host_side)

    def _session_closed(self, session: PeerSession):
        task = asyncio.ensure_future(self._drop_session(session))
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    async def _drop_session(self, session: PeerSession):
        if self.sessions.get(session.peer_id) is not session:
            return
        config = self.config
        await self._close_session(session.peer_id)
        if config is not None:
            await self._invoke(config.on_disconnect, session.peer_id, session.is_host_side)

    def _schedule(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        task = asyncio.ensure_future(self._invoke(callback, *args))
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    async def _invoke(self, callback: Optional[Callable], *args):
        """Call an application callback (sync or async); errors are logged."""
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.log_error(f"Error in application callback", {
                "callback": getattr(callback, '__name__', repr(callback)),
                "error": str(e),
                "error_type": type(e).__name__
            })
