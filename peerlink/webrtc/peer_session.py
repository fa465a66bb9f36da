"""
Per-remote-peer negotiation state machine.
"""
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from aiortc import RTCIceCandidate, RTCSessionDescription

from peerlink.core.logging import LoggerMixin
from peerlink.core.messages import SignalingMessageFactory
from peerlink.webrtc.transport import candidate_from_message, candidate_to_message

ROLE_OFFERING = 'offering'
ROLE_ANSWERING = 'answering'


class SessionState:
    """Negotiation states."""

    IDLE = 'idle'
    HAVE_LOCAL_OFFER = 'have-local-offer'
    HAVE_REMOTE_OFFER = 'have-remote-offer'
    CONNECTED = 'connected'
    CLOSED = 'closed'


class ChannelState:
    """Data channel states."""

    CONNECTING = 'connecting'
    OPEN = 'open'
    CLOSED = 'closed'


class PeerSession(LoggerMixin):
    """One peer transport and its data channel toward a single remote peer.

    The offering side creates the channel and sends an OFFER; the answering
    side applies the OFFER, replies with an ANSWER and accepts the channel.
    Remote ICE candidates that arrive before the remote description are
    buffered and flushed in arrival order once it is applied.

    Hooks ``on_open``, ``on_message`` and ``on_closed`` are plain callables
    receiving the session (and, for messages, the raw channel payload).
    """

    def __init__(self, peer_id: str, role: str, transport: Any,
                 signal: Callable[[Dict[str, Any]], Awaitable[bool]],
                 on_open: Optional[Callable] = None,
                 on_message: Optional[Callable] = None,
                 on_closed: Optional[Callable] = None,
                 hello: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.peer_id = peer_id
        self.role = role
        self.transport = transport
        self.channel = None
        self.state = SessionState.IDLE
        self.channel_state = ChannelState.CONNECTING

        self._signal = signal
        self._on_open = on_open
        self._on_message = on_message
        self._on_closed = on_closed
        self._hello = hello

        self.pending_candidates: List[RTCIceCandidate] = []
        self._listeners: List[Tuple[Any, str, Callable]] = []

        self._listen(self.transport, 'icecandidate', self._handle_local_candidate)
        self._listen(self.transport, 'connectionstatechange', self._handle_connection_state)

    @property
    def is_host_side(self) -> bool:
        return self.role == ROLE_OFFERING

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    @property
    def is_open(self) -> bool:
        return (self.channel_state == ChannelState.OPEN
                and self.channel is not None
                and self.channel.readyState == 'open')

    def _listen(self, emitter: Any, event: str, handler: Callable):
        emitter.on(event, handler)
        self._listeners.append((emitter, event, handler))

    # -- negotiation ---------------------------------------------------------

    async def start_offer(self, label: str = 'data'):
        """Offering role: open the channel locally and send an OFFER."""
        channel = self.transport.createDataChannel(label, ordered=True)
        self._attach_channel(channel)

        offer = await self.transport.createOffer()
        await self.transport.setLocalDescription(offer)
        if self.closed:
            return
        self.state = SessionState.HAVE_LOCAL_OFFER

        # The local description carries whatever candidates were gathered
        sdp = self.transport.localDescription.sdp
        await self._signal(SignalingMessageFactory.offer(self.peer_id, sdp))
        self.log_info(f"📡 [PeerSession] Offer sent", {"peer_id": self.peer_id, "sdp_length": len(sdp)})

    async def accept_offer(self, sdp: str):
        """Answering role: apply the OFFER, send an ANSWER, await the channel."""
        self._listen(self.transport, 'datachannel', self._handle_remote_channel)

        await self.transport.setRemoteDescription(RTCSessionDescription(sdp=sdp, type='offer'))
        if self.closed:
            return
        self.state = SessionState.HAVE_REMOTE_OFFER
        await self._flush_candidates()

        answer = await self.transport.createAnswer()
        await self.transport.setLocalDescription(answer)
        if self.closed:
            return
        self.state = SessionState.CONNECTED

        local_sdp = self.transport.localDescription.sdp
        await self._signal(SignalingMessageFactory.answer(self.peer_id, local_sdp))
        self.log_info(f"📡 [PeerSession] Answer sent", {"peer_id": self.peer_id, "sdp_length": len(local_sdp)})

    async def apply_answer(self, sdp: str) -> bool:
        """Apply an ANSWER; dropped unless an offer of ours is outstanding."""
        if self.state != SessionState.HAVE_LOCAL_OFFER:
            self.log_debug(f"🔇 [PeerSession] Ignoring answer in state {self.state}", {"peer_id": self.peer_id})
            return False

        await self.transport.setRemoteDescription(RTCSessionDescription(sdp=sdp, type='answer'))
        if self.closed:
            return False
        self.state = SessionState.CONNECTED
        await self._flush_candidates()
        return True

    async def add_remote_candidate(self, data: Any) -> bool:
        """Add a remote candidate now, or buffer it until the remote description is set."""
        if self.closed:
            return False

        try:
            candidate = candidate_from_message(data)
        except ValueError as e:
            self.log_debug(f"🔇 [PeerSession] Dropping malformed candidate", {"peer_id": self.peer_id, "error": str(e)})
            return False
        if candidate is None:
            # End-of-candidates marker
            return False

        if self.transport.remoteDescription is None:
            self.pending_candidates.append(candidate)
            return True

        await self.transport.addIceCandidate(candidate)
        return True

    async def _flush_candidates(self):
        pending, self.pending_candidates = self.pending_candidates, []
        if pending:
            self.log_debug(f"🧊 [PeerSession] Flushing buffered candidates", {
                "peer_id": self.peer_id,
                "count": len(pending)
            })
        for candidate in pending:
            await self.transport.addIceCandidate(candidate)

    # -- events --------------------------------------------------------------

    async def _handle_local_candidate(self, candidate: Optional[RTCIceCandidate]):
        if candidate is None or self.closed:
            return
        await self._signal(SignalingMessageFactory.ice_candidate(self.peer_id, candidate_to_message(candidate)))

    def _handle_connection_state(self):
        state = self.transport.connectionState
        self.log_debug(f"🔗 [PeerSession] Connection state changed", {"peer_id": self.peer_id, "state": state})
        if state == 'failed' and self._on_closed:
            self._on_closed(self)

    def _handle_remote_channel(self, channel):
        if self.channel is not None:
            self.log_warning(f"🔇 [PeerSession] Ignoring extra data channel", {
                "peer_id": self.peer_id,
                "label": channel.label
            })
            return
        self._attach_channel(channel)

    def _attach_channel(self, channel):
        self.channel = channel
        self._listen(channel, 'open', self._handle_channel_open)
        self._listen(channel, 'message', self._handle_channel_message)
        self._listen(channel, 'close', self._handle_channel_close)
        self._listen(channel, 'error', self._handle_channel_error)

        # An accepted channel may already be open when it is handed over
        if channel.readyState == 'open':
            self._handle_channel_open()

    def _handle_channel_open(self):
        if self.channel_state != ChannelState.CONNECTING:
            return
        self.channel_state = ChannelState.OPEN
        self.log_info(f"🔗 [PeerSession] Channel open", {
            "peer_id": self.peer_id,
            "side": 'host' if self.is_host_side else 'client'
        })

        # Only the answering side introduces itself
        if self.role == ROLE_ANSWERING and self._hello is not None:
            self.send(self._hello)

        if self._on_open:
            self._on_open(self)

    def _handle_channel_message(self, message):
        if self._on_message:
            self._on_message(self, message)

    def _handle_channel_close(self):
        if self.channel_state == ChannelState.CLOSED:
            return
        self.channel_state = ChannelState.CLOSED
        self.log_info(f"🔌 [PeerSession] Channel closed by remote", {"peer_id": self.peer_id})
        if self._on_closed:
            self._on_closed(self)

    def _handle_channel_error(self, error=None):
        self.log_error(f"❌ [PeerSession] Channel error", {"peer_id": self.peer_id, "error": str(error)})

    # -- data ----------------------------------------------------------------

    def send(self, payload: Any) -> bool:
        """Send a str/bytes payload (dicts are JSON-encoded) on an open channel."""
        if not self.is_open:
            return False
        data = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        self.channel.send(data)
        return True

    async def close(self):
        """Unregister callbacks, then close the channel, then the transport."""
        if self.closed:
            return
        self.state = SessionState.CLOSED
        self.channel_state = ChannelState.CLOSED

        listeners, self._listeners = self._listeners, []
        for emitter, event, handler in listeners:
            emitter.remove_listener(event, handler)

        if self.channel is not None:
            self.channel.close()
        await self.transport.close()
        self.pending_candidates = []

        self.log_debug(f"🧹 [PeerSession] Session closed", {"peer_id": self.peer_id, "role": self.role})

    def __repr__(self) -> str:
        return f"PeerSession(peer_id={self.peer_id}, role={self.role}, state={self.state}, channel={self.channel_state})"
