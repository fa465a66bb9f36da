"""
Server-side view of one accepted signaling connection.
"""
import asyncio
from typing import Any, Dict, Optional

from aiohttp import web

from peerlink.core.logging import debug_log
from peerlink.core.messages import encode_message


class Connection:
    """One client WebSocket plus its room membership and rate-limit window."""

    def __init__(self, websocket: web.WebSocketResponse, send_timeout: float = 5.0):
        self.websocket = websocket
        self.send_timeout = send_timeout

        # Assigned once, at the first successful join
        self.peer_id: Optional[str] = None
        self.room_id: Optional[str] = None

        # Fixed-window rate limiter state
        self.window_start: Optional[float] = None
        self.message_count: int = 0

    @property
    def writable(self) -> bool:
        return not self.websocket.closed

    async def send(self, message: Dict[str, Any]) -> bool:
        """Best-effort send; a closed, broken or stalled socket is skipped."""
        if not self.writable:
            return False
        try:
            await asyncio.wait_for(self.websocket.send_str(encode_message(message)), self.send_timeout)
            return True
        except (ConnectionError, asyncio.TimeoutError) as e:
            debug_log(f"📤 [Connection] Send skipped", {
                "peer_id": self.peer_id,
                "type": message.get('type'),
                "error_type": type(e).__name__
            }, "DEBUG")
            return False

    def __repr__(self) -> str:
        return f"Connection(peer_id={self.peer_id}, room_id={self.room_id})"
