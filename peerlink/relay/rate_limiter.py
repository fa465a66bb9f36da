"""
Fixed-window message rate limiting for relay connections.
"""
import time
from typing import Callable


class RateLimiter:
    """Per-connection fixed-window counter.

    The window state lives on the connection itself (``window_start`` and
    ``message_count``), so one limiter serves every connection of a relay.
    """

    def __init__(self, window_seconds: float = 1.0, max_messages: int = 30,
                 clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.max_messages = max_messages
        self._clock = clock

    def allow(self, connection) -> bool:
        """Count one inbound message; False once the window's quota is spent."""
        now = self._clock()
        if connection.window_start is None or now - connection.window_start > self.window_seconds:
            connection.window_start = now
            connection.message_count = 0
        connection.message_count += 1
        return connection.message_count <= self.max_messages
