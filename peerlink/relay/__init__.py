"""
Relay module for PeerLink.
Handles room admission, rate limiting, credentials and message forwarding.
"""

from .connection import Connection
from .credentials import CredentialCache, CredentialSnapshot
from .rate_limiter import RateLimiter
from .room_registry import RoomRegistry
from .server import RelayServer

__all__ = [
    'Connection',
    'CredentialCache',
    'CredentialSnapshot',
    'RateLimiter',
    'RoomRegistry',
    'RelayServer'
]
