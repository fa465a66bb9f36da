"""
Core module for PeerLink.
Contains configuration, logging, wire messages and common utilities.
"""

from .config import ServerConfig, ClientConfig
from .logging import setup_logging, debug_log
from .exceptions import PeerLinkError, MessageError, RoomFullError, InvalidRoomError

__all__ = [
    'ServerConfig',
    'ClientConfig',
    'setup_logging',
    'debug_log',
    'PeerLinkError',
    'MessageError',
    'RoomFullError',
    'InvalidRoomError'
]
