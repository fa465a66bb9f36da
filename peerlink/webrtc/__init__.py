"""
WebRTC module for PeerLink.
Handles peer sessions, data channels and signaling orchestration.
"""

from .orchestrator import ConnectionOrchestrator
from .peer_session import PeerSession, SessionState, ChannelState
from .transport import create_peer_connection

__all__ = [
    'ConnectionOrchestrator',
    'PeerSession',
    'SessionState',
    'ChannelState',
    'create_peer_connection'
]
