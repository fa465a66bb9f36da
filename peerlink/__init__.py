"""
PeerLink: signaling relay and WebRTC connection orchestration.
"""

__version__ = "0.1.0"
