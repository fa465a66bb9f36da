"""
Custom exception classes for PeerLink.
"""


class PeerLinkError(Exception):
    """Base exception for PeerLink."""
    
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}
    
    def __str__(self):
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class MessageError(PeerLinkError):
    """Raised when a signaling message cannot be parsed or validated."""
    pass


class RoomError(PeerLinkError):
    """Raised when a room operation is rejected."""
    pass


class RoomFullError(RoomError):
    """Raised when a room is already at capacity."""
    pass


class InvalidRoomError(RoomError):
    """Raised when a room identifier sanitizes to nothing."""
    pass


class CredentialError(PeerLinkError):
    """Raised when the credential provider returns nothing usable."""
    pass


class SignalingError(PeerLinkError):
    """Raised when the client orchestrator is misused."""
    pass
