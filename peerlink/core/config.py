"""
Configuration management for PeerLink.
"""
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

# Public STUN servers used whenever the relay hands out no credentials.
DEFAULT_ICE_SERVERS: List[Dict[str, Any]] = [
    {'urls': 'stun:stun.l.google.com:19302'},
    {'urls': 'stun:stun1.l.google.com:19302'},
]

ROLE_HOST = 'host'
ROLE_CLIENT = 'client'
ROLES = (ROLE_HOST, ROLE_CLIENT)


@dataclass
class ServerConfig:
    """Relay server configuration settings."""

    # Listening socket
    host: Optional[str] = None
    port: Optional[int] = None

    # Credential provider
    credentials_url: Optional[str] = None
    credential_refresh_seconds: Optional[float] = None
    credential_fetch_timeout: Optional[float] = None

    # Rooms
    room_capacity: int = 8
    room_id_max_length: int = 64

    # Rate limiting (fixed window per connection)
    rate_limit_window_seconds: float = 1.0
    rate_limit_max_messages: int = 30

    # Transport limits
    max_message_size: int = 64 * 1024
    send_timeout_seconds: float = 5.0

    log_level: Optional[str] = None

    def __post_init__(self):
        """Fill unset settings from environment variables."""
        if self.host is None:
            self.host = os.environ.get('HOST', '0.0.0.0')
        if self.port is None:
            self.port = int(os.environ.get('PORT', 3000))

        if self.credentials_url is None:
            self.credentials_url = os.environ.get('TURN_CREDENTIALS_URL') or None
        if self.credential_refresh_seconds is None:
            self.credential_refresh_seconds = float(os.environ.get('CREDENTIAL_REFRESH_SECONDS', 1800))
        if self.credential_fetch_timeout is None:
            self.credential_fetch_timeout = float(os.environ.get('CREDENTIAL_FETCH_TIMEOUT', 10))

        if self.log_level is None:
            self.log_level = os.environ.get('LOG_LEVEL', 'INFO')

    def __str__(self) -> str:
        """String representation of configuration."""
        return (f"ServerConfig(host={self.host}, port={self.port}, "
                f"credentials={'on' if self.credentials_url else 'off'}, capacity={self.room_capacity})")


@dataclass
class ClientConfig:
    """Options for one orchestrator connection to the relay."""

    signaling_url: str
    room_id: str
    role: str
    name: str = 'Player'
    password_hash: Optional[str] = None
    channel_label: str = 'data'

    # Application callbacks; plain functions or coroutine functions
    on_host_peer_joined: Optional[Callable] = None
    on_host_channel_open: Optional[Callable] = None
    on_client_channel_open: Optional[Callable] = None
    on_message: Optional[Callable] = None
    on_disconnect: Optional[Callable] = None
    on_room_full: Optional[Callable] = None

    # Fallback when ASSIGNED_PEER_ID carries no servers
    fallback_ice_servers: List[Dict[str, Any]] = field(
        default_factory=lambda: [dict(server) for server in DEFAULT_ICE_SERVERS]
    )

    @property
    def is_host(self) -> bool:
        return self.role == ROLE_HOST

    def join_fields(self) -> Dict[str, Any]:
        """Fields announced to the relay in JOIN_ROOM."""
        fields = {'roomId': self.room_id, 'role': self.role, 'name': self.name}
        if self.password_hash is not None:
            fields['passwordHash'] = self.password_hash
        return fields
