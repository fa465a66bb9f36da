"""
Peer transport construction and ICE candidate conversion for aiortc.
"""
from typing import Any, Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceCandidate, RTCIceServer, RTCPeerConnection
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from peerlink.core.logging import debug_log
from peerlink.core.validation_utils import ValidationUtils


def build_rtc_config(ice_servers: List[Dict[str, Any]]) -> RTCConfiguration:
    """Build an RTCConfiguration from wire-format ice server descriptors."""
    servers = []
    for descriptor in ice_servers:
        error = ValidationUtils.validate_ice_server(descriptor)
        if error:
            debug_log(f"🧊 [Transport] Skipping unusable ICE server", {"error": error}, "WARNING")
            continue
        servers.append(RTCIceServer(
            urls=descriptor['urls'],
            username=descriptor.get('username'),
            credential=descriptor.get('credential')
        ))
    return RTCConfiguration(iceServers=servers)


def create_peer_connection(ice_servers: List[Dict[str, Any]]) -> RTCPeerConnection:
    """Default peer transport factory."""
    return RTCPeerConnection(configuration=build_rtc_config(ice_servers))


def candidate_to_message(candidate: RTCIceCandidate) -> Dict[str, Any]:
    """Browser-compatible RTCIceCandidateInit for a local candidate."""
    return {
        'candidate': f"candidate:{candidate_to_sdp(candidate)}",
        'sdpMid': candidate.sdpMid,
        'sdpMLineIndex': candidate.sdpMLineIndex
    }


def candidate_from_message(data: Any) -> Optional[RTCIceCandidate]:
    """Parse a remote RTCIceCandidateInit; None marks end-of-candidates.

    Raises:
        ValueError: the candidate line cannot be parsed.
    """
    if isinstance(data, str):
        data = {'candidate': data}
    if not isinstance(data, dict):
        raise ValueError(f"Unsupported candidate payload: {type(data).__name__}")

    line = data.get('candidate') or ''
    if not isinstance(line, str):
        raise ValueError(f"Unsupported candidate line: {type(line).__name__}")
    if line.startswith('candidate:'):
        line = line[len('candidate:'):]
    if not line:
        return None

    try:
        candidate = candidate_from_sdp(line)
    except (AssertionError, IndexError, KeyError, ValueError) as e:
        raise ValueError(f"Malformed candidate line: {line[:80]}") from e
    candidate.sdpMid = data.get('sdpMid')
    candidate.sdpMLineIndex = data.get('sdpMLineIndex')
    return candidate
