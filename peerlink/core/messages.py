"""
Signaling wire messages.
Factory and parser for the JSON records exchanged between clients and the relay.
"""

import json
from typing import Any, Dict, List, Optional

from peerlink.core.exceptions import MessageError
from peerlink.core.validation_utils import ValidationUtils


class MessageType:
    """Signaling message tags."""

    JOIN_ROOM = 'JOIN_ROOM'
    ASSIGNED_PEER_ID = 'ASSIGNED_PEER_ID'
    PEER_JOINED = 'PEER_JOINED'
    ROOM_FULL = 'ROOM_FULL'
    OFFER = 'OFFER'
    ANSWER = 'ANSWER'
    ICE_CANDIDATE = 'ICE_CANDIDATE'

    # Forwarded between room members by the relay
    RELAYED = (OFFER, ANSWER, ICE_CANDIDATE)


# Channel-level handshake sent once by the answering side
CLIENT_HELLO = 'CLIENT_HELLO'

REQUIRED_FIELDS: Dict[str, List[str]] = {
    MessageType.JOIN_ROOM: ['roomId', 'role', 'name'],
    MessageType.ASSIGNED_PEER_ID: ['peerId'],
    MessageType.PEER_JOINED: ['peerId'],
    MessageType.ROOM_FULL: [],
    MessageType.OFFER: ['sdp'],
    MessageType.ANSWER: ['sdp'],
    MessageType.ICE_CANDIDATE: ['candidate'],
}


def parse_message(raw: Any) -> Dict[str, Any]:
    """Decode and validate one signaling message.

    Raises:
        MessageError: payload is not JSON, not an object, has an unknown
            type, or lacks a field its type requires.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MessageError("Message is not UTF-8", {"error": str(e)})

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MessageError("Message is not valid JSON", {"error": str(e)})

    if not isinstance(data, dict):
        raise MessageError("Message is not an object", {"type": type(data).__name__})

    msg_type = data.get('type')
    if msg_type not in REQUIRED_FIELDS:
        raise MessageError("Unknown message type", {"type": msg_type})

    error = ValidationUtils.validate_required_fields(data, REQUIRED_FIELDS[msg_type])
    if error:
        raise MessageError(error, {"type": msg_type})

    if msg_type == MessageType.JOIN_ROOM:
        error = ValidationUtils.validate_role(data['role'])
        if error:
            raise MessageError(error, {"type": msg_type})

    return data


def encode_message(message: Dict[str, Any]) -> str:
    return json.dumps(message)


class SignalingMessageFactory:
    """Factory for creating signaling messages."""

    @staticmethod
    def join_room(room_id: str, role: str, name: str, password_hash: Optional[str] = None) -> Dict[str, Any]:
        message = {'type': MessageType.JOIN_ROOM, 'roomId': room_id, 'role': role, 'name': name}
        if password_hash is not None:
            message['passwordHash'] = password_hash
        return message

    @staticmethod
    def assigned_peer_id(peer_id: str, ice_servers: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {'type': MessageType.ASSIGNED_PEER_ID, 'peerId': peer_id, 'iceServers': ice_servers}

    @staticmethod
    def peer_joined(peer_id: str) -> Dict[str, Any]:
        return {'type': MessageType.PEER_JOINED, 'peerId': peer_id}

    @staticmethod
    def room_full() -> Dict[str, Any]:
        return {'type': MessageType.ROOM_FULL}

    @staticmethod
    def offer(peer_id: str, sdp: str) -> Dict[str, Any]:
        return {'type': MessageType.OFFER, 'peerId': peer_id, 'sdp': sdp}

    @staticmethod
    def answer(peer_id: str, sdp: str) -> Dict[str, Any]:
        return {'type': MessageType.ANSWER, 'peerId': peer_id, 'sdp': sdp}

    @staticmethod
    def ice_candidate(peer_id: str, candidate: Dict[str, Any]) -> Dict[str, Any]:
        return {'type': MessageType.ICE_CANDIDATE, 'peerId': peer_id, 'candidate': candidate}

    @staticmethod
    def client_hello(name: Optional[str], password_hash: Optional[str]) -> Dict[str, Any]:
        """Create the one-shot hello sent over a freshly opened channel."""
        return {'type': CLIENT_HELLO, 'name': name or 'Player', 'passwordHash': password_hash}

    @staticmethod
    def stamped(message: Dict[str, Any], sender_peer_id: str) -> Dict[str, Any]:
        """Copy of a relayed message carrying the sender's server-assigned id."""
        outbound = dict(message)
        outbound['peerId'] = sender_peer_id
        return outbound
