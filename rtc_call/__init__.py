"""rtc-call: perfect negotiation of two-party WebRTC calls over a room relay.

This package provides:
- room: room codes scoping the signaling namespace
- protocol: description/candidate signaling envelopes
- signaling: the relayed signaling link
- connection: the connection capability surface, backed by aiortc
- session: per-peer negotiation state
- coordinator: the perfect negotiation state machine
"""

from rtc_call.connection import AiortcConnection, ConnectionHandle
from rtc_call.coordinator import NegotiationCoordinator
from rtc_call.exceptions import (
    ConfigurationError,
    ProtocolError,
    RTCCallError,
    SignalingError,
)
from rtc_call.protocol import Candidate, Description, format_signal, parse_signal
from rtc_call.room import RoomCode, is_valid_room_code, resolve_room_code
from rtc_call.session import PeerSession, Role, SessionRegistry
from rtc_call.signaling import SignalingLink, WebSocketSignalingLink

__all__ = [
    # Room codes
    "RoomCode",
    "is_valid_room_code",
    "resolve_room_code",
    # Protocol
    "Candidate",
    "Description",
    "format_signal",
    "parse_signal",
    # Signaling
    "SignalingLink",
    "WebSocketSignalingLink",
    # Connections
    "ConnectionHandle",
    "AiortcConnection",
    # Sessions
    "PeerSession",
    "Role",
    "SessionRegistry",
    # Coordinator
    "NegotiationCoordinator",
    # Errors
    "RTCCallError",
    "ProtocolError",
    "SignalingError",
    "ConfigurationError",
]
