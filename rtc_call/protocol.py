"""Signaling message protocol for rtc-call.

This module defines the envelopes exchanged between the two peers of a call
through the signaling relay. The relay never inspects them; it only forwards
them between members of the same room.

Message Types
-------------

Every envelope carries exactly one of two keys.

**description**
    Sent by: Either peer
    Purpose: Carries a session description (SDP) for the offer/answer
        exchange, or asks the other peer to start over.
    Format: ``{"description": {"type": "offer"|"answer", "sdp": "..."}}``
            ``{"description": {"type": "_reset"}}``
    Note: ``_reset`` is only ever sent by the polite peer, after it has torn
        down its own connection. The impolite peer answers it by resetting as
        well and sending a fresh offer.

**candidate**
    Sent by: Either peer
    Purpose: Trickles a network (ICE) candidate discovered locally.
    Format: ``{"candidate": {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}}``
    Note: An empty candidate string (or a null candidate) marks the end of
        candidates for the current gathering round.

Message Flow Examples
---------------------

### First negotiation

1. A → B: description(offer)
2. B → A: description(answer)
3. A ↔ B: candidate(...) in both directions

### Glare (both peers offer at once, B is polite)

1. A → B: description(offer)   B → A: description(offer)
2. A ignores B's offer (impolite)
3. B rolls back its own offer and applies A's (polite)
4. B → A: description(answer)

### Recovery after a rejected description (B is polite)

1. B fails to apply a description, resets its connection
2. B → A: description(_reset)
3. A resets its connection and renegotiates
4. A → B: description(offer)
5. B → A: description(answer)
"""

import json
from dataclasses import dataclass
from typing import Any, Optional, Union

from rtc_call.exceptions import ProtocolError

# Envelope keys
KEY_DESCRIPTION = "description"
KEY_CANDIDATE = "candidate"

# Description types
DESCRIPTION_OFFER = "offer"
DESCRIPTION_ANSWER = "answer"
DESCRIPTION_RESET = "_reset"
DESCRIPTION_TYPES = {DESCRIPTION_OFFER, DESCRIPTION_ANSWER, DESCRIPTION_RESET}


@dataclass(frozen=True)
class Description:
    """A session description, or a reset request.

    Attributes:
        type: One of ``offer``, ``answer`` or ``_reset``.
        sdp: The SDP payload. None for ``_reset``.
    """

    type: str
    sdp: Optional[str] = None

    @property
    def is_offer(self) -> bool:
        return self.type == DESCRIPTION_OFFER

    @property
    def is_answer(self) -> bool:
        return self.type == DESCRIPTION_ANSWER

    @property
    def is_reset(self) -> bool:
        return self.type == DESCRIPTION_RESET

    @classmethod
    def reset(cls) -> "Description":
        """Build the reset request sent by the polite peer."""
        return cls(type=DESCRIPTION_RESET)

    @classmethod
    def from_session_description(cls, description: Any) -> "Description":
        """Build a Description from any object exposing ``type`` and ``sdp``.

        Args:
            description: e.g. an ``aiortc.RTCSessionDescription``.
        """
        return cls(type=description.type, sdp=description.sdp)

    def to_dict(self) -> dict:
        if self.is_reset:
            return {"type": self.type}
        return {"type": self.type, "sdp": self.sdp or ""}


@dataclass(frozen=True)
class Candidate:
    """A trickled network candidate.

    Attributes:
        candidate: The ``candidate:...`` attribute line. Empty for the
            end-of-candidates marker.
        sdp_mid: Media stream identification tag the candidate belongs to.
        sdp_mline_index: Index of the media description it belongs to.
    """

    candidate: str = ""
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    @property
    def is_end_of_candidates(self) -> bool:
        return not self.candidate

    def to_dict(self) -> dict:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }


SignalingMessage = Union[Description, Candidate]


def format_signal(message: SignalingMessage) -> dict:
    """Wrap a message into its wire envelope.

    Args:
        message: A Description or a Candidate.

    Returns:
        The JSON-compatible envelope.

    Examples:
        >>> format_signal(Description.reset())
        {'description': {'type': '_reset'}}

        >>> format_signal(Candidate("", "0", 0))
        {'candidate': {'candidate': '', 'sdpMid': '0', 'sdpMLineIndex': 0}}
    """
    if isinstance(message, Description):
        return {KEY_DESCRIPTION: message.to_dict()}
    if isinstance(message, Candidate):
        return {KEY_CANDIDATE: message.to_dict()}
    raise TypeError(f"Not a signaling message: {message!r}")


def parse_signal(payload: Union[str, dict]) -> SignalingMessage:
    """Parse a wire envelope into a Description or a Candidate.

    The SDP text itself is not validated here: a syntactically broken SDP is a
    negotiation failure, which the connection reports when it is applied.

    Args:
        payload: The envelope, as a dict or a JSON string.

    Returns:
        The parsed message.

    Raises:
        ProtocolError: If the envelope is not an object, carries both or
            neither variant, or has an unknown description type.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON in signaling message: {e}", payload)

    if not isinstance(payload, dict):
        raise ProtocolError("Signaling message must be an object", payload)

    has_description = payload.get(KEY_DESCRIPTION) is not None
    has_candidate = KEY_CANDIDATE in payload

    if has_description and has_candidate:
        raise ProtocolError(
            "Signaling message carries both a description and a candidate", payload
        )

    if has_description:
        return _parse_description(payload[KEY_DESCRIPTION], payload)

    if has_candidate:
        return _parse_candidate(payload[KEY_CANDIDATE], payload)

    raise ProtocolError(
        "Signaling message carries neither a description nor a candidate", payload
    )


def _parse_description(data: Any, payload: dict) -> Description:
    if not isinstance(data, dict):
        raise ProtocolError("Description must be an object", payload)

    desc_type = data.get("type")
    if desc_type not in DESCRIPTION_TYPES:
        raise ProtocolError(f"Unknown description type: {desc_type!r}", payload)

    if desc_type == DESCRIPTION_RESET:
        return Description.reset()

    sdp = data.get("sdp")
    return Description(type=desc_type, sdp=sdp if isinstance(sdp, str) else "")


def _parse_candidate(data: Any, payload: dict) -> Candidate:
    # Browsers signal the end of gathering with a null candidate
    if data is None:
        return Candidate()

    if not isinstance(data, dict):
        raise ProtocolError("Candidate must be an object", payload)

    mline_index = data.get("sdpMLineIndex")
    if mline_index is not None:
        try:
            mline_index = int(mline_index)
        except (TypeError, ValueError):
            raise ProtocolError(
                f"Invalid sdpMLineIndex: {data.get('sdpMLineIndex')!r}", payload
            )

    return Candidate(
        candidate=data.get("candidate") or "",
        sdp_mid=data.get("sdpMid"),
        sdp_mline_index=mline_index,
    )
