"""Connection handles: the capability surface the negotiation core relies on.

The coordinator never touches an ``RTCPeerConnection`` directly. It talks to a
:class:`ConnectionHandle`, which exposes the handful of offer/answer and
candidate operations perfect negotiation needs, plus four events:

- ``negotiationneeded``: local media changed and a new offer is required.
- ``icecandidate``: a local candidate (or None at the end of gathering).
- ``connectionstatechange``: ``connection_state`` changed.
- ``track``: a remote media track arrived.

:class:`AiortcConnection` implements the surface on top of aiortc.
"""

import asyncio
from typing import Any, Callable, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceCandidate,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp
from loguru import logger
from pyee.asyncio import AsyncIOEventEmitter

from rtc_call.protocol import Candidate, Description

CANDIDATE_PREFIX = "candidate:"


class ConnectionHandle(AsyncIOEventEmitter):
    """Abstract media connection driven by the negotiation coordinator."""

    @property
    def signaling_state(self) -> str:
        raise NotImplementedError

    @property
    def connection_state(self) -> str:
        raise NotImplementedError

    @property
    def local_description(self) -> Optional[Description]:
        raise NotImplementedError

    @property
    def remote_description(self) -> Optional[Description]:
        raise NotImplementedError

    async def create_offer(self) -> Description:
        raise NotImplementedError

    async def create_answer(self) -> Description:
        raise NotImplementedError

    async def set_local_description(
        self, description: Optional[Description] = None
    ) -> None:
        """Set the local description.

        Args:
            description: The description to apply. None asks the connection to
                create whatever the current signaling state calls for (an
                answer in ``have-remote-offer``, an offer otherwise).
        """
        raise NotImplementedError

    async def set_remote_description(self, description: Description) -> None:
        raise NotImplementedError

    async def add_ice_candidate(self, candidate: Candidate) -> None:
        raise NotImplementedError

    def add_track(self, track: Any) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


ConnectionFactory = Callable[[], ConnectionHandle]


def candidate_to_rtc(candidate: Candidate) -> Optional[RTCIceCandidate]:
    """Convert a wire candidate into an aiortc candidate.

    Args:
        candidate: The wire candidate.

    Returns:
        An ``RTCIceCandidate``, or None for the end-of-candidates marker.

    Raises:
        ValueError: If the candidate line cannot be parsed.
    """
    if candidate.is_end_of_candidates:
        return None

    line = candidate.candidate
    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX) :]

    rtc_candidate = candidate_from_sdp(line)
    rtc_candidate.sdpMid = candidate.sdp_mid
    rtc_candidate.sdpMLineIndex = candidate.sdp_mline_index
    return rtc_candidate


class AiortcConnection(ConnectionHandle):
    """ConnectionHandle backed by an ``aiortc.RTCPeerConnection``.

    aiortc embeds every gathered candidate in the SDP and has no
    ``negotiationneeded`` event of its own, so this adapter raises
    ``negotiationneeded`` itself whenever a track is added, and emits a single
    ``icecandidate`` end marker once gathering completes.

    aiortc cannot roll back a local offer. A polite endpoint receiving a
    competing offer in ``have-local-offer`` fails to apply it and recovers
    through a reset instead, costing one extra ``_reset`` round trip.

    Attributes:
        pc: The wrapped peer connection.
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None):
        super().__init__()
        self.pc = RTCPeerConnection(configuration=configuration)
        self._negotiation_pending = False

        @self.pc.on("track")
        def on_track(track):
            logger.debug(f"Remote {track.kind} track received")
            self.emit("track", track)

        @self.pc.on("connectionstatechange")
        def on_connection_state_change():
            self.emit("connectionstatechange", self.pc.connectionState)

        @self.pc.on("icegatheringstatechange")
        def on_ice_gathering_state_change():
            if self.pc.iceGatheringState == "complete":
                self.emit("icecandidate", None)

        @self.pc.on("signalingstatechange")
        def on_signaling_state_change():
            logger.debug(f"Signaling state is now {self.pc.signalingState}")
            if self.pc.signalingState == "stable":
                self._fire_negotiation_needed()

    @classmethod
    def factory(cls, configuration: Optional[RTCConfiguration] = None) -> ConnectionFactory:
        """Build a factory producing connections with the given configuration."""
        return lambda: cls(configuration)

    @property
    def signaling_state(self) -> str:
        return self.pc.signalingState

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState

    @property
    def local_description(self) -> Optional[Description]:
        description = self.pc.localDescription
        if description is None:
            return None
        return Description.from_session_description(description)

    @property
    def remote_description(self) -> Optional[Description]:
        description = self.pc.remoteDescription
        if description is None:
            return None
        return Description.from_session_description(description)

    async def create_offer(self) -> Description:
        return Description.from_session_description(await self.pc.createOffer())

    async def create_answer(self) -> Description:
        return Description.from_session_description(await self.pc.createAnswer())

    async def set_local_description(
        self, description: Optional[Description] = None
    ) -> None:
        if description is None:
            await self.pc.setLocalDescription()
        else:
            await self.pc.setLocalDescription(
                RTCSessionDescription(sdp=description.sdp, type=description.type)
            )

    async def set_remote_description(self, description: Description) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def add_ice_candidate(self, candidate: Candidate) -> None:
        await self.pc.addIceCandidate(candidate_to_rtc(candidate))

    def add_track(self, track: Any) -> None:
        self.pc.addTrack(track)
        self._negotiation_pending = True
        asyncio.get_running_loop().call_soon(self._fire_negotiation_needed)

    def _fire_negotiation_needed(self) -> None:
        # Only raised once the connection is back in a stable state
        if not self._negotiation_pending or self.pc.signalingState != "stable":
            return
        self._negotiation_pending = False
        self.emit("negotiationneeded")

    async def close(self) -> None:
        self._negotiation_pending = False
        await self.pc.close()
