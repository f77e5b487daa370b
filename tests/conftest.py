"""Shared fixtures and test doubles for rtc-call tests."""

import asyncio
import itertools
import sys
from typing import Dict, List, Optional

import pytest
from loguru import logger

from rtc_call.connection import ConnectionHandle
from rtc_call.coordinator import NegotiationCoordinator
from rtc_call.exceptions import SignalingError
from rtc_call.protocol import Candidate, Description, SignalingMessage, format_signal
from rtc_call.signaling import SignalingLink

ROOM = "abc-defg-hij"

_connection_ids = itertools.count(1)


class FakeTrack:
    """Stand-in for a local media track."""

    def __init__(self, kind: str = "video"):
        self.kind = kind


class FakeConnection(ConnectionHandle):
    """Browser-like connection with an offer/answer state machine.

    Every async operation yields to the event loop once, so concurrent
    handlers interleave the way they would against a real connection.
    Applying a remote offer in ``have-local-offer`` rolls the local offer
    back first, as browsers do. SDP not starting with ``v=0`` is rejected.

    Attributes:
        implicit: Whether ``set_local_description()`` without arguments works.
        fail_offers: Make ``create_offer`` raise.
        fail_candidates: Make ``add_ice_candidate`` raise.
    """

    def __init__(self, implicit: bool = True):
        super().__init__()
        self.id = next(_connection_ids)
        self.implicit = implicit
        self.fail_offers = False
        self.fail_candidates = False
        self.closed = False
        self.tracks: List[FakeTrack] = []
        self.applied_local: List[Description] = []
        self.applied_remote: List[Description] = []
        self.added_candidates: List[Candidate] = []
        self.rollbacks = 0
        self._signaling_state = "stable"
        self._connection_state = "new"
        self._local: Optional[Description] = None
        self._remote: Optional[Description] = None
        self._negotiation_pending = False
        self._serial = itertools.count(1)

    @property
    def signaling_state(self) -> str:
        return self._signaling_state

    @property
    def connection_state(self) -> str:
        return self._connection_state

    @property
    def local_description(self) -> Optional[Description]:
        return self._local

    @property
    def remote_description(self) -> Optional[Description]:
        return self._remote

    async def _tick(self) -> None:
        await asyncio.sleep(0)
        if self.closed:
            raise RuntimeError("Connection is closed")

    async def create_offer(self) -> Description:
        await self._tick()
        if self.fail_offers:
            raise RuntimeError("Offer creation failed")
        return Description("offer", f"v=0 offer conn={self.id} n={next(self._serial)}")

    async def create_answer(self) -> Description:
        await self._tick()
        if self._signaling_state != "have-remote-offer":
            raise RuntimeError(f"Cannot answer in state {self._signaling_state}")
        return Description("answer", f"v=0 answer conn={self.id} n={next(self._serial)}")

    async def set_local_description(self, description: Optional[Description] = None) -> None:
        if description is None:
            if not self.implicit:
                raise TypeError("set_local_description() requires a description")
            if self._signaling_state == "have-remote-offer":
                description = await self.create_answer()
            else:
                description = await self.create_offer()
        await self._tick()

        if description.is_offer:
            if self._signaling_state not in ("stable", "have-local-offer"):
                raise RuntimeError(f"Cannot set local offer in {self._signaling_state}")
            self._signaling_state = "have-local-offer"
        elif description.is_answer:
            if self._signaling_state != "have-remote-offer":
                raise RuntimeError(f"Cannot set local answer in {self._signaling_state}")
            self._signaling_state = "stable"

        self._local = description
        self.applied_local.append(description)
        self._on_state_updated()

    async def set_remote_description(self, description: Description) -> None:
        await self._tick()
        if not description.sdp or not description.sdp.startswith("v=0"):
            raise ValueError("Invalid SDP")

        if description.is_offer:
            if self._signaling_state == "have-local-offer":
                self.rollbacks += 1
                self._signaling_state = "stable"
            elif self._signaling_state != "stable":
                raise RuntimeError(f"Cannot set remote offer in {self._signaling_state}")
            self._signaling_state = "have-remote-offer"
        elif description.is_answer:
            if self._signaling_state != "have-local-offer":
                raise RuntimeError(f"Cannot set remote answer in {self._signaling_state}")
            self._signaling_state = "stable"

        self._remote = description
        self.applied_remote.append(description)
        self._on_state_updated()

    async def add_ice_candidate(self, candidate: Candidate) -> None:
        await self._tick()
        if self.fail_candidates:
            raise ValueError("Candidate rejected")
        if self._remote is None:
            raise RuntimeError("No remote description")
        self.added_candidates.append(candidate)

    def add_track(self, track) -> None:
        self.tracks.append(track)
        self._negotiation_pending = True
        asyncio.get_running_loop().call_soon(self._fire_negotiation_needed)

    def _fire_negotiation_needed(self) -> None:
        if self._negotiation_pending and self._signaling_state == "stable" and not self.closed:
            self._negotiation_pending = False
            self.emit("negotiationneeded")

    def _on_state_updated(self) -> None:
        if self._signaling_state != "stable":
            return
        if self._local and self._remote and self._connection_state != "connected":
            self._connection_state = "connected"
            self.emit("connectionstatechange", "connected")
        self._fire_negotiation_needed()

    async def close(self) -> None:
        self.closed = True
        self._signaling_state = "closed"
        self._connection_state = "closed"


class LoopbackRelay:
    """In-memory room relay delivering frames synchronously and in order.

    Attributes:
        links: Open links by peer id.
        sent: Every signal sent, as (sender, target, message) tuples.
    """

    def __init__(self):
        self.links: Dict[str, "LoopbackLink"] = {}
        self.sent: List[tuple] = []

    def link(self, peer_id: str, room: str = ROOM) -> "LoopbackLink":
        return LoopbackLink(self, peer_id, room)

    def sent_by(self, peer_id: str) -> List[SignalingMessage]:
        return [message for sender, _, message in self.sent if sender == peer_id]

    def descriptions_sent_by(self, peer_id: str) -> List[str]:
        return [m.type for m in self.sent_by(peer_id) if isinstance(m, Description)]


class LoopbackLink(SignalingLink):
    """SignalingLink connected to a LoopbackRelay."""

    def __init__(self, relay: LoopbackRelay, peer_id: str, room: str):
        super().__init__(room)
        self.relay = relay
        self.peer_id = peer_id

    @property
    def is_open(self) -> bool:
        return self.relay.links.get(self.peer_id) is self

    async def open(self) -> None:
        others = [link for link in self.relay.links.values() if link.room == self.room]
        self.relay.links[self.peer_id] = self
        self.dispatch({"event": "connect", "data": {"id": self.peer_id}})
        self.dispatch({"event": "connected peers", "data": [o.peer_id for o in others]})
        for other in others:
            other.dispatch({"event": "connected peer", "data": self.peer_id})

    async def close(self) -> None:
        if not self.is_open:
            return
        del self.relay.links[self.peer_id]
        for other in list(self.relay.links.values()):
            if other.room == self.room:
                other.dispatch({"event": "disconnected peer", "data": self.peer_id})
        self.emit("disconnect")

    async def send(self, message: SignalingMessage, to: Optional[str] = None) -> None:
        if not self.is_open:
            raise SignalingError("Signaling link is closed")
        self.relay.sent.append((self.peer_id, to, message))
        frame = {"event": "signal", "from": self.peer_id, "data": format_signal(message)}
        for other in list(self.relay.links.values()):
            if other is not self and other.room == self.room and to in (None, other.peer_id):
                other.dispatch(frame)


async def settle(rounds: int = 200) -> None:
    """Let every pending handler run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_coordinator(
    relay: LoopbackRelay,
    peer_id: str,
    polite: Optional[bool],
    tracks=None,
    implicit: bool = True,
) -> NegotiationCoordinator:
    """Build a coordinator for ``peer_id`` using FakeConnections."""
    return NegotiationCoordinator(
        relay.link(peer_id),
        lambda: FakeConnection(implicit=implicit),
        local_tracks=tracks,
        polite=polite,
    )


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo handler changes made by CLI invocations."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")


@pytest.fixture
def relay():
    return LoopbackRelay()


@pytest.fixture
def log_records():
    """Capture loguru records emitted during the test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


def error_messages(records) -> List[str]:
    return [r["message"] for r in records if r["level"].name == "ERROR"]
