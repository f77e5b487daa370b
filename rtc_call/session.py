"""Per-peer negotiation state.

Each remote peer gets one :class:`PeerSession`, holding its role, the
connection it owns, and the flags perfect negotiation uses to arbitrate races
between a local renegotiation and an inbound description. Sessions live in a
:class:`SessionRegistry`, keyed by the peer id assigned by the relay.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional

from loguru import logger

from rtc_call.connection import ConnectionFactory, ConnectionHandle
from rtc_call.protocol import Candidate, SignalingMessage


class Role(Enum):
    """Collision-resolution role of the local endpoint towards one peer.

    The polite side always yields to an inbound competing offer; the impolite
    side always ignores it.
    """

    POLITE = "polite"
    IMPOLITE = "impolite"

    @classmethod
    def resolve(
        cls, self_id: Optional[str], peer_id: str, polite: Optional[bool] = None
    ) -> "Role":
        """Decide the local role towards a peer.

        An explicitly configured role wins. Otherwise both ends compare their
        relay-assigned ids and the lower one is polite, so the two sides
        always end up with opposite roles without exchanging anything.

        Args:
            self_id: Our own relay-assigned id.
            peer_id: The remote peer's id.
            polite: Fixed per-endpoint role, or None to derive it.

        Returns:
            The role to use for this peer.
        """
        if polite is not None:
            return cls.POLITE if polite else cls.IMPOLITE
        return cls.POLITE if (self_id or "") < peer_id else cls.IMPOLITE


@dataclass
class PeerSession:
    """Negotiation state for one remote peer.

    Attributes:
        peer_id: Relay-assigned id of the remote peer.
        role: Fixed collision-resolution role for this peer.
        connection: The connection owned by this session. Replaced on reset,
            never None.
        is_making_offer: True while a local offer is being created and sent.
        is_ignoring_offer: True when the last inbound offer was dropped
            because it collided with our own.
        is_setting_remote_answer_pending: True while an inbound answer is
            being applied.
        is_suppressing_initial_offer: True on the polite side after a reset,
            until the impolite peer's recovery offer has been applied.
        pending_candidates: Candidates received before any remote description
            was applied.
        candidate_failures: Number of reported candidate failures.
        inbox: Inbound messages awaiting in-order processing.
    """

    peer_id: str
    role: Role
    connection: ConnectionHandle
    is_making_offer: bool = False
    is_ignoring_offer: bool = False
    is_setting_remote_answer_pending: bool = False
    is_suppressing_initial_offer: bool = False
    pending_candidates: List[Candidate] = field(default_factory=list)
    candidate_failures: int = 0
    inbox: "asyncio.Queue[SignalingMessage]" = field(default_factory=asyncio.Queue)
    inbox_task: Optional[asyncio.Task] = None

    @property
    def is_polite(self) -> bool:
        return self.role is Role.POLITE

    @property
    def ready_for_offer(self) -> bool:
        """Whether an inbound offer can be applied without colliding."""
        return not self.is_making_offer and (
            self.connection.signaling_state == "stable"
            or self.is_setting_remote_answer_pending
        )

    def clear_flags(self) -> None:
        """Reset every negotiation flag and drop queued candidates.

        ``is_suppressing_initial_offer`` ends up True on the polite side only.
        """
        self.is_making_offer = False
        self.is_ignoring_offer = False
        self.is_setting_remote_answer_pending = False
        self.is_suppressing_initial_offer = self.is_polite
        self.pending_candidates.clear()

    def snapshot(self) -> dict:
        """Return the flags as a plain dict, for logging and status output."""
        return {
            "peer_id": self.peer_id,
            "role": self.role.value,
            "signaling_state": self.connection.signaling_state,
            "connection_state": self.connection.connection_state,
            "is_making_offer": self.is_making_offer,
            "is_ignoring_offer": self.is_ignoring_offer,
            "is_setting_remote_answer_pending": self.is_setting_remote_answer_pending,
            "is_suppressing_initial_offer": self.is_suppressing_initial_offer,
        }


class SessionRegistry:
    """Owns every PeerSession, keyed by peer id."""

    def __init__(self, connection_factory: ConnectionFactory):
        self.connection_factory = connection_factory
        self._sessions: Dict[str, PeerSession] = {}

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[PeerSession]:
        return iter(list(self._sessions.values()))

    def get(self, peer_id: str) -> Optional[PeerSession]:
        return self._sessions.get(peer_id)

    def create(self, peer_id: str, role: Role) -> PeerSession:
        """Create the session for a newly known peer.

        Args:
            peer_id: Relay-assigned id of the peer.
            role: Role to hold for the lifetime of the session.

        Returns:
            The new session, owning a fresh connection.

        Raises:
            ValueError: If a session for this peer already exists.
        """
        if peer_id in self._sessions:
            raise ValueError(f"Session for peer {peer_id} already exists")

        session = PeerSession(
            peer_id=peer_id, role=role, connection=self.connection_factory()
        )
        self._sessions[peer_id] = session
        logger.info(f"Created session for peer {peer_id} (role: {role.value})")
        return session

    def remove(self, peer_id: str) -> Optional[PeerSession]:
        """Forget a peer's session and return it, if any."""
        session = self._sessions.pop(peer_id, None)
        if session is not None:
            logger.info(f"Removed session for peer {peer_id}")
        return session
