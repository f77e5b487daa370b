"""Perfect negotiation between the two peers of a call.

The NegotiationCoordinator reacts to two kinds of triggers:

1. ``negotiationneeded`` raised by a session's connection, when local media
   changes and a new offer must be made.
2. Descriptions and candidates arriving from the peer over the signaling link.

Both peers may start negotiating at the same time ("glare"). Each side holds a
fixed role towards the other: the polite side yields and applies the
competing offer, the impolite side ignores it. Any description the connection
rejects makes the session tear down its connection and start over; only the
polite side announces that reset to the peer, which answers it with a fresh
offer.

Inbound messages of one peer are processed strictly in order by that
session's inbox task. Local negotiation runs in its own task and may
interleave with inbound handling at every await; the session flags are what
keep the two consistent.
"""

import asyncio
from typing import Any, Iterable, List, Optional

from loguru import logger
from pyee.asyncio import AsyncIOEventEmitter

from rtc_call.connection import ConnectionFactory, ConnectionHandle
from rtc_call.exceptions import SignalingError
from rtc_call.protocol import Candidate, Description, SignalingMessage
from rtc_call.session import PeerSession, Role, SessionRegistry
from rtc_call.signaling import (
    EVENT_CONNECT,
    EVENT_CONNECTED_PEER,
    EVENT_CONNECTED_PEERS,
    EVENT_DISCONNECT,
    EVENT_DISCONNECTED_PEER,
    EVENT_SIGNAL,
    SignalingLink,
)

# Events emitted by the coordinator
EVENT_TRACK = "track"
EVENT_CONNECTION_STATE = "connectionstatechange"
EVENT_RESET = "reset"
EVENT_PEER_LEFT = "peer-left"


class NegotiationCoordinator(AsyncIOEventEmitter):
    """Drives offer/answer exchange for every remote peer in the room.

    Emits:
        track (peer_id, track): A remote media track arrived.
        connectionstatechange (peer_id, state): A connection changed state.
        reset (peer_id): A session replaced its connection.
        peer-left (peer_id): A session was destroyed.

    Attributes:
        link: Signaling link of the room.
        sessions: Registry of per-peer sessions.
        local_tracks: Media tracks attached to every new connection.
        polite: Fixed local role, or None to derive it per peer from ids.
        max_peers: Maximum number of simultaneous remote peers.
    """

    def __init__(
        self,
        link: SignalingLink,
        connection_factory: ConnectionFactory,
        local_tracks: Optional[Iterable[Any]] = None,
        polite: Optional[bool] = None,
        max_peers: int = 1,
    ):
        super().__init__()
        self.link = link
        self.sessions = SessionRegistry(connection_factory)
        self.local_tracks: List[Any] = list(local_tracks or [])
        self.polite = polite
        self.max_peers = max_peers

        link.on(EVENT_CONNECT, self._on_link_connect)
        link.on(EVENT_CONNECTED_PEERS, self._on_connected_peers)
        link.on(EVENT_CONNECTED_PEER, self._on_connected_peer)
        link.on(EVENT_DISCONNECTED_PEER, self._on_disconnected_peer)
        link.on(EVENT_SIGNAL, self._on_signal)
        link.on(EVENT_DISCONNECT, self._on_link_disconnect)
        link.on("error", self._on_handler_error)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def join_session(self) -> None:
        """Join the call by opening the signaling link."""
        logger.info(f"Joining the call in room '{self.link.room}'...")
        await self.link.open()

    async def leave_session(self) -> None:
        """Leave the call.

        Closes the signaling link and destroys every session, so that joining
        again starts from a clean state.
        """
        logger.info("Leaving the call...")
        await self.link.close()
        for session in self.sessions:
            await self._destroy_session(session.peer_id)

    async def handle_negotiation_needed(self, peer_id: str) -> None:
        """Make and send a new local offer to a peer, if allowed.

        Args:
            peer_id: Peer whose connection needs renegotiating.
        """
        session = self.sessions.get(peer_id)
        if session is not None:
            await self._negotiate(session, session.connection)

    async def handle_signal(self, peer_id: str, message: SignalingMessage) -> None:
        """Process one inbound message immediately, bypassing the inbox.

        Args:
            peer_id: Sender of the message.
            message: The parsed Description or Candidate.
        """
        session = self.ensure_session(peer_id)
        if session is not None:
            await self._handle_message(session, message)

    async def reset_and_retry(self, peer_id: str) -> None:
        """Abandon all negotiation state with a peer and start over."""
        session = self.sessions.get(peer_id)
        if session is not None:
            await self._reset_and_retry(session)

    async def drain(self) -> None:
        """Wait until every queued inbound message has been processed."""
        for session in self.sessions:
            await session.inbox.join()

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def ensure_session(self, peer_id: str) -> Optional[PeerSession]:
        """Return the session for a peer, creating it on first sight.

        Args:
            peer_id: Relay-assigned id of the peer.

        Returns:
            The session, or None if the call is already full.
        """
        session = self.sessions.get(peer_id)
        if session is not None:
            return session

        if len(self.sessions) >= self.max_peers:
            logger.warning(
                f"Ignoring peer {peer_id}: call already has {len(self.sessions)} peer(s)"
            )
            return None

        role = Role.resolve(self.link.self_id, peer_id, self.polite)
        session = self.sessions.create(peer_id, role)
        self._establish_call_features(session)
        session.inbox_task = asyncio.create_task(self._process_inbox(session))
        return session

    def _establish_call_features(self, session: PeerSession) -> None:
        """Subscribe to the session's connection and attach local media."""
        connection = session.connection

        @connection.on("negotiationneeded")
        async def on_negotiation_needed():
            if session.connection is connection:
                await self._negotiate(session, connection)

        @connection.on("icecandidate")
        async def on_ice_candidate(candidate: Optional[Candidate]):
            if session.connection is connection:
                await self._send(session, candidate or Candidate())

        @connection.on("connectionstatechange")
        def on_connection_state_change(state: str):
            logger.info(f"Connection to peer {session.peer_id} is now {state}")
            self.emit(EVENT_CONNECTION_STATE, session.peer_id, state)

        @connection.on("track")
        def on_track(track):
            logger.info(f"Attempt to display media from peer {session.peer_id}...")
            self.emit(EVENT_TRACK, session.peer_id, track)

        connection.on("error", self._on_handler_error)

        for track in self.local_tracks:
            connection.add_track(track)

    async def _destroy_session(self, peer_id: str) -> None:
        session = self.sessions.remove(peer_id)
        if session is None:
            return

        if session.inbox_task is not None and session.inbox_task is not asyncio.current_task():
            session.inbox_task.cancel()

        session.connection.remove_all_listeners()
        await session.connection.close()
        self.emit(EVENT_PEER_LEFT, peer_id)

    # =========================================================================
    # Signaling link callbacks
    # =========================================================================

    def _on_link_connect(self) -> None:
        logger.info("Successfully connected to the signaling server!")
        logger.info(f"Self ID: {self.link.self_id}")

    def _on_connected_peers(self, peer_ids: List[str]) -> None:
        logger.info(f"Connected peer IDs: {', '.join(peer_ids) or '(none)'}")
        for peer_id in peer_ids:
            self.ensure_session(peer_id)

    def _on_connected_peer(self, peer_id: str) -> None:
        logger.info(f"Connected peer ID: {peer_id}")
        self.ensure_session(peer_id)

    async def _on_disconnected_peer(self, peer_id: str) -> None:
        logger.info(f"Disconnected peer ID: {peer_id}")
        await self._destroy_session(peer_id)

    def _on_signal(self, sender: Optional[str], message: SignalingMessage) -> None:
        # Kept synchronous so messages enter the inbox in arrival order
        if sender is None:
            logger.warning(f"Dropping {type(message).__name__} without a sender")
            return
        session = self.ensure_session(sender)
        if session is not None:
            session.inbox.put_nowait(message)

    def _on_link_disconnect(self) -> None:
        logger.info("Signaling link closed")

    def _on_handler_error(self, error: Exception) -> None:
        logger.error(f"Unhandled error in event handler: {error}")

    async def _process_inbox(self, session: PeerSession) -> None:
        while True:
            message = await session.inbox.get()
            try:
                await self._handle_message(session, message)
            except Exception as e:
                logger.error(
                    f"Error handling {type(message).__name__} from peer {session.peer_id}: {e}"
                )
            finally:
                session.inbox.task_done()

    # =========================================================================
    # Negotiation
    # =========================================================================

    async def _send(self, session: PeerSession, message: SignalingMessage) -> None:
        try:
            await self.link.send(message, to=session.peer_id)
        except SignalingError as e:
            logger.warning(f"Could not send {type(message).__name__} to {session.peer_id}: {e}")

    async def _send_local_description(
        self, session: PeerSession, connection: ConnectionHandle
    ) -> None:
        description = connection.local_description
        if description is not None:
            logger.debug(f"Sending {description.type} to peer {session.peer_id}")
            await self._send(session, description)

    async def _negotiate(self, session: PeerSession, connection: ConnectionHandle) -> None:
        if session.is_suppressing_initial_offer:
            logger.debug(
                f"Suppressing local offer to peer {session.peer_id} while awaiting recovery offer"
            )
            return

        try:
            session.is_making_offer = True
            try:
                await connection.set_local_description()
            except Exception:
                offer = await connection.create_offer()
                await connection.set_local_description(offer)
        except Exception as e:
            logger.error(f"Unable to create an offer for peer {session.peer_id}: {e}")
        finally:
            # Skipped once a reset has replaced the connection
            if session.connection is connection:
                try:
                    await self._send_local_description(session, connection)
                finally:
                    session.is_making_offer = False

    async def _handle_message(self, session: PeerSession, message: SignalingMessage) -> None:
        if isinstance(message, Description):
            await self._handle_description(session, message)
        elif isinstance(message, Candidate):
            await self._handle_candidate(session, message)

    async def _handle_description(
        self, session: PeerSession, description: Description
    ) -> None:
        if description.is_reset:
            logger.info(f"Peer {session.peer_id} asked for a reset")
            await self._reset_and_retry(session)
            return

        offer_collision = description.is_offer and not session.ready_for_offer
        session.is_ignoring_offer = not session.is_polite and offer_collision
        if session.is_ignoring_offer:
            logger.info(f"Ignoring colliding offer from peer {session.peer_id}")
            # Queued candidates belong to the ignored offer
            session.pending_candidates.clear()
            return

        connection = session.connection
        session.is_setting_remote_answer_pending = description.is_answer
        try:
            logger.debug(
                f"Signaling state on incoming {description.type}: {connection.signaling_state}"
            )
            await connection.set_remote_description(description)
        except Exception as e:
            logger.warning(
                f"Failed to apply {description.type} from peer {session.peer_id}: {e}"
            )
            await self._reset_and_retry(session)
            return
        session.is_setting_remote_answer_pending = False

        await self._flush_pending_candidates(session)

        if description.is_offer:
            try:
                try:
                    await connection.set_local_description()
                except Exception:
                    answer = await connection.create_answer()
                    await connection.set_local_description(answer)
            finally:
                try:
                    await self._send_local_description(session, connection)
                finally:
                    session.is_suppressing_initial_offer = False

    async def _handle_candidate(self, session: PeerSession, candidate: Candidate) -> None:
        if (
            not session.is_ignoring_offer
            and session.connection.remote_description is None
        ):
            session.pending_candidates.append(candidate)
            logger.debug(f"Queued candidate from peer {session.peer_id} until an offer lands")
            return
        await self._add_candidate(session, candidate)

    async def _flush_pending_candidates(self, session: PeerSession) -> None:
        pending, session.pending_candidates = session.pending_candidates, []
        for candidate in pending:
            await self._add_candidate(session, candidate)

    async def _add_candidate(self, session: PeerSession, candidate: Candidate) -> None:
        try:
            await session.connection.add_ice_candidate(candidate)
        except Exception as e:
            # Candidates trailing an ignored offer are expected to fail
            if not session.is_ignoring_offer and len(candidate.candidate) > 1:
                session.candidate_failures += 1
                logger.error(f"Unable to add ICE candidate for peer {session.peer_id}: {e}")

    async def _reset_and_retry(self, session: PeerSession) -> None:
        logger.info(f"Resetting connection to peer {session.peer_id} ({session.role.value})")

        session.clear_flags()
        old_connection = session.connection
        old_connection.remove_all_listeners()
        session.connection = self.sessions.connection_factory()
        self._establish_call_features(session)
        self.emit(EVENT_RESET, session.peer_id)

        await old_connection.close()

        if session.is_polite:
            await self._send(session, Description.reset())
