"""Entry point for joining a call from the command line."""

import asyncio
from typing import Optional

from loguru import logger

from rtc_call.config import Config, get_config
from rtc_call.connection import AiortcConnection
from rtc_call.coordinator import (
    EVENT_CONNECTION_STATE,
    EVENT_PEER_LEFT,
    EVENT_RESET,
    EVENT_TRACK,
    NegotiationCoordinator,
)
from rtc_call.media import LocalMedia, RemoteMediaSink
from rtc_call.signaling import EVENT_DISCONNECT, WebSocketSignalingLink


async def run_call(room: str, config: Config, polite: Optional[bool] = None) -> None:
    """Join a room and stay in the call until the signaling link closes.

    Args:
        room: Resolved room code.
        config: Loaded configuration.
        polite: Role override. Falls back to ``config.polite``, then to id
            comparison with the peer.
    """
    media = LocalMedia.open(config.media)
    sink = RemoteMediaSink(config.media.record_to)

    link = WebSocketSignalingLink(config.signaling_websocket, room)
    coordinator = NegotiationCoordinator(
        link,
        AiortcConnection.factory(config.get_rtc_configuration()),
        local_tracks=media.tracks,
        polite=polite if polite is not None else config.polite,
    )

    coordinator.on(EVENT_TRACK, sink.add_track)
    coordinator.on(EVENT_CONNECTION_STATE, sink.on_connection_state)
    coordinator.on(EVENT_RESET, sink.stop)
    coordinator.on(EVENT_PEER_LEFT, sink.stop)

    closed = asyncio.Event()
    link.on(EVENT_DISCONNECT, closed.set)

    await coordinator.join_session()
    try:
        await closed.wait()
    finally:
        await coordinator.leave_session()
        await sink.stop_all()
        media.stop()


def run_peer(
    room: str,
    polite: Optional[bool] = None,
    signaling_url: Optional[str] = None,
    play_from: Optional[str] = None,
    record_to: Optional[str] = None,
):
    """Load configuration, apply CLI overrides and run the call.

    Args:
        room: Resolved room code.
        polite: Role override (CLI).
        signaling_url: Relay URL override (CLI).
        play_from: Local media source override (CLI).
        record_to: Remote media output override (CLI).
    """
    config = get_config()

    if signaling_url:
        config.signaling_websocket = signaling_url
    if play_from:
        config.media.play_from = play_from
    if record_to:
        config.media.record_to = record_to

    try:
        asyncio.run(run_call(room, config, polite=polite))
    except KeyboardInterrupt:
        logger.info("Call interrupted by user. Leaving...")
    finally:
        logger.info("Peer exiting...")
