"""Local and remote media for a call.

Local media is read from a file or capture device with aiortc's
``MediaPlayer`` and attached to every connection the coordinator creates.
Remote media is written to a file with ``MediaRecorder``, or discarded with
``MediaBlackhole`` when no output is configured.
"""

from typing import Any, Dict, List, Optional

from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from loguru import logger

from rtc_call.config import MediaConfig


class LocalMedia:
    """Local tracks sent to the peer.

    Attributes:
        player: The underlying MediaPlayer, if any.
        tracks: Tracks allowed by the audio/video constraints.
    """

    def __init__(self, player: Optional[MediaPlayer] = None, audio: bool = False, video: bool = True):
        self.player = player
        self.tracks: List[Any] = []
        if player is not None:
            if audio and player.audio is not None:
                self.tracks.append(player.audio)
            if video and player.video is not None:
                self.tracks.append(player.video)

    @classmethod
    def open(cls, config: MediaConfig) -> "LocalMedia":
        """Open local media according to the media configuration.

        Args:
            config: Media settings.

        Returns:
            LocalMedia with no tracks when ``play_from`` is unset.
        """
        if not config.play_from:
            logger.info("No local media configured, joining receive-only")
            return cls(None, config.audio, config.video)

        player = MediaPlayer(config.play_from, format=config.play_format)
        media = cls(player, config.audio, config.video)
        kinds = ", ".join(track.kind for track in media.tracks) or "none"
        logger.info(f"Opened local media from {config.play_from} (tracks: {kinds})")
        return media

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


class RemoteMediaSink:
    """Consumes remote tracks, one recorder per peer.

    Recording starts once the peer's connection is connected, and stops when
    the session is reset or the peer leaves.
    """

    def __init__(self, record_to: Optional[str] = None):
        self.record_to = record_to
        self._recorders: Dict[str, Any] = {}
        self._started: set = set()

    def _recorder_for(self, peer_id: str):
        recorder = self._recorders.get(peer_id)
        if recorder is None:
            recorder = MediaRecorder(self.record_to) if self.record_to else MediaBlackhole()
            self._recorders[peer_id] = recorder
        return recorder

    def add_track(self, peer_id: str, track: Any) -> None:
        logger.info(f"Receiving {track.kind} from peer {peer_id}")
        self._recorder_for(peer_id).addTrack(track)

    async def on_connection_state(self, peer_id: str, state: str) -> None:
        if state == "connected" and peer_id in self._recorders and peer_id not in self._started:
            self._started.add(peer_id)
            await self._recorders[peer_id].start()
        elif state in ("failed", "closed"):
            await self.stop(peer_id)

    async def stop(self, peer_id: str) -> None:
        """Stop and drop the recorder of a peer, if any."""
        recorder = self._recorders.pop(peer_id, None)
        if recorder is not None and peer_id in self._started:
            await recorder.stop()
        self._started.discard(peer_id)

    async def stop_all(self) -> None:
        for peer_id in list(self._recorders):
            await self.stop(peer_id)
