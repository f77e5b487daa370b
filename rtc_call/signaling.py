"""Signaling link: the relayed channel peers negotiate through.

A :class:`SignalingLink` joins one room on the relay and surfaces these
events:

- ``connect``: the relay accepted us; ``self_id`` is now set.
- ``connected peers`` (ids): peers already in the room when we joined.
- ``connected peer`` (id): a peer joined after us.
- ``disconnected peer`` (id): a peer left.
- ``signal`` (sender_id, message): a parsed Description or Candidate.
- ``disconnect``: the link closed, either way.

Messages from one peer are emitted in the order that peer sent them.
Handlers registered for ``signal`` should be plain functions if they need to
observe that order; coroutine handlers are scheduled as tasks.
"""

import asyncio
import json
from typing import Optional

import websockets
from loguru import logger
from pyee.asyncio import AsyncIOEventEmitter

from rtc_call.exceptions import ProtocolError, SignalingError
from rtc_call.protocol import SignalingMessage, format_signal, parse_signal

# Relay frame events
EVENT_CONNECT = "connect"
EVENT_CONNECTED_PEER = "connected peer"
EVENT_CONNECTED_PEERS = "connected peers"
EVENT_DISCONNECTED_PEER = "disconnected peer"
EVENT_SIGNAL = "signal"
EVENT_DISCONNECT = "disconnect"


class SignalingLink(AsyncIOEventEmitter):
    """Room-scoped signaling channel.

    Attributes:
        room: Room code this link is scoped to.
        self_id: Id the relay assigned us, once connected.
    """

    def __init__(self, room: str):
        super().__init__()
        self.room = room
        self.self_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    async def open(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def send(self, message: SignalingMessage, to: Optional[str] = None) -> None:
        """Send a message to one peer, or to everyone else in the room.

        Args:
            message: The Description or Candidate to send.
            to: Target peer id, or None to broadcast.
        """
        raise NotImplementedError

    def dispatch(self, frame: dict) -> None:
        """Emit the event carried by one relay frame.

        Malformed signal payloads are logged and dropped.

        Args:
            frame: A decoded relay frame ``{"event": ..., "data": ..., "from": ...}``.
        """
        event = frame.get("event")
        data = frame.get("data")

        if event == EVENT_CONNECT:
            self.self_id = (data or {}).get("id")
            logger.info(f"Connected to room '{self.room}' as {self.self_id}")
            self.emit(EVENT_CONNECT)
        elif event == EVENT_CONNECTED_PEERS:
            self.emit(EVENT_CONNECTED_PEERS, list(data or []))
        elif event in (EVENT_CONNECTED_PEER, EVENT_DISCONNECTED_PEER):
            self.emit(event, data)
        elif event == EVENT_SIGNAL:
            sender = frame.get("from")
            try:
                message = parse_signal(data)
            except ProtocolError as e:
                logger.warning(f"Dropping malformed signal from {sender}: {e}")
                return
            self.emit(EVENT_SIGNAL, sender, message)
        else:
            logger.debug(f"Ignoring unknown relay event: {event}")


class WebSocketSignalingLink(SignalingLink):
    """SignalingLink talking to the rtc-call relay over a WebSocket.

    The link connects to ``{url}/{room}``. It is not opened on construction;
    call :meth:`open` to join the call and :meth:`close` to leave it.
    """

    def __init__(self, url: str, room: str):
        super().__init__(room)
        self.url = url.rstrip("/")
        self.websocket = None
        self._reader_task: Optional[asyncio.Task] = None

    @property
    def room_url(self) -> str:
        return f"{self.url}/{self.room}"

    @property
    def is_open(self) -> bool:
        return self.websocket is not None

    async def open(self) -> None:
        if self.is_open:
            return
        logger.info(f"Connecting to signaling relay at {self.room_url}")
        try:
            self.websocket = await websockets.connect(self.room_url)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise SignalingError(f"Could not reach signaling relay {self.room_url}: {e}")
        self._reader_task = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            await websocket.close()
        if self._reader_task is not None:
            await self._reader_task
            self._reader_task = None

    async def send(self, message: SignalingMessage, to: Optional[str] = None) -> None:
        if not self.is_open:
            raise SignalingError("Signaling link is closed")
        frame = {"event": EVENT_SIGNAL, "data": format_signal(message), "to": to}
        await self.websocket.send(json.dumps(frame))

    async def _read_loop(self) -> None:
        websocket = self.websocket
        try:
            async for raw in websocket:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON received from signaling relay")
                    continue
                if isinstance(frame, dict):
                    self.dispatch(frame)
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(f"Signaling connection lost: {e}")
        finally:
            self.websocket = None
            self.self_id = None
            logger.info(f"Disconnected from room '{self.room}'")
            self.emit(EVENT_DISCONNECT)
