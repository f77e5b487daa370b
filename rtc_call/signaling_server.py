"""Room-scoped WebSocket relay for rtc-call signaling.

Peers connect to ``ws://HOST:PORT/<room-code>``. The relay assigns each
connection a peer id, tells it who is already in the room, tells the others
that it joined or left, and forwards ``signal`` frames between members of the
same room. It never looks inside the forwarded payloads.

Frames sent by the relay::

    {"event": "connect", "data": {"id": "<your id>"}}
    {"event": "connected peers", "data": ["<id>", ...]}
    {"event": "connected peer", "data": "<id>"}
    {"event": "disconnected peer", "data": "<id>"}
    {"event": "signal", "from": "<id>", "data": {...}}

Frames accepted from peers::

    {"event": "signal", "to": "<id>" | null, "data": {...}}

Usage:
    rtc-call serve [--host HOST] [--port PORT]
"""

import asyncio
import json
import uuid
from typing import Dict, Optional

import websockets
from loguru import logger

from rtc_call.room import is_valid_room_code

# Close code sent when the requested path is not a room code
CLOSE_INVALID_ROOM = 4000


class RoomRelay:
    """Tracks room membership and forwards frames between room members."""

    def __init__(self):
        # room code -> peer id -> websocket
        self.rooms: Dict[str, Dict[str, object]] = {}

    def members(self, room: str) -> Dict[str, object]:
        return self.rooms.get(room, {})

    async def _send(self, websocket, frame: dict) -> None:
        try:
            await websocket.send(json.dumps(frame))
        except websockets.exceptions.ConnectionClosed:
            logger.debug("Dropped frame for a closed connection")

    async def _broadcast(self, room: str, frame: dict, exclude: Optional[str] = None) -> None:
        targets = [ws for pid, ws in self.members(room).items() if pid != exclude]
        await asyncio.gather(*(self._send(ws, frame) for ws in targets))

    async def handler(self, websocket) -> None:
        """Serve one peer connection until it closes."""
        room = websocket.request.path.strip("/")
        if not is_valid_room_code(room):
            logger.warning(f"Rejected connection to invalid room '{room}'")
            await websocket.close(code=CLOSE_INVALID_ROOM, reason="Invalid room code")
            return

        peer_id = str(uuid.uuid4())
        others = list(self.members(room))
        self.rooms.setdefault(room, {})[peer_id] = websocket
        logger.info(f"Peer {peer_id} joined room '{room}' (total: {len(others) + 1})")

        try:
            await self._send(websocket, {"event": "connect", "data": {"id": peer_id}})
            await self._send(websocket, {"event": "connected peers", "data": others})
            await self._broadcast(
                room, {"event": "connected peer", "data": peer_id}, exclude=peer_id
            )

            async for raw in websocket:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON from peer {peer_id}")
                    continue

                if not isinstance(frame, dict) or frame.get("event") != "signal":
                    logger.debug(f"Ignoring frame from peer {peer_id}")
                    continue

                forwarded = {"event": "signal", "from": peer_id, "data": frame.get("data")}
                target = frame.get("to")
                if target is None:
                    await self._broadcast(room, forwarded, exclude=peer_id)
                elif target in self.members(room):
                    await self._send(self.members(room)[target], forwarded)
                else:
                    logger.warning(f"Target peer not found in room '{room}': {target}")

        except websockets.exceptions.ConnectionClosed:
            logger.info(f"Connection closed: {peer_id}")
        finally:
            members = self.rooms.get(room, {})
            members.pop(peer_id, None)
            if not members:
                self.rooms.pop(room, None)
            logger.info(f"Peer {peer_id} left room '{room}' (remaining: {len(members)})")
            await self._broadcast(room, {"event": "disconnected peer", "data": peer_id})


async def serve(host: str = "localhost", port: int = 8080) -> None:
    """Run the relay until cancelled."""
    relay = RoomRelay()
    async with websockets.serve(relay.handler, host, port):
        logger.info(f"Signaling server running on ws://{host}:{port}")
        await asyncio.Future()  # Run forever
