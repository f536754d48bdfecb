"""Real-time fan-out to connected clients.

Events are addressed by scope: ``GLOBAL`` reaches every connection,
``user:<id>`` a user's private room and ``listing:<id>`` the room of
everyone following one listing. Delivery is best effort: callers use
:meth:`Broadcaster.emit`, which logs and drops failures.
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocket, WebSocketDisconnect

log = logging.getLogger("foodshare.realtime")

GLOBAL = "global"

# frames a client may fall behind by before it is disconnected
MAX_PENDING_FRAMES = 256

# server -> client event names
NEW_LISTING = "new-food-listing"
STATUS_UPDATED = "food-status-updated"
LISTING_UPDATED = "food-listing-updated"
LISTING_DELETED = "food-listing-deleted"
NEW_MESSAGE = "new-message"
NEW_NOTIFICATION = "new-notification"
USER_TYPING = "user-typing"
LOCATION_SHARED = "location-shared"
JOINED = "joined"
ERROR = "error"


def user_scope(user_id: str) -> str:
    return f"user:{user_id}"


def listing_scope(listing_id: str) -> str:
    return f"listing:{listing_id}"


class Broadcaster(ABC):
    """Publish/subscribe interface the services talk to."""

    @abstractmethod
    def publish(self, scope: str, event: str, payload: Any, exclude: Any = None) -> None:
        """Send ``event`` with ``payload`` to every subscriber of ``scope``."""

    def emit(self, scope: str, event: str, payload: Any, exclude: Any = None) -> None:
        try:
            self.publish(scope, event, payload, exclude=exclude)
        except Exception:
            log.exception("Dropped %s event for %s", event, scope)


class Connection:
    """One connected client: its rooms and an outbound queue.

    Frames are queued from any thread and written by a single sender task,
    so a client sees events in the order they were published.
    """

    def __init__(
        self,
        websocket: WebSocket,
        loop: asyncio.AbstractEventLoop,
        user_id: Optional[str] = None,
        name: Optional[str] = None,
        max_pending: int = MAX_PENDING_FRAMES,
    ):
        self.websocket = websocket
        self.loop = loop
        self.user_id = user_id
        self.name = name
        self.rooms = set()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    def push(self, event: str, payload: Any) -> None:
        if self.closed:
            return
        frame = {"event": event, "data": jsonable_encoder(payload)}
        self.loop.call_soon_threadsafe(self._enqueue, frame)

    def _enqueue(self, frame: dict) -> None:
        if self.closed:
            return
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.closed = True
            log.warning("Client (user=%s) stalled with %d frames pending; closing", self.user_id, self.queue.qsize())
            self.loop.create_task(self._close(1013))

    async def _close(self, code: int) -> None:
        try:
            await self.websocket.close(code=code)
        except RuntimeError:
            log.debug("Socket already closed (user=%s)", self.user_id)

    async def pump(self) -> None:
        try:
            while True:
                frame = await self.queue.get()
                await self.websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError):
            # socket closed under us; the receive loop unregisters the connection
            log.debug("Sender stopped (user=%s)", self.user_id)


class WebSocketBroadcaster(Broadcaster):
    def __init__(self):
        self._connections = set()
        # publish runs on request worker threads as well as the event loop
        self._lock = threading.Lock()

    def connect(self, websocket: WebSocket, user_id: Optional[str] = None, name: Optional[str] = None) -> Connection:
        conn = Connection(websocket, asyncio.get_running_loop(), user_id=user_id, name=name)
        with self._lock:
            self._connections.add(conn)
        log.info("Client connected (user=%s, total=%d)", user_id, len(self._connections))
        return conn

    def disconnect(self, conn: Connection) -> None:
        with self._lock:
            self._connections.discard(conn)
        log.info("Client disconnected (user=%s)", conn.user_id)

    def join(self, conn: Connection, room: str) -> None:
        with self._lock:
            conn.rooms.add(room)
        conn.push(JOINED, {"room": room})
        log.info("Client (user=%s) joined %s", conn.user_id, room)

    def publish(self, scope: str, event: str, payload: Any, exclude: Any = None) -> None:
        with self._lock:
            targets = [
                c for c in self._connections
                if c is not exclude and not c.closed and (scope == GLOBAL or scope in c.rooms)
            ]
        for conn in targets:
            try:
                conn.push(event, payload)
            except RuntimeError:
                # event loop of that connection is gone
                log.warning("Dropping stale connection (user=%s)", conn.user_id)
                self.disconnect(conn)
