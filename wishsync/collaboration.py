# wishsync/collaboration.py
import json
import random
import uuid
from typing import Any, Callable, Dict, List

from .errors import NoSessionError, ValidationError
from .logger import get_logger
from .models import Wish, WishList

logger = get_logger(__name__)

ROOM_PREFIX = "list-"
DELETED = "_deleted"

Message = Dict[str, Any]


def random_color(rng=random) -> str:
    return "#%06x" % rng.randrange(0x1000000)


class HubConnection:
    """One client's membership in a LocalHub room."""

    def __init__(self, hub: "LocalHub", room: str, on_message: Callable[[Message], None]):
        self.id = uuid.uuid4().hex
        self.hub = hub
        self.room = room
        self.on_message = on_message
        self.presence: Dict[str, Any] = {}
        self.closed = False

    def publish(self, message: Message) -> None:
        if self.closed:
            raise RuntimeError(f"Connection to {self.room} is closed")
        # Round-trip through JSON so peers never share objects with the sender
        wire = json.loads(json.dumps({**message, "origin": self.id}))
        self.hub._deliver(self, wire)

    def set_presence(self, state: Dict[str, Any]) -> None:
        self.presence = dict(state)

    def peers(self) -> List[Dict[str, Any]]:
        return [c.presence for c in self.hub._members(self.room) if c.id != self.id]

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.hub._leave(self)


class LocalHub:
    """
    In-process publish/subscribe transport keyed by room name. Any transport
    offering ``connect(room, on_message)`` returning a connection with
    publish/set_presence/peers/close can replace it.
    """

    def __init__(self):
        self._rooms: Dict[str, Dict[str, HubConnection]] = {}

    def connect(self, room: str, on_message: Callable[[Message], None]) -> HubConnection:
        conn = HubConnection(self, room, on_message)
        self._rooms.setdefault(room, {})[conn.id] = conn
        logger.debug("Connection %s joined %s.", conn.id, room)
        return conn

    def connection_count(self, room: str) -> int:
        return len(self._rooms.get(room, {}))

    def _members(self, room: str) -> List[HubConnection]:
        return list(self._rooms.get(room, {}).values())

    def _deliver(self, sender: HubConnection, message: Message) -> None:
        for conn in self._members(sender.room):
            if conn.id != sender.id:
                conn.on_message(message)

    def _leave(self, conn: HubConnection) -> None:
        members = self._rooms.get(conn.room, {})
        members.pop(conn.id, None)
        if not members:
            self._rooms.pop(conn.room, None)
        logger.debug("Connection %s left %s.", conn.id, conn.room)


class ListDocument:
    """
    Shared state of one list: wish maps keyed by id plus list metadata.
    Concurrent writes to the same key resolve last-write-wins.
    """

    def __init__(self):
        self.wishes: Dict[str, Dict[str, Any]] = {}
        self.list: Dict[str, Any] = {}

    def apply(self, patch: Message) -> None:
        for wish_id, fields in (patch.get("wishes") or {}).items():
            if fields.get(DELETED):
                self.wishes[wish_id] = {DELETED: True}
                continue
            entry = self.wishes.get(wish_id)
            if entry is None or entry.get(DELETED):
                entry = {}
            entry.update(fields)
            self.wishes[wish_id] = entry
        self.list.update(patch.get("list") or {})

    def live_wish_ids(self) -> List[str]:
        return [wid for wid, fields in self.wishes.items() if not fields.get(DELETED)]

    def clear(self) -> None:
        self.wishes.clear()
        self.list.clear()


class CollaborationChannel:
    """
    Realtime subscription for one open list.

    Inbound patches are applied to the stores without being written back to the
    remote store or re-broadcast. Local store mutations touching the open list
    are published to the room.
    """

    def __init__(self, list_id: str, user, wish_store, list_store, transport, rng=None):
        if not list_id:
            raise ValidationError("A list id is required to collaborate")
        if user is None:
            raise NoSessionError("A signed-in or guest user is required to collaborate")
        self.list_id = list_id
        self.user = user
        self.wish_store = wish_store
        self.list_store = list_store
        self.transport = transport
        self.rng = rng or random.Random()
        self.document = ListDocument()
        self.presence: Dict[str, Any] = {}
        self._conn = None
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def room(self) -> str:
        return f"{ROOM_PREFIX}{self.list_id}"

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "CollaborationChannel":
        if self._conn is not None:
            return self
        self._conn = self.transport.connect(self.room, self._on_message)
        self.presence = {
            "id": self.user.id,
            "name": self.user.name,
            "color": random_color(self.rng),
        }
        self._conn.set_presence(self.presence)
        self._unsubscribers = [
            self.wish_store.subscribe(self._on_wish_change),
            self.list_store.subscribe(self._on_list_change),
        ]
        logger.info("Joined %s as %s (%s).", self.room, self.user.name, self.presence["color"])
        return self

    def close(self) -> None:
        if self._conn is None:
            return
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._conn.close()
        self._conn = None
        self.document.clear()
        logger.info("Left %s.", self.room)

    def __enter__(self) -> "CollaborationChannel":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def peers(self) -> List[Dict[str, Any]]:
        if self._conn is None:
            return []
        return self._conn.peers()

    # -- inbound ---------------------------------------------------------

    def _on_message(self, message: Message) -> None:
        self.document.apply(message)

        for wish_id, fields in (message.get("wishes") or {}).items():
            if fields.get(DELETED):
                self.wish_store.apply_remote_delete(wish_id)
            else:
                self.wish_store.apply_remote_upsert(wish_id, fields)

        list_patch = message.get("list") or {}
        if list_patch:
            self.list_store.apply_remote_upsert(self.list_id, list_patch)

        logger.debug("Applied patch from %s in %s.", message.get("origin"), self.room)

    # -- outbound --------------------------------------------------------

    def _publish(self, patch: Message) -> None:
        if self._conn is None:
            return
        self.document.apply(patch)
        self._conn.publish(patch)

    def _on_wish_change(self, event: str, wish: Wish) -> None:
        tracked = wish.id in self.document.wishes
        if wish.list_id != self.list_id and not tracked:
            return
        if event == "delete":
            self._publish({"wishes": {wish.id: {DELETED: True}}})
        else:
            # A wish moved to another list is sent with its new list id
            self._publish({"wishes": {wish.id: wish.to_dict()}})

    def _on_list_change(self, event: str, wish_list: WishList) -> None:
        if wish_list.id != self.list_id or event == "delete":
            return
        fields = wish_list.to_dict()
        fields.pop("id", None)
        self._publish({"list": fields})
