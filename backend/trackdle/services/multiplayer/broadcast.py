"""Room membership and event fan-out.

Rooms are keyed by lobby id. Membership is tracked here as an explicit
room -> set of connection ids mapping rather than through the
transport's own room primitive, and each event is emitted per connection.
"""

import threading
from typing import Any, Dict, Optional, Set

from flask import current_app

from trackdle import socketio

NAMESPACE = '/ws'


class RoomRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rooms: Dict[str, Set[str]] = {}
        self._sid_rooms: Dict[str, Set[str]] = {}

    def join(self, room: str, sid: str) -> None:
        with self._lock:
            self._rooms.setdefault(room, set()).add(sid)
            self._sid_rooms.setdefault(sid, set()).add(room)

    def leave(self, room: str, sid: str) -> None:
        with self._lock:
            self._discard(room, sid)

    def leave_all(self, sid: str) -> Set[str]:
        """Remove a connection from every room; returns the rooms it was in."""
        with self._lock:
            rooms = self._sid_rooms.pop(sid, set())
            for room in rooms:
                members = self._rooms.get(room)
                if members is not None:
                    members.discard(sid)
                    if not members:
                        self._rooms.pop(room, None)
            return rooms

    def members(self, room: str) -> Set[str]:
        with self._lock:
            return set(self._rooms.get(room, set()))

    def clear(self) -> None:
        with self._lock:
            self._rooms.clear()
            self._sid_rooms.clear()

    def _discard(self, room: str, sid: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(sid)
            if not members:
                self._rooms.pop(room, None)
        sid_rooms = self._sid_rooms.get(sid)
        if sid_rooms is not None:
            sid_rooms.discard(room)
            if not sid_rooms:
                self._sid_rooms.pop(sid, None)


rooms = RoomRegistry()


def _emit(event: str, payload: Dict[str, Any], sid: str) -> None:
    socketio.emit(event, payload, to=sid, namespace=NAMESPACE)


def broadcast(room_id: Optional[str], event: str, payload: Dict[str, Any]) -> int:
    """Deliver an event to every connection bound to the room.

    Never raises: delivery failures are logged per connection and the
    number of successful deliveries is returned.
    """
    if not room_id:
        return 0
    delivered = 0
    for sid in rooms.members(str(room_id)):
        try:
            _emit(event, payload, sid)
            delivered += 1
        except Exception as exc:
            current_app.logger.error(f"[broadcast] event={event} room={room_id} sid={sid} failed: {exc}")
    current_app.logger.info(f"[broadcast] event={event} room={room_id} delivered={delivered}")
    return delivered

