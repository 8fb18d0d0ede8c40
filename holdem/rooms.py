from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .models import ActionRejected, Player, TableConfig
from .room import PokerRoom
from .timers import AsyncioScheduler, Scheduler

LOGGER = logging.getLogger("poker_rooms")

# sink(room_id, event, payload, target): the transport decides who hears it.
EventSink = Callable[[str, str, Dict[str, object], Optional[str]], None]
RoomFactory = Callable[..., PokerRoom]


def _discard(room_id: str, event: str, payload: Dict[str, object], target: Optional[str]) -> None:
    return None


class RoomRegistry:
    """Creates rooms on first join and drops them once nobody connected is left."""

    def __init__(
        self,
        config: Optional[TableConfig] = None,
        sink: Optional[EventSink] = None,
        scheduler: Optional[Scheduler] = None,
        room_factory: RoomFactory = PokerRoom,
    ) -> None:
        self.config = config or TableConfig()
        self.sink = sink or _discard
        self.scheduler = scheduler or AsyncioScheduler()
        self.room_factory = room_factory
        self.rooms: Dict[str, PokerRoom] = {}
        self.memberships: Dict[str, str] = {}

    def get_room(self, room_id: str) -> Optional[PokerRoom]:
        return self.rooms.get(room_id)

    def room_for(self, handle: str) -> Optional[PokerRoom]:
        room_id = self.memberships.get(handle)
        return self.rooms.get(room_id) if room_id is not None else None

    def members(self, room_id: str) -> List[str]:
        return [handle for handle, joined in self.memberships.items() if joined == room_id]

    def _create_room(self, room_id: str) -> PokerRoom:
        room = self.rooms.get(room_id)
        if room is None:
            def emit(event: str, payload: Dict[str, object], target: Optional[str]) -> None:
                self.sink(room_id, event, payload, target)

            room = self.room_factory(room_id, config=self.config, emit=emit, scheduler=self.scheduler)
            self.rooms[room_id] = room
            LOGGER.info("Created room %s", room_id)
        return room

    def _delete_room(self, room_id: str) -> None:
        room = self.rooms.pop(room_id, None)
        if room is None:
            return
        room.close()
        for handle in self.members(room_id):
            del self.memberships[handle]
        LOGGER.info("Deleted empty room %s", room_id)

    def _require_room(self, handle: str) -> PokerRoom:
        room = self.room_for(handle)
        if room is None:
            raise ActionRejected("NOT_IN_ROOM", "Join a room first")
        return room

    def _players_update(self, room: PokerRoom) -> None:
        self.sink(room.room_id, "playersUpdate", {"players": room.players.to_payload()}, None)

    # Operations ------------------------------------------------------

    def join_room(self, handle: str, room_id: object, player_name: object) -> Player:
        if not isinstance(room_id, str) or not room_id.strip():
            raise ActionRejected("BAD_REQUEST", "roomId required")
        if not isinstance(player_name, str) or not player_name.strip():
            raise ActionRejected("BAD_REQUEST", "playerName required")
        room_id = room_id.strip()

        if handle in self.memberships:
            self.leave_room(handle)

        room = self._create_room(room_id)
        self.memberships[handle] = room_id
        player = room.add_player(handle, player_name.strip())
        self._players_update(room)
        self.sink(room_id, "gameUpdate", room.state_payload(), handle)
        return player

    def leave_room(self, handle: str) -> None:
        room_id = self.memberships.pop(handle, None)
        if room_id is None:
            return
        room = self.rooms.get(room_id)
        if room is None:
            return
        room.remove_player(handle)
        LOGGER.info("Connection %s left room %s", handle, room_id)
        if not room.connected_players():
            self._delete_room(room_id)
            return
        self._players_update(room)

    def disconnect(self, handle: str) -> None:
        self.leave_room(handle)

    def player_action(self, handle: str, action: object, amount: Optional[int] = None) -> None:
        self._require_room(handle).player_action(handle, action, amount)

    def rebuy(self, handle: str, buy_chips: object, chip_amount: Optional[int] = None) -> bool:
        return self._require_room(handle).rebuy(handle, buy_chips, chip_amount)

    def request_rebuy(self, handle: str) -> Dict[str, object]:
        room = self._require_room(handle)
        result = room.request_rebuy(handle)
        self.sink(room.room_id, "rebuyResult", result, handle)
        if result.get("success"):
            self.sink(room.room_id, "gameUpdate", room.state_payload(), None)
        return result

    def update_settings(self, handle: str, changes: object) -> Dict[str, object]:
        if not isinstance(changes, dict):
            raise ActionRejected("BAD_REQUEST", "settings must be an object")
        return self._require_room(handle).update_settings(changes)

    def get_settings(self, handle: str) -> Dict[str, object]:
        room = self._require_room(handle)
        settings = room.get_settings()
        self.sink(room.room_id, "settingsData", {"settings": settings}, handle)
        return settings
