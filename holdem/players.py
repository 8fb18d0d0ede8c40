from __future__ import annotations

import itertools
import logging
from typing import Dict, Iterable, List, Optional

from .models import Player

LOGGER = logging.getLogger("poker_players")


class PlayerRegistry:
    """Seated players of one room, keyed by connection handle in join order."""

    def __init__(self, starting_chips: int) -> None:
        self.starting_chips = starting_chips
        self._players: Dict[str, Player] = {}
        self._ids = itertools.count(1)

    # Membership ------------------------------------------------------

    def add(self, handle: str, name: str) -> Player:
        if handle in self._players:
            raise ValueError(f"Connection {handle} already seated")
        player = Player(id=next(self._ids), handle=handle, name=name, chips=self.starting_chips)
        self._players[handle] = player
        return player

    def remove(self, handle: str) -> Optional[Player]:
        return self._players.pop(handle, None)

    def mark_disconnected(self, handle: str) -> Optional[Player]:
        player = self._players.get(handle)
        if player:
            player.is_connected = False
        return player

    def purge_disconnected(self) -> List[Player]:
        gone = [player for player in self._players.values() if not player.is_connected]
        for player in gone:
            del self._players[player.handle]
        return gone

    def get(self, handle: str) -> Optional[Player]:
        return self._players.get(handle)

    def __len__(self) -> int:
        return len(self._players)

    # Views -----------------------------------------------------------

    def all(self) -> List[Player]:
        return list(self._players.values())

    def connected(self) -> List[Player]:
        return [player for player in self._players.values() if player.is_connected]

    def in_current_hand(self) -> List[Player]:
        return [player for player in self._players.values() if player.is_in_current_hand]

    def active(self, hand_in_progress: bool) -> List[Player]:
        if hand_in_progress:
            return [p for p in self._players.values() if p.is_in_current_hand and p.is_connected]
        return [p for p in self._players.values() if p.is_connected and not p.is_sitting_out]

    def eligible(self) -> List[Player]:
        return [p for p in self._players.values() if p.is_connected and not p.is_sitting_out and p.chips > 0]

    # Bulk mutations --------------------------------------------------

    def mark_in_hand(self, players: Iterable[Player]) -> None:
        for player in players:
            player.is_in_current_hand = True
            player.reset_for_hand()

    def clear_hand_flags(self) -> None:
        for player in self._players.values():
            player.is_in_current_hand = False
            player.reset_for_hand()

    def clamp_negative_chips(self) -> None:
        for player in self._players.values():
            if player.chips < 0:
                LOGGER.warning("Player %s had negative chips (%s); clamping to 0", player.name, player.chips)
                player.chips = 0

    def total_chips(self) -> int:
        return sum(player.chips for player in self._players.values())

    def to_payload(self) -> List[Dict[str, object]]:
        return [player.to_payload() for player in self._players.values()]
