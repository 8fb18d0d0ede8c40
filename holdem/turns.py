from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import Phase, Player

LOGGER = logging.getLogger("poker_turns")


@dataclass(frozen=True)
class BlindPositions:
    small_blind: int
    big_blind: int
    first_to_act: int


@dataclass(frozen=True)
class TurnResult:
    index: int = -1
    player: Optional[Player] = None
    end_hand: bool = False
    next_phase: bool = False


class TurnCoordinator:
    """Seat arithmetic over the active-player view. Indices are view positions."""

    def blind_positions(self, active_players: Sequence[Player], dealer_index: int) -> BlindPositions:
        count = len(active_players)
        if count == 0:
            raise ValueError("No active players")
        dealer = dealer_index % count
        if count == 2:
            # Heads-up: the dealer posts the small blind and acts first preflop.
            return BlindPositions(dealer, (dealer + 1) % count, dealer)
        return BlindPositions((dealer + 1) % count, (dealer + 2) % count, (dealer + 3) % count)

    def first_to_act_for_phase(self, active_players: Sequence[Player], dealer_index: int, phase: Phase) -> int:
        count = len(active_players)
        if count == 0:
            raise ValueError("No active players")
        if phase == Phase.PREFLOP:
            index = self.blind_positions(active_players, dealer_index).first_to_act
        else:
            index = (dealer_index % count + 1) % count
        return self._skip_folded(active_players, index)

    def next_player(self, active_players: Sequence[Player], current_index: int) -> TurnResult:
        non_folded = [player for player in active_players if not player.folded]
        if len(non_folded) == 1:
            return TurnResult(end_hand=True)
        if all(player.is_all_in for player in non_folded):
            return TurnResult(next_phase=True)

        count = len(active_players)
        index = (current_index + 1) % count
        for _ in range(count):
            player = active_players[index]
            # All-in players still receive the turn; the room passes them over.
            if not player.folded:
                return TurnResult(index=index, player=player)
            index = (index + 1) % count

        LOGGER.warning("No non-folded player found after index %s", current_index)
        return TurnResult(next_phase=True)

    def restore_index(
        self,
        active_players: Sequence[Player],
        index: int,
        actor_handle: Optional[str] = None,
    ) -> int:
        """Bring a current-player index back in line after the view changed."""
        if not active_players:
            return 0
        handles: List[str] = [player.handle for player in active_players]
        if actor_handle in handles:
            return handles.index(actor_handle)
        if not 0 <= index < len(active_players):
            LOGGER.warning("Current index %s out of range for %s players", index, len(active_players))
            index %= len(active_players)
        return self._skip_folded(active_players, index)

    def _skip_folded(self, active_players: Sequence[Player], index: int) -> int:
        count = len(active_players)
        for _ in range(count):
            if not active_players[index].folded:
                return index
            index = (index + 1) % count
        return index
