from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from .cards import Card, cards_to_payload


class Phase(str, Enum):
    WAITING = "waiting"
    PREFLOP = "preflop"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"
    SHOWDOWN = "showdown"
    WAITING_REBUY = "waiting_rebuy"


BETTING_PHASES = (Phase.PREFLOP, Phase.FLOP, Phase.TURN, Phase.RIVER)

NEXT_PHASE = {
    Phase.PREFLOP: Phase.FLOP,
    Phase.FLOP: Phase.TURN,
    Phase.TURN: Phase.RIVER,
    Phase.RIVER: Phase.SHOWDOWN,
}

# Community cards dealt on entering each phase.
BOARD_CARDS = {Phase.FLOP: 3, Phase.TURN: 1, Phase.RIVER: 1}


class ActionType(str, Enum):
    FOLD = "fold"
    CHECK = "check"
    CALL = "call"
    RAISE = "raise"


class ActionRejected(ValueError):
    """An action or request refused without touching room state."""

    def __init__(self, code: str, msg: str) -> None:
        super().__init__(msg)
        self.code = code
        self.msg = msg


@dataclass
class TableConfig:
    starting_chips: int = 1_000
    small_blind: int = 10
    big_blind: int = 20
    turn_time_seconds: int = 30
    all_in_reveal_delay_ms: int = 2_000
    join_start_delay_ms: int = 1_000


@dataclass
class Player:
    id: int
    handle: str
    name: str
    chips: int
    hole_cards: List[Card] = field(default_factory=list)
    folded: bool = False
    bet: int = 0
    is_connected: bool = True
    is_sitting_out: bool = False
    is_in_current_hand: bool = False

    @property
    def is_all_in(self) -> bool:
        return self.chips == 0

    def reset_for_hand(self) -> None:
        self.hole_cards.clear()
        self.folded = False
        self.bet = 0

    def reset_for_round(self) -> None:
        self.bet = 0

    def to_payload(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "connectionHandle": self.handle,
            "name": self.name,
            "chips": self.chips,
            "holeCards": cards_to_payload(self.hole_cards),
            "folded": self.folded,
            "bet": self.bet,
            "isConnected": self.is_connected,
            "isSittingOut": self.is_sitting_out,
            "isInCurrentHand": self.is_in_current_hand,
        }
