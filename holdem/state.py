from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from .cards import Card, cards_to_payload
from .models import BETTING_PHASES, NEXT_PHASE, Phase

# GameState is the per-room table record: phase, pot, betting counters and the
# board. It never touches players; the room and the engines do that.


@dataclass
class GameState:
    small_blind: int = 10
    big_blind: int = 20
    phase: Phase = Phase.WAITING
    pot: int = 0
    current_bet: int = 0
    current_player_index: int = 0
    dealer_index: int = 0
    community_cards: List[Card] = field(default_factory=list)
    actions_in_round: int = 0
    players_to_act: int = 0
    turn_time_left: int = 0
    hands_played: int = 0

    @property
    def hand_in_progress(self) -> bool:
        return self.phase in BETTING_PHASES or self.phase == Phase.SHOWDOWN

    @property
    def betting_phase(self) -> bool:
        return self.phase in BETTING_PHASES

    def start_hand(self) -> None:
        self.phase = Phase.PREFLOP
        self.pot = 0
        self.current_bet = 0
        self.current_player_index = 0
        self.community_cards = []
        self.actions_in_round = 0
        self.players_to_act = 0

    def next_phase(self) -> Phase:
        self.phase = NEXT_PHASE.get(self.phase, Phase.WAITING)
        self.reset_round()
        return self.phase

    def reset_round(self) -> None:
        self.current_bet = 0
        self.actions_in_round = 0

    def end_hand(self) -> None:
        self.phase = Phase.WAITING
        self.pot = 0
        self.current_bet = 0
        self.current_player_index = 0
        self.community_cards = []
        self.actions_in_round = 0
        self.players_to_act = 0
        self.turn_time_left = 0

    def to_payload(self) -> Dict[str, object]:
        return {
            "phase": self.phase.value,
            "pot": self.pot,
            "currentBet": self.current_bet,
            "currentPlayerIndex": self.current_player_index,
            "dealerIndex": self.dealer_index,
            "communityCards": cards_to_payload(self.community_cards),
            "smallBlind": self.small_blind,
            "bigBlind": self.big_blind,
            "gameStarted": self.hand_in_progress,
            "actionsInRound": self.actions_in_round,
            "playersToAct": self.players_to_act,
            "turnTimeLeft": self.turn_time_left,
            "handsPlayed": self.hands_played,
        }
