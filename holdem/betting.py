from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import ActionType, Player
from .state import GameState

LOGGER = logging.getLogger("poker_betting")


@dataclass
class ActionCheck:
    accepted: bool
    action: Optional[ActionType] = None
    amount: int = 0
    all_in: bool = False
    reason: Optional[str] = None


def reject(reason: str) -> ActionCheck:
    return ActionCheck(accepted=False, reason=reason)


class BettingEngine:
    """Validates and applies single betting actions; detects the end of a round."""

    def validate(
        self,
        player: Player,
        action: object,
        amount: Optional[int],
        current_bet: int,
        big_blind: int,
    ) -> ActionCheck:
        try:
            action = ActionType(action)
        except ValueError:
            return reject("Unknown action")

        if action == ActionType.FOLD:
            return ActionCheck(accepted=True, action=action)

        if action == ActionType.CALL:
            if player.chips <= 0:
                return reject("No chips remaining")
            to_call = max(current_bet - player.bet, 0)
            if player.chips <= to_call:
                return ActionCheck(accepted=True, action=action, amount=player.chips, all_in=True)
            return ActionCheck(accepted=True, action=action, amount=to_call)

        if action == ActionType.CHECK:
            if player.bet < current_bet:
                return reject(f"Must call {current_bet - player.bet}")
            return ActionCheck(accepted=True, action=action)

        # Raise: amount is the additional chips committed by this action.
        if isinstance(amount, bool) or not isinstance(amount, int):
            return reject("Raise requires an integer amount")
        if amount <= 0 or amount > player.chips:
            return reject("Invalid raise amount")
        if amount == player.chips:
            return ActionCheck(accepted=True, action=action, amount=amount, all_in=True)
        minimum = (current_bet - player.bet) + big_blind
        if amount < minimum:
            return reject(f"Minimum raise is {minimum}")
        return ActionCheck(accepted=True, action=action, amount=amount)

    def apply(self, player: Player, check: ActionCheck, state: GameState) -> None:
        if not check.accepted:
            raise ValueError(f"Cannot apply rejected action: {check.reason}")

        if check.action == ActionType.FOLD:
            player.folded = True
            LOGGER.debug("%s folded", player.name)
        elif check.action in (ActionType.CALL, ActionType.RAISE):
            self._commit(player, check.amount, state)
            if player.bet > state.current_bet:
                state.current_bet = player.bet
            LOGGER.debug(
                "%s %s %s%s, bet now %s",
                player.name,
                check.action.value,
                check.amount,
                " (all-in)" if check.all_in else "",
                player.bet,
            )
        else:
            LOGGER.debug("%s checked", player.name)

        state.actions_in_round += 1

    def post_blind(self, player: Player, amount: int, state: GameState) -> int:
        posted = min(amount, max(player.chips, 0))
        self._commit(player, posted, state)
        return posted

    def _commit(self, player: Player, amount: int, state: GameState) -> None:
        amount = min(amount, player.chips)
        player.chips -= amount
        player.bet += amount
        state.pot += amount

    def is_round_complete(self, active_players: Iterable[Player], state: GameState) -> bool:
        non_folded = [player for player in active_players if not player.folded]
        if len(non_folded) <= 1:
            return True
        if all(player.is_all_in for player in non_folded):
            return True
        matched = all(player.bet == state.current_bet or player.is_all_in for player in non_folded)
        if not matched:
            return False
        # Everyone who could act when the round opened must have had a turn.
        return state.actions_in_round >= state.players_to_act

    def reset_round_bets(self, players: Iterable[Player]) -> None:
        for player in players:
            player.reset_for_round()


def count_actionable(players: Iterable[Player]) -> int:
    return len(actionable(players))


def actionable(players: Iterable[Player]) -> List[Player]:
    return [player for player in players if not player.folded and player.chips > 0]
