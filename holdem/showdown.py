from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .cards import Card, cards_to_payload
from .evaluator import HandRank, best_hand_of, compare, describe
from .models import Player

LOGGER = logging.getLogger("poker_showdown")

NO_VALID_HAND = "No valid hand"


@dataclass
class HandEvaluation:
    player: Player
    rank: HandRank
    cards: List[Card]
    description: str


@dataclass
class ShowdownResult:
    winners: List[HandEvaluation] = field(default_factory=list)
    evaluations: List[HandEvaluation] = field(default_factory=list)
    default_winner: Optional[Player] = None
    reason: Optional[str] = None

    @property
    def split(self) -> bool:
        return len(self.winners) > 1


@dataclass
class Distribution:
    winners: List[str]
    win_amount: int
    payouts: Dict[str, int]
    winning_hand: Optional[str] = None
    reason: Optional[str] = None

    @property
    def split_pot(self) -> bool:
        return len(self.winners) > 1

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "type": "split" if self.split_pot else "single",
            "winAmount": self.win_amount,
            "winningHand": self.winning_hand,
            "splitPot": self.split_pot,
        }
        if self.split_pot:
            payload["winners"] = list(self.winners)
        else:
            payload["winner"] = self.winners[0] if self.winners else None
        if self.reason:
            payload["reason"] = self.reason
        return payload


class ShowdownEngine:
    """Evaluates the remaining hands and pays out the pot."""

    def evaluate(self, non_folded: Sequence[Player], community_cards: Sequence[Card]) -> Optional[ShowdownResult]:
        if not non_folded:
            LOGGER.warning("Showdown requested with no contenders")
            return None
        if len(non_folded) == 1:
            return ShowdownResult(default_winner=non_folded[0], reason="Only player remaining")

        evaluations: List[HandEvaluation] = []
        for player in non_folded:
            try:
                best = best_hand_of(player.hole_cards, community_cards)
            except ValueError as exc:
                LOGGER.warning("Could not evaluate hand for %s: %s", player.name, exc)
                continue
            evaluations.append(
                HandEvaluation(player=player, rank=best.rank, cards=list(best.cards), description=describe(best.rank))
            )

        if not evaluations:
            # Nothing could be ranked (short board): every contender shares the pot.
            tied = [HandEvaluation(player=p, rank=(), cards=[], description=NO_VALID_HAND) for p in non_folded]
            return ShowdownResult(winners=tied, evaluations=tied)

        # sorted() is stable, so equal hands keep their seating order.
        ordered = sorted(
            evaluations,
            key=functools.cmp_to_key(lambda a, b: compare(a.rank, b.rank)),
            reverse=True,
        )
        best_rank = ordered[0].rank
        winners = [entry for entry in ordered if compare(entry.rank, best_rank) == 0]
        for entry in ordered:
            LOGGER.info("Showdown: %s has %s", entry.player.name, entry.description)
        return ShowdownResult(winners=winners, evaluations=ordered)

    def distribute(self, pot: int, winners: Sequence[HandEvaluation]) -> Distribution:
        if not winners:
            raise ValueError("No winners to pay")
        if len(winners) == 1:
            winner = winners[0]
            winner.player.chips += pot
            LOGGER.info("%s wins %s with %s", winner.player.name, pot, winner.description)
            return Distribution(
                winners=[winner.player.name],
                win_amount=pot,
                payouts={winner.player.handle: pot},
                winning_hand=winner.description,
            )

        share, remainder = divmod(pot, len(winners))
        payouts: Dict[str, int] = {}
        for idx, winner in enumerate(winners):
            amount = share + (1 if idx < remainder else 0)
            winner.player.chips += amount
            payouts[winner.player.handle] = amount
            LOGGER.info("%s takes %s of a split pot (%s)", winner.player.name, amount, winner.description)
        return Distribution(
            winners=[winner.player.name for winner in winners],
            win_amount=share,
            payouts=payouts,
            winning_hand=winners[0].description,
        )

    def award_default(self, pot: int, player: Player, reason: str) -> Distribution:
        player.chips += pot
        LOGGER.info("%s wins %s (%s)", player.name, pot, reason)
        return Distribution(winners=[player.name], win_amount=pot, payouts={player.handle: pot}, reason=reason)

    def evaluations_payload(
        self,
        evaluations: Sequence[HandEvaluation],
        distribution: Distribution,
    ) -> List[Dict[str, object]]:
        return [
            {
                "playerName": entry.player.name,
                "connectionHandle": entry.player.handle,
                "holeCards": cards_to_payload(entry.player.hole_cards),
                "bestHand": cards_to_payload(entry.cards),
                "handDescription": entry.description,
                "isWinner": entry.player.handle in distribution.payouts,
            }
            for entry in evaluations
        ]

    def hand_ended_event(
        self,
        distribution: Distribution,
        evaluations: Optional[Sequence[HandEvaluation]],
        game_state: Dict[str, object],
        players: List[Dict[str, object]],
    ) -> Dict[str, object]:
        event = distribution.to_payload()
        event.pop("type", None)
        event["gameState"] = game_state
        event["players"] = players
        if evaluations:
            event["handEvaluations"] = self.evaluations_payload(evaluations, distribution)
        return event
