from __future__ import annotations

import itertools
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .cards import Card

LOGGER = logging.getLogger("poker_evaluator")

HandRank = Tuple[int, ...]

HIGH_CARD = 0
ONE_PAIR = 1
TWO_PAIR = 2
THREE_OF_A_KIND = 3
STRAIGHT = 4
FLUSH = 5
FULL_HOUSE = 6
FOUR_OF_A_KIND = 7
STRAIGHT_FLUSH = 8

CATEGORY_NAMES = (
    "High Card",
    "One Pair",
    "Two Pair",
    "Three of a Kind",
    "Straight",
    "Flush",
    "Full House",
    "Four of a Kind",
    "Straight Flush",
)

RANK_NAMES = {
    2: "Two",
    3: "Three",
    4: "Four",
    5: "Five",
    6: "Six",
    7: "Seven",
    8: "Eight",
    9: "Nine",
    10: "Ten",
    11: "Jack",
    12: "Queen",
    13: "King",
    14: "Ace",
}


@dataclass(frozen=True)
class BestHand:
    rank: HandRank
    cards: Tuple[Card, ...]


def rank_of(cards: Sequence[Card]) -> HandRank:
    """Rank exactly five cards. Higher tuples are stronger hands."""
    if len(cards) != 5:
        raise ValueError(f"rank_of needs 5 cards, got {len(cards)}")

    values = sorted((card.value for card in cards), reverse=True)
    is_flush = len({card.suit for card in cards}) == 1
    # Ace only plays high: A-2-3-4-5 is not a straight here.
    is_straight = len(set(values)) == 5 and values[0] - values[-1] == 4

    counts = Counter(values)
    # Most frequent rank first, ties broken by the higher rank.
    grouped = sorted(counts.items(), key=lambda item: (item[1], item[0]), reverse=True)
    shape = [count for _, count in grouped]

    if is_straight and is_flush:
        return (STRAIGHT_FLUSH, values[0])
    if shape[0] == 4:
        return (FOUR_OF_A_KIND, grouped[0][0])
    if shape == [3, 2]:
        return (FULL_HOUSE, grouped[0][0], grouped[1][0])
    if is_flush:
        return (FLUSH, *values)
    if is_straight:
        return (STRAIGHT, values[0])
    if shape[0] == 3:
        kickers = [value for value in values if value != grouped[0][0]]
        return (THREE_OF_A_KIND, grouped[0][0], *kickers)
    if shape[:2] == [2, 2]:
        return (TWO_PAIR, grouped[0][0], grouped[1][0], grouped[2][0])
    if shape[0] == 2:
        kickers = [value for value in values if value != grouped[0][0]]
        return (ONE_PAIR, grouped[0][0], *kickers)
    return (HIGH_CARD, *values)


def compare(rank_a: Sequence[int], rank_b: Sequence[int]) -> int:
    """Lexicographic comparison; missing tiebreak slots count as 0."""
    for idx in range(max(len(rank_a), len(rank_b))):
        left = rank_a[idx] if idx < len(rank_a) else 0
        right = rank_b[idx] if idx < len(rank_b) else 0
        if left > right:
            return 1
        if left < right:
            return -1
    return 0


def best_hand_of(hole_cards: Sequence[Card], community_cards: Sequence[Card]) -> BestHand:
    """Best 5-card hand out of the hole cards plus the board (up to 21 combinations)."""
    available = list(hole_cards) + list(community_cards)
    if len(available) < 5:
        raise ValueError(f"Not enough cards to evaluate: {len(available)}")

    best: Optional[BestHand] = None
    for combo in itertools.combinations(available, 5):
        rank = rank_of(combo)
        if best is None or compare(rank, best.rank) > 0:
            best = BestHand(rank=rank, cards=combo)
    assert best is not None
    return best


def describe(rank: Sequence[int]) -> str:
    if not rank or not 0 <= rank[0] < len(CATEGORY_NAMES) or len(rank) < 2:
        LOGGER.warning("Cannot describe hand rank %s", rank)
        return "Unknown"

    category = rank[0]
    name = CATEGORY_NAMES[category]
    if category == TWO_PAIR and len(rank) >= 3:
        return f"{name} ({_plural(rank[1])} and {_plural(rank[2])})"
    if category == FULL_HOUSE and len(rank) >= 3:
        return f"{name} ({_plural(rank[1])} full of {_plural(rank[2])})"
    if category in (ONE_PAIR, THREE_OF_A_KIND, FOUR_OF_A_KIND):
        return f"{name} ({_plural(rank[1])})"
    return f"{name} ({RANK_NAMES.get(rank[1], rank[1])} high)"


def _plural(value: int) -> str:
    word = RANK_NAMES.get(value, str(value))
    return f"{word}es" if word.endswith("x") else f"{word}s"
