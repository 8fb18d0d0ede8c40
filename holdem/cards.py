from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Dict, List, Optional

LOGGER = logging.getLogger("poker_deck")

RANKS = ("2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A")
SUITS = ("♠", "♥", "♦", "♣")
RANK_VALUE = {rank: idx for idx, rank in enumerate(RANKS, start=2)}

# Letter aliases so tests and clients can write "Ts" or "10s" instead of "10♠".
_SUIT_ALIASES = {"s": "♠", "h": "♥", "d": "♦", "c": "♣"}
_RANK_ALIASES = {"T": "10"}


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    def __post_init__(self) -> None:
        if self.rank not in RANKS:
            raise ValueError(f"Invalid rank: {self.rank}")
        if self.suit not in SUITS:
            raise ValueError(f"Invalid suit: {self.suit}")

    @property
    def label(self) -> str:
        return f"{self.rank}{self.suit}"

    @property
    def value(self) -> int:
        return RANK_VALUE[self.rank]

    def to_payload(self) -> Dict[str, str]:
        return {"rank": self.rank, "suit": self.suit, "id": self.label}


class Deck:
    """A 52-card deck dealt from the end of its list."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.rng = random.Random(seed)
        self.cards: List[Card] = []

    def build(self) -> List[Card]:
        cards = [Card(rank, suit) for suit in SUITS for rank in RANKS]
        # random.shuffle is a Fisher-Yates pass: every permutation equally likely.
        self.rng.shuffle(cards)
        self.cards = cards
        return self.cards

    def deal(self) -> Optional[Card]:
        if not self.cards:
            LOGGER.warning("Deal requested from an empty deck")
            return None
        return self.cards.pop()

    def remaining(self) -> int:
        return len(self.cards)

    def reset(self) -> None:
        self.cards = []


def cards_to_payload(cards: List[Card]) -> List[Dict[str, str]]:
    return [card.to_payload() for card in cards]


def parse_label(label: str) -> Card:
    if len(label) < 2:
        raise ValueError(f"Invalid card label: {label}")
    rank, suit = label[:-1], label[-1]
    rank = _RANK_ALIASES.get(rank.upper(), rank.upper())
    suit = _SUIT_ALIASES.get(suit.lower(), suit)
    return Card(rank, suit)


def parse_cards(labels: List[str]) -> List[Card]:
    return [parse_label(label) for label in labels]
