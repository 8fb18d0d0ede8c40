"""Texas Hold'em room engine shared by the WebSocket host and the tests."""

from .cards import Card, Deck, RANKS, SUITS, parse_cards
from .evaluator import BestHand, best_hand_of, compare, describe
from .models import ActionRejected, ActionType, Phase, Player, TableConfig
from .room import PokerRoom
from .rooms import RoomRegistry
from .settings import RoomSettings
from .timers import AsyncioScheduler

__all__ = [
    "Card",
    "Deck",
    "RANKS",
    "SUITS",
    "parse_cards",
    "BestHand",
    "best_hand_of",
    "compare",
    "describe",
    "ActionRejected",
    "ActionType",
    "Phase",
    "Player",
    "TableConfig",
    "PokerRoom",
    "RoomRegistry",
    "RoomSettings",
    "AsyncioScheduler",
]
