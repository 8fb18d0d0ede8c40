from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from holdem.cards import RANKS, SUITS, Card, Deck, parse_cards
from holdem.models import ActionType, Player, TableConfig
from holdem.room import PokerRoom
from holdem.settings import RoomSettings


@dataclass(eq=False)
class ManualTimer:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Fake clock: callbacks only run when a test advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: List[Tuple[float, int, ManualTimer]] = []
        self._order = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.when, next(self._order), timer))
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, timer = heapq.heappop(self._queue)
            self.now = when
            if not timer.cancelled:
                timer.callback()
        self.now = target

    def pending(self) -> int:
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)


@dataclass
class EventLog:
    """Records room emissions as (event, payload, target) tuples."""

    events: List[Tuple[str, Dict[str, object], Optional[str]]] = field(default_factory=list)

    def __call__(self, event: str, payload: Dict[str, object], target: Optional[str]) -> None:
        self.events.append((event, payload, target))

    def names(self) -> List[str]:
        return [event for event, _, _ in self.events]

    def of(self, name: str) -> List[Dict[str, object]]:
        return [payload for event, payload, _ in self.events if event == name]

    def last(self, name: str) -> Dict[str, object]:
        matches = self.of(name)
        assert matches, f"no {name} event emitted"
        return matches[-1]

    def targeted(self, name: str) -> List[Tuple[Dict[str, object], Optional[str]]]:
        return [(payload, target) for event, payload, target in self.events if event == name]

    def clear(self) -> None:
        self.events.clear()


class StackedDeck(Deck):
    """Deck that deals the given labels in order on every build."""

    def __init__(self, labels: Sequence[str]) -> None:
        super().__init__(seed=0)
        self.order = parse_cards(list(labels))

    def build(self) -> List[Card]:
        dealt = list(self.order)
        rest = [Card(rank, suit) for suit in SUITS for rank in RANKS if Card(rank, suit) not in dealt]
        # deal() pops from the end of the list.
        self.cards = rest + list(reversed(dealt))
        return self.cards


def make_player(
    name: str = "P",
    *,
    chips: int = 1_000,
    bet: int = 0,
    folded: bool = False,
    handle: Optional[str] = None,
    player_id: int = 1,
) -> Player:
    return Player(id=player_id, handle=handle or f"h-{name}", name=name, chips=chips, bet=bet, folded=folded)


def create_room(
    names: Iterable[str] = ("P1", "P2"),
    *,
    config: Optional[TableConfig] = None,
    settings: Optional[RoomSettings] = None,
    deck: Optional[Deck] = None,
    seed: int = 7,
) -> Tuple[PokerRoom, ManualScheduler, EventLog]:
    """Room on a fake clock with players joined but no hand dealt yet."""
    scheduler = ManualScheduler()
    log = EventLog()
    room = PokerRoom(
        "table-1",
        config=config or TableConfig(),
        emit=log,
        scheduler=scheduler,
        deck=deck or Deck(seed=seed),
        settings=settings,
    )
    for name in names:
        room.add_player(f"h-{name}", name)
    return room, scheduler, log


def act_current(room: PokerRoom, action: ActionType, amount: Optional[int] = None) -> Player:
    player = room.current_player()
    assert player is not None
    room.player_action(player.handle, action.value, amount)
    return player


def check_or_call(room: PokerRoom) -> Player:
    player = room.current_player()
    assert player is not None
    if player.bet >= room.state.current_bet:
        return act_current(room, ActionType.CHECK)
    return act_current(room, ActionType.CALL)


def play_passively(room: PokerRoom, limit: int = 200) -> None:
    """Check or call until betting closes for the current hand."""
    for _ in range(limit):
        if not room.betting_open:
            return
        check_or_call(room)
    raise AssertionError("hand did not finish")
