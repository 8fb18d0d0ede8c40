from __future__ import annotations

import itertools
import logging
from typing import Callable, Dict, List, Optional, Sequence

from .betting import BettingEngine, count_actionable
from .cards import Deck
from .models import BOARD_CARDS, ActionRejected, ActionType, Phase, Player, TableConfig
from .players import PlayerRegistry
from .settings import RoomSettings
from .showdown import Distribution, HandEvaluation, ShowdownEngine
from .state import GameState
from .timers import AsyncioScheduler, Cancellable, Scheduler
from .turns import TurnCoordinator

LOGGER = logging.getLogger("poker_room")

FOLD_OUT_REASON = "all other players folded"

# emit(event, payload, target): target None broadcasts to the room, otherwise
# the payload goes to that connection handle only.
Emitter = Callable[[str, Dict[str, object], Optional[str]], None]


def _discard(event: str, payload: Dict[str, object], target: Optional[str]) -> None:
    return None


class PokerRoom:
    """Authoritative state machine for one table.

    Every public method runs to completion synchronously; timers and delays
    re-enter through the scheduler, so one room never has two handlers in
    flight. Scheduled continuations remember the hand they belong to and do
    nothing once that hand is over or the room is closed.
    """

    def __init__(
        self,
        room_id: str,
        config: Optional[TableConfig] = None,
        emit: Optional[Emitter] = None,
        scheduler: Optional[Scheduler] = None,
        deck: Optional[Deck] = None,
        settings: Optional[RoomSettings] = None,
    ) -> None:
        self.room_id = room_id
        self.config = config or TableConfig()
        self.emit = emit or _discard
        self.scheduler = scheduler or AsyncioScheduler()
        self.deck = deck or Deck()
        self.settings = settings or RoomSettings()
        self.state = GameState(small_blind=self.config.small_blind, big_blind=self.config.big_blind)
        self.players = PlayerRegistry(self.config.starting_chips)
        self.betting = BettingEngine()
        self.turns = TurnCoordinator()
        self.showdown = ShowdownEngine()
        self.rebuy_counts: Dict[str, int] = {}
        self.pending_rebuys: List[str] = []
        self.hand_seq = 0
        self.closed = False
        self._betting_open = False
        self._actor_handle: Optional[str] = None
        self._turn_timer: Optional[Cancellable] = None
        self._continuations: Dict[int, Cancellable] = {}
        self._continuation_ids = itertools.count()

    # Views -----------------------------------------------------------

    @property
    def betting_open(self) -> bool:
        return self._betting_open

    def active_players(self) -> List[Player]:
        return self.players.active(self.state.hand_in_progress)

    def connected_players(self) -> List[Player]:
        return self.players.connected()

    def current_player(self) -> Optional[Player]:
        view = self.active_players()
        index = self.state.current_player_index
        if not view or not 0 <= index < len(view):
            return None
        return view[index]

    def state_payload(self, **extra: object) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "gameState": self.state.to_payload(),
            "players": self.players.to_payload(),
        }
        payload.update(extra)
        return payload

    # Membership ------------------------------------------------------

    def add_player(self, handle: str, name: str) -> Player:
        player = self.players.add(handle, name)
        LOGGER.info("Room %s: %s joined as player %s (%s chips)", self.room_id, name, player.id, player.chips)
        if self.state.hand_in_progress:
            # Late joiners sit in the lobby until the next deal.
            self._restore_turn()
        elif self.state.phase == Phase.WAITING and len(self.players.eligible()) >= 2:
            self._schedule(self.config.join_start_delay_ms, self.start_next_hand)
        return player

    def remove_player(self, handle: str) -> Optional[Player]:
        player = self.players.get(handle)
        if player is None:
            return None

        if self._betting_open and player.is_in_current_hand and player.is_connected:
            self._restore_turn()
            if self.current_player() is player and not player.folded:
                LOGGER.info("Room %s: current player %s left; folding", self.room_id, player.name)
                self._act(player, ActionType.FOLD, None)

        if self.state.hand_in_progress:
            self.players.mark_disconnected(handle)
            LOGGER.info("Room %s: %s disconnected mid-hand", self.room_id, player.name)
            self._after_membership_change()
        else:
            self.players.remove(handle)
            self.rebuy_counts.pop(handle, None)
            LOGGER.info("Room %s: %s removed", self.room_id, player.name)
            if handle in self.pending_rebuys:
                self.pending_rebuys.remove(handle)
                if self.state.phase == Phase.WAITING_REBUY and not self.pending_rebuys:
                    self._continue_after_rebuys()
        return player

    def _after_membership_change(self) -> None:
        if not self._betting_open:
            return
        view = self.active_players()
        if len([player for player in view if not player.folded]) <= 1:
            self._end_hand_early()
            return
        self._restore_turn()
        if self.betting.is_round_complete(view, self.state):
            self._advance_phase()
            return
        current = self.current_player()
        if current is not None and (current.is_all_in or current.folded):
            self._advance_turn()

    # Hand lifecycle --------------------------------------------------

    def start_hand(self) -> bool:
        if self.closed:
            return False
        if self.state.hand_in_progress:
            LOGGER.warning("Room %s: start_hand while a hand is running", self.room_id)
            return False

        self.players.clear_hand_flags()
        eligible = self.players.eligible()
        if len(eligible) < 2:
            LOGGER.info("Room %s: not enough eligible players to deal (%s)", self.room_id, len(eligible))
            return False

        self._cancel_turn_timer()
        self.hand_seq += 1
        self.state.start_hand()
        self.deck.build()
        self.players.mark_in_hand(eligible)

        view = self.active_players()
        self._deal_hole_cards(view)
        self._post_blinds(view)
        self.players.clamp_negative_chips()
        self._betting_open = True

        LOGGER.info(
            "Room %s: hand %s started with %s players (blinds %s/%s)",
            self.room_id,
            self.hand_seq,
            len(view),
            self.state.small_blind,
            self.state.big_blind,
        )
        self.emit("gameStarted", self.state_payload(), None)
        self._begin_turn()
        return True

    def _deal_hole_cards(self, view: Sequence[Player]) -> None:
        # Round-robin from the seat left of the dealer, one card per pass.
        start = (self.state.dealer_index % len(view) + 1) % len(view)
        order = list(view[start:]) + list(view[:start])
        for _ in range(2):
            for player in order:
                card = self.deck.deal()
                if card is None:
                    LOGGER.warning("Room %s: deck empty while dealing to %s", self.room_id, player.name)
                    continue
                player.hole_cards.append(card)

    def _post_blinds(self, view: Sequence[Player]) -> None:
        positions = self.turns.blind_positions(view, self.state.dealer_index)
        sb_player = view[positions.small_blind]
        bb_player = view[positions.big_blind]
        sb_posted = self.betting.post_blind(sb_player, self.state.small_blind, self.state)
        bb_posted = self.betting.post_blind(bb_player, self.state.big_blind, self.state)
        self.state.current_bet = max(sb_posted, bb_posted)
        self.state.actions_in_round = 0
        self.state.players_to_act = count_actionable(view)
        if len(view) == 2 and bb_player.chips > 0:
            # Heads-up: the forced big blind counts as that player's first action.
            self.state.actions_in_round = 1
        self._set_current(view, positions.first_to_act)
        LOGGER.debug(
            "Room %s: blinds %s by %s, %s by %s; %s to act",
            self.room_id,
            sb_posted,
            sb_player.name,
            bb_posted,
            bb_player.name,
            view[positions.first_to_act].name,
        )

    def player_action(self, handle: str, action: object, amount: Optional[int] = None) -> None:
        if not self._betting_open:
            raise ActionRejected("NO_HAND", "No hand in progress")
        player = self.players.get(handle)
        if player is None or not player.is_in_current_hand or not player.is_connected:
            raise ActionRejected("UNKNOWN_PLAYER", "You are not playing this hand")
        self._restore_turn()
        current = self.current_player()
        if current is None or current.handle != handle:
            LOGGER.warning(
                "Room %s: %s acted out of turn (current: %s)",
                self.room_id,
                player.name,
                current.name if current else None,
            )
            raise ActionRejected("NOT_YOUR_TURN", "Not your turn")
        self._act(player, action, amount)

    def _act(self, player: Player, action: object, amount: Optional[int]) -> None:
        check = self.betting.validate(player, action, amount, self.state.current_bet, self.state.big_blind)
        if not check.accepted:
            LOGGER.warning(
                "Room %s: rejected %s %s from %s: %s", self.room_id, action, amount, player.name, check.reason
            )
            raise ActionRejected("INVALID_ACTION", check.reason or "Invalid action")

        self._cancel_turn_timer()
        self.betting.apply(player, check, self.state)
        self.players.clamp_negative_chips()

        remaining = [p for p in self.active_players() if not p.folded]
        if check.action == ActionType.FOLD and len(remaining) == 1:
            self._end_hand_early()
        else:
            self._advance_turn()

        assert check.action is not None
        self.emit(
            "gameUpdate",
            self.state_payload(action=check.action.value, amount=check.amount, playerHandle=player.handle),
            None,
        )

    def _begin_turn(self) -> None:
        view = self._restore_turn()
        if self.betting.is_round_complete(view, self.state):
            self._advance_phase()
            return
        current = self.current_player()
        if current is None or current.is_all_in or current.folded:
            self._advance_turn()
            return
        self._start_turn_timer()

    def _advance_turn(self) -> None:
        view = self._restore_turn()
        for _ in range(len(view) + 1):
            result = self.turns.next_player(view, self.state.current_player_index)
            if result.end_hand:
                self._end_hand_early()
                return
            if result.next_phase:
                self._advance_phase()
                return
            self._set_current(view, result.index)
            if self.betting.is_round_complete(view, self.state):
                self._advance_phase()
                return
            if result.player is not None and not result.player.is_all_in:
                self._start_turn_timer()
                return
        LOGGER.warning("Room %s: no player able to act; closing the round", self.room_id)
        self._advance_phase()

    def _advance_phase(self) -> None:
        self._cancel_turn_timer()
        view = self.active_players()
        non_folded = [player for player in view if not player.folded]
        if len(non_folded) <= 1:
            self._end_hand_early()
            return
        if count_actionable(non_folded) < 2:
            self._run_out_board(view)
            return

        self.betting.reset_round_bets(view)
        phase = self.state.next_phase()
        self._deal_board(phase)
        if phase == Phase.SHOWDOWN:
            self._settle()
            return

        self._set_current(view, self.turns.first_to_act_for_phase(view, self.state.dealer_index, phase))
        self.state.players_to_act = count_actionable(view)
        LOGGER.info(
            "Room %s: %s dealt, %s to act",
            self.room_id,
            phase.value,
            view[self.state.current_player_index].name,
        )
        self._begin_turn()

    def _deal_board(self, phase: Phase) -> None:
        for _ in range(BOARD_CARDS.get(phase, 0)):
            card = self.deck.deal()
            if card is None:
                LOGGER.warning("Room %s: deck empty while dealing the %s", self.room_id, phase.value)
                break
            self.state.community_cards.append(card)

    def _run_out_board(self, view: Sequence[Player]) -> None:
        # Nobody can bet any more: show the whole board, then the showdown.
        self._betting_open = False
        self.betting.reset_round_bets(view)
        self.state.reset_round()
        while len(self.state.community_cards) < 5:
            card = self.deck.deal()
            if card is None:
                LOGGER.warning("Room %s: deck empty during all-in run-out", self.room_id)
                break
            self.state.community_cards.append(card)
        self.state.phase = Phase.RIVER
        LOGGER.info("Room %s: all-in, board run out", self.room_id)
        self.emit("gameUpdate", self.state_payload(), None)
        self._schedule(self.config.all_in_reveal_delay_ms, self._settle)

    def _settle(self) -> None:
        self._cancel_turn_timer()
        self._betting_open = False
        self.state.phase = Phase.SHOWDOWN
        non_folded = [player for player in self.active_players() if not player.folded]
        result = self.showdown.evaluate(non_folded, self.state.community_cards)
        if result is None:
            LOGGER.warning("Room %s: showdown without contenders; pot of %s voided", self.room_id, self.state.pot)
            self.state.pot = 0
            self._reset_for_next_hand()
            self._schedule(self.settings.hand_end_delay, self.start_next_hand)
            return

        evaluations: Optional[List[HandEvaluation]] = None
        if result.default_winner is not None:
            distribution = self.showdown.award_default(self.state.pot, result.default_winner, result.reason or "")
        else:
            distribution = self.showdown.distribute(self.state.pot, result.winners)
            evaluations = result.evaluations
        self.state.pot = 0
        self.players.clamp_negative_chips()

        game_state = self.state.to_payload()
        game_state.update(
            winner=distribution.winners[0] if distribution.winners else None,
            winAmount=distribution.win_amount,
            winningHand=distribution.winning_hand,
            splitPot=distribution.split_pot,
        )
        self.emit(
            "showdownResult",
            {
                "gameState": game_state,
                "players": self.players.to_payload(),
                "showdownResult": distribution.to_payload(),
                "handEvaluations": (
                    self.showdown.evaluations_payload(evaluations, distribution) if evaluations else None
                ),
            },
            None,
        )
        self._schedule(self.settings.showdown_duration, self._finish_showdown, distribution, evaluations)

    def _finish_showdown(self, distribution: Distribution, evaluations: Optional[List[HandEvaluation]]) -> None:
        event = self.showdown.hand_ended_event(
            distribution, evaluations, self.state.to_payload(), self.players.to_payload()
        )
        self.emit("handEnded", event, None)
        self._reset_for_next_hand()
        self._schedule(self.settings.hand_end_delay, self.start_next_hand)

    def _end_hand_early(self) -> None:
        self._cancel_turn_timer()
        self._betting_open = False
        non_folded = [player for player in self.active_players() if not player.folded]
        if len(non_folded) > 1:
            LOGGER.warning("Room %s: early end with %s contenders; going to showdown", self.room_id, len(non_folded))
            self._settle()
            return
        if not non_folded:
            LOGGER.warning("Room %s: every player left; pot of %s voided", self.room_id, self.state.pot)
            self.state.pot = 0
            self._reset_for_next_hand()
            self._schedule(self.settings.hand_end_delay, self.start_next_hand)
            return

        winner = non_folded[0]
        distribution = self.showdown.award_default(self.state.pot, winner, FOLD_OUT_REASON)
        self.state.pot = 0
        event = self.showdown.hand_ended_event(distribution, None, self.state.to_payload(), self.players.to_payload())
        self.emit("handEnded", event, None)
        self._reset_for_next_hand()
        self._schedule(self.settings.hand_end_delay, self.start_next_hand)

    def _reset_for_next_hand(self) -> None:
        self._cancel_turn_timer()
        self._betting_open = False
        view = self.active_players()
        if len(view) >= 2:
            self.state.dealer_index = (self.state.dealer_index + 1) % len(view)
        self.state.hands_played += 1
        self._maybe_raise_blinds()
        self.state.end_hand()
        self.deck.reset()
        self.players.clear_hand_flags()
        self._actor_handle = None
        for player in self.players.purge_disconnected():
            self.rebuy_counts.pop(player.handle, None)
            LOGGER.info("Room %s: dropped disconnected player %s", self.room_id, player.name)

    def _maybe_raise_blinds(self) -> None:
        interval = self.settings.blind_increase_interval
        if interval > 0 and self.state.hands_played % interval == 0:
            self.state.small_blind *= 2
            self.state.big_blind = self.state.small_blind * 2
            LOGGER.info(
                "Room %s: blinds raised to %s/%s", self.room_id, self.state.small_blind, self.state.big_blind
            )

    def start_next_hand(self) -> bool:
        """Deal again if enough players can cover the table minimum, handling broke players first."""
        if self.closed or self.state.phase != Phase.WAITING:
            return False

        undecided: List[Player] = []
        for player in self.players.connected():
            if player.is_sitting_out or player.chips > self.settings.min_chips_to_play:
                continue
            if not self._can_rebuy(player):
                LOGGER.info("Room %s: %s is out of rebuys; sitting out", self.room_id, player.name)
                player.is_sitting_out = True
            elif self.settings.auto_rebuy:
                self._credit_rebuy(player, self.settings.rebuy_amount)
            else:
                undecided.append(player)
        if undecided:
            self._request_rebuys(undecided)
            return False

        ready = [p for p in self.players.eligible() if p.chips > self.settings.min_chips_to_play]
        if len(ready) >= 2:
            return self.start_hand()

        LOGGER.info("Room %s: waiting for players (%s ready)", self.room_id, len(ready))
        if len(self.players.connected()) >= 2:
            self.emit(
                "waitingForPlayers",
                self.state_payload(
                    reason="Players need more chips to continue",
                    autoRebuy=self.settings.auto_rebuy,
                    minChips=self.settings.min_chips_to_play,
                ),
                None,
            )
        return False

    # Turn timer ------------------------------------------------------

    def _start_turn_timer(self) -> None:
        self._cancel_turn_timer()
        if not self._betting_open or self.config.turn_time_seconds <= 0:
            return
        current = self.current_player()
        if current is None or current.is_all_in:
            return
        self.state.turn_time_left = self.config.turn_time_seconds
        self._emit_turn_timer(current)
        self._turn_timer = self.scheduler.call_later(1.0, self._tick_callback(self.hand_seq, current.handle))

    def _tick_callback(self, seq: int, handle: str) -> Callable[[], None]:
        return lambda: self._tick(seq, handle)

    def _tick(self, seq: int, handle: str) -> None:
        self._turn_timer = None
        if self.closed or seq != self.hand_seq or not self._betting_open:
            return
        current = self.current_player()
        if current is None or current.handle != handle:
            return
        self.state.turn_time_left -= 1
        self._emit_turn_timer(current)
        if self.state.turn_time_left <= 0:
            LOGGER.info("Room %s: time expired for %s; folding", self.room_id, current.name)
            self._act(current, ActionType.FOLD, None)
            return
        self._turn_timer = self.scheduler.call_later(1.0, self._tick_callback(seq, handle))

    def _emit_turn_timer(self, current: Player) -> None:
        self.emit("turnTimer", {"timeLeft": self.state.turn_time_left, "currentPlayerHandle": current.handle}, None)

    def _cancel_turn_timer(self) -> None:
        if self._turn_timer is not None:
            self._turn_timer.cancel()
            self._turn_timer = None
        self.state.turn_time_left = 0

    # Rebuys ----------------------------------------------------------

    def _can_rebuy(self, player: Player) -> bool:
        limit = self.settings.max_rebuy_count
        return limit < 0 or self.rebuy_counts.get(player.handle, 0) < limit

    def _credit_rebuy(self, player: Player, amount: int) -> None:
        count = self.rebuy_counts.get(player.handle, 0) + 1
        self.rebuy_counts[player.handle] = count
        player.chips = amount
        player.is_sitting_out = False
        LOGGER.info("Room %s: %s rebought for %s (rebuy #%s)", self.room_id, player.name, amount, count)
        self.emit("playerRebuy", {"playerName": player.name, "newChips": player.chips, "rebuyCount": count}, None)

    def _request_rebuys(self, broke: Sequence[Player]) -> None:
        self.state.phase = Phase.WAITING_REBUY
        self.pending_rebuys = [player.handle for player in broke]
        names = [player.name for player in broke]
        LOGGER.info("Room %s: waiting for rebuy decisions from %s", self.room_id, ", ".join(names))
        for player in broke:
            self.emit(
                "rebuyRequest",
                self.state_payload(
                    message=(
                        f"You have {player.chips} chips left. "
                        "Would you like to buy more chips to continue playing?"
                    ),
                    rebuyAmount=self.settings.rebuy_amount,
                ),
                player.handle,
            )
        for player in self.players.connected():
            if player.handle in self.pending_rebuys:
                continue
            self.emit(
                "waitingForRebuys",
                self.state_payload(
                    message=f"Waiting for {', '.join(names)} to decide on buying more chips...",
                    brokePlayers=names,
                ),
                player.handle,
            )

    def rebuy(self, handle: str, buy_chips: object, chip_amount: Optional[int] = None) -> bool:
        player = self.players.get(handle)
        if player is None:
            raise ActionRejected("UNKNOWN_PLAYER", "Player not found")
        if self.state.phase != Phase.WAITING_REBUY or handle not in self.pending_rebuys:
            raise ActionRejected("NO_REBUY_PENDING", "No rebuy decision pending")

        if buy_chips is True or (isinstance(buy_chips, str) and buy_chips.strip().casefold() == "true"):
            if isinstance(chip_amount, int) and not isinstance(chip_amount, bool) and chip_amount > 0:
                amount = chip_amount
            else:
                amount = self.settings.rebuy_amount
            self._credit_rebuy(player, amount)
        else:
            player.is_sitting_out = True
            LOGGER.info("Room %s: %s declined to rebuy; sitting out", self.room_id, player.name)

        self.pending_rebuys.remove(handle)
        self.emit("gameUpdate", self.state_payload(), None)
        if not self.pending_rebuys:
            self._continue_after_rebuys()
        return True

    def request_rebuy(self, handle: str) -> Dict[str, object]:
        player = self.players.get(handle)
        if player is None:
            return {"success": False, "error": "Player not found"}
        if self.state.hand_in_progress and player.is_in_current_hand:
            return {"success": False, "error": "Cannot rebuy during a hand"}
        if player.chips > self.settings.min_chips_to_play:
            return {"success": False, "error": "Player has sufficient chips"}
        if not self._can_rebuy(player):
            return {"success": False, "error": f"Maximum rebuy limit reached ({self.settings.max_rebuy_count})"}

        self._credit_rebuy(player, self.settings.rebuy_amount)
        result: Dict[str, object] = {
            "success": True,
            "newChips": player.chips,
            "rebuyCount": self.rebuy_counts[handle],
        }
        if handle in self.pending_rebuys:
            self.pending_rebuys.remove(handle)
            if not self.pending_rebuys:
                self._continue_after_rebuys()
        elif self.state.phase == Phase.WAITING and len(self.players.eligible()) >= 2:
            self._schedule(self.config.join_start_delay_ms, self.start_next_hand)
        return result

    def _continue_after_rebuys(self) -> None:
        self.state.phase = Phase.WAITING
        ready = [p for p in self.players.eligible() if p.chips > self.settings.min_chips_to_play]
        if len(ready) < 2:
            LOGGER.info("Room %s: not enough players with chips to continue", self.room_id)
            self.emit(
                "gameEnded",
                self.state_payload(message="Game ended - not enough players with chips to continue"),
                None,
            )
            return
        self.start_next_hand()

    # Settings --------------------------------------------------------

    def update_settings(self, changes: Dict[str, object]) -> Dict[str, object]:
        effective = self.settings.update(changes)
        LOGGER.info("Room %s: settings now %s", self.room_id, effective)
        self.emit("settingsUpdated", {"settings": effective}, None)
        return effective

    def get_settings(self) -> Dict[str, object]:
        return self.settings.to_payload()

    # Scheduling ------------------------------------------------------

    def _schedule(self, delay_ms: int, callback: Callable[..., object], *args: object) -> None:
        seq = self.hand_seq
        key = next(self._continuation_ids)

        def run() -> None:
            self._continuations.pop(key, None)
            if self.closed or seq != self.hand_seq:
                LOGGER.debug("Room %s: dropping stale continuation %s", self.room_id, callback)
                return
            callback(*args)

        self._continuations[key] = self.scheduler.call_later(delay_ms / 1000, run)

    def close(self) -> None:
        self.closed = True
        self._cancel_turn_timer()
        for handle in list(self._continuations.values()):
            handle.cancel()
        self._continuations.clear()
        self._betting_open = False
        LOGGER.info("Room %s closed", self.room_id)

    # Invariant restoration -------------------------------------------

    def _set_current(self, view: Sequence[Player], index: int) -> None:
        self.state.current_player_index = index
        self._actor_handle = view[index].handle if view and 0 <= index < len(view) else None

    def _restore_turn(self) -> List[Player]:
        view = self.active_players()
        index = self.turns.restore_index(view, self.state.current_player_index, self._actor_handle)
        self._set_current(view, index)
        return view
