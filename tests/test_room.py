import heapq

import pytest

from holdem.models import ActionRejected, ActionType, Phase, TableConfig
from holdem.room import PokerRoom
from holdem.settings import RoomSettings

from .helpers import (
    EventLog,
    ManualScheduler,
    ManualTimer,
    StackedDeck,
    act_current,
    create_room,
    play_passively,
)

# Heads-up deal order starts left of the dealer: P2, P1, P2, P1, then the board.
ACES_OVER_KINGS = ["Kh", "Ah", "Kd", "Ad", "2c", "7d", "9s", "Jh", "4c"]


def total_chips(room):
    return room.players.total_chips() + room.state.pot


def all_in_heads_up(settings=None):
    room, clock, log = create_room(deck=StackedDeck(ACES_OVER_KINGS), settings=settings)
    room.start_hand()
    act_current(room, ActionType.RAISE, 990)
    act_current(room, ActionType.CALL)
    return room, clock, log


def test_heads_up_blinds_and_first_action():
    room, _, log = create_room()
    assert room.start_hand()

    p1, p2 = room.players.get("h-P1"), room.players.get("h-P2")
    assert room.state.phase == Phase.PREFLOP
    assert (p1.chips, p2.chips) == (990, 980)
    assert room.state.pot == 30
    assert room.state.current_bet == 20
    assert room.current_player() is p1
    assert len(p1.hole_cards) == len(p2.hole_cards) == 2
    assert room.deck.remaining() == 48
    assert log.names()[:2] == ["gameStarted", "turnTimer"]
    assert log.last("turnTimer") == {"timeLeft": 30, "currentPlayerHandle": "h-P1"}


def test_heads_up_call_closes_preflop():
    room, _, log = create_room()
    room.start_hand()
    act_current(room, ActionType.CALL)

    assert room.state.phase == Phase.FLOP
    assert len(room.state.community_cards) == 3
    assert room.state.pot == 40
    assert room.state.current_bet == 0
    assert room.current_player().name == "P2"
    update = log.last("gameUpdate")
    assert update["action"] == "call"
    assert update["amount"] == 10
    assert update["playerHandle"] == "h-P1"


def test_full_hand_reaches_showdown_and_next_hand():
    room, clock, log = create_room()
    room.start_hand()
    play_passively(room)

    assert room.state.phase == Phase.SHOWDOWN
    assert len(room.state.community_cards) == 5
    assert room.state.pot == 0
    assert total_chips(room) == 2_000
    result = log.last("showdownResult")
    assert result["gameState"]["winAmount"] in (20, 40)
    assert len(result["handEvaluations"] or []) in (0, 2)

    clock.advance(7.0)
    assert "handEnded" in log.names()
    assert room.state.phase == Phase.WAITING
    assert room.state.dealer_index == 1
    assert room.state.hands_played == 1

    clock.advance(3.0)
    assert room.state.phase == Phase.PREFLOP
    # P2 now deals and posts the small blind.
    assert room.current_player().name == "P2"


def test_three_way_fold_out():
    room, _, log = create_room(("P1", "P2", "P3"))
    room.start_hand()
    assert room.current_player().name == "P1"

    act_current(room, ActionType.FOLD)
    assert room.current_player().name == "P2"
    act_current(room, ActionType.FOLD)

    ended = log.last("handEnded")
    assert ended["winner"] == "P3"
    assert ended["winAmount"] == 30
    assert ended["reason"] == "all other players folded"
    chips = [room.players.get(f"h-P{idx}").chips for idx in (1, 2, 3)]
    assert chips == [1_000, 990, 1_010]
    assert room.state.phase == Phase.WAITING
    assert log.names()[-1] == "gameUpdate"


def test_raise_then_two_folds_ends_hand():
    room, _, log = create_room(("P1", "P2", "P3"))
    room.start_hand()
    act_current(room, ActionType.RAISE, 40)
    act_current(room, ActionType.FOLD)
    act_current(room, ActionType.FOLD)

    ended = log.last("handEnded")
    assert ended["winner"] == "P1"
    assert ended["winAmount"] == 70
    assert ended["reason"] == "all other players folded"
    assert room.players.total_chips() == 3_000


def test_dealer_and_blinds_rotate_three_handed():
    room, clock, _ = create_room(("P1", "P2", "P3"))
    room.start_hand()
    act_current(room, ActionType.FOLD)
    act_current(room, ActionType.FOLD)

    clock.advance(3.0)
    assert room.state.phase == Phase.PREFLOP
    assert room.state.dealer_index == 1
    assert room.current_player().name == "P2"
    assert room.players.get("h-P3").bet == 10
    assert room.players.get("h-P1").bet == 20


def test_all_in_runs_out_board_then_settles():
    room, clock, log = all_in_heads_up()

    assert not room.betting_open
    assert room.state.phase == Phase.RIVER
    assert len(room.state.community_cards) == 5
    assert room.state.pot == 2_000
    assert total_chips(room) == 2_000

    clock.advance(2.0)
    result = log.last("showdownResult")
    assert result["showdownResult"]["winner"] == "P1"
    assert result["showdownResult"]["winningHand"] == "One Pair (Aces)"
    assert room.players.get("h-P1").chips == 2_000
    assert room.players.get("h-P2").chips == 0


def test_all_in_on_flop_deals_turn_and_river_together():
    room, clock, log = create_room(deck=StackedDeck(ACES_OVER_KINGS))
    room.start_hand()
    act_current(room, ActionType.CALL)
    assert len(room.state.community_cards) == 3

    assert act_current(room, ActionType.RAISE, 980).name == "P2"
    log.clear()
    act_current(room, ActionType.CALL)

    assert not room.betting_open
    assert room.state.phase == Phase.RIVER
    assert len(room.state.community_cards) == 5
    assert "turnTimer" not in log.names()
    assert total_chips(room) == 2_000

    clock.advance(1.5)
    assert "showdownResult" not in log.names()
    clock.advance(0.5)
    assert log.last("showdownResult")["showdownResult"]["winner"] == "P1"
    assert room.players.get("h-P1").chips == 2_000
    assert room.players.get("h-P2").chips == 0
    assert total_chips(room) == 2_000


def test_broke_player_is_asked_to_rebuy():
    room, clock, log = all_in_heads_up()
    clock.advance(2.0 + 7.0 + 3.0)

    assert room.state.phase == Phase.WAITING_REBUY
    assert room.pending_rebuys == ["h-P2"]
    request, target = log.targeted("rebuyRequest")[-1]
    assert target == "h-P2"
    assert request["rebuyAmount"] == 1_000
    waiting, target = log.targeted("waitingForRebuys")[-1]
    assert target == "h-P1"
    assert waiting["brokePlayers"] == ["P2"]

    room.rebuy("h-P2", True, 500)
    assert log.last("playerRebuy") == {"playerName": "P2", "newChips": 500, "rebuyCount": 1}
    assert room.state.phase == Phase.PREFLOP


def test_declined_rebuy_ends_game():
    room, clock, log = all_in_heads_up()
    clock.advance(12.0)
    room.rebuy("h-P2", False)

    assert room.players.get("h-P2").is_sitting_out
    assert room.state.phase == Phase.WAITING
    assert "gameEnded" in log.names()


def test_rebuy_without_pending_decision_is_rejected():
    room, _, _ = create_room()
    with pytest.raises(ActionRejected) as exc:
        room.rebuy("h-P1", True)
    assert exc.value.code == "NO_REBUY_PENDING"


def test_request_rebuy_resolves_pending_decision():
    room, clock, _ = all_in_heads_up()
    clock.advance(12.0)

    assert room.request_rebuy("h-P1") == {"success": False, "error": "Player has sufficient chips"}
    result = room.request_rebuy("h-P2")
    assert result == {"success": True, "newChips": 1_000, "rebuyCount": 1}
    assert room.state.phase == Phase.PREFLOP


def test_auto_rebuy_tops_up_broke_player():
    room, clock, log = all_in_heads_up(settings=RoomSettings(auto_rebuy=True))
    clock.advance(12.0)

    assert room.players.get("h-P2").chips + room.players.get("h-P2").bet == 1_000
    assert room.rebuy_counts["h-P2"] == 1
    assert log.last("playerRebuy")["newChips"] == 1_000
    assert room.state.phase == Phase.PREFLOP


def test_rebuy_limit_sits_player_out():
    room, clock, log = all_in_heads_up(settings=RoomSettings(auto_rebuy=True, max_rebuy_count=0))
    clock.advance(12.0)

    assert room.players.get("h-P2").is_sitting_out
    assert room.state.phase == Phase.WAITING
    assert log.last("waitingForPlayers")["minChips"] == 10


def test_turn_timer_folds_idle_player():
    room, clock, log = create_room()
    room.start_hand()

    clock.advance(29.0)
    assert room.current_player().name == "P1"
    assert log.last("turnTimer")["timeLeft"] == 1

    clock.advance(1.0)
    assert log.last("turnTimer")["timeLeft"] == 0
    ended = log.last("handEnded")
    assert ended["winner"] == "P2"
    assert room.players.get("h-P1").chips == 990
    assert room.players.get("h-P2").chips == 1_010


def test_turn_timer_disabled_with_zero_turn_time():
    room, clock, log = create_room(config=TableConfig(turn_time_seconds=0))
    room.start_hand()
    clock.advance(60.0)
    assert room.betting_open
    assert "turnTimer" not in log.names()


def test_action_rejections_leave_state_untouched():
    room, _, _ = create_room()
    with pytest.raises(ActionRejected) as exc:
        room.player_action("h-P1", "call")
    assert exc.value.code == "NO_HAND"

    room.start_hand()
    before = room.state.to_payload()
    cases = [
        ("h-P2", "call", None, "NOT_YOUR_TURN"),
        ("nobody", "call", None, "UNKNOWN_PLAYER"),
        ("h-P1", "check", None, "INVALID_ACTION"),
        ("h-P1", "raise", 15, "INVALID_ACTION"),
    ]
    for handle, action, amount, code in cases:
        with pytest.raises(ActionRejected) as exc:
            room.player_action(handle, action, amount)
        assert exc.value.code == code
    assert room.state.to_payload() == before


def test_join_auto_starts_after_delay():
    room, clock, log = create_room()
    assert room.state.phase == Phase.WAITING
    clock.advance(1.0)
    assert room.state.phase == Phase.PREFLOP
    assert log.names().count("gameStarted") == 1


def test_late_joiner_waits_for_next_hand():
    room, _, _ = create_room()
    room.start_hand()
    late = room.add_player("h-P3", "P3")
    assert not late.is_in_current_hand
    assert late.hole_cards == []
    assert len(room.active_players()) == 2


def test_current_player_leaving_folds_them():
    room, _, log = create_room()
    room.start_hand()
    room.remove_player("h-P1")

    assert log.last("handEnded")["winner"] == "P2"
    assert room.players.get("h-P1") is None
    assert room.players.get("h-P2").chips == 1_010


def test_other_player_leaving_keeps_turn():
    room, _, _ = create_room(("P1", "P2", "P3"))
    room.start_hand()
    room.remove_player("h-P3")

    assert room.betting_open
    assert room.current_player().name == "P1"
    assert [player.name for player in room.active_players()] == ["P1", "P2"]
    assert not room.players.get("h-P3").is_connected


def test_disconnected_player_purged_after_hand():
    room, _, _ = create_room(("P1", "P2", "P3"))
    room.start_hand()
    room.remove_player("h-P2")
    act_current(room, ActionType.FOLD)

    assert room.state.phase == Phase.WAITING
    assert room.players.get("h-P2") is None


def test_blinds_double_on_interval():
    room, _, log = create_room()
    room.update_settings({"blindIncreaseInterval": 1})
    assert log.last("settingsUpdated")["settings"]["blindIncreaseInterval"] == 1

    room.start_hand()
    act_current(room, ActionType.FOLD)
    assert (room.state.small_blind, room.state.big_blind) == (20, 40)


def test_close_cancels_pending_work():
    room, clock, log = create_room()
    room.start_hand()
    room.close()
    log.clear()

    clock.advance(120.0)
    assert log.names() == []
    assert clock.pending() == 0
    assert not room.start_hand()


class UnhashableTimer(ManualTimer):
    __hash__ = None  # type: ignore[assignment]


class UnhashableScheduler(ManualScheduler):
    def call_later(self, delay, callback):
        timer = UnhashableTimer(self.now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.when, next(self._order), timer))
        return timer


def test_room_accepts_unhashable_timer_handles():
    clock = UnhashableScheduler()
    log = EventLog()
    room = PokerRoom("table-1", emit=log, scheduler=clock)
    room.add_player("h-P1", "P1")
    room.add_player("h-P2", "P2")

    clock.advance(1.0)
    assert room.state.phase == Phase.PREFLOP

    room.close()
    clock.advance(120.0)
    assert clock.pending() == 0
