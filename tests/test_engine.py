"""
Unit tests for the delivery processor, partnership tracker, snapshot history
and milestone detector.
"""

import pytest

from scorebook.engine.delivery import DeliveryProcessor
from scorebook.engine.history import SnapshotHistory
from scorebook.engine.milestones import detect_milestones
from scorebook.errors import (
    AwaitingInput,
    InningsClosed,
    InvalidInput,
    MissingReplacement,
    NoActiveBowler,
    NothingToUndo,
)
from scorebook.models import (
    BatterStats,
    BowlerStats,
    ByeEvent,
    CreaseEnd,
    LegByeEvent,
    ManualEvent,
    MatchState,
    NoBallEvent,
    PenaltyEvent,
    Position,
    RunEvent,
    RunOut,
    ScoringState,
    WicketEvent,
    WideEvent,
)


def _run(runs):
    return RunEvent(runs=runs)


def _wicket(new_batter="C", **kw):
    return WicketEvent(new_batter=new_batter, **kw)


def _assert_conserved(ctrl):
    st = ctrl.state
    assert st.score.total_runs == sum(b.runs for b in st.batters.values()) + st.extras.total
    assert st.score.legal_balls == sum(b.balls_bowled for b in st.bowlers.values())


# --------------------------------------------------------------------------- #
#  Runs and extras
# --------------------------------------------------------------------------- #


def test_four_then_wide(controller):
    controller.process(_run(4))
    st = controller.state
    assert st.batters["A"].runs == 4
    assert st.batters["A"].fours == 1
    assert st.score.total_runs == 4
    assert st.score.legal_balls == 1
    assert st.striker == "A"

    controller.process(WideEvent(runs=1))
    assert st.score.total_runs == 5
    assert st.extras.wides == 1
    assert st.score.legal_balls == 1
    assert st.batters["A"].balls_faced == 1
    assert st.batters["B"].balls_faced == 0
    assert st.bowlers["X"].runs_conceded == 5


def test_odd_runs_rotate_strike(controller):
    controller.process(_run(1))
    assert (controller.state.striker, controller.state.non_striker) == ("B", "A")
    controller.process(_run(2))
    assert controller.state.striker == "B"
    controller.process(_run(3))
    assert controller.state.striker == "A"


def test_six_is_flagged(controller):
    controller.process(_run(6))
    assert controller.state.batters["A"].sixes == 1
    assert controller.state.batters["A"].fours == 0


def test_wide_swaps_strike_on_even_runs_only(controller):
    # Known quirk: odd wide runs keep the ends, even wide runs change them
    controller.process(WideEvent(runs=1))
    assert controller.state.striker == "A"
    controller.process(WideEvent(runs=2))
    assert controller.state.striker == "B"
    controller.process(WideEvent(runs=3))
    assert controller.state.striker == "B"
    assert controller.state.score.legal_balls == 0
    assert controller.state.extras.wides == 6


def test_no_ball_splits_runs(controller):
    controller.process(NoBallEvent(runs=5))
    st = controller.state
    assert st.extras.no_balls == 1
    assert st.batters["A"].runs == 4
    assert st.batters["A"].fours == 1
    assert st.batters["A"].balls_faced == 0
    assert st.bowlers["X"].runs_conceded == 5
    assert st.score.total_runs == 5
    assert st.score.legal_balls == 0
    assert st.striker == "A"

    controller.process(NoBallEvent(runs=2))
    assert st.striker == "B"
    assert st.extras.no_balls == 2
    assert st.score.total_runs == 7


def test_byes_and_leg_byes(controller):
    controller.process(ByeEvent(runs=1))
    st = controller.state
    assert st.extras.byes == 1
    assert st.batters["A"].balls_faced == 1
    assert st.batters["A"].runs == 0
    assert st.bowlers["X"].balls_bowled == 1
    assert st.bowlers["X"].runs_conceded == 1
    assert st.striker == "B"

    controller.process(LegByeEvent(runs=2))
    assert st.extras.leg_byes == 2
    assert st.striker == "B"
    assert st.score.total_runs == 3
    assert st.score.legal_balls == 2


def test_over_ledger_tokens(controller):
    for event in (
        _run(4),
        WideEvent(runs=1),
        WideEvent(runs=2),
        NoBallEvent(runs=1),
        NoBallEvent(runs=4),
        ByeEvent(runs=1),
        LegByeEvent(runs=2),
        _wicket(),
    ):
        controller.process(event)

    tokens = [b.text for b in controller.state.current_over]
    assert tokens == ["4", "WD", "WD+2", "NB", "NB+3", "B", "LB+2", "W"]
    assert [b.legal for b in controller.state.current_over] == [
        True, False, False, False, False, True, True, True,
    ]
    assert len(controller.state.delivery_log) == 8


def test_manual_runs(controller):
    controller.process(ManualEvent(runs=7))
    st = controller.state
    assert st.batters["A"].runs == 7
    assert st.score.legal_balls == 1
    assert st.striker == "B"


def test_negative_manual_runs_rejected(controller):
    with pytest.raises(InvalidInput):
        controller.process(ManualEvent(runs=-2))
    assert len(controller.history) == 0
    assert controller.state.score.total_runs == 0


def test_non_numeric_runs_rejected(controller):
    with pytest.raises(InvalidInput):
        controller.process({"type": "run", "runs": "four"})
    with pytest.raises(InvalidInput):
        controller.process({"type": "bouncer"})
    assert len(controller.history) == 0


def test_extras_need_at_least_one_run(controller):
    with pytest.raises(InvalidInput):
        controller.process(WideEvent(runs=0))
    with pytest.raises(InvalidInput):
        controller.process(ByeEvent(runs=-1))


def test_dict_events_are_parsed(controller):
    controller.process({"type": "run", "runs": 2})
    controller.process({"type": "legbye", "runs": 1})
    assert controller.state.score.total_runs == 3
    assert controller.state.extras.leg_byes == 1


# --------------------------------------------------------------------------- #
#  Over completion
# --------------------------------------------------------------------------- #


def test_over_completion_requires_new_bowler(controller):
    for _ in range(6):
        controller.process(_run(0))

    st = controller.state
    assert st.current_over == []
    assert st.delivery_log == []
    assert st.pending is not None
    assert st.bowler is None
    assert st.last_over_bowler == "X"
    # Ends change at the end of the over
    assert st.striker == "B"

    with pytest.raises(AwaitingInput):
        controller.process(_run(1))

    with pytest.raises(InvalidInput):
        controller.select_bowler("X")

    controller.select_bowler("Y")
    assert controller.state.pending is None
    assert controller.state.bowler == "Y"
    assert controller.known_bowlers == ["X", "Y"]

    controller.process(_run(1))
    assert controller.state.bowlers["Y"].balls_bowled == 1
    assert len(controller.state.current_over) == 1


def test_wides_do_not_complete_an_over(controller):
    for _ in range(5):
        controller.process(_run(0))
    controller.process(WideEvent(runs=1))
    assert controller.state.pending is None
    assert len(controller.state.current_over) == 6
    controller.process(_run(0))
    assert controller.state.pending is not None


def test_processor_requires_a_bowler():
    state = ScoringState(striker="A", non_striker="B", bowler=None)
    with pytest.raises(NoActiveBowler):
        DeliveryProcessor().validate(state, _run(1))


# --------------------------------------------------------------------------- #
#  Wickets
# --------------------------------------------------------------------------- #


def test_bowled_striker(controller):
    controller.process(_run(2))
    controller.process(_wicket(method="Caught", helper="F"))

    st = controller.state
    a = st.batters["A"]
    assert a.status == "out (Caught)"
    assert a.balls_faced == 2
    assert st.bowlers["X"].wickets == 1
    assert st.striker == "C"
    assert st.non_striker == "B"
    assert st.score.total_wickets == 1
    assert st.score.legal_balls == 2

    fow = st.fall_of_wickets[0]
    assert fow.wicket_number == 1
    assert fow.batter == "A"
    assert fow.batter_runs == 2
    assert fow.team_score == 2
    assert fow.how == "Caught (F)"
    assert fow.partner == "B"
    assert fow.overs == "0.2"


def test_named_non_striker_dismissal(controller):
    controller.process(_wicket(method="Stumped", out_batter="B"))
    st = controller.state
    assert st.batters["B"].is_out
    assert st.striker == "A"
    assert st.non_striker == "C"


def test_wicket_requires_replacement(controller):
    with pytest.raises(MissingReplacement):
        controller.process(WicketEvent(new_batter="  "))
    assert controller.state.score.total_wickets == 0
    assert len(controller.history) == 0


def test_wicket_rejects_unknown_or_repeat_batters(controller):
    with pytest.raises(InvalidInput):
        controller.process(_wicket(out_batter="Z"))
    with pytest.raises(InvalidInput):
        controller.process(_wicket(new_batter="B"))
    controller.process(_wicket())
    with pytest.raises(InvalidInput):
        controller.process(_wicket(new_batter="A"))


def test_run_out_does_not_credit_bowler(controller):
    controller.process(_wicket(method="Run Out", out_batter="A"))
    assert controller.state.bowlers["X"].wickets == 0
    assert controller.state.batters["A"].status == "out (Run Out)"


def test_run_out_with_runs_before(controller):
    controller.process(_wicket(
        method="Run Out",
        run_out=RunOut(who=Position.STRIKER, end=CreaseEnd.STRIKER_END, runs_before=1),
    ))
    st = controller.state
    assert st.batters["A"].runs == 1
    assert st.batters["A"].balls_faced == 1
    assert st.batters["A"].status == "out (Run Out)"
    assert st.score.total_runs == 1
    assert st.score.legal_balls == 1
    assert st.bowlers["X"].runs_conceded == 1
    assert st.bowlers["X"].wickets == 0
    assert (st.striker, st.non_striker) == ("C", "B")
    _assert_conserved(controller)


def test_non_striker_run_out_at_their_end(controller):
    controller.process(_wicket(
        run_out=RunOut(who=Position.NON_STRIKER, end=CreaseEnd.NON_STRIKER_END),
    ))
    st = controller.state
    assert st.batters["B"].status == "out (Run Out)"
    assert st.batters["B"].balls_faced == 0
    assert st.score.legal_balls == 1
    assert st.bowlers["X"].balls_bowled == 1
    assert (st.striker, st.non_striker) == ("A", "C")


def test_run_out_resolved_from_end(controller):
    controller.process(_wicket(run_out=RunOut(end=CreaseEnd.STRIKER_END)))
    st = controller.state
    assert st.batters["A"].is_out
    assert st.batters["A"].balls_faced == 1
    assert st.striker == "C"


def test_ambiguous_run_out_rejected(controller):
    with pytest.raises(InvalidInput):
        controller.process(_wicket(run_out=RunOut(runs_before=1)))
    assert controller.state.score.total_runs == 0


def test_run_out_rejects_conflicting_batter(controller):
    with pytest.raises(InvalidInput):
        controller.process(_wicket(
            out_batter="B", run_out=RunOut(end=CreaseEnd.STRIKER_END),
        ))
    with pytest.raises(InvalidInput):
        controller.process(_wicket(
            out_batter="A", run_out=RunOut(who=Position.NON_STRIKER),
        ))
    assert controller.state.score.total_wickets == 0
    assert len(controller.history) == 0


def test_run_out_named_batter_matches_end(controller):
    # One run completed: A crossed to the non-striker's end and was run out there
    controller.process(_wicket(
        out_batter="A",
        run_out=RunOut(end=CreaseEnd.NON_STRIKER_END, runs_before=1),
    ))
    st = controller.state
    assert st.batters["A"].is_out
    assert st.batters["A"].runs == 1
    assert st.batters["B"].status == "batting"
    assert (st.striker, st.non_striker) == ("B", "C")


def test_run_out_on_last_ball_sets_up_next_over(controller):
    for _ in range(5):
        controller.process(_run(0))
    controller.process(_wicket(
        run_out=RunOut(who=Position.STRIKER, end=CreaseEnd.STRIKER_END),
    ))
    st = controller.state
    # The survivor faces the next over; the new batter waits at the other end
    assert (st.striker, st.non_striker) == ("B", "C")
    assert st.pending is not None
    assert st.current_over == []


def test_penalty_deducts_without_touching_bowler(controller):
    controller.process(_run(4))
    controller.process(PenaltyEvent(magnitude=3, new_batter="C"))

    st = controller.state
    assert st.score.total_runs == 1
    assert st.extras.negative == 3
    assert st.bowlers["X"].runs_conceded == 4
    assert st.batters["A"].status == "out (Negative Runs)"
    assert st.score.total_wickets == 1
    assert st.score.legal_balls == 2
    assert [b.text for b in st.current_over] == ["4", "W"]
    _assert_conserved(controller)


def test_penalty_cannot_take_total_below_zero(controller):
    controller.process(_run(2))
    with pytest.raises(InvalidInput):
        controller.process(PenaltyEvent(magnitude=3, new_batter="C"))
    with pytest.raises(MissingReplacement):
        controller.process(PenaltyEvent(magnitude=1))
    assert controller.state.score.total_runs == 2


def test_wicket_count_is_capped():
    state = ScoringState(
        score=MatchState(total_wickets=10),
        striker="J",
        non_striker="K",
        bowler="X",
    )
    with pytest.raises(InningsClosed):
        DeliveryProcessor(max_wickets=10).validate(state, _wicket(new_batter="L"))


# --------------------------------------------------------------------------- #
#  Conservation
# --------------------------------------------------------------------------- #


def test_runs_and_balls_are_conserved(controller):
    events = [
        _run(1), WideEvent(runs=2), NoBallEvent(runs=3), ByeEvent(runs=2),
        _wicket(), LegByeEvent(runs=1), _run(0), _run(0),
    ]
    for event in events:
        controller.process(event)
        _assert_conserved(controller)

    controller.select_bowler("Y")
    for event in [_run(4), PenaltyEvent(magnitude=2, new_batter="D"), _run(6)]:
        controller.process(event)
        _assert_conserved(controller)


# --------------------------------------------------------------------------- #
#  Partnership
# --------------------------------------------------------------------------- #


def test_partnership_tracks_the_pair(controller):
    controller.process(_run(1))
    controller.process(WideEvent(runs=1))
    controller.process(NoBallEvent(runs=3))

    p = controller.state.partnership
    assert {p.batter_a, p.batter_b} == {"A", "B"}
    assert p.runs == 3
    assert p.balls == 1

    controller.swap_strike()
    assert controller.state.partnership.runs == 3

    # A is back on strike and is the one dismissed
    controller.process(_wicket())
    p = controller.state.partnership
    assert {p.batter_a, p.batter_b} == {"B", "C"}
    assert p.runs == 0
    assert p.balls == 0
    assert (p.start_over, p.start_ball) == (0, 2)


# --------------------------------------------------------------------------- #
#  Snapshot history
# --------------------------------------------------------------------------- #


def test_history_push_pop_is_a_copy():
    history = SnapshotHistory()
    state = ScoringState(striker="A", non_striker="B", bowler="X")
    history.push(state)
    state.score.total_runs = 10

    restored = history.pop()
    assert restored.score.total_runs == 0
    assert len(history) == 0
    with pytest.raises(NothingToUndo):
        history.pop()


# --------------------------------------------------------------------------- #
#  Milestones
# --------------------------------------------------------------------------- #


def test_half_century_on_exact_landing():
    found = detect_milestones(
        BatterStats(name="A", runs=46), BatterStats(name="A", runs=50), None, None
    )
    assert len(found) == 1
    assert found[0].milestone == "Half Century"
    assert found[0].kind == "batting"


def test_no_milestone_when_skipping_past_fifty():
    assert detect_milestones(
        BatterStats(name="A", runs=48), BatterStats(name="A", runs=52), None, None
    ) == []


def test_no_repeat_milestone_on_dot_ball():
    assert detect_milestones(
        BatterStats(name="A", runs=100), BatterStats(name="A", runs=100), None, None
    ) == []


def test_century_and_five_wicket_haul():
    found = detect_milestones(
        BatterStats(name="A", runs=98),
        BatterStats(name="A", runs=100),
        BowlerStats(name="X", wickets=4),
        BowlerStats(name="X", wickets=5),
    )
    assert [m.milestone for m in found] == ["Century", "Five Wicket Haul"]
