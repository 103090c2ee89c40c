from typing import Optional

from pydantic import BaseModel

from scorebook.errors import InningsClosed, InvalidInput, MissingReplacement, NoActiveBowler
from scorebook.models import (
    BALLS_PER_OVER,
    EMPTY_SLOT,
    BatterStats,
    BowlerStats,
    ByeEvent,
    CreaseEnd,
    DeliveryEvent,
    DeliveryRecord,
    FallOfWicket,
    LegByeEvent,
    ManualEvent,
    NoBallEvent,
    OverBall,
    PenaltyEvent,
    Position,
    RunEvent,
    RunOut,
    ScoringState,
    WicketEvent,
    WideEvent,
)


RUN_OUT = "Run Out"
NEGATIVE_RUNS = "Negative Runs"


class DeliveryOutcome(BaseModel):
    """What one delivery did, for the controller's follow-up checks."""

    event_type: str
    text: str
    legal: bool
    faced_by: str
    bowler: str
    batted_runs: int = 0
    wicket: bool = False
    over_completed: bool = False
    ends_pre_swapped: bool = False


def _blank(name: Optional[str]) -> bool:
    return not name or not name.strip()


class DeliveryProcessor:
    """
    The ball-by-ball state machine.

    `validate()` checks an event against the current state without touching
    it; `apply()` then mutates the state in place. The controller snapshots
    the state between the two calls, so a rejected event never reaches the
    undo history and an accepted one is always reversible.
    """

    def __init__(self, max_wickets: int = 10) -> None:
        self.max_wickets = max_wickets

    # ------------------------------------------------------------------ #
    #  Validation
    # ------------------------------------------------------------------ #

    def validate(self, state: ScoringState, event: DeliveryEvent) -> None:
        if not state.bowler:
            raise NoActiveBowler("Select a bowler before recording a delivery")

        if isinstance(event, (RunEvent, ManualEvent)):
            if event.runs < 0:
                raise InvalidInput(
                    "Runs cannot be negative. Use a negative-runs penalty for deductions."
                )
        elif isinstance(event, (WideEvent, NoBallEvent, ByeEvent, LegByeEvent)):
            if event.runs < 1:
                raise InvalidInput(f"A {event.type} is worth at least 1 run, got {event.runs}")
        elif isinstance(event, WicketEvent):
            self._validate_wicket(state, event.out_batter, event.new_batter)
            if event.run_out is not None:
                if event.run_out.runs_before < 0:
                    raise InvalidInput("Runs completed before a run-out cannot be negative")
                if event.run_out.who is None and event.run_out.end is None:
                    raise InvalidInput("Run-out needs the dismissed batter or the end")
                victim = self._run_out_victim(state, event.run_out)
                if not _blank(event.out_batter) and event.out_batter.strip() != victim:
                    raise InvalidInput(
                        f"Run-out details point at {victim}, not {event.out_batter.strip()}"
                    )
        elif isinstance(event, PenaltyEvent):
            if event.magnitude <= 0:
                raise InvalidInput("Penalty must deduct a positive number of runs")
            if event.magnitude > state.score.total_runs:
                raise InvalidInput(
                    f"Cannot deduct {event.magnitude} from a total of {state.score.total_runs}"
                )
            self._validate_wicket(state, event.out_batter, event.new_batter)
        else:
            raise InvalidInput(f"Unknown delivery type: {event!r}")

    def _validate_wicket(
        self, state: ScoringState, out_batter: Optional[str], new_batter: Optional[str]
    ) -> None:
        wickets = state.score.total_wickets
        if wickets >= self.max_wickets:
            raise InningsClosed(f"All {self.max_wickets} wickets have already fallen")

        if not _blank(out_batter) and out_batter.strip() not in (state.striker, state.non_striker):
            raise InvalidInput(f"{out_batter} is not at the crease")

        if _blank(new_batter):
            # The last man out leaves nobody to replace him
            if wickets + 1 < self.max_wickets:
                raise MissingReplacement("New batter name is required")
            return

        name = new_batter.strip()
        if name in (state.striker, state.non_striker):
            raise InvalidInput(f"{name} is already at the crease")
        existing = state.batters.get(name)
        if existing is not None and existing.is_out:
            raise InvalidInput(f"{name} has already been dismissed")

    @staticmethod
    def _run_out_victim(state: ScoringState, info: RunOut) -> str:
        """Who a run-out dismisses, named from the pre-delivery positions."""
        if info.who == Position.STRIKER:
            return state.striker
        if info.who == Position.NON_STRIKER:
            return state.non_striker
        # `end` refers to positions after any completed runs have swapped the pair
        swapped = info.runs_before % 2 == 1
        at_striker_end = info.end == CreaseEnd.STRIKER_END
        return state.striker if at_striker_end != swapped else state.non_striker

    # ------------------------------------------------------------------ #
    #  Application
    # ------------------------------------------------------------------ #

    def apply(self, state: ScoringState, event: DeliveryEvent) -> DeliveryOutcome:
        """Mutate `state` for one already-validated delivery."""
        s = state.score
        bowler_name = state.bowler
        self._bowler(state, bowler_name)

        state.delivery_log.append(DeliveryRecord(
            type=event.type,
            runs=getattr(event, "runs", 0),
            ball_index=s.legal_balls % BALLS_PER_OVER,
            striker=state.striker,
            non_striker=state.non_striker,
            bowler=bowler_name,
            detail=event.model_dump(exclude={"type"}, exclude_none=True) or None,
        ))

        faced_by = state.striker
        if isinstance(event, (RunEvent, ManualEvent)):
            outcome = self._apply_run(state, event)
        elif isinstance(event, WideEvent):
            outcome = self._apply_wide(state, event)
        elif isinstance(event, NoBallEvent):
            outcome = self._apply_no_ball(state, event)
        elif isinstance(event, ByeEvent):
            outcome = self._apply_bye(state, event, "byes", "B")
        elif isinstance(event, LegByeEvent):
            outcome = self._apply_bye(state, event, "leg_byes", "LB")
        elif isinstance(event, WicketEvent) and event.run_out is not None:
            outcome = self._apply_run_out(state, event)
        elif isinstance(event, WicketEvent):
            outcome = self._apply_dismissal(state, event, event.method)
        else:
            outcome = self._apply_penalty(state, event)

        outcome.faced_by = faced_by
        state.current_over.append(OverBall(text=outcome.text, legal=outcome.legal))

        # --- Over completion ---
        if outcome.legal and s.legal_balls > 0 and s.legal_balls % BALLS_PER_OVER == 0:
            if not outcome.ends_pre_swapped:
                self._swap(state)
            state.current_over = []
            state.delivery_log = []
            state.last_over_bowler = bowler_name
            state.bowler = None
            outcome.over_completed = True

        return outcome

    # ------------------------------------------------------------------ #
    #  Per-type handlers
    # ------------------------------------------------------------------ #

    def _apply_run(self, state: ScoringState, event) -> DeliveryOutcome:
        r = event.runs
        self._credit_batted_runs(state, r)
        if r % 2 == 1:
            self._swap(state)
        return self._outcome(state, event, str(r), legal=True, batted_runs=r)

    def _apply_wide(self, state: ScoringState, event: WideEvent) -> DeliveryOutcome:
        r = event.runs
        state.score.total_runs += r
        state.extras.wides += r
        state.bowlers[state.bowler].runs_conceded += r
        # Ends change on even wide runs only
        if r % 2 == 0:
            self._swap(state)
        text = "WD" if r == 1 else f"WD+{r}"
        return self._outcome(state, event, text, legal=False)

    def _apply_no_ball(self, state: ScoringState, event: NoBallEvent) -> DeliveryOutcome:
        r = event.runs
        batted = r - 1
        state.score.total_runs += 1
        state.extras.no_balls += 1

        if batted > 0:
            batter = self._batter(state, state.striker)
            batter.runs += batted
            if batted == 4:
                batter.fours += 1
            if batted == 6:
                batter.sixes += 1
            state.score.total_runs += batted

        state.bowlers[state.bowler].runs_conceded += r

        if batted % 2 == 1:
            self._swap(state)
        text = f"NB+{batted}" if batted > 0 else "NB"
        return self._outcome(state, event, text, legal=False, batted_runs=batted)

    def _apply_bye(self, state: ScoringState, event, field: str, prefix: str) -> DeliveryOutcome:
        r = event.runs
        s = state.score
        s.total_runs += r
        setattr(state.extras, field, getattr(state.extras, field) + r)

        bowler = state.bowlers[state.bowler]
        bowler.runs_conceded += r
        bowler.balls_bowled += 1
        self._batter(state, state.striker).balls_faced += 1
        s.legal_balls += 1

        if r % 2 == 1:
            self._swap(state)
        text = prefix if r == 1 else f"{prefix}+{r}"
        return self._outcome(state, event, text, legal=True)

    def _apply_dismissal(self, state: ScoringState, event, method: str) -> DeliveryOutcome:
        """Wicket bookkeeping shared by ordinary dismissals and penalty deductions."""
        s = state.score
        bowler = state.bowlers[state.bowler]

        s.legal_balls += 1
        bowler.balls_bowled += 1

        out_name = state.striker if _blank(event.out_batter) else event.out_batter.strip()
        out = self._batter(state, out_name)
        out.balls_faced += 1
        out.status = f"out ({method})"
        if method != RUN_OUT:
            bowler.wickets += 1

        partner = state.non_striker if out_name == state.striker else state.striker
        replacement = self._bring_in(state, event.new_batter)
        if out_name == state.striker:
            state.striker = replacement
        else:
            state.non_striker = replacement

        s.total_wickets += 1
        self._record_fall(state, out, method, event.helper, partner)
        return self._outcome(state, event, "W", legal=True, wicket=True)

    def _apply_penalty(self, state: ScoringState, event: PenaltyEvent) -> DeliveryOutcome:
        # The deduction is kept away from the bowler's figures
        state.score.total_runs -= event.magnitude
        state.extras.negative += event.magnitude
        return self._apply_dismissal(state, event, NEGATIVE_RUNS)

    def _apply_run_out(self, state: ScoringState, event: WicketEvent) -> DeliveryOutcome:
        s = state.score
        info = event.run_out
        start_striker, start_non = state.striker, state.non_striker
        out_name = self._run_out_victim(state, info)
        bowler = state.bowlers[state.bowler]

        rb = info.runs_before
        if rb > 0:
            self._credit_batted_runs(state, rb, boundaries=False)
            if rb % 2 == 1:
                self._swap(state)
        else:
            s.legal_balls += 1
            bowler.balls_bowled += 1

        end = info.end
        if end is None:
            end = CreaseEnd.STRIKER_END if out_name == state.striker else CreaseEnd.NON_STRIKER_END

        out = self._batter(state, out_name)
        if rb == 0 and not (end == CreaseEnd.NON_STRIKER_END and info.who == Position.NON_STRIKER):
            out.balls_faced += 1
        out.status = f"out ({RUN_OUT})"

        survivor = start_non if out_name == start_striker else start_striker
        replacement = self._bring_in(state, event.new_batter)

        # On the over's last ball the end swap is done here, not at over completion
        is_last_ball = s.legal_balls % BALLS_PER_OVER == 0
        at_striker_end = end == CreaseEnd.STRIKER_END
        if is_last_ball:
            if at_striker_end:
                state.striker, state.non_striker = survivor, replacement
            else:
                state.striker, state.non_striker = replacement, survivor
        else:
            if at_striker_end:
                state.striker, state.non_striker = replacement, survivor
            else:
                state.striker, state.non_striker = survivor, replacement

        s.total_wickets += 1
        self._record_fall(state, out, RUN_OUT, event.helper, survivor)
        return self._outcome(
            state, event, "W", legal=True, batted_runs=rb, wicket=True,
            ends_pre_swapped=is_last_ball,
        )

    # ------------------------------------------------------------------ #
    #  Helpers
    # ------------------------------------------------------------------ #

    def _credit_batted_runs(self, state: ScoringState, runs: int, boundaries: bool = True) -> None:
        """Runs off the bat: striker, bowler and team total, plus one legal ball."""
        s = state.score
        batter = self._batter(state, state.striker)
        bowler = state.bowlers[state.bowler]

        s.total_runs += runs
        batter.runs += runs
        bowler.runs_conceded += runs
        if boundaries and runs == 4:
            batter.fours += 1
        if boundaries and runs == 6:
            batter.sixes += 1

        batter.balls_faced += 1
        bowler.balls_bowled += 1
        s.legal_balls += 1

    def _bring_in(self, state: ScoringState, name: Optional[str]) -> str:
        if _blank(name):
            return EMPTY_SLOT
        name = name.strip()
        existing = state.batters.get(name)
        if existing is not None:
            # A retired batter resumes their innings
            existing.status = "batting"
        else:
            state.batters[name] = BatterStats(name=name)
        return name

    def _record_fall(
        self,
        state: ScoringState,
        out: BatterStats,
        method: str,
        helper: Optional[str],
        partner: Optional[str],
    ) -> None:
        s = state.score
        how = f"{method} ({helper.strip()})" if not _blank(helper) else method
        state.fall_of_wickets.append(FallOfWicket(
            wicket_number=s.total_wickets,
            batter=out.name,
            batter_runs=out.runs,
            team_score=s.total_runs,
            overs=s.overs_display,
            bowler=state.bowler,
            how=how,
            partner=partner if partner and partner != EMPTY_SLOT else None,
        ))

    @staticmethod
    def _batter(state: ScoringState, name: str) -> BatterStats:
        if name not in state.batters:
            state.batters[name] = BatterStats(name=name)
        return state.batters[name]

    @staticmethod
    def _bowler(state: ScoringState, name: str) -> BowlerStats:
        if name not in state.bowlers:
            state.bowlers[name] = BowlerStats(name=name)
        return state.bowlers[name]

    @staticmethod
    def _swap(state: ScoringState) -> None:
        state.striker, state.non_striker = state.non_striker, state.striker

    @staticmethod
    def _outcome(state: ScoringState, event, text: str, legal: bool, **kw) -> DeliveryOutcome:
        return DeliveryOutcome(
            event_type=event.type,
            text=text,
            legal=legal,
            faced_by=state.striker,
            bowler=state.bowler,
            **kw,
        )
