import logging
from typing import Callable, Optional, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from scorebook.config import settings
from scorebook.engine.delivery import DeliveryProcessor
from scorebook.engine.history import SnapshotHistory
from scorebook.engine.milestones import detect_milestones
from scorebook.engine.partnership import PartnershipTracker, new_partnership
from scorebook.errors import (
    AwaitingInput,
    IncompleteLineup,
    InningsClosed,
    InvalidInput,
    MissingReplacement,
    ScoringError,
)
from scorebook.models import (
    BALLS_PER_OVER,
    BatterStats,
    BowlerStats,
    DeliveryEvent,
    InningsSummary,
    Lineup,
    MatchPhase,
    MatchResult,
    MatchSetup,
    MatchState,
    Milestone,
    PendingInput,
    Position,
    ScoringState,
)

logger = logging.getLogger(__name__)

_event_adapter = TypeAdapter(DeliveryEvent)

LIVE_PHASES = (MatchPhase.INNINGS_1_LIVE, MatchPhase.INNINGS_2_LIVE)


def parse_event(payload: Union[BaseModel, dict]) -> DeliveryEvent:
    """Accept a typed event or a raw dict such as {"type": "wide", "runs": 2}."""
    if isinstance(payload, BaseModel):
        return payload
    try:
        return _event_adapter.validate_python(payload)
    except ValidationError as e:
        raise InvalidInput(f"Invalid delivery: {e.errors()[0]['msg']}") from e


def _clean_lineup(lineup: Union[Lineup, dict]) -> Lineup:
    if isinstance(lineup, dict):
        try:
            lineup = Lineup.model_validate(lineup)
        except ValidationError as e:
            raise IncompleteLineup("Enter striker, non-striker and bowler names") from e
    cleaned = Lineup(
        striker=(lineup.striker or "").strip(),
        non_striker=(lineup.non_striker or "").strip(),
        bowler=(lineup.bowler or "").strip(),
    )
    if not cleaned.striker or not cleaned.non_striker or not cleaned.bowler:
        raise IncompleteLineup("Enter striker, non-striker and bowler names")
    if cleaned.striker == cleaned.non_striker:
        raise IncompleteLineup("Striker and non-striker must be different players")
    return cleaned


class MatchController:
    """
    Runs a two-innings match: opens each innings, feeds deliveries through
    the processor, keeps the undo history, and decides when an innings or
    the match is over.

    Follow-up choices (next bowler, second-innings lineup) are held as an
    explicit pending input on the scoring state, so undoing the delivery
    that raised one also withdraws it.
    """

    def __init__(self, setup: Optional[MatchSetup] = None, max_wickets: Optional[int] = None) -> None:
        self.setup = setup or MatchSetup(overs_limit=settings.default_overs_limit)
        self.max_wickets = max_wickets if max_wickets is not None else settings.max_wickets
        self.state = ScoringState()
        self.history = SnapshotHistory()
        self.processor = DeliveryProcessor(max_wickets=self.max_wickets)
        self.partnerships = PartnershipTracker()
        self.known_bowlers: list[str] = []
        self.last_milestones: list[Milestone] = []
        self._listeners: list[Callable[[Milestone], None]] = []

    # ------------------------------------------------------------------ #
    #  Read-only views
    # ------------------------------------------------------------------ #

    @property
    def score(self) -> MatchState:
        """A copy of the headline score; it does not follow later deliveries."""
        return self.state.score.model_copy()

    @property
    def phase(self) -> MatchPhase:
        return self.state.phase

    @property
    def pending(self) -> Optional[PendingInput]:
        return self.state.pending

    @property
    def result(self) -> Optional[MatchResult]:
        return self.state.result

    def add_listener(self, callback: Callable[[Milestone], None]) -> None:
        """Register a callback for milestone notifications."""
        self._listeners.append(callback)

    def ordered_batters(self) -> list[BatterStats]:
        """Striker, non-striker, anyone else still batting, then those out or retired."""
        st = self.state
        used: set[str] = set()
        result: list[BatterStats] = []

        for name in (st.striker, st.non_striker):
            if name in st.batters and name not in used:
                result.append(st.batters[name])
                used.add(name)
        for b in st.batters.values():
            if b.name not in used and b.status == "batting":
                result.append(b)
                used.add(b.name)
        for b in st.batters.values():
            if b.name not in used:
                result.append(b)
                used.add(b.name)
        return result

    # ------------------------------------------------------------------ #
    #  Innings lifecycle
    # ------------------------------------------------------------------ #

    def start_innings(self, lineup: Union[Lineup, dict], overs_limit: Optional[int] = None) -> MatchState:
        """Start (or restart) the match with the first-innings lineup."""
        lineup = _clean_lineup(lineup)
        overs = overs_limit if overs_limit is not None else self.setup.overs_limit
        if overs is not None and overs < 1:
            raise InvalidInput(f"Overs limit must be at least 1, got {overs}")

        batting = self.setup.first_batting
        self.state = ScoringState(
            score=MatchState(
                innings=1,
                batting_team=batting,
                bowling_team=self.setup.other_team(batting),
                overs_limit=overs,
            ),
            phase=MatchPhase.INNINGS_1_LIVE,
        )
        self._open_innings(lineup)
        logger.info(
            f"First innings: {batting} batting, {lineup.striker} & {lineup.non_striker} "
            f"to face {lineup.bowler}" + (f", {overs} overs" if overs else "")
        )
        return self.score

    def start_second_innings(self, lineup: Union[Lineup, dict]) -> MatchState:
        if self.state.phase != MatchPhase.AWAITING_SECOND_INNINGS_SETUP:
            if self.state.phase in (MatchPhase.NOT_STARTED, MatchPhase.MATCH_COMPLETE):
                raise InningsClosed(f"No second innings to start: {self.state.phase.value}")
            raise AwaitingInput("The first innings has not finished yet")
        lineup = _clean_lineup(lineup)

        prev = self.state.score
        batting = self.setup.other_team(prev.batting_team)
        self.state = ScoringState(
            score=MatchState(
                innings=2,
                batting_team=batting,
                bowling_team=prev.batting_team,
                target=prev.target,
                first_innings_score=prev.first_innings_score,
                overs_limit=prev.overs_limit,
            ),
            phase=MatchPhase.INNINGS_2_LIVE,
            first_innings=self.state.first_innings,
        )
        self._open_innings(lineup)
        logger.info(f"Second innings: {batting} need {prev.target} to win")
        return self.score

    def _open_innings(self, lineup: Lineup) -> None:
        st = self.state
        st.batters = {
            lineup.striker: BatterStats(name=lineup.striker),
            lineup.non_striker: BatterStats(name=lineup.non_striker),
        }
        st.bowlers = {lineup.bowler: BowlerStats(name=lineup.bowler)}
        st.striker = lineup.striker
        st.non_striker = lineup.non_striker
        st.bowler = lineup.bowler
        st.partnership = new_partnership(lineup.striker, lineup.non_striker, 0)
        self._remember_bowler(lineup.bowler)
        self.history.clear()
        self.last_milestones = []

    # ------------------------------------------------------------------ #
    #  Deliveries
    # ------------------------------------------------------------------ #

    def process(self, event: Union[BaseModel, dict]) -> MatchState:
        """Score one delivery. Raises a ScoringError without changing anything on bad input."""
        event = parse_event(event)
        self._require_ready()
        st = self.state
        try:
            self.processor.validate(st, event)
        except ScoringError as e:
            logger.debug(f"Rejected {event.type} delivery: {e}")
            raise

        self.history.push(st)

        batter_before = self._copy_or_none(st.batters.get(st.striker))
        bowler_before = self._copy_or_none(st.bowlers.get(st.bowler))

        outcome = self.processor.apply(st, event)

        self.partnerships.credit(st, outcome.batted_runs, outcome.legal)
        self.partnerships.sync(st)

        self._notify(detect_milestones(
            batter_before,
            st.batters.get(outcome.faced_by),
            bowler_before,
            st.bowlers.get(outcome.bowler),
        ))

        ended = self._check_innings_end()
        if outcome.over_completed and not ended:
            st.pending = PendingInput.BOWLER
            logger.info(
                f"End of over {st.score.legal_balls // BALLS_PER_OVER}: "
                f"{st.score.total_runs}/{st.score.total_wickets}, select the next bowler"
            )
        return self.score

    def undo(self) -> MatchState:
        """Restore the state from before the last delivery or adjustment."""
        self.state = self.history.pop()
        self.last_milestones = []
        logger.debug(f"Undo: back to {self.state.score.total_runs}/{self.state.score.total_wickets} "
                     f"({self.state.score.overs_display})")
        return self.score

    # ------------------------------------------------------------------ #
    #  Manual adjustments
    # ------------------------------------------------------------------ #

    def select_bowler(self, name: str) -> None:
        """Resolve a pending bowler selection."""
        self._require_live()
        if self.state.pending != PendingInput.BOWLER:
            raise InvalidInput("No bowler change is pending")
        name = (name or "").strip()
        if not name:
            raise InvalidInput("Bowler name is required")

        st = self.state
        at_over_start = st.score.legal_balls % BALLS_PER_OVER == 0
        if at_over_start and name == st.last_over_bowler:
            raise InvalidInput(f"{name} bowled the previous over")

        st.bowler = name
        if name not in st.bowlers:
            st.bowlers[name] = BowlerStats(name=name)
        st.pending = None
        self._remember_bowler(name)

    def request_bowler_change(self) -> None:
        """Take the current bowler off mid-over; a new one must then be selected."""
        self._require_ready()
        self.history.push(self.state)
        self.state.bowler = None
        self.state.pending = PendingInput.BOWLER

    def swap_strike(self) -> None:
        self._require_live()
        self.history.push(self.state)
        st = self.state
        st.striker, st.non_striker = st.non_striker, st.striker
        self.partnerships.sync(st)

    def retire(self, which: Union[Position, str], new_batter: str) -> None:
        """Retire the striker or non-striker and send in `new_batter`."""
        self._require_live()
        try:
            which = Position(which)
        except ValueError as e:
            raise InvalidInput(f"Cannot retire {which!r}: expected striker or non_striker") from e
        name = (new_batter or "").strip()
        if not name:
            raise MissingReplacement("Replacement batter name is required")

        st = self.state
        if name in (st.striker, st.non_striker):
            raise InvalidInput(f"{name} is already at the crease")
        existing = st.batters.get(name)
        if existing is not None and existing.is_out:
            raise InvalidInput(f"{name} has already been dismissed")

        self.history.push(st)
        leaving = st.striker if which == Position.STRIKER else st.non_striker
        if leaving in st.batters:
            st.batters[leaving].status = "retired"
        if existing is not None:
            existing.status = "batting"
        else:
            st.batters[name] = BatterStats(name=name)

        if which == Position.STRIKER:
            st.striker = name
        else:
            st.non_striker = name
        self.partnerships.sync(st)
        logger.info(f"{leaving} retired, {name} comes in")

    # ------------------------------------------------------------------ #
    #  Summaries
    # ------------------------------------------------------------------ #

    def get_summary(self, innings: int) -> InningsSummary:
        """Scorecard for one innings. Always a copy; the recorded summary cannot be edited through it."""
        st = self.state
        if innings == 1:
            if st.first_innings is not None:
                return st.first_innings.model_copy(deep=True)
            if st.phase == MatchPhase.INNINGS_1_LIVE:
                return self._summarize()
        elif innings == 2:
            if st.second_innings is not None:
                return st.second_innings.model_copy(deep=True)
            if st.phase == MatchPhase.INNINGS_2_LIVE:
                return self._summarize()
        else:
            raise InvalidInput(f"Innings must be 1 or 2, got {innings}")
        raise InvalidInput(f"Innings {innings} has not started")

    def _summarize(self) -> InningsSummary:
        st = self.state.model_copy(deep=True)
        s = st.score
        return InningsSummary(
            innings=s.innings,
            batting_team=s.batting_team,
            bowling_team=s.bowling_team,
            total_runs=s.total_runs,
            total_wickets=s.total_wickets,
            legal_balls=s.legal_balls,
            batters=list(st.batters.values()),
            bowlers=list(st.bowlers.values()),
            extras=st.extras,
            fall_of_wickets=st.fall_of_wickets,
        )

    # ------------------------------------------------------------------ #
    #  End conditions
    # ------------------------------------------------------------------ #

    def _check_innings_end(self) -> bool:
        s = self.state.score
        overs_done = s.overs_limit is not None and s.legal_balls >= s.overs_limit * BALLS_PER_OVER
        all_out = s.total_wickets >= self.max_wickets

        if s.innings == 1:
            if overs_done or all_out:
                self._close_first_innings()
                return True
            return False

        if (s.target is not None and s.total_runs >= s.target) or overs_done or all_out:
            self._close_match()
            return True
        return False

    def _close_first_innings(self) -> None:
        st = self.state
        s = st.score
        st.phase = MatchPhase.INNINGS_1_COMPLETE
        st.first_innings = self._summarize()
        s.first_innings_score = s.total_runs
        s.target = s.total_runs + 1

        # Second-innings bowlers start with clean figures
        st.bowlers = {}
        st.bowler = None
        st.last_over_bowler = None

        st.pending = PendingInput.SECOND_INNINGS_LINEUP
        st.phase = MatchPhase.AWAITING_SECOND_INNINGS_SETUP
        logger.info(
            f"First innings closed: {s.batting_team} {st.first_innings.score_str}, "
            f"target {s.target}"
        )

    def _close_match(self) -> None:
        st = self.state
        s = st.score
        first = s.first_innings_score or 0

        if s.target is not None and s.total_runs >= s.target:
            in_hand = self.max_wickets - s.total_wickets
            result = MatchResult(
                winner=s.batting_team,
                margin=f"{in_hand} wicket(s)",
                text=f"{s.batting_team} won by {in_hand} wicket(s) ({s.total_runs}/{s.total_wickets})",
            )
        elif s.total_runs == first:
            result = MatchResult(is_tie=True, text=f"Match tied on {first}")
        else:
            margin = first - s.total_runs
            result = MatchResult(
                winner=s.bowling_team,
                margin=f"{margin} run(s)",
                text=f"{s.bowling_team} won by {margin} run(s)",
            )

        st.second_innings = self._summarize()
        st.result = result
        st.pending = None
        st.bowler = None
        st.phase = MatchPhase.MATCH_COMPLETE
        logger.info(f"Match complete: {result.text}")

    # ------------------------------------------------------------------ #
    #  Guards & helpers
    # ------------------------------------------------------------------ #

    def _require_live(self) -> None:
        phase = self.state.phase
        if phase == MatchPhase.NOT_STARTED:
            raise InningsClosed("The match has not started")
        if phase == MatchPhase.MATCH_COMPLETE:
            raise InningsClosed("The match is complete")
        if phase not in LIVE_PHASES:
            raise AwaitingInput("Second-innings lineup required")

    def _require_ready(self) -> None:
        """Live innings with no unresolved follow-up."""
        self._require_live()
        if self.state.pending == PendingInput.BOWLER:
            raise AwaitingInput("Select the next bowler")

    def _remember_bowler(self, name: str) -> None:
        if name not in self.known_bowlers:
            self.known_bowlers.append(name)

    def _notify(self, milestones: list[Milestone]) -> None:
        self.last_milestones = milestones
        for m in milestones:
            logger.info(f"Milestone: {m.player} - {m.milestone} ({m.value})")
            for callback in self._listeners:
                callback(m)

    @staticmethod
    def _copy_or_none(record):
        return record.model_copy() if record is not None else None
