from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


EMPTY_SLOT = "-----"
BALLS_PER_OVER = 6


def format_overs(balls: int) -> str:
    """Render a legal-ball count as cricket overs, e.g. 27 -> '4.3'."""
    return f"{balls // BALLS_PER_OVER}.{balls % BALLS_PER_OVER}"


# =========================================================================== #
#  Enums
# =========================================================================== #


class MatchPhase(str, Enum):
    """Innings/match controller states."""

    NOT_STARTED = "not_started"
    INNINGS_1_LIVE = "innings_1_live"
    INNINGS_1_COMPLETE = "innings_1_complete"
    AWAITING_SECOND_INNINGS_SETUP = "awaiting_second_innings_setup"
    INNINGS_2_LIVE = "innings_2_live"
    MATCH_COMPLETE = "match_complete"


class PendingInput(str, Enum):
    """Follow-up choices that block delivery processing until resolved."""

    BOWLER = "bowler"
    SECOND_INNINGS_LINEUP = "second_innings_lineup"


class Position(str, Enum):
    STRIKER = "striker"
    NON_STRIKER = "non_striker"


class CreaseEnd(str, Enum):
    STRIKER_END = "striker_end"
    NON_STRIKER_END = "non_striker_end"


# =========================================================================== #
#  Delivery events
# =========================================================================== #


class RunOut(BaseModel):
    """Run-out details attached to a wicket event."""

    who: Optional[Position] = Field(None, description="Dismissed batter, relative to the delivery's start")
    end: Optional[CreaseEnd] = Field(None, description="End at which the wicket was broken")
    runs_before: int = Field(0, description="Runs completed before the run-out")


class RunEvent(BaseModel):
    type: Literal["run"] = "run"
    runs: int = 0


class ManualEvent(BaseModel):
    """Runs typed in by the scorer instead of picked from the run buttons."""

    type: Literal["manual"] = "manual"
    runs: int = 0


class WicketEvent(BaseModel):
    type: Literal["wicket"] = "wicket"
    method: str = "Bowled"
    helper: Optional[str] = Field(None, description="Fielder or keeper involved")
    out_batter: Optional[str] = Field(None, description="Defaults to the striker")
    new_batter: Optional[str] = None
    run_out: Optional[RunOut] = None


class WideEvent(BaseModel):
    type: Literal["wide"] = "wide"
    runs: int = 1


class NoBallEvent(BaseModel):
    type: Literal["noball"] = "noball"
    runs: int = 1


class ByeEvent(BaseModel):
    type: Literal["bye"] = "bye"
    runs: int = 1


class LegByeEvent(BaseModel):
    type: Literal["legbye"] = "legbye"
    runs: int = 1


class PenaltyEvent(BaseModel):
    """Negative-runs deduction, scored as a wicket with a negative run delta."""

    type: Literal["penalty"] = "penalty"
    magnitude: int
    helper: Optional[str] = None
    out_batter: Optional[str] = None
    new_batter: Optional[str] = None


DeliveryEvent = Annotated[
    Union[
        RunEvent,
        ManualEvent,
        WicketEvent,
        WideEvent,
        NoBallEvent,
        ByeEvent,
        LegByeEvent,
        PenaltyEvent,
    ],
    Field(discriminator="type"),
]


# =========================================================================== #
#  Statistics
# =========================================================================== #


class BatterStats(BaseModel):
    """Per-batter figures for one innings."""

    name: str
    runs: int = 0
    balls_faced: int = 0
    fours: int = 0
    sixes: int = 0
    status: str = "batting"

    @property
    def is_out(self) -> bool:
        return self.status.startswith("out")

    @property
    def strike_rate(self) -> float:
        if self.balls_faced == 0:
            return 0.0
        return round((self.runs / self.balls_faced) * 100, 2)


class BowlerStats(BaseModel):
    """Per-bowler figures for one innings."""

    name: str
    balls_bowled: int = 0
    runs_conceded: int = 0
    wickets: int = 0

    @property
    def overs_display(self) -> str:
        return format_overs(self.balls_bowled)

    @property
    def economy(self) -> float:
        overs = self.balls_bowled / BALLS_PER_OVER
        if overs == 0:
            return 0.0
        return round(self.runs_conceded / overs, 2)

    @property
    def figures_str(self) -> str:
        return f"{self.wickets}/{self.runs_conceded} ({self.overs_display})"


class ExtrasBreakdown(BaseModel):
    """Running extras ledger. `negative` holds penalty deductions as a magnitude."""

    wides: int = 0
    no_balls: int = 0
    byes: int = 0
    leg_byes: int = 0
    negative: int = 0

    @property
    def total(self) -> int:
        """Net extras contribution to the team total."""
        return self.wides + self.no_balls + self.byes + self.leg_byes - self.negative


class Partnership(BaseModel):
    batter_a: str
    batter_b: str
    runs: int = 0
    balls: int = 0
    start_over: int = 0
    start_ball: int = 0


class FallOfWicket(BaseModel):
    """Record of a wicket falling."""

    wicket_number: int
    batter: str
    batter_runs: int
    team_score: int
    overs: str
    bowler: str
    how: str
    partner: Optional[str] = None


class OverBall(BaseModel):
    """One over-ledger token, e.g. '4', 'W', 'WD+2'."""

    text: str
    legal: bool


class DeliveryRecord(BaseModel):
    """One entry of the per-over delivery log."""

    type: str
    runs: int = 0
    ball_index: int
    striker: str
    non_striker: str
    bowler: str
    detail: Optional[dict] = None


# =========================================================================== #
#  Match state
# =========================================================================== #


class MatchState(BaseModel):
    """Headline score of the innings in progress."""

    total_runs: int = 0
    total_wickets: int = 0
    legal_balls: int = 0
    innings: int = 1
    batting_team: str = ""
    bowling_team: str = ""
    target: Optional[int] = None
    first_innings_score: Optional[int] = None
    overs_limit: Optional[int] = None

    @property
    def overs_display(self) -> str:
        return format_overs(self.legal_balls)

    @property
    def current_run_rate(self) -> float:
        overs = self.legal_balls / BALLS_PER_OVER
        if overs == 0:
            return 0.0
        return round(self.total_runs / overs, 2)

    @property
    def runs_needed(self) -> int:
        if self.innings != 2 or self.target is None:
            return 0
        return max(self.target - self.total_runs, 0)

    @property
    def balls_remaining(self) -> Optional[int]:
        if self.overs_limit is None:
            return None
        return max(self.overs_limit * BALLS_PER_OVER - self.legal_balls, 0)

    @property
    def required_run_rate(self) -> float:
        if self.innings != 2 or self.target is None or self.overs_limit is None:
            return 0.0
        overs_remaining = self.balls_remaining / BALLS_PER_OVER
        if overs_remaining <= 0:
            return 0.0
        return round(self.runs_needed / overs_remaining, 2)


class Lineup(BaseModel):
    """Opening pair and opening bowler for an innings."""

    striker: Optional[str] = None
    non_striker: Optional[str] = None
    bowler: Optional[str] = None


class MatchSetup(BaseModel):
    team1: str = "Team 1"
    team2: str = "Team 2"
    toss_winner: Optional[str] = None
    decision: Optional[Literal["bat", "bowl"]] = None
    overs_limit: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def check_teams(self) -> "MatchSetup":
        self.team1 = self.team1.strip()
        self.team2 = self.team2.strip()
        if self.toss_winner is not None:
            self.toss_winner = self.toss_winner.strip() or None
        if not self.team1 or not self.team2:
            raise ValueError("Enter both team names")
        if self.team1 == self.team2:
            raise ValueError("The two teams need different names")
        if self.toss_winner is not None and self.toss_winner not in (self.team1, self.team2):
            raise ValueError(f"Toss winner {self.toss_winner!r} is not playing in this match")
        return self

    @property
    def first_batting(self) -> str:
        if self.toss_winner and self.decision:
            if self.decision == "bat":
                return self.toss_winner
            return self.team2 if self.toss_winner == self.team1 else self.team1
        return self.team1

    def other_team(self, team: str) -> str:
        return self.team2 if team == self.team1 else self.team1


class InningsSummary(BaseModel):
    """Read-only scorecard of one innings, for display and export."""

    innings: int
    batting_team: str
    bowling_team: str
    total_runs: int
    total_wickets: int
    legal_balls: int
    batters: list[BatterStats] = Field(default_factory=list)
    bowlers: list[BowlerStats] = Field(default_factory=list)
    extras: ExtrasBreakdown = Field(default_factory=ExtrasBreakdown)
    fall_of_wickets: list[FallOfWicket] = Field(default_factory=list)

    @property
    def overs_display(self) -> str:
        return format_overs(self.legal_balls)

    @property
    def score_str(self) -> str:
        return f"{self.total_runs}/{self.total_wickets} ({self.overs_display})"


class MatchResult(BaseModel):
    winner: Optional[str] = None
    is_tie: bool = False
    margin: Optional[str] = None
    text: str


class Milestone(BaseModel):
    """Transient notification; never feeds back into scoring."""

    kind: Literal["batting", "bowling"]
    player: str
    milestone: str
    value: int


class ScoringState(BaseModel):
    """Everything undo must restore, owned by the match controller."""

    score: MatchState = Field(default_factory=MatchState)
    phase: MatchPhase = MatchPhase.NOT_STARTED
    pending: Optional[PendingInput] = None
    batters: dict[str, BatterStats] = Field(default_factory=dict)
    bowlers: dict[str, BowlerStats] = Field(default_factory=dict)
    extras: ExtrasBreakdown = Field(default_factory=ExtrasBreakdown)
    striker: str = ""
    non_striker: str = ""
    bowler: Optional[str] = None
    last_over_bowler: Optional[str] = None
    current_over: list[OverBall] = Field(default_factory=list)
    delivery_log: list[DeliveryRecord] = Field(default_factory=list)
    partnership: Optional[Partnership] = None
    fall_of_wickets: list[FallOfWicket] = Field(default_factory=list)
    first_innings: Optional[InningsSummary] = None
    second_innings: Optional[InningsSummary] = None
    result: Optional[MatchResult] = None


class Snapshot(BaseModel):
    """Frozen copy of the scoring state taken before a delivery is applied."""

    model_config = {"frozen": True}

    state: ScoringState
