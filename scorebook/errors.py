class ScoringError(Exception):
    """Base class for recoverable scoring errors. None of them leave partial state behind."""

    kind = "scoring_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidInput(ScoringError):
    """Malformed or out-of-range input, e.g. negative manual runs."""

    kind = "invalid_input"


class MissingReplacement(ScoringError):
    """A wicket or retirement was recorded without an incoming batter."""

    kind = "missing_replacement"


class NoActiveBowler(ScoringError):
    kind = "no_active_bowler"


class IncompleteLineup(ScoringError):
    kind = "incomplete_lineup"


class AwaitingInput(ScoringError):
    """A follow-up choice (new bowler, second-innings lineup) is still pending."""

    kind = "awaiting_input"


class NothingToUndo(ScoringError):
    kind = "nothing_to_undo"


class InningsClosed(ScoringError):
    """No innings is live: the match has not started or is already decided."""

    kind = "innings_closed"
