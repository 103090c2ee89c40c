from typing import Optional

from scorebook.models import BALLS_PER_OVER, Partnership, ScoringState


def new_partnership(striker: str, non_striker: str, legal_balls: int) -> Partnership:
    return Partnership(
        batter_a=striker,
        batter_b=non_striker,
        start_over=legal_balls // BALLS_PER_OVER,
        start_ball=legal_balls % BALLS_PER_OVER,
    )


def is_same_pair(partnership: Optional[Partnership], striker: str, non_striker: str) -> bool:
    """Order-insensitive: a strike rotation does not break a partnership."""
    if partnership is None:
        return False
    return {partnership.batter_a, partnership.batter_b} == {striker, non_striker}


class PartnershipTracker:
    """
    Keeps the current stand in sync with who is at the crease.

    Deliveries are credited to the pair that started them; the stand is then
    reset whenever the pair at the crease is no longer the stored pair
    (wicket, retirement, new innings).
    """

    def credit(self, state: ScoringState, batted_runs: int, legal: bool) -> None:
        p = state.partnership
        if p is None:
            return
        p.runs += batted_runs
        if legal:
            p.balls += 1

    def sync(self, state: ScoringState) -> bool:
        """Reset the stand if the pair changed. Returns True when a new stand started."""
        if is_same_pair(state.partnership, state.striker, state.non_striker):
            return False
        state.partnership = new_partnership(
            state.striker, state.non_striker, state.score.legal_balls
        )
        return True
