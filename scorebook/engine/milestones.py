from typing import Optional

from scorebook.models import BatterStats, BowlerStats, Milestone


BATTING_MILESTONES = {50: "Half Century", 100: "Century"}
FIVE_WICKET_HAUL = 5


def detect_milestones(
    batter_before: Optional[BatterStats],
    batter_after: Optional[BatterStats],
    bowler_before: Optional[BowlerStats],
    bowler_after: Optional[BowlerStats],
) -> list[Milestone]:
    """
    Compare a batter's and bowler's figures across one delivery.

    Only exact landings count: a batter who moves from 48 to 52 does not
    trigger a half century, and a figure that was already on the milestone
    before the delivery does not fire again.
    """
    found: list[Milestone] = []

    if batter_after is not None:
        runs_before = batter_before.runs if batter_before else None
        label = BATTING_MILESTONES.get(batter_after.runs)
        if label and runs_before != batter_after.runs:
            found.append(Milestone(
                kind="batting",
                player=batter_after.name,
                milestone=label,
                value=batter_after.runs,
            ))

    if bowler_after is not None:
        wickets_before = bowler_before.wickets if bowler_before else None
        if bowler_after.wickets == FIVE_WICKET_HAUL and wickets_before != FIVE_WICKET_HAUL:
            found.append(Milestone(
                kind="bowling",
                player=bowler_after.name,
                milestone="Five Wicket Haul",
                value=bowler_after.wickets,
            ))

    return found
