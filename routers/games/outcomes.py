"""Round outcome resolution.

Pure functions: they take fixture rows (or anything with the same attributes) and
decide what each team's result is and where the game goes next. No database access.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from models import FixtureStatus, GameStatus, PickResult


@dataclass
class RoundOutcome:
    outcomes: Dict[int, str] = field(default_factory=dict)
    has_voided_fixtures: bool = False
    unresolved_fixture_ids: List[int] = field(default_factory=list)

    @property
    def is_resolved(self) -> bool:
        return not self.unresolved_fixture_ids


@dataclass
class RoundTransition:
    status: str
    current_round: int
    wipeout: bool = False
    open_rebuy_window: bool = False
    restore_cohort: bool = False


def resolve_round_outcomes(fixtures: Iterable) -> RoundOutcome:
    """
    Map every team playing in the round to won/lost/draw/voided.

    A postponed fixture voids both sides. Any other fixture that is not finished
    with both scores present is reported as unresolved and contributes no outcome.
    """
    result = RoundOutcome()

    for fixture in fixtures:
        if fixture.status == FixtureStatus.POSTPONED:
            result.has_voided_fixtures = True
            result.outcomes[fixture.home_team_id] = PickResult.VOIDED
            result.outcomes[fixture.away_team_id] = PickResult.VOIDED
            continue

        if (
            fixture.status != FixtureStatus.FINISHED
            or fixture.home_score is None
            or fixture.away_score is None
        ):
            result.unresolved_fixture_ids.append(fixture.id)
            continue

        if fixture.home_score > fixture.away_score:
            result.outcomes[fixture.home_team_id] = PickResult.WON
            result.outcomes[fixture.away_team_id] = PickResult.LOST
        elif fixture.home_score < fixture.away_score:
            result.outcomes[fixture.home_team_id] = PickResult.LOST
            result.outcomes[fixture.away_team_id] = PickResult.WON
        else:
            result.outcomes[fixture.home_team_id] = PickResult.DRAW
            result.outcomes[fixture.away_team_id] = PickResult.DRAW

    return result


def eliminates(result: Optional[str]) -> bool:
    return result in (PickResult.LOST, PickResult.DRAW)


def decide_round_transition(
    *,
    target_round: int,
    alive_count: int,
    has_voided_fixtures: bool,
    rebuy_enabled: bool,
) -> RoundTransition:
    """
    Decide the game's status and current round after a round has been settled.

    Postponed fixtures keep the same round open. A wipeout opens a rebuy window
    when rebuys are enabled; otherwise the wiped-out cohort is restored and the
    game completes. One survivor or fewer completes the game.
    """
    if has_voided_fixtures:
        return RoundTransition(status=GameStatus.ACTIVE, current_round=target_round)

    if alive_count == 0:
        if rebuy_enabled:
            return RoundTransition(
                status=GameStatus.ACTIVE,
                current_round=target_round + 1,
                wipeout=True,
                open_rebuy_window=True,
            )
        return RoundTransition(
            status=GameStatus.COMPLETED,
            current_round=target_round,
            wipeout=True,
            restore_cohort=True,
        )

    if alive_count <= 1:
        return RoundTransition(status=GameStatus.COMPLETED, current_round=target_round)

    return RoundTransition(status=GameStatus.ACTIVE, current_round=target_round + 1)
