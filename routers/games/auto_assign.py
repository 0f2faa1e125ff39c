"""Deterministic pick assignment for players who missed the round lock."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

NO_AVAILABLE_TEAM = "no_available_team"


@dataclass
class AssignmentPlan:
    assignments: Dict[int, int] = field(default_factory=dict)
    eliminations: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)


def round_teams(fixtures: Iterable) -> List[Tuple[int, str]]:
    """Teams playing in the round as ``(team_id, name)`` sorted by name, then id."""
    teams: Dict[int, str] = {}
    for fixture in fixtures:
        for team in (fixture.home_team, fixture.away_team):
            if team is not None:
                teams[team.id] = team.name or ""
    return sorted(teams.items(), key=lambda item: (item[1].lower(), item[0]))


def choose_team(teams: List[Tuple[int, str]], used_team_ids: Set[int]) -> Optional[int]:
    for team_id, _ in teams:
        if team_id not in used_team_ids:
            return team_id
    return None


def plan_auto_assignments(
    *,
    alive_user_ids: Iterable[int],
    users_with_pick: Set[int],
    used_teams_by_user: Dict[int, Set[int]],
    teams: List[Tuple[int, str]],
) -> AssignmentPlan:
    """
    Give every alive player without a pick the alphabetically-first team they have
    not used yet in this game. Players with no unused team left are eliminated.
    """
    plan = AssignmentPlan()
    for user_id in alive_user_ids:
        if user_id in users_with_pick:
            plan.skipped.append(user_id)
            continue
        team_id = choose_team(teams, used_teams_by_user.get(user_id, set()))
        if team_id is None:
            plan.eliminations.append(user_id)
        else:
            plan.assignments[user_id] = team_id
    return plan
