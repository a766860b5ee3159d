"""
Social format group rotation: three teams, three fixtures, one court.

Fixture order ("loser stays, challenger waits"):
  1. team[0] vs team[1]; team[2] waits
  2. loser of fixture 1 vs team[2]; the loser keeps its side (A or B)
  3. team[2] vs winner of fixture 1
A tie in fixture 1 falls back to round-robin order: the first unplayed pair
of (0,1), (0,2), (1,2).
"""
from typing import Dict, List, Optional, Sequence, Tuple

from courtside.errors import GroupSetupError
from courtside.models.match import Match

GROUP_SIZE = 3
GROUP_MATCH_COUNT = 3


def group_id_for_index(index: int) -> str:
    """Group ids follow the court they are played on: group1 on court 1, ..."""
    return f"group{index + 1}"


def _first_unplayed(team_ids: Sequence[int], played: List[frozenset]) -> Optional[Tuple[int, int]]:
    for i in range(len(team_ids)):
        for j in range(i + 1, len(team_ids)):
            if frozenset((team_ids[i], team_ids[j])) not in played:
                return (team_ids[i], team_ids[j])
    return None


def next_group_pairing(team_ids: Sequence[int], group_matches: Sequence[Match]) -> Optional[Tuple[int, int]]:
    """
    Next (team_a, team_b) for a 3-team group, or None when the group is
    complete or is not a group of exactly 3 distinct teams.

    group_matches must already be restricted to this group; they are taken in
    recording order (match id).
    """
    if len(team_ids) != GROUP_SIZE or len(set(team_ids)) != GROUP_SIZE:
        return None

    ordered = sorted(group_matches, key=lambda m: m.id)
    played = [m.pair_key for m in ordered]
    first, second, waiting = team_ids

    if len(ordered) >= GROUP_MATCH_COUNT:
        return None

    if not ordered:
        return (first, second)

    opener = ordered[0]
    if opener.winner_team_id is None:
        return _first_unplayed(team_ids, played)

    if len(ordered) == 1:
        loser = opener.loser_team_id()
        # The loser stays on court in the same position it held in fixture 1
        pairing = (loser, waiting) if loser == opener.team_a_id else (waiting, loser)
    else:
        pairing = (waiting, opener.winner_team_id)

    if frozenset(pairing) in played or waiting not in pairing:
        return _first_unplayed(team_ids, played)
    return pairing


def waiting_team(team_ids: Sequence[int], pairing: Tuple[int, int]) -> Optional[int]:
    """The group member sitting out a pairing."""
    for team_id in team_ids:
        if team_id not in pairing:
            return team_id
    return None


def assign_groups(team_ids: Sequence[int], group_count: int) -> Dict[str, List[int]]:
    """Split the first group_count * 3 teams into groups in listed order."""
    needed = group_count * GROUP_SIZE
    if len(team_ids) < needed:
        raise GroupSetupError(
            f"Social tournament needs at least {needed} teams "
            f"({GROUP_SIZE} per court x {group_count} courts), got {len(team_ids)}"
        )
    return {
        group_id_for_index(i): list(team_ids[i * GROUP_SIZE:(i + 1) * GROUP_SIZE])
        for i in range(group_count)
    }


def validate_groups(groups: Dict[str, Sequence[int]], known_team_ids: Sequence[int], group_count: int) -> None:
    """Raise GroupSetupError unless there are group_count groups of 3 distinct, known, unshared teams."""
    if len(groups) != group_count:
        raise GroupSetupError(f"Expected {group_count} groups, got {len(groups)}")

    known = set(known_team_ids)
    seen: Dict[int, str] = {}
    for group_id, members in groups.items():
        if len(members) != GROUP_SIZE or len(set(members)) != GROUP_SIZE:
            raise GroupSetupError(f"Group {group_id} must have exactly {GROUP_SIZE} distinct teams")
        for team_id in members:
            if team_id not in known:
                raise GroupSetupError(f"Group {group_id}: team {team_id} is not in this tournament")
            if team_id in seen:
                raise GroupSetupError(f"Team {team_id} is in both {seen[team_id]} and {group_id}")
            seen[team_id] = group_id
