"""
Standings: per-team records recomputed from the match log.

Stored Team aggregates are never read here. This is also the reference
oracle the integrity verifier and the ledger tests compare against.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from courtside.models.match import Match
from courtside.models.team import Team


class TieBreak(str, Enum):
    GAMES_WON = "games_won"  # overall standings
    GAMES_DIFF = "games_diff"  # group standings


@dataclass
class TeamStanding:
    team_id: int
    name: str
    matches_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    games_won: int = 0
    games_lost: int = 0

    @property
    def games_diff(self) -> int:
        return self.games_won - self.games_lost

    def record(self) -> Dict[str, int]:
        """Fields comparable with the Team aggregate of the same name."""
        return {
            "matches_played": self.matches_played,
            "wins": self.wins,
            "losses": self.losses,
            "draws": self.draws,
            "games_won": self.games_won,
            "games_lost": self.games_lost,
        }


def _fold(standing: TeamStanding, match: Match) -> None:
    won, lost = match.games_for(standing.team_id)
    standing.matches_played += 1
    standing.games_won += won
    standing.games_lost += lost
    if match.winner_team_id is None:
        standing.draws += 1
    elif match.winner_team_id == standing.team_id:
        standing.wins += 1
    else:
        standing.losses += 1


def team_record(team_id: int, matches: Iterable[Match], name: str = "") -> TeamStanding:
    """Fold every match involving team_id into a single standing row."""
    standing = TeamStanding(team_id=team_id, name=name)
    for match in matches:
        if match.involves(team_id):
            _fold(standing, match)
    return standing


def sort_standings(rows: List[TeamStanding], tie_break: TieBreak = TieBreak.GAMES_WON) -> List[TeamStanding]:
    """Wins desc, then the tie-break column desc. Stable for anything still tied."""
    if tie_break == TieBreak.GAMES_DIFF:
        return sorted(rows, key=lambda s: (-s.wins, -s.games_diff))
    return sorted(rows, key=lambda s: (-s.wins, -s.games_won))


def compute_standings(
    teams: Sequence[Team],
    matches: Iterable[Match],
    tie_break: TieBreak = TieBreak.GAMES_WON,
) -> List[TeamStanding]:
    """
    Standings for `teams` over `matches`.

    A match counts for a team when it is on either side; teams that are not
    in `teams` are ignored. Empty input gives an empty list.
    """
    rows: Dict[int, TeamStanding] = {}
    for team in teams:
        rows[team.id] = TeamStanding(team_id=team.id, name=team.name)

    for match in matches:
        for team_id in match.team_ids:
            standing = rows.get(team_id)
            if standing is not None:
                _fold(standing, match)

    return sort_standings(list(rows.values()), tie_break)


def group_standings(
    teams: Sequence[Team],
    matches: Iterable[Match],
    group_id: str,
    team_ids: Optional[Sequence[int]] = None,
) -> List[TeamStanding]:
    """Standings of one Social group: only that group's matches, ranked by wins then games diff."""
    wanted = set(team_ids) if team_ids is not None else None
    group_teams = [t for t in teams if wanted is None or t.id in wanted]
    if team_ids is not None:
        order = {tid: i for i, tid in enumerate(team_ids)}
        group_teams.sort(key=lambda t: order[t.id])
    group_matches = [m for m in matches if m.group_id == group_id]
    return compute_standings(group_teams, group_matches, tie_break=TieBreak.GAMES_DIFF)
