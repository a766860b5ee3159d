import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from courtside.models.court_state import CourtSlot, TeamRef
from courtside.models.match import Match, TournamentType
from courtside.models.member import Member
from courtside.models.team import Team


class TournamentStage(str, Enum):
    OPEN = "open"  # King format: rounds until the organiser stops
    GROUP = "group"
    SEMI = "semi"
    FINAL = "final"
    COMPLETE = "complete"


@dataclass
class TournamentState:
    """Everything one tournament owns. King and Social tournaments never share state."""

    tournament_id: int
    tournament_type: TournamentType
    court_count: int
    teams: List[Team] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)
    courts: List[CourtSlot] = field(default_factory=list)
    court_winners: Dict[int, int] = field(default_factory=dict)  # court index -> pinned team id
    stage: TournamentStage = TournamentStage.OPEN
    groups: Dict[str, List[int]] = field(default_factory=dict)  # group id -> 3 team ids
    qualifiers: List[int] = field(default_factory=list)
    round_number: int = 0
    next_match_id: int = 1
    champion_team_id: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.courts:
            self.courts = [None] * self.court_count
        if len(self.courts) != self.court_count:
            raise ValueError(f"Expected {self.court_count} court slots, got {len(self.courts)}")

    def team(self, team_id: int) -> Optional[Team]:
        for team in self.teams:
            if team.id == team_id:
                return team
        return None

    def team_ref(self, team_id: int) -> TeamRef:
        team = self.team(team_id)
        if team is None:
            raise KeyError(f"Team {team_id} is not part of tournament {self.tournament_id}")
        return TeamRef(id=team.id, name=team.name)

    def match(self, match_id: int) -> Optional[Match]:
        for match in self.matches:
            if match.id == match_id:
                return match
        return None

    def copy(self) -> "TournamentState":
        return copy.deepcopy(self)
