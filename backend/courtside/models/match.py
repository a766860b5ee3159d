from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

from sqlmodel import Field, SQLModel


class Stage(str, Enum):
    OPEN_ROUND = "open_round"
    GROUP = "group"
    SEMIFINAL = "semifinal"
    THIRD_PLACE = "third_place"
    FINAL = "final"


class TournamentType(str, Enum):
    KING = "king"
    SOCIAL = "social"


class Match(SQLModel):
    id: int
    tournament_id: int
    tournament_type: TournamentType

    # Teams are snapshotted by value at record time
    team_a_id: int
    team_a_name: str
    team_b_id: int
    team_b_name: str

    score_a: int
    score_b: int
    winner_team_id: Optional[int] = Field(default=None)  # None means a tie

    court_number: int  # 1-based
    stage: Stage
    group_id: Optional[str] = Field(default=None)  # Social group stage only
    semi_number: Optional[int] = Field(default=None)  # 1 | 2 for semifinals
    round_number: Optional[int] = Field(default=None)  # King round that produced the pairing

    # Final only: raw games per set for display; score_a/score_b hold the summed games
    set_scores: List[Tuple[int, int]] = Field(default_factory=list)
    tiebreak_score: Optional[Tuple[int, int]] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_tie(self) -> bool:
        return self.winner_team_id is None

    @property
    def team_ids(self) -> Tuple[int, int]:
        return (self.team_a_id, self.team_b_id)

    @property
    def pair_key(self) -> FrozenSet[int]:
        return frozenset((self.team_a_id, self.team_b_id))

    def involves(self, team_id: int) -> bool:
        return team_id in (self.team_a_id, self.team_b_id)

    def loser_team_id(self) -> Optional[int]:
        if self.winner_team_id is None:
            return None
        return self.team_b_id if self.winner_team_id == self.team_a_id else self.team_a_id

    def games_for(self, team_id: int) -> Tuple[int, int]:
        """(games won, games lost) from team_id's side of the net."""
        if team_id == self.team_a_id:
            return self.score_a, self.score_b
        return self.score_b, self.score_a
