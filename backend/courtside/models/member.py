from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlmodel import Field, SQLModel

from courtside.models.match import Stage, TournamentType


class EntryKind(str, Enum):
    TOURNAMENT_JOIN = "tournament_join"
    MATCH = "match"
    TOURNAMENT_WIN = "tournament_win"


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"


class PointsEntry(SQLModel):
    id: str  # deterministic: "t<tournament_id>:m<match_id>:<member_id>:<kind>"
    kind: EntryKind
    match_id: Optional[int] = Field(default=None)  # None for tournament-join bonus entries
    points: int = Field(default=0)
    outcome: Optional[Outcome] = Field(default=None)  # MATCH entries only
    stage: Stage
    tournament_id: int
    tournament_type: TournamentType
    timestamp: datetime

    # Join entries only: the match that first recorded the member in this
    # tournament, and the tournament id the member carried before it.
    joined_via_match_id: Optional[int] = Field(default=None)
    previous_tournament_id: Optional[int] = Field(default=None)

    def belongs_to_match(self, match_id: int, tournament_id: int) -> bool:
        # Match ids restart in every tournament
        if self.tournament_id != tournament_id:
            return False
        return self.match_id == match_id or self.joined_via_match_id == match_id


class Member(SQLModel):
    id: int
    name: str
    last_tournament_id: Optional[int] = Field(default=None)

    # Aggregates: always equal to a fold over points_history
    total_games: int = Field(default=0)
    total_wins: int = Field(default=0)
    total_losses: int = Field(default=0)
    total_draws: int = Field(default=0)
    total_points: int = Field(default=0)
    tournaments_played: int = Field(default=0)
    tournaments_won: int = Field(default=0)

    points_history: List[PointsEntry] = Field(default_factory=list)
