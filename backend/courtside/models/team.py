from typing import List

from sqlmodel import Field, SQLModel


class Team(SQLModel):
    id: int
    name: str
    member_ids: List[int] = Field(default_factory=list)  # roster, in display order

    # Running aggregate, maintained by the stats ledger.
    # Always equal to a fold of the match log restricted to this team.
    wins: int = Field(default=0)
    losses: int = Field(default=0)
    draws: int = Field(default=0)
    games_won: int = Field(default=0)
    games_lost: int = Field(default=0)
    matches_played: int = Field(default=0)

    @property
    def games_diff(self) -> int:
        return self.games_won - self.games_lost
