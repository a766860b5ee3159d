"""
Court slot variants.

A court is either empty (None) or holds exactly one match in progress. Each
variant carries a fixed `stage` discriminant and only the fields that stage
needs. Instances are frozen: the scheduler and the controller build new
slots instead of patching existing ones.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, FrozenSet, Optional, Tuple, Union

from courtside.models.match import Stage


@dataclass(frozen=True)
class TeamRef:
    id: int
    name: str


@dataclass(frozen=True)
class CourtMatch:
    court_index: int  # 0-based
    team_a: TeamRef
    team_b: TeamRef
    started_at: datetime

    stage: ClassVar[Stage]

    @property
    def court_number(self) -> int:
        return self.court_index + 1

    @property
    def team_ids(self) -> Tuple[int, int]:
        return (self.team_a.id, self.team_b.id)

    @property
    def pair_key(self) -> FrozenSet[int]:
        return frozenset(self.team_ids)


@dataclass(frozen=True)
class KingMatch(CourtMatch):
    round_number: int
    pinned_winner_id: Optional[int] = None  # set when team_a was re-seated as last round's winner

    stage: ClassVar[Stage] = Stage.OPEN_ROUND


@dataclass(frozen=True)
class GroupMatch(CourtMatch):
    group_id: str
    waiting: TeamRef
    fixture_number: int  # 1..3 within the group

    stage: ClassVar[Stage] = Stage.GROUP


@dataclass(frozen=True)
class SemifinalMatch(CourtMatch):
    semi_number: int  # 1 | 2

    stage: ClassVar[Stage] = Stage.SEMIFINAL


@dataclass(frozen=True)
class ThirdPlaceMatch(CourtMatch):
    stage: ClassVar[Stage] = Stage.THIRD_PLACE


@dataclass(frozen=True)
class FinalMatch(CourtMatch):
    sets: Tuple[Tuple[int, int], ...] = ()
    tiebreak: Optional[Tuple[int, int]] = None

    stage: ClassVar[Stage] = Stage.FINAL

    def set_wins(self) -> Tuple[int, int]:
        a_sets = sum(1 for a, b in self.sets if a > b)
        b_sets = sum(1 for a, b in self.sets if b > a)
        return a_sets, b_sets

    @property
    def needs_tiebreak(self) -> bool:
        return len(self.sets) == 2 and self.set_wins() == (1, 1)

    @property
    def is_decided(self) -> bool:
        if len(self.sets) < 2:
            return False
        return not self.needs_tiebreak or self.tiebreak is not None


ActiveMatch = Union[KingMatch, GroupMatch, SemifinalMatch, ThirdPlaceMatch, FinalMatch]
CourtSlot = Optional[ActiveMatch]
