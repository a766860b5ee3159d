from courtside.models.court_state import (
    ActiveMatch,
    CourtSlot,
    FinalMatch,
    GroupMatch,
    KingMatch,
    SemifinalMatch,
    TeamRef,
    ThirdPlaceMatch,
)
from courtside.models.match import Match, Stage, TournamentType
from courtside.models.member import EntryKind, Member, Outcome, PointsEntry
from courtside.models.team import Team
from courtside.models.tournament_state import TournamentStage, TournamentState

__all__ = [
    "ActiveMatch",
    "CourtSlot",
    "EntryKind",
    "FinalMatch",
    "GroupMatch",
    "KingMatch",
    "Match",
    "Member",
    "Outcome",
    "PointsEntry",
    "SemifinalMatch",
    "Stage",
    "Team",
    "TeamRef",
    "ThirdPlaceMatch",
    "TournamentStage",
    "TournamentState",
    "TournamentType",
]
