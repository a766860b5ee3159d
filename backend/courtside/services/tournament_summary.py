"""
End-of-tournament summary: podium, final standings and member points.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from courtside.models.match import Stage, TournamentType
from courtside.models.tournament_state import TournamentStage, TournamentState
from courtside.services.standings import TeamStanding, compute_standings
from courtside.services.stats_ledger import MemberTournamentStats, member_tournament_stats


@dataclass
class TournamentSummary:
    tournament_id: int
    tournament_type: TournamentType
    stage: TournamentStage
    match_count: int
    champion_team_id: Optional[int] = None
    runner_up_team_id: Optional[int] = None
    third_place_team_id: Optional[int] = None
    leader_team_id: Optional[int] = None  # top of the standings, also while still running
    standings: List[TeamStanding] = field(default_factory=list)
    members: List[MemberTournamentStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "tournament_type": self.tournament_type.value,
            "stage": self.stage.value,
            "match_count": self.match_count,
            "champion_team_id": self.champion_team_id,
            "runner_up_team_id": self.runner_up_team_id,
            "third_place_team_id": self.third_place_team_id,
            "leader_team_id": self.leader_team_id,
            "standings": [
                {"team_id": row.team_id, "name": row.name, **row.record(), "games_diff": row.games_diff}
                for row in self.standings
            ],
            "members": [
                {
                    "member_id": s.member_id,
                    "matches": s.matches,
                    "wins": s.wins,
                    "losses": s.losses,
                    "draws": s.draws,
                    "points": s.points,
                    "won_tournament": s.won_tournament,
                }
                for s in self.members
            ],
        }


def build_tournament_summary(state: TournamentState) -> TournamentSummary:
    standings = compute_standings(state.teams, state.matches)
    summary = TournamentSummary(
        tournament_id=state.tournament_id,
        tournament_type=state.tournament_type,
        stage=state.stage,
        match_count=len(state.matches),
        champion_team_id=state.champion_team_id,
        leader_team_id=standings[0].team_id if standings and standings[0].matches_played else None,
        standings=standings,
    )

    for match in state.matches:
        if match.stage == Stage.FINAL:
            summary.champion_team_id = match.winner_team_id
            summary.runner_up_team_id = match.loser_team_id()
        elif match.stage == Stage.THIRD_PLACE:
            summary.third_place_team_id = match.winner_team_id

    played = [
        member_tournament_stats(member, state.tournament_id)
        for member in state.members
    ]
    summary.members = sorted(
        (s for s in played if s.joined or s.matches),
        key=lambda s: (-s.points, -s.wins),
    )
    return summary
