from courtside.models import TournamentStage, TournamentType
from courtside.services.tournament_summary import build_tournament_summary


def test_empty_tournament(king):
    summary = king.summary()
    assert summary.tournament_type == TournamentType.KING
    assert summary.stage == TournamentStage.OPEN
    assert summary.match_count == 0
    assert summary.leader_team_id is None
    assert summary.members == []
    assert len(summary.standings) == 8


def test_running_king_tournament(king):
    king.schedule_next_round()
    king.record_result(0, 6, 3)
    summary = build_tournament_summary(king.state)

    assert summary.leader_team_id == 1
    assert summary.champion_team_id is None
    assert [s.member_id for s in summary.members] == [11, 12, 21, 22]
    assert [s.points for s in summary.members] == [35, 35, 20, 20]
    assert summary.members[2].losses == 1


def test_to_dict_rows(king):
    king.schedule_next_round()
    king.record_result(1, 2, 6)
    payload = king.summary().to_dict()

    top = payload["standings"][0]
    assert (top["team_id"], top["wins"], top["games_won"], top["games_diff"]) == (4, 1, 6, 4)
    assert payload["members"][0]["member_id"] == 41
    assert payload["champion_team_id"] is None
