"""
Tournament controller: King rounds, Social groups -> semifinals -> final,
result edits, and all-or-nothing commits.
"""
import random

import pytest

from courtside.config import EngineSettings
from courtside.errors import (
    DuplicateMatch,
    EngineConflictError,
    GroupSetupError,
    InvalidScore,
    MatchNotFound,
    NoActiveMatchOnCourt,
    NotEditable,
    SetProtocolError,
)
from courtside.models import (
    FinalMatch,
    GroupMatch,
    KingMatch,
    SemifinalMatch,
    Stage,
    TeamRef,
    ThirdPlaceMatch,
    TournamentStage,
    TournamentState,
    TournamentType,
)
from courtside.services.king_scheduler import validate_assignment
from courtside.services.tournament_controller import TournamentController
from tests.factories import BASE_TIME, TOURNAMENT_ID, FakeClock, dump, make_match, make_teams


def _snapshot(controller):
    state = controller.state
    return (
        dump(state.teams),
        dump(state.members),
        dump(state.matches),
        list(state.courts),
        dict(state.court_winners),
        state.round_number,
        state.next_match_id,
        state.stage,
    )


def _play_king_round(controller, rng):
    for slot in controller.state.courts:
        if slot is None:
            continue
        a_wins = rng.random() < 0.5
        score_a, score_b = (6, rng.randint(0, 5)) if a_wins else (rng.randint(0, 5), 6)
        controller.record_result(slot.court_index, score_a, score_b)


def _play_group(controller, court_index):
    """Three fixtures, team A always wins 6-0: the group's third team qualifies."""
    for _ in range(3):
        controller.record_result(court_index, 6, 0)


def _to_final(controller):
    controller.start_group_stage()
    for court_index in range(4):
        _play_group(controller, court_index)
    controller.record_result(0, 6, 2)  # semi 1: 3 beats 6
    controller.record_result(1, 3, 6)  # semi 2: 12 beats 9


# ─── King format ─────────────────────────────────────────────────────────

class TestKingRounds:
    def test_first_round(self, king):
        result = king.schedule_next_round()
        state = king.state

        assert [slot.team_ids for slot in state.courts] == [(1, 2), (3, 4), (5, 6), (7, 8)]
        assert result.filled == 4
        assert state.round_number == 1
        assert all(isinstance(slot, KingMatch) for slot in state.courts)

    def test_record_result_updates_ledger_and_pins_winner(self, king):
        king.schedule_next_round()
        update = king.record_result(0, 6, 3)

        match = update.matches[-1]
        assert (match.id, match.team_a_id, match.team_b_id, match.winner_team_id) == (1, 1, 2, 1)
        assert match.stage == Stage.OPEN_ROUND
        assert match.round_number == 1
        assert match.court_number == 1
        assert update.courts[0] is None
        assert king.state.court_winners == {0: 1}

        team_1 = next(t for t in update.teams if t.id == 1)
        assert (team_1.matches_played, team_1.wins, team_1.games_won) == (1, 1, 6)
        member = next(m for m in update.members if m.id == 11)
        assert member.total_points == 35

    def test_tie_leaves_court_unpinned(self, king):
        king.schedule_next_round()
        king.record_result(0, 4, 4)
        assert king.state.court_winners == {}
        assert king.state.matches[0].winner_team_id is None

    @pytest.mark.parametrize("seed", [1, 42])
    def test_seven_rounds_cover_every_pairing_once(self, king, seed):
        rng = random.Random(seed)
        for _ in range(7):
            result = king.schedule_next_round()
            assert result.filled == 4
            assert result.repeat_pairs == []
            assert validate_assignment(king.state.courts) == []
            _play_king_round(king, rng)

        state = king.state
        assert len(state.matches) == 28
        assert len({m.pair_key for m in state.matches}) == 28
        report = king.verify()
        assert report.ok
        assert report.violations == []

    def test_winner_stays_on_court(self, king):
        king.schedule_next_round()
        king.record_result(2, 2, 6)  # team 6 wins on court 3
        for court_index in (0, 1, 3):
            king.record_result(court_index, 6, 1)
        king.schedule_next_round()
        slot = king.state.courts[2]
        assert slot.team_a.id == 6
        assert slot.pinned_winner_id == 6

    def test_exhausted_round_changes_nothing(self, settings, clock):
        teams, members = make_teams(1)
        calls = []
        controller = TournamentController.new_king(
            TOURNAMENT_ID, teams, members, settings, clock=clock, on_commit=calls.append
        )
        result = controller.schedule_next_round()
        assert result.exhausted
        assert controller.state.round_number == 0
        assert calls == []

    def test_matchups_view(self, king):
        king.schedule_next_round()
        king.record_result(0, 6, 3)
        rows = king.matchups()
        assert len(rows) == 28
        assert rows[-1].has_played
        assert (rows[-1].team_a_id, rows[-1].team_b_id) == (1, 2)

    def test_standings_view(self, king):
        king.schedule_next_round()
        king.record_result(0, 6, 3)
        king.record_result(1, 7, 0)
        rows = king.standings()
        assert [r.team_id for r in rows[:2]] == [3, 1]


class TestRecordErrors:
    def test_empty_court(self, king):
        with pytest.raises(NoActiveMatchOnCourt):
            king.record_result(0, 6, 3)

    @pytest.mark.parametrize("court_index", [-1, 4, 9])
    def test_court_out_of_range(self, king, court_index):
        king.schedule_next_round()
        with pytest.raises(NoActiveMatchOnCourt):
            king.record_result(court_index, 6, 3)

    @pytest.mark.parametrize("score_a,score_b", [(10, 3), (-1, 3), (6, "3")])
    def test_invalid_score_leaves_state_untouched(self, king, score_a, score_b):
        king.schedule_next_round()
        before = _snapshot(king)
        with pytest.raises(InvalidScore):
            king.record_result(0, score_a, score_b)
        assert _snapshot(king) == before

    def test_duplicate_match(self, settings, clock):
        teams, members = make_teams(4)
        slot = KingMatch(
            court_index=0,
            team_a=TeamRef(id=1, name="Team 1"),
            team_b=TeamRef(id=2, name="Team 2"),
            started_at=BASE_TIME,
            round_number=1,
        )
        state = TournamentState(
            tournament_id=TOURNAMENT_ID,
            tournament_type=TournamentType.KING,
            court_count=4,
            teams=teams,
            members=members,
            matches=[make_match(1, 1, 2, 6, 3, round_number=1)],
            courts=[slot, None, None, None],
            round_number=1,
            next_match_id=2,
        )
        controller = TournamentController(state, settings, clock=clock)
        with pytest.raises(DuplicateMatch):
            controller.record_result(0, 6, 4)
        assert len(controller.state.matches) == 1
        assert controller.state.courts[0] == slot

    def test_errors_name_the_court(self, clock):
        teams, members = make_teams(12)
        settings = EngineSettings(court_names=["Centre", "North", "South", "East"])
        king = TournamentController.new_king(TOURNAMENT_ID, teams[:8], members[:16], settings, clock=clock)
        with pytest.raises(NoActiveMatchOnCourt, match="court Centre"):
            king.record_result(0, 6, 3)

        social = TournamentController.new_social(TOURNAMENT_ID, teams, members, settings, clock=clock)
        social.start_group_stage()
        with pytest.raises(SetProtocolError, match="Court North is not playing the final"):
            social.record_final_set(1, 6, 4)

    def test_king_operations_on_social(self, social):
        with pytest.raises(EngineConflictError):
            social.schedule_next_round()

    def test_social_operations_on_king(self, king):
        with pytest.raises(EngineConflictError):
            king.start_group_stage()
        with pytest.raises(EngineConflictError):
            king.advance_group_round("group1")

    def test_settings_must_match_court_count(self):
        state = TournamentState(tournament_id=1, tournament_type=TournamentType.KING, court_count=2)
        with pytest.raises(ValueError):
            TournamentController(state, EngineSettings(court_count=4))


# ─── Editing ─────────────────────────────────────────────────────────────

class TestEditResult:
    @pytest.fixture(name="played_round")
    def played_round_fixture(self, king):
        king.schedule_next_round()
        for court_index in range(4):
            king.record_result(court_index, 6, 3)
        return king

    def test_same_score_edit_is_a_no_op(self, played_round):
        before = _snapshot(played_round)
        played_round.edit_result(1, 6, 3)
        assert _snapshot(played_round) == before

    def test_edit_moves_winner_pin(self, played_round):
        update = played_round.edit_result(1, 3, 6)
        assert played_round.state.court_winners[0] == 2

        by_id = {t.id: t for t in update.teams}
        assert (by_id[1].wins, by_id[1].losses) == (0, 1)
        assert (by_id[2].wins, by_id[2].losses) == (1, 0)
        assert played_round.verify().ok

    def test_edit_to_tie_clears_pin(self, played_round):
        played_round.edit_result(1, 5, 5)
        assert 0 not in played_round.state.court_winners
        assert played_round.verify().ok

    def test_edit_after_reschedule_keeps_courts(self, played_round):
        played_round.schedule_next_round()
        courts_before = played_round.state.courts
        winners_before = played_round.state.court_winners

        played_round.edit_result(2, 0, 6)
        assert played_round.state.courts == courts_before
        assert played_round.state.court_winners == winners_before
        assert played_round.verify().ok

    def test_edit_matches_replayed_log(self, played_round, settings):
        played_round.edit_result(3, 2, 6)
        played_round.edit_result(1, 6, 6)
        state = played_round.state

        teams, members = make_teams(8)
        replay = TournamentController.new_king(TOURNAMENT_ID, teams, members, settings, clock=FakeClock())
        replay.schedule_next_round()
        replay.record_result(0, 6, 6)
        replay.record_result(1, 6, 3)
        replay.record_result(2, 2, 6)
        replay.record_result(3, 6, 3)
        expected = replay.state

        assert dump(state.teams) == dump(expected.teams)
        assert [m.total_points for m in state.members] == [m.total_points for m in expected.members]
        assert [m.points_history for m in state.members] == [m.points_history for m in expected.members]

    def test_unknown_match(self, played_round):
        with pytest.raises(MatchNotFound):
            played_round.edit_result(99, 6, 3)

    def test_invalid_edit_leaves_state_untouched(self, played_round):
        before = _snapshot(played_round)
        with pytest.raises(InvalidScore):
            played_round.edit_result(1, 11, 0)
        assert _snapshot(played_round) == before


class TestConsecutiveTournaments:
    """Members carry over between tournaments whose match ids both start at 1."""

    @pytest.fixture(name="second")
    def second_fixture(self, king, settings):
        king.schedule_next_round()
        king.record_result(0, 6, 3)
        teams, _ = make_teams(8)
        second = TournamentController.new_king(
            TOURNAMENT_ID + 1, teams, king.state.members, settings, clock=FakeClock()
        )
        second.schedule_next_round()
        return second

    def test_members_count_both_tournaments(self, second):
        update = second.record_result(0, 6, 3)
        assert update.matches[-1].id == 1

        member = next(m for m in update.members if m.id == 11)
        assert member.total_games == 2
        assert member.tournaments_played == 2
        assert member.total_points == 2 * 35
        assert member.last_tournament_id == TOURNAMENT_ID + 1
        assert second.verify().ok

    def test_edit_leaves_earlier_tournament_alone(self, second):
        second.record_result(1, 6, 3)
        assert [(m.id, m.team_a_id, m.team_b_id) for m in second.state.matches] == [(1, 3, 4)]
        before = next(m for m in second.state.members if m.id == 11).model_dump()

        update = second.edit_result(1, 3, 6)

        assert next(m for m in update.members if m.id == 11).model_dump() == before
        assert next(m for m in update.members if m.id == 31).total_losses == 1
        assert second.verify().ok


# ─── Commit hook ─────────────────────────────────────────────────────────

class TestOnCommit:
    def test_hook_sees_each_committed_state(self, settings, clock):
        teams, members = make_teams(8)
        calls = []
        controller = TournamentController.new_king(
            TOURNAMENT_ID, teams, members, settings, clock=clock, on_commit=calls.append
        )
        controller.schedule_next_round()
        controller.record_result(0, 6, 3)

        assert len(calls) == 2
        assert calls[0].round_number == 1
        assert len(calls[1].matches) == 1

    def test_failing_hook_rolls_back(self, settings, clock):
        def fail(state):
            raise RuntimeError("store unavailable")

        teams, members = make_teams(8)
        controller = TournamentController.new_king(
            TOURNAMENT_ID, teams, members, settings, clock=clock, on_commit=fail
        )
        with pytest.raises(RuntimeError):
            controller.schedule_next_round()
        assert controller.state.round_number == 0
        assert controller.state.courts == [None, None, None, None]

    def test_failed_operation_skips_hook(self, settings, clock):
        teams, members = make_teams(8)
        calls = []
        controller = TournamentController.new_king(
            TOURNAMENT_ID, teams, members, settings, clock=clock, on_commit=calls.append
        )
        with pytest.raises(NoActiveMatchOnCourt):
            controller.record_result(0, 6, 3)
        assert calls == []


# ─── Social format ───────────────────────────────────────────────────────

class TestSocialGroups:
    def test_needs_four_courts(self):
        teams, members = make_teams(12)
        with pytest.raises(GroupSetupError):
            TournamentController.new_social(TOURNAMENT_ID, teams, members, EngineSettings(court_count=3))

    def test_start_places_first_fixtures(self, social):
        groups = social.start_group_stage()
        assert groups == {
            "group1": [1, 2, 3],
            "group2": [4, 5, 6],
            "group3": [7, 8, 9],
            "group4": [10, 11, 12],
        }
        courts = social.state.courts
        assert all(isinstance(slot, GroupMatch) for slot in courts)
        assert [slot.team_ids for slot in courts] == [(1, 2), (4, 5), (7, 8), (10, 11)]
        assert [slot.waiting.id for slot in courts] == [3, 6, 9, 12]
        assert [slot.fixture_number for slot in courts] == [1, 1, 1, 1]

    def test_start_twice(self, social):
        social.start_group_stage()
        with pytest.raises(GroupSetupError):
            social.start_group_stage()

    def test_invalid_custom_groups(self, social):
        with pytest.raises(GroupSetupError):
            social.start_group_stage({"group1": [1, 2, 3]})
        assert social.state.groups == {}

    def test_custom_groups(self, social):
        custom = {"g1": [12, 1, 5], "g2": [2, 3, 4], "g3": [6, 7, 8], "g4": [9, 10, 11]}
        social.start_group_stage(custom)
        assert social.state.courts[0].team_ids == (12, 1)

    def test_rotation_follows_results(self, social):
        social.start_group_stage()
        social.record_result(0, 2, 6)  # 2 beats 1; 1 keeps side A against 3
        slot = social.state.courts[0]
        assert slot.team_ids == (1, 3)
        assert slot.fixture_number == 2
        assert social.advance_group_round("group1") == (1, 3)

        social.record_result(0, 6, 3)
        assert social.state.courts[0].team_ids == (3, 2)

        social.record_result(0, 6, 4)
        assert social.state.courts[0] is None
        assert social.advance_group_round("group1") is None

    def test_group_matches_are_tagged(self, social):
        social.start_group_stage()
        update = social.record_result(1, 6, 2)
        match = update.matches[-1]
        assert match.stage == Stage.GROUP
        assert match.group_id == "group2"
        assert match.court_number == 2
        assert match.tournament_type == TournamentType.SOCIAL

    def test_group_tie_is_allowed(self, social):
        social.start_group_stage()
        social.record_result(0, 3, 3)
        # tied opener: first unplayed pair in group order
        assert social.state.courts[0].team_ids == (1, 3)

    def test_unknown_group(self, social):
        social.start_group_stage()
        with pytest.raises(GroupSetupError):
            social.advance_group_round("group9")
        with pytest.raises(GroupSetupError):
            social.group_standings("group9")

    def test_group_standings_view(self, social):
        social.start_group_stage()
        _play_group(social, 0)
        rows = social.group_standings("group1")
        assert [r.team_id for r in rows][0] == 3
        assert rows[0].wins == 2


class TestSocialBracket:
    def test_semifinals_start_when_all_groups_complete(self, social):
        social.start_group_stage()
        for court_index in range(3):
            _play_group(social, court_index)
        assert social.state.stage == TournamentStage.GROUP

        _play_group(social, 3)
        state = social.state
        assert state.stage == TournamentStage.SEMI
        assert state.qualifiers == [3, 6, 9, 12]
        assert isinstance(state.courts[0], SemifinalMatch)
        assert [state.courts[0].team_ids, state.courts[1].team_ids] == [(3, 6), (9, 12)]
        assert state.courts[2:] == [None, None]

    def test_semifinal_tie_rejected(self, social):
        social.start_group_stage()
        for court_index in range(4):
            _play_group(social, court_index)
        with pytest.raises(InvalidScore):
            social.record_result(0, 5, 5)

    def test_final_starts_after_both_semis(self, social):
        _to_final(social)
        state = social.state
        assert state.stage == TournamentStage.FINAL
        final = state.courts[0]
        assert isinstance(final, FinalMatch)
        assert final.team_ids == (3, 12)
        assert state.courts[1] is None

    def test_final_set_by_set(self, social):
        _to_final(social)
        social.record_final_set(0, 6, 4)
        final = social.record_final_set(0, 3, 6)
        assert final.needs_tiebreak
        with pytest.raises(SetProtocolError):
            social.finalize_final(0)

        social.record_final_tiebreak(0, 7, 5)
        update = social.finalize_final(0)

        final_match = update.matches[-1]
        assert final_match.stage == Stage.FINAL
        assert (final_match.score_a, final_match.score_b) == (9, 10)
        assert final_match.winner_team_id == 3
        assert final_match.set_scores == [(6, 4), (3, 6)]
        assert final_match.tiebreak_score == (7, 5)
        assert update.stage == TournamentStage.COMPLETE
        assert update.courts[0] is None

        state = social.state
        assert state.champion_team_id == 3
        assert len(state.matches) == 15
        by_id = {m.id: m for m in state.members}
        assert by_id[31].tournaments_won == 1
        assert by_id[121].tournaments_won == 0
        # join 20 + two group wins 15 + semifinal 20 + final 30
        assert by_id[31].total_points == 100
        assert social.verify().ok

    def test_final_from_score_string(self, social):
        _to_final(social)
        update = social.record_final_score(0, "6-4 6-3")
        assert update.matches[-1].winner_team_id == 3
        assert update.matches[-1].tiebreak_score is None
        assert update.stage == TournamentStage.COMPLETE

    def test_final_from_score_string_with_tiebreak(self, social):
        _to_final(social)
        update = social.record_final_score(0, "6-4, 2-6, 5-7")
        assert update.matches[-1].winner_team_id == 12

    @pytest.mark.parametrize("score", ["6-4", "garbage", "6-4 6-6"])
    def test_bad_final_score_string(self, social, score):
        _to_final(social)
        with pytest.raises(InvalidScore):
            social.record_final_score(0, score)
        assert social.state.stage == TournamentStage.FINAL
        assert social.state.courts[0].sets == ()

    def test_score_string_after_sets_started(self, social):
        _to_final(social)
        social.record_final_set(0, 6, 4)
        with pytest.raises(SetProtocolError):
            social.record_final_score(0, "6-4 6-3")

    def test_final_is_not_a_single_score(self, social):
        _to_final(social)
        with pytest.raises(SetProtocolError):
            social.record_result(0, 6, 4)

    def test_set_protocol_needs_the_final_court(self, social):
        social.start_group_stage()
        with pytest.raises(SetProtocolError):
            social.record_final_set(0, 6, 4)
        with pytest.raises(NoActiveMatchOnCourt):
            social.record_final_set(9, 6, 4)

    def test_third_place_match(self, clock):
        teams, members = make_teams(12)
        settings = EngineSettings(third_place_match=True)
        controller = TournamentController.new_social(TOURNAMENT_ID, teams, members, settings, clock=clock)
        _to_final(controller)

        third = controller.state.courts[1]
        assert isinstance(third, ThirdPlaceMatch)
        assert third.team_ids == (6, 9)

        controller.record_final_score(0, "6-2 6-2")
        assert controller.state.stage == TournamentStage.FINAL

        controller.record_result(1, 6, 4)
        state = controller.state
        assert state.stage == TournamentStage.COMPLETE
        assert state.matches[-1].stage == Stage.THIRD_PLACE

        summary = controller.summary()
        assert (summary.champion_team_id, summary.runner_up_team_id, summary.third_place_team_id) == (3, 12, 6)


class TestBracketEdits:
    def test_group_edit_that_changes_qualifier(self, social):
        social.start_group_stage()
        for court_index in range(4):
            _play_group(social, court_index)
        # match 3 is group1's decider: 3 beat 1
        with pytest.raises(NotEditable):
            social.edit_result(3, 0, 6)

    def test_group_edit_that_keeps_qualifier(self, social):
        social.start_group_stage()
        for court_index in range(4):
            _play_group(social, court_index)
        social.edit_result(1, 6, 1)
        team_2 = next(t for t in social.state.teams if t.id == 2)
        assert team_2.games_won == 1
        assert social.verify().ok

    def test_group_edit_before_semis_reroutes_fixture(self, social):
        social.start_group_stage()
        social.record_result(0, 6, 0)  # 1 beats 2 -> next is 3 vs 2
        assert social.state.courts[0].team_ids == (3, 2)

        social.edit_result(1, 0, 6)  # now 2 won -> next is 1 vs 3
        assert social.state.courts[0].team_ids == (1, 3)

    def test_semifinal_winner_locked_after_final_setup(self, social):
        _to_final(social)
        semi_1 = next(m for m in social.state.matches if m.stage == Stage.SEMIFINAL and m.semi_number == 1)
        with pytest.raises(NotEditable):
            social.edit_result(semi_1.id, 2, 6)
        social.edit_result(semi_1.id, 6, 4)
        assert social.verify().ok

    def test_final_is_not_editable(self, social):
        _to_final(social)
        update = social.record_final_score(0, "6-4 6-3")
        with pytest.raises(NotEditable):
            social.edit_result(update.matches[-1].id, 3, 6)


class TestSummary:
    def test_summary_after_social_final(self, social):
        _to_final(social)
        social.record_final_score(0, "6-4 6-3")
        summary = social.summary()

        assert summary.stage == TournamentStage.COMPLETE
        assert (summary.champion_team_id, summary.runner_up_team_id) == (3, 12)
        assert summary.third_place_team_id is None
        assert summary.match_count == 15
        assert summary.members[0].member_id in (31, 32)
        assert summary.members[0].won_tournament

        payload = summary.to_dict()
        assert payload["tournament_type"] == "social"
        assert payload["stage"] == "complete"
        assert len(payload["standings"]) == 12
