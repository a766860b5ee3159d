"""
Tournament controller: the single writer of one tournament's state.

Every public operation runs under the controller lock against a deep copy of
the state. The copy is swapped in only after every step succeeded (and the
optional on_commit hook accepted it), so a failed call leaves the tournament
exactly as it was.

Flow:
    record_result -> validate -> duplicate guard -> ledger apply -> court update
    edit_result   -> validate -> bracket guard -> ledger reverse -> edit -> ledger apply
    schedule_next_round (King) -> king_scheduler
    start_group_stage / advance_group_round (Social) -> group_rotation
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

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
from courtside.models.court_state import (
    ActiveMatch,
    CourtSlot,
    FinalMatch,
    GroupMatch,
    KingMatch,
    SemifinalMatch,
    ThirdPlaceMatch,
)
from courtside.models.match import Match, Stage, TournamentType
from courtside.models.member import Member
from courtside.models.team import Team
from courtside.models.tournament_state import TournamentStage, TournamentState
from courtside.services import bracket_progression, group_rotation, king_scheduler
from courtside.services.integrity import IntegrityReport, verify_state
from courtside.services.score_parser import FINAL_SET_COUNT, parse_score
from courtside.services.standings import TeamStanding, TieBreak, compute_standings, group_standings
from courtside.services.stats_ledger import apply_match, reverse_match
from courtside.services.tournament_summary import TournamentSummary, build_tournament_summary

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TournamentUpdate:
    """Snapshot returned by every result-changing operation."""

    teams: List[Team]
    members: List[Member]
    matches: List[Match]
    courts: List[CourtSlot]
    stage: TournamentStage


def duplicate_key(match: Match) -> Tuple:
    """Two matches with the same key would count the same result twice."""
    return (match.stage, match.pair_key, match.group_id, match.semi_number, match.round_number)


def winner_from_scores(team_a_id: int, team_b_id: int, score_a: int, score_b: int) -> Optional[int]:
    if score_a > score_b:
        return team_a_id
    if score_b > score_a:
        return team_b_id
    return None


class TournamentController:
    def __init__(
        self,
        state: TournamentState,
        settings: Optional[EngineSettings] = None,
        *,
        on_commit: Optional[Callable[[TournamentState], None]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._state = state
        self._settings = settings or EngineSettings(court_count=state.court_count)
        if self._settings.court_count != state.court_count:
            raise ValueError(
                f"Settings describe {self._settings.court_count} courts, state has {state.court_count}"
            )
        self._on_commit = on_commit
        self._clock = clock
        self._lock = threading.Lock()

    # ─── Construction ────────────────────────────────────────────────────

    @classmethod
    def new_king(
        cls,
        tournament_id: int,
        teams: Sequence[Team],
        members: Sequence[Member] = (),
        settings: Optional[EngineSettings] = None,
        **kwargs,
    ) -> "TournamentController":
        settings = settings or EngineSettings()
        state = TournamentState(
            tournament_id=tournament_id,
            tournament_type=TournamentType.KING,
            court_count=settings.court_count,
            teams=[t.model_copy(deep=True) for t in teams],
            members=[m.model_copy(deep=True) for m in members],
            stage=TournamentStage.OPEN,
        )
        return cls(state, settings, **kwargs)

    @classmethod
    def new_social(
        cls,
        tournament_id: int,
        teams: Sequence[Team],
        members: Sequence[Member] = (),
        settings: Optional[EngineSettings] = None,
        **kwargs,
    ) -> "TournamentController":
        settings = settings or EngineSettings()
        if settings.court_count < bracket_progression.QUALIFIER_COUNT:
            raise GroupSetupError(
                f"Social format plays {bracket_progression.QUALIFIER_COUNT} groups at once, "
                f"only {settings.court_count} courts configured"
            )
        state = TournamentState(
            tournament_id=tournament_id,
            tournament_type=TournamentType.SOCIAL,
            court_count=settings.court_count,
            teams=[t.model_copy(deep=True) for t in teams],
            members=[m.model_copy(deep=True) for m in members],
            stage=TournamentStage.GROUP,
        )
        return cls(state, settings, **kwargs)

    # ─── Plumbing ────────────────────────────────────────────────────────

    @property
    def state(self) -> TournamentState:
        with self._lock:
            return self._state.copy()

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def _mutate(self, operation: Callable[[TournamentState], T]) -> T:
        with self._lock:
            working = self._state.copy()
            result = operation(working)
            self._commit(working)
            return result

    def _commit(self, working: TournamentState) -> None:
        """Swap in a fully built state. Caller holds the lock."""
        if self._on_commit is not None:
            self._on_commit(working.copy())
        self._state = working

    def _read(self, view: Callable[[TournamentState], T]) -> T:
        with self._lock:
            return view(self._state)

    @staticmethod
    def _update(state: TournamentState) -> TournamentUpdate:
        snapshot = state.copy()
        return TournamentUpdate(
            teams=snapshot.teams,
            members=snapshot.members,
            matches=snapshot.matches,
            courts=snapshot.courts,
            stage=snapshot.stage,
        )

    def _require_type(self, state: TournamentState, tournament_type: TournamentType, operation: str) -> None:
        if state.tournament_type != tournament_type:
            raise EngineConflictError(
                f"{operation} is only available in {tournament_type.value} tournaments"
            )

    def _active_slot(self, state: TournamentState, court_index: int) -> ActiveMatch:
        if not 0 <= court_index < state.court_count:
            raise NoActiveMatchOnCourt(f"Court index {court_index} is out of range (0..{state.court_count - 1})")
        slot = state.courts[court_index]
        if slot is None:
            raise NoActiveMatchOnCourt(f"No match in progress on court {self._settings.court_label(court_index)}")
        return slot

    def _final_slot(self, state: TournamentState, court_index: int) -> FinalMatch:
        slot = self._active_slot(state, court_index)
        if not isinstance(slot, FinalMatch):
            raise SetProtocolError(f"Court {self._settings.court_label(court_index)} is not playing the final")
        return slot

    # ─── King format ─────────────────────────────────────────────────────

    def schedule_next_round(self) -> king_scheduler.ScheduleResult:
        """
        Assign the next King round to the courts.

        An exhausted result (fewer than 2 eligible teams) changes nothing and
        is returned for the caller to surface as "cannot schedule".
        """
        with self._lock:
            working = self._state.copy()
            self._require_type(working, TournamentType.KING, "schedule_next_round")
            result = king_scheduler.schedule_next_round(
                working.teams,
                working.matches,
                working.courts,
                working.court_winners,
                court_count=working.court_count,
                round_number=working.round_number + 1,
                started_at=self._clock(),
                max_matches_per_team=self._settings.king_max_matches,
                search_budget=self._settings.search_budget,
            )
            if result.exhausted:
                return result

            working.courts = list(result.courts)
            working.court_winners = dict(result.court_winners)
            working.round_number += 1
            self._commit(working)
            return result

    def matchups(self) -> List[king_scheduler.Matchup]:
        return self._read(lambda s: king_scheduler.matchup_schedule(
            s.teams, s.matches, self._settings.king_max_matches
        ))

    # ─── Social format: groups ───────────────────────────────────────────

    def start_group_stage(self, groups: Optional[Dict[str, List[int]]] = None) -> Dict[str, List[int]]:
        """
        Assign groups (in team order unless given) and put each group's first
        fixture on its court: the i-th group plays on court i.
        """
        def start(state: TournamentState) -> Dict[str, List[int]]:
            self._require_type(state, TournamentType.SOCIAL, "start_group_stage")
            if state.stage != TournamentStage.GROUP or state.groups:
                raise GroupSetupError("The group stage has already started")

            group_count = bracket_progression.QUALIFIER_COUNT
            assignment = (
                group_rotation.assign_groups([t.id for t in state.teams], group_count)
                if groups is None
                else {group_id: list(team_ids) for group_id, team_ids in groups.items()}
            )
            group_rotation.validate_groups(assignment, [t.id for t in state.teams], group_count)

            state.groups = assignment
            started_at = self._clock()
            for group_id in assignment:
                self._place_group_fixture(state, group_id, started_at)
            logger.info("Tournament %d: group stage started with %d groups", state.tournament_id, len(assignment))
            return {group_id: list(team_ids) for group_id, team_ids in assignment.items()}

        return self._mutate(start)

    def advance_group_round(self, group_id: str) -> Optional[Tuple[int, int]]:
        """
        Next pairing of a group, or None once it is complete. When the group's
        court is free the pairing is also put on it.
        """
        def advance(state: TournamentState) -> Optional[Tuple[int, int]]:
            self._require_type(state, TournamentType.SOCIAL, "advance_group_round")
            if group_id not in state.groups:
                raise GroupSetupError(f"Unknown group {group_id}")
            court_index = self._group_court(state, group_id)
            if state.stage == TournamentStage.GROUP and state.courts[court_index] is None:
                self._place_group_fixture(state, group_id, self._clock())
            team_ids = state.groups[group_id]
            return group_rotation.next_group_pairing(team_ids, self._group_matches(state, group_id))

        return self._mutate(advance)

    @staticmethod
    def _group_court(state: TournamentState, group_id: str) -> int:
        return list(state.groups).index(group_id)

    @staticmethod
    def _group_matches(state: TournamentState, group_id: str) -> List[Match]:
        return [m for m in state.matches if m.group_id == group_id]

    def _place_group_fixture(self, state: TournamentState, group_id: str, started_at: datetime) -> None:
        """Put the group's next fixture on its court, keeping an identical fixture already there."""
        court_index = self._group_court(state, group_id)
        team_ids = state.groups[group_id]
        played = self._group_matches(state, group_id)
        pairing = group_rotation.next_group_pairing(team_ids, played)
        current = state.courts[court_index]

        if pairing is None:
            state.courts[court_index] = None
            return
        if isinstance(current, GroupMatch) and current.group_id == group_id and current.team_ids == pairing:
            return
        state.courts[court_index] = GroupMatch(
            court_index=court_index,
            team_a=state.team_ref(pairing[0]),
            team_b=state.team_ref(pairing[1]),
            started_at=started_at,
            group_id=group_id,
            waiting=state.team_ref(group_rotation.waiting_team(team_ids, pairing)),
            fixture_number=len(played) + 1,
        )

    # ─── Recording ───────────────────────────────────────────────────────

    def record_result(self, court_index: int, score_a: int, score_b: int) -> TournamentUpdate:
        """
        Record the single-score result of the match on a court.

        Raises:
            NoActiveMatchOnCourt: court out of range or empty
            SetProtocolError: the court holds the final (record it set by set)
            InvalidScore: out of range, or a tie in a knockout stage
            DuplicateMatch: an equivalent match is already recorded
        """
        def record(state: TournamentState) -> TournamentUpdate:
            slot = self._active_slot(state, court_index)
            if isinstance(slot, FinalMatch):
                raise SetProtocolError("The final is recorded set by set, not as a single score")
            bracket_progression.validate_score(slot.stage, score_a, score_b, self._settings.max_games)

            match = self._new_match(
                state, slot, score_a, score_b,
                winner_from_scores(slot.team_a.id, slot.team_b.id, score_a, score_b),
            )
            self._append_match(state, match)
            self._advance_court(state, slot, match)
            logger.info(
                "Tournament %d: %s %d-%d %s recorded on court %s (%s)",
                state.tournament_id, match.team_a_name, score_a, score_b,
                match.team_b_name, self._settings.court_label(court_index), match.stage.value,
            )
            return self._update(state)

        return self._mutate(record)

    def _new_match(
        self,
        state: TournamentState,
        slot: ActiveMatch,
        score_a: int,
        score_b: int,
        winner_team_id: Optional[int],
        set_scores: Optional[List[Tuple[int, int]]] = None,
        tiebreak_score: Optional[Tuple[int, int]] = None,
    ) -> Match:
        return Match(
            id=state.next_match_id,
            tournament_id=state.tournament_id,
            tournament_type=state.tournament_type,
            team_a_id=slot.team_a.id,
            team_a_name=slot.team_a.name,
            team_b_id=slot.team_b.id,
            team_b_name=slot.team_b.name,
            score_a=score_a,
            score_b=score_b,
            winner_team_id=winner_team_id,
            court_number=slot.court_number,
            stage=slot.stage,
            group_id=slot.group_id if isinstance(slot, GroupMatch) else None,
            semi_number=slot.semi_number if isinstance(slot, SemifinalMatch) else None,
            round_number=slot.round_number if isinstance(slot, KingMatch) else None,
            set_scores=set_scores or [],
            tiebreak_score=tiebreak_score,
            created_at=self._clock(),
        )

    def _append_match(self, state: TournamentState, match: Match) -> None:
        key = duplicate_key(match)
        for existing in state.matches:
            if duplicate_key(existing) == key:
                raise DuplicateMatch(
                    f"{match.team_a_name} vs {match.team_b_name} ({match.stage.value}) "
                    f"is already recorded as match {existing.id}"
                )
        state.matches.append(match)
        state.next_match_id += 1
        state.teams, state.members = apply_match(match, state.teams, state.members, self._settings)

    def _advance_court(self, state: TournamentState, slot: ActiveMatch, match: Match) -> None:
        court_index = slot.court_index
        if isinstance(slot, KingMatch):
            state.courts[court_index] = None
            if match.winner_team_id is None:
                state.court_winners.pop(court_index, None)
            else:
                state.court_winners[court_index] = match.winner_team_id
        elif isinstance(slot, GroupMatch):
            self._place_group_fixture(state, slot.group_id, self._clock())
            self._maybe_start_semifinals(state)
        elif isinstance(slot, SemifinalMatch):
            state.courts[court_index] = None
            self._maybe_start_final(state)
        elif isinstance(slot, ThirdPlaceMatch):
            state.courts[court_index] = None
            self._maybe_complete(state)

    def _maybe_start_semifinals(self, state: TournamentState) -> None:
        if state.stage != TournamentStage.GROUP:
            return
        qualifiers = bracket_progression.collect_qualifiers(state.teams, state.groups, state.matches)
        if qualifiers is None:
            return
        state.qualifiers = qualifiers
        for slot in bracket_progression.setup_semifinals([state.team_ref(t) for t in qualifiers], self._clock()):
            state.courts[slot.court_index] = slot
        state.stage = TournamentStage.SEMI
        logger.info("Tournament %d: groups complete, semifinals set up for %s", state.tournament_id, qualifiers)

    def _maybe_start_final(self, state: TournamentState) -> None:
        if state.stage != TournamentStage.SEMI:
            return
        results = bracket_progression.semifinal_results(state.matches)
        if results is None:
            return
        refs = {team.id: state.team_ref(team.id) for team in state.teams}
        for slot in bracket_progression.setup_final(
            results, refs, self._clock(), third_place_match=self._settings.third_place_match
        ):
            state.courts[slot.court_index] = slot
        state.stage = TournamentStage.FINAL
        logger.info("Tournament %d: final set up", state.tournament_id)

    @staticmethod
    def _maybe_complete(state: TournamentState) -> None:
        if state.champion_team_id is None:
            return
        if any(isinstance(slot, ThirdPlaceMatch) for slot in state.courts):
            return
        state.stage = TournamentStage.COMPLETE
        logger.info("Tournament %d complete, champion team %d", state.tournament_id, state.champion_team_id)

    # ─── Final set protocol ──────────────────────────────────────────────

    def record_final_set(self, court_index: int, games_a: int, games_b: int) -> FinalMatch:
        def record(state: TournamentState) -> FinalMatch:
            final = bracket_progression.add_final_set(
                self._final_slot(state, court_index), games_a, games_b, self._settings.max_set_games
            )
            state.courts[court_index] = final
            logger.info("Tournament %d: final set %d recorded %d-%d", state.tournament_id, len(final.sets), games_a, games_b)
            return final

        return self._mutate(record)

    def record_final_tiebreak(self, court_index: int, points_a: int, points_b: int) -> FinalMatch:
        def record(state: TournamentState) -> FinalMatch:
            final = bracket_progression.add_final_tiebreak(self._final_slot(state, court_index), points_a, points_b)
            state.courts[court_index] = final
            logger.info("Tournament %d: final tiebreak recorded %d-%d", state.tournament_id, points_a, points_b)
            return final

        return self._mutate(record)

    def finalize_final(self, court_index: int) -> TournamentUpdate:
        """Fold the recorded sets into one final Match, credit the champion and complete the tournament."""
        def finalize(state: TournamentState) -> TournamentUpdate:
            self._finalize(state, court_index)
            return self._update(state)

        return self._mutate(finalize)

    def record_final_score(self, court_index: int, score: str) -> TournamentUpdate:
        """
        Record a whole final from a score string such as "6-4 6-3" or "6-4 3-6 10-8".
        Equivalent to the set-by-set protocol run in one step.
        """
        def record(state: TournamentState) -> TournamentUpdate:
            final = self._final_slot(state, court_index)
            if final.sets:
                raise SetProtocolError("Sets are already being recorded for this final")
            parsed = parse_score(score)
            if parsed is None or len(parsed.sets) != FINAL_SET_COUNT:
                raise InvalidScore(f"Cannot read a two-set final score from {score!r}")

            for games_a, games_b in parsed.sets:
                final = bracket_progression.add_final_set(final, games_a, games_b, self._settings.max_set_games)
            if parsed.tiebreak is not None:
                final = bracket_progression.add_final_tiebreak(final, *parsed.tiebreak)
            state.courts[court_index] = final
            self._finalize(state, court_index)
            return self._update(state)

        return self._mutate(record)

    def _finalize(self, state: TournamentState, court_index: int) -> None:
        final = self._final_slot(state, court_index)
        outcome = bracket_progression.resolve_final(final)
        match = self._new_match(
            state, final, outcome.score_a, outcome.score_b, outcome.winner_team_id,
            set_scores=outcome.set_scores, tiebreak_score=outcome.tiebreak_score,
        )
        self._append_match(state, match)
        state.courts[court_index] = None
        state.champion_team_id = outcome.winner_team_id
        logger.info(
            "Tournament %d: final won by %s (sets %s, tiebreak %s)",
            state.tournament_id, state.team_ref(outcome.winner_team_id).name,
            outcome.set_scores, outcome.tiebreak_score,
        )
        self._maybe_complete(state)

    # ─── Editing ─────────────────────────────────────────────────────────

    def edit_result(self, match_id: int, score_a: int, score_b: int) -> TournamentUpdate:
        """
        Replace the score of a recorded match: ledger reverse, edit, ledger apply.

        Raises:
            MatchNotFound: no match with that id
            NotEditable: final match, or the edit would change a team already
                advanced into the bracket
            InvalidScore: out of range, or a tie in a knockout stage
        """
        def edit(state: TournamentState) -> TournamentUpdate:
            index = next((i for i, m in enumerate(state.matches) if m.id == match_id), None)
            if index is None:
                raise MatchNotFound(f"Match {match_id} not found")
            old = state.matches[index]
            if old.stage == Stage.FINAL:
                raise NotEditable("The final is recorded set by set and cannot be edited here")
            bracket_progression.validate_score(old.stage, score_a, score_b, self._settings.max_games)

            edited = old.model_copy(update={
                "score_a": score_a,
                "score_b": score_b,
                "winner_team_id": winner_from_scores(old.team_a_id, old.team_b_id, score_a, score_b),
            })
            self._guard_bracket(state, old, edited, index)

            teams, members = reverse_match(old, state.teams, state.members)
            state.matches[index] = edited
            state.teams, state.members = apply_match(edited, teams, members, self._settings)
            self._rederive_court(state, old, edited)

            logger.info(
                "Tournament %d: match %d edited %d-%d -> %d-%d",
                state.tournament_id, match_id, old.score_a, old.score_b, score_a, score_b,
            )
            return self._update(state)

        return self._mutate(edit)

    def _guard_bracket(self, state: TournamentState, old: Match, edited: Match, index: int) -> None:
        if old.stage == Stage.GROUP and state.stage != TournamentStage.GROUP:
            team_ids = state.groups.get(old.group_id, [])
            after = list(state.matches)
            after[index] = edited
            before_q = bracket_progression.group_qualifier(state.teams, team_ids, state.matches, old.group_id)
            after_q = bracket_progression.group_qualifier(state.teams, team_ids, after, old.group_id)
            if before_q != after_q:
                raise NotEditable(
                    f"Editing match {old.id} would change the qualifier of {old.group_id} "
                    f"after the semifinals were set up"
                )
        if old.stage == Stage.SEMIFINAL and state.stage in (TournamentStage.FINAL, TournamentStage.COMPLETE):
            if old.winner_team_id != edited.winner_team_id:
                raise NotEditable(
                    f"Editing match {old.id} would change a semifinal winner after the final was set up"
                )

    def _rederive_court(self, state: TournamentState, old: Match, edited: Match) -> None:
        if old.stage == Stage.GROUP and state.stage == TournamentStage.GROUP:
            self._place_group_fixture(state, old.group_id, self._clock())
            self._maybe_start_semifinals(state)
            return
        if old.stage != Stage.OPEN_ROUND:
            return

        court_index = old.court_number - 1
        latest = max(
            (m.id for m in state.matches if m.stage == Stage.OPEN_ROUND and m.court_number == old.court_number),
            default=None,
        )
        # Only the last result on a court that has not been re-scheduled owns its pin
        if latest != old.id or state.courts[court_index] is not None:
            return
        if edited.winner_team_id is None:
            state.court_winners.pop(court_index, None)
        else:
            state.court_winners[court_index] = edited.winner_team_id

    # ─── Views ───────────────────────────────────────────────────────────

    def standings(self, tie_break: TieBreak = TieBreak.GAMES_WON) -> List[TeamStanding]:
        return self._read(lambda s: compute_standings(s.teams, s.matches, tie_break=tie_break))

    def group_standings(self, group_id: str) -> List[TeamStanding]:
        def view(state: TournamentState) -> List[TeamStanding]:
            if group_id not in state.groups:
                raise GroupSetupError(f"Unknown group {group_id}")
            return group_standings(state.teams, state.matches, group_id, team_ids=state.groups[group_id])

        return self._read(view)

    def verify(self) -> IntegrityReport:
        return self._read(verify_state)

    def summary(self) -> TournamentSummary:
        return self._read(build_tournament_summary)
