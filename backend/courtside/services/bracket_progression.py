"""
Social bracket progression: group winners -> semifinals -> final.

Qualifier of a group = rank 0 of its group standings (wins desc, games diff
desc) once the group has its three matches. Semifinals pair qualifiers
(0 vs 1) and (2 vs 3); the final pairs the two semifinal winners, with an
optional third-place match between the losers.

The final is not a single score. It is recorded set by set:
    set 1 -> set 2 -> tiebreak (only when sets split 1-1) -> finalize
and folds into one Match whose score_a/score_b are the games of the two sets.
"""
import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from courtside.errors import GroupSetupError, InvalidScore, SetProtocolError
from courtside.models.court_state import CourtMatch, FinalMatch, SemifinalMatch, TeamRef, ThirdPlaceMatch
from courtside.models.match import Match, Stage
from courtside.models.team import Team
from courtside.services.group_rotation import GROUP_MATCH_COUNT
from courtside.services.standings import group_standings

SEMIFINAL_COUNT = 2
QUALIFIER_COUNT = 4
FINAL_COURT_INDEX = 0
THIRD_PLACE_COURT_INDEX = 1

# Stages where a tie cannot be recorded
NO_TIE_STAGES = frozenset({Stage.SEMIFINAL, Stage.THIRD_PLACE, Stage.FINAL})


@dataclass
class FinalOutcome:
    winner_team_id: int
    loser_team_id: int
    score_a: int
    score_b: int
    set_scores: List[Tuple[int, int]]
    tiebreak_score: Optional[Tuple[int, int]]


# ─── Score rules ─────────────────────────────────────────────────────────

def _check_games(value, limit: Optional[int], label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidScore(f"{label} must be a whole number, got {value!r}")
    if value < 0:
        raise InvalidScore(f"{label} cannot be negative, got {value}")
    if limit is not None and value > limit:
        raise InvalidScore(f"{label} cannot exceed {limit}, got {value}")


def validate_score(stage: Stage, score_a, score_b, max_games: int) -> None:
    """Single-score rules: whole numbers in 0..max_games; no tie in knockout stages."""
    _check_games(score_a, max_games, "Score A")
    _check_games(score_b, max_games, "Score B")
    if stage in NO_TIE_STAGES and score_a == score_b:
        raise InvalidScore(f"A {stage.value.replace('_', ' ')} match cannot end in a tie ({score_a}-{score_b})")


# ─── Groups -> semifinals ────────────────────────────────────────────────

def group_is_complete(matches: Sequence[Match], group_id: str) -> bool:
    return sum(1 for m in matches if m.group_id == group_id) >= GROUP_MATCH_COUNT


def group_qualifier(
    teams: Sequence[Team],
    team_ids: Sequence[int],
    matches: Sequence[Match],
    group_id: str,
) -> Optional[int]:
    """Rank-0 team of a completed group, or None while the group is still playing."""
    if not group_is_complete(matches, group_id):
        return None
    rows = group_standings(teams, matches, group_id, team_ids=team_ids)
    return rows[0].team_id if rows else None


def collect_qualifiers(
    teams: Sequence[Team],
    groups: Dict[str, List[int]],
    matches: Sequence[Match],
) -> Optional[List[int]]:
    """Qualifiers in group order once every group is complete, else None."""
    qualifiers: List[int] = []
    for group_id, team_ids in groups.items():
        qualifier = group_qualifier(teams, team_ids, matches, group_id)
        if qualifier is None:
            return None
        qualifiers.append(qualifier)
    return qualifiers


def setup_semifinals(qualifiers: Sequence[TeamRef], started_at: datetime) -> List[SemifinalMatch]:
    """Semi 1 (q0 vs q1) on court 1, semi 2 (q2 vs q3) on court 2."""
    if len(qualifiers) != QUALIFIER_COUNT:
        raise GroupSetupError(f"Semifinals need exactly {QUALIFIER_COUNT} qualifiers, got {len(qualifiers)}")
    return [
        SemifinalMatch(
            court_index=i,
            team_a=qualifiers[2 * i],
            team_b=qualifiers[2 * i + 1],
            started_at=started_at,
            semi_number=i + 1,
        )
        for i in range(SEMIFINAL_COUNT)
    ]


# ─── Semifinals -> final ─────────────────────────────────────────────────

def semifinal_results(matches: Sequence[Match]) -> Optional[List[Tuple[int, int]]]:
    """
    [(winner, loser) of semi 1, (winner, loser) of semi 2] once both semifinals
    have a decisive result, else None.
    """
    decided: Dict[int, Tuple[int, int]] = {}
    for match in sorted(matches, key=lambda m: m.id):
        if match.stage != Stage.SEMIFINAL or match.winner_team_id is None:
            continue
        decided[match.semi_number] = (match.winner_team_id, match.loser_team_id())
    if any(n not in decided for n in range(1, SEMIFINAL_COUNT + 1)):
        return None
    return [decided[n] for n in range(1, SEMIFINAL_COUNT + 1)]


def setup_final(
    results: Sequence[Tuple[int, int]],
    refs: Dict[int, TeamRef],
    started_at: datetime,
    third_place_match: bool = False,
) -> List[CourtMatch]:
    """Final between the semifinal winners; optionally a third-place match between the losers."""
    (winner_1, loser_1), (winner_2, loser_2) = results
    slots: List[CourtMatch] = [
        FinalMatch(
            court_index=FINAL_COURT_INDEX,
            team_a=refs[winner_1],
            team_b=refs[winner_2],
            started_at=started_at,
        )
    ]
    if third_place_match:
        slots.append(ThirdPlaceMatch(
            court_index=THIRD_PLACE_COURT_INDEX,
            team_a=refs[loser_1],
            team_b=refs[loser_2],
            started_at=started_at,
        ))
    return slots


# ─── Final set protocol ──────────────────────────────────────────────────

def add_final_set(final: FinalMatch, games_a, games_b, max_set_games: int) -> FinalMatch:
    """Record the next scoring set. Only two scoring sets exist; a set cannot be tied."""
    if len(final.sets) >= 2:
        raise SetProtocolError("Both sets of the final are already recorded")
    _check_games(games_a, max_set_games, "Set games A")
    _check_games(games_b, max_set_games, "Set games B")
    if games_a == games_b:
        raise InvalidScore(f"A set cannot be tied ({games_a}-{games_b})")
    return dataclasses.replace(final, sets=final.sets + ((games_a, games_b),))


def add_final_tiebreak(final: FinalMatch, points_a, points_b) -> FinalMatch:
    """Record the deciding tiebreak. Only allowed when the two sets are split 1-1."""
    if len(final.sets) < 2:
        raise SetProtocolError("The tiebreak comes after both sets are recorded")
    if not final.needs_tiebreak:
        raise SetProtocolError("No tiebreak needed: one team won both sets")
    if final.tiebreak is not None:
        raise SetProtocolError("The tiebreak is already recorded")
    _check_games(points_a, None, "Tiebreak A")
    _check_games(points_b, None, "Tiebreak B")
    if points_a == points_b:
        raise InvalidScore(f"A tiebreak cannot be tied ({points_a}-{points_b})")
    return dataclasses.replace(final, tiebreak=(points_a, points_b))


def resolve_final(final: FinalMatch) -> FinalOutcome:
    """
    Winner from set wins (the tiebreak decides a 1-1 split).

    Raises SetProtocolError while sets or a needed tiebreak are missing.
    """
    if len(final.sets) < 2:
        raise SetProtocolError(f"Final has {len(final.sets)} of 2 sets recorded")
    if final.needs_tiebreak and final.tiebreak is None:
        raise SetProtocolError("Sets are split 1-1: record the tiebreak before finalizing")

    sets_a, sets_b = final.set_wins()
    if sets_a == sets_b:
        a_won = final.tiebreak[0] > final.tiebreak[1]
    else:
        a_won = sets_a > sets_b

    winner, loser = (final.team_a.id, final.team_b.id) if a_won else (final.team_b.id, final.team_a.id)
    return FinalOutcome(
        winner_team_id=winner,
        loser_team_id=loser,
        score_a=sum(a for a, _ in final.sets),
        score_b=sum(b for _, b in final.sets),
        set_scores=[tuple(s) for s in final.sets],
        tiebreak_score=final.tiebreak if final.needs_tiebreak else None,
    )
