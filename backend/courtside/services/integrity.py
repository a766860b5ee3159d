"""
Tournament Integrity Verifier
=============================
Read-only consistency check over one TournamentState.

Invariants:
  A) Team aggregates equal the standings fold of the match log
  B) Member counters equal the fold of their own points history
  C) Points entries of this tournament point at matches that exist
  D) No team on two courts, no pairing on two courts
  E) King only: no pairing played twice (reported, not fatal; the scheduler
     repeats a pairing only when nothing unplayed is left)
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from courtside.models.match import TournamentType
from courtside.models.tournament_state import TournamentState
from courtside.services.king_scheduler import validate_assignment
from courtside.services.standings import team_record
from courtside.services.stats_ledger import fold_member_history, member_counters, team_aggregates

TEAM_AGGREGATE_DRIFT = "TEAM_AGGREGATE_DRIFT"
MEMBER_AGGREGATE_DRIFT = "MEMBER_AGGREGATE_DRIFT"
ORPHAN_POINTS_ENTRY = "ORPHAN_POINTS_ENTRY"
REPEAT_MATCHUP = "REPEAT_MATCHUP"

INFORMATIONAL_CODES = frozenset({REPEAT_MATCHUP})


# ─── Data structures ─────────────────────────────────────────────────────

@dataclass
class Violation:
    code: str
    message: str
    match_id: Optional[int] = None
    team_id: Optional[int] = None
    member_id: Optional[int] = None
    court_index: Optional[int] = None
    context: Optional[Dict[str, Any]] = None


@dataclass
class IntegrityStats:
    teams_checked: int = 0
    members_checked: int = 0
    matches_checked: int = 0
    team_drift: int = 0
    member_drift: int = 0
    orphan_entries: int = 0
    court_conflicts: int = 0
    repeat_matchups: int = 0


@dataclass
class IntegrityReport:
    ok: bool
    violations: List[Violation] = field(default_factory=list)
    stats: IntegrityStats = field(default_factory=IntegrityStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "violations": [
                {
                    "code": v.code,
                    "message": v.message,
                    "match_id": v.match_id,
                    "team_id": v.team_id,
                    "member_id": v.member_id,
                    "court_index": v.court_index,
                    "context": v.context,
                }
                for v in self.violations
            ],
            "stats": {
                "teams_checked": self.stats.teams_checked,
                "members_checked": self.stats.members_checked,
                "matches_checked": self.stats.matches_checked,
                "team_drift": self.stats.team_drift,
                "member_drift": self.stats.member_drift,
                "orphan_entries": self.stats.orphan_entries,
                "court_conflicts": self.stats.court_conflicts,
                "repeat_matchups": self.stats.repeat_matchups,
            },
        }


# ─── Invariant A: team aggregates ────────────────────────────────────────

def _check_team_aggregates(state: TournamentState) -> List[Violation]:
    violations = []
    for team in state.teams:
        expected = team_record(team.id, state.matches).record()
        stored = team_aggregates(team)
        if stored != expected:
            violations.append(Violation(
                code=TEAM_AGGREGATE_DRIFT,
                message=f"Team {team.name} aggregates differ from the match log",
                team_id=team.id,
                context={"stored": stored, "expected": expected},
            ))
    return violations


# ─── Invariant B: member counters ────────────────────────────────────────

def _check_member_counters(state: TournamentState) -> List[Violation]:
    violations = []
    for member in state.members:
        expected = fold_member_history(member)
        stored = member_counters(member)
        if stored != expected:
            violations.append(Violation(
                code=MEMBER_AGGREGATE_DRIFT,
                message=f"Member {member.name} counters differ from their points history",
                member_id=member.id,
                context={"stored": stored, "expected": expected},
            ))
    return violations


# ─── Invariant C: orphan points entries ──────────────────────────────────

def _check_orphan_entries(state: TournamentState) -> List[Violation]:
    match_ids = {m.id for m in state.matches}
    violations = []
    for member in state.members:
        for entry in member.points_history:
            if entry.tournament_id != state.tournament_id:
                continue
            ref = entry.match_id if entry.match_id is not None else entry.joined_via_match_id
            if ref is not None and ref not in match_ids:
                violations.append(Violation(
                    code=ORPHAN_POINTS_ENTRY,
                    message=f"Member {member.name} has entry {entry.id} for missing match {ref}",
                    member_id=member.id,
                    match_id=ref,
                ))
    return violations


# ─── Invariant D: court occupancy ────────────────────────────────────────

def _check_courts(state: TournamentState) -> List[Violation]:
    return [
        Violation(
            code=v.code,
            message=v.message,
            team_id=v.team_id,
            court_index=v.court_index,
            context={"other_court_index": v.other_court_index},
        )
        for v in validate_assignment(state.courts)
    ]


# ─── Invariant E: repeat matchups ────────────────────────────────────────

def _check_repeat_matchups(state: TournamentState) -> List[Violation]:
    if state.tournament_type != TournamentType.KING:
        return []
    first_seen: Dict[frozenset, int] = {}
    violations = []
    for match in sorted(state.matches, key=lambda m: m.id):
        if match.pair_key in first_seen:
            violations.append(Violation(
                code=REPEAT_MATCHUP,
                message=f"{match.team_a_name} vs {match.team_b_name} already played in match {first_seen[match.pair_key]}",
                match_id=match.id,
                context={"first_match_id": first_seen[match.pair_key]},
            ))
        else:
            first_seen[match.pair_key] = match.id
    return violations


# ─── Main verifier ────────────────────────────────────────────────────────

def verify_state(state: TournamentState) -> IntegrityReport:
    """
    Run every check. ok is False when any non-informational violation exists.
    """
    team_violations = _check_team_aggregates(state)
    member_violations = _check_member_counters(state)
    orphan_violations = _check_orphan_entries(state)
    court_violations = _check_courts(state)
    repeat_violations = _check_repeat_matchups(state)

    violations = team_violations + member_violations + orphan_violations + court_violations + repeat_violations
    stats = IntegrityStats(
        teams_checked=len(state.teams),
        members_checked=len(state.members),
        matches_checked=len(state.matches),
        team_drift=len(team_violations),
        member_drift=len(member_violations),
        orphan_entries=len(orphan_violations),
        court_conflicts=len(court_violations),
        repeat_matchups=len(repeat_violations),
    )
    ok = all(v.code in INFORMATIONAL_CODES for v in violations)
    return IntegrityReport(ok=ok, violations=violations, stats=stats)
