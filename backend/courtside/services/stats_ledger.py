"""
Stats ledger: apply and exactly reverse the statistical effects of one match.

apply_match(match, teams, members)   -> (teams', members')
reverse_match(match, teams, members) -> (teams', members')

Both are pure: inputs are copied, never mutated.

Guarantees:
    - reverse_match(apply_match(S, m), m) == S
    - apply_match(reverse_match(apply_match(S, m), m), m) == apply_match(S, m)
    - Team aggregates equal the standings fold of the match log
    - Member counters equal fold_member_history(points_history)

Every entry a match produces carries a deterministic id and the match's
created_at as timestamp, and is tied back to the match (match_id, or
joined_via_match_id for the tournament-join bonus) together with its
tournament id, since match ids restart in every tournament. Reversal removes
exactly those entries and restores last_tournament_id from the join entry.
Applying a match twice raises DuplicateMatch.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from courtside.config import EngineSettings
from courtside.errors import DuplicateMatch
from courtside.models.match import Match, Stage
from courtside.models.member import EntryKind, Member, Outcome, PointsEntry
from courtside.models.team import Team

logger = logging.getLogger(__name__)

_KIND_RANK = {EntryKind.TOURNAMENT_JOIN: 0, EntryKind.MATCH: 1, EntryKind.TOURNAMENT_WIN: 2}

_TEAM_FIELDS = ("matches_played", "wins", "losses", "draws", "games_won", "games_lost")


@dataclass
class MemberTournamentStats:
    member_id: int
    tournament_id: int
    matches: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    points: int = 0
    joined: bool = False
    won_tournament: bool = False


def entry_id(tournament_id: int, match_id: int, member_id: int, kind: EntryKind) -> str:
    return f"t{tournament_id}:m{match_id}:{member_id}:{kind.value}"


def outcome_for(match: Match, team_id: int) -> Outcome:
    if match.winner_team_id is None:
        return Outcome.DRAW
    return Outcome.WIN if match.winner_team_id == team_id else Outcome.LOSS


def _entry_order(entry: PointsEntry) -> Tuple[int, int]:
    ref = entry.match_id if entry.match_id is not None else entry.joined_via_match_id
    return (ref if ref is not None else 0, _KIND_RANK[entry.kind])


def _insert_in_order(history: List[PointsEntry], entry: PointsEntry) -> None:
    """
    Insert before the first entry of the same tournament that sorts after
    `entry`, else append. Existing order is untouched.
    """
    key = _entry_order(entry)
    for index, existing in enumerate(history):
        if existing.tournament_id == entry.tournament_id and _entry_order(existing) > key:
            history.insert(index, entry)
            return
    history.append(entry)


def _team_deltas(match: Match, team_id: int) -> Dict[str, int]:
    won, lost = match.games_for(team_id)
    outcome = outcome_for(match, team_id)
    return {
        "matches_played": 1,
        "wins": 1 if outcome == Outcome.WIN else 0,
        "losses": 1 if outcome == Outcome.LOSS else 0,
        "draws": 1 if outcome == Outcome.DRAW else 0,
        "games_won": won,
        "games_lost": lost,
    }


def _rosters(match: Match, teams: Sequence[Team]) -> List[Tuple[int, int]]:
    """(member_id, team_id) for both sides, each member once."""
    by_id = {team.id: team for team in teams}
    seen: Set[int] = set()
    roster: List[Tuple[int, int]] = []
    for team_id in match.team_ids:
        team = by_id.get(team_id)
        if team is None:
            continue
        for member_id in team.member_ids:
            if member_id not in seen:
                seen.add(member_id)
                roster.append((member_id, team_id))
    return roster


# ─── Apply ───────────────────────────────────────────────────────────────

def apply_match(
    match: Match,
    teams: Sequence[Team],
    members: Sequence[Member],
    settings: Optional[EngineSettings] = None,
) -> Tuple[List[Team], List[Member]]:
    """
    Fold one recorded match into team aggregates and member points.

    Rosters are the current member_ids of both teams. Each member gets a
    tournament-join entry the first time they play in match.tournament_id,
    then a match entry (stage win bonus, or 0 for a loss/draw). A final's
    winning roster also gets a tournament-win entry.
    """
    settings = settings or EngineSettings()
    new_teams = [team.model_copy(deep=True) for team in teams]
    new_members = [member.model_copy(deep=True) for member in members]

    for team in new_teams:
        if team.id in match.team_ids:
            for name, delta in _team_deltas(match, team.id).items():
                setattr(team, name, getattr(team, name) + delta)

    members_by_id = {member.id: member for member in new_members}
    for member_id, team_id in _rosters(match, new_teams):
        member = members_by_id.get(member_id)
        if member is None:
            logger.warning("Match %d: roster member %d of team %d does not exist, skipped", match.id, member_id, team_id)
            continue
        if any(entry.belongs_to_match(match.id, match.tournament_id) for entry in member.points_history):
            raise DuplicateMatch(
                f"Match {match.id} of tournament {match.tournament_id} is already applied for member {member_id}"
            )
        _apply_member(member, match, team_id, settings)

    return new_teams, new_members


def _apply_member(member: Member, match: Match, team_id: int, settings: EngineSettings) -> None:
    if member.last_tournament_id != match.tournament_id:
        join = PointsEntry(
            id=entry_id(match.tournament_id, match.id, member.id, EntryKind.TOURNAMENT_JOIN),
            kind=EntryKind.TOURNAMENT_JOIN,
            points=settings.join_points,
            stage=match.stage,
            tournament_id=match.tournament_id,
            tournament_type=match.tournament_type,
            timestamp=match.created_at,
            joined_via_match_id=match.id,
            previous_tournament_id=member.last_tournament_id,
        )
        _insert_in_order(member.points_history, join)
        member.tournaments_played += 1
        member.total_points += join.points
        member.last_tournament_id = match.tournament_id

    outcome = outcome_for(match, team_id)
    points = settings.win_points(match.stage) if outcome == Outcome.WIN else 0
    _insert_in_order(member.points_history, PointsEntry(
        id=entry_id(match.tournament_id, match.id, member.id, EntryKind.MATCH),
        kind=EntryKind.MATCH,
        match_id=match.id,
        points=points,
        outcome=outcome,
        stage=match.stage,
        tournament_id=match.tournament_id,
        tournament_type=match.tournament_type,
        timestamp=match.created_at,
    ))
    member.total_games += 1
    member.total_points += points
    if outcome == Outcome.WIN:
        member.total_wins += 1
    elif outcome == Outcome.LOSS:
        member.total_losses += 1
    else:
        member.total_draws += 1

    if match.stage == Stage.FINAL and outcome == Outcome.WIN:
        _insert_in_order(member.points_history, PointsEntry(
            id=entry_id(match.tournament_id, match.id, member.id, EntryKind.TOURNAMENT_WIN),
            kind=EntryKind.TOURNAMENT_WIN,
            match_id=match.id,
            points=0,
            stage=match.stage,
            tournament_id=match.tournament_id,
            tournament_type=match.tournament_type,
            timestamp=match.created_at,
        ))
        member.tournaments_won += 1


# ─── Reverse ─────────────────────────────────────────────────────────────

def reverse_match(
    match: Match,
    teams: Sequence[Team],
    members: Sequence[Member],
) -> Tuple[List[Team], List[Member]]:
    """
    Exact inverse of apply_match for the same match.

    Team fields are decremented by the same deltas (clamped at 0). Every
    member entry tied to the match is removed, whatever team the member is
    on now, and the member counters drop by what those entries contributed.
    """
    new_teams = [team.model_copy(deep=True) for team in teams]
    new_members = [member.model_copy(deep=True) for member in members]

    for team in new_teams:
        if team.id in match.team_ids:
            for name, delta in _team_deltas(match, team.id).items():
                setattr(team, name, max(0, getattr(team, name) - delta))

    for member in new_members:
        removed = [e for e in member.points_history if e.belongs_to_match(match.id, match.tournament_id)]
        if not removed:
            continue
        removed_ids = {e.id for e in removed}
        member.points_history = [e for e in member.points_history if e.id not in removed_ids]
        for entry in removed:
            _reverse_entry(member, entry)

    return new_teams, new_members


def _reverse_entry(member: Member, entry: PointsEntry) -> None:
    member.total_points = max(0, member.total_points - entry.points)
    if entry.kind == EntryKind.TOURNAMENT_JOIN:
        member.tournaments_played = max(0, member.tournaments_played - 1)
        if member.last_tournament_id == entry.tournament_id:
            member.last_tournament_id = entry.previous_tournament_id
    elif entry.kind == EntryKind.TOURNAMENT_WIN:
        member.tournaments_won = max(0, member.tournaments_won - 1)
    else:
        member.total_games = max(0, member.total_games - 1)
        if entry.outcome == Outcome.WIN:
            member.total_wins = max(0, member.total_wins - 1)
        elif entry.outcome == Outcome.LOSS:
            member.total_losses = max(0, member.total_losses - 1)
        elif entry.outcome == Outcome.DRAW:
            member.total_draws = max(0, member.total_draws - 1)


# ─── Folds ───────────────────────────────────────────────────────────────

def fold_member_history(member: Member) -> Dict[str, int]:
    """Member counters recomputed from points_history alone."""
    totals = {
        "total_games": 0,
        "total_wins": 0,
        "total_losses": 0,
        "total_draws": 0,
        "total_points": 0,
        "tournaments_played": 0,
        "tournaments_won": 0,
    }
    for entry in member.points_history:
        totals["total_points"] += entry.points
        if entry.kind == EntryKind.TOURNAMENT_JOIN:
            totals["tournaments_played"] += 1
        elif entry.kind == EntryKind.TOURNAMENT_WIN:
            totals["tournaments_won"] += 1
        else:
            totals["total_games"] += 1
            if entry.outcome == Outcome.WIN:
                totals["total_wins"] += 1
            elif entry.outcome == Outcome.LOSS:
                totals["total_losses"] += 1
            elif entry.outcome == Outcome.DRAW:
                totals["total_draws"] += 1
    return totals


def member_counters(member: Member) -> Dict[str, int]:
    """Stored counters, keyed like fold_member_history."""
    return {name: getattr(member, name) for name in fold_member_history(member)}


def team_aggregates(team: Team) -> Dict[str, int]:
    return {name: getattr(team, name) for name in _TEAM_FIELDS}


def member_tournament_stats(member: Member, tournament_id: int) -> MemberTournamentStats:
    """One member's record within a single tournament."""
    stats = MemberTournamentStats(member_id=member.id, tournament_id=tournament_id)
    for entry in member.points_history:
        if entry.tournament_id != tournament_id:
            continue
        stats.points += entry.points
        if entry.kind == EntryKind.TOURNAMENT_JOIN:
            stats.joined = True
        elif entry.kind == EntryKind.TOURNAMENT_WIN:
            stats.won_tournament = True
        else:
            stats.matches += 1
            if entry.outcome == Outcome.WIN:
                stats.wins += 1
            elif entry.outcome == Outcome.LOSS:
                stats.losses += 1
            else:
                stats.draws += 1
    return stats
