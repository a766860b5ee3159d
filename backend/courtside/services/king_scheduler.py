"""
King of the Court scheduler: assign teams to N courts for the next round.

Sub-steps, each usable on its own:
  1. resolve_pins          drop winner pins that can no longer be honoured
  2. challenger_candidates pick a challenger for each re-seated winner
  3. carry_over_courts     keep unplayed in-progress pairings (no pins only)
  4. fill                  bounded depth-first search over unplayed pairings
  5. last resort           pair the two lowest-ordered free teams (repeat)
  6. validate_assignment / repair_assignment

Hard rules:
  - A team is never on two courts.
  - A pairing is never repeated while an unplayed alternative exists.
  - When every eligible team plays every round, a round is only accepted if
    the pairings still unplayed can be split into complete rounds, so a full
    round robin never dead-ends before its last round.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from courtside.config import DEFAULT_SEARCH_BUDGET
from courtside.errors import SchedulerInvariantError
from courtside.models.court_state import CourtSlot, KingMatch, TeamRef
from courtside.models.match import Match
from courtside.models.team import Team
from courtside.services.standings import TeamStanding, compute_standings

logger = logging.getLogger(__name__)

TEAM_ON_TWO_COURTS = "TEAM_ON_TWO_COURTS"
DUPLICATE_PAIR_IN_ROUND = "DUPLICATE_PAIR_IN_ROUND"

# Challenger tiers, in preference order
CHALLENGER_UNPLAYED = "unplayed"  # not played, not a pinned winner elsewhere
CHALLENGER_UNPLAYED_PINNED = "unplayed_pinned"  # not played, pinned on another court
CHALLENGER_BEST_RECORD = "best_record"  # repeat: best games diff, then wins
CHALLENGER_ANY = "any"  # repeat: first remaining team

REPEAT_TIERS = frozenset({CHALLENGER_BEST_RECORD, CHALLENGER_ANY})

PairKey = FrozenSet[int]


# ─── Data structures ─────────────────────────────────────────────────────

@dataclass
class ScheduleResult:
    courts: List[CourtSlot]
    court_winners: Dict[int, int]
    filled: int = 0  # courts given a new match this round
    carried_over: int = 0
    repeat_pairs: List[Tuple[int, int]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    exhausted: bool = False  # fewer than 2 eligible teams, nothing scheduled


@dataclass
class AssignmentViolation:
    code: str
    court_index: int
    message: str
    other_court_index: Optional[int] = None
    team_id: Optional[int] = None


@dataclass
class Matchup:
    team_a_id: int
    team_b_id: int
    has_played: bool
    can_play: bool
    combined_matches: int


@dataclass(frozen=True)
class _Pairing:
    team_a: int
    team_b: int
    pinned_winner_id: Optional[int] = None
    repeat: bool = False


# ─── Match-log helpers ───────────────────────────────────────────────────

def played_pairs(matches: Sequence[Match]) -> Set[PairKey]:
    return {m.pair_key for m in matches}


def matches_played_by_team(matches: Sequence[Match]) -> Dict[int, int]:
    counts: Dict[int, int] = {}
    for match in matches:
        for team_id in match.team_ids:
            counts[team_id] = counts.get(team_id, 0) + 1
    return counts


def team_opponents(team_id: int, matches: Sequence[Match]) -> List[int]:
    """Distinct past opponents of team_id, in the order they were played."""
    opponents: List[int] = []
    for match in sorted(matches, key=lambda m: m.id):
        if not match.involves(team_id):
            continue
        other = match.team_b_id if match.team_a_id == team_id else match.team_a_id
        if other not in opponents:
            opponents.append(other)
    return opponents


def matchup_schedule(
    teams: Sequence[Team],
    matches: Sequence[Match],
    max_matches: Optional[int] = None,
) -> List[Matchup]:
    """
    Every pair of teams with its status.

    Playable pairs first, then fewest combined matches, then team order.
    A pair is playable when it has not met yet and neither team is at the cap.
    """
    played = played_pairs(matches)
    counts = matches_played_by_team(matches)
    rows: List[Matchup] = []
    for i, team_a in enumerate(teams):
        for team_b in teams[i + 1:]:
            has_played = frozenset((team_a.id, team_b.id)) in played
            at_cap = max_matches is not None and (
                counts.get(team_a.id, 0) >= max_matches or counts.get(team_b.id, 0) >= max_matches
            )
            rows.append(Matchup(
                team_a_id=team_a.id,
                team_b_id=team_b.id,
                has_played=has_played,
                can_play=not has_played and not at_cap,
                combined_matches=counts.get(team_a.id, 0) + counts.get(team_b.id, 0),
            ))
    return sorted(rows, key=lambda r: (not r.can_play, r.combined_matches))


# ─── Sub-steps ───────────────────────────────────────────────────────────

def resolve_pins(
    court_winners: Dict[int, int],
    eligible_ids: Sequence[int],
    court_count: int,
) -> Tuple[Dict[int, int], List[str]]:
    """
    Pins that can still be honoured this round, plus a warning per dropped pin.

    A pin is dropped when its court index is out of range, its team is unknown
    or at the match cap, or its team is already pinned on a lower court.
    """
    eligible = set(eligible_ids)
    pins: Dict[int, int] = {}
    warnings: List[str] = []
    seated: Set[int] = set()
    for court_index in sorted(court_winners):
        team_id = court_winners[court_index]
        if not 0 <= court_index < court_count:
            warnings.append(f"Dropped pin for team {team_id}: court {court_index + 1} does not exist")
        elif team_id not in eligible:
            warnings.append(f"Dropped pin on court {court_index + 1}: team {team_id} is not eligible")
        elif team_id in seated:
            warnings.append(f"Dropped pin on court {court_index + 1}: team {team_id} is pinned on another court")
        else:
            pins[court_index] = team_id
            seated.add(team_id)
    for message in warnings:
        logger.warning(message)
    return pins, warnings


def challenger_candidates(
    winner_id: int,
    free_ids: Sequence[int],
    played: Set[PairKey],
    pinned_ids: Set[int],
    counts: Dict[int, int],
    standings: Sequence[TeamStanding],
) -> List[Tuple[int, str]]:
    """
    Challenger options for a re-seated winner, best first, tagged with their tier.

    free_ids is in team order and excludes every team already reserved.
    Unplayed teams are returned in full (non-pinned first, each tier by fewest
    matches played). Only when none is left does a single repeat candidate
    come back: best games diff then wins among teams with a record, else the
    first remaining team.
    """
    others = [t for t in free_ids if t != winner_id]
    unplayed = sorted(
        (t for t in others if frozenset((winner_id, t)) not in played),
        key=lambda t: counts.get(t, 0),
    )
    options = [(t, CHALLENGER_UNPLAYED) for t in unplayed if t not in pinned_ids]
    options += [(t, CHALLENGER_UNPLAYED_PINNED) for t in unplayed if t in pinned_ids]
    if options or not others:
        return options

    by_team = {row.team_id: row for row in standings}
    recorded = [by_team[t] for t in others if t in by_team and by_team[t].matches_played > 0]
    if recorded:
        best = max(recorded, key=lambda row: (row.games_diff, row.wins))
        return [(best.team_id, CHALLENGER_BEST_RECORD)]
    return [(others[0], CHALLENGER_ANY)]


def carry_over_courts(
    current_courts: Sequence[CourtSlot],
    eligible_ids: Sequence[int],
    played: Set[PairKey],
) -> Dict[int, KingMatch]:
    """In-progress King pairings that can stay as they are: unplayed, eligible, no shared team."""
    eligible = set(eligible_ids)
    kept: Dict[int, KingMatch] = {}
    used: Set[int] = set()
    for court_index, slot in enumerate(current_courts):
        if not isinstance(slot, KingMatch):
            continue
        a, b = slot.team_ids
        if a not in eligible or b not in eligible or a in used or b in used:
            continue
        if slot.pair_key in played:
            continue
        kept[court_index] = slot
        used.update((a, b))
    return kept


def validate_assignment(courts: Sequence[CourtSlot]) -> List[AssignmentViolation]:
    """Scan a court array for a team on two courts or a pairing on two courts."""
    violations: List[AssignmentViolation] = []
    team_court: Dict[int, int] = {}
    pair_court: Dict[PairKey, int] = {}
    for court_index, slot in enumerate(courts):
        if slot is None:
            continue
        if slot.pair_key in pair_court:
            first = pair_court[slot.pair_key]
            violations.append(AssignmentViolation(
                code=DUPLICATE_PAIR_IN_ROUND,
                court_index=court_index,
                other_court_index=first,
                message=(
                    f"Pairing {slot.team_a.name} vs {slot.team_b.name} is on "
                    f"courts {first + 1} and {court_index + 1}"
                ),
            ))
            continue
        pair_court[slot.pair_key] = court_index
        for team in (slot.team_a, slot.team_b):
            if team.id in team_court:
                first = team_court[team.id]
                violations.append(AssignmentViolation(
                    code=TEAM_ON_TWO_COURTS,
                    court_index=court_index,
                    other_court_index=first,
                    team_id=team.id,
                    message=f"Team {team.name} is on courts {first + 1} and {court_index + 1}",
                ))
            else:
                team_court[team.id] = court_index
    return violations


def repair_assignment(
    courts: Sequence[CourtSlot],
    violations: Sequence[AssignmentViolation],
    pool: Sequence[TeamRef],
    played: Set[PairKey],
    round_number: int,
    started_at: datetime,
) -> Tuple[List[CourtSlot], List[Tuple[int, int]]]:
    """
    Clear every offending slot and refill it from the pool.

    Refill prefers an unplayed pairing of unassigned teams, then any pairing of
    unassigned teams that is not already in the round. Returns the new court
    list and the repeat pairings the refill had to use.
    """
    repaired: List[CourtSlot] = list(courts)
    cleared = sorted({v.court_index for v in violations})
    for court_index in cleared:
        repaired[court_index] = None

    repeats: List[Tuple[int, int]] = []
    for court_index in cleared:
        on_court = {tid for slot in repaired if slot is not None for tid in slot.team_ids}
        in_round = {slot.pair_key for slot in repaired if slot is not None}
        free = [ref for ref in pool if ref.id not in on_court]

        candidates = [
            (a, b) for i, a in enumerate(free) for b in free[i + 1:]
            if frozenset((a.id, b.id)) not in in_round
        ]
        if not candidates:
            continue
        unplayed = [(a, b) for a, b in candidates if frozenset((a.id, b.id)) not in played]
        team_a, team_b = unplayed[0] if unplayed else candidates[0]
        if not unplayed:
            repeats.append((team_a.id, team_b.id))
        repaired[court_index] = KingMatch(
            court_index=court_index,
            team_a=team_a,
            team_b=team_b,
            started_at=started_at,
            round_number=round_number,
        )
    return repaired, repeats


# ─── Bounded search ──────────────────────────────────────────────────────

class _RoundSearch:
    """
    Depth-first search over challenger choices and fill pairings.

    Objective, compared lexicographically:
      (unplayed pairings in the round, remaining pairings still splittable into rounds)
    Candidates are explored in preference order, so among equal objectives the
    first assignment found is kept.
    """

    def __init__(
        self,
        order: List[int],
        everyone: List[int],
        open_courts: List[int],
        pins: List[Tuple[int, int]],
        played: Set[PairKey],
        counts: Dict[int, int],
        standings: List[TeamStanding],
        fixed_pairs: Set[PairKey],
        check_residual: bool,
        budget: int,
    ):
        self.order = order
        self.everyone = everyone  # all eligible teams, carried-over ones included
        self.position = {team_id: i for i, team_id in enumerate(everyone)}
        self.open_courts = open_courts
        self.pins = pins
        self.pinned_ids = {team_id for _, team_id in pins}
        self.played = played
        self.counts = counts
        self.standings = standings
        self.fixed_pairs = fixed_pairs
        self.check_residual = check_residual
        self.budget = budget

        self.max_unplayed = min(len(open_courts), len(order) // 2)
        self.unplayed_edges = frozenset(
            frozenset((a, b)) for i, a in enumerate(everyone) for b in everyone[i + 1:]
            if frozenset((a, b)) not in played
        )
        self.nodes = 0
        self.out_of_budget = False
        self.done = False
        self.best_key: Optional[Tuple[int, bool]] = None
        self.best_pinned: Dict[int, _Pairing] = {}
        self.best_fill: List[Tuple[int, int]] = []
        self._memo: Dict[FrozenSet[PairKey], bool] = {}

    def run(self) -> Tuple[Dict[int, _Pairing], List[Tuple[int, int]]]:
        self._place_pin(0, {}, set())
        logger.debug(
            "King search: %d nodes, best=%s, budget %s",
            self.nodes, self.best_key, "exhausted" if self.out_of_budget else "ok",
        )
        return self.best_pinned, self.best_fill

    def _tick(self) -> bool:
        self.nodes += 1
        if self.nodes > self.budget and self.best_key is not None:
            self.out_of_budget = True
            self.done = True
        return self.done

    def _place_pin(self, i: int, assigned: Dict[int, _Pairing], reserved: Set[int]) -> None:
        if i == len(self.pins):
            self._fill(assigned, reserved)
            return

        court_index, winner = self.pins[i]
        if winner in reserved:
            # Taken as a challenger on a lower court; this court is filled instead
            self._place_pin(i + 1, assigned, reserved)
            return

        free = [t for t in self.order if t not in reserved]
        options = challenger_candidates(
            winner, free, self.played, self.pinned_ids, self.counts, self.standings
        )
        if not options:
            self._place_pin(i + 1, assigned, reserved)
            return

        for challenger, tier in options:
            if self._tick():
                return
            assigned[court_index] = _Pairing(
                team_a=winner,
                team_b=challenger,
                pinned_winner_id=winner,
                repeat=tier in REPEAT_TIERS,
            )
            reserved.update((winner, challenger))
            self._place_pin(i + 1, assigned, reserved)
            del assigned[court_index]
            reserved.difference_update((winner, challenger))
            if self.done:
                return

    def _fill(self, assigned: Dict[int, _Pairing], reserved: Set[int]) -> None:
        empty = [c for c in self.open_courts if c not in assigned]
        free = [t for t in self.order if t not in reserved]
        pairs = [
            (a, b) for i, a in enumerate(free) for b in free[i + 1:]
            if frozenset((a, b)) not in self.played
        ]
        pairs.sort(key=lambda p: self.counts.get(p[0], 0) + self.counts.get(p[1], 0))
        base = sum(1 for p in assigned.values() if not p.repeat)
        self._choose(pairs, 0, len(empty), [], set(), assigned, base)

    def _choose(
        self,
        pairs: List[Tuple[int, int]],
        start: int,
        slots: int,
        chosen: List[Tuple[int, int]],
        used: Set[int],
        assigned: Dict[int, _Pairing],
        base: int,
    ) -> None:
        self._evaluate(assigned, chosen, base)
        if self.done or len(chosen) == slots:
            return

        reachable = base + len(chosen) + min(slots - len(chosen), len(pairs) - start)
        if self.best_key is not None:
            best_count, best_residual = self.best_key
            if reachable < best_count or (reachable == best_count and best_residual):
                return

        for idx in range(start, len(pairs)):
            a, b = pairs[idx]
            if a in used or b in used:
                continue
            if self._tick():
                return
            chosen.append((a, b))
            used.update((a, b))
            self._choose(pairs, idx + 1, slots, chosen, used, assigned, base)
            chosen.pop()
            used.difference_update((a, b))
            if self.done:
                return

    def _evaluate(self, assigned: Dict[int, _Pairing], chosen: List[Tuple[int, int]], base: int) -> None:
        count = base + len(chosen)
        if self.best_key is not None:
            if count < self.best_key[0] or (count == self.best_key[0] and self.best_key[1]):
                return

        residual_ok = True
        if self.check_residual and count == len(self.open_courts):
            round_pairs = set(self.fixed_pairs)
            round_pairs.update(frozenset((p.team_a, p.team_b)) for p in assigned.values())
            round_pairs.update(frozenset(pair) for pair in chosen)
            residual_ok = self._splits_into_rounds(self.unplayed_edges - round_pairs)

        key = (count, residual_ok)
        if self.best_key is None or key > self.best_key:
            self.best_key = key
            self.best_pinned = dict(assigned)
            self.best_fill = list(chosen)
        if key == (self.max_unplayed, True):
            self.done = True

    def _splits_into_rounds(self, edges: FrozenSet[PairKey]) -> bool:
        """Can `edges` be partitioned into perfect matchings of all eligible teams?"""
        if not edges:
            return True
        if edges in self._memo:
            return self._memo[edges]

        adjacency: Dict[int, List[int]] = {t: [] for t in self.everyone}
        for edge in edges:
            a, b = tuple(edge)
            adjacency[a].append(b)
            adjacency[b].append(a)
        if len({len(neighbours) for neighbours in adjacency.values()}) != 1:
            self._memo[edges] = False
            return False
        for neighbours in adjacency.values():
            neighbours.sort(key=lambda t: self.position[t])

        def match(remaining: Tuple[int, ...], picked: List[PairKey]) -> bool:
            self.nodes += 1
            if self.nodes > self.budget:
                self.out_of_budget = True
                return True
            if not remaining:
                return self._splits_into_rounds(edges - frozenset(picked))
            head, rest = remaining[0], remaining[1:]
            for other in adjacency[head]:
                if other not in rest:
                    continue
                picked.append(frozenset((head, other)))
                if match(tuple(t for t in rest if t != other), picked):
                    return True
                picked.pop()
            return False

        result = match(tuple(self.everyone), [])
        if not self.out_of_budget:
            self._memo[edges] = result
        return result


# ─── Entry point ─────────────────────────────────────────────────────────

def schedule_next_round(
    teams: Sequence[Team],
    matches: Sequence[Match],
    current_courts: Sequence[CourtSlot],
    court_winners: Dict[int, int],
    *,
    court_count: int,
    round_number: int,
    started_at: datetime,
    max_matches_per_team: Optional[int] = None,
    search_budget: int = DEFAULT_SEARCH_BUDGET,
) -> ScheduleResult:
    """
    Build the court assignment for the next King round.

    Returns:
        ScheduleResult with a court list of length court_count. Occupied slots
        are KingMatch records stamped with round_number and started_at.

    Guarantees:
        - No team on two courts (SchedulerInvariantError otherwise)
        - No pairing repeated while an unplayed one is possible among free teams;
          forced repeats are listed in repeat_pairs
        - Fewer than 2 eligible teams: nothing changes, exhausted=True
        - Inputs are not mutated
    """
    played = played_pairs(matches)
    counts = matches_played_by_team(matches)
    refs = {team.id: TeamRef(id=team.id, name=team.name) for team in teams}
    eligible = [
        team.id for team in teams
        if max_matches_per_team is None or counts.get(team.id, 0) < max_matches_per_team
    ]

    if len(eligible) < 2:
        message = f"Cannot schedule round {round_number}: {len(eligible)} eligible team(s), need at least 2"
        logger.warning(message)
        return ScheduleResult(
            courts=list(current_courts) + [None] * (court_count - len(current_courts)),
            court_winners=dict(court_winners),
            warnings=[message],
            exhausted=True,
        )

    pins, warnings = resolve_pins(court_winners, eligible, court_count)

    carried: Dict[int, KingMatch] = {}
    if not pins:
        carried = carry_over_courts(current_courts[:court_count], eligible, played)
    carried_ids = {tid for slot in carried.values() for tid in slot.team_ids}
    order = [t for t in eligible if t not in carried_ids]
    open_courts = [c for c in range(court_count) if c not in carried]

    full_round = 2 * court_count == len(eligible)
    check_residual = full_round and (
        max_matches_per_team is None or max_matches_per_team >= len(eligible) - 1
    )
    searchable = set(order)
    search = _RoundSearch(
        order=order,
        everyone=eligible,
        open_courts=open_courts,
        pins=sorted(pins.items()),
        played=played,
        counts=counts,
        standings=compute_standings([t for t in teams if t.id in searchable], matches),
        fixed_pairs={slot.pair_key for slot in carried.values()},
        check_residual=check_residual,
        budget=search_budget,
    )
    pinned_pairings, fill_pairs = search.run()
    if search.out_of_budget:
        logger.debug("King search budget of %d nodes reached for round %d", search_budget, round_number)

    courts: List[CourtSlot] = [None] * court_count
    for court_index, slot in carried.items():
        courts[court_index] = slot

    repeat_pairs: List[Tuple[int, int]] = []
    for court_index, pairing in pinned_pairings.items():
        courts[court_index] = KingMatch(
            court_index=court_index,
            team_a=refs[pairing.team_a],
            team_b=refs[pairing.team_b],
            started_at=started_at,
            round_number=round_number,
            pinned_winner_id=pairing.pinned_winner_id,
        )
        if pairing.repeat:
            repeat_pairs.append((pairing.team_a, pairing.team_b))

    empty = [c for c in open_courts if c not in pinned_pairings]
    for court_index, (team_a, team_b) in zip(empty, fill_pairs):
        courts[court_index] = KingMatch(
            court_index=court_index,
            team_a=refs[team_a],
            team_b=refs[team_b],
            started_at=started_at,
            round_number=round_number,
        )

    # Last resort: every unplayed pairing among the free teams is gone
    on_court = {tid for slot in courts if slot is not None for tid in slot.team_ids}
    free = [t for t in eligible if t not in on_court]
    for court_index in range(court_count):
        if courts[court_index] is not None or len(free) < 2:
            continue
        team_a, team_b = free[0], free[1]
        free = free[2:]
        courts[court_index] = KingMatch(
            court_index=court_index,
            team_a=refs[team_a],
            team_b=refs[team_b],
            started_at=started_at,
            round_number=round_number,
        )
        repeat_pairs.append((team_a, team_b))

    for team_a, team_b in repeat_pairs:
        message = (
            f"Round {round_number}: {refs[team_a].name} vs {refs[team_b].name} is a repeat pairing, "
            f"no unplayed opponent was available"
        )
        logger.warning(message)
        warnings.append(message)

    violations = validate_assignment(courts)
    if violations:
        for violation in violations:
            logger.warning("Round %d assignment invalid: %s", round_number, violation.message)
        pool = [refs[t] for t in eligible]
        courts, refill_repeats = repair_assignment(
            courts, violations, pool, played, round_number, started_at
        )
        repeat_pairs.extend(refill_repeats)
        remaining = validate_assignment(courts)
        if any(v.code == TEAM_ON_TWO_COURTS for v in remaining):
            raise SchedulerInvariantError(
                "; ".join(v.message for v in remaining if v.code == TEAM_ON_TWO_COURTS)
            )
        for violation in remaining:
            logger.error("Round %d kept a duplicate pairing after repair: %s", round_number, violation.message)
            warnings.append(violation.message)

    # A pin survives only when its court stayed empty and its winner was not seated
    seated = {tid for slot in courts if slot is not None for tid in slot.team_ids}
    remaining_pins = {
        court_index: team_id for court_index, team_id in pins.items()
        if courts[court_index] is None and team_id not in seated
    }

    filled = sum(1 for c, slot in enumerate(courts) if slot is not None and c not in carried)
    logger.info(
        "Round %d scheduled: %d court(s) filled, %d carried over, %d repeat pairing(s)",
        round_number, filled, len(carried), len(repeat_pairs),
    )
    return ScheduleResult(
        courts=courts,
        court_winners=remaining_pins,
        filled=filled,
        carried_over=len(carried),
        repeat_pairs=repeat_pairs,
        warnings=warnings,
        exhausted=False,
    )
