"""
Minimal score parser for final-match score strings.

Supports formats like:
  "6-4 6-3"        → 2 sets, no tiebreak
  "6-4 3-6 10-8"   → 2 sets split 1-1, third entry is the tiebreak
  "6-4, 3-6, 10-8" → comma-separated variant
  {"sets": [{"a": 6, "b": 4}, ...], "tiebreak": {"a": 10, "b": 8}}
  {"display": "6-4 6-3"} → extracts display string first

Returns None on parse failure (non-fatal). Range checks belong to the caller.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

FINAL_SET_COUNT = 2


@dataclass
class ParsedScore:
    sets: List[Tuple[int, int]]  # (team_a_games, team_b_games) per scoring set
    tiebreak: Optional[Tuple[int, int]]
    team_a_sets_won: int
    team_b_sets_won: int
    team_a_games: int  # scoring sets only; the tiebreak is not summed in
    team_b_games: int


def parse_score(score: Optional[Union[str, Dict[str, Any]]]) -> Optional[ParsedScore]:
    """Parse a score string or blob into structured set/game counts.

    Returns None if the score cannot be parsed.
    """
    if not score:
        return None

    raw: Optional[str] = None
    if isinstance(score, str):
        raw = score
    elif isinstance(score, dict):
        if "sets" in score and isinstance(score["sets"], list):
            return _parse_structured_sets(score["sets"], score.get("tiebreak"))
        raw = str(score.get("display") or score.get("score") or "")
    if not raw or not raw.strip():
        return None

    return _parse_score_string(raw.strip())


def _build(entries: List[Tuple[int, int]]) -> Optional[ParsedScore]:
    if not entries or len(entries) > FINAL_SET_COUNT + 1:
        return None
    sets = entries[:FINAL_SET_COUNT]
    tiebreak = entries[FINAL_SET_COUNT] if len(entries) > FINAL_SET_COUNT else None
    return ParsedScore(
        sets=sets,
        tiebreak=tiebreak,
        team_a_sets_won=sum(1 for a, b in sets if a > b),
        team_b_sets_won=sum(1 for a, b in sets if b > a),
        team_a_games=sum(a for a, _ in sets),
        team_b_games=sum(b for _, b in sets),
    )


def _parse_structured_sets(sets_list: list, tiebreak: Optional[Dict[str, Any]]) -> Optional[ParsedScore]:
    entries: List[Tuple[int, int]] = []
    try:
        for s in sets_list:
            entries.append((int(s.get("a", 0)), int(s.get("b", 0))))
        if tiebreak:
            entries.append((int(tiebreak.get("a", 0)), int(tiebreak.get("b", 0))))
    except (AttributeError, TypeError, ValueError):
        return None
    return _build(entries)


def _parse_score_string(raw: str) -> Optional[ParsedScore]:
    """Parse strings like '6-4 6-3', '6-4 3-6 10-8', '6-4, 3-6, 10-8'."""
    # Normalize: replace commas with spaces, collapse whitespace
    normalized = raw.replace(",", " ").strip()
    parts = normalized.split()

    entries: List[Tuple[int, int]] = []
    for part in parts:
        pair = part.split("-")
        if len(pair) != 2:
            return None
        try:
            a = int(pair[0])
            b = int(pair[1])
        except ValueError:
            return None
        entries.append((a, b))

    return _build(entries)
