import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from courtside.models.match import Stage

DEFAULT_COURT_COUNT = 4
DEFAULT_JOIN_POINTS = 20
DEFAULT_SEARCH_BUDGET = 50000


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("true", "1", "yes")


def _env_list(name: str) -> List[str]:
    # "Centre, North,,South" -> ["Centre", "North", "South"]
    return [part.strip() for part in os.getenv(name, "").split(",") if part.strip()]


@dataclass(frozen=True)
class EngineSettings:
    """Tunable constants of the tournament engine."""

    court_count: int = DEFAULT_COURT_COUNT
    court_names: Optional[List[str]] = None
    join_points: int = DEFAULT_JOIN_POINTS
    final_win_points: int = 30
    semifinal_win_points: int = 20
    third_place_win_points: int = 15
    round_win_points: int = 15  # group and open-round matches
    max_games: int = 9
    max_set_games: int = 7
    king_max_matches: Optional[int] = None
    third_place_match: bool = False
    search_budget: int = DEFAULT_SEARCH_BUDGET

    def __post_init__(self) -> None:
        if self.court_count < 1:
            raise ValueError(f"court_count must be >= 1, got {self.court_count}")
        if self.court_names and len(self.court_names) != self.court_count:
            raise ValueError(
                f"{len(self.court_names)} court names given for {self.court_count} courts"
            )

    def win_points(self, stage: Stage) -> int:
        """Bonus earned by each member of the winning roster at this stage."""
        if stage == Stage.FINAL:
            return self.final_win_points
        if stage == Stage.SEMIFINAL:
            return self.semifinal_win_points
        if stage == Stage.THIRD_PLACE:
            return self.third_place_win_points
        return self.round_win_points

    def court_label(self, court_index: int) -> str:
        """Configured name of a 0-based court, else its 1-based number."""
        if self.court_names and 0 <= court_index < len(self.court_names):
            return self.court_names[court_index]
        return str(court_index + 1)


def load_settings(env_file: Optional[str] = None) -> EngineSettings:
    """Build settings from the environment (and a .env file when present)."""
    load_dotenv(env_file)

    court_names = _env_list("COURTSIDE_COURT_NAMES")
    court_count = len(court_names) if court_names else _env_int("COURTSIDE_COURT_COUNT", DEFAULT_COURT_COUNT)

    return EngineSettings(
        court_count=court_count,
        court_names=court_names or None,
        join_points=_env_int("COURTSIDE_JOIN_POINTS", DEFAULT_JOIN_POINTS),
        final_win_points=_env_int("COURTSIDE_FINAL_WIN_POINTS", 30),
        semifinal_win_points=_env_int("COURTSIDE_SEMIFINAL_WIN_POINTS", 20),
        third_place_win_points=_env_int("COURTSIDE_THIRD_PLACE_WIN_POINTS", 15),
        round_win_points=_env_int("COURTSIDE_ROUND_WIN_POINTS", 15),
        max_games=_env_int("COURTSIDE_MAX_GAMES", 9),
        max_set_games=_env_int("COURTSIDE_MAX_SET_GAMES", 7),
        king_max_matches=_env_int("COURTSIDE_KING_MAX_MATCHES", None),
        third_place_match=_env_bool("COURTSIDE_THIRD_PLACE_MATCH", False),
        search_budget=_env_int("COURTSIDE_SEARCH_BUDGET", DEFAULT_SEARCH_BUDGET),
    )
