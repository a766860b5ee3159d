import pytest

from courtside.config import EngineSettings
from courtside.services.tournament_controller import TournamentController
from tests.factories import TOURNAMENT_ID, FakeClock, make_teams


@pytest.fixture(name="settings")
def settings_fixture():
    """Engine defaults: 4 courts, 20 join points, 9 max games."""
    return EngineSettings()


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="king")
def king_fixture(settings, clock):
    """King of the Court tournament: 8 teams of 2 on 4 courts."""
    teams, members = make_teams(8)
    return TournamentController.new_king(TOURNAMENT_ID, teams, members, settings, clock=clock)


@pytest.fixture(name="social")
def social_fixture(settings, clock):
    """Social tournament: 12 teams of 2, four groups of three."""
    teams, members = make_teams(12)
    return TournamentController.new_social(TOURNAMENT_ID, teams, members, settings, clock=clock)
