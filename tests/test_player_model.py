import pytest
from pydantic import ValidationError

from lolopt.models import Player, Position, TeamStack, normalize_fraction


def test_player_is_frozen():
    player = Player(
        player_id="faker",
        name="Faker",
        team="T1",
        position="MID",
        salary=9000,
        projection=24.5,
    )

    assert player.player_id == "faker"
    assert player.position is Position.MID

    with pytest.raises((TypeError, ValidationError)):
        player.player_id = "zeus"  # type: ignore[attr-defined]


def test_player_accepts_camel_case_and_percent_ownership():
    player = Player.model_validate(
        {"playerId": "keria", "name": "Keria", "team": "T1", "position": "sup", "salary": 5000, "projection": 12.0, "ownership": 35}
    )
    assert player.position is Position.SUP
    assert player.ownership == pytest.approx(0.35)

    fraction = Player(player_id="oner", name="Oner", team="T1", position="JNG", salary=6800, projection=16.0, ownership=0.2)
    assert fraction.ownership == pytest.approx(0.2)


def test_player_rejects_negative_salary_and_unknown_position():
    with pytest.raises(ValidationError):
        Player(player_id="x", name="X", team="T1", position="MID", salary=-1, projection=10.0)
    with pytest.raises(ValidationError):
        Player(player_id="x", name="X", team="T1", position="COACH", salary=1000, projection=10.0)
    with pytest.raises(ValidationError):
        Player(player_id="x", name="X", team="T1", salary=1000, projection=10.0)


def test_team_entity_flag():
    team = Player(player_id="t1-team", name="T1", team="T1", position="TEAM", salary=5000, projection=9.0)
    assert team.is_team_entity
    assert TeamStack(team="T1", stackPlus=180.0).stack_plus == 180.0


def test_normalize_fraction():
    assert normalize_fraction(None) is None
    assert normalize_fraction(-3) == 0.0
    assert normalize_fraction(0.4) == pytest.approx(0.4)
    assert normalize_fraction(40) == pytest.approx(0.4)


def test_player_drops_unknown_fields():
    player = Player.model_validate(
        {"playerId": "zeus", "name": "Zeus", "team": "T1", "position": "TOP", "salary": 6000, "projection": 15.0, "metadata": {"src": "csv"}}
    )
    assert set(player.model_dump()) == {
        "player_id",
        "name",
        "team",
        "position",
        "salary",
        "projection",
        "ownership",
        "stdev",
        "ceiling",
        "floor",
    }
