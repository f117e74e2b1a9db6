import json

import pytest

from lolopt.config_loader import RequestOverrides, load_request, load_request_payload

from tests.pools import request_payload, sample_slate


def test_overrides_replace_nested_sections():
    payload = request_payload(sample_slate(), portfolio={"count": 20, "maxRepeatingPlayers": 4})
    applied = RequestOverrides(seed=99, lineups=3, workers=2, trials=50).apply(payload)

    assert applied["seed"] == 99
    assert applied["portfolio"] == {"count": 3, "maxRepeatingPlayers": 4, "workers": 2}
    assert applied["strategyProfile"]["trials"] == 50
    assert payload["portfolio"]["count"] == 20


def test_trials_override_accepts_snake_case_section():
    payload = {"players": [], "strategy_profile": {"trials": 10, "stackSize": 4}}
    applied = RequestOverrides(trials=25).apply(payload)
    assert "strategy_profile" not in applied
    assert applied["strategyProfile"] == {"trials": 25, "stackSize": 4}


def test_load_request_validates(tmp_path):
    path = tmp_path / "request.json"
    path.write_text(json.dumps(request_payload(sample_slate())), encoding="utf-8")

    request = load_request(path, RequestOverrides(lineups=4))
    assert request.portfolio.count == 4
    assert request.seed == 7
    assert len(request.players) == 24


def test_load_request_payload_requires_object(tmp_path):
    path = tmp_path / "request.json"
    path.write_text('"players"', encoding="utf-8")
    with pytest.raises(ValueError):
        load_request_payload(path)
