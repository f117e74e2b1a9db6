"""Load optimization requests from JSON and persist responses."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from lolopt.schemas import OptimizeRequest, OptimizeResponse


@dataclass
class RequestOverrides:
    """Command-line adjustments applied on top of a request file."""

    seed: Optional[int] = None
    lineups: Optional[int] = None
    workers: Optional[int] = None
    trials: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def apply(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(payload)
        if self.seed is not None:
            data.pop("seed", None)
            data["seed"] = self.seed
        if self.lineups is not None or self.workers is not None:
            portfolio = dict(_section(data, "portfolio"))
            if self.lineups is not None:
                portfolio["count"] = self.lineups
            if self.workers is not None:
                portfolio["workers"] = self.workers
            data["portfolio"] = portfolio
        if self.trials is not None:
            profile = dict(_section(data, "strategyProfile", "strategy_profile"))
            profile["trials"] = self.trials
            data.pop("strategy_profile", None)
            data["strategyProfile"] = profile
        data.update(self.extra)
        return data


def _section(data: Dict[str, Any], *names: str) -> Dict[str, Any]:
    for name in names:
        value = data.get(name)
        if isinstance(value, dict):
            return value
    return {}


def load_request_payload(path: Path) -> Dict[str, Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


def load_request(path: Path, overrides: Optional[RequestOverrides] = None) -> OptimizeRequest:
    payload = load_request_payload(path)
    if overrides is not None:
        payload = overrides.apply(payload)
    return OptimizeRequest.model_validate(payload)


def dump_response(response: OptimizeResponse) -> Dict[str, Any]:
    return response.model_dump(mode="json", by_alias=True)


def save_response(response: OptimizeResponse, path: Path) -> None:
    path.write_text(json.dumps(dump_response(response), indent=2), encoding="utf-8")
