"""Command-line interface for building a lineup portfolio from a JSON request."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from lolopt.config_loader import RequestOverrides, load_request_payload, save_response
from lolopt.optimizer import InvalidInputError, optimize

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_INFEASIBLE = 2
EXIT_INVALID = 3

_STATUS_EXIT = {"ok": EXIT_OK, "partial": EXIT_PARTIAL, "infeasible": EXIT_INFEASIBLE}


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build an exposure-aware LoL captain-mode lineup portfolio")
    parser.add_argument("request", type=Path, help="Path to the optimization request JSON")
    parser.add_argument("--output", type=Path, default=Path("portfolio.json"), help="Output JSON path")
    parser.add_argument("--seed", type=int, default=None, help="Override the request seed")
    parser.add_argument("--lineups", type=int, default=None, help="Override the number of lineups to build")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes for attempt evaluation (default from LOLOPT_WORKERS or 1)",
    )
    parser.add_argument("--trials", type=int, default=None, help="Monte Carlo trials per lineup")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    overrides = RequestOverrides(seed=args.seed, lineups=args.lineups, workers=args.workers, trials=args.trials)
    try:
        payload = overrides.apply(load_request_payload(args.request))
        response = optimize(payload)
    except (InvalidInputError, json.JSONDecodeError, ValueError) as exc:
        print(f"Invalid request: {exc}", file=sys.stderr)
        return EXIT_INVALID

    save_response(response, args.output)
    summary = response.summary
    print(
        f"{response.status}: {len(response.lineups)} lineups written to {args.output} "
        f"({summary.attempts} attempts, {len(summary.unmet_minima)} unmet minimums, {summary.wall_time:.2f}s)"
    )
    return _STATUS_EXIT[response.status]


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
