"""Finite-difference gradient checks for lossgrad losses and activations."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Iterable, List, Tuple

import numpy as np

from lossgrad.core.activations import activation_names
from lossgrad.reporting.metrics import CsvSink, JsonlSink
from lossgrad.training.config import config_hash, load_objective
from lossgrad.training.gradcheck import (
    DEFAULT_CASES,
    GradCheckResult,
    check_gradient,
    run_cases,
    sample_inputs,
)
from lossgrad.training.losses import REGISTRY


def _format_result(result: GradCheckResult, run_id: str | None = None) -> str:
    payload = result.as_record()
    if run_id is not None:
        payload["run_id"] = run_id
    return json.dumps(payload, sort_keys=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--loss",
        choices=sorted(REGISTRY.names()),
        help="Loss to check (defaults to every built-in case)",
    )
    parser.add_argument(
        "--activation",
        choices=sorted(activation_names()),
        help="Activation paired with --loss (defaults to the loss's first built-in case)",
    )
    parser.add_argument(
        "--all", action="store_true", help="Check every built-in (loss, activation) case"
    )
    parser.add_argument(
        "--config", type=Path, help="JSON/YAML objective file to check instead"
    )
    parser.add_argument("--batch", type=int, default=4, help="Examples per batch")
    parser.add_argument("--features", type=int, default=3, help="Output features")
    parser.add_argument("--seed", type=int, default=0, help="Seed for sampled inputs")
    parser.add_argument(
        "--with-mask", action="store_true", help="Apply a random 0/1 example mask"
    )
    parser.add_argument(
        "--with-example-weights",
        action="store_true",
        help="Apply random per-example weights",
    )
    parser.add_argument(
        "--with-feature-weights",
        action="store_true",
        help="Apply random feature weights to losses that accept them",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=1e-4,
        help="Maximum relative error for a case to pass",
    )
    parser.add_argument("--out", type=Path, help="Directory for JSONL/CSV reports")
    parser.add_argument(
        "--list-losses", action="store_true", help="List registered losses and exit"
    )
    parser.add_argument(
        "--list-activations",
        action="store_true",
        help="List registered activations and exit",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _default_activation_for(loss_name: str) -> str:
    kind = REGISTRY.get(loss_name).kind
    for case_loss, case_activation in DEFAULT_CASES:
        if case_loss == kind:
            return case_activation
    return "identity"


def _check_config(args: argparse.Namespace) -> List[GradCheckResult]:
    objective = load_objective(args.config)
    rng = np.random.default_rng(args.seed)
    labels, pre_output = sample_inputs(
        objective.loss.kind, args.batch, args.features, rng
    )
    mask = None
    if args.with_mask:
        mask = rng.integers(0, 2, size=args.batch).astype(np.float64)
        mask[0] = 1.0
    example_weights = (
        rng.uniform(0.5, 2.0, size=args.batch) if args.with_example_weights else None
    )
    return [
        check_gradient(
            objective.loss,
            labels,
            pre_output,
            objective.activation,
            mask,
            example_weights,
            max_rel_error=args.tolerance,
        )
    ]


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if args.list_losses:
        for name in REGISTRY.names():
            print(name)
        raise SystemExit(0)

    if args.list_activations:
        for name in activation_names():
            print(name)
        raise SystemExit(0)

    cases: Tuple[Tuple[str, str], ...] = DEFAULT_CASES
    if args.loss and not args.all:
        cases = ((args.loss, args.activation or _default_activation_for(args.loss)),)

    run_config = {
        "cases": [list(case) for case in cases],
        "config": str(args.config) if args.config else None,
        "batch": args.batch,
        "features": args.features,
        "seed": args.seed,
        "mask": args.with_mask,
        "example_weights": args.with_example_weights,
        "feature_weights": args.with_feature_weights,
        "tolerance": args.tolerance,
    }
    run_id = config_hash(run_config)

    if args.config:
        results = _check_config(args)
    else:
        results = run_cases(
            cases,
            batch=args.batch,
            features=args.features,
            seed=args.seed,
            with_mask=args.with_mask,
            with_example_weights=args.with_example_weights,
            with_feature_weights=args.with_feature_weights,
            max_rel_error=args.tolerance,
        )

    sinks = []
    if args.out:
        sinks = [
            JsonlSink(args.out / "gradcheck.jsonl", seed=args.seed),
            CsvSink(args.out / "gradcheck.csv"),
        ]

    for result in results:
        print(_format_result(result, run_id=run_id))
        for sink in sinks:
            sink.write(result.as_record())

    if not all(result.passed for result in results):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
