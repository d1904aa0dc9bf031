from __future__ import annotations

import argparse
import csv
import json
import sys
import time
from pathlib import Path
from statistics import mean, pstdev

PATHS = ["fused", "generic"]


def _fmt_mu_sigma(vals):
    mu = mean(vals)
    sd = pstdev(vals) if len(vals) > 1 else 0.0
    return f"{mu:.2f} ± {sd:.2f}"


def _time_gradient(loss, activation, labels, pre_output, repeats):
    start = time.perf_counter()
    for _ in range(repeats):
        loss.gradient(labels, pre_output, activation)
    return (time.perf_counter() - start) / repeats * 1e6


def main():
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))

    import numpy as np

    from lossgrad.core.activations import Softmax, get_activation
    from lossgrad.training.gradcheck import DEFAULT_CASES, sample_inputs
    from lossgrad.training.losses import REGISTRY

    ap = argparse.ArgumentParser()
    ap.add_argument("--seeds", nargs="+", type=int, default=[123, 124, 125])
    ap.add_argument("--batch", type=int, default=256)
    ap.add_argument("--features", type=int, default=10)
    ap.add_argument("--repeats", type=int, default=20)
    ap.add_argument("--out", type=str, default=".artifacts/bench")
    args = ap.parse_args()

    out = Path(args.out)
    out.mkdir(parents=True, exist_ok=True)
    runs = []
    for s in args.seeds:
        rng = np.random.default_rng(s)
        for loss_name, act_name in DEFAULT_CASES:
            loss = REGISTRY.get(loss_name)
            labels, pre_output = sample_inputs(loss.kind, args.batch, args.features, rng)
            us = _time_gradient(
                loss, get_activation(act_name), labels, pre_output, args.repeats
            )
            runs.append({"case": f"{loss_name}/{act_name}", "seed": s, "us_per_call": us})

        mcxent = REGISTRY.get("mcxent")
        labels, pre_output = sample_inputs("mcxent", args.batch, args.features, rng)
        fused = Softmax()
        generic = Softmax(fuse=False)
        for path, act in zip(PATHS, (fused, generic)):
            us = _time_gradient(mcxent, act, labels, pre_output, args.repeats)
            max_diff = float(
                np.max(
                    np.abs(
                        mcxent.gradient(labels, pre_output, act)
                        - mcxent.gradient(labels, pre_output, fused)
                    )
                )
            )
            runs.append(
                {"case": f"softmax-mcxent/{path}", "seed": s, "us_per_call": us, "max_diff": max_diff}
            )
    (out / "results.jsonl").write_text(
        "\n".join(json.dumps(x) for x in runs), encoding="utf-8"
    )

    cases = sorted({r["case"] for r in runs})
    agg = {}
    for case in cases:
        times = [r["us_per_call"] for r in runs if r["case"] == case]
        agg[case] = {
            "n": len(times),
            "us_mu": mean(times),
            "us_sd": pstdev(times) if len(times) > 1 else 0.0,
        }

    csv_path = out / "bench_micro.csv"
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(["case", "seeds", "batch", "features", "us_mu", "us_sd"])
        for case in cases:
            a = agg[case]
            w.writerow(
                [
                    case,
                    a["n"],
                    args.batch,
                    args.features,
                    f"{a['us_mu']:.2f}",
                    f"{a['us_sd']:.2f}",
                ]
            )

    md_path = out / "bench_micro.md"
    lines = []
    lines.append("### Micro‑Benchmark: loss gradients (µs per call)")
    lines.append("")
    lines.append(
        f"- Seeds: `{args.seeds}`; Batch: `{args.batch}`; "
        f"Features: `{args.features}`; Repeats: `{args.repeats}`"
    )
    lines.append("")
    lines.append("| Softmax + MCXENT path | Time (μ±σ) | Max |Δ| vs fused | Seeds |")
    lines.append("|---|---:|---:|---:|")
    for path in PATHS:
        case = f"softmax-mcxent/{path}"
        times = [r["us_per_call"] for r in runs if r["case"] == case]
        diff = max(r["max_diff"] for r in runs if r["case"] == case)
        lines.append(
            f"| {path.upper()} | {_fmt_mu_sigma(times)} | {diff:.2e} | {agg[case]['n']} |"
        )
    lines.append("")
    lines.append("| Case | Time (μ±σ) | Seeds |")
    lines.append("|---|---:|---:|")
    for case in cases:
        if case.startswith("softmax-mcxent/"):
            continue
        times = [r["us_per_call"] for r in runs if r["case"] == case]
        lines.append(f"| {case} | {_fmt_mu_sigma(times)} | {agg[case]['n']} |")
    md_path.write_text("\n".join(lines), encoding="utf-8")
    print("Wrote:", csv_path, md_path)


if __name__ == "__main__":
    main()
