from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .config import config_from_dict, load_run_config, with_overrides
from .driver import run_safely
from .errors import ClosureError, Failure
from .repro import run_metadata, write_json


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="closure_v1: ring closure simulation with stability metrics")
    ap.add_argument("--config", type=str, default=None, help="YAML run config (defaults if omitted)")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--nodes", type=int, default=None)
    ap.add_argument("--rho", type=float, default=None)
    ap.add_argument("--out", type=str, default="results/closure_run.json")
    ap.add_argument("--log-level", type=str, default="INFO")
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    out = Path(args.out)
    try:
        cfg = load_run_config(args.config) if args.config else config_from_dict({})
    except ClosureError as exc:
        write_json(out, {"failure": exc.to_failure().to_dict()})
        print(f"[closure_v1] {exc.kind}: {exc}")
        return 1
    cfg = with_overrides(cfg, seed=args.seed, nodes=args.nodes, rho=args.rho)

    outcome = run_safely(cfg)
    meta = run_metadata(cfg)
    if isinstance(outcome, Failure):
        write_json(out, {"failure": outcome.to_dict(), "meta": meta})
        print(f"[closure_v1] {outcome.kind}: {outcome.message}")
        return 1

    write_json(out, {"result": outcome.to_dict(), "meta": meta})
    print(f"[closure_v1] {outcome.verdict.value} score={outcome.composite_score:.4f} "
          f"iterations={outcome.iterations_run} -> {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
