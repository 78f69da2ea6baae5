#!/usr/bin/env python3
# src/outbreak_mcmc/runner.py: run a chain, summarise or plot its trace

import argparse
import json
import logging
import time
from pathlib import Path

from .core.config import McmcConfig
from .core.data import make_data
from .core.engine import run_mcmc
from .posterior import plots
from .posterior.summary import summarise_trace

logger = logging.getLogger(__name__)

# JSON keys accepted by `run`, passed through to make_data
DATA_KEYS = ("dates", "w_dens", "f_dens", "dna_distances", "sequence_length", "contacts")


def load_data(path: str, max_kappa: int):
    """Build a data bundle from a JSON document; `null` entries in matrices become NaN."""
    with Path(path).open() as fh:
        raw = json.load(fh)
    missing = [k for k in ("dates", "w_dens") if k not in raw]
    if missing:
        raise ValueError(f"Input {path} is missing required keys: {missing}")
    unknown = sorted(set(raw) - set(DATA_KEYS))
    if unknown:
        logger.warning("Ignoring unknown input keys: %s", unknown)

    kwargs = {k: raw[k] for k in DATA_KEYS if raw.get(k) is not None}
    if "dna_distances" in kwargs:
        kwargs["dna_distances"] = [
            [float("nan") if v is None else v for v in row] for row in kwargs["dna_distances"]
        ]
    return make_data(max_kappa=max_kappa, **kwargs)


def main(argv=None):
    p = argparse.ArgumentParser(description="Transmission tree reconstruction")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- run ----------
    run_p = sub.add_parser("run", help="Run one MCMC chain")
    run_p.add_argument("--input", required=True, metavar="PATH",
                       help="JSON with dates, w_dens and optional f_dens, dna_distances, sequence_length, contacts")
    run_p.add_argument("--out", default="data/trace.csv", metavar="PATH",
                       help="Output CSV path for the trace (default: data/trace.csv)")
    run_p.add_argument("--n-iter", type=int, default=10000, metavar="N",
                       help="Number of iterations (default: 10000)")
    run_p.add_argument("--sample-every", type=int, default=50, metavar="N",
                       help="Record one iteration in N (default: 50)")
    run_p.add_argument("--burnin", type=int, default=0, metavar="N",
                       help="Iterations not recorded (default: 0)")
    run_p.add_argument("--seed", type=int, default=42, metavar="SEED",
                       help="RNG seed for reproducibility (default: 42)")
    run_p.add_argument("--max-kappa", type=int, default=5, metavar="K",
                       help="Maximum generations between a case and its ancestor (default: 5)")
    run_p.add_argument("--init-tree", default="star", choices=["star", "random", "genetic"])
    run_p.add_argument("--no-imports", action="store_true", help="Skip import detection")
    run_p.add_argument("--n-iter-import", type=int, default=5000, metavar="N",
                       help="Iterations of the unrecorded import-detection run (default: 5000)")
    run_p.add_argument("--alpha-kernel", default="uniform", choices=["uniform", "recent"],
                       help="Proposal for new ancestors (default: uniform)")

    # ---------- summary ----------
    sum_p = sub.add_parser("summary", help="Summarise a trace CSV")
    sum_p.add_argument("--trace", default="data/trace.csv")
    sum_p.add_argument("--burnin", type=int, default=0)

    # ---------- plot ----------
    plot_p = sub.add_parser("plot", help="Plot a trace CSV")
    plot_p.add_argument("--trace", default="data/trace.csv")
    plot_p.add_argument("--out", default="figs/trace.png")
    plot_p.add_argument("--column", default="post")
    plot_p.add_argument("--kind", default="trace",
                        choices=list(plots.KINDS) + ["alpha", "network"] + list(plots.CASE_FIELDS))
    plot_p.add_argument("--min-support", type=float, default=0.1, metavar="P",
                        help="Smallest ancestry support drawn by --kind network (default: 0.1)")
    plot_p.add_argument("--burnin", type=int, default=0)

    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    t0 = time.perf_counter()

    if args.cmd == "run":
        cfg = McmcConfig(
            n_iter=args.n_iter,
            sample_every=args.sample_every,
            burnin=args.burnin,
            seed=args.seed,
            max_kappa=args.max_kappa,
            init_tree=args.init_tree,
            alpha_kernel=args.alpha_kernel,
            find_imports=not args.no_imports,
            n_iter_import=args.n_iter_import,
            sample_every_import=min(50, args.n_iter_import),
        )
        data = load_data(args.input, cfg.max_kappa)
        result = run_mcmc(data, cfg)
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        result.to_dataframe().to_csv(out, index=False)
        print(result.stats.to_dataframe().to_string(index=False))
        print("Trace written ->", out)

    elif args.cmd == "summary":
        df = plots.load_trace_csv(args.trace)
        res = summarise_trace(df, burnin=args.burnin)
        step = res["step"]
        print(f"Steps {step['first']}..{step['last']} every {step['interval']} ({step['n_steps']} samples)")
        for col in ("post", "mu", "pi", "eps", "lambda"):
            print(f"{col:>7}: mean {res[col]['mean']:.6g}  sd {res[col]['std']:.6g}")
        print(res["tree"].to_string(index=False))

    elif args.cmd == "plot":
        df = plots.load_trace_csv(args.trace)
        if args.kind == "alpha":
            path = plots.plot_ancestry(df, burnin=args.burnin, save_path=args.out)
        elif args.kind == "network":
            path = plots.plot_network(df, burnin=args.burnin, save_path=args.out, min_support=args.min_support)
        elif args.kind in plots.CASE_FIELDS:
            path = plots.plot_cases(df, field=args.kind, burnin=args.burnin, save_path=args.out)
        else:
            path = plots.plot_trace(df, column=args.column, kind=args.kind, burnin=args.burnin, save_path=args.out)
        print("Plot ->", path)

    print(f"Done in {time.perf_counter() - t0:.2f}s")


if __name__ == "__main__":
    main()
