# src/outbreak_mcmc/posterior/summary.py
# Summaries of a trace table (see Trace.to_dataframe).
from typing import Any, Dict, List

import numpy as np
import pandas as pd

SCALARS = ["post", "like", "prior", "mu", "pi", "eps", "lambda"]
IMPORT = "import"


def case_columns(df: pd.DataFrame, prefix: str) -> List[str]:
    """Per-case columns sorted by case label, e.g. alpha_1, alpha_2, ..."""
    cols = [c for c in df.columns if c.startswith(prefix + "_")]
    return sorted(cols, key=lambda s: int(s.rsplit("_", 1)[1]))


def drop_burnin(df: pd.DataFrame, burnin: int = 0) -> pd.DataFrame:
    if "step" not in df.columns:
        raise ValueError("Trace table must contain a 'step' column")
    kept = df[df["step"] > burnin] if burnin > 0 else df
    if kept.empty:
        raise ValueError(f"No samples left after a burn-in of {burnin} iterations")
    return kept


def ancestry_frequencies(df: pd.DataFrame, burnin: int = 0) -> pd.DataFrame:
    """Posterior frequency of each ancestor (columns) for each case (rows).

    The last column gives how often the case was sampled as an import.
    """
    kept = drop_burnin(df, burnin)
    alpha_cols = case_columns(kept, "alpha")
    labels = [int(c.rsplit("_", 1)[1]) for c in alpha_cols]

    out = pd.DataFrame(0.0, index=pd.Index(labels, name="to"), columns=labels + [IMPORT])
    for label, col in zip(labels, alpha_cols):
        values = kept[col]
        counts = values.value_counts(normalize=False, dropna=True)
        for ances, n in counts.items():
            out.loc[label, int(ances)] = n
        out.loc[label, IMPORT] = values.isna().sum()
    return out / len(kept)


def consensus_tree(df: pd.DataFrame, burnin: int = 0) -> pd.DataFrame:
    """Most frequently sampled ancestor of each case, with its support."""
    kept = drop_burnin(df, burnin)
    freq = ancestry_frequencies(kept)
    t_cols = case_columns(kept, "t_inf")
    k_cols = case_columns(kept, "kappa")

    rows = []
    for label, t_col, k_col in zip(freq.index, t_cols, k_cols):
        best = freq.loc[label].idxmax()
        kappa = kept[k_col].dropna()
        rows.append({
            "from": pd.NA if best == IMPORT else int(best),
            "to": int(label),
            "time": float(np.median(kept[t_col])),
            "support": float(freq.loc[label, best]),
            "generations": float(np.median(kappa)) if len(kappa) else np.nan,
        })
    tree = pd.DataFrame(rows, columns=["from", "to", "time", "support", "generations"])
    tree["from"] = tree["from"].astype("Int64")
    return tree


def summarise_trace(df: pd.DataFrame, burnin: int = 0) -> Dict[str, Any]:
    """Step range, scalar parameter summaries and the consensus tree."""
    kept = drop_burnin(df, burnin)
    steps = kept["step"].to_numpy()
    interval = int(np.median(np.diff(steps))) if len(steps) > 1 else 0

    out: Dict[str, Any] = {
        "step": {
            "first": int(steps[0]),
            "last": int(steps[-1]),
            "interval": interval,
            "n_steps": int(len(steps)),
        },
    }
    for col in SCALARS:
        if col in kept.columns:
            out[col] = kept[col].replace([-np.inf], np.nan).describe()
    out["tree"] = consensus_tree(kept)
    return out


def transmission_edges(df: pd.DataFrame, burnin: int = 0, min_support: float = 0.0) -> pd.DataFrame:
    """Every (ancestor, case) pair sampled with at least `min_support`, strongest first."""
    freq = ancestry_frequencies(df, burnin).drop(columns=IMPORT)
    edges = freq.reset_index().melt(id_vars="to", var_name="from", value_name="support")
    edges["from"] = edges["from"].astype(int)
    edges = edges[(edges["support"] > 0) & (edges["support"] >= min_support)]
    edges = edges.sort_values(["support", "to"], ascending=[False, True], kind="mergesort")
    return edges[["from", "to", "support"]].reset_index(drop=True)
