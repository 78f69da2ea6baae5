# src/outbreak_mcmc/posterior/plots.py
from pathlib import Path
from typing import Optional, Tuple
import logging

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from scipy.stats import gaussian_kde

from .summary import IMPORT, ancestry_frequencies, case_columns, drop_burnin, transmission_edges

logger = logging.getLogger(__name__)

KINDS = ("trace", "hist", "density")
CASE_FIELDS = ("t_inf", "kappa")

# ---------- IO ----------

def load_trace_csv(path: str) -> pd.DataFrame:
    """Read a trace table written by the runner; ancestry columns come back as nullable ints."""
    df = pd.read_csv(path)
    nullable = [c for c in df.columns if c.startswith(("alpha_", "kappa_"))]
    if nullable:
        df[nullable] = df[nullable].astype("Int64")
    return df


def _save(fig, save_path):
    Path(save_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(save_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info("Saved plot to %s", save_path)
    return Path(save_path)

# ---------- plotting routines ----------

def plot_trace(
    df: pd.DataFrame,
    column: str = "post",
    kind: str = "trace",
    burnin: int = 0,
    save_path: str = "figs/trace.png",
    figsize: Tuple[int, int] = (8, 5),
    bins: int = 30,
):
    """Trace, histogram or kernel density of one column of the trace table."""
    if kind not in KINDS:
        raise ValueError(f"Unknown plot kind '{kind}'; expected one of {KINDS}")
    if column not in df.columns:
        raise ValueError(f"Column '{column}' not in trace table")

    kept = drop_burnin(df, burnin)
    values = kept[column].astype(float).to_numpy()
    finite = np.isfinite(values)

    fig, ax = plt.subplots(figsize=figsize)
    if kind == "trace":
        ax.plot(kept["step"].to_numpy()[finite], values[finite], color="#1f77b4", linewidth=0.9)
        ax.set_xlabel("Iteration")
        ax.set_ylabel(column)
    elif kind == "hist":
        ax.hist(values[finite], bins=bins, color="#7f8fa6", edgecolor="white")
        ax.set_xlabel(column)
        ax.set_ylabel("Count")
    else:
        x = values[finite]
        if x.size < 2 or np.ptp(x) == 0:
            # KDE is undefined for a constant sample
            ax.axvline(x[0] if x.size else 0.0, color="#1f77b4", linewidth=2.0)
        else:
            grid = np.linspace(x.min(), x.max(), 200)
            dens = gaussian_kde(x)(grid)
            ax.plot(grid, dens, color="#1f77b4", linewidth=2.0)
            ax.fill_between(grid, dens, color="#1f77b4", alpha=0.2)
        ax.set_xlabel(column)
        ax.set_ylabel("Density")

    ax.set_title(f"{column} ({kind}, burn-in {burnin})")
    ax.grid(alpha=0.25)
    return _save(fig, save_path)


def plot_ancestry(
    df: pd.DataFrame,
    burnin: int = 0,
    save_path: str = "figs/ancestry.png",
    min_support: float = 0.0,
    figsize: Optional[Tuple[int, int]] = None,
):
    """Posterior support of each ancestor (x) for each case (y)."""
    freq = ancestry_frequencies(df, burnin)
    values = freq.to_numpy(dtype=float)
    values[values < min_support] = np.nan

    n = len(freq.index)
    if figsize is None:
        side = max(4.0, 0.3 * n + 2)
        figsize = (side + 1, side)
    fig, ax = plt.subplots(figsize=figsize)
    im = ax.imshow(values, cmap="viridis", vmin=0.0, vmax=1.0, aspect="auto", origin="lower")
    fig.colorbar(im, ax=ax, label="Posterior support")

    labels = [str(c) for c in freq.columns]
    labels[-1] = IMPORT
    ax.set_xticks(np.arange(len(labels)))
    ax.set_xticklabels(labels, rotation=90, fontsize="small")
    ax.set_yticks(np.arange(n))
    ax.set_yticklabels([str(i) for i in freq.index], fontsize="small")
    ax.set_xlabel("Infector")
    ax.set_ylabel("Case")
    ax.set_title(f"Ancestries (burn-in {burnin})")
    return _save(fig, save_path)


def plot_cases(
    df: pd.DataFrame,
    field: str = "t_inf",
    burnin: int = 0,
    save_path: str = "figs/t_inf.png",
    figsize: Optional[Tuple[int, int]] = None,
):
    """Per-case posterior of the infection dates (boxes) or of kappa (stacked frequencies)."""
    if field not in CASE_FIELDS:
        raise ValueError(f"Unknown case field '{field}'; expected one of {CASE_FIELDS}")
    kept = drop_burnin(df, burnin)
    cols = case_columns(kept, field)
    if not cols:
        raise ValueError(f"No '{field}_' columns in trace table")
    labels = [c.rsplit("_", 1)[1] for c in cols]

    if figsize is None:
        figsize = (max(6.0, 0.4 * len(cols) + 2), 5)
    fig, ax = plt.subplots(figsize=figsize)
    x = np.arange(len(cols))
    if field == "t_inf":
        ax.boxplot([kept[c].astype(float).to_numpy() for c in cols], positions=x, widths=0.6)
        ax.set_ylabel("Infection date")
    else:
        # imported samples carry no kappa and are left out
        freq = pd.DataFrame({c: kept[c].dropna().value_counts(normalize=True) for c in cols}).fillna(0.0)
        freq = freq.sort_index()
        bottom = np.zeros(len(cols))
        cmap = plt.get_cmap("viridis", max(len(freq.index), 2))
        for k, (kappa, row) in enumerate(freq.iterrows()):
            heights = row.reindex(cols).to_numpy(dtype=float)
            ax.bar(x, heights, bottom=bottom, color=cmap(k), label=f"kappa = {int(kappa)}")
            bottom += heights
        ax.set_ylim(0.0, 1.0)
        ax.set_ylabel("Posterior frequency")
        ax.legend(fontsize="small")

    ax.set_xticks(x)
    ax.set_xticklabels(labels, fontsize="small")
    ax.set_xlabel("Case")
    ax.set_title(f"{field} per case (burn-in {burnin})")
    ax.grid(alpha=0.25, axis="y")
    return _save(fig, save_path)


def plot_network(
    df: pd.DataFrame,
    burnin: int = 0,
    save_path: str = "figs/network.png",
    min_support: float = 0.1,
    figsize: Tuple[int, int] = (8, 6),
):
    """Transmission network: cases placed at their median infection date,
    one arrow per ancestry with at least `min_support`, darker when better supported.
    """
    kept = drop_burnin(df, burnin)
    edges = transmission_edges(kept, min_support=min_support)
    t_cols = case_columns(kept, "t_inf")
    labels = [int(c.rsplit("_", 1)[1]) for c in t_cols]
    when = {label: float(np.median(kept[c])) for label, c in zip(labels, t_cols)}
    imported = ancestry_frequencies(kept)[IMPORT]

    fig, ax = plt.subplots(figsize=figsize)
    for src, dst, support in edges.itertuples(index=False, name=None):
        ax.annotate(
            "",
            xy=(when[dst], dst),
            xytext=(when[src], src),
            arrowprops=dict(arrowstyle="->", color="#1f77b4", alpha=max(float(support), 0.15),
                            linewidth=0.5 + 2.5 * float(support)),
        )
    x = [when[label] for label in labels]
    colors = ["#d62728" if imported[label] >= 0.5 else "#7f8fa6" for label in labels]
    ax.scatter(x, labels, c=colors, s=80, zorder=3, edgecolors="white")
    for label in labels:
        ax.annotate(str(label), (when[label], label), textcoords="offset points", xytext=(6, 4), fontsize="small")

    ax.set_xlabel("Median infection date")
    ax.set_ylabel("Case")
    ax.set_title(f"Transmission network (support >= {min_support}, burn-in {burnin})")
    ax.grid(alpha=0.25)
    logger.debug("Network with %d edges", len(edges))
    return _save(fig, save_path)
