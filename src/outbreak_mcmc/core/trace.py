# src/outbreak_mcmc/core/trace.py
# Outputs of a chain: sampled states and per-move acceptance counts.
from dataclasses import dataclass
from typing import Dict, Iterable, List

import numpy as np
import pandas as pd

from .state import NO_ANCESTOR, AugmentedState


@dataclass
class MoveTally:
    name: str
    accepted: int = 0
    rejected: int = 0

    def accept(self):
        self.accepted += 1

    def reject(self):
        self.rejected += 1

    def reset(self):
        self.accepted = 0
        self.rejected = 0

    @property
    def proposals(self) -> int:
        return self.accepted + self.rejected

    @property
    def acceptance_rate(self) -> float:
        if self.proposals == 0:
            return float("nan")
        return self.accepted / self.proposals


class AcceptanceStats:
    """Acceptance counters of the bound moves of one chain."""

    def __init__(self, tallies: Iterable[MoveTally] = ()):
        self._tallies: Dict[str, MoveTally] = {t.name: t for t in tallies}

    def __getitem__(self, name) -> MoveTally:
        return self._tallies[name]

    def __contains__(self, name):
        return name in self._tallies

    def __iter__(self):
        return iter(self._tallies.values())

    def __len__(self):
        return len(self._tallies)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "move": t.name,
                    "accepted": t.accepted,
                    "rejected": t.rejected,
                    "acceptance_rate": t.acceptance_rate,
                }
                for t in self
            ],
            columns=["move", "accepted", "rejected", "acceptance_rate"],
        )


@dataclass(frozen=True)
class Sample:
    iteration: int
    like: float
    prior: float
    state: AugmentedState

    @property
    def post(self) -> float:
        return self.like + self.prior


class Trace:
    """Ordered samples of one chain."""

    def __init__(self):
        self.samples: List[Sample] = []

    def record(self, iteration, state, like, prior):
        self.samples.append(Sample(int(iteration), float(like), float(prior), state.copy()))

    def __len__(self):
        return len(self.samples)

    def __iter__(self):
        return iter(self.samples)

    def __getitem__(self, item):
        return self.samples[item]

    @property
    def iterations(self) -> np.ndarray:
        return np.array([s.iteration for s in self.samples], dtype=int)

    def values(self, field) -> np.ndarray:
        """Stack one state field across samples (scalar or per-case)."""
        return np.array([getattr(s.state, field) for s in self.samples])

    def to_dataframe(self) -> pd.DataFrame:
        """One row per sample; cases are labelled from 1 and ancestors use nullable ints."""
        rows = []
        for s in self.samples:
            st = s.state
            row = {
                "step": s.iteration,
                "post": s.post,
                "like": s.like,
                "prior": s.prior,
                "mu": st.mu,
                "pi": st.pi,
                "eps": st.eps,
                "lambda": st.lambda_,
            }
            for i, a in enumerate(st.alpha, start=1):
                row[f"alpha_{i}"] = pd.NA if a == NO_ANCESTOR else int(a) + 1
            for i, t in enumerate(st.t_inf, start=1):
                row[f"t_inf_{i}"] = int(t)
            for i, (a, k) in enumerate(zip(st.alpha, st.kappa), start=1):
                row[f"kappa_{i}"] = pd.NA if a == NO_ANCESTOR else int(k)
            rows.append(row)

        df = pd.DataFrame(rows)
        nullable = [c for c in df.columns if c.startswith(("alpha_", "kappa_"))]
        if nullable:
            df[nullable] = df[nullable].astype("Int64")
        return df
