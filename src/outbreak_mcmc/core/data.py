# src/outbreak_mcmc/core/data.py
# Immutable data bundle shared by every likelihood evaluation, plus the helpers
# that build it from plain arrays.
from dataclasses import dataclass, replace
from typing import Optional
import logging

import numpy as np
import pandas as pd
from numpy.polynomial.legendre import leggauss
from scipy.stats import gamma

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutbreakData:
    """Pre-validated outbreak data.

    Distributions are stored as probability vectors where index 0 is a delay
    of one day. The log versions are indexed directly by the delay (index 0 is
    a delay of zero days, always -inf).
    """
    n_cases: int
    dates: np.ndarray
    w_dens: np.ndarray
    f_dens: np.ndarray
    log_f_dens: np.ndarray
    log_w_dens: Optional[np.ndarray] = None
    dna_distances: Optional[np.ndarray] = None
    sequence_length: Optional[int] = None
    contacts: Optional[np.ndarray] = None

    @property
    def has_dna(self) -> bool:
        return self.dna_distances is not None

    @property
    def has_contacts(self) -> bool:
        return self.contacts is not None

    @property
    def max_kappa(self) -> int:
        if self.log_w_dens is None:
            return 0
        return int(self.log_w_dens.shape[0])


def discretise_gamma(mean, std, max_delay, nquad=32):
    """Daily generation-time weights from a gamma distribution.

    w_d = int_(d-1)^(d+1) [1 - |u - d|] g(u) du for d = 1..max_delay, computed
    with Gauss-Legendre quadrature and normalised to sum to one.

    Raises:
        ValueError
    """
    if max_delay < 1:
        raise ValueError("max_delay must be >= 1")
    if mean <= 0 or std <= 0:
        raise ValueError("Mean and std must be > 0")

    shape = (mean / std) ** 2
    scale = std ** 2 / mean
    g = gamma(a=shape, scale=scale)

    nodes, weights = leggauss(nquad)
    w = np.zeros(max_delay)
    for d in range(1, max_delay + 1):
        # Integrate over [d-1, d+1]; half width is one day
        u = nodes + d
        tri = 1.0 - np.abs(u - d)
        tri[tri < 0.0] = 0.0
        w[d - 1] = np.sum(weights * tri * g.pdf(u))

    total = float(w.sum())
    if total <= 0:
        raise RuntimeError("Generation time weights sum to zero")
    return w / total


def _normalise(dens, name):
    arr = np.asarray(dens, dtype=float)
    if arr.ndim != 1 or arr.size == 0:
        raise ConfigurationError(f"{name} must be a non-empty 1D sequence")
    if np.any(arr < 0) or not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} must contain finite, non-negative values")
    total = arr.sum()
    if total <= 0:
        raise ConfigurationError(f"{name} must have a positive sum")
    return arr / total


def _log_by_delay(dens):
    # Prepend the zero-day delay so the array is indexed by the delay itself
    with np.errstate(divide="ignore"):
        return np.log(np.concatenate(([0.0], dens)))


def _as_days(dates):
    arr = np.asarray(dates)
    if arr.ndim != 1 or arr.size == 0:
        raise ConfigurationError("dates must be a non-empty 1D sequence")
    if arr.dtype.kind in "iu":
        return arr.astype(int)
    if arr.dtype.kind == "f":
        if not np.all(np.isfinite(arr)) or np.any(arr != np.round(arr)):
            raise ConfigurationError("numeric dates must be whole days")
        return arr.astype(int)
    # Calendar dates: convert to days since the first sampled case
    stamps = pd.to_datetime(pd.Series(arr))
    if stamps.isna().any():
        raise ConfigurationError("dates contain missing values")
    return (stamps - stamps.min()).dt.days.to_numpy(dtype=int)


def _square(matrix, n, name):
    arr = np.asarray(matrix, dtype=float)
    if arr.shape != (n, n):
        raise ConfigurationError(f"{name} must be a {n}x{n} matrix, got shape {arr.shape}")
    return arr


def convolve_generations(w_dens, max_kappa):
    """Log densities of the delay spanning 1..max_kappa generations.

    Row k-1 holds the k-fold convolution of the generation time, indexed by
    the delay in days.
    """
    if max_kappa < 1:
        raise ConfigurationError("max_kappa must be >= 1")
    base = np.concatenate(([0.0], np.asarray(w_dens, dtype=float)))
    rows = [base]
    for _ in range(1, max_kappa):
        rows.append(np.convolve(rows[-1], base))

    width = len(rows[-1])
    out = np.zeros((max_kappa, width))
    for k, row in enumerate(rows):
        out[k, : len(row)] = row
    with np.errstate(divide="ignore"):
        return np.log(out)


def add_convolutions(data: OutbreakData, max_kappa: int) -> OutbreakData:
    """Return a copy of `data` carrying generation-time convolutions up to max_kappa."""
    if data.max_kappa >= max_kappa:
        return data
    logger.debug("Computing generation time convolutions up to kappa=%d", max_kappa)
    return replace(data, log_w_dens=convolve_generations(data.w_dens, max_kappa))


def make_data(
    dates,
    w_dens,
    f_dens=None,
    dna_distances=None,
    sequence_length=None,
    contacts=None,
    max_kappa=None,
):
    """Build an OutbreakData bundle.

    Args:
        dates: sampling dates, as integer days or anything pandas can parse.
        w_dens: generation time distribution, w_dens[0] is a delay of one day.
        f_dens: sampling delay (infection to collection); defaults to w_dens.
        dna_distances: n x n pairwise mutation counts, NaN for missing sequences.
        sequence_length: number of sites compared, required with dna_distances.
        contacts: n x n contact matrix; any non-zero entry is a reported contact.
        max_kappa: if given, precompute generation convolutions.
    Returns:
        OutbreakData
    Raises:
        ConfigurationError
    """
    days = _as_days(dates)
    n = int(days.size)

    w = _normalise(w_dens, "w_dens")
    f = w if f_dens is None else _normalise(f_dens, "f_dens")

    dna = None
    L = None
    if dna_distances is not None:
        dna = _square(dna_distances, n, "dna_distances")
        if sequence_length is None:
            raise ConfigurationError("sequence_length is required with dna_distances")
        L = int(sequence_length)
        if L < 1:
            raise ConfigurationError("sequence_length must be >= 1")
        observed = dna[np.isfinite(dna)]
        if np.any(observed < 0) or np.any(observed > L):
            raise ConfigurationError("dna_distances must lie within [0, sequence_length]")

    ctd = None
    if contacts is not None:
        raw = _square(contacts, n, "contacts")
        ctd = (raw != 0) | (raw.T != 0)
        np.fill_diagonal(ctd, False)

    data = OutbreakData(
        n_cases=n,
        dates=days,
        w_dens=w,
        f_dens=f,
        log_f_dens=_log_by_delay(f),
        dna_distances=dna,
        sequence_length=L,
        contacts=ctd,
    )
    if max_kappa is not None:
        data = add_convolutions(data, max_kappa)

    logger.debug("Built data bundle: %d cases, dna=%s, contacts=%s", n, data.has_dna, data.has_contacts)
    return data
