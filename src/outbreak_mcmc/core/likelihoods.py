# src/outbreak_mcmc/core/likelihoods.py
"""
Built-in log-likelihood components and the registry that combines them.

Every component accepts an optional collection of case indices. With
cases=None it evaluates the whole tree; with a selection it only sums the
terms of those cases, which is what the per-case moves use after changing
one part of the tree. The contact component depends on the tree as a whole
and ignores the selection.
"""
import logging

import numpy as np
from scipy.special import xlog1py, xlogy

from .registry import FunctionRegistry
from .state import NO_ANCESTOR

logger = logging.getLogger(__name__)

COMPONENTS = ("genetic", "timing_sampling", "timing_infections", "reporting", "contact")

# Terms that belong to a single case; used to measure each case's influence
LOCAL_COMPONENTS = ("genetic", "timing_sampling", "timing_infections", "reporting")


def _cases(state, cases):
    if cases is None:
        return np.arange(state.n_cases)
    return np.unique(np.atleast_1d(np.asarray(cases, dtype=int)))


def _with_ancestor(state, cases):
    idx = _cases(state, cases)
    return idx[state.alpha[idx] != NO_ANCESTOR]


def _lookup(log_dens, delays):
    out = np.full(delays.shape, -np.inf)
    ok = (delays >= 0) & (delays < log_dens.size)
    out[ok] = log_dens[delays[ok]]
    return out


def genetic_loglik(data, state, cases=None):
    """Mutations between each case and its ancestor, kappa generations apart."""
    if not data.has_dna:
        return 0.0
    mu = state.mu
    if not 0.0 < mu < 1.0:
        return -np.inf

    idx = _with_ancestor(state, cases)
    d = data.dna_distances[idx, state.alpha[idx]]
    seq = np.isfinite(d)
    idx, d = idx[seq], d[seq]
    if not idx.size:
        return 0.0

    rate = state.kappa[idx] * mu
    if np.any(rate >= 1.0):
        return -np.inf
    L = data.sequence_length
    return float(np.sum(d * np.log(rate) + (L - d) * np.log1p(-rate)))


def timing_sampling_loglik(data, state, cases=None):
    """Delay between infection and sample collection."""
    idx = _cases(state, cases)
    delays = data.dates[idx] - state.t_inf[idx]
    return float(np.sum(_lookup(data.log_f_dens, delays)))


def timing_infections_loglik(data, state, cases=None):
    """Delay between the infections of each case and its ancestor."""
    idx = _with_ancestor(state, cases)
    if not idx.size:
        return 0.0
    delays = state.t_inf[idx] - state.t_inf[state.alpha[idx]]
    kappa = state.kappa[idx]

    log_w = data.log_w_dens
    out = np.full(idx.size, -np.inf)
    ok = (kappa >= 1) & (kappa <= log_w.shape[0]) & (delays >= 0) & (delays < log_w.shape[1])
    out[ok] = log_w[kappa[ok] - 1, delays[ok]]
    return float(np.sum(out))


def reporting_loglik(data, state, cases=None):
    """kappa - 1 unreported cases between each case and its ancestor."""
    pi = state.pi
    if not 0.0 <= pi <= 1.0:
        return -np.inf
    idx = _with_ancestor(state, cases)
    if not idx.size:
        return 0.0
    missed = state.kappa[idx] - 1
    with np.errstate(divide="ignore"):
        return float(np.sum(np.log(pi) + xlog1py(missed, -pi)))


def contact_loglik(data, state, cases=None):
    """Reported contacts given the direct transmission pairs of the tree.

    eps is the probability that a transmission pair reported a contact,
    lambda the rate of contacts between cases that did not infect each other.
    """
    if not data.has_contacts:
        return 0.0
    eps, lam = state.eps, state.lambda_
    if not (0.0 <= eps <= 1.0 and 0.0 <= lam <= 1.0):
        return -np.inf

    n = data.n_cases
    idx = np.flatnonzero((state.alpha != NO_ANCESTOR) & (state.kappa == 1))
    linked = data.contacts[idx, state.alpha[idx]]

    true_pos = int(np.count_nonzero(linked))
    false_neg = int(idx.size - true_pos)
    false_pos = int(np.count_nonzero(data.contacts)) // 2 - true_pos
    true_neg = n * (n - 1) // 2 - true_pos - false_neg - false_pos

    with np.errstate(divide="ignore", invalid="ignore"):
        out = (
            xlogy(true_pos, eps)
            + xlog1py(false_neg, -eps)
            + xlogy(false_pos, eps * lam)
            + xlog1py(true_neg, -eps * lam)
        )
    return float(out)


BUILTIN_LIKELIHOODS = {
    "genetic": genetic_loglik,
    "timing_sampling": timing_sampling_loglik,
    "timing_infections": timing_infections_loglik,
    "reporting": reporting_loglik,
    "contact": contact_loglik,
}


class LikelihoodRegistry(FunctionRegistry):
    """One log-likelihood per component.

    Functions take (data, state) or (data, state, cases=None). A component
    that is not given is disabled and contributes 0.
    """
    kind = "likelihood"
    components = COMPONENTS
    arities = (2, 3)

    def evaluate(self, name, data, state, cases=None) -> float:
        func, arity = self[name]
        if arity == 0:
            return 0.0
        if arity == 2:
            return self._checked(name, func(data, state))
        return self._checked(name, func(data, state, cases))

    def component(self, name):
        """Uniform `f(data, state, cases=None)` for one component."""
        self._check_name(name)

        def loglik(data, state, cases=None):
            return self.evaluate(name, data, state, cases)

        return loglik

    def loglik(self, data, state, cases=None, components=None) -> float:
        """Sum of the enabled components, for the whole tree or some cases."""
        names = self.components if components is None else components
        # all components are evaluated; a NaN raises even next to -inf
        values = [self.evaluate(name, data, state, cases) for name in names]
        if -np.inf in values:
            return -np.inf
        return float(sum(values))

    def per_case(self, data, state, components=LOCAL_COMPONENTS) -> np.ndarray:
        """Log-likelihood of each case taken on its own."""
        return np.array(
            [self.loglik(data, state, [i], components) for i in range(state.n_cases)]
        )


def custom_likelihoods(**overrides) -> LikelihoodRegistry:
    """Registry of the built-in components with some replaced.

    Pass a function to override a component, or None to disable it.
    """
    functions = dict(BUILTIN_LIKELIHOODS)
    functions.update(overrides)
    registry = LikelihoodRegistry(**functions)
    custom = sorted(name for name, func in overrides.items() if func is not None)
    if custom:
        logger.debug("Custom likelihood components: %s", custom)
    return registry
