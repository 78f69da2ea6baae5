# src/outbreak_mcmc/core/moves.py
"""
Built-in Metropolis-Hastings moves.

Each move updates the state in place and returns it. A move scores the part
of the posterior its proposal touches, proposes, scores again and keeps or
reverts the proposal. Proposals that cannot be made (for instance a case with
no possible alternative ancestor) are skipped and not counted.

Moves name their dependencies as keyword arguments; see `binding` for the
sources these names resolve to.
"""
from dataclasses import dataclass, field
import logging
import math

import numpy as np

from .errors import LikelihoodError
from .kernels import IntegerStep, ancestor_kernel, scalar_kernel
from .likelihoods import LOCAL_COMPONENTS
from .priors import PARAMETERS
from .state import NO_ANCESTOR

logger = logging.getLogger(__name__)

# likelihood components informing each scalar parameter
SCALAR_COMPONENTS = {
    "mu": ("genetic",),
    "pi": ("reporting",),
    "eps": ("contact",),
    "lambda": ("contact",),
}


def metropolis_accept(proposed, current, rng, log_correction=0.0) -> bool:
    """Accept with probability min(1, exp(proposed - current + log_correction)).

    A proposal scoring -inf is always rejected; leaving a -inf state for a
    finite one is always accepted.
    """
    if math.isnan(proposed) or math.isnan(current) or math.isnan(log_correction):
        raise LikelihoodError("NaN in acceptance ratio")
    if proposed == -math.inf:
        return False
    if current == -math.inf:
        return True
    log_ratio = proposed - current + log_correction
    if log_ratio >= 0.0:
        return True
    return rng.random() <= math.exp(log_ratio)


def in_domain(param, value) -> bool:
    if param == "mu":
        return 0.0 < value < math.inf
    return 0.0 <= value <= 1.0


def keep_or_revert(score, current, rng, revert, tally, log_correction=0.0) -> bool:
    """Score a proposal already written to the state and keep it or undo it.

    `revert` runs whenever the proposal is not accepted, including when
    scoring raises, so the state never holds an unscored proposal. The tally
    is only updated once a decision was made.
    """
    accepted = False
    try:
        accepted = metropolis_accept(score(), current, rng, log_correction)
    finally:
        if not accepted:
            revert()
    if accepted:
        tally.accept()
    else:
        tally.reject()
    return accepted


def _move_scalar(state, param, data, config, likelihoods, priors, rng, tally):
    attr = PARAMETERS[param]
    components = SCALAR_COMPONENTS[param]

    def score():
        return likelihoods.loglik(data, state, components=components) + priors.evaluate(param, state)

    old = getattr(state, attr)
    current = score()
    new, correction = scalar_kernel(config, param).propose(old, rng)

    if not in_domain(param, new):
        tally.reject()
        return state

    setattr(state, attr, float(new))
    keep_or_revert(score, current, rng, lambda: setattr(state, attr, old), tally, correction)
    return state


def move_mu(state, data, config, likelihoods, priors, rng, tally):
    return _move_scalar(state, "mu", data, config, likelihoods, priors, rng, tally)


def move_pi(state, data, config, likelihoods, priors, rng, tally):
    return _move_scalar(state, "pi", data, config, likelihoods, priors, rng, tally)


def move_eps(state, data, config, likelihoods, priors, rng, tally):
    return _move_scalar(state, "eps", data, config, likelihoods, priors, rng, tally)


def move_lambda(state, data, config, likelihoods, priors, rng, tally):
    return _move_scalar(state, "lambda", data, config, likelihoods, priors, rng, tally)


def eligible_ancestors(state, i):
    """Cases infected strictly before case i, other than its current ancestor."""
    pool = np.flatnonzero(state.t_inf < state.t_inf[i])
    return pool[pool != state.alpha[i]]


def move_alpha(state, data, config, likelihoods, rng, tally, masks):
    kernel = ancestor_kernel(config)
    for i in range(state.n_cases):
        if not masks.alpha[i] or state.alpha[i] == NO_ANCESTOR:
            continue
        pool = eligible_ancestors(state, i)
        if not pool.size:
            continue

        old = state.alpha[i]
        current = likelihoods.loglik(data, state, [i])
        new, correction = kernel.propose(state, i, pool, rng)
        state.alpha[i] = new

        def revert(i=i, old=old):
            state.alpha[i] = old

        keep_or_revert(lambda: likelihoods.loglik(data, state, [i]), current, rng, revert, tally, correction)
    return state


def move_t_inf(state, data, config, likelihoods, rng, tally, masks):
    kernel = IntegerStep(config.t_inf_step)
    for i in range(state.n_cases):
        if not masks.t_inf[i]:
            continue
        old = state.t_inf[i]
        new, _ = kernel.propose(old, rng)

        # Ordering with the ancestor and every child must survive the move
        ancestor = state.alpha[i]
        children = state.children(i)
        if ancestor != NO_ANCESTOR and state.t_inf[ancestor] >= new:
            tally.reject()
            continue
        if children.size and np.any(state.t_inf[children] <= new):
            tally.reject()
            continue

        cases = np.append(children, i)
        current = likelihoods.loglik(data, state, cases)
        state.t_inf[i] = new

        def revert(i=i, old=old):
            state.t_inf[i] = old

        keep_or_revert(lambda: likelihoods.loglik(data, state, cases), current, rng, revert, tally)
    return state


def move_kappa(state, data, config, likelihoods, rng, tally, masks):
    kernel = IntegerStep(config.kappa_step)
    for i in range(state.n_cases):
        if not masks.kappa[i] or state.alpha[i] == NO_ANCESTOR:
            continue
        old = state.kappa[i]
        new, _ = kernel.propose(old, rng)
        if not 1 <= new <= config.max_kappa:
            tally.reject()
            continue

        current = likelihoods.loglik(data, state, [i])
        state.kappa[i] = new

        def revert(i=i, old=old):
            state.kappa[i] = old

        keep_or_revert(lambda: likelihoods.loglik(data, state, [i]), current, rng, revert, tally)
    return state


def swap_cases(state, i):
    """Put case i in the place of its ancestor, which becomes its child.

    i takes over the ancestor, infection time and kappa of x = alpha[i]; the
    other children of x are reassigned to i and the children of i to x.
    Applying it to x afterwards restores the original tree.
    """
    x = state.alpha[i]
    alpha = state.alpha
    kids_i = np.flatnonzero(alpha == i)
    kids_x = np.flatnonzero(alpha == x)
    kids_x = kids_x[kids_x != i]

    alpha[i] = alpha[x]
    alpha[x] = i
    alpha[kids_x] = i
    alpha[kids_i] = x
    state.t_inf[[i, x]] = state.t_inf[[x, i]]
    state.kappa[[i, x]] = state.kappa[[x, i]]
    return state


def move_swap_cases(state, data, likelihoods, rng, tally, masks):
    for i in range(state.n_cases):
        x = state.alpha[i]
        if x == NO_ANCESTOR:
            continue
        if not (masks.alpha[i] and masks.alpha[x] and masks.t_inf[i] and masks.t_inf[x]):
            continue

        cases = np.unique(np.concatenate(([i, x], state.children(i), state.children(x))))
        current = likelihoods.loglik(data, state, cases)
        swap_cases(state, i)
        keep_or_revert(
            lambda: likelihoods.loglik(data, state, cases), current, rng,
            lambda x=x: swap_cases(state, x), tally,
        )
    return state


@dataclass
class ImportTracker:
    """Influence of each case accumulated during the import-detection phase."""
    n_cases: int
    calls: int = 0
    n_samples: int = 0
    done: bool = False
    influence: np.ndarray = field(default=None)
    flagged: np.ndarray = field(default=None)

    def __post_init__(self):
        if self.influence is None:
            self.influence = np.zeros(self.n_cases)
        if self.flagged is None:
            self.flagged = np.array([], dtype=int)

    @property
    def mean_influence(self) -> np.ndarray:
        return self.influence / max(self.n_samples, 1)


def find_outliers(mean_influence, threshold):
    """Cases whose influence exceeds `threshold` times the average influence."""
    finite = np.isfinite(mean_influence)
    if not finite.any():
        return np.flatnonzero(~finite)
    reference = threshold * float(np.mean(mean_influence[finite]))
    return np.flatnonzero(~finite | (mean_influence > reference))


def move_find_imports(state, data, config, likelihoods, masks, imports):
    """Flag as imported the cases that fit the tree badly.

    Called after every sweep of the preliminary import phase; flags the
    outliers on call n_iter_import and is inert afterwards.
    """
    if imports.done:
        return state
    imports.calls += 1
    if imports.calls % config.sample_every_import == 0:
        imports.influence -= likelihoods.per_case(data, state, LOCAL_COMPONENTS)
        imports.n_samples += 1
    if imports.calls < config.n_iter_import:
        return state

    outliers = find_outliers(imports.mean_influence, config.outlier_threshold)
    flagged = outliers[(state.alpha[outliers] != NO_ANCESTOR) & masks.alpha[outliers]]
    state.alpha[flagged] = NO_ANCESTOR
    state.kappa[flagged] = 1
    masks.freeze_ancestry(flagged)

    imports.flagged = flagged
    imports.done = True
    logger.info("Import detection flagged %d case(s): %s", flagged.size, (flagged + 1).tolist())
    return state
