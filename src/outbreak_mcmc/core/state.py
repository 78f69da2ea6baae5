# src/outbreak_mcmc/core/state.py
# The augmented state moved by the chain and the helpers that create and
# check it.
from dataclasses import dataclass
import logging

import numpy as np

from .config import McmcConfig, case_mask
from .data import OutbreakData
from .errors import ConfigurationError, InvalidStateError

logger = logging.getLogger(__name__)

# Marks an imported case (no inferred infector)
NO_ANCESTOR = -1


@dataclass
class AugmentedState:
    """Parameters and per-case latent variables of the transmission model.

    alpha[i] is the 0-based index of the infector of case i, or NO_ANCESTOR.
    kappa[i] counts generations between i and alpha[i] (1 = direct
    transmission) and is ignored for imported cases.
    """
    mu: float
    pi: float
    eps: float
    lambda_: float
    alpha: np.ndarray
    t_inf: np.ndarray
    kappa: np.ndarray

    @property
    def n_cases(self) -> int:
        return int(self.alpha.size)

    def copy(self) -> "AugmentedState":
        return AugmentedState(
            mu=self.mu,
            pi=self.pi,
            eps=self.eps,
            lambda_=self.lambda_,
            alpha=self.alpha.copy(),
            t_inf=self.t_inf.copy(),
            kappa=self.kappa.copy(),
        )

    def children(self, i: int) -> np.ndarray:
        """Indices of the cases directly infected by case i."""
        return np.flatnonzero(self.alpha == i)

    def has_ancestor(self, i: int) -> bool:
        return self.alpha[i] != NO_ANCESTOR

    def __eq__(self, other):
        if not isinstance(other, AugmentedState):
            return NotImplemented
        return (
            self.mu == other.mu
            and self.pi == other.pi
            and self.eps == other.eps
            and self.lambda_ == other.lambda_
            and np.array_equal(self.alpha, other.alpha)
            and np.array_equal(self.t_inf, other.t_inf)
            and np.array_equal(self.kappa, other.kappa)
        )


@dataclass
class CaseMasks:
    """Per-case movability, shared by the per-case moves of one chain.

    Starts from the configuration flags; import detection switches off the
    ancestry of the cases it flags.
    """
    alpha: np.ndarray
    t_inf: np.ndarray
    kappa: np.ndarray

    @classmethod
    def from_config(cls, config: McmcConfig, n_cases: int) -> "CaseMasks":
        return cls(
            alpha=case_mask(config.move_alpha, n_cases),
            t_inf=case_mask(config.move_t_inf, n_cases),
            kappa=case_mask(config.move_kappa, n_cases),
        )

    def freeze_ancestry(self, cases) -> None:
        self.alpha[cases] = False
        self.kappa[cases] = False


def check_state(state: AugmentedState, max_kappa: int) -> None:
    """Raise InvalidStateError if `state` breaks an invariant."""
    n = state.n_cases
    if state.t_inf.shape != (n,) or state.kappa.shape != (n,):
        raise InvalidStateError("alpha, t_inf and kappa must have one entry per case")

    alpha = state.alpha
    idx = np.arange(n)
    if np.any(alpha == idx):
        raise InvalidStateError(f"self-infection for case(s) {np.flatnonzero(alpha == idx).tolist()}")
    if np.any((alpha < NO_ANCESTOR) | (alpha >= n)):
        raise InvalidStateError("ancestor index out of range")

    has = alpha != NO_ANCESTOR
    infectee = idx[has]
    infector = alpha[has]
    late = state.t_inf[infector] >= state.t_inf[infectee]
    if np.any(late):
        i = int(infectee[late][0])
        raise InvalidStateError(
            f"case {i} infected at {state.t_inf[i]} but its ancestor {alpha[i]} "
            f"was infected at {state.t_inf[alpha[i]]}"
        )

    k = state.kappa[has]
    if np.any((k < 1) | (k > max_kappa)):
        raise InvalidStateError(f"kappa must lie in [1, {max_kappa}]")

    if not 0.0 <= state.pi <= 1.0 or not 0.0 <= state.eps <= 1.0 or not 0.0 <= state.lambda_ <= 1.0:
        raise InvalidStateError("pi, eps and lambda must lie in [0, 1]")
    if state.mu <= 0:
        raise InvalidStateError("mu must be > 0")


def _star_tree(t_inf):
    first = int(np.argmin(t_inf))
    alpha = np.full(t_inf.size, NO_ANCESTOR)
    later = t_inf > t_inf[first]
    alpha[later] = first
    return alpha


def _random_tree(t_inf, rng):
    alpha = np.full(t_inf.size, NO_ANCESTOR)
    for i in range(t_inf.size):
        pool = np.flatnonzero(t_inf < t_inf[i])
        if pool.size:
            alpha[i] = pool[rng.integers(pool.size)]
    return alpha


def _genetic_tree(t_inf, dna):
    # Closest earlier case by mutation count; ties go to the most recent one
    alpha = np.full(t_inf.size, NO_ANCESTOR)
    for i in range(t_inf.size):
        pool = np.flatnonzero(t_inf < t_inf[i])
        if not pool.size:
            continue
        dist = dna[i, pool]
        if np.all(np.isnan(dist)):
            alpha[i] = pool[np.argmax(t_inf[pool])]
            continue
        best = pool[dist == np.nanmin(dist)]
        alpha[i] = best[np.argmax(t_inf[best])]
    return alpha


def initial_state(config: McmcConfig, data: OutbreakData, rng=None) -> AugmentedState:
    """Create the starting state from the configured initial values.

    Raises:
        ConfigurationError: if the initial values do not form a valid state.
    """
    n = data.n_cases

    if config.init_t_inf is None:
        # Most likely sampling delay; log_f_dens is indexed by delay
        t_inf = data.dates - int(np.argmax(data.log_f_dens))
    else:
        t_inf = np.asarray(config.init_t_inf, dtype=int)
        if t_inf.shape != (n,):
            raise ConfigurationError(f"init_t_inf must have {n} entries")

    tree = config.init_tree
    if isinstance(tree, str):
        if tree == "star":
            alpha = _star_tree(t_inf)
        elif tree == "random":
            if rng is None:
                rng = np.random.default_rng(config.seed)
            alpha = _random_tree(t_inf, rng)
        elif data.has_dna:
            alpha = _genetic_tree(t_inf, data.dna_distances)
        else:
            logger.info("No genetic data for init_tree='genetic'; using a star tree")
            alpha = _star_tree(t_inf)
    else:
        alpha = np.array([NO_ANCESTOR if a is None else a for a in tree], dtype=int)
        if alpha.shape != (n,):
            raise ConfigurationError(f"init_tree must have {n} entries")

    state = AugmentedState(
        mu=float(config.init_mu),
        pi=float(config.init_pi),
        eps=float(config.init_eps),
        lambda_=float(config.init_lambda),
        alpha=alpha,
        t_inf=t_inf.copy(),
        kappa=np.full(n, int(config.init_kappa)),
    )
    try:
        check_state(state, config.max_kappa)
    except InvalidStateError as exc:
        raise ConfigurationError(f"invalid initial state: {exc}") from exc
    return state
