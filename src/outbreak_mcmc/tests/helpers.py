# Shared inputs for the test modules
import numpy as np

from outbreak_mcmc.core.binding import ChainContext
from outbreak_mcmc.core.config import McmcConfig
from outbreak_mcmc.core.likelihoods import LikelihoodRegistry
from outbreak_mcmc.core.moves import ImportTracker
from outbreak_mcmc.core.priors import PriorRegistry
from outbreak_mcmc.core.state import NO_ANCESTOR, CaseMasks

# Six cases sampled on distinct days; flat generation time over 1..10 days
DATES = [0, 2, 3, 5, 6, 8]
FLAT_W = np.full(10, 0.1)

# Everything off; tests switch on what they need
ALL_OFF = dict(
    move_mu=False,
    move_pi=False,
    move_eps=False,
    move_lambda=False,
    move_alpha=False,
    move_t_inf=False,
    move_kappa=False,
    move_swap_cases=False,
    find_imports=False,
)


def only(**flags):
    """Config keyword arguments with every move off except `flags`."""
    out = dict(ALL_OFF)
    out.update(flags)
    return out


def make_context(data, config=None, likelihoods=None, priors=None, seed=0):
    config = config if config is not None else McmcConfig(find_imports=False)
    return ChainContext(
        data=data,
        config=config,
        likelihoods=likelihoods if likelihoods is not None else LikelihoodRegistry(),
        priors=priors if priors is not None else PriorRegistry(),
        rng=np.random.default_rng(seed),
        masks=CaseMasks.from_config(config, data.n_cases),
        imports=ImportTracker(data.n_cases),
    )


def assert_time_ordered(state):
    """Every infector was infected strictly before its infectee."""
    has = state.alpha != NO_ANCESTOR
    infectee = np.flatnonzero(has)
    assert np.all(state.t_inf[state.alpha[infectee]] < state.t_inf[infectee])
    assert not np.any(state.alpha == np.arange(state.n_cases))
