import numpy as np
import pytest

from outbreak_mcmc.core.data import make_data
from outbreak_mcmc.core.likelihoods import LikelihoodRegistry
from outbreak_mcmc.core.priors import PriorRegistry
from outbreak_mcmc.core.state import AugmentedState
from outbreak_mcmc.tests.helpers import DATES, FLAT_W


@pytest.fixture
def outbreak():
    return make_data(dates=DATES, w_dens=FLAT_W, max_kappa=3)


@pytest.fixture
def tree_state():
    """Hand-built valid state for the outbreak fixture."""
    return AugmentedState(
        mu=0.01,
        pi=0.9,
        eps=0.5,
        lambda_=0.2,
        alpha=np.array([-1, 0, 0, 1, 1, 3]),
        t_inf=np.array([-2, 0, 1, 3, 4, 6]),
        kappa=np.array([1, 1, 1, 1, 1, 2]),
    )


@pytest.fixture
def null_likelihoods():
    return LikelihoodRegistry()


@pytest.fixture
def null_priors():
    return PriorRegistry()
