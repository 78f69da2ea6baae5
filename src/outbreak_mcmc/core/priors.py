# src/outbreak_mcmc/core/priors.py
# Priors over the scalar parameters of the augmented state.
from functools import partial
import logging

from scipy.stats import beta, expon

from .registry import FunctionRegistry

logger = logging.getLogger(__name__)

# prior component -> attribute of AugmentedState
PARAMETERS = {
    "mu": "mu",
    "pi": "pi",
    "eps": "eps",
    "lambda": "lambda_",
}


def exponential_prior(state, rate=1000.0, attr="mu"):
    return float(expon.logpdf(getattr(state, attr), scale=1.0 / rate))


def beta_prior(state, shapes=(1.0, 1.0), attr="pi"):
    a, b = shapes
    return float(beta.logpdf(getattr(state, attr), a, b))


class PriorRegistry(FunctionRegistry):
    """One log-prior per scalar parameter; each takes the state only."""
    kind = "prior"
    components = tuple(PARAMETERS)
    arities = (1,)

    def evaluate(self, name, state) -> float:
        func, arity = self[name]
        if arity == 0:
            return 0.0
        return self._checked(name, func(state))

    def component(self, name):
        self._check_name(name)
        return partial(self.evaluate, name)

    def logprior(self, state, components=None) -> float:
        names = self.components if components is None else components
        return sum(self.evaluate(name, state) for name in names)


def default_priors(config):
    """Built-in priors parameterised by the configuration."""
    return {
        "mu": partial(exponential_prior, rate=config.prior_mu, attr="mu"),
        "pi": partial(beta_prior, shapes=tuple(config.prior_pi), attr="pi"),
        "eps": partial(beta_prior, shapes=tuple(config.prior_eps), attr="eps"),
        "lambda": partial(beta_prior, shapes=tuple(config.prior_lambda), attr="lambda_"),
    }


def custom_priors(config, **overrides) -> PriorRegistry:
    """Built-in priors with some replaced; None disables a prior."""
    functions = default_priors(config)
    functions.update(overrides)
    if any(func is not None for func in overrides.values()):
        logger.debug("Custom priors: %s", sorted(overrides))
    return PriorRegistry(**functions)
