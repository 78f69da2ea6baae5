"""Reconstruction of transmission trees by MCMC over an augmented state."""
from .version_info import VERSION as __version__

from .core import (
    AugmentedState,
    BindingError,
    ConfigurationError,
    LikelihoodError,
    McmcConfig,
    McmcEngine,
    Move,
    NO_ANCESTOR,
    custom_likelihoods,
    custom_moves,
    custom_priors,
    make_data,
    run_mcmc,
)
