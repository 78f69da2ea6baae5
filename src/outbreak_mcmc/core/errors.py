# src/outbreak_mcmc/core/errors.py
"""Exceptions raised by the sampler.

Anything raised while building the chain (config, registries, binding) is a
ConfigurationError, so callers can catch a single ValueError subclass before
the first iteration runs.
"""


class OutbreakMcmcError(Exception):
    """Base class for all package errors."""


class ConfigurationError(OutbreakMcmcError, ValueError):
    """Inconsistent configuration, malformed override or invalid initial state."""


class BindingError(ConfigurationError):
    """A move declares a dependency no source can provide."""


class InvalidStateError(OutbreakMcmcError, RuntimeError):
    """The augmented state breaks one of its invariants."""


class LikelihoodError(OutbreakMcmcError, ArithmeticError):
    """A likelihood or prior returned NaN."""
