# src/outbreak_mcmc/core/kernels.py
"""
Proposal kernels used by the moves.

A kernel draws a new value from the current one and returns it together with
the log Hastings correction log q(x | x') - log q(x' | x), which is 0 for
symmetric kernels.
"""
import math

import numpy as np
from scipy.special import logsumexp

from .errors import ConfigurationError


class ProposalKernel:
    symmetric = True

    def propose(self, x, rng):
        raise NotImplementedError


class NormalRandomWalk(ProposalKernel):
    def __init__(self, sd):
        if sd <= 0:
            raise ConfigurationError("sd must be > 0")
        self.sd = float(sd)

    def propose(self, x, rng):
        return x + self.sd * rng.standard_normal(), 0.0

    def __repr__(self):
        return f"NormalRandomWalk(sd={self.sd})"


class LogNormalRandomWalk(ProposalKernel):
    """Random walk on log(x); keeps x positive."""
    symmetric = False

    def __init__(self, sd):
        if sd <= 0:
            raise ConfigurationError("sd must be > 0")
        self.sd = float(sd)

    def propose(self, x, rng):
        new = x * math.exp(self.sd * rng.standard_normal())
        return new, math.log(new) - math.log(x)

    def __repr__(self):
        return f"LogNormalRandomWalk(sd={self.sd})"


class ExponentialIndependence(ProposalKernel):
    """Draw from Exp(rate) regardless of the current value."""
    symmetric = False

    def __init__(self, rate):
        if rate <= 0:
            raise ConfigurationError("rate must be > 0")
        self.rate = float(rate)

    def propose(self, x, rng):
        new = rng.exponential(1.0 / self.rate)
        # log q(x) - log q(new) for q = Exp(rate)
        return new, self.rate * (new - x)

    def __repr__(self):
        return f"ExponentialIndependence(rate={self.rate})"


class IntegerStep(ProposalKernel):
    """Uniform non-zero integer step in [-max_step, max_step]."""

    def __init__(self, max_step=1):
        if max_step < 1:
            raise ConfigurationError("max_step must be >= 1")
        self.max_step = int(max_step)

    def propose(self, x, rng):
        step = int(rng.integers(1, self.max_step + 1))
        if rng.random() < 0.5:
            step = -step
        return int(x) + step, 0.0

    def __repr__(self):
        return f"IntegerStep(max_step={self.max_step})"


class UniformAncestor:
    """Pick a new ancestor uniformly from the eligible pool.

    The pool only depends on infection times, which an ancestry move leaves
    unchanged, so the draw is symmetric.
    """

    def propose(self, state, i, pool, rng):
        return int(pool[rng.integers(pool.size)]), 0.0

    def __repr__(self):
        return "UniformAncestor()"


class RecentAncestor:
    """Favour ancestors infected shortly before the case.

    Each candidate j is weighted by exp(-(t_inf[i] - t_inf[j]) / scale). The
    reverse move draws from the same candidates with the new ancestor swapped
    for the old one, which gives the Hastings correction.
    """

    def __init__(self, scale):
        if scale <= 0:
            raise ConfigurationError("scale must be > 0")
        self.scale = float(scale)

    def log_weights(self, state, i, candidates):
        gaps = state.t_inf[i] - state.t_inf[candidates]
        return -(gaps - gaps.min()) / self.scale

    def propose(self, state, i, pool, rng):
        log_w = self.log_weights(state, i, np.append(pool, state.alpha[i]))
        log_pool = logsumexp(log_w[:-1])
        k = rng.choice(pool.size, p=np.exp(log_w[:-1] - log_pool))
        # log q(old | new) - log q(new | old); the reverse pool swaps new for old
        log_reverse = logsumexp(np.delete(log_w, k))
        correction = (log_w[-1] - log_reverse) - (log_w[k] - log_pool)
        return int(pool[k]), float(correction)

    def __repr__(self):
        return f"RecentAncestor(scale={self.scale})"


def ancestor_kernel(config):
    if config.alpha_kernel == "recent":
        return RecentAncestor(config.alpha_scale)
    return UniformAncestor()


def mu_kernel(config):
    if config.mu_kernel == "lognormal":
        return LogNormalRandomWalk(config.sd_mu)
    if config.mu_kernel == "prior":
        return ExponentialIndependence(config.prior_mu)
    return NormalRandomWalk(config.sd_mu)


def scalar_kernel(config, param):
    """Kernel for one of the scalar parameters."""
    if param == "mu":
        return mu_kernel(config)
    sd = {"pi": config.sd_pi, "eps": config.sd_eps, "lambda": config.sd_lambda}[param]
    return NormalRandomWalk(sd)
