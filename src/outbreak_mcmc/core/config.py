# src/outbreak_mcmc/core/config.py
# Run settings for one chain. Read-only for the duration of a run.
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union
import logging

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CaseFlag = Union[bool, Sequence[bool]]
TreeInit = Union[str, Sequence[Optional[int]]]

INIT_TREES = ("star", "random", "genetic")
MU_KERNELS = ("normal", "lognormal", "prior")
ALPHA_KERNELS = ("uniform", "recent")


@dataclass(frozen=True)
class McmcConfig:
    # schedule
    n_iter: int = 10000
    sample_every: int = 50
    burnin: int = 0
    seed: Optional[int] = None
    paranoid: bool = False

    # initial values
    init_mu: float = 1e-4
    init_pi: float = 0.9
    init_eps: float = 0.5
    init_lambda: float = 0.05
    init_tree: TreeInit = "star"
    init_t_inf: Optional[Sequence[int]] = None
    init_kappa: int = 1
    max_kappa: int = 5

    # move flags
    move_mu: bool = True
    move_pi: bool = True
    move_eps: bool = True
    move_lambda: bool = True
    move_alpha: CaseFlag = True
    move_t_inf: CaseFlag = True
    move_kappa: bool = True
    move_swap_cases: bool = True

    # proposal kernels
    sd_mu: float = 1e-4
    sd_pi: float = 0.1
    sd_eps: float = 0.1
    sd_lambda: float = 0.05
    mu_kernel: str = "normal"
    alpha_kernel: str = "uniform"
    alpha_scale: float = 5.0
    t_inf_step: int = 1
    kappa_step: int = 1

    # priors
    prior_mu: float = 1000.0
    prior_pi: Tuple[float, float] = (10.0, 1.0)
    prior_eps: Tuple[float, float] = (1.0, 1.0)
    prior_lambda: Tuple[float, float] = (1.0, 1.0)

    # import detection
    find_imports: bool = True
    outlier_threshold: float = 5.0
    n_iter_import: int = 5000
    sample_every_import: int = 50

    def __post_init__(self):
        if self.n_iter < 1:
            raise ConfigurationError("n_iter must be >= 1")
        if self.sample_every < 1:
            raise ConfigurationError("sample_every must be >= 1")
        if self.burnin < 0:
            raise ConfigurationError("burnin must be >= 0")

        if self.init_mu <= 0:
            raise ConfigurationError("init_mu must be > 0")
        for name in ("init_pi", "init_eps", "init_lambda"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must lie in [0, 1], got {value}")

        if self.max_kappa < 1:
            raise ConfigurationError("max_kappa must be >= 1")
        if not 1 <= self.init_kappa <= self.max_kappa:
            raise ConfigurationError(
                f"init_kappa ({self.init_kappa}) must lie in [1, max_kappa={self.max_kappa}]"
            )
        if isinstance(self.init_tree, str) and self.init_tree not in INIT_TREES:
            raise ConfigurationError(f"init_tree must be one of {INIT_TREES} or a sequence of ancestors")

        for name in ("sd_mu", "sd_pi", "sd_eps", "sd_lambda"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0")
        if self.mu_kernel not in MU_KERNELS:
            raise ConfigurationError(f"mu_kernel must be one of {MU_KERNELS}")
        if self.alpha_kernel not in ALPHA_KERNELS:
            raise ConfigurationError(f"alpha_kernel must be one of {ALPHA_KERNELS}")
        if self.alpha_scale <= 0:
            raise ConfigurationError("alpha_scale must be > 0")
        if self.t_inf_step < 1 or self.kappa_step < 1:
            raise ConfigurationError("t_inf_step and kappa_step must be >= 1")

        if self.prior_mu <= 0:
            raise ConfigurationError("prior_mu (exponential rate) must be > 0")
        for name in ("prior_pi", "prior_eps", "prior_lambda"):
            shapes = getattr(self, name)
            if len(shapes) != 2 or min(shapes) <= 0:
                raise ConfigurationError(f"{name} must be two positive Beta shape parameters")

        if self.outlier_threshold <= 0:
            raise ConfigurationError("outlier_threshold must be > 0")
        if self.n_iter_import < 1 or self.sample_every_import < 1:
            raise ConfigurationError("n_iter_import and sample_every_import must be >= 1")
        if self.find_imports and self.sample_every_import > self.n_iter_import:
            raise ConfigurationError("sample_every_import cannot exceed n_iter_import")


def case_mask(flag: CaseFlag, n_cases: int) -> np.ndarray:
    """Expand a bool or per-case flag into a boolean array of length n_cases."""
    if isinstance(flag, (bool, np.bool_)):
        return np.full(n_cases, bool(flag))
    mask = np.asarray(flag, dtype=bool)
    if mask.shape != (n_cases,):
        raise ConfigurationError(f"per-case move flag must have {n_cases} entries, got {mask.shape}")
    return mask


def is_enabled(flag: CaseFlag) -> bool:
    """True when at least one case (or the scalar) is flagged as movable."""
    if isinstance(flag, (bool, np.bool_)):
        return bool(flag)
    return bool(np.any(np.asarray(flag, dtype=bool)))
