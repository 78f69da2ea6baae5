# src/outbreak_mcmc/core/engine.py
"""
The MCMC scheduler.

One iteration applies every bound move once, in order, each move seeing the
result of the previous ones. Iteration 0 (the initial state) and every
iteration that is a multiple of `sample_every` are recorded once past the
burn-in. The run stops after `n_iter` iterations.

When import detection is on, a preliminary run of `n_iter_import`
iterations comes first. It is not recorded and does not count towards
`n_iter`; the recorded chain starts from its final state.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional
import logging
import time

import numpy as np

from .binding import ChainContext, bind_moves, custom_moves
from .config import McmcConfig
from .data import OutbreakData, add_convolutions
from .errors import ConfigurationError, OutbreakMcmcError
from .likelihoods import LikelihoodRegistry, custom_likelihoods
from .moves import ImportTracker
from .priors import PriorRegistry, custom_priors
from .state import AugmentedState, CaseMasks, check_state, initial_state
from .trace import AcceptanceStats, Trace

logger = logging.getLogger(__name__)


class ChainPhase(Enum):
    INITIALIZING = "initializing"
    IMPORTS = "imports"
    RUNNING = "running"
    BURNIN = "burnin"
    SAMPLING = "sampling"
    FINISHED = "finished"


@dataclass
class McmcResult:
    trace: Trace
    stats: AcceptanceStats
    state: AugmentedState
    imports: np.ndarray
    n_iter: int
    aborted: bool = False

    def to_dataframe(self):
        return self.trace.to_dataframe()


class McmcEngine:
    """Runs one chain.

    Args:
        data: OutbreakData bundle.
        config: McmcConfig; defaults are used when omitted.
        likelihoods: LikelihoodRegistry; built-in components when omitted.
        priors: PriorRegistry; built-in priors when omitted.
        moves: full mapping of moves as returned by `binding.custom_moves`;
            built-ins when omitted.
    Raises:
        ConfigurationError: on any problem found before the first iteration.
    """

    def __init__(
        self,
        data: OutbreakData,
        config: Optional[McmcConfig] = None,
        likelihoods: Optional[LikelihoodRegistry] = None,
        priors: Optional[PriorRegistry] = None,
        moves=None,
    ):
        self.phase = ChainPhase.INITIALIZING
        self.config = config if config is not None else McmcConfig()

        if not isinstance(data, OutbreakData):
            raise ConfigurationError("data must be an OutbreakData bundle (see make_data)")
        self.data = add_convolutions(data, self.config.max_kappa)

        if likelihoods is None:
            likelihoods = custom_likelihoods()
        if priors is None:
            priors = custom_priors(self.config)
        if not isinstance(likelihoods, LikelihoodRegistry):
            raise ConfigurationError("likelihoods must be a LikelihoodRegistry")
        if not isinstance(priors, PriorRegistry):
            raise ConfigurationError("priors must be a PriorRegistry")
        self.likelihoods = likelihoods
        self.priors = priors

        n = self.data.n_cases
        self.rng = np.random.default_rng(self.config.seed)
        self.state = initial_state(self.config, self.data, self.rng)
        self.masks = CaseMasks.from_config(self.config, n)
        self.imports = ImportTracker(n)

        self.context = ChainContext(
            data=self.data,
            config=self.config,
            likelihoods=self.likelihoods,
            priors=self.priors,
            rng=self.rng,
            masks=self.masks,
            imports=self.imports,
        )
        bound = bind_moves(custom_moves() if moves is None else moves, self.context)
        # import detection runs in its own phase before the recorded chain
        self.detector = next((m for m in bound if m.name == "find_imports"), None)
        self.moves = [m for m in bound if m is not self.detector]
        self.stats = AcceptanceStats(m.tally for m in self.moves)
        self.trace = Trace()
        self.iteration = 0

        like, prior = self.posterior()
        if like + prior == -np.inf:
            logger.warning("Initial state has zero posterior density; the first finite proposal will be accepted")
        logger.info(
            "Chain ready: %d cases, moves=%s, initial log-posterior %.3f",
            n, [m.name for m in self.moves], like + prior,
        )

    def posterior(self, state: Optional[AugmentedState] = None):
        """Whole-state (log-likelihood, log-prior)."""
        state = self.state if state is None else state
        return self.likelihoods.loglik(self.data, state), self.priors.logprior(state)

    def _sweep(self):
        for move in self.moves:
            self.state = move(self.state)
        if self.config.paranoid:
            check_state(self.state, self.config.max_kappa)

    def step(self) -> AugmentedState:
        """Run one iteration: every bound move once."""
        self._sweep()
        self.iteration += 1
        return self.state

    def detect_imports(self):
        """Preliminary run that flags imported cases; nothing is recorded.

        The bound moves run `n_iter_import` times with the detector after
        each sweep. Acceptance counters are reset afterwards; they describe
        the recorded run only.
        """
        self.phase = ChainPhase.IMPORTS
        for _ in range(self.config.n_iter_import):
            self._sweep()
            self.state = self.detector(self.state)
        for tally in self.stats:
            tally.reset()
        return self.imports.flagged

    def _record(self):
        like, prior = self.posterior()
        self.trace.record(self.iteration, self.state, like, prior)
        logger.debug("iter %d: post=%.3f", self.iteration, like + prior)

    def _result(self, aborted) -> McmcResult:
        return McmcResult(
            trace=self.trace,
            stats=self.stats,
            state=self.state,
            imports=self.imports.flagged.copy(),
            n_iter=self.iteration,
            aborted=aborted,
        )

    def run(self) -> McmcResult:
        """Run the chain.

        Raises:
            OutbreakMcmcError: from any move. The samples recorded so far are
                kept on `self.trace` and attached to the error as `result`.
        """
        cfg = self.config
        if self.phase is not ChainPhase.INITIALIZING:
            raise RuntimeError("a chain can only be run once")

        self.trace = Trace()
        t0 = time.perf_counter()
        aborted = False
        try:
            if self.detector is not None:
                self.detect_imports()
            self.phase = ChainPhase.RUNNING
            if cfg.burnin == 0:
                self._record()

            while self.iteration < cfg.n_iter:
                self.step()
                if self.iteration < cfg.burnin:
                    self.phase = ChainPhase.BURNIN
                    continue
                self.phase = ChainPhase.SAMPLING
                if self.iteration % cfg.sample_every == 0:
                    self._record()
        except KeyboardInterrupt:
            aborted = True
            logger.warning("Run interrupted at iteration %d; keeping %d samples", self.iteration, len(self.trace))
        except OutbreakMcmcError as exc:
            self.phase = ChainPhase.FINISHED
            exc.result = self._result(aborted=True)
            logger.error("Run failed at iteration %d (%d samples kept): %s", self.iteration, len(self.trace), exc)
            raise

        self.phase = ChainPhase.FINISHED
        logger.info(
            "Finished %d iterations in %.2fs (%d samples)",
            self.iteration, time.perf_counter() - t0, len(self.trace),
        )
        for tally in self.stats:
            logger.info("  %-12s acceptance %.3f (%d proposals)", tally.name, tally.acceptance_rate, tally.proposals)
        return self._result(aborted)


def run_mcmc(data, config=None, likelihoods=None, priors=None, moves=None) -> McmcResult:
    """Build a chain and run it."""
    return McmcEngine(data, config, likelihoods, priors, moves).run()


def run_chains(data, config: McmcConfig, seeds: Iterable[int], likelihoods=None, priors=None, moves=None) -> List[McmcResult]:
    """Independent chains differing only by their seed."""
    return [
        run_mcmc(data, replace(config, seed=seed), likelihoods, priors, moves)
        for seed in seeds
    ]
