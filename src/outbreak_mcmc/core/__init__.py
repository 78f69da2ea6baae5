from .binding import BoundMove, ChainContext, Move, bind_moves, custom_moves, declare_move, default_moves
from .config import McmcConfig
from .data import OutbreakData, discretise_gamma, make_data
from .engine import ChainPhase, McmcEngine, McmcResult, run_chains, run_mcmc
from .errors import BindingError, ConfigurationError, InvalidStateError, LikelihoodError
from .likelihoods import LikelihoodRegistry, custom_likelihoods
from .priors import PriorRegistry, custom_priors
from .state import NO_ANCESTOR, AugmentedState, check_state, initial_state
from .trace import AcceptanceStats, Trace
