# src/outbreak_mcmc/core/binding.py
"""
Turn moves into single-argument callables.

A move is a function `f(state, **deps) -> state` together with the names of
the dependencies it needs. Binding resolves those names once against a
ChainContext and returns BoundMove objects that only take the state. Moves
switched off in the configuration are left out of the bound list.

Known dependency names:
    data, config, likelihoods, priors   the inputs of the chain
    rng                                 the chain's random generator
    masks                               per-case movability (CaseMasks)
    imports                             import-detection accumulator
    tally                               this move's acceptance counter
"""
from collections import OrderedDict
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Optional, Tuple
import inspect
import logging

from .config import is_enabled
from .errors import BindingError, InvalidStateError
from .moves import (
    move_alpha,
    move_eps,
    move_find_imports,
    move_kappa,
    move_lambda,
    move_mu,
    move_pi,
    move_swap_cases,
    move_t_inf,
)
from .state import AugmentedState
from .trace import MoveTally

logger = logging.getLogger(__name__)

SOURCES = ("data", "config", "likelihoods", "priors", "rng", "masks", "imports", "tally")


@dataclass(frozen=True)
class Move:
    """A move and the dependencies it declares.

    `flag` names the configuration attribute that switches the move on; a
    move whose flag is missing from the configuration is always enabled.
    """
    name: str
    func: Callable
    requires: Tuple[str, ...]
    flag: Optional[str] = None

    def __post_init__(self):
        unknown = [dep for dep in self.requires if dep not in SOURCES]
        if unknown:
            raise BindingError(
                f"move '{self.name}' requires unknown source(s) {unknown}; known sources are {list(SOURCES)}"
            )


def requirements_from_signature(name, func) -> Tuple[str, ...]:
    """Dependencies of a plain function, read from its parameter names.

    The first parameter receives the state. Later parameters must be known
    sources unless they have a default value.
    """
    if not callable(func):
        raise BindingError(f"move '{name}' must be callable")
    params = list(inspect.signature(func).parameters.values())
    if not params:
        raise BindingError(f"move '{name}' must accept the state as first argument")

    requires = []
    for p in params[1:]:
        if p.name in SOURCES:
            requires.append(p.name)
        elif p.default is inspect.Parameter.empty and p.kind not in (
            inspect.Parameter.VAR_POSITIONAL,
            inspect.Parameter.VAR_KEYWORD,
        ):
            raise BindingError(
                f"cannot bind argument '{p.name}' of move '{name}'; known sources are {list(SOURCES)}"
            )
    return tuple(requires)


def declare_move(name, func, requires=None, flag=None) -> Move:
    """Register a move; dependencies come from the signature when not given."""
    if requires is None:
        requires = requirements_from_signature(name, func)
    if flag is None:
        flag = f"move_{name}"
    return Move(name, func, tuple(requires), flag)


def default_moves() -> "OrderedDict[str, Move]":
    """Built-in moves, in the order they run within an iteration."""
    scalar = ("data", "config", "likelihoods", "priors", "rng", "tally")
    tree = ("data", "likelihoods", "rng", "tally", "masks")
    moves = [
        Move("find_imports", move_find_imports, ("data", "config", "likelihoods", "masks", "imports"), "find_imports"),
        Move("mu", move_mu, scalar, "move_mu"),
        Move("pi", move_pi, scalar, "move_pi"),
        Move("eps", move_eps, scalar, "move_eps"),
        Move("lambda", move_lambda, scalar, "move_lambda"),
        Move("alpha", move_alpha, tree + ("config",), "move_alpha"),
        Move("swap_cases", move_swap_cases, tree, "move_swap_cases"),
        Move("t_inf", move_t_inf, tree + ("config",), "move_t_inf"),
        Move("kappa", move_kappa, tree + ("config",), "move_kappa"),
    ]
    return OrderedDict((m.name, m) for m in moves)


def custom_moves(moves=None, **overrides) -> "OrderedDict[str, Move]":
    """Built-in moves with some replaced, removed (None) or added.

    New moves run after the built-in ones, in the order given. Values may be
    Move objects or plain functions.
    """
    out = default_moves()
    given = dict(moves or {})
    given.update(overrides)
    for name, move in given.items():
        if move is None:
            out.pop(name, None)
        elif isinstance(move, Move):
            out[name] = move if move.name == name else Move(name, move.func, move.requires, move.flag)
        else:
            if name in out:
                # keep the built-in flag so the configuration still switches it
                out[name] = declare_move(name, move, flag=out[name].flag)
            else:
                out[name] = declare_move(name, move)
    return out


@dataclass(frozen=True)
class ChainContext:
    """Everything a move may depend on, for one chain."""
    data: Any
    config: Any
    likelihoods: Any
    priors: Any
    rng: Any
    masks: Any = None
    imports: Any = None


@dataclass(frozen=True)
class BoundMove:
    name: str
    func: Callable
    tally: MoveTally

    def __call__(self, state: AugmentedState) -> AugmentedState:
        out = self.func(state)
        if not isinstance(out, AugmentedState):
            raise InvalidStateError(f"move '{self.name}' returned {type(out).__name__}, not a state")
        return out


def _is_enabled(move, config):
    if not move.flag:
        return True
    # per-case flags: enabled when any case can move
    return is_enabled(getattr(config, move.flag, True))


def bind_moves(moves, context: ChainContext):
    """Bind every enabled move to the context.

    Returns:
        list of BoundMove, in the order of `moves`.
    Raises:
        BindingError: if a move needs a source the context does not provide.
    """
    if not isinstance(moves, dict):
        moves = custom_moves(moves)

    bound = []
    for name, move in moves.items():
        if not isinstance(move, Move):
            move = declare_move(name, move)
        if not _is_enabled(move, context.config):
            logger.debug("Move '%s' disabled", name)
            continue

        tally = MoveTally(name)
        kwargs = {}
        for dep in move.requires:
            if dep == "tally":
                kwargs[dep] = tally
                continue
            value = getattr(context, dep)
            if value is None:
                raise BindingError(f"move '{name}' requires '{dep}', which this chain does not provide")
            kwargs[dep] = value
        bound.append(BoundMove(name, partial(move.func, **kwargs), tally))

    logger.debug("Bound moves: %s", [b.name for b in bound])
    return bound
