# src/outbreak_mcmc/core/registry.py
# Shared validation for the likelihood and prior registries.
from collections import namedtuple
import inspect
import math

from .errors import ConfigurationError, LikelihoodError

# arity 0 marks a disabled component
Entry = namedtuple("Entry", ["func", "arity"])
DISABLED = Entry(None, 0)

_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


def function_arity(func, allowed, label):
    """Check `func` and return its number of positional parameters.

    A three-argument function must default its last argument to None, so that
    calling it without a case selection evaluates the whole population.
    """
    if not callable(func):
        raise ConfigurationError(f"{label} must be callable, got {type(func).__name__}")
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"cannot inspect the signature of {label}: {exc}") from exc

    params = list(sig.parameters.values())
    if any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params):
        raise ConfigurationError(f"{label} cannot take *args")
    required_kw = [
        p.name for p in params
        if p.kind == inspect.Parameter.KEYWORD_ONLY and p.default is inspect.Parameter.empty
    ]
    if required_kw:
        raise ConfigurationError(f"{label} has required keyword-only arguments: {required_kw}")

    positional = [p for p in params if p.kind in _POSITIONAL]
    n = len(positional)
    if n not in allowed:
        expected = " or ".join(str(a) for a in allowed)
        raise ConfigurationError(f"{label} must take {expected} positional arguments, found {n}")
    if n == 3 and positional[2].default is not None:
        raise ConfigurationError(f"the third argument of {label} must default to None")
    return n


class FunctionRegistry:
    """Named, validated functions returning a log density.

    Subclasses set `kind`, `components` and `arities`.
    """
    kind = "function"
    components = ()
    arities = ()

    def __init__(self, **functions):
        unknown = sorted(set(functions) - set(self.components))
        if unknown:
            raise ConfigurationError(
                f"unknown {self.kind} component(s) {unknown}; expected names among {list(self.components)}"
            )
        self._entries = {name: DISABLED for name in self.components}
        for name, func in functions.items():
            if func is None:
                continue
            arity = function_arity(func, self.arities, f"{self.kind} '{name}'")
            self._entries[name] = Entry(func, arity)

    def __getitem__(self, name) -> Entry:
        self._check_name(name)
        return self._entries[name]

    def __iter__(self):
        return iter(self.components)

    def __repr__(self):
        enabled = [name for name in self.components if self.is_enabled(name)]
        return f"{type(self).__name__}(enabled={enabled})"

    def is_enabled(self, name) -> bool:
        return self[name].arity > 0

    @property
    def enabled(self):
        return tuple(name for name in self.components if self.is_enabled(name))

    def _check_name(self, name):
        if name not in self._entries:
            raise ConfigurationError(f"unknown {self.kind} component '{name}'")

    def _checked(self, name, value):
        value = float(value)
        if math.isnan(value):
            raise LikelihoodError(f"{self.kind} '{name}' returned NaN")
        return value
