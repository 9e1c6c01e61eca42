# src/epidemic_state_space/errors.py
"""Exception types shared across the simulator, model spec and inference driver."""

from typing import Optional


class EpidemicModelError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(EpidemicModelError, ValueError):
    """Bad shapes or lengths, t_max < 2, or a seed that misses a free variable.

    Raised before any stochastic work starts.
    """


class NumericDomainError(EpidemicModelError, ValueError):
    """A parameter, rate or binomial trial count is outside its domain."""


class InferenceInfeasibility(EpidemicModelError, RuntimeError):
    """The joint density at the supplied seed is zero (log density -inf or nan).

    term : name of the first log-joint component that failed
    day  : day index of the failure, or None for scalar terms
    """

    def __init__(self, message: str, term: Optional[str] = None, day: Optional[int] = None):
        super().__init__(message)
        self.term = term
        self.day = day
