# src/epidemic_state_space/state.py
"""
Plain data containers: the age-structured daily state, the trajectory built
from it, model parameters and the observed series.

Arrays held by these containers are flagged read-only; consumers that need to
modify them must copy first.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .config import N_AGE_BINS
from .errors import ConfigurationError, NumericDomainError


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


def _as_counts(values, name: str) -> np.ndarray:
    """Convert to a 1D int64 array of non-negative counts."""
    arr = np.asarray(values)
    if arr.ndim != 1:
        raise ConfigurationError(f"{name} must be a 1D sequence of counts")
    if arr.size and not np.all(np.equal(np.mod(arr, 1), 0)):
        raise ConfigurationError(f"{name} must contain whole numbers")
    arr = arr.astype(np.int64)
    if np.any(arr < 0):
        raise NumericDomainError(f"{name} contains negative counts")
    return arr


def as_age_state(values: Sequence[int], n_age_bins: int = N_AGE_BINS) -> np.ndarray:
    """Validate one age-structured state and return it as a read-only int array.

    Index 0 holds today's new infections, index i those infected i days ago.
    The length must be exactly ``n_age_bins``; nothing is padded or truncated.
    """
    arr = _as_counts(values, "age-structured state")
    if arr.size != n_age_bins:
        raise ConfigurationError(
            f"age-structured state has length {arr.size}, expected {n_age_bins}"
        )
    return _readonly(arr.copy())


@dataclass(frozen=True)
class ModelParameters:
    """Epidemic parameters; ``inflow_rate=None`` means no external inflow term."""

    r0: float
    mortality_prob: float
    observation_prob: float
    inflow_rate: Optional[float] = None

    def __post_init__(self):
        for name in ("r0", "mortality_prob", "observation_prob"):
            value = float(getattr(self, name))
            if not np.isfinite(value):
                raise NumericDomainError(f"{name} must be finite, got {value}")
            object.__setattr__(self, name, value)
        if self.r0 < 0:
            raise NumericDomainError(f"r0 must be >= 0, got {self.r0}")
        for name in ("mortality_prob", "observation_prob"):
            p = getattr(self, name)
            if not 0.0 <= p <= 1.0:
                raise NumericDomainError(f"{name} must lie in [0, 1], got {p}")
        if self.inflow_rate is not None:
            rate = float(self.inflow_rate)
            if not np.isfinite(rate) or rate < 0:
                raise NumericDomainError(f"inflow_rate must be >= 0, got {rate}")
            object.__setattr__(self, "inflow_rate", rate)

    @property
    def has_inflow(self) -> bool:
        return self.inflow_rate is not None

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            "r0": self.r0,
            "mortality_prob": self.mortality_prob,
            "observation_prob": self.observation_prob,
            "inflow_rate": self.inflow_rate,
        }


@dataclass(frozen=True)
class Trajectory:
    """Daily age-structured states, shape (t_max, n_age_bins).

    ``new_infections`` and ``inflow`` keep the two additive components of
    ``states[:, 0]`` apart; both are 0 on day 0, which is supplied rather than
    drawn. ``inflow`` is None when the trajectory has no inflow term.
    """

    states: np.ndarray
    new_infections: np.ndarray
    params: ModelParameters
    inflow: Optional[np.ndarray] = None

    def __post_init__(self):
        states = np.array(self.states, dtype=np.int64)
        if states.ndim != 2:
            raise ConfigurationError("states must be a 2D array (t_max, n_age_bins)")
        if np.any(states < 0):
            raise NumericDomainError("states contain negative counts")
        t_max = states.shape[0]
        new_inf = _as_counts(self.new_infections, "new_infections")
        if new_inf.size != t_max:
            raise ConfigurationError(f"new_infections has length {new_inf.size}, expected {t_max}")
        object.__setattr__(self, "states", _readonly(states))
        object.__setattr__(self, "new_infections", _readonly(new_inf.copy()))
        if self.inflow is not None:
            inflow = _as_counts(self.inflow, "inflow")
            if inflow.size != t_max:
                raise ConfigurationError(f"inflow has length {inflow.size}, expected {t_max}")
            object.__setattr__(self, "inflow", _readonly(inflow.copy()))

    @property
    def t_max(self) -> int:
        return int(self.states.shape[0])

    @property
    def n_age_bins(self) -> int:
        return int(self.states.shape[1])

    def shift_violations(self) -> np.ndarray:
        """Days t+1 whose bins 1..W-1 differ from bins 0..W-2 of day t."""
        ok = np.all(self.states[1:, 1:] == self.states[:-1, :-1], axis=1)
        return np.nonzero(~ok)[0] + 1

    def cumulative_infections(self) -> np.ndarray:
        return np.cumsum(self.states[:, 0])


@dataclass(frozen=True)
class ObservationSeries:
    """Observed cumulative cases and daily deaths over t_max days.

    The observed cumulative case series need not be non-decreasing: the
    observation model redraws each day's total independently.
    """

    cumulative_observed_cases: np.ndarray
    daily_deaths: np.ndarray

    def __post_init__(self):
        cases = _as_counts(self.cumulative_observed_cases, "cumulative_observed_cases")
        deaths = _as_counts(self.daily_deaths, "daily_deaths")
        object.__setattr__(self, "cumulative_observed_cases", _readonly(cases.copy()))
        object.__setattr__(self, "daily_deaths", _readonly(deaths.copy()))

    @property
    def t_max(self) -> int:
        return int(self.cumulative_observed_cases.size)

    @property
    def cumulative_deaths(self) -> np.ndarray:
        return np.cumsum(self.daily_deaths)

    @classmethod
    def from_cumulative_deaths(cls, cumulative_observed_cases, cumulative_deaths) -> "ObservationSeries":
        """Build from a cumulative death series by first-differencing.

        The first value is kept as-is. A decreasing cumulative series (e.g. a
        reporting correction) cannot be turned into daily counts.
        """
        cum = _as_counts(cumulative_deaths, "cumulative_deaths")
        if cum.size == 0:
            raise ConfigurationError("cumulative_deaths is empty")
        daily = np.diff(cum, prepend=0)
        if np.any(daily < 0):
            first_bad = int(np.argmax(daily < 0))
            raise ConfigurationError(
                f"cumulative_deaths decreases at day {first_bad}; cannot difference"
            )
        return cls(cumulative_observed_cases=cumulative_observed_cases, daily_deaths=daily)

    def to_dict(self) -> Dict[str, object]:
        """Data hand-off layout for the sampler."""
        return {
            "cumulative_observed_cases": self.cumulative_observed_cases.tolist(),
            "daily_deaths": self.daily_deaths.tolist(),
            "t_max": self.t_max,
        }

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "day": np.arange(self.t_max),
            "cumulative_observed_cases": self.cumulative_observed_cases,
            "daily_deaths": self.daily_deaths,
            "cumulative_deaths": self.cumulative_deaths,
        })
