# src/epidemic_state_space/simulate/simulator.py
# Forward simulation of the infection-age pipeline.
#
# Each day every cohort ages by one bin, the cohorts inside the infectious
# window produce Poisson(infectious * R0 / window_length) new infections, and
# (optionally) an independent Poisson(inflow_rate) external inflow is added to
# bin 0. Deaths are drawn on the oldest bin and observed cases on the
# cumulative infection count once the loop is done.

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np
from numpy.random import Generator, default_rng

from ..config import INFECTIOUS_WINDOW, N_AGE_BINS
from ..errors import ConfigurationError, NumericDomainError
from ..state import ModelParameters, ObservationSeries, Trajectory, as_age_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationResult:
    """A trajectory together with the series derived from it.

    cumulative_observed_cases is drawn independently every day from
    Binomial(cumulative_infections[t], observation_prob), so it can go down
    from one day to the next even though cumulative_infections cannot.
    """

    trajectory: Trajectory
    cumulative_infections: np.ndarray
    daily_deaths: np.ndarray
    cumulative_deaths: np.ndarray
    cumulative_observed_cases: np.ndarray

    @property
    def t_max(self) -> int:
        return self.trajectory.t_max

    def observations(self):
        """The observable part of the run, as an ObservationSeries."""
        return ObservationSeries(
            cumulative_observed_cases=self.cumulative_observed_cases,
            daily_deaths=self.daily_deaths,
        )


def resolve_rng(rng: Union[Generator, int, None]) -> Generator:
    """Accept a Generator, an int seed or None."""
    if isinstance(rng, Generator):
        return rng
    return default_rng(rng)


def check_infectious_window(window: Tuple[int, int], n_age_bins: int) -> Tuple[int, int]:
    """The window must sit strictly below the death age (the last bin)."""
    try:
        a, b = int(window[0]), int(window[1])
    except (TypeError, IndexError, ValueError):
        raise ConfigurationError(f"infectious window must be a pair of ints, got {window!r}")
    if not 0 <= a <= b < n_age_bins - 1:
        raise ConfigurationError(
            f"infectious window {window} must satisfy 0 <= a <= b < {n_age_bins - 1}"
        )
    return a, b


def poisson_draw(rng: Generator, lam: float, what: str) -> int:
    if not np.isfinite(lam) or lam < 0:
        raise NumericDomainError(f"{what}: Poisson rate must be >= 0, got {lam}")
    return int(rng.poisson(lam)) if lam > 0.0 else 0


def binomial_draws(rng: Generator, n: np.ndarray, p: float, what: str) -> np.ndarray:
    n = np.asarray(n, dtype=np.int64)
    if np.any(n < 0):
        raise NumericDomainError(f"{what}: binomial trial count is negative")
    if not 0.0 <= p <= 1.0:
        raise NumericDomainError(f"{what}: probability must lie in [0, 1], got {p}")
    return rng.binomial(n, p).astype(np.int64)


def simulate(
    t_max: int,
    params: ModelParameters,
    initial_state: Sequence[int],
    rng: Union[Generator, int, None] = None,
    infectious_window: Tuple[int, int] = INFECTIOUS_WINDOW,
    n_age_bins: int = N_AGE_BINS,
) -> SimulationResult:
    """Simulate one trajectory of the age-structured model.

    Args:
        t_max (int): number of days, including day 0 (must be >= 2)
        params (ModelParameters): R0, mortality/observation probabilities and
            optional inflow rate
        initial_state (sequence of int): day-0 state, exactly n_age_bins long
        rng: numpy Generator (or int seed) used for every draw
        infectious_window (tuple): inclusive ages counted as infectious
        n_age_bins (int): pipeline length W; the last bin is the death age
    Returns:
        SimulationResult
    Raises:
        ConfigurationError, NumericDomainError
    """
    # All input checks happen before the first draw
    if int(t_max) != t_max or t_max < 2:
        raise ConfigurationError(f"t_max must be an integer >= 2, got {t_max}")
    t_max = int(t_max)

    if not isinstance(params, ModelParameters):
        raise ConfigurationError("params must be a ModelParameters instance")

    n_age_bins = int(n_age_bins)
    state0 = as_age_state(initial_state, n_age_bins)
    a, b = check_infectious_window(infectious_window, n_age_bins)
    window_length = b - a + 1

    rng = resolve_rng(rng)

    states = np.zeros((t_max, n_age_bins), dtype=np.int64)
    new_infections = np.zeros(t_max, dtype=np.int64)
    inflow = np.zeros(t_max, dtype=np.int64) if params.has_inflow else None
    states[0] = state0

    for t in range(t_max - 1):
        current = states[t]
        nxt = states[t + 1]

        # Every cohort ages by one day; the oldest bin drops out
        nxt[1:] = current[:-1]

        infectious = int(current[a:b + 1].sum())
        lam = infectious * params.r0 / window_length
        new_infections[t + 1] = poisson_draw(rng, lam, f"day {t + 1} transmission")

        if inflow is not None:
            inflow[t + 1] = poisson_draw(rng, params.inflow_rate, f"day {t + 1} inflow")
            nxt[0] = new_infections[t + 1] + inflow[t + 1]
        else:
            nxt[0] = new_infections[t + 1]

    daily_deaths = binomial_draws(rng, states[:, -1], params.mortality_prob, "deaths")
    cumulative_infections = np.cumsum(states[:, 0])
    cumulative_observed = binomial_draws(
        rng, cumulative_infections, params.observation_prob, "observed cases"
    )

    trajectory = Trajectory(
        states=states,
        new_infections=new_infections,
        params=params,
        inflow=inflow,
    )
    logger.debug(
        "Simulated %d days (W=%d): %d infections, %d deaths",
        t_max, n_age_bins, int(cumulative_infections[-1]), int(daily_deaths.sum()),
    )

    cumulative_deaths = np.cumsum(daily_deaths)
    for arr in (cumulative_infections, daily_deaths, cumulative_deaths, cumulative_observed):
        arr.setflags(write=False)

    return SimulationResult(
        trajectory=trajectory,
        cumulative_infections=cumulative_infections,
        daily_deaths=daily_deaths,
        cumulative_deaths=cumulative_deaths,
        cumulative_observed_cases=cumulative_observed,
    )
