# src/epidemic_state_space/model/likelihood.py
"""
Log-joint density of a StateSpaceModelSpec at a given latent state.

Densities are written out with scipy.special (gammaln, xlogy) rather than
scipy.stats so that a single evaluation stays cheap inside a sampler loop.
"""

# Store type annotations as strings instead of evaluating them immediately.
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
from scipy.special import betaln, gammaln, xlog1py, xlogy

from ..errors import ConfigurationError, NumericDomainError
from ..state import ObservationSeries, Trajectory
from .spec import StateSpaceModelSpec


# ---------- densities ----------

def poisson_logpmf(k, mu):
    k = np.asarray(k, dtype=float)
    mu = np.asarray(mu, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        out = xlogy(k, mu) - mu - gammaln(k + 1)
    return np.where((k < 0) | (mu < 0), -np.inf, out)


def binomial_logpmf(k, n, p):
    k = np.asarray(k, dtype=float)
    n = np.asarray(n, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        out = (gammaln(n + 1) - gammaln(k + 1) - gammaln(n - k + 1)
               + xlogy(k, p) + xlog1py(n - k, -p))
    bad = (k < 0) | (k > n) | (n < 0) | (p < 0) | (p > 1)
    return np.where(bad, -np.inf, out)


def gamma_logpdf(x, shape, rate):
    """Gamma with shape/rate parameterisation (BUGS dgamma)."""
    x = np.asarray(x, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        out = shape * np.log(rate) - gammaln(shape) + xlogy(shape - 1.0, x) - rate * x
    return np.where(x < 0, -np.inf, out)


def beta_logpdf(x, a, b):
    x = np.asarray(x, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        out = xlogy(a - 1.0, x) + xlog1py(b - 1.0, -x) - betaln(a, b)
    return np.where((x < 0) | (x > 1), -np.inf, out)


def prior_logpdf(dist, x) -> float:
    if dist.family == "gamma":
        return float(gamma_logpdf(x, *dist.args))
    if dist.family == "beta":
        return float(beta_logpdf(x, *dist.args))
    raise ConfigurationError(f"{dist.family} is not a supported prior family")


# ---------- latent state ----------

@dataclass
class LatentState:
    """Parameters plus the free latent counts of one model instance.

    new_infections and inflow have length t_max; their day-0 entries are
    ignored (day 0 is covered by initial_state). In the base model the
    transmission draw alone fills state[t, 0], so inflow is None.
    """

    r0: float
    mortality_prob: float
    observation_prob: float
    initial_state: np.ndarray
    new_infections: np.ndarray
    inflow_rate: Optional[float] = None
    inflow: Optional[np.ndarray] = None

    @property
    def t_max(self) -> int:
        return int(len(self.new_infections))

    @property
    def n_age_bins(self) -> int:
        return int(len(self.initial_state))

    def copy(self) -> "LatentState":
        return LatentState(
            r0=self.r0,
            mortality_prob=self.mortality_prob,
            observation_prob=self.observation_prob,
            initial_state=np.array(self.initial_state, dtype=np.int64),
            new_infections=np.array(self.new_infections, dtype=np.int64),
            inflow_rate=self.inflow_rate,
            inflow=None if self.inflow is None else np.array(self.inflow, dtype=np.int64),
        )

    def first_bin(self) -> np.ndarray:
        """state[t, 0] for every day."""
        col = np.array(self.new_infections, dtype=np.int64)
        if self.inflow is not None:
            col = col + np.asarray(self.inflow, dtype=np.int64)
        col[0] = self.initial_state[0]
        return col

    def states(self) -> np.ndarray:
        """Rebuild the (t_max, W) state matrix through the shift.

        state[t, a] is the cohort born on day t - a; cohorts born before
        day 0 come from the day-0 state.
        """
        W = self.n_age_bins
        births = np.concatenate([np.asarray(self.initial_state, dtype=np.int64)[::-1],
                                 self.first_bin()[1:]])
        idx = np.arange(self.t_max)[:, None] - np.arange(W)[None, :] + (W - 1)
        return births[idx]

    @classmethod
    def from_trajectory(cls, trajectory: Trajectory) -> "LatentState":
        p = trajectory.params
        return cls(
            r0=p.r0,
            mortality_prob=p.mortality_prob,
            observation_prob=p.observation_prob,
            initial_state=np.array(trajectory.states[0], dtype=np.int64),
            new_infections=np.array(trajectory.new_infections, dtype=np.int64),
            inflow_rate=p.inflow_rate,
            inflow=None if trajectory.inflow is None else np.array(trajectory.inflow, dtype=np.int64),
        )


# ---------- log joint ----------

def _check_compatible(spec: StateSpaceModelSpec, latent: LatentState, data: ObservationSeries):
    if latent.n_age_bins != spec.n_age_bins:
        raise ConfigurationError(
            f"latent state has {latent.n_age_bins} age bins, model has {spec.n_age_bins}"
        )
    if spec.has_inflow and (latent.inflow is None or latent.inflow_rate is None):
        raise ConfigurationError("inflow model needs inflow and inflow_rate in the latent state")
    if len(data.cumulative_observed_cases) != latent.t_max or len(data.daily_deaths) != latent.t_max:
        raise ConfigurationError(
            f"observed series must have length t_max={latent.t_max}"
        )


def log_joint_terms(
    spec: StateSpaceModelSpec,
    latent: LatentState,
    data: ObservationSeries,
) -> "OrderedDict[str, np.ndarray]":
    """Every component of the log joint density, kept apart.

    Scalar terms are 0-d arrays; day-indexed terms have length t_max with
    day 0 set to 0 where the term starts on day 1.
    Raises NumericDomainError if the latent state holds negative counts.
    """
    _check_compatible(spec, latent, data)
    if (np.any(np.asarray(latent.initial_state) < 0)
            or np.any(np.asarray(latent.new_infections)[1:] < 0)
            or (latent.inflow is not None and np.any(np.asarray(latent.inflow)[1:] < 0))):
        raise NumericDomainError("latent state contains negative counts")

    a, b = spec.infectious_window
    states = latent.states()
    terms = OrderedDict()

    terms["prior:R0"] = np.asarray(prior_logpdf(spec.prior("R0"), latent.r0))
    terms["prior:mortality_prob"] = np.asarray(
        prior_logpdf(spec.prior("mortality_prob"), latent.mortality_prob))
    terms["prior:observation_prob"] = np.asarray(
        prior_logpdf(spec.prior("observation_prob"), latent.observation_prob))
    if spec.has_inflow:
        terms["prior:inflow_rate"] = np.asarray(
            prior_logpdf(spec.prior("inflow_rate"), latent.inflow_rate))

    terms["initial_state"] = poisson_logpmf(latent.initial_state, spec.initial_rate)

    # Day t draws from the infectious cohorts of day t-1
    infectious = states[:-1, a:b + 1].sum(axis=1)
    rate = infectious * latent.r0 / spec.window_length
    transmission = np.zeros(latent.t_max)
    transmission[1:] = poisson_logpmf(np.asarray(latent.new_infections)[1:], rate)
    terms["transmission"] = transmission

    if spec.has_inflow:
        inflow = np.zeros(latent.t_max)
        inflow[1:] = poisson_logpmf(np.asarray(latent.inflow)[1:], latent.inflow_rate)
        terms["inflow"] = inflow

    terms["deaths"] = binomial_logpmf(data.daily_deaths, states[:, -1], latent.mortality_prob)
    cumulative_infections = np.cumsum(states[:, 0])
    terms["observations"] = binomial_logpmf(
        data.cumulative_observed_cases, cumulative_infections, latent.observation_prob
    )
    return terms


def log_joint(spec: StateSpaceModelSpec, latent: LatentState, data: ObservationSeries) -> float:
    terms = log_joint_terms(spec, latent, data)
    return float(sum(np.sum(v) for v in terms.values()))


def first_infeasible_term(terms: Dict[str, np.ndarray]) -> Optional[Tuple[str, Optional[int]]]:
    """(term, day) of the first non-finite component, or None if all are finite.

    day is None for scalar terms; for ``initial_state`` it is the age bin.
    """
    for name, values in terms.items():
        values = np.asarray(values)
        bad = ~np.isfinite(values)
        if not np.any(bad):
            continue
        if values.ndim == 0:
            return name, None
        return name, int(np.argmax(bad))
    return None
