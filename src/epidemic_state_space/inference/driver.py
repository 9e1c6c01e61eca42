# src/epidemic_state_space/inference/driver.py
"""
Hand-off to the sampler.

``fit`` does no inference itself: it checks that the data, the model and the
seed agree with one another, then passes them to a SamplerBackend and wraps
what comes back in PosteriorSamples. Every check runs before the sampler is
touched, so a bad configuration never costs a sampling run.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from ..errors import ConfigurationError
from ..model.spec import StateSpaceModelSpec
from ..state import ObservationSeries
from .sampler import MetropolisSampler, SamplerBackend
from .seed import SeedSpec

logger = logging.getLogger(__name__)

PARAMETER_NAMES = ("r0", "mortality_prob", "observation_prob", "inflow_rate")
# Sampler output keys follow the model's variable names
_DRAW_KEYS = {"r0": "R0"}


@dataclass(frozen=True)
class PosteriorSamples:
    """Per-chain draws: scalars are (chains, iterations), series add t_max."""

    r0: np.ndarray
    mortality_prob: np.ndarray
    observation_prob: np.ndarray
    cumulative_infections: np.ndarray
    inflow_rate: Optional[np.ndarray] = None

    def __post_init__(self):
        shape = np.shape(self.r0)
        if len(shape) != 2:
            raise ConfigurationError(f"r0 draws must be (chains, iterations), got {shape}")
        for name in PARAMETER_NAMES[1:]:
            arr = getattr(self, name)
            if arr is not None and np.shape(arr) != shape:
                raise ConfigurationError(f"{name} draws have shape {np.shape(arr)}, expected {shape}")
        ci = np.shape(self.cumulative_infections)
        if len(ci) != 3 or ci[:2] != shape:
            raise ConfigurationError(
                f"cumulative_infections draws must be {shape + ('t_max',)}, got {ci}"
            )

    @property
    def chains(self) -> int:
        return int(np.shape(self.r0)[0])

    @property
    def iterations(self) -> int:
        return int(np.shape(self.r0)[1])

    @property
    def t_max(self) -> int:
        return int(np.shape(self.cumulative_infections)[2])

    def draws(self, name: str) -> np.ndarray:
        """Draws of ``name`` with the chains pooled along the first axis."""
        arr = getattr(self, name, None)
        if arr is None:
            raise KeyError(f"no draws for {name}")
        arr = np.asarray(arr)
        return arr.reshape((-1,) + arr.shape[2:])

    def summary(self) -> pd.DataFrame:
        """Posterior mean, sd and central 95% interval of each parameter."""
        rows = {}
        for name in PARAMETER_NAMES:
            if getattr(self, name) is None:
                continue
            x = self.draws(name)
            rows[name] = {
                "mean": float(np.mean(x)),
                "sd": float(np.std(x, ddof=1)) if x.size > 1 else float("nan"),
                "2.5%": float(np.quantile(x, 0.025)),
                "97.5%": float(np.quantile(x, 0.975)),
            }
        return pd.DataFrame.from_dict(rows, orient="index")

    def infections_summary(self) -> pd.DataFrame:
        """Per-day posterior of cumulative infections."""
        x = self.draws("cumulative_infections")
        return pd.DataFrame({
            "day": np.arange(self.t_max),
            "mean": x.mean(axis=0),
            "2.5%": np.quantile(x, 0.025, axis=0),
            "97.5%": np.quantile(x, 0.975, axis=0),
        })


def _check_counts(chains, iterations):
    for name, value in (("chains", chains), ("iterations", iterations)):
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
            raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


def _check_data(data: ObservationSeries, seed: SeedSpec):
    for name in ("cumulative_observed_cases", "daily_deaths"):
        n = len(getattr(data, name))
        if n != seed.t_max:
            raise ConfigurationError(f"{name} has length {n}, seed expects t_max={seed.t_max}")


def _check_seed(spec: StateSpaceModelSpec, seed: SeedSpec):
    if seed.n_age_bins != spec.n_age_bins:
        raise ConfigurationError(
            f"seed has {seed.n_age_bins} age bins, model has {spec.n_age_bins}"
        )
    if seed.variant != spec.variant:
        raise ConfigurationError(f"seed was derived for the {seed.variant} model, not {spec.variant}")

    free_variables = spec.free_variables()
    for name in free_variables:
        if name not in seed:
            raise ConfigurationError(f"seed does not cover free variable {name}")
        var = seed[name]
        shape = spec.shape_of(name, seed.t_max)
        if tuple(var.shape) != shape:
            raise ConfigurationError(f"seed for {name} has shape {var.shape}, model needs {shape}")

        free = spec.free_mask(name, seed.t_max)
        if np.any(free & ~var.fixed_mask()):
            raise ConfigurationError(f"seed leaves stochastic entries of {name} without a value")
        if np.any(~free & var.fixed_mask()):
            raise ConfigurationError(f"seed sets a value on derived entries of {name}")

    for name in seed.variables:
        if name not in free_variables and seed[name].fixed_mask().any():
            raise ConfigurationError(f"seed sets a value on derived variable {name}")


def fit(
    data: ObservationSeries,
    spec: StateSpaceModelSpec,
    seed: SeedSpec,
    chains: int,
    iterations: int,
    sampler: Optional[SamplerBackend] = None,
) -> PosteriorSamples:
    """Check the inputs, run the sampler, and wrap the draws.

    Args:
        data: observed series, each of length seed.t_max
        spec: model to fit
        seed: tagged seed from derive_seed (or built by hand)
        chains, iterations: positive integers
        sampler: backend to delegate to; a MetropolisSampler by default
    Raises:
        ConfigurationError: before any sampler call, if the inputs disagree
    """
    _check_counts(chains, iterations)
    _check_data(data, seed)
    _check_seed(spec, seed)

    if sampler is None:
        sampler = MetropolisSampler()
    logger.info("Fitting %s model (t_max=%d) with %s",
                spec.variant, seed.t_max, type(sampler).__name__)

    out = sampler.sample(spec, data, seed, int(chains), int(iterations))
    try:
        kwargs = {name: out[_DRAW_KEYS.get(name, name)] for name in PARAMETER_NAMES[:3]}
        kwargs["cumulative_infections"] = out["cumulative_infections"]
    except KeyError as exc:
        raise ConfigurationError(f"sampler output is missing {exc}") from exc
    if spec.has_inflow:
        kwargs["inflow_rate"] = out.get("inflow_rate")
    return PosteriorSamples(**{k: None if v is None else np.asarray(v) for k, v in kwargs.items()})
