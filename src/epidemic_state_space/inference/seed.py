# src/epidemic_state_space/inference/seed.py
"""
Initial values for the sampler.

A sampler started from default or prior-drawn values usually sits at a point
of zero likelihood (more observed cases than infections, more deaths than
people in the oldest bin, ...) and fails straight away. ``derive_seed`` takes
a trajectory that satisfies the shift invariant and turns it into a seed
whose every latent element is tagged:

* FREE, with a value: a stochastic element the sampler may start from;
* DERIVED, without a value: an element the model computes (the aged bins of
  the state matrix, the combined first bin of the inflow model, running sums),
  or one no node defines. Engines reject seeds for these, so none is given.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union

import numpy as np

from ..config import SEED_PARAM_MARGIN
from ..errors import ConfigurationError, InferenceInfeasibility
from ..model.likelihood import LatentState, first_infeasible_term, log_joint_terms
from ..model.spec import StateSpaceModelSpec
from ..simulate.simulator import SimulationResult
from ..state import ObservationSeries, Trajectory

logger = logging.getLogger(__name__)


class Role(Enum):
    FREE = "free"
    DERIVED = "derived"


@dataclass(frozen=True)
class SeedEntry:
    role: Role
    value: Optional[float] = None

    @classmethod
    def fixed(cls, value) -> "SeedEntry":
        return cls(Role.FREE, value)

    @classmethod
    def derived(cls) -> "SeedEntry":
        return cls(Role.DERIVED, None)

    @property
    def is_fixed(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class VariableSeed:
    """Tagged seed entries of one variable, flattened in C order."""

    name: str
    shape: Tuple[int, ...]
    entries: Tuple[SeedEntry, ...]

    def __post_init__(self):
        if len(self.entries) != int(np.prod(self.shape, dtype=int)):
            raise ConfigurationError(f"{self.name}: {len(self.entries)} entries for shape {self.shape}")

    def free_mask(self) -> np.ndarray:
        return np.array([e.role is Role.FREE for e in self.entries], dtype=bool).reshape(self.shape)

    def fixed_mask(self) -> np.ndarray:
        return np.array([e.is_fixed for e in self.entries], dtype=bool).reshape(self.shape)

    def values(self) -> np.ndarray:
        """Seed values as floats, NaN where the entry is left unconstrained."""
        return np.array([np.nan if e.value is None else e.value for e in self.entries],
                        dtype=float).reshape(self.shape)

    def entry(self, index=()) -> SeedEntry:
        flat = int(np.ravel_multi_index(index, self.shape)) if self.shape else 0
        return self.entries[flat]


@dataclass(frozen=True)
class SeedSpec:
    variables: Dict[str, VariableSeed]
    t_max: int
    n_age_bins: int
    variant: str

    def __getitem__(self, name: str) -> VariableSeed:
        return self.variables[name]

    def __contains__(self, name) -> bool:
        return name in self.variables

    def free_variables(self):
        return [n for n, v in self.variables.items() if v.free_mask().any()]

    def to_inits(self) -> Dict[str, Union[float, list]]:
        """Initial values in the NaN-for-missing layout of BUGS-family engines.

        Variables with no fixed entry at all are left out.
        """
        inits = {}
        for name, var in self.variables.items():
            if not var.fixed_mask().any():
                continue
            vals = var.values()
            inits[name] = float(vals) if vals.ndim == 0 else vals.tolist()
        return inits

    def to_latent(self) -> LatentState:
        """Rebuild the sampler's latent state from the fixed entries."""
        missing = [
            name for name, var in self.variables.items()
            if np.any(var.free_mask() & ~var.fixed_mask())
        ]
        if missing:
            raise ConfigurationError(f"seed leaves free entries without a value: {missing}")

        state = self.variables["state"].values()
        initial = state[0].astype(np.int64)
        if "new_infections" in self.variables:
            new_inf = np.nan_to_num(self.variables["new_infections"].values()).astype(np.int64)
        else:
            new_inf = np.nan_to_num(state[:, 0]).astype(np.int64)
        new_inf[0] = 0
        inflow = None
        if "inflow" in self.variables:
            inflow = np.nan_to_num(self.variables["inflow"].values()).astype(np.int64)
            inflow[0] = 0

        def scalar(name):
            return float(self.variables[name].values()) if name in self.variables else None

        return LatentState(
            r0=scalar("R0"),
            mortality_prob=scalar("mortality_prob"),
            observation_prob=scalar("observation_prob"),
            initial_state=initial,
            new_infections=new_inf,
            inflow_rate=scalar("inflow_rate"),
            inflow=inflow,
        )


def _interior_rate(x: float, margin: float = SEED_PARAM_MARGIN) -> np.ndarray:
    return np.asarray(max(float(x), margin))


def _interior_prob(x: float, margin: float = SEED_PARAM_MARGIN) -> np.ndarray:
    return np.asarray(min(max(float(x), margin), 1.0 - margin))


def _reference_values(trajectory: Trajectory) -> Dict[str, np.ndarray]:
    """Reference values by variable name; parameters pulled off the boundary."""
    p = trajectory.params
    values = {
        "R0": _interior_rate(p.r0),
        "mortality_prob": _interior_prob(p.mortality_prob),
        "observation_prob": _interior_prob(p.observation_prob),
        "state": np.asarray(trajectory.states),
        "new_infections": np.asarray(trajectory.new_infections),
        "cumulative_infections": trajectory.cumulative_infections(),
    }
    if trajectory.inflow is not None:
        values["inflow"] = np.asarray(trajectory.inflow)
        values["inflow_rate"] = _interior_rate(p.inflow_rate)
    return values


def derive_seed(
    reference: Union[SimulationResult, Trajectory],
    spec: StateSpaceModelSpec,
) -> SeedSpec:
    """Turn a reference trajectory into a tagged seed for ``spec``.

    Every element a stochastic node defines gets the reference value, not
    only state[0, 0]: the whole day-0 state and, in the base model, the
    first bin state[t, 0] of every later day (in the inflow model the
    new_infections and inflow series instead). Leaving those draws open would
    let an engine start from a point of zero likelihood. Elements defined by
    a deterministic node, or by no node, stay DERIVED without a value.
    Parameters on the edge of their prior's support (R0 = 0, a probability
    of 0 or 1) are moved SEED_PARAM_MARGIN inside it.

    Args:
        reference: SimulationResult or Trajectory that satisfies the shift
            invariant; its length fixes t_max
        spec: model the seed is for (base or inflow variant)
    Returns:
        SeedSpec covering every latent variable of the model
    Raises:
        ConfigurationError: geometry or variant mismatch, or a broken shift
    """
    trajectory = reference.trajectory if isinstance(reference, SimulationResult) else reference
    if not isinstance(trajectory, Trajectory):
        raise ConfigurationError("reference must be a SimulationResult or a Trajectory")

    if trajectory.n_age_bins != spec.n_age_bins:
        raise ConfigurationError(
            f"reference has {trajectory.n_age_bins} age bins, model expects {spec.n_age_bins}"
        )
    if trajectory.t_max < 2:
        raise ConfigurationError("reference trajectory must span at least 2 days")
    broken = trajectory.shift_violations()
    if broken.size:
        raise ConfigurationError(f"reference breaks the shift invariant on day {int(broken[0])}")
    if spec.has_inflow and trajectory.inflow is None:
        raise ConfigurationError("inflow model needs a reference with a separate inflow series")
    if not spec.has_inflow and trajectory.inflow is not None:
        raise ConfigurationError("reference carries an inflow term the base model cannot explain")

    t_max = trajectory.t_max
    reference_values = _reference_values(trajectory)

    variables = {}
    for name in spec.latent_variables():
        shape = spec.shape_of(name, t_max)
        free = spec.free_mask(name, t_max).ravel()
        if free.any() and name not in reference_values:
            raise ConfigurationError(f"reference has no values for free variable {name}")
        values = np.asarray(reference_values.get(name, np.zeros(shape))).ravel()
        entries = tuple(
            SeedEntry.fixed(np.asarray(v).item()) if f else SeedEntry.derived()
            for f, v in zip(free, values)
        )
        variables[name] = VariableSeed(name=name, shape=shape, entries=entries)

    seed = SeedSpec(variables=variables, t_max=t_max,
                    n_age_bins=spec.n_age_bins, variant=spec.variant)
    logger.debug(
        "Derived %s seed: %d fixed entries over %s",
        spec.variant,
        sum(int(v.fixed_mask().sum()) for v in variables.values()),
        ", ".join(seed.free_variables()),
    )
    return seed


def check_seed_feasible(
    seed: SeedSpec,
    spec: StateSpaceModelSpec,
    data: ObservationSeries,
) -> float:
    """Log joint density at the seed; raise InferenceInfeasibility if not finite."""
    latent = seed.to_latent()
    terms = log_joint_terms(spec, latent, data)
    bad = first_infeasible_term(terms)
    if bad is not None:
        term, day = bad
        where = "" if day is None else (f" at age {day}" if term == "initial_state" else f" on day {day}")
        raise InferenceInfeasibility(
            f"log joint density is not finite at the seed: term '{term}'{where}",
            term=term,
            day=day,
        )
    return float(sum(np.sum(v) for v in terms.values()))
