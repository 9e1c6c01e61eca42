# src/epidemic_state_space/model/spec.py
"""
Declarative description of the age-structured state-space model.

The model is held as data: a tuple of ``Node`` definitions, each covering a
region of one variable (a scalar, a day series, or a block of the
(day, age) state matrix) with a role, parents and either a distribution or a
deterministic expression. The inflow variant is built from the base model by
replacing and adding nodes, not by a second copy of the model.

Nothing here evaluates densities; see ``likelihood.py`` for that. ``to_bugs``
renders the graph as BUGS/JAGS model text for engines that take a model file.

Index conventions inside expressions are those of the rendered BUGS text:
1-based, ``t`` for the day and ``a`` for the age bin.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from ..config import (
    INFECTIOUS_WINDOW,
    INITIAL_STATE_RATE,
    INITIAL_STATE_RATE_INFLOW,
    N_AGE_BINS,
    PRIOR_INFLOW_RATE,
    PRIOR_MORTALITY,
    PRIOR_OBSERVATION,
    PRIOR_R0,
)
from ..errors import ConfigurationError

STOCHASTIC = "stochastic"
DETERMINISTIC = "deterministic"
OBSERVED = "observed"
ROLES = (STOCHASTIC, DETERMINISTIC, OBSERVED)

# Regions along one axis: every index, only the first, or all but the first
ALL, FIRST, REST = "all", "first", "rest"

# BUGS argument order: dgamma(shape, rate), dbeta(a, b), dpois(mu), dbin(p, n)
FAMILIES = {"gamma": 2, "beta": 2, "poisson": 1, "binomial": 2}
_BUGS_NAMES = {"gamma": "dgamma", "beta": "dbeta", "poisson": "dpois", "binomial": "dbin"}

# Names that come with the data rather than from a node
DATA_NAMES = ("t_max",)


@dataclass(frozen=True)
class Distribution:
    family: str
    args: Tuple[Union[float, str], ...]

    def __post_init__(self):
        if self.family not in FAMILIES:
            raise ConfigurationError(f"Unknown distribution family: {self.family}")
        if len(self.args) != FAMILIES[self.family]:
            raise ConfigurationError(
                f"{self.family} takes {FAMILIES[self.family]} arguments, got {len(self.args)}"
            )

    def render(self, **consts) -> str:
        parts = [_render_arg(x, consts) for x in self.args]
        return f"{_BUGS_NAMES[self.family]}({', '.join(parts)})"


def _render_arg(x, consts) -> str:
    if isinstance(x, str):
        return x.format(**consts)
    return repr(float(x)) if float(x) != int(x) else f"{int(x)}"


@dataclass(frozen=True)
class Node:
    """One definition in the model graph.

    ``days`` / ``ages`` give the region of the variable the node defines:
    None for an axis the variable does not have, else ALL, FIRST or REST.
    """

    name: str
    role: str
    parents: Tuple[str, ...] = ()
    distribution: Optional[Distribution] = None
    expression: Optional[str] = None
    days: Optional[str] = None
    ages: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str], Optional[str]]:
        return (self.name, self.days, self.ages)


def _gamma(shape_rate) -> Distribution:
    return Distribution("gamma", tuple(float(x) for x in shape_rate))


def _beta(ab) -> Distribution:
    return Distribution("beta", tuple(float(x) for x in ab))


@dataclass(frozen=True)
class StateSpaceModelSpec:
    """Model graph plus the pipeline geometry it is defined on."""

    nodes: Tuple[Node, ...]
    n_age_bins: int = N_AGE_BINS
    infectious_window: Tuple[int, int] = INFECTIOUS_WINDOW
    variant: str = "base"
    _index: Dict[Tuple, int] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "infectious_window", tuple(int(x) for x in self.infectious_window))
        object.__setattr__(self, "_index", {n.key: i for i, n in enumerate(self.nodes)})

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------

    @classmethod
    def base(
        cls,
        n_age_bins: int = N_AGE_BINS,
        infectious_window: Tuple[int, int] = INFECTIOUS_WINDOW,
        r0_prior=PRIOR_R0,
        mortality_prior=PRIOR_MORTALITY,
        observation_prior=PRIOR_OBSERVATION,
        initial_rate: float = INITIAL_STATE_RATE,
    ) -> "StateSpaceModelSpec":
        """Model without external inflow.

        state[1, a]  ~ dpois(initial_rate)                      day 0, every age
        state[t, a]  <- state[t-1, a-1]                         t >= 2, a >= 2
        infectious[t] <- sum(state[t, lo:hi])
        state[t, 1]  ~ dpois(infectious[t-1] * R0 / width)      t >= 2
        daily_deaths[t] ~ dbin(mortality_prob, state[t, W])
        cumulative_observed_cases[t] ~ dbin(observation_prob, cumulative_infections[t])
        """
        nodes = (
            Node("R0", STOCHASTIC, distribution=_gamma(r0_prior)),
            Node("mortality_prob", STOCHASTIC, distribution=_beta(mortality_prior)),
            Node("observation_prob", STOCHASTIC, distribution=_beta(observation_prior)),
            Node("state", STOCHASTIC, days=FIRST, ages=ALL,
                 distribution=Distribution("poisson", (float(initial_rate),))),
            Node("state", DETERMINISTIC, parents=("state",), days=REST, ages=REST,
                 expression="state[t-1, a-1]"),
            Node("infectious", DETERMINISTIC, parents=("state",), days=ALL,
                 expression="sum(state[t, {lo}:{hi}])"),
            Node("state", STOCHASTIC, parents=("infectious", "R0"), days=REST, ages=FIRST,
                 distribution=Distribution("poisson", ("infectious[t-1] * R0 / {width}",))),
            Node("cumulative_infections", DETERMINISTIC, parents=("state",), days=ALL,
                 expression="sum(state[1:t, 1])"),
            Node("daily_deaths", OBSERVED, parents=("mortality_prob", "state"), days=ALL,
                 distribution=Distribution("binomial", ("mortality_prob", "state[t, {W}]"))),
            Node("cumulative_observed_cases", OBSERVED,
                 parents=("observation_prob", "cumulative_infections"), days=ALL,
                 distribution=Distribution("binomial", ("observation_prob", "cumulative_infections[t]"))),
        )
        spec = cls(nodes=nodes, n_age_bins=n_age_bins,
                   infectious_window=infectious_window, variant="base")
        spec.validate()
        return spec

    def with_inflow(
        self,
        inflow_prior=PRIOR_INFLOW_RATE,
        initial_rate: float = INITIAL_STATE_RATE_INFLOW,
    ) -> "StateSpaceModelSpec":
        """Add the external-inflow term.

        new_infections[t] ~ dpois(infectious[t-1] * R0 / width)
        inflow[t]         ~ dpois(inflow_rate)
        state[t, 1]       <- new_infections[t] + inflow[t]
        """
        if self.has_inflow:
            raise ConfigurationError("model already has an inflow term")

        transmission = self.node("state", REST, FIRST)
        nodes = list(self.nodes)
        nodes[self._index[("state", FIRST, ALL)]] = replace(
            self.node("state", FIRST, ALL),
            distribution=Distribution("poisson", (float(initial_rate),)),
        )
        nodes[self._index[transmission.key]] = Node(
            "state", DETERMINISTIC, parents=("new_infections", "inflow"),
            days=REST, ages=FIRST, expression="new_infections[t] + inflow[t]",
        )
        extra = [
            Node("inflow_rate", STOCHASTIC, distribution=_gamma(inflow_prior)),
            Node("new_infections", STOCHASTIC, parents=transmission.parents, days=REST,
                 distribution=transmission.distribution),
            Node("inflow", STOCHASTIC, parents=("inflow_rate",), days=REST,
                 distribution=Distribution("poisson", ("inflow_rate",))),
        ]
        # Priors first, latent series right after the day-0 state
        at = self._index[("observation_prob", None, None)] + 1
        nodes = nodes[:at] + extra[:1] + nodes[at:]
        at = [n.key for n in nodes].index(("state", FIRST, ALL)) + 1
        nodes = nodes[:at] + extra[1:] + nodes[at:]

        spec = StateSpaceModelSpec(
            nodes=tuple(nodes),
            n_age_bins=self.n_age_bins,
            infectious_window=self.infectious_window,
            variant="inflow",
        )
        spec.validate()
        return spec

    @classmethod
    def inflow(cls, n_age_bins: int = N_AGE_BINS,
               infectious_window: Tuple[int, int] = INFECTIOUS_WINDOW) -> "StateSpaceModelSpec":
        return cls.base(n_age_bins=n_age_bins, infectious_window=infectious_window).with_inflow()

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def node(self, name: str, days: Optional[str] = None, ages: Optional[str] = None) -> Node:
        try:
            return self.nodes[self._index[(name, days, ages)]]
        except KeyError:
            raise KeyError(f"No node {name}[{days}, {ages}] in the {self.variant} model")

    def nodes_named(self, name: str) -> List[Node]:
        return [n for n in self.nodes if n.name == name]

    def names(self) -> List[str]:
        out = []
        for n in self.nodes:
            if n.name not in out:
                out.append(n.name)
        return out

    @property
    def has_inflow(self) -> bool:
        return any(n.name == "inflow" for n in self.nodes)

    @property
    def window_length(self) -> int:
        a, b = self.infectious_window
        return b - a + 1

    def prior(self, name: str) -> Distribution:
        return self.node(name).distribution

    @property
    def initial_rate(self) -> float:
        return float(self.node("state", FIRST, ALL).distribution.args[0])

    def observed_variables(self) -> List[str]:
        return [n for n in self.names() if any(x.role == OBSERVED for x in self.nodes_named(n))]

    def latent_variables(self) -> List[str]:
        """Every non-observed variable, whether stochastic or derived."""
        observed = set(self.observed_variables())
        return [n for n in self.names() if n not in observed]

    def free_variables(self) -> List[str]:
        """Latent variables with at least one stochastic element (need a seed)."""
        return [n for n in self.latent_variables()
                if any(x.role == STOCHASTIC for x in self.nodes_named(n))]

    def shape_of(self, name: str, t_max: int) -> Tuple[int, ...]:
        node = self.nodes_named(name)[0]
        if node.days is None:
            return ()
        if node.ages is None:
            return (int(t_max),)
        return (int(t_max), self.n_age_bins)

    def free_mask(self, name: str, t_max: int) -> np.ndarray:
        """True for every element of ``name`` defined by a stochastic node.

        Elements covered by a deterministic node, or by no node at all (e.g.
        day 0 of the inflow series), are derived and must never be seeded.
        """
        shape = self.shape_of(name, t_max)
        mask = np.zeros(shape, dtype=bool)
        for node in self.nodes_named(name):
            if node.role != STOCHASTIC:
                continue
            if not shape:
                mask = np.ones((), dtype=bool)
                continue
            region = (_axis_slice(node.days),)
            if len(shape) == 2:
                region += (_axis_slice(node.ages),)
            mask[region] = True
        return mask

    # ------------------------------------------------------------------
    # checks and rendering
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check geometry and graph consistency; raise ConfigurationError."""
        a, b = self.infectious_window
        if not 0 <= a <= b < self.n_age_bins - 1:
            raise ConfigurationError(
                f"infectious window {self.infectious_window} must satisfy "
                f"0 <= a <= b < {self.n_age_bins - 1} (death age is the last bin)"
            )
        if len(self._index) != len(self.nodes):
            raise ConfigurationError("two nodes define the same region")

        defined = set(self.names()) | set(DATA_NAMES)
        for n in self.nodes:
            if n.role not in ROLES:
                raise ConfigurationError(f"{n.name}: unknown role {n.role}")
            missing = [p for p in n.parents if p not in defined]
            if missing:
                raise ConfigurationError(f"{n.name}: undefined parents {missing}")
            if n.role == DETERMINISTIC and not n.expression:
                raise ConfigurationError(f"{n.name}: deterministic node without expression")
            if n.role != DETERMINISTIC and n.distribution is None:
                raise ConfigurationError(f"{n.name}: {n.role} node without distribution")

        for name in ("R0", "mortality_prob", "observation_prob"):
            if name not in defined:
                raise ConfigurationError(f"model has no prior for {name}")
        for name in ("state", "daily_deaths", "cumulative_observed_cases"):
            if name not in defined:
                raise ConfigurationError(f"model does not define {name}")

    def to_bugs(self) -> str:
        """Render the graph as BUGS/JAGS model text (``t_max`` comes with the data)."""
        a, b = self.infectious_window
        consts = {"lo": a + 1, "hi": b + 1, "width": self.window_length, "W": self.n_age_bins}
        lines = ["model {"]
        for n in self.nodes:
            lhs, loops = _lhs_and_loops(n, self.n_age_bins)
            if n.role == DETERMINISTIC:
                stmt = f"{lhs} <- {n.expression.format(**consts)}"
            else:
                stmt = f"{lhs} ~ {n.distribution.render(**consts)}"
            indent = "  "
            for loop in loops:
                lines.append(f"{indent}for ({loop}) {{")
                indent += "  "
            lines.append(indent + stmt)
            for _ in loops:
                indent = indent[:-2]
                lines.append(indent + "}")
        lines.append("}")
        return "\n".join(lines) + "\n"


def _axis_slice(region: str) -> slice:
    if region == ALL:
        return slice(None)
    if region == FIRST:
        return slice(0, 1)
    return slice(1, None)


def _lhs_and_loops(node: Node, n_age_bins: int):
    if node.days is None:
        return node.name, []
    loops = []
    index = []
    if node.days == FIRST:
        index.append("1")
    else:
        index.append("t")
        loops.append("t in 1:t_max" if node.days == ALL else "t in 2:t_max")
    if node.ages is not None:
        if node.ages == FIRST:
            index.append("1")
        else:
            index.append("a")
            loops.append(f"a in 1:{n_age_bins}" if node.ages == ALL else f"a in 2:{n_age_bins}")
    return f"{node.name}[{', '.join(index)}]", loops
