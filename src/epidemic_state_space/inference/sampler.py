# src/epidemic_state_space/inference/sampler.py
"""
Sampler backends for the inference driver.

``SamplerBackend`` is the seam the driver talks to: anything that accepts a
model spec, the observed data, a tagged seed and chain/iteration counts and
returns per-chain draws can stand in for it (a JAGS/Stan bridge, a PPL...).

``MetropolisSampler`` is the small reference backend shipped with the
package. It sweeps over every free quantity of the model with single-site
Metropolis updates against the log joint of ``likelihood.py``:

* R0 and the inflow rate: reflecting Gaussian random walk on [0, inf)
* mortality / observation probabilities: reflecting random walk on [0, 1]
* latent counts (day-0 state, per-day new infections, per-day inflow):
  uniform integer steps in [-step, step] without 0; negative proposals are
  rejected without evaluating the density

Reflection keeps every proposal symmetric, so the acceptance ratio is the
posterior ratio alone. Chains are independent and each owns a child stream of
one SeedSequence.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import numpy as np
from joblib import Parallel, delayed
from numpy.random import Generator, SeedSequence, default_rng

from ..config import (
    N_BURN_IN,
    PROPOSAL_COUNT_STEP,
    PROPOSAL_INFLOW_SIGMA,
    PROPOSAL_PROB_SIGMA,
    PROPOSAL_R0_SIGMA,
)
from ..errors import ConfigurationError
from ..model.likelihood import LatentState, log_joint
from ..model.spec import StateSpaceModelSpec
from ..state import ObservationSeries
from .seed import SeedSpec, check_seed_feasible

logger = logging.getLogger(__name__)


class SamplerBackend(ABC):
    """Interface of an inference engine."""

    @abstractmethod
    def sample(
        self,
        spec: StateSpaceModelSpec,
        data: ObservationSeries,
        seed: SeedSpec,
        chains: int,
        iterations: int,
    ) -> Dict[str, np.ndarray]:
        """Return draws keyed by name, each shaped (chains, iterations, ...).

        Required keys: R0, mortality_prob, observation_prob,
        cumulative_infections; inflow_rate for the inflow model.
        """


def _reflect_positive(x: float) -> float:
    return abs(x)


def _reflect_unit(x: float) -> float:
    y = abs(x) % 2.0
    return 2.0 - y if y > 1.0 else y


class MetropolisSampler(SamplerBackend):

    def __init__(
        self,
        burn_in: int = N_BURN_IN,
        seed: Optional[int] = None,
        n_jobs: int = 1,
        r0_sigma: float = PROPOSAL_R0_SIGMA,
        prob_sigma: float = PROPOSAL_PROB_SIGMA,
        inflow_sigma: float = PROPOSAL_INFLOW_SIGMA,
        count_step: int = PROPOSAL_COUNT_STEP,
    ):
        if burn_in < 0:
            raise ConfigurationError("burn_in must be >= 0")
        if count_step < 1:
            raise ConfigurationError("count_step must be >= 1")
        self.burn_in = int(burn_in)
        self.seed = seed
        self.n_jobs = n_jobs
        self.r0_sigma = float(r0_sigma)
        self.prob_sigma = float(prob_sigma)
        self.inflow_sigma = float(inflow_sigma)
        self.count_step = int(count_step)
        self.acceptance_ = None

    @classmethod
    def from_config(cls, cfg) -> "MetropolisSampler":
        """Build from a FitConfig."""
        return cls(
            burn_in=cfg.burn_in,
            seed=cfg.seed,
            n_jobs=cfg.n_jobs,
            r0_sigma=cfg.proposal["r0"],
            prob_sigma=cfg.proposal["prob"],
            inflow_sigma=cfg.proposal["inflow_rate"],
            count_step=cfg.proposal["count_step"],
        )

    def sample(self, spec, data, seed, chains, iterations):
        start_lp = check_seed_feasible(seed, spec, data)
        logger.info(
            "Sampling %d chain(s) x %d iterations (burn-in %d), log joint at seed %.3f",
            chains, iterations, self.burn_in, start_lp,
        )
        start = seed.to_latent()
        children = SeedSequence(self.seed).spawn(int(chains))

        if self.n_jobs == 1:
            outputs = [self._run_chain(spec, data, start, default_rng(c), iterations)
                       for c in children]
        else:
            outputs = Parallel(n_jobs=self.n_jobs)(
                delayed(self._run_chain)(spec, data, start, default_rng(c), iterations)
                for c in children
            )

        draws = {key: np.stack([out[key] for out in outputs]) for key in outputs[0]
                 if key != "acceptance"}
        self.acceptance_ = np.array([out["acceptance"] for out in outputs])
        logger.info("Mean acceptance rate per chain: %s", np.round(self.acceptance_, 3).tolist())
        return draws

    # ------------------------------------------------------------------

    def _run_chain(self, spec, data, start: LatentState, rng: Generator, iterations: int):
        current = start.copy()
        lp = log_joint(spec, current, data)
        t_max = current.t_max

        out = {
            "R0": np.zeros(iterations),
            "mortality_prob": np.zeros(iterations),
            "observation_prob": np.zeros(iterations),
            "cumulative_infections": np.zeros((iterations, t_max), dtype=np.int64),
        }
        if spec.has_inflow:
            out["inflow_rate"] = np.zeros(iterations)

        accepted = 0
        proposed = 0
        for it in range(iterations + self.burn_in):
            for update in self._updates(spec, current):
                proposed += 1
                proposal = update(current, rng)
                if proposal is None:
                    continue
                lp_new = log_joint(spec, proposal, data)
                # Boundary priors can evaluate to +inf; never move there
                if not np.isfinite(lp_new):
                    continue
                log_alpha = lp_new - lp
                if np.log(rng.random()) < log_alpha:
                    current, lp = proposal, lp_new
                    accepted += 1

            if it >= self.burn_in:
                i = it - self.burn_in
                out["R0"][i] = current.r0
                out["mortality_prob"][i] = current.mortality_prob
                out["observation_prob"][i] = current.observation_prob
                out["cumulative_infections"][i] = np.cumsum(current.states()[:, 0])
                if spec.has_inflow:
                    out["inflow_rate"][i] = current.inflow_rate

        out["acceptance"] = accepted / max(proposed, 1)
        return out

    def _updates(self, spec, current: LatentState):
        """Yield one proposal function per free quantity, in sweep order."""
        yield self._propose_scalar("r0", self.r0_sigma, _reflect_positive)
        yield self._propose_scalar("mortality_prob", self.prob_sigma, _reflect_unit)
        yield self._propose_scalar("observation_prob", self.prob_sigma, _reflect_unit)
        if spec.has_inflow:
            yield self._propose_scalar("inflow_rate", self.inflow_sigma, _reflect_positive)

        for a in range(current.n_age_bins):
            yield self._propose_count("initial_state", a)
        for t in range(1, current.t_max):
            yield self._propose_count("new_infections", t)
        if spec.has_inflow:
            for t in range(1, current.t_max):
                yield self._propose_count("inflow", t)

    @staticmethod
    def _propose_scalar(name, sigma, reflect):
        def propose(current, rng):
            new = current.copy()
            setattr(new, name, reflect(getattr(current, name) + sigma * rng.standard_normal()))
            return new
        return propose

    def _propose_count(self, name, index):
        step = self.count_step

        def propose(current, rng):
            delta = int(rng.integers(1, step + 1)) * (1 if rng.random() < 0.5 else -1)
            value = int(getattr(current, name)[index]) + delta
            if value < 0:
                return None
            new = current.copy()
            getattr(new, name)[index] = value
            return new
        return propose
