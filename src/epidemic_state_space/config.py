# src/epidemic_state_space/config.py
"""
Reference constants of the age-structured model, and the small dataclass
configs used by the runner. Changing a value here changes the defaults of the
whole package without touching the simulator or the model spec.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

# ==============================================================================
# --- Pipeline geometry ---
# ==============================================================================
# Number of infection-age bins (index 0 = infected today)
N_AGE_BINS = 21
# Inclusive range of ages counted as infectious (12-day infectious period)
INFECTIOUS_WINDOW = (4, 15)

# ==============================================================================
# --- Prior hyperparameters ---
# ==============================================================================
# Gamma priors are (shape, rate), Beta priors are (alpha, beta)
PRIOR_R0 = (0.01, 0.01)
PRIOR_MORTALITY = (0.01, 0.9)
PRIOR_OBSERVATION = (0.5, 0.5)
PRIOR_INFLOW_RATE = (0.01, 0.01)
# Poisson rate for every age bin of the day-0 state
INITIAL_STATE_RATE = 1.0
INITIAL_STATE_RATE_INFLOW = 0.1

# ==============================================================================
# --- Sampler defaults ---
# ==============================================================================
SEED = 2025
N_CHAINS = 3
N_ITERATIONS = 1000
N_BURN_IN = 500
# Reflecting random-walk scales for R0, the two probabilities and the inflow
# rate; counts move by a uniform integer step in [-step, step] minus zero
PROPOSAL_R0_SIGMA = 0.05
PROPOSAL_PROB_SIGMA = 0.02
PROPOSAL_INFLOW_SIGMA = 0.1
PROPOSAL_COUNT_STEP = 2
# Seeded parameters are moved this far inside the open support of their
# prior; Gamma and Beta priors with shape < 1 are unbounded on the boundary
SEED_PARAM_MARGIN = 1e-6


@dataclass
class SimConfig:
    t_max: int = 60
    r0: float = 2.0
    mortality_prob: float = 0.1
    observation_prob: float = 0.5
    inflow_rate: Optional[float] = None
    n_age_bins: int = N_AGE_BINS
    infectious_window: Tuple[int, int] = INFECTIOUS_WINDOW
    initial_state: Optional[Sequence[int]] = None
    seed: Optional[int] = SEED
    out_path: str = "data/simulated_trajectory.csv"
    use_tempfile: bool = False

    def resolved_initial_state(self):
        """Default day-0 state: one fresh infection, every other bin empty."""
        if self.initial_state is not None:
            return list(self.initial_state)
        return [1] + [0] * (self.n_age_bins - 1)


@dataclass
class FitConfig:
    chains: int = N_CHAINS
    iterations: int = N_ITERATIONS
    burn_in: int = N_BURN_IN
    seed: Optional[int] = SEED
    n_jobs: int = 1
    proposal: dict = field(default_factory=lambda: {
        "r0": PROPOSAL_R0_SIGMA,
        "prob": PROPOSAL_PROB_SIGMA,
        "inflow_rate": PROPOSAL_INFLOW_SIGMA,
        "count_step": PROPOSAL_COUNT_STEP,
    })
