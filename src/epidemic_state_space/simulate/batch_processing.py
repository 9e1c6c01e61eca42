# src/epidemic_state_space/simulate/batch_processing.py
#
# Run many independent replicates of simulate() and write trajectories to CSV.
#
# Every replicate owns its own child random stream spawned from one master
# SeedSequence, so a batch is reproducible from a single seed whether the
# replicates run serially or through joblib workers.
#
# CSV layout: metadata rows (parameters, infectious window, seed), then a
# header row day, age_0..age_{W-1}, new_infections, [inflow,]
# cumulative_infections, daily_deaths, cumulative_deaths,
# cumulative_observed_cases.

import csv
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from numpy.random import SeedSequence, default_rng

from ..config import INFECTIOUS_WINDOW, N_AGE_BINS, SimConfig
from ..errors import ConfigurationError
from ..state import ModelParameters, Trajectory
from .simulator import SimulationResult, simulate

logger = logging.getLogger(__name__)

# Number of metadata rows written before the header
HEADER_ROWS = 3


def default_csv_path(use_tempfile=True) -> Path:
    """Unique file in the system temp dir, or the configured default path."""
    if use_tempfile:
        fd, name = tempfile.mkstemp(prefix="trajectory_", suffix=".csv")
        os.close(fd)
        return Path(name)
    return Path(SimConfig.out_path)


def _run_one(child: SeedSequence, t_max, params, initial_state, infectious_window, n_age_bins):
    return simulate(
        t_max=t_max,
        params=params,
        initial_state=initial_state,
        rng=default_rng(child),
        infectious_window=infectious_window,
        n_age_bins=n_age_bins,
    )


def simulate_replicates(
    n: int,
    t_max: int,
    params: ModelParameters,
    initial_state: Sequence[int],
    seed: Optional[int] = None,
    infectious_window: Tuple[int, int] = INFECTIOUS_WINDOW,
    n_age_bins: int = N_AGE_BINS,
    n_jobs: int = 1,
) -> List[SimulationResult]:
    """Simulate n independent trajectories.

    Replicate i always uses the i-th child of SeedSequence(seed), so results
    do not depend on n_jobs.
    """
    if n < 1:
        raise ConfigurationError("n must be >= 1")

    children = SeedSequence(seed).spawn(int(n))
    if n_jobs == 1:
        results = [
            _run_one(c, t_max, params, initial_state, infectious_window, n_age_bins)
            for c in children
        ]
    else:
        results = Parallel(n_jobs=n_jobs)(
            delayed(_run_one)(c, t_max, params, initial_state, infectious_window, n_age_bins)
            for c in children
        )
    logger.info("Simulated %d replicates of %d days", len(results), t_max)
    return results


def replicate_matrix(results: Sequence[SimulationResult], field: str = "cumulative_infections") -> np.ndarray:
    """Stack one derived series of every replicate into an (n, t_max) array."""
    return np.vstack([np.asarray(getattr(r, field)) for r in results])


def trajectory_frame(result: SimulationResult) -> pd.DataFrame:
    """One row per day: the age bins followed by the derived series."""
    traj = result.trajectory
    df = pd.DataFrame(traj.states, columns=[f"age_{i}" for i in range(traj.n_age_bins)])
    df.insert(0, "day", np.arange(traj.t_max))
    df["new_infections"] = traj.new_infections
    if traj.inflow is not None:
        df["inflow"] = traj.inflow
    df["cumulative_infections"] = result.cumulative_infections
    df["daily_deaths"] = result.daily_deaths
    df["cumulative_deaths"] = result.cumulative_deaths
    df["cumulative_observed_cases"] = result.cumulative_observed_cases
    return df


def write_trajectory_csv(
    result: SimulationResult,
    out_path=None,
    use_tempfile=True,
    infectious_window: Tuple[int, int] = INFECTIOUS_WINDOW,
    seed: Optional[int] = None,
) -> Path:
    """Write one simulated run to CSV and return the path."""
    if out_path is None:
        csv_path = default_csv_path(use_tempfile=use_tempfile)
    else:
        csv_path = Path(out_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)

    params = result.trajectory.params
    with csv_path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(["params", params.r0, params.mortality_prob,
                         params.observation_prob,
                         "" if params.inflow_rate is None else params.inflow_rate])
        writer.writerow(["infectious_window", *infectious_window])
        writer.writerow(["seed", "" if seed is None else seed])
        trajectory_frame(result).to_csv(fh, index=False)

    logger.info("CSV written to: %s", csv_path)
    return csv_path


def read_trajectory_csv(path, header_rows: int = HEADER_ROWS) -> SimulationResult:
    """Load a CSV written by write_trajectory_csv back into a SimulationResult."""
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Trajectory CSV not found: {path}")

    with csv_path.open(newline="") as fh:
        reader = csv.reader(fh)
        meta = [next(reader) for _ in range(header_rows)]
    r0, mortality, observation, inflow_rate = meta[0][1:5]
    params = ModelParameters(
        r0=float(r0),
        mortality_prob=float(mortality),
        observation_prob=float(observation),
        inflow_rate=float(inflow_rate) if inflow_rate != "" else None,
    )

    df = pd.read_csv(csv_path, skiprows=header_rows)
    age_cols = sorted((c for c in df.columns if c.startswith("age_")),
                      key=lambda s: int(s.split("_")[1]))
    if not age_cols:
        raise ConfigurationError(f"No age_ columns found in {path}")

    trajectory = Trajectory(
        states=df[age_cols].to_numpy(dtype=np.int64),
        new_infections=df["new_infections"].to_numpy(dtype=np.int64),
        params=params,
        inflow=df["inflow"].to_numpy(dtype=np.int64) if "inflow" in df.columns else None,
    )
    return SimulationResult(
        trajectory=trajectory,
        cumulative_infections=df["cumulative_infections"].to_numpy(dtype=np.int64),
        daily_deaths=df["daily_deaths"].to_numpy(dtype=np.int64),
        cumulative_deaths=df["cumulative_deaths"].to_numpy(dtype=np.int64),
        cumulative_observed_cases=df["cumulative_observed_cases"].to_numpy(dtype=np.int64),
    )
