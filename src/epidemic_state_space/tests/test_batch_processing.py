import csv

import numpy as np
import pytest

from epidemic_state_space.errors import ConfigurationError
from epidemic_state_space.simulate.batch_processing import (
    HEADER_ROWS,
    default_csv_path,
    read_trajectory_csv,
    replicate_matrix,
    simulate_replicates,
    trajectory_frame,
    write_trajectory_csv,
)
from epidemic_state_space.simulate.simulator import simulate
from epidemic_state_space.state import ModelParameters


PARAMS = ModelParameters(r0=2.0, mortality_prob=0.2, observation_prob=0.6)
INITIAL = [2, 0, 0, 0, 0, 0, 0]


def test_replicates_shapes_and_independence():
    results = simulate_replicates(
        n=5, t_max=12, params=PARAMS, initial_state=INITIAL, seed=123,
        infectious_window=(1, 4), n_age_bins=7,
    )
    assert len(results) == 5
    mat = replicate_matrix(results)
    assert mat.shape == (5, 12)
    # Every row is a non-decreasing running sum
    assert np.all(np.diff(mat, axis=1) >= 0)


def test_replicates_do_not_depend_on_n_jobs():
    kwargs = dict(n=4, t_max=15, params=PARAMS, initial_state=INITIAL, seed=123,
                  infectious_window=(1, 4), n_age_bins=7)
    serial = simulate_replicates(n_jobs=1, **kwargs)
    parallel = simulate_replicates(n_jobs=2, **kwargs)
    for a, b in zip(serial, parallel):
        assert np.array_equal(a.trajectory.states, b.trajectory.states)
        assert np.array_equal(a.daily_deaths, b.daily_deaths)
        assert np.array_equal(a.cumulative_observed_cases, b.cumulative_observed_cases)


def test_replicates_need_at_least_one_run():
    with pytest.raises(ConfigurationError):
        simulate_replicates(n=0, t_max=5, params=PARAMS, initial_state=INITIAL,
                            infectious_window=(1, 4), n_age_bins=7)


def test_trajectory_frame_columns():
    res = simulate(6, ModelParameters(2.0, 0.1, 0.5, inflow_rate=1.0), INITIAL,
                   rng=np.random.default_rng(123), infectious_window=(1, 4), n_age_bins=7)
    df = trajectory_frame(res)
    assert list(df.columns[:8]) == ["day"] + [f"age_{i}" for i in range(7)]
    assert "inflow" in df.columns
    assert len(df) == 6


def test_csv_round_trip(tmp_path):
    res = simulate(10, PARAMS, INITIAL, rng=np.random.default_rng(123),
                   infectious_window=(1, 4), n_age_bins=7)
    out_csv = tmp_path / "trajectory.csv"

    path = write_trajectory_csv(res, out_path=str(out_csv), use_tempfile=False,
                                infectious_window=(1, 4), seed=123)
    assert path == out_csv
    assert out_csv.exists()

    with out_csv.open(newline="") as fh:
        rows = list(csv.reader(fh))
    assert rows[0][0] == "params"
    assert rows[1] == ["infectious_window", "1", "4"]
    assert rows[2] == ["seed", "123"]
    assert rows[HEADER_ROWS][0] == "day"
    # metadata + header + one row per day
    assert len(rows) == HEADER_ROWS + 1 + 10

    back = read_trajectory_csv(out_csv)
    assert back.trajectory.params == PARAMS
    assert back.trajectory.inflow is None
    assert np.array_equal(back.trajectory.states, res.trajectory.states)
    assert np.array_equal(back.cumulative_observed_cases, res.cumulative_observed_cases)


def test_read_missing_csv_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_trajectory_csv(tmp_path / "nope.csv")


def test_csv_written_to_tempfile_without_out_path():
    res = simulate(6, PARAMS, INITIAL, rng=np.random.default_rng(123),
                   infectious_window=(1, 4), n_age_bins=7)
    path = write_trajectory_csv(res, out_path=None, use_tempfile=True,
                                infectious_window=(1, 4), seed=123)
    try:
        assert path.exists()
        assert path.suffix == ".csv"
        back = read_trajectory_csv(path)
        assert np.array_equal(back.trajectory.states, res.trajectory.states)
    finally:
        path.unlink()


def test_tempfile_paths_are_unique():
    a = default_csv_path(use_tempfile=True)
    b = default_csv_path(use_tempfile=True)
    try:
        assert a != b
    finally:
        a.unlink()
        b.unlink()
    assert default_csv_path(use_tempfile=False).name == "simulated_trajectory.csv"
