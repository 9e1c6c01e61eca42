import numpy as np
import pytest

from epidemic_state_space.errors import ConfigurationError, NumericDomainError
from epidemic_state_space.state import ObservationSeries, as_age_state


def test_daily_deaths_from_cumulative_series():
    """
    First value is kept as-is, the rest are first differences.
    """
    obs = ObservationSeries.from_cumulative_deaths([0, 1, 3, 3], [2, 2, 5, 9])
    assert obs.daily_deaths.tolist() == [2, 0, 3, 4]
    assert obs.cumulative_deaths.tolist() == [2, 2, 5, 9]


def test_decreasing_cumulative_deaths_are_rejected():
    with pytest.raises(ConfigurationError):
        ObservationSeries.from_cumulative_deaths([0, 0, 0], [1, 3, 2])


def test_observed_cases_may_decrease():
    obs = ObservationSeries([0, 4, 2, 5], [0, 0, 1, 0])
    assert obs.t_max == 4


def test_data_hand_off_layout():
    obs = ObservationSeries([1, 2, 2], [0, 1, 0])
    assert obs.to_dict() == {
        "cumulative_observed_cases": [1, 2, 2],
        "daily_deaths": [0, 1, 0],
        "t_max": 3,
    }
    df = obs.to_frame()
    assert list(df.columns) == ["day", "cumulative_observed_cases", "daily_deaths", "cumulative_deaths"]
    assert df["cumulative_deaths"].tolist() == [0, 1, 1]


def test_negative_or_fractional_counts_are_rejected():
    with pytest.raises(NumericDomainError):
        ObservationSeries([1, -1], [0, 0])
    with pytest.raises(ConfigurationError):
        ObservationSeries([1, 1.5], [0, 0])


def test_age_state_length_and_read_only():
    state = as_age_state([1, 0, 2], n_age_bins=3)
    assert state.dtype == np.int64
    with pytest.raises(ValueError):
        state[0] = 5
    with pytest.raises(ConfigurationError):
        as_age_state([1, 0], n_age_bins=3)
