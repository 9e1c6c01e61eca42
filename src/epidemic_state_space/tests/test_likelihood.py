import numpy as np
import pytest
from scipy import stats

from epidemic_state_space.errors import ConfigurationError, NumericDomainError
from epidemic_state_space.model.likelihood import (
    LatentState,
    beta_logpdf,
    binomial_logpmf,
    first_infeasible_term,
    gamma_logpdf,
    log_joint,
    log_joint_terms,
    poisson_logpmf,
)
from epidemic_state_space.model.spec import StateSpaceModelSpec
from epidemic_state_space.simulate.simulator import simulate
from epidemic_state_space.state import ModelParameters, ObservationSeries


def test_densities_match_scipy():
    assert poisson_logpmf(3, 2.5) == pytest.approx(stats.poisson.logpmf(3, 2.5))
    assert binomial_logpmf(2, 7, 0.3) == pytest.approx(stats.binom.logpmf(2, 7, 0.3))
    assert gamma_logpdf(1.7, 2.0, 0.5) == pytest.approx(stats.gamma.logpdf(1.7, 2.0, scale=2.0))
    assert beta_logpdf(0.3, 0.5, 0.5) == pytest.approx(stats.beta.logpdf(0.3, 0.5, 0.5))


def test_densities_outside_support_are_minus_inf():
    assert poisson_logpmf(2, 0.0) == -np.inf
    assert poisson_logpmf(0, 0.0) == 0.0
    assert binomial_logpmf(4, 3, 0.5) == -np.inf
    assert binomial_logpmf(3, 3, 1.0) == 0.0
    assert gamma_logpdf(-1.0, 2.0, 1.0) == -np.inf
    assert beta_logpdf(1.5, 2.0, 2.0) == -np.inf


def _fixture(inflow=None):
    params = ModelParameters(r0=2.0, mortality_prob=0.3, observation_prob=0.6, inflow_rate=inflow)
    res = simulate(12, params, [1, 1, 0, 0, 0, 0, 0], rng=np.random.default_rng(123),
                   infectious_window=(1, 4), n_age_bins=7)
    spec = StateSpaceModelSpec.base(n_age_bins=7, infectious_window=(1, 4))
    if inflow is not None:
        spec = spec.with_inflow()
    return res, spec


def test_latent_state_rebuilds_the_simulated_states():
    res, _ = _fixture()
    latent = LatentState.from_trajectory(res.trajectory)
    assert np.array_equal(latent.states(), res.trajectory.states)

    res, _ = _fixture(inflow=1.0)
    latent = LatentState.from_trajectory(res.trajectory)
    assert np.array_equal(latent.states(), res.trajectory.states)


def test_log_joint_is_finite_at_the_simulated_truth():
    for inflow in (None, 1.0):
        res, spec = _fixture(inflow)
        latent = LatentState.from_trajectory(res.trajectory)
        terms = log_joint_terms(spec, latent, res.observations())
        assert first_infeasible_term(terms) is None
        assert np.isfinite(log_joint(spec, latent, res.observations()))
        assert ("inflow" in terms) == (inflow is not None)


def test_transmission_term_matches_poisson_rate():
    res, spec = _fixture()
    latent = LatentState.from_trajectory(res.trajectory)
    terms = log_joint_terms(spec, latent, res.observations())
    states = res.trajectory.states
    t = 3
    rate = states[t - 1, 1:5].sum() * 2.0 / 4
    expected = stats.poisson.logpmf(states[t, 0], rate)
    assert terms["transmission"][t] == pytest.approx(expected)
    assert terms["transmission"][0] == 0.0


def test_first_infeasible_term_reports_the_day():
    res, spec = _fixture()
    latent = LatentState.from_trajectory(res.trajectory)
    deaths = np.array(res.daily_deaths)
    day = 5
    deaths[day] = res.trajectory.states[day, -1] + 1
    data = ObservationSeries(res.cumulative_observed_cases, deaths)
    terms = log_joint_terms(spec, latent, data)
    assert first_infeasible_term(terms) == ("deaths", day)
    assert log_joint(spec, latent, data) == -np.inf


def test_negative_latent_counts_are_domain_errors():
    res, spec = _fixture()
    latent = LatentState.from_trajectory(res.trajectory)
    latent.new_infections[2] = -1
    with pytest.raises(NumericDomainError):
        log_joint(spec, latent, res.observations())


def test_mismatched_lengths_are_configuration_errors():
    res, spec = _fixture()
    latent = LatentState.from_trajectory(res.trajectory)
    short = ObservationSeries(res.cumulative_observed_cases[:-1], res.daily_deaths[:-1])
    with pytest.raises(ConfigurationError):
        log_joint(spec, latent, short)
    with pytest.raises(ConfigurationError):
        log_joint(spec.with_inflow(), latent, res.observations())
