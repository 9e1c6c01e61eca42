import math

import numpy as np
import pytest

from epidemic_state_space.errors import ConfigurationError, InferenceInfeasibility
from epidemic_state_space.inference.seed import Role, check_seed_feasible, derive_seed
from epidemic_state_space.model.spec import StateSpaceModelSpec
from epidemic_state_space.simulate.simulator import simulate
from epidemic_state_space.state import ModelParameters, ObservationSeries, Trajectory

W = 7
WINDOW = (1, 4)


def _simulate(inflow=None, seed=123, t_max=15):
    params = ModelParameters(r0=1.8, mortality_prob=0.2, observation_prob=0.5, inflow_rate=inflow)
    return simulate(t_max, params, [2, 1, 0, 0, 1, 0, 0], rng=np.random.default_rng(seed),
                    infectious_window=WINDOW, n_age_bins=W)


def _spec(inflow=False):
    spec = StateSpaceModelSpec.base(n_age_bins=W, infectious_window=WINDOW)
    return spec.with_inflow() if inflow else spec


def test_base_seed_fixes_day_zero_and_first_bin_only():
    res = _simulate()
    seed = derive_seed(res, _spec())
    state = seed["state"]
    assert state.shape == (15, W)

    free = state.free_mask()
    assert free[0].all()
    assert free[1:, 0].all()
    assert not free[1:, 1:].any()
    assert np.array_equal(state.fixed_mask(), free)

    values = state.values()
    assert np.array_equal(values[0], res.trajectory.states[0])
    assert np.all(np.isnan(values[1:, 1:]))
    assert state.entry((3, 2)).role is Role.DERIVED
    assert state.entry((3, 2)).value is None

    assert float(seed["R0"].values()) == pytest.approx(1.8)
    assert not seed["cumulative_infections"].fixed_mask().any()
    assert not seed["infectious"].fixed_mask().any()


def test_inflow_seed_leaves_combined_first_bin_derived():
    res = _simulate(inflow=1.5)
    seed = derive_seed(res, _spec(inflow=True))
    free = seed["state"].free_mask()
    assert free[0].all()
    assert not free[1:].any()

    for name, series in (("new_infections", res.trajectory.new_infections),
                         ("inflow", res.trajectory.inflow)):
        var = seed[name]
        assert not var.fixed_mask()[0]
        assert var.fixed_mask()[1:].all()
        assert np.array_equal(var.values()[1:], series[1:])
    assert float(seed["inflow_rate"].values()) == pytest.approx(1.5)


def test_to_inits_uses_nan_for_unconstrained_entries():
    seed = derive_seed(_simulate(), _spec())
    inits = seed.to_inits()
    assert set(inits) == {"R0", "mortality_prob", "observation_prob", "state"}
    assert inits["R0"] == pytest.approx(1.8)
    assert math.isnan(inits["state"][2][3])
    assert not math.isnan(inits["state"][2][0])


def test_seed_is_feasible_for_simulated_trajectories():
    for inflow in (None, 0.7):
        for s in range(20):
            res = _simulate(inflow=inflow, seed=s)
            spec = _spec(inflow=inflow is not None)
            seed = derive_seed(res, spec)
            lp = check_seed_feasible(seed, spec, res.observations())
            assert np.isfinite(lp)


def test_seed_latent_state_matches_reference():
    res = _simulate(inflow=0.7)
    latent = derive_seed(res, _spec(inflow=True)).to_latent()
    assert np.array_equal(latent.states(), res.trajectory.states)


def test_infeasible_seed_reports_term_and_day():
    res = _simulate()
    spec = _spec()
    seed = derive_seed(res, spec)
    cases = np.array(res.cumulative_observed_cases)
    day = 6
    cases[day] = res.cumulative_infections[day] + 3
    data = ObservationSeries(cases, res.daily_deaths)
    with pytest.raises(InferenceInfeasibility) as excinfo:
        check_seed_feasible(seed, spec, data)
    assert excinfo.value.term == "observations"
    assert excinfo.value.day == day
    assert "day 6" in str(excinfo.value)


def test_wrong_geometry_is_rejected():
    res = _simulate()
    with pytest.raises(ConfigurationError):
        derive_seed(res, StateSpaceModelSpec.base())


def test_variant_mismatch_is_rejected():
    with pytest.raises(ConfigurationError):
        derive_seed(_simulate(), _spec(inflow=True))
    with pytest.raises(ConfigurationError):
        derive_seed(_simulate(inflow=1.0), _spec())


def test_broken_shift_is_rejected():
    res = _simulate()
    states = np.array(res.trajectory.states)
    states[4, 3] += 1
    broken = Trajectory(states=states, new_infections=res.trajectory.new_infections,
                        params=res.trajectory.params)
    with pytest.raises(ConfigurationError):
        derive_seed(broken, _spec())


@pytest.mark.parametrize("r0, mortality, observation, inflow", [
    (0.0, 0.2, 0.5, None),
    (1.8, 1.0, 0.5, None),
    (1.8, 0.2, 1.0, None),
    (1.8, 0.0, 0.5, None),
    (1.8, 0.2, 0.0, None),
    (1.8, 0.2, 0.5, 0.0),
    (0.0, 1.0, 1.0, 0.0),
])
def test_seed_is_feasible_for_boundary_parameters(r0, mortality, observation, inflow):
    """
    Parameters on the edge of their valid range still give a usable seed:
    the priors are unbounded there, so the seeded value moves just inside.
    """
    params = ModelParameters(r0=r0, mortality_prob=mortality,
                             observation_prob=observation, inflow_rate=inflow)
    res = simulate(10, params, [2, 1, 0, 0, 1, 0], rng=np.random.default_rng(123),
                   infectious_window=(1, 3), n_age_bins=6)
    spec = StateSpaceModelSpec.base(n_age_bins=6, infectious_window=(1, 3))
    if inflow is not None:
        spec = spec.with_inflow()
    seed = derive_seed(res, spec)
    assert np.isfinite(check_seed_feasible(seed, spec, res.observations()))

    for name in ("R0", "mortality_prob", "observation_prob"):
        value = float(seed[name].values())
        assert 0.0 < value
        if name != "R0":
            assert value < 1.0


def test_interior_parameters_are_seeded_unchanged():
    seed = derive_seed(_simulate(inflow=0.7), _spec(inflow=True))
    assert float(seed["R0"].values()) == 1.8
    assert float(seed["mortality_prob"].values()) == 0.2
    assert float(seed["inflow_rate"].values()) == 0.7
