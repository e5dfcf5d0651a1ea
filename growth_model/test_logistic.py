import numpy as np
import pytest
import jax.numpy as jnp

from configuration.configuration import make_configuration
from growth_model.logistic import (
    is_valid_trajectory,
    logistic_growth,
    make_objective,
    objective_gradient,
    sum_of_squares,
)
from noise_simulator.noise import simulate_growth_data


INVALID = jnp.array([-1.0, 0.5, 100.0])


def noisy_problem():
    t, theta_true, *_ = make_configuration()
    data, _ = simulate_growth_data(t, theta_true, noise_std=5.0, seed=3)
    return t, theta_true, data


# -----------------------------------------------------------
# Model
# -----------------------------------------------------------
def test_initial_value_and_capacity():
    theta = jnp.array([10.0, 0.5, 100.0])
    assert float(logistic_growth(0.0, theta)) == pytest.approx(10.0, abs=1e-4)
    assert float(logistic_growth(100.0, theta)) == pytest.approx(100.0, abs=1e-3)


def test_monotone_below_capacity():
    t, theta_true, *_ = make_configuration()
    N = np.asarray(logistic_growth(t, theta_true))
    assert np.all(np.diff(N) > 0)
    assert np.all(N < float(theta_true[2]))


def test_closed_form():
    theta = jnp.array([5.0, 0.3, 50.0])
    t = np.array([0.0, 1.0, 5.0, 10.0])
    expected = 50.0 * 5.0 * np.exp(0.3 * t) / (50.0 + 5.0 * (np.exp(0.3 * t) - 1.0))
    np.testing.assert_allclose(np.asarray(logistic_growth(jnp.asarray(t), theta)), expected, rtol=1e-5)


def test_sum_of_squares_zero_at_truth():
    t, theta_true, *_ = make_configuration()
    data = logistic_growth(t, theta_true)
    assert float(sum_of_squares(theta_true, t, data)) == pytest.approx(0.0, abs=1e-6)
    assert float(sum_of_squares(theta_true.at[2].add(5.0), t, data)) > 0.0


def test_validity():
    t, *_ = make_configuration()
    good = jnp.array([10.0, 0.5, 100.0])
    assert bool(is_valid_trajectory(good, logistic_growth(t, good)))
    assert not bool(is_valid_trajectory(INVALID, logistic_growth(t, INVALID)))

    negative_k = jnp.array([10.0, 0.5, -100.0])
    assert not bool(is_valid_trajectory(negative_k, logistic_growth(t, negative_k)))
    assert not bool(is_valid_trajectory(good, jnp.array([1.0, jnp.nan])))


# -----------------------------------------------------------
# Objective
# -----------------------------------------------------------
def test_scaled_misfit():
    t, _, data = noisy_problem()
    objective = make_objective(t, data, noise_std=5.0)
    theta = jnp.array([12.0, 0.4, 95.0])
    expected = float(sum_of_squares(theta, t, data)) / (2 * 25.0)
    assert float(objective(theta)) == pytest.approx(expected, rel=1e-4)


def test_reject_policy():
    t, theta_true, data = noisy_problem()
    objective = make_objective(t, data, invalid_policy="reject")
    assert float(objective(INVALID)) == np.inf
    assert np.isfinite(float(objective(theta_true)))


def test_clamp_policy():
    t, theta_true, data = noisy_problem()
    objective = make_objective(t, data, invalid_policy="clamp", penalty=1e8)
    assert float(objective(INVALID)) == pytest.approx(1e8, abs=1.0)
    assert float(objective(theta_true)) < 1e8


def test_propagate_policy():
    t, _, data = noisy_problem()
    objective = make_objective(t, data, noise_std=2.0, invalid_policy="propagate")
    expected = float(sum_of_squares(INVALID, t, data)) / 8.0
    assert float(objective(INVALID)) == pytest.approx(expected, rel=1e-4)


def test_policies_agree_on_valid_parameters():
    t, _, data = noisy_problem()
    theta = jnp.array([9.0, 0.5, 105.0])
    values = [float(make_objective(t, data, invalid_policy=p)(theta)) for p in ("reject", "clamp", "propagate")]
    np.testing.assert_allclose(values, [values[0]] * 3, rtol=1e-6)


def test_bad_arguments():
    t, _, data = noisy_problem()
    with pytest.raises(ValueError):
        make_objective(t, data, invalid_policy="ignore")
    with pytest.raises(ValueError):
        make_objective(t, data, noise_std=0.0)
    with pytest.raises(ValueError):
        make_objective(t, data[:-1])


def test_gradient_vanishes_at_noiseless_truth():
    t, theta_true, *_ = make_configuration()
    objective = make_objective(t, logistic_growth(t, theta_true), noise_std=1.0)
    gradient = objective_gradient(objective)
    g_truth = np.asarray(gradient(theta_true))
    g_shifted = np.asarray(gradient(theta_true.at[2].add(5.0)))
    assert np.linalg.norm(g_truth) < 1e-3 * np.linalg.norm(g_shifted)
