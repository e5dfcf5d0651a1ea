import jax.numpy as jnp

# Logistic growth parameters: initial population, growth rate, carrying capacity
PARAM_NAMES = ["N0", "r", "K"]


def make_configuration(
    n_time_points = 30,
    t_max = 20.0,
    noise_std = 5.0
):

    # --- Observation times ---
    T_VALS = jnp.linspace(0.0, t_max, n_time_points)

    # --- Default "reference" parameters ---
    theta_true = jnp.array([
        10.0,    # N0 (initial population)
        0.45,    # r (growth rate)
        100.0,   # K (carrying capacity)
    ])

    # --- Plausible parameter box (used for multistarts and bounded optimizers) ---
    lower = jnp.array([1.0, 0.01, 10.0])
    upper = jnp.array([50.0, 2.0, 300.0])

    # --- Random-walk step per parameter, scaled to the noise level ---
    proposal_step = jnp.array([0.5, 0.01, 1.0]) * (noise_std / 5.0)

    return T_VALS, theta_true, lower, upper, proposal_step
