import jax
import jax.numpy as jnp

from growth_model.logistic import logistic_growth


def add_gaussian_noise(y_clean, noise_std=1.0, seed=0):
    key = jax.random.PRNGKey(seed)
    y_clean = jnp.asarray(y_clean)
    return y_clean + noise_std * jax.random.normal(key, shape=y_clean.shape)


def simulate_growth_data(t, theta, noise_std=1.0, seed=0):
    """
    Simulate noisy population counts from the logistic model.

    Returns the noisy observations and the clean trajectory.
    """
    if noise_std < 0:
        raise ValueError(f"noise_std must be non-negative, got {noise_std}")

    N_clean = logistic_growth(jnp.asarray(t), jnp.asarray(theta))
    N_obs = add_gaussian_noise(N_clean, noise_std=noise_std, seed=seed)
    return N_obs, N_clean
