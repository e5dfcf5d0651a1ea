import jax
import jax.numpy as jnp
from jax import grad, jit


INVALID_POLICIES = ("reject", "clamp", "propagate")


def logistic_growth(t, theta):
    """
    Logistic population trajectory N(t) for theta = (N0, r, K).

        N(t) = K / (1 + (K - N0) / N0 * exp(-r t))

    Parameter combinations with N0 <= 0 or K <= 0 give trajectories that
    are negative, infinite or NaN; the objective decides what to do with them.
    """
    N0, r, K = theta[0], theta[1], theta[2]
    return K / (1.0 + (K - N0) / N0 * jnp.exp(-r * t))


@jit
def sum_of_squares(theta, t, data):
    N_sim = logistic_growth(t, theta)
    return jnp.sum((N_sim - data) ** 2)


def is_valid_trajectory(theta, trajectory):
    """True when the parameters and the simulated populations are physical."""
    params_ok = (theta[0] > 0.0) & (theta[2] > 0.0)
    traj_ok = jnp.all(jnp.isfinite(trajectory)) & jnp.all(trajectory >= 0.0)
    return params_ok & traj_ok


@jit
def negative_log_likelihood(theta, t, data, noise_std):
    """Gaussian negative log-likelihood, dropping the theta-independent constant."""
    return sum_of_squares(theta, t, data) / (2.0 * noise_std**2)


def make_objective(t,
                   data,
                   noise_std: float = 1.0,
                   invalid_policy: str = "reject",
                   penalty: float = 1e10):
    """
    Return the objective theta -> SSR / (2 noise_std^2) for fixed data.

    Parameters
    ----------
    t, data : array, shape (N,)
        Observation times and observed populations.
    noise_std : float
        Standard deviation of the observation noise. Must be positive.
    invalid_policy : {"reject", "clamp", "propagate"}
        What the objective returns for invalid parameter regions
        (non-positive N0 or K, negative or non-finite populations):
            - "reject":    +inf, so a sampler always rejects the point
            - "clamp":     the finite ``penalty``
            - "propagate": the raw misfit, NaN included
    penalty : float
        Value used by the "clamp" policy.

    Returns
    -------
    objective : callable
        JIT-compiled, pure function of theta.
    """
    if invalid_policy not in INVALID_POLICIES:
        raise ValueError(
            f"Unknown invalid_policy {invalid_policy!r}, expected one of {INVALID_POLICIES}"
        )
    if not noise_std > 0:
        raise ValueError(f"noise_std must be positive, got {noise_std}")

    t = jnp.asarray(t)
    data = jnp.asarray(data)
    if t.shape != data.shape or t.ndim != 1:
        raise ValueError(
            f"t and data must be 1D arrays of equal length, got {t.shape} and {data.shape}"
        )

    def objective(theta):
        theta = jnp.asarray(theta)
        misfit = negative_log_likelihood(theta, t, data, noise_std)

        if invalid_policy == "propagate":
            return misfit

        valid = is_valid_trajectory(theta, logistic_growth(t, theta)) & jnp.isfinite(misfit)
        fallback = jnp.inf if invalid_policy == "reject" else penalty
        return jnp.where(valid, misfit, fallback)

    return jax.jit(objective)


def objective_gradient(objective):
    return jit(grad(objective))
