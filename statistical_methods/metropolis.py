# metropolis.py

import numpy as np
import jax
import jax.numpy as jnp
from typing import Callable, NamedTuple, Optional

# chain[0] must hold the initial vector exactly, float64 included
jax.config.update("jax_enable_x64", True)

# Raised when a host-side (non-traceable) function meets a tracer
TRACING_ERRORS = (
    jax.errors.ConcretizationTypeError,
    jax.errors.TracerArrayConversionError,
    jax.errors.TracerBoolConversionError,
    jax.errors.TracerIntegerConversionError,
)


class MetropolisResult(NamedTuple):
    """
    Output of a random-walk Metropolis run.

    chain            : (iterations + 1, D), row 0 is the initial vector
    proposals        : (iterations, D), candidate drawn at each step
    accepted         : (iterations,), True where the chain moved to the candidate
    objective_values : (iterations + 1,), objective at each chain state
    n_invalid        : proposals rejected because the objective was non-finite
    accept_rate      : fraction of accepted proposals

    For multi-chain runs every field gains a leading chain axis.
    """
    chain: jnp.ndarray
    proposals: jnp.ndarray
    accepted: jnp.ndarray
    objective_values: jnp.ndarray
    n_invalid: jnp.ndarray
    accept_rate: jnp.ndarray


def propose(key, theta, proposal_step):
    """Symmetric Gaussian random walk: theta + proposal_step * N(0, I)."""
    eps = jax.random.normal(key, shape=theta.shape, dtype=theta.dtype) * proposal_step
    return theta + eps


def _check_iterations(iterations):
    if isinstance(iterations, bool) or not isinstance(iterations, (int, np.integer)):
        raise ValueError(f"iterations must be a positive integer, got {iterations!r}")
    if iterations <= 0:
        raise ValueError(f"iterations must be a positive integer, got {iterations}")
    return int(iterations)


def _check_parameters(initial, proposal_step, ndim=1):
    initial = jnp.asarray(initial)
    if not jnp.issubdtype(initial.dtype, jnp.floating):
        initial = initial.astype(jnp.result_type(float))

    if initial.ndim != ndim:
        raise ValueError(f"initial parameters must have ndim={ndim}, got shape {initial.shape}")
    if not bool(jnp.all(jnp.isfinite(initial))):
        raise ValueError("initial parameters must be finite")

    proposal_step = jnp.asarray(proposal_step, dtype=initial.dtype)
    if proposal_step.shape != initial.shape[-1:]:
        raise ValueError(
            f"proposal_step has shape {proposal_step.shape}, expected {initial.shape[-1:]} "
            "(one standard deviation per parameter)"
        )
    if not bool(jnp.all(jnp.isfinite(proposal_step))) or bool(jnp.any(proposal_step < 0)):
        raise ValueError("proposal_step must be finite and non-negative")

    return initial, proposal_step


def as_traceable(objective, theta, host_callback=None):
    """
    Make ``objective`` callable inside lax.scan / vmap.

    With host_callback=None the objective is traced once; if it cannot be
    traced (float(), Python branching, numpy or scipy calls on its input)
    it is run on the host through jax.pure_callback instead.
    host_callback=True forces the callback, False forces tracing.
    """
    if host_callback is None:
        try:
            jax.eval_shape(objective, theta)
            host_callback = False
        except TRACING_ERRORS:
            host_callback = True

    if not host_callback:
        return objective

    dtype = theta.dtype
    result_shape = jax.ShapeDtypeStruct((), dtype)

    def host_objective(theta):
        return np.asarray(objective(np.asarray(theta)), dtype=dtype).reshape(())

    def wrapped(theta):
        return jax.pure_callback(host_objective, result_shape, theta, vmap_method="sequential")

    return wrapped


def _metropolis_kernel(key, initial, objective, proposal_step, iterations, proposal_fn):
    dtype = initial.dtype
    obj0 = jnp.asarray(objective(initial), dtype=dtype)

    # --- MCMC transition function ---
    def mcmc_step(carry, _):
        key, theta, obj, n_accepted, n_invalid = carry
        key, subkey = jax.random.split(key)

        # Propose new candidate
        theta_prop = proposal_fn(subkey, theta, proposal_step)
        obj_prop = jnp.asarray(objective(theta_prop), dtype=dtype)

        # Objective is -log density: r = exp(obj(current) - obj(proposal)).
        # A non-finite proposal objective means r = 0.
        valid = jnp.isfinite(obj_prop)
        log_ratio = jnp.where(valid, obj - obj_prop, -jnp.inf)

        key, subkey = jax.random.split(key)
        u = jax.random.uniform(subkey, dtype=dtype)

        accept = u < jnp.exp(log_ratio)
        theta_new = jnp.where(accept, theta_prop, theta)
        obj_new = jnp.where(accept, obj_prop, obj)

        carry = (
            key,
            theta_new,
            obj_new,
            n_accepted + accept.astype(jnp.int32),
            n_invalid + (~valid).astype(jnp.int32),
        )
        return carry, (theta_new, theta_prop, accept, obj_new)

    carry0 = (key, initial, obj0, jnp.int32(0), jnp.int32(0))
    (_, _, _, n_accepted, n_invalid), (states, proposals, accepted, objs) = jax.lax.scan(
        mcmc_step, carry0, xs=None, length=iterations
    )

    chain = jnp.concatenate([initial[None, :], states], axis=0)
    objective_values = jnp.concatenate([obj0[None], objs], axis=0)

    return MetropolisResult(
        chain=chain,
        proposals=proposals,
        accepted=accepted,
        objective_values=objective_values,
        n_invalid=n_invalid,
        accept_rate=n_accepted / iterations,
    )


def run_metropolis(key: jax.Array,
                   initial,
                   iterations: int,
                   objective: Callable,
                   proposal_step,
                   proposal_fn: Callable = propose,
                   host_callback: Optional[bool] = None) -> MetropolisResult:
    """
    Random-walk Metropolis sampler built on lax.scan.

    The stationary distribution is proportional to exp(-objective(theta)),
    so ``objective`` is a negative log (unnormalized) posterior density:
    lower is better. No burn-in removal or thinning is done here.

    Parameters
    ----------
    key : PRNGKey
        Random key; the only source of randomness.
    initial : array, shape (D,)
        Starting point, stored unchanged as chain[0].
    iterations : int
        Number of Metropolis steps. The chain has iterations + 1 rows.
    objective : callable
        Pure function theta -> scalar. Proposals where it is non-finite are
        rejected and counted in ``n_invalid``. Plain Python/numpy functions
        are evaluated on the host (see ``as_traceable``).
    proposal_step : array, shape (D,)
        Per-parameter standard deviation of the Gaussian random walk.
    proposal_fn : callable
        (key, theta, proposal_step) -> candidate. Must be symmetric.
    host_callback : bool, optional
        Force (True) or forbid (False) host evaluation of the objective.
        Default detects it.

    Returns
    -------
    MetropolisResult
    """
    iterations = _check_iterations(iterations)
    initial, proposal_step = _check_parameters(initial, proposal_step)
    objective = as_traceable(objective, initial, host_callback)

    obj0 = float(objective(initial))
    if not np.isfinite(obj0):
        raise ValueError(f"objective is not finite at the initial parameters (got {obj0})")

    result = _metropolis_kernel(key, initial, objective, proposal_step, iterations, proposal_fn)

    return result._replace(
        n_invalid=int(result.n_invalid),
        accept_rate=float(result.accept_rate),
    )


def run_multiple_chains(key: jax.Array,
                        initials,
                        iterations: int,
                        objective: Callable,
                        proposal_step,
                        proposal_fn: Callable = propose,
                        host_callback: Optional[bool] = None) -> MetropolisResult:
    """
    Run independent Metropolis chains in parallel using JAX vmap.

    Parameters
    ----------
    key : PRNGKey
        Master key, split into one key per chain.
    initials : array, shape (N_chains, D)
        Initial parameter vectors for all chains.

    Returns
    -------
    MetropolisResult
        Same fields as ``run_metropolis`` with a leading chain axis.
    """
    iterations = _check_iterations(iterations)
    initials, proposal_step = _check_parameters(initials, proposal_step, ndim=2)
    objective = as_traceable(objective, initials[0], host_callback)

    obj0 = np.asarray(jax.vmap(objective)(initials))
    if not np.all(np.isfinite(obj0)):
        bad = np.flatnonzero(~np.isfinite(obj0)).tolist()
        raise ValueError(f"objective is not finite at the initial parameters of chains {bad}")

    n_chains = initials.shape[0]

    # Split master key into one key per chain
    keys = jax.random.split(key, n_chains)

    batched_run = jax.vmap(
        lambda k, th0: _metropolis_kernel(
            k, th0, objective, proposal_step, iterations, proposal_fn
        ),
        in_axes=(0, 0),
    )
    return batched_run(keys, initials)


def discard_burn_in(chain, burn_in):
    """
    Drop the first part of a chain.

    ``burn_in`` is either a number of rows or a fraction in [0, 1).
    Works on (N, D) chains and on (N_chains, N, D) stacks.
    """
    chain = jnp.asarray(chain)
    n = chain.shape[-2]

    if isinstance(burn_in, float):
        if not 0.0 <= burn_in < 1.0:
            raise ValueError(f"burn-in fraction must be in [0, 1), got {burn_in}")
        n_burn = int(burn_in * n)
    else:
        n_burn = int(burn_in)
        if not 0 <= n_burn < n:
            raise ValueError(f"burn-in must be in [0, {n}), got {burn_in}")

    return chain[..., n_burn:, :]


def thin_chain(chain, thin):
    """Keep one sample every ``thin`` rows."""
    if int(thin) < 1:
        raise ValueError(f"thin must be >= 1, got {thin}")
    return jnp.asarray(chain)[..., ::int(thin), :]
