import warnings
from typing import Callable, NamedTuple, Optional

import numpy as np
import jax
import jax.numpy as jnp

from statistical_methods.metropolis import TRACING_ERRORS


class DensityBoundWarning(UserWarning):
    """The target density exceeded the supplied upper bound: the sample is biased."""


class NonFiniteDensityWarning(UserWarning):
    """The target density was NaN or infinite at some candidates; they were excluded."""


class RejectionResult(NamedTuple):
    """
    Candidates and their fate.

    values             : (n_draws, ...) all candidates, in draw order
    accepted           : (n_draws,) acceptance flags
    valid              : (n_draws,) False where the density was non-finite
    n_invalid          : number of excluded (non-finite density) candidates
    n_bound_violations : number of candidates with f(x) > upper_bound
    max_density_ratio  : largest finite f(x) / upper_bound seen
    """
    values: jnp.ndarray
    accepted: jnp.ndarray
    valid: jnp.ndarray
    n_invalid: int
    n_bound_violations: int
    max_density_ratio: float

    @property
    def samples(self):
        return self.values[self.accepted]

    @property
    def acceptance_rate(self):
        return float(jnp.mean(self.accepted))


def uniform_domain_sampler(lower, upper):
    """
    Uniform proposal over the box [lower, upper].

    Returns a function (key, n) -> candidates of shape (n,) + lower.shape.
    """
    lower = jnp.asarray(lower, dtype=jnp.result_type(float))
    upper = jnp.asarray(upper, dtype=jnp.result_type(float))
    if lower.shape != upper.shape:
        raise ValueError(f"lower and upper must have the same shape, got {lower.shape} and {upper.shape}")
    if not bool(jnp.all(upper > lower)):
        raise ValueError("upper must be strictly greater than lower")

    def sampler(key, n):
        return jax.random.uniform(key, shape=(n,) + lower.shape, minval=lower, maxval=upper)

    return sampler


def _check_count(n, name):
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n <= 0:
        raise ValueError(f"{name} must be a positive integer, got {n!r}")
    return int(n)


def _check_upper_bound(upper_bound):
    upper_bound = float(upper_bound)
    if not np.isfinite(upper_bound) or upper_bound <= 0:
        raise ValueError(f"upper_bound must be finite and positive, got {upper_bound}")
    return upper_bound


def _parse_support(support):
    if support is None:
        return None
    try:
        lower, upper = (jnp.asarray(b, dtype=jnp.result_type(float)) for b in support)
    except (TypeError, ValueError):
        raise ValueError(f"support must be a (lower, upper) pair, got {support!r}") from None
    if lower.shape != upper.shape:
        raise ValueError(f"support bounds must have the same shape, got {lower.shape} and {upper.shape}")
    if not bool(jnp.all(lower <= upper)):
        raise ValueError("support lower bound must not exceed the upper bound")
    return lower, upper


def _check_support(x, support):
    if support is None:
        return
    lower, upper = support
    outside = ~((x >= lower) & (x <= upper))
    if outside.ndim > 1:
        outside = jnp.any(outside.reshape(outside.shape[0], -1), axis=1)
    n_outside = int(jnp.sum(outside))
    if n_outside:
        raise ValueError(
            f"domain sampler produced {n_outside} candidate(s) outside the density support"
        )


def _evaluate_density(target_density, x, host_callback=None):
    """
    f at every candidate: vmapped when traceable, else one host call per row.
    """
    if not host_callback:
        try:
            return jnp.asarray(jax.vmap(target_density)(x))
        except TRACING_ERRORS:
            if host_callback is False:
                raise

    return jnp.asarray([float(target_density(xi)) for xi in np.asarray(x)])


def _rejection_step(key, target_density, domain_sampler, upper_bound, n, support, host_callback=None):
    key_x, key_u = jax.random.split(key)

    x = jnp.asarray(domain_sampler(key_x, n))
    if x.ndim == 0 or x.shape[0] != n:
        raise ValueError(f"domain sampler returned shape {x.shape}, expected {n} candidates")
    _check_support(x, support)

    f = _evaluate_density(target_density, x, host_callback)
    valid = jnp.isfinite(f)

    if bool(jnp.any(valid & (f < 0))):
        raise ValueError("target density returned negative values")

    ratio = jnp.where(valid, f / upper_bound, 0.0)
    u = jax.random.uniform(key_u, shape=(n,))
    accepted = valid & (u < ratio)

    n_invalid = int(jnp.sum(~valid))
    n_bound_violations = int(jnp.sum(ratio > 1.0))
    max_ratio = float(jnp.max(ratio)) if n_invalid < n else float("nan")

    if n_invalid:
        warnings.warn(
            f"target density was non-finite at {n_invalid} of {n} candidates; "
            "they were excluded from the sample",
            NonFiniteDensityWarning,
            stacklevel=3,
        )
    if n_bound_violations:
        warnings.warn(
            f"target density exceeded upper_bound={upper_bound} at {n_bound_violations} "
            f"candidate(s) (max f/M = {max_ratio:.4f}); accepted draws are biased, "
            "the bound must satisfy M >= max f over the whole domain",
            DensityBoundWarning,
            stacklevel=3,
        )

    return RejectionResult(
        values=x,
        accepted=accepted,
        valid=valid,
        n_invalid=n_invalid,
        n_bound_violations=n_bound_violations,
        max_density_ratio=max_ratio,
    )


def sample_rejection(key: jax.Array,
                     target_density: Callable,
                     domain_sampler: Callable,
                     upper_bound: float,
                     n_draws: int,
                     support: Optional[tuple] = None,
                     host_callback: Optional[bool] = None) -> RejectionResult:
    """
    Rejection sampling with a fixed number of attempts.

    Draws ``n_draws`` candidates x from ``domain_sampler`` and u ~ U(0, 1),
    and accepts x iff u < f(x) / M. Rejected candidates are kept in the
    result with accepted=False; nothing is redrawn. Accepted candidates are
    i.i.d. draws from f / integral(f) provided M >= max f on the domain.

    Parameters
    ----------
    key : PRNGKey
        Random key.
    target_density : callable
        Unnormalized density f(x) for a single candidate. Vmapped over the
        draws when JAX can trace it, otherwise called once per candidate.
    domain_sampler : callable
        (key, n) -> n candidates from the proposal distribution.
    upper_bound : float
        M, an upper bound of f over the domain.
    n_draws : int
        Number of candidates.
    support : (lower, upper), optional
        If given, a candidate outside it raises ValueError.
    host_callback : bool, optional
        Force (True) or forbid (False) per-candidate host evaluation of f.
        Default detects it.

    Returns
    -------
    RejectionResult
    """
    n_draws = _check_count(n_draws, "n_draws")
    upper_bound = _check_upper_bound(upper_bound)
    support = _parse_support(support)
    return _rejection_step(
        key, target_density, domain_sampler, upper_bound, n_draws, support, host_callback
    )


def iter_rejection(key: jax.Array,
                   target_density: Callable,
                   domain_sampler: Callable,
                   upper_bound: float,
                   batch_size: int = 1024,
                   support: Optional[tuple] = None,
                   host_callback: Optional[bool] = None):
    """
    Unbounded lazy stream of accepted draws.

    Candidates are generated in batches of ``batch_size``; stop iterating to
    stop sampling. The first batch is drawn here, so a bad sampler, support
    or density raises at call time rather than on the first ``next()``.
    """
    batch_size = _check_count(batch_size, "batch_size")
    upper_bound = _check_upper_bound(upper_bound)
    support = _parse_support(support)

    def draw_batch(key):
        key, subkey = jax.random.split(key)
        result = _rejection_step(
            subkey, target_density, domain_sampler, upper_bound, batch_size, support, host_callback
        )
        return key, result

    def stream(key, result):
        while True:
            yield from result.samples
            key, result = draw_batch(key)

    return stream(*draw_batch(key))
