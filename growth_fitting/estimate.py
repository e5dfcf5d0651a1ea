import numpy as np
import jax.numpy as jnp

from configuration.configuration import PARAM_NAMES
from growth_model.logistic import make_objective
from minimization.optimizers import (
    estimate_parameters,
    generate_initial_points,
    multistart_minimize,
)
from statistical_methods.diagnostics import summarize_chain
from statistical_methods.metropolis import (
    run_metropolis,
    run_multiple_chains,
    discard_burn_in,
    thin_chain,
)


def _parse_input(t, data, config=None):
    """
    Prepare the raw inputs for estimation.

    This function:
    - Ensures times and observations are 1D numerical arrays of equal length
    - Converts them to a consistent floating-point format
    - Rejects non-finite observations
    """
    config = {} if config is None else config

    t = jnp.asarray(t, dtype=float)
    data = jnp.asarray(data, dtype=float)

    if t.ndim != 1 or data.ndim != 1:
        raise ValueError("t and data must be 1D arrays")
    if t.shape != data.shape:
        raise ValueError(f"t and data must have the same length, got {t.shape[0]} and {data.shape[0]}")
    if t.shape[0] < 3:
        raise ValueError("at least 3 observations are needed to fit 3 parameters")
    if not bool(jnp.all(jnp.isfinite(t))) or not bool(jnp.all(jnp.isfinite(data))):
        raise ValueError("t and data must be finite")

    return {"t": t, "data": data, "config": config}


def _fixed_params(config):
    """
    Map parameter index -> value for config["fixed"], e.g. {"K": 100.0}.
    """
    fixed = {}
    for name, value in config.get("fixed", {}).items():
        if name not in PARAM_NAMES:
            raise ValueError(f"Unknown parameter '{name}' in fixed, expected one of {PARAM_NAMES}")
        fixed[PARAM_NAMES.index(name)] = float(value)
    return fixed


def _init_guess_and_bounds(t, data, config=None):
    """
    Choose initial values and limits for the growth parameters.

    The initial values are rough guesses read off the data: the first
    observation for N0, the largest one for K, and the slope of the
    logit-transformed curve for r. An explicit "theta0" / "bounds" in the
    config takes priority. Parameters in config["fixed"] get lower = upper.
    """
    config = {} if config is None else config

    t_np = np.asarray(t, dtype=float)
    N = np.asarray(data, dtype=float)

    K0 = max(1.05 * N.max(), 1e-3)
    N00 = float(np.clip(N[0], 1e-3 * K0, 0.9 * K0))

    # logit(N/K) is linear in t with slope r
    frac = np.clip(N / K0, 1e-3, 1 - 1e-3)
    slope = np.polyfit(t_np, np.log(frac / (1 - frac)), 1)[0]
    r0 = float(slope) if slope > 0 else 0.1

    theta0 = np.asarray(config.get("theta0", [N00, r0, K0]), dtype=float)

    if "bounds" in config:
        lower, upper = (np.array(b, dtype=float) for b in config["bounds"])
    else:
        lower = np.array([1e-3 * K0, 1e-4, 0.5 * N.max() if N.max() > 0 else 1e-3])
        upper = np.array([K0, 10.0 * max(r0, 0.1), 10.0 * K0])

    theta0 = np.clip(theta0, lower, upper)

    # For fixed params lower = upper
    for i, value in _fixed_params(config).items():
        theta0[i] = lower[i] = upper[i] = value

    return jnp.asarray(theta0), jnp.asarray(lower), jnp.asarray(upper)


def _config_objective(t, data, config):
    return make_objective(
        t,
        data,
        noise_std=float(config.get("noise_std", 1.0)),
        invalid_policy=config.get("invalid_policy", "reject"),
    )


def estimate_with_optimizer(t, data, config=None):
    """
    Do parameter estimation using optimization.

    This function:
      1) Parses times and observations
      2) Builds the objective for the configured noise level and policy
      3) Sets initial guesses and parameter bounds
      4) Runs the configured scipy optimizer, optionally from many starts
      5) Returns estimated growth parameters

    Parameters
    ----------
    t, data : ndarray (N,)
        Observation times and observed populations.
    config : dict
        Optional configuration (debug, noise_std, invalid_policy, method,
        maxiter, multistart, fixed, seed).

    Returns
    -------
    theta_est : ndarray (3,)
        Estimated (N0, r, K). With config["debug"], the sorted lists of
        candidate parameters and losses instead.
    """
    # --------------------------------------------------
    # 1) Parse inputs
    # --------------------------------------------------
    parsed = _parse_input(t, data, config=config)
    t, data, config = parsed["t"], parsed["data"], parsed["config"]

    debug = bool(config.get("debug", False))
    method = config.get("method", "L-BFGS-B")
    maxiter = int(config.get("maxiter", 500))

    # --------------------------------------------------
    # 2) Objective, initial guess and bounds
    # --------------------------------------------------
    objective = _config_objective(t, data, config)
    theta0, lower, upper = _init_guess_and_bounds(t, data, config)

    # --------------------------------------------------
    # 3) Optimization (with optional multistart)
    # --------------------------------------------------
    results = []   # will store (loss, theta)

    # First run from the data-driven guess
    result = estimate_parameters(
        objective,
        theta0,
        method=method,
        bounds=(lower, upper),
        maxiter=maxiter,
        verbose=debug,
    )
    results.append((float(result.fun), np.asarray(result.x, dtype=np.float64)))

    ms_cfg = config.get("multistart", None)
    if ms_cfg is not None:
        rng = np.random.default_rng(config.get("seed", 0))
        starts = generate_initial_points(
            theta0,
            lower,
            upper,
            n_starts=int(ms_cfg.get("n_starts", 1)),
            mode=ms_cfg.get("type", "uniform"),
            rng=rng,
            fixed_idx=tuple(_fixed_params(config)),
        )
        for loss, theta, _ in multistart_minimize(
            objective, starts, method=method, bounds=(lower, upper), maxiter=maxiter, verbose=debug
        ):
            results.append((loss, theta))

    # --------------------------------------------------
    # 4) Rank and return solutions
    # --------------------------------------------------
    results.sort(key=lambda r: r[0] if np.isfinite(r[0]) else np.inf)

    if debug:
        losses = [L for L, _ in results]
        thetas = [theta for _, theta in results]
        return thetas, losses

    return results[0][1]


def estimate_with_mcmc(key, t, data, config=None):
    """
    Do parameter estimation by sampling the posterior with Metropolis.

    Starts from the data-driven guess (or config["theta0"]), runs one chain,
    or config["n_chains"] chains started from points scattered over the
    parameter bounds, then drops burn-in and thins.

    Parameters
    ----------
    key : PRNGKey
        Random key for the sampler.
    t, data : ndarray (N,)
        Observation times and observed populations.
    config : dict
        Optional configuration (noise_std, invalid_policy, iterations,
        proposal_step, burn_in, thin, n_chains, fixed, seed).

    Returns
    -------
    samples : jnp.ndarray
        Post burn-in, thinned samples, shape (N_samples, 3) or
        (N_chains, N_samples, 3).
    result : MetropolisResult
        Full sampler output.
    summary : pandas.DataFrame
        Posterior summary per parameter.
    """
    parsed = _parse_input(t, data, config=config)
    t, data, config = parsed["t"], parsed["data"], parsed["config"]

    objective = _config_objective(t, data, config)
    theta0, lower, upper = _init_guess_and_bounds(t, data, config)

    iterations = config.get("iterations", 20_000)
    burn_in = config.get("burn_in", 0.1)
    thin = config.get("thin", 1)
    n_chains = int(config.get("n_chains", 1))

    proposal_step = config.get("proposal_step", None)
    if proposal_step is None:
        proposal_step = 0.01 * (upper - lower)
    proposal_step = np.array(proposal_step, dtype=float)

    # Fixed parameters never move
    fixed_idx = tuple(_fixed_params(config))
    for i in fixed_idx:
        proposal_step[i] = 0.0
    proposal_step = jnp.asarray(proposal_step, dtype=theta0.dtype)

    if n_chains == 1:
        result = run_metropolis(key, theta0, iterations, objective, proposal_step)
    else:
        rng = np.random.default_rng(config.get("seed", 0))
        starts = generate_initial_points(theta0, lower, upper, n_starts=n_chains - 1,
                                         mode="gaussian", rng=rng, fixed_idx=fixed_idx)
        initials = jnp.asarray(np.stack([np.asarray(theta0)] + starts), dtype=theta0.dtype)
        result = run_multiple_chains(key, initials, iterations, objective, proposal_step)

    samples = thin_chain(discard_burn_in(result.chain, burn_in), thin)
    summary = summarize_chain(samples, param_names=PARAM_NAMES)

    return samples, result, summary
