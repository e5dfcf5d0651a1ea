import numpy as np
import pandas as pd
import jax.numpy as jnp
from jax import grad, jit
from scipy.optimize import minimize, Bounds
from tqdm import tqdm

from configuration.configuration import PARAM_NAMES


# Methods that use the JAX gradient
GRADIENT_METHODS = {"BFGS", "L-BFGS-B", "CG", "TNC", "SLSQP"}

# Methods that accept box bounds
BOUNDED_METHODS = {"Nelder-Mead", "Powell", "L-BFGS-B", "TNC", "SLSQP", "trust-constr"}

DEFAULT_METHODS = ["Nelder-Mead", "Powell", "BFGS", "L-BFGS-B"]


def estimate_parameters(
    objective,
    theta0,
    method="L-BFGS-B",
    bounds=None,
    maxiter=200,
    verbose=False,
):
    """
    Minimize an objective with scipy.optimize.minimize.

    Parameters
    ----------
    objective : callable
        Pure JAX function theta -> scalar loss.
    theta0 : array
        Initial guess for parameters.
    method : str, optional
        Any scipy.optimize.minimize method. Gradient-based methods get the
        JAX gradient of the objective.
    bounds : tuple of arrays, optional
        Tuple (lower, upper) with bounds for parameters. Default is None.
    maxiter : int, optional
        Iteration cap passed to the optimizer.
    verbose : bool, optional
        If True, print iteration details. Default is False.

    Returns
    -------
    result : OptimizeResult
        Result object from scipy.optimize.minimize.
    """
    if verbose:
        print(f"=== Starting parameter estimation ({method}) ===")

    def loss(k):
        return float(objective(jnp.asarray(k)))

    objective_grad = jit(grad(objective))

    def loss_grad(k):
        return np.asarray(objective_grad(jnp.asarray(k)), dtype=np.float64)

    iteration = {'count': 0}

    def callback(k, *args):
        if not verbose:
            return
        iteration['count'] += 1
        print(f"--- Iteration {iteration['count']} ---")
        print(f"Loss:         {loss(k):.6e}")
        print(f"Current k:    {np.array2string(np.asarray(k), precision=4)}\n")

    # Prepare bounds object if provided and supported
    if bounds is not None and method in BOUNDED_METHODS:
        scipy_bounds = Bounds(*(np.asarray(b, dtype=np.float64) for b in bounds))
    else:
        scipy_bounds = None

    result = minimize(
        fun=loss,
        x0=np.asarray(theta0, dtype=np.float64),
        jac=loss_grad if method in GRADIENT_METHODS else None,
        method=method,
        bounds=scipy_bounds,
        callback=callback,
        options={'disp': verbose, 'maxiter': maxiter}
    )

    return result


def report_estimation_result(result, theta_true, param_names=None):
    """Print a fitted parameter vector next to the true one; return the error norm."""
    param_names = PARAM_NAMES if param_names is None else param_names
    theta_est = np.asarray(result.x, dtype=float)
    theta_true = np.asarray(theta_true, dtype=float)
    error_norm = float(np.linalg.norm(theta_est - theta_true))

    print("\n=== Growth fit vs. truth ===")
    print(f"success = {result.success}   loss = {result.fun:.6e}   nfev = {result.nfev}")
    for name, est, true in zip(param_names, theta_est, theta_true):
        print(f"{name:>6s} = {est:10.4f}   (true {true:10.4f}, rel. error {(est - true) / true:+.2%})")
    print(f"error norm = {error_norm:.4e}")

    return error_norm


def generate_initial_points(theta0, lower, upper, n_starts=10, mode="uniform", rng=None, fixed_idx=()):
    """
    Generate multiple initial guesses for the optimizer.

    Parameters listed in ``fixed_idx`` keep their value from theta0.
    """
    rng = np.random.default_rng(0) if rng is None else rng

    theta0 = np.asarray(theta0, dtype=float)
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)

    D = theta0.shape[0]
    free_idx = [i for i in range(D) if i not in set(fixed_idx)]

    starts = []

    if mode == "uniform":
        for _ in range(n_starts):
            k = np.array(theta0, copy=True)
            for i in free_idx:
                k[i] = lower[i] + (upper[i] - lower[i]) * rng.random()
            starts.append(k)

    elif mode == "gaussian":
        std_scale = 0.25
        sigma = std_scale * (upper - lower)
        for _ in range(n_starts):
            k = np.array(theta0, copy=True)
            for i in free_idx:
                k[i] = theta0[i] + sigma[i] * rng.standard_normal()
                k[i] = np.clip(k[i], lower[i], upper[i])
            starts.append(k)

    else:
        raise ValueError(f"Unknown multistart type '{mode}'")

    return starts


def multistart_minimize(objective, starts, method="L-BFGS-B", bounds=None, maxiter=200, verbose=False):
    """
    Run the optimizer from every start; return [(loss, theta, result)] sorted by loss.

    Runs whose final loss is not finite are kept, at the end.
    """
    results = []
    for k_start in tqdm(starts, desc=f"Multistart {method}", disable=not verbose):
        result = estimate_parameters(
            objective,
            k_start,
            method=method,
            bounds=bounds,
            maxiter=maxiter,
            verbose=False,
        )
        results.append((float(result.fun), np.asarray(result.x, dtype=np.float64), result))

    # Sort by loss (smallest first), non-finite last
    results.sort(key=lambda r: r[0] if np.isfinite(r[0]) else np.inf)
    return results


def compare_optimizers(objective, theta0, methods=None, bounds=None, theta_true=None,
                       maxiter=500, param_names=None):
    """
    Fit the same objective with several scipy methods from the same start.

    Returns a DataFrame with one row per method.
    """
    methods = DEFAULT_METHODS if methods is None else methods
    param_names = PARAM_NAMES if param_names is None else param_names

    rows = []
    for method in methods:
        result = estimate_parameters(
            objective, theta0, method=method, bounds=bounds, maxiter=maxiter, verbose=False
        )
        row = {
            "method": method,
            "success": bool(result.success),
            "loss": float(result.fun),
            "nfev": int(result.nfev),
            "nit": int(getattr(result, "nit", -1)),
        }
        row.update(dict(zip(param_names, np.asarray(result.x, dtype=float))))
        if theta_true is not None:
            row["error_norm"] = float(np.linalg.norm(result.x - np.asarray(theta_true)))
        rows.append(row)

    return pd.DataFrame(rows).set_index("method")
