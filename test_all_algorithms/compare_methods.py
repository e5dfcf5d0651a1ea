import numpy as np
import pandas as pd
import jax
import jax.numpy as jnp
from tqdm import tqdm

from configuration.configuration import make_configuration, PARAM_NAMES
from growth_fitting.estimate import estimate_with_mcmc, estimate_with_optimizer
from growth_model.logistic import make_objective
from minimization.optimizers import (
    compare_optimizers,
    estimate_parameters,
    report_estimation_result,
)
from noise_simulator.noise import simulate_growth_data


# -----------------------------------------------------------
# Run both estimators on a batch of simulated data sets
# -----------------------------------------------------------
def run_comparison(n_datasets=5, noise_std=5.0, iterations=20_000, seed=0):
    """
    Fit simulated logistic data with Metropolis and with L-BFGS-B.

    Returns one row per data set with the error norm of the posterior mean
    and of the optimizer estimate.
    """
    t_vals, theta_true, lower, upper, proposal_step = make_configuration(noise_std=noise_std)
    key = jax.random.PRNGKey(seed)

    rows = []
    for i in tqdm(range(n_datasets), desc="Fitting simulated data sets"):
        data, _ = simulate_growth_data(t_vals, theta_true, noise_std=noise_std, seed=seed + i)

        key, subkey = jax.random.split(key)
        samples, result, summary = estimate_with_mcmc(
            subkey,
            t_vals,
            data,
            config={
                "noise_std": noise_std,
                "iterations": iterations,
                "proposal_step": proposal_step,
                "burn_in": 0.1,
            },
        )
        theta_opt = estimate_with_optimizer(
            t_vals,
            data,
            config={
                "noise_std": noise_std,
                "multistart": {"type": "gaussian", "n_starts": 5},
                "seed": seed + i,
            },
        )

        theta_mcmc = summary["mean"].to_numpy()
        rows.append({
            "dataset": i,
            "accept_rate": result.accept_rate,
            "n_invalid": result.n_invalid,
            "mcmc_error_norm": float(np.linalg.norm(theta_mcmc - np.asarray(theta_true))),
            "optimizer_error_norm": float(np.linalg.norm(theta_opt - np.asarray(theta_true))),
        })

    return pd.DataFrame(rows).set_index("dataset")


# -----------------------------------------------------------
# Main
# -----------------------------------------------------------
def main():
    noise_std = 5.0
    t_vals, theta_true, lower, upper, _ = make_configuration(noise_std=noise_std)
    print("True theta:", dict(zip(PARAM_NAMES, np.array(theta_true))))

    data, _ = simulate_growth_data(t_vals, theta_true, noise_std=noise_std, seed=1)
    objective = make_objective(t_vals, data, noise_std=noise_std, invalid_policy="clamp")

    print("\n=== Optimizer comparison (single data set) ===")
    theta0 = jnp.asarray((lower + upper) / 2)
    print(compare_optimizers(objective, theta0, bounds=(lower, upper), theta_true=theta_true))

    result = estimate_parameters(objective, theta0, method="L-BFGS-B", bounds=(lower, upper), maxiter=500)
    report_estimation_result(result, theta_true)

    print("\n=== Metropolis vs L-BFGS-B (several data sets) ===")
    print(run_comparison(noise_std=noise_std))


if __name__ == "__main__":
    main()
