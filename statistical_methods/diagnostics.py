import numpy as np
import pandas as pd


# ============================================================
# 1. AUTOCORRELATION
# ============================================================

def autocorrelation(x):
    """
    Compute autocorrelation for lags 0..(N-1)
    """
    x = np.asarray(x, dtype=float)
    x = x - np.mean(x)
    N = len(x)

    # FFT for speed
    fftx = np.fft.fft(x, n=2*N)
    acf = np.fft.ifft(fftx * np.conjugate(fftx))[:N].real
    if acf[0] == 0.0:
        # constant trace
        acf = np.zeros(N)
        acf[0] = 1.0
        return acf
    acf /= acf[0]
    return acf


def integrated_autocorrelation_time(acf):
    """
    Compute cumulative IACT as function of cutoff lag.
    """
    # τ_int(L) = 1 + 2 * sum_{l=1..L} acf[l]
    iact = 1 + 2 * np.cumsum(acf[1:])
    # Prepend τ_int(0)=1
    iact = np.concatenate([[1.0], iact])
    return iact


def effective_sample_size(x):
    """
    ESS = N / IACT, with the IACT sum cut at the first non-positive lag.
    """
    x = np.asarray(x, dtype=float)
    N = len(x)
    acf = autocorrelation(x)

    non_positive = np.flatnonzero(acf[1:] <= 0.0)
    cutoff = non_positive[0] if non_positive.size else N - 1

    tau = integrated_autocorrelation_time(acf)[cutoff]
    return N / max(tau, 1.0)


# ============================================================
# 2. MULTI-CHAIN CONVERGENCE
# ============================================================

def gelman_rubin(chains):
    """
    Potential scale reduction factor R-hat per parameter.

    chains : array, shape (n_chains, n_samples, n_params)
    """
    chains = np.asarray(chains, dtype=float)
    if chains.ndim != 3:
        raise ValueError(f"Expected chains with ndim=3, got {chains.shape}")
    m, n, _ = chains.shape
    if m < 2 or n < 2:
        raise ValueError("R-hat needs at least 2 chains with 2 samples each")

    chain_means = chains.mean(axis=1)
    chain_vars = chains.var(axis=1, ddof=1)

    W = chain_vars.mean(axis=0)
    B = n * chain_means.var(axis=0, ddof=1)
    var_hat = (n - 1) / n * W + B / n

    return np.sqrt(var_hat / W)


# ============================================================
# 3. SUMMARY TABLE
# ============================================================

def summarize_chain(samples, param_names=None, theta_true=None):
    """
    Posterior summary per parameter as a DataFrame.

    samples : (N_samples, D), or (N_chains, N_samples, D) in which case the
              chains are pooled for the moments and R-hat is added.
    """
    samples = np.asarray(samples, dtype=float)

    if samples.ndim == 2:
        pooled = samples
        rhat = None
    elif samples.ndim == 3:
        pooled = samples.reshape(-1, samples.shape[-1])
        rhat = gelman_rubin(samples)
    else:
        raise ValueError(f"Expected samples with ndim=2 or 3, got {samples.shape}")

    n_params = pooled.shape[1]
    if param_names is None:
        param_names = [f"θ[{i}]" for i in range(n_params)]

    table = pd.DataFrame({
        "mean": pooled.mean(axis=0),
        "std": pooled.std(axis=0),
        "q05": np.quantile(pooled, 0.05, axis=0),
        "q50": np.quantile(pooled, 0.50, axis=0),
        "q95": np.quantile(pooled, 0.95, axis=0),
    }, index=pd.Index(param_names, name="param"))

    if samples.ndim == 2:
        table["ess"] = [effective_sample_size(samples[:, i]) for i in range(n_params)]
    else:
        table["ess"] = [
            sum(effective_sample_size(chain[:, i]) for chain in samples)
            for i in range(n_params)
        ]
        table["rhat"] = rhat

    if theta_true is not None:
        theta_true = np.asarray(theta_true, dtype=float)
        table["true"] = theta_true
        table["error"] = table["mean"] - theta_true

    return table
