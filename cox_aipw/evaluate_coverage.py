"""
Repeated-simulation evaluation of the Cox AIPW estimator.

For each augmentation mode reports, across simulated datasets:
  Bias      mean(beta_hat) - true log hazard ratio
  SD        empirical standard deviation of beta_hat
  Mean SE   average model-based standard error
  Coverage  share of 95% Wald intervals that contain the true value

Run with ``python -m cox_aipw.evaluate_coverage``.
"""

import numpy as np
import pandas as pd
from scipy.stats import norm

from .data_generation import SimulationConfig, simulate_cox_msm
from .exceptions import CoxAIPWError
from .models import cox_aipw


def evaluate_mode(true_log_hr, estimates, ses, name, level=0.95):
    """Compute coverage metrics for one augmentation mode."""
    estimates = np.asarray(estimates, dtype=float)
    ses = np.asarray(ses, dtype=float)
    z = norm.ppf(0.5 + level / 2.0)
    covered = np.abs(estimates - true_log_hr) <= z * ses

    return {
        "Mode": name,
        "Bias": estimates.mean() - true_log_hr,
        "SD": estimates.std(ddof=1) if len(estimates) > 1 else np.nan,
        "Mean SE": ses.mean(),
        "Coverage": covered.mean(),
        "Runs": len(estimates),
    }


def run_coverage_experiment(n_sims=100, n=500, log_hr=0.0, modes=("AIPTCW", "AIPTW", "AIPCW"),
                            seed=0, verbose=True, **options):
    """
    Simulate ``n_sims`` datasets and fit every mode on each of them.

    The event time does not depend on the covariates, so the marginal and
    conditional log hazard ratios coincide and ``log_hr`` is the truth.
    Covariates still drive group assignment and censoring.

    Returns a DataFrame with one row per mode plus the raw estimates.
    """
    estimates = {mode: [] for mode in modes}
    ses = {mode: [] for mode in modes}
    failures = {mode: 0 for mode in modes}

    for sim in range(n_sims):
        cfg = SimulationConfig(n=n, seed=seed + sim, log_hr=log_hr, z_in_t=0.0)
        obs_df, _ = simulate_cox_msm(cfg)
        for mode in modes:
            try:
                res = cox_aipw(obs_df, augmentation=mode, **options)
            except CoxAIPWError as exc:
                failures[mode] += 1
                if verbose:
                    print(f"    sim {sim}, {mode}: {type(exc).__name__}: {exc}")
                continue
            estimates[mode].append(res.beta)
            ses[mode].append(res.model_se)
        if verbose and (sim + 1) % 10 == 0:
            print(f"  {sim + 1}/{n_sims} datasets done")

    rows = []
    for mode in modes:
        if not estimates[mode]:
            continue
        row = evaluate_mode(log_hr, estimates[mode], ses[mode], mode)
        row["Failures"] = failures[mode]
        rows.append(row)
    raw = pd.DataFrame([
        {"Mode": mode, "beta": b, "se": s}
        for mode in modes for b, s in zip(estimates[mode], ses[mode])
    ])
    return pd.DataFrame(rows), raw


def main():
    print("=" * 74)
    print("COX AIPW COVERAGE EVALUATION")
    print("=" * 74)

    # ---- Experiment 1: null effect ----
    print("\n1. NULL EFFECT (n=500, log_hr=0, 100 datasets)")
    print("-" * 74)
    summary, _ = run_coverage_experiment(n_sims=100, n=500, log_hr=0.0)
    print(summary.round(4).to_string(index=False))

    # ---- Experiment 2: non-null effect ----
    print("\n\n2. PROTECTIVE EFFECT (n=500, log_hr=-0.5, 100 datasets)")
    print("-" * 74)
    summary, _ = run_coverage_experiment(n_sims=100, n=500, log_hr=-0.5)
    print(summary.round(4).to_string(index=False))

    print("\n" + "=" * 74)
    print("EVALUATION COMPLETE")
    print("=" * 74)


if __name__ == "__main__":
    main()
