"""
Synthetic Data Generation for Cox AIPW Experiments

Standard notation:
  Z : observed baseline covariates (confounders)
  A : group indicator (binary)
  T : event time, with potential outcomes T0, T1
  C : censoring time
  Y : observed time min(T, C)
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from lifelines import CoxPHFitter
from scipy.optimize import brentq
from scipy.special import expit

# logistic link for the group assignment model
sigmoid = expit


def calibrate_intercept_for_prevalence(linpred, target_prevalence, bound=20.0):
    """Intercept b0 with mean(expit(b0 + linpred)) equal to target_prevalence."""
    linpred = np.asarray(linpred, dtype=float)
    return brentq(lambda b0: expit(b0 + linpred).mean() - target_prevalence,
                  -bound, bound)


def weibull_ph_time(u01, k, lam, eta):
    """
    Event times with cumulative hazard H(t | eta) = exp(eta) * (t / lam)^k.

    Solves H(T) = -log(u01). Adding log(r) to eta multiplies the hazard by r.
    """
    target = -np.log(np.clip(u01, 1e-12, 1 - 1e-12))
    rate = np.exp(eta) / lam ** k
    return (target / rate) ** (1.0 / k)


@dataclass
class SimulationConfig:
    n: int = 500
    p_z: int = 2
    seed: int = 123

    # Group assignment A: P(A=1 | Z)
    a_prevalence: float = 0.5
    confounding: float = 0.5   # scale of Z -> A coefficients (0 = randomized)

    # Event time model (Weibull Cox PH)
    k_t: float = 1.5
    lam_t: float = 1.0
    log_hr: float = 0.0        # group effect on the hazard
    z_in_t: float = 0.5        # scale of Z -> event time coefficients

    # Censoring time model (Weibull Cox PH)
    k_c: float = 1.2
    lam_c: Optional[float] = None
    a_in_c: float = 0.0        # group effect on the censoring hazard
    z_in_c: float = 0.3        # scale of Z -> censoring coefficients (0 = random censoring)
    target_censor_rate: float = 0.3
    max_censor_calib_iter: int = 60
    censor_lam_lo: float = 1e-8
    censor_lam_hi: float = 1e6

    # Optional admin censoring
    admin_censor_time: Optional[float] = None


def simulate_cox_msm(cfg: SimulationConfig) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Generate right-censored data with confounded group assignment.

    Returns:
        observed_df: DataFrame with observed variables (time, event, A, Z0..Zp),
            in the column order CoxAIPW.fit expects by default
        truth_df: observed_df plus potential event times and censoring times
    """
    rng = np.random.default_rng(cfg.seed)
    n, p = cfg.n, cfg.p_z

    # 1) Covariates
    Z = rng.normal(size=(n, p))

    # 2) Group assignment from a logistic model of Z
    alpha = rng.normal(scale=cfg.confounding, size=p)
    linpred = Z @ alpha
    b0 = calibrate_intercept_for_prevalence(linpred, cfg.a_prevalence)
    A = rng.binomial(1, sigmoid(b0 + linpred), size=n).astype(int)

    # 3) Potential event times T0, T1 (shared uniform u_t)
    beta_t = rng.normal(scale=cfg.z_in_t, size=p)
    u_t = rng.random(n)
    eta_t = Z @ beta_t
    T0 = weibull_ph_time(u_t, k=cfg.k_t, lam=cfg.lam_t, eta=eta_t)
    T1 = weibull_ph_time(u_t, k=cfg.k_t, lam=cfg.lam_t, eta=eta_t + cfg.log_hr)
    T = np.where(A == 1, T1, T0)

    # 4) Censoring times, scale calibrated to the target censoring rate
    beta_c = rng.normal(scale=cfg.z_in_c, size=p)
    u_c = rng.random(n)
    eta_c = Z @ beta_c + cfg.a_in_c * A
    lam_c_used = cfg.lam_c

    if lam_c_used is None:
        def excess_censoring(log_lam):
            C_try = weibull_ph_time(u_c, k=cfg.k_c, lam=np.exp(log_lam), eta=eta_c)
            return (C_try < T).mean() - cfg.target_censor_rate

        # the censoring rate is a step function of log(lam); brentq lands on a step
        log_lam = brentq(excess_censoring,
                         np.log(cfg.censor_lam_lo), np.log(cfg.censor_lam_hi),
                         xtol=1e-8, maxiter=cfg.max_censor_calib_iter)
        lam_c_used = float(np.exp(log_lam))

    C = weibull_ph_time(u_c, k=cfg.k_c, lam=lam_c_used, eta=eta_c)

    # 5) Observed (time, event)
    time = np.minimum(T, C)
    event = (T <= C).astype(int)

    if cfg.admin_censor_time is not None:
        admin = float(cfg.admin_censor_time)
        cens_by_admin = admin < time
        time = np.where(cens_by_admin, admin, time)
        event = np.where(cens_by_admin, 0, event).astype(int)

    # 6) DataFrames
    Z_cols = {f"Z{j}": Z[:, j] for j in range(p)}
    observed_df = pd.DataFrame({
        "time": time,
        "event": event,
        "A": A,
        **Z_cols,
    })

    truth_df = observed_df.copy()
    truth_df["T0"] = T0
    truth_df["T1"] = T1
    truth_df["C"] = C
    truth_df.attrs["lam_c_used"] = lam_c_used
    return observed_df, truth_df


def marginal_log_hazard_ratio(truth_df: pd.DataFrame) -> float:
    """
    Log hazard ratio of T1 vs T0 in the sample, from an unpenalized Cox fit
    on the stacked, uncensored potential event times.

    Equals cfg.log_hr up to sampling error when there is no covariate effect
    on the event time (including the null effect, log_hr = 0).
    """
    stacked = pd.DataFrame({
        "_duration": np.concatenate([truth_df["T0"].to_numpy(), truth_df["T1"].to_numpy()]),
        "_event": 1,
        "A": np.repeat([0, 1], len(truth_df)),
    })
    cph = CoxPHFitter()
    cph.fit(stacked, duration_col="_duration", event_col="_event")
    return float(cph.params_["A"])
