#!/usr/bin/env python3
"""
Stage 2: Expected Monitoring Score and Out-of-Pocket Cost

Closed-form expectations per cell; no random draws.

    E[s]   = exp(mu_s + sigma_s^2 / 2),  mu_s = th_1 + th_2 log(lambda) + th_3 x_1 + th_4 x_2
    E[oop] = lambda exp(-lambda) * l_0^a / (a - 1) * y_0^(1 - a)

lambda exp(-lambda) approximates Pr(exactly one claim) and the second factor
is E[(L - y_0)^+] for Pareto(a, l_0) severity L above the policy limit y_0.
The score is only observable for the monitored option of period 0, so E[s]
is NaN on every other cell.
"""

import numpy as np
import pandas as pd

from ..helpers import require_columns
from .parameters import LossParams, SimulationConfig


def score_mean(lam: np.ndarray, x1: np.ndarray, x2: np.ndarray, theta: np.ndarray) -> np.ndarray:
    """Location of the log monitoring score."""
    return theta[0] + theta[1] * np.log(lam) + theta[2] * x1 + theta[3] * x2


def lognormal_mean(mu: np.ndarray, sigma: float) -> np.ndarray:
    return np.exp(mu + 0.5 * sigma**2)


def expected_oop(
    lam: np.ndarray,
    pareto_shape: float,
    pareto_scale: float,
    policy_limit: float,
) -> np.ndarray:
    """
    Expected out-of-pocket cost above the policy limit.

    Args:
        lam: Claim rates (> 0)
        pareto_shape: a_l, must exceed 1
        pareto_scale: l_0
        policy_limit: y_0 >= l_0

    Returns:
        Non-negative array, decreasing in policy_limit
    """
    p_one_claim = lam * np.exp(-lam)
    tail = pareto_scale**pareto_shape / (pareto_shape - 1.0) * policy_limit ** (1.0 - pareto_shape)
    return p_one_claim * tail


def expected_oop_for(lam: np.ndarray, loss: LossParams) -> np.ndarray:
    return expected_oop(lam, loss.pareto_shape, loss.pareto_scale, loss.policy_limit)


def compute_expected_costs(cells: pd.DataFrame, config: SimulationConfig) -> pd.DataFrame:
    """
    Run stage 2 on the cell table.

    Returns:
        Copy of `cells` with mu_score, E_score (t=0, m=1 only) and E_oop
    """
    require_columns(cells, ['i', 'm', 't', 'x_1', 'x_2', 'lambda'], "Cell table")

    out = cells.copy()
    lam = out['lambda'].to_numpy(dtype=float)
    observable = ((out['t'] == 0) & (out['m'] == 1)).to_numpy()

    mu_s = score_mean(lam, out['x_1'].to_numpy(), out['x_2'].to_numpy(), config.score.theta)
    out['mu_score'] = np.where(observable, mu_s, np.nan)
    out['E_score'] = np.where(observable, lognormal_mean(mu_s, config.score.sigma), np.nan)
    out['E_oop'] = expected_oop_for(lam, config.loss)
    return out
