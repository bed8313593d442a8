#!/usr/bin/env python3
"""
Stage 1: Covariates and Latent Risk

Draws consumer covariates for both periods and the latent Poisson claim rate
lambda for every (consumer, monitoring flag, period) cell. A single
consumer-level log-normal shock is shared by all of a consumer's cells.
"""

from typing import Tuple

import numpy as np
import pandas as pd

from .parameters import N_COVARIATES, RiskParams, SimulationConfig

COVARIATE_COLS = [f'x_{k}' for k in range(1, N_COVARIATES + 1)]


def draw_covariates(
    N: int,
    rng: np.random.Generator,
    covariate_var: float = 0.25,
    persistence: float = 0.5,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Draw period-0 covariates and their period-1 blend.

    Args:
        N: Number of consumers
        rng: Random number generator
        covariate_var: Variance of each independent covariate draw
        persistence: Weight on period-0 covariates in period 1

    Returns:
        Tuple of (X_t0, X_t1), each (N, 4)
    """
    mean = np.zeros(N_COVARIATES)
    cov = covariate_var * np.eye(N_COVARIATES)
    X_t0 = rng.multivariate_normal(mean, cov, N)
    noise = rng.multivariate_normal(mean, cov, N)
    X_t1 = persistence * X_t0 + (1.0 - persistence) * noise
    return X_t0, X_t1


def build_cell_grid(X_t0: np.ndarray, X_t1: np.ndarray) -> pd.DataFrame:
    """
    Cross consumers with monitoring flags and periods.

    Rows are ordered by (t, i, m); t=0 cells carry X_t0 and t=1 cells carry
    X_t1, replicated across m.
    """
    N = X_t0.shape[0]
    blocks = []
    for t, X in ((0, X_t0), (1, X_t1)):
        X_rep = np.repeat(X, 2, axis=0)
        columns = {
            'i': np.repeat(np.arange(1, N + 1), 2),
            'm': np.tile([0, 1], N),
            't': np.full(2 * N, t),
        }
        for k, col in enumerate(COVARIATE_COLS):
            columns[col] = X_rep[:, k]
        blocks.append(pd.DataFrame(columns))
    return pd.concat(blocks, ignore_index=True)


def lambda_mean(cells: pd.DataFrame, theta: np.ndarray) -> np.ndarray:
    """mu_lambda = theta_1 + theta_2..5 . x + theta_6 * 1[m=1, t=0]."""
    X = cells[COVARIATE_COLS].to_numpy(dtype=float)
    monitored_t0 = ((cells['m'] == 1) & (cells['t'] == 0)).to_numpy(dtype=float)
    return theta[0] + X @ theta[1:1 + N_COVARIATES] + theta[1 + N_COVARIATES] * monitored_t0


def draw_lambda(cells: pd.DataFrame, risk: RiskParams, rng: np.random.Generator) -> pd.DataFrame:
    """Attach mu_lambda, the consumer shock and lambda = exp(mu_lambda + eps_i)."""
    N = int(cells['i'].max())
    eps = rng.normal(0.0, risk.sigma, N)

    out = cells.copy()
    out['mu_lambda'] = lambda_mean(out, risk.theta)
    out['eps_lambda'] = eps[out['i'].to_numpy() - 1]
    out['lambda'] = np.exp(out['mu_lambda'] + out['eps_lambda'])
    return out


def draw_risk(config: SimulationConfig, rng: np.random.Generator) -> pd.DataFrame:
    """
    Run stage 1: covariates, cell grid and lambda.

    Draw order: X_t0 (N x 4), period-1 noise (N x 4), consumer shock (N).

    Returns:
        Cell table with columns i, m, t, x_1..x_4, mu_lambda, eps_lambda, lambda
    """
    N = int(config.core.N)
    X_t0, X_t1 = draw_covariates(
        N, rng,
        covariate_var=config.risk.covariate_var,
        persistence=config.risk.persistence,
    )
    cells = build_cell_grid(X_t0, X_t1)
    return draw_lambda(cells, config.risk, rng)
