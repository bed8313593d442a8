#!/usr/bin/env python3
"""
Stage 4: Realised Claims and Monitoring Scores

For each consumer's chosen period-0 option: claims ~ Poisson(lambda) at the
chosen option's monitoring state, and score ~ LogNormal(mu_s, sigma_s) for
monitored consumers. Unmonitored consumers carry score = 1 ("no information").
"""

import numpy as np
import pandas as pd

from ..helpers import cell_values, require_columns
from .parameters import SimulationConfig


def chosen_rows(choices: pd.DataFrame) -> pd.DataFrame:
    """Return the chosen row of every consumer, ordered by i."""
    require_columns(choices, ['i', 'd', 'choice'], "Choice table")
    chosen = choices.loc[choices['choice'] == 1].sort_values('i').reset_index(drop=True)
    if chosen['i'].duplicated().any() or len(chosen) != choices['i'].nunique():
        raise ValueError("Choice table must have exactly one chosen option per consumer")
    return chosen


def realize_costs(
    choices_t0: pd.DataFrame,
    cells: pd.DataFrame,
    config: SimulationConfig,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """
    Run stage 4.

    Draw order: claims (N), then scores (one per monitored consumer).

    Returns:
        One row per consumer: i, d, f, m, lambda, claims, mu_score, score, log_score
    """
    require_columns(choices_t0, ['i', 'd', 'f', 'm', 'lambda', 'choice'], "Period-0 choice table")
    require_columns(cells, ['i', 'm', 't', 'mu_score'], "Cell table")

    chosen = chosen_rows(choices_t0)
    lam = chosen['lambda'].to_numpy(dtype=float)
    monitored = chosen['m'].to_numpy() == 1

    claims = rng.poisson(lam)

    mu_score = cell_values(cells, 'mu_score', t=0, m=1)
    score = np.ones(len(chosen))
    score[monitored] = rng.lognormal(mu_score[monitored], config.score.sigma)

    return pd.DataFrame({
        'i': chosen['i'].to_numpy(),
        'd': chosen['d'].to_numpy(),
        'f': chosen['f'].to_numpy(),
        'm': chosen['m'].to_numpy(),
        'lambda': lam,
        'claims': claims,
        'mu_score': np.where(monitored, mu_score, np.nan),
        'score': score,
        'log_score': np.log(score),
    })
