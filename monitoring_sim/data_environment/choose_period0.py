#!/usr/bin/env python3
"""
Stage 3: Period-0 Prices and Choices

Each consumer faces four options (monitored firm 1, unmonitored firm 1,
firm 2, firm 3). Deterministic utility

    h = -price - demand_friction - E[oop] - price * E[R_s] * E[R_C]

is combined with an i.i.d. GEV shock and the utility-maximising option is
chosen. Ties go to the lowest option index.
"""

from typing import Dict, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import genextreme

from ..helpers import (
    cell_values,
    logit_choice_probabilities,
    require_columns,
    resolve_choices,
)
from .draw_risk import COVARIATE_COLS
from .parameters import (
    OPTIONS_T0,
    PriceParams,
    RenewalParams,
    ShockParams,
    SimulationConfig,
)


# =============================================================================
# UTILITY COMPONENTS (shared with period 1)
# =============================================================================

def option_arrays(options: Sequence[Tuple[int, int]]) -> Tuple[np.ndarray, np.ndarray]:
    """Return (firm, monitoring flag) arrays for an option list."""
    firms = np.array([f for f, _ in options], dtype=int)
    monitored = np.array([m for _, m in options], dtype=int)
    return firms, monitored


def inertia(X: np.ndarray, eta: np.ndarray) -> np.ndarray:
    """Switching cost eta_0 + eta_1 x_1 + eta_2 x_2 + eta_3 x_3, shape (N,)."""
    return eta[0] + X[:, :3] @ eta[1:4]


def monitoring_disutility(lam_monitored: np.ndarray, xi: np.ndarray) -> np.ndarray:
    return xi[0] + xi[1] * np.log(lam_monitored)


def gamma_shape(monitored: np.ndarray, score: np.ndarray, renewal: RenewalParams) -> np.ndarray:
    """
    Gamma shape of the systematic renewal multiplier R_s.

    alpha = alpha_base + 1[monitored] * (alpha_monitored + alpha_score * score);
    `score` is ignored (and may be NaN) where the consumer is not monitored.
    """
    monitored = np.asarray(monitored, dtype=bool)
    score = np.where(monitored, np.asarray(score, dtype=float), 0.0)
    bonus = renewal.alpha_monitored + renewal.alpha_score * score
    return renewal.alpha_base + np.where(monitored, bonus, 0.0)


def expected_claims_multiplier(lam: np.ndarray, renewal: RenewalParams) -> np.ndarray:
    """E[R_C] = no_claim * exp(-lambda) + claim * (1 - exp(-lambda))."""
    p_no_claim = np.exp(-lam)
    return renewal.no_claim_multiplier * p_no_claim + renewal.claim_multiplier * (1.0 - p_no_claim)


def deterministic_utility(
    price: np.ndarray,
    demand_friction: np.ndarray,
    e_oop: np.ndarray,
    e_rs: np.ndarray,
    e_rc: np.ndarray,
) -> np.ndarray:
    return -price - demand_friction - e_oop - price * e_rs * e_rc


def draw_utility_shocks(size: Tuple[int, int], shock: ShockParams, rng: np.random.Generator) -> np.ndarray:
    """
    Draw i.i.d. GEV utility shocks.

    Shape 0 is the Gumbel (type I extreme value) case and uses rng.gumbel.
    scipy's genextreme uses c = -shape.
    """
    if shock.shape == 0.0:
        return rng.gumbel(shock.loc, shock.scale, size=size)
    return genextreme.rvs(-shock.shape, loc=shock.loc, scale=shock.scale, size=size, random_state=rng)


def choice_probabilities(h: np.ndarray, shock: ShockParams) -> np.ndarray:
    """
    Closed-form choice probabilities for deterministic utilities `h` (N, D).

    Gumbel(loc, scale) shocks give the logit softmax(h / scale). Any other
    GEV shape has no closed form, so every entry is NaN.
    """
    h = np.asarray(h, dtype=float)
    if shock.shape != 0.0:
        return np.full(h.shape, np.nan)
    return logit_choice_probabilities(h / shock.scale)


def build_choice_table(
    t: int,
    options: Sequence[Tuple[int, int]],
    X: np.ndarray,
    columns: Dict[str, np.ndarray],
) -> pd.DataFrame:
    """
    Assemble a long (i, d) table ordered by consumer then option.

    Args:
        t: Period
        options: (firm, monitoring flag) per option
        X: Covariates (N, 4)
        columns: Per-option matrices (N, D) or per-consumer vectors (N,)
    """
    N = X.shape[0]
    D = len(options)
    firms, monitored = option_arrays(options)

    data = {
        'i': np.repeat(np.arange(1, N + 1), D),
        'd': np.tile(np.arange(1, D + 1), N),
        't': np.full(N * D, t),
        'm': np.tile(monitored, N),
        'f': np.tile(firms, N),
    }
    X_rep = np.repeat(X, D, axis=0)
    for k, col in enumerate(COVARIATE_COLS):
        data[col] = X_rep[:, k]
    for name, values in columns.items():
        values = np.asarray(values)
        data[name] = np.repeat(values, D) if values.ndim == 1 else values.reshape(-1)
    return pd.DataFrame(data)


# =============================================================================
# PERIOD-0 DRAWS
# =============================================================================

def draw_option_prices(X: np.ndarray, price: PriceParams, rng: np.random.Generator) -> np.ndarray:
    """
    Base prices (N, 4): beta_d0 + beta_d1 x_1 + beta_d2 x_2 + beta_d3 x_3
    + beta_d4 1[m_d = 1] + N(noise_mean, noise_sd).
    """
    N = X.shape[0]
    _, monitored = option_arrays(OPTIONS_T0)
    beta = price.beta
    linear = beta[:, 0][None, :] + X[:, :3] @ beta[:, 1:4].T + (beta[:, 4] * monitored)[None, :]
    noise = rng.normal(price.noise_mean, price.noise_sd, size=(N, len(OPTIONS_T0)))
    return linear + noise


def draw_prior_choice(N: int, probs: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Prior policy as an option index in 1..4 (never 1 under the default probabilities)."""
    return rng.choice(np.arange(1, len(probs) + 1), size=N, p=probs)


def choose_period0(cells: pd.DataFrame, config: SimulationConfig, rng: np.random.Generator) -> pd.DataFrame:
    """
    Run stage 3.

    Draw order: prices (N x 4), prior option (N), utility shocks (N x 4).

    Args:
        cells: Cell table from stages 1-2
        config: Simulation configuration
        rng: Random number generator

    Returns:
        Long period-0 choice table, one row per (i, d)
    """
    require_columns(cells, ['i', 'm', 't', 'lambda', 'E_oop', 'E_score', *COVARIATE_COLS], "Cell table")

    firms, monitored = option_arrays(OPTIONS_T0)
    is_monitored = monitored.astype(bool)[None, :]

    X = np.column_stack([cell_values(cells, col, t=0, m=0) for col in COVARIATE_COLS])
    N = X.shape[0]

    lam_m0 = cell_values(cells, 'lambda', t=0, m=0)
    lam_m1 = cell_values(cells, 'lambda', t=0, m=1)
    oop_m0 = cell_values(cells, 'E_oop', t=0, m=0)
    oop_m1 = cell_values(cells, 'E_oop', t=0, m=1)
    e_score_m1 = cell_values(cells, 'E_score', t=0, m=1)

    lam = np.where(is_monitored, lam_m1[:, None], lam_m0[:, None])
    e_oop = np.where(is_monitored, oop_m1[:, None], oop_m0[:, None])
    e_score = np.where(is_monitored, e_score_m1[:, None], np.nan)

    price = draw_option_prices(X, config.price, rng)
    prior_choice = draw_prior_choice(N, config.demand.prior_probs, rng)
    prior_firm = firms[prior_choice - 1]

    base_inertia = inertia(X, config.demand.eta)
    options = np.arange(1, len(OPTIONS_T0) + 1)[None, :]
    switching = options != prior_choice[:, None]
    disutility = np.where(is_monitored, monitoring_disutility(lam_m1, config.demand.xi)[:, None], 0.0)
    demand_friction = switching * base_inertia[:, None] + disutility

    alpha = gamma_shape(np.broadcast_to(is_monitored, lam.shape), e_score, config.renewal)
    e_rs = alpha / config.renewal.rate
    e_rc = expected_claims_multiplier(lam, config.renewal)

    h = deterministic_utility(price, demand_friction, e_oop, e_rs, e_rc)
    eps = draw_utility_shocks(h.shape, config.shock, rng)
    u = h + eps
    choice = resolve_choices(u)
    prob = choice_probabilities(h, config.shock)

    return build_choice_table(0, OPTIONS_T0, X, {
        'lambda': lam,
        'price': price,
        'prior_choice': prior_choice,
        'prior_firm': prior_firm,
        'inertia': base_inertia,
        'switching': switching.astype(int),
        'monitoring_disutility': disutility,
        'demand_friction': demand_friction,
        'E_oop': e_oop,
        'E_score': e_score,
        'gamma_alpha': alpha,
        'E_Rs': e_rs,
        'E_Rc': e_rc,
        'h': h,
        'eps': eps,
        'u': u,
        'prob': prob,
        'choice': choice,
    })
