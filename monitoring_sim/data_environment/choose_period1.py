#!/usr/bin/env python3
"""
Stage 5: Period-1 Renewal Prices and Choices

Monitoring is no longer offered, so each consumer chooses among firms 1-3.
The per-consumer state carried over from period 0 holds the prior policy,
realised claims and score, and every firm's unmonitored period-0 price.

Renewal price:  price = prior_price * R_s * R_C
    prior_price  firm f's unmonitored period-0 price (also for a consumer
                 who bought the monitored policy at firm 1)
    R_s          ~ Gamma(gamma_alpha, rate); gamma_alpha uses the realised
                 score, which only firm 1 (the monitoring firm) observes
    R_C          no_claim_multiplier if claims == 0 else claim_multiplier
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

from ..helpers import (
    cell_values,
    long_to_wide,
    require_columns,
    resolve_choices,
)
from .choose_period0 import (
    build_choice_table,
    choice_probabilities,
    deterministic_utility,
    draw_utility_shocks,
    expected_claims_multiplier,
    gamma_shape,
    inertia,
    option_arrays,
)
from .draw_risk import COVARIATE_COLS
from .parameters import N_FIRMS, OPTIONS_T0, OPTIONS_T1, RenewalParams, SimulationConfig
from .realize_costs import chosen_rows


@dataclass(frozen=True)
class ConsumerState:
    """Per-consumer record carried from period 0 into period 1 (arrays of length N)."""
    prior_choice: np.ndarray  # chosen period-0 option, 1..4
    prior_firm: np.ndarray    # its firm, 1..3
    monitored: np.ndarray     # bool, chose the monitored option
    claims: np.ndarray
    score: np.ndarray         # realised score, 1 when unmonitored
    base_price: np.ndarray    # (N, 3) unmonitored period-0 price per firm


def carry_forward_state(choices_t0: pd.DataFrame, realizations: pd.DataFrame) -> ConsumerState:
    """Collect the period-0 outcomes each consumer brings into period 1."""
    require_columns(choices_t0, ['i', 'd', 'f', 'm', 'price', 'choice'], "Period-0 choice table")
    require_columns(realizations, ['i', 'claims', 'score'], "Cost realisations")

    ordered = choices_t0.sort_values(['i', 'd'])
    prices = long_to_wide(ordered['price'].to_numpy(dtype=float), len(OPTIONS_T0))

    firms, monitored = option_arrays(OPTIONS_T0)
    base_price = np.empty((prices.shape[0], N_FIRMS))
    for f in range(1, N_FIRMS + 1):
        d_base = np.flatnonzero((firms == f) & (monitored == 0))[0]
        base_price[:, f - 1] = prices[:, d_base]

    chosen = chosen_rows(choices_t0)
    real = realizations.sort_values('i')
    if not np.array_equal(real['i'].to_numpy(), chosen['i'].to_numpy()):
        raise ValueError("Cost realisations do not cover the same consumers as the choice table")

    return ConsumerState(
        prior_choice=chosen['d'].to_numpy(),
        prior_firm=chosen['f'].to_numpy(),
        monitored=chosen['m'].to_numpy() == 1,
        claims=real['claims'].to_numpy(),
        score=real['score'].to_numpy(dtype=float),
        base_price=base_price,
    )


def realized_claims_multiplier(claims: np.ndarray, renewal: RenewalParams) -> np.ndarray:
    return np.where(np.asarray(claims) == 0, renewal.no_claim_multiplier, renewal.claim_multiplier)


def choose_period1(
    state: ConsumerState,
    cells: pd.DataFrame,
    config: SimulationConfig,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """
    Run stage 5.

    Draw order: R_s (N x 3), utility shocks (N x 3).

    Returns:
        Long period-1 choice table, one row per (i, d)
    """
    require_columns(cells, ['i', 'm', 't', 'lambda', 'E_oop', *COVARIATE_COLS], "Cell table")

    firms, _ = option_arrays(OPTIONS_T1)
    X = np.column_stack([cell_values(cells, col, t=1, m=0) for col in COVARIATE_COLS])
    N = X.shape[0]
    D = len(OPTIONS_T1)
    renewal = config.renewal

    prior_price = state.base_price[:, firms - 1]
    observed = state.monitored[:, None] & (firms == 1)[None, :]
    alpha = gamma_shape(observed, np.broadcast_to(state.score[:, None], (N, D)), renewal)
    r_s = rng.gamma(alpha, 1.0 / renewal.rate)
    r_c = np.broadcast_to(realized_claims_multiplier(state.claims, renewal)[:, None], (N, D))
    price = prior_price * r_s * r_c

    lam = np.broadcast_to(cell_values(cells, 'lambda', t=1, m=0)[:, None], (N, D))
    e_oop = np.broadcast_to(cell_values(cells, 'E_oop', t=1, m=0)[:, None], (N, D))

    base_inertia = inertia(X, config.demand.eta)
    switching = firms[None, :] != state.prior_firm[:, None]
    demand_friction = switching * base_inertia[:, None]

    e_rs = np.full((N, D), renewal.alpha_base / renewal.rate)
    e_rc = expected_claims_multiplier(lam, renewal)

    h = deterministic_utility(price, demand_friction, e_oop, e_rs, e_rc)
    eps = draw_utility_shocks(h.shape, config.shock, rng)
    u = h + eps
    choice = resolve_choices(u)
    prob = choice_probabilities(h, config.shock)

    return build_choice_table(1, OPTIONS_T1, X, {
        'lambda': lam,
        'prior_choice': state.prior_choice,
        'prior_firm': state.prior_firm,
        'prior_price': prior_price,
        'claims': state.claims,
        'score': state.score,
        'gamma_alpha': alpha,
        'R_s': r_s,
        'R_c': r_c,
        'price': price,
        'inertia': base_inertia,
        'switching': switching.astype(int),
        'demand_friction': demand_friction,
        'E_oop': e_oop,
        'E_Rs': e_rs,
        'E_Rc': e_rc,
        'h': h,
        'eps': eps,
        'u': u,
        'prob': prob,
        'choice': choice,
    })
