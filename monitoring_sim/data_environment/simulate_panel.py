#!/usr/bin/env python3
"""
Monitoring-Choice Panel Simulation

This script runs the five data-environment stages with one seeded random
stream and assembles the long consumer x option x period panel handed to the
estimation step:

  1. covariates and latent claim rates      (draw_risk)
  2. expected score and out-of-pocket cost  (expected_costs)
  3. period-0 prices and choices            (choose_period0)
  4. realised claims and scores             (realize_costs)
  5. period-1 renewal prices and choices    (choose_period1)

The simulation functions return in-memory tables; only `main` writes files.
"""

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

if __package__ is None or __package__ == "":
    project_root = Path(__file__).resolve().parents[2]
    sys.path.append(str(project_root))
    from monitoring_sim import get_data_dir, get_output_dir  # type: ignore
    from monitoring_sim.helpers import read_params_long_csv  # type: ignore
    from monitoring_sim.data_environment.choose_period0 import (  # type: ignore
        choice_probabilities,
        choose_period0,
        draw_utility_shocks,
    )
    from monitoring_sim.data_environment.choose_period1 import carry_forward_state, choose_period1  # type: ignore
    from monitoring_sim.data_environment.draw_risk import COVARIATE_COLS, draw_risk  # type: ignore
    from monitoring_sim.data_environment.expected_costs import compute_expected_costs  # type: ignore
    from monitoring_sim.data_environment.parameters import (  # type: ignore
        ShockParams,
        SimulationConfig,
        dump_effective_config_csv,
        load_config,
        write_parameters_template,
    )
    from monitoring_sim.data_environment.realize_costs import realize_costs  # type: ignore
else:  # pragma: no cover - executed when running as package module
    from .. import get_data_dir, get_output_dir
    from ..helpers import read_params_long_csv
    from .choose_period0 import choice_probabilities, choose_period0, draw_utility_shocks
    from .choose_period1 import carry_forward_state, choose_period1
    from .draw_risk import COVARIATE_COLS, draw_risk
    from .expected_costs import compute_expected_costs
    from .parameters import (
        ShockParams,
        SimulationConfig,
        dump_effective_config_csv,
        load_config,
        write_parameters_template,
    )
    from .realize_costs import realize_costs


PANEL_COLUMNS = ['i', 'd', 't', 'm', 'f', *COVARIATE_COLS, 'price', 'prior_firm', 'choice']


@dataclass(frozen=True)
class SimulationTables:
    """All tables produced by one simulation run."""
    cells: pd.DataFrame         # (i, m, t) cells with lambda and expectations
    choices_t0: pd.DataFrame    # period-0 (i, d) rows, all utility components
    realizations: pd.DataFrame  # one row per consumer
    choices_t1: pd.DataFrame    # period-1 (i, d) rows, all utility components
    panel: pd.DataFrame         # PANEL_COLUMNS, ordered by (t, i, d)


# =============================================================================
# PIPELINE
# =============================================================================

def assemble_panel(choices_t0: pd.DataFrame, choices_t1: pd.DataFrame) -> pd.DataFrame:
    """Stack both periods into the long panel, rows ordered by (t, i, d)."""
    panel = pd.concat(
        [choices_t0[PANEL_COLUMNS], choices_t1[PANEL_COLUMNS]],
        ignore_index=True,
    )
    return panel.sort_values(['t', 'i', 'd'], kind='mergesort').reset_index(drop=True)


def run_simulation(
    config: Optional[SimulationConfig] = None,
    rng: Optional[np.random.Generator] = None,
    verbose: bool = False,
) -> SimulationTables:
    """
    Run all five stages.

    Args:
        config: Simulation configuration (defaults when None)
        rng: Random number generator; seeded from config.core.seed when None
        verbose: Print per-stage progress

    Returns:
        SimulationTables
    """
    if config is None:
        config = SimulationConfig()
    config.validate()
    if rng is None:
        rng = np.random.default_rng(config.core.seed)

    cells = draw_risk(config, rng)
    if verbose:
        lam = cells['lambda']
        print(f"[RISK] {len(cells)} cells, lambda: mean={lam.mean():.4f}, min={lam.min():.4f}, max={lam.max():.4f}")

    cells = compute_expected_costs(cells, config)
    if verbose:
        print(f"[COST] E_oop: mean={cells['E_oop'].mean():.4f}, E_score (t=0, m=1): mean={cells['E_score'].mean():.4f}")

    choices_t0 = choose_period0(cells, config, rng)
    if verbose:
        shares = choices_t0.groupby('d')['choice'].mean()
        print(f"[CHOICE] period 0 shares: {shares.round(4).to_dict()}")

    realizations = realize_costs(choices_t0, cells, config, rng)
    if verbose:
        print(f"[CLAIMS] claim frequency={realizations['claims'].mean():.4f}, monitored={int(realizations['m'].sum())}")

    state = carry_forward_state(choices_t0, realizations)
    choices_t1 = choose_period1(state, cells, config, rng)
    if verbose:
        shares = choices_t1.groupby('d')['choice'].mean()
        print(f"[CHOICE] period 1 shares: {shares.round(4).to_dict()}")

    panel = assemble_panel(choices_t0, choices_t1)
    return SimulationTables(
        cells=cells,
        choices_t0=choices_t0,
        realizations=realizations,
        choices_t1=choices_t1,
        panel=panel,
    )


def simulate_panel(config: Optional[SimulationConfig] = None, verbose: bool = False) -> pd.DataFrame:
    """
    Simulate the long panel only.

    The returned frame carries summary statistics in `attrs['summary']`.
    """
    if config is None:
        config = SimulationConfig()
    tables = run_simulation(config, verbose=verbose)
    panel = tables.panel
    panel.attrs['summary'] = {
        'N': int(config.core.N),
        'seed': int(config.core.seed),
        'lambda_mean': float(tables.cells['lambda'].mean()),
        'claim_frequency': float(tables.realizations['claims'].mean()),
        'monitored_share': float(tables.realizations['m'].mean()),
        'score_mean_monitored': float(tables.realizations.loc[tables.realizations['m'] == 1, 'score'].mean()),
    }
    return panel


# =============================================================================
# SUMMARIES AND VALIDATION
# =============================================================================

def summarize_choice(panel: pd.DataFrame) -> pd.DataFrame:
    """
    Option shares by period.

    Returns:
        One row per (t, d): n, n_chosen, share, mean_price, mean_price_chosen
    """
    grouped = panel.groupby(['t', 'd'])
    summary = grouped.agg(
        n=('choice', 'size'),
        n_chosen=('choice', 'sum'),
        share=('choice', 'mean'),
        mean_price=('price', 'mean'),
    ).reset_index()
    chosen_price = (
        panel.loc[panel['choice'] == 1]
        .groupby(['t', 'd'])['price'].mean()
        .rename('mean_price_chosen')
        .reset_index()
    )
    return summary.merge(chosen_price, on=['t', 'd'], how='left')


def simulate_consumer_choice_probabilities(
    h: np.ndarray,
    shock: Optional[ShockParams] = None,
    n_simulations: int = 10000,
    seed: int = 123,
) -> Dict[str, Any]:
    """
    Simulate choice probabilities for one consumer under the panel's shock law.

    Shocks are drawn with `draw_utility_shocks`, exactly as the choice stages
    draw them. The closed-form logit comparison exists only for Gumbel shocks
    (shape 0); for any other shape 'logit' and 'max_abs_diff' are None.

    Returns:
        Dictionary with simulated and analytic probabilities
    """
    if shock is None:
        shock = ShockParams()
    h = np.asarray(h, dtype=float).ravel()
    D = h.size
    rng = np.random.default_rng(seed)

    eps = draw_utility_shocks((n_simulations, D), shock, rng)
    choices = np.argmax(h[None, :] + eps, axis=1)
    counts = np.bincount(choices, minlength=D)
    P_simulated = counts / n_simulations

    results = {
        'deterministic_utilities': h.tolist(),
        'shock': {'loc': shock.loc, 'scale': shock.scale, 'shape': shock.shape},
        'simulated': {
            'P': P_simulated.tolist(),
            'choice_counts': counts.tolist(),
            'n_simulations': int(n_simulations),
        },
        'logit': None,
        'max_abs_diff': None,
    }
    if shock.shape == 0.0:
        P_logit = choice_probabilities(h[None, :], shock)[0]
        results['logit'] = {'P': P_logit.tolist()}
        results['max_abs_diff'] = float(np.max(np.abs(P_simulated - P_logit)))
    return results


# =============================================================================
# MAIN FUNCTION
# =============================================================================

def main(argv: Optional[list] = None) -> int:
    """Main function."""
    parser = argparse.ArgumentParser(description="Simulate the monitoring-choice consumer panel")

    parser.add_argument("--params_path", type=str, default=None,
                        help="Optional long-format parameters CSV (parameter, value)")
    parser.add_argument("--out_dir", type=str, default=str(get_data_dir()),
                        help="Directory for simulated tables (defaults to the configured data dir)")
    parser.add_argument("--report_dir", type=str, default=str(get_output_dir()),
                        help="Directory for the choice summary and validation reports "
                             "(defaults to the configured output dir)")

    parser.add_argument("--seed", type=int, help="Random seed (default: 1)")
    parser.add_argument("--N", type=int, help="Number of consumers (default: 10000)")
    parser.add_argument("--sigma_lambda", type=float, help="Sd of the consumer risk shock")
    parser.add_argument("--sigma_score", type=float, help="Sd of the log monitoring score")
    parser.add_argument("--pareto_shape", type=float, help="Pareto severity shape (> 1)")
    parser.add_argument("--policy_limit", type=float, help="Policy limit y_0")
    parser.add_argument("--renewal_rate", type=float, help="Gamma rate of the renewal multiplier")
    parser.add_argument("--shock_shape", type=float, help="GEV shock shape (0 = Gumbel)")

    parser.add_argument("--validate_probabilities", action='store_true', default=False,
                        help="Compare simulated and logit choice probabilities for one consumer")
    parser.add_argument("--debug_consumer_idx", type=int, default=None,
                        help="Consumer i (1-based) used for probability validation")
    parser.add_argument("--n_simulations", type=int, default=10000,
                        help="Number of shock draws for probability validation")

    args = parser.parse_args(argv)

    print("Monitoring-Choice Panel Simulation")
    print("=" * 50)

    file_params = None
    if args.params_path is not None:
        params_path = Path(args.params_path)
        if not params_path.exists():
            print(f"Error: parameters file {params_path} not found")
            return 1
        file_params = read_params_long_csv(str(params_path))
        print(f"Loaded {len(file_params)} parameters from {params_path}")

    cli_overrides = {}
    for param in ['seed', 'N', 'sigma_lambda', 'sigma_score', 'pareto_shape',
                  'policy_limit', 'renewal_rate', 'shock_shape']:
        value = getattr(args, param, None)
        if value is not None:
            cli_overrides[param] = value

    config, effective_table = load_config(cli_overrides, file_params=file_params)

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    report_dir = Path(args.report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)

    print("\n=== CONFIGURATION SUMMARY ===")
    print(f"[CONFIG] core:    N={config.core.N}, seed={config.core.seed}")
    print(f"[CONFIG] risk:    theta={config.risk.theta.tolist()}, sigma={config.risk.sigma}")
    print(f"[CONFIG] score:   theta={config.score.theta.tolist()}, sigma={config.score.sigma}")
    print(f"[CONFIG] loss:    a_l={config.loss.pareto_shape}, l_0={config.loss.pareto_scale}, y_0={config.loss.policy_limit}")
    print(f"[CONFIG] renewal: rate={config.renewal.rate}, alpha_base={config.renewal.alpha_base}")
    print(f"[CONFIG] shock:   loc={config.shock.loc}, scale={config.shock.scale}, shape={config.shock.shape}")

    dump_effective_config_csv(effective_table, out_dir / "parameters_effective.csv")
    write_parameters_template(str(out_dir / "parameters.csv"), config)

    print("\nSimulating...")
    tables = run_simulation(config, verbose=True)

    summary = summarize_choice(tables.panel)
    print("\n=== CHOICE SUMMARY ===")
    print(summary.to_string(index=False))

    tables_out = {
        'panel.csv': tables.panel,
        'choices_full.csv': pd.concat([tables.choices_t0, tables.choices_t1], ignore_index=True),
        'cost_realizations.csv': tables.realizations,
        'risk_cells.csv': tables.cells,
    }
    written = [out_dir / "parameters_effective.csv", out_dir / "parameters.csv"]
    for name, df in tables_out.items():
        df.to_csv(out_dir / name, index=False)
        written.append(out_dir / name)
        print(f"[OK] {name} written to {out_dir / name}")

    summary_path = report_dir / "choice_summary.csv"
    summary.to_csv(summary_path, index=False)
    written.append(summary_path)
    print(f"[OK] choice_summary.csv written to {summary_path}")

    if args.validate_probabilities and args.debug_consumer_idx is not None:
        rows = tables.choices_t0.loc[tables.choices_t0['i'] == args.debug_consumer_idx].sort_values('d')
        if rows.empty:
            print(f"[WARN] Consumer {args.debug_consumer_idx} not found; skipping validation")
        else:
            results = simulate_consumer_choice_probabilities(
                rows['h'].to_numpy(), shock=config.shock, n_simulations=args.n_simulations
            )
            results['consumer'] = int(args.debug_consumer_idx)
            validation_path = report_dir / f"consumer_{args.debug_consumer_idx}_simulation.json"
            with open(validation_path, 'w') as f:
                json.dump(results, f, indent=2)
            written.append(validation_path)
            print(f"[OK] Simulated P: {np.round(results['simulated']['P'], 4).tolist()}")
            if results['logit'] is None:
                print(f"[OK] Logit P:     n/a (GEV shape {config.shock.shape} has no closed form)")
            else:
                print(f"[OK] Logit P:     {np.round(results['logit']['P'], 4).tolist()}")
            print(f"Simulation results saved to: {validation_path}")
    elif args.validate_probabilities:
        print("\nWarning: --debug_consumer_idx must be specified for simulation validation")
        print("Usage: --validate_probabilities --debug_consumer_idx=1")

    print("\n=== OUTPUT FILES ===")
    for path in written:
        print(f"  {path}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
