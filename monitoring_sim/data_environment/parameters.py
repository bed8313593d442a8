#!/usr/bin/env python3
"""
Simulation Parameters

Configuration system for the monitoring-choice simulator. Parameters live in
dataclass blocks (one per model component), can be written to / read from a
long-format CSV (parameter, value, unit, description), and are overridden from
the command line. `load_config` reports where every effective value came from.
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

try:
    from ..helpers import read_params_long_csv
except ImportError:  # pragma: no cover - script execution fallback
    sys.path.append(str(Path(__file__).resolve().parents[2]))
    from monitoring_sim.helpers import read_params_long_csv  # type: ignore


# Option d (1-based) -> (firm, monitoring flag)
OPTIONS_T0: Tuple[Tuple[int, int], ...] = ((1, 1), (1, 0), (2, 0), (3, 0))
OPTIONS_T1: Tuple[Tuple[int, int], ...] = ((1, 0), (2, 0), (3, 0))
N_FIRMS = 3
N_COVARIATES = 4


# =============================================================================
# CONFIGURATION SYSTEM
# =============================================================================

@dataclass
class CoreParams:
    """Sample size and random seed."""
    N: int = 10000
    seed: int = 1


@dataclass
class RiskParams:
    """Latent Poisson claim-rate lambda."""
    theta: np.ndarray = None  # intercept, x_1..x_4, monitoring offset (t=0, m=1 only)
    sigma: float = 0.1        # sd of the persistent consumer log-normal shock
    covariate_var: float = 0.25
    persistence: float = 0.5  # X_t1 = persistence * X_t0 + (1 - persistence) * noise

    def __post_init__(self):
        if self.theta is None:
            self.theta = np.array([-3.0, -0.5, 1.0, -1.0, 1.0, -0.5])
        self.theta = np.asarray(self.theta, dtype=float)


@dataclass
class ScoreParams:
    """Monitoring score: log s ~ N(mu_s, sigma^2)."""
    theta: np.ndarray = None  # intercept, log(lambda), x_1, x_2
    sigma: float = 0.5

    def __post_init__(self):
        if self.theta is None:
            self.theta = np.array([1.5, 0.5, 0.1, -0.1])
        self.theta = np.asarray(self.theta, dtype=float)


@dataclass
class LossParams:
    """Pareto severity above the policy limit."""
    pareto_shape: float = 2.0   # a_l, must exceed 1
    pareto_scale: float = 5.0   # l_0
    policy_limit: float = 10.0  # y_0


@dataclass
class PriceParams:
    """Period-0 base prices, one coefficient row per option."""
    beta: np.ndarray = None  # (4, 5): intercept, x_1, x_2, x_3, monitoring surcharge
    noise_mean: float = 1.0
    noise_sd: float = 1.0

    def __post_init__(self):
        if self.beta is None:
            self.beta = np.array([
                [5.0, 0.5, -0.3, 0.2, -0.5],
                [5.0, 0.5, -0.3, 0.2, 0.0],
                [4.8, 0.4, -0.2, 0.3, 0.0],
                [5.2, 0.6, -0.4, 0.1, 0.0],
            ])
        self.beta = np.asarray(self.beta, dtype=float)


@dataclass
class DemandParams:
    """Switching inertia, monitoring disutility and prior-option draw."""
    eta: np.ndarray = None          # inertia: intercept, x_1, x_2, x_3
    xi: np.ndarray = None           # monitoring disutility: intercept, log(lambda)
    prior_probs: np.ndarray = None  # categorical over options 1..4

    def __post_init__(self):
        if self.eta is None:
            self.eta = np.array([0.5, 0.1, -0.1, 0.05])
        if self.xi is None:
            self.xi = np.array([1.0, 0.2])
        if self.prior_probs is None:
            self.prior_probs = np.array([0.0, 0.4, 0.35, 0.25])
        self.eta = np.asarray(self.eta, dtype=float)
        self.xi = np.asarray(self.xi, dtype=float)
        self.prior_probs = np.asarray(self.prior_probs, dtype=float)


@dataclass
class RenewalParams:
    """Renewal multiplier R = R_s * R_C with R_s ~ Gamma(shape, rate)."""
    rate: float = 10.0
    alpha_base: float = 10.0
    alpha_monitored: float = -1.5
    alpha_score: float = 1.0
    no_claim_multiplier: float = 0.95
    claim_multiplier: float = 1.10


@dataclass
class ShockParams:
    """GEV idiosyncratic utility shock; shape 0 is the Gumbel case."""
    loc: float = 0.0
    scale: float = 1.0
    shape: float = 0.0


@dataclass
class SimulationConfig:
    """Complete simulation configuration."""
    core: CoreParams = None
    risk: RiskParams = None
    score: ScoreParams = None
    loss: LossParams = None
    price: PriceParams = None
    demand: DemandParams = None
    renewal: RenewalParams = None
    shock: ShockParams = None

    def __post_init__(self):
        if self.core is None:
            self.core = CoreParams()
        if self.risk is None:
            self.risk = RiskParams()
        if self.score is None:
            self.score = ScoreParams()
        if self.loss is None:
            self.loss = LossParams()
        if self.price is None:
            self.price = PriceParams()
        if self.demand is None:
            self.demand = DemandParams()
        if self.renewal is None:
            self.renewal = RenewalParams()
        if self.shock is None:
            self.shock = ShockParams()

    def validate(self) -> None:
        """Check distributional preconditions; raise ValueError on the first violation."""
        if int(self.core.N) <= 0:
            raise ValueError(f"N must be positive, got {self.core.N}")

        if self.risk.theta.shape != (N_COVARIATES + 2,):
            raise ValueError(f"risk.theta must have {N_COVARIATES + 2} entries, got {self.risk.theta.shape}")
        if self.risk.sigma < 0:
            raise ValueError(f"risk.sigma must be non-negative, got {self.risk.sigma}")
        if self.risk.covariate_var < 0:
            raise ValueError(f"risk.covariate_var must be non-negative, got {self.risk.covariate_var}")

        if self.score.theta.shape != (4,):
            raise ValueError(f"score.theta must have 4 entries, got {self.score.theta.shape}")
        if self.score.sigma < 0:
            raise ValueError(f"score.sigma must be non-negative, got {self.score.sigma}")

        if self.loss.pareto_shape <= 1:
            raise ValueError(f"Pareto shape must exceed 1 for a finite expected loss, got {self.loss.pareto_shape}")
        if self.loss.pareto_scale <= 0:
            raise ValueError(f"Pareto scale must be positive, got {self.loss.pareto_scale}")
        if self.loss.policy_limit < self.loss.pareto_scale:
            raise ValueError(
                f"policy_limit ({self.loss.policy_limit}) must be at least the Pareto scale ({self.loss.pareto_scale})"
            )

        if self.price.beta.shape != (len(OPTIONS_T0), 5):
            raise ValueError(f"price.beta must be {len(OPTIONS_T0)}x5, got {self.price.beta.shape}")
        if self.price.noise_sd < 0:
            raise ValueError(f"price.noise_sd must be non-negative, got {self.price.noise_sd}")

        if self.demand.eta.shape != (4,):
            raise ValueError(f"demand.eta must have 4 entries, got {self.demand.eta.shape}")
        if self.demand.xi.shape != (2,):
            raise ValueError(f"demand.xi must have 2 entries, got {self.demand.xi.shape}")
        probs = self.demand.prior_probs
        if probs.shape != (len(OPTIONS_T0),):
            raise ValueError(f"prior_probs must have {len(OPTIONS_T0)} entries, got {probs.shape}")
        if np.any(probs < 0) or not np.isclose(probs.sum(), 1.0, atol=1e-12):
            raise ValueError(f"prior_probs must be non-negative and sum to 1, got {probs}")

        r = self.renewal
        if r.rate <= 0:
            raise ValueError(f"Gamma rate must be positive, got {r.rate}")
        if r.alpha_base <= 0 or r.alpha_base + r.alpha_monitored <= 0 or r.alpha_score < 0:
            raise ValueError(
                "Gamma shape must stay positive: need alpha_base > 0, "
                "alpha_base + alpha_monitored > 0 and alpha_score >= 0 "
                f"(got {r.alpha_base}, {r.alpha_monitored}, {r.alpha_score})"
            )

        if self.shock.scale <= 0:
            raise ValueError(f"Shock scale must be positive, got {self.shock.scale}")


# =============================================================================
# FLAT PARAMETER NAMES
# =============================================================================

# (key, block, field, index, unit, description)
def _parameter_specs() -> List[Tuple[str, str, str, Any, str, str]]:
    specs = [
        ('N', 'core', 'N', None, 'consumers', 'Number of simulated consumers'),
        ('seed', 'core', 'seed', None, 'NA', 'Seed of the single random stream'),
    ]
    lambda_labels = ['intercept', 'x_1', 'x_2', 'x_3', 'x_4', 'monitoring offset (t=0, m=1)']
    for k, label in enumerate(lambda_labels, start=1):
        specs.append((f'theta_lambda_{k}', 'risk', 'theta', k - 1, 'log claims', f'Claim-rate coefficient: {label}'))
    specs += [
        ('sigma_lambda', 'risk', 'sigma', None, 'log claims', 'Sd of the persistent consumer risk shock'),
        ('covariate_var', 'risk', 'covariate_var', None, 'NA', 'Variance of each covariate draw'),
        ('covariate_persistence', 'risk', 'persistence', None, 'NA', 'Weight on period-0 covariates in period 1'),
    ]
    for k, label in enumerate(['intercept', 'log(lambda)', 'x_1', 'x_2'], start=1):
        specs.append((f'theta_score_{k}', 'score', 'theta', k - 1, 'log score', f'Score coefficient: {label}'))
    specs += [
        ('sigma_score', 'score', 'sigma', None, 'log score', 'Sd of the log monitoring score'),
        ('pareto_shape', 'loss', 'pareto_shape', None, 'NA', 'Pareto severity shape a_l (> 1)'),
        ('pareto_scale', 'loss', 'pareto_scale', None, 'dollars', 'Pareto severity scale l_0'),
        ('policy_limit', 'loss', 'policy_limit', None, 'dollars', 'Policy limit y_0'),
    ]
    beta_labels = ['intercept', 'x_1', 'x_2', 'x_3', 'monitoring surcharge']
    for d in range(1, len(OPTIONS_T0) + 1):
        for k, label in enumerate(beta_labels):
            specs.append((f'price_beta_d{d}_{k}', 'price', 'beta', (d - 1, k), 'dollars', f'Option {d} price coefficient: {label}'))
    specs += [
        ('price_noise_mean', 'price', 'noise_mean', None, 'dollars', 'Mean of the additive price noise'),
        ('price_noise_sd', 'price', 'noise_sd', None, 'dollars', 'Sd of the additive price noise'),
    ]
    for k, label in enumerate(['intercept', 'x_1', 'x_2', 'x_3']):
        specs.append((f'eta_{k}', 'demand', 'eta', k, 'utils', f'Switching inertia: {label}'))
    for k, label in enumerate(['intercept', 'log(lambda)']):
        specs.append((f'xi_{k}', 'demand', 'xi', k, 'utils', f'Monitoring disutility: {label}'))
    for d in range(1, len(OPTIONS_T0) + 1):
        specs.append((f'prior_prob_d{d}', 'demand', 'prior_probs', d - 1, 'NA', f'Probability option {d} is the prior policy'))
    specs += [
        ('renewal_rate', 'renewal', 'rate', None, 'NA', 'Gamma rate of the systematic renewal multiplier'),
        ('renewal_alpha_base', 'renewal', 'alpha_base', None, 'NA', 'Gamma shape for unmonitored consumers'),
        ('renewal_alpha_monitored', 'renewal', 'alpha_monitored', None, 'NA', 'Gamma shape offset when monitored'),
        ('renewal_alpha_score', 'renewal', 'alpha_score', None, 'NA', 'Gamma shape slope on the monitoring score'),
        ('no_claim_multiplier', 'renewal', 'no_claim_multiplier', None, 'NA', 'Renewal multiplier after zero claims'),
        ('claim_multiplier', 'renewal', 'claim_multiplier', None, 'NA', 'Renewal multiplier after one or more claims'),
        ('shock_loc', 'shock', 'loc', None, 'utils', 'GEV shock location'),
        ('shock_scale', 'shock', 'scale', None, 'utils', 'GEV shock scale'),
        ('shock_shape', 'shock', 'shape', None, 'NA', 'GEV shock shape (0 = Gumbel)'),
    ]
    return specs


PARAMETER_SPECS = _parameter_specs()
_SPEC_BY_KEY = {spec[0]: spec for spec in PARAMETER_SPECS}
_INTEGER_KEYS = {'N', 'seed'}


def _get_value(config: SimulationConfig, key: str) -> Any:
    _, block, field, index, _, _ = _SPEC_BY_KEY[key]
    value = getattr(getattr(config, block), field)
    if index is None:
        return value
    return float(value[index])


def _set_value(config: SimulationConfig, key: str, value: Any) -> None:
    _, block, field, index, _, _ = _SPEC_BY_KEY[key]
    target = getattr(config, block)
    if index is None:
        cast = int(float(value)) if key in _INTEGER_KEYS else float(value)
        setattr(target, field, cast)
    else:
        arr = np.array(getattr(target, field), dtype=float)
        arr[index] = float(value)
        setattr(target, field, arr)


def flatten_config(config: SimulationConfig) -> Dict[str, Any]:
    """Flatten a configuration into scalar long-CSV keys."""
    return {key: _get_value(config, key) for key, *_ in PARAMETER_SPECS}


def write_parameters_template(path: str, config: Optional[SimulationConfig] = None) -> None:
    """
    Write a human-friendly template with values + descriptions + units.

    Args:
        path: Path to write template CSV
        config: Configuration to write (defaults when None)
    """
    if config is None:
        config = SimulationConfig()
    rows = [
        {'parameter': key, 'value': _get_value(config, key), 'unit': unit, 'description': description}
        for key, _, _, _, unit, description in PARAMETER_SPECS
    ]
    pd.DataFrame(rows).to_csv(path, index=False)
    print(f"Parameters template written to: {path}")


def load_config(
    cli_overrides: Dict[str, Any],
    file_params: Optional[Dict[str, Any]] = None,
) -> Tuple[SimulationConfig, pd.DataFrame]:
    """
    Load configuration: defaults, then parameter-file values, then CLI overrides.

    Args:
        cli_overrides: Dictionary of CLI overrides (flat keys)
        file_params: Flat parameters read from a long CSV, or None

    Returns:
        Tuple of (config, effective_table) where effective_table shows parameter, value, source
    """
    config = SimulationConfig()
    sources = {key: 'DEFAULT' for key, *_ in PARAMETER_SPECS}

    for layer, source in ((file_params or {}, 'FILE'), (cli_overrides, 'CLI')):
        for key, value in layer.items():
            if value is None:
                continue
            if key not in _SPEC_BY_KEY:
                print(f"[WARN] Ignoring unknown parameter '{key}' ({source})")
                continue
            _set_value(config, key, value)
            sources[key] = source

    config.validate()

    effective_data = [
        {'parameter': key, 'value': _get_value(config, key), 'source': sources[key]}
        for key, *_ in PARAMETER_SPECS
    ]
    effective_data.append({
        'parameter': 'mean_renewal_unmonitored',
        'value': config.renewal.alpha_base / config.renewal.rate,
        'source': 'COMPUTED',
    })
    effective_data.append({
        'parameter': 'pareto_tail_factor',
        'value': (config.loss.pareto_scale ** config.loss.pareto_shape / (config.loss.pareto_shape - 1.0)
                  * config.loss.policy_limit ** (1.0 - config.loss.pareto_shape)),
        'source': 'COMPUTED',
    })

    return config, pd.DataFrame(effective_data)


def config_from_params(params: Dict[str, Any]) -> SimulationConfig:
    """Build a validated configuration from a flat parameter dictionary."""
    config, _ = load_config({}, file_params=params)
    return config


def read_config_csv(path: str) -> SimulationConfig:
    """Read a long-format parameter CSV into a validated configuration."""
    return config_from_params(read_params_long_csv(path))


def dump_effective_config_csv(table: pd.DataFrame, out_path: str) -> None:
    """
    Write effective configuration to CSV so users see exactly what was used.

    Args:
        table: Effective configuration table
        out_path: Output file path
    """
    table.to_csv(out_path, index=False)
    print(f"Effective configuration written to: {out_path}")
