#!/usr/bin/env python3
"""
Common Helper Functions for the Monitoring-Choice Simulator

This module contains helper functions that are shared across the stages of the
data environment: parameter file reading, table lookups, and the discrete
choice machinery (utility maximisation and logit probabilities).
"""

from typing import Any, Dict, Iterable

import numpy as np
import pandas as pd
from scipy import special


# =============================================================================
# PARAMETER FILES
# =============================================================================

def read_params_long_csv(path: str) -> Dict[str, Any]:
    """
    Read parameters from long/tidy CSV format and convert to dictionary.

    Args:
        path: Path to parameters CSV file

    Returns:
        Dictionary of parameter values with type casting
    """
    df = pd.read_csv(path)

    required_cols = ['parameter', 'value']
    missing_cols = [col for col in required_cols if col not in df.columns]
    if missing_cols:
        raise ValueError(f"Missing required columns: {missing_cols}")

    params = {}
    for _, row in df.iterrows():
        param_name = str(row['parameter'])
        param_value = row['value']

        # Try int first, then float, keep as string if casting fails
        try:
            as_float = float(param_value)
            if np.isfinite(as_float) and as_float == int(as_float):
                params[param_name] = int(as_float)
            else:
                params[param_name] = as_float
        except (ValueError, TypeError):
            params[param_name] = str(param_value)

    return params


def require_columns(df: pd.DataFrame, columns: Iterable[str], what: str) -> None:
    """Raise ValueError if `df` lacks any of `columns`."""
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise ValueError(f"{what} missing required columns: {missing}")


# =============================================================================
# CELL LOOKUPS
# =============================================================================

def cell_values(cells: pd.DataFrame, column: str, t: int, m: int) -> np.ndarray:
    """
    Extract one column of the (i, m, t) cell table for a fixed (t, m).

    Args:
        cells: Long cell table with columns i, m, t and `column`
        column: Column to extract
        t: Period
        m: Monitoring flag

    Returns:
        Array (N,) ordered by consumer index i
    """
    mask = (cells['t'] == t) & (cells['m'] == m)
    subset = cells.loc[mask, ['i', column]].sort_values('i')
    return subset[column].to_numpy()


def long_to_wide(values: np.ndarray, n_options: int) -> np.ndarray:
    """Reshape a long (i, d)-ordered column into an (N, D) matrix."""
    values = np.asarray(values)
    if values.size % n_options != 0:
        raise ValueError(f"Cannot reshape {values.size} rows into {n_options} options per consumer")
    return values.reshape(-1, n_options)


# =============================================================================
# DISCRETE CHOICE
# =============================================================================

def resolve_choices(utilities: np.ndarray) -> np.ndarray:
    """
    Build the one-hot choice matrix (N × D) from total utilities.

    Ties are broken in favour of the lowest option index: np.argmax returns
    the first maximiser, so every row holds exactly one 1 even when two
    options attain the same utility.
    """
    utilities = np.asarray(utilities, dtype=float)
    N, D = utilities.shape
    chosen = np.argmax(utilities, axis=1)
    Y = np.zeros((N, D), dtype=int)
    Y[np.arange(N), chosen] = 1
    return Y


def logit_choice_probabilities(h: np.ndarray) -> np.ndarray:
    """
    Closed-form logit probabilities P(d | h_i) = exp(h_id) / sum_k exp(h_ik).

    Exact for standard Gumbel shocks; with a scale s != 1 pass h / s.
    """
    return special.softmax(np.asarray(h, dtype=float), axis=1)
