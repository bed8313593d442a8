"""
Monitoring-choice panel simulator.

A run writes to two locations:
  data dir    simulated tables: panel, per-period choices, claim and score
              realisations, risk cells and the parameter files
  output dir  reports derived from a run: choice summary and the per-consumer
              choice-probability validation

Each location comes from its environment variable (MONITORING_SIM_DATA_DIR,
MONITORING_SIM_OUTPUT_DIR), else path_config.json at the project root, else
data/ and output/ beside the package.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict

PROJECT_ROOT = Path(__file__).resolve().parent.parent
PATH_CONFIG = PROJECT_ROOT / "path_config.json"

# location -> (environment variable, default directory)
_LOCATIONS: Dict[str, tuple] = {
    "data_dir": ("MONITORING_SIM_DATA_DIR", PROJECT_ROOT / "data"),
    "output_dir": ("MONITORING_SIM_OUTPUT_DIR", PROJECT_ROOT / "output"),
}


def _read_path_config() -> Dict[str, str]:
    if not PATH_CONFIG.exists():
        return {}
    try:
        loaded = json.loads(PATH_CONFIG.read_text())
    except json.JSONDecodeError:
        print(f"[WARN] Ignoring unreadable path configuration {PATH_CONFIG}")
        return {}
    if not isinstance(loaded, dict):
        print(f"[WARN] Ignoring path configuration {PATH_CONFIG}: expected a JSON object")
        return {}
    return {key: str(value) for key, value in loaded.items() if key in _LOCATIONS and value}


def resolve_paths() -> Dict[str, Path]:
    """Resolve the data and output directories (environment > path_config.json > defaults)."""
    configured = _read_path_config()
    paths = {}
    for key, (env_var, default) in _LOCATIONS.items():
        raw = os.getenv(env_var) or configured.get(key) or default
        paths[key] = Path(raw).expanduser().resolve()
    return paths


PATHS: Dict[str, Path] = resolve_paths()


def _location(key: str, create: bool) -> Path:
    path = PATHS[key]
    if create:
        path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir(*, create: bool = False) -> Path:
    """Directory for simulated tables."""
    return _location("data_dir", create)


def get_output_dir(*, create: bool = False) -> Path:
    """Directory for run reports (choice summary, probability validation)."""
    return _location("output_dir", create)


def configure_paths(
    *,
    data_dir: str | os.PathLike[str] | None = None,
    output_dir: str | os.PathLike[str] | None = None,
    persist: bool = True,
    create: bool = True,
) -> Dict[str, Path]:
    """Point the simulator at new data/output directories, optionally saving them to path_config.json."""
    updated = dict(PATHS)
    for key, value in (("data_dir", data_dir), ("output_dir", output_dir)):
        if value is not None:
            updated[key] = Path(value).expanduser().resolve()

    if create:
        for path in updated.values():
            path.mkdir(parents=True, exist_ok=True)

    if persist:
        PATH_CONFIG.write_text(json.dumps({key: str(path) for key, path in updated.items()}, indent=2))

    PATHS.update(updated)
    return dict(PATHS)


__all__ = ["configure_paths", "get_data_dir", "get_output_dir", "resolve_paths", "PATHS"]
