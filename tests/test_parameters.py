import numpy as np
import pandas as pd
import pytest

import monitoring_sim
from monitoring_sim.data_environment.parameters import (
    SimulationConfig,
    flatten_config,
    load_config,
    read_config_csv,
    write_parameters_template,
)
from monitoring_sim.helpers import read_params_long_csv


def test_defaults_validate():
    config = SimulationConfig()
    config.validate()
    assert config.core.N == 10000
    assert config.core.seed == 1
    assert np.allclose(config.demand.prior_probs, [0.0, 0.4, 0.35, 0.25])


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda c: setattr(c.core, 'N', 0), "N must be positive"),
        (lambda c: setattr(c.risk, 'sigma', -0.1), "risk.sigma"),
        (lambda c: setattr(c.loss, 'pareto_shape', 1.0), "Pareto shape"),
        (lambda c: setattr(c.loss, 'policy_limit', 1.0), "policy_limit"),
        (lambda c: setattr(c.demand, 'prior_probs', np.array([0.0, 0.5, 0.5, 0.5])), "prior_probs"),
        (lambda c: setattr(c.renewal, 'alpha_monitored', -10.0), "Gamma shape"),
        (lambda c: setattr(c.shock, 'scale', 0.0), "Shock scale"),
        (lambda c: setattr(c.risk, 'theta', np.zeros(5)), "risk.theta"),
    ],
)
def test_invalid_parameters_raise(mutate, message):
    config = SimulationConfig()
    mutate(config)
    with pytest.raises(ValueError, match=message):
        config.validate()


def test_load_config_tracks_sources():
    config, table = load_config({'N': 500, 'sigma_score': 0.0}, file_params={'theta_lambda_1': -2.5})
    sources = table.set_index('parameter')['source']

    assert config.core.N == 500
    assert isinstance(config.core.N, int)
    assert config.score.sigma == 0.0
    assert config.risk.theta[0] == -2.5
    assert sources['N'] == 'CLI'
    assert sources['sigma_score'] == 'CLI'
    assert sources['theta_lambda_1'] == 'FILE'
    assert sources['sigma_lambda'] == 'DEFAULT'
    assert sources['mean_renewal_unmonitored'] == 'COMPUTED'


def test_cli_overrides_file_values():
    config, table = load_config({'N': 42}, file_params={'N': 7})
    assert config.core.N == 42
    assert table.set_index('parameter').loc['N', 'source'] == 'CLI'


def test_unknown_parameter_is_ignored(capsys):
    config, _ = load_config({'not_a_parameter': 1.0})
    assert "not_a_parameter" in capsys.readouterr().out
    assert flatten_config(config) == flatten_config(SimulationConfig())


def test_load_config_validates():
    with pytest.raises(ValueError):
        load_config({'pareto_shape': 0.5})


def test_parameters_template_round_trip(tmp_path):
    path = tmp_path / "parameters.csv"
    config = SimulationConfig()
    config.price.beta[2, 1] = 0.75
    write_parameters_template(str(path), config)

    written = pd.read_csv(path)
    assert list(written.columns) == ['parameter', 'value', 'unit', 'description']

    loaded = read_config_csv(str(path))
    assert flatten_config(loaded) == pytest.approx(flatten_config(config))
    assert loaded.price.beta[2, 1] == 0.75


def test_read_params_requires_columns(tmp_path):
    path = tmp_path / "bad.csv"
    pd.DataFrame({'name': ['N'], 'value': [10]}).to_csv(path, index=False)
    with pytest.raises(ValueError, match="Missing required columns"):
        read_params_long_csv(str(path))


def test_configure_paths_without_persisting(tmp_path):
    saved = dict(monitoring_sim.PATHS)
    try:
        paths = monitoring_sim.configure_paths(
            data_dir=tmp_path / "data", output_dir=tmp_path / "out", persist=False
        )
        assert paths['data_dir'] == (tmp_path / "data").resolve()
        assert monitoring_sim.get_data_dir() == (tmp_path / "data").resolve()
        assert monitoring_sim.get_output_dir().is_dir()
    finally:
        monitoring_sim.PATHS.clear()
        monitoring_sim.PATHS.update(saved)


def test_resolve_paths_precedence(tmp_path, monkeypatch):
    config_file = tmp_path / "path_config.json"
    config_file.write_text('{"data_dir": "%s", "output_dir": "%s"}' % (tmp_path / "cfg_data", tmp_path / "cfg_out"))
    monkeypatch.setattr(monitoring_sim, 'PATH_CONFIG', config_file)
    monkeypatch.delenv('MONITORING_SIM_DATA_DIR', raising=False)
    monkeypatch.delenv('MONITORING_SIM_OUTPUT_DIR', raising=False)

    paths = monitoring_sim.resolve_paths()
    assert paths['data_dir'] == (tmp_path / "cfg_data").resolve()
    assert paths['output_dir'] == (tmp_path / "cfg_out").resolve()

    monkeypatch.setenv('MONITORING_SIM_DATA_DIR', str(tmp_path / "env_data"))
    paths = monitoring_sim.resolve_paths()
    assert paths['data_dir'] == (tmp_path / "env_data").resolve()
    assert paths['output_dir'] == (tmp_path / "cfg_out").resolve()


def test_unreadable_path_config_falls_back_to_defaults(tmp_path, monkeypatch, capsys):
    config_file = tmp_path / "path_config.json"
    config_file.write_text("{not json")
    monkeypatch.setattr(monitoring_sim, 'PATH_CONFIG', config_file)
    monkeypatch.delenv('MONITORING_SIM_DATA_DIR', raising=False)
    monkeypatch.delenv('MONITORING_SIM_OUTPUT_DIR', raising=False)

    paths = monitoring_sim.resolve_paths()
    assert "[WARN]" in capsys.readouterr().out
    assert paths['data_dir'] == (monitoring_sim.PROJECT_ROOT / "data").resolve()
    assert paths['output_dir'] == (monitoring_sim.PROJECT_ROOT / "output").resolve()
