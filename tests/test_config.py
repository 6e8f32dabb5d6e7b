from dataclasses import replace
from pathlib import Path

import pytest

from closure_v1.config import (
    ClosureConfig,
    HIndexConfig,
    PersistenceConfig,
    PhiConfig,
    ProviderConfig,
    ReconstructionConfig,
    RunConfig,
    ScoringConfig,
    config_from_dict,
    load_run_config,
    validate_config,
)
from closure_v1.errors import ConfigurationError

DEFAULT_YAML = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"


def test_defaults_are_valid():
    assert validate_config(RunConfig()) == RunConfig()


@pytest.mark.parametrize("n", [1, 2, 3])
def test_rejects_tiny_rings(n):
    with pytest.raises(ConfigurationError):
        validate_config(RunConfig(nodes=n))


def test_rejects_score_weights_summing_to_1_1():
    cfg = RunConfig(
        persistence=PersistenceConfig(enabled=True),
        scoring=ScoringConfig(weights=(0.3, 0.3, 0.2, 0.2, 0.1)),
    )
    with pytest.raises(ConfigurationError, match="sum to 1"):
        validate_config(cfg)


def test_rejects_fixed_h_weights_not_summing_to_one():
    with pytest.raises(ConfigurationError):
        validate_config(RunConfig(hindex=HIndexConfig(weights=(0.5, 0.5, 0.5, 0.0))))


def test_dynamic_mode_ignores_fixed_weights():
    cfg = RunConfig(hindex=HIndexConfig(weight_mode="dynamic", weights=(1.0, 1.0, 1.0, 1.0)))
    assert validate_config(cfg) is cfg


def test_exhaustive_phi_rejected_for_large_rings():
    with pytest.raises(ConfigurationError, match="infeasible"):
        validate_config(RunConfig(nodes=64, phi=PhiConfig(search_mode="exhaustive")))
    validate_config(RunConfig(nodes=64, phi=PhiConfig(search_mode="sampled", sample_count=100)))


def test_rejects_persistence_weight_without_persistence():
    cfg = RunConfig(scoring=ScoringConfig(weights=(0.3, 0.3, 0.2, 0.1, 0.1)))
    with pytest.raises(ConfigurationError, match="persistence"):
        validate_config(cfg)


@pytest.mark.parametrize(
    "cfg",
    [
        RunConfig(closure=ClosureConfig(max_iterations=5, convergence_window=10)),
        RunConfig(closure=ClosureConfig(decay_period=0)),
        RunConfig(reconstruction=ReconstructionConfig(success_threshold=0.5, failure_threshold=0.1)),
        RunConfig(phi=PhiConfig(search_mode="greedy")),
        RunConfig(hindex=HIndexConfig(weight_mode="adaptive")),
        replace(RunConfig(), rho=float("nan")),
    ],
)
def test_rejects_malformed_values(cfg):
    with pytest.raises(ConfigurationError):
        validate_config(cfg)


def test_rejects_inverted_provider_range():
    with pytest.raises(ConfigurationError, match="range"):
        validate_config(config_from_dict({"provider": {"amplitude": [1.0, 0.0]}}))


def test_default_yaml_matches_dataclass_defaults():
    assert load_run_config(DEFAULT_YAML) == RunConfig()


def test_weights_accept_list_or_mapping():
    a = config_from_dict({"scoring": {"weights": [0.4, 0.3, 0.2, 0.1, 0.0]}})
    b = config_from_dict({"scoring": {"weights": {"h_index": 0.4, "fidelity": 0.3, "self_reference": 0.2, "phi": 0.1}}})
    assert a.scoring.weights == b.scoring.weights == (0.4, 0.3, 0.2, 0.1, 0.0)


def test_unknown_keys_rejected():
    with pytest.raises(ConfigurationError):
        config_from_dict({"closure": {"max_iters": 10}})
    with pytest.raises(ConfigurationError):
        config_from_dict({"nodez": 10})
    with pytest.raises(ConfigurationError):
        config_from_dict({"hindex": {"weights": {"ts": 1.0, "bogus": 0.0}}})


def test_load_yaml_validates(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("nodes: 3\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_run_config(p)


def test_h_normalizer_defaults_to_node_count():
    assert RunConfig(nodes=20).h_normalizer == 20.0
    assert RunConfig(scoring=ScoringConfig(h_normalizer=5.0)).h_normalizer == 5.0


def test_yaml_exponent_floats_are_numbers(tmp_path):
    # YAML 1.1 reads "1e-3" (no dot) as a string
    p = tmp_path / "run.yaml"
    p.write_text("closure:\n  convergence_threshold: 1e-3\n  max_iterations: 50\n", encoding="utf-8")
    cfg = load_run_config(p)
    assert cfg.closure.convergence_threshold == 0.001
    assert isinstance(cfg.closure.convergence_threshold, float)


def test_numeric_strings_are_coerced():
    cfg = config_from_dict({"nodes": "16", "rho": "0.5", "closure": {"max_iterations": "50"}})
    assert cfg.nodes == 16 and cfg.rho == 0.5
    assert cfg.closure.max_iterations == 50
    assert isinstance(cfg.closure.max_iterations, int)


@pytest.mark.parametrize(
    "data",
    [
        {"closure": {"max_iterations": "fifty"}},
        {"closure": {"convergence_threshold": [0.1]}},
        {"nodes": 12.5},
        {"seed": True},
        {"provider": {"amplitude": [0.0, 0.5, 1.0]}},
        {"provider": {"amplitude": "0,1"}},
    ],
)
def test_uncoercible_values_rejected(data):
    with pytest.raises(ConfigurationError):
        config_from_dict(data)


def test_wrongly_typed_dataclass_fields_rejected():
    with pytest.raises(ConfigurationError):
        validate_config(RunConfig(provider=ProviderConfig(amplitude=(0.0, 0.5, 1.0))))
    with pytest.raises(ConfigurationError):
        validate_config(RunConfig(closure=ClosureConfig(max_iterations="50")))
    with pytest.raises(ConfigurationError):
        validate_config(RunConfig(closure=ClosureConfig(convergence_threshold="1e-3")))
