import json
from dataclasses import replace

import numpy as np
import pytest

from closure_v1.config import ClosureConfig, HIndexConfig, PersistenceConfig, RunConfig, ScoringConfig, config_from_dict
from closure_v1.driver import Simulation, run_safely, run_simulation
from closure_v1.engine import EngineState
from closure_v1.errors import ConfigurationError, DataProviderError, Failure
from closure_v1.provider import SyntheticProvider
from closure_v1.scoring import Verdict

from conftest import scenario_a, scenario_b


def test_scenario_a():
    cfg = scenario_a()
    res = run_simulation(cfg)
    assert 1 <= res.iterations_run <= 50
    assert np.isfinite(res.avg_h_index)
    assert 0.0 <= res.phi <= 1.0
    assert res.verdict in (Verdict.STABLE, Verdict.UNSTABLE)
    assert len(res.h_index_trend) == res.iterations_run
    assert res.final.iteration == res.iterations_run
    assert res.initial.iteration == 0
    assert res.phi_search_mode == "exhaustive"
    assert res.phi_detail.partitions_evaluated == 2 ** 11 - 1
    assert res.snapshots[-1].iteration == res.iterations_run
    assert [s.iteration for s in res.snapshots[:-1]] == list(range(10, res.iterations_run, 10))[: len(res.snapshots) - 1]


def test_scenario_b_has_same_shape_as_a():
    a = run_simulation(scenario_a()).to_dict()
    b = run_simulation(scenario_b()).to_dict()
    assert set(a) == set(b)
    assert set(a["reconstruction"]) == set(b["reconstruction"])
    assert b["phi_search_mode"] == "sampled"
    assert b["phi_detail"]["partitions_evaluated"] == 100
    assert 0.0 <= b["phi"] <= 1.0


def test_exhaustive_for_64_nodes_rejected():
    cfg = replace(scenario_b(), phi=replace(scenario_b().phi, search_mode="exhaustive"))
    with pytest.raises(ConfigurationError):
        run_simulation(cfg)


def test_runs_are_deterministic():
    a = run_simulation(scenario_a())
    b = run_simulation(scenario_a())
    assert a.h_index_trend == b.h_index_trend
    assert a.phi == b.phi
    assert a.reconstruction.fidelity_trend == b.reconstruction.fidelity_trend
    assert a.composite_score == b.composite_score


def test_different_seed_changes_trajectory():
    a = run_simulation(scenario_a())
    b = run_simulation(replace(scenario_a(), seed=43))
    assert a.h_index_trend != b.h_index_trend


def test_stops_at_first_converged_iteration():
    cfg = replace(
        scenario_a(),
        closure=ClosureConfig(base_perturb=0.0, max_iterations=50, convergence_window=5, convergence_threshold=1e3),
    )
    res = run_simulation(cfg)
    assert res.state is EngineState.CONVERGED
    assert res.iterations_run == 5


def test_loop_bound_and_no_late_stop():
    cfg = scenario_a()
    res = run_simulation(cfg)
    w, thr = cfg.closure.convergence_window, cfg.closure.convergence_threshold
    trend = np.asarray(res.h_index_trend)
    # no earlier iteration met the stop criterion
    for t in range(w, res.iterations_run):
        assert np.std(trend[t - w:t]) >= thr
    if res.state is EngineState.CONVERGED:
        assert np.std(trend[-w:]) < thr
    else:
        assert res.state is EngineState.EXHAUSTED
        assert res.iterations_run == cfg.closure.max_iterations


def test_weight_mode_recorded():
    res = run_simulation(replace(scenario_a(), hindex=HIndexConfig(weight_mode="dynamic")))
    assert res.weight_mode == "dynamic"
    assert res.to_dict()["weight_mode"] == "dynamic"


def test_result_is_json_serialisable():
    payload = json.dumps(run_simulation(scenario_a()).to_dict())
    assert "h_index_trend" in payload


def test_cancel_before_start():
    sim = Simulation(scenario_a())
    sim.request_stop()
    res = sim.run()
    assert res.state is EngineState.CANCELLED
    assert res.iterations_run == 0
    assert np.isfinite(res.avg_h_index)


@pytest.mark.parametrize("n", [1, 2, 3])
def test_run_safely_reports_configuration_error(n):
    out = run_safely(replace(scenario_a(), nodes=n))
    assert isinstance(out, Failure)
    assert out.kind == "ConfigurationError"


def test_run_safely_rejects_bad_score_weights():
    cfg = replace(scenario_a(), scoring=ScoringConfig(weights=(0.3, 0.3, 0.2, 0.2, 0.1)),
                  persistence=PersistenceConfig(enabled=False))
    out = run_safely(cfg)
    assert isinstance(out, Failure) and out.kind == "ConfigurationError"


class BrokenProvider:
    def provide(self, node_ids, seed):
        raise IOError("sensor offline")


class PartialProvider:
    def provide(self, node_ids, seed):
        records = SyntheticProvider().provide(node_ids, seed)
        records.pop(max(node_ids))
        return records


def test_provider_errors_are_wrapped():
    with pytest.raises(DataProviderError) as info:
        run_simulation(scenario_a(), BrokenProvider())
    assert isinstance(info.value.__cause__, IOError)

    out = run_safely(scenario_a(), PartialProvider())
    assert isinstance(out, Failure)
    assert out.kind == "DataProviderError"


def test_numerical_instability_reported_with_location():
    cfg = replace(scenario_a(), closure=ClosureConfig(base_perturb=10.0, jitter_j=1e308, max_iterations=50))
    out = run_safely(cfg)
    assert isinstance(out, Failure)
    assert out.kind == "NumericalInstability"
    assert out.iteration >= 1
    assert 0 <= out.node_id < cfg.nodes


def test_persistence_enabled_run():
    pytest.importorskip("ripser")
    cfg = replace(
        scenario_a(),
        persistence=PersistenceConfig(enabled=True, max_homology_dimension=1, score_dimension=1),
        scoring=ScoringConfig(weights=(0.2, 0.2, 0.2, 0.2, 0.2)),
    )
    res = run_simulation(cfg)
    assert set(res.persistence_sums) == {0, 1}
    assert np.isfinite(res.composite_score)


def test_repeated_runs_reproduce():
    sim = Simulation(scenario_a())
    a = sim.run()
    b = sim.run()
    assert a.h_index_trend == b.h_index_trend
    assert a.phi == b.phi
    assert a.reconstruction.fidelity_trend == b.reconstruction.fidelity_trend
    assert a.h_index_trend == run_simulation(scenario_a()).h_index_trend


def test_cancel_applies_to_next_run_only():
    sim = Simulation(scenario_a())
    first = sim.run()
    sim.request_stop()
    assert sim.run().state is EngineState.CANCELLED
    again = sim.run()
    assert again.state is not EngineState.CANCELLED
    assert again.h_index_trend == first.h_index_trend


def test_run_safely_with_string_numbers():
    out = run_safely(config_from_dict({"closure": {"max_iterations": "50"}}))
    assert not isinstance(out, Failure)
    assert 1 <= out.iterations_run <= 50

    bad = run_safely(RunConfig(closure=ClosureConfig(max_iterations="50")))
    assert isinstance(bad, Failure)
    assert bad.kind == "ConfigurationError"
