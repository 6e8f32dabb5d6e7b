from __future__ import annotations

from dataclasses import replace

import numpy as np
import pytest

from closure_v1.builder import build_initial_snapshot
from closure_v1.config import ClosureConfig, PhiConfig, RunConfig
from closure_v1.provider import SyntheticProvider, fetch_records
from closure_v1.snapshot import RingTopology, Snapshot


def scenario_a() -> RunConfig:
    return RunConfig(
        nodes=12,
        rho=0.9,
        seed=42,
        closure=ClosureConfig(base_perturb=0.5, max_iterations=50),
        phi=PhiConfig(search_mode="exhaustive"),
    )


def scenario_b() -> RunConfig:
    cfg = scenario_a()
    return replace(cfg, nodes=64, phi=PhiConfig(search_mode="sampled", sample_count=100))


def initial_snapshot(cfg: RunConfig) -> Snapshot:
    records = fetch_records(SyntheticProvider(cfg.provider), list(range(cfg.nodes)), cfg.seed)
    return build_initial_snapshot(records, cfg.rho, cfg.nodes, cfg.builder)


def uniform_charge_snapshot(n: int, real: float = 0.6, imag: float = 0.8) -> Snapshot:
    pos = 2.0 * np.pi * np.arange(n) / n
    return Snapshot.create(
        iteration=0,
        position=pos,
        affective_weight=np.cos(pos),
        charge_real=np.full(n, real),
        charge_imag=np.full(n, imag),
        connection=np.zeros(n),
        curvature=np.cos(2 * pos),
        torsion=np.zeros(n),
        self_ref=np.linspace(0.0, 1.0, n),
    )


@pytest.fixture
def cfg_a() -> RunConfig:
    return scenario_a()


@pytest.fixture
def snap_a(cfg_a: RunConfig) -> Snapshot:
    return initial_snapshot(cfg_a)


@pytest.fixture
def ring12() -> RingTopology:
    return RingTopology.build(12)
