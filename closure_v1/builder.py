from __future__ import annotations

import math
from typing import Mapping

import numpy as np

from .config import BuilderConfig
from .provider import NodeRecord
from .snapshot import RingTopology, Snapshot


def saturate(x: np.ndarray) -> np.ndarray:
    """Odd, bounded to (-1, 1)."""
    return np.tanh(x)


def ring_positions(n: int) -> np.ndarray:
    return 2.0 * math.pi * np.arange(n, dtype=np.float64) / n


def build_initial_snapshot(
    records: Mapping[int, NodeRecord],
    rho: float,
    n: int,
    builder: BuilderConfig | None = None,
    topology: RingTopology | None = None,
) -> Snapshot:
    """Map provider records and the phase constant rho onto the iteration-0 snapshot.

    Pure: no randomness, identical inputs give identical output.
    """
    b = builder or BuilderConfig()
    topo = topology or RingTopology.build(n)
    if topo.n != n:
        raise ValueError(f"topology has {topo.n} nodes, expected {n}")

    osc = [records[i].oscillator for i in range(n)]
    st = [records[i].strain for i in range(n)]
    amplitude = np.array([o.amplitude for o in osc], dtype=np.float64)
    phase = np.array([o.phase for o in osc], dtype=np.float64)
    self_ref = np.array([o.self_ref for o in osc], dtype=np.float64)
    frequency = np.array([o.frequency for o in osc], dtype=np.float64)
    strain = np.array([s.strain for s in st], dtype=np.float64)
    noise = np.array([s.noise for s in st], dtype=np.float64)

    rho = float(rho)
    position = ring_positions(n)
    next_position = position[topo.next]

    return Snapshot.create(
        iteration=0,
        position=position,
        affective_weight=saturate(amplitude) * np.cos(position + rho * math.pi),
        charge_real=np.cos(phase * rho),
        charge_imag=np.sin(phase * rho),
        connection=saturate(strain * b.scale_a) * np.sin(position - next_position),
        curvature=np.cos(2.0 * position) * (frequency / b.frequency_max),
        torsion=noise * b.scale_b * np.sin(position * rho * 2.0),
        self_ref=self_ref,
    )
