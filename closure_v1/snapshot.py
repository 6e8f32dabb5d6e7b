from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Dict, Iterator

import numpy as np
import networkx as nx


@dataclass(frozen=True, eq=False)
class RingTopology:
    """Fixed cyclic adjacency: node i couples to (i-1) mod N and (i+1) mod N."""

    graph: nx.Graph
    prev: np.ndarray
    next: np.ndarray
    edges: np.ndarray  # shape (N, 2), each ring edge once as (i, (i+1) mod N)

    @classmethod
    def build(cls, n: int) -> "RingTopology":
        G = nx.cycle_graph(int(n))
        edges = []
        for u, v in G.edges():
            u, v = int(u), int(v)
            edges.append((u, v) if (u + 1) % n == v else (v, u))
        edges.sort()
        idx = np.arange(n)
        return cls(
            graph=G,
            prev=_frozen((idx - 1) % n, dtype=np.int64),
            next=_frozen((idx + 1) % n, dtype=np.int64),
            edges=_frozen(np.array(edges, dtype=np.int64), dtype=np.int64),
        )

    @property
    def n(self) -> int:
        return int(self.prev.shape[0])


def _frozen(a, dtype=np.float64) -> np.ndarray:
    out = np.array(a, dtype=dtype)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class Node:
    """Read-only view of one node's attributes."""
    index: int
    position: float
    affective_weight: float
    semantic_charge: complex
    connection: float
    curvature: float
    torsion: float
    self_ref: float


@dataclass(frozen=True, eq=False)
class Snapshot:
    """All node attributes at one iteration.

    Arrays are read-only. A step builds a new Snapshot via `evolve`, which shares every
    array it does not replace with its parent (copy-on-write), so snapshots never alias
    mutable state.
    """

    iteration: int
    position: np.ndarray
    affective_weight: np.ndarray
    charge_real: np.ndarray
    charge_imag: np.ndarray
    connection: np.ndarray
    curvature: np.ndarray
    torsion: np.ndarray
    self_ref: np.ndarray

    @classmethod
    def create(cls, iteration: int = 0, **arrays: np.ndarray) -> "Snapshot":
        snap = cls(iteration=int(iteration), **{k: _frozen(v) for k, v in arrays.items()})
        snap._check_shapes()
        return snap

    def _check_shapes(self) -> None:
        n = self.position.shape
        if len(n) != 1:
            raise ValueError("snapshot arrays must be one-dimensional")
        for name in self.field_names():
            if getattr(self, name).shape != n:
                raise ValueError(f"snapshot field {name!r} has shape {getattr(self, name).shape}, expected {n}")

    @staticmethod
    def field_names() -> tuple[str, ...]:
        return tuple(f.name for f in fields(Snapshot) if f.name != "iteration")

    @property
    def n(self) -> int:
        return int(self.position.shape[0])

    @property
    def semantic_charge(self) -> np.ndarray:
        return self.charge_real + 1j * self.charge_imag

    def evolve(self, iteration: int, **updates: np.ndarray) -> "Snapshot":
        unknown = set(updates) - set(self.field_names())
        if unknown:
            raise ValueError(f"unknown snapshot fields: {sorted(unknown)}")
        if "position" in updates:
            raise ValueError("position is fixed for the lifetime of a run")
        frozen = {k: _frozen(v) for k, v in updates.items()}
        snap = replace(self, iteration=int(iteration), **frozen)
        snap._check_shapes()
        return snap

    def node(self, i: int) -> Node:
        return Node(
            index=int(i),
            position=float(self.position[i]),
            affective_weight=float(self.affective_weight[i]),
            semantic_charge=complex(self.charge_real[i], self.charge_imag[i]),
            connection=float(self.connection[i]),
            curvature=float(self.curvature[i]),
            torsion=float(self.torsion[i]),
            self_ref=float(self.self_ref[i]),
        )

    def nodes(self) -> Iterator[Node]:
        for i in range(self.n):
            yield self.node(i)

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {"iteration": self.iteration}
        for name in self.field_names():
            out[name] = getattr(self, name).tolist()
        return out
