"""Integration proxy (Phi) via a minimum-information-partition search.

This is a bounded, correlation-based approximation, not the transition-probability
Phi of integrated information theory. The coupling of a ring edge (i, j) is

    c_ij = |re_i re_j + im_i im_j| / (|z_i| |z_j|)

which reduces to |re_i re_j + im_i im_j| for the unit charges the builder produces.
MI of the whole system is the mean coupling over the N ring edges; MI of a bipartition
is the mean coupling over the edges it keeps (both endpoints in the same part). Phi is
the whole-system MI minus the smallest partition MI, floored at zero, so it lies in
[0, 1] and vanishes when every node carries the same charge.

On a ring a bipartition always cuts an even number of edges, and any such cut set is
realisable. Averaging over kept edges, the exhaustive minimum therefore reduces to:
  - even N: the mean of the two weakest edge couplings (the best bipartition keeps
    exactly two edges);
  - odd N: the weakest single edge coupling.
So Phi under exhaustive search is the mean coupling minus the weakest-link coupling,
i.e. how much the ring's integration exceeds its weakest link. Sampled balanced
bipartitions keep roughly half the edges, so their minimum is an upper bound on this
and the sampled Phi a lower bound on the exhaustive one.

Two search strategies:
  - ExhaustiveSearch: every non-trivial bipartition, 2^(N-1) - 1 of them; practical up
    to N ~ 16 (the config validator enforces `phi.exhaustive_max_nodes`).
  - SampledSearch: `sample_count` balanced bipartitions (|S| = N // 2), each drawn from
    its own PRNG substream so samples can be evaluated in any order or in parallel.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol, Tuple

import numpy as np

from .config import PhiConfig
from .rng import Prng
from .snapshot import RingTopology, Snapshot

logger = logging.getLogger(__name__)

# masks per evaluation block in the exhaustive search
_CHUNK = 1 << 14


@dataclass(frozen=True)
class PhiEstimate:
    phi: float
    mi_whole: float
    min_partition_mi: float
    partition: Optional[Tuple[int, ...]]  # nodes of S for the minimising bipartition
    strategy: str
    partitions_evaluated: int

    def to_dict(self) -> dict:
        return {
            "phi": self.phi,
            "mi_whole": self.mi_whole,
            "min_partition_mi": self.min_partition_mi,
            "partition": None if self.partition is None else list(self.partition),
            "strategy": self.strategy,
            "partitions_evaluated": self.partitions_evaluated,
        }


class BipartitionSearch(Protocol):
    name: str

    def masks(self, n: int) -> Iterator[np.ndarray]:
        """Yield boolean blocks of shape (M, n); True marks membership of S."""
        ...


class ExhaustiveSearch:
    name = "exhaustive"

    def masks(self, n: int) -> Iterator[np.ndarray]:
        # node n-1 always sits in the complement, so each bipartition appears once
        total = 1 << (n - 1)
        bits = np.arange(n - 1, dtype=np.int64)
        for start in range(1, total, _CHUNK):
            codes = np.arange(start, min(start + _CHUNK, total), dtype=np.int64)
            block = np.zeros((codes.size, n), dtype=bool)
            block[:, : n - 1] = ((codes[:, None] >> bits[None, :]) & 1).astype(bool)
            yield block


class SampledSearch:
    name = "sampled"

    def __init__(self, sample_count: int, prng: Prng):
        self.sample_count = int(sample_count)
        self.prng = prng

    def masks(self, n: int) -> Iterator[np.ndarray]:
        half = n // 2
        block = np.zeros((self.sample_count, n), dtype=bool)
        for k in range(self.sample_count):
            perm = self.prng.spawn("bipartition", k).permutation(n)
            block[k, perm[:half]] = True
        yield block


def make_search(cfg: PhiConfig, prng: Prng) -> BipartitionSearch:
    if cfg.search_mode == "exhaustive":
        return ExhaustiveSearch()
    if cfg.search_mode == "sampled":
        return SampledSearch(cfg.sample_count, prng)
    raise ValueError(f"unknown phi search_mode {cfg.search_mode!r}")


def edge_couplings(snap: Snapshot, topology: RingTopology) -> np.ndarray:
    a, b = topology.edges[:, 0], topology.edges[:, 1]
    re, im = snap.charge_real, snap.charge_imag
    dot = np.abs(re[a] * re[b] + im[a] * im[b])
    norm = np.hypot(re[a], im[a]) * np.hypot(re[b], im[b])
    out = np.zeros_like(dot)
    nz = norm > 0
    out[nz] = dot[nz] / norm[nz]
    return np.minimum(out, 1.0)


def estimate_phi(snap: Snapshot, topology: RingTopology, search: BipartitionSearch) -> PhiEstimate:
    couplings = edge_couplings(snap, topology)
    mi_whole = float(couplings.mean())
    a, b = topology.edges[:, 0], topology.edges[:, 1]

    best_mi = np.inf
    best_mask: Optional[np.ndarray] = None
    evaluated = 0
    for block in search.masks(snap.n):
        kept = block[:, a] == block[:, b]
        counts = kept.sum(axis=1)
        sums = kept.astype(np.float64) @ couplings
        evaluated += int(block.shape[0])
        valid = counts > 0
        if not valid.any():
            continue
        mi = np.full(block.shape[0], np.inf)
        mi[valid] = sums[valid] / counts[valid]
        j = int(np.argmin(mi))
        if mi[j] < best_mi:
            best_mi = float(mi[j])
            best_mask = block[j].copy()

    if best_mask is None:
        # every candidate cut all ring edges; nothing to compare against
        logger.warning("phi search (%s) found no bipartition keeping a ring edge", search.name)
        return PhiEstimate(0.0, mi_whole, mi_whole, None, search.name, evaluated)

    phi = max(0.0, mi_whole - best_mi)
    partition = tuple(int(i) for i in np.flatnonzero(best_mask))
    logger.info("phi=%.6g (mi_whole=%.6g, min_partition_mi=%.6g, %s over %d partitions)",
                phi, mi_whole, best_mi, search.name, evaluated)
    return PhiEstimate(phi, mi_whole, best_mi, partition, search.name, evaluated)
