from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from .config import H_COMPONENTS, HIndexConfig
from .snapshot import Snapshot


@dataclass(frozen=True)
class HIndex:
    value: float
    components: Dict[str, float]  # ts, coh, srp, rcs
    weights: Dict[str, float]
    weight_mode: str


def component_vectors(snap: Snapshot) -> np.ndarray:
    """Per-node contributions, shape (4, N), rows in H_COMPONENTS order.

    ts  : affective weight
    coh : |Re semantic charge|
    srp : self-reference
    rcs : curvature
    """
    return np.vstack([
        snap.affective_weight,
        np.abs(snap.charge_real),
        snap.self_ref,
        snap.curvature,
    ])


def dynamic_weights(vectors: np.ndarray, eps: float) -> np.ndarray:
    """Inverse-spread weights, normalised to sum to 1."""
    inv = 1.0 / (vectors.std(axis=1) + float(eps))
    return inv / inv.sum()


def resolve_weights(vectors: np.ndarray, cfg: HIndexConfig) -> np.ndarray:
    if cfg.weight_mode == "fixed":
        return np.asarray(cfg.weights, dtype=np.float64)
    if cfg.weight_mode == "dynamic":
        return dynamic_weights(vectors, cfg.epsilon)
    raise ValueError(f"unknown weight_mode {cfg.weight_mode!r}")


def h_index(snap: Snapshot, cfg: HIndexConfig) -> HIndex:
    vectors = component_vectors(snap)
    comps = vectors.sum(axis=1)
    w = resolve_weights(vectors, cfg)
    return HIndex(
        value=float(np.dot(w, comps)),
        components={k: float(v) for k, v in zip(H_COMPONENTS, comps)},
        weights={k: float(v) for k, v in zip(H_COMPONENTS, w)},
        weight_mode=cfg.weight_mode,
    )


def rolling_std(values: Tuple[float, ...] | list[float], window: int) -> float:
    """Population std of the trailing `window` values (nan if not enough values)."""
    if len(values) < window:
        return float("nan")
    return float(np.std(np.asarray(values[-window:], dtype=np.float64)))
