from __future__ import annotations

import importlib.util
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from .config import PersistenceConfig
from .errors import ConfigurationError
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

FEATURES = (
    "position",
    "affective_weight",
    "charge_real",
    "charge_imag",
    "connection",
    "curvature",
    "torsion",
)


@dataclass(frozen=True)
class PersistenceSummary:
    # dimension k -> (M_k, 2) array of (birth, death); death may be inf
    diagrams: Dict[int, np.ndarray]
    sums: Dict[int, float]

    def to_dict(self) -> dict:
        return {
            "sums": {str(k): v for k, v in self.sums.items()},
            "intervals": {str(k): int(d.shape[0]) for k, d in self.diagrams.items()},
        }


def feature_matrix(snap: Snapshot) -> np.ndarray:
    """One row per node, one column per entry of FEATURES."""
    return np.column_stack([getattr(snap, name) for name in FEATURES])


def standardize(X: np.ndarray) -> np.ndarray:
    """Zero mean, unit variance per column; constant columns are only centred."""
    mu = X.mean(axis=0)
    sd = X.std(axis=0)
    sd = np.where(sd > 0, sd, 1.0)
    return (X - mu) / sd


def reduce_dimensions(X: np.ndarray, k: int) -> np.ndarray:
    """Project centred rows onto the top-k principal axes."""
    if k >= X.shape[1]:
        return X
    Xc = X - X.mean(axis=0)
    _, _, vt = np.linalg.svd(Xc, full_matrices=False)
    return Xc @ vt[:k].T


def persistence_sum(diagram: np.ndarray) -> float:
    """Total lifetime of the finite intervals of one diagram."""
    if diagram.size == 0:
        return 0.0
    finite = np.isfinite(diagram[:, 1])
    return float(np.sum(diagram[finite, 1] - diagram[finite, 0]))


def embed(snap: Snapshot, reduce_dim: Optional[int] = None) -> np.ndarray:
    X = standardize(feature_matrix(snap))
    if reduce_dim is not None:
        X = reduce_dimensions(X, int(reduce_dim))
    return X


def require_backend() -> None:
    """Fail before any iteration when persistence is requested but ripser is absent."""
    if importlib.util.find_spec("ripser") is None:
        raise ConfigurationError("persistence.enabled requires the 'ripser' package (install the tda extra)")


def estimate_persistence(snap: Snapshot, cfg: PersistenceConfig) -> PersistenceSummary:
    """Vietoris-Rips persistent homology of the node point cloud (via ripser)."""
    require_backend()
    from ripser import ripser

    X = embed(snap, cfg.reduce_dim)
    thresh = float(cfg.max_edge_length)
    kwargs = {"maxdim": int(cfg.max_homology_dimension)}
    if math.isfinite(thresh):
        kwargs["thresh"] = thresh
    dgms: List[np.ndarray] = ripser(X, **kwargs)["dgms"]

    diagrams = {k: np.asarray(d, dtype=np.float64).reshape(-1, 2) for k, d in enumerate(dgms)}
    sums = {k: persistence_sum(d) for k, d in diagrams.items()}
    logger.info("persistence sums: %s", {k: round(v, 6) for k, v in sums.items()})
    return PersistenceSummary(diagrams=diagrams, sums=sums)
