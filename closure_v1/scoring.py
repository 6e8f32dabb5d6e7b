from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import numpy as np

from .config import SCORE_TERMS, ScoringConfig


class Verdict(str, Enum):
    STABLE = "Stable"
    UNSTABLE = "Unstable"


@dataclass(frozen=True)
class ScoreInputs:
    avg_h_index: float
    h_normalizer: float
    final_fidelity: float
    srp_component: float  # mean self-reference of the final snapshot
    phi: float
    persistence_sum: Optional[float] = None


def score_terms(x: ScoreInputs) -> Dict[str, float]:
    return {
        "h_index": x.avg_h_index / x.h_normalizer,
        "fidelity": x.final_fidelity,
        "self_reference": x.srp_component,
        "phi": x.phi,
        "persistence": 0.0 if x.persistence_sum is None else x.persistence_sum,
    }


def composite_score(x: ScoreInputs, cfg: ScoringConfig) -> float:
    """Weighted sum of the normalised terms. Weights are validated to sum to 1 upstream."""
    terms = score_terms(x)
    w = np.asarray(cfg.weights, dtype=np.float64)
    v = np.array([terms[k] for k in SCORE_TERMS], dtype=np.float64)
    return float(np.dot(w, v))


def stability_verdict(avg_h_index: float, reconstruction_success: bool, phi: float, cfg: ScoringConfig) -> Verdict:
    if avg_h_index > cfg.h_threshold and reconstruction_success and phi > cfg.phi_threshold:
        return Verdict.STABLE
    return Verdict.UNSTABLE
