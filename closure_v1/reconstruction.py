from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .config import ReconstructionConfig
from .engine import ClosureEngine
from .errors import Failure, ReconstructionDivergence
from .rng import Prng
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconstructionResult:
    final_fidelity: float
    iterations_used: int
    success: bool
    fidelity_trend: Tuple[float, ...]
    error_trend: Tuple[float, ...]
    initial_error: float
    divergence: Optional[Failure] = None

    def to_dict(self) -> dict:
        return {
            "final_fidelity": self.final_fidelity,
            "iterations_used": self.iterations_used,
            "success": self.success,
            "fidelity_trend": list(self.fidelity_trend),
            "error_trend": list(self.error_trend),
            "initial_error": self.initial_error,
            "divergence": None if self.divergence is None else self.divergence.to_dict(),
        }


def fidelity_error(current: Snapshot, reference: Snapshot) -> float:
    """Mean absolute deviation of affective weight from the reference."""
    return float(np.mean(np.abs(current.affective_weight - reference.affective_weight)))


def fidelity(error: float) -> float:
    return float(min(1.0, max(0.0, 1.0 - error)))


def perturb_snapshot(reference: Snapshot, amplitude: float, prng: Prng) -> Snapshot:
    """Independent uniform noise in [-amplitude, amplitude) on affective weight and
    both charge components."""
    n = reference.n
    a = float(amplitude)
    return reference.evolve(
        reference.iteration,
        affective_weight=reference.affective_weight + prng.uniform(n, -a, a),
        charge_real=reference.charge_real + prng.uniform(n, -a, a),
        charge_imag=reference.charge_imag + prng.uniform(n, -a, a),
    )


def run_reconstruction(
    reference: Snapshot,
    engine: ClosureEngine,
    rho: float,
    cfg: ReconstructionConfig,
    prng: Prng,
) -> ReconstructionResult:
    """Perturb `reference`, let the closure dynamics act on it, and track recovery."""
    current = perturb_snapshot(reference, cfg.perturb_amplitude, prng)
    initial_error = fidelity_error(current, reference)
    err = initial_error

    errors: list[float] = []
    used = 0
    for k in range(1, int(cfg.max_iterations) + 1):
        current = engine.step(current, reference.iteration + k, rho, cfg.step_perturb)
        used += 1
        err = fidelity_error(current, reference)
        errors.append(err)
        if err < cfg.success_threshold:
            break

    success = err < cfg.failure_threshold
    divergence = None
    if not success:
        divergence = ReconstructionDivergence(used, err, cfg.failure_threshold).to_failure()
        logger.warning("reconstruction diverged: %s", divergence.message)
    else:
        logger.info("reconstruction recovered: error=%.6g after %d iterations", err, used)

    return ReconstructionResult(
        final_fidelity=fidelity(err),
        iterations_used=used,
        success=bool(success),
        fidelity_trend=tuple(fidelity(e) for e in errors),
        error_trend=tuple(errors),
        initial_error=initial_error,
        divergence=divergence,
    )
