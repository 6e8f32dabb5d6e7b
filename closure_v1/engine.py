from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

from .config import ClosureConfig
from .errors import NumericalInstability
from .rng import Prng
from .snapshot import RingTopology, Snapshot

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    STEPPING = "stepping"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"   # max_iterations reached without convergence
    CANCELLED = "cancelled"   # stop requested; honored at an iteration boundary
    FAILED = "failed"


# Called with each new snapshot; returns True once the run has converged.
Monitor = Callable[[Snapshot], bool]


def perturbation_level(iteration: int, base_perturb: float, decay_rate: float, decay_period: int) -> float:
    """Stepwise-decaying perturbation; monotonically non-increasing in iteration."""
    steps = math.floor(int(iteration) / int(decay_period))
    return float(base_perturb) * max(0.0, 1.0 - float(decay_rate) * steps)


@dataclass(frozen=True)
class EngineRun:
    state: EngineState
    final: Snapshot
    iterations_run: int


class ClosureEngine:
    """Coupled ring update with jittered semantic charge.

    Each step reads only the pre-step snapshot and returns a new one; the input is
    never modified.
    """

    # fields a step rewrites; scanned in this order for non-finite values
    UPDATED_FIELDS = ("affective_weight", "charge_real", "charge_imag")

    def __init__(
        self,
        cfg: ClosureConfig,
        topology: RingTopology,
        prng: Prng,
        stop: Optional[threading.Event] = None,
    ):
        self.cfg = cfg
        self.topology = topology
        self.prng = prng
        self.state = EngineState.IDLE
        self._stop = stop if stop is not None else threading.Event()

    def perturbation(self, iteration: int) -> float:
        c = self.cfg
        return perturbation_level(iteration, c.base_perturb, c.decay_rate, c.decay_period)

    def request_stop(self) -> None:
        """Stop the current (or next) loop at its next iteration boundary."""
        self._stop.set()

    def step(self, snap: Snapshot, iteration: int, rho: float, perturb_now: float) -> Snapshot:
        topo = self.topology
        if snap.n != topo.n:
            raise ValueError(f"snapshot has {snap.n} nodes, topology has {topo.n}")

        aw = snap.affective_weight
        delta = self.cfg.coupling_k * (aw[topo.next] - aw[topo.prev]) * np.cos(snap.position * float(rho))
        # one draw per node, in node order, even when perturb_now is zero
        jitter = float(perturb_now) * self.prng.uniform(snap.n) * self.cfg.jitter_j

        updated = {
            "affective_weight": aw + delta,
            "charge_real": snap.charge_real + jitter * snap.self_ref,
            "charge_imag": snap.charge_imag + jitter * snap.curvature,
        }
        self._check_finite(updated, iteration)
        return snap.evolve(iteration, **updated)

    def _check_finite(self, updated: dict, iteration: int) -> None:
        stacked = np.vstack([updated[name] for name in self.UPDATED_FIELDS])
        bad = ~np.isfinite(stacked)
        if not bad.any():
            return
        node = int(np.argmax(bad.any(axis=0)))
        field = self.UPDATED_FIELDS[int(np.argmax(bad[:, node]))]
        self.state = EngineState.FAILED
        logger.error("numerical instability at iteration %d, node %d (%s)", iteration, node, field)
        raise NumericalInstability(iteration, node, field)

    def run(
        self,
        initial: Snapshot,
        rho: float,
        *,
        monitor: Optional[Monitor] = None,
        max_iterations: Optional[int] = None,
    ) -> EngineRun:
        """Step from `initial` until the monitor reports convergence, a stop is
        requested, or max_iterations steps have run."""
        limit = int(self.cfg.max_iterations if max_iterations is None else max_iterations)
        self.state = EngineState.STEPPING

        snap = initial
        it = 0
        while it < limit:
            if self._stop.is_set():
                self._stop.clear()
                self.state = EngineState.CANCELLED
                break
            it += 1
            perturb_now = self.perturbation(it)
            snap = self.step(snap, it, rho, perturb_now)
            logger.debug("iteration %d perturb=%.4g", it, perturb_now)
            if monitor is not None and monitor(snap):
                self.state = EngineState.CONVERGED
                break
        else:
            self.state = EngineState.EXHAUSTED

        logger.info("closure loop finished: state=%s iterations=%d", self.state.value, it)
        return EngineRun(state=self.state, final=snap, iterations_run=it)
