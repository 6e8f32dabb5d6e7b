from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from .builder import build_initial_snapshot
from .config import HIndexConfig, RunConfig, validate_config
from .engine import ClosureEngine, EngineState
from .errors import ClosureError, Failure
from .hindex import HIndex, h_index, rolling_std
from .persistence import estimate_persistence, require_backend
from .phi import PhiEstimate, estimate_phi, make_search
from .provider import DataProvider, SyntheticProvider, fetch_records
from .reconstruction import ReconstructionResult, run_reconstruction
from .rng import Prng
from .scoring import ScoreInputs, Verdict, composite_score, stability_verdict
from .snapshot import RingTopology, Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotSummary:
    iteration: int
    h_index: float
    components: Dict[str, float]

    @classmethod
    def of(cls, iteration: int, h: HIndex) -> "SnapshotSummary":
        return cls(iteration=int(iteration), h_index=h.value, components=dict(h.components))


class ConvergenceMonitor:
    """Tracks the H-Index trend and flags convergence once the rolling std over the
    last `window` iterations drops below `threshold`."""

    def __init__(self, hcfg: HIndexConfig, *, window: int, threshold: float, stride: int):
        self.hcfg = hcfg
        self.window = int(window)
        self.threshold = float(threshold)
        self.stride = int(stride)
        self.trend: List[float] = []
        self.samples: List[SnapshotSummary] = []
        self.last: Optional[HIndex] = None
        self.last_iteration = 0

    def __call__(self, snap: Snapshot) -> bool:
        h = h_index(snap, self.hcfg)
        self.trend.append(h.value)
        self.last = h
        self.last_iteration = snap.iteration

        converged = False
        if snap.iteration >= self.window:
            sd = rolling_std(self.trend, self.window)
            logger.debug("iteration %d H=%.6g rolling_std=%.3g", snap.iteration, h.value, sd)
            converged = sd < self.threshold
        if snap.iteration % self.stride == 0:
            self.samples.append(SnapshotSummary.of(snap.iteration, h))
        return converged

    def close(self) -> None:
        """Make sure the final iteration is among the samples."""
        if self.last is not None and (not self.samples or self.samples[-1].iteration != self.last_iteration):
            self.samples.append(SnapshotSummary.of(self.last_iteration, self.last))


@dataclass(frozen=True)
class RunResult:
    avg_h_index: float
    std_h_index: float
    h_index_trend: Tuple[float, ...]
    phi: float
    phi_detail: PhiEstimate
    persistence_sums: Optional[Dict[int, float]]
    reconstruction: ReconstructionResult
    composite_score: float
    verdict: Verdict
    iterations_run: int
    state: EngineState
    weight_mode: str
    phi_search_mode: str
    snapshots: Tuple[SnapshotSummary, ...]
    initial: Snapshot
    final: Snapshot

    def to_dict(self) -> dict:
        return {
            "avg_h_index": self.avg_h_index,
            "std_h_index": self.std_h_index,
            "h_index_trend": list(self.h_index_trend),
            "phi": self.phi,
            "phi_detail": self.phi_detail.to_dict(),
            "persistence_sums": None if self.persistence_sums is None
            else {str(k): v for k, v in self.persistence_sums.items()},
            "reconstruction": self.reconstruction.to_dict(),
            "composite_score": self.composite_score,
            "verdict": self.verdict.value,
            "iterations_run": self.iterations_run,
            "state": self.state.value,
            "weight_mode": self.weight_mode,
            "phi_search_mode": self.phi_search_mode,
            "snapshots": [
                {"iteration": s.iteration, "h_index": s.h_index, "components": s.components}
                for s in self.snapshots
            ],
        }


class Simulation:
    """One configured run. Construction validates the config; `run` does the work.

    Randomness is split into labelled substreams of the run seed so each consumer
    (closure steps, Phi sampling, reconstruction) is reproducible on its own.
    """

    def __init__(self, cfg: RunConfig, provider: Optional[DataProvider] = None):
        self.cfg = validate_config(cfg)
        if cfg.persistence.enabled:
            require_backend()
        self.provider = provider or SyntheticProvider(cfg.provider)
        self.prng = Prng(cfg.seed)
        self.topology = RingTopology.build(cfg.nodes)
        self._stop = threading.Event()

    def request_stop(self) -> None:
        """Cancel the current (or next) run at its next iteration boundary."""
        self._stop.set()

    def build(self) -> Snapshot:
        cfg = self.cfg
        records = fetch_records(self.provider, list(range(cfg.nodes)), cfg.seed)
        return build_initial_snapshot(records, cfg.rho, cfg.nodes, cfg.builder, self.topology)

    def run(self) -> RunResult:
        cfg = self.cfg
        logger.info("run start: nodes=%d rho=%g seed=%d weight_mode=%s phi=%s",
                    cfg.nodes, cfg.rho, cfg.seed, cfg.hindex.weight_mode, cfg.phi.search_mode)
        initial = self.build()

        c = cfg.closure
        monitor = ConvergenceMonitor(cfg.hindex, window=c.convergence_window,
                                     threshold=c.convergence_threshold, stride=c.stride)
        # fresh substream per run, so repeated runs reproduce each other
        engine = ClosureEngine(cfg.closure, self.topology, self.prng.spawn("closure"), stop=self._stop)
        outcome = engine.run(initial, cfg.rho, monitor=monitor)
        monitor.close()
        final = outcome.final

        trend = monitor.trend or [h_index(initial, cfg.hindex).value]
        avg_h = float(np.mean(trend))
        std_h = float(np.std(trend))

        phi = estimate_phi(final, self.topology, make_search(cfg.phi, self.prng.spawn("phi")))

        persistence_sums = None
        ps_term = None
        if cfg.persistence.enabled:
            persistence_sums = estimate_persistence(final, cfg.persistence).sums
            ps_term = persistence_sums.get(cfg.persistence.score_dimension, 0.0)

        recon_engine = ClosureEngine(cfg.closure, self.topology, self.prng.spawn("reconstruction", "closure"))
        recon = run_reconstruction(initial, recon_engine, cfg.rho, cfg.reconstruction,
                                   self.prng.spawn("reconstruction", "perturb"))

        inputs = ScoreInputs(
            avg_h_index=avg_h,
            h_normalizer=cfg.h_normalizer,
            final_fidelity=recon.final_fidelity,
            srp_component=float(np.mean(final.self_ref)),
            phi=phi.phi,
            persistence_sum=ps_term,
        )
        score = composite_score(inputs, cfg.scoring)
        verdict = stability_verdict(avg_h, recon.success, phi.phi, cfg.scoring)
        logger.info("run done: state=%s iterations=%d score=%.6g verdict=%s",
                    outcome.state.value, outcome.iterations_run, score, verdict.value)

        return RunResult(
            avg_h_index=avg_h,
            std_h_index=std_h,
            h_index_trend=tuple(monitor.trend),
            phi=phi.phi,
            phi_detail=phi,
            persistence_sums=persistence_sums,
            reconstruction=recon,
            composite_score=score,
            verdict=verdict,
            iterations_run=outcome.iterations_run,
            state=outcome.state,
            weight_mode=cfg.hindex.weight_mode,
            phi_search_mode=cfg.phi.search_mode,
            snapshots=tuple(monitor.samples),
            initial=initial,
            final=final,
        )


def run_simulation(cfg: RunConfig, provider: Optional[DataProvider] = None) -> RunResult:
    """Run end to end; engine errors propagate as ClosureError subclasses."""
    return Simulation(cfg, provider).run()


def run_safely(cfg: RunConfig, provider: Optional[DataProvider] = None) -> Union[RunResult, Failure]:
    """Error-channel boundary: every engine error comes back as a Failure value."""
    try:
        return run_simulation(cfg, provider)
    except ClosureError as exc:
        logger.error("run failed: %s: %s", exc.kind, exc)
        return exc.to_failure()
