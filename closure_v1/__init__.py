"""closure_v1: deterministic ring closure engine + stability diagnostics.

A fixed ring of N symbolic nodes (affective weight, complex semantic charge, local
geometry, self-reference) evolves under a coupled update with decaying jitter.
Each run is instrumented with:

- **H-Index**: weighted aggregate of coherence / self-reference sums (fixed or dynamic weights).
- **Phi**: integration proxy from a minimum-information-partition search
  (exhaustive for small rings, sampled otherwise).
- **Persistence** (optional): Vietoris-Rips persistence sums of the node point cloud.
- **Reconstruction**: perturb-and-recover fidelity against the iteration-0 snapshot.

These combine into a composite score and a Stable/Unstable verdict.

Entry points: `driver.run_simulation`, `driver.run_safely`, `python -m closure_v1`.
"""

__all__ = [
    "config",
    "errors",
    "rng",
    "provider",
    "snapshot",
    "builder",
    "engine",
    "hindex",
    "phi",
    "persistence",
    "reconstruction",
    "scoring",
    "driver",
]
