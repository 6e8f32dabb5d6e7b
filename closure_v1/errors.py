from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Failure:
    """Structured failure value returned across the run boundary."""

    kind: str
    message: str
    iteration: Optional[int] = None
    node_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ClosureError(Exception):
    """Base class for every error the engine reports."""

    kind = "ClosureError"

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, message=str(self))


class ConfigurationError(ClosureError, ValueError):
    kind = "ConfigurationError"


class DataProviderError(ClosureError):
    kind = "DataProviderError"


class NumericalInstability(ClosureError):
    kind = "NumericalInstability"

    def __init__(self, iteration: int, node_id: int, field: str = ""):
        self.iteration = int(iteration)
        self.node_id = int(node_id)
        self.field = field
        where = f" ({field})" if field else ""
        super().__init__(f"non-finite value at iteration {self.iteration}, node {self.node_id}{where}")

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, message=str(self), iteration=self.iteration, node_id=self.node_id)


class ReconstructionDivergence(ClosureError):
    """Fidelity error stayed above the failure threshold.

    Recoverable: the run reports it and completes with success=False.
    """

    kind = "ReconstructionDivergence"

    def __init__(self, iterations: int, fidelity_error: float, failure_threshold: float):
        self.iterations = int(iterations)
        self.fidelity_error = float(fidelity_error)
        self.failure_threshold = float(failure_threshold)
        super().__init__(
            f"fidelity error {self.fidelity_error:.6g} did not drop below "
            f"{self.failure_threshold:.6g} within {self.iterations} iterations"
        )

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, message=str(self), iteration=self.iterations)
