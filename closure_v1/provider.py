from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from typing import Dict, Mapping, Protocol, Sequence

from .config import ProviderConfig
from .errors import DataProviderError
from .rng import Prng

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OscillatorRecord:
    amplitude: float
    phase: float
    self_ref: float
    frequency: float


@dataclass(frozen=True)
class StrainRecord:
    strain: float
    noise: float
    frequency: float


@dataclass(frozen=True)
class NodeRecord:
    node_id: int
    oscillator: OscillatorRecord
    strain: StrainRecord


class DataProvider(Protocol):
    """Anything that yields one NodeRecord per requested node id.

    Synthetic and dataset-derived providers are interchangeable behind this contract.
    """

    def provide(self, node_ids: Sequence[int], seed: int) -> Mapping[int, NodeRecord]:
        ...


class SyntheticProvider:
    """Uniform draws within the configured ranges; reproducible per seed."""

    def __init__(self, ranges: ProviderConfig | None = None):
        self.ranges = ranges or ProviderConfig()

    def provide(self, node_ids: Sequence[int], seed: int) -> Dict[int, NodeRecord]:
        rng = Prng(seed).spawn("provider")
        r = self.ranges
        out: Dict[int, NodeRecord] = {}
        for v in node_ids:
            osc = OscillatorRecord(
                amplitude=float(rng.between(*r.amplitude)),
                phase=float(rng.between(*r.phase)),
                self_ref=float(rng.between(*r.self_ref)),
                frequency=float(rng.between(*r.frequency)),
            )
            st = StrainRecord(
                strain=float(rng.between(*r.strain)),
                noise=float(rng.between(*r.noise)),
                frequency=float(rng.between(*r.frequency)),
            )
            out[int(v)] = NodeRecord(node_id=int(v), oscillator=osc, strain=st)
        return out


def _all_finite(rec: NodeRecord) -> bool:
    for part in (rec.oscillator, rec.strain):
        for f in fields(part):
            if not math.isfinite(float(getattr(part, f.name))):
                return False
    return True


def fetch_records(provider: DataProvider, node_ids: Sequence[int], seed: int) -> Dict[int, NodeRecord]:
    """Call the provider and check the result against the record schema.

    Anything the collaborator raises, and any missing or non-finite record, surfaces
    as DataProviderError.
    """
    try:
        records = provider.provide(list(node_ids), seed)
    except DataProviderError:
        raise
    except Exception as exc:
        raise DataProviderError(f"{type(provider).__name__}.provide failed: {exc}") from exc

    missing = [v for v in node_ids if v not in records]
    if missing:
        raise DataProviderError(f"provider returned no record for nodes {missing[:8]}")

    out: Dict[int, NodeRecord] = {}
    for v in node_ids:
        rec = records[v]
        if not isinstance(rec, NodeRecord):
            raise DataProviderError(f"record for node {v} is {type(rec).__name__}, expected NodeRecord")
        if not _all_finite(rec):
            raise DataProviderError(f"record for node {v} has non-finite fields")
        out[int(v)] = rec
    logger.debug("fetched %d records from %s", len(out), type(provider).__name__)
    return out
