from __future__ import annotations

import math
import numbers
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigurationError


Range = Tuple[float, float]

H_COMPONENTS = ("ts", "coh", "srp", "rcs")
SCORE_TERMS = ("h_index", "fidelity", "self_reference", "phi", "persistence")

WEIGHT_MODES = ("fixed", "dynamic")
PHI_SEARCH_MODES = ("exhaustive", "sampled")

MIN_NODES = 4


@dataclass(frozen=True)
class BuilderConfig:
    scale_a: float = 10.0  # strain -> connection gain
    scale_b: float = 0.1   # noise -> torsion gain
    frequency_max: float = 40.0


@dataclass(frozen=True)
class ProviderConfig:
    """Uniform sampling ranges for the synthetic provider (low, high)."""
    amplitude: Range = (0.0, 1.0)
    phase: Range = (0.0, 2.0 * math.pi)
    self_ref: Range = (0.0, 1.0)
    frequency: Range = (1.0, 40.0)
    strain: Range = (0.0, 0.1)
    noise: Range = (0.0, 1.0)


@dataclass(frozen=True)
class ClosureConfig:
    coupling_k: float = 0.01
    jitter_j: float = 0.1
    base_perturb: float = 0.5
    decay_rate: float = 0.1
    decay_period: int = 10
    max_iterations: int = 200
    convergence_window: int = 10
    convergence_threshold: float = 1e-3
    # None -> every convergence_window iterations
    snapshot_stride: Optional[int] = None

    @property
    def stride(self) -> int:
        return int(self.snapshot_stride or self.convergence_window)


@dataclass(frozen=True)
class HIndexConfig:
    weight_mode: str = "fixed"  # "fixed" | "dynamic"
    weights: Tuple[float, float, float, float] = (0.25, 0.25, 0.25, 0.25)  # ts, coh, srp, rcs
    epsilon: float = 1e-9


@dataclass(frozen=True)
class PhiConfig:
    search_mode: str = "exhaustive"  # "exhaustive" | "sampled"
    sample_count: int = 100
    # 2^(N-1)-1 bipartitions; 16 nodes -> 32767
    exhaustive_max_nodes: int = 16


@dataclass(frozen=True)
class PersistenceConfig:
    enabled: bool = False
    max_edge_length: float = math.inf
    max_homology_dimension: int = 1
    reduce_dim: Optional[int] = None
    # homology dimension k* whose persistence sum enters the composite score
    score_dimension: int = 1


@dataclass(frozen=True)
class ReconstructionConfig:
    perturb_amplitude: float = 0.5
    success_threshold: float = 0.01
    failure_threshold: float = 0.1
    max_iterations: int = 25
    step_perturb: float = 0.01


@dataclass(frozen=True)
class ScoringConfig:
    weights: Tuple[float, float, float, float, float] = (0.3, 0.3, 0.2, 0.2, 0.0)  # see SCORE_TERMS
    h_normalizer: Optional[float] = None  # None -> number of nodes
    h_threshold: float = 0.0
    phi_threshold: float = 0.0
    weight_tolerance: float = 1e-6


@dataclass(frozen=True)
class RunConfig:
    nodes: int = 12
    rho: float = 0.9
    seed: int = 42
    builder: BuilderConfig = field(default_factory=BuilderConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    closure: ClosureConfig = field(default_factory=ClosureConfig)
    hindex: HIndexConfig = field(default_factory=HIndexConfig)
    phi: PhiConfig = field(default_factory=PhiConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    reconstruction: ReconstructionConfig = field(default_factory=ReconstructionConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)

    @property
    def h_normalizer(self) -> float:
        hn = self.scoring.h_normalizer
        return float(self.nodes if hn is None else hn)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _weights(value: Any, names: Tuple[str, ...], section: str) -> Tuple[float, ...]:
    """Accept either a list in canonical order or a {name: weight} mapping."""
    if isinstance(value, Mapping):
        unknown = set(value) - set(names)
        if unknown:
            raise ConfigurationError(f"{section}: unknown weight names {sorted(unknown)}")
        return tuple(float(value.get(n, 0.0)) for n in names)
    vals = tuple(float(v) for v in value)
    if len(vals) != len(names):
        raise ConfigurationError(f"{section}: expected {len(names)} weights {names}, got {len(vals)}")
    return vals


def _coerce(annotation: str, value: Any, where: str) -> Any:
    """Convert a raw (YAML or caller-supplied) value to a field's declared type.

    `annotation` is the string form of the dataclass annotation. PyYAML reads
    `1e-3` as a string, so numeric strings are accepted.
    """
    if annotation.startswith("Optional["):
        if value is None:
            return None
        annotation = annotation[len("Optional["):-1]
    if annotation == "float":
        return float(value)
    if annotation == "int":
        if isinstance(value, bool):
            raise ConfigurationError(f"{where} must be an integer, got {value!r}")
        num = float(value) if isinstance(value, str) else value
        if isinstance(num, float):
            if not num.is_integer():
                raise ConfigurationError(f"{where} must be an integer, got {value!r}")
            return int(num)
        return int(num)
    if annotation == "bool":
        if not isinstance(value, bool):
            raise ConfigurationError(f"{where} must be true or false, got {value!r}")
        return value
    if annotation == "str":
        if not isinstance(value, str):
            raise ConfigurationError(f"{where} must be a string, got {value!r}")
        return value
    if annotation == "Range" or annotation.startswith("Tuple["):
        if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
            raise ConfigurationError(f"{where} must be a list of numbers, got {value!r}")
        vals = tuple(float(v) for v in value)
        if annotation == "Range" and len(vals) != 2:
            raise ConfigurationError(f"{where} must be a [low, high] pair, got {len(vals)} values")
        return vals
    return value


def _section(data: Mapping[str, Any], key: str, cls: type) -> Any:
    raw = data.get(key)
    if raw is None:
        return cls()
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"config section {key!r} must be a mapping")
    types = {f.name: str(f.type) for f in fields(cls)}
    unknown = set(raw) - set(types)
    if unknown:
        raise ConfigurationError(f"unknown keys in {key!r}: {sorted(unknown)}")
    kwargs = {name: _coerce(types[name], val, f"{key}.{name}") for name, val in raw.items()}
    return cls(**kwargs)


def config_from_dict(data: Mapping[str, Any]) -> RunConfig:
    if not isinstance(data, Mapping):
        raise ConfigurationError("config must contain a mapping at the top level")

    sections = ("builder", "provider", "closure", "hindex", "phi", "persistence", "reconstruction", "scoring")
    top = {"nodes", "rho", "seed", *sections}
    unknown = set(data) - top
    if unknown:
        raise ConfigurationError(f"unknown top-level config keys: {sorted(unknown)}")

    defaults = RunConfig()
    try:
        hdict = dict(data.get("hindex") or {})
        if "weights" in hdict:
            hdict["weights"] = _weights(hdict["weights"], H_COMPONENTS, "hindex")
        sdict = dict(data.get("scoring") or {})
        if "weights" in sdict:
            sdict["weights"] = _weights(sdict["weights"], SCORE_TERMS, "scoring")

        return RunConfig(
            nodes=_coerce("int", data.get("nodes", defaults.nodes), "nodes"),
            rho=_coerce("float", data.get("rho", defaults.rho), "rho"),
            seed=_coerce("int", data.get("seed", defaults.seed), "seed"),
            builder=_section(data, "builder", BuilderConfig),
            provider=_section(data, "provider", ProviderConfig),
            closure=_section(data, "closure", ClosureConfig),
            hindex=_section({"hindex": hdict}, "hindex", HIndexConfig),
            phi=_section(data, "phi", PhiConfig),
            persistence=_section(data, "persistence", PersistenceConfig),
            reconstruction=_section(data, "reconstruction", ReconstructionConfig),
            scoring=_section({"scoring": sdict}, "scoring", ScoringConfig),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"malformed config value: {exc}") from exc


def load_run_config(path: str | Path) -> RunConfig:
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path}: not valid YAML: {exc}") from exc
    if data is None:
        data = {}
    return validate_config(config_from_dict(data))


def with_overrides(cfg: RunConfig, **overrides: Any) -> RunConfig:
    """Top-level overrides (nodes, rho, seed); None values are ignored."""
    return replace(cfg, **{k: v for k, v in overrides.items() if v is not None})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _check(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigurationError(msg)


def _check_weights(weights: Tuple[float, ...], tol: float, what: str) -> None:
    _check(all(math.isfinite(w) and w >= 0.0 for w in weights), f"{what} must be finite and non-negative")
    total = math.fsum(weights)
    _check(abs(total - 1.0) <= tol, f"{what} must sum to 1 (got {total:.6g})")


def validate_config(cfg: RunConfig) -> RunConfig:
    """Fail fast on anything that would make a run meaningless. Returns cfg unchanged.

    Values of the wrong type (e.g. a config built in code with strings) are reported
    as ConfigurationError as well.
    """
    try:
        _validate(cfg)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"malformed config value: {exc}") from exc
    return cfg


def _check_int(value: Any, what: str) -> None:
    _check(isinstance(value, numbers.Integral) and not isinstance(value, bool), f"{what} must be an integer (got {value!r})")


def _validate(cfg: RunConfig) -> None:
    for what, value in (
        ("nodes", cfg.nodes),
        ("seed", cfg.seed),
        ("closure.max_iterations", cfg.closure.max_iterations),
        ("closure.convergence_window", cfg.closure.convergence_window),
        ("closure.decay_period", cfg.closure.decay_period),
        ("phi.sample_count", cfg.phi.sample_count),
        ("phi.exhaustive_max_nodes", cfg.phi.exhaustive_max_nodes),
        ("reconstruction.max_iterations", cfg.reconstruction.max_iterations),
    ):
        _check_int(value, what)
    _check(cfg.nodes >= MIN_NODES, f"nodes must be >= {MIN_NODES} (got {cfg.nodes})")
    _check(math.isfinite(cfg.rho), "rho must be finite")

    b = cfg.builder
    _check(b.frequency_max > 0, "builder.frequency_max must be > 0")
    _check(math.isfinite(b.scale_a) and math.isfinite(b.scale_b), "builder scales must be finite")

    for f in fields(ProviderConfig):
        rng = getattr(cfg.provider, f.name)
        _check(len(rng) == 2, f"provider.{f.name} must be a (low, high) pair")
        lo, hi = rng
        _check(math.isfinite(lo) and math.isfinite(hi) and lo <= hi, f"provider.{f.name} range malformed: ({lo}, {hi})")

    c = cfg.closure
    _check(c.max_iterations >= 1, "closure.max_iterations must be >= 1")
    _check(c.convergence_window >= 2, "closure.convergence_window must be >= 2")
    _check(c.convergence_window <= c.max_iterations, "closure.convergence_window must not exceed max_iterations")
    _check(c.convergence_threshold >= 0, "closure.convergence_threshold must be >= 0")
    _check(c.decay_period >= 1, "closure.decay_period must be >= 1")
    _check(c.base_perturb >= 0 and c.decay_rate >= 0, "closure.base_perturb and decay_rate must be >= 0")
    _check(math.isfinite(c.coupling_k) and math.isfinite(c.jitter_j), "closure constants must be finite")
    _check(c.snapshot_stride is None or c.snapshot_stride >= 1, "closure.snapshot_stride must be >= 1")

    tol = cfg.scoring.weight_tolerance
    h = cfg.hindex
    _check(h.weight_mode in WEIGHT_MODES, f"hindex.weight_mode must be one of {WEIGHT_MODES}")
    _check(h.epsilon > 0, "hindex.epsilon must be > 0")
    if h.weight_mode == "fixed":
        _check(len(h.weights) == len(H_COMPONENTS), f"hindex.weights needs {len(H_COMPONENTS)} entries")
        _check_weights(h.weights, tol, "hindex.weights")

    p = cfg.phi
    _check(p.search_mode in PHI_SEARCH_MODES, f"phi.search_mode must be one of {PHI_SEARCH_MODES}")
    if p.search_mode == "exhaustive":
        _check(
            cfg.nodes <= p.exhaustive_max_nodes,
            f"exhaustive phi search is infeasible for {cfg.nodes} nodes "
            f"(limit {p.exhaustive_max_nodes}); use search_mode='sampled'",
        )
    else:
        _check(p.sample_count >= 1, "phi.sample_count must be >= 1")

    t = cfg.persistence
    if t.enabled:
        _check(t.max_edge_length > 0, "persistence.max_edge_length must be > 0")
        _check(t.max_homology_dimension >= 0, "persistence.max_homology_dimension must be >= 0")
        _check(0 <= t.score_dimension <= t.max_homology_dimension, "persistence.score_dimension out of range")
        _check(t.reduce_dim is None or 1 <= t.reduce_dim <= 7, "persistence.reduce_dim must be in [1, 7]")

    r = cfg.reconstruction
    _check(r.perturb_amplitude >= 0, "reconstruction.perturb_amplitude must be >= 0")
    _check(r.max_iterations >= 1, "reconstruction.max_iterations must be >= 1")
    _check(0 <= r.success_threshold <= r.failure_threshold, "reconstruction thresholds must satisfy 0 <= success <= failure")
    _check(r.step_perturb >= 0, "reconstruction.step_perturb must be >= 0")

    s = cfg.scoring
    _check(len(s.weights) == len(SCORE_TERMS), f"scoring.weights needs {len(SCORE_TERMS)} entries")
    _check_weights(s.weights, tol, "scoring.weights")
    _check(t.enabled or s.weights[-1] == 0.0, "scoring persistence weight is non-zero but persistence is disabled")
    _check(s.h_normalizer is None or s.h_normalizer > 0, "scoring.h_normalizer must be > 0")
