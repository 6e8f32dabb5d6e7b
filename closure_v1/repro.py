from __future__ import annotations

import hashlib
import json
import platform
import sys
from pathlib import Path
from typing import Any, Dict

import numpy as np

from .config import RunConfig


def environment_stamp() -> Dict[str, Any]:
    return {
        "python": sys.version,
        "platform": platform.platform(),
        "numpy": np.__version__,
    }


def config_digest(cfg: RunConfig) -> str:
    """SHA-256 of the canonical JSON form of the config."""
    blob = json.dumps(cfg.to_dict(), sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()


def run_metadata(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "env": environment_stamp(),
        "config_sha256": config_digest(cfg),
        "config": cfg.to_dict(),
    }


def write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, sort_keys=True, default=str))
