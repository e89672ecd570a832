from __future__ import annotations
from .schemas import Config
from pathlib import Path
from typing import Optional

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<=310

def load_config(path: Optional[str | Path] = None) -> Config:
    """Load a TOML config; no path gives the all-defaults config."""
    if path is None:
        return Config()
    p = Path(path)
    data = tomllib.loads(p.read_text())
    return Config(**data)