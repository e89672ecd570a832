from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional

class RunCfg(BaseModel):
    """
    Global run controls.
    """

    # Limits (0 = every available event)
    max_events: int = Field(0, ge=0)

    # Overwrite an existing output file
    clobber: bool = False

    # Performance / display
    chunk_size: int = Field(10_000, gt=0)
    progress: bool = True

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v

class InputCfg(BaseModel):
    """
    Input containers and the names of the trees/branches read from them.

    TOML:

    [input]
    files = ["run1_base.root", "run2_base.root"]
    hit_tree = "PulseSlideWinInfoTree"
    tstart_branch = "PulseSlideWinInfoBranch.fTstart_raw"
    sensor_branch = "PulseSlideWinInfoBranch.fPMT"   # omit for channel-map revisions
    reco_tree = "RecoTree"                           # omit to skip the entry cross-check
    """

    files: List[str] = Field(default_factory=list)
    hit_tree: str = "PulseSlideWinInfoTree"
    tstart_branch: str = "PulseSlideWinInfoBranch.fTstart_raw"
    sensor_branch: Optional[str] = None
    reco_tree: Optional[str] = None

    # Enforce the *base*.<suffix> naming convention on input files
    require_base_names: bool = True

class CalibrationCfg(BaseModel):
    path: Optional[str] = None
    graph_name: str = "finalt0table_caliter01"

class DetectorCfg(BaseModel):
    """
    channel_map: built-in revision name or path to a channel map TOML.
    """

    channel_map: str = "default"

class OutputCfg(BaseModel):
    path: Optional[str] = None
    tree_name: str = "idivc"
    title: str = "ID and IV time correction tree"
    flush_every: int = Field(100_000, gt=0)


class Config(BaseModel):
    """
    Top-level configuration. Every section has defaults, so an empty TOML
    file (or none at all) plus the required CLI paths is a valid setup.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    input: InputCfg = Field(default_factory=InputCfg)
    calibration: CalibrationCfg = Field(default_factory=CalibrationCfg)
    detector: DetectorCfg = Field(default_factory=DetectorCfg)
    output: OutputCfg = Field(default_factory=OutputCfg)
