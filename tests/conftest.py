from pathlib import Path

import h5py
import numpy as np
import pytest

from idivc.io.containers import BranchNames

N_SLOTS = 520

HIT_TREE = "hits"
TSTART = "tstart"
SENSOR = "pmt"
RECO = "reco"


@pytest.fixture
def names():
    return BranchNames(hit_tree=HIT_TREE, tstart=TSTART)


@pytest.fixture
def reco_names():
    return BranchNames(hit_tree=HIT_TREE, tstart=TSTART, reco_tree=RECO)


def numbered_hits(n: int, first: int = 0) -> np.ndarray:
    """(n, 520) start times; event k carries first+k+1 in slot 0."""
    t = np.zeros((n, N_SLOTS), dtype=np.float64)
    t[:, 0] = np.arange(first, first + n) + 1
    return t


def write_h5_container(
    path: Path,
    tstart: np.ndarray,
    sensor: np.ndarray | None = None,
    reco_entries: int | None = None,
) -> Path:
    with h5py.File(path, "w") as f:
        g = f.create_group(HIT_TREE)
        g.create_dataset(TSTART, data=tstart)
        if sensor is not None:
            g.create_dataset(SENSOR, data=sensor)
        if reco_entries is not None:
            r = f.create_group(RECO)
            r.create_dataset("evnum", data=np.arange(reco_entries, dtype=np.int64))
    return path


def write_h5_calibration(path: Path, x, y, ey, name: str = "finalt0table_caliter01") -> Path:
    with h5py.File(path, "w") as f:
        g = f.create_group(name)
        g.create_dataset("x", data=np.asarray(x, dtype=np.float64))
        g.create_dataset("y", data=np.asarray(y, dtype=np.float64))
        g.create_dataset("ey", data=np.asarray(ey, dtype=np.float64))
    return path
