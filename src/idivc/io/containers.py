"""
idivc.io.containers

One input file = one container. A container knows its hit-entry count,
the entry count of the optional companion reconciliation tree, and can
read a contiguous range of entries from the start-time branch (and the
explicit sensor-id branch when the input revision carries one).

Backends
--------
- RootContainer: ROOT files read with uproot. Only the needed branches are
  touched, a range at a time.
- HDF5Container: HDF5 files read with h5py. A tree is a group, a branch is
  a (N, 520) dataset inside it.

Both raise InvalidSource when the file cannot be opened and IntegrityError
when it lacks the expected tree or branch.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import h5py
import numpy as np
import uproot

from idivc.errors import IntegrityError, InvalidSource
from idivc.physics.constants import N_SLOTS

ROOT_SUFFIXES = (".root",)
HDF5_SUFFIXES = (".h5", ".hdf5")
SUPPORTED_SUFFIXES = ROOT_SUFFIXES + HDF5_SUFFIXES


@dataclass(frozen=True)
class BranchNames:
    hit_tree: str = "PulseSlideWinInfoTree"
    tstart: str = "PulseSlideWinInfoBranch.fTstart_raw"
    sensor: Optional[str] = None
    reco_tree: Optional[str] = None


class BaseContainer:
    """
    Abstract container interface.

    entries       : number of hit-tree entries
    reco_entries  : entries in the reconciliation tree, or None if not configured
    read(start, stop) -> (tstart (n, 520) float64, sensor (n, 520) int64 | None)
    """

    path: Path
    entries: int
    reco_entries: Optional[int]

    def read(self, start: int, stop: int) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.path)!r}, entries={self.entries})"


def _check_width(arr: np.ndarray, path: Path, branch: str) -> np.ndarray:
    if arr.ndim != 2 or arr.shape[1] != N_SLOTS:
        raise IntegrityError(
            f"{path}: branch {branch} has shape {arr.shape}, expected (n, {N_SLOTS})"
        )
    return arr


class RootContainer(BaseContainer):
    def __init__(self, path: str | Path, names: BranchNames = BranchNames()):
        self.path = Path(path)
        self.names = names
        try:
            self._file = uproot.open(self.path)
        except Exception as exc:
            raise InvalidSource(f"{self.path} could not be read as a ROOT file: {exc}") from exc

        try:
            if names.hit_tree not in self._file:
                raise IntegrityError(f"{self.path} does not have a {names.hit_tree} tree")
            self._tree = self._file[names.hit_tree]
            for branch in (names.tstart, names.sensor):
                if branch is not None and branch not in self._tree:
                    raise IntegrityError(
                        f"{self.path}: {names.hit_tree} has no branch {branch}"
                    )
            self.entries = int(self._tree.num_entries)

            self.reco_entries = None
            if names.reco_tree is not None:
                if names.reco_tree not in self._file:
                    raise IntegrityError(f"{self.path} does not have a {names.reco_tree} tree")
                self.reco_entries = int(self._file[names.reco_tree].num_entries)
        except IntegrityError:
            self._file.close()
            raise

    def read(self, start: int, stop: int) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        tstart = self._tree[self.names.tstart].array(entry_start=start, entry_stop=stop, library="np")
        tstart = _check_width(np.asarray(tstart, dtype=np.float64), self.path, self.names.tstart)
        sensor = None
        if self.names.sensor is not None:
            sensor = self._tree[self.names.sensor].array(entry_start=start, entry_stop=stop, library="np")
            sensor = _check_width(np.asarray(sensor, dtype=np.int64), self.path, self.names.sensor)
        return tstart, sensor

    def close(self) -> None:
        self._file.close()


class HDF5Container(BaseContainer):
    def __init__(self, path: str | Path, names: BranchNames = BranchNames()):
        self.path = Path(path)
        self.names = names
        try:
            self._file = h5py.File(self.path, "r")
        except OSError as exc:
            raise InvalidSource(f"{self.path} could not be read as an HDF5 file: {exc}") from exc

        try:
            if names.hit_tree not in self._file:
                raise IntegrityError(f"{self.path} does not have a {names.hit_tree} tree")
            grp = self._file[names.hit_tree]
            if names.tstart not in grp:
                raise IntegrityError(f"{self.path}: {names.hit_tree} has no branch {names.tstart}")
            self._tstart = grp[names.tstart]
            self._sensor = None
            if names.sensor is not None:
                if names.sensor not in grp:
                    raise IntegrityError(f"{self.path}: {names.hit_tree} has no branch {names.sensor}")
                self._sensor = grp[names.sensor]
                if self._sensor.shape[0] != self._tstart.shape[0]:
                    raise IntegrityError(
                        f"{self.path}: {names.sensor} has {self._sensor.shape[0]} entries, "
                        f"{names.tstart} has {self._tstart.shape[0]}"
                    )
            self.entries = int(self._tstart.shape[0])

            self.reco_entries = None
            if names.reco_tree is not None:
                if names.reco_tree not in self._file:
                    raise IntegrityError(f"{self.path} does not have a {names.reco_tree} tree")
                self.reco_entries = _hdf5_entries(self._file[names.reco_tree])
        except IntegrityError:
            self._file.close()
            raise

    def read(self, start: int, stop: int) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        tstart = _check_width(
            np.asarray(self._tstart[start:stop], dtype=np.float64), self.path, self.names.tstart
        )
        sensor = None
        if self._sensor is not None:
            sensor = _check_width(
                np.asarray(self._sensor[start:stop], dtype=np.int64), self.path, self.names.sensor
            )
        return tstart, sensor

    def close(self) -> None:
        self._file.close()


def _hdf5_entries(obj) -> int:
    """Entry count of an HDF5 'tree': a dataset's length, or a group's first dataset length."""
    if isinstance(obj, h5py.Dataset):
        return int(obj.shape[0])
    for key in obj:
        item = obj[key]
        if isinstance(item, h5py.Dataset):
            return int(item.shape[0])
    return 0


def open_container(path: str | Path, names: BranchNames = BranchNames()) -> BaseContainer:
    """Factory: choose a backend from the file suffix."""
    p = Path(path)
    if not p.is_file():
        raise InvalidSource(f"{p} does not exist or is not a file")
    suffix = p.suffix.lower()
    if suffix in ROOT_SUFFIXES:
        return RootContainer(p, names)
    if suffix in HDF5_SUFFIXES:
        return HDF5Container(p, names)
    raise InvalidSource(f"{p}: unsupported container suffix {p.suffix!r} (expected one of {SUPPORTED_SUFFIXES})")
