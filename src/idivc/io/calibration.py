# src/idivc/io/calibration.py
"""
Per-sensor time offsets from a previously produced calibration fit.

The table is a two-series graph (sensor id -> fitted time, with an
uncertainty on the time). Supported sources:

- ROOT file: a TGraphErrors (default name "finalt0table_caliter01"),
  read through its fX / fY / fEY members.
- HDF5 file: a group of the same name holding datasets x, y, ey.

Row policy, applied in order:
  value or error not finite             -> sensor was not fit, skipped
  value == 0, error == 0 or error == 1  -> sensor was not fit, skipped
  error > 1                             -> poor fit, reported and skipped
  sensor not an integer in 0..467       -> SensorIdOutOfRange (fatal)
  otherwise                             -> offsets[sensor] = value

Sensors never accepted keep offset 0.0.
"""
from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

import h5py
import numpy as np
import uproot

from idivc.errors import InvalidSource, MissingCalibrationSet, SensorIdOutOfRange
from idivc.physics.constants import N_SENSORS

DEFAULT_GRAPH_NAME = "finalt0table_caliter01"

ROOT_SUFFIXES = (".root",)
HDF5_SUFFIXES = (".h5", ".hdf5")


@dataclass
class CalibrationTable:
    """
    offsets : (N_SENSORS,) float64, 0.0 where no correction is available
    accepted: number of rows written into offsets
    rejected: row counts per rejection reason ("not_fit", "poor_fit")
    """
    offsets: np.ndarray
    accepted: int = 0
    rejected: Counter = field(default_factory=Counter)
    source: str = ""

    @classmethod
    def empty(cls) -> "CalibrationTable":
        return cls(offsets=np.zeros(N_SENSORS, dtype=np.float64))

    @classmethod
    def from_points(
        cls,
        sensors,
        values,
        errors,
        *,
        source: str = "",
        diagnostics_level: int = 1,
    ) -> "CalibrationTable":
        sensors = np.asarray(sensors, dtype=np.float64).reshape(-1)
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        errors = np.asarray(errors, dtype=np.float64).reshape(-1)
        if not (sensors.shape == values.shape == errors.shape):
            raise ValueError(
                f"calibration series lengths differ: x={sensors.size}, y={values.size}, ey={errors.size}"
            )

        table = cls.empty()
        table.source = source
        for pmt, time, timee in zip(sensors, values, errors):
            if not (np.isfinite(time) and np.isfinite(timee)) or time == 0 or timee == 0 or timee == 1:
                table.rejected["not_fit"] += 1
                continue
            if timee > 1:
                table.rejected["poor_fit"] += 1
                if diagnostics_level >= 1:
                    print(f"[calib] sensor {pmt:g}: error of {timee:f}, skipping")
                continue
            if not (np.isfinite(pmt) and pmt == np.floor(pmt) and 0 <= pmt < N_SENSORS):
                raise SensorIdOutOfRange(
                    f"bad sensor number {float(pmt)!r} in {source or 'calibration table'} "
                    f"(valid: 0..{N_SENSORS - 1})"
                )
            table.offsets[int(pmt)] = time
            table.accepted += 1
        return table

    def offset(self, sensor: int) -> float:
        return float(self.offsets[sensor])

    def is_calibrated(self, sensor: int) -> bool:
        return self.offsets[sensor] != 0.0


def _read_root_graph(p: Path, name: str) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    try:
        f = uproot.open(p)
    except Exception as exc:
        raise InvalidSource(f"Could not open timing file {p}: {exc}") from exc
    with f:
        if name not in f:
            raise MissingCalibrationSet(f"Couldn't get {name} from timing file {p}")
        graph = f[name]
        try:
            x = np.asarray(graph.member("fX"), dtype=np.float64)
            y = np.asarray(graph.member("fY"), dtype=np.float64)
            ey = np.asarray(graph.member("fEY"), dtype=np.float64)
        except Exception as exc:
            raise MissingCalibrationSet(
                f"{name} in {p} is a {type(graph).__name__}, not a TGraphErrors"
            ) from exc
    return x, y, ey


def _read_hdf5_graph(p: Path, name: str) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    try:
        f = h5py.File(p, "r")
    except OSError as exc:
        raise InvalidSource(f"Could not open timing file {p}: {exc}") from exc
    with f:
        if name not in f:
            raise MissingCalibrationSet(f"Couldn't get {name} from timing file {p}")
        grp = f[name]
        missing = [k for k in ("x", "y", "ey") if k not in grp]
        if missing:
            raise MissingCalibrationSet(f"{name} in {p} lacks dataset(s) {', '.join(missing)}")
        return (
            np.array(grp["x"], dtype=np.float64),
            np.array(grp["y"], dtype=np.float64),
            np.array(grp["ey"], dtype=np.float64),
        )


def load_calibration(
    path: str | Path,
    name: str = DEFAULT_GRAPH_NAME,
    *,
    diagnostics_level: int = 1,
) -> CalibrationTable:
    """
    Load and validate a calibration table.

    Raises InvalidSource, MissingCalibrationSet or SensorIdOutOfRange.
    """
    p = Path(path)
    if not p.is_file():
        raise InvalidSource(f"Could not open timing file {p}: no such file")

    suffix = p.suffix.lower()
    if suffix in ROOT_SUFFIXES:
        x, y, ey = _read_root_graph(p, name)
    elif suffix in HDF5_SUFFIXES:
        x, y, ey = _read_hdf5_graph(p, name)
    else:
        raise InvalidSource(
            f"Could not open timing file {p}: unsupported suffix {p.suffix!r} "
            f"(expected one of {ROOT_SUFFIXES + HDF5_SUFFIXES})"
        )

    table = CalibrationTable.from_points(x, y, ey, source=str(p), diagnostics_level=diagnostics_level)
    if diagnostics_level >= 1:
        print(
            f"[calib] {p.name}:{name}: {table.accepted} sensors calibrated, "
            f"{table.rejected['not_fit']} not fit, {table.rejected['poor_fit']} poor fits"
        )
    return table
