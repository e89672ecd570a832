# src/idivc/physics/reduction.py
"""
Per-event reduction: raw channel start times -> two first-light times.

For every slot 0..519 (in that order) the sensor id comes either from the
event's explicit per-slot ids or from the channel map. A slot takes part
only if its sensor id is a real sensor (0 <= id < N_SENSORS) and its raw
start time is > 0. Its corrected time is tstart + offset[sensor]; a
non-finite corrected time never counts. Sensors below IV_FIRST_SENSOR feed
the inner-detector minimum, the rest the inner-veto minimum. Minima start
at TIME_SENTINEL and only move on a strictly smaller time, so the lowest
slot wins ties. A region whose minimum ends above TIME_CEILING reports
NO_HIT for both its time and its sensor.
"""
from __future__ import annotations
from typing import Optional, Tuple

import numpy as np

from .channel_map import ChannelMap
from .constants import (
    IV_FIRST_SENSOR,
    N_SENSORS,
    NO_HIT,
    TIME_CEILING,
    TIME_SENTINEL,
)
from .events import RawEvent, ReducedEvent


def _region_first(corrected: np.ndarray, sensors: np.ndarray, mask: np.ndarray) -> Tuple[float, int]:
    if not mask.any():
        return float(NO_HIT), NO_HIT
    masked = np.where(mask, corrected, np.inf)
    # argmin returns the first occurrence, i.e. the lowest slot on ties
    slot = int(np.argmin(masked))
    t = float(masked[slot])
    if not t < TIME_SENTINEL or t > TIME_CEILING:
        return float(NO_HIT), NO_HIT
    return t, int(sensors[slot])


def reduce_event(
    raw: RawEvent,
    offsets: np.ndarray,
    slot_sensors: Optional[np.ndarray] = None,
) -> ReducedEvent:
    """
    Reduce one event.

    Parameters
    ----------
    raw : RawEvent
    offsets : (N_SENSORS,) float calibration offsets, 0.0 = uncalibrated
    slot_sensors : (520,) int sensor id per slot from the channel map; used
        only when the event carries no explicit ids.
    """
    if raw.sensor is not None:
        sensors = raw.sensor
    elif slot_sensors is not None:
        sensors = np.asarray(slot_sensors)
    else:
        raise ValueError("event has no explicit sensor ids and no channel map was given")

    valid = (sensors >= 0) & (sensors < N_SENSORS) & (raw.tstart > 0)
    safe = np.where(valid, sensors, 0)
    corrected = raw.tstart + np.where(valid, offsets[safe], 0.0)
    # argmin would pick a NaN slot over every real time
    valid &= np.isfinite(corrected)

    timeid, firstid = _region_first(corrected, sensors, valid & (sensors < IV_FIRST_SENSOR))
    timeiv, firstiv = _region_first(corrected, sensors, valid & (sensors >= IV_FIRST_SENSOR))
    return ReducedEvent(timeid=timeid, timeiv=timeiv, firstidpmt=firstid, firstivpmt=firstiv)


class EventReductionEngine:
    """
    Owns the calibration offsets and channel map for one run and reduces
    events one at a time. Both are fixed at construction.
    """

    def __init__(self, offsets: np.ndarray, channel_map: Optional[ChannelMap] = None):
        offsets = np.asarray(offsets, dtype=np.float64)
        if offsets.shape != (N_SENSORS,):
            raise ValueError(f"offsets must have shape ({N_SENSORS},), got {offsets.shape}")
        self._offsets = offsets.copy()
        self._offsets.setflags(write=False)
        self.channel_map = channel_map
        self._slot_sensors = channel_map.slot_sensors() if channel_map is not None else None
        self.n_reduced = 0

    @classmethod
    def from_table(cls, table, channel_map: Optional[ChannelMap] = None) -> "EventReductionEngine":
        return cls(table.offsets, channel_map=channel_map)

    @property
    def offsets(self) -> np.ndarray:
        return self._offsets

    def reduce(self, raw: RawEvent) -> ReducedEvent:
        out = reduce_event(raw, self._offsets, self._slot_sensors)
        self.n_reduced += 1
        return out
