# src/idivc/physics/events.py
from __future__ import annotations
from dataclasses import dataclass, astuple
from typing import Optional

import numpy as np

from .constants import N_SLOTS, NO_HIT


@dataclass(slots=True)
class RawEvent:
    """
    One acquisition event as read from the input containers.

    tstart: raw start time per channel slot (detector clock units), shape (520,)
    sensor: explicit sensor id per slot, shape (520,), or None for revisions
            that rely on the channel map. Negative ids mark unused slots.

    A slot without a hit holds tstart <= 0 (or a negative sensor id); slots
    are never omitted.
    """
    tstart: np.ndarray
    sensor: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.tstart = np.asarray(self.tstart, dtype=np.float64).reshape(-1)
        if self.tstart.shape != (N_SLOTS,):
            raise ValueError(f"RawEvent.tstart must have {N_SLOTS} slots, got {self.tstart.shape[0]}")
        if self.sensor is not None:
            self.sensor = np.asarray(self.sensor, dtype=np.int64).reshape(-1)
            if self.sensor.shape != (N_SLOTS,):
                raise ValueError(
                    f"RawEvent.sensor must have {N_SLOTS} slots, got {self.sensor.shape[0]}"
                )

    @classmethod
    def empty(cls, explicit_ids: bool = False) -> "RawEvent":
        """An event with no hits in any slot."""
        sensor = np.full(N_SLOTS, -1, dtype=np.int64) if explicit_ids else None
        return cls(tstart=np.zeros(N_SLOTS, dtype=np.float64), sensor=sensor)

    @property
    def has_explicit_ids(self) -> bool:
        return self.sensor is not None


@dataclass(frozen=True, slots=True)
class ReducedEvent:
    """
    First-light summary of one event.

    timeid / timeiv: earliest corrected start time in the inner detector /
    inner veto; firstidpmt / firstivpmt: the sensor that produced it.
    NO_HIT (-1) in both fields of a region means no valid hit there.
    """
    timeid: float = NO_HIT
    timeiv: float = NO_HIT
    firstidpmt: int = NO_HIT
    firstivpmt: int = NO_HIT

    @property
    def has_id_hit(self) -> bool:
        return self.firstidpmt != NO_HIT

    @property
    def has_iv_hit(self) -> bool:
        return self.firstivpmt != NO_HIT

    def as_tuple(self) -> tuple:
        return astuple(self)


FIELDS = ("timeid", "timeiv", "firstidpmt", "firstivpmt")
