# src/idivc/physics/channel_map.py
"""
Hardware channel -> sensor id mapping.

Each hardware revision is described by a small TOML table made of blocks.
A block covers a contiguous run of hardware channels, says which event
slot its first channel is stored in, and lists the sensor id behind each
channel (DISCONNECTED for channels wired to nothing usable):

    revision = "default"
    n_slots = 520

    [[block]]
    first_channel = 1000
    first_slot = 392
    sensors = [390, 391, ..., -2]

Every channel outside the declared blocks is UNMAPPED.
"""
from __future__ import annotations

import importlib.resources as res
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<=310

from idivc.errors import ChannelMapError
from idivc.physics.constants import DISCONNECTED, N_SENSORS, N_SLOTS, UNMAPPED


def builtin_map_path(revision: str) -> Path:
    """Return path to a channel map shipped with the package."""
    p = res.files("idivc.data.channel_maps") / f"{revision}.toml"
    if not p.is_file():
        raise ChannelMapError(f"No built-in channel map for revision {revision!r}")
    return Path(str(p))


@dataclass(frozen=True)
class ChannelBlock:
    first_channel: int
    first_slot: int
    sensors: tuple

    @property
    def last_channel(self) -> int:
        return self.first_channel + len(self.sensors) - 1

    @property
    def last_slot(self) -> int:
        return self.first_slot + len(self.sensors) - 1


@dataclass
class ChannelMap:
    revision: str
    blocks: List[ChannelBlock]
    n_slots: int = N_SLOTS
    _by_channel: Dict[int, int] = field(init=False, repr=False)
    _slot_channel: Dict[int, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._by_channel = {}
        self._slot_channel = {}
        seen_sensors: set[int] = set()
        for b in self.blocks:
            if b.first_slot < 0 or b.last_slot >= self.n_slots:
                raise ChannelMapError(
                    f"[{self.revision}] block at channel {b.first_channel} spans slots "
                    f"{b.first_slot}..{b.last_slot}, outside 0..{self.n_slots - 1}"
                )
            for k, sensor in enumerate(b.sensors):
                ch = b.first_channel + k
                slot = b.first_slot + k
                sensor = int(sensor)
                if ch in self._by_channel:
                    raise ChannelMapError(f"[{self.revision}] channel {ch} declared twice")
                if slot in self._slot_channel:
                    raise ChannelMapError(f"[{self.revision}] slot {slot} declared twice")
                if sensor != DISCONNECTED:
                    if not 0 <= sensor < N_SENSORS:
                        raise ChannelMapError(
                            f"[{self.revision}] channel {ch} maps to sensor {sensor}, "
                            f"outside 0..{N_SENSORS - 1}"
                        )
                    if sensor in seen_sensors:
                        raise ChannelMapError(f"[{self.revision}] sensor {sensor} wired twice")
                    seen_sensors.add(sensor)
                self._by_channel[ch] = sensor
                self._slot_channel[slot] = ch

    # ---- construction ----

    @classmethod
    def from_dict(cls, data: dict, revision: Optional[str] = None) -> "ChannelMap":
        rev = str(data.get("revision", revision or "custom"))
        raw_blocks = data.get("block", [])
        if not raw_blocks:
            raise ChannelMapError(f"[{rev}] channel map declares no [[block]] tables")
        try:
            blocks = [
                ChannelBlock(
                    first_channel=int(b["first_channel"]),
                    first_slot=int(b["first_slot"]),
                    sensors=tuple(int(s) for s in b["sensors"]),
                )
                for b in raw_blocks
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise ChannelMapError(f"[{rev}] malformed block: {exc}") from exc
        return cls(revision=rev, blocks=blocks, n_slots=int(data.get("n_slots", N_SLOTS)))

    @classmethod
    def from_toml(cls, path: str | Path) -> "ChannelMap":
        p = Path(path)
        try:
            data = tomllib.loads(p.read_text())
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ChannelMapError(f"{p}: {exc}") from exc
        return cls.from_dict(data, revision=p.stem)

    @classmethod
    def builtin(cls, revision: str = "default") -> "ChannelMap":
        return cls.from_toml(builtin_map_path(revision))

    @classmethod
    def resolve(cls, spec: str) -> "ChannelMap":
        """Accept either a built-in revision name or a path to a TOML table."""
        p = Path(spec)
        if p.suffix == ".toml" or p.exists():
            return cls.from_toml(p)
        return cls.builtin(spec)

    # ---- lookups ----

    def map_channel(self, channel: int) -> int:
        """Sensor id for a hardware channel, UNMAPPED or DISCONNECTED."""
        return self._by_channel.get(int(channel), UNMAPPED)

    def slot_to_channel(self, slot: int) -> int:
        """Hardware channel stored in an event slot, or UNMAPPED."""
        return self._slot_channel.get(int(slot), UNMAPPED)

    def sensor_for_slot(self, slot: int) -> int:
        ch = self.slot_to_channel(slot)
        if ch == UNMAPPED:
            return UNMAPPED
        return self.map_channel(ch)

    def slot_sensors(self) -> np.ndarray:
        """Sensor id for every slot, in slot order (int32, length n_slots)."""
        out = np.full(self.n_slots, UNMAPPED, dtype=np.int32)
        for slot in range(self.n_slots):
            out[slot] = self.sensor_for_slot(slot)
        return out

    @property
    def channels(self) -> List[int]:
        return sorted(self._by_channel)

    def disconnected_channels(self) -> List[int]:
        return [ch for ch, s in sorted(self._by_channel.items()) if s == DISCONNECTED]
