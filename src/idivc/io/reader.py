"""
idivc.io.reader

SequentialMultiFileReader: one logical event index space over an ordered
list of containers.

The reader is built for a single forward pass. It keeps a manifest of
(container, entries-before) pairs and a cursor on the current container:
its first global index (offset) and the first global index of the next
container (next_break). A read is served when the index lies in
[offset, next_break), or is exactly next_break, in which case the cursor
moves on to the next non-empty container. Index 0 is the reset point and
rewinds to the container holding the first event. Any other jump across a
container boundary raises SequentialAccessError.

Entries are read from the current container in chunks of `chunk_size`,
touching only the configured branches.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import numpy as np

from idivc.errors import IntegrityError, SequentialAccessError
from idivc.io.containers import BaseContainer, BranchNames, open_container
from idivc.physics.events import RawEvent


@dataclass(frozen=True)
class ManifestEntry:
    container: BaseContainer
    start: int  # global index of this container's first event

    @property
    def stop(self) -> int:
        return self.start + self.container.entries


class SequentialMultiFileReader:
    def __init__(
        self,
        names: BranchNames = BranchNames(),
        *,
        chunk_size: int = 10_000,
        diagnostics_level: int = 1,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.names = names
        self.chunk_size = int(chunk_size)
        self.diagnostics_level = diagnostics_level

        self._manifest: List[ManifestEntry] = []
        self._total = 0
        self._opened = False

        # cursor
        self._pos = -1
        self._offset = 0
        self._next_break = 0
        self._last_index: Optional[int] = None
        self.transitions = 0

        # chunk cache for the current container
        self._chunk_start = 0
        self._chunk_tstart: Optional[np.ndarray] = None
        self._chunk_sensor: Optional[np.ndarray] = None

    # ---- setup / teardown ----

    def open(self, paths: Sequence[str | Path]) -> int:
        """
        Open every container, build the manifest and cross-check entry counts.

        Returns the total number of events. Raises IntegrityError when a file
        lacks the expected trees or the hit and reconciliation totals
        disagree. A file that cannot be opened at all raises InvalidSource
        instead, which is not an IntegrityError; catch IdivcError to handle
        both.
        """
        if self._opened:
            raise RuntimeError("reader is already open")
        if not paths:
            raise ValueError("no input files given")

        total_hit = 0
        total_reco = 0
        try:
            for p in paths:
                c = open_container(p, self.names)
                self._manifest.append(ManifestEntry(container=c, start=total_hit))
                total_hit += c.entries
                if c.reco_entries is not None:
                    total_reco += c.reco_entries
                if self.diagnostics_level >= 1:
                    print(f"[reader] Loaded {p} ({c.entries} entries)")

            if self.names.reco_tree is not None and total_hit != total_reco:
                raise IntegrityError(
                    f"hit tree has {total_hit} entries, but {self.names.reco_tree} has {total_reco}"
                )
        except Exception:
            self.close()
            raise

        self._total = total_hit
        self._opened = True
        self.rewind()
        return self._total

    def close(self) -> None:
        for m in self._manifest:
            m.container.close()
        self._manifest = []
        self._opened = False
        self._drop_chunk()

    def __enter__(self) -> "SequentialMultiFileReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- properties ----

    @property
    def total(self) -> int:
        return self._total

    @property
    def manifest(self) -> List[ManifestEntry]:
        return list(self._manifest)

    @property
    def container_index(self) -> int:
        """Position of the current container in the manifest (-1 before any read)."""
        return self._pos

    @property
    def current_path(self) -> Optional[Path]:
        if 0 <= self._pos < len(self._manifest):
            return self._manifest[self._pos].container.path
        return None

    # ---- cursor ----

    def _drop_chunk(self) -> None:
        self._chunk_start = 0
        self._chunk_tstart = None
        self._chunk_sensor = None

    def _enter(self, pos: int) -> None:
        m = self._manifest[pos]
        if pos != self._pos and self._pos >= 0:
            self.transitions += 1
            if self.diagnostics_level >= 2:
                print(f"[reader] event {m.start}: switching to {m.container.path}")
        self._pos = pos
        self._offset = m.start
        self._next_break = m.stop
        self._drop_chunk()

    def _advance(self) -> None:
        pos = self._pos + 1
        # skip empty containers
        while pos < len(self._manifest) and self._manifest[pos].container.entries == 0:
            pos += 1
        if pos >= len(self._manifest):
            raise SequentialAccessError(f"event {self._next_break} is past the last container")
        self._enter(pos)

    def rewind(self) -> None:
        """Reposition on the container that holds event 0."""
        if not self._opened:
            raise RuntimeError("reader is not open")
        self._pos = -1
        self._last_index = None
        pos = 0
        while pos < len(self._manifest) - 1 and self._manifest[pos].container.entries == 0:
            pos += 1
        self._enter(pos)

    def _load_chunk(self, local: int) -> None:
        c = self._manifest[self._pos].container
        stop = min(local + self.chunk_size, c.entries)
        self._chunk_tstart, self._chunk_sensor = c.read(local, stop)
        self._chunk_start = local

    def read_event(self, index: int) -> RawEvent:
        """
        Return event `index` as a fresh RawEvent.

        Valid for index 0 (reset), any index in the current container, or the
        first index of the next container.
        """
        if not self._opened:
            raise RuntimeError("reader is not open")
        index = int(index)
        if not 0 <= index < self._total:
            raise SequentialAccessError(f"event {index} out of range 0..{self._total - 1}")

        if index == 0:
            if self._last_index is not None:
                self.rewind()
        elif index == self._next_break:
            self._advance()
        elif not self._offset <= index < self._next_break:
            raise SequentialAccessError(
                f"event {index} is outside the current container "
                f"[{self._offset}, {self._next_break}); only sequential reads are supported"
            )

        local = index - self._offset
        if (
            self._chunk_tstart is None
            or not self._chunk_start <= local < self._chunk_start + len(self._chunk_tstart)
        ):
            self._load_chunk(local)

        k = local - self._chunk_start
        sensor = None if self._chunk_sensor is None else self._chunk_sensor[k].copy()
        self._last_index = index
        return RawEvent(tstart=self._chunk_tstart[k].copy(), sensor=sensor)

    def iter_events(self, limit: Optional[int] = None) -> Iterator[RawEvent]:
        """Yield events 0..n-1 in order, n = min(limit, total); limit 0/None = all."""
        n = self._total if not limit else min(int(limit), self._total)
        for i in range(n):
            yield self.read_event(i)

    def __iter__(self) -> Iterator[RawEvent]:
        return self.iter_events()

    def __len__(self) -> int:
        return self._total
