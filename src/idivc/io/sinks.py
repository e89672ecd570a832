from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import h5py
import numpy as np
import uproot

from idivc.errors import InvalidSource, OutputExistsError
from idivc.physics.events import FIELDS, ReducedEvent

FORMAT_VERSION = "1.0"
SOFTWARE = "idivc 0.1.0"

DEFAULT_TREE = "idivc"
DEFAULT_TITLE = "ID and IV time correction tree"

DTYPES: Dict[str, np.dtype] = {
    "timeid": np.dtype(np.float64),
    "timeiv": np.dtype(np.float64),
    "firstidpmt": np.dtype(np.int32),
    "firstivpmt": np.dtype(np.int32),
}


class BaseSink:
    """
    Append-only writer for reduced events.

    Events are buffered and flushed every `flush_every` records, always in
    the order they were written. close() flushes the remainder.
    """

    def __init__(self, path: Path, flush_every: int):
        self.path = path
        self.flush_every = max(1, int(flush_every))
        self.n_written = 0
        self._buf: Dict[str, List] = {k: [] for k in FIELDS}
        self._closed = False

    def write(self, ev: ReducedEvent) -> None:
        for k, v in zip(FIELDS, ev.as_tuple()):
            self._buf[k].append(v)
        if len(self._buf["timeid"]) >= self.flush_every:
            self.flush()

    def flush(self) -> None:
        n = len(self._buf["timeid"])
        if n == 0:
            return
        cols = {k: np.asarray(self._buf[k], dtype=DTYPES[k]) for k in FIELDS}
        self._append(cols)
        self.n_written += n
        self._buf = {k: [] for k in FIELDS}

    def _append(self, cols: Dict[str, np.ndarray]) -> None:
        raise NotImplementedError

    def _finish(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._finish()
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class RootSink(BaseSink):
    def __init__(
        self,
        path: Path,
        *,
        tree_name: str = DEFAULT_TREE,
        title: str = DEFAULT_TITLE,
        flush_every: int = 100_000,
        config_text: str = "",
    ):
        super().__init__(path, flush_every)
        try:
            self._file = uproot.recreate(path, compression=uproot.ZLIB(9))
        except OSError as exc:
            raise InvalidSource(f"Could not open output file {path}: {exc}") from exc
        try:
            self._tree = self._file.mktree(
                tree_name, {k: DTYPES[k] for k in FIELDS}, title=title
            )
            self._file["meta"] = (
                f"format_version={FORMAT_VERSION}\n"
                f"created_utc={datetime.now(timezone.utc).isoformat()}\n"
                f"software={SOFTWARE}\n"
                f"{config_text}"
            )
        except Exception:
            self._file.close()
            raise

    def _append(self, cols: Dict[str, np.ndarray]) -> None:
        self._tree.extend(cols)

    def _finish(self) -> None:
        self._file.close()


class HDF5Sink(BaseSink):
    def __init__(
        self,
        path: Path,
        *,
        tree_name: str = DEFAULT_TREE,
        title: str = DEFAULT_TITLE,
        flush_every: int = 100_000,
        config_text: str = "",
    ):
        super().__init__(path, flush_every)
        try:
            self._file = h5py.File(path, "w")
        except OSError as exc:
            raise InvalidSource(f"Could not open output file {path}: {exc}") from exc
        try:
            # Root attrs
            self._file.attrs["format_version"] = FORMAT_VERSION
            self._file.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
            self._file.attrs["software"] = SOFTWARE
            self._file.attrs["config_text"] = config_text

            self._grp = self._file.create_group(tree_name)
            self._grp.attrs["title"] = title
            for k in FIELDS:
                self._grp.create_dataset(
                    k, shape=(0,), maxshape=(None,), dtype=DTYPES[k],
                    chunks=True, compression="gzip",
                )
        except Exception:
            self._file.close()
            raise

    def _append(self, cols: Dict[str, np.ndarray]) -> None:
        n0 = self._grp["timeid"].shape[0]
        n = len(cols["timeid"])
        for k in FIELDS:
            dset = self._grp[k]
            dset.resize((n0 + n,))
            dset[n0:] = cols[k]

    def _finish(self) -> None:
        self._file.close()


def open_sink(
    path: str | Path,
    *,
    clobber: bool = False,
    tree_name: str = DEFAULT_TREE,
    title: str = DEFAULT_TITLE,
    flush_every: int = 100_000,
    config_text: str = "",
) -> BaseSink:
    """
    Create the output file. Refuses to replace an existing file unless clobber.
    """
    p = Path(path)
    if p.exists() and not clobber:
        raise OutputExistsError(
            f"Output file {p} exists. Use -c to overwrite existing output."
        )
    p.parent.mkdir(parents=True, exist_ok=True)

    kw = dict(tree_name=tree_name, title=title, flush_every=flush_every, config_text=config_text)
    suffix = p.suffix.lower()
    if suffix == ".root":
        return RootSink(p, **kw)
    if suffix in (".h5", ".hdf5"):
        return HDF5Sink(p, **kw)
    raise InvalidSource(f"Could not open output file {p}: unsupported suffix {p.suffix!r}")


def read_reduced(path: str | Path, tree_name: str = DEFAULT_TREE) -> Dict[str, np.ndarray]:
    """Read a reduced-event file back into column arrays."""
    p = Path(path)
    if p.suffix.lower() == ".root":
        with uproot.open(p) as f:
            return f[tree_name].arrays(list(FIELDS), library="np")
    with h5py.File(p, "r") as f:
        grp = f[tree_name]
        return {k: np.array(grp[k]) for k in FIELDS}
