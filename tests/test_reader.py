from pathlib import Path

import numpy as np
import pytest
import uproot

from idivc.errors import IdivcError, IntegrityError, InvalidSource, SequentialAccessError
from idivc.io.containers import BranchNames
from idivc.io.reader import SequentialMultiFileReader

from conftest import HIT_TREE, SENSOR, TSTART, numbered_hits, write_h5_container


def _two_files(tmp_path: Path, reco=(100, 50)):
    a = write_h5_container(tmp_path / "a_base.h5", numbered_hits(100), reco_entries=reco[0])
    b = write_h5_container(tmp_path / "b_base.h5", numbered_hits(50, first=100), reco_entries=reco[1])
    return [a, b]


def test_open_reports_total(tmp_path, reco_names):
    with SequentialMultiFileReader(reco_names, diagnostics_level=0) as reader:
        assert reader.open(_two_files(tmp_path)) == 150
        assert reader.total == 150
        assert [m.start for m in reader.manifest] == [0, 100]
        assert [m.stop for m in reader.manifest] == [100, 150]


def test_reconciliation_mismatch_is_fatal(tmp_path, reco_names):
    reader = SequentialMultiFileReader(reco_names, diagnostics_level=0)
    with pytest.raises(IntegrityError):
        reader.open(_two_files(tmp_path, reco=(100, 49)))
    assert reader.manifest == []


def test_missing_reconciliation_tree(tmp_path, reco_names):
    p = write_h5_container(tmp_path / "a_base.h5", numbered_hits(5))
    with pytest.raises(IntegrityError):
        SequentialMultiFileReader(reco_names, diagnostics_level=0).open([p])


def test_no_reconciliation_tree_configured(tmp_path, names):
    files = _two_files(tmp_path, reco=(1, 1))
    with SequentialMultiFileReader(names, diagnostics_level=0) as reader:
        assert reader.open(files) == 150


def test_sequential_read_switches_container_once(tmp_path, reco_names):
    with SequentialMultiFileReader(reco_names, chunk_size=16, diagnostics_level=0) as reader:
        reader.open(_two_files(tmp_path))
        switched_at = []
        last = reader.container_index
        for i in range(150):
            ev = reader.read_event(i)
            assert ev.tstart[0] == i + 1
            if reader.container_index != last:
                switched_at.append(i)
                last = reader.container_index
        assert switched_at == [100]
        assert reader.transitions == 1
        assert reader.current_path.name == "b_base.h5"


def test_jump_across_containers_is_refused(tmp_path, names):
    with SequentialMultiFileReader(names, diagnostics_level=0) as reader:
        reader.open(_two_files(tmp_path))
        reader.read_event(0)
        with pytest.raises(SequentialAccessError):
            reader.read_event(120)


def test_random_reads_inside_current_container(tmp_path, names):
    with SequentialMultiFileReader(names, chunk_size=8, diagnostics_level=0) as reader:
        reader.open(_two_files(tmp_path))
        for i in (0, 50, 10, 99, 3):
            assert reader.read_event(i).tstart[0] == i + 1


def test_index_zero_rewinds(tmp_path, names):
    with SequentialMultiFileReader(names, diagnostics_level=0) as reader:
        reader.open(_two_files(tmp_path))
        for i in range(120):
            reader.read_event(i)
        assert reader.container_index == 1
        assert reader.read_event(0).tstart[0] == 1
        assert reader.container_index == 0
        with pytest.raises(SequentialAccessError):
            reader.read_event(110)
        # explicit rewind works the same way
        reader.rewind()
        assert [ev.tstart[0] for ev in reader.iter_events(limit=3)] == [1, 2, 3]


def test_out_of_range_index(tmp_path, names):
    with SequentialMultiFileReader(names, diagnostics_level=0) as reader:
        reader.open(_two_files(tmp_path))
        with pytest.raises(SequentialAccessError):
            reader.read_event(150)
        with pytest.raises(SequentialAccessError):
            reader.read_event(-1)


def test_empty_containers_are_skipped(tmp_path, names):
    files = [
        write_h5_container(tmp_path / "0_base.h5", numbered_hits(0)),
        write_h5_container(tmp_path / "1_base.h5", numbered_hits(10)),
        write_h5_container(tmp_path / "2_base.h5", numbered_hits(0)),
        write_h5_container(tmp_path / "3_base.h5", numbered_hits(5, first=10)),
    ]
    with SequentialMultiFileReader(names, diagnostics_level=0) as reader:
        assert reader.open(files) == 15
        assert [ev.tstart[0] for ev in reader] == list(range(1, 16))
        assert reader.transitions == 1


def test_events_are_fresh_objects(tmp_path, names):
    with SequentialMultiFileReader(names, diagnostics_level=0) as reader:
        reader.open(_two_files(tmp_path))
        ev0 = reader.read_event(0)
        ev0.tstart[0] = -5.0
        ev1 = reader.read_event(1)
        assert ev1.tstart[0] == 2
        assert reader.read_event(0).tstart[0] == 1


def test_explicit_sensor_branch(tmp_path):
    tstart = numbered_hits(4)
    sensor = np.full((4, 520), -1, dtype=np.int32)
    sensor[:, 0] = [10, 11, 12, 13]
    p = write_h5_container(tmp_path / "x_base.h5", tstart, sensor=sensor)
    names = BranchNames(hit_tree=HIT_TREE, tstart=TSTART, sensor=SENSOR)
    with SequentialMultiFileReader(names, diagnostics_level=0) as reader:
        reader.open([p])
        ev = reader.read_event(2)
        assert ev.has_explicit_ids
        assert ev.sensor[0] == 12 and ev.sensor[1] == -1


def test_missing_sensor_branch(tmp_path):
    p = write_h5_container(tmp_path / "x_base.h5", numbered_hits(4))
    names = BranchNames(hit_tree=HIT_TREE, tstart=TSTART, sensor=SENSOR)
    with pytest.raises(IntegrityError):
        SequentialMultiFileReader(names, diagnostics_level=0).open([p])


def test_missing_file(tmp_path, names):
    good = write_h5_container(tmp_path / "a_base.h5", numbered_hits(3))
    with pytest.raises(InvalidSource) as excinfo:
        SequentialMultiFileReader(names, diagnostics_level=0).open([good, tmp_path / "gone_base.h5"])
    # not an integrity problem, but still part of the package error family
    assert not isinstance(excinfo.value, IntegrityError)
    assert isinstance(excinfo.value, IdivcError)


def test_missing_hit_tree(tmp_path):
    p = write_h5_container(tmp_path / "a_base.h5", numbered_hits(3))
    names = BranchNames(hit_tree="PulseSlideWinInfoTree", tstart=TSTART)
    with pytest.raises(IntegrityError):
        SequentialMultiFileReader(names, diagnostics_level=0).open([p])


def test_wrong_slot_count(tmp_path, names):
    p = write_h5_container(tmp_path / "a_base.h5", np.ones((3, 100)))
    with SequentialMultiFileReader(names, diagnostics_level=0) as reader:
        reader.open([p])
        with pytest.raises(IntegrityError):
            reader.read_event(0)


def test_no_files(names):
    with pytest.raises(ValueError):
        SequentialMultiFileReader(names).open([])


def test_root_containers(tmp_path):
    files = []
    for k, (n, first) in enumerate([(30, 0), (20, 30)]):
        p = tmp_path / f"run{k}_base.root"
        with uproot.recreate(p) as f:
            f[HIT_TREE] = {TSTART: numbered_hits(n, first=first)}
            f["reco"] = {"evnum": np.arange(n, dtype=np.int64)}
        files.append(p)

    names = BranchNames(hit_tree=HIT_TREE, tstart=TSTART, reco_tree="reco")
    with SequentialMultiFileReader(names, chunk_size=7, diagnostics_level=0) as reader:
        assert reader.open(files) == 50
        assert [ev.tstart[0] for ev in reader] == list(range(1, 51))
        assert reader.transitions == 1
