from pathlib import Path

import h5py
import numpy as np
import pytest
from typer.testing import CliRunner

from idivc.config.schemas import Config
from idivc.errors import InputNameError, IntegrityError, OutputExistsError
from idivc.io.calibration import load_calibration
from idivc.io.sinks import read_reduced
from idivc.physics.channel_map import ChannelMap
from idivc.physics.events import RawEvent
from idivc.physics.reduction import EventReductionEngine
from idivc.pipelines.core import app, check_input_name, run_pipeline

from conftest import HIT_TREE, TSTART, write_h5_calibration, write_h5_container

runner = CliRunner()


def _random_hits(n: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    t = rng.uniform(50.0, 400.0, size=(n, 520))
    # most slots carry no hit
    t[rng.random((n, 520)) < 0.9] = 0.0
    return t


@pytest.fixture
def run_files(tmp_path: Path):
    inputs = [
        write_h5_container(tmp_path / "run1_base.h5", _random_hits(30, 1), reco_entries=30),
        write_h5_container(tmp_path / "run2_base.h5", _random_hits(25, 2), reco_entries=25),
    ]
    sensors = np.arange(468)
    values = np.where(sensors % 5 == 0, 0.0, (sensors % 17) - 8.0 + 0.5)
    errors = np.full(468, 0.2)
    timing = write_h5_calibration(tmp_path / "timing.h5", sensors, values, errors)
    return inputs, timing


def _cfg(inputs, timing, out, **run) -> Config:
    return Config(
        run={"progress": False, "diagnostics_level": 0, **run},
        input={"files": [str(p) for p in inputs], "hit_tree": HIT_TREE, "tstart_branch": TSTART,
               "reco_tree": "reco"},
        calibration={"path": str(timing)},
        output={"path": str(out), "flush_every": 4},
    )


def _expected(inputs, timing, n):
    engine = EventReductionEngine.from_table(
        load_calibration(timing, diagnostics_level=0), channel_map=ChannelMap.builtin()
    )
    rows = []
    for p in inputs:
        with h5py.File(p, "r") as f:
            rows.extend(np.array(f[HIT_TREE][TSTART]))
    return [engine.reduce(RawEvent(tstart=r)).as_tuple() for r in rows[:n]]


def _as_rows(cols):
    return list(zip(cols["timeid"], cols["timeiv"], cols["firstidpmt"], cols["firstivpmt"]))


def test_limited_run_writes_first_events_in_order(tmp_path, run_files):
    inputs, timing = run_files
    out = tmp_path / "out.h5"
    summary = run_pipeline(_cfg(inputs, timing, out, max_events=10))
    assert summary.n_available == 55
    assert summary.n_written == 10
    cols = read_reduced(out)
    assert len(cols["timeid"]) == 10
    assert _as_rows(cols) == _expected(inputs, timing, 10)


def test_full_run_crosses_files(tmp_path, run_files):
    inputs, timing = run_files
    out = tmp_path / "out.root"
    summary = run_pipeline(_cfg(inputs, timing, out))
    assert summary.n_written == 55
    assert summary.n_calibrated > 0
    rows = _as_rows(read_reduced(out))
    assert rows == _expected(inputs, timing, 55)
    assert summary.n_id_hits == sum(r[2] != -1 for r in rows)


def test_limit_larger_than_input(tmp_path, run_files):
    inputs, timing = run_files
    summary = run_pipeline(_cfg(inputs, timing, tmp_path / "out.h5", max_events=1000))
    assert summary.n_written == 55


def test_integrity_failure_leaves_no_output(tmp_path, run_files):
    inputs, timing = run_files
    bad = write_h5_container(tmp_path / "run3_base.h5", _random_hits(5, 3), reco_entries=4)
    out = tmp_path / "out.h5"
    with pytest.raises(IntegrityError):
        run_pipeline(_cfg(inputs + [bad], timing, out))
    assert not out.exists()


def test_existing_output_needs_clobber(tmp_path, run_files):
    inputs, timing = run_files
    out = tmp_path / "out.h5"
    out.write_text("previous run")
    with pytest.raises(OutputExistsError):
        run_pipeline(_cfg(inputs, timing, out))
    assert out.read_text() == "previous run"
    assert run_pipeline(_cfg(inputs, timing, out, clobber=True)).n_written == 55


def test_input_name_convention():
    check_input_name("/data/run00123_base.root")
    check_input_name("base.h5")
    with pytest.raises(InputNameError):
        check_input_name("/data/run00123.root")
    with pytest.raises(InputNameError):
        check_input_name("/data/run00123_base.txt")


def _cli_args(inputs, timing, out, *extra):
    return ["-o", str(out), "-t", str(timing), "-d", "0", "--no-progress", *extra,
            *[str(p) for p in inputs]]


def _cli_config(tmp_path):
    p = tmp_path / "idivc.toml"
    p.write_text(f'[input]\nhit_tree = "{HIT_TREE}"\ntstart_branch = "{TSTART}"\nreco_tree = "reco"\n')
    return str(p)


def test_cli_run(tmp_path, run_files):
    inputs, timing = run_files
    out = tmp_path / "cli.h5"
    result = runner.invoke(app, _cli_args(inputs, timing, out, "--config", _cli_config(tmp_path), "-n", "10"))
    assert result.exit_code == 0, result.output
    assert len(read_reduced(out)["timeid"]) == 10


def test_cli_refuses_existing_output(tmp_path, run_files):
    inputs, timing = run_files
    out = tmp_path / "cli.h5"
    out.write_text("x")
    result = runner.invoke(app, _cli_args(inputs, timing, out, "--config", _cli_config(tmp_path)))
    assert result.exit_code == 1
    assert "exists" in result.output

    result = runner.invoke(app, _cli_args(inputs, timing, out, "--config", _cli_config(tmp_path), "-c"))
    assert result.exit_code == 0, result.output


def test_cli_missing_required_paths(tmp_path, run_files):
    inputs, timing = run_files
    result = runner.invoke(app, ["-t", str(timing), *[str(p) for p in inputs]])
    assert result.exit_code != 0
    result = runner.invoke(app, ["-o", str(tmp_path / "o.h5"), *[str(p) for p in inputs]])
    assert result.exit_code != 0
    result = runner.invoke(app, ["-o", str(tmp_path / "o.h5"), "-t", str(timing)])
    assert result.exit_code != 0
    assert not (tmp_path / "o.h5").exists()


def test_cli_bad_event_count(tmp_path, run_files):
    inputs, timing = run_files
    result = runner.invoke(app, _cli_args(inputs, timing, tmp_path / "o.h5", "-n", "ten"))
    assert result.exit_code != 0
    assert not (tmp_path / "o.h5").exists()


def test_cli_bad_timing_file(tmp_path, run_files):
    inputs, _ = run_files
    result = runner.invoke(
        app, _cli_args(inputs, tmp_path / "missing.root", tmp_path / "o.h5", "--config", _cli_config(tmp_path))
    )
    assert result.exit_code == 1
    assert "missing.root" in result.output


def test_cli_bad_input_name(tmp_path, run_files):
    inputs, timing = run_files
    renamed = tmp_path / "run1.h5"
    inputs[0].rename(renamed)
    result = runner.invoke(app, _cli_args([renamed], timing, tmp_path / "o.h5", "--config", _cli_config(tmp_path)))
    assert result.exit_code == 1
    result = runner.invoke(
        app, _cli_args([renamed], timing, tmp_path / "o.h5", "--config", _cli_config(tmp_path), "--no-name-check")
    )
    assert result.exit_code == 0, result.output
