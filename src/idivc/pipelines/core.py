from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import typer

from tqdm import tqdm

from idivc.config.load import load_config
from idivc.config.schemas import Config
from idivc.errors import IdivcError, InputNameError, OutputExistsError
from idivc.io.calibration import load_calibration
from idivc.io.containers import SUPPORTED_SUFFIXES, BranchNames
from idivc.io.reader import SequentialMultiFileReader
from idivc.io.sinks import open_sink
from idivc.physics.channel_map import ChannelMap
from idivc.physics.reduction import EventReductionEngine
from idivc.pipelines.signals import install_fast_exit, restore_default_handlers


@dataclass
class RunSummary:
    output_path: Path
    n_available: int
    n_written: int
    n_calibrated: int
    n_id_hits: int = 0
    n_iv_hits: int = 0


def check_input_name(path: str | Path) -> None:
    """Input files must look like *base*.root (or *base*.h5 / *base*.hdf5)."""
    name = Path(path).name
    if "base" not in name:
        raise InputNameError(f'File name {path} does not contain "base"')
    if not name.lower().endswith(SUPPORTED_SUFFIXES):
        raise InputNameError(f"File name {path} does not end in one of {', '.join(SUPPORTED_SUFFIXES)}")


def _branch_names(cfg: Config) -> BranchNames:
    return BranchNames(
        hit_tree=cfg.input.hit_tree,
        tstart=cfg.input.tstart_branch,
        sensor=cfg.input.sensor_branch,
        reco_tree=cfg.input.reco_tree,
    )


def run_pipeline(cfg: Config) -> RunSummary:
    """
    Calibrate and reduce every input event, writing one record per event.

    Order of operations:
      1. validate paths (input names, output overwrite policy)
      2. load the calibration table and (for channel-map revisions) the map
      3. open all inputs, cross-checking entry counts
      4. create the output and reduce events 0..n-1 in order

    Any IdivcError aborts the run; an output file already created is removed.
    """
    diag_level = cfg.run.diagnostics_level
    if not cfg.output.path:
        raise ValueError("no output path configured")
    if not cfg.calibration.path:
        raise ValueError("no calibration path configured")
    if not cfg.input.files:
        raise ValueError("no input files configured")

    out_path = Path(cfg.output.path)

    # Basic logging
    if diag_level >= 1:
        print(f"[run] timing={cfg.calibration.path} -> output={out_path}")
        print(f"[run] {len(cfg.input.files)} input file(s), max_events={cfg.run.max_events or 'all'}")

    if cfg.input.require_base_names:
        for f in cfg.input.files:
            check_input_name(f)
    if out_path.exists() and not cfg.run.clobber:
        raise OutputExistsError(
            f"Output file {out_path} exists. Use -c to overwrite existing output."
        )

    table = load_calibration(
        cfg.calibration.path, cfg.calibration.graph_name, diagnostics_level=diag_level
    )
    channel_map = None
    if cfg.input.sensor_branch is None:
        channel_map = ChannelMap.resolve(cfg.detector.channel_map)
        if diag_level >= 2:
            print(f"[run] channel map revision {channel_map.revision!r}, "
                  f"{len(channel_map.channels)} channels, "
                  f"disconnected={channel_map.disconnected_channels()}")
    engine = EventReductionEngine.from_table(table, channel_map=channel_map)

    reader = SequentialMultiFileReader(
        _branch_names(cfg), chunk_size=cfg.run.chunk_size, diagnostics_level=diag_level
    )
    with reader:
        n_available = reader.open(cfg.input.files)
        n = n_available
        if cfg.run.max_events and n_available > cfg.run.max_events:
            n = cfg.run.max_events

        sink = open_sink(
            out_path,
            clobber=cfg.run.clobber,
            tree_name=cfg.output.tree_name,
            title=cfg.output.title,
            flush_every=cfg.output.flush_every,
            config_text=cfg.model_dump_json(),
        )
        summary = RunSummary(
            output_path=out_path,
            n_available=n_available,
            n_written=0,
            n_calibrated=table.accepted,
        )

        if diag_level >= 1:
            print(f"[pipeline] Working on {n} of {n_available} events...")
        # NOTE: events are read strictly in order starting at zero.
        try:
            for i in tqdm(range(n), desc="IDIVC", unit="ev", disable=not cfg.run.progress):
                out = engine.reduce(reader.read_event(i))
                sink.write(out)
                summary.n_id_hits += out.has_id_hit
                summary.n_iv_hits += out.has_iv_hit
            sink.close()
        except Exception:
            sink.close()
            out_path.unlink(missing_ok=True)
            raise

    summary.n_written = sink.n_written
    if diag_level >= 1:
        print(f"[pipeline] All done: wrote {summary.n_written} events "
              f"({summary.n_id_hits} with ID light, {summary.n_iv_hits} with IV light)")
    return summary


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="IDIVC: The Inner Detector Inner Veto Event Time Corrector",
    add_completion=False,
)


@app.command()
def main(
    files: Optional[List[str]] = typer.Argument(
        None,
        help="One or more *base*.root (or .h5) input files, in event order",
        show_default=False,
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file (.root or .h5)",
    ),
    timing: Optional[str] = typer.Option(
        None, "--timing", "-t", help="Timing calibration file holding the offset table",
    ),
    max_events: Optional[int] = typer.Option(
        None, "--max-events", "-n", min=0, help="Process at most this many events (0 = all)",
    ),
    clobber: bool = typer.Option(
        False, "--clobber", "-c", help="Overwrite existing output file",
    ),
    config: Optional[str] = typer.Option(
        None, "--config", help="TOML config file; command-line flags override it",
    ),
    channel_map: Optional[str] = typer.Option(
        None, "--channel-map", help="Channel map revision name or TOML path",
    ),
    name_check: Optional[bool] = typer.Option(
        None, "--name-check / --no-name-check", help="Require *base* in input file names",
    ),
    progress: Optional[bool] = typer.Option(
        None, "--progress / --no-progress", help="Show a progress bar",
    ),
    diagnostics: Optional[int] = typer.Option(
        None, "--diagnostics", "-d", min=0, max=2, help="0=quiet, 1=minimal, 2=verbose",
    ),
):
    """
    Correct hit start times with a timing calibration and write, per event,
    the earliest ID and IV times and the PMTs that saw them.
    """
    try:
        cfg = load_config(config)
    except (OSError, ValueError) as exc:
        typer.echo(f"Could not load config {config}: {exc}", err=True)
        raise typer.Exit(1)

    # ---- apply CLI overrides on top of TOML ----
    if files:
        cfg.input.files = list(files)
    if output is not None:
        cfg.output.path = output
    if timing is not None:
        cfg.calibration.path = timing
    if max_events is not None:
        cfg.run.max_events = max_events
    if clobber:
        cfg.run.clobber = True
    if channel_map is not None:
        cfg.detector.channel_map = channel_map
    if name_check is not None:
        cfg.input.require_base_names = name_check
    if progress is not None:
        cfg.run.progress = progress
    if diagnostics is not None:
        cfg.run.diagnostics_level = diagnostics

    if not cfg.calibration.path:
        raise typer.BadParameter("You must give a timing file name with -t", param_hint="'-t'")
    if not cfg.output.path:
        raise typer.BadParameter("You must give an output file name with -o", param_hint="'-o'")
    if not cfg.input.files:
        raise typer.BadParameter("Please give at least one base.root file.", param_hint="FILES")

    install_fast_exit()
    try:
        summary = run_pipeline(cfg)
    except IdivcError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(1)
    finally:
        restore_default_handlers()
    typer.echo(str(summary.output_path))


if __name__ == "__main__":
    app()
