"""Command line interface for the srdecode package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .demo import run_demo
from .pipeline import LAYOUTS, DecodeResult, ReportOptions, load_inputs, run_decode
from .plotting import generate_plots
from .recorder.chains import detect_chains
from .recorder.pages import PageUnpacker
from .reporting import PageKind, classify_page, format_duration

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Decoder for self-recorder flash dumps.",
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug details."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def decode(
    src: Optional[Path] = typer.Argument(
        None, help="Input directory with data.hs, config.var and storage.var (default: current directory)."
    ),
    dest: Optional[Path] = typer.Option(
        None, "--dest", "-d", help="Destination directory for output files (default: current directory)."
    ),
    save_freq: bool = typer.Option(False, "--save-freq", help="Add raw resonator frequencies to every row."),
    layout: str = typer.Option("chains", "--layout", help="Output layout: chains|flat."),
    keep_leading: bool = typer.Option(
        False, "--keep-leading", help="Report pages preceding the first session start as their own chain."
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-j", min=1, help="Worker threads (default: CPU count)."),
    override: Optional[list[str]] = typer.Option(
        None,
        "--set",
        help="Override settings keys, e.g. --set P_enabled=false --set pressureMeassureUnits=PSI",
    ),
    plot: bool = typer.Option(False, "--plot", help="Render a PNG per chain (requires matplotlib)."),
) -> None:
    """Decode a dump into per-page calibrated reports."""

    if layout.lower() not in LAYOUTS:
        raise typer.BadParameter(f"Expected one of {list(LAYOUTS)}", param_hint="--layout")
    src_dir = _resolve_dir(src, "Input")
    dest_dir = _resolve_dir(dest, "Output")
    options = ReportOptions(
        save_freq=save_freq,
        layout=layout.lower(),
        include_leading=keep_leading,
        workers=workers,
    )
    try:
        result = run_decode(src_dir, dest_dir, options, override)
    except (ValueError, OSError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if plot and options.layout != "chains":
        typer.echo("[warning] plotting skipped: plots are drawn per chain, use --layout chains")
    elif plot:
        try:
            generate_plots(result.chains, dest_dir)
        except RuntimeError as exc:
            typer.echo(f"[warning] plotting skipped: {exc}")

    _echo_totals(result)
    typer.echo(f"Reports written to {dest_dir}")


@app.command()
def inspect(
    src: Optional[Path] = typer.Argument(None, help="Input directory (default: current directory)."),
    override: Optional[list[str]] = typer.Option(None, "--set", help="Override settings keys."),
) -> None:
    """Print dump geometry and session chains without writing reports."""

    src_dir = _resolve_dir(src, "Input")
    try:
        inputs = load_inputs(src_dir, override)
    except (ValueError, OSError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    settings = inputs.settings
    storage = inputs.storage
    pages = PageUnpacker(storage.flash_page_size, settings.fref).unpack(inputs.data)
    typer.echo(f"Serial: {settings.serial}")
    typer.echo(f"Calibration date: {settings.calibration_date or 'n/a'}")
    typer.echo(f"Pressure unit: {settings.pressure_unit.label}")
    typer.echo(f"Page size: {storage.flash_page_size} bytes")
    typer.echo(f"Pages: {len(pages)} (used according to storage: {storage.flash_used_pages})")
    if settings.monitoring.is_set():
        typer.echo("Monitoring alarms are enabled")
    for chain in detect_chains(pages):
        kinds = [classify_page(pages[index]) for index in chain.indices()]
        first = pages[chain.start].header
        typer.echo(
            f"{chain.name}: pages {chain.start}..{chain.stop - 1} "
            f"start={format_duration(first.timestamp)} "
            f"reportable={kinds.count(PageKind.REPORTABLE)} "
            f"corrupted={kinds.count(PageKind.CORRUPTED)} "
            f"empty={kinds.count(PageKind.EMPTY)}"
        )


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo dump and reports."),
    save_freq: bool = typer.Option(False, "--save-freq", help="Add raw resonator frequencies to every row."),
) -> None:
    """Generate a synthetic dump and decode it."""

    result = run_demo(out_dir, ReportOptions(save_freq=save_freq))
    _echo_totals(result)
    typer.echo(f"Demo dump and reports written to {out_dir}")


def _resolve_dir(path: Optional[Path], direction: str) -> Path:
    if path is not None:
        typer.echo(f"{direction} directory: {path}")
        return path
    current = Path.cwd()
    typer.echo(f"{direction} directory not specified, using current: {current}")
    return current


def _echo_totals(result: DecodeResult) -> None:
    typer.echo(
        f"Chains: {len(result.chains)}, "
        f"reports: {result.count(PageKind.REPORTABLE)}, "
        f"corrupted: {result.count(PageKind.CORRUPTED)}, "
        f"empty: {result.count(PageKind.EMPTY)}"
    )


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
