"""Plotting helpers for decoded recording sessions."""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, Sequence

import pandas as pd

from .recorder.chains import Chain

REPORT_PREAMBLE_LINES = 6


def load_chain_frame(chain_dir: Path) -> pd.DataFrame:
    """Concatenate the page reports of one chain directory in file-name order."""

    frames: List[pd.DataFrame] = []
    for path in sorted(chain_dir.glob("*.csv")):
        if path.stem.endswith("-corrupted"):
            continue
        df = pd.read_csv(path, sep=";", skiprows=REPORT_PREAMBLE_LINES)
        frames.append(df)
    if not frames:
        return pd.DataFrame()
    data = pd.concat(frames, ignore_index=True)
    data["elapsed_h"] = pd.to_timedelta(data["time"]).dt.total_seconds() / 3600.0
    return data


def generate_plots(chains: Sequence[Chain], output_dir: Path) -> List[Path]:
    plt = _require_matplotlib()
    written: List[Path] = []
    for chain in chains:
        chain_dir = output_dir / chain.name
        data = load_chain_frame(chain_dir)
        if data.empty:
            continue
        out_path = chain_dir / "plot.png"
        _plot_chain(plt, data, chain, out_path)
        written.append(out_path)
    return written


def _plot_chain(plt: Any, data: pd.DataFrame, chain: Chain, out_path: Path) -> None:
    pressure_col = next(col for col in data.columns if col.startswith("pressure, "))
    fig, (ax_p, ax_t) = plt.subplots(2, 1, figsize=(12, 6), sharex=True)

    ax_p.plot(data["elapsed_h"], data[pressure_col], color="tab:blue")
    ax_p.set_title(f"Session {chain.number}")
    ax_p.set_ylabel(pressure_col.capitalize())

    ax_t.plot(data["elapsed_h"], data["temperature, *C"], color="tab:orange")
    ax_t.set_ylabel("Temperature, °C")
    ax_t.set_xlabel("Time since session start [h]")

    fig.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)


def _require_matplotlib() -> Any:
    """pyplot on the Agg backend; `RuntimeError` when plots cannot be drawn here."""

    try:
        import matplotlib
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is not installed; install srdecode[plot]") from exc
    matplotlib.use("Agg")
    try:
        import matplotlib.pyplot as plt  # type: ignore
    except OSError as exc:  # pragma: no cover - unwritable config or font cache
        raise RuntimeError(f"matplotlib could not start: {exc}") from exc
    return plt
