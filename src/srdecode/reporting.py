"""Report writers for decoded pages and recording sessions."""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .recorder.calibration import CalibrationEngine
from .recorder.chains import Chain
from .recorder.interleave import SampleReconstructor
from .recorder.pages import RawPage

CORRUPTED_MARKER = b"data corrupted"
SUMMARY_FILE = "sessions.csv"


class PageKind(str, enum.Enum):
    REPORTABLE = "reportable"
    CORRUPTED = "corrupted"
    EMPTY = "empty"


@dataclass(frozen=True)
class PageOutcome:
    """What happened to one page of the dump."""

    index: int
    chain: int
    position: int
    block_id: int
    kind: PageKind
    path: Optional[Path]
    samples: int = 0


def classify_page(page: RawPage) -> PageKind:
    if page.consistent:
        return PageKind.REPORTABLE
    if page.header.is_empty():
        return PageKind.EMPTY
    return PageKind.CORRUPTED


def format_duration(ms: int) -> str:
    """Render milliseconds as ``HH:MM:SS.mmm`` (``<d> days `` prefix past 24h)."""

    days, rem = divmod(int(ms), 86_400_000)
    hours, rem = divmod(rem, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds, millis = divmod(rem, 1000)
    text = f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"
    return f"{days} days {text}" if days else text


def format_f32(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    return np.format_float_positional(np.float32(value), trim="-")


def artifact_name(page: RawPage, position: Optional[int], kind: PageKind) -> str:
    """
    File name for a page artifact.

    With a chain `position` the name is prefixed by the zero-padded position so
    a lexical sort restores page order, and a session-start page is tagged
    ``start``. Without one, the flat ``<id>-0x<CRC>`` naming is used.
    """

    header = page.header
    suffix = "-corrupted" if kind is PageKind.CORRUPTED else ""
    if position is None:
        return f"{header.this_block_id}-0x{header.data_crc32:08X}{suffix}.csv"
    ident = "start" if header.is_initial() else str(header.this_block_id)
    return f"{position:06d}-{ident}-0x{header.data_crc32:08X}{suffix}.csv"


def page_frame(page: RawPage, engine: CalibrationEngine, *, save_freq: bool = False) -> pd.DataFrame:
    """Calibrated sample table of one consistent page, columns in report order."""

    samples = SampleReconstructor.from_page(page).to_frame()
    pressure, temperature = engine.apply(samples["fp_freq"].to_numpy(), samples["ft_freq"].to_numpy())
    unit = engine.profile.unit.label
    columns = {
        "time": [format_duration(ms) for ms in samples["wall_time_ms"]],
        f"pressure, {unit}": pressure,
        "temperature, *C": temperature,
    }
    if save_freq:
        columns["pressure frequency, Hz"] = samples["fp_freq"].to_numpy()
        columns["temperature frequency, Hz"] = samples["ft_freq"].to_numpy()
    return pd.DataFrame(columns)


def write_page_report(
    page: RawPage,
    engine: CalibrationEngine,
    path: Path,
    *,
    save_freq: bool = False,
) -> int:
    """Write the report of one consistent page to *path*; return the row count."""

    header = page.header
    lines: list[str] = []
    if header.is_initial():
        lines.append(f"start page;{header.this_block_id}")
    else:
        lines.append(f"page {header.this_block_id};previous {header.prev_block_id}")
    lines.append(f"page start time;{format_duration(header.timestamp)}")
    lines.append(f"base interval;{header.base_interval_ms};ms")
    lines.append(f"CPU temperature;{format_f32(header.t_cpu)};*C")
    lines.append(f"battery voltage;{format_f32(header.v_bat)};V")
    lines.append("")

    df = page_frame(page, engine, save_freq=save_freq)
    with path.open("w", newline="", encoding="utf-8") as fh:
        fh.write("\n".join(lines) + "\n")
        df.to_csv(fh, sep=";", index=False, float_format="%.6f", na_rep="NaN", lineterminator="\n")
    return len(df)


def write_corrupted_marker(path: Path) -> None:
    path.write_bytes(CORRUPTED_MARKER)


def write_session_summary(
    outcomes: Sequence[PageOutcome],
    chains: Sequence[Chain],
    pages: Sequence[RawPage],
    output_dir: Path,
) -> Path:
    """Persist one row per chain to ``sessions.csv`` in *output_dir*."""

    rows: list[dict[str, object]] = []
    by_chain: dict[int, list[PageOutcome]] = {}
    for outcome in outcomes:
        by_chain.setdefault(outcome.chain, []).append(outcome)
    for chain in chains:
        members = by_chain.get(chain.number, [])
        first = pages[chain.start].header
        rows.append(
            {
                "chain": chain.number,
                "first_block_id": first.this_block_id,
                "start_time": format_duration(first.timestamp),
                "pages": len(chain),
                "reportable": sum(1 for o in members if o.kind is PageKind.REPORTABLE),
                "corrupted": sum(1 for o in members if o.kind is PageKind.CORRUPTED),
                "empty": sum(1 for o in members if o.kind is PageKind.EMPTY),
                "samples": sum(o.samples for o in members),
            }
        )
    columns = ["chain", "first_block_id", "start_time", "pages", "reportable", "corrupted", "empty", "samples"]
    df = pd.DataFrame(rows, columns=columns)
    out_path = output_dir / SUMMARY_FILE
    df.to_csv(out_path, index=False, lineterminator="\n")
    return out_path
