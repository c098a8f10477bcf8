"""Demo dump utilities."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

import numpy as np

from .pipeline import CONFIG_FILE_NAME, DATA_FILE_NAME, STORAGE_FILE_NAME, DecodeResult, ReportOptions, run_decode
from .recorder.pages import PageHeader, erased_page, pack_page

DEMO_PAGE_SIZE = 512
DEMO_FREF = 16_000_000.0
DEMO_TARGET = 1000
DEMO_BASE_INTERVAL_MS = 1000
DEMO_RATIO = (1, 2)
DEMO_RECORDS_PER_PAGE = 20


def demo_settings() -> Dict[str, Any]:
    return {
        "Serial": 1001,
        "PMesureTime_ms": 1000,
        "TMesureTime_ms": 1000,
        "Fref": int(DEMO_FREF),
        "P_enabled": True,
        "T_enabled": True,
        "TCPUEnabled": True,
        "VBatEnabled": True,
        "P_Coefficients": {
            "Fp0": 32768.0,
            "Ft0": 30000.0,
            "A": [1.0, 0.0001, 0.0, 0.001, 1e-7, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        },
        "T_Coefficients": {"F0": 30000.0, "T0": 20.0, "C": [0.05, 0.0001, 0.0, 0.0, 0.0]},
        "PWorkRange": {"minimum": 0.0, "maximum": 10.0, "absolute_maximum": 15.0},
        "TWorkRange": {"minimum": -20.0, "maximum": 60.0},
        "PZeroCorrection": 0.0,
        "TZeroCorrection": 0.0,
        "calibration_date": {"Day": 1, "Month": 3, "Year": 2024},
        "writeConfig": {
            "BaseInterval_ms": DEMO_BASE_INTERVAL_MS,
            "PWriteDevider": DEMO_RATIO[0],
            "TWriteDevider": DEMO_RATIO[1],
        },
        "startDelay": 0,
        "pressureMeassureUnits": "Bar",
        "monitoring": {"Ovarpress": False, "Ovarheat": False, "CPUOvarheat": False, "OverPower": False},
    }


def _counters(freqs: np.ndarray) -> List[Tuple[int, int]]:
    results = np.rint(DEMO_FREF * DEMO_TARGET / freqs).astype(np.int64)
    return [(DEMO_TARGET, int(result)) for result in results]


def create_demo_dump(
    out_dir: Path,
    *,
    chains: int = 2,
    pages_per_chain: int = 3,
    corrupt: Tuple[int, int] | None = (1, 1),
    erased_tail: int = 2,
) -> Path:
    """
    Write ``data.hs``, ``config.var`` and ``storage.var`` into *out_dir*.

    Every chain starts with a session-start page; `corrupt` names the
    (chain, position) of a page whose CRC is spoiled. The dump ends with
    `erased_tail` blank flash pages.
    """

    rng = np.random.default_rng(42)
    out_dir.mkdir(parents=True, exist_ok=True)
    blob = bytearray()
    n_fp = DEMO_RECORDS_PER_PAGE
    n_ft = DEMO_RECORDS_PER_PAGE // DEMO_RATIO[1]
    block_id = 0

    for chain in range(chains):
        prev_id = 0
        for position in range(pages_per_chain):
            this_id = 0 if position == 0 else block_id
            ticks = np.arange(n_fp) + position * n_fp
            f_p = 32768.0 + 40.0 * np.sin(ticks / 15.0 + chain) + rng.normal(scale=0.05, size=n_fp)
            f_t = 30000.0 + 20.0 * np.cos(ticks[::2] / 40.0) + rng.normal(scale=0.05, size=n_ft)
            spoiled = corrupt is not None and (chain, position) == corrupt
            header = PageHeader(
                this_block_id=this_id,
                prev_block_id=prev_id,
                timestamp=position * n_fp * DEMO_BASE_INTERVAL_MS,
                base_interval_ms=DEMO_BASE_INTERVAL_MS,
                interleave_ratio=DEMO_RATIO,
                t_cpu=float(31.5 + rng.normal(scale=0.5)),
                v_bat=3.3,
                data_crc32=0xDEADBEEF if spoiled else 0,
            )
            blob += pack_page(header, _counters(f_p), _counters(f_t), DEMO_PAGE_SIZE, fix_crc=not spoiled)
            prev_id = this_id
            block_id += 1

    for _ in range(erased_tail):
        blob += erased_page(DEMO_PAGE_SIZE)

    total_pages = len(blob) // DEMO_PAGE_SIZE
    (out_dir / DATA_FILE_NAME).write_bytes(bytes(blob))
    (out_dir / CONFIG_FILE_NAME).write_text(json.dumps(demo_settings(), indent=2), encoding="utf-8")
    storage = {
        "FlashPageSize": DEMO_PAGE_SIZE,
        "FlashPages": total_pages,
        "FlashUsedPages": total_pages - erased_tail,
    }
    (out_dir / STORAGE_FILE_NAME).write_text(json.dumps(storage, indent=2), encoding="utf-8")
    return out_dir


def run_demo(out_dir: Path, options: ReportOptions = ReportOptions()) -> DecodeResult:
    src_dir = create_demo_dump(out_dir / "dump")
    return run_decode(src_dir, out_dir / "report", options)
