from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from srdecode import pipeline
from srdecode.demo import create_demo_dump, demo_settings
from srdecode.pipeline import ReportOptions, process_pages, run_decode
from srdecode.recorder.calibration import CalibrationEngine
from srdecode.recorder.config import AppSettings, load_settings
from srdecode.recorder.pages import NO_DATA_ID, PageHeader, PageUnpacker, erased_page, pack_page
from srdecode.reporting import CORRUPTED_MARKER, SUMMARY_FILE, PageKind, classify_page, format_duration


@pytest.fixture()
def dump_dir(tmp_path: Path) -> Path:
    return create_demo_dump(tmp_path / "dump")


def _read_report(path: Path) -> pd.DataFrame:
    return pd.read_csv(path, sep=";", skiprows=6)


def _page_files(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir() if p.suffix == ".csv")


def test_run_decode_writes_chain_directories(dump_dir: Path, tmp_path: Path) -> None:
    out = tmp_path / "report"
    result = run_decode(dump_dir, out, ReportOptions(workers=2))

    assert [(c.start, c.stop) for c in result.chains] == [(0, 3), (3, 8)]
    assert result.count(PageKind.REPORTABLE) == 5
    assert result.count(PageKind.CORRUPTED) == 1
    assert result.count(PageKind.EMPTY) == 2
    assert result.unpack_stats["crc_errors"] == 1

    first = _page_files(out / "chain-0001")
    assert len(first) == 3
    assert first[0].startswith("000000-start-0x")
    assert first[1].startswith("000001-1-0x")
    assert first[2].startswith("000002-2-0x")

    second = _page_files(out / "chain-0002")
    assert "000001-4-0xDEADBEEF-corrupted.csv" in second
    assert (out / "chain-0002" / "000001-4-0xDEADBEEF-corrupted.csv").read_bytes() == CORRUPTED_MARKER
    assert len(second) == 3


def test_report_layout(dump_dir: Path, tmp_path: Path) -> None:
    out = tmp_path / "report"
    run_decode(dump_dir, out)
    chain_dir = out / "chain-0001"
    start, following, _ = sorted(chain_dir.iterdir())

    lines = start.read_text(encoding="utf-8").split("\n")
    assert lines[0] == "start page;0"
    assert lines[1] == "page start time;00:00:00.000"
    assert lines[2] == "base interval;1000;ms"
    assert lines[3].startswith("CPU temperature;") and lines[3].endswith(";*C")
    assert lines[4] == "battery voltage;3.3;V"
    assert lines[5] == ""
    assert lines[6] == "time;pressure, Bar;temperature, *C"
    assert lines[7].startswith("00:00:00.000;")
    # six preamble lines, the column header, 20 rows and the trailing newline
    assert len(lines) == 28 and lines[-1] == ""

    other = following.read_text(encoding="utf-8").split("\n")
    assert other[0] == "page 1;previous 0"
    assert other[1] == "page start time;00:00:20.000"


def test_report_values_match_calibration(dump_dir: Path, tmp_path: Path) -> None:
    out = tmp_path / "report"
    result = run_decode(dump_dir, out)
    settings = load_settings(dump_dir / pipeline.CONFIG_FILE_NAME)
    engine = CalibrationEngine(settings.calibration_profile())
    page = result.pages[0]

    frame = _read_report(sorted((out / "chain-0001").iterdir())[0])
    assert len(frame) == 20
    assert frame["time"].tolist()[:3] == ["00:00:00.000", "00:00:01.000", "00:00:02.000"]

    expected_p = engine.pressure(page.fp[0].freq, page.ft[0].freq)
    expected_t = engine.temperature(page.ft[0].freq)
    assert frame["pressure, Bar"].iloc[0] == pytest.approx(expected_p, abs=1e-6)
    assert frame["temperature, *C"].iloc[0] == pytest.approx(expected_t, abs=1e-6)
    # temperature is only refreshed on every second tick
    assert frame["temperature, *C"].iloc[1] == frame["temperature, *C"].iloc[0]


def test_save_freq_adds_frequency_columns(dump_dir: Path, tmp_path: Path) -> None:
    out = tmp_path / "report"
    result = run_decode(dump_dir, out, ReportOptions(save_freq=True))
    frame = _read_report(sorted((out / "chain-0001").iterdir())[0])
    assert list(frame.columns) == [
        "time",
        "pressure, Bar",
        "temperature, *C",
        "pressure frequency, Hz",
        "temperature frequency, Hz",
    ]
    assert frame["pressure frequency, Hz"].iloc[0] == pytest.approx(result.pages[0].fp[0].freq, abs=1e-6)


def test_session_summary(dump_dir: Path, tmp_path: Path) -> None:
    out = tmp_path / "report"
    result = run_decode(dump_dir, out)
    assert result.summary_path == out / SUMMARY_FILE

    summary = pd.read_csv(out / SUMMARY_FILE)
    assert summary["chain"].tolist() == [1, 2]
    assert summary["pages"].tolist() == [3, 5]
    assert summary["reportable"].tolist() == [3, 2]
    assert summary["corrupted"].tolist() == [0, 1]
    assert summary["empty"].tolist() == [0, 2]
    assert summary["samples"].tolist() == [60, 40]
    assert summary["start_time"].tolist() == [format_duration(0)] * 2


def test_decode_is_idempotent(dump_dir: Path, tmp_path: Path) -> None:
    first, second = tmp_path / "a", tmp_path / "b"
    run_decode(dump_dir, first, ReportOptions(workers=1))
    run_decode(dump_dir, second, ReportOptions(workers=4))
    run_decode(dump_dir, second, ReportOptions(workers=4))

    files = sorted(p.relative_to(first) for p in first.rglob("*.csv"))
    assert files == sorted(p.relative_to(second) for p in second.rglob("*.csv"))
    for rel in files:
        assert (first / rel).read_bytes() == (second / rel).read_bytes()


def test_flat_layout(dump_dir: Path, tmp_path: Path) -> None:
    out = tmp_path / "flat"
    result = run_decode(dump_dir, out, ReportOptions(layout="flat"))
    names = _page_files(out)
    assert len(names) == 6
    assert "4-0xDEADBEEF-corrupted.csv" in names
    assert not any(p.is_dir() for p in out.iterdir())
    assert result.chains == []
    assert result.summary_path is None


def test_unknown_layout_rejected() -> None:
    with pytest.raises(ValueError):
        ReportOptions(layout="tree")
    with pytest.raises(ValueError):
        ReportOptions(workers=0)


def test_missing_input_reported(tmp_path: Path) -> None:
    create_demo_dump(tmp_path / "dump")
    (tmp_path / "dump" / pipeline.STORAGE_FILE_NAME).unlink()
    with pytest.raises(FileNotFoundError, match="storage.var"):
        run_decode(tmp_path / "dump", tmp_path / "report")


def test_worker_errors_propagate(dump_dir: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(pipeline, "write_page_report", _fail)
    with pytest.raises(OSError, match="disk full"):
        run_decode(dump_dir, tmp_path / "report")


def test_leading_pages_policy(dump_dir: Path, tmp_path: Path) -> None:
    settings = load_settings(dump_dir / pipeline.CONFIG_FILE_NAME)
    data = (dump_dir / pipeline.DATA_FILE_NAME).read_bytes()
    pages = PageUnpacker(512, settings.fref).unpack(data)[1:]
    profile = settings.calibration_profile()

    chains, outcomes = process_pages(pages, profile, tmp_path / "dropped")
    assert [(c.start, c.stop) for c in chains] == [(2, 7)]
    assert {o.index for o in outcomes} == set(range(2, 7))
    assert not any((tmp_path / "dropped").glob("*/*-1-0x*"))

    chains, outcomes = process_pages(pages, profile, tmp_path / "kept", ReportOptions(include_leading=True))
    assert [(c.start, c.stop) for c in chains] == [(0, 2), (2, 7)]
    leading = _page_files(tmp_path / "kept" / "chain-0001")
    assert leading[0].startswith("000000-1-0x")
    assert np.array_equal(sorted(o.index for o in outcomes), np.arange(7))


def test_half_erased_page_is_reported_as_corrupted(tmp_path: Path) -> None:
    start = PageHeader(
        this_block_id=0,
        prev_block_id=0,
        timestamp=0,
        base_interval_ms=1000,
        interleave_ratio=(1, 1),
        t_cpu=30.0,
        v_bat=3.3,
        data_crc32=0,
    )
    half_erased = replace(start, this_block_id=5, prev_block_id=NO_DATA_ID, data_crc32=0x0000ABCD)
    blob = (
        pack_page(start, [(1000, 488_281)], [(1000, 533_333)], 256)
        + pack_page(half_erased, [(1000, 488_281)], [], 256, fix_crc=False)
        + erased_page(256)
    )
    pages = PageUnpacker(256, 16_000_000.0).unpack(blob)
    assert [classify_page(p) for p in pages] == [PageKind.REPORTABLE, PageKind.CORRUPTED, PageKind.EMPTY]

    profile = AppSettings.from_mapping(demo_settings()).calibration_profile()
    chains, outcomes = process_pages(pages, profile, tmp_path)
    assert [(c.start, c.stop) for c in chains] == [(0, 3)]
    assert [o.kind for o in outcomes] == [PageKind.REPORTABLE, PageKind.CORRUPTED, PageKind.EMPTY]
    marker = tmp_path / "chain-0001" / "000001-5-0x0000ABCD-corrupted.csv"
    assert marker.read_bytes() == CORRUPTED_MARKER
    assert len(_page_files(tmp_path / "chain-0001")) == 2
