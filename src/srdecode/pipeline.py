"""High level orchestration: dump directory in, page reports out."""
from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .recorder.calibration import CalibrationEngine
from .recorder.chains import Chain, detect_chains
from .recorder.config import AppSettings, CalibrationProfile, MemInfo, load_settings, load_storage
from .recorder.pages import PageUnpacker, RawPage
from .reporting import (
    PageKind,
    PageOutcome,
    artifact_name,
    classify_page,
    write_corrupted_marker,
    write_page_report,
    write_session_summary,
)

DATA_FILE_NAME = "data.hs"
CONFIG_FILE_NAME = "config.var"
STORAGE_FILE_NAME = "storage.var"

LAYOUTS = ("chains", "flat")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportOptions:
    save_freq: bool = False
    layout: str = "chains"
    include_leading: bool = False
    workers: Optional[int] = None

    def __post_init__(self) -> None:
        if self.layout not in LAYOUTS:
            raise ValueError(f"Unsupported layout '{self.layout}'. Expected one of {list(LAYOUTS)}")
        if self.workers is not None and self.workers < 1:
            raise ValueError("workers must be at least 1")


@dataclass(frozen=True)
class DumpInputs:
    settings: AppSettings
    storage: MemInfo
    data: bytes


@dataclass(frozen=True)
class DecodeResult:
    pages: List[RawPage]
    chains: List[Chain]
    outcomes: List[PageOutcome]
    summary_path: Optional[Path] = None
    unpack_stats: Dict[str, int] = field(default_factory=dict)

    def count(self, kind: PageKind) -> int:
        return sum(1 for outcome in self.outcomes if outcome.kind is kind)


def verify_input(src_dir: Path) -> None:
    if not src_dir.is_dir():
        raise FileNotFoundError(f"Directory {src_dir} does not exist or is not a directory")
    for name in (DATA_FILE_NAME, CONFIG_FILE_NAME, STORAGE_FILE_NAME):
        if not (src_dir / name).exists():
            raise FileNotFoundError(f"Required file {src_dir / name} not found")


def load_inputs(src_dir: Path, overrides: Sequence[str] | None = None) -> DumpInputs:
    """Validate *src_dir* and read the settings, storage geometry and raw dump."""

    verify_input(src_dir)
    logger.info("Reading configuration...")
    settings = load_settings(src_dir / CONFIG_FILE_NAME, overrides)
    storage = load_storage(src_dir / STORAGE_FILE_NAME)
    logger.info("Reading data...")
    data = (src_dir / DATA_FILE_NAME).read_bytes()
    return DumpInputs(settings=settings, storage=storage, data=data)


def process_pages(
    pages: Sequence[RawPage],
    profile: CalibrationProfile,
    dest_dir: Path,
    options: ReportOptions = ReportOptions(),
) -> Tuple[List[Chain], List[PageOutcome]]:
    """
    Write one artifact per page into *dest_dir*.

    Chain directories are all created before any page task is scheduled; page
    tasks then run on a thread pool and only ever write their own file.
    """

    dest_dir.mkdir(parents=True, exist_ok=True)
    engine = CalibrationEngine(profile)

    jobs: List[Tuple[int, int, Optional[int], Path]] = []
    if options.layout == "flat":
        chains: List[Chain] = []
        jobs = [(index, 0, None, dest_dir) for index in range(len(pages))]
    else:
        chains = detect_chains(pages, include_leading=options.include_leading)
        for chain in chains:
            chain_dir = dest_dir / chain.name
            chain_dir.mkdir(exist_ok=True)
            jobs.extend((index, chain.number, index - chain.start, chain_dir) for index in chain.indices())

    workers = options.workers or os.cpu_count() or 1
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures: List[Future[PageOutcome]] = [
            pool.submit(_report_page, pages[index], index, chain_no, position, directory, engine, options.save_freq)
            for index, chain_no, position, directory in jobs
        ]
        outcomes = [future.result() for future in futures]
    return chains, outcomes


def _report_page(
    page: RawPage,
    index: int,
    chain_no: int,
    position: Optional[int],
    directory: Path,
    engine: CalibrationEngine,
    save_freq: bool,
) -> PageOutcome:
    kind = classify_page(page)
    block_id = page.header.this_block_id
    if kind is PageKind.EMPTY:
        logger.debug("Page %d holds no data, skipped", index)
        return PageOutcome(index=index, chain=chain_no, position=position or 0, block_id=block_id, kind=kind, path=None)

    path = directory / artifact_name(page, position, kind)
    samples = 0
    if kind is PageKind.CORRUPTED:
        write_corrupted_marker(path)
        logger.warning("Decoding page %d... page corrupted!", block_id)
    else:
        samples = write_page_report(page, engine, path, save_freq=save_freq)
        logger.info("Decoding page %d... ok.", block_id)
    return PageOutcome(
        index=index,
        chain=chain_no,
        position=position or 0,
        block_id=block_id,
        kind=kind,
        path=path,
        samples=samples,
    )


def run_decode(
    src_dir: Path,
    dest_dir: Path,
    options: ReportOptions = ReportOptions(),
    overrides: Sequence[str] | None = None,
) -> DecodeResult:
    """Decode the dump in *src_dir* and write page reports to *dest_dir*."""

    inputs = load_inputs(src_dir, overrides)
    unpacker = PageUnpacker(inputs.storage.flash_page_size, inputs.settings.fref)
    pages = unpacker.unpack(inputs.data)
    stats = unpacker.stats()
    logger.info(
        "pages=%d empty=%d crc_errors=%d layout_errors=%d",
        stats["pages"],
        stats["empty"],
        stats["crc_errors"],
        stats["layout_errors"],
    )

    chains, outcomes = process_pages(pages, inputs.settings.calibration_profile(), dest_dir, options)
    summary_path = None
    if options.layout == "chains":
        summary_path = write_session_summary(outcomes, chains, pages, dest_dir)
    return DecodeResult(
        pages=pages,
        chains=chains,
        outcomes=outcomes,
        summary_path=summary_path,
        unpack_stats=stats,
    )
