from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .pages import RawPage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Chain:
    """Half-open page index range ``[start, stop)`` forming one recording session."""

    number: int
    start: int
    stop: int

    def __len__(self) -> int:
        return self.stop - self.start

    def indices(self) -> range:
        return range(self.start, self.stop)

    @property
    def name(self) -> str:
        return f"chain-{self.number:04d}"


def session_start_indices(pages: Sequence[RawPage]) -> np.ndarray:
    """Indices of pages whose block id and previous block id are both zero."""

    this_ids = np.fromiter((page.header.this_block_id for page in pages), dtype=np.uint32, count=len(pages))
    prev_ids = np.fromiter((page.header.prev_block_id for page in pages), dtype=np.uint32, count=len(pages))
    return np.flatnonzero((this_ids == 0) & (prev_ids == 0))


def partition(starts: Sequence[int], length: int, *, include_leading: bool = False) -> List[Chain]:
    """Split ``range(length)`` at every index in `starts` (ascending)."""

    bounds = [int(s) for s in starts]
    if include_leading and (not bounds or bounds[0] != 0) and length > 0:
        bounds.insert(0, 0)
    bounds.append(length)
    return [
        Chain(number=number, start=start, stop=stop)
        for number, (start, stop) in enumerate(zip(bounds[:-1], bounds[1:]), start=1)
    ]


def detect_chains(pages: Sequence[RawPage], *, include_leading: bool = False) -> List[Chain]:
    starts = session_start_indices(pages)
    leading = int(starts[0]) if starts.size else len(pages)
    if leading and not include_leading:
        logger.warning("%d page(s) precede the first session start and are not assigned to a chain", leading)
    chains = partition(starts, len(pages), include_leading=include_leading)
    logger.info("Detected %d chain(s) in %d pages", len(chains), len(pages))
    return chains
