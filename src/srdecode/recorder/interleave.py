"""Reconstruction of aligned pressure/temperature samples from one page.

Both channels are sampled on divisors of a common base tick. A channel whose
divisor divides the tick index must deliver a fresh record on that tick; when
it has none left the page is over. Ticks where no channel was due produce no
row, and every emitted row carries the latest value of both channels.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd

from .pages import PageHeader, RawPage, Record


@dataclass(frozen=True)
class ReconstructedSample:
    tick: int
    wall_time_ms: int
    fp_freq: float
    ft_freq: float


class TickOutcome(enum.Enum):
    EMIT = "emit"
    IDLE = "idle"
    EXHAUSTED = "exhausted"


class ChannelCursor:
    """Read position inside one channel plus the last value read from it."""

    def __init__(self, records: Sequence[Record], ratio: int):
        self._records = records
        self.ratio = ratio
        self.position = 0
        # empty channel: no value until the first advance, which then fails
        self.value = records[0].freq if records else math.nan

    def due(self, tick: int) -> bool:
        return tick % self.ratio == 0

    def advance(self) -> bool:
        nxt = self.position + 1
        if nxt >= len(self._records):
            return False
        self.position = nxt
        self.value = self._records[nxt].freq
        return True


class SampleReconstructor:
    """
    Lazy sample sequence for one page.

    Each iteration starts from fresh cursors, so the object can be iterated any
    number of times with identical results.
    """

    def __init__(self, header: PageHeader, fp: Sequence[Record], ft: Sequence[Record]):
        ratio_p, ratio_t = header.interleave_ratio
        if ratio_p <= 0 or ratio_t <= 0:
            raise ValueError(f"Interleave ratios must be positive, got {ratio_p}/{ratio_t}")
        self.header = header
        self._fp = fp
        self._ft = ft

    @classmethod
    def from_page(cls, page: RawPage) -> "SampleReconstructor":
        return cls(page.header, page.fp, page.ft)

    def __iter__(self) -> Iterator[ReconstructedSample]:
        ratio_p, ratio_t = self.header.interleave_ratio
        pressure = ChannelCursor(self._fp, ratio_p)
        temperature = ChannelCursor(self._ft, ratio_t)

        yield self._sample(0, pressure, temperature)
        tick = 1
        while True:
            outcome = step(tick, pressure, temperature)
            if outcome is TickOutcome.EXHAUSTED:
                return
            if outcome is TickOutcome.EMIT:
                yield self._sample(tick, pressure, temperature)
            tick += 1

    def _sample(self, tick: int, pressure: ChannelCursor, temperature: ChannelCursor) -> ReconstructedSample:
        return ReconstructedSample(
            tick=tick,
            wall_time_ms=self.header.timestamp + tick * self.header.base_interval_ms,
            fp_freq=pressure.value,
            ft_freq=temperature.value,
        )

    def samples(self, limit: Optional[int] = None) -> List[ReconstructedSample]:
        result: List[ReconstructedSample] = []
        for sample in self:
            if limit is not None and len(result) >= limit:
                break
            result.append(sample)
        return result

    def to_frame(self) -> pd.DataFrame:
        samples = self.samples()
        return pd.DataFrame(
            {
                "tick": np.array([s.tick for s in samples], dtype=np.int64),
                "wall_time_ms": np.array([s.wall_time_ms for s in samples], dtype=np.int64),
                "fp_freq": np.array([s.fp_freq for s in samples], dtype=np.float32),
                "ft_freq": np.array([s.ft_freq for s in samples], dtype=np.float32),
            }
        )


def step(tick: int, pressure: ChannelCursor, temperature: ChannelCursor) -> TickOutcome:
    """Advance every cursor due on `tick`; a due cursor with no record left ends the page."""

    advanced = False
    for cursor in (pressure, temperature):
        if cursor.due(tick):
            if not cursor.advance():
                return TickOutcome.EXHAUSTED
            advanced = True
    return TickOutcome.EMIT if advanced else TickOutcome.IDLE
