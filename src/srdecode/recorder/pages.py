from __future__ import annotations

import logging
import struct
import zlib
from dataclasses import dataclass
from typing import Dict, Iterator, List, Sequence, Tuple

import numpy as np

NO_DATA_ID = 0xFFFFFFFF

HEADER_STRUCT = struct.Struct("<IIQIIIffI")
COUNTS_STRUCT = struct.Struct("<HH")
RECORD_STRUCT = struct.Struct("<II")
PAYLOAD_OFFSET = HEADER_STRUCT.size
RECORDS_OFFSET = PAYLOAD_OFFSET + COUNTS_STRUCT.size


@dataclass(frozen=True)
class Record:
    freq: float
    target: int = 0
    result: int = 0

    @staticmethod
    def from_counters(target: int, result: int, fref: float) -> "Record":
        if result == 0:
            return Record(freq=float("nan"), target=target, result=result)
        return Record(freq=float(np.float32(fref * target / result)), target=target, result=result)


@dataclass(frozen=True)
class PageHeader:
    this_block_id: int
    prev_block_id: int
    timestamp: int
    base_interval_ms: int
    interleave_ratio: Tuple[int, int]
    t_cpu: float
    v_bat: float
    data_crc32: int

    def is_initial(self) -> bool:
        return self.this_block_id == 0 and self.prev_block_id == 0

    def is_sentinel(self) -> bool:
        return self.this_block_id == NO_DATA_ID or self.prev_block_id == NO_DATA_ID

    def is_empty(self) -> bool:
        return self.this_block_id == NO_DATA_ID and self.prev_block_id == NO_DATA_ID


@dataclass(frozen=True)
class RawPage:
    header: PageHeader
    fp: Tuple[Record, ...]
    ft: Tuple[Record, ...]
    consistent: bool


class PageUnpacker:
    """
    Splits a flash dump into fixed-size pages and decodes each of them.

    Pages whose header or payload fails validation are still returned, flagged
    inconsistent and without records, so the page list keeps the flash order.
    """

    def __init__(self, page_size: int, fref: float):
        if page_size < RECORDS_OFFSET:
            raise ValueError(f"Page size {page_size} is smaller than the page header ({RECORDS_OFFSET} bytes)")
        self.page_size = page_size
        self.fref = fref
        self._stats: Dict[str, int] = {"pages": 0, "empty": 0, "crc_errors": 0, "layout_errors": 0}
        self._log = logging.getLogger(__name__)

    def iter_pages(self, data: bytes) -> Iterator[RawPage]:
        full = len(data) // self.page_size
        tail = len(data) - full * self.page_size
        if tail:
            self._log.warning("Ignoring %d trailing bytes (incomplete page)", tail)
        view = memoryview(data)
        for index in range(full):
            chunk = view[index * self.page_size : (index + 1) * self.page_size]
            self._stats["pages"] += 1
            yield self.decode_page(bytes(chunk))

    def unpack(self, data: bytes) -> List[RawPage]:
        return list(self.iter_pages(data))

    def decode_page(self, chunk: bytes) -> RawPage:
        (
            this_block_id,
            prev_block_id,
            timestamp,
            base_interval_ms,
            ratio_p,
            ratio_t,
            t_cpu,
            v_bat,
            data_crc32,
        ) = HEADER_STRUCT.unpack_from(chunk, 0)
        header = PageHeader(
            this_block_id=this_block_id,
            prev_block_id=prev_block_id,
            timestamp=timestamp,
            base_interval_ms=base_interval_ms,
            interleave_ratio=(ratio_p, ratio_t),
            t_cpu=float(t_cpu),
            v_bat=float(v_bat),
            data_crc32=data_crc32,
        )
        if header.is_empty():
            self._stats["empty"] += 1
            return RawPage(header=header, fp=(), ft=(), consistent=False)
        if header.is_sentinel():
            self._stats["layout_errors"] += 1
            self._log.debug("Page %d: half-erased header (prev=%08X)", this_block_id, prev_block_id)
            return RawPage(header=header, fp=(), ft=(), consistent=False)

        n_fp, n_ft = COUNTS_STRUCT.unpack_from(chunk, PAYLOAD_OFFSET)
        payload_end = RECORDS_OFFSET + (n_fp + n_ft) * RECORD_STRUCT.size
        if payload_end > len(chunk) or ratio_p == 0 or ratio_t == 0:
            self._stats["layout_errors"] += 1
            self._log.debug(
                "Page %d: invalid layout (fp=%d ft=%d ratio=%d/%d)",
                this_block_id,
                n_fp,
                n_ft,
                ratio_p,
                ratio_t,
            )
            return RawPage(header=header, fp=(), ft=(), consistent=False)

        crc_actual = zlib.crc32(chunk[PAYLOAD_OFFSET:payload_end])
        if crc_actual != data_crc32:
            self._stats["crc_errors"] += 1
            self._log.debug(
                "Page %d: CRC mismatch (expected=%08X, actual=%08X)", this_block_id, data_crc32, crc_actual
            )
            return RawPage(header=header, fp=(), ft=(), consistent=False)

        records = [
            Record.from_counters(target, result, self.fref)
            for target, result in RECORD_STRUCT.iter_unpack(chunk[RECORDS_OFFSET:payload_end])
        ]
        return RawPage(header=header, fp=tuple(records[:n_fp]), ft=tuple(records[n_fp:]), consistent=True)

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)


def pack_page(
    header: PageHeader,
    fp: Sequence[Tuple[int, int]],
    ft: Sequence[Tuple[int, int]],
    page_size: int,
    *,
    fix_crc: bool = True,
) -> bytes:
    """Encode one page in the flash layout; `fp`/`ft` hold (target, result) counters."""

    payload = COUNTS_STRUCT.pack(len(fp), len(ft)) + b"".join(
        RECORD_STRUCT.pack(target, result) for target, result in [*fp, *ft]
    )
    crc = zlib.crc32(payload) if fix_crc else header.data_crc32
    body = (
        HEADER_STRUCT.pack(
            header.this_block_id,
            header.prev_block_id,
            header.timestamp,
            header.base_interval_ms,
            header.interleave_ratio[0],
            header.interleave_ratio[1],
            header.t_cpu,
            header.v_bat,
            crc,
        )
        + payload
    )
    if len(body) > page_size:
        raise ValueError(f"Page payload needs {len(body)} bytes, page size is {page_size}")
    return body + b"\xff" * (page_size - len(body))


def erased_page(page_size: int) -> bytes:
    return b"\xff" * page_size
