# src/algodid/store/partition.py
from __future__ import annotations

"""Document -> cells -> chunks -> groups.

A document of length L is laid out as ceil(L / capacity) cells. Every cell
but the last is exactly `capacity` bytes; the last holds the remainder, or a
full `capacity` bytes when L is an exact multiple (never a trailing empty
cell).
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from algodid.ledger.constants import BYTES_PER_CALL, CELL_CAPACITY


@dataclass(frozen=True)
class Chunk:
    offset: int
    data: bytes


@dataclass(frozen=True)
class CellPlan:
    position: int  # 0-based cell position within the document
    size: int
    chunks: Tuple[Chunk, ...]

    def data(self) -> bytes:
        return b"".join(c.data for c in self.chunks)


def cell_layout(length: int, capacity: int = CELL_CAPACITY) -> Tuple[int, int]:
    """Return (num_cells, end_size) for a document of `length` bytes."""
    if int(length) < 1:
        raise ValueError("document is empty")
    if int(capacity) < 1:
        raise ValueError("capacity must be >= 1")
    full, rem = divmod(int(length), int(capacity))
    if rem == 0:
        return full, int(capacity)
    return full + 1, rem


def split_cells(document: bytes, capacity: int = CELL_CAPACITY) -> List[bytes]:
    num_cells, _ = cell_layout(len(document), capacity)
    return [document[i * capacity : (i + 1) * capacity] for i in range(num_cells)]


def split_chunks(cell: bytes, chunk_size: int = BYTES_PER_CALL) -> Tuple[Chunk, ...]:
    if int(chunk_size) < 1:
        raise ValueError("chunk_size must be >= 1")
    return tuple(Chunk(offset=off, data=cell[off : off + chunk_size]) for off in range(0, len(cell), chunk_size))


def group_chunks(chunks: Sequence[Chunk], group_size: int) -> List[Tuple[Chunk, ...]]:
    if int(group_size) < 1:
        raise ValueError("group_size must be >= 1")
    return [tuple(chunks[i : i + group_size]) for i in range(0, len(chunks), group_size)]


def plan_document(
    document: bytes,
    *,
    capacity: int = CELL_CAPACITY,
    chunk_size: int = BYTES_PER_CALL,
) -> List[CellPlan]:
    return [
        CellPlan(position=i, size=len(cell), chunks=split_chunks(cell, chunk_size))
        for i, cell in enumerate(split_cells(document, capacity))
    ]


def reassemble(plans: Sequence[CellPlan]) -> bytes:
    ordered = sorted(plans, key=lambda p: p.position)
    return b"".join(p.data() for p in ordered)
