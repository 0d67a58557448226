# src/algodid/ledger/types.py
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict

Json = Dict[str, Any]


class Status(IntEnum):
    """Lifecycle of an identity's record.

    Wire values keep the single-byte upload flag: 1 means "still uploading",
    0 means the document is complete.
    """

    READY = 0
    UPLOADING = 1
    DELETING = 2


@dataclass(frozen=True)
class Metadata:
    start: int
    end: int
    status: Status
    end_size: int
    last_deleted: int = 0

    @property
    def num_cells(self) -> int:
        return self.end - self.start + 1

    @property
    def is_ready(self) -> bool:
        return self.status == Status.READY

    def cell_indices(self) -> range:
        return range(self.start, self.end + 1)

    def cell_size(self, cell_index: int, capacity: int) -> int:
        return self.end_size if cell_index == self.end else capacity

    def replace(self, **changes: Any) -> "Metadata":
        fields: Json = {
            "start": self.start,
            "end": self.end,
            "status": self.status,
            "end_size": self.end_size,
            "last_deleted": self.last_deleted,
        }
        fields.update(changes)
        return Metadata(**fields)

    def to_json(self) -> Json:
        return {
            "start": int(self.start),
            "end": int(self.end),
            "status": self.status.name.lower(),
            "end_size": int(self.end_size),
            "last_deleted": int(self.last_deleted),
            "num_cells": int(self.num_cells),
        }
