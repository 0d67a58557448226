from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List

from algodid.chain.client import LedgerClient
from algodid.errors import IntegrityError, NotReadyError
from algodid.ledger.constants import CELL_CAPACITY
from algodid.ledger.types import Metadata
from algodid.logs import log_event
from algodid.metrics import inc_counter
from algodid.store.app_client import DidAppClient
from algodid.store.did import DidRef, parse_did

log = logging.getLogger("algodid.resolve")


def read_metadata(ledger: LedgerClient, app_id: int, pubkey: bytes) -> Metadata:
    """Decoded record for an identity. Raises NotFoundError when absent."""
    return DidAppClient(ledger, app_id, operator=None).read_metadata(pubkey)


def read_cells(ledger: LedgerClient, app_id: int, md: Metadata, *, max_workers: int = 8) -> List[bytes]:
    """Read every cell of a record, returned in ascending index order."""
    app = DidAppClient(ledger, app_id, operator=None)
    indices = list(md.cell_indices())
    workers = max(1, min(int(max_workers), len(indices)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="algodid-read") as pool:
        # map() yields in submission order whatever the completion order.
        cells = list(pool.map(app.read_cell, indices))

    for idx, cell in zip(indices, cells):
        expected = md.cell_size(idx, CELL_CAPACITY)
        if len(cell) != expected:
            raise IntegrityError(
                "integrity",
                "cell_size_mismatch",
                {"app_id": int(app_id), "cell_index": idx, "size": len(cell), "expected": expected},
            )
    return cells


def resolve_ref(ref: DidRef, *, ledger: LedgerClient, max_workers: int = 8) -> bytes:
    md = read_metadata(ledger, ref.app_id, ref.pubkey)
    if not md.is_ready:
        raise NotReadyError(
            "not_ready",
            md.status.name.lower(),
            {"identity": ref.address, "app_id": ref.app_id, "status": md.status.name},
        )

    document = b"".join(read_cells(ledger, ref.app_id, md, max_workers=max_workers))
    inc_counter("resolves")
    log_event(
        log,
        "did_resolved",
        identity=ref.address,
        app_id=ref.app_id,
        cells=md.num_cells,
        bytes=len(document),
    )
    return document


def resolve_did(did: str, *, ledger: LedgerClient, max_workers: int = 8) -> bytes:
    """Fetch the document behind an identifier.

    Raises ParseError for malformed identifiers, NotFoundError when no record
    exists and NotReadyError while the record is uploading or deleting.
    """
    return resolve_ref(parse_did(did), ledger=ledger, max_workers=max_workers)
