from __future__ import annotations

"""Delete orchestrator.

startDelete flips the record to DELETING, then cells go one group at a time
in ascending index order. Each deleteCell refunds the minimum balance that
cell held; the final cell also removes the record and refunds its share. A
run that stops part way leaves the record DELETING with lastDeleted pointing
at the last removed cell, and resume_delete picks up from lastDeleted + 1.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from algodid.chain.client import LedgerClient
from algodid.config import StoreConfig, default_store_config
from algodid.errors import FatalDeleteError, NotReadyError
from algodid.ledger.address import encode_address
from algodid.ledger.constants import CELL_CAPACITY
from algodid.ledger.deposit import cell_refund, metadata_min_balance
from algodid.ledger.types import Metadata, Status
from algodid.logs import log_event
from algodid.metrics import inc_counter
from algodid.store.app_client import DidAppClient
from algodid.store.retry import RetryPolicy, call_with_retry

log = logging.getLogger("algodid.delete")


@dataclass(frozen=True)
class DeleteReport:
    identity: str
    app_id: int
    cells_deleted: int
    refunded: int
    fees: int


def _cell_gone(app: DidAppClient, pubkey: bytes, cell_index: int) -> bool:
    md = app.find_metadata(pubkey)
    return md is None or md.last_deleted >= cell_index


def _delete_cells(
    app: DidAppClient,
    pubkey: bytes,
    md: Metadata,
    *,
    policy: RetryPolicy,
    identity: str,
    sleep: Callable[[float], None],
) -> DeleteReport:
    refunded = 0
    fees = 0
    deleted = 0
    operator = app.operator.address
    rates = app.ledger.storage_rates()

    for cell_index in range(md.last_deleted + 1, md.end + 1):
        size = md.cell_size(cell_index, CELL_CAPACITY)

        def attempt(n: int, cell_index: int = cell_index, size: int = size):
            if n > 1 and _cell_gone(app, pubkey, cell_index):
                return None
            return app.delete_cell(pubkey, cell_index, size)

        receipt = call_with_retry(
            attempt,
            policy=policy,
            context={
                "identity": identity,
                "app_id": app.app_id,
                "cell_index": cell_index,
                "group_index": 0,
            },
            exhausted=FatalDeleteError,
            logger=log,
            sleep=sleep,
        )
        deleted += 1
        inc_counter("cells_deleted")
        if receipt is not None:
            refunded += receipt.refunded_to(operator)
            fees += receipt.fees
        else:
            # Applied by an attempt whose confirmation was lost.
            refunded += cell_refund(size, rates)
            if cell_index == md.end:
                refunded += metadata_min_balance(rates)
            fees += app.delete_cell_fees(size)

    return DeleteReport(identity=identity, app_id=app.app_id, cells_deleted=deleted, refunded=refunded, fees=fees)


def resume_delete(
    pubkey: bytes,
    operator,
    *,
    ledger: LedgerClient,
    app_id: int,
    cfg: Optional[StoreConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DeleteReport:
    """Finish an interrupted deletion. The record must be DELETING."""
    cfg = cfg or default_store_config()
    pk = bytes(pubkey)
    identity = encode_address(pk)
    app = DidAppClient(ledger, app_id, operator, wait_rounds=cfg.wait_rounds)

    md = app.read_metadata(pk)
    if md.status != Status.DELETING:
        raise NotReadyError("not_deleting", md.status.name.lower(), {"identity": identity, "app_id": app.app_id})

    report = _delete_cells(app, pk, md, policy=RetryPolicy.from_config(cfg), identity=identity, sleep=sleep)
    log_event(
        log,
        "delete_resumed",
        identity=identity,
        app_id=app.app_id,
        cells=report.cells_deleted,
        refunded=report.refunded,
    )
    return report


def delete_document(
    pubkey: bytes,
    operator,
    *,
    ledger: LedgerClient,
    app_id: int,
    cfg: Optional[StoreConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DeleteReport:
    """Remove an identity's document and every cell, refunding the deposit.

    Raises NotFoundError when no record exists and NotReadyError while an
    upload is still in progress. A record already DELETING is resumed.
    """
    cfg = cfg or default_store_config()
    policy = RetryPolicy.from_config(cfg)
    pk = bytes(pubkey)
    identity = encode_address(pk)
    app = DidAppClient(ledger, app_id, operator, wait_rounds=cfg.wait_rounds)

    md = app.read_metadata(pk)
    if md.status == Status.UPLOADING:
        raise NotReadyError("not_ready", "uploading", {"identity": identity, "app_id": app.app_id})

    fees = 0
    if md.status == Status.READY:

        def start(n: int):
            if n > 1 and app.read_metadata(pk).status == Status.DELETING:
                return None
            return app.start_delete(pk)

        receipt = call_with_retry(
            start,
            policy=policy,
            context={"identity": identity, "app_id": app.app_id, "step": "startDelete"},
            exhausted=FatalDeleteError,
            logger=log,
            sleep=sleep,
        )
        fees += receipt.fees if receipt is not None else app.call_fees()
        md = app.read_metadata(pk)

    log_event(log, "delete_started", identity=identity, app_id=app.app_id, start=md.start, end=md.end)
    report = _delete_cells(app, pk, md, policy=policy, identity=identity, sleep=sleep)
    report = DeleteReport(
        identity=report.identity,
        app_id=report.app_id,
        cells_deleted=report.cells_deleted,
        refunded=report.refunded,
        fees=report.fees + fees,
    )
    log_event(
        log,
        "delete_completed",
        identity=identity,
        app_id=app.app_id,
        cells=report.cells_deleted,
        refunded=report.refunded,
        fees=report.fees,
    )
    return report
