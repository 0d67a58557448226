from __future__ import annotations

"""Upload orchestrator.

allocate -> write every cell -> verify -> finalize

Cells upload concurrently, one worker per cell. Within a cell the write
groups go out one after another, each confirmed before the next. A record is
only finalized after the written data has been checked against the input, so
a failed upload leaves the record UPLOADING and never resolvable. Uploading
a document of the same layout again picks that record back up.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from algodid.chain.client import LedgerClient
from algodid.config import StoreConfig, default_store_config
from algodid.errors import (
    AlreadyExistsError,
    DepositMismatchError,
    FatalUploadError,
    IntegrityError,
    TxRejectedError,
)
from algodid.ledger.address import encode_address
from algodid.ledger.constants import BYTES_PER_CALL, CELL_CAPACITY
from algodid.ledger.deposit import DEPOSIT_FORMULA_VERSION, required_deposit
from algodid.ledger.types import Metadata, Status
from algodid.logs import log_event
from algodid.metrics import inc_counter, set_gauge
from algodid.store.app_client import DidAppClient
from algodid.store.partition import CellPlan, cell_layout, group_chunks, plan_document, reassemble
from algodid.store.resolve import read_cells
from algodid.store.retry import RetryPolicy, call_with_retry

log = logging.getLogger("algodid.upload")


def _allocate(
    app: DidAppClient,
    pubkey: bytes,
    num_cells: int,
    end_size: int,
    deposit: int,
    policy: RetryPolicy,
    identity: str,
    sleep: Callable[[float], None],
) -> None:
    def attempt(n: int) -> None:
        if n > 1:
            # The previous attempt may have landed before its confirmation was lost.
            md = app.find_metadata(pubkey)
            if (
                md is not None
                and md.status == Status.UPLOADING
                and md.num_cells == num_cells
                and md.end_size == end_size
            ):
                return
        app.allocate(pubkey, num_cells, end_size, deposit)

    try:
        call_with_retry(
            attempt,
            policy=policy,
            context={"identity": identity, "app_id": app.app_id, "step": "allocate"},
            exhausted=FatalUploadError,
            logger=log,
            sleep=sleep,
        )
    except TxRejectedError as e:
        if e.code == "deposit_mismatch":
            raise DepositMismatchError(e.code, e.reason, dict(e.details, identity=identity)) from e
        if e.code == "conflict":
            raise AlreadyExistsError("already_exists", e.reason, {"identity": identity, "app_id": app.app_id}) from e
        raise


def _upload_cell(
    app: DidAppClient,
    pubkey: bytes,
    md: Metadata,
    plan: CellPlan,
    *,
    group_size: int,
    policy: RetryPolicy,
    identity: str,
    sleep: Callable[[float], None],
) -> int:
    cell_index = md.start + plan.position
    groups = group_chunks(plan.chunks, group_size)
    for group_index, chunks in enumerate(groups):
        call_with_retry(
            lambda _n, chunks=chunks: app.write_group(pubkey, cell_index, plan.size, chunks),
            policy=policy,
            context={
                "identity": identity,
                "app_id": app.app_id,
                "cell_index": cell_index,
                "group_index": group_index,
            },
            exhausted=FatalUploadError,
            logger=log,
            sleep=sleep,
        )
    inc_counter("cells_written")
    log_event(log, "cell_written", identity=identity, cell_index=cell_index, size=plan.size, groups=len(groups))
    return cell_index


def upload_document(
    document: bytes,
    pubkey: bytes,
    operator,
    *,
    ledger: LedgerClient,
    app_id: int,
    cfg: Optional[StoreConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Metadata:
    """Store `document` under `pubkey` and return the finalized record.

    A record left UPLOADING by an earlier failed upload of the same layout
    is taken over and its cells rewritten. Raises AlreadyExistsError if the
    identity has any other record, DepositMismatchError if the program
    rejects the deposit, FatalUploadError when a group exhausts its retries
    and IntegrityError when the written data does not match the input.
    """
    cfg = cfg or default_store_config()
    policy = RetryPolicy.from_config(cfg)
    document = bytes(document)
    pk = bytes(pubkey)
    identity = encode_address(pk)
    app = DidAppClient(ledger, app_id, operator, wait_rounds=cfg.wait_rounds)

    num_cells, end_size = cell_layout(len(document), CELL_CAPACITY)

    existing = app.find_metadata(pk)
    if existing is not None:
        if existing.status != Status.UPLOADING:
            raise AlreadyExistsError("already_exists", "record_exists", {"identity": identity, "app_id": app.app_id})
        if (existing.num_cells, existing.end_size) != (num_cells, end_size):
            raise AlreadyExistsError(
                "already_exists",
                "upload_in_progress",
                {
                    "identity": identity,
                    "app_id": app.app_id,
                    "num_cells": existing.num_cells,
                    "end_size": existing.end_size,
                },
            )

    version = app.deposit_version()
    if version != DEPOSIT_FORMULA_VERSION:
        raise DepositMismatchError(
            "deposit_mismatch",
            "formula_version",
            {"program": version, "client": DEPOSIT_FORMULA_VERSION},
        )
    deposit = required_deposit(num_cells, end_size, ledger.storage_rates())

    started = time.monotonic()
    log_event(
        log,
        "upload_started",
        identity=identity,
        app_id=app.app_id,
        bytes=len(document),
        num_cells=num_cells,
        deposit=deposit,
    )

    if existing is None:
        _allocate(app, pk, num_cells, end_size, deposit, policy, identity, sleep)
        md = app.read_metadata(pk)
    else:
        # Deposit already held by the interrupted upload; cells are rewritten in full.
        md = existing
        log_event(log, "upload_resumed", identity=identity, app_id=app.app_id, start=md.start, end=md.end)

    plans = plan_document(document, capacity=CELL_CAPACITY, chunk_size=BYTES_PER_CALL)
    workers = max(1, min(int(cfg.max_workers), len(plans)))
    set_gauge("upload_workers", workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="algodid-upload") as pool:
        futures = [
            pool.submit(
                _upload_cell,
                app,
                pk,
                md,
                plan,
                group_size=cfg.group_size,
                policy=policy,
                identity=identity,
                sleep=sleep,
            )
            for plan in plans
        ]
        try:
            for f in futures:
                f.result()
        except Exception as e:
            for f in futures:
                f.cancel()
            log_event(log, "upload_failed", level=logging.ERROR, identity=identity, app_id=app.app_id, error=str(e))
            raise

    if reassemble(plans) != document:
        raise IntegrityError("integrity", "local_mismatch", {"identity": identity, "app_id": app.app_id})

    if cfg.verify_remote:
        written = b"".join(read_cells(ledger, app.app_id, md, max_workers=cfg.max_workers))
        if written != document:
            raise IntegrityError("integrity", "remote_mismatch", {"identity": identity, "app_id": app.app_id})

    call_with_retry(
        lambda _n: app.finalize(pk),
        policy=policy,
        context={"identity": identity, "app_id": app.app_id, "step": "finalize"},
        exhausted=FatalUploadError,
        logger=log,
        sleep=sleep,
    )

    final = app.read_metadata(pk)
    log_event(
        log,
        "upload_finalized",
        identity=identity,
        app_id=app.app_id,
        start=final.start,
        end=final.end,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return final
