from __future__ import annotations

"""Typed calls against one deployed program instance.

Every call declares the boxes it touches. A call may carry at most
MAX_BOX_REFS_PER_CALL references and each reference grants
BOX_IO_BUDGET_PER_REF bytes of box I/O, pooled across the group. Touching a
full cell plus its metadata record needs more budget than a single call has,
so write and deleteCell groups are padded with `noop` calls whose only job is
to carry extra references. Padding references are empty names, which add
budget without naming a box.

Each submission builds fresh params and a random note so a retried group is a
new group with new transaction ids.
"""

import logging
import secrets
from typing import List, Optional, Sequence, Tuple

from algodid.chain.client import BoxNotFoundError, GroupReceipt, LedgerClient
from algodid.chain.txn import AppCallTxn, BoxRef, PaymentTxn, SignedTxn, SuggestedParams, Txn, sign_txn
from algodid.errors import NotFoundError
from algodid.ledger.codec import cell_key, decode_metadata
from algodid.ledger.constants import (
    BOX_IO_BUDGET_PER_REF,
    DEFAULT_WAIT_ROUNDS,
    MAX_BOX_REFS_PER_CALL,
    METADATA_VALUE_BYTES,
)
from algodid.ledger.types import Metadata
from algodid.logs import log_event
from algodid.metrics import inc_counter
from algodid.program.did_program import GLOBAL_DEPOSIT_VERSION
from algodid.store.partition import Chunk

_PAD = BoxRef(app_id=0, name=b"")


def box_refs_needed(cell_size: int) -> int:
    """References a group needs to touch one cell and the metadata record."""
    total = int(cell_size) + METADATA_VALUE_BYTES
    return max(1, -(-total // BOX_IO_BUDGET_PER_REF))


def _padded(refs: Sequence[BoxRef]) -> Tuple[BoxRef, ...]:
    out = list(refs)
    while len(out) < MAX_BOX_REFS_PER_CALL:
        out.append(_PAD)
    return tuple(out)


def _noop_count(refs_needed: int, refs_have: int) -> int:
    missing = max(0, int(refs_needed) - int(refs_have))
    return -(-missing // MAX_BOX_REFS_PER_CALL)


class DidAppClient:
    def __init__(
        self,
        ledger: LedgerClient,
        app_id: int,
        operator,
        *,
        wait_rounds: int = DEFAULT_WAIT_ROUNDS,
    ) -> None:
        self.ledger = ledger
        self.app_id = int(app_id)
        self.operator = operator
        self.wait_rounds = int(wait_rounds)
        self._logger = logging.getLogger("algodid.app")

    @property
    def app_address(self) -> str:
        return self.ledger.app_address(self.app_id)

    # ----------------------------
    # Reads
    # ----------------------------

    def read_metadata(self, pubkey: bytes) -> Metadata:
        try:
            raw = self.ledger.read_box(self.app_id, bytes(pubkey))
        except BoxNotFoundError as e:
            raise NotFoundError(
                "not_found",
                "no_record",
                {"pubkey": bytes(pubkey).hex(), "app_id": self.app_id},
            ) from e
        return decode_metadata(raw)

    def find_metadata(self, pubkey: bytes) -> Optional[Metadata]:
        try:
            return self.read_metadata(pubkey)
        except NotFoundError:
            return None

    def read_cell(self, cell_index: int) -> bytes:
        try:
            return self.ledger.read_box(self.app_id, cell_key(cell_index))
        except BoxNotFoundError as e:
            raise NotFoundError(
                "not_found",
                "no_cell",
                {"cell_index": int(cell_index), "app_id": self.app_id},
            ) from e

    def deposit_version(self) -> int:
        """Deposit formula the program enforces; 0 when it records none."""
        g = self.ledger.app_globals(self.app_id)
        return int(g.get(GLOBAL_DEPOSIT_VERSION) or 0)

    # ----------------------------
    # Calls
    # ----------------------------

    def _params(self, fee_units: int = 1) -> SuggestedParams:
        sp = self.ledger.suggested_params()
        return sp.with_fee(sp.fee * int(fee_units))

    def _call(
        self,
        method: str,
        args: Tuple,
        boxes: Sequence[BoxRef] = (),
        *,
        fee_units: int = 1,
    ) -> AppCallTxn:
        return AppCallTxn(
            sender=self.operator.address,
            app_id=self.app_id,
            method=method,
            args=tuple(args),
            params=self._params(fee_units),
            boxes=tuple(boxes),
            note=secrets.token_bytes(8),
        )

    def _noops(self, refs_needed: int, refs_have: int) -> List[AppCallTxn]:
        return [self._call("noop", (), _padded(())) for _ in range(_noop_count(refs_needed, refs_have))]

    def _send(self, txns: Sequence[Txn], *, event: str, **fields) -> GroupReceipt:
        stxns: List[SignedTxn] = [sign_txn(t, self.operator) for t in txns]
        receipt = self.ledger.send_group(stxns, wait_rounds=self.wait_rounds)
        inc_counter("groups_sent")
        log_event(
            self._logger,
            event,
            level=logging.DEBUG,
            app_id=self.app_id,
            size=len(stxns),
            round=receipt.confirmed_round,
            **fields,
        )
        return receipt

    def allocate(self, pubkey: bytes, num_cells: int, end_size: int, deposit: int) -> GroupReceipt:
        pk = bytes(pubkey)
        pay = PaymentTxn(
            sender=self.operator.address,
            receiver=self.app_address,
            amount=int(deposit),
            params=self._params(),
            note=secrets.token_bytes(8),
        )
        call = self._call("allocate", (pk, int(num_cells), int(end_size)), [BoxRef(0, pk)])
        return self._send([pay, call], event="allocate_sent", num_cells=int(num_cells), deposit=int(deposit))

    def write_group(
        self,
        pubkey: bytes,
        cell_index: int,
        cell_size: int,
        chunks: Sequence[Chunk],
    ) -> GroupReceipt:
        pk = bytes(pubkey)
        key = cell_key(cell_index)
        refs = _padded([BoxRef(0, pk), BoxRef(0, key)])
        writes = [self._call("write", (pk, int(cell_index), c.offset, c.data), refs) for c in chunks]
        noops = self._noops(box_refs_needed(cell_size), len(writes) * MAX_BOX_REFS_PER_CALL)
        return self._send(writes + noops, event="write_group_sent", cell_index=int(cell_index), chunks=len(chunks))

    def finalize(self, pubkey: bytes) -> GroupReceipt:
        pk = bytes(pubkey)
        return self._send([self._call("finalize", (pk,), [BoxRef(0, pk)])], event="finalize_sent")

    def start_delete(self, pubkey: bytes) -> GroupReceipt:
        pk = bytes(pubkey)
        return self._send([self._call("startDelete", (pk,), [BoxRef(0, pk)])], event="start_delete_sent")

    def delete_cell(self, pubkey: bytes, cell_index: int, cell_size: int) -> GroupReceipt:
        pk = bytes(pubkey)
        refs = _padded([BoxRef(0, pk), BoxRef(0, cell_key(cell_index))])
        # Two fee units: the call itself plus its inner refund payment.
        call = self._call("deleteCell", (pk, int(cell_index)), refs, fee_units=2)
        noops = self._noops(box_refs_needed(cell_size), MAX_BOX_REFS_PER_CALL)
        return self._send([call] + noops, event="delete_cell_sent", cell_index=int(cell_index))

    def delete_cell_fees(self, cell_size: int) -> int:
        """Fees a deleteCell group for a cell of `cell_size` bytes pays at current params."""
        units = 2 + _noop_count(box_refs_needed(cell_size), MAX_BOX_REFS_PER_CALL)
        return int(self.ledger.suggested_params().fee) * units

    def call_fees(self) -> int:
        """Fees of a single-call group such as finalize or startDelete."""
        return int(self.ledger.suggested_params().fee)
