# src/algodid/program/did_program.py
from __future__ import annotations

"""algodid.program.did_program

Ledger program that stores one document per identity across data cells.

Key invariants:
  - at most one metadata record per identity (keyed by its 32-byte pubkey)
  - cell indices come from a single global counter that starts at 1 and only
    ever grows, so indices are never shared or reused
  - every mutating method is restricted to the operator recorded at creation
  - the allocate payment must equal the deposit exactly and be addressed to
    the program account
  - a cell is created once (first write at offset 0) at its final size;
    re-creating it at the same size is a no-op, at another size an error
  - cells are deleted in ascending order behind the lastDeleted cursor; the
    final cell takes the record with it
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from algodid.ledger.codec import cell_key, decode_metadata, encode_metadata
from algodid.ledger.constants import CELL_CAPACITY, METADATA_VALUE_BYTES, PUBKEY_BYTES
from algodid.ledger.deposit import (
    DEPOSIT_FORMULA_VERSION,
    StorageRates,
    cell_refund,
    metadata_min_balance,
    required_deposit,
)
from algodid.ledger.types import Metadata, Status
from algodid.program.errors import ProgramError

Json = Dict[str, Any]

GLOBAL_OPERATOR = "operator"
GLOBAL_CURRENT_INDEX = "current_index"
GLOBAL_DEPOSIT_VERSION = "deposit_version"


class BoxStore(Protocol):
    """Box primitive supplied by the hosting ledger."""

    def length(self, name: bytes) -> Optional[int]: ...

    def create(self, name: bytes, size: int) -> None: ...

    def get(self, name: bytes) -> bytes: ...

    def put(self, name: bytes, value: bytes) -> None: ...

    def replace(self, name: bytes, offset: int, data: bytes) -> None: ...

    def delete(self, name: bytes) -> None: ...


@dataclass(frozen=True)
class PaymentArg:
    """Payment transaction passed to a method as a group sibling."""

    sender: str
    receiver: str
    amount: int


@dataclass
class CallContext:
    app_id: int
    app_address: str
    sender: str
    globals: Json
    boxes: BoxStore
    rates: StorageRates
    payment: Optional[PaymentArg] = None
    inner_payments: List[Tuple[str, int]] = field(default_factory=list)

    def pay(self, receiver: str, amount: int) -> None:
        if int(amount) > 0:
            self.inner_payments.append((str(receiver), int(amount)))


def _as_pubkey(x: Any) -> bytes:
    if not isinstance(x, (bytes, bytearray)) or len(x) != PUBKEY_BYTES:
        raise ProgramError("invalid_payload", "bad_pubkey", {"expected_len": PUBKEY_BYTES})
    return bytes(x)


def _as_uint(x: Any, name: str) -> int:
    if isinstance(x, bool) or not isinstance(x, int) or x < 0:
        raise ProgramError("invalid_payload", f"bad_{name}", {name: x})
    return int(x)


def _require_operator(ctx: CallContext) -> None:
    operator = str(ctx.globals.get(GLOBAL_OPERATOR) or "")
    if not operator or ctx.sender != operator:
        raise ProgramError("forbidden", "operator_only", {"sender": ctx.sender})


def _load_metadata(ctx: CallContext, pubkey: bytes) -> Metadata:
    if ctx.boxes.length(pubkey) is None:
        raise ProgramError("not_found", "no_record", {"pubkey": pubkey.hex()})
    return decode_metadata(ctx.boxes.get(pubkey))


def _store_metadata(ctx: CallContext, pubkey: bytes, md: Metadata) -> None:
    ctx.boxes.put(pubkey, encode_metadata(md))


def _require_in_range(md: Metadata, cell_index: int) -> None:
    if not (md.start <= cell_index <= md.end):
        raise ProgramError(
            "invalid_payload",
            "cell_out_of_range",
            {"cell_index": cell_index, "start": md.start, "end": md.end},
        )


def _create_application(ctx: CallContext) -> Json:
    ctx.globals[GLOBAL_OPERATOR] = ctx.sender
    ctx.globals[GLOBAL_CURRENT_INDEX] = 1
    ctx.globals[GLOBAL_DEPOSIT_VERSION] = DEPOSIT_FORMULA_VERSION
    return {"applied": "createApplication", "operator": ctx.sender}


def _allocate(ctx: CallContext, pubkey_raw: Any, num_cells_raw: Any, end_size_raw: Any) -> Json:
    _require_operator(ctx)
    pubkey = _as_pubkey(pubkey_raw)
    num_cells = _as_uint(num_cells_raw, "num_cells")
    end_size = _as_uint(end_size_raw, "end_size")

    if num_cells < 1:
        raise ProgramError("invalid_payload", "num_cells_zero", {"num_cells": num_cells})
    if end_size < 1 or end_size > CELL_CAPACITY:
        raise ProgramError("invalid_payload", "bad_end_size", {"end_size": end_size})

    if ctx.boxes.length(pubkey) is not None:
        raise ProgramError("conflict", "record_exists", {"pubkey": pubkey.hex()})

    pay = ctx.payment
    if pay is None:
        raise ProgramError("invalid_payload", "missing_payment", {})

    expected = required_deposit(num_cells, end_size, ctx.rates)
    if int(pay.amount) != expected:
        raise ProgramError(
            "deposit_mismatch",
            "payment_amount",
            {"expected": expected, "attached": int(pay.amount)},
        )
    if pay.receiver != ctx.app_address:
        raise ProgramError(
            "deposit_mismatch",
            "payment_receiver",
            {"expected": ctx.app_address, "receiver": pay.receiver},
        )

    start = int(ctx.globals.get(GLOBAL_CURRENT_INDEX) or 1)
    end = start + num_cells - 1
    ctx.globals[GLOBAL_CURRENT_INDEX] = end + 1

    md = Metadata(start=start, end=end, status=Status.UPLOADING, end_size=end_size)
    ctx.boxes.create(pubkey, METADATA_VALUE_BYTES)
    _store_metadata(ctx, pubkey, md)
    return {"applied": "allocate", "start": start, "end": end, "deposit": expected}


def _write(ctx: CallContext, pubkey_raw: Any, cell_index_raw: Any, offset_raw: Any, data: Any) -> Json:
    _require_operator(ctx)
    pubkey = _as_pubkey(pubkey_raw)
    cell_index = _as_uint(cell_index_raw, "cell_index")
    offset = _as_uint(offset_raw, "offset")
    if not isinstance(data, (bytes, bytearray)):
        raise ProgramError("invalid_payload", "bad_data", {})

    md = _load_metadata(ctx, pubkey)
    if md.status != Status.UPLOADING:
        raise ProgramError("invalid_state", "not_uploading", {"status": md.status.name})
    _require_in_range(md, cell_index)

    size = md.cell_size(cell_index, CELL_CAPACITY)
    key = cell_key(cell_index)
    existing = ctx.boxes.length(key)

    if offset == 0:
        if existing is None:
            ctx.boxes.create(key, size)
        elif existing != size:
            raise ProgramError(
                "conflict",
                "cell_size_mismatch",
                {"cell_index": cell_index, "size": existing, "expected": size},
            )
    elif existing is None:
        raise ProgramError("not_found", "cell_not_created", {"cell_index": cell_index})

    if offset + len(data) > size:
        raise ProgramError(
            "invalid_payload",
            "write_out_of_bounds",
            {"cell_index": cell_index, "offset": offset, "len": len(data), "size": size},
        )

    ctx.boxes.replace(key, offset, bytes(data))
    return {"applied": "write", "cell_index": cell_index, "offset": offset, "len": len(data)}


def _finalize(ctx: CallContext, pubkey_raw: Any) -> Json:
    _require_operator(ctx)
    pubkey = _as_pubkey(pubkey_raw)
    md = _load_metadata(ctx, pubkey)
    if md.status == Status.DELETING:
        raise ProgramError("invalid_state", "deleting", {"pubkey": pubkey.hex()})
    if md.status != Status.READY:
        _store_metadata(ctx, pubkey, md.replace(status=Status.READY))
    return {"applied": "finalize"}


def _start_delete(ctx: CallContext, pubkey_raw: Any) -> Json:
    _require_operator(ctx)
    pubkey = _as_pubkey(pubkey_raw)
    md = _load_metadata(ctx, pubkey)
    if md.status != Status.READY:
        raise ProgramError("invalid_state", "not_ready", {"status": md.status.name})
    # lastDeleted = start - 1 means nothing deleted yet.
    _store_metadata(ctx, pubkey, md.replace(status=Status.DELETING, last_deleted=md.start - 1))
    return {"applied": "startDelete"}


def _delete_cell(ctx: CallContext, pubkey_raw: Any, cell_index_raw: Any) -> Json:
    _require_operator(ctx)
    pubkey = _as_pubkey(pubkey_raw)
    cell_index = _as_uint(cell_index_raw, "cell_index")

    md = _load_metadata(ctx, pubkey)
    if md.status != Status.DELETING:
        raise ProgramError("invalid_state", "not_deleting", {"status": md.status.name})
    _require_in_range(md, cell_index)

    # Ascending cursor: the program cannot see unreferenced cells, so this is
    # the only way it knows every lower cell is gone before the record goes.
    expected = md.last_deleted + 1
    if cell_index != expected:
        raise ProgramError(
            "invalid_state",
            "out_of_order_delete",
            {"cell_index": cell_index, "expected": expected},
        )

    key = cell_key(cell_index)
    size = ctx.boxes.length(key)
    if size is None:
        raise ProgramError("not_found", "cell_missing", {"cell_index": cell_index})

    ctx.boxes.delete(key)
    refund = cell_refund(size, ctx.rates)

    record_deleted = cell_index == md.end
    if record_deleted:
        ctx.boxes.delete(pubkey)
        refund += metadata_min_balance(ctx.rates)
    else:
        _store_metadata(ctx, pubkey, md.replace(last_deleted=cell_index))

    ctx.pay(ctx.sender, refund)
    return {
        "applied": "deleteCell",
        "cell_index": cell_index,
        "refund": refund,
        "record_deleted": record_deleted,
    }


def _noop(ctx: CallContext) -> Json:
    return {"applied": "noop"}


_Method = Callable[..., Json]


class DidProgram:
    """Method table and argument signatures of the program.

    The hosting ledger uses `arg_types` to size call payloads and
    `wants_payment` to bind the preceding group member to the call.
    """

    METHODS: Dict[str, Tuple[_Method, Tuple[str, ...]]] = {
        "createApplication": (_create_application, ()),
        "allocate": (_allocate, ("address", "uint64", "uint64", "pay")),
        "write": (_write, ("address", "uint64", "uint64", "byte[]")),
        "finalize": (_finalize, ("address",)),
        "startDelete": (_start_delete, ("address",)),
        "deleteCell": (_delete_cell, ("address", "uint64")),
        "noop": (_noop, ()),
    }

    # Methods that issue one inner payment (and so need one extra fee).
    INNER_TXN_METHODS = frozenset({"deleteCell"})

    def arg_types(self, method: str) -> Tuple[str, ...]:
        entry = self.METHODS.get(method)
        if entry is None:
            raise ProgramError("invalid_payload", "unknown_method", {"method": method})
        return entry[1]

    def wants_payment(self, method: str) -> bool:
        return "pay" in self.arg_types(method)

    def call(self, ctx: CallContext, method: str, args: Tuple[Any, ...]) -> Json:
        entry = self.METHODS.get(method)
        if entry is None:
            raise ProgramError("invalid_payload", "unknown_method", {"method": method})
        fn, types = entry
        # "pay" args are bound through ctx.payment, not positional args.
        expected = len([t for t in types if t != "pay"])
        if len(args) != expected:
            raise ProgramError(
                "invalid_payload",
                "bad_arg_count",
                {"method": method, "expected": expected, "got": len(args)},
            )
        return fn(ctx, *args)
