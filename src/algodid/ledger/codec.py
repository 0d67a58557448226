# src/algodid/ledger/codec.py
from __future__ import annotations

"""Fixed binary layouts stored in boxes and carried in call arguments.

Metadata record (big-endian):
  (start: uint64, end: uint64, status: uint8, endSize: uint64, lastDeleted: uint64)

The minimal 25-byte variant without lastDeleted is still decoded so records
written by older programs resolve.
"""

import struct
from typing import Any, Sequence

from algodid.ledger.constants import (
    METADATA_VALUE_BYTES,
    METADATA_VALUE_BYTES_MINIMAL,
    METHOD_SELECTOR_BYTES,
    PUBKEY_BYTES,
    UINT64_MAX,
)
from algodid.ledger.types import Metadata, Status

_METADATA = struct.Struct(">QQBQQ")
_METADATA_MINIMAL = struct.Struct(">QQBQ")


def encode_uint64(n: int) -> bytes:
    v = int(n)
    if v < 0 or v > UINT64_MAX:
        raise ValueError(f"value out of uint64 range: {n!r}")
    return v.to_bytes(8, "big")


def decode_uint64(raw: bytes) -> int:
    if len(raw) != 8:
        raise ValueError(f"uint64 must be 8 bytes, got {len(raw)}")
    return int.from_bytes(raw, "big")


def cell_key(cell_index: int) -> bytes:
    """Box name for a data cell."""
    return encode_uint64(cell_index)


def encode_metadata(md: Metadata) -> bytes:
    return _METADATA.pack(
        int(md.start),
        int(md.end),
        int(md.status),
        int(md.end_size),
        int(md.last_deleted),
    )


def decode_metadata(raw: bytes) -> Metadata:
    if len(raw) == METADATA_VALUE_BYTES:
        start, end, status, end_size, last_deleted = _METADATA.unpack(raw)
    elif len(raw) == METADATA_VALUE_BYTES_MINIMAL:
        start, end, status, end_size = _METADATA_MINIMAL.unpack(raw)
        last_deleted = 0
    else:
        raise ValueError(f"metadata record must be {METADATA_VALUE_BYTES} bytes, got {len(raw)}")

    try:
        st = Status(status)
    except ValueError as e:
        raise ValueError(f"unknown metadata status: {status}") from e

    return Metadata(start=start, end=end, status=st, end_size=end_size, last_deleted=last_deleted)


def encoded_arg_size(abi_type: str, value: Any) -> int:
    """Encoded width of one call argument.

    Transaction-typed arguments ("pay") travel as separate group members and
    cost nothing in the call payload.
    """
    if abi_type == "pay":
        return 0
    if abi_type == "uint64":
        return 8
    if abi_type == "address":
        return PUBKEY_BYTES
    if abi_type == "byte[]":
        return 2 + len(value)
    raise ValueError(f"unsupported abi type: {abi_type}")


def encoded_args_size(arg_types: Sequence[str], args: Sequence[Any]) -> int:
    if len(arg_types) != len(args):
        raise ValueError(f"expected {len(arg_types)} args, got {len(args)}")
    total = METHOD_SELECTOR_BYTES
    for t, v in zip(arg_types, args):
        total += encoded_arg_size(t, v)
    return total
