# src/algodid/ledger/deposit.py
from __future__ import annotations

"""Storage deposit (minimum balance) accounting.

Version 2 is canonical: the deposit equals the sum of the minimum balance of
every box an upload creates (each data cell plus the metadata record). That
identity is what lets per-cell refunds on delete add back up to the exact
deposit.

Version 1 is the legacy formula (64-byte keys, no metadata term). It is kept
for comparison and is never enforced.
"""

from dataclasses import dataclass

from algodid.ledger.constants import (
    CELL_CAPACITY,
    CELL_KEY_BYTES,
    COST_PER_BOX,
    COST_PER_BYTE,
    METADATA_VALUE_BYTES,
    PUBKEY_BYTES,
)

DEPOSIT_FORMULA_VERSION = 2
_LEGACY_KEY_BYTES = 64


@dataclass(frozen=True)
class StorageRates:
    per_box: int = COST_PER_BOX
    per_byte: int = COST_PER_BYTE


DEFAULT_RATES = StorageRates()


def _check_layout(num_cells: int, end_size: int) -> None:
    if int(num_cells) < 1:
        raise ValueError(f"num_cells must be >= 1, got {num_cells}")
    if int(end_size) < 1 or int(end_size) > CELL_CAPACITY:
        raise ValueError(f"end_size must be 1..{CELL_CAPACITY}, got {end_size}")


def box_min_balance(key_len: int, size: int, rates: StorageRates = DEFAULT_RATES) -> int:
    return int(rates.per_box) + int(rates.per_byte) * (int(key_len) + int(size))


def cell_refund(size: int, rates: StorageRates = DEFAULT_RATES) -> int:
    """Minimum balance freed by deleting one data cell of `size` bytes."""
    return box_min_balance(CELL_KEY_BYTES, size, rates)


def metadata_min_balance(rates: StorageRates = DEFAULT_RATES) -> int:
    return box_min_balance(PUBKEY_BYTES, METADATA_VALUE_BYTES, rates)


def _deposit_v1(num_cells: int, end_size: int, rates: StorageRates) -> int:
    return (
        num_cells * rates.per_box
        + (num_cells - 1) * CELL_CAPACITY * rates.per_byte
        + num_cells * _LEGACY_KEY_BYTES * rates.per_byte
        + end_size * rates.per_byte
    )


def _deposit_v2(num_cells: int, end_size: int, rates: StorageRates) -> int:
    return (
        num_cells * rates.per_box
        + (num_cells - 1) * CELL_CAPACITY * rates.per_byte
        + end_size * rates.per_byte
        + num_cells * CELL_KEY_BYTES * rates.per_byte
        + rates.per_box
        + (METADATA_VALUE_BYTES + PUBKEY_BYTES) * rates.per_byte
    )


def required_deposit(
    num_cells: int,
    end_size: int,
    rates: StorageRates = DEFAULT_RATES,
    *,
    version: int = DEPOSIT_FORMULA_VERSION,
) -> int:
    _check_layout(num_cells, end_size)
    if int(version) == 2:
        return _deposit_v2(int(num_cells), int(end_size), rates)
    if int(version) == 1:
        return _deposit_v1(int(num_cells), int(end_size), rates)
    raise ValueError(f"unknown deposit formula version: {version}")
