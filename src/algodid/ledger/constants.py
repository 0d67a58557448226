# src/algodid/ledger/constants.py
from __future__ import annotations

# Box (cell) capacity enforced by the ledger.
CELL_CAPACITY = 32_768

# Flat network storage rates (micro-units). Supplied by the ledger at
# integration time; these are the values the reference network uses.
COST_PER_BOX = 2_500
COST_PER_BYTE = 400

# Application call payload ceiling (selector + encoded args).
MAX_ARGS_BYTES = 2_048
METHOD_SELECTOR_BYTES = 4
KEY_ARG_BYTES = 34
UINT64_BYTES = 8

# Largest data slice a single write call can carry.
BYTES_PER_CALL = MAX_ARGS_BYTES - METHOD_SELECTOR_BYTES - KEY_ARG_BYTES - UINT64_BYTES - UINT64_BYTES

# Atomic group ceilings.
MAX_GROUP_SIZE = 16
DEFAULT_GROUP_SIZE = 8

# Box references: per call ceiling and I/O budget granted per reference.
MAX_BOX_REFS_PER_CALL = 8
BOX_IO_BUDGET_PER_REF = 1_024

# Key and value widths.
CELL_KEY_BYTES = 8
PUBKEY_BYTES = 32
METADATA_VALUE_BYTES = 33
METADATA_VALUE_BYTES_MINIMAL = 25

# Account economics.
MIN_ACCOUNT_BALANCE = 100_000
MIN_TXN_FEE = 1_000

# Confirmation wait per group submission.
DEFAULT_WAIT_ROUNDS = 3

UINT64_MAX = (1 << 64) - 1
