"""Ledger-level data layout: constants, record codec, addresses and deposit math.

Everything in this package is shared by the on-ledger program and the
off-ledger orchestrators, so both sides agree byte-for-byte.
"""
