"""Ledger collaborator surface: transactions, accounts and ledger clients.

The orchestrators only ever talk to a `LedgerClient`. `LocalLedger` is the
in-process implementation used for development and tests.
"""
