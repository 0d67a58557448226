# src/algodid/errors.py
from __future__ import annotations

"""Error taxonomy surfaced to callers of the store.

Every error carries a machine-readable `code`, a short `reason`, and a
`details` dict with enough context (identity, cell index, group index) for a
manual or automated resume.
"""

from dataclasses import dataclass, field
from typing import Any, Dict

Json = Dict[str, Any]


@dataclass
class DidStoreError(Exception):
    code: str
    reason: str
    details: Json = field(default_factory=dict)

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class ParseError(DidStoreError):
    """Malformed identifier. `details["segment"]` names the offending part."""

    @property
    def segment(self) -> str:
        return str(self.details.get("segment") or "")


class NotFoundError(DidStoreError):
    pass


class NotReadyError(DidStoreError):
    """A record exists but its document is not READY (uploading or deleting)."""


class AlreadyExistsError(DidStoreError):
    pass


class DepositMismatchError(DidStoreError):
    pass


class TransientNetworkError(DidStoreError):
    """Submission or confirmation failure. Safe to retry with a fresh group."""


class TxRejectedError(DidStoreError):
    """The ledger evaluated the group and rejected it. Never retried."""


class RetryExhaustedError(DidStoreError):
    pass


class FatalUploadError(RetryExhaustedError):
    pass


class FatalDeleteError(RetryExhaustedError):
    pass


class IntegrityError(DidStoreError):
    pass
