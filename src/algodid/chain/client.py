from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple

from algodid.chain.txn import SignedTxn, SuggestedParams
from algodid.errors import NotFoundError
from algodid.ledger.constants import DEFAULT_WAIT_ROUNDS
from algodid.ledger.deposit import StorageRates

Json = Dict[str, Any]


class BoxNotFoundError(NotFoundError):
    pass


@dataclass(frozen=True)
class InnerPayment:
    sender: str
    receiver: str
    amount: int


@dataclass(frozen=True)
class GroupReceipt:
    txids: Tuple[str, ...]
    confirmed_round: int
    fees: int
    results: Tuple[Json, ...] = ()
    inner_payments: Tuple[InnerPayment, ...] = ()
    created_app_id: Optional[int] = None

    def refunded_to(self, address: str) -> int:
        return sum(int(p.amount) for p in self.inner_payments if p.receiver == address)


class LedgerClient(Protocol):
    """What the store needs from a ledger node.

    send_group raises TransientNetworkError when the group could not be
    submitted or confirmed within wait_rounds, and TxRejectedError when the
    ledger evaluated and rejected it.
    """

    def suggested_params(self) -> SuggestedParams: ...

    def storage_rates(self) -> StorageRates: ...

    def send_group(self, stxns: Sequence[SignedTxn], *, wait_rounds: int = DEFAULT_WAIT_ROUNDS) -> GroupReceipt: ...

    def read_box(self, app_id: int, name: bytes) -> bytes: ...

    def app_globals(self, app_id: int) -> Json: ...

    def app_address(self, app_id: int) -> str: ...

    def balance(self, address: str) -> int: ...

    def min_balance(self, address: str) -> int: ...
