# src/algodid/chain/local.py
from __future__ import annotations

"""algodid.chain.local

In-process ledger that hosts the program for development and tests.

Enforced ledger rules:
  - groups hold 1..max_group_size transactions and apply all-or-nothing
  - every transaction is Ed25519-signed by its sender
  - a transaction id is accepted once; retries must change params or note
  - call payloads (selector + encoded args) fit in MAX_ARGS_BYTES
  - at most MAX_BOX_REFS_PER_CALL box references per call; a program may
    only touch referenced boxes, and the bytes of all touched boxes must fit
    the group's pooled budget (BOX_IO_BUDGET_PER_REF per reference)
  - fees are pooled across the group; inner payments cost one fee each
  - after the group every touched account must be empty or hold its minimum
    balance, which for a program account includes the deposit of every live
    box
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from algodid.chain.client import BoxNotFoundError, GroupReceipt, InnerPayment
from algodid.chain.txn import AppCallTxn, PaymentTxn, SignedTxn, SuggestedParams, verify_signed_txn
from algodid.errors import NotFoundError, TxRejectedError
from algodid.ledger.address import application_address
from algodid.ledger.codec import encoded_args_size
from algodid.ledger.constants import (
    BOX_IO_BUDGET_PER_REF,
    CELL_CAPACITY,
    DEFAULT_WAIT_ROUNDS,
    MAX_ARGS_BYTES,
    MAX_BOX_REFS_PER_CALL,
    MAX_GROUP_SIZE,
    MIN_ACCOUNT_BALANCE,
    MIN_TXN_FEE,
)
from algodid.ledger.deposit import DEFAULT_RATES, StorageRates, box_min_balance
from algodid.logs import log_event
from algodid.program.did_program import CallContext, DidProgram, PaymentArg
from algodid.program.errors import ProgramError

Json = Dict[str, Any]

_MAX_BOX_NAME_BYTES = 64


@dataclass
class _App:
    app_id: int
    creator: str
    address: str
    program: DidProgram
    globals: Json = field(default_factory=dict)
    boxes: Dict[bytes, bytes] = field(default_factory=dict)


class _BoxView:
    """BoxStore handed to the program for one call.

    Access is limited to the names the group referenced, and the size of every
    touched box is recorded for the I/O budget check.
    """

    def __init__(self, boxes: Dict[bytes, bytes], allowed: Set[bytes], touched: Dict[bytes, int]) -> None:
        self._boxes = boxes
        self._allowed = allowed
        self._touched = touched

    def _check(self, name: bytes) -> None:
        if name not in self._allowed:
            raise ProgramError("box_ref", "unreferenced_box", {"name": name.hex()})

    def _touch(self, name: bytes, size: int) -> None:
        self._touched[name] = max(int(self._touched.get(name, 0)), int(size))

    def length(self, name: bytes) -> Optional[int]:
        self._check(name)
        v = self._boxes.get(name)
        if v is None:
            return None
        self._touch(name, len(v))
        return len(v)

    def create(self, name: bytes, size: int) -> None:
        self._check(name)
        if not (1 <= len(name) <= _MAX_BOX_NAME_BYTES):
            raise ProgramError("box_ref", "bad_box_name", {"len": len(name)})
        if name in self._boxes:
            raise ProgramError("conflict", "box_exists", {"name": name.hex()})
        if int(size) < 0 or int(size) > CELL_CAPACITY:
            raise ProgramError("invalid_payload", "box_too_large", {"size": int(size)})
        self._boxes[name] = bytes(int(size))
        self._touch(name, int(size))

    def get(self, name: bytes) -> bytes:
        self._check(name)
        v = self._boxes.get(name)
        if v is None:
            raise ProgramError("not_found", "no_box", {"name": name.hex()})
        self._touch(name, len(v))
        return v

    def put(self, name: bytes, value: bytes) -> None:
        cur = self.get(name)
        if len(cur) != len(value):
            raise ProgramError("invalid_payload", "box_size_change", {"size": len(cur), "new": len(value)})
        self._boxes[name] = bytes(value)

    def replace(self, name: bytes, offset: int, data: bytes) -> None:
        cur = self.get(name)
        end = int(offset) + len(data)
        if int(offset) < 0 or end > len(cur):
            raise ProgramError("invalid_payload", "replace_out_of_bounds", {"offset": int(offset), "len": len(data)})
        self._boxes[name] = cur[: int(offset)] + bytes(data) + cur[end:]

    def delete(self, name: bytes) -> None:
        self.get(name)
        del self._boxes[name]


class LocalLedger:
    """Single-process ledger. All groups are serialized under one lock."""

    def __init__(
        self,
        *,
        genesis_id: str = "algodid-localnet",
        rates: StorageRates = DEFAULT_RATES,
        fee: int = MIN_TXN_FEE,
        max_group_size: int = MAX_GROUP_SIZE,
        validity_window: int = 1_000,
        program_factory: Callable[[], DidProgram] = DidProgram,
    ) -> None:
        self.genesis_id = str(genesis_id)
        self.rates = rates
        self.fee = int(fee)
        self.max_group_size = int(max_group_size)
        self.validity_window = int(validity_window)
        self._program_factory = program_factory

        self._lock = threading.RLock()
        self._round = 1
        self._balances: Dict[str, int] = {}
        self._apps: Dict[int, _App] = {}
        self._app_by_address: Dict[str, int] = {}
        self._next_app_id = 1001
        self._seen_txids: Set[str] = set()
        self._logger = logging.getLogger("algodid.ledger")

    # ----------------------------
    # Reads
    # ----------------------------

    @property
    def round(self) -> int:
        with self._lock:
            return self._round

    def suggested_params(self) -> SuggestedParams:
        with self._lock:
            return SuggestedParams(
                fee=self.fee,
                first_valid=self._round,
                last_valid=self._round + self.validity_window,
                genesis_id=self.genesis_id,
            )

    def storage_rates(self) -> StorageRates:
        return self.rates

    def balance(self, address: str) -> int:
        with self._lock:
            return int(self._balances.get(address, 0))

    def min_balance(self, address: str) -> int:
        with self._lock:
            total = MIN_ACCOUNT_BALANCE
            app_id = self._app_by_address.get(address)
            if app_id is not None:
                for name, value in self._apps[app_id].boxes.items():
                    total += box_min_balance(len(name), len(value), self.rates)
            return total

    def app_address(self, app_id: int) -> str:
        return application_address(int(app_id))

    def app_globals(self, app_id: int) -> Json:
        with self._lock:
            return dict(self._app(app_id).globals)

    def read_box(self, app_id: int, name: bytes) -> bytes:
        with self._lock:
            v = self._app(app_id).boxes.get(bytes(name))
        if v is None:
            raise BoxNotFoundError("not_found", "no_box", {"app_id": int(app_id), "name": bytes(name).hex()})
        return v

    def box_names(self, app_id: int) -> List[bytes]:
        with self._lock:
            return sorted(self._app(app_id).boxes.keys())

    def _app(self, app_id: int) -> _App:
        app = self._apps.get(int(app_id))
        if app is None:
            raise NotFoundError("not_found", "unknown_app", {"app_id": int(app_id)})
        return app

    # ----------------------------
    # Writes
    # ----------------------------

    def fund(self, address: str, amount: int) -> None:
        """Dispenser: credit an account out of thin air (localnet only)."""
        with self._lock:
            self._balances[address] = int(self._balances.get(address, 0)) + int(amount)

    def send_group(self, stxns: Sequence[SignedTxn], *, wait_rounds: int = DEFAULT_WAIT_ROUNDS) -> GroupReceipt:
        # Groups confirm in the round they are applied, well inside wait_rounds.
        with self._lock:
            txids = self._admit_group(stxns)
            snapshot = self._snapshot()
            try:
                results, inner, created = self._apply_group(stxns)
            except TxRejectedError as e:
                self._restore(snapshot)
                log_event(
                    self._logger,
                    "group_rejected",
                    level=logging.DEBUG,
                    code=e.code,
                    reason=e.reason,
                    size=len(stxns),
                    round=self._round,
                )
                raise

            confirmed = self._round
            self._round += 1
            self._seen_txids.update(txids)

        return GroupReceipt(
            txids=tuple(txids),
            confirmed_round=confirmed,
            fees=sum(int(s.txn.params.fee) for s in stxns),
            results=tuple(results),
            inner_payments=tuple(inner),
            created_app_id=created,
        )

    def _admit_group(self, stxns: Sequence[SignedTxn]) -> List[str]:
        n = len(stxns)
        if n < 1 or n > self.max_group_size:
            raise TxRejectedError("invalid_group", "group_size", {"size": n, "max": self.max_group_size})

        txids = [s.txid for s in stxns]
        if len(set(txids)) != n:
            raise TxRejectedError("invalid_group", "duplicate_in_group", {})

        inner_fees = 0
        for i, s in enumerate(stxns):
            if s.txid in self._seen_txids:
                raise TxRejectedError("duplicate_txn", "already_confirmed", {"txn_index": i, "txid": s.txid})
            if not verify_signed_txn(s):
                raise TxRejectedError("forbidden", "bad_signature", {"txn_index": i})
            p = s.txn.params
            if p.genesis_id != self.genesis_id:
                raise TxRejectedError("invalid_txn", "wrong_genesis", {"txn_index": i})
            if not (p.first_valid <= self._round <= p.last_valid):
                raise TxRejectedError(
                    "invalid_txn",
                    "outside_validity_window",
                    {"txn_index": i, "round": self._round},
                )
            if int(p.fee) < 0:
                raise TxRejectedError("invalid_txn", "negative_fee", {"txn_index": i})
            t = s.txn
            if isinstance(t, AppCallTxn):
                if len(t.boxes) > MAX_BOX_REFS_PER_CALL:
                    raise TxRejectedError(
                        "box_ref",
                        "too_many_box_refs",
                        {"txn_index": i, "refs": len(t.boxes), "max": MAX_BOX_REFS_PER_CALL},
                    )
                if t.method in DidProgram.INNER_TXN_METHODS:
                    inner_fees += 1

        required = (n + inner_fees) * self.fee
        paid = sum(int(s.txn.params.fee) for s in stxns)
        if paid < required:
            raise TxRejectedError("insufficient_fee", "fee_pool", {"paid": paid, "required": required})
        return txids

    def _snapshot(self) -> Tuple[Dict[str, int], Dict[int, _App], Dict[str, int], int]:
        apps = {
            k: _App(
                app_id=a.app_id,
                creator=a.creator,
                address=a.address,
                program=a.program,
                globals=dict(a.globals),
                boxes=dict(a.boxes),
            )
            for k, a in self._apps.items()
        }
        return dict(self._balances), apps, dict(self._app_by_address), self._next_app_id

    def _restore(self, snap: Tuple[Dict[str, int], Dict[int, _App], Dict[str, int], int]) -> None:
        self._balances, self._apps, self._app_by_address, self._next_app_id = snap

    def _move(self, sender: str, receiver: str, amount: int) -> None:
        if int(amount) < 0:
            raise TxRejectedError("invalid_txn", "negative_amount", {"amount": int(amount)})
        have = int(self._balances.get(sender, 0))
        if have < int(amount):
            raise TxRejectedError("overspend", "insufficient_funds", {"account": sender, "have": have})
        self._balances[sender] = have - int(amount)
        self._balances[receiver] = int(self._balances.get(receiver, 0)) + int(amount)

    def _charge_fee(self, sender: str, fee: int) -> None:
        have = int(self._balances.get(sender, 0))
        if have < int(fee):
            raise TxRejectedError("overspend", "insufficient_funds_for_fee", {"account": sender, "have": have})
        self._balances[sender] = have - int(fee)

    def _apply_group(self, stxns: Sequence[SignedTxn]) -> Tuple[List[Json], List[InnerPayment], Optional[int]]:
        results: List[Json] = []
        inner: List[InnerPayment] = []
        created: Optional[int] = None
        touched_accounts: Set[str] = set()

        # Box references are pooled per app across the whole group.
        refs: Dict[int, List[bytes]] = {}
        for s in stxns:
            t = s.txn
            if isinstance(t, AppCallTxn) and t.app_id != 0:
                for ref in t.boxes:
                    target = t.app_id if ref.app_id == 0 else int(ref.app_id)
                    refs.setdefault(target, []).append(bytes(ref.name))
        touched_boxes: Dict[int, Dict[bytes, int]] = {}

        for i, s in enumerate(stxns):
            t = s.txn
            self._charge_fee(t.sender, t.params.fee)
            touched_accounts.add(t.sender)

            if isinstance(t, PaymentTxn):
                self._move(t.sender, t.receiver, t.amount)
                touched_accounts.add(t.receiver)
                results.append({"applied": "pay", "amount": int(t.amount)})
                continue

            if not isinstance(t, AppCallTxn):
                raise TxRejectedError("invalid_txn", "unknown_txn_type", {"txn_index": i})

            try:
                if t.app_id == 0:
                    app = self._create_app(t.sender)
                    created = app.app_id
                    if t.method != "createApplication":
                        raise ProgramError("invalid_payload", "create_requires_createApplication", {})
                else:
                    app = self._app(t.app_id)

                arg_types = tuple(x for x in app.program.arg_types(t.method) if x != "pay")
                size = encoded_args_size(arg_types, t.args)
                if size > MAX_ARGS_BYTES:
                    raise ProgramError("invalid_payload", "args_too_large", {"size": size, "max": MAX_ARGS_BYTES})

                payment: Optional[PaymentArg] = None
                if app.program.wants_payment(t.method):
                    prev = stxns[i - 1].txn if i > 0 else None
                    if not isinstance(prev, PaymentTxn):
                        raise ProgramError("invalid_payload", "missing_payment", {})
                    payment = PaymentArg(sender=prev.sender, receiver=prev.receiver, amount=int(prev.amount))

                ctx = CallContext(
                    app_id=app.app_id,
                    app_address=app.address,
                    sender=t.sender,
                    globals=app.globals,
                    boxes=_BoxView(
                        app.boxes,
                        set(refs.get(app.app_id, [])),
                        touched_boxes.setdefault(app.app_id, {}),
                    ),
                    rates=self.rates,
                    payment=payment,
                )
                result = app.program.call(ctx, t.method, tuple(t.args))
            except (ProgramError, NotFoundError) as e:
                raise TxRejectedError(
                    e.code,
                    e.reason,
                    {"txn_index": i, "method": t.method, "details": e.details},
                ) from e
            except (TypeError, ValueError) as e:
                raise TxRejectedError(
                    "invalid_payload",
                    "bad_args",
                    {"txn_index": i, "method": t.method, "error": str(e)},
                ) from e

            for receiver, amount in ctx.inner_payments:
                self._move(app.address, receiver, amount)
                touched_accounts.add(receiver)
                inner.append(InnerPayment(sender=app.address, receiver=receiver, amount=int(amount)))
            touched_accounts.add(app.address)
            results.append(result)

        for app_id, touched in touched_boxes.items():
            used = sum(touched.values())
            budget = len(refs.get(app_id, [])) * BOX_IO_BUDGET_PER_REF
            if used > budget:
                raise TxRejectedError(
                    "box_ref",
                    "io_budget_exceeded",
                    {"app_id": app_id, "used": used, "budget": budget},
                )

        for acct in sorted(touched_accounts):
            have = int(self._balances.get(acct, 0))
            need = self.min_balance(acct)
            # An empty account without boxes is closed, not underfunded.
            if have < need and (have > 0 or need > MIN_ACCOUNT_BALANCE):
                raise TxRejectedError(
                    "below_min_balance",
                    "min_balance",
                    {"account": acct, "balance": have, "min_balance": need},
                )

        return results, inner, created

    def _create_app(self, creator: str) -> _App:
        app_id = self._next_app_id
        self._next_app_id += 1
        app = _App(
            app_id=app_id,
            creator=creator,
            address=application_address(app_id),
            program=self._program_factory(),
        )
        self._apps[app_id] = app
        self._app_by_address[app.address] = app_id
        return app
