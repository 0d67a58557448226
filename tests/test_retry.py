from __future__ import annotations

import threading

import pytest

from algodid.chain.accounts import Account
from algodid.chain.local import LocalLedger
from algodid.config import default_store_config, with_overrides
from algodid.errors import (
    AlreadyExistsError,
    FatalDeleteError,
    FatalUploadError,
    NotReadyError,
    TransientNetworkError,
    TxRejectedError,
)
from algodid.ledger.constants import CELL_CAPACITY
from algodid.ledger.deposit import required_deposit
from algodid.ledger.types import Status
from algodid.store.delete import delete_document
from algodid.store.deploy import create_program
from algodid.store.did import format_did
from algodid.store.resolve import read_metadata, resolve_did
from algodid.store.retry import RetryPolicy, call_with_retry
from algodid.store.upload import upload_document


class _FlakyLedger:
    """Wraps a LocalLedger and fails matching groups.

    lost=False: the group never reaches the ledger.
    lost=True: the group is applied but its confirmation is lost.
    """

    def __init__(self, inner: LocalLedger, method: str, failures: int, *, lost: bool = False) -> None:
        self._inner = inner
        self._method = method
        self.failures = int(failures)
        self.lost = lost
        self.calls = 0
        self._lock = threading.Lock()

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def send_group(self, stxns, *, wait_rounds=3):
        methods = {getattr(s.txn, "method", "pay") for s in stxns}
        with self._lock:
            fail = self._method in methods and self.failures > 0
            if fail:
                self.failures -= 1
                self.calls += 1
        if fail:
            if self.lost:
                self._inner.send_group(stxns, wait_rounds=wait_rounds)
            raise TransientNetworkError("network", "timeout", {"wait_rounds": wait_rounds})
        return self._inner.send_group(stxns, wait_rounds=wait_rounds)


def _mk_env():
    ledger = LocalLedger()
    op = Account.from_label("operator")
    ledger.fund(op.address, 10**12)
    app_id = create_program(op, ledger=ledger)
    return ledger, op, app_id


def _cfg(**changes):
    return with_overrides(default_store_config(), backoff_ms=10, backoff_cap_ms=15, **changes)


def test_call_with_retry_succeeds_after_transient_failures() -> None:
    seen = []
    delays = []

    def fn(attempt: int) -> str:
        seen.append(attempt)
        if attempt < 3:
            raise TransientNetworkError("network", "timeout")
        return "ok"

    out = call_with_retry(fn, policy=RetryPolicy(max_attempts=3, backoff_ms=100), context={}, sleep=delays.append)

    assert out == "ok"
    assert seen == [1, 2, 3]
    assert delays == [0.1, 0.2]


def test_call_with_retry_exhaustion_carries_context() -> None:
    def fn(attempt: int) -> None:
        raise TransientNetworkError("network", "timeout")

    with pytest.raises(FatalDeleteError) as e:
        call_with_retry(
            fn,
            policy=RetryPolicy(max_attempts=2, backoff_ms=0, backoff_cap_ms=0),
            context={"cell_index": 4, "group_index": 1},
            exhausted=FatalDeleteError,
            sleep=lambda _s: None,
        )

    assert e.value.code == "retry_exhausted"
    assert e.value.details["cell_index"] == 4
    assert e.value.details["group_index"] == 1
    assert e.value.details["attempts"] == 2


def test_call_with_retry_never_retries_rejections() -> None:
    calls = []

    def fn(attempt: int) -> None:
        calls.append(attempt)
        raise TxRejectedError("forbidden", "operator_only")

    with pytest.raises(TxRejectedError):
        call_with_retry(fn, policy=RetryPolicy(max_attempts=5), context={}, sleep=lambda _s: None)
    assert calls == [1]


def test_backoff_is_linear_and_capped() -> None:
    p = RetryPolicy(max_attempts=10, backoff_ms=500, backoff_cap_ms=1_200)
    assert [p.delay_ms(a) for a in (1, 2, 3, 4)] == [500, 1_000, 1_200, 1_200]


def test_upload_survives_transient_write_failures() -> None:
    inner, op, app_id = _mk_env()
    ledger = _FlakyLedger(inner, "write", failures=2)
    pk = Account.from_label("alice").public_key
    doc = b"z" * (CELL_CAPACITY + 3)
    slept = []

    md = upload_document(doc, pk, op, ledger=ledger, app_id=app_id, cfg=_cfg(), sleep=slept.append)

    assert md.status == Status.READY
    assert ledger.calls == 2
    assert len(slept) == 2
    assert resolve_did(format_did(pk, app_id), ledger=inner) == doc


def test_upload_retries_groups_whose_confirmation_was_lost() -> None:
    inner, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    doc = b"q" * 5_000

    for method in ("allocate", "write", "finalize"):
        ledger = _FlakyLedger(inner, method, failures=1, lost=True)
        md = upload_document(doc, pk, op, ledger=ledger, app_id=app_id, cfg=_cfg(), sleep=lambda _s: None)
        assert md.status == Status.READY
        assert resolve_did(format_did(pk, app_id), ledger=inner) == doc
        pk = Account.from_label(f"alice-{method}").public_key


def test_retry_exhaustion_is_fatal_and_names_cell_and_group() -> None:
    inner, op, app_id = _mk_env()
    ledger = _FlakyLedger(inner, "write", failures=100)
    pk = Account.from_label("alice").public_key

    with pytest.raises(FatalUploadError) as e:
        upload_document(b"d" * 100, pk, op, ledger=ledger, app_id=app_id, cfg=_cfg(max_attempts=3), sleep=lambda _s: None)

    d = e.value.details
    assert d["attempts"] == 3
    assert d["group_index"] == 0
    md = read_metadata(inner, app_id, pk)
    assert d["cell_index"] == md.start
    assert md.status == Status.UPLOADING

    # An abandoned upload never resolves.
    with pytest.raises(NotReadyError):
        resolve_did(format_did(pk, app_id), ledger=inner)


def test_failed_upload_is_taken_over_by_the_next_upload() -> None:
    inner, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    doc = b"m" * (CELL_CAPACITY + 40)
    broken = _FlakyLedger(inner, "write", failures=100)

    with pytest.raises(FatalUploadError):
        upload_document(doc, pk, op, ledger=broken, app_id=app_id, cfg=_cfg(max_attempts=2), sleep=lambda _s: None)

    stuck = read_metadata(inner, app_id, pk)
    assert stuck.status == Status.UPLOADING
    app_addr = inner.app_address(app_id)
    held = inner.balance(app_addr)

    md = upload_document(doc, pk, op, ledger=inner, app_id=app_id, cfg=_cfg())

    assert md.status == Status.READY
    assert (md.start, md.end) == (stuck.start, stuck.end)
    # No second deposit.
    assert inner.balance(app_addr) == held
    assert resolve_did(format_did(pk, app_id), ledger=inner) == doc

    report = delete_document(pk, op, ledger=inner, app_id=app_id, cfg=_cfg())
    assert report.refunded == required_deposit(2, 40)


def test_interrupted_upload_of_another_layout_is_reported() -> None:
    inner, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    broken = _FlakyLedger(inner, "write", failures=100)

    with pytest.raises(FatalUploadError):
        upload_document(b"a" * 300, pk, op, ledger=broken, app_id=app_id, cfg=_cfg(max_attempts=1), sleep=lambda _s: None)

    with pytest.raises(AlreadyExistsError) as e:
        upload_document(b"a" * 301, pk, op, ledger=inner, app_id=app_id, cfg=_cfg())
    assert e.value.reason == "upload_in_progress"
    assert e.value.details["end_size"] == 300

    with pytest.raises(NotReadyError):
        delete_document(pk, op, ledger=inner, app_id=app_id)


@pytest.mark.parametrize("method,failures", [("startDelete", 1), ("deleteCell", 1), ("deleteCell", 2)])
def test_delete_report_counts_groups_whose_confirmation_was_lost(method: str, failures: int) -> None:
    inner, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    upload_document(b"e" * (2 * CELL_CAPACITY + 9), pk, op, ledger=inner, app_id=app_id, cfg=_cfg())
    before = inner.balance(op.address)

    ledger = _FlakyLedger(inner, method, failures=failures, lost=True)
    report = delete_document(pk, op, ledger=ledger, app_id=app_id, cfg=_cfg(), sleep=lambda _s: None)

    assert ledger.calls == failures
    assert report.cells_deleted == 3
    assert report.refunded == required_deposit(3, 9)
    assert inner.balance(op.address) == before + report.refunded - report.fees
    assert inner.box_names(app_id) == []


def test_delete_report_counts_lost_final_cell() -> None:
    inner, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    upload_document(b"f" * 77, pk, op, ledger=inner, app_id=app_id, cfg=_cfg())
    before = inner.balance(op.address)

    # Single cell: the lost group also took the record with it.
    ledger = _FlakyLedger(inner, "deleteCell", failures=1, lost=True)
    report = delete_document(pk, op, ledger=ledger, app_id=app_id, cfg=_cfg(), sleep=lambda _s: None)

    assert report.refunded == required_deposit(1, 77)
    assert inner.balance(op.address) == before + report.refunded - report.fees
