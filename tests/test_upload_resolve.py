from __future__ import annotations

import os
import threading

import pytest

from algodid.chain.accounts import Account
from algodid.chain.local import LocalLedger
from algodid.config import default_store_config, with_overrides
from algodid import metrics
from algodid.errors import AlreadyExistsError, DepositMismatchError, NotFoundError, NotReadyError, TransientNetworkError
from algodid.ledger.constants import CELL_CAPACITY
from algodid.ledger.deposit import StorageRates, required_deposit
from algodid.ledger.types import Status
from algodid.store.app_client import DidAppClient
from algodid.store.deploy import create_program
from algodid.store.did import format_did
from algodid.store.partition import Chunk
from algodid.store.resolve import read_metadata, resolve_did
from algodid.store.upload import upload_document


def _mk_env():
    ledger = LocalLedger()
    op = Account.from_label("operator")
    ledger.fund(op.address, 10**12)
    app_id = create_program(op, ledger=ledger)
    return ledger, op, app_id


def _cfg(**changes):
    return with_overrides(default_store_config(), backoff_ms=0, backoff_cap_ms=0, **changes)


def _doc(n: int) -> bytes:
    return (os.urandom(97) * (n // 97 + 1))[:n]


def _upload(ledger, op, app_id, doc: bytes, label: str = "alice", **cfg):
    pk = Account.from_label(label).public_key
    md = upload_document(doc, pk, op, ledger=ledger, app_id=app_id, cfg=_cfg(**cfg))
    return pk, md


def test_round_trip_single_cell() -> None:
    ledger, op, app_id = _mk_env()
    doc = b'{"id": "did:algo:example", "verificationMethod": []}'
    pk, md = _upload(ledger, op, app_id, doc)

    assert md.status == Status.READY
    assert md.num_cells == 1 and md.end_size == len(doc)
    assert resolve_did(format_did(pk, app_id), ledger=ledger) == doc


def test_round_trip_multi_cell() -> None:
    ledger, op, app_id = _mk_env()
    doc = _doc(2 * CELL_CAPACITY + 5_000)
    pk, md = _upload(ledger, op, app_id, doc)

    assert md.num_cells == 3
    assert md.end_size == 5_000
    assert resolve_did(format_did(pk, app_id), ledger=ledger, max_workers=2) == doc


def test_exact_multiple_gives_full_last_cell() -> None:
    ledger, op, app_id = _mk_env()
    doc = _doc(2 * CELL_CAPACITY)
    pk, md = _upload(ledger, op, app_id, doc)

    assert md.num_cells == 2
    assert md.end_size == CELL_CAPACITY
    assert len(ledger.box_names(app_id)) == 3  # two cells + metadata
    assert resolve_did(format_did(pk, app_id), ledger=ledger) == doc


def test_round_trip_with_remote_verify_and_small_groups() -> None:
    ledger, op, app_id = _mk_env()
    doc = _doc(CELL_CAPACITY + 1)
    pk, md = _upload(ledger, op, app_id, doc, verify_remote=True, group_size=1)

    assert md.end_size == 1
    assert resolve_did(format_did(pk, app_id), ledger=ledger) == doc


def test_upload_pays_exact_deposit_into_program_account() -> None:
    ledger, op, app_id = _mk_env()
    app_addr = ledger.app_address(app_id)
    doc = _doc(CELL_CAPACITY + 10)
    _upload(ledger, op, app_id, doc)

    assert ledger.balance(app_addr) == 100_000 + required_deposit(2, 10)
    assert ledger.min_balance(app_addr) == ledger.balance(app_addr)


def test_upload_rejects_existing_record() -> None:
    ledger, op, app_id = _mk_env()
    _upload(ledger, op, app_id, b"first")

    with pytest.raises(AlreadyExistsError):
        _upload(ledger, op, app_id, b"second")


def test_upload_rejects_empty_document() -> None:
    ledger, op, app_id = _mk_env()
    with pytest.raises(ValueError):
        _upload(ledger, op, app_id, b"")


def test_resolve_between_allocate_and_finalize_is_not_ready() -> None:
    ledger, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    app = DidAppClient(ledger, app_id, op)
    app.allocate(pk, 1, 5, required_deposit(1, 5))
    did = format_did(pk, app_id)

    with pytest.raises(NotReadyError):
        resolve_did(did, ledger=ledger)

    app.write_group(pk, app.read_metadata(pk).start, 5, [Chunk(0, b"hello")])
    with pytest.raises(NotReadyError):
        resolve_did(did, ledger=ledger)

    app.finalize(pk)
    assert resolve_did(did, ledger=ledger) == b"hello"


def test_resolve_unknown_identity_is_not_found() -> None:
    ledger, op, app_id = _mk_env()
    did = format_did(Account.from_label("nobody").public_key, app_id)
    with pytest.raises(NotFoundError):
        resolve_did(did, ledger=ledger)


def test_resolve_unknown_program_is_not_found() -> None:
    ledger, op, app_id = _mk_env()
    did = format_did(Account.from_label("alice").public_key, app_id + 99)
    with pytest.raises(NotFoundError):
        resolve_did(did, ledger=ledger)


def test_concurrent_uploads_never_share_cells() -> None:
    ledger, op, app_id = _mk_env()
    docs = {f"user-{i}": _doc(CELL_CAPACITY + 100 * (i + 1)) for i in range(4)}
    results = {}
    errors = []

    def run(label: str) -> None:
        try:
            results[label] = _upload(ledger, op, app_id, docs[label], label=label)
        except Exception as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=run, args=(label,)) for label in docs]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    ranges = sorted((md.start, md.end) for _, md in results.values())
    for (_, prev_end), (next_start, _) in zip(ranges, ranges[1:]):
        assert next_start > prev_end

    for label, (pk, md) in results.items():
        assert read_metadata(ledger, app_id, pk) == md
        assert resolve_did(format_did(pk, app_id), ledger=ledger) == docs[label]


class _RatesLedger:
    """Quotes storage rates the program does not charge."""

    def __init__(self, inner: LocalLedger, rates: StorageRates) -> None:
        self._inner = inner
        self._rates = rates

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def storage_rates(self) -> StorageRates:
        return self._rates


class _GlobalsLedger:
    """Reports program globals with the deposit version replaced or removed."""

    def __init__(self, inner: LocalLedger, version) -> None:
        self._inner = inner
        self._version = version

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def app_globals(self, app_id: int) -> dict:
        g = self._inner.app_globals(app_id)
        if self._version is None:
            g.pop("deposit_version", None)
        else:
            g["deposit_version"] = self._version
        return g


class _RacingLedger:
    """Loses the first allocate after another writer claims the identity."""

    def __init__(self, inner: LocalLedger, racer) -> None:
        self._inner = inner
        self._racer = racer
        self.raced = False

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def send_group(self, stxns, *, wait_rounds=3):
        methods = {getattr(s.txn, "method", "pay") for s in stxns}
        if "allocate" in methods and not self.raced:
            self.raced = True
            self._racer()
            raise TransientNetworkError("network", "timeout", {"wait_rounds": wait_rounds})
        return self._inner.send_group(stxns, wait_rounds=wait_rounds)


def test_upload_surfaces_program_deposit_rejection() -> None:
    inner, op, app_id = _mk_env()
    ledger = _RatesLedger(inner, StorageRates(per_box=2_600, per_byte=400))
    pk = Account.from_label("alice").public_key
    before = inner.balance(op.address)

    with pytest.raises(DepositMismatchError) as e:
        upload_document(b"d" * 50, pk, op, ledger=ledger, app_id=app_id, cfg=_cfg())

    assert e.value.code == "deposit_mismatch"
    assert e.value.reason == "payment_amount"
    assert DidAppClient(inner, app_id, op).find_metadata(pk) is None
    assert inner.balance(op.address) == before


@pytest.mark.parametrize("version,reported", [(1, 1), (None, 0)])
def test_upload_refuses_program_with_other_deposit_formula(version, reported: int) -> None:
    inner, op, app_id = _mk_env()
    ledger = _GlobalsLedger(inner, version)
    pk = Account.from_label("alice").public_key

    with pytest.raises(DepositMismatchError) as e:
        upload_document(b"d" * 50, pk, op, ledger=ledger, app_id=app_id, cfg=_cfg())

    assert e.value.reason == "formula_version"
    assert e.value.details == {"program": reported, "client": 2}
    assert DidAppClient(inner, app_id, op).find_metadata(pk) is None


def test_allocate_conflict_during_retry_is_already_exists() -> None:
    inner, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key

    def racer() -> None:
        DidAppClient(inner, app_id, op).allocate(pk, 2, 7, required_deposit(2, 7))

    ledger = _RacingLedger(inner, racer)
    with pytest.raises(AlreadyExistsError) as e:
        upload_document(b"d" * 100, pk, op, ledger=ledger, app_id=app_id, cfg=_cfg())

    assert ledger.raced
    assert e.value.reason == "record_exists"
    md = DidAppClient(inner, app_id, op).read_metadata(pk)
    assert (md.num_cells, md.end_size) == (2, 7)


def test_upload_records_worker_gauge() -> None:
    ledger, op, app_id = _mk_env()
    metrics.reset()
    _upload(ledger, op, app_id, _doc(2 * CELL_CAPACITY + 1), max_workers=2)
    assert metrics.snapshot()["gauges"]["upload_workers"] == 2
