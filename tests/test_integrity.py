from __future__ import annotations

import pytest

import algodid.store.upload as upload_mod
from algodid.chain.accounts import Account
from algodid.chain.local import LocalLedger
from algodid.config import default_store_config, with_overrides
from algodid.errors import IntegrityError, NotReadyError
from algodid.ledger.codec import cell_key
from algodid.ledger.types import Status
from algodid.store.deploy import create_program
from algodid.store.did import format_did
from algodid.store.resolve import read_metadata, resolve_did


def _mk_env():
    ledger = LocalLedger()
    op = Account.from_label("operator")
    ledger.fund(op.address, 10**12)
    app_id = create_program(op, ledger=ledger)
    return ledger, op, app_id


def test_local_mismatch_stops_before_finalize(monkeypatch) -> None:
    ledger, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    monkeypatch.setattr(upload_mod, "reassemble", lambda plans: b"tampered")

    with pytest.raises(IntegrityError) as e:
        upload_mod.upload_document(b"original", pk, op, ledger=ledger, app_id=app_id)
    assert e.value.reason == "local_mismatch"

    assert read_metadata(ledger, app_id, pk).status == Status.UPLOADING
    with pytest.raises(NotReadyError):
        resolve_did(format_did(pk, app_id), ledger=ledger)


class _CorruptingLedger:
    """Reads of data cells come back with one byte flipped."""

    def __init__(self, inner: LocalLedger) -> None:
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def read_box(self, app_id: int, name: bytes) -> bytes:
        raw = self._inner.read_box(app_id, name)
        if len(name) == len(cell_key(1)):
            return bytes([raw[0] ^ 0xFF]) + raw[1:]
        return raw


def test_remote_verify_catches_corrupted_cells() -> None:
    inner, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    cfg = with_overrides(default_store_config(), verify_remote=True)

    with pytest.raises(IntegrityError) as e:
        upload_mod.upload_document(b"payload", pk, op, ledger=_CorruptingLedger(inner), app_id=app_id, cfg=cfg)
    assert e.value.reason == "remote_mismatch"
    assert read_metadata(inner, app_id, pk).status == Status.UPLOADING


def test_upload_after_integrity_failure_completes_the_record(monkeypatch) -> None:
    ledger, op, app_id = _mk_env()
    pk = Account.from_label("alice").public_key
    monkeypatch.setattr(upload_mod, "reassemble", lambda plans: b"tampered")
    with pytest.raises(IntegrityError):
        upload_mod.upload_document(b"original", pk, op, ledger=ledger, app_id=app_id)
    monkeypatch.undo()

    md = upload_mod.upload_document(b"replaced", pk, op, ledger=ledger, app_id=app_id)

    assert md.status == Status.READY
    assert resolve_did(format_did(pk, app_id), ledger=ledger) == b"replaced"
