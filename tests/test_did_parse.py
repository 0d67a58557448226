from __future__ import annotations

import pytest

from algodid.chain.accounts import Account
from algodid.errors import ParseError
from algodid.store.did import DidRef, format_did, parse_did


def _addr() -> str:
    return Account.from_label("alice").address


def test_format_and_parse_agree() -> None:
    pk = Account.from_label("alice").public_key
    did = format_did(pk, 1234)

    assert did == f"did:algo:{_addr()}-1234"
    ref = parse_did(did)
    assert ref == DidRef(pubkey=pk, app_id=1234)
    assert str(ref) == did
    assert ref.address == _addr()


@pytest.mark.parametrize(
    "did,segment",
    [
        ("did:bad:X-1", "protocol"),
        ("web:algo:X-1", "protocol"),
        ("did", "protocol"),
        ("did:algo:not-an-address-1", "address"),
        ("did:algo:ABC-1", "address"),
        ("did:algo:nohyphen", "identifier"),
        ("did:algo:X-1:extra", "identifier"),
    ],
)
def test_parse_errors_name_segment(did: str, segment: str) -> None:
    with pytest.raises(ParseError) as e:
        parse_did(did)
    assert e.value.segment == segment


@pytest.mark.parametrize("app_id", ["notanumber", "1.5", "0x10", "", str(1 << 64), "5\n", " 5", "5 "])
def test_parse_rejects_bad_app_id(app_id: str) -> None:
    with pytest.raises(ParseError) as e:
        parse_did(f"did:algo:{_addr()}-{app_id}")
    assert e.value.segment == "app_id"


def test_parse_accepts_uint64_max() -> None:
    assert parse_did(f"did:algo:{_addr()}-{(1 << 64) - 1}").app_id == (1 << 64) - 1
