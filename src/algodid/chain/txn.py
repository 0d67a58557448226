# src/algodid/chain/txn.py
from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from algodid.ledger.address import decode_address, sha512_256

Json = Dict[str, Any]

_TX_DOMAIN = b"TX"


@dataclass(frozen=True)
class SuggestedParams:
    fee: int
    first_valid: int
    last_valid: int
    genesis_id: str

    def with_fee(self, fee: int) -> "SuggestedParams":
        return SuggestedParams(
            fee=int(fee),
            first_valid=self.first_valid,
            last_valid=self.last_valid,
            genesis_id=self.genesis_id,
        )


@dataclass(frozen=True)
class BoxRef:
    """Declared box access. app_id 0 means the called app."""

    app_id: int
    name: bytes


@dataclass(frozen=True)
class PaymentTxn:
    sender: str
    receiver: str
    amount: int
    params: SuggestedParams
    note: bytes = b""

    def to_json(self) -> Json:
        return {
            "type": "pay",
            "sender": self.sender,
            "receiver": self.receiver,
            "amount": int(self.amount),
            "fee": int(self.params.fee),
            "first_valid": int(self.params.first_valid),
            "last_valid": int(self.params.last_valid),
            "genesis_id": self.params.genesis_id,
            "note": self.note.hex(),
        }


@dataclass(frozen=True)
class AppCallTxn:
    sender: str
    app_id: int
    method: str
    args: Tuple[Any, ...]
    params: SuggestedParams
    boxes: Tuple[BoxRef, ...] = ()
    note: bytes = b""

    def to_json(self) -> Json:
        return {
            "type": "appl",
            "sender": self.sender,
            "app_id": int(self.app_id),
            "method": self.method,
            "args": [_arg_json(a) for a in self.args],
            "boxes": [{"app_id": int(b.app_id), "name": b.name.hex()} for b in self.boxes],
            "fee": int(self.params.fee),
            "first_valid": int(self.params.first_valid),
            "last_valid": int(self.params.last_valid),
            "genesis_id": self.params.genesis_id,
            "note": self.note.hex(),
        }


Txn = Union[PaymentTxn, AppCallTxn]


def _arg_json(v: Any) -> Any:
    if isinstance(v, (bytes, bytearray)):
        return {"b": bytes(v).hex()}
    if isinstance(v, bool) or not isinstance(v, (int, str)):
        raise TypeError(f"unsupported call argument type: {type(v).__name__}")
    return v


def canonical_txn_message(txn: Txn) -> bytes:
    body = json.dumps(txn.to_json(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return _TX_DOMAIN + body.encode("utf-8")


def txn_id(txn: Txn) -> str:
    return base64.b32encode(sha512_256(canonical_txn_message(txn))).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class SignedTxn:
    txn: Txn
    sig: bytes

    @property
    def txid(self) -> str:
        return txn_id(self.txn)


def sign_txn(txn: Txn, account: Any) -> SignedTxn:
    if account.address != txn.sender:
        raise ValueError(f"signer {account.address} is not the sender {txn.sender}")
    return SignedTxn(txn=txn, sig=account.sign(canonical_txn_message(txn)))


def verify_signed_txn(stxn: SignedTxn) -> bool:
    try:
        key = Ed25519PublicKey.from_public_bytes(decode_address(stxn.txn.sender))
        key.verify(stxn.sig, canonical_txn_message(stxn.txn))
        return True
    except (InvalidSignature, ValueError):
        return False
