# src/algodid/ledger/address.py
from __future__ import annotations

import base64
import binascii

from cryptography.hazmat.primitives import hashes

from algodid.ledger.codec import encode_uint64
from algodid.ledger.constants import PUBKEY_BYTES

ADDRESS_LEN = 58
CHECKSUM_BYTES = 4
_APP_ID_PREFIX = b"appID"


def sha512_256(data: bytes) -> bytes:
    h = hashes.Hash(hashes.SHA512_256())
    h.update(data)
    return h.finalize()


def encode_address(pubkey: bytes) -> str:
    """Encode a 32-byte public key as a checksummed base32 address."""
    if len(pubkey) != PUBKEY_BYTES:
        raise ValueError(f"public key must be {PUBKEY_BYTES} bytes, got {len(pubkey)}")
    checksum = sha512_256(pubkey)[-CHECKSUM_BYTES:]
    return base64.b32encode(pubkey + checksum).decode("ascii").rstrip("=")


def decode_address(address: str) -> bytes:
    """Return the public key behind an address. Raises ValueError when invalid."""
    if not isinstance(address, str) or len(address) != ADDRESS_LEN:
        raise ValueError(f"address must be {ADDRESS_LEN} characters")

    padded = address + "=" * (-len(address) % 8)
    try:
        raw = base64.b32decode(padded)
    except binascii.Error as e:
        raise ValueError("address is not base32") from e

    pubkey, checksum = raw[:PUBKEY_BYTES], raw[PUBKEY_BYTES:]
    if sha512_256(pubkey)[-CHECKSUM_BYTES:] != checksum:
        raise ValueError("address checksum mismatch")
    return pubkey


def is_valid_address(address: str) -> bool:
    try:
        decode_address(address)
        return True
    except ValueError:
        return False


def application_address(app_id: int) -> str:
    """Escrow account controlled by a program instance."""
    return encode_address(sha512_256(_APP_ID_PREFIX + encode_uint64(app_id)))
