from __future__ import annotations

import hashlib
from dataclasses import dataclass
from functools import cached_property

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from algodid.ledger.address import encode_address


@dataclass(frozen=True, eq=False)
class Account:
    """Ed25519 keypair with its ledger address."""

    private_key: Ed25519PrivateKey

    @cached_property
    def public_key(self) -> bytes:
        return self.private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    @cached_property
    def address(self) -> str:
        return encode_address(self.public_key)

    def sign(self, message: bytes) -> bytes:
        return self.private_key.sign(message)

    @staticmethod
    def generate() -> "Account":
        return Account(private_key=Ed25519PrivateKey.generate())

    @staticmethod
    def from_seed(seed: bytes | str) -> "Account":
        """Build from a 32-byte seed (raw or hex). 64-byte expanded keys use the first half."""
        raw = bytes.fromhex(seed.strip()) if isinstance(seed, str) else bytes(seed)
        if len(raw) == 64:
            raw = raw[:32]
        if len(raw) != 32:
            raise ValueError("ed25519 seed must be 32 bytes (or a 64-byte expanded key)")
        return Account(private_key=Ed25519PrivateKey.from_private_bytes(raw))

    @staticmethod
    def from_label(label: str) -> "Account":
        """Deterministic keypair derived from a label. TEST ONLY."""
        seed = hashlib.sha256(("algodid-test-ed25519:" + (label or "")).encode("utf-8")).digest()
        return Account.from_seed(seed)
