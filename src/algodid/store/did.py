from __future__ import annotations

"""Identifier grammar: did:algo:<address>-<app_id>

<address> is the checksummed base32 encoding of the identity's public key and
<app_id> the decimal id of the program instance holding the document.
"""

import re
from dataclasses import dataclass

from algodid.errors import ParseError
from algodid.ledger.address import decode_address, encode_address
from algodid.ledger.constants import UINT64_MAX

DID_SCHEME = "did"
DID_METHOD = "algo"

_DECIMAL = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class DidRef:
    pubkey: bytes
    app_id: int

    @property
    def address(self) -> str:
        return encode_address(self.pubkey)

    def __str__(self) -> str:
        return format_did(self.pubkey, self.app_id)


def format_did(pubkey: bytes, app_id: int) -> str:
    return f"{DID_SCHEME}:{DID_METHOD}:{encode_address(bytes(pubkey))}-{int(app_id)}"


def parse_did(did: str) -> DidRef:
    """Parse an identifier, naming the offending segment on failure.

    Segments: "protocol" (scheme or method), "identifier" (the
    address-app_id pair is missing or malformed), "address", "app_id".
    """
    if not isinstance(did, str):
        raise ParseError("parse_error", "not_a_string", {"segment": "identifier"})

    parts = did.split(":")
    if parts[0] != DID_SCHEME:
        raise ParseError("parse_error", "invalid_scheme", {"segment": "protocol", "got": parts[0]})
    if len(parts) < 2 or parts[1] != DID_METHOD:
        got = parts[1] if len(parts) > 1 else ""
        raise ParseError("parse_error", "invalid_method", {"segment": "protocol", "got": got})
    if len(parts) != 3 or "-" not in parts[2]:
        raise ParseError("parse_error", "invalid_identifier", {"segment": "identifier", "got": did})

    # Addresses are base32 and never contain "-", so the last one separates.
    address, app_raw = parts[2].rsplit("-", 1)

    try:
        pubkey = decode_address(address)
    except ValueError as e:
        raise ParseError(
            "parse_error",
            "invalid_address",
            {"segment": "address", "got": address, "error": str(e)},
        ) from e

    if not _DECIMAL.fullmatch(app_raw) or int(app_raw) > UINT64_MAX:
        raise ParseError("parse_error", "invalid_app_id", {"segment": "app_id", "got": app_raw})

    return DidRef(pubkey=pubkey, app_id=int(app_raw))
