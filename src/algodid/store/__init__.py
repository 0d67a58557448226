from __future__ import annotations

from algodid.store.delete import DeleteReport, delete_document, resume_delete
from algodid.store.deploy import create_program
from algodid.store.did import DidRef, format_did, parse_did
from algodid.store.resolve import read_metadata, resolve_did
from algodid.store.service import DidBoxStore, build_store
from algodid.store.upload import upload_document

__all__ = [
    "DeleteReport",
    "DidBoxStore",
    "DidRef",
    "build_store",
    "create_program",
    "delete_document",
    "format_did",
    "parse_did",
    "read_metadata",
    "resolve_did",
    "resume_delete",
    "upload_document",
]
