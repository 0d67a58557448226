from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from algodid.chain.accounts import Account
from algodid.chain.client import LedgerClient
from algodid.chain.local import LocalLedger
from algodid.config import StoreConfig, default_store_config
from algodid.errors import NotReadyError
from algodid.ledger.types import Metadata
from algodid.logs import log_event
from algodid.store.delete import DeleteReport, delete_document, resume_delete
from algodid.store.deploy import create_program
from algodid.store.did import format_did, parse_did
from algodid.store.resolve import read_metadata, resolve_ref
from algodid.store.upload import upload_document

log = logging.getLogger("algodid.store")

# Dispenser grant for the dev operator on a fresh local ledger.
DEV_OPERATOR_FUNDS = 100_000_000_000


class DidBoxStore:
    """One operator bound to one program instance."""

    def __init__(
        self,
        *,
        ledger: LedgerClient,
        app_id: int,
        operator: Account,
        cfg: Optional[StoreConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.app_id = int(app_id)
        self.operator = operator
        self.cfg = cfg or default_store_config()
        self._sleep = sleep

    def did_for(self, pubkey: bytes) -> str:
        return format_did(pubkey, self.app_id)

    def upload(self, document: bytes, pubkey: bytes) -> Metadata:
        return upload_document(
            document,
            pubkey,
            self.operator,
            ledger=self.ledger,
            app_id=self.app_id,
            cfg=self.cfg,
            sleep=self._sleep,
        )

    def resolve(self, did: str) -> bytes:
        return resolve_ref(parse_did(did), ledger=self.ledger, max_workers=self.cfg.max_workers)

    def metadata(self, did: str) -> Metadata:
        ref = parse_did(did)
        return read_metadata(self.ledger, ref.app_id, ref.pubkey)

    def delete(self, pubkey: bytes) -> DeleteReport:
        return delete_document(
            pubkey,
            self.operator,
            ledger=self.ledger,
            app_id=self.app_id,
            cfg=self.cfg,
            sleep=self._sleep,
        )

    def resume_delete(self, pubkey: bytes) -> DeleteReport:
        return resume_delete(
            pubkey,
            self.operator,
            ledger=self.ledger,
            app_id=self.app_id,
            cfg=self.cfg,
            sleep=self._sleep,
        )

    def update(self, document: bytes, pubkey: bytes) -> Metadata:
        """Replace a document: delete the current one, then upload anew.

        A record still UPLOADING is left in place for the upload to take over.
        """
        try:
            self.delete(pubkey)
        except NotReadyError as e:
            if e.reason != "uploading":
                raise
        return self.upload(document, pubkey)


def build_store(cfg: Optional[StoreConfig] = None, *, ledger: Optional[LedgerClient] = None) -> DidBoxStore:
    """Boot a store from config.

    dev mode runs against a fresh LocalLedger: the operator is funded by the
    dispenser and a program instance is deployed. Other modes need a ledger
    client and an existing app_id.
    """
    c = cfg or default_store_config()
    operator = Account.from_seed(c.operator_seed) if c.operator_seed else Account.generate()

    if ledger is None:
        if c.mode != "dev":
            raise ValueError(f"mode {c.mode!r} needs a ledger client")
        local = LocalLedger()
        local.fund(operator.address, DEV_OPERATOR_FUNDS)
        ledger = local

    app_id = int(c.app_id)
    if app_id == 0:
        app_id = create_program(operator, ledger=ledger, wait_rounds=c.wait_rounds)

    log_event(log, "store_ready", mode=c.mode, app_id=app_id, operator=operator.address)
    return DidBoxStore(ledger=ledger, app_id=app_id, operator=operator, cfg=c)
