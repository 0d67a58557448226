from __future__ import annotations

import logging
import secrets

from algodid.chain.client import LedgerClient
from algodid.chain.txn import AppCallTxn, PaymentTxn, sign_txn
from algodid.errors import TxRejectedError
from algodid.ledger.constants import DEFAULT_WAIT_ROUNDS, MIN_ACCOUNT_BALANCE
from algodid.logs import log_event

log = logging.getLogger("algodid.deploy")


def create_program(operator, *, ledger: LedgerClient, wait_rounds: int = DEFAULT_WAIT_ROUNDS) -> int:
    """Deploy a program instance owned by `operator` and fund its account.

    The program account gets the base minimum balance; every box after that
    is paid for by the deposit attached to allocate.
    """
    create = AppCallTxn(
        sender=operator.address,
        app_id=0,
        method="createApplication",
        args=(),
        params=ledger.suggested_params(),
        note=secrets.token_bytes(8),
    )
    receipt = ledger.send_group([sign_txn(create, operator)], wait_rounds=wait_rounds)
    if receipt.created_app_id is None:
        raise TxRejectedError("invalid_txn", "no_app_created", {"txids": list(receipt.txids)})
    app_id = int(receipt.created_app_id)

    fund = PaymentTxn(
        sender=operator.address,
        receiver=ledger.app_address(app_id),
        amount=MIN_ACCOUNT_BALANCE,
        params=ledger.suggested_params(),
        note=secrets.token_bytes(8),
    )
    ledger.send_group([sign_txn(fund, operator)], wait_rounds=wait_rounds)

    log_event(log, "program_created", app_id=app_id, operator=operator.address)
    return app_id
