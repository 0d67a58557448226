from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from algodid.errors import (
    AlreadyExistsError,
    DepositMismatchError,
    DidStoreError,
    IntegrityError,
    NotFoundError,
    NotReadyError,
    ParseError,
    RetryExhaustedError,
    TransientNetworkError,
    TxRejectedError,
)


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def unauthorized(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(401, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}


# First match wins, so subclasses go before their bases.
_STATUS_BY_ERROR = (
    (ParseError, 400),
    (NotFoundError, 404),
    (NotReadyError, 409),
    (AlreadyExistsError, 409),
    (DepositMismatchError, 409),
    (TxRejectedError, 409),
    (TransientNetworkError, 503),
    (RetryExhaustedError, 503),
    (IntegrityError, 500),
)


def from_store_error(e: DidStoreError) -> ApiError:
    status = 500
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(e, cls):
            status = code
            break
    return ApiError(status, e.code, e.reason, dict(e.details))
