import os
from dataclasses import dataclass

DEFAULT_MAX_REQUEST_BYTES = 4_000_000


def _is_truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class ApiConfig:
    mode: str  # "dev" | "testnet" | "prod"
    operator_token: str | None
    max_request_bytes: int
    docs_enabled: bool


def load_api_config() -> ApiConfig:
    mode = os.getenv("ALGODID_MODE", "dev").strip().lower()
    token = (os.getenv("ALGODID_OPERATOR_TOKEN") or "").strip() or None
    try:
        max_bytes = int(os.getenv("ALGODID_MAX_REQUEST_BYTES", str(DEFAULT_MAX_REQUEST_BYTES)))
    except ValueError:
        max_bytes = DEFAULT_MAX_REQUEST_BYTES

    docs = os.getenv("ALGODID_API_DOCS")
    docs_enabled = _is_truthy(docs) if docs is not None else mode != "prod"
    return ApiConfig(mode=mode, operator_token=token, max_request_bytes=max_bytes, docs_enabled=docs_enabled)
