from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from algodid.api.config import load_api_config
from algodid.api.errors import ApiError, from_store_error
from algodid.api.routes_did import router as did_router
from algodid.api.routes_ops import router as ops_router
from algodid.api.security import RequestSizeLimitMiddleware
from algodid.api.structured_logging import RequestLogMiddleware
from algodid.config import load_store_config
from algodid.errors import DidStoreError
from algodid.store.service import DidBoxStore, build_store


def build_default_store() -> DidBoxStore:
    """Boot the store from ALGODID_* config.

    This wrapper exists so tests can monkeypatch `algodid.api.app.build_default_store`.
    """
    return build_store(load_store_config())


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(DidStoreError)
    async def _store_error(request: Request, exc: DidStoreError) -> JSONResponse:
        e = from_store_error(exc)
        return JSONResponse(status_code=e.status_code, content=e.to_json())

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
        e = ApiError.bad_request("invalid_payload", str(exc))
        return JSONResponse(status_code=e.status_code, content=e.to_json())


def create_app(*, store: Optional[DidBoxStore] = None, boot_store: bool = True) -> FastAPI:
    """Create the FastAPI application.

    store:
      - given: attached as-is (tests, embedding)
      - None with boot_store=True: booted from config via build_default_store()
      - None with boot_store=False: routes that need a store answer 500 not_ready
    """
    cfg = load_api_config()

    if cfg.docs_enabled:
        app = FastAPI(title="algodid")
    else:
        app = FastAPI(title="algodid", docs_url=None, redoc_url=None, openapi_url=None)

    app.state.cfg = cfg
    if store is None and boot_store:
        store = build_default_store()
    app.state.store = store

    _install_error_handlers(app)

    # Size limit runs inside request logging so rejected bodies are still logged.
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=cfg.max_request_bytes)
    app.add_middleware(RequestLogMiddleware)

    app.include_router(ops_router, prefix="/v1", tags=["ops"])
    app.include_router(did_router, prefix="/v1", tags=["did"])

    return app
