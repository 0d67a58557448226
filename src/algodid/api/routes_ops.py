from __future__ import annotations

import time

from fastapi import APIRouter, Request, Response

from algodid.api.schemas import HealthResponse
from algodid.metrics import format_prometheus, metrics_enabled

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    # Health never touches the ledger.
    cfg = getattr(request.app.state, "cfg", None)
    store = getattr(request.app.state, "store", None)
    return HealthResponse(
        ts_ms=int(time.time() * 1000),
        mode=str(getattr(cfg, "mode", "") or ""),
        app_id=store.app_id if store is not None else None,
        operator=store.operator.address if store is not None else None,
    )


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus-style metrics.

    Disabled by default. Enable with:
      ALGODID_METRICS_ENABLED=1
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    return Response(content=format_prometheus(), media_type="text/plain")
