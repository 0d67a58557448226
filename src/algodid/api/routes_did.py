from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from algodid.api.errors import ApiError
from algodid.api.schemas import DeleteResponse, MetadataResponse, MetadataView, UploadResponse
from algodid.api.security import require_operator
from algodid.errors import NotFoundError, NotReadyError
from algodid.ledger.address import decode_address
from algodid.store.service import DidBoxStore

router = APIRouter()


def _store(request: Request) -> DidBoxStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise ApiError.internal("not_ready", "store not attached to app.state", {})
    return store


def _pubkey(address: str) -> bytes:
    try:
        return decode_address(address)
    except ValueError as e:
        raise ApiError.bad_request("invalid_address", str(e), {"segment": "address", "got": address}) from e


@router.get("/did/{did}", response_class=Response)
def resolve(did: str, request: Request) -> Response:
    document = _store(request).resolve(did)
    return Response(content=document, media_type="application/octet-stream")


@router.get("/did/{did}/metadata", response_model=MetadataResponse)
def metadata(did: str, request: Request) -> MetadataResponse:
    md = _store(request).metadata(did)
    return MetadataResponse(did=did, metadata=MetadataView.of(md))


@router.put("/did/{address}", response_model=UploadResponse, dependencies=[Depends(require_operator)])
async def upload(address: str, request: Request, replace: bool = False) -> UploadResponse:
    """Store the raw request body as the identity's document.

    With `?replace=true` an existing document is deleted first. An
    interrupted upload of the same layout is picked up and completed.
    """
    store = _store(request)
    pubkey = _pubkey(address)
    body = await request.body()
    if not body:
        raise ApiError.bad_request("empty_document", "document is empty", {})

    replaced = False
    if replace:
        try:
            await run_in_threadpool(store.delete, pubkey)
            replaced = True
        except NotFoundError:
            replaced = False
        except NotReadyError as e:
            if e.reason != "uploading":
                raise

    md = await run_in_threadpool(store.upload, body, pubkey)
    return UploadResponse(did=store.did_for(pubkey), size=len(body), replaced=replaced, metadata=MetadataView.of(md))


@router.delete("/did/{address}", response_model=DeleteResponse, dependencies=[Depends(require_operator)])
def delete(address: str, request: Request) -> DeleteResponse:
    store = _store(request)
    pubkey = _pubkey(address)
    report = store.delete(pubkey)
    return DeleteResponse(
        did=store.did_for(pubkey),
        cells_deleted=report.cells_deleted,
        refunded=report.refunded,
        fees=report.fees,
    )
