from __future__ import annotations

"""Pydantic response schemas for the HTTP API.

Documents travel as raw bytes (application/octet-stream) and have no schema.
"""

from typing import Optional

from pydantic import BaseModel, Field

from algodid.ledger.types import Metadata


class MetadataView(BaseModel):
    start: int = Field(..., description="First cell index")
    end: int = Field(..., description="Last cell index (inclusive)")
    status: str = Field(..., description="ready | uploading | deleting")
    end_size: int = Field(..., description="Size of the last cell in bytes")
    last_deleted: int = Field(default=0, description="Deletion cursor")
    num_cells: int

    @staticmethod
    def of(md: Metadata) -> "MetadataView":
        return MetadataView(**md.to_json())


class MetadataResponse(BaseModel):
    ok: bool = True
    did: str
    metadata: MetadataView


class UploadResponse(BaseModel):
    ok: bool = True
    did: str
    size: int = Field(..., description="Document size in bytes")
    replaced: bool = False
    metadata: MetadataView


class DeleteResponse(BaseModel):
    ok: bool = True
    did: str
    cells_deleted: int
    refunded: int
    fees: int


class HealthResponse(BaseModel):
    ok: bool = True
    service: str = "algodid"
    version: str = "v1"
    ts_ms: int
    mode: str
    app_id: Optional[int] = None
    operator: Optional[str] = None
