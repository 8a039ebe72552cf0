"""FastAPI app exposing the import runs and the sale lookup.

A thin shell: it validates uploads, serializes import runs behind one lock
and renders pipeline results.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import settings
from .db import get_session, get_session_factory
from .logging_config import setup_logging
from .parsers import SourceFile, UploadRejectedError, validate_upload
from .pipelines.ingest import import_sales, import_users
from .pipelines.lookup import fetch_sale_document
from .pipelines.writer import StoreUnavailableError

logger = logging.getLogger(__name__)

# One import at a time per process; unique constraints guard across processes
_import_lock = asyncio.Lock()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class FileDetailDTO(CamelModel):
    """Per-file import detail."""
    name: str
    size_bytes: int
    records_total: int = 0
    records_valid: int = 0
    chunks: int = 0
    elapsed_seconds: float = 0.0
    records_per_second: float = 0.0
    error: str | None = None
    sales_created: int = 0
    sales_filtered: int = 0
    clients_created: int = 0
    users_created: int = 0
    invoices_created: int = 0
    sale_status_events_created: int = 0
    invoice_status_events_created: int = 0
    errors: int = 0


class SalesImportResponse(CamelModel):
    """Sales import response."""
    success: bool
    message: str
    files_processed: int
    sales_created: int
    sales_updated: int
    sales_filtered: int
    clients_created: int
    users_created: int
    invoices_created: int
    sale_status_events_created: int
    invoice_status_events_created: int
    errors: int
    cancelled: bool = False
    aborted: bool = False
    abort_reason: str | None = None
    per_file_detail: list[FileDetailDTO] = Field(default_factory=list)


class UserImportResponse(CamelModel):
    """User import response."""
    success: bool
    files_processed: int
    users_created: int
    users_skipped: int
    invalid_emails: int
    errors: int
    per_file_detail: list[dict[str, Any]] = Field(default_factory=list)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Bulk import of sales, clients, invoices and status history",
    lifespan=lifespan,
)


# Exception handlers
@app.exception_handler(UploadRejectedError)
async def upload_rejected_handler(request, exc: UploadRejectedError):
    """Handle uploads breaking file count, size or type limits."""
    logger.warning(f"Upload rejected: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="upload_rejected", detail=str(exc)).model_dump(),
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request, exc: StoreUnavailableError):
    """Handle a store that cannot be reached before any data was imported."""
    logger.error(f"Store unavailable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error="store_unavailable", detail=str(exc)).model_dump(),
    )


def _open_uploads(files: list[UploadFile]) -> list[SourceFile]:
    validate_upload([(file.filename or "", file.size or 0) for file in files])
    # Wrap the spooled upload files so large ones are read in blocks, not copied
    sources = [SourceFile.from_stream(file.filename or "upload.json", file.file) for file in files]
    # Sizes reported by the client are optional, re-check the real ones
    validate_upload([(source.name, source.size) for source in sources])
    return sources


async def _close_uploads(files: list[UploadFile]) -> None:
    for file in files:
        await file.close()


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


@app.post("/imports/sales", response_model=SalesImportResponse, response_model_by_alias=True)
async def import_sales_files(
    files: list[UploadFile] = File(..., description="Sales export files (.json)"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Import one or more sales export files.

    Records are filtered by quote code, resolved against existing clients,
    users, sales and invoices, and written chunk by chunk. Partial failures
    are reported in ``errors``; the response is only unsuccessful when no file
    could be decoded at all.
    """
    try:
        sources = _open_uploads(files)
        logger.info(f"Received sales import of {len(sources)} files")
        async with _import_lock:
            result = await import_sales(sources, session_factory)
    finally:
        await _close_uploads(files)

    payload = result.as_dict()
    if result.success:
        payload["message"] = "Import completed" if not result.aborted else "Import stopped early, store unavailable"
        return SalesImportResponse.model_validate(payload)

    payload["message"] = "No file could be read"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=SalesImportResponse.model_validate(payload).model_dump(by_alias=True),
    )


@app.post("/imports/users", response_model=UserImportResponse, response_model_by_alias=True)
async def import_users_files(
    files: list[UploadFile] = File(..., description="Sales export files (.json)"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> UserImportResponse:
    """Create users for every creator email found in the uploaded files."""
    try:
        sources = _open_uploads(files)
        async with _import_lock:
            result = await import_users(sources, session_factory)
    finally:
        await _close_uploads(files)

    decoded_any = any("error" not in detail for detail in result.file_details)
    return UserImportResponse.model_validate({"success": decoded_any, **result.as_dict()})


@app.get("/sales/{external_sale_id}")
async def get_sale(
    external_sale_id: int,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Return one imported sale in the export JSON shape."""
    document = await fetch_sale_document(session, external_sale_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No sale found with id {external_sale_id}",
        )
    return {"success": True, "data": [document]}
