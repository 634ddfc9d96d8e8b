"""
Export API Endpoints

Provides REST API for creating, monitoring, cancelling and downloading
job application exports.
"""

import unicodedata
from typing import IO, Iterator
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from jobview.core.security import CurrentUser, get_current_user
from jobview.exports.exceptions import (
    CapacityExhaustedError,
    ExportGoneError,
    ExportNotFoundError,
    ExportNotReadyError,
)
from jobview.exports.schemas import (
    CancelExportResponse,
    ExportCreatedResponse,
    ExportRequest,
    ExportTaskResponse,
    PaginatedExportHistoryResponse,
)
from jobview.exports.service import API_PREFIX, MAX_PER_PAGE, ExportService
from jobview.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix=API_PREFIX, tags=["Exports"])

CHUNK_SIZE = 64 * 1024


def get_export_service(request: Request) -> ExportService:
    """The service built at start-up lives on the application state."""
    return request.app.state.export_service


def content_disposition(file_name: str) -> str:
    """
    Attachment header that survives any file name.

    Header values travel as latin-1, so the real name goes in the RFC 5987
    ``filename*`` parameter and ``filename`` carries an ASCII fallback.
    """
    fallback = unicodedata.normalize("NFKD", file_name).encode("ascii", "ignore").decode("ascii")
    fallback = "".join(ch for ch in fallback if ch.isprintable() and ch not in '"\\;')
    stem, dot, extension = fallback.rpartition(".")
    if not dot or not stem.strip(" ._"):
        fallback = f"export.{extension}" if dot else "export"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name, safe='')}"


def _iter_file(stream: IO[bytes]) -> Iterator[bytes]:
    try:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


@router.post("", response_model=ExportCreatedResponse, status_code=status.HTTP_202_ACCEPTED)
def create_export(
    export_request: ExportRequest,
    service: ExportService = Depends(get_export_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Create a new export task and hand it to the worker pool.

    Returns immediately with the task ID and a status URL to poll.

    **Supported Formats:**
    - xlsx (default, optional statistics sheet)
    - csv
    - json
    """
    try:
        response = service.create_export(current_user, export_request)
    except CapacityExhaustedError as e:
        headers = {"Retry-After": str(e.retry_after)} if e.retry_after else None
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e), headers=headers
        ) from e

    logger.info(
        f"Created export task {response.task_id} for user {current_user.id}: "
        f"format={export_request.format.value}"
    )
    return response


@router.get("/status/{task_id}", response_model=ExportTaskResponse)
def get_export_status(
    task_id: str,
    service: ExportService = Depends(get_export_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Check the status of an export task.

    **Status Values:**
    - PENDING: waiting for a free worker
    - RUNNING: being generated (see progress)
    - COMPLETED: ready for download until expires_at
    - FAILED: generation failed (see error_message)
    - CANCELLED: stopped on request
    """
    try:
        return service.get_status(current_user, task_id)
    except ExportNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get("/download/{task_id}")
def download_export(
    task_id: str,
    service: ExportService = Depends(get_export_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Download the exported file.

    Returns 409 while the export is not completed and 410 once the file has
    been removed by the retention policy.
    """
    try:
        stream, file_name, media_type = service.open_download(current_user, task_id)
    except ExportNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ExportNotReadyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ExportGoneError as e:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(e)) from e

    return StreamingResponse(
        _iter_file(stream),
        media_type=media_type,
        headers={"Content-Disposition": content_disposition(file_name)},
    )


@router.get("/history", response_model=PaginatedExportHistoryResponse)
def list_export_history(
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(10, ge=1, le=MAX_PER_PAGE, description="Items per page"),
    service: ExportService = Depends(get_export_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    List the caller's export tasks, newest first.
    """
    return service.history(current_user, page, per_page)


@router.delete("/cancel/{task_id}", response_model=CancelExportResponse)
def cancel_export(
    task_id: str,
    service: ExportService = Depends(get_export_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Cancel an export task.

    Pending tasks are cancelled at once; running tasks stop at the next batch
    boundary. Calling this on a finished task returns its current status.
    """
    try:
        return service.cancel(current_user, task_id)
    except ExportNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get("/formats")
def get_supported_formats(service: ExportService = Depends(get_export_service)):
    """Supported export formats."""
    return service.formats()


@router.get("/fields")
def get_exportable_fields(service: ExportService = Depends(get_export_service)):
    """Exportable fields, with labels and the default selection."""
    return service.fields()


@router.get("/template")
def get_export_template(service: ExportService = Depends(get_export_service)):
    """Request template and examples."""
    return service.template()
