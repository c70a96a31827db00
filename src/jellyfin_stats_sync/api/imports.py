"""Upload endpoints for historical session exports."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from fastapi import APIRouter, File, Request, UploadFile
from fastapi.responses import JSONResponse

from ..importing import ImportFailedError, ImportPipeline, JsonStreamError
from ..models import ImportResult
from .state import get_db, get_settings, parse_server_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/import", tags=["import"])


def error_response(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": error}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def result_response(result: ImportResult) -> dict[str, Any]:
    return {
        "success": True,
        "message": result.message,
        "imported_count": result.imported_count,
        "total_count": result.total_count,
        "error_count": result.error_count,
        "skipped_count": result.skipped_count,
        **result.extra,
    }


async def upload_chunks(upload: UploadFile, chunk_size: int) -> AsyncIterator[bytes]:
    """Read an uploaded file piece by piece."""
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            return
        yield chunk


def is_json_upload(upload: UploadFile) -> bool:
    filename = (upload.filename or "").lower()
    return filename.endswith(".json") or upload.content_type == "application/json"


async def run_import(
    request: Request,
    server_id_param: str | None,
    label: str,
    run: Callable[[ImportPipeline], Awaitable[ImportResult]],
    not_found_error: str = "Server not found",
) -> dict[str, Any] | JSONResponse:
    """Resolve the target server, run one import and map failures onto responses."""
    if not server_id_param:
        return error_response(400, "Server ID is required")
    server_id = parse_server_id(server_id_param)
    if server_id is None:
        return error_response(400, "Invalid server ID")

    db = get_db(request)
    server = await db.get_server(server_id)
    if server is None:
        return error_response(404, not_found_error)

    logger.info("[%s] Starting %s import", server.name, label)
    try:
        result = await run(ImportPipeline(db, server.id))
    except ImportFailedError as e:
        return error_response(400, e.error, e.message)
    except JsonStreamError as e:
        logger.warning("[%s] Rejected %s upload: %s", server.name, label, e)
        return error_response(400, "Invalid JSON format", str(e))
    except Exception as e:
        logger.exception("[%s] %s import failed: %s", server.name, label, e)
        return error_response(500, str(e))

    return result_response(result)


@router.post("/jellystats", response_model=None)
async def import_jellystats(request: Request, serverId: str | None = None) -> dict[str, Any] | JSONResponse:
    """Import a Jellystats export sent as the raw request body."""
    return await run_import(
        request,
        serverId,
        "Jellystats",
        lambda pipeline: pipeline.import_jellystats(request.stream()),
    )


@router.post("/legacy", response_model=None)
async def import_legacy(request: Request, serverId: str | None = None) -> dict[str, Any] | JSONResponse:
    """Import a legacy session dump sent as the raw request body."""
    return await run_import(
        request,
        serverId,
        "legacy",
        lambda pipeline: pipeline.import_legacy(request.stream()),
    )


@router.post("/playback-reporting", response_model=None)
async def import_playback_reporting(
    request: Request,
    serverId: str | None = None,
    file: UploadFile | None = File(None),
) -> dict[str, Any] | JSONResponse:
    """Import a Playback Reporting TSV or JSON export."""
    if file is None or not serverId:
        return error_response(400, "File and serverId are required")

    chunk_size = get_settings(request).imports.chunk_size
    is_json = is_json_upload(file)
    return await run_import(
        request,
        serverId,
        "Playback Reporting",
        lambda pipeline: pipeline.import_playback_reporting(upload_chunks(file, chunk_size), is_json=is_json),
    )


@router.post("/backup", response_model=None)
async def import_backup(
    request: Request,
    serverId: str | None = None,
    file: UploadFile | None = File(None),
) -> dict[str, Any] | JSONResponse:
    """Restore sessions from a backup produced by the export endpoint."""
    if file is None or not serverId:
        return error_response(400, "File and serverId are required")
    if not (file.filename or "").lower().endswith(".json"):
        return error_response(400, "Only JSON files are supported")

    chunk_size = get_settings(request).imports.chunk_size
    return await run_import(
        request,
        serverId,
        "backup",
        lambda pipeline: pipeline.import_backup(upload_chunks(file, chunk_size)),
        not_found_error="Target server not found",
    )
