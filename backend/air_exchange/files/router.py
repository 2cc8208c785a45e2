"""FastAPI router for file upload, download and deletion endpoints.

Endpoints:
    POST   /upload                  - Store a file and announce it to the room
    GET    /download/{filename}     - Download a stored file as an attachment
    DELETE /delete-file/{filename}  - Remove one file from a room
    DELETE /delete-all              - Remove every file from a room

Room-scoped endpoints take the room id from the ``x-room-id`` header.
"""
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from air_exchange.errors import NotFoundError, RelayError, StorageError
from air_exchange.rooms.schemas import FileRecord
from air_exchange.services import RelayServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])


def get_file_url(request: Request, services: RelayServices, filename: str) -> str:
    """Generate the public URL for a stored file."""
    base_url = services.config.server.public_base_url or str(request.base_url)
    return f"{base_url.rstrip('/')}/uploads/{quote(filename)}"


def _require_room_id(room_id: Optional[str]) -> str:
    if not room_id:
        raise HTTPException(status_code=400, detail="Room ID required")
    return room_id


@router.post("/upload")
async def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(None),
    x_room_id: Optional[str] = Header(None),
    services: RelayServices = Depends(get_services),
):
    """Upload a file to a room.

    The blob is written first, then the record is added to the room, then
    ``newFile`` and ``notification`` are broadcast, so clients are never told
    about a file whose bytes are not on disk yet.

    Raises:
        HTTPException 400: If no file or no room id is supplied
        HTTPException 500: If the blob cannot be written
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    room_id = _require_room_id(x_room_id)

    original_name = file.filename or "unnamed"
    content = await file.read()

    try:
        filename = await services.blob_store.save(original_name, content)
    except StorageError as e:
        logger.error(f"Upload error: {e}")
        raise HTTPException(status_code=500, detail=e.message)

    record = FileRecord(
        filename=filename,
        originalName=original_name,
        timestamp=services.registry.clock(),
        url=get_file_url(request, services, filename),
    )
    existing = services.registry.find(room_id)
    if existing is not None and existing.find_file(filename) is not None:
        # The name was free on disk, so this record's blob is already gone.
        logger.warning(f"Replacing stale record {filename} in {existing.key}")
        services.registry.remove_file(room_id, filename)
        await services.manager.emit(room_id, "fileDeleted", filename)
    try:
        room = services.registry.add_file(room_id, record)
    except RelayError as e:
        services.blob_store.discard(filename)
        raise HTTPException(status_code=e.status_code, detail=e.message)

    await services.manager.emit(room_id, "newFile", record.model_dump())
    await services.manager.emit(
        room_id, "notification", {"message": f"New file uploaded: {record.originalName}"}
    )
    logger.info(f"File uploaded in {room.key}: {record.originalName} ({len(content)} bytes)")

    return {"success": True, "file": record.model_dump()}


@router.get("/download/{filename}")
async def download_file(
    filename: str,
    services: RelayServices = Depends(get_services),
):
    """Download a file by its stored name.

    Room membership is not checked; anyone holding the filename can fetch it.

    Raises:
        HTTPException 404: If the file does not exist
    """
    if not services.blob_store.exists(filename):
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(
        path=services.blob_store.path_for(filename),
        filename=filename,
        content_disposition_type="attachment",
    )


@router.delete("/delete-file/{filename}")
async def delete_file(
    filename: str,
    x_room_id: Optional[str] = Header(None),
    services: RelayServices = Depends(get_services),
):
    """Delete one file from a room.

    The blob is unlinked before the record is removed, so a storage failure
    leaves the room unchanged.

    Raises:
        HTTPException 400: If no room id is supplied
        HTTPException 404: If the room or the file record does not exist
        HTTPException 500: If the blob cannot be unlinked
    """
    room_id = _require_room_id(x_room_id)
    registry = services.registry

    try:
        room = registry.get(room_id)
        if room.find_file(filename) is None:
            raise NotFoundError("File not found")
        try:
            services.blob_store.delete(filename)
        except NotFoundError:
            logger.warning(f"Blob for {filename} was already gone; removing record")
        registry.remove_file(room_id, filename)
    except RelayError as e:
        if e.status_code >= 500:
            logger.error(f"Delete file error: {e}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    await services.manager.emit(room_id, "fileDeleted", filename)
    await services.manager.emit(room_id, "notification", {"message": f"File deleted: {filename}"})
    registry.prune_if_empty(room_id)
    logger.info(f"File deleted in {room.key}: {filename}")

    return {"success": True}


@router.delete("/delete-all")
async def delete_all_files(
    x_room_id: Optional[str] = Header(None),
    services: RelayServices = Depends(get_services),
):
    """Delete every file in a room.

    Records are removed one by one as their blobs are unlinked. If an unlink
    fails, the files already removed are announced individually and the
    request fails with 500; the remaining records stay in the room.

    Raises:
        HTTPException 400: If no room id is supplied
        HTTPException 404: If the room does not exist
        HTTPException 500: If a blob cannot be unlinked
    """
    room_id = _require_room_id(x_room_id)
    registry = services.registry
    manager = services.manager

    try:
        room = registry.get(room_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    removed = []
    failure: Optional[StorageError] = None
    for record in list(room.files):
        try:
            services.blob_store.delete(record.filename)
        except NotFoundError:
            logger.warning(f"Blob for {record.filename} was already gone; removing record")
        except StorageError as e:
            failure = e
            break
        registry.remove_file(room_id, record.filename)
        removed.append(record.filename)

    if failure is not None:
        logger.error(f"Delete all error in {room.key}: {failure}")
        for filename in removed:
            await manager.emit(room_id, "fileDeleted", filename)
        raise HTTPException(status_code=500, detail="Delete all failed")

    await manager.emit(room_id, "allFilesDeleted")
    await manager.emit(room_id, "notification", {"message": "All files deleted"})
    registry.prune_if_empty(room_id)
    logger.info(f"All files deleted in {room.key} ({len(removed)} files)")

    return {"success": True, "deleted_count": len(removed)}
