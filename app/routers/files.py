"""
File upload and management endpoints.

Uploads go straight from the browser to storage: the API registers the file
and hands out a signed upload URL, then the client confirms once the PUT
has finished.

POST   /upload-url            - register a file + signed upload URL
POST   /{id}/confirm          - verify the object landed in storage
GET    /                      - list files, newest first
GET    /{id}                  - full file record
POST   /{id}/download-url     - short-lived signed download URL
DELETE /{id}                  - delete object + record (cascades to chats)
PATCH  /{id}                  - rename
POST   /{id}/sync             - upload the file to OpenAI (idempotent)
GET    /{id}/sync-status      - has the file been synced?
POST   /{id}/ask              - non-streaming question about the file
"""
from __future__ import annotations

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies.auth import get_current_user_id, get_or_create_user, get_owned_file
from app.models.database_models import File, User
from app.models.schemas import (
    AskQuestionRequest,
    AskQuestionResponse,
    ConfirmUploadRequest,
    ConfirmUploadResponse,
    DownloadUrlResponse,
    FileRenameRequest,
    FileResponse,
    FileSummary,
    FileSyncResponse,
    FileSyncStatusResponse,
    SuccessResponse,
    UploadUrlRequest,
    UploadUrlResponse,
)
from app.services.assistant import AssistantError, AssistantService, get_assistant_service
from app.services.file_sync import ensure_file_synced
from app.services.storage import StorageError, StorageService, get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter()


def build_storage_path(user_id: str, file_id: str, filename: str) -> str:
    """Storage key for an upload: ``{user_id}/{file_id}.{ext}``."""
    _, dot, ext = filename.rpartition(".")
    if not dot or not ext:
        return f"{user_id}/{file_id}"
    return f"{user_id}/{file_id}.{ext}"


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload-url",
    response_model=UploadUrlResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_upload_url(
    body: UploadUrlRequest,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
) -> UploadUrlResponse:
    """
    Register a new file and return a signed URL to upload its bytes to.

    - Max file size: 10 MB (configurable via MAX_FILE_SIZE)
    - The object key uses the file's UUID to avoid collisions
    """
    file_id = str(uuid.uuid4())
    storage_path = build_storage_path(user.id, file_id, body.filename)

    try:
        signed = await storage.create_signed_upload_url(storage_path)
    except StorageError as exc:
        logger.error("create_upload_url: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create upload URL",
        )

    db.add(
        File(
            id=file_id,
            user_id=user.id,
            name=body.filename,
            original_filename=body.filename,
            mime_type=body.mime_type,
            size=body.size,
            storage_path=storage_path,
        )
    )
    await db.flush()

    logger.info("Registered file id=%s (%r, %d bytes) for user=%s", file_id, body.filename, body.size, user.id)

    return UploadUrlResponse(
        file_id=file_id,
        upload_url=signed.url,
        token=signed.token,
        path=storage_path,
    )


@router.post("/{file_id}/confirm", response_model=ConfirmUploadResponse)
async def confirm_upload(
    body: ConfirmUploadRequest,
    file: File = Depends(get_owned_file),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
) -> ConfirmUploadResponse:
    """
    Confirm that the client finished uploading.

    If the object is missing from storage the registration is discarded so
    abandoned uploads don't leave orphan rows behind.
    """
    if not await storage.exists(file.storage_path):
        await db.delete(file)
        await db.commit()
        logger.info("confirm_upload: discarded file id=%s (object missing)", file.id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Upload not completed or file not found in storage",
        )

    if body.name:
        file.name = body.name

    return ConfirmUploadResponse(success=True, file_id=file.id)


# ---------------------------------------------------------------------------
# List / get
# ---------------------------------------------------------------------------

@router.get("/", response_model=List[FileSummary])
async def list_files(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[FileSummary]:
    """List the user's files, newest first."""
    result = await db.execute(
        select(File)
        .where(File.user_id == user_id)
        .order_by(File.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return [FileSummary.model_validate(f) for f in result.scalars().all()]


@router.get("/{file_id}", response_model=FileResponse)
async def get_file(file: File = Depends(get_owned_file)) -> FileResponse:
    return FileResponse.model_validate(file)


@router.post("/{file_id}/download-url", response_model=DownloadUrlResponse)
async def create_download_url(
    file: File = Depends(get_owned_file),
    storage: StorageService = Depends(get_storage_service),
) -> DownloadUrlResponse:
    """Return a signed download URL valid for DOWNLOAD_URL_TTL_SECONDS."""
    try:
        url = await storage.create_signed_url(
            file.storage_path, settings.DOWNLOAD_URL_TTL_SECONDS
        )
    except StorageError as exc:
        logger.error("create_download_url: file id=%s: %s", file.id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create download URL",
        )
    return DownloadUrlResponse(url=url)


# ---------------------------------------------------------------------------
# Delete / rename
# ---------------------------------------------------------------------------

@router.delete("/{file_id}", response_model=SuccessResponse)
async def delete_file(
    file: File = Depends(get_owned_file),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
) -> SuccessResponse:
    """
    Delete the stored object and the file record.

    Chats and messages go with the record via cascade. A storage failure is
    logged but does not block removing the record.
    """
    try:
        await storage.remove([file.storage_path])
    except StorageError as exc:
        logger.error("Storage deletion error for file id=%s: %s", file.id, exc)

    await db.delete(file)
    await db.commit()

    logger.info("Deleted file id=%s (%r)", file.id, file.name)
    return SuccessResponse(success=True)


@router.patch("/{file_id}", response_model=SuccessResponse)
async def rename_file(
    body: FileRenameRequest,
    file: File = Depends(get_owned_file),
) -> SuccessResponse:
    file.name = body.name
    return SuccessResponse(success=True)


# ---------------------------------------------------------------------------
# OpenAI sync + one-shot questions
# ---------------------------------------------------------------------------

@router.post("/{file_id}/sync", response_model=FileSyncResponse)
async def sync_file(
    file: File = Depends(get_owned_file),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    assistant: AssistantService = Depends(get_assistant_service),
) -> FileSyncResponse:
    """Upload the file to OpenAI unless it was synced before."""
    try:
        result = await ensure_file_synced(file, db, storage, assistant)
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        )
    return FileSyncResponse(
        openai_file_id=result.openai_file_id,
        already_synced=result.already_synced,
    )


@router.get("/{file_id}/sync-status", response_model=FileSyncStatusResponse)
async def get_sync_status(file: File = Depends(get_owned_file)) -> FileSyncStatusResponse:
    return FileSyncStatusResponse(synced=bool(file.openai_file_id))


@router.post("/{file_id}/ask", response_model=AskQuestionResponse)
async def ask_question(
    body: AskQuestionRequest,
    file: File = Depends(get_owned_file),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    assistant: AssistantService = Depends(get_assistant_service),
) -> AskQuestionResponse:
    """
    Answer a question about the file in a single request (no streaming).

    Pass back ``thread_id`` from a previous answer to continue the same
    conversation.
    """
    try:
        sync = await ensure_file_synced(file, db, storage, assistant)
        # Keep the synced id even if the run below fails
        await db.commit()
        answer, thread_id = await assistant.ask(
            body.question, sync.openai_file_id, thread_id=body.thread_id
        )
    except (StorageError, AssistantError) as exc:
        logger.error("ask_question: file id=%s: %s", file.id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        )
    return AskQuestionResponse(answer=answer, thread_id=thread_id)
