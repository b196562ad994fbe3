"""
Idempotent upload of stored documents to OpenAI.

A file is uploaded at most once; the resulting ``openai_file_id`` is persisted
on the File row and reused by every later chat and question.
"""
from __future__ import annotations

import dataclasses
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import File
from app.services.assistant import AssistantService
from app.services.storage import StorageService

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class SyncResult:
    openai_file_id: str
    already_synced: bool


async def ensure_file_synced(
    file: File,
    db: AsyncSession,
    storage: StorageService,
    assistant: AssistantService,
) -> SyncResult:
    """
    Make sure *file* exists on OpenAI, uploading it from storage if needed.

    The new id is flushed to *db*; committing is left to the caller.

    Raises:
        StorageError: the file could not be downloaded from storage.
    """
    if file.openai_file_id:
        return SyncResult(openai_file_id=file.openai_file_id, already_synced=True)

    content = await storage.download(file.storage_path)
    openai_file_id = await assistant.upload_file(
        content, file.original_filename, file.mime_type
    )

    file.openai_file_id = openai_file_id
    await db.flush()

    logger.info("Synced file id=%s to OpenAI as %s", file.id, openai_file_id)
    return SyncResult(openai_file_id=openai_file_id, already_synced=False)
