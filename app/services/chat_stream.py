"""
Streaming question answering for a chat.

``stream_question`` turns one question into a sequence of ``StreamEvent``s:

    status  {"message": ...}                        progress hints
    delta   {"content": ...}                        assistant text as it arrives
    done    {"userMessageId", "assistantMessageId"} answer persisted
    error   {"message": ...}                        terminal failure

Ordering of side effects
------------------------
1. chat + file lookup (owner-scoped)
2. upload the file to OpenAI if it has never been synced
3. persist the user message; first message also sets the chat title
4. post the question to the thread; the file is attached only while the
   chat has a single stored message, so the thread is seeded exactly once
5. stream the run, then persist the assistant message and emit ``done``
"""
from __future__ import annotations

import dataclasses
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.models.database_models import Chat, ChatMessage, File, MessageRole
from app.services.assistant import AssistantService
from app.services.file_sync import ensure_file_synced
from app.services.storage import StorageError, StorageService

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class StreamEvent:
    type: str
    data: Dict[str, Any]

    def to_sse(self) -> Dict[str, str]:
        """Render as an sse-starlette message (``event:`` + JSON ``data:``)."""
        return {"event": self.type, "data": json.dumps(self.data)}


def status_event(message: str) -> StreamEvent:
    return StreamEvent("status", {"message": message})


def error_event(message: str) -> StreamEvent:
    return StreamEvent("error", {"message": message})


def make_chat_title(question: str) -> str:
    """Derive a chat title from its first question."""
    limit = settings.CHAT_TITLE_MAX_LENGTH
    if len(question) > limit:
        return f"{question[:limit]}..."
    return question


async def stream_question(
    user_id: str,
    chat_id: str,
    question: str,
    session_factory: async_sessionmaker,
    storage: StorageService,
    assistant: AssistantService,
) -> AsyncIterator[StreamEvent]:
    """Answer *question* in *chat_id*, yielding events as the answer streams in."""
    async with session_factory() as db:
        chat_result = await db.execute(
            select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
        )
        chat = chat_result.scalar_one_or_none()
        if chat is None:
            yield error_event("Chat not found")
            return

        file_result = await db.execute(select(File).where(File.id == chat.file_id))
        file = file_result.scalar_one_or_none()
        if file is None:
            yield error_event("File not found")
            return

        if not file.openai_file_id:
            yield status_event("Uploading file to AI...")
            try:
                sync = await ensure_file_synced(file, db, storage, assistant)
            except StorageError as exc:
                logger.error("stream_question: chat=%s storage download failed: %s", chat_id, exc)
                yield error_event("Failed to download file from storage")
                return
            await db.commit()
            openai_file_id = sync.openai_file_id
        else:
            openai_file_id = file.openai_file_id

        user_message_id = str(uuid.uuid4())
        db.add(
            ChatMessage(
                id=user_message_id,
                chat_id=chat.id,
                role=MessageRole.USER,
                content=question,
            )
        )
        if not chat.title:
            chat.title = make_chat_title(question)
        await db.commit()

        yield status_event("Searching document...")

        await assistant.get_or_create_assistant()

        count_result = await db.execute(
            select(func.count(ChatMessage.id)).where(ChatMessage.chat_id == chat.id)
        )
        is_first_message = (count_result.scalar() or 0) <= 1

        await assistant.add_user_message(
            chat.openai_thread_id,
            question,
            attach_file_id=openai_file_id if is_first_message else None,
        )

        full_content = ""
        try:
            async for text in assistant.stream_run(chat.openai_thread_id):
                if not text:
                    continue
                full_content += text
                yield StreamEvent("delta", {"content": text})
        except Exception as exc:
            logger.error("stream_question: chat=%s run failed: %s", chat_id, exc)
            yield error_event(str(exc) or "Stream failed unexpectedly")
            return

        if not full_content:
            yield error_event("No response received from assistant")
            return

        assistant_message_id = str(uuid.uuid4())
        db.add(
            ChatMessage(
                id=assistant_message_id,
                chat_id=chat.id,
                role=MessageRole.ASSISTANT,
                content=full_content,
            )
        )
        chat.updated_at = datetime.now(timezone.utc)
        await db.commit()

        logger.info(
            "stream_question: chat=%s answered (%d chars)", chat_id, len(full_content)
        )
        yield StreamEvent(
            "done",
            {"userMessageId": user_message_id, "assistantMessageId": assistant_message_id},
        )
