"""
Chat endpoints.

Each chat is a conversation about one file and is backed by an OpenAI
thread created together with the chat.

Route summary
-------------
POST   /api/chats/             - create chat for a file
GET    /api/chats/             - list chats (optionally for one file)
GET    /api/chats/search       - search a file's chats by title / message text
GET    /api/chats/{chat_id}    - chat + messages
DELETE /api/chats/{chat_id}    - delete chat (thread deletion is best-effort)
POST   /api/chats/stream       - ask a question, answer streamed over SSE
"""
import logging
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sse_starlette.sse import EventSourceResponse

from app.config import settings
from app.database import get_db, get_session_factory
from app.dependencies.auth import (
    get_current_user_id,
    get_optional_user_id,
    get_or_create_user,
    get_owned_chat,
)
from app.models.database_models import Chat, ChatMessage, File, User
from app.models.schemas import (
    ChatCreateRequest,
    ChatDetailResponse,
    ChatMessageResponse,
    ChatResponse,
    ChatSearchMatch,
    ChatSearchResponse,
    ChatStreamRequest,
    SuccessResponse,
)
from app.services.assistant import AssistantService, get_assistant_service
from app.services.chat_stream import error_event, stream_question
from app.services.storage import StorageService, get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter()


# ═══════════════════════════════════════════════════════════════════════════════
# CHAT CRUD
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_chat(
    body: ChatCreateRequest,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
    assistant: AssistantService = Depends(get_assistant_service),
) -> ChatResponse:
    """Start a new, untitled chat about one of the user's files."""
    file_result = await db.execute(
        select(File).where(File.id == body.file_id, File.user_id == user.id)
    )
    if file_result.scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )

    try:
        thread_id = await assistant.create_thread()
    except Exception as exc:
        logger.error("create_chat: thread creation failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create chat: {exc}",
        )

    chat = Chat(
        id=str(uuid.uuid4()),
        user_id=user.id,
        file_id=body.file_id,
        openai_thread_id=thread_id,
    )
    db.add(chat)
    await db.flush()

    logger.info("Created chat id=%s for file=%s (thread=%s)", chat.id, chat.file_id, thread_id)
    return ChatResponse.model_validate(chat)


@router.get("/", response_model=List[ChatResponse])
async def list_chats(
    file_id: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[ChatResponse]:
    """List the user's chats, most recently active first."""
    query = select(Chat).where(Chat.user_id == user_id)
    if file_id:
        query = query.where(Chat.file_id == file_id)
    result = await db.execute(query.order_by(Chat.updated_at.desc()))
    return [ChatResponse.model_validate(c) for c in result.scalars().all()]


@router.get("/search", response_model=ChatSearchResponse)
async def search_chats(
    file_id: str = Query(..., min_length=1),
    query: str = Query(""),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ChatSearchResponse:
    """
    Find the file's chats whose title or any message contains *query*
    (case-insensitive). Each hit lists the messages that matched.
    """
    needle = query.strip()
    if not needle:
        return ChatSearchResponse(chats=[])

    # Literal substring match: escape LIKE wildcards in user input
    escaped = needle.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"

    chats_result = await db.execute(
        select(Chat)
        .where(Chat.user_id == user_id, Chat.file_id == file_id)
        .order_by(Chat.updated_at.desc())
    )
    chats = chats_result.scalars().all()
    if not chats:
        return ChatSearchResponse(chats=[])

    messages_result = await db.execute(
        select(ChatMessage)
        .where(
            ChatMessage.chat_id.in_([c.id for c in chats]),
            ChatMessage.content.ilike(pattern, escape="\\"),
        )
        .order_by(ChatMessage.created_at.asc())
    )
    matches: Dict[str, List[ChatMessageResponse]] = {}
    for msg in messages_result.scalars().all():
        matches.setdefault(msg.chat_id, []).append(ChatMessageResponse.model_validate(msg))

    lowered = needle.lower()
    hits = [
        ChatSearchMatch(
            id=c.id,
            title=c.title,
            updated_at=c.updated_at,
            matching_messages=matches.get(c.id, []),
        )
        for c in chats
        if c.id in matches or (c.title and lowered in c.title.lower())
    ]
    return ChatSearchResponse(chats=hits)


@router.get("/{chat_id}", response_model=ChatDetailResponse)
async def get_chat(
    chat: Chat = Depends(get_owned_chat),
    db: AsyncSession = Depends(get_db),
) -> ChatDetailResponse:
    """Return the chat, the name of its file, and all messages oldest first."""
    file_result = await db.execute(select(File.name).where(File.id == chat.file_id))
    file_name = file_result.scalar_one_or_none() or ""

    messages_result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.chat_id == chat.id)
        .order_by(ChatMessage.created_at.asc())
    )

    return ChatDetailResponse(
        id=chat.id,
        file_id=chat.file_id,
        title=chat.title,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        file_name=file_name,
        messages=[
            ChatMessageResponse.model_validate(m) for m in messages_result.scalars().all()
        ],
    )


@router.delete("/{chat_id}", response_model=SuccessResponse)
async def delete_chat(
    chat: Chat = Depends(get_owned_chat),
    db: AsyncSession = Depends(get_db),
    assistant: AssistantService = Depends(get_assistant_service),
) -> SuccessResponse:
    """Delete the chat and its messages; the OpenAI thread is removed if possible."""
    thread_id = chat.openai_thread_id
    await db.delete(chat)
    await db.commit()

    try:
        await assistant.delete_thread(thread_id)
    except Exception as exc:
        logger.warning("Could not delete thread %s for chat %s: %s", thread_id, chat.id, exc)

    logger.info("Deleted chat id=%s", chat.id)
    return SuccessResponse(success=True)


# ═══════════════════════════════════════════════════════════════════════════════
# STREAMING
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/stream")
async def stream_chat_answer(
    body: Optional[ChatStreamRequest] = None,
    user_id: Optional[str] = Depends(get_optional_user_id),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    storage: StorageService = Depends(get_storage_service),
    assistant: AssistantService = Depends(get_assistant_service),
):
    """
    Ask a question in a chat and stream the answer as server-sent events.

    Event types: ``status``, ``delta``, ``done``, ``error``; each ``data``
    field is JSON. Failures after the stream has started arrive as a final
    ``error`` event, never as an HTTP error.
    """
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    if body is None or not (body.chat_id.strip() and body.question.strip()):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing chat_id or question",
        )
    if len(body.question) > settings.QUESTION_MAX_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Question must be at most {settings.QUESTION_MAX_LENGTH} characters",
        )

    async def event_publisher():
        try:
            async for event in stream_question(
                user_id=user_id,
                chat_id=body.chat_id,
                question=body.question,
                session_factory=session_factory,
                storage=storage,
                assistant=assistant,
            ):
                yield event.to_sse()
        except Exception as exc:
            logger.error("Error in chat stream for chat=%s: %s", body.chat_id, exc, exc_info=True)
            yield error_event(str(exc) or "Unknown error").to_sse()

    return EventSourceResponse(event_publisher())
