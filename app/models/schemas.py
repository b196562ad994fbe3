"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

from app.config import settings


# Enums (matching database enums)
class MessageRoleSchema(str, Enum):
    """Message roles for API responses."""

    USER = "user"
    ASSISTANT = "assistant"


# File Schemas
class UploadUrlRequest(BaseModel):
    """Request body for POST /api/files/upload-url."""

    filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str
    size: int = Field(..., gt=0, le=settings.MAX_FILE_SIZE)

    @field_validator("mime_type")
    @classmethod
    def _check_mime_type(cls, value: str) -> str:
        if value not in settings.ALLOWED_MIME_TYPES:
            raise ValueError(
                f"Unsupported file type '{value}'. "
                f"Accepted: {', '.join(settings.ALLOWED_MIME_TYPES)}"
            )
        return value


class UploadUrlResponse(BaseModel):
    """Signed upload target for a freshly registered file."""

    file_id: str
    upload_url: str
    token: str
    path: str


class ConfirmUploadRequest(BaseModel):
    """Request body for POST /api/files/{id}/confirm."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)


class ConfirmUploadResponse(BaseModel):
    success: bool = True
    file_id: str


class FileRenameRequest(BaseModel):
    """Request body for PATCH /api/files/{id}."""

    name: str = Field(..., min_length=1, max_length=255)


class FileSummary(BaseModel):
    """Row in the file list."""

    id: str
    name: str
    original_filename: str
    mime_type: str
    size: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FileResponse(FileSummary):
    """Full file record."""

    user_id: str
    storage_path: str
    openai_file_id: Optional[str] = None
    updated_at: datetime


class DownloadUrlResponse(BaseModel):
    url: str


class SuccessResponse(BaseModel):
    success: bool = True


class FileSyncResponse(BaseModel):
    """Result of syncing a file to OpenAI."""

    openai_file_id: str
    already_synced: bool


class FileSyncStatusResponse(BaseModel):
    synced: bool


class AskQuestionRequest(BaseModel):
    """Request body for the non-streaming POST /api/files/{id}/ask."""

    question: str = Field(..., min_length=1, max_length=settings.QUESTION_MAX_LENGTH)
    thread_id: Optional[str] = None


class AskQuestionResponse(BaseModel):
    answer: str
    thread_id: str


# Chat Schemas
class ChatCreateRequest(BaseModel):
    """Request body for POST /api/chats/."""

    file_id: str = Field(..., min_length=1)


class ChatResponse(BaseModel):
    """Schema for chat list entries and create responses."""

    id: str
    file_id: str
    title: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatMessageResponse(BaseModel):
    """Single stored message."""

    id: str
    role: MessageRoleSchema
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("role", mode="before")
    @classmethod
    def _unwrap_role(cls, value):
        # ORM rows carry the database enum, not the schema enum
        return getattr(value, "value", value)


class ChatDetailResponse(ChatResponse):
    """Chat with its file name and full message history."""

    file_name: str
    messages: List[ChatMessageResponse] = []


class ChatSearchMatch(BaseModel):
    """Chat whose title or messages matched a search query."""

    id: str
    title: Optional[str] = None
    updated_at: datetime
    matching_messages: List[ChatMessageResponse] = []


class ChatSearchResponse(BaseModel):
    chats: List[ChatSearchMatch]


class ChatStreamRequest(BaseModel):
    """
    Request body for POST /api/chats/stream.

    Blank or over-long values are rejected by the endpoint with a 400, after
    the identity check, rather than with a validation error.
    """

    chat_id: str = ""
    question: str = ""


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check endpoint."""

    status: str
    database: str
    openai: str
    storage: str
    timestamp: datetime
