"""Database and schema models for XQuery."""
from app.models.database_models import (
    User,
    File,
    Chat,
    ChatMessage,
    MessageRole,
)
from app.models.schemas import (
    UploadUrlResponse,
    FileResponse,
    FileSummary,
    ChatResponse,
    ChatDetailResponse,
    ChatMessageResponse,
    ChatSearchResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "User",
    "File",
    "Chat",
    "ChatMessage",
    "MessageRole",
    # Pydantic schemas
    "UploadUrlResponse",
    "FileResponse",
    "FileSummary",
    "ChatResponse",
    "ChatDetailResponse",
    "ChatMessageResponse",
    "ChatSearchResponse",
    "HealthCheckResponse",
]
