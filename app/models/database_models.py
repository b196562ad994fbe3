"""
SQLAlchemy ORM models for the XQuery database.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
import enum

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class MessageRole(str, enum.Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


# Models
class User(Base):
    """User account (mirrored from the auth layer)."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)  # matches the auth provider's user id
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    created_at = Column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    files = relationship("File", back_populates="user", cascade="all, delete-orphan")
    chats = relationship("Chat", back_populates="user", cascade="all, delete-orphan")


class File(Base):
    """Uploaded document stored in the documents bucket."""

    __tablename__ = "files"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # User-facing metadata
    name = Column(String(255), nullable=False)
    original_filename = Column(String(255), nullable=False)

    # Technical metadata
    mime_type = Column(String(255), nullable=False)
    size = Column(Integer, nullable=False)  # bytes
    storage_path = Column(String(512), nullable=False, unique=True)

    # Set once the file has been uploaded to OpenAI
    openai_file_id = Column(String(255), nullable=True)

    created_at = Column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False, index=True
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    # Relationships
    user = relationship("User", back_populates="files")
    chats = relationship("Chat", back_populates="file", cascade="all, delete-orphan")


class Chat(Base):
    """Conversation about one file, backed by an OpenAI thread."""

    __tablename__ = "chats"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    file_id = Column(String(36), ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(255), nullable=True)  # set from the first question
    openai_thread_id = Column(String(255), nullable=False)

    created_at = Column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False, index=True
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    # Relationships
    user = relationship("User", back_populates="chats")
    file = relationship("File", back_populates="chats")
    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )


class ChatMessage(Base):
    """Single user question or assistant answer within a chat."""

    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(
        SQLEnum(MessageRole, name="messagerole", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    created_at = Column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False, index=True
    )

    # Relationships
    chat = relationship("Chat", back_populates="messages")
