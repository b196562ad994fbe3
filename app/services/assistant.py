"""
OpenAI Assistants API integration.

Provides:
- AssistantService: file upload, thread management, streamed and polled runs
  against a single shared "Document Assistant" with the file_search tool
- get_assistant_service: FastAPI dependency returning the shared instance
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Tuple

from openai import AsyncOpenAI

from app.config import settings

logger = logging.getLogger(__name__)

FILE_SEARCH_TOOL = {"type": "file_search"}


class AssistantError(RuntimeError):
    """Raised when the assistant returns no usable answer."""


class AssistantRunError(AssistantError):
    """Raised when an assistant run fails or ends in a non-completed state."""


class AssistantService:
    """
    Wrapper around the OpenAI Assistants (beta) endpoints.

    * One assistant per process, created lazily under a lock, unless
      OPENAI_ASSISTANT_ID points at an existing one
    * Files are uploaded with purpose ``assistants`` so file_search can index
      them when attached to a thread message
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        self._client = client
        self._assistant_id: Optional[str] = settings.OPENAI_ASSISTANT_ID or None
        self._lock = asyncio.Lock()

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    @staticmethod
    def is_configured() -> bool:
        return bool(settings.OPENAI_API_KEY)

    # ------------------------------------------------------------------
    # Assistant / files / threads
    # ------------------------------------------------------------------

    async def get_or_create_assistant(self) -> str:
        """Return the shared assistant id, creating the assistant on first use."""
        if self._assistant_id:
            return self._assistant_id

        async with self._lock:
            if self._assistant_id:
                return self._assistant_id
            assistant = await self.client.beta.assistants.create(
                name=settings.OPENAI_ASSISTANT_NAME,
                instructions=settings.ASSISTANT_INSTRUCTIONS,
                model=settings.OPENAI_ASSISTANT_MODEL,
                tools=[FILE_SEARCH_TOOL],
            )
            self._assistant_id = assistant.id
            logger.info(
                "Created assistant %s (model=%s)",
                assistant.id,
                settings.OPENAI_ASSISTANT_MODEL,
            )
        return self._assistant_id

    async def upload_file(self, content: bytes, filename: str, mime_type: str) -> str:
        """Upload raw file bytes and return the OpenAI file id."""
        uploaded = await self.client.files.create(
            file=(filename, content, mime_type),
            purpose="assistants",
        )
        logger.info("Uploaded %r to OpenAI as %s (%d bytes)", filename, uploaded.id, len(content))
        return uploaded.id

    async def create_thread(self) -> str:
        thread = await self.client.beta.threads.create()
        return thread.id

    async def delete_thread(self, thread_id: str) -> None:
        await self.client.beta.threads.delete(thread_id)

    async def add_user_message(
        self,
        thread_id: str,
        content: str,
        attach_file_id: Optional[str] = None,
    ) -> None:
        """
        Append a user message to *thread_id*.

        When *attach_file_id* is given the file is attached with the
        file_search tool, which makes it searchable for the whole thread.
        """
        kwargs = {}
        if attach_file_id:
            kwargs["attachments"] = [
                {"file_id": attach_file_id, "tools": [FILE_SEARCH_TOOL]}
            ]
        await self.client.beta.threads.messages.create(
            thread_id,
            role="user",
            content=content,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def stream_run(self, thread_id: str) -> AsyncIterator[str]:
        """
        Run the assistant on *thread_id* and yield text deltas as they arrive.

        Raises:
            AssistantRunError: the provider reported ``thread.run.failed``.
        """
        assistant_id = await self.get_or_create_assistant()
        async with self.client.beta.threads.runs.stream(
            thread_id=thread_id,
            assistant_id=assistant_id,
        ) as stream:
            async for event in stream:
                if event.event == "thread.message.delta":
                    for block in event.data.delta.content or []:
                        if block.type == "text" and block.text and block.text.value:
                            yield block.text.value
                elif event.event == "thread.run.failed":
                    error = event.data.last_error
                    message = error.message if error and error.message else "Assistant run failed"
                    raise AssistantRunError(message)

    async def ask(
        self,
        question: str,
        openai_file_id: str,
        thread_id: Optional[str] = None,
    ) -> Tuple[str, str]:
        """
        Answer *question* without streaming.

        A new thread is seeded with the question and the attached file; an
        existing thread just gets the question appended.

        Returns:
            (answer text, thread id)
        """
        if thread_id:
            await self.add_user_message(thread_id, question)
        else:
            thread = await self.client.beta.threads.create(
                messages=[
                    {
                        "role": "user",
                        "content": question,
                        "attachments": [
                            {"file_id": openai_file_id, "tools": [FILE_SEARCH_TOOL]}
                        ],
                    }
                ]
            )
            thread_id = thread.id

        assistant_id = await self.get_or_create_assistant()
        run = await self.client.beta.threads.runs.create_and_poll(
            thread_id=thread_id,
            assistant_id=assistant_id,
        )
        if run.status != "completed":
            raise AssistantRunError(f"Assistant run failed with status: {run.status}")

        messages = await self.client.beta.threads.messages.list(
            thread_id=thread_id, order="desc", limit=1
        )
        latest = messages.data[0] if messages.data else None
        if latest is None or latest.role != "assistant":
            raise AssistantError("No assistant response found")

        text = next((c for c in latest.content if c.type == "text"), None)
        if text is None:
            raise AssistantError("No text content in response")

        return text.text.value, thread_id


# Module-level singleton so the assistant id cache is shared across requests
_assistant_service: Optional[AssistantService] = None


def get_assistant_service() -> AssistantService:
    """FastAPI dependency returning the shared AssistantService."""
    global _assistant_service
    if _assistant_service is None:
        _assistant_service = AssistantService()
    return _assistant_service
