"""Unit tests for the OpenAI and Supabase wrappers, using stub clients."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import settings
from app.services.assistant import AssistantError, AssistantRunError, AssistantService
from app.services.storage import StorageError, StorageService


# ---------------------------------------------------------------------------
# OpenAI stubs
# ---------------------------------------------------------------------------

def _delta_event(*values):
    blocks = [SimpleNamespace(type="text", text=SimpleNamespace(value=v)) for v in values]
    return SimpleNamespace(
        event="thread.message.delta",
        data=SimpleNamespace(delta=SimpleNamespace(content=blocks)),
    )


def _failed_event(message=None):
    error = SimpleNamespace(message=message) if message else None
    return SimpleNamespace(event="thread.run.failed", data=SimpleNamespace(last_error=error))


class _StreamManager:
    def __init__(self, events):
        self._events = events

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for event in self._events:
            yield event


def _openai_client(events=()):
    client = MagicMock()
    client.beta.assistants.create = AsyncMock(return_value=SimpleNamespace(id="asst_1"))
    client.beta.threads.runs.stream = MagicMock(return_value=_StreamManager(list(events)))
    return client


@pytest.mark.asyncio
async def test_assistant_created_once():
    client = _openai_client()
    service = AssistantService(client=client)
    service._assistant_id = None

    assert await service.get_or_create_assistant() == "asst_1"
    assert await service.get_or_create_assistant() == "asst_1"
    client.beta.assistants.create.assert_awaited_once()
    kwargs = client.beta.assistants.create.await_args.kwargs
    assert kwargs["tools"] == [{"type": "file_search"}]


@pytest.mark.asyncio
async def test_configured_assistant_id_is_reused(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_ASSISTANT_ID", "asst_cfg")
    client = _openai_client()
    service = AssistantService(client=client)

    assert await service.get_or_create_assistant() == "asst_cfg"
    client.beta.assistants.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_stream_run_yields_text_deltas():
    events = [
        SimpleNamespace(event="thread.run.created", data=None),
        _delta_event("Hello", ""),
        _delta_event(" world"),
        SimpleNamespace(event="thread.run.completed", data=None),
    ]
    service = AssistantService(client=_openai_client(events))
    service._assistant_id = "asst_1"

    chunks = [c async for c in service.stream_run("thread_1")]
    assert chunks == ["Hello", " world"]


@pytest.mark.asyncio
async def test_stream_run_failure_raises_provider_message():
    service = AssistantService(client=_openai_client([_delta_event("x"), _failed_event("quota exceeded")]))
    service._assistant_id = "asst_1"

    with pytest.raises(AssistantRunError, match="quota exceeded"):
        [c async for c in service.stream_run("thread_1")]


@pytest.mark.asyncio
async def test_stream_run_failure_without_details():
    service = AssistantService(client=_openai_client([_failed_event()]))
    service._assistant_id = "asst_1"

    with pytest.raises(AssistantRunError, match="Assistant run failed"):
        [c async for c in service.stream_run("thread_1")]


@pytest.mark.asyncio
async def test_add_user_message_attaches_file_only_when_given():
    client = _openai_client()
    client.beta.threads.messages.create = AsyncMock()
    service = AssistantService(client=client)

    await service.add_user_message("thread_1", "first", attach_file_id="file-1")
    await service.add_user_message("thread_1", "second")

    first, second = client.beta.threads.messages.create.await_args_list
    assert first.kwargs["attachments"] == [
        {"file_id": "file-1", "tools": [{"type": "file_search"}]}
    ]
    assert "attachments" not in second.kwargs


@pytest.mark.asyncio
async def test_ask_rejects_incomplete_run():
    client = _openai_client()
    client.beta.threads.messages.create = AsyncMock()
    client.beta.threads.runs.create_and_poll = AsyncMock(
        return_value=SimpleNamespace(status="expired")
    )
    service = AssistantService(client=client)
    service._assistant_id = "asst_1"

    with pytest.raises(AssistantRunError, match="status: expired"):
        await service.ask("Q?", "file-1", thread_id="thread_1")


@pytest.mark.asyncio
async def test_ask_returns_latest_assistant_text():
    client = _openai_client()
    client.beta.threads.create = AsyncMock(return_value=SimpleNamespace(id="thread_new"))
    client.beta.threads.runs.create_and_poll = AsyncMock(
        return_value=SimpleNamespace(status="completed")
    )
    reply = SimpleNamespace(
        role="assistant",
        content=[SimpleNamespace(type="text", text=SimpleNamespace(value="It is 42."))],
    )
    client.beta.threads.messages.list = AsyncMock(return_value=SimpleNamespace(data=[reply]))
    service = AssistantService(client=client)
    service._assistant_id = "asst_1"

    answer, thread_id = await service.ask("Q?", "file-1")

    assert (answer, thread_id) == ("It is 42.", "thread_new")
    seeded = client.beta.threads.create.await_args.kwargs["messages"][0]
    assert seeded["attachments"][0]["file_id"] == "file-1"


@pytest.mark.asyncio
async def test_ask_without_assistant_reply():
    client = _openai_client()
    client.beta.threads.messages.create = AsyncMock()
    client.beta.threads.runs.create_and_poll = AsyncMock(
        return_value=SimpleNamespace(status="completed")
    )
    client.beta.threads.messages.list = AsyncMock(return_value=SimpleNamespace(data=[]))
    service = AssistantService(client=client)
    service._assistant_id = "asst_1"

    with pytest.raises(AssistantError, match="No assistant response found"):
        await service.ask("Q?", "file-1", thread_id="thread_1")


# ---------------------------------------------------------------------------
# Supabase stubs
# ---------------------------------------------------------------------------

def _storage(bucket_api):
    client = MagicMock()
    client.storage.from_.return_value = bucket_api
    return StorageService(client=client, bucket="documents"), client


@pytest.mark.asyncio
async def test_exists_searches_parent_folder():
    bucket_api = MagicMock()
    bucket_api.list.return_value = [{"name": "abc.pdf"}]
    service, _ = _storage(bucket_api)

    assert await service.exists("user-1/abc.pdf") is True
    bucket_api.list.assert_called_once_with("user-1", {"search": "abc.pdf"})
    assert await service.exists("user-1/other.pdf") is False


@pytest.mark.asyncio
async def test_signed_upload_url():
    bucket_api = MagicMock()
    bucket_api.create_signed_upload_url.return_value = {
        "signed_url": "https://s/upload",
        "token": "t",
        "path": "u/f.pdf",
    }
    service, _ = _storage(bucket_api)

    signed = await service.create_signed_upload_url("u/f.pdf")
    assert (signed.url, signed.token, signed.path) == ("https://s/upload", "t", "u/f.pdf")


@pytest.mark.asyncio
async def test_download_failure_raises_storage_error():
    bucket_api = MagicMock()
    bucket_api.download.side_effect = RuntimeError("404")
    service, _ = _storage(bucket_api)

    with pytest.raises(StorageError, match="Failed to download file from storage"):
        await service.download("u/missing.pdf")


@pytest.mark.asyncio
async def test_ensure_bucket_creates_missing_bucket():
    service, client = _storage(MagicMock())
    client.storage.list_buckets.return_value = [SimpleNamespace(name="avatars")]

    assert await service.ensure_bucket_exists() is True
    args, kwargs = client.storage.create_bucket.call_args
    assert args == ("documents",)
    assert kwargs["options"]["public"] is False


@pytest.mark.asyncio
async def test_ensure_bucket_noop_when_present():
    service, client = _storage(MagicMock())
    client.storage.list_buckets.return_value = [SimpleNamespace(name="documents")]

    assert await service.ensure_bucket_exists() is False
    client.storage.create_bucket.assert_not_called()
