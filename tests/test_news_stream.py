"""
Test cases for the streamed news relay and API key resolution.
"""

from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils
from openai import APIConnectionError, AuthenticationError, InternalServerError

from newsdesk.ai.news_stream import NewsStreamer, resolve_api_key
from newsdesk.errors import ConfigurationError, MissingApiKeyError, UpstreamError, ValidationFailed
from newsdesk.utils.config import settings
from newsdesk.utils.crypto import encrypt_api_key

UPSTREAM_REQUEST = httpx.Request("POST", "https://api.perplexity.ai/chat/completions")


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, stream=None, error=None):
        self.stream = stream
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.stream


class FakeOpenAI:
    def __init__(self, completions):
        self.chat = SimpleNamespace(completions=completions)
        self.closed = False

    async def close(self):
        self.closed = True


class FakeApiKeys:
    def __init__(self, encrypted=None):
        self.encrypted = encrypted

    async def get_encrypted_api_key(self, user_id):
        return self.encrypted


def _streamer(completions):
    fake_client = FakeOpenAI(completions)
    streamer = NewsStreamer(model="sonar", base_url="https://api.perplexity.ai")
    streamer._create_client = lambda api_key: fake_client
    return streamer, fake_client


async def _collect(iterator):
    return [text async for text in iterator]


def test_build_prompt():
    streamer = NewsStreamer()
    assert streamer.build_prompt("  fusion energy ") == "What were the recent developments relevant to fusion energy"


@pytest.mark.asyncio
async def test_relays_delta_text_in_order():
    stream = FakeStream([_chunk("Fusion "), _chunk(None), _chunk(""), SimpleNamespace(choices=[]), _chunk("news.")])
    completions = FakeCompletions(stream=stream)
    streamer, client = _streamer(completions)

    chunks = await streamer.open_stream("fusion", "pplx-key")
    assert await _collect(chunks) == ["Fusion ", "news."]

    request = completions.requests[0]
    assert request["model"] == "sonar"
    assert request["stream"] is True
    assert request["messages"] == [
        {"role": "user", "content": "What were the recent developments relevant to fusion"}
    ]
    assert stream.closed and client.closed


@pytest.mark.asyncio
async def test_mid_stream_error_propagates():
    stream = FakeStream([_chunk("partial")], error=APIConnectionError(request=UPSTREAM_REQUEST))
    streamer, client = _streamer(FakeCompletions(stream=stream))

    chunks = await streamer.open_stream("fusion", "pplx-key")
    received = []
    with pytest.raises(APIConnectionError):
        async for text in chunks:
            received.append(text)

    assert received == ["partial"]
    assert stream.closed and client.closed


@pytest.mark.asyncio
async def test_blank_topic_is_rejected_before_upstream_call():
    completions = FakeCompletions(stream=FakeStream([]))
    streamer, _ = _streamer(completions)

    with pytest.raises(ValidationFailed):
        await streamer.open_stream("   ", "pplx-key")
    assert completions.requests == []


@pytest.mark.asyncio
async def test_rejected_key_is_a_validation_error():
    response = httpx.Response(401, request=UPSTREAM_REQUEST)
    error = AuthenticationError("invalid api key", response=response, body=None)
    streamer, client = _streamer(FakeCompletions(error=error))

    with pytest.raises(ValidationFailed):
        await streamer.open_stream("fusion", "pplx-bad")
    assert client.closed


@pytest.mark.asyncio
async def test_upstream_failure_before_streaming():
    response = httpx.Response(500, request=UPSTREAM_REQUEST)
    error = InternalServerError("boom", response=response, body=None)
    streamer, _ = _streamer(FakeCompletions(error=error))

    with pytest.raises(UpstreamError):
        await streamer.open_stream("fusion", "pplx-key")

    streamer, _ = _streamer(FakeCompletions(error=APIConnectionError(request=UPSTREAM_REQUEST)))
    with pytest.raises(UpstreamError):
        await streamer.open_stream("fusion", "pplx-key")


@pytest_asyncio.fixture
async def failing_provider():
    hits = []

    async def completions(request):
        hits.append(await request.json())
        return web.json_response({"error": {"message": "overloaded"}}, status=500)

    app = web.Application()
    app.router.add_post("/chat/completions", completions)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server, hits
    await server.close()


@pytest.mark.asyncio
async def test_upstream_failure_is_not_retried(failing_provider):
    server, hits = failing_provider
    streamer = NewsStreamer(model="sonar", base_url=str(server.make_url("")))

    with pytest.raises(UpstreamError):
        await streamer.open_stream("fusion", "pplx-key")

    assert len(hits) == 1
    assert hits[0]["stream"] is True


@pytest.mark.asyncio
async def test_resolve_api_key_decrypts_user_key():
    repo = FakeApiKeys(encrypt_api_key("pplx-user"))
    assert await resolve_api_key("alice", repo) == "pplx-user"


@pytest.mark.asyncio
async def test_resolve_api_key_without_key(monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_GLOBAL_API_KEY_FALLBACK", False)
    monkeypatch.setattr(settings, "PERPLEXITY_API_KEY", "pplx-global")
    with pytest.raises(MissingApiKeyError):
        await resolve_api_key("alice", FakeApiKeys())


@pytest.mark.asyncio
async def test_resolve_api_key_global_fallback(monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_GLOBAL_API_KEY_FALLBACK", True)
    monkeypatch.setattr(settings, "PERPLEXITY_API_KEY", "pplx-global")
    assert await resolve_api_key("alice", FakeApiKeys()) == "pplx-global"

    monkeypatch.setattr(settings, "PERPLEXITY_API_KEY", None)
    with pytest.raises(ConfigurationError):
        await resolve_api_key("alice", FakeApiKeys())
