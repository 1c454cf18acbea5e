import httpx
import pytest
from pydantic import SecretStr

from chat_relay.providers.openai_client import OpenAIClient
from chat_relay.domain.models import ChatMessage, CompletionRequest
from chat_relay.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError


class SettingsStub:
    openai_api_key = SecretStr("sk-test-0123456789")
    http_timeout = 1.0
    stream_read_timeout = 1.0
    openai_base_url = "https://api.example.test/v1"


def make_request(stream=False):
    return CompletionRequest(model="gpt-4o", messages=[ChatMessage(role="user", content="hi")], stream=stream)


class Resp:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeStreamResponse:
    def __init__(self, chunks, status_code=200, error=None, body=b""):
        self.status_code = status_code
        self._chunks = list(chunks)
        self._error = error
        self._body = body

    async def aread(self):
        return self._body

    async def aiter_text(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


class StreamContext:
    def __init__(self, response):
        self._response = response

    async def __aenter__(self):
        return self._response

    async def __aexit__(self, *args):
        return False


def fake_client(post_response=None, stream_response=None, post_error=None, captured=None):
    class Client:
        def __init__(self, *a, **kw):
            if captured is not None:
                captured["client_kwargs"] = kw

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, url, json=None, headers=None, **_):
            if captured is not None:
                captured.update(url=url, payload=json, headers=headers)
            if post_error is not None:
                raise post_error
            return post_response

        def stream(self, method, url, json=None, headers=None, **_):
            if captured is not None:
                captured.update(method=method, url=url, payload=json, headers=headers)
            return StreamContext(stream_response)

    return Client


async def collect(aiter):
    return [item async for item in aiter]


@pytest.mark.asyncio
async def test_complete_parses_first_choice(monkeypatch):
    captured = {}
    payload = {
        "choices": [{"message": {"role": "assistant", "content": "Treasure talk"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
    }
    monkeypatch.setattr("httpx.AsyncClient", fake_client(post_response=Resp(payload=payload), captured=captured))
    res = await OpenAIClient(SettingsStub()).complete(make_request())
    assert res.content == "Treasure talk"
    assert res.finish_reason == "stop"
    assert res.usage.total_tokens == 5
    assert captured["url"] == "https://api.example.test/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer sk-test-0123456789"
    assert "stream" not in captured["payload"]
    assert captured["payload"]["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_complete_maps_error_statuses(monkeypatch):
    monkeypatch.setattr("httpx.AsyncClient", fake_client(post_response=Resp(status_code=429)))
    with pytest.raises(RateLimitError):
        await OpenAIClient(SettingsStub()).complete(make_request())

    monkeypatch.setattr("httpx.AsyncClient", fake_client(post_response=Resp(status_code=500, text="boom")))
    with pytest.raises(ApiError) as exc:
        await OpenAIClient(SettingsStub()).complete(make_request())
    assert exc.value.extra["upstream_status"] == 500


@pytest.mark.asyncio
async def test_complete_transport_failure_is_network_error(monkeypatch):
    monkeypatch.setattr("httpx.AsyncClient", fake_client(post_error=httpx.ConnectError("refused")))
    with pytest.raises(NetworkError):
        await OpenAIClient(SettingsStub()).complete(make_request())


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_network(monkeypatch):
    class NoKey(SettingsStub):
        openai_api_key = None

    def explode(*a, **kw):
        raise AssertionError("no client should be created")

    monkeypatch.setattr("httpx.AsyncClient", explode)
    with pytest.raises(ValidationError):
        await OpenAIClient(NoKey()).complete(make_request())
    with pytest.raises(ValidationError):
        await collect(OpenAIClient(NoKey()).stream_complete(make_request(stream=True)))


@pytest.mark.asyncio
async def test_stream_reassembles_frames_split_across_chunks(monkeypatch):
    captured = {}
    chunks = [
        'data: {"choices": [{"delta": {"role": "assistant"}}]}\n\n',
        'data: {"choices": [{"delta": {"content": "Arr, "}}]}\n\ndata: {"choi',
        'ces": [{"delta": {"content": "it be "}}]}\n\n',
        'data: {"choices": [{"delta": {"content": "on Tortuga."}, "finish_reason": "stop"}]}\n\n',
        "data: [DONE]\n\n",
    ]
    monkeypatch.setattr(
        "httpx.AsyncClient", fake_client(stream_response=FakeStreamResponse(chunks), captured=captured)
    )
    out = await collect(OpenAIClient(SettingsStub()).stream_complete(make_request(stream=True)))
    assert [c.delta for c in out if not c.done] == ["Arr, ", "it be ", "on Tortuga."]
    assert out[-1].done is True
    assert out[-1].finish_reason == "stop"
    assert captured["payload"]["stream"] is True
    assert captured["method"] == "POST"


@pytest.mark.asyncio
async def test_stream_drops_malformed_frames(monkeypatch):
    chunks = [
        "data: {not json}\n",
        'data: {"choices": []}\n',
        'data: ["odd"]\n',
        'data: {"choices": [{"delta": {"content": "ok"}}]}\n',
        "data: [DONE]\n",
    ]
    monkeypatch.setattr("httpx.AsyncClient", fake_client(stream_response=FakeStreamResponse(chunks)))
    out = await collect(OpenAIClient(SettingsStub()).stream_complete(make_request(stream=True)))
    assert [c.delta for c in out] == ["ok", ""]
    assert out[-1].done


@pytest.mark.asyncio
async def test_stream_without_sentinel_ends_without_done(monkeypatch):
    chunks = ['data: {"choices": [{"delta": {"content": "half"}}]}\n']
    monkeypatch.setattr("httpx.AsyncClient", fake_client(stream_response=FakeStreamResponse(chunks)))
    out = await collect(OpenAIClient(SettingsStub()).stream_complete(make_request(stream=True)))
    assert [c.delta for c in out] == ["half"]
    assert not any(c.done for c in out)


@pytest.mark.asyncio
async def test_stream_sentinel_without_trailing_newline(monkeypatch):
    chunks = ['data: {"choices": [{"delta": {"content": "x"}}]}\n', "data: [DONE]"]
    monkeypatch.setattr("httpx.AsyncClient", fake_client(stream_response=FakeStreamResponse(chunks)))
    out = await collect(OpenAIClient(SettingsStub()).stream_complete(make_request(stream=True)))
    assert out[-1].done


@pytest.mark.asyncio
async def test_stream_http_error_raised_on_open(monkeypatch):
    response = FakeStreamResponse([], status_code=401, body=b'{"error": "bad key"}')
    monkeypatch.setattr("httpx.AsyncClient", fake_client(stream_response=response))
    with pytest.raises(ApiError) as exc:
        await collect(OpenAIClient(SettingsStub()).stream_complete(make_request(stream=True)))
    assert "bad key" in exc.value.message


@pytest.mark.asyncio
async def test_stream_transport_error_mid_stream(monkeypatch):
    chunks = ['data: {"choices": [{"delta": {"content": "a"}}]}\n']
    response = FakeStreamResponse(chunks, error=httpx.ReadError("connection reset"))
    monkeypatch.setattr("httpx.AsyncClient", fake_client(stream_response=response))
    received = []
    with pytest.raises(NetworkError):
        async for chunk in OpenAIClient(SettingsStub()).stream_complete(make_request(stream=True)):
            received.append(chunk.delta)
    assert received == ["a"]
