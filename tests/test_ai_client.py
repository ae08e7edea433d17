"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest
from openai import AsyncOpenAI
from pydantic import BaseModel

from codey.ai.client import AIClient, ClientSettings
from codey.ai.errors import MalformedResponse, TransportFailure
from codey.ai.requests import GenerationRequest, InlineBinaryPart, TextPart, Turn, one_shot_request


@dataclass
class _FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None


class _FakeStream:
    def __init__(self, events: Iterable[Any]):
        self._iterator = iter(list(events))

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> _FakeEvent:
        try:
            item = next(self._iterator)
        except StopIteration as exc:
            raise StopAsyncIteration from exc
        if isinstance(item, BaseException):
            raise item
        return item


class _FakeStreamContext:
    def __init__(self, events: Iterable[Any]):
        self._events = list(events)
        self.exited = False

    async def __aenter__(self) -> _FakeStream:
        return _FakeStream(self._events)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.exited = True
        return False


class _FakeCompletions:
    def __init__(self, events: Iterable[Any] = (), responses: Iterable[Any] = ()):
        self._events = list(events)
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.contexts: list[_FakeStreamContext] = []

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.calls.append(kwargs)
        context = _FakeStreamContext(self._events)
        self.contexts.append(context)
        return context

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class _Palette(BaseModel):
    name: str
    size: int


def _reply(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _make_client(
    events: Iterable[Any] = (),
    responses: Iterable[Any] = (),
    **settings: Any,
) -> tuple[AIClient, _FakeCompletions]:
    completions = _FakeCompletions(events, responses)
    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    client = AIClient(
        ClientSettings(base_url="http://local", api_key="test", **settings),
        client=cast(AsyncOpenAI, fake_client),
    )
    return client, completions


def _request(**overrides: Any) -> GenerationRequest:
    return one_shot_request(model="gpt-4o-mini", system_prompt="Be brief.", prompt="hi", **overrides)


# =============================================================================
# Streaming
# =============================================================================


@pytest.mark.asyncio
async def test_stream_text_yields_content_deltas_in_order() -> None:
    events = [
        _FakeEvent(type="chunk"),
        _FakeEvent(type="content.delta", delta="Hel"),
        _FakeEvent(type="content.delta", delta=""),
        _FakeEvent(type="content.delta", delta="lo"),
        _FakeEvent(type="content.done"),
    ]
    client, completions = _make_client(events)

    deltas = [delta async for delta in client.stream_text(_request())]

    assert deltas == ["Hel", "lo"]
    assert completions.contexts[0].exited
    call = completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
    ]


@pytest.mark.asyncio
async def test_stream_transport_errors_become_transport_failure() -> None:
    events = [_FakeEvent(type="content.delta", delta="partial"), httpx.ConnectError("connection refused")]
    client, _completions = _make_client(events)
    received: list[str] = []

    with pytest.raises(TransportFailure) as excinfo:
        async for delta in client.stream_text(_request()):
            received.append(delta)

    assert received == ["partial"]
    assert "connection refused" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


# =============================================================================
# One-shot Completions
# =============================================================================


@pytest.mark.asyncio
async def test_complete_text_returns_first_choice() -> None:
    client, _completions = _make_client(responses=[_reply("done")])

    assert await client.complete_text(_request()) == "done"


@pytest.mark.asyncio
async def test_complete_text_without_choices_is_malformed() -> None:
    client, _completions = _make_client(responses=[SimpleNamespace(choices=[])])

    with pytest.raises(MalformedResponse):
        await client.complete_text(_request())


@pytest.mark.asyncio
async def test_complete_text_wraps_timeouts() -> None:
    client, _completions = _make_client(responses=[httpx.ReadTimeout("timed out")])

    with pytest.raises(TransportFailure):
        await client.complete_text(_request())


@pytest.mark.asyncio
async def test_complete_json_validates_schema() -> None:
    client, completions = _make_client(responses=[_reply('{"name": "Ocean", "size": 3}')])

    palette = await client.complete_json(_request(), _Palette)

    assert palette == _Palette(name="Ocean", size=3)
    assert completions.calls[0]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_complete_json_rejects_invalid_payload() -> None:
    client, _completions = _make_client(responses=[_reply('{"name": "Ocean"}')])

    with pytest.raises(MalformedResponse):
        await client.complete_json(_request(), _Palette)


# =============================================================================
# Payload Building
# =============================================================================


@pytest.mark.asyncio
async def test_reasoning_effort_takes_precedence_over_temperature() -> None:
    client, completions = _make_client(responses=[_reply("a"), _reply("b")])

    await client.complete_text(_request(thinking_effort="high", temperature=0.3))
    await client.complete_text(_request(temperature=0.3))

    first, second = completions.calls
    assert first["reasoning_effort"] == "high"
    assert "temperature" not in first
    assert second["temperature"] == 0.3
    assert "reasoning_effort" not in second


@pytest.mark.asyncio
async def test_attachments_become_content_parts() -> None:
    history = (
        Turn(
            role="user",
            parts=(InlineBinaryPart(mime_type="image/png", data="aW1n", name="shot.png"), TextPart("What is this?")),
        ),
        Turn(role="model", parts=(TextPart("A screenshot."),)),
        Turn(
            role="user",
            parts=(InlineBinaryPart(mime_type="application/pdf", data="cGRm", name="manual.pdf"), TextPart("And this?")),
        ),
    )
    request = GenerationRequest(model="gpt-4o-mini", system_prompt="", history=history)
    client, completions = _make_client(responses=[_reply("ok")])

    await client.complete_text(request)

    image_turn, model_turn, file_turn = completions.calls[0]["messages"]
    assert image_turn == {
        "role": "user",
        "content": [
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,aW1n"}},
            {"type": "text", "text": "What is this?"},
        ],
    }
    assert model_turn == {"role": "assistant", "content": "A screenshot."}
    assert file_turn["content"][0] == {
        "type": "file",
        "file": {"filename": "manual.pdf", "file_data": "data:application/pdf;base64,cGRm"},
    }


@pytest.mark.asyncio
async def test_empty_history_is_rejected() -> None:
    client, _completions = _make_client(responses=[_reply("never")])

    with pytest.raises(ValueError):
        await client.complete_text(GenerationRequest(model="m", system_prompt="sys"))


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_aclose_closes_underlying_client() -> None:
    closed: list[bool] = []

    async def close() -> None:
        closed.append(True)

    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=_FakeCompletions()), close=close)
    client = AIClient(ClientSettings(base_url="http://local", api_key="test"), client=cast(AsyncOpenAI, fake_client))

    await client.aclose()

    assert closed == [True]


def test_default_client_disables_sdk_retries() -> None:
    client = AIClient(ClientSettings(base_url="http://localhost:1/v1", api_key="test", request_timeout=5.0))

    sdk_client = client._client
    assert isinstance(sdk_client, AsyncOpenAI)
    assert sdk_client.max_retries == 0
