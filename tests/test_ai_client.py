"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, cast

import httpx
import pytest

from openai import APIConnectionError, AsyncOpenAI

from taskpilot.ai.client import AIClient, ClientSettings
from taskpilot.ai.orchestration.types import Message

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


class _FakeCompletions:
    def __init__(self, outcomes: list[Any]):
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class _FakeOpenAI:
    def __init__(self, outcomes: list[Any]):
        self.completions = _FakeCompletions(outcomes)
        self.chat = SimpleNamespace(completions=self.completions)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _settings(**overrides: Any) -> ClientSettings:
    values: dict[str, Any] = {
        "base_url": "https://api.example.com/v1",
        "api_key": "test-key",
        "model": "gpt-test",
        "retry_min_seconds": 0,
        "retry_max_seconds": 0,
    }
    values.update(overrides)
    return ClientSettings(**values)


def _client(outcomes: list[Any], **overrides: Any) -> tuple[AIClient, _FakeOpenAI]:
    fake = _FakeOpenAI(outcomes)
    return AIClient(_settings(**overrides), client=cast(AsyncOpenAI, fake)), fake


@pytest.mark.asyncio
async def test_send_builds_payload() -> None:
    response = SimpleNamespace(choices=[])
    client, fake = _client([response], metadata={"run": "abc"})
    tools = [{"type": "function", "function": {"name": "read_file", "parameters": {}}}]

    result = await client.send(
        [Message.system("sys"), {"role": "user", "content": "hi"}],
        tools,
        max_tokens=64,
    )

    assert result is response
    (payload,) = fake.completions.calls
    assert payload == {
        "model": "gpt-test",
        "messages": [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
        "tools": tools,
        "temperature": 0.2,
        "metadata": {"run": "abc"},
        "max_tokens": 64,
    }


@pytest.mark.asyncio
async def test_empty_tools_and_no_temperature_are_omitted() -> None:
    client, fake = _client([SimpleNamespace()], temperature=None)

    await client.send([Message.user("hi")], [])

    assert set(fake.completions.calls[0]) == {"model", "messages"}


@pytest.mark.asyncio
async def test_empty_conversation_is_rejected() -> None:
    client, fake = _client([])
    with pytest.raises(ValueError, match="At least one message"):
        await client.send([])
    assert fake.completions.calls == []


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self) -> None:
        response = SimpleNamespace(choices=[])
        client, fake = _client(
            [APIConnectionError(request=_REQUEST), httpx.ReadTimeout("slow", request=_REQUEST), response],
            max_retries=3,
        )

        assert await client.send([Message.user("hi")]) is response
        assert len(fake.completions.calls) == 3

    @pytest.mark.asyncio
    async def test_last_error_is_reraised_when_attempts_run_out(self) -> None:
        client, fake = _client(
            [APIConnectionError(request=_REQUEST), APIConnectionError(request=_REQUEST)],
            max_retries=2,
        )

        with pytest.raises(APIConnectionError):
            await client.send([Message.user("hi")])
        assert len(fake.completions.calls) == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self) -> None:
        client, fake = _client([TypeError("bad payload"), SimpleNamespace()])

        with pytest.raises(TypeError):
            await client.send([Message.user("hi")])
        assert len(fake.completions.calls) == 1


@pytest.mark.asyncio
async def test_aclose_closes_underlying_client() -> None:
    client, fake = _client([])
    await client.aclose()
    assert fake.closed is True


def test_settings_property() -> None:
    client, _ = _client([], model="other")
    assert client.settings.model == "other"
