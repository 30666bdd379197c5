"""Async model client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .orchestration.types import Message

__all__ = ["ClientSettings", "AIClient"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float | None = 0.2
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Sends conversations to the model with retry semantics.

    Transient failures (connection errors, rate limits, 5xx responses and
    HTTP timeouts) are retried with exponential back-off; the last error is
    re-raised once attempts run out.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def send(
        self,
        conversation: Sequence[Message | Mapping[str, Any]],
        tools: Sequence[Mapping[str, Any]] | None = None,
        **extra_params: Any,
    ) -> Any:
        """Request one chat completion and return the SDK response object."""
        payload = self._build_chat_payload(self._coerce_messages(conversation), tools, extra_params)
        LOGGER.debug(
            "Requesting chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        async for attempt in self._retrying():
            with attempt:
                return await self._client.chat.completions.create(**payload)
        raise RuntimeError("Retry loop exited without a response")  # pragma: no cover

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIError,
                    APIStatusError,
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    @staticmethod
    def _coerce_messages(conversation: Sequence[Message | Mapping[str, Any]]) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in conversation:
            if isinstance(message, Message):
                normalized.append(message.to_chat_param())
            else:
                normalized.append(dict(message))  # type: ignore[arg-type]
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Sequence[Mapping[str, Any]] | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self._settings.model, "messages": list(messages)}
        if tools:
            payload["tools"] = [dict(tool) for tool in tools]
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        if self._settings.metadata:
            payload["metadata"] = dict(self._settings.metadata)
        if extra_params:
            payload.update(extra_params)
        return payload

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result
