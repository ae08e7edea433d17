"""Async AI client wrapper built around OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping

import httpx
from openai import APIError, AsyncOpenAI
from pydantic import ValidationError

from .ai_types import ModelT
from .errors import MalformedResponse, TransportFailure
from .requests import GenerationRequest, InlineBinaryPart, TextPart, Turn

LOGGER = logging.getLogger(__name__)

_TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (APIError, httpx.HTTPError)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Async client implementing the remote generation capability.

    Every provider or transport error surfaces as :class:`TransportFailure`.
    Requests are never retried; the underlying SDK retry loop is disabled.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_text(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Stream text deltas for ``request`` in arrival order."""

        payload = self._build_chat_payload(request)
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            request.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            async with self._client.chat.completions.stream(**payload) as stream:
                async for event in stream:
                    if getattr(event, "type", None) != "content.delta":
                        continue
                    delta_text = getattr(event, "delta", None)
                    if delta_text:
                        yield str(delta_text)
        except _TRANSPORT_ERRORS as exc:
            LOGGER.warning("Streamed completion via %s failed: %s", request.model, exc)
            raise TransportFailure(str(exc)) from exc

    async def complete_text(self, request: GenerationRequest) -> str:
        """Return one complete, non-streamed reply for ``request``."""

        payload = self._build_chat_payload(request)
        LOGGER.debug("Requesting one-shot completion via %s", request.model)
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        response = await self._create(payload)
        return self._extract_text(response)

    async def complete_json(self, request: GenerationRequest, schema: type[ModelT]) -> ModelT:
        """Return a JSON reply validated against the pydantic ``schema``."""

        payload = self._build_chat_payload(request)
        payload["response_format"] = {"type": "json_object"}
        LOGGER.debug("Requesting JSON completion via %s for %s", request.model, schema.__name__)
        response = await self._create(payload)
        text = self._extract_text(response)
        try:
            return schema.model_validate_json(text)
        except ValidationError as exc:
            LOGGER.warning("JSON completion failed %s validation: %s", schema.__name__, exc)
            raise MalformedResponse(str(exc)) from exc

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            max_retries=0,
            default_headers=headers,
        )

    async def _create(self, payload: Mapping[str, Any]) -> Any:
        try:
            return await self._client.chat.completions.create(**payload)
        except _TRANSPORT_ERRORS as exc:
            LOGGER.warning("Completion via %s failed: %s", payload.get("model"), exc)
            raise TransportFailure(str(exc)) from exc

    @staticmethod
    def _extract_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise MalformedResponse("Completion response contained no choices")
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        return str(content or "")

    def _build_chat_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": self._coerce_messages(request),
        }
        if request.thinking_effort:
            payload["reasoning_effort"] = request.thinking_effort
        elif request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    def _coerce_messages(self, request: GenerationRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        for turn in request.history:
            messages.append(self._coerce_turn(turn))
        if len(messages) == (1 if request.system_prompt else 0):
            raise ValueError("At least one turn is required to start a chat")
        return messages

    @staticmethod
    def _coerce_turn(turn: Turn) -> Dict[str, Any]:
        role = "assistant" if turn.role == "model" else "user"
        if role == "assistant" or all(isinstance(part, TextPart) for part in turn.parts):
            return {"role": role, "content": turn.text}
        content: List[Dict[str, Any]] = []
        for part in turn.parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, InlineBinaryPart):
                data_url = f"data:{part.mime_type};base64,{part.data}"
                if part.mime_type.startswith("image/"):
                    content.append({"type": "image_url", "image_url": {"url": data_url}})
                else:
                    content.append(
                        {
                            "type": "file",
                            "file": {"filename": part.name or "attachment", "file_data": data_url},
                        }
                    )
        return {"role": role, "content": content}

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


__all__ = ["AIClient", "ClientSettings"]
