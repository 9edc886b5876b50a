"""Async client for an OpenAI-compatible chat-completions server.

The tutor's "brain" lives behind this client. Anything that speaks
/v1/chat/completions with streaming and function tools will do: OpenAI,
a local Ollama / vLLM / LM Studio server, or a gateway in front of them.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from gla.config import settings
from gla.errors import InferenceError
from gla.models.events import TextDelta
from gla.models.schemas import ToolCall

logger = structlog.get_logger().bind(component="inference")


class InferenceClient:
    """Async client for the tutor's language model.

    Provides streaming chat completion with tool calls and a pre-flight
    health check.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.inference_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.inference_api_key
        self.model = model or settings.model
        self.timeout = timeout or settings.request_timeout
        self._client: httpx.AsyncClient | None = None

    def _auth_headers(self) -> dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._auth_headers(),
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ---- Inference ----

    async def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int = 2048,
        read_timeout: float | None = None,
    ) -> AsyncIterator[TextDelta | ToolCall]:
        """Streaming chat: yields TextDelta fragments as they arrive, then one
        ToolCall per tool the model asked for.

        Uses the OpenAI-compatible SSE format (data: {...} lines). Tool call
        fragments arrive spread over many deltas keyed by `index`; they are
        assembled here and only yielded once the response is complete, so
        callers always receive whole JSON argument strings.

        Usage:
            async for item in client.chat_stream(messages, tools=schemas):
                if isinstance(item, TextDelta):
                    print(item.text, end="", flush=True)
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": settings.temperature if temperature is None else temperature,
            "max_tokens": max_tokens,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        pending: dict[int, dict[str, str]] = {}

        # Fresh no-keepalive client per stream: abandoning the generator
        # closes the socket instead of draining the rest of the response.
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._auth_headers(),
                timeout=httpx.Timeout(
                    connect=5.0,
                    read=read_timeout or settings.stream_chunk_timeout,
                    write=10.0,
                    pool=5.0,
                ),
                limits=httpx.Limits(max_connections=1, max_keepalive_connections=0),
            ) as stream_client:
                async with stream_client.stream("POST", "/v1/chat/completions", json=payload) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise InferenceError(
                            f"Inference server returned HTTP {response.status_code}: {body[:300]}"
                        )
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[5:].strip()
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                            delta = chunk["choices"][0].get("delta") or {}
                        except (json.JSONDecodeError, KeyError, IndexError, TypeError):
                            continue

                        text = delta.get("content")
                        if text:
                            yield TextDelta(text=text)

                        for fragment in delta.get("tool_calls") or []:
                            slot = pending.setdefault(
                                fragment.get("index", 0), {"id": "", "name": "", "arguments": ""}
                            )
                            if fragment.get("id"):
                                slot["id"] = fragment["id"]
                            function = fragment.get("function") or {}
                            if function.get("name"):
                                slot["name"] = function["name"]
                            if function.get("arguments"):
                                slot["arguments"] += function["arguments"]
        except httpx.HTTPError as e:
            raise InferenceError(f"Inference request failed: {e}") from e

        for index in sorted(pending):
            slot = pending[index]
            yield ToolCall(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=slot["arguments"] or "{}",
            )

        logger.debug(
            "chat_stream_complete",
            model=self.model,
            messages_count=len(messages),
            tool_calls=len(pending),
        )

    # ---- Health & Info ----

    async def list_models(self) -> dict[str, Any]:
        """List models the server offers."""
        client = await self._get_client()
        try:
            response = await client.get("/v1/models")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            return {"error": str(e)}

    async def health(self) -> dict[str, Any]:
        """Pre-flight check: is the server reachable and does it accept our key?"""
        models = await self.list_models()
        if "error" in models:
            return {"status": "error", "url": self.base_url, "error": models["error"]}
        available = [m.get("id", "") for m in models.get("data", []) if isinstance(m, dict)]
        return {
            "status": "ok",
            "url": self.base_url,
            "model": self.model,
            "model_listed": self.model in available if available else None,
        }
