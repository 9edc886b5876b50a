"""Unit-test conftest — MockInference and sandbox fixtures.

All fixtures here are available to every test under tests/unit/ without import.
"""

from __future__ import annotations

import asyncio
import copy
import shutil
from collections.abc import AsyncIterator
from typing import Any

import pytest

from gla.models.events import TextDelta
from gla.models.schemas import ToolCall
from gla.tools.sandbox import SandboxEnvironment


# ─────────────────────────────────────────────────────────────────────────────
# MockInference — drop-in replacement for InferenceClient
# ─────────────────────────────────────────────────────────────────────────────

class MockInference:
    """Scripted fake InferenceClient for unit tests.

    Args:
        rounds:          One list per chat_stream() call. Items are strings
                         (yielded as TextDelta) or ToolCall objects. Once the
                         script runs out, calls yield `fallback_text`.
        raises:          If set, chat_stream raises this before yielding.
        chunk_delay:     Seconds to sleep before EACH item.
        health_response: Dict returned by health().
    """

    def __init__(
        self,
        rounds: list[list[str | ToolCall]] | None = None,
        *,
        raises: Exception | None = None,
        chunk_delay: float = 0.0,
        fallback_text: str = "mock response",
        health_response: dict | None = None,
    ) -> None:
        self.rounds = list(rounds or [])
        self.raises = raises
        self.chunk_delay = chunk_delay
        self.fallback_text = fallback_text
        self.health_response = health_response or {
            "status": "ok", "url": "http://mock", "model": "mock-model", "model_listed": True,
        }
        self.model = "mock-model"
        self.base_url = "http://mock"
        # Snapshots for assertion
        self.requests: list[list[dict[str, Any]]] = []
        self.tools_seen: list[list[dict[str, Any]] | None] = []
        self.closed = False

    async def chat_stream(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None, **kwargs
    ) -> AsyncIterator[TextDelta | ToolCall]:
        self.requests.append(copy.deepcopy(messages))
        self.tools_seen.append(tools)
        if self.raises:
            raise self.raises
        script = self.rounds.pop(0) if self.rounds else [self.fallback_text]
        for item in script:
            if self.chunk_delay > 0:
                await asyncio.sleep(self.chunk_delay)
            yield TextDelta(text=item) if isinstance(item, str) else item

    async def health(self) -> dict:
        return self.health_response

    async def close(self) -> None:
        self.closed = True


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def offline_sandbox(tmp_path):
    """A sandbox that is never initialized — file helpers work without git."""
    sandbox = SandboxEnvironment(base_dir=tmp_path)
    yield sandbox
    sandbox.dispose()


@pytest.fixture
def sandbox(tmp_path):
    """A sandbox backed by the real git binary (call initialize() in the test)."""
    if shutil.which("git") is None:
        pytest.skip("git executable not found on PATH")
    sandbox = SandboxEnvironment(base_dir=tmp_path, command_timeout=30.0)
    yield sandbox
    sandbox.dispose()


@pytest.fixture
def make_inference():
    """Factory for scripted MockInference instances."""
    return MockInference
