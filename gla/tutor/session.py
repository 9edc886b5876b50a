"""TutorSession — one learner's conversation with the tutor model.

A turn is driven by a single async generator:

    async for event in session.process_user_input("git status"):
        ...

The generator streams the model's text, runs any tool calls it asks for
against the sandbox, feeds the results back and asks again, until the
model answers without tools. Closing the generator early abandons the
in-flight HTTP request.

Two timeouts guard every model call:
  1. Per-chunk: asyncio.wait_for(stream.__anext__(), chunk_timeout)
  2. Cleanup:   asyncio.wait_for(stream.aclose(), _ACLOSE_TIMEOUT)
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import structlog

from gla.config import settings
from gla.errors import InferenceTimeoutError, ToolError
from gla.models.events import CommandExecuted, SessionEvent, TextDelta, ToolInvocation, TurnComplete
from gla.models.schemas import ToolCall
from gla.tools.inference import InferenceClient
from gla.tools.sandbox import SandboxEnvironment
from gla.tutor import prompts
from gla.tutor.toolbox import Toolbox, tool_schemas

logger = structlog.get_logger().bind(component="tutor.session")

_ACLOSE_TIMEOUT = 5.0

# First words that mark an input as a git command even without the `git ` prefix
GIT_SUBCOMMANDS = frozenset({
    "init", "add", "commit", "status", "log", "branch", "checkout", "switch",
    "merge", "pull", "push", "fetch", "clone", "diff", "reset", "restore",
    "revert", "stash", "rebase", "cherry-pick", "tag", "show", "rm", "mv",
})


def git_command_from_input(text: str) -> str | None:
    """Return the git arguments if `text` looks like a git command, else None.

    "git add ." → "add .";  "status" → "status";  "what is a branch?" → None
    """
    stripped = text.strip()
    if stripped.lower().startswith("git "):
        return stripped[4:].strip() or None
    words = stripped.split()
    if words and words[0].lower() in GIT_SUBCOMMANDS:
        return stripped
    return None


def _decode_arguments(raw: str) -> dict[str, Any]:
    try:
        decoded = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError:
        return {"_raw": raw}
    return decoded if isinstance(decoded, dict) else {"_raw": raw}


class TutorSession:
    """Stateful conversation with the tutor model, bound to one sandbox."""

    def __init__(
        self,
        client: InferenceClient,
        sandbox: SandboxEnvironment,
        toolbox: Toolbox | None = None,
        *,
        max_tool_rounds: int | None = None,
        history_turns: int | None = None,
        chunk_timeout: float | None = None,
    ) -> None:
        self.client = client
        self.sandbox = sandbox
        self.toolbox = toolbox or Toolbox(sandbox)
        self.max_tool_rounds = max_tool_rounds or settings.max_tool_rounds
        self.history_turns = history_turns or settings.history_turns
        self.chunk_timeout = chunk_timeout or settings.stream_chunk_timeout
        self._tools = tool_schemas()
        self.messages: list[dict[str, Any]] = [
            {
                "role": "system",
                "content": prompts.system_prompt(str(sandbox.root_path), sandbox.default_branch),
            }
        ]

    # ---- Public turns ----

    def start(self) -> AsyncIterator[SessionEvent]:
        """Greeting turn."""
        return self.send(prompts.GREETING_PROMPT)

    def setup_scenario(self, topic: str, difficulty: str) -> AsyncIterator[SessionEvent]:
        """Ask the tutor to build a hands-on scenario for a menu topic."""
        return self.send(prompts.scenario_prompt(topic, difficulty))

    async def process_user_input(self, text: str) -> AsyncIterator[SessionEvent]:
        """Handle free text: git commands run first, then the tutor reviews them."""
        command = git_command_from_input(text)
        if command is None:
            async for event in self.send(text):
                yield event
            return

        result = await self.sandbox.execute_command(command)
        yield CommandExecuted(command=command, result=result)
        async for event in self.send(prompts.command_result_prompt(command, result)):
            yield event

    # ---- Turn engine ----

    async def send(self, prompt: str) -> AsyncIterator[SessionEvent]:
        """Submit a prompt and stream the turn's events, ending with TurnComplete."""
        self.messages.append({"role": "user", "content": prompt})
        self._trim_history()

        text_parts: list[str] = []
        rounds = 0
        calls = 0
        truncated = False

        while True:
            round_text: list[str] = []
            round_calls: list[ToolCall] = []

            async for item in self._stream_round():
                if isinstance(item, TextDelta):
                    round_text.append(item.text)
                    yield item
                else:
                    round_calls.append(item)

            assistant_text = "".join(round_text)
            text_parts.append(assistant_text)

            if not round_calls:
                if assistant_text:
                    self.messages.append({"role": "assistant", "content": assistant_text})
                break

            rounds += 1
            self.messages.append({
                "role": "assistant",
                "content": assistant_text or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in round_calls
                ],
            })

            for call in round_calls:
                calls += 1
                yield ToolInvocation(
                    call_id=call.id,
                    tool_name=call.name,
                    arguments=_decode_arguments(call.arguments),
                )
                try:
                    output = await self.toolbox.dispatch(call)
                except ToolError as e:
                    logger.warning("tool_rejected", tool=call.name, error=str(e))
                    output = f"Error: {e}"
                self.messages.append({"role": "tool", "tool_call_id": call.id, "content": output})

            if rounds >= self.max_tool_rounds:
                truncated = True
                logger.warning("max_tool_rounds_reached", rounds=rounds)
                break

        logger.info("turn_complete", tool_rounds=rounds, tool_calls=calls, truncated=truncated)
        yield TurnComplete(
            text="".join(text_parts),
            tool_rounds=rounds,
            tool_calls=calls,
            truncated=truncated,
        )

    async def _stream_round(self) -> AsyncIterator[TextDelta | ToolCall]:
        """One model call, with per-chunk and cleanup timeouts."""
        stream = self.client.chat_stream(self.messages, tools=self._tools)
        try:
            while True:
                try:
                    item = await asyncio.wait_for(stream.__anext__(), timeout=self.chunk_timeout)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    logger.warning("stream_chunk_timeout", timeout=self.chunk_timeout)
                    raise InferenceTimeoutError(
                        f"The tutor did not respond within {self.chunk_timeout:g}s"
                    ) from None
                yield item
        finally:
            try:
                await asyncio.wait_for(stream.aclose(), timeout=_ACLOSE_TIMEOUT)
            except (asyncio.TimeoutError, RuntimeError) as e:
                logger.warning("stream_aclose_failed", error=str(e) or type(e).__name__)

    def _trim_history(self) -> None:
        """Keep the system prompt plus the last `history_turns` user turns."""
        user_indexes = [i for i, m in enumerate(self.messages) if m["role"] == "user"]
        if len(user_indexes) > self.history_turns:
            cut = user_indexes[-self.history_turns]
            self.messages = [self.messages[0], *self.messages[cut:]]
