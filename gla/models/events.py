"""Session events — the ordered stream a tutor turn produces.

A turn is a single-consumer async stream:

    CommandExecuted?  (only when the learner typed a git command)
    TextDelta | ToolInvocation ...
    TurnComplete      (always last, unless the stream raised)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

from gla.models.schemas import CommandResult


class TextDelta(BaseModel):
    """A fragment of assistant text, printed as soon as it arrives."""

    kind: Literal["text_delta"] = "text_delta"
    text: str


class ToolInvocation(BaseModel):
    """The assistant started a tool call against the sandbox."""

    kind: Literal["tool_invocation"] = "tool_invocation"
    call_id: str = ""
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class CommandExecuted(BaseModel):
    """The learner's own git command ran before the assistant was consulted."""

    kind: Literal["command_executed"] = "command_executed"
    command: str
    result: CommandResult


class TurnComplete(BaseModel):
    """Completion marker — the assistant's turn has ended."""

    kind: Literal["turn_complete"] = "turn_complete"
    text: str = Field(default="", description="Full assistant text of the turn")
    tool_rounds: int = 0
    tool_calls: int = 0
    truncated: bool = Field(default=False, description="True if max_tool_rounds cut the turn short")
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


SessionEvent = Union[TextDelta, ToolInvocation, CommandExecuted, TurnComplete]
