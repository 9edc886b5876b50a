"""Core schemas — command results, tool calls, and tool argument models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CommandResult(BaseModel):
    """Outcome of one git invocation inside the sandbox.

    A failing command is a normal result, not an error: the learner's
    mistakes are exactly what the tutor wants to see.
    """

    success: bool = Field(description="True when git exited with status 0")
    stdout: str = Field(default="", description="Standard output, trailing whitespace trimmed")
    stderr: str = Field(default="", description="Standard error, trailing whitespace trimmed")
    exit_code: int | None = Field(default=None, description="Raw exit status (None if git never ran)")
    timed_out: bool = Field(default=False)

    @property
    def message(self) -> str:
        """Most useful diagnostic text: stderr, else stdout.

        git prints some failures (e.g. "nothing to commit") on stdout only.
        """
        return self.stderr or self.stdout


class ToolName(str, Enum):
    """The closed set of tools the assistant may call."""

    CREATE_FILE = "create_file"
    RUN_GIT_COMMAND = "run_git_command"
    GET_GIT_STATUS = "get_git_status"
    GET_GIT_LOG = "get_git_log"
    LIST_FILES = "list_files"
    READ_FILE = "read_file"
    RESET_SANDBOX = "reset_sandbox"


class ToolCall(BaseModel):
    """A tool invocation requested by the assistant, arguments still raw JSON."""

    id: str = Field(default="", description="Call ID echoed back in the tool result message")
    name: str
    arguments: str = Field(default="{}", description="JSON object as sent by the model")


# ── Tool argument models ──────────────────────────────────────


class ToolArgs(BaseModel):
    """Base for tool arguments. Unknown keys from the model are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NoArgs(ToolArgs):
    pass


class CreateFileArgs(ToolArgs):
    file_name: str = Field(alias="fileName", min_length=1, description="The file name/path to create")
    content: str = Field(description="The content to write to the file")


class RunGitCommandArgs(ToolArgs):
    command: str = Field(
        min_length=1,
        description="Git command arguments without the 'git' prefix, e.g. 'add .' or 'commit -m \"msg\"'",
    )


class GetGitLogArgs(ToolArgs):
    count: int = Field(default=5, ge=1, le=100, description="Number of commits to show")


class ReadFileArgs(ToolArgs):
    file_name: str = Field(alias="fileName", min_length=1, description="The file name to read")
