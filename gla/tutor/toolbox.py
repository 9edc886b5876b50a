"""Toolbox — the closed set of sandbox tools the tutor model may call.

Each entry declares:
  - args        : pydantic model the raw JSON arguments are validated against
  - description : shown to the model in the tools schema
  - handler     : Toolbox method that performs the call

Dispatch algorithm:
  1. Map the requested name onto ToolName (unknown names are rejected).
  2. Parse the JSON argument string and validate it against `args`.
  3. Run the handler against the sandbox and return plain text for the model.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from pydantic import ValidationError

from gla.config import settings
from gla.errors import SandboxFileError, SandboxPathError, ToolArgumentError, ToolError, UnknownToolError
from gla.models.schemas import (
    CreateFileArgs,
    GetGitLogArgs,
    NoArgs,
    ReadFileArgs,
    RunGitCommandArgs,
    ToolArgs,
    ToolCall,
    ToolName,
)
from gla.tools.sandbox import SandboxEnvironment

logger = structlog.get_logger().bind(component="tutor.toolbox")


TOOL_REGISTRY: dict[ToolName, dict[str, Any]] = {
    ToolName.CREATE_FILE: {
        "args": CreateFileArgs,
        "description": "Create a file in the Git sandbox with the specified content",
        "handler": "_create_file",
    },
    ToolName.RUN_GIT_COMMAND: {
        "args": RunGitCommandArgs,
        "description": (
            "Execute a Git command in the sandbox "
            "(e.g., 'add .', 'commit -m \"message\"', 'branch feature')"
        ),
        "handler": "_run_git_command",
    },
    ToolName.GET_GIT_STATUS: {
        "args": NoArgs,
        "description": "Get the current Git status of the sandbox",
        "handler": "_get_git_status",
    },
    ToolName.GET_GIT_LOG: {
        "args": GetGitLogArgs,
        "description": "Get the Git commit history",
        "handler": "_get_git_log",
    },
    ToolName.LIST_FILES: {
        "args": NoArgs,
        "description": "List all files in the sandbox",
        "handler": "_list_files",
    },
    ToolName.READ_FILE: {
        "args": ReadFileArgs,
        "description": "Read the contents of a file in the sandbox",
        "handler": "_read_file",
    },
    ToolName.RESET_SANDBOX: {
        "args": NoArgs,
        "description": "Reset the sandbox to a fresh state (deletes all files and commits)",
        "handler": "_reset_sandbox",
    },
}


def _strip_titles(schema: dict[str, Any]) -> dict[str, Any]:
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    return schema


def tool_schemas() -> list[dict[str, Any]]:
    """OpenAI `tools` payload for every registered tool."""
    return [
        {
            "type": "function",
            "function": {
                "name": name.value,
                "description": entry["description"],
                "parameters": _strip_titles(entry["args"].model_json_schema(by_alias=True)),
            },
        }
        for name, entry in TOOL_REGISTRY.items()
    ]


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'arguments'}: {err['msg']}"
        for err in error.errors()
    )


class Toolbox:
    """Validates tool calls and runs them against one SandboxEnvironment.

    Usage:
        toolbox = Toolbox(sandbox)
        text = await toolbox.dispatch(ToolCall(name="get_git_status"))
    """

    def __init__(self, sandbox: SandboxEnvironment, max_output_chars: int | None = None) -> None:
        self.sandbox = sandbox
        self.max_output_chars = max_output_chars or settings.max_tool_output_chars

    def parse(self, call: ToolCall) -> tuple[ToolName, ToolArgs]:
        """Validate a raw call. Raises UnknownToolError / ToolArgumentError."""
        try:
            name = ToolName(call.name)
        except ValueError:
            raise UnknownToolError(f"Unknown tool: {call.name!r}") from None

        try:
            raw = json.loads(call.arguments) if call.arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolArgumentError(f"Arguments for {name.value} are not valid JSON: {e}") from e
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ToolArgumentError(f"Arguments for {name.value} must be a JSON object")

        try:
            args = TOOL_REGISTRY[name]["args"].model_validate(raw)
        except ValidationError as e:
            raise ToolArgumentError(
                f"Invalid arguments for {name.value}: {_format_validation_error(e)}"
            ) from e
        return name, args

    async def dispatch(self, call: ToolCall) -> str:
        """Validate and run a tool call, returning the text the model will see."""
        name, args = self.parse(call)
        handler = getattr(self, TOOL_REGISTRY[name]["handler"])
        try:
            output = await handler(args)
        except (SandboxPathError, SandboxFileError) as e:
            raise ToolError(str(e)) from e

        logger.info("tool_dispatched", tool=name.value, output_len=len(output))
        return self._truncate(output)

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_output_chars:
            return text[: self.max_output_chars] + "\n... [truncated]"
        return text

    # ---- Handlers ----

    async def _create_file(self, args: CreateFileArgs) -> str:
        await self.sandbox.create_file(args.file_name, args.content)
        return f"Created file: {args.file_name}"

    async def _run_git_command(self, args: RunGitCommandArgs) -> str:
        result = await self.sandbox.execute_command(args.command)
        if result.success:
            return result.stdout or "Command executed successfully."
        return f"Error: {result.message or f'git exited with code {result.exit_code}'}"

    async def _get_git_status(self, args: NoArgs) -> str:
        status = await self.sandbox.status()
        return status or "Working tree clean - nothing to commit."

    async def _get_git_log(self, args: GetGitLogArgs) -> str:
        log = await self.sandbox.log(args.count)
        return log or "No commits yet."

    async def _list_files(self, args: NoArgs) -> str:
        files = self.sandbox.list_files()
        return "\n".join(files) if files else "No files in sandbox."

    async def _read_file(self, args: ReadFileArgs) -> str:
        if not self.sandbox.file_exists(args.file_name):
            return f"File not found: {args.file_name}"
        content = await self.sandbox.read_file(args.file_name)
        return content or "(empty file)"

    async def _reset_sandbox(self, args: NoArgs) -> str:
        await self.sandbox.reset()
        return "Sandbox has been reset to a fresh Git repository."
