"""Exception hierarchy for GLA.

Only EnvironmentSetupError is fatal to a session. Everything else is caught
at a turn or tool boundary and reported as data.
"""

from __future__ import annotations


class GlaError(Exception):
    """Base class for all GLA errors."""


class EnvironmentSetupError(GlaError):
    """The sandbox directory or repository could not be created."""


class SandboxPathError(GlaError, ValueError):
    """A relative path resolved outside the sandbox root or into its .git directory."""


class SandboxFileError(GlaError):
    """A file in the sandbox could not be written or read (e.g. the path is a directory)."""


class ToolError(GlaError):
    """A tool call from the assistant could not be executed."""


class UnknownToolError(ToolError):
    """The assistant asked for a tool that is not in the closed tool set."""


class ToolArgumentError(ToolError):
    """Tool arguments were not valid JSON or failed schema validation."""


class InferenceError(GlaError):
    """The inference server failed or returned something unusable."""


class InferenceTimeoutError(InferenceError):
    """No streamed chunk arrived within the configured window."""
