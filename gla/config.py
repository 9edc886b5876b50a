"""GLA configuration — loaded from .env and GLA_* environment variables via pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings


class GlaSettings(BaseSettings):
    """All GLA configuration. Reads from .env file and environment variables."""

    # --- Inference (OpenAI-compatible chat completions) ---
    inference_url: str = Field(
        default="https://api.openai.com",
        description="Base URL of an OpenAI-compatible server (without /v1)",
    )
    inference_api_key: str = Field(
        default="",
        description="Bearer token for the inference server (empty = no auth header)",
    )
    model: str = Field(default="gpt-4.1", description="Model identifier sent with every request")
    temperature: float = Field(default=0.4, description="Sampling temperature")
    request_timeout: float = Field(
        default=60.0,
        description="HTTP timeout for non-streaming requests (seconds)",
    )
    stream_chunk_timeout: float = Field(
        default=90.0,
        description="Max seconds to wait for the next streamed chunk before giving up on a turn",
    )
    max_tool_rounds: int = Field(
        default=8,
        description="Max consecutive tool-calling rounds inside a single assistant turn",
    )
    history_turns: int = Field(
        default=20,
        description="User turns kept in the conversation sent to the model",
    )

    # --- Sandbox ---
    git_binary: str = Field(default="git", description="git executable name or path")
    command_timeout: float = Field(
        default=30.0,
        description="Hard timeout for a single git invocation (seconds)",
    )
    sandbox_base_dir: str = Field(
        default="",
        description="Parent directory for sandboxes (empty = OS temp dir)",
    )
    default_branch: str = Field(default="main", description="Initial branch of a fresh sandbox")
    committer_name: str = Field(default="Git Learner")
    committer_email: str = Field(default="learner@gitlearning.local")
    max_tool_output_chars: int = Field(
        default=4000,
        description="Tool results longer than this are truncated before reaching the model",
    )

    # --- Logging ---
    log_level: str = Field(default="WARNING", description="Log level")
    log_format: str = Field(
        default="console",
        description="Log format: 'console' for dev, 'json' for production",
    )

    model_config = {
        "env_prefix": "GLA_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "protected_namespaces": (),
    }


# Singleton — import this everywhere
settings = GlaSettings()
