"""
Configuration constants and Pydantic models for mlx-bridge.
"""

import os
from pydantic import BaseModel, Field
from typing import Optional, Union


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS
# ─────────────────────────────────────────────────────────────────────

DEFAULT_API_BASE: str = "http://localhost:8000/"
DEFAULT_MODEL: str = "mlx-lm"
DEFAULT_CONTEXT_LENGTH: int = 4096
DEFAULT_TEMPERATURE: float = 0.7
DEFAULT_TIMEOUT_SECONDS: float = 300.0  # 5 minutes; local generation can be slow


# ─────────────────────────────────────────────────────────────────────
# ENVIRONMENT LOADING
# ─────────────────────────────────────────────────────────────────────

def get_api_base() -> str:
    """
    Get MLX server base URL from environment or default.

    Set MLX_API_BASE in .env (default: http://localhost:8000/).
    """
    value = os.environ.get("MLX_API_BASE", "").strip()
    return value or DEFAULT_API_BASE


def get_api_key() -> Optional[str]:
    """Get bearer token for the MLX server from environment."""
    value = os.environ.get("MLX_API_KEY", "").strip()
    return value or None


def get_model() -> str:
    """
    Get the initial model identifier.

    The server's /info response replaces this once the startup probe lands.
    """
    value = os.environ.get("MLX_MODEL", "").strip()
    return value or DEFAULT_MODEL


def get_context_length() -> int:
    """
    Get context length from environment or default.

    Set MLX_CONTEXT_LENGTH in .env (default: 4096).
    """
    try:
        return int(os.environ.get("MLX_CONTEXT_LENGTH", str(DEFAULT_CONTEXT_LENGTH)))
    except ValueError:
        return DEFAULT_CONTEXT_LENGTH


def get_timeout_seconds() -> float:
    """
    Get HTTP timeout from environment or default.

    Set MLX_TIMEOUT_SECONDS in .env (default: 300).
    """
    try:
        return float(os.environ.get("MLX_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS


def load_config_from_env() -> "ProviderConfig":
    """Build a ProviderConfig from MLX_* environment variables."""
    return ProviderConfig(
        api_base=get_api_base(),
        api_key=get_api_key(),
        model=get_model(),
        context_length=get_context_length(),
        timeout_seconds=get_timeout_seconds(),
    )


# ─────────────────────────────────────────────────────────────────────
# DATA MODELS
# ─────────────────────────────────────────────────────────────────────

class ProviderConfig(BaseModel):
    """Connection settings and mutable model metadata for one MLX server.

    `model` and `context_length` are overwritten by the startup probe
    when the server reports them.
    """
    api_base: str = DEFAULT_API_BASE
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    context_length: int = DEFAULT_CONTEXT_LENGTH
    extra_headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


class Message(BaseModel):
    """A single message in a conversation.

    Content can be:
    - str: Plain text message
    - list: Multimodal content parts in OpenAI format
    """
    role: str  # "user", "assistant", or "system"
    content: Union[str, list]

    def get_text(self) -> str:
        """Extract text content from message.

        Multimodal content contributes its text parts, joined by newlines.
        """
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.get("text", "")
            for part in self.content
            if isinstance(part, dict) and part.get("type") == "text"
        )
