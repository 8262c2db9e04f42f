from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Upstream configuration loaded from the environment.
"""

import os
from dataclasses import dataclass
from urllib.parse import urlparse

from .errors import ChatConfigurationError

DEFAULT_BASE_URL = "https://us.inference.heroku.com"
DEFAULT_TOOL_CALL_PLACEHOLDER = "I'll help you with that."

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True, slots=True)
class ChatConfig:
    # Upstream
    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    adapter: str = "openai_chat"
    default_model: str | None = None

    # Reliability (transport only)
    timeout_s: float = 30.0
    max_retries: int = 3
    backoff_base_s: float = 0.5
    backoff_jitter_s: float = 0.15

    # Protocol defaults
    default_max_tokens: int = 4096
    anthropic_version: str = "2023-06-01"

    # Prompt adapter policy
    tool_call_placeholder: str = DEFAULT_TOOL_CALL_PLACEHOLDER
    degrade_required_tool_choice: bool | None = None

    @staticmethod
    def from_env() -> "ChatConfig":
        return ChatConfig(
            api_key=_getenv("INFERBRIDGE_API_KEY", "INFERENCE_KEY"),
            base_url=_getenv("INFERBRIDGE_BASE_URL", "INFERENCE_URL") or DEFAULT_BASE_URL,
            adapter=os.getenv("INFERBRIDGE_ADAPTER", "openai_chat"),
            default_model=_getenv("INFERBRIDGE_MODEL", "INFERENCE_MODEL_ID"),
            timeout_s=float(os.getenv("INFERBRIDGE_TIMEOUT_S", "30")),
            max_retries=int(os.getenv("INFERBRIDGE_MAX_RETRIES", "3")),
            backoff_base_s=float(os.getenv("INFERBRIDGE_BACKOFF_BASE_S", "0.5")),
            backoff_jitter_s=float(os.getenv("INFERBRIDGE_BACKOFF_JITTER_S", "0.15")),
            default_max_tokens=int(os.getenv("INFERBRIDGE_DEFAULT_MAX_TOKENS", "4096")),
            anthropic_version=os.getenv("INFERBRIDGE_ANTHROPIC_VERSION", "2023-06-01"),
            degrade_required_tool_choice=_parse_optional_bool(
                os.getenv("INFERBRIDGE_DEGRADE_REQUIRED_TOOL_CHOICE")
            ),
        )


def _getenv(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _parse_optional_bool(value: str | None) -> bool | None:
    if value is None or not value.strip():
        return None
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ChatConfigurationError(f"Expected a boolean flag, got {value!r}")


def ensure_endpoint_path(base_url: str, path: str) -> str:
    """
    Append the protocol endpoint to `base_url` unless it is already there.

    `ensure_endpoint_path("https://h", "/v1/chat/completions")` and
    `ensure_endpoint_path("https://h/v1/chat/completions/", "/v1/chat/completions")`
    both return `https://h/v1/chat/completions`.
    """
    trimmed = base_url.strip().rstrip("/")
    suffix = "/" + path.strip("/")
    if trimmed.endswith(suffix):
        return trimmed
    return trimmed + suffix


def validate_base_url(base_url: str) -> str:
    parsed = urlparse(base_url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ChatConfigurationError(
            f"Invalid base URL '{base_url}': expected an http(s) URL"
        )
    return base_url.strip()
