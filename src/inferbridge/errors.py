from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines custom exceptions for error handling in the inferbridge package.
"""

from typing import Any


class ChatError(Exception):
    """Base exception for all inferbridge chat errors."""

    code = "chat-error"


class InvalidRoleError(ChatError):
    """A message carries a role outside system/user/assistant/tool."""

    code = "invalid-role"


class EmptyPromptError(ChatError):
    """The prompt (or one of its user messages) has no usable content."""

    code = "empty-prompt"


class MalformedResponseError(ChatError):
    """
    The upstream returned a body we could not map (for example no choices).
    The offending body is kept for diagnostics.
    """

    code = "malformed-response"

    def __init__(self, message: str, *, body: Any = None) -> None:
        super().__init__(message)
        self.body = body


class InvalidToolDefinitionError(ChatError):
    code = "invalid-tool-definition"


class InvalidToolChoiceError(ChatError):
    code = "invalid-tool-choice"


class ChatAbortedError(ChatError):
    """Raised when an in-flight call is cancelled by the caller."""

    code = "aborted"


class ChatConfigurationError(ChatError):
    code = "configuration"


class ChatTransportError(ChatError):
    """
    Opaque transport failure (network, timeout, non-2xx).
    The original exception is chained as `__cause__`.
    """

    code = "transport"


class UpstreamHTTPError(ChatTransportError):
    """The upstream answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
