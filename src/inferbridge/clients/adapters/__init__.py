"""Upstream protocol adapter implementations."""

from .anthropic_messages import AnthropicMessagesClient, AnthropicStreamNormalizer
from .openai_chat import OpenAIChatClient, OpenAIChatStreamNormalizer

__all__ = [
    "OpenAIChatClient",
    "OpenAIChatStreamNormalizer",
    "AnthropicMessagesClient",
    "AnthropicStreamNormalizer",
]
