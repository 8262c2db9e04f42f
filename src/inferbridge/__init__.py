"""inferbridge: one chat-completion surface over OpenAI-chat and Anthropic-messages upstreams.

Structure:
- `chat`: `ChatModel` base class, prompt adapter and stream handle
- `clients/`: protocol adapters and shared normalization helpers
- `transport`: httpx transport with retries and SSE decoding
- `factory`: adapter registry
"""

from .chat import ChatModel, ChatStreamHandle, PreparedCall
from .config import ChatConfig
from .errors import (
    ChatAbortedError,
    ChatConfigurationError,
    ChatError,
    ChatTransportError,
    EmptyPromptError,
    InvalidRoleError,
    InvalidToolChoiceError,
    InvalidToolDefinitionError,
    MalformedResponseError,
    UpstreamHTTPError,
)
from .factory import (
    available_chat_adapters,
    create_chat_model,
    create_chat_model_from_env,
    register_chat_adapter,
)
from .transport import HttpxTransport, RequestTransport, TransportOptions
from .types import (
    CallWarning,
    ChatRequest,
    ChatResponse,
    Message,
    ResponseFormat,
    StreamFinishPart,
    StreamPart,
    StreamStartPart,
    StreamTextDeltaPart,
    StreamTextEndPart,
    StreamTextStartPart,
    StreamToolCallPart,
    TextContent,
    ToolCall,
    Usage,
)

__all__ = [
    "ChatModel",
    "ChatStreamHandle",
    "PreparedCall",
    "ChatConfig",
    "ChatError",
    "ChatAbortedError",
    "ChatConfigurationError",
    "ChatTransportError",
    "EmptyPromptError",
    "InvalidRoleError",
    "InvalidToolChoiceError",
    "InvalidToolDefinitionError",
    "MalformedResponseError",
    "UpstreamHTTPError",
    "available_chat_adapters",
    "create_chat_model",
    "create_chat_model_from_env",
    "register_chat_adapter",
    "HttpxTransport",
    "RequestTransport",
    "TransportOptions",
    "CallWarning",
    "ChatRequest",
    "ChatResponse",
    "Message",
    "ResponseFormat",
    "StreamFinishPart",
    "StreamPart",
    "StreamStartPart",
    "StreamTextDeltaPart",
    "StreamTextEndPart",
    "StreamTextStartPart",
    "StreamToolCallPart",
    "TextContent",
    "ToolCall",
    "Usage",
]
