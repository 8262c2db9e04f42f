from __future__ import annotations

"""
Factory utilities for constructing concrete chat adapters.
"""

from typing import TYPE_CHECKING, Callable

from .config import ChatConfig
from .errors import ChatConfigurationError
from .transport import RequestTransport

if TYPE_CHECKING:
    from .chat import ChatModel


AdapterFactory = Callable[[str | None, ChatConfig, "RequestTransport | None"], "ChatModel"]
_BUILTIN_ADAPTERS = {"openai_chat", "anthropic_messages"}
_REGISTRY: dict[str, AdapterFactory] = {}


def register_chat_adapter(
    name: str,
    factory: AdapterFactory,
    *,
    overwrite: bool = False,
) -> None:
    """Register a custom adapter factory by name."""
    key = name.strip().lower()
    if not key:
        raise ValueError("Adapter name must be non-empty")

    if (not overwrite) and key in _REGISTRY:
        raise ValueError(f"Adapter already registered: {key}")

    _REGISTRY[key] = factory


def available_chat_adapters() -> list[str]:
    """Return built-in and runtime-registered adapter names."""
    return sorted(set(_BUILTIN_ADAPTERS) | set(_REGISTRY.keys()))


def create_chat_model(
    adapter: str,
    model_id: str | None = None,
    *,
    config: ChatConfig | None = None,
    transport: RequestTransport | None = None,
) -> "ChatModel":
    """Create a chat model for a specific adapter key."""
    key = adapter.strip().lower()
    if not key:
        raise ChatConfigurationError("Adapter name must be non-empty")

    cfg = config or ChatConfig.from_env()
    factory = _REGISTRY.get(key) or _builtin_factory(key)
    return factory(model_id, cfg, transport)


def create_chat_model_from_env(
    model_id: str | None = None,
    *,
    config: ChatConfig | None = None,
    transport: RequestTransport | None = None,
) -> "ChatModel":
    """Create a chat model using `INFERBRIDGE_ADAPTER` (defaults to `openai_chat`)."""
    cfg = config or ChatConfig.from_env()
    return create_chat_model(cfg.adapter, model_id, config=cfg, transport=transport)


def _builtin_factory(adapter: str) -> AdapterFactory:
    """Resolve built-in adapter factories lazily."""
    if adapter == "openai_chat":
        from .clients.adapters.openai_chat import OpenAIChatClient

        return lambda model_id, cfg, transport: OpenAIChatClient(
            model_id,
            config=cfg,
            transport=transport,
        )

    if adapter == "anthropic_messages":
        from .clients.adapters.anthropic_messages import AnthropicMessagesClient

        return lambda model_id, cfg, transport: AnthropicMessagesClient(
            model_id,
            config=cfg,
            transport=transport,
        )

    raise ChatConfigurationError(
        f"Unknown chat adapter '{adapter}'. Available: {', '.join(available_chat_adapters())}"
    )
